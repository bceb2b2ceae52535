# API v1 Package
from backoffice.api.v1 import auth, customers, products, sales, invoices, purchases, refunds

__all__ = [
    'auth',
    'customers',
    'products',
    'sales',
    'invoices',
    'purchases',
    'refunds',
]
