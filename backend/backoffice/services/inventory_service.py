"""
Inventory Service - Products and the stock ledger

``Product.quantity`` is only ever changed by ``adjust_quantity``: one
conditional UPDATE that refuses to go below zero, followed by a
``StockAdjustment`` row recording the movement.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple, Union, Mapping
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backoffice.core.exceptions import (
    AuthorizationError, BackofficeError, NegativeStockError, NotFoundError, ValidationError
)
from backoffice.models import Product, StockAdjustment, StockReason
from backoffice.schemas import ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

Deltas = Union[Mapping[int, int], Iterable[Tuple[int, int]]]

VALID_REASONS = {reason.value for reason in StockReason}


@dataclass
class StockMovement:
    product_id: int
    product_name: str
    old_quantity: int
    new_quantity: int
    change: int


@dataclass
class RestockFailure:
    product_id: int
    quantity: int
    error: str


def aggregate_deltas(deltas: Deltas) -> Dict[int, int]:
    """Sum deltas per product, keeping first-seen order and dropping zeros."""
    pairs = deltas.items() if isinstance(deltas, Mapping) else deltas
    totals: Dict[int, int] = {}
    for product_id, delta in pairs:
        totals[product_id] = totals.get(product_id, 0) + int(delta)
    return {product_id: delta for product_id, delta in totals.items() if delta}


class ProductService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, product_id: int) -> Optional[Product]:
        return self.db.query(Product).filter(Product.id == product_id).first()

    def get_owned(self, product_id: int, owner_id: int) -> Product:
        product = self.get_by_id(product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found")
        if product.owner_id != owner_id:
            raise AuthorizationError("Not authorized to access this product")
        return product

    def is_sku_unique(self, sku: str, owner_id: int, exclude_product_id: int = None) -> bool:
        """Check if SKU is unique within the owner's catalogue"""
        if not sku:
            return True  # Empty SKU is allowed
        query = self.db.query(Product).filter(
            Product.sku == sku,
            Product.owner_id == owner_id
        )
        if exclude_product_id:
            query = query.filter(Product.id != exclude_product_id)
        return query.first() is None

    def list(self, owner_id: int, include_inactive: bool = False, search: str = None) -> List[Product]:
        query = self.db.query(Product).filter(Product.owner_id == owner_id)
        if not include_inactive:
            query = query.filter(Product.is_active == True)
        if search:
            pattern = f"%{search}%"
            query = query.filter((Product.name.ilike(pattern)) | (Product.sku.ilike(pattern)))
        return query.order_by(Product.name).all()

    def get_low_stock(self, owner_id: int) -> List[Product]:
        """Get products at or below reorder level"""
        return self.db.query(Product).filter(
            Product.owner_id == owner_id,
            Product.is_active == True,
            Product.quantity <= Product.reorder_level
        ).order_by(Product.quantity).all()

    def get_adjustments(self, product_id: int, owner_id: int, limit: int = 100) -> List[StockAdjustment]:
        self.get_owned(product_id, owner_id)
        return self.db.query(StockAdjustment).filter(
            StockAdjustment.product_id == product_id
        ).order_by(StockAdjustment.id.desc()).limit(limit).all()

    def create(self, product_data: ProductCreate, owner_id: int, user_id: int = None) -> Product:
        if product_data.sku and not self.is_sku_unique(product_data.sku, owner_id):
            raise ValidationError(f"Product with SKU '{product_data.sku}' already exists")

        product = Product(
            name=product_data.name,
            sku=product_data.sku,
            category=product_data.category,
            quantity=0,
            cost=product_data.cost,
            selling_price=product_data.selling_price,
            purchase_price=product_data.purchase_price,
            tax_rate=product_data.tax_rate,
            reorder_level=product_data.reorder_level,
            supplier_id=product_data.supplier_id,
            owner_id=owner_id
        )
        self.db.add(product)
        self.db.flush()

        if product_data.opening_stock:
            self.adjust_quantity(
                product.id, product_data.opening_stock, StockReason.OPENING_STOCK.value,
                owner_id, user_id=user_id, reference_type="Product", reference_id=product.id
            )
        logger.info("Product %s created with %s units", product.id, product.quantity)
        return product

    def update(self, product_id: int, product_data: Union[ProductUpdate, dict], owner_id: int) -> Product:
        product = self.get_owned(product_id, owner_id)

        if isinstance(product_data, dict):
            update_data = dict(product_data)
        else:
            update_data = product_data.model_dump(exclude_unset=True)

        if "quantity" in update_data:
            raise ValidationError(
                "Quantity cannot be edited directly; use the quantity adjustment endpoint"
            )
        unknown = set(update_data) - set(ProductUpdate.model_fields)
        if unknown:
            raise ValidationError(f"Unknown product fields: {', '.join(sorted(unknown))}")

        if update_data.get("sku") and not self.is_sku_unique(update_data["sku"], owner_id, product_id):
            raise ValidationError(f"Product with SKU '{update_data['sku']}' already exists")

        for key, value in update_data.items():
            setattr(product, key, value)

        self.db.flush()
        return product

    # ==================== STOCK LEDGER ====================

    def _move(
        self,
        product_id: int,
        delta: int,
        reason: str,
        owner_id: int,
        user_id: int = None,
        reference_type: str = None,
        reference_id: int = None
    ) -> StockMovement:
        if not delta or int(delta) != delta:
            raise ValidationError("Quantity change must be a non-zero whole number")
        if reason not in VALID_REASONS:
            raise ValidationError(f"Invalid stock reason '{reason}'")
        delta = int(delta)

        # Pending changes must reach the database before the guarded UPDATE
        self.db.flush()
        updated = self.db.query(Product).filter(
            Product.id == product_id,
            Product.owner_id == owner_id,
            Product.quantity + delta >= 0
        ).update(
            {
                Product.quantity: Product.quantity + delta,
                Product.last_modified: datetime.utcnow(),
                Product.last_modified_from: reason,
            },
            synchronize_session=False
        )

        product = self.get_by_id(product_id)
        if not updated:
            if not product:
                raise NotFoundError(f"Product {product_id} not found")
            if product.owner_id != owner_id:
                raise AuthorizationError("Not authorized to access this product")
            self.db.refresh(product)
            logger.warning(
                "Stock shortfall on product %s: available %s, change %s",
                product_id, product.quantity, delta
            )
            raise NegativeStockError(product.id, product.name, product.quantity, -delta)

        self.db.refresh(product)
        self.db.add(StockAdjustment(
            product_id=product.id,
            quantity_change=delta,
            quantity_after=product.quantity,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            user_id=user_id
        ))
        self.db.flush()
        logger.debug("Product %s %+d (%s) -> %s", product.id, delta, reason, product.quantity)

        return StockMovement(
            product_id=product.id,
            product_name=product.name,
            old_quantity=product.quantity - delta,
            new_quantity=product.quantity,
            change=delta
        )

    def adjust_quantity(
        self,
        product_id: int,
        delta: int,
        reason: str,
        owner_id: int,
        user_id: int = None,
        reference_type: str = None,
        reference_id: int = None
    ) -> Product:
        """
        Apply ``delta`` to the product's quantity in one guarded UPDATE.

        Raises NegativeStockError if the result would be negative, NotFoundError
        if the product does not exist and AuthorizationError if it belongs to
        another owner.
        """
        self._move(product_id, delta, reason, owner_id, user_id, reference_type, reference_id)
        return self.get_by_id(product_id)

    def apply_deltas(
        self,
        deltas: Deltas,
        reason: str,
        owner_id: int,
        user_id: int = None,
        reference_type: str = None,
        reference_id: int = None
    ) -> List[StockMovement]:
        """
        Apply several deltas all-or-nothing.

        Lines for the same product are summed first so they are checked against
        their combined quantity. Runs inside a savepoint: if any product fails,
        every movement made here is undone before the error propagates.
        """
        totals = aggregate_deltas(deltas)
        movements = []
        self.db.flush()
        with self.db.begin_nested():
            for product_id, delta in totals.items():
                movements.append(self._move(
                    product_id, delta, reason, owner_id, user_id, reference_type, reference_id
                ))
        return movements

    def restock_best_effort(
        self,
        deltas: Deltas,
        reason: str,
        owner_id: int,
        user_id: int = None,
        reference_type: str = None,
        reference_id: int = None
    ) -> Tuple[List[StockMovement], List[RestockFailure]]:
        """
        Apply each product's delta in its own savepoint.

        A product that cannot be adjusted is logged and reported back; the
        others still apply.
        """
        movements = []
        failures = []
        self.db.flush()
        for product_id, delta in aggregate_deltas(deltas).items():
            savepoint = self.db.begin_nested()
            try:
                movements.append(self._move(
                    product_id, delta, reason, owner_id, user_id, reference_type, reference_id
                ))
                savepoint.commit()
            except (BackofficeError, SQLAlchemyError) as exc:
                savepoint.rollback()
                logger.error(
                    "Failed to restore %s units of product %s (%s %s): %s",
                    delta, product_id, reference_type, reference_id, exc
                )
                failures.append(RestockFailure(product_id=product_id, quantity=delta, error=str(exc)))
        return movements, failures

    def reprice_from_purchase(self, product: Product, unit_price: Decimal):
        """
        Move the selling price by the change in cost and record the new cost.
        """
        old_cost = Decimal(product.cost or 0)
        unit_price = Decimal(unit_price)
        new_selling = Decimal(product.selling_price or 0) + (unit_price - old_cost)
        product.selling_price = max(new_selling, Decimal("0"))
        product.cost = unit_price
        product.purchase_price = unit_price
        self.db.flush()
        return product
