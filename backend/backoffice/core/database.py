"""
Database Configuration
"""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from typing import Generator

from backoffice.core.config import settings

# Get the properly formatted database URL
db_url = settings.database_url


def enable_sqlite_savepoints(bind: Engine) -> Engine:
    """
    Let SQLAlchemy own BEGIN on pysqlite connections so SAVEPOINT /
    ``Session.begin_nested()`` behave like on other backends.
    """
    @event.listens_for(bind, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(bind, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return bind


# Create engine
engine = create_engine(
    db_url,
    connect_args={"check_same_thread": False} if "sqlite" in db_url else {},
    echo=settings.DEBUG
)
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base model
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Anything not committed by the route is rolled back when the session closes.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Initialize database tables"""
    # Import all models to register them with Base
    from backoffice.models import (  # noqa: F401
        User, Customer, Product, StockAdjustment, Sale, SaleItem, Payment,
        Purchase, PurchaseItem, Invoice, InvoiceItem, DocumentSequence,
        Refund, RefundItem, AuditLog
    )
    Base.metadata.create_all(bind=bind or engine)
