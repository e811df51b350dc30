"""
Database Engine & Session Management
SQLAlchemy setup with dependency injection for FastAPI.
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from storefront.config import get_settings

settings = get_settings()


def _make_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite:///"):
        # Ensure data directory exists
        db_dir = os.path.dirname(url.replace("sqlite:///", ""))
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        connect_args = {"check_same_thread": False}  # Required for SQLite
    return create_engine(url, connect_args=connect_args, echo=settings.DEBUG)


engine = _make_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a database session, auto-closes on finish."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create all tables. Called once at application startup."""
    from storefront.models import catalog as _catalog_model          # noqa: F401
    from storefront.models import order as _order_model              # noqa: F401
    from storefront.models import pending_payment as _pending_model  # noqa: F401
    from storefront.models import payment_log as _log_model          # noqa: F401
    from storefront.models import coupon as _coupon_model            # noqa: F401
    from storefront.models import store_settings as _settings_model  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
