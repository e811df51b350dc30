"""
Catalog Models — plants, pots, combos and gift hampers with stock counters.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from storefront.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(220), unique=True, index=True)
    category = Column(String(64))                 # plants | pots | seeds | accessories

    price = Column(Float, nullable=False)         # INR, base price when no variant applies
    stock = Column(Integer, default=0, nullable=False)  # Sum of variant stock when variants exist
    status = Column(String(16), default="ACTIVE")  # ACTIVE | INACTIVE
    images = Column(JSON, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    variants = relationship(
        "ProductVariant", back_populates="product",
        cascade="all, delete-orphan", order_by="ProductVariant.id",
    )


class ProductVariant(Base):
    """Size-level price and stock (e.g. Small / Medium / 6-inch pot)."""
    __tablename__ = "product_variants"
    __table_args__ = (UniqueConstraint("product_id", "size", name="uq_variant_product_size"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    size = Column(String(32), nullable=False)
    price = Column(Float, nullable=False)
    stock = Column(Integer, default=0, nullable=False)

    product = relationship("Product", back_populates="variants")


class Combo(Base):
    __tablename__ = "combos"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(220), unique=True, index=True)
    price = Column(Float, nullable=False)
    stock = Column(Integer, default=0, nullable=False)
    status = Column(String(16), default="ACTIVE")
    images = Column(JSON, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)


class GiftHamper(Base):
    __tablename__ = "gift_hampers"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(220), unique=True, index=True)
    price = Column(Float, nullable=False)
    stock = Column(Integer, default=0, nullable=False)
    status = Column(String(16), default="ACTIVE")
    images = Column(JSON, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)
