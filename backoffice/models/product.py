# backoffice/models/product.py
from __future__ import annotations

from sqlalchemy import Column, Enum, Index, Numeric, String, Text

from backoffice.db.base import Base


class Product(Base):
    __tablename__ = "products"

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    sku = Column(String(128), nullable=False, unique=True)

    price = Column(Numeric(10, 2), nullable=False)
    # Default affiliate payout; overridden per affiliate/publisher by payout_exceptions
    payout_po = Column(Numeric(10, 2), nullable=True)

    status = Column(
        Enum("active", "inactive", "draft", "low", name="product_status"),
        nullable=False,
        default="active",
        server_default="active",
    )

    __table_args__ = (
        Index("idx_products_status", "status"),
    )
