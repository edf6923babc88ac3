# backoffice/models/lead.py
from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from backoffice.db.base import Base

LEAD_STATUSES = ("pending", "hold", "sale", "rejected", "trash")


class Lead(Base):
    """An ingested order tracked through its status lifecycle.

    Rows are never deleted; ``trash`` is a business state, not a removal.
    ``status`` and ``version`` are written only by the lead state machine.
    """

    __tablename__ = "leads"

    lead_number = Column(String(32), nullable=False, unique=True)

    user_id = Column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    product_id = Column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)

    # Affiliate attribution
    publisher_id = Column(String(100), nullable=True)
    subacc1 = Column(String(100), nullable=True)
    subacc2 = Column(String(100), nullable=True)
    subacc3 = Column(String(100), nullable=True)
    subacc4 = Column(String(100), nullable=True)

    customer_name = Column(String(200), nullable=False)
    customer_phone = Column(String(32), nullable=False)
    customer_phone_formatted = Column(String(32), nullable=True)
    customer_email = Column(String(200), nullable=True)
    customer_address = Column(String(500), nullable=True)
    postal_code = Column(String(16), nullable=True)
    city = Column(String(128), nullable=True)
    province = Column(String(128), nullable=True)

    quantity = Column(Integer, nullable=False, default=1, server_default="1")
    value = Column(Numeric(10, 2), nullable=False)
    # Snapshot taken at creation; later override changes do not touch it
    payout = Column(Numeric(10, 2), nullable=False)

    status = Column(Enum(*LEAD_STATUSES, name="lead_status"), nullable=False, default="pending", server_default="pending")
    version = Column(Integer, nullable=False, default=1, server_default="1")

    notes = Column(Text, nullable=True)

    user = relationship("User", lazy="raise")
    product = relationship("Product", lazy="raise")

    __table_args__ = (
        Index("idx_leads_status", "status"),
        Index("idx_leads_user_created", "user_id", "created_at"),
        Index("idx_leads_phone_formatted_created", "customer_phone_formatted", "created_at"),
        CheckConstraint("quantity > 0", name="quantity_positive"),
        CheckConstraint("version > 0", name="version_positive"),
    )
