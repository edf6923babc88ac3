# backoffice/models/payout_exception.py
from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Index, Numeric, String, func

from backoffice.db.base import Base


class PayoutException(Base):
    """Payout override for an affiliate, optionally narrowed to one publisher.

    ``publisher_id IS NULL`` is an affiliate-wide override; a non-null value
    scopes the override to that publisher only.
    """

    __tablename__ = "payout_exceptions"

    product_id = Column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    publisher_id = Column(String(100), nullable=True)
    payout_amount = Column(Numeric(10, 2), nullable=False)


# One override per (product, affiliate, publisher-or-none)
Index(
    "uq_payout_exceptions_scope",
    PayoutException.product_id,
    PayoutException.user_id,
    func.coalesce(PayoutException.publisher_id, ""),
    unique=True,
)
Index("idx_payout_exceptions_lookup", PayoutException.product_id, PayoutException.user_id, PayoutException.publisher_id)
