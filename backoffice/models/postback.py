# backoffice/models/postback.py
from __future__ import annotations

from sqlalchemy import Boolean, Column, Enum, ForeignKey, Index, Integer, String, Text, false

from backoffice.db.base import Base

NOTIFICATION_STATUSES = ("pending", "success", "failed")


class PostbackConfiguration(Base):
    """Per-user callback URLs, one per target lead status."""

    __tablename__ = "postback_configurations"

    user_id = Column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    is_enabled = Column(Boolean, nullable=False, default=False, server_default=false())

    sale_url = Column(Text, nullable=True)
    hold_url = Column(Text, nullable=True)
    rejected_url = Column(Text, nullable=True)
    trash_url = Column(Text, nullable=True)

    def url_for(self, status: str) -> str | None:
        url = getattr(self, f"{status}_url", None) if status in ("sale", "hold", "rejected", "trash") else None
        return url.strip() if url and url.strip() else None


class PostbackNotification(Base):
    """Audit row for one dispatch; updated in place while retries run.

    ``lead_id`` is NULL for manual test postbacks.
    """

    __tablename__ = "postback_notifications"

    user_id = Column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    lead_id = Column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=True)
    url = Column(Text, nullable=False)
    target_status = Column(String(20), nullable=True)

    status = Column(Enum(*NOTIFICATION_STATUSES, name="postback_notification_status"), nullable=False, default="pending", server_default="pending")
    http_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0, server_default="0")

    __table_args__ = (
        Index("idx_postback_notif_user", "user_id"),
        Index("idx_postback_notif_lead", "lead_id"),
    )
