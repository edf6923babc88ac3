# backoffice/services/__init__.py
"""
Business logic services organized by domain functionality.
"""

from backoffice.services.duplicate_detection import DuplicateCheck, LeadRef, is_duplicate_today
from backoffice.services.lead_ingest import get_order_for_user, ingest_order
from backoffice.services.lead_state import LeadStatus, create_lead, transition
from backoffice.services.normalization import normalize_email, normalize_phone
from backoffice.services.payout_resolver import resolve_payout
from backoffice.services.postback_dispatcher import (
    AiohttpPostbackSender,
    NotificationRecord,
    PostbackDispatcher,
)
from backoffice.services.postback_queue import PostbackJob, PostbackQueue

__all__ = [
    # Duplicate guard
    "DuplicateCheck",
    "LeadRef",
    "is_duplicate_today",
    # Ingestion
    "get_order_for_user",
    "ingest_order",
    # Lead lifecycle
    "LeadStatus",
    "create_lead",
    "transition",
    # Normalization
    "normalize_email",
    "normalize_phone",
    # Payouts
    "resolve_payout",
    # Postbacks
    "AiohttpPostbackSender",
    "NotificationRecord",
    "PostbackDispatcher",
    "PostbackJob",
    "PostbackQueue",
]
