# backoffice/models/__init__.py
"""
SQLAlchemy ORM models for database entities.
"""

from backoffice.models.lead import LEAD_STATUSES, Lead
from backoffice.models.payout_exception import PayoutException
from backoffice.models.postback import PostbackConfiguration, PostbackNotification
from backoffice.models.product import Product
from backoffice.models.user import STAFF_ROLES, User

__all__ = [
    "LEAD_STATUSES",
    "Lead",
    "PayoutException",
    "PostbackConfiguration",
    "PostbackNotification",
    "Product",
    "STAFF_ROLES",
    "User",
]
