# backoffice/schemas/__init__.py
"""
Pydantic schemas for request/response validation and serialization.
"""

from backoffice.schemas.orders import (
    DuplicateStatsResponse,
    ExternalOrderRequest,
    ExternalOrderResponse,
    LeadOut,
    LeadResponse,
    OrderStatusResponse,
    StatusUpdateRequest,
)
from backoffice.schemas.payouts import (
    PayoutExceptionCreate,
    PayoutExceptionList,
    PayoutExceptionOut,
    PayoutResolution,
)
from backoffice.schemas.postbacks import (
    NotificationOut,
    NotificationPage,
    PostbackConfigIn,
    PostbackConfigOut,
    PostbackTestRequest,
    PostbackTestResponse,
)

__all__ = [
    # Orders
    "DuplicateStatsResponse",
    "ExternalOrderRequest",
    "ExternalOrderResponse",
    "LeadOut",
    "LeadResponse",
    "OrderStatusResponse",
    "StatusUpdateRequest",
    # Payouts
    "PayoutExceptionCreate",
    "PayoutExceptionList",
    "PayoutExceptionOut",
    "PayoutResolution",
    # Postbacks
    "NotificationOut",
    "NotificationPage",
    "PostbackConfigIn",
    "PostbackConfigOut",
    "PostbackTestRequest",
    "PostbackTestResponse",
]
