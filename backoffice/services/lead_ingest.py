# backoffice/services/lead_ingest.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.exceptions import DuplicateLeadError, NotFoundError, ValidationError
from backoffice.core.logging import get_structlog_logger
from backoffice.models.lead import Lead
from backoffice.models.product import Product
from backoffice.models.user import User
from backoffice.schemas.orders import ExternalOrderRequest
from backoffice.services.duplicate_detection import is_duplicate_today
from backoffice.services.lead_state import NewLead, create_lead
from backoffice.services.normalization import normalize_email, normalize_phone
from backoffice.services.payout_resolver import resolve_payout

logger = get_structlog_logger(__name__)


def _clean(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


async def ingest_order(session: AsyncSession, user: User, order: ExternalOrderRequest) -> Lead:
    """Create a pending lead for an affiliate submission.

    Steps run in order and stop at the first failure: product lookup, phone
    normalization, same-day duplicate check, payout resolution, insert.
    """
    product = await session.get(Product, order.product_id)
    if product is None:
        raise NotFoundError(message="Product not found", details={"productId": order.product_id})

    formatted_phone = normalize_phone(order.customer_phone)
    if formatted_phone is None:
        raise ValidationError(
            message="Invalid phone number",
            code="INVALID_PHONE",
            details={"field": "customerPhone"},
        )

    check = await is_duplicate_today(session, formatted_phone)
    if check.is_duplicate:
        existing = check.existing_lead
        logger.info(
            "lead.duplicate_rejected",
            user_id=user.id,
            phone=formatted_phone,
            existing_lead=existing.lead_number,
        )
        raise DuplicateLeadError(
            details={
                "duplicateOf": {
                    "orderNumber": existing.lead_number,
                    "status": existing.status,
                    "createdAt": existing.created_at.isoformat(),
                    "sameAffiliate": existing.user_id == user.id,
                }
            }
        )

    publisher_id = _clean(order.publisher_id)
    unit_payout = await resolve_payout(session, product.id, user.id, publisher_id)

    data = NewLead(
        customer_name=order.customer_name.strip(),
        customer_phone=order.customer_phone.strip(),
        customer_phone_formatted=formatted_phone,
        quantity=order.quantity,
        sale_price=order.sale_price,
        customer_email=normalize_email(order.customer_email),
        customer_address=_clean(order.customer_address),
        postal_code=_clean(order.postal_code),
        city=_clean(order.city),
        province=_clean(order.province),
        publisher_id=publisher_id,
        subacc1=_clean(order.subacc1),
        subacc2=_clean(order.subacc2),
        subacc3=_clean(order.subacc3),
        subacc4=_clean(order.subacc4),
        notes=_clean(order.notes),
    )
    return await create_lead(session, user, product, data, unit_payout)


async def get_order_for_user(session: AsyncSession, user: User, order_number: str) -> Lead:
    """The affiliate's own order; other affiliates' orders read as missing."""
    lead = await session.scalar(
        select(Lead).where(Lead.lead_number == order_number, Lead.user_id == user.id)
    )
    if lead is None:
        raise NotFoundError(message="Order not found", details={"orderNumber": order_number})
    return lead
