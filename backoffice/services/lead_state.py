from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import TYPE_CHECKING, FrozenSet, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.config import settings
from backoffice.core.exceptions import (
    AuthorizationError,
    ConcurrentTransitionConflict,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from backoffice.core.logging import get_structlog_logger
from backoffice.db.base import utcnow
from backoffice.models.lead import Lead
from backoffice.models.product import Product
from backoffice.models.user import STAFF_ROLES, User

if TYPE_CHECKING:
    from backoffice.services.postback_queue import PostbackQueue

logger = get_structlog_logger(__name__)

CENTS = Decimal("0.01")


class LeadStatus(str, Enum):
    PENDING = "pending"
    HOLD = "hold"
    SALE = "sale"
    REJECTED = "rejected"
    TRASH = "trash"

    @classmethod
    def parse(cls, value: str) -> "LeadStatus":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                message=f"Unknown lead status: {value}",
                details={"allowed": [s.value for s in cls]},
            ) from None


# Statuses a moderator may move between freely
WORKED_STATUSES: FrozenSet[LeadStatus] = frozenset(
    {LeadStatus.HOLD, LeadStatus.SALE, LeadStatus.REJECTED, LeadStatus.TRASH}
)


def allowed_targets(current: LeadStatus) -> FrozenSet[LeadStatus]:
    return WORKED_STATUSES - {current}


def can_transition(current: LeadStatus, target: LeadStatus) -> bool:
    return target in allowed_targets(current)


def validate_transition(current: LeadStatus, target: LeadStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(
            message=f"Cannot change status from {current.value} to {target.value}",
            details={
                "currentStatus": current.value,
                "requestedStatus": target.value,
                "allowed": sorted(s.value for s in allowed_targets(current)),
            },
        )


def generate_lead_number(now: Optional[datetime] = None) -> str:
    """``ORD-YYYYMMDD-XXXXXX`` with a random uppercase hex suffix."""
    stamp = (now or utcnow()).strftime("%Y%m%d")
    return f"{settings.lead_number_prefix}-{stamp}-{secrets.token_hex(3).upper()}"


def _money(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class NewLead:
    customer_name: str
    customer_phone: str
    customer_phone_formatted: Optional[str]
    quantity: int = 1
    sale_price: Optional[Decimal] = None
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    publisher_id: Optional[str] = None
    subacc1: Optional[str] = None
    subacc2: Optional[str] = None
    subacc3: Optional[str] = None
    subacc4: Optional[str] = None
    notes: Optional[str] = None


async def create_lead(
    session: AsyncSession,
    user: User,
    product: Product,
    data: NewLead,
    unit_payout: Decimal,
    now: Optional[datetime] = None,
) -> Lead:
    """Insert a lead in ``pending`` with its payout snapshot.

    Callers run the duplicate check and payout resolution first. ``value``
    and ``payout`` are per-unit amounts times quantity and are never
    recomputed afterwards.
    """
    if data.quantity < 1:
        raise ValidationError(message="quantity must be at least 1", details={"field": "quantity"})

    unit_price = data.sale_price if data.sale_price is not None else product.price
    lead = Lead(
        lead_number=generate_lead_number(now),
        user_id=user.id,
        product_id=product.id,
        publisher_id=data.publisher_id,
        subacc1=data.subacc1,
        subacc2=data.subacc2,
        subacc3=data.subacc3,
        subacc4=data.subacc4,
        customer_name=data.customer_name,
        customer_phone=data.customer_phone,
        customer_phone_formatted=data.customer_phone_formatted,
        customer_email=data.customer_email,
        customer_address=data.customer_address,
        postal_code=data.postal_code,
        city=data.city,
        province=data.province,
        quantity=data.quantity,
        value=_money(Decimal(unit_price) * data.quantity),
        payout=_money(Decimal(unit_payout) * data.quantity),
        status=LeadStatus.PENDING.value,
        version=1,
        notes=data.notes,
    )
    if now is not None:
        lead.created_at = now
        lead.updated_at = now

    session.add(lead)
    await session.commit()
    await session.refresh(lead)

    logger.info(
        "lead.created",
        lead_id=lead.id,
        lead_number=lead.lead_number,
        user_id=user.id,
        product_id=product.id,
        publisher_id=lead.publisher_id,
        value=str(lead.value),
        payout=str(lead.payout),
    )
    return lead


async def compare_and_set_status(
    session: AsyncSession,
    lead_id: int,
    *,
    expected_status: str,
    expected_version: int,
    new_status: str,
) -> bool:
    """Conditional status write; False when the row moved on since it was read."""
    result = await session.execute(
        update(Lead)
        .where(
            Lead.id == lead_id,
            Lead.version == expected_version,
            Lead.status == expected_status,
        )
        .values(status=new_status, version=Lead.version + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def get_lead(session: AsyncSession, lead_id: int) -> Lead:
    lead = (
        await session.execute(
            select(Lead).where(Lead.id == lead_id).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if lead is None:
        raise NotFoundError(message="Lead not found", details={"leadId": lead_id})
    return lead


async def transition(
    session: AsyncSession,
    lead_id: int,
    new_status: str,
    *,
    actor: User,
    expected_version: Optional[int] = None,
    queue: Optional["PostbackQueue"] = None,
) -> Lead:
    """Move a lead to ``new_status`` and schedule its postback.

    Linearizable per lead: the write only lands if status and version are
    still what was read, otherwise ``ConcurrentTransitionConflict`` is raised
    and nothing is enqueued.
    """
    if actor.role not in STAFF_ROLES:
        raise AuthorizationError(
            message="Only staff can change lead status",
            details={"role": actor.role},
        )

    target = LeadStatus.parse(new_status)
    lead = await get_lead(session, lead_id)
    current = LeadStatus(lead.status)
    read_version = lead.version

    if expected_version is not None and expected_version != read_version:
        raise ConcurrentTransitionConflict(
            details={"currentStatus": current.value, "currentVersion": read_version}
        )

    validate_transition(current, target)

    applied = await compare_and_set_status(
        session,
        lead_id,
        expected_status=current.value,
        expected_version=read_version,
        new_status=target.value,
    )
    if not applied:
        await session.rollback()
        logger.warning(
            "lead.transition_conflict",
            lead_id=lead_id,
            from_status=current.value,
            to_status=target.value,
            expected_version=read_version,
        )
        raise ConcurrentTransitionConflict(details={"leadId": lead_id})

    owner_id = lead.user_id
    new_version = read_version + 1

    await session.commit()
    # Enqueue before any further await so jobs for one lead follow commit order
    if queue is not None:
        try:
            queue.enqueue_transition(
                user_id=owner_id,
                lead_id=lead_id,
                target_status=target.value,
                previous_status=current.value,
                version=new_version,
            )
        except Exception:
            logger.exception("postback.enqueue_failed", lead_id=lead_id, status=target.value)

    lead = await get_lead(session, lead_id)
    logger.info(
        "lead.transitioned",
        lead_id=lead.id,
        lead_number=lead.lead_number,
        from_status=current.value,
        to_status=target.value,
        version=new_version,
        actor_id=actor.id,
    )
    return lead
