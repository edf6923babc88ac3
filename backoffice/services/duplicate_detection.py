from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.config import settings
from backoffice.core.logging import get_structlog_logger
from backoffice.db.base import utcnow
from backoffice.models.lead import Lead

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class LeadRef:
    lead_number: str
    customer_name: str
    created_at: datetime
    user_id: Optional[int]
    status: str


@dataclass(frozen=True)
class DuplicateCheck:
    is_duplicate: bool
    existing_lead: Optional[LeadRef] = None


@dataclass(frozen=True)
class DuplicateStats:
    leads_today: int
    unique_phones: int


def business_timezone() -> tzinfo:
    """Zone that defines the calendar day; the server's local zone unless configured."""
    if settings.business_timezone:
        return ZoneInfo(settings.business_timezone)
    return datetime.now().astimezone().tzinfo


def day_bounds(now: Optional[datetime] = None, zone: Optional[tzinfo] = None) -> tuple[datetime, datetime]:
    """UTC bounds ``[start, end)`` of the local calendar day containing ``now``."""
    zone = zone or business_timezone()
    local_now = (now or utcnow()).astimezone(zone)
    start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


async def is_duplicate_today(
    session: AsyncSession,
    phone: Optional[str],
    *,
    exclude_lead_number: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DuplicateCheck:
    """Advisory same-day duplicate check on the normalized phone.

    Not atomic with the insert that follows it: two submissions racing through
    the check can both pass. Missing phones never count as duplicates.
    """
    if not phone or not phone.strip():
        logger.debug("duplicate_check.skipped", reason="no_formatted_phone")
        return DuplicateCheck(False)

    start, end = day_bounds(now)

    stmt = (
        select(Lead.lead_number, Lead.customer_name, Lead.created_at, Lead.user_id, Lead.status)
        .where(
            Lead.customer_phone_formatted == phone,
            Lead.created_at >= start,
            Lead.created_at < end,
        )
        .order_by(Lead.created_at.asc(), Lead.id.asc())
        .limit(1)
    )
    if exclude_lead_number:
        stmt = stmt.where(Lead.lead_number != exclude_lead_number)

    row = (await session.execute(stmt)).first()
    if row is None:
        logger.debug("duplicate_check.miss", phone=phone, day_start=start.isoformat())
        return DuplicateCheck(False)

    existing = LeadRef(
        lead_number=row.lead_number,
        customer_name=row.customer_name,
        created_at=row.created_at,
        user_id=row.user_id,
        status=row.status,
    )
    logger.info(
        "duplicate_check.hit",
        phone=phone,
        existing_lead=existing.lead_number,
        existing_status=existing.status,
        existing_user_id=existing.user_id,
    )
    return DuplicateCheck(True, existing)


async def duplicate_stats_today(session: AsyncSession, now: Optional[datetime] = None) -> DuplicateStats:
    start, end = day_bounds(now)
    window = (Lead.created_at >= start, Lead.created_at < end)

    leads_today = await session.scalar(select(func.count(Lead.id)).where(*window))
    unique_phones = await session.scalar(
        select(func.count(func.distinct(Lead.customer_phone_formatted))).where(*window)
    )
    return DuplicateStats(leads_today=int(leads_today or 0), unique_phones=int(unique_phones or 0))
