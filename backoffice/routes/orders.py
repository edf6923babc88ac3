# backoffice/routes/orders.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.exceptions import NotFoundError
from backoffice.db.session import get_session
from backoffice.middleware.auth import get_current_user, require_staff
from backoffice.middleware.rate_limiter import GENERAL, STATUS_UPDATE, rate_limit
from backoffice.models.user import User
from backoffice.schemas.orders import (
    DuplicateStatsResponse,
    LeadOut,
    LeadResponse,
    StatusUpdateRequest,
)
from backoffice.services.duplicate_detection import duplicate_stats_today
from backoffice.services.lead_state import get_lead, transition

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get(
    "/duplicates/stats",
    response_model=DuplicateStatsResponse,
    dependencies=[Depends(rate_limit(GENERAL))],
)
async def get_duplicate_stats(
    user: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
) -> DuplicateStatsResponse:
    stats = await duplicate_stats_today(session)
    return DuplicateStatsResponse(leads_today=stats.leads_today, unique_phones=stats.unique_phones)


@router.get(
    "/{lead_id}",
    response_model=LeadResponse,
    dependencies=[Depends(rate_limit(GENERAL))],
)
async def get_order(
    lead_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> LeadResponse:
    lead = await get_lead(session, lead_id)
    if not user.is_staff and lead.user_id != user.id:
        # Other affiliates' orders read as missing
        raise NotFoundError(message="Lead not found", details={"leadId": lead_id})
    return LeadResponse(order=LeadOut.model_validate(lead))


@router.patch(
    "/{lead_id}/status",
    response_model=LeadResponse,
    dependencies=[Depends(rate_limit(STATUS_UPDATE))],
    summary="Change a lead's status",
)
async def update_order_status(
    lead_id: int,
    body: StatusUpdateRequest,
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> LeadResponse:
    lead = await transition(
        session,
        lead_id,
        body.status,
        actor=user,
        expected_version=body.expected_version,
        queue=getattr(request.app.state, "postback_queue", None),
    )
    return LeadResponse(order=LeadOut.model_validate(lead))
