# backoffice/routes/external_orders.py
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.db.session import get_session
from backoffice.middleware.auth import get_api_user
from backoffice.middleware.rate_limiter import INGESTION, rate_limit
from backoffice.models.user import User
from backoffice.schemas.orders import (
    ExternalOrderRequest,
    ExternalOrderResponse,
    OrderStatus,
    OrderStatusResponse,
    OrderSummary,
)
from backoffice.services.lead_ingest import get_order_for_user, ingest_order

router = APIRouter(
    prefix="/external/orders",
    tags=["external"],
    dependencies=[Depends(rate_limit(INGESTION))],
)


@router.post(
    "",
    response_model=ExternalOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit an order from an affiliate system",
)
async def create_external_order(
    order: ExternalOrderRequest,
    user: User = Depends(get_api_user),
    session: AsyncSession = Depends(get_session),
) -> ExternalOrderResponse:
    lead = await ingest_order(session, user, order)
    return ExternalOrderResponse(
        order=OrderSummary(
            order_number=lead.lead_number,
            status=lead.status,
            value=lead.value,
            payout=lead.payout,
            created_at=lead.created_at,
        )
    )


@router.get(
    "/{order_number}/status",
    response_model=OrderStatusResponse,
    summary="Current status of one of the affiliate's orders",
)
async def get_external_order_status(
    order_number: str,
    user: User = Depends(get_api_user),
    session: AsyncSession = Depends(get_session),
) -> OrderStatusResponse:
    lead = await get_order_for_user(session, user, order_number)
    return OrderStatusResponse(
        order=OrderStatus(
            order_number=lead.lead_number,
            status=lead.status,
            updated_at=lead.updated_at,
        )
    )
