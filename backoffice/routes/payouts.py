# backoffice/routes/payouts.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.db.session import get_session
from backoffice.middleware.auth import get_current_user, require_admin_or_moderator, require_staff
from backoffice.middleware.rate_limiter import GENERAL, SENSITIVE, rate_limit
from backoffice.models.user import User
from backoffice.schemas.payouts import (
    PayoutExceptionCreate,
    PayoutExceptionList,
    PayoutExceptionOut,
    PayoutResolution,
)
from backoffice.services.payout_resolver import (
    create_payout_exception,
    delete_payout_exception,
    list_payout_exceptions,
    resolve_payout_detail,
)

router = APIRouter(tags=["payouts"])


@router.get(
    "/payout-exceptions",
    response_model=PayoutExceptionList,
    dependencies=[Depends(rate_limit(GENERAL))],
)
async def get_payout_exceptions(
    product_id: Optional[int] = Query(default=None, alias="productId"),
    user_id: Optional[int] = Query(default=None, alias="userId"),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> PayoutExceptionList:
    # Affiliates only ever see their own overrides
    if not user.is_staff:
        user_id = user.id
    exceptions = await list_payout_exceptions(session, product_id=product_id, user_id=user_id)
    return PayoutExceptionList(exceptions=[PayoutExceptionOut.model_validate(e) for e in exceptions])


@router.post(
    "/payout-exceptions",
    response_model=PayoutExceptionOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit(SENSITIVE))],
)
async def post_payout_exception(
    body: PayoutExceptionCreate,
    user: User = Depends(require_admin_or_moderator),
    session: AsyncSession = Depends(get_session),
) -> PayoutExceptionOut:
    exception = await create_payout_exception(
        session,
        product_id=body.product_id,
        user_id=body.user_id,
        publisher_id=body.publisher_id,
        payout_amount=body.payout_amount,
    )
    return PayoutExceptionOut.model_validate(exception)


@router.delete(
    "/payout-exceptions/{exception_id}",
    dependencies=[Depends(rate_limit(SENSITIVE))],
)
async def remove_payout_exception(
    exception_id: int,
    user: User = Depends(require_admin_or_moderator),
    session: AsyncSession = Depends(get_session),
) -> dict:
    await delete_payout_exception(session, exception_id)
    return {"success": True}


@router.get(
    "/payout/resolve",
    response_model=PayoutResolution,
    dependencies=[Depends(rate_limit(GENERAL))],
)
async def preview_payout(
    product_id: int = Query(alias="productId", ge=1),
    user_id: int = Query(alias="userId", ge=1),
    publisher_id: Optional[str] = Query(default=None, alias="publisherId"),
    user: User = Depends(require_staff),
    session: AsyncSession = Depends(get_session),
) -> PayoutResolution:
    resolved = await resolve_payout_detail(session, product_id, user_id, publisher_id)
    return PayoutResolution(
        product_id=product_id,
        user_id=user_id,
        publisher_id=publisher_id,
        payout=resolved.amount,
        level=resolved.level.value,
    )
