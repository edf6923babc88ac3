# backoffice/routes/postbacks.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.logging import get_structlog_logger
from backoffice.db.session import get_session
from backoffice.middleware.auth import get_current_user
from backoffice.middleware.rate_limiter import GENERAL, SENSITIVE, rate_limit
from backoffice.models.postback import PostbackConfiguration, PostbackNotification
from backoffice.models.user import User
from backoffice.schemas.postbacks import (
    NotificationOut,
    NotificationPage,
    PostbackConfigIn,
    PostbackConfigOut,
    PostbackTestRequest,
    PostbackTestResponse,
)
from backoffice.services.postback_dispatcher import validate_postback_url
from backoffice.services.postback_queue import PostbackJob

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/postback", tags=["postbacks"])


async def _load_config(session: AsyncSession, user_id: int):
    return await session.scalar(
        select(PostbackConfiguration).where(PostbackConfiguration.user_id == user_id)
    )


@router.get(
    "/config",
    response_model=PostbackConfigOut,
    dependencies=[Depends(rate_limit(GENERAL))],
)
async def get_postback_config(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> PostbackConfigOut:
    config = await _load_config(session, user.id)
    if config is None:
        return PostbackConfigOut(user_id=user.id, is_enabled=False)
    return PostbackConfigOut.model_validate(config)


@router.put(
    "/config",
    response_model=PostbackConfigOut,
    dependencies=[Depends(rate_limit(SENSITIVE))],
)
async def put_postback_config(
    body: PostbackConfigIn,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> PostbackConfigOut:
    urls = {}
    for field in ("sale_url", "hold_url", "rejected_url", "trash_url"):
        value = (getattr(body, field) or "").strip()
        urls[field] = validate_postback_url(value) if value else None

    config = await _load_config(session, user.id)
    if config is None:
        config = PostbackConfiguration(user_id=user.id)
        session.add(config)

    config.is_enabled = body.is_enabled
    for field, value in urls.items():
        setattr(config, field, value)

    await session.commit()
    logger.info(
        "postback.config_updated",
        user_id=user.id,
        is_enabled=config.is_enabled,
        statuses=sorted(f[:-4] for f, v in urls.items() if v),
    )
    return PostbackConfigOut.model_validate(config)


@router.post(
    "/test",
    response_model=PostbackTestResponse,
    dependencies=[Depends(rate_limit(SENSITIVE))],
)
async def test_postback(
    body: PostbackTestRequest,
    request: Request,
    user: User = Depends(get_current_user),
) -> PostbackTestResponse:
    url = validate_postback_url(body.url)
    queue = request.app.state.postback_queue
    record = await queue.enqueue(PostbackJob.for_test(user.id, url))
    return PostbackTestResponse(
        success=record.status == "success",
        notification=NotificationOut.model_validate(record),
    )


@router.get(
    "/notifications",
    response_model=NotificationPage,
    dependencies=[Depends(rate_limit(GENERAL))],
)
async def list_notifications(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100, alias="pageSize"),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> NotificationPage:
    total = await session.scalar(
        select(func.count(PostbackNotification.id)).where(PostbackNotification.user_id == user.id)
    )
    rows = await session.scalars(
        select(PostbackNotification)
        .where(PostbackNotification.user_id == user.id)
        .order_by(PostbackNotification.created_at.desc(), PostbackNotification.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return NotificationPage(
        notifications=[NotificationOut.model_validate(n) for n in rows.all()],
        total=int(total or 0),
        page=page,
        page_size=page_size,
    )
