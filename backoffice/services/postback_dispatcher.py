from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol
from urllib.parse import quote, urlparse

import aiohttp
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backoffice.core.config import settings
from backoffice.core.exceptions import ValidationError
from backoffice.core.logging import get_structlog_logger
from backoffice.db.base import utcnow
from backoffice.models.lead import Lead
from backoffice.models.postback import PostbackConfiguration, PostbackNotification
from backoffice.models.product import Product

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class SendOutcome:
    success: bool
    http_status: Optional[int] = None
    response_body: Optional[str] = None
    error_message: Optional[str] = None


class PostbackSender(Protocol):
    async def send(self, url: str, payload: Dict[str, Any]) -> SendOutcome:
        ...


class AiohttpPostbackSender:
    """POST JSON payloads with one shared aiohttp session."""

    def __init__(self, timeout_seconds: Optional[float] = None, user_agent: Optional[str] = None):
        self.timeout_seconds = timeout_seconds or settings.postback_timeout_seconds
        self.user_agent = user_agent or settings.postback_user_agent
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.user_agent},
            )

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def send(self, url: str, payload: Dict[str, Any]) -> SendOutcome:
        await self.start()
        try:
            async with self._session.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                body = await response.text()
                if 200 <= response.status < 300:
                    return SendOutcome(True, response.status, body)
                return SendOutcome(
                    False,
                    response.status,
                    body,
                    f"HTTP {response.status}: {response.reason or ''}".strip(),
                )
        except asyncio.TimeoutError:
            return SendOutcome(False, error_message=f"Request timeout after {self.timeout_seconds}s")
        except aiohttp.ClientError as e:
            return SendOutcome(False, error_message=f"Client error: {e}")


@dataclass(frozen=True)
class NotificationRecord:
    id: int
    user_id: int
    lead_id: Optional[int]
    url: str
    target_status: Optional[str]
    status: str
    http_status: Optional[int]
    response_body: Optional[str]
    error_message: Optional[str]
    retry_count: int
    created_at: datetime

    @classmethod
    def from_model(cls, notification: PostbackNotification) -> "NotificationRecord":
        return cls(
            id=notification.id,
            user_id=notification.user_id,
            lead_id=notification.lead_id,
            url=notification.url,
            target_status=notification.target_status,
            status=notification.status,
            http_status=notification.http_status,
            response_body=notification.response_body,
            error_message=notification.error_message,
            retry_count=notification.retry_count,
            created_at=notification.created_at,
        )


@dataclass(frozen=True)
class PostbackVariables:
    lead_id: Any
    status: str
    payout: Any
    publisher_id: str
    product: str


# Sample values used for manual test postbacks
TEST_LEAD_ID = 999999
TEST_PAYOUT = Decimal("25.00")
TEST_PRODUCT = "Test Product"


def render_postback_url(template: str, variables: PostbackVariables) -> str:
    """Substitute ``{leadId}``-style placeholders; product names are URL-encoded."""
    product = quote(variables.product, safe="")
    replacements = {
        "{leadId}": str(variables.lead_id),
        "{leadid}": str(variables.lead_id),
        "{status}": variables.status,
        "{payout}": str(variables.payout),
        "{publisherId}": variables.publisher_id,
        "{publisherid}": variables.publisher_id,
        "{producto}": product,
        "{product}": product,
    }
    url = template
    for placeholder, value in replacements.items():
        url = url.replace(placeholder, value)
    return url


def validate_postback_url(url: str) -> str:
    url = (url or "").strip()
    sample = render_postback_url(
        url,
        PostbackVariables(lead_id=123, status="sale", payout=TEST_PAYOUT, publisher_id="pub123", product="product"),
    )
    parsed = urlparse(sample)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(
            message="Invalid URL format. Please check your URL syntax.",
            details={"field": "url"},
        )
    return url


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else f"{Decimal(value):.2f}"


def build_lead_payload(
    lead: Lead,
    product_name: Optional[str],
    status: str,
    previous_status: Optional[str] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "leadId": lead.id,
        "leadNumber": lead.lead_number,
        "status": status,
        "value": _money(lead.value),
        "payout": _money(lead.payout),
        "productId": lead.product_id,
        "productName": product_name,
        "publisherId": lead.publisher_id,
        "subacc1": lead.subacc1,
        "subacc2": lead.subacc2,
        "subacc3": lead.subacc3,
        "subacc4": lead.subacc4,
        "customerName": lead.customer_name,
        "customerPhone": lead.customer_phone,
        "timestamp": utcnow().isoformat(),
    }
    if previous_status:
        payload["previousStatus"] = previous_status
    return payload


def build_test_payload(user_id: int) -> Dict[str, Any]:
    return {
        "leadId": TEST_LEAD_ID,
        "leadNumber": None,
        "status": "sale",
        "value": _money(TEST_PAYOUT),
        "payout": _money(TEST_PAYOUT),
        "productId": None,
        "productName": TEST_PRODUCT,
        "publisherId": str(user_id),
        "customerName": "Test Customer",
        "customerPhone": None,
        "timestamp": utcnow().isoformat(),
        "test": True,
    }


def _truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value[:limit]


class PostbackDispatcher:
    """Send status-change callbacks and keep their notification rows current.

    One notification row per dispatch, committed as ``pending`` before the
    first attempt and updated in place on every retry. Delivery failures end
    in a ``failed`` row; they never raise to the caller.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sender: PostbackSender,
        *,
        max_retries: Optional[int] = None,
        retry_delays: Optional[List[float]] = None,
        response_body_limit: Optional[int] = None,
        error_message_limit: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.sender = sender
        self.max_retries = settings.postback_max_retries if max_retries is None else max_retries
        self.retry_delays = settings.retry_delays() if retry_delays is None else retry_delays
        self.response_body_limit = response_body_limit or settings.postback_response_body_limit
        self.error_message_limit = error_message_limit or settings.postback_error_message_limit
        self._sleep = sleep

    def _delay_for(self, retry_number: int) -> float:
        if not self.retry_delays:
            return 0
        return self.retry_delays[min(retry_number - 1, len(self.retry_delays) - 1)]

    async def dispatch(
        self,
        user_id: int,
        lead_id: int,
        target_status: str,
        previous_status: Optional[str] = None,
    ) -> Optional[NotificationRecord]:
        async with self.session_factory() as session:
            config = await session.scalar(
                select(PostbackConfiguration).where(PostbackConfiguration.user_id == user_id)
            )
            if config is None or not config.is_enabled:
                logger.debug("postback.skipped", user_id=user_id, lead_id=lead_id, reason="disabled")
                return None

            template = config.url_for(target_status)
            if template is None:
                logger.debug(
                    "postback.skipped",
                    user_id=user_id,
                    lead_id=lead_id,
                    status=target_status,
                    reason="no_url",
                )
                return None

            row = (
                await session.execute(
                    select(Lead, Product.name)
                    .join(Product, Product.id == Lead.product_id)
                    .where(Lead.id == lead_id)
                )
            ).first()
            if row is None:
                logger.warning("postback.lead_missing", user_id=user_id, lead_id=lead_id)
                return None
            lead, product_name = row

            url = render_postback_url(
                template,
                PostbackVariables(
                    lead_id=lead.id,
                    status=target_status,
                    payout=_money(lead.payout),
                    publisher_id=lead.publisher_id or str(lead.user_id),
                    product=product_name or "Unknown Product",
                ),
            )
            payload = build_lead_payload(lead, product_name, target_status, previous_status)

            notification = PostbackNotification(
                user_id=user_id,
                lead_id=lead.id,
                url=url,
                target_status=target_status,
                status="pending",
                retry_count=0,
            )
            session.add(notification)
            await session.commit()

            return await self._deliver(session, notification, payload)

    async def send_test(self, user_id: int, url: str) -> NotificationRecord:
        template = validate_postback_url(url)
        final_url = render_postback_url(
            template,
            PostbackVariables(
                lead_id=TEST_LEAD_ID,
                status="sale",
                payout=_money(TEST_PAYOUT),
                publisher_id=str(user_id),
                product=TEST_PRODUCT,
            ),
        )

        async with self.session_factory() as session:
            notification = PostbackNotification(
                user_id=user_id,
                lead_id=None,
                url=final_url,
                target_status="sale",
                status="pending",
                retry_count=0,
            )
            session.add(notification)
            await session.commit()

            return await self._deliver(session, notification, build_test_payload(user_id))

    async def _attempt(self, url: str, payload: Dict[str, Any]) -> SendOutcome:
        try:
            return await self.sender.send(url, payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return SendOutcome(False, error_message=f"Unexpected error: {e}")

    async def _deliver(
        self,
        session: AsyncSession,
        notification: PostbackNotification,
        payload: Dict[str, Any],
    ) -> NotificationRecord:
        while True:
            outcome = await self._attempt(notification.url, payload)

            notification.http_status = outcome.http_status
            notification.response_body = _truncate(outcome.response_body, self.response_body_limit)

            if outcome.success:
                notification.status = "success"
                notification.error_message = None
                await session.commit()
                logger.info(
                    "postback.sent",
                    notification_id=notification.id,
                    lead_id=notification.lead_id,
                    status=notification.target_status,
                    http_status=outcome.http_status,
                    retry_count=notification.retry_count,
                )
                break

            notification.status = "failed"
            notification.error_message = _truncate(outcome.error_message, self.error_message_limit)

            if notification.retry_count >= self.max_retries:
                await session.commit()
                logger.warning(
                    "postback.failed",
                    notification_id=notification.id,
                    lead_id=notification.lead_id,
                    status=notification.target_status,
                    http_status=outcome.http_status,
                    error=notification.error_message,
                    retry_count=notification.retry_count,
                )
                break

            await session.commit()
            delay = self._delay_for(notification.retry_count + 1)
            logger.info(
                "postback.retry_scheduled",
                notification_id=notification.id,
                lead_id=notification.lead_id,
                attempt=notification.retry_count + 1,
                delay_seconds=delay,
                error=notification.error_message,
            )
            await self._sleep(delay)

            notification.retry_count += 1
            await session.commit()

        return NotificationRecord.from_model(notification)
