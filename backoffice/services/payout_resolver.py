from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.exceptions import ConflictError, NoPayoutConfiguredError, NotFoundError
from backoffice.core.logging import get_structlog_logger
from backoffice.models.payout_exception import PayoutException
from backoffice.models.product import Product
from backoffice.models.user import User

logger = get_structlog_logger(__name__)


class PayoutLevel(Enum):
    PUBLISHER = "publisher"
    AFFILIATE = "affiliate"
    PRODUCT_DEFAULT = "product_default"


@dataclass(frozen=True)
class ResolvedPayout:
    amount: Decimal
    level: PayoutLevel
    exception_id: Optional[int] = None


def _clean_publisher(publisher_id: Optional[str]) -> Optional[str]:
    if publisher_id is None:
        return None
    publisher_id = publisher_id.strip()
    return publisher_id or None


async def resolve_payout_detail(
    session: AsyncSession,
    product_id: int,
    user_id: int,
    publisher_id: Optional[str] = None,
) -> ResolvedPayout:
    """Resolve the payout through the override hierarchy, first match wins.

    1. publisher override ``(product, user, publisher)``
    2. affiliate override ``(product, user, publisher IS NULL)``
    3. the product's ``payout_po``

    Read-only, so concurrent calls against the same table state agree.
    """
    publisher_id = _clean_publisher(publisher_id)

    if publisher_id is not None:
        row = (
            await session.execute(
                select(PayoutException.id, PayoutException.payout_amount).where(
                    PayoutException.product_id == product_id,
                    PayoutException.user_id == user_id,
                    PayoutException.publisher_id == publisher_id,
                )
            )
        ).first()
        if row is not None:
            return ResolvedPayout(Decimal(row.payout_amount), PayoutLevel.PUBLISHER, row.id)

    row = (
        await session.execute(
            select(PayoutException.id, PayoutException.payout_amount).where(
                PayoutException.product_id == product_id,
                PayoutException.user_id == user_id,
                PayoutException.publisher_id.is_(None),
            )
        )
    ).first()
    if row is not None:
        return ResolvedPayout(Decimal(row.payout_amount), PayoutLevel.AFFILIATE, row.id)

    product = (
        await session.execute(select(Product.id, Product.payout_po).where(Product.id == product_id))
    ).first()
    if product is None:
        raise NotFoundError(message="Product not found", details={"productId": product_id})

    if product.payout_po is None:
        logger.error(
            "payout.no_default",
            product_id=product_id,
            user_id=user_id,
            publisher_id=publisher_id,
        )
        raise NoPayoutConfiguredError(details={"productId": product_id})

    return ResolvedPayout(Decimal(product.payout_po), PayoutLevel.PRODUCT_DEFAULT)


async def resolve_payout(
    session: AsyncSession,
    product_id: int,
    user_id: int,
    publisher_id: Optional[str] = None,
) -> Decimal:
    resolved = await resolve_payout_detail(session, product_id, user_id, publisher_id)
    return resolved.amount


async def list_payout_exceptions(
    session: AsyncSession,
    *,
    product_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> List[PayoutException]:
    stmt = select(PayoutException).order_by(PayoutException.product_id, PayoutException.user_id, PayoutException.id)
    if product_id is not None:
        stmt = stmt.where(PayoutException.product_id == product_id)
    if user_id is not None:
        stmt = stmt.where(PayoutException.user_id == user_id)
    return list((await session.scalars(stmt)).all())


async def create_payout_exception(
    session: AsyncSession,
    *,
    product_id: int,
    user_id: int,
    payout_amount: Decimal,
    publisher_id: Optional[str] = None,
) -> PayoutException:
    """Add an override; one per (product, user, publisher-or-none)."""
    publisher_id = _clean_publisher(publisher_id)

    if await session.get(Product, product_id) is None:
        raise NotFoundError(message="Product not found", details={"productId": product_id})
    if await session.get(User, user_id) is None:
        raise NotFoundError(message="User not found", details={"userId": user_id})

    scope = [PayoutException.product_id == product_id, PayoutException.user_id == user_id]
    scope.append(
        PayoutException.publisher_id.is_(None)
        if publisher_id is None
        else PayoutException.publisher_id == publisher_id
    )
    existing = await session.scalar(select(PayoutException.id).where(*scope))
    if existing is not None:
        raise ConflictError(
            message="A payout exception already exists for this product, user and publisher",
            details={"existingId": existing},
        )

    exception = PayoutException(
        product_id=product_id,
        user_id=user_id,
        publisher_id=publisher_id,
        payout_amount=payout_amount,
    )
    session.add(exception)
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise ConflictError(message="A payout exception already exists for this product, user and publisher") from e

    logger.info(
        "payout_exception.created",
        exception_id=exception.id,
        product_id=product_id,
        user_id=user_id,
        publisher_id=publisher_id,
        payout_amount=str(payout_amount),
    )
    return exception


async def delete_payout_exception(session: AsyncSession, exception_id: int) -> None:
    exception = await session.get(PayoutException, exception_id)
    if exception is None:
        raise NotFoundError(message="Payout exception not found", details={"id": exception_id})

    await session.delete(exception)
    await session.commit()
    logger.info("payout_exception.deleted", exception_id=exception_id)
