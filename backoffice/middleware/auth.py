from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from uuid import uuid4

from fastapi import Depends, Request
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.config import settings
from backoffice.core.exceptions import AuthenticationError, AuthorizationError
from backoffice.core.logging import get_structlog_logger
from backoffice.db.session import get_session
from backoffice.models.user import STAFF_ROLES, User

logger = get_structlog_logger(__name__)


class TokenManager:
    """Manager for JWT token operations."""

    @staticmethod
    def create_access_token(
        data: Dict,
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """Create a new access token."""
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))

        to_encode.update({
            "exp": expire,
            "iat": now,
            "jti": str(uuid4()),
            "type": "access",
        })

        return jwt.encode(
            to_encode,
            settings.secret_key,
            algorithm=settings.algorithm,
        )

    @staticmethod
    def verify_token(token: str) -> Optional[Dict]:
        """Verify and decode a token; None when invalid or expired."""
        try:
            return jwt.decode(
                token,
                settings.secret_key,
                algorithms=[settings.algorithm],
                options={"verify_aud": False},
            )
        except JWTError:
            return None


def _extract_token(request: Request) -> Optional[str]:
    """Extract token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    # Support both "Bearer <token>" and "Token <token>" formats
    parts = auth_header.split()
    if len(parts) != 2:
        return None

    scheme, token = parts
    if scheme.lower() not in ["bearer", "token"]:
        return None

    return token


async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the bearer token's subject to an active user."""
    token = _extract_token(request)
    if not token:
        logger.warning("auth.missing_token", path=request.url.path, method=request.method)
        raise AuthenticationError(message="Authentication token is required")

    payload = TokenManager.verify_token(token)
    if payload is None or payload.get("type") != "access":
        logger.warning("auth.invalid_token", path=request.url.path)
        raise AuthenticationError(message="Invalid authentication token")

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationError(message="Invalid authentication token") from None

    user = await session.get(User, user_id)
    if user is None:
        logger.warning("auth.unknown_user", path=request.url.path, user_id=user_id)
        raise AuthenticationError(message="User not found")
    if not user.is_active:
        logger.warning("auth.inactive_user", path=request.url.path, user_id=user_id)
        raise AuthorizationError(message="User account is inactive", details={"status": user.status})

    request.state.user_id = user.id
    logger.debug("auth.authenticated", user_id=user.id, role=user.role, path=request.url.path)
    return user


def require_roles(*roles: str):
    """Dependency factory restricting a route to the given roles."""

    async def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise AuthorizationError(
                message=f"Requires one of roles: {', '.join(roles)}",
                details={"role": user.role, "allowedRoles": list(roles)},
            )
        return user

    return _check


require_staff = require_roles(*STAFF_ROLES)
require_admin_or_moderator = require_roles("admin", "moderator")


async def get_api_user(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the ``X-API-Key`` header to the affiliate that owns it."""
    api_key = request.headers.get("X-API-Key")
    if not api_key:
        logger.warning("auth.missing_api_key", path=request.url.path)
        raise AuthenticationError(message="API key is required")

    user = await session.scalar(select(User).where(User.api_key == api_key))
    if user is None:
        logger.warning("auth.invalid_api_key", path=request.url.path)
        raise AuthenticationError(message="Invalid API key")
    if not user.is_active:
        logger.warning("auth.inactive_api_user", path=request.url.path, user_id=user.id)
        raise AuthorizationError(message="User account is not active", details={"status": user.status})

    request.state.user_id = user.id
    return user
