# backoffice/models/user.py
from __future__ import annotations

from sqlalchemy import Column, Enum, String

from backoffice.db.base import Base

STAFF_ROLES = ("admin", "moderator", "finance")


class User(Base):
    __tablename__ = "users"

    username = Column(String(100), nullable=False, unique=True)
    email = Column(String(200), nullable=True)
    full_name = Column(String(200), nullable=True)

    role = Column(
        Enum("admin", "moderator", "finance", "user", name="user_role"),
        nullable=False,
        default="user",
        server_default="user",
    )
    status = Column(
        Enum("active", "inactive", "pending", name="user_status"),
        nullable=False,
        default="pending",
        server_default="pending",
    )

    # Key presented in X-API-Key by the affiliate's systems
    api_key = Column(String(128), nullable=True, unique=True)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
