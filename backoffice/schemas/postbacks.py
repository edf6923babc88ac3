# backoffice/schemas/postbacks.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from backoffice.schemas.orders import CamelModel


class PostbackConfigIn(CamelModel):
    is_enabled: bool = False
    sale_url: Optional[str] = Field(default=None, max_length=2000)
    hold_url: Optional[str] = Field(default=None, max_length=2000)
    rejected_url: Optional[str] = Field(default=None, max_length=2000)
    trash_url: Optional[str] = Field(default=None, max_length=2000)


class PostbackConfigOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    user_id: int
    is_enabled: bool
    sale_url: Optional[str] = None
    hold_url: Optional[str] = None
    rejected_url: Optional[str] = None
    trash_url: Optional[str] = None


class PostbackTestRequest(CamelModel):
    url: str = Field(min_length=1, max_length=2000)


class NotificationOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    user_id: int
    lead_id: Optional[int] = None
    url: str
    target_status: Optional[str] = None
    status: str
    http_status: Optional[int] = None
    response_body: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int
    created_at: datetime


class PostbackTestResponse(CamelModel):
    success: bool
    notification: NotificationOut


class NotificationPage(CamelModel):
    success: bool = True
    notifications: List[NotificationOut]
    total: int
    page: int
    page_size: int
