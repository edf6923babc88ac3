# backoffice/schemas/orders.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExternalOrderRequest(CamelModel):
    product_id: int = Field(ge=1)
    customer_name: str = Field(min_length=2, max_length=200)
    customer_phone: str = Field(min_length=5, max_length=32)
    quantity: int = Field(default=1, ge=1, le=1000)
    sale_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)

    customer_email: Optional[EmailStr] = None
    customer_address: Optional[str] = Field(default=None, max_length=500)
    postal_code: Optional[str] = Field(default=None, max_length=16)
    city: Optional[str] = Field(default=None, max_length=128)
    province: Optional[str] = Field(default=None, max_length=128)

    # Affiliate attribution
    publisher_id: Optional[str] = Field(default=None, max_length=100)
    subacc1: Optional[str] = Field(default=None, max_length=100)
    subacc2: Optional[str] = Field(default=None, max_length=100)
    subacc3: Optional[str] = Field(default=None, max_length=100)
    subacc4: Optional[str] = Field(default=None, max_length=100)

    notes: Optional[str] = Field(default=None, max_length=2000)


class OrderSummary(CamelModel):
    order_number: str
    status: str
    value: Decimal
    payout: Decimal
    created_at: datetime


class ExternalOrderResponse(CamelModel):
    success: bool = True
    order: OrderSummary


class OrderStatus(CamelModel):
    order_number: str
    status: str
    updated_at: datetime


class OrderStatusResponse(CamelModel):
    success: bool = True
    order: OrderStatus


class StatusUpdateRequest(CamelModel):
    status: Literal["hold", "sale", "rejected", "trash"]
    expected_version: Optional[int] = Field(default=None, ge=1)


class LeadOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    lead_number: str
    user_id: int
    product_id: int
    publisher_id: Optional[str] = None
    subacc1: Optional[str] = None
    subacc2: Optional[str] = None
    subacc3: Optional[str] = None
    subacc4: Optional[str] = None
    customer_name: str
    customer_phone: str
    customer_phone_formatted: Optional[str] = None
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    quantity: int
    value: Decimal
    payout: Decimal
    status: str
    version: int
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class LeadResponse(CamelModel):
    success: bool = True
    order: LeadOut


class DuplicateStatsResponse(CamelModel):
    success: bool = True
    leads_today: int
    unique_phones: int
