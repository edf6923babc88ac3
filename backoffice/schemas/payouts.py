# backoffice/schemas/payouts.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from backoffice.schemas.orders import CamelModel


class PayoutExceptionCreate(CamelModel):
    product_id: int = Field(ge=1)
    user_id: int = Field(ge=1)
    publisher_id: Optional[str] = Field(default=None, max_length=100)
    payout_amount: Decimal = Field(ge=0, max_digits=10, decimal_places=2)


class PayoutExceptionOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    product_id: int
    user_id: int
    publisher_id: Optional[str] = None
    payout_amount: Decimal
    created_at: datetime


class PayoutExceptionList(CamelModel):
    success: bool = True
    exceptions: List[PayoutExceptionOut]


class PayoutResolution(CamelModel):
    success: bool = True
    product_id: int
    user_id: int
    publisher_id: Optional[str] = None
    payout: Decimal
    level: str
