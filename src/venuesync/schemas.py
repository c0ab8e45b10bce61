"""Payload schemas for entity create/update requests.

Validated locally before a mutation is sent so forms get field messages
without a round-trip. The server remains the authority and may still answer
with a 422.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class EventCreate(_Payload):
    title: str = Field(min_length=1, max_length=200)
    date: dt.date
    start_time: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    end_time: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    venue_area: str | None = None
    capacity: int = Field(gt=0, le=10_000)
    ticket_price: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    status: Literal["upcoming", "completed", "cancelled"] = "upcoming"
    description: str | None = Field(default=None, max_length=2000)

    @field_validator("end_time")
    @classmethod
    def _ends_after_start(cls, value: str | None, info: ValidationInfo) -> str | None:
        start = info.data.get("start_time")
        if value is not None and start is not None and value <= start:
            raise ValueError("End time must be after start time")
        return value


class TransactionCreate(_Payload):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    category: str = Field(min_length=1, max_length=100)
    type: Literal["income", "expense", "transfer", "adjustment", "refund"] = "income"
    currency: str = Field(default="USD", min_length=3, max_length=3)
    description: str | None = Field(default=None, max_length=500)
    date: dt.date | None = None
    reference: str | None = Field(default=None, max_length=100)
    tags: list[str] = Field(default_factory=list, max_length=20)


class InventoryCategoryCreate(_Payload):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    color: str | None = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$")
    is_active: bool = True


class InventoryItemCreate(_Payload):
    name: str = Field(min_length=1, max_length=200)
    sku: str | None = Field(default=None, max_length=50)
    category_id: str | None = None
    unit: Literal[
        "piece", "box", "case", "bottle", "kg", "lb", "liter", "gallon", "meter", "yard"
    ] = "piece"
    stock: int = Field(default=0, ge=0)
    reorder_level: int = Field(default=0, ge=0)
    unit_cost: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    supplier: str | None = Field(default=None, max_length=200)
    location: str | None = Field(default=None, max_length=100)


class InventoryTransactionCreate(_Payload):
    item_id: str = Field(min_length=1)
    type: Literal["in", "out", "adjustment", "transfer", "damaged", "expired"]
    quantity: int
    reason: str | None = Field(default=None, max_length=200)
    notes: str | None = Field(default=None, max_length=1000)

    @field_validator("quantity")
    @classmethod
    def _non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("Quantity must not be zero")
        return value


class CustomerCreate(_Payload):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=254)
    phone: str | None = Field(default=None, pattern=r"^\+?[0-9 ()-]{7,20}$")
    notes: str | None = Field(default=None, max_length=2000)
    tags: list[str] = Field(default_factory=list, max_length=20)


__all__ = [
    "CustomerCreate",
    "EventCreate",
    "InventoryCategoryCreate",
    "InventoryItemCreate",
    "InventoryTransactionCreate",
    "TransactionCreate",
]
