"""Schemas for store ledger entries and payment outcomes."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntryRead(BaseModel):
    id: uuid.UUID
    store_id: uuid.UUID
    order_id: uuid.UUID | None = None
    sequence: int
    amount: Decimal
    fee: Decimal
    platform_fee: Decimal
    currency: str
    type: int
    balance: Decimal
    description: str
    note: str | None = None
    availability: datetime
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerBalanceRead(BaseModel):
    store_id: uuid.UUID
    balance: Decimal
    entries: int


class OrderPaidRequest(BaseModel):
    """Notification from the payment boundary that an order settled."""

    payment_method_id: uuid.UUID | None = None
    paid_at: datetime | None = None


class OrderPaidRead(BaseModel):
    order_id: uuid.UUID
    already_processed: bool
    reservation_id: uuid.UUID | None = None
    ledger_entry: LedgerEntryRead | None = None
    payment_cost: Decimal = Field(default=Decimal("0"))
