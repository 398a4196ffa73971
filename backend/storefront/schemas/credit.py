"""Schemas for customer credit top-ups."""

from __future__ import annotations

import uuid
from decimal import Decimal

from pydantic import BaseModel

from storefront.schemas.ledger import LedgerEntryRead


class CreditTopUpRead(BaseModel):
    order_id: uuid.UUID
    already_processed: bool
    credit_amount: Decimal = Decimal("0")
    bonus_amount: Decimal = Decimal("0")
    customer_balance: Decimal | None = None
    ledger_entry: LedgerEntryRead | None = None
