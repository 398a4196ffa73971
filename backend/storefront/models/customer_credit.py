"""Customer credit (points) balances, ledger and top-up bonus rules."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.base import Base
from storefront.models.mixins import TimestampMixin, utcnow


class CustomerCreditLedgerType(str, enum.Enum):
    """Reasons customer credit ledger entries are created."""

    TOPUP = "topup"
    BONUS = "bonus"
    HOLD = "hold"
    SPEND = "spend"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class CustomerCredit(TimestampMixin, Base):
    """Running credit balance of one customer at one store."""

    __tablename__ = "customer_credits"
    __table_args__ = (
        UniqueConstraint("store_id", "customer_id", name="uq_customer_credits_owner"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("customers.id", ondelete="CASCADE"), nullable=False
    )
    point: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )


class CustomerCreditLedger(Base):
    """Ledger of customer credit movements."""

    __tablename__ = "customer_credit_ledger"
    __table_args__ = (
        Index(
            "ux_customer_credit_ledger_reference_type",
            "reference_id",
            "type",
            unique=True,
            sqlite_where=text("reference_id IS NOT NULL"),
            postgresql_where=text("reference_id IS NOT NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("customers.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    balance: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    type: Mapped[CustomerCreditLedgerType] = mapped_column(
        Enum(CustomerCreditLedgerType), nullable=False
    )
    reference_id: Mapped[str | None] = mapped_column(String(64))
    note: Mapped[str | None] = mapped_column(String(255))
    creator_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )


class CreditBonusRule(TimestampMixin, Base):
    """Extra credit granted when a top-up reaches a threshold."""

    __tablename__ = "credit_bonus_rules"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    threshold: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    bonus: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
