"""Store orders settled through the payment boundary."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db.base import Base
from storefront.models.mixins import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover - typing only
    from storefront.models.payment_method import PaymentMethod
    from storefront.models.store import Store


class OrderType(str, enum.Enum):
    """What an order pays for."""

    STANDARD = "standard"
    RSVP = "rsvp"
    CREDIT_RECHARGE = "credit_recharge"


class OrderStatus(str, enum.Enum):
    """Fulfilment state of an order."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    VOIDED = "voided"


class PaymentStatus(str, enum.Enum):
    """Settlement state of an order."""

    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class StoreOrder(TimestampMixin, Base):
    """An order placed at a store."""

    __tablename__ = "store_orders"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL"), nullable=True
    )
    order_type: Mapped[OrderType] = mapped_column(
        Enum(OrderType), nullable=False, default=OrderType.STANDARD
    )
    order_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="usd")
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    payment_method_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("payment_methods.id", ondelete="SET NULL"), nullable=True
    )
    payment_cost: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    order_status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    note: Mapped[str | None] = mapped_column(String(1024))

    store: Mapped["Store"] = relationship("Store")
    payment_method: Mapped["PaymentMethod | None"] = relationship("PaymentMethod")
