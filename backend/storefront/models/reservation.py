"""Reservation (RSVP) models."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db.base import Base
from storefront.models.mixins import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover - typing only
    from storefront.models.customer import Customer
    from storefront.models.facility import ServiceStaff, StoreFacility
    from storefront.models.order import StoreOrder
    from storefront.models.store import Store


class RsvpStatus(str, enum.Enum):
    """Lifecycle states for reservations."""

    PENDING = "pending"
    READY_TO_CONFIRM = "ready_to_confirm"
    READY = "ready"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


TERMINAL_STATUSES = frozenset(
    {RsvpStatus.COMPLETED, RsvpStatus.CANCELLED, RsvpStatus.NO_SHOW}
)


class Reservation(TimestampMixin, Base):
    """A booked time slot at a store, optionally at a facility with a staff member."""

    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("num_of_adult >= 1", name="ck_reservations_adults"),
        CheckConstraint("num_of_child >= 0", name="ck_reservations_children"),
        Index("ix_reservations_store_time", "store_id", "rsvp_time"),
        Index(
            "ux_reservations_store_check_in_code",
            "store_id",
            "check_in_code",
            unique=True,
            sqlite_where=text("check_in_code IS NOT NULL"),
            postgresql_where=text("check_in_code IS NOT NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL"), nullable=True
    )
    facility_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("store_facilities.id", ondelete="SET NULL"), nullable=True
    )
    service_staff_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("service_staff.id", ondelete="SET NULL"), nullable=True
    )
    order_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("store_orders.id", ondelete="SET NULL"), nullable=True
    )
    num_of_adult: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    num_of_child: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rsvp_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    arrive_time: Mapped[int | None] = mapped_column(BigInteger)
    message: Mapped[str | None] = mapped_column(String(1024))
    facility_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    service_staff_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    pricing_rule_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    status: Mapped[RsvpStatus] = mapped_column(
        Enum(RsvpStatus), nullable=False, default=RsvpStatus.PENDING
    )
    already_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confirmed_by_store: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    confirmed_by_customer: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    check_in_code: Mapped[str | None] = mapped_column(String(16))
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    name: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(32))
    created_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    store: Mapped["Store"] = relationship("Store")
    customer: Mapped["Customer | None"] = relationship("Customer")
    facility: Mapped["StoreFacility | None"] = relationship("StoreFacility")
    service_staff: Mapped["ServiceStaff | None"] = relationship("ServiceStaff")
    order: Mapped["StoreOrder | None"] = relationship("StoreOrder")
