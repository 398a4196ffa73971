"""Bookable facilities, service staff and staff schedules."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db.base import Base
from storefront.models.mixins import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover - typing only
    from storefront.models.customer import Customer
    from storefront.models.store import Store


class StoreFacility(TimestampMixin, Base):
    """A table, room or other bookable resource of a store."""

    __tablename__ = "store_facilities"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    default_duration_minutes: Mapped[int | None] = mapped_column(Integer)
    default_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    business_hours: Mapped[str | None] = mapped_column(Text)

    store: Mapped["Store"] = relationship("Store", back_populates="facilities")


class ServiceStaff(TimestampMixin, Base):
    """A staff member who can be booked alongside a facility."""

    __tablename__ = "service_staff"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL"), nullable=True
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    default_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    user: Mapped["Customer | None"] = relationship("Customer")
    schedules: Mapped[list["ServiceStaffFacilitySchedule"]] = relationship(
        "ServiceStaffFacilitySchedule",
        back_populates="service_staff",
        cascade="all, delete-orphan",
    )


class ServiceStaffFacilitySchedule(TimestampMixin, Base):
    """Working hours of a staff member, optionally bound to one facility."""

    __tablename__ = "service_staff_facility_schedules"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
    )
    service_staff_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("service_staff.id", ondelete="CASCADE"), nullable=False
    )
    facility_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("store_facilities.id", ondelete="CASCADE"), nullable=True
    )
    business_hours: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    effective_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    effective_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    service_staff: Mapped[ServiceStaff] = relationship(
        "ServiceStaff", back_populates="schedules"
    )
