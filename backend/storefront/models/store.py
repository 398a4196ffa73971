"""Store and store-level reservation configuration."""

from __future__ import annotations

import enum
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db.base import Base
from storefront.models.mixins import TimestampMixin

if TYPE_CHECKING:  # pragma: no cover - typing only
    from storefront.models.facility import StoreFacility


class StoreLevel(enum.IntEnum):
    """Subscription level of a store."""

    FREE = 1
    PRO = 2
    MULTI = 3


class Store(TimestampMixin, Base):
    """A tenant storefront."""

    __tablename__ = "stores"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    level: Mapped[int] = mapped_column(
        Integer, nullable=False, default=int(StoreLevel.FREE)
    )
    default_timezone: Mapped[str] = mapped_column(
        String(64), nullable=False, default="UTC"
    )
    default_currency: Mapped[str] = mapped_column(
        String(8), nullable=False, default="usd"
    )
    credit_exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(12, 4), nullable=False, default=Decimal("0")
    )
    use_customer_credit: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    uses_platform_gateway: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    rsvp_settings: Mapped["RsvpSettings | None"] = relationship(
        "RsvpSettings", back_populates="store", uselist=False
    )
    facilities: Mapped[list["StoreFacility"]] = relationship(
        "StoreFacility", back_populates="store"
    )

    @property
    def is_pro(self) -> bool:
        return (self.level or StoreLevel.FREE) > StoreLevel.FREE


class RsvpSettings(TimestampMixin, Base):
    """Reservation policy for a store."""

    __tablename__ = "rsvp_settings"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    accept_reservation: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    single_service_mode: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    default_duration_minutes: Mapped[int | None] = mapped_column(Integer)
    min_prepaid_percentage: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    no_need_to_confirm: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    can_cancel: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    cancel_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=24)
    can_reserve_before_hours: Mapped[int | None] = mapped_column(Integer)
    can_reserve_after_hours: Mapped[int | None] = mapped_column(Integer)

    store: Mapped[Store] = relationship("Store", back_populates="rsvp_settings")


class RsvpBlacklist(TimestampMixin, Base):
    """Customers barred from booking at a store."""

    __tablename__ = "rsvp_blacklist"
    __table_args__ = (
        UniqueConstraint("store_id", "customer_id", name="uq_rsvp_blacklist_customer"),
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
    reason: Mapped[str | None] = mapped_column(String(255))
