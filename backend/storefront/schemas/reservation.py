"""Pydantic schemas for reservations."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from storefront.models.reservation import RsvpStatus


class ReservationBase(BaseModel):
    """Shared reservation fields."""

    facility_id: uuid.UUID | None = None
    service_staff_id: uuid.UUID | None = None
    rsvp_time: datetime
    arrive_time: datetime | None = None
    num_of_adult: int = Field(default=1, ge=1)
    num_of_child: int = Field(default=0, ge=0)
    message: str | None = Field(default=None, max_length=1024)
    facility_cost: Decimal | None = Field(default=None, ge=Decimal("0"))
    service_staff_cost: Decimal | None = Field(default=None, ge=Decimal("0"))
    pricing_rule_id: uuid.UUID | None = None


class ReservationCreate(ReservationBase):
    """Payload for a customer booking."""

    name: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=32)
    use_credit: bool = True


class StaffReservationCreate(ReservationCreate):
    """Payload for a booking entered by store staff."""

    customer_id: uuid.UUID | None = None
    status: RsvpStatus = RsvpStatus.PENDING
    duration_minutes: int | None = Field(default=None, gt=0)
    already_paid: bool = False


class ReservationUpdate(BaseModel):
    """Mutable reservation fields while the booking is pending."""

    facility_id: uuid.UUID | None = None
    service_staff_id: uuid.UUID | None = None
    rsvp_time: datetime | None = None
    arrive_time: datetime | None = None
    num_of_adult: int | None = Field(default=None, ge=1)
    num_of_child: int | None = Field(default=None, ge=0)
    message: str | None = Field(default=None, max_length=1024)
    facility_cost: Decimal | None = Field(default=None, ge=Decimal("0"))
    service_staff_cost: Decimal | None = Field(default=None, ge=Decimal("0"))


class ReservationRead(BaseModel):
    """Serialized reservation representation."""

    id: uuid.UUID
    store_id: uuid.UUID
    customer_id: uuid.UUID | None = None
    facility_id: uuid.UUID | None = None
    service_staff_id: uuid.UUID | None = None
    order_id: uuid.UUID | None = None
    rsvp_time: int
    arrive_time: int | None = None
    num_of_adult: int
    num_of_child: int
    message: str | None = None
    facility_cost: Decimal | None = None
    service_staff_cost: Decimal | None = None
    status: RsvpStatus
    already_paid: bool
    confirmed_by_store: bool
    confirmed_by_customer: bool
    check_in_code: str | None = None
    checked_in_at: datetime | None = None
    paid_at: datetime | None = None
    name: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CheckInRequest(BaseModel):
    """Check in by reservation id or by the guest's check-in code."""

    reservation_id: uuid.UUID | None = None
    check_in_code: str | None = Field(default=None, min_length=4, max_length=16)

    @model_validator(mode="after")
    def _one_key(self) -> "CheckInRequest":
        if self.reservation_id is None and not self.check_in_code:
            raise ValueError("reservation_id or check_in_code is required")
        return self


class CheckInRead(BaseModel):
    reservation: ReservationRead
    already_checked_in: bool


class CancelRead(BaseModel):
    reservation: ReservationRead
    refund_eligible: bool
    refunded_credit: Decimal | None = None


class CleanupRead(BaseModel):
    """Outcome of removing stale unpaid reservations."""

    deleted: int
    deleted_orders: int
