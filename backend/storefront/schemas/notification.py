"""Reservation events handed to the notification dispatcher."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from storefront.models.reservation import RsvpStatus


class ReservationEventType(str, enum.Enum):
    """Kinds of reservation change a dispatcher can route."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    CANCELLED = "cancelled"
    DELETED = "deleted"
    NO_SHOW = "no_show"
    COMPLETED = "completed"


class ReservationEvent(BaseModel):
    """Denormalized snapshot of a reservation change."""

    event_type: ReservationEventType
    rsvp_id: uuid.UUID
    store_id: uuid.UUID
    store_name: str | None = None
    customer_id: uuid.UUID | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    rsvp_time: datetime
    status: RsvpStatus
    previous_status: RsvpStatus | None = None
    facility_name: str | None = None
    service_staff_name: str | None = None
    num_of_adult: int = 1
    num_of_child: int = 0
    actor_id: uuid.UUID | None = None
    occurred_at: datetime

    model_config = ConfigDict(frozen=True)
