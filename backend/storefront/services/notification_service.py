"""Reservation event construction and best-effort dispatch."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from fastapi import BackgroundTasks

from storefront.core.timeutils import from_epoch_ms
from storefront.models import Reservation, RsvpStatus
from storefront.schemas.notification import ReservationEvent, ReservationEventType

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Routes reservation events to delivery channels."""

    async def route_notification(self, event: ReservationEvent) -> None:
        ...


class LoggingNotificationDispatcher:
    """Dispatcher used when no delivery channel is configured."""

    async def route_notification(self, event: ReservationEvent) -> None:
        logger.info(
            "Reservation %s event %s (%s -> %s)",
            event.rsvp_id,
            event.event_type.value,
            event.previous_status.value if event.previous_status else None,
            event.status.value,
        )


_default_dispatcher: NotificationDispatcher = LoggingNotificationDispatcher()


def get_notification_dispatcher() -> NotificationDispatcher:
    return _default_dispatcher


def build_reservation_event(
    reservation: Reservation,
    *,
    event_type: ReservationEventType,
    previous_status: RsvpStatus | None = None,
    actor_id: UUID | None = None,
    occurred_at: datetime | None = None,
) -> ReservationEvent:
    """Snapshot ``reservation`` with its related display names.

    Relationships must already be loaded on ``reservation``.
    """
    customer = reservation.customer
    return ReservationEvent(
        event_type=event_type,
        rsvp_id=reservation.id,
        store_id=reservation.store_id,
        store_name=reservation.store.name if reservation.store else None,
        customer_id=reservation.customer_id,
        customer_name=(customer.name if customer else None) or reservation.name,
        customer_email=(customer.email if customer else None) or reservation.email,
        customer_phone=(customer.phone if customer else None) or reservation.phone,
        rsvp_time=from_epoch_ms(reservation.rsvp_time),
        status=reservation.status,
        previous_status=previous_status,
        facility_name=reservation.facility.name if reservation.facility else None,
        service_staff_name=(
            reservation.service_staff.display_name if reservation.service_staff else None
        ),
        num_of_adult=reservation.num_of_adult,
        num_of_child=reservation.num_of_child,
        actor_id=actor_id,
        occurred_at=occurred_at or datetime.now(UTC),
    )


_pending_deliveries: set[asyncio.Task[bool]] = set()


async def deliver_event(
    dispatcher: NotificationDispatcher,
    event: ReservationEvent,
) -> bool:
    """Hand ``event`` to the dispatcher; failures are logged, never raised."""
    try:
        await dispatcher.route_notification(event)
    except Exception:  # noqa: BLE001
        logger.exception(
            "Notification dispatch failed for reservation %s (%s)",
            event.rsvp_id,
            event.event_type.value,
        )
        return False
    return True


def schedule_event(
    dispatcher: NotificationDispatcher | None,
    event: ReservationEvent,
    background_tasks: BackgroundTasks | None = None,
) -> bool:
    """Queue delivery of ``event`` without waiting for it.

    Inside a request the delivery runs as a FastAPI background task after the
    response is sent. Elsewhere it runs as a tracked task on the current loop;
    ``wait_for_pending_deliveries`` drains those.
    """
    if dispatcher is None:
        return False
    if background_tasks is not None:
        background_tasks.add_task(deliver_event, dispatcher, event)
        return True
    task = asyncio.get_running_loop().create_task(deliver_event(dispatcher, event))
    _pending_deliveries.add(task)
    task.add_done_callback(_pending_deliveries.discard)
    return True


async def wait_for_pending_deliveries() -> None:
    """Wait for every delivery queued on the running loop to finish."""
    loop = asyncio.get_running_loop()
    while True:
        pending = [
            task
            for task in _pending_deliveries
            if task.get_loop() is loop and not task.done()
        ]
        if not pending:
            return
        await asyncio.gather(*pending)
