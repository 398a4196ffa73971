"""Tests for deferred reservation event delivery."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime

import pytest
from fastapi import BackgroundTasks

from storefront.db.session import get_sessionmaker
from storefront.models import RsvpStatus
from storefront.schemas.notification import ReservationEvent, ReservationEventType
from storefront.schemas.reservation import ReservationCreate
from storefront.services import reservation_service
from storefront.services.notification_service import (
    build_reservation_event,
    schedule_event,
    wait_for_pending_deliveries,
)

pytestmark = pytest.mark.asyncio


@dataclass
class GatedDispatcher:
    """Blocks every delivery until ``release`` is set."""

    release: asyncio.Event = field(default_factory=asyncio.Event)
    events: list[ReservationEvent] = field(default_factory=list)

    async def route_notification(self, event: ReservationEvent) -> None:
        await self.release.wait()
        self.events.append(event)


async def test_slow_dispatcher_does_not_block_transition(
    reset_database, db_url: str, store_factory, slot, customer, staff
) -> None:
    gated = GatedDispatcher()
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session, no_need_to_confirm=True)
        reservation = await reservation_service.create_reservation(
            session,
            store_id=seeded["store_id"],
            payload=ReservationCreate(facility_id=seeded["facility_id"], rsvp_time=slot()),
            actor=customer,
            now=datetime.now(UTC),
            dispatcher=gated,
        )
        await reservation_service.confirm_reservation(
            session,
            reservation_id=reservation.id,
            actor=staff,
            now=datetime.now(UTC),
            dispatcher=gated,
        )

        result = await asyncio.wait_for(
            reservation_service.check_in(
                session,
                store_id=seeded["store_id"],
                actor=staff,
                now=datetime.now(UTC),
                reservation_id=reservation.id,
                dispatcher=gated,
            ),
            timeout=1.0,
        )
        assert result.reservation.status == RsvpStatus.CHECKED_IN
        assert gated.events == []

        gated.release.set()
        await wait_for_pending_deliveries()
        assert [event.event_type.value for event in gated.events] == [
            "created",
            "status_changed",
            "status_changed",
        ]
        assert gated.events[-1].status == RsvpStatus.CHECKED_IN


async def test_request_deliveries_run_as_background_tasks(
    reset_database, db_url: str, store_factory, slot, customer, dispatcher
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        reservation = await reservation_service.create_reservation(
            session,
            store_id=seeded["store_id"],
            payload=ReservationCreate(facility_id=seeded["facility_id"], rsvp_time=slot()),
            actor=customer,
            now=datetime.now(UTC),
        )
        await wait_for_pending_deliveries()
        event = build_reservation_event(
            reservation,
            event_type=ReservationEventType.CANCELLED,
            previous_status=RsvpStatus.PENDING,
            actor_id=customer.user_id,
            occurred_at=datetime.now(UTC),
        )

    tasks = BackgroundTasks()
    assert schedule_event(dispatcher, event, tasks) is True
    assert len(tasks.tasks) == 1
    assert dispatcher.events == []

    await tasks()
    assert dispatcher.types == ["cancelled"]


async def test_no_dispatcher_schedules_nothing(
    reset_database, db_url: str, store_factory, slot, customer
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        reservation = await reservation_service.create_reservation(
            session,
            store_id=seeded["store_id"],
            payload=ReservationCreate(facility_id=seeded["facility_id"], rsvp_time=slot()),
            actor=customer,
            now=datetime.now(UTC),
        )
        await wait_for_pending_deliveries()
        event = build_reservation_event(
            reservation, event_type=ReservationEventType.CREATED
        )

    tasks = BackgroundTasks()
    assert schedule_event(None, event, tasks) is False
    assert tasks.tasks == []
