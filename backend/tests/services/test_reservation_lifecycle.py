"""Tests for reservation creation and status transitions."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from storefront.core.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from storefront.core.timeutils import to_epoch_ms
from storefront.db.session import get_sessionmaker
from storefront.models import (
    Customer,
    Reservation,
    RsvpBlacklist,
    RsvpStatus,
    StoreLedgerType,
    StoreOrder,
)
from storefront.schemas.business_hours import WEEKDAY_NAMES
from storefront.schemas.reservation import (
    ReservationCreate,
    ReservationUpdate,
    StaffReservationCreate,
)
from storefront.services import ledger_service, order_service, reservation_service
from storefront.services.notification_service import wait_for_pending_deliveries
from storefront.services.reservation_service import Actor

pytestmark = pytest.mark.asyncio


def _now() -> datetime:
    return datetime.now(UTC)


async def _book(session, seeded, actor: Actor, at: datetime, dispatcher=None, **extra) -> Reservation:
    return await reservation_service.create_reservation(
        session,
        store_id=seeded["store_id"],
        payload=ReservationCreate(facility_id=seeded["facility_id"], rsvp_time=at, **extra),
        actor=actor,
        now=_now(),
        dispatcher=dispatcher,
    )


async def test_customer_booking_starts_pending(
    reset_database, db_url: str, store_factory, slot, customer, dispatcher
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        reservation = await _book(
            session, seeded, customer, slot(), dispatcher, name="Quinn", num_of_adult=2
        )

        assert reservation.status == RsvpStatus.PENDING
        assert reservation.customer_id == customer.user_id
        assert reservation.facility_cost == Decimal("40.00")
        assert reservation.order_id is None
        assert reservation.check_in_code is not None
        assert len(reservation.check_in_code) == 8
        assert await session.get(Customer, customer.user_id) is not None

        await wait_for_pending_deliveries()
        assert dispatcher.types == ["created"]
        event = dispatcher.events[0]
        assert event.rsvp_id == reservation.id
        assert event.store_name == "Harbor Bistro"
        assert event.facility_name == "Window Table"
        assert event.num_of_adult == 2


async def test_booking_rules(
    reset_database, db_url: str, store_factory, slot, customer
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)

        with pytest.raises(ValidationError):
            await _book(session, seeded, customer, _now() - timedelta(hours=1))

        anonymous = Actor()
        with pytest.raises(ValidationError):
            await _book(session, seeded, anonymous, slot(), email="guest@example.com")

        with pytest.raises(ValidationError):
            await reservation_service.create_reservation(
                session,
                store_id=seeded["store_id"],
                payload=ReservationCreate(rsvp_time=slot()),
                actor=customer,
                now=_now(),
            )

        with pytest.raises(NotFoundError):
            await reservation_service.create_reservation(
                session,
                store_id=uuid.uuid4(),
                payload=ReservationCreate(facility_id=seeded["facility_id"], rsvp_time=slot()),
                actor=customer,
                now=_now(),
            )

        guest = await _book(
            session,
            seeded,
            anonymous,
            slot(),
            name="Guest",
            email="guest@example.com",
            phone="5551234567",
        )
        assert guest.customer_id is None
        assert guest.email == "guest@example.com"


async def test_blacklisted_customer_cannot_book(
    reset_database, db_url: str, store_factory, slot, customer
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        session.add(Customer(id=customer.user_id, name="Blocked"))
        await session.flush()
        session.add(RsvpBlacklist(store_id=seeded["store_id"], customer_id=customer.user_id))
        await session.commit()

        with pytest.raises(PermissionDeniedError):
            await _book(session, seeded, customer, slot())


async def test_overlapping_booking_conflicts(
    reset_database, db_url: str, store_factory, slot, customer
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        start = slot()
        await _book(session, seeded, customer, start)

        with pytest.raises(ConflictError) as excinfo:
            await _book(session, seeded, Actor(user_id=uuid.uuid4()), start + timedelta(minutes=30))
        assert excinfo.value.rule == "facility"

        later = await _book(session, seeded, customer, start + timedelta(hours=1))
        assert later.status == RsvpStatus.PENDING


async def test_facility_hours_enforced_on_booking(
    reset_database, db_url: str, store_factory, slot, customer
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        hours = json.dumps({day: "closed" for day in WEEKDAY_NAMES})
        seeded = await store_factory(session, facility_hours=hours)

        with pytest.raises(ConflictError) as excinfo:
            await _book(session, seeded, customer, slot())
        assert excinfo.value.rule == "facility_hours"


async def test_full_lifecycle(
    reset_database, db_url: str, store_factory, slot, customer, staff, dispatcher
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        reservation = await _book(session, seeded, customer, slot(), dispatcher)

        with pytest.raises(PermissionDeniedError):
            await reservation_service.confirm_reservation(
                session, reservation_id=reservation.id, actor=customer, now=_now()
            )
        with pytest.raises(StateError):
            await reservation_service.complete_reservation(
                session, reservation_id=reservation.id, actor=staff, now=_now()
            )

        confirmed = await reservation_service.confirm_reservation(
            session, reservation_id=reservation.id, actor=staff, now=_now(), dispatcher=dispatcher
        )
        assert confirmed.status == RsvpStatus.READY
        assert confirmed.confirmed_by_store is True

        result = await reservation_service.check_in(
            session,
            store_id=seeded["store_id"],
            actor=staff,
            now=_now(),
            check_in_code=reservation.check_in_code,
            dispatcher=dispatcher,
        )
        assert result.already_checked_in is False
        assert result.reservation.status == RsvpStatus.CHECKED_IN
        assert result.reservation.checked_in_at is not None
        assert result.reservation.arrive_time is not None

        again = await reservation_service.check_in(
            session,
            store_id=seeded["store_id"],
            actor=customer,
            now=_now(),
            reservation_id=reservation.id,
            dispatcher=dispatcher,
        )
        assert again.already_checked_in is True

        completed = await reservation_service.complete_reservation(
            session, reservation_id=reservation.id, actor=staff, now=_now(), dispatcher=dispatcher
        )
        assert completed.status == RsvpStatus.COMPLETED

        await wait_for_pending_deliveries()
        assert dispatcher.types == ["created", "status_changed", "status_changed", "completed"]
        assert [event.previous_status for event in dispatcher.events[1:]] == [
            RsvpStatus.PENDING,
            RsvpStatus.READY,
            RsvpStatus.CHECKED_IN,
        ]

        with pytest.raises(StateError):
            await reservation_service.cancel_reservation(
                session, reservation_id=reservation.id, actor=staff, now=_now()
            )


async def test_unknown_check_in_code(
    reset_database, db_url: str, store_factory, staff
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        with pytest.raises(NotFoundError):
            await reservation_service.check_in(
                session,
                store_id=seeded["store_id"],
                actor=staff,
                now=_now(),
                check_in_code="00000000",
            )


async def test_no_show_only_from_ready(
    reset_database, db_url: str, store_factory, slot, customer, staff, dispatcher
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        reservation = await _book(session, seeded, customer, slot())

        with pytest.raises(StateError):
            await reservation_service.mark_no_show(
                session, reservation_id=reservation.id, actor=staff, now=_now()
            )

        await reservation_service.confirm_reservation(
            session, reservation_id=reservation.id, actor=staff, now=_now()
        )
        no_show = await reservation_service.mark_no_show(
            session, reservation_id=reservation.id, actor=staff, now=_now(), dispatcher=dispatcher
        )
        assert no_show.status == RsvpStatus.NO_SHOW
        await wait_for_pending_deliveries()
        assert dispatcher.types == ["no_show"]

        with pytest.raises(StateError):
            await reservation_service.mark_no_show(
                session, reservation_id=reservation.id, actor=staff, now=_now()
            )


async def test_cancellation_rules(
    reset_database, db_url: str, store_factory, slot, customer, dispatcher
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        reservation = await _book(session, seeded, customer, slot(days=3))

        stranger = Actor(user_id=uuid.uuid4())
        with pytest.raises(PermissionDeniedError):
            await reservation_service.cancel_reservation(
                session, reservation_id=reservation.id, actor=stranger, now=_now()
            )

        result = await reservation_service.cancel_reservation(
            session,
            reservation_id=reservation.id,
            actor=customer,
            now=_now(),
            dispatcher=dispatcher,
        )
        assert result.reservation.status == RsvpStatus.CANCELLED
        assert result.refund_eligible is False
        await wait_for_pending_deliveries()
        assert dispatcher.types == ["cancelled"]

        with pytest.raises(StateError):
            await reservation_service.cancel_reservation(
                session, reservation_id=reservation.id, actor=customer, now=_now()
            )


async def test_store_can_forbid_customer_cancellation(
    reset_database, db_url: str, store_factory, slot, customer, staff
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session, can_cancel=False)
        reservation = await _book(session, seeded, customer, slot())

        with pytest.raises(PermissionDeniedError):
            await reservation_service.cancel_reservation(
                session, reservation_id=reservation.id, actor=customer, now=_now()
            )
        result = await reservation_service.cancel_reservation(
            session, reservation_id=reservation.id, actor=staff, now=_now()
        )
        assert result.reservation.status == RsvpStatus.CANCELLED


async def test_paid_cancellation_outside_window_is_refund_eligible(
    reset_database, db_url: str, store_factory, slot, customer, staff
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        reservation = await reservation_service.create_reservation_by_staff(
            session,
            store_id=seeded["store_id"],
            payload=StaffReservationCreate(
                facility_id=seeded["facility_id"],
                rsvp_time=slot(days=3),
                customer_id=customer.user_id,
                status=RsvpStatus.READY,
                already_paid=True,
            ),
            actor=staff,
            now=_now(),
        )

        result = await reservation_service.cancel_reservation(
            session, reservation_id=reservation.id, actor=customer, now=_now()
        )
        assert result.refund_eligible is True


async def test_staff_created_reservation(
    reset_database, db_url: str, store_factory, slot, customer, staff, dispatcher
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        payload = StaffReservationCreate(
            facility_id=seeded["facility_id"],
            rsvp_time=slot(),
            customer_id=customer.user_id,
            status=RsvpStatus.READY,
            duration_minutes=120,
            name="Drew",
        )

        with pytest.raises(PermissionDeniedError):
            await reservation_service.create_reservation_by_staff(
                session, store_id=seeded["store_id"], payload=payload, actor=customer, now=_now()
            )
        with pytest.raises(ValidationError):
            await reservation_service.create_reservation_by_staff(
                session,
                store_id=seeded["store_id"],
                payload=payload.model_copy(update={"status": RsvpStatus.COMPLETED}),
                actor=staff,
                now=_now(),
            )

        reservation = await reservation_service.create_reservation_by_staff(
            session,
            store_id=seeded["store_id"],
            payload=payload,
            actor=staff,
            now=_now(),
            dispatcher=dispatcher,
        )
        assert reservation.status == RsvpStatus.READY
        assert reservation.confirmed_by_store is True
        assert reservation.created_by == staff.user_id
        await wait_for_pending_deliveries()
        assert dispatcher.types == ["created"]


async def test_update_only_while_pending(
    reset_database, db_url: str, store_factory, slot, customer, staff
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        start = slot()
        reservation = await _book(session, seeded, customer, start)
        blocker = await _book(
            session, seeded, Actor(user_id=uuid.uuid4()), start + timedelta(hours=3)
        )

        updated = await reservation_service.update_reservation(
            session,
            reservation_id=reservation.id,
            payload=ReservationUpdate(
                rsvp_time=start + timedelta(minutes=30), num_of_child=2, message="Window please"
            ),
            actor=customer,
            now=_now(),
        )
        assert updated.rsvp_time == to_epoch_ms(start + timedelta(minutes=30))
        assert updated.num_of_child == 2
        assert updated.message == "Window please"

        with pytest.raises(ConflictError):
            await reservation_service.update_reservation(
                session,
                reservation_id=reservation.id,
                payload=ReservationUpdate(rsvp_time=start + timedelta(hours=3, minutes=30)),
                actor=customer,
                now=_now(),
            )
        with pytest.raises(PermissionDeniedError):
            await reservation_service.update_reservation(
                session,
                reservation_id=blocker.id,
                payload=ReservationUpdate(num_of_adult=3),
                actor=customer,
                now=_now(),
            )

        await reservation_service.confirm_reservation(
            session, reservation_id=reservation.id, actor=staff, now=_now()
        )
        with pytest.raises(StateError):
            await reservation_service.update_reservation(
                session,
                reservation_id=reservation.id,
                payload=ReservationUpdate(num_of_adult=4),
                actor=customer,
                now=_now(),
            )


async def test_delete_requires_owner_and_removes_unpaid_order(
    reset_database, db_url: str, store_factory, slot, customer, staff, dispatcher
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session, min_prepaid_percentage=50)
        reservation = await _book(session, seeded, customer, slot())
        order_id = reservation.order_id
        assert order_id is not None

        with pytest.raises(PermissionDeniedError):
            await reservation_service.delete_reservation(
                session, reservation_id=reservation.id, actor=staff, now=_now()
            )

        await reservation_service.delete_reservation(
            session,
            reservation_id=reservation.id,
            actor=customer,
            now=_now(),
            dispatcher=dispatcher,
        )
        await wait_for_pending_deliveries()
        assert dispatcher.types == ["deleted"]
        assert await session.scalar(select(Reservation.id).where(Reservation.id == reservation.id)) is None
        assert await session.scalar(select(StoreOrder.id).where(StoreOrder.id == order_id)) is None


async def test_paid_reservation_cannot_be_deleted(
    reset_database, db_url: str, store_factory, slot, customer
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session, min_prepaid_percentage=50)
        reservation = await _book(session, seeded, customer, slot())
        await order_service.mark_order_paid(
            session,
            order_id=reservation.order_id,
            now=_now(),
            payment_method_id=seeded["payment_method_id"],
        )

        with pytest.raises(StateError):
            await reservation_service.delete_reservation(
                session, reservation_id=reservation.id, actor=customer, now=_now()
            )


async def test_complete_posts_missing_ledger_entry(
    reset_database, db_url: str, store_factory, slot, customer, staff
) -> None:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session, min_prepaid_percentage=100)
        reservation = await _book(session, seeded, customer, slot())
        order = await session.get(StoreOrder, reservation.order_id)
        order.is_paid = True
        order.paid_at = _now()
        order.payment_method_id = seeded["payment_method_id"]
        reservation.status = RsvpStatus.READY
        await session.commit()

        await reservation_service.complete_reservation(
            session, reservation_id=reservation.id, actor=staff, now=_now()
        )

        entry = await ledger_service.find_entry_for_order(session, order_id=order.id)
        assert entry is not None
        assert entry.type == int(StoreLedgerType.HOLD_BY_PLATFORM)
        assert entry.amount == Decimal("40.00")


async def test_failing_dispatcher_does_not_fail_transition(
    reset_database, db_url: str, store_factory, slot, customer
) -> None:
    class _Broken:
        async def route_notification(self, event) -> None:
            raise RuntimeError("smtp down")

    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        seeded = await store_factory(session)
        reservation = await _book(session, seeded, customer, slot(), _Broken())
        assert reservation.status == RsvpStatus.PENDING
        await wait_for_pending_deliveries()
