"""Reservation lifecycle: creation, edits and guarded status transitions."""

from __future__ import annotations

import logging
import math
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Final
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.errors import (
    ConflictError,
    ConsistencyError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from storefront.core.settings import get_scheduling_settings
from storefront.core.timeutils import coerce_utc, to_epoch_ms
from storefront.models import (
    Customer,
    CustomerCreditLedgerType,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
    Reservation,
    RsvpBlacklist,
    RsvpSettings,
    RsvpStatus,
    ServiceStaff,
    Store,
    StoreFacility,
    StoreOrder,
    TERMINAL_STATUSES,
)
from storefront.schemas.notification import ReservationEventType
from storefront.schemas.reservation import (
    ReservationCreate,
    ReservationUpdate,
    StaffReservationCreate,
)
from storefront.services import customer_credit_service, ledger_service
from storefront.services.availability_service import (
    resolve_duration_minutes,
    validate_facility_business_hours,
    validate_rsvp_availability,
    validate_staff_business_hours,
)
from storefront.services.notification_service import (
    NotificationDispatcher,
    build_reservation_event,
    get_notification_dispatcher,
    schedule_event,
)

logger = logging.getLogger(__name__)

_ALLOWED_STATUS_TRANSITIONS: Final[dict[RsvpStatus, set[RsvpStatus]]] = {
    RsvpStatus.PENDING: {
        RsvpStatus.READY_TO_CONFIRM,
        RsvpStatus.READY,
        RsvpStatus.CANCELLED,
    },
    RsvpStatus.READY_TO_CONFIRM: {
        RsvpStatus.READY,
        RsvpStatus.CHECKED_IN,
        RsvpStatus.CANCELLED,
    },
    RsvpStatus.READY: {
        RsvpStatus.CHECKED_IN,
        RsvpStatus.NO_SHOW,
        RsvpStatus.COMPLETED,
        RsvpStatus.CANCELLED,
    },
    RsvpStatus.CHECKED_IN: {RsvpStatus.COMPLETED, RsvpStatus.CANCELLED},
    RsvpStatus.COMPLETED: set(),
    RsvpStatus.CANCELLED: set(),
    RsvpStatus.NO_SHOW: set(),
}

_STAFF_INITIAL_STATUSES: Final = frozenset(
    {RsvpStatus.PENDING, RsvpStatus.READY_TO_CONFIRM, RsvpStatus.READY}
)
_DELETABLE_STATUSES: Final = frozenset({RsvpStatus.PENDING, RsvpStatus.READY_TO_CONFIRM})
_CHECK_IN_FROM: Final = frozenset({RsvpStatus.READY, RsvpStatus.READY_TO_CONFIRM})
_ALREADY_CHECKED_IN: Final = frozenset({RsvpStatus.CHECKED_IN, RsvpStatus.COMPLETED})
_CODE_ATTEMPTS: Final = 10
_MS_PER_HOUR: Final = 3_600_000


@dataclass(slots=True, frozen=True)
class Actor:
    """Who is calling, as established by the upstream auth layer."""

    user_id: UUID | None = None
    is_staff: bool = False
    owned_reservation_ids: frozenset[UUID] = field(default_factory=frozenset)

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None


@dataclass(slots=True)
class CheckInResult:
    reservation: Reservation
    already_checked_in: bool


@dataclass(slots=True)
class CancelResult:
    reservation: Reservation
    refund_eligible: bool
    refunded_credit: Decimal | None = None


@dataclass(slots=True)
class CleanupResult:
    deleted: int
    deleted_orders: int


def can_transition(current: RsvpStatus, target: RsvpStatus) -> bool:
    return target in _ALLOWED_STATUS_TRANSITIONS.get(current, set())


def _ensure_transition(current: RsvpStatus, target: RsvpStatus) -> None:
    if not can_transition(current, target):
        raise StateError(
            f"Cannot move reservation from {current.value} to {target.value}"
        )


def is_owner(actor: Actor, reservation: Reservation) -> bool:
    if actor.user_id is not None and actor.user_id in (
        reservation.customer_id,
        reservation.created_by,
    ):
        return True
    if reservation.customer_id is None and reservation.id in actor.owned_reservation_ids:
        return True
    return False


def _require_staff(actor: Actor) -> None:
    if not actor.is_staff:
        raise PermissionDeniedError("Store staff permission required")


async def load_reservation(
    session: AsyncSession,
    reservation_id: UUID,
    *,
    store_id: UUID | None = None,
) -> Reservation:
    """Return the reservation with its related rows, scoped to ``store_id`` when given."""
    stmt = (
        select(Reservation)
        .options(
            selectinload(Reservation.store).selectinload(Store.rsvp_settings),
            selectinload(Reservation.customer),
            selectinload(Reservation.facility),
            selectinload(Reservation.service_staff),
            selectinload(Reservation.order),
        )
        .where(Reservation.id == reservation_id)
        .execution_options(populate_existing=True)
    )
    if store_id is not None:
        stmt = stmt.where(Reservation.store_id == store_id)
    reservation = (await session.execute(stmt)).scalars().first()
    if reservation is None:
        raise NotFoundError("Reservation not found")
    return reservation


async def list_reservations(
    session: AsyncSession,
    *,
    store_id: UUID,
    status: RsvpStatus | None = None,
    start_ms: int | None = None,
    end_ms: int | None = None,
) -> list[Reservation]:
    """Return a store's reservations ordered by start time."""
    stmt = (
        select(Reservation)
        .where(Reservation.store_id == store_id)
        .order_by(Reservation.rsvp_time.asc())
    )
    if status is not None:
        stmt = stmt.where(Reservation.status == status)
    if start_ms is not None:
        stmt = stmt.where(Reservation.rsvp_time >= start_ms)
    if end_ms is not None:
        stmt = stmt.where(Reservation.rsvp_time < end_ms)
    return list((await session.execute(stmt)).scalars().all())


async def _get_store(session: AsyncSession, store_id: UUID) -> Store:
    store = (
        await session.execute(
            select(Store)
            .options(selectinload(Store.rsvp_settings))
            .where(Store.id == store_id)
        )
    ).scalars().first()
    if store is None:
        raise NotFoundError("Store not found")
    return store


async def _get_facility(
    session: AsyncSession, *, store_id: UUID, facility_id: UUID
) -> StoreFacility:
    facility = await session.scalar(
        select(StoreFacility).where(
            StoreFacility.id == facility_id, StoreFacility.store_id == store_id
        )
    )
    if facility is None:
        raise NotFoundError("Facility not found")
    return facility


async def _get_service_staff(
    session: AsyncSession, *, store_id: UUID, service_staff_id: UUID
) -> ServiceStaff:
    staff = await session.scalar(
        select(ServiceStaff).where(
            ServiceStaff.id == service_staff_id,
            ServiceStaff.store_id == store_id,
            ServiceStaff.active.is_(True),
        )
    )
    if staff is None:
        raise NotFoundError("Service staff not found")
    return staff


async def _ensure_customer(
    session: AsyncSession,
    customer_id: UUID,
    *,
    name: str | None = None,
    email: str | None = None,
    phone: str | None = None,
) -> Customer:
    customer = await session.get(Customer, customer_id)
    if customer is None:
        customer = Customer(id=customer_id, name=name, email=email, phone=phone)
        session.add(customer)
        await session.flush()
    return customer


async def _is_blacklisted(
    session: AsyncSession, *, store_id: UUID, customer_id: UUID
) -> bool:
    entry = await session.scalar(
        select(RsvpBlacklist.id).where(
            RsvpBlacklist.store_id == store_id,
            RsvpBlacklist.customer_id == customer_id,
        )
    )
    return entry is not None


async def _generate_check_in_code(session: AsyncSession, store_id: UUID) -> str:
    length = get_scheduling_settings().check_in_code_length
    for _ in range(_CODE_ATTEMPTS):
        code = f"{secrets.randbelow(10**length):0{length}d}"
        taken = await session.scalar(
            select(Reservation.id).where(
                Reservation.store_id == store_id, Reservation.check_in_code == code
            )
        )
        if taken is None:
            return code
    raise ConsistencyError("Unable to allocate a unique check-in code")


def _validate_time_window(settings: RsvpSettings, rsvp_time: int, now: datetime) -> None:
    lead_ms = rsvp_time - to_epoch_ms(now)
    if lead_ms < 0:
        raise ValidationError("Reservation time must be in the future")
    before = settings.can_reserve_before_hours
    if before and lead_ms < before * _MS_PER_HOUR:
        raise ValidationError(
            f"Reservations must be made at least {before} hours in advance"
        )
    after = settings.can_reserve_after_hours
    if after and lead_ms > after * _MS_PER_HOUR:
        raise ValidationError(
            f"Reservations can be made at most {after} hours in advance"
        )


async def _validate_slot(
    session: AsyncSession,
    *,
    store: Store,
    settings: RsvpSettings | None,
    rsvp_time: int,
    facility: StoreFacility | None,
    service_staff_id: UUID | None,
    duration_minutes: int | None = None,
    exclude_reservation_id: UUID | None = None,
) -> None:
    validate_facility_business_hours(facility, rsvp_time, store.default_timezone)
    if service_staff_id is not None:
        await validate_staff_business_hours(
            session,
            store_id=store.id,
            service_staff_id=service_staff_id,
            facility_id=facility.id if facility else None,
            rsvp_time=rsvp_time,
            timezone=store.default_timezone,
        )
    await validate_rsvp_availability(
        session,
        store_id=store.id,
        settings=settings,
        rsvp_time=rsvp_time,
        facility_id=facility.id if facility else None,
        duration_minutes=resolve_duration_minutes(settings, facility, duration_minutes),
        exclude_reservation_id=exclude_reservation_id,
    )


async def _resolve_facility(
    session: AsyncSession,
    *,
    store: Store,
    settings: RsvpSettings | None,
    facility_id: UUID | None,
) -> StoreFacility | None:
    if facility_id is None:
        if settings is not None and settings.single_service_mode:
            return None
        raise ValidationError("Facility is required")
    return await _get_facility(session, store_id=store.id, facility_id=facility_id)


async def _commit_new(session: AsyncSession, reservation: Reservation) -> None:
    session.add(reservation)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError("Reservation already exists.", rule="duplicate") from exc


async def _emit(
    session: AsyncSession,
    dispatcher: NotificationDispatcher | None,
    reservation_id: UUID,
    *,
    event_type: ReservationEventType,
    previous_status: RsvpStatus | None,
    actor: Actor | None,
    now: datetime,
    background_tasks: BackgroundTasks | None = None,
) -> Reservation:
    reservation = await load_reservation(session, reservation_id)
    event = build_reservation_event(
        reservation,
        event_type=event_type,
        previous_status=previous_status,
        actor_id=actor.user_id if actor else None,
        occurred_at=coerce_utc(now),
    )
    schedule_event(dispatcher or get_notification_dispatcher(), event, background_tasks)
    return reservation


async def create_reservation(
    session: AsyncSession,
    *,
    store_id: UUID,
    payload: ReservationCreate,
    actor: Actor,
    now: datetime,
    dispatcher: NotificationDispatcher | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> Reservation:
    """Create a customer booking in ``Pending``.

    When the store requires a prepayment and the customer is signed in, an
    RSVP order for the prepaid share is created and linked in the same
    transaction. If the store accepts credit and the customer's balance
    covers the share, the credit is held, the order is paid and the booking
    moves on as if paid.
    """
    store = await _get_store(session, store_id)
    settings = store.rsvp_settings
    if settings is None or not settings.accept_reservation:
        raise ValidationError("Reservations are not currently accepted")

    rsvp_time = to_epoch_ms(payload.rsvp_time)
    _validate_time_window(settings, rsvp_time, now)

    customer_id = actor.user_id
    if customer_id is None:
        if not payload.email:
            raise ValidationError("Email is required for anonymous reservations")
        if not payload.phone:
            raise ValidationError("Phone number is required for anonymous reservations")
    elif await _is_blacklisted(session, store_id=store_id, customer_id=customer_id):
        raise PermissionDeniedError("You are not allowed to create reservations")

    facility = await _resolve_facility(
        session, store=store, settings=settings, facility_id=payload.facility_id
    )
    staff = None
    if payload.service_staff_id is not None:
        staff = await _get_service_staff(
            session, store_id=store_id, service_staff_id=payload.service_staff_id
        )
    await _validate_slot(
        session,
        store=store,
        settings=settings,
        rsvp_time=rsvp_time,
        facility=facility,
        service_staff_id=staff.id if staff else None,
    )

    facility_cost = payload.facility_cost
    if facility_cost is None and facility is not None:
        facility_cost = facility.default_cost
    staff_cost = payload.service_staff_cost
    if staff_cost is None and staff is not None:
        staff_cost = staff.default_cost

    if customer_id is not None:
        await _ensure_customer(
            session, customer_id, name=payload.name, email=payload.email, phone=payload.phone
        )

    order_id = None
    paid_with_credit = False
    prepaid_pct = settings.min_prepaid_percentage or 0
    if prepaid_pct > 0 and facility_cost and facility_cost > 0 and customer_id is not None:
        required = Decimal(math.ceil(Decimal(facility_cost) * prepaid_pct / 100))
        order = StoreOrder(
            store_id=store_id,
            customer_id=customer_id,
            order_type=OrderType.RSVP,
            order_total=required,
            currency=store.default_currency,
            note="RSVP reservation payment",
        )
        session.add(order)
        await session.flush()
        order_id = order.id
        if payload.use_credit and await customer_credit_service.can_cover(
            session, store=store, customer_id=customer_id, amount=required
        ):
            await customer_credit_service.hold_for_order(
                session, store=store, order=order, customer_id=customer_id
            )
            order.is_paid = True
            order.paid_at = coerce_utc(now)
            order.payment_status = PaymentStatus.PAID
            order.order_status = OrderStatus.PROCESSING
            paid_with_credit = True

    reservation = Reservation(
        store_id=store_id,
        customer_id=customer_id,
        facility_id=facility.id if facility else None,
        service_staff_id=staff.id if staff else None,
        order_id=order_id,
        num_of_adult=payload.num_of_adult,
        num_of_child=payload.num_of_child,
        rsvp_time=rsvp_time,
        arrive_time=to_epoch_ms(payload.arrive_time) if payload.arrive_time else None,
        message=payload.message,
        facility_cost=facility_cost,
        service_staff_cost=staff_cost,
        pricing_rule_id=payload.pricing_rule_id,
        status=RsvpStatus.PENDING,
        check_in_code=await _generate_check_in_code(session, store_id),
        name=payload.name,
        email=payload.email if customer_id is None else None,
        phone=payload.phone if customer_id is None else None,
        created_by=actor.user_id,
    )
    if paid_with_credit:
        apply_payment_to_reservation(reservation, settings=settings, now=now)
    await _commit_new(session, reservation)
    logger.info(
        "Reservation %s created for store %s (order=%s)", reservation.id, store_id, order_id
    )
    return await _emit(
        session,
        dispatcher,
        reservation.id,
        event_type=ReservationEventType.CREATED,
        previous_status=None,
        actor=actor,
        now=now,
        background_tasks=background_tasks,
    )


async def create_reservation_by_staff(
    session: AsyncSession,
    *,
    store_id: UUID,
    payload: StaffReservationCreate,
    actor: Actor,
    now: datetime,
    dispatcher: NotificationDispatcher | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> Reservation:
    """Create a booking on behalf of a customer with a staff-chosen initial status."""
    _require_staff(actor)
    if payload.status not in _STAFF_INITIAL_STATUSES:
        raise ValidationError(
            f"Reservations cannot be created as {payload.status.value}"
        )
    store = await _get_store(session, store_id)
    settings = store.rsvp_settings

    facility = await _resolve_facility(
        session, store=store, settings=settings, facility_id=payload.facility_id
    )
    staff = None
    if payload.service_staff_id is not None:
        staff = await _get_service_staff(
            session, store_id=store_id, service_staff_id=payload.service_staff_id
        )
    rsvp_time = to_epoch_ms(payload.rsvp_time)
    await _validate_slot(
        session,
        store=store,
        settings=settings,
        rsvp_time=rsvp_time,
        facility=facility,
        service_staff_id=staff.id if staff else None,
        duration_minutes=payload.duration_minutes,
    )

    if payload.customer_id is not None:
        await _ensure_customer(
            session,
            payload.customer_id,
            name=payload.name,
            email=payload.email,
            phone=payload.phone,
        )

    facility_cost = payload.facility_cost
    if facility_cost is None and facility is not None:
        facility_cost = facility.default_cost
    staff_cost = payload.service_staff_cost
    if staff_cost is None and staff is not None:
        staff_cost = staff.default_cost

    reservation = Reservation(
        store_id=store_id,
        customer_id=payload.customer_id,
        facility_id=facility.id if facility else None,
        service_staff_id=staff.id if staff else None,
        num_of_adult=payload.num_of_adult,
        num_of_child=payload.num_of_child,
        rsvp_time=rsvp_time,
        arrive_time=to_epoch_ms(payload.arrive_time) if payload.arrive_time else None,
        message=payload.message,
        facility_cost=facility_cost,
        service_staff_cost=staff_cost,
        pricing_rule_id=payload.pricing_rule_id,
        status=payload.status,
        already_paid=payload.already_paid,
        paid_at=coerce_utc(now) if payload.already_paid else None,
        confirmed_by_store=payload.status == RsvpStatus.READY,
        check_in_code=await _generate_check_in_code(session, store_id),
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        created_by=actor.user_id,
    )
    await _commit_new(session, reservation)
    logger.info(
        "Reservation %s created by staff %s as %s",
        reservation.id,
        actor.user_id,
        reservation.status.value,
    )
    return await _emit(
        session,
        dispatcher,
        reservation.id,
        event_type=ReservationEventType.CREATED,
        previous_status=None,
        actor=actor,
        now=now,
        background_tasks=background_tasks,
    )


async def update_reservation(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    payload: ReservationUpdate,
    actor: Actor,
    now: datetime,
    store_id: UUID | None = None,
) -> Reservation:
    """Edit a ``Pending`` reservation, re-checking the slot it would occupy."""
    reservation = await load_reservation(session, reservation_id, store_id=store_id)
    if not actor.is_staff and not is_owner(actor, reservation):
        raise PermissionDeniedError("You can only edit your own reservations")
    if reservation.status != RsvpStatus.PENDING:
        raise StateError("Only pending reservations can be edited")

    data = payload.model_dump(exclude_unset=True)
    store = reservation.store
    settings = store.rsvp_settings

    facility = reservation.facility
    if "facility_id" in data:
        facility = await _resolve_facility(
            session, store=store, settings=settings, facility_id=data["facility_id"]
        )
    staff_id = reservation.service_staff_id
    if "service_staff_id" in data:
        staff_id = data["service_staff_id"]
        if staff_id is not None:
            await _get_service_staff(session, store_id=store.id, service_staff_id=staff_id)

    rsvp_time = reservation.rsvp_time
    if data.get("rsvp_time") is not None:
        rsvp_time = to_epoch_ms(data["rsvp_time"])
        if not actor.is_staff and settings is not None:
            _validate_time_window(settings, rsvp_time, now)

    await _validate_slot(
        session,
        store=store,
        settings=settings,
        rsvp_time=rsvp_time,
        facility=facility,
        service_staff_id=staff_id,
        exclude_reservation_id=reservation.id,
    )

    reservation.rsvp_time = rsvp_time
    reservation.facility_id = facility.id if facility else None
    reservation.service_staff_id = staff_id
    if "arrive_time" in data:
        arrive = data["arrive_time"]
        reservation.arrive_time = to_epoch_ms(arrive) if arrive else None
    for key in ("num_of_adult", "num_of_child", "message", "facility_cost", "service_staff_cost"):
        if key in data and (data[key] is not None or key == "message"):
            setattr(reservation, key, data[key])

    await session.commit()
    logger.info("Reservation %s updated by %s", reservation.id, actor.user_id)
    return await load_reservation(session, reservation.id)


async def delete_reservation(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    actor: Actor,
    now: datetime,
    store_id: UUID | None = None,
    dispatcher: NotificationDispatcher | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> None:
    """Delete an unpaid, not yet confirmed reservation and its unpaid order."""
    reservation = await load_reservation(session, reservation_id, store_id=store_id)
    if not is_owner(actor, reservation):
        raise PermissionDeniedError("You can only delete your own reservations")
    if reservation.status not in _DELETABLE_STATUSES:
        raise StateError(
            f"Reservations in {reservation.status.value} cannot be deleted"
        )
    order = reservation.order
    if reservation.already_paid or (order is not None and order.is_paid):
        raise StateError("Paid reservations must be cancelled, not deleted")

    event = build_reservation_event(
        reservation,
        event_type=ReservationEventType.DELETED,
        previous_status=reservation.status,
        actor_id=actor.user_id,
        occurred_at=coerce_utc(now),
    )
    await session.delete(reservation)
    if order is not None:
        await session.flush()
        await session.delete(order)
    await session.commit()
    logger.info(
        "Reservation %s deleted (order=%s)", reservation_id, order.id if order else None
    )
    schedule_event(dispatcher or get_notification_dispatcher(), event, background_tasks)


async def _find_by_check_in_code(
    session: AsyncSession, *, store_id: UUID, code: str
) -> Reservation:
    found = await session.scalar(
        select(Reservation.id)
        .where(Reservation.store_id == store_id, Reservation.check_in_code == code)
        .order_by(Reservation.created_at.asc())
        .limit(1)
    )
    if found is None:
        raise NotFoundError("No reservation matches this check-in code")
    return await load_reservation(session, found)


async def check_in(
    session: AsyncSession,
    *,
    store_id: UUID,
    actor: Actor,
    now: datetime,
    reservation_id: UUID | None = None,
    check_in_code: str | None = None,
    dispatcher: NotificationDispatcher | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> CheckInResult:
    """Mark the guest as arrived; repeated check-ins are reported, not applied."""
    if reservation_id is not None:
        reservation = await load_reservation(session, reservation_id, store_id=store_id)
        if not actor.is_staff and not is_owner(actor, reservation):
            raise PermissionDeniedError("You can only check in your own reservations")
    elif check_in_code:
        _require_staff(actor)
        reservation = await _find_by_check_in_code(
            session, store_id=store_id, code=check_in_code.strip()
        )
    else:
        raise ValidationError("reservation_id or check_in_code is required")

    if reservation.status in _ALREADY_CHECKED_IN:
        logger.warning("Reservation %s already checked in", reservation.id)
        return CheckInResult(reservation=reservation, already_checked_in=True)
    if reservation.status not in _CHECK_IN_FROM:
        raise StateError(
            f"Reservations in {reservation.status.value} cannot be checked in"
        )

    previous = reservation.status
    reservation.status = RsvpStatus.CHECKED_IN
    reservation.checked_in_at = coerce_utc(now)
    if reservation.arrive_time is None:
        reservation.arrive_time = to_epoch_ms(now)
    await session.commit()
    logger.info("Reservation %s checked in (was %s)", reservation.id, previous.value)
    reservation = await _emit(
        session,
        dispatcher,
        reservation.id,
        event_type=ReservationEventType.STATUS_CHANGED,
        previous_status=previous,
        actor=actor,
        now=now,
        background_tasks=background_tasks,
    )
    return CheckInResult(reservation=reservation, already_checked_in=False)


async def mark_no_show(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    actor: Actor,
    now: datetime,
    store_id: UUID | None = None,
    dispatcher: NotificationDispatcher | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> Reservation:
    """Record that a confirmed guest did not arrive."""
    _require_staff(actor)
    reservation = await load_reservation(session, reservation_id, store_id=store_id)
    if reservation.status == RsvpStatus.NO_SHOW:
        raise StateError("Reservation is already marked as no-show")
    if reservation.status != RsvpStatus.READY:
        raise StateError("Only ready reservations can be marked as no-show")

    previous = reservation.status
    reservation.status = RsvpStatus.NO_SHOW
    await session.commit()
    logger.info("Reservation %s marked no-show", reservation.id)
    return await _emit(
        session,
        dispatcher,
        reservation.id,
        event_type=ReservationEventType.NO_SHOW,
        previous_status=previous,
        actor=actor,
        now=now,
        background_tasks=background_tasks,
    )


async def cancel_reservation(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    actor: Actor,
    now: datetime,
    store_id: UUID | None = None,
    dispatcher: NotificationDispatcher | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> CancelResult:
    """Cancel a non-terminal reservation.

    Customers may only cancel their own reservations and only when the store
    allows it. ``refund_eligible`` reports whether a paid reservation was
    cancelled outside the store's no-refund window. Credit the booking was
    prepaid with is refunded in the same transaction when eligible; inside
    the window the credit hold is spent instead.
    """
    reservation = await load_reservation(session, reservation_id, store_id=store_id)
    settings = reservation.store.rsvp_settings
    if not actor.is_staff:
        if not is_owner(actor, reservation):
            raise PermissionDeniedError("You can only cancel your own reservations")
        if settings is not None and not settings.can_cancel:
            raise PermissionDeniedError("This store does not allow cancellations")
    if reservation.status in TERMINAL_STATUSES:
        raise StateError(
            f"Reservations in {reservation.status.value} cannot be cancelled"
        )
    _ensure_transition(reservation.status, RsvpStatus.CANCELLED)

    cancel_hours = settings.cancel_hours if settings is not None else 0
    refund_eligible = reservation.already_paid and (
        reservation.rsvp_time - to_epoch_ms(now) > (cancel_hours or 0) * _MS_PER_HOUR
    )

    previous = reservation.status
    async with ledger_service.store_ledger_lock(reservation.store_id):
        reservation.status = RsvpStatus.CANCELLED
        refunded_credit = await _settle_cancelled_credit(
            session, reservation, actor=actor, now=now, refund=refund_eligible
        )
        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            raise ConsistencyError(
                f"Reservation {reservation.id} was cancelled concurrently"
            ) from exc
    logger.info(
        "Reservation %s cancelled by %s (was %s, refund_eligible=%s, refunded_credit=%s)",
        reservation.id,
        "staff" if actor.is_staff else "customer",
        previous.value,
        refund_eligible,
        refunded_credit,
    )
    reservation = await _emit(
        session,
        dispatcher,
        reservation.id,
        event_type=ReservationEventType.CANCELLED,
        previous_status=previous,
        actor=actor,
        now=now,
        background_tasks=background_tasks,
    )
    return CancelResult(
        reservation=reservation,
        refund_eligible=refund_eligible,
        refunded_credit=refunded_credit,
    )


async def _settle_cancelled_credit(
    session: AsyncSession,
    reservation: Reservation,
    *,
    actor: Actor,
    now: datetime,
    refund: bool,
) -> Decimal | None:
    order = reservation.order
    if order is None or not order.is_paid:
        return None
    if refund:
        result = await customer_credit_service.refund_order_credit(
            session,
            store=reservation.store,
            order=order,
            now=now,
            reason=f"reservation {reservation.id} cancelled",
            creator_id=actor.user_id,
        )
        return result.credit if result is not None else None
    await customer_credit_service.convert_hold_to_spend(
        session, store=reservation.store, order=order, now=now, creator_id=actor.user_id
    )
    return None


async def confirm_reservation(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    actor: Actor,
    now: datetime,
    store_id: UUID | None = None,
    dispatcher: NotificationDispatcher | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> Reservation:
    """Store-side confirmation: the reservation becomes ``Ready``."""
    _require_staff(actor)
    reservation = await load_reservation(session, reservation_id, store_id=store_id)
    order = reservation.order
    if reservation.status == RsvpStatus.PENDING and order is not None and not order.is_paid:
        raise StateError("Reservation is awaiting prepayment")
    _ensure_transition(reservation.status, RsvpStatus.READY)

    previous = reservation.status
    reservation.status = RsvpStatus.READY
    reservation.confirmed_by_store = True
    await session.commit()
    logger.info("Reservation %s confirmed by store", reservation.id)
    return await _emit(
        session,
        dispatcher,
        reservation.id,
        event_type=ReservationEventType.STATUS_CHANGED,
        previous_status=previous,
        actor=actor,
        now=now,
        background_tasks=background_tasks,
    )


async def complete_reservation(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    actor: Actor,
    now: datetime,
    store_id: UUID | None = None,
    dispatcher: NotificationDispatcher | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> Reservation:
    """Finish the service and recognize what the guest paid.

    A credit hold is converted to a spend. A paid order without its ledger
    entry gets it posted. Neither happens twice.
    """
    _require_staff(actor)
    reservation = await load_reservation(session, reservation_id, store_id=store_id)
    _ensure_transition(reservation.status, RsvpStatus.COMPLETED)

    previous = reservation.status
    order = reservation.order
    async with ledger_service.store_ledger_lock(reservation.store_id):
        reservation.status = RsvpStatus.COMPLETED
        if order is not None and order.is_paid:
            order.order_status = OrderStatus.COMPLETED
            await _recognize_order(session, reservation, order, actor=actor, now=now)
        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            raise ConsistencyError(
                f"Reservation {reservation.id} was completed concurrently"
            ) from exc
    logger.info("Reservation %s completed", reservation.id)
    return await _emit(
        session,
        dispatcher,
        reservation.id,
        event_type=ReservationEventType.COMPLETED,
        previous_status=previous,
        actor=actor,
        now=now,
        background_tasks=background_tasks,
    )


async def _recognize_order(
    session: AsyncSession,
    reservation: Reservation,
    order: StoreOrder,
    *,
    actor: Actor,
    now: datetime,
) -> None:
    store = reservation.store
    hold = await customer_credit_service.find_credit_entry(
        session, order_id=order.id, type=CustomerCreditLedgerType.HOLD
    )
    if hold is not None:
        await customer_credit_service.convert_hold_to_spend(
            session, store=store, order=order, now=now, creator_id=actor.user_id
        )
        return
    existing = await ledger_service.find_entry_for_order(
        session, order_id=order.id, type=ledger_service.order_entry_type(store)
    )
    if existing is not None:
        return
    payment_method = (
        await session.get(PaymentMethod, order.payment_method_id)
        if order.payment_method_id is not None
        else None
    )
    await ledger_service.post_order_entry(
        session,
        order=order,
        store=store,
        payment_method=payment_method,
        settled_at=order.paid_at or now,
        now=now,
        description=f"reservation {reservation.id} completed",
        commit=False,
    )


async def confirm_by_customer(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    actor: Actor,
    store_id: UUID | None = None,
) -> Reservation:
    """Record that the guest confirmed attendance; the status is unchanged."""
    reservation = await load_reservation(session, reservation_id, store_id=store_id)
    if not is_owner(actor, reservation):
        raise PermissionDeniedError("You can only confirm your own reservations")
    if reservation.status in TERMINAL_STATUSES:
        raise StateError(
            f"Reservations in {reservation.status.value} cannot be confirmed"
        )
    if reservation.confirmed_by_customer:
        return reservation
    reservation.confirmed_by_customer = True
    await session.commit()
    logger.info("Reservation %s confirmed by customer", reservation.id)
    return await load_reservation(session, reservation.id)


async def cleanup_unpaid_reservations(
    session: AsyncSession,
    *,
    now: datetime,
    max_age: timedelta | None = None,
    store_id: UUID | None = None,
) -> CleanupResult:
    """Delete stale bookings that were never paid nor confirmed by the store.

    Pending and ReadyToConfirm reservations older than ``max_age`` (default:
    the configured unpaid TTL) go, together with their unpaid orders.
    """
    if max_age is None:
        max_age = timedelta(minutes=get_scheduling_settings().unpaid_reservation_ttl_minutes)
    cutoff = coerce_utc(now) - max_age
    stmt = (
        select(Reservation)
        .options(selectinload(Reservation.order))
        .where(
            Reservation.already_paid.is_(False),
            Reservation.confirmed_by_store.is_(False),
            Reservation.status.in_(list(_DELETABLE_STATUSES)),
            Reservation.created_at <= cutoff,
        )
    )
    if store_id is not None:
        stmt = stmt.where(Reservation.store_id == store_id)
    stale = list((await session.execute(stmt)).scalars().all())
    orders = {
        reservation.order.id: reservation.order
        for reservation in stale
        if reservation.order is not None and not reservation.order.is_paid
    }
    for reservation in stale:
        await session.delete(reservation)
    if orders:
        await session.flush()
        for order in orders.values():
            await session.delete(order)
    await session.commit()
    if stale:
        logger.info(
            "Cleaned up %s unpaid reservations and %s orders", len(stale), len(orders)
        )
    return CleanupResult(deleted=len(stale), deleted_orders=len(orders))


def apply_payment_to_reservation(
    reservation: Reservation,
    *,
    settings: RsvpSettings | None,
    now: datetime,
) -> RsvpStatus:
    """Record payment on the reservation; the caller commits.

    A ``Pending`` reservation moves to ``Ready`` when the store skips manual
    confirmation and to ``ReadyToConfirm`` otherwise. Returns the status the
    reservation had before.
    """
    previous = reservation.status
    auto_confirm = bool(settings is not None and settings.no_need_to_confirm)
    if previous == RsvpStatus.PENDING:
        target = RsvpStatus.READY if auto_confirm else RsvpStatus.READY_TO_CONFIRM
        _ensure_transition(previous, target)
        reservation.status = target
        if auto_confirm:
            reservation.confirmed_by_store = True
    reservation.already_paid = True
    reservation.paid_at = coerce_utc(now)
    return previous


async def notify_status_change(
    session: AsyncSession,
    *,
    reservation_id: UUID,
    previous_status: RsvpStatus,
    now: datetime,
    actor: Actor | None = None,
    dispatcher: NotificationDispatcher | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> Reservation:
    """Emit a ``status_changed`` event for a transition committed elsewhere."""
    return await _emit(
        session,
        dispatcher,
        reservation_id,
        event_type=ReservationEventType.STATUS_CHANGED,
        previous_status=previous_status,
        actor=actor,
        now=now,
        background_tasks=background_tasks,
    )
