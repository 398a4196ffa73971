"""Time-slot conflict detection and business-hours guards for bookings."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.errors import ConflictError
from storefront.core.settings import get_scheduling_settings
from storefront.core.timeutils import coerce_utc, from_epoch_ms, minutes_to_ms
from storefront.models import (
    Reservation,
    RsvpSettings,
    RsvpStatus,
    ServiceStaffFacilitySchedule,
    StoreFacility,
)
from storefront.services.business_hours import is_open_at, parse_schedule

logger = logging.getLogger(__name__)


def _fallback_duration(settings: RsvpSettings | None) -> int:
    if settings is not None and settings.default_duration_minutes:
        return settings.default_duration_minutes
    return get_scheduling_settings().default_duration_minutes


def resolve_duration_minutes(
    settings: RsvpSettings | None,
    facility: StoreFacility | None = None,
    override: int | None = None,
) -> int:
    """Return the slot length for a booking: override, facility, settings, default."""
    if override:
        return override
    if facility is not None and facility.default_duration_minutes:
        return facility.default_duration_minutes
    return _fallback_duration(settings)


async def validate_rsvp_availability(
    session: AsyncSession,
    *,
    store_id: UUID,
    settings: RsvpSettings | None,
    rsvp_time: int,
    facility_id: UUID | None,
    duration_minutes: int | None = None,
    exclude_reservation_id: UUID | None = None,
) -> None:
    """Raise ``ConflictError`` when the requested slot overlaps an active booking.

    In single-service mode every reservation of the store competes for the
    slot; otherwise only reservations of the same facility do. Slots that only
    touch at a boundary do not conflict.
    """
    if settings is None:
        return
    single_service = bool(settings.single_service_mode)
    if not single_service and facility_id is None:
        return

    slot_start = rsvp_time
    slot_end = slot_start + minutes_to_ms(duration_minutes or _fallback_duration(settings))

    stmt = (
        select(Reservation)
        .options(selectinload(Reservation.facility))
        .where(
            Reservation.store_id == store_id,
            Reservation.status != RsvpStatus.CANCELLED,
            Reservation.rsvp_time < slot_end,
        )
    )
    if not single_service:
        stmt = stmt.where(Reservation.facility_id == facility_id)
    if exclude_reservation_id is not None:
        stmt = stmt.where(Reservation.id != exclude_reservation_id)

    candidates = (await session.execute(stmt)).scalars().all()
    for existing in candidates:
        existing_start = existing.rsvp_time
        existing_end = existing_start + minutes_to_ms(
            resolve_duration_minutes(settings, existing.facility)
        )
        if slot_start < existing_end and slot_end > existing_start:
            rule = "single_service_mode" if single_service else "facility"
            logger.info(
                "Slot conflict for store %s at %s with reservation %s (%s)",
                store_id,
                slot_start,
                existing.id,
                rule,
            )
            if single_service:
                raise ConflictError(
                    "This time slot is already booked. Only one reservation is "
                    "allowed per time slot in single service mode.",
                    rule=rule,
                )
            raise ConflictError(
                "This time slot is already booked for this facility.", rule=rule
            )


def _schedule_in_effect(schedule: ServiceStaffFacilitySchedule, at: datetime) -> bool:
    if schedule.effective_from is not None and coerce_utc(schedule.effective_from) > at:
        return False
    if schedule.effective_to is not None and coerce_utc(schedule.effective_to) < at:
        return False
    return True


async def resolve_staff_business_hours(
    session: AsyncSession,
    *,
    store_id: UUID,
    service_staff_id: UUID,
    facility_id: UUID | None,
    at: datetime,
) -> str | None:
    """Return the schedule JSON governing a staff member at ``at``.

    A facility-specific schedule wins over the staff member's default one;
    within each group the highest priority applies. ``None`` means the staff
    member has no hours restriction.
    """
    moment = coerce_utc(at)
    stmt = (
        select(ServiceStaffFacilitySchedule)
        .where(
            ServiceStaffFacilitySchedule.store_id == store_id,
            ServiceStaffFacilitySchedule.service_staff_id == service_staff_id,
            ServiceStaffFacilitySchedule.is_active.is_(True),
        )
        .order_by(ServiceStaffFacilitySchedule.priority.desc())
    )
    schedules = [
        schedule
        for schedule in (await session.execute(stmt)).scalars().all()
        if _schedule_in_effect(schedule, moment)
    ]

    if facility_id is not None:
        for schedule in schedules:
            if schedule.facility_id == facility_id:
                return schedule.business_hours
    for schedule in schedules:
        if schedule.facility_id is None:
            return schedule.business_hours
    return None


async def validate_staff_business_hours(
    session: AsyncSession,
    *,
    store_id: UUID,
    service_staff_id: UUID,
    facility_id: UUID | None,
    rsvp_time: int,
    timezone: str | None = None,
) -> None:
    """Raise ``ConflictError`` when the staff member is off duty at ``rsvp_time``."""
    at = from_epoch_ms(rsvp_time)
    raw = await resolve_staff_business_hours(
        session,
        store_id=store_id,
        service_staff_id=service_staff_id,
        facility_id=facility_id,
        at=at,
    )
    schedule = parse_schedule(raw)
    if not is_open_at(schedule, at, timezone):
        raise ConflictError(
            "The selected service staff is not available at this time.",
            rule="staff_hours",
        )


def validate_facility_business_hours(
    facility: StoreFacility | None,
    rsvp_time: int,
    timezone: str | None = None,
) -> None:
    """Raise ``ConflictError`` when the facility is closed at ``rsvp_time``."""
    if facility is None:
        return
    schedule = parse_schedule(facility.business_hours)
    if not is_open_at(schedule, from_epoch_ms(rsvp_time), timezone):
        raise ConflictError(
            f"{facility.name} is closed at the requested time.",
            rule="facility_hours",
        )
