"""Reservation lifecycle API."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Annotated

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    HTTPException,
    Query,
    Response,
    status,
)
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api import deps
from storefront.core.errors import StorefrontError
from storefront.models import RsvpStatus
from storefront.schemas.reservation import (
    CancelRead,
    CheckInRead,
    CheckInRequest,
    CleanupRead,
    ReservationCreate,
    ReservationRead,
    ReservationUpdate,
    StaffReservationCreate,
)
from storefront.services import reservation_service
from storefront.services.notification_service import NotificationDispatcher
from storefront.services.reservation_service import Actor

router = APIRouter()

SessionDep = Annotated[AsyncSession, Depends(deps.get_db_session)]
ActorDep = Annotated[Actor, Depends(deps.get_actor)]
StaffDep = Annotated[Actor, Depends(deps.get_staff_actor)]
DispatcherDep = Annotated[NotificationDispatcher, Depends(deps.get_dispatcher)]


@router.get("", response_model=list[ReservationRead], summary="List reservations")
async def list_reservations(
    store_id: uuid.UUID,
    session: SessionDep,
    _: StaffDep,
    status_filter: Annotated[RsvpStatus | None, Query(alias="status")] = None,
) -> list[ReservationRead]:
    reservations = await reservation_service.list_reservations(
        session, store_id=store_id, status=status_filter
    )
    return [ReservationRead.model_validate(obj) for obj in reservations]


@router.post(
    "",
    response_model=ReservationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Book a reservation",
)
async def create_reservation(
    store_id: uuid.UUID,
    payload: ReservationCreate,
    session: SessionDep,
    actor: ActorDep,
    dispatcher: DispatcherDep,
    background_tasks: BackgroundTasks,
) -> ReservationRead:
    try:
        reservation = await reservation_service.create_reservation(
            session,
            store_id=store_id,
            payload=payload,
            actor=actor,
            now=datetime.now(UTC),
            dispatcher=dispatcher,
            background_tasks=background_tasks,
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    return ReservationRead.model_validate(reservation)


@router.post(
    "/staff",
    response_model=ReservationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a reservation on behalf of a customer",
)
async def create_reservation_by_staff(
    store_id: uuid.UUID,
    payload: StaffReservationCreate,
    session: SessionDep,
    actor: StaffDep,
    dispatcher: DispatcherDep,
    background_tasks: BackgroundTasks,
) -> ReservationRead:
    try:
        reservation = await reservation_service.create_reservation_by_staff(
            session,
            store_id=store_id,
            payload=payload,
            actor=actor,
            now=datetime.now(UTC),
            dispatcher=dispatcher,
            background_tasks=background_tasks,
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    return ReservationRead.model_validate(reservation)


@router.post("/check-in", response_model=CheckInRead, summary="Check in a guest")
async def check_in(
    store_id: uuid.UUID,
    payload: CheckInRequest,
    session: SessionDep,
    actor: ActorDep,
    dispatcher: DispatcherDep,
    background_tasks: BackgroundTasks,
) -> CheckInRead:
    try:
        result = await reservation_service.check_in(
            session,
            store_id=store_id,
            actor=actor,
            now=datetime.now(UTC),
            reservation_id=payload.reservation_id,
            check_in_code=payload.check_in_code,
            dispatcher=dispatcher,
            background_tasks=background_tasks,
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    return CheckInRead(
        reservation=ReservationRead.model_validate(result.reservation),
        already_checked_in=result.already_checked_in,
    )


@router.get(
    "/{reservation_id}", response_model=ReservationRead, summary="Get reservation"
)
async def get_reservation(
    store_id: uuid.UUID,
    reservation_id: uuid.UUID,
    session: SessionDep,
    actor: ActorDep,
) -> ReservationRead:
    try:
        reservation = await reservation_service.load_reservation(
            session, reservation_id, store_id=store_id
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    if not actor.is_staff and not reservation_service.is_owner(actor, reservation):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found"
        )
    return ReservationRead.model_validate(reservation)


@router.patch(
    "/{reservation_id}", response_model=ReservationRead, summary="Edit a pending reservation"
)
async def update_reservation(
    store_id: uuid.UUID,
    reservation_id: uuid.UUID,
    payload: ReservationUpdate,
    session: SessionDep,
    actor: ActorDep,
) -> ReservationRead:
    try:
        reservation = await reservation_service.update_reservation(
            session,
            reservation_id=reservation_id,
            store_id=store_id,
            payload=payload,
            actor=actor,
            now=datetime.now(UTC),
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    return ReservationRead.model_validate(reservation)


@router.delete(
    "/{reservation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an unpaid reservation",
)
async def delete_reservation(
    store_id: uuid.UUID,
    reservation_id: uuid.UUID,
    session: SessionDep,
    actor: ActorDep,
    dispatcher: DispatcherDep,
    background_tasks: BackgroundTasks,
) -> Response:
    try:
        await reservation_service.delete_reservation(
            session,
            reservation_id=reservation_id,
            store_id=store_id,
            actor=actor,
            now=datetime.now(UTC),
            dispatcher=dispatcher,
            background_tasks=background_tasks,
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{reservation_id}/cancel", response_model=CancelRead, summary="Cancel reservation"
)
async def cancel_reservation(
    store_id: uuid.UUID,
    reservation_id: uuid.UUID,
    session: SessionDep,
    actor: ActorDep,
    dispatcher: DispatcherDep,
    background_tasks: BackgroundTasks,
) -> CancelRead:
    try:
        result = await reservation_service.cancel_reservation(
            session,
            reservation_id=reservation_id,
            store_id=store_id,
            actor=actor,
            now=datetime.now(UTC),
            dispatcher=dispatcher,
            background_tasks=background_tasks,
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    return CancelRead(
        reservation=ReservationRead.model_validate(result.reservation),
        refund_eligible=result.refund_eligible,
        refunded_credit=result.refunded_credit,
    )


@router.post(
    "/{reservation_id}/confirm",
    response_model=ReservationRead,
    summary="Confirm reservation",
)
async def confirm_reservation(
    store_id: uuid.UUID,
    reservation_id: uuid.UUID,
    session: SessionDep,
    actor: StaffDep,
    dispatcher: DispatcherDep,
    background_tasks: BackgroundTasks,
) -> ReservationRead:
    try:
        reservation = await reservation_service.confirm_reservation(
            session,
            reservation_id=reservation_id,
            store_id=store_id,
            actor=actor,
            now=datetime.now(UTC),
            dispatcher=dispatcher,
            background_tasks=background_tasks,
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    return ReservationRead.model_validate(reservation)


@router.post(
    "/{reservation_id}/no-show",
    response_model=ReservationRead,
    summary="Mark reservation as no-show",
)
async def mark_no_show(
    store_id: uuid.UUID,
    reservation_id: uuid.UUID,
    session: SessionDep,
    actor: StaffDep,
    dispatcher: DispatcherDep,
    background_tasks: BackgroundTasks,
) -> ReservationRead:
    try:
        reservation = await reservation_service.mark_no_show(
            session,
            reservation_id=reservation_id,
            store_id=store_id,
            actor=actor,
            now=datetime.now(UTC),
            dispatcher=dispatcher,
            background_tasks=background_tasks,
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    return ReservationRead.model_validate(reservation)


@router.post(
    "/{reservation_id}/complete",
    response_model=ReservationRead,
    summary="Complete reservation",
)
async def complete_reservation(
    store_id: uuid.UUID,
    reservation_id: uuid.UUID,
    session: SessionDep,
    actor: StaffDep,
    dispatcher: DispatcherDep,
    background_tasks: BackgroundTasks,
) -> ReservationRead:
    try:
        reservation = await reservation_service.complete_reservation(
            session,
            reservation_id=reservation_id,
            store_id=store_id,
            actor=actor,
            now=datetime.now(UTC),
            dispatcher=dispatcher,
            background_tasks=background_tasks,
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    return ReservationRead.model_validate(reservation)


@router.post(
    "/{reservation_id}/acknowledge",
    response_model=ReservationRead,
    summary="Confirm attendance as the guest",
)
async def confirm_by_customer(
    store_id: uuid.UUID,
    reservation_id: uuid.UUID,
    session: SessionDep,
    actor: ActorDep,
) -> ReservationRead:
    try:
        reservation = await reservation_service.confirm_by_customer(
            session, reservation_id=reservation_id, store_id=store_id, actor=actor
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    return ReservationRead.model_validate(reservation)


@router.post(
    "/cleanup-unpaid",
    response_model=CleanupRead,
    summary="Remove stale unpaid reservations",
)
async def cleanup_unpaid_reservations(
    store_id: uuid.UUID,
    session: SessionDep,
    _: StaffDep,
    older_than_minutes: Annotated[int | None, Query(gt=0)] = None,
) -> CleanupRead:
    result = await reservation_service.cleanup_unpaid_reservations(
        session,
        now=datetime.now(UTC),
        max_age=(
            timedelta(minutes=older_than_minutes) if older_than_minutes else None
        ),
        store_id=store_id,
    )
    return CleanupRead(deleted=result.deleted, deleted_orders=result.deleted_orders)
