"""Reaction to the payment boundary reporting an order as paid."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.errors import ConsistencyError, NotFoundError, ValidationError
from storefront.core.timeutils import coerce_utc
from storefront.models import (
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
    Reservation,
    RsvpStatus,
    Store,
    StoreLedger,
    StoreOrder,
)
from storefront.services import credit_topup_service, ledger_service, reservation_service
from storefront.services.ledger_service import PaymentFees
from storefront.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OrderPaidResult:
    order: StoreOrder
    already_processed: bool
    reservation: Reservation | None = None
    ledger_entry: StoreLedger | None = None
    fees: PaymentFees | None = None


async def get_order(session: AsyncSession, order_id: UUID) -> StoreOrder:
    order = (
        await session.execute(
            select(StoreOrder)
            .options(
                selectinload(StoreOrder.store).selectinload(Store.rsvp_settings),
                selectinload(StoreOrder.payment_method),
            )
            .where(StoreOrder.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalars().first()
    if order is None:
        raise NotFoundError("Order not found")
    return order


async def _resolve_payment_method(
    session: AsyncSession, order: StoreOrder, payment_method_id: UUID | None
) -> PaymentMethod:
    if payment_method_id is None:
        if order.payment_method is None:
            raise ValidationError("Payment method is required")
        return order.payment_method
    method = await session.get(PaymentMethod, payment_method_id)
    if method is None:
        raise NotFoundError("Payment method not found")
    return method


async def mark_order_paid(
    session: AsyncSession,
    *,
    order_id: UUID,
    now: datetime,
    payment_method_id: UUID | None = None,
    dispatcher: NotificationDispatcher | None = None,
    background_tasks: BackgroundTasks | None = None,
) -> OrderPaidResult:
    """Settle an order exactly once.

    Recharge orders are handed to the credit top-up processor. Otherwise the
    order is marked paid, a linked reservation is moved forward and one ledger
    entry is appended, in a single transaction under the store's ledger lock.
    Orders that are already paid or already have a ledger entry of the
    matching type are reported with ``already_processed``.
    """
    row = (
        await session.execute(
            select(StoreOrder.store_id, StoreOrder.order_type).where(
                StoreOrder.id == order_id
            )
        )
    ).first()
    if row is None:
        raise NotFoundError("Order not found")
    store_id, order_type = row

    if order_type == OrderType.CREDIT_RECHARGE:
        method = None
        if payment_method_id is not None:
            method = await session.get(PaymentMethod, payment_method_id)
            if method is None:
                raise NotFoundError("Payment method not found")
        topup = await credit_topup_service.process_credit_top_up(
            session, order_id=order_id, now=now, payment_method=method
        )
        return OrderPaidResult(
            order=topup.order,
            already_processed=topup.already_processed,
            ledger_entry=topup.ledger_entry,
        )

    async with ledger_service.store_ledger_lock(store_id):
        result, previous_status = await _settle(
            session, order_id=order_id, now=now, payment_method_id=payment_method_id
        )

    reservation = result.reservation
    if reservation is not None and previous_status != reservation.status:
        result.reservation = await reservation_service.notify_status_change(
            session,
            reservation_id=reservation.id,
            previous_status=previous_status,
            now=now,
            dispatcher=dispatcher,
            background_tasks=background_tasks,
        )
    return result


async def _settle(
    session: AsyncSession,
    *,
    order_id: UUID,
    now: datetime,
    payment_method_id: UUID | None,
) -> tuple[OrderPaidResult, RsvpStatus | None]:
    order = await get_order(session, order_id)
    if order.is_paid:
        logger.warning("Order %s is already paid", order.id)
        return OrderPaidResult(order=order, already_processed=True), None
    store = order.store
    existing = await ledger_service.find_entry_for_order(
        session, order_id=order.id, type=ledger_service.order_entry_type(store)
    )
    if existing is not None:
        logger.warning(
            "Duplicate payment for order %s: ledger entry %s already exists",
            order.id,
            existing.id,
        )
        return (
            OrderPaidResult(order=order, already_processed=True, ledger_entry=existing),
            None,
        )

    payment_method = await _resolve_payment_method(session, order, payment_method_id)
    settled_at = order.updated_at or now

    reservation = await session.scalar(
        select(Reservation).where(Reservation.order_id == order.id).limit(1)
    )

    order.is_paid = True
    order.paid_at = coerce_utc(now)
    order.payment_status = PaymentStatus.PAID
    order.order_status = (
        OrderStatus.COMPLETED if reservation is not None else OrderStatus.PROCESSING
    )
    order.payment_method_id = payment_method.id

    previous_status = None
    if reservation is not None:
        previous_status = reservation_service.apply_payment_to_reservation(
            reservation, settings=store.rsvp_settings, now=now
        )

    try:
        entry, fees = await ledger_service.post_order_entry(
            session,
            order=order,
            store=store,
            payment_method=payment_method,
            settled_at=settled_at,
            now=now,
            commit=False,
        )
        order.payment_cost = fees.payment_cost
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConsistencyError(
            f"Order {order.id} was marked paid concurrently"
        ) from exc
    await session.refresh(entry)

    logger.info(
        "Order %s paid via %s: amount=%s fee=%s fee_tax=%s platform_fee=%s",
        order.id,
        payment_method.name,
        order.order_total,
        fees.fee,
        fees.fee_tax,
        fees.platform_fee,
    )

    return (
        OrderPaidResult(
            order=order,
            already_processed=False,
            reservation=reservation,
            ledger_entry=entry,
            fees=fees,
        ),
        previous_status,
    )
