"""Payment boundary callbacks for store orders."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api import deps
from storefront.core.errors import StorefrontError
from storefront.schemas.credit import CreditTopUpRead
from storefront.schemas.ledger import LedgerEntryRead, OrderPaidRead, OrderPaidRequest
from storefront.services import credit_topup_service, order_service
from storefront.services.notification_service import NotificationDispatcher
from storefront.services.reservation_service import Actor

router = APIRouter()


@router.post(
    "/{order_id}/paid",
    response_model=OrderPaidRead,
    summary="Record that an order was paid",
)
async def mark_order_paid(
    order_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[Actor, Depends(deps.get_staff_actor)],
    dispatcher: Annotated[NotificationDispatcher, Depends(deps.get_dispatcher)],
    background_tasks: BackgroundTasks,
    payload: Annotated[OrderPaidRequest | None, Body()] = None,
) -> OrderPaidRead:
    payload = payload or OrderPaidRequest()
    try:
        result = await order_service.mark_order_paid(
            session,
            order_id=order_id,
            now=payload.paid_at or datetime.now(UTC),
            payment_method_id=payload.payment_method_id,
            dispatcher=dispatcher,
            background_tasks=background_tasks,
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    return OrderPaidRead(
        order_id=result.order.id,
        already_processed=result.already_processed,
        reservation_id=result.reservation.id if result.reservation else None,
        ledger_entry=(
            LedgerEntryRead.model_validate(result.ledger_entry)
            if result.ledger_entry
            else None
        ),
        payment_cost=result.order.payment_cost or 0,
    )


@router.post(
    "/{order_id}/credit-top-up",
    response_model=CreditTopUpRead,
    summary="Convert a paid recharge order into customer credit",
)
async def process_credit_top_up(
    order_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    actor: Annotated[Actor, Depends(deps.get_staff_actor)],
) -> CreditTopUpRead:
    try:
        result = await credit_topup_service.process_credit_top_up(
            session,
            order_id=order_id,
            now=datetime.now(UTC),
            creator_id=actor.user_id,
        )
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    return CreditTopUpRead(
        order_id=result.order.id,
        already_processed=result.already_processed,
        credit_amount=result.credit_amount,
        bonus_amount=result.bonus_amount,
        customer_balance=result.customer_balance,
        ledger_entry=(
            LedgerEntryRead.model_validate(result.ledger_entry)
            if result.ledger_entry
            else None
        ),
    )
