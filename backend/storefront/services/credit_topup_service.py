"""Customer credit top-ups settled through a paid recharge order."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Final
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.errors import ConsistencyError, NotFoundError, ValidationError
from storefront.core.timeutils import coerce_utc
from storefront.models import (
    CreditBonusRule,
    CustomerCreditLedger,
    CustomerCreditLedgerType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    StoreLedger,
    StoreLedgerType,
    StoreOrder,
)
from storefront.services import customer_credit_service, ledger_service

logger = logging.getLogger(__name__)

_CURRENCY_UNIT: Final = Decimal("0.01")
_ZERO: Final = Decimal("0.00")


def _to_money(value: Decimal | int | str) -> Decimal:
    return Decimal(str(value)).quantize(_CURRENCY_UNIT, rounding=ROUND_HALF_UP)


@dataclass(slots=True, frozen=True)
class BonusQuote:
    """Credit granted for a top-up: purchased amount plus bonus."""

    amount: Decimal
    bonus: Decimal

    @property
    def total_credit(self) -> Decimal:
        return self.amount + self.bonus


BonusRule = Callable[[Decimal], BonusQuote]


def no_bonus(amount: Decimal) -> BonusQuote:
    return BonusQuote(amount=_to_money(amount), bonus=_ZERO)


def threshold_bonus_rule(rules: Sequence[CreditBonusRule]) -> BonusRule:
    """Build a rule granting the bonus of the highest threshold reached."""
    active = sorted(
        (rule for rule in rules if rule.is_active),
        key=lambda rule: Decimal(rule.threshold),
        reverse=True,
    )

    def _apply(amount: Decimal) -> BonusQuote:
        credit = _to_money(amount)
        for rule in active:
            if credit >= Decimal(rule.threshold):
                return BonusQuote(amount=credit, bonus=_to_money(rule.bonus))
        return BonusQuote(amount=credit, bonus=_ZERO)

    return _apply


async def load_bonus_rule(session: AsyncSession, *, store_id: UUID) -> BonusRule:
    """Return the store's configured bonus rule."""
    rules = (
        await session.execute(
            select(CreditBonusRule).where(
                CreditBonusRule.store_id == store_id,
                CreditBonusRule.is_active.is_(True),
            )
        )
    ).scalars().all()
    if not rules:
        return no_bonus
    return threshold_bonus_rule(rules)


@dataclass(slots=True)
class TopUpResult:
    order: StoreOrder
    already_processed: bool
    credit_amount: Decimal = _ZERO
    bonus_amount: Decimal = _ZERO
    customer_balance: Decimal | None = None
    ledger_entry: StoreLedger | None = None


async def _load_order(session: AsyncSession, order_id: UUID) -> StoreOrder:
    order = (
        await session.execute(
            select(StoreOrder)
            .options(
                selectinload(StoreOrder.store),
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


def _mark_paid(order: StoreOrder, now: datetime) -> None:
    order.is_paid = True
    order.paid_at = coerce_utc(now)
    order.order_status = OrderStatus.COMPLETED
    order.payment_status = PaymentStatus.PAID


async def process_credit_top_up(
    session: AsyncSession,
    *,
    order_id: UUID,
    now: datetime,
    bonus_rule: BonusRule | None = None,
    creator_id: UUID | None = None,
    payment_method: PaymentMethod | None = None,
) -> TopUpResult:
    """Convert a paid recharge order into customer credit exactly once.

    Credit is ``order_total / credit_exchange_rate`` plus any bonus. The order
    is marked paid, the customer's credit ledger and balance are updated and
    one ``CREDIT_RECHARGE`` entry is appended to the store ledger, all in one
    transaction under the store's ledger lock. Replays return
    ``already_processed=True``.
    """
    store_id = await session.scalar(
        select(StoreOrder.store_id).where(StoreOrder.id == order_id)
    )
    if store_id is None:
        raise NotFoundError("Order not found")
    async with ledger_service.store_ledger_lock(store_id):
        return await _apply_top_up(
            session,
            order_id=order_id,
            now=now,
            bonus_rule=bonus_rule,
            creator_id=creator_id,
            payment_method=payment_method,
        )


async def _apply_top_up(
    session: AsyncSession,
    *,
    order_id: UUID,
    now: datetime,
    bonus_rule: BonusRule | None,
    creator_id: UUID | None,
    payment_method: PaymentMethod | None,
) -> TopUpResult:
    order = await _load_order(session, order_id)
    if order.customer_id is None:
        raise ValidationError("Recharge order must belong to a customer")
    reference_id = str(order.id)

    existing = await session.scalar(
        select(CustomerCreditLedger.id).where(
            CustomerCreditLedger.reference_id == reference_id,
            CustomerCreditLedger.type == CustomerCreditLedgerType.TOPUP,
        )
    )
    if existing is not None:
        if not order.is_paid:
            _mark_paid(order, now)
            await session.commit()
        logger.warning("Credit top-up for order %s already processed", order.id)
        return TopUpResult(order=order, already_processed=True)

    store = order.store
    rate = Decimal(store.credit_exchange_rate or 0)
    if rate <= 0:
        raise ValidationError("Credit exchange rate is not configured")

    dollars = _to_money(order.order_total)
    rule = bonus_rule or await load_bonus_rule(session, store_id=store.id)
    quote = rule(dollars / rate)
    settled_at = order.updated_at or now

    account = await customer_credit_service.credit_account(
        session, store_id=store.id, customer_id=order.customer_id
    )
    balance = Decimal(account.point) + quote.amount
    session.add(
        CustomerCreditLedger(
            store_id=store.id,
            customer_id=order.customer_id,
            amount=quote.amount,
            balance=balance,
            type=CustomerCreditLedgerType.TOPUP,
            reference_id=reference_id,
            note=f"top-up {quote.amount} credit for {dollars} {order.currency.upper()}",
            creator_id=creator_id,
        )
    )
    if quote.bonus > 0:
        balance += quote.bonus
        session.add(
            CustomerCreditLedger(
                store_id=store.id,
                customer_id=order.customer_id,
                amount=quote.bonus,
                balance=balance,
                type=CustomerCreditLedgerType.BONUS,
                reference_id=reference_id,
                note=f"top-up bonus {quote.bonus}",
                creator_id=creator_id,
            )
        )
    account.point = balance

    _mark_paid(order, now)
    if payment_method is not None:
        order.payment_method_id = payment_method.id
    try:
        entry, fees = await ledger_service.post_order_entry(
            session,
            order=order,
            store=store,
            payment_method=payment_method or order.payment_method,
            settled_at=settled_at,
            now=now,
            type=StoreLedgerType.CREDIT_RECHARGE,
            description=(
                f"credit recharge {quote.amount} + bonus {quote.bonus} "
                f"for {dollars} {order.currency.upper()}"
            ),
            note=f"order {order.id}",
            commit=False,
        )
        order.payment_cost = fees.payment_cost
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConsistencyError(
            f"Credit top-up for order {order.id} was processed concurrently"
        ) from exc

    logger.info(
        "Credit top-up for order %s: %s credit + %s bonus (balance %s)",
        order.id,
        quote.amount,
        quote.bonus,
        balance,
    )
    return TopUpResult(
        order=order,
        already_processed=False,
        credit_amount=quote.amount,
        bonus_amount=quote.bonus,
        customer_balance=balance,
        ledger_entry=entry,
    )
