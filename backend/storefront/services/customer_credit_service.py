"""Customer credit balances: holds for prepaid reservations, spends and refunds."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Final
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.errors import ValidationError
from storefront.models import (
    CustomerCredit,
    CustomerCreditLedger,
    CustomerCreditLedgerType,
    OrderStatus,
    PaymentStatus,
    Store,
    StoreLedger,
    StoreLedgerType,
    StoreOrder,
)
from storefront.services import ledger_service

logger = logging.getLogger(__name__)

_CURRENCY_UNIT: Final = Decimal("0.01")
_ZERO: Final = Decimal("0.00")


def _to_money(value: Decimal | int | str) -> Decimal:
    return Decimal(str(value)).quantize(_CURRENCY_UNIT, rounding=ROUND_HALF_UP)


@dataclass(slots=True)
class CreditRefund:
    credit: Decimal
    ledger_entry: StoreLedger | None = None


async def credit_account(
    session: AsyncSession, *, store_id: UUID, customer_id: UUID
) -> CustomerCredit:
    """Return the customer's locked credit row at the store, creating it at zero."""
    account = await session.scalar(
        select(CustomerCredit)
        .where(
            CustomerCredit.store_id == store_id,
            CustomerCredit.customer_id == customer_id,
        )
        .with_for_update()
    )
    if account is None:
        account = CustomerCredit(store_id=store_id, customer_id=customer_id, point=_ZERO)
        session.add(account)
        await session.flush()
    return account


async def get_customer_balance(
    session: AsyncSession, *, store_id: UUID, customer_id: UUID
) -> Decimal:
    point = await session.scalar(
        select(CustomerCredit.point).where(
            CustomerCredit.store_id == store_id,
            CustomerCredit.customer_id == customer_id,
        )
    )
    return Decimal(point) if point is not None else _ZERO


async def find_credit_entry(
    session: AsyncSession,
    *,
    order_id: UUID,
    type: CustomerCreditLedgerType,
) -> CustomerCreditLedger | None:
    return await session.scalar(
        select(CustomerCreditLedger).where(
            CustomerCreditLedger.reference_id == str(order_id),
            CustomerCreditLedger.type == type,
        )
    )


def credit_for_amount(store: Store, amount: Decimal) -> Decimal:
    """Convert a currency amount into the store's credit points."""
    rate = Decimal(store.credit_exchange_rate or 0)
    if rate <= 0:
        raise ValidationError("Credit exchange rate is not configured")
    return _to_money(Decimal(amount) / rate)


def cash_for_credit(store: Store, credit: Decimal) -> Decimal:
    return _to_money(Decimal(credit) * Decimal(store.credit_exchange_rate or 0))


async def can_cover(
    session: AsyncSession, *, store: Store, customer_id: UUID, amount: Decimal
) -> bool:
    """Return whether the customer's credit covers ``amount`` at this store."""
    if not store.use_customer_credit or Decimal(store.credit_exchange_rate or 0) <= 0:
        return False
    balance = await get_customer_balance(
        session, store_id=store.id, customer_id=customer_id
    )
    return balance >= credit_for_amount(store, amount)


async def hold_for_order(
    session: AsyncSession,
    *,
    store: Store,
    order: StoreOrder,
    customer_id: UUID,
    note: str | None = None,
) -> CustomerCreditLedger:
    """Reserve credit for a prepaid order; the caller commits.

    The balance drops now. No store ledger entry is posted until the hold is
    spent, since no revenue is earned yet.
    """
    credit = credit_for_amount(store, order.order_total)
    account = await credit_account(session, store_id=store.id, customer_id=customer_id)
    balance = Decimal(account.point)
    if balance < credit:
        raise ValidationError("Insufficient credit balance")
    balance -= credit
    account.point = balance
    entry = CustomerCreditLedger(
        store_id=store.id,
        customer_id=customer_id,
        amount=-credit,
        balance=balance,
        type=CustomerCreditLedgerType.HOLD,
        reference_id=str(order.id),
        note=note or f"hold {credit} credit for order {order.id}",
        creator_id=customer_id,
    )
    session.add(entry)
    await session.flush()
    logger.info("Held %s credit for order %s (balance %s)", credit, order.id, balance)
    return entry


async def convert_hold_to_spend(
    session: AsyncSession,
    *,
    store: Store,
    order: StoreOrder,
    now: datetime,
    creator_id: UUID | None = None,
) -> StoreLedger | None:
    """Turn an order's credit hold into a spend and recognize the revenue.

    The customer's balance is unchanged. One ``CREDIT_REVENUE`` store entry
    worth the held credit is appended without fees. Returns ``None`` when the
    order has no hold or it was already spent. The caller holds the store
    ledger lock and commits.
    """
    hold = await find_credit_entry(
        session, order_id=order.id, type=CustomerCreditLedgerType.HOLD
    )
    if hold is None:
        return None
    if await find_credit_entry(
        session, order_id=order.id, type=CustomerCreditLedgerType.SPEND
    ) is not None:
        logger.warning("Credit hold for order %s already spent", order.id)
        return None

    credit = _to_money(abs(Decimal(hold.amount)))
    balance = await get_customer_balance(
        session, store_id=store.id, customer_id=hold.customer_id
    )
    session.add(
        CustomerCreditLedger(
            store_id=store.id,
            customer_id=hold.customer_id,
            amount=-credit,
            balance=balance,
            type=CustomerCreditLedgerType.SPEND,
            reference_id=str(order.id),
            note=f"spend {credit} credit",
            creator_id=creator_id,
        )
    )
    cash = cash_for_credit(store, credit)
    entry = await ledger_service.append_entry(
        session,
        store_id=store.id,
        order_id=order.id,
        amount=cash,
        currency=order.currency,
        type=StoreLedgerType.CREDIT_REVENUE,
        availability=now,
        description=f"{credit} credit spent ({cash} {order.currency.upper()})",
        now=now,
        commit=False,
    )
    logger.info("Converted credit hold for order %s to spend (%s)", order.id, credit)
    return entry


async def refund_order_credit(
    session: AsyncSession,
    *,
    store: Store,
    order: StoreOrder,
    now: datetime,
    reason: str | None = None,
    creator_id: UUID | None = None,
) -> CreditRefund | None:
    """Give back the credit an order was paid with; the caller commits.

    A held order is refunded without touching the store ledger. A spent order
    also reverses its revenue with a negative ``CREDIT_REFUND`` entry.
    Returns ``None`` when the order was not paid with credit or was already
    refunded. The caller holds the store ledger lock.
    """
    if await find_credit_entry(
        session, order_id=order.id, type=CustomerCreditLedgerType.REFUND
    ) is not None:
        logger.warning("Credit for order %s already refunded", order.id)
        return None
    spend = await find_credit_entry(
        session, order_id=order.id, type=CustomerCreditLedgerType.SPEND
    )
    hold = await find_credit_entry(
        session, order_id=order.id, type=CustomerCreditLedgerType.HOLD
    )
    source = spend or hold
    if source is None:
        return None

    credit = _to_money(abs(Decimal(source.amount)))
    account = await credit_account(
        session, store_id=store.id, customer_id=source.customer_id
    )
    balance = Decimal(account.point) + credit
    account.point = balance
    session.add(
        CustomerCreditLedger(
            store_id=store.id,
            customer_id=source.customer_id,
            amount=credit,
            balance=balance,
            type=CustomerCreditLedgerType.REFUND,
            reference_id=str(order.id),
            note=reason or f"refund {credit} credit",
            creator_id=creator_id,
        )
    )

    entry = None
    if spend is not None:
        cash = cash_for_credit(store, credit)
        entry = await ledger_service.append_entry(
            session,
            store_id=store.id,
            order_id=order.id,
            amount=-cash,
            currency=order.currency,
            type=StoreLedgerType.CREDIT_REFUND,
            availability=now,
            description=f"refund {credit} credit ({cash} {order.currency.upper()})",
            note=reason,
            now=now,
            commit=False,
        )

    order.payment_status = PaymentStatus.REFUNDED
    order.order_status = OrderStatus.VOIDED
    order.note = reason or order.note
    await session.flush()
    logger.info(
        "Refunded %s credit for order %s (balance %s)", credit, order.id, balance
    )
    return CreditRefund(credit=credit, ledger_entry=entry)
