"""Append-only per-store balance chain."""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Final
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.errors import ConsistencyError, NotFoundError
from storefront.core.settings import LedgerSettings, get_ledger_settings
from storefront.core.timeutils import coerce_utc
from storefront.models import (
    PaymentMethod,
    Store,
    StoreLedger,
    StoreLedgerType,
    StoreOrder,
)

logger = logging.getLogger(__name__)

_CURRENCY_UNIT: Final = Decimal("0.01")
_ROUNDING_MODE: Final = ROUND_HALF_UP
_ZERO: Final = Decimal("0.00")

_store_locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = weakref.WeakValueDictionary()


def _to_money(value: Decimal | float | int | str) -> Decimal:
    return Decimal(str(value)).quantize(_CURRENCY_UNIT, rounding=_ROUNDING_MODE)


@asynccontextmanager
async def store_ledger_lock(store_id: UUID) -> AsyncIterator[None]:
    """Serialize ledger writers for one store within this process.

    Backends without row locks (SQLite) would otherwise let two writers read
    the same last balance. Hold the lock from before the first write until
    the transaction commits. It is not reentrant.
    """
    lock = _store_locks.get(store_id)
    if lock is None:
        lock = asyncio.Lock()
        _store_locks[store_id] = lock
    async with lock:
        yield


@dataclass(slots=True)
class PaymentFees:
    """Signed deductions applied to a settled payment."""

    fee: Decimal
    fee_tax: Decimal
    platform_fee: Decimal

    @property
    def payment_cost(self) -> Decimal:
        return _to_money(self.fee + self.fee_tax + self.platform_fee)


def compute_payment_fees(
    *,
    amount: Decimal,
    fee_rate: Decimal,
    fee_additional: Decimal,
    is_pro: bool,
    use_platform: bool = True,
    settings: LedgerSettings | None = None,
) -> PaymentFees:
    """Return processing fee, tax on that fee and platform commission.

    The processing fee only applies when the platform collected the payment;
    the platform commission only applies to free-tier stores.
    """
    config = settings or get_ledger_settings()
    fee = _ZERO
    fee_tax = _ZERO
    if use_platform:
        fee = _to_money(-(Decimal(amount) * Decimal(fee_rate) + Decimal(fee_additional)))
        fee_tax = _to_money(fee * config.fee_tax_rate)
    platform_fee = _ZERO if is_pro else _to_money(-(Decimal(amount) * config.platform_fee_rate))
    return PaymentFees(fee=fee, fee_tax=fee_tax, platform_fee=platform_fee)


def compute_availability(settled_at: datetime, clear_days: int | None) -> datetime:
    """Return when settled funds become available to the store."""
    return coerce_utc(settled_at) + timedelta(days=clear_days or 0)


async def _latest_entry(session: AsyncSession, store_id: UUID) -> StoreLedger | None:
    stmt = (
        select(StoreLedger)
        .where(StoreLedger.store_id == store_id)
        .order_by(StoreLedger.sequence.desc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


async def find_entry_for_order(
    session: AsyncSession,
    *,
    order_id: UUID,
    type: StoreLedgerType | None = None,
) -> StoreLedger | None:
    """Return the ledger entry posted for ``order_id``, if any."""
    stmt = select(StoreLedger).where(StoreLedger.order_id == order_id)
    if type is not None:
        stmt = stmt.where(StoreLedger.type == int(type))
    return (await session.execute(stmt.limit(1))).scalars().first()


async def append_entry(
    session: AsyncSession,
    *,
    store_id: UUID,
    amount: Decimal,
    currency: str,
    type: StoreLedgerType,
    availability: datetime,
    description: str,
    fee: Decimal = _ZERO,
    platform_fee: Decimal = _ZERO,
    order_id: UUID | None = None,
    note: str | None = None,
    now: datetime | None = None,
    commit: bool = True,
) -> StoreLedger:
    """Append one entry to the store's chain and return it.

    The store row is locked for the duration of the transaction and, with
    ``commit=True``, the in-process store lock is held until the commit, so
    concurrent appends observe each other's balance. A second posting for the
    same ``(order_id, type)`` raises ``ConsistencyError``. With
    ``commit=False`` the entry is only flushed; the caller owns the
    transaction and must hold ``store_ledger_lock`` until it commits.
    """
    values = dict(
        store_id=store_id,
        amount=amount,
        currency=currency,
        type=type,
        availability=availability,
        description=description,
        fee=fee,
        platform_fee=platform_fee,
        order_id=order_id,
        note=note,
        now=now,
    )
    if not commit:
        return await _write_entry(session, **values)
    async with store_ledger_lock(store_id):
        entry = await _write_entry(session, **values)
        await session.commit()
    await session.refresh(entry)
    return entry


async def _write_entry(
    session: AsyncSession,
    *,
    store_id: UUID,
    amount: Decimal,
    currency: str,
    type: StoreLedgerType,
    availability: datetime,
    description: str,
    fee: Decimal,
    platform_fee: Decimal,
    order_id: UUID | None,
    note: str | None,
    now: datetime | None,
) -> StoreLedger:
    store = await session.scalar(
        select(Store).where(Store.id == store_id).with_for_update()
    )
    if store is None:
        raise NotFoundError("Store not found")

    if order_id is not None:
        duplicate = await find_entry_for_order(session, order_id=order_id, type=type)
        if duplicate is not None:
            raise ConsistencyError(
                f"Ledger entry {duplicate.id} already posted for order {order_id}"
            )

    amount = _to_money(amount)
    fee = _to_money(fee)
    platform_fee = _to_money(platform_fee)

    last = await _latest_entry(session, store_id)
    previous_balance = _to_money(last.balance) if last is not None else _ZERO
    entry = StoreLedger(
        store_id=store_id,
        order_id=order_id,
        sequence=(last.sequence + 1) if last is not None else 1,
        amount=amount,
        fee=fee,
        platform_fee=platform_fee,
        currency=(currency or store.default_currency).lower(),
        type=int(type),
        balance=previous_balance + amount + fee + platform_fee,
        description=description,
        note=note,
        availability=coerce_utc(availability),
    )
    if now is not None:
        entry.created_at = coerce_utc(now)
    session.add(entry)
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        raise ConsistencyError(
            f"Concurrent ledger append detected for store {store_id}"
        ) from exc

    logger.info(
        "Ledger entry #%s posted for store %s (order=%s, type=%s, balance=%s)",
        entry.sequence,
        store_id,
        order_id,
        StoreLedgerType(entry.type).name,
        entry.balance,
    )
    return entry


async def get_balance(session: AsyncSession, *, store_id: UUID) -> Decimal:
    """Return the store's current balance (zero for an empty chain)."""
    last = await _latest_entry(session, store_id)
    return _to_money(last.balance) if last is not None else _ZERO


async def count_entries(session: AsyncSession, *, store_id: UUID) -> int:
    total = await session.scalar(
        select(func.count(StoreLedger.id)).where(StoreLedger.store_id == store_id)
    )
    return int(total or 0)


async def list_entries(
    session: AsyncSession,
    *,
    store_id: UUID,
    limit: int | None = None,
    offset: int = 0,
) -> list[StoreLedger]:
    """Return the store's entries in chain order."""
    stmt = (
        select(StoreLedger)
        .where(StoreLedger.store_id == store_id)
        .order_by(StoreLedger.sequence.asc())
        .offset(offset)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list((await session.execute(stmt)).scalars().all())


async def verify_chain(session: AsyncSession, *, store_id: UUID) -> Decimal:
    """Walk the chain and return the final balance.

    Raises ``ConsistencyError`` at the first entry whose balance does not
    equal its predecessor's balance plus its own signed components, or whose
    sequence number skips.
    """
    running = _ZERO
    expected_sequence = 1
    for entry in await list_entries(session, store_id=store_id):
        if entry.sequence != expected_sequence:
            raise ConsistencyError(
                f"Ledger sequence gap at entry {entry.id}: "
                f"expected {expected_sequence}, found {entry.sequence}"
            )
        running = running + _to_money(entry.amount) + _to_money(entry.fee) + _to_money(
            entry.platform_fee
        )
        if _to_money(entry.balance) != running:
            raise ConsistencyError(
                f"Ledger balance mismatch at entry #{entry.sequence} ({entry.id}): "
                f"stored {entry.balance}, expected {running}"
            )
        expected_sequence += 1
    return running


def uses_platform_collection(store: Store) -> bool:
    """Return whether the platform, not the store's own provider, collected payment."""
    return not store.is_pro or bool(store.uses_platform_gateway)


def order_entry_type(store: Store) -> StoreLedgerType:
    """Return the entry type an order settled at ``store`` is posted under."""
    if uses_platform_collection(store):
        return StoreLedgerType.HOLD_BY_PLATFORM
    return StoreLedgerType.STORE_PAYMENT_PROVIDER


async def post_order_entry(
    session: AsyncSession,
    *,
    order: StoreOrder,
    store: Store,
    payment_method: PaymentMethod | None,
    settled_at: datetime,
    now: datetime,
    type: StoreLedgerType | None = None,
    description: str | None = None,
    note: str | None = None,
    commit: bool = False,
) -> tuple[StoreLedger, PaymentFees]:
    """Post the ledger entry for a settled order and return it with its fees.

    The entry type defaults to ``HOLD_BY_PLATFORM`` when the platform collected
    the money and ``STORE_PAYMENT_PROVIDER`` otherwise; availability is
    ``settled_at`` plus the payment method's clear days.
    """
    use_platform = uses_platform_collection(store)
    fees = compute_payment_fees(
        amount=order.order_total,
        fee_rate=payment_method.fee_rate if payment_method else Decimal("0"),
        fee_additional=payment_method.fee_additional if payment_method else Decimal("0"),
        is_pro=store.is_pro,
        use_platform=use_platform,
    )
    if type is None:
        type = order_entry_type(store)
    method_name = payment_method.name if payment_method else "unknown"
    entry = await append_entry(
        session,
        store_id=store.id,
        order_id=order.id,
        amount=order.order_total,
        fee=fees.fee,
        platform_fee=fees.platform_fee,
        currency=order.currency,
        type=type,
        availability=compute_availability(
            settled_at, payment_method.clear_days if payment_method else 0
        ),
        description=description or f"order {order.id} paid via {method_name}",
        note=note,
        now=now,
        commit=commit,
    )
    return entry, fees
