"""Store ledger API."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api import deps
from storefront.core.errors import StorefrontError
from storefront.schemas.ledger import LedgerBalanceRead, LedgerEntryRead
from storefront.services import ledger_service
from storefront.services.reservation_service import Actor

router = APIRouter()


@router.get("", response_model=list[LedgerEntryRead], summary="List ledger entries")
async def list_entries(
    store_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[Actor, Depends(deps.get_staff_actor)],
    limit: Annotated[int | None, Query(ge=1, le=500)] = None,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[LedgerEntryRead]:
    entries = await ledger_service.list_entries(
        session, store_id=store_id, limit=limit, offset=offset
    )
    return [LedgerEntryRead.model_validate(entry) for entry in entries]


@router.get("/balance", response_model=LedgerBalanceRead, summary="Current balance")
async def get_balance(
    store_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[Actor, Depends(deps.get_staff_actor)],
) -> LedgerBalanceRead:
    balance = await ledger_service.get_balance(session, store_id=store_id)
    entries = await ledger_service.count_entries(session, store_id=store_id)
    return LedgerBalanceRead(store_id=store_id, balance=balance, entries=entries)


@router.post(
    "/verify", response_model=LedgerBalanceRead, summary="Verify the balance chain"
)
async def verify_chain(
    store_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(deps.get_db_session)],
    _: Annotated[Actor, Depends(deps.get_staff_actor)],
) -> LedgerBalanceRead:
    try:
        balance = await ledger_service.verify_chain(session, store_id=store_id)
    except StorefrontError as exc:
        raise deps.as_http_error(exc) from exc
    entries = await ledger_service.count_entries(session, store_id=store_id)
    return LedgerBalanceRead(store_id=store_id, balance=balance, entries=entries)
