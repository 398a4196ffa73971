"""Common API dependencies."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.errors import (
    ConflictError,
    ConsistencyError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    StorefrontError,
    ValidationError,
)
from storefront.db.session import get_session
from storefront.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from storefront.services.reservation_service import Actor

_STAFF_ROLES = frozenset({"staff", "owner", "admin"})

_ERROR_STATUS: tuple[tuple[type[StorefrontError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_409_CONFLICT),
    (StateError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (ConsistencyError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async database session."""
    async for session in get_session():
        yield session


def get_dispatcher() -> NotificationDispatcher:
    return get_notification_dispatcher()


def _parse_uuid(value: str, header: str) -> uuid.UUID:
    try:
        return uuid.UUID(value.strip())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} header",
        ) from exc


async def get_actor(
    x_user_id: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
    x_owned_reservations: Annotated[str | None, Header()] = None,
) -> Actor:
    """Build the caller identity forwarded by the upstream auth layer."""
    user_id = _parse_uuid(x_user_id, "X-User-Id") if x_user_id else None
    owned = frozenset(
        _parse_uuid(item, "X-Owned-Reservations")
        for item in (x_owned_reservations or "").split(",")
        if item.strip()
    )
    return Actor(
        user_id=user_id,
        is_staff=(x_actor_role or "").strip().lower() in _STAFF_ROLES,
        owned_reservation_ids=owned,
    )


async def get_staff_actor(actor: Annotated[Actor, Depends(get_actor)]) -> Actor:
    """Ensure the caller acts for the store."""
    if not actor.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions"
        )
    return actor


def as_http_error(exc: StorefrontError) -> HTTPException:
    """Translate a service failure into the matching HTTP error."""
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            detail: str | dict[str, str] = str(exc)
            if isinstance(exc, ConflictError):
                detail = {"message": str(exc), "rule": exc.rule}
            if isinstance(exc, ConsistencyError):
                detail = "Ledger consistency error"
            return HTTPException(status_code=code, detail=detail)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
