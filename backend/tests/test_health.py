"""Health endpoint checks."""

import pytest
from sqlalchemy.exc import OperationalError

from storefront.api import deps
from storefront.main import app

pytestmark = pytest.mark.asyncio


class _UnreachableSession:
    async def execute(self, *_args, **_kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


async def test_healthcheck_reports_database_reachable(app_context) -> None:
    client = app_context["client"]

    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["database"] == "ok"
    assert payload["service"] == "Storefront Reservations API"
    assert response.headers.get("X-Request-ID")


async def test_healthcheck_degrades_when_database_unreachable(app_context) -> None:
    client = app_context["client"]

    async def _broken_session():
        yield _UnreachableSession()

    app.dependency_overrides[deps.get_db_session] = _broken_session
    try:
        response = await client.get("/api/v1/health")
    finally:
        app.dependency_overrides.pop(deps.get_db_session, None)

    assert response.status_code == 503
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["database"] == "unavailable"
