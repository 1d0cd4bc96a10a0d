"""Health endpoint: liveness plus a database round trip."""

from collections.abc import AsyncGenerator

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from marketplace.database import get_db
from marketplace.main import app


class UnreachableSession:
    async def execute(self, *args, **kwargs):  # type: ignore[no-untyped-def]
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))


@pytest.mark.asyncio
async def test_health_reports_database(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "database": "ok"}


@pytest.mark.asyncio
async def test_health_degraded_when_database_down(client: AsyncClient) -> None:
    async def broken_db() -> AsyncGenerator[UnreachableSession, None]:
        yield UnreachableSession()

    app.dependency_overrides[get_db] = broken_db
    resp = await client.get("/health")
    assert resp.status_code == 503
    assert resp.json() == {"status": "degraded", "database": "unavailable"}
