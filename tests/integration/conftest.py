"""Integration-test fixtures (requires running PG + Redis, migrated with `alembic upgrade head`).

All integration tests share a single event loop so that the module-level
SQLAlchemy async engine pool and Redis pool stay valid across the session.
Tests are skipped when either service is unreachable.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text

from src.cr_common.database import engine
from src.cr_common.redis_client import get_redis
from src.main import app


@pytest_asyncio.fixture(loop_scope="session", scope="session", autouse=True)
async def _services_available() -> None:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1 FROM credits_balances LIMIT 1"))
        redis = await get_redis()
        await redis.ping()
    except Exception as exc:  # noqa: BLE001
        pytest.skip(f"PostgreSQL/Redis not available: {exc}")


@pytest_asyncio.fixture(loop_scope="session", scope="session")
async def client() -> AsyncClient:  # type: ignore[override]
    """Session-scoped async HTTP client: keeps the engine pool alive."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
