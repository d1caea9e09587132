"""API-specific test fixtures."""

import pytest
from httpx import ASGITransport, AsyncClient

from clinic_core.db.base import bind_engine
from clinic_core.db.redis import bind_redis
from clinic_core.main import create_app


@pytest.fixture
async def client(engine, redis):
    """In-process client sharing the test engine and fakeredis via the module globals."""
    bind_engine(engine)
    bind_redis(redis)

    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    bind_engine(None)
    bind_redis(None)


@pytest.fixture
def create_clinic(client):
    async def _create(tier: str = "PRO", name: str = "Test Clinic") -> str:
        response = await client.post("/api/clinics", json={"name": name, "tier": tier})
        assert response.status_code == 201
        return response.json()["clinic_id"]

    return _create
