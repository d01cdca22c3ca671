"""Fixtures for API unit tests: seeded in-memory container on app.state, AsyncClient."""

import pytest
from httpx import ASGITransport, AsyncClient

from phi_guard.main import app


@pytest.fixture
def app_with_container(container):
    """App bound to the seeded test container. ASGITransport does not run the lifespan."""
    app.state.container = container
    yield app
    del app.state.container


@pytest.fixture
async def async_client(app_with_container):
    transport = ASGITransport(app=app_with_container)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auditor_headers():
    return {"X-Principal-ID": "aud-1"}


@pytest.fixture
def officer_headers():
    return {"X-Principal-ID": "co-1"}
