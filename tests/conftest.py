"""Shared fixtures: a fully wired in-memory engine with a small role and retention table."""

import pytest

from phi_guard.api.dependencies import Container, build_container
from phi_guard.config.settings import AppSettings
from phi_guard.domain.models.resource import ResourceMetadata
from support import add_resource, make_settings, seed


@pytest.fixture
def settings() -> AppSettings:
    return make_settings()


@pytest.fixture
def container(settings) -> Container:
    c = build_container(settings)
    seed(c)
    return c


@pytest.fixture
async def patient(container) -> ResourceMetadata:
    return await add_resource(container, "p-100", subject_id="pat-1")
