"""Shared fixtures for unit tests."""

from unittest.mock import AsyncMock

import pytest

from cf_apply.models import Application, ApplicationManifest, Service
from cf_apply.operations_protocol import PlatformOperations


@pytest.fixture
def ops() -> AsyncMock:
    """Mock platform operations handle with an empty live state."""
    mock = AsyncMock(spec=PlatformOperations)
    mock.get_applications.return_value = {}
    mock.get_services.return_value = {}
    mock.get_space_developers.return_value = []
    return mock


@pytest.fixture
def app1() -> Application:
    """Application 'app1' with one instance and a ruby buildpack."""
    return Application(
        path="./app1",
        manifest=ApplicationManifest(buildpack="ruby_buildpack", instances=1, memory=256),
    )


@pytest.fixture
def svc1() -> Service:
    """Service 'svc1' on the small postgres plan."""
    return Service(service="postgres", plan="small", tags=["sql"])
