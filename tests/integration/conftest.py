"""Integration fixtures: services wired to an in-process mock device."""

import sys
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "fixtures" / "mocks"))

from mock_device import MockDeviceState, create_app  # noqa: E402

from rokudeploy.services.deploy import DeployService  # noqa: E402
from rokudeploy.services.device import DeviceClient  # noqa: E402


@pytest.fixture
def device_state():
    """Replies and request log of the mock device."""
    return MockDeviceState()


@pytest.fixture
def device_client(device_state):
    """DeviceClient whose requests are served by the mock device app."""
    transport = httpx.ASGITransport(app=create_app(device_state))
    return DeviceClient(transport=transport)


@pytest.fixture
def deploy_service(device_client):
    return DeployService(device=device_client)
