"""Fixtures for Home Connect Cloud tests."""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, MagicMock

import pytest

if TYPE_CHECKING:
    from collections.abc import Generator

    from homeassistant.core import HomeAssistant

from custom_components.homeconnect_cloud.auth import HomeConnectAuth
from custom_components.homeconnect_cloud.const import (
    CONF_CLIENT_ID,
    CONF_SAVED_AUTH,
    CONF_SIMULATOR,
    TOKEN_ACCESS_EXPIRES_AT,
    TOKEN_ACCESS_TOKEN,
    TOKEN_REFRESH_TOKEN,
)
from custom_components.homeconnect_cloud.types import TokenPair

pytest_plugins = "pytest_homeassistant_custom_component"

# ---------------------------------------------------------------------------
# Common test data
# ---------------------------------------------------------------------------

TEST_CLIENT_ID = "test_client_id"
TEST_ACCESS_TOKEN = "test_access_token"
TEST_REFRESH_TOKEN = "test_refresh_token"
TEST_HAID = "BOSCH-WAT28400GB-68A40E000001"
TEST_HAID_2 = "SIEMENS-HB676G5S6-68A40E000002"

SAMPLE_WASHER = {
    "haId": TEST_HAID,
    "name": "Washer",
    "type": "Washer",
    "brand": "Bosch",
    "vib": "WAT28400GB",
    "enumber": "WAT28400GB/01",
    "connected": True,
}

SAMPLE_OVEN = {
    "haId": TEST_HAID_2,
    "name": "Oven",
    "type": "Oven",
    "brand": "Siemens",
    "vib": "HB676G5S6",
    "enumber": "HB676G5S6/01",
    "connected": True,
}

TOKEN_RESPONSE = {
    "access_token": "new_access_token",
    "refresh_token": "new_refresh_token",
    "expires_in": 86400,
    "token_type": "Bearer",
    "scope": "IdentifyAppliance Monitor",
}


def future_expiry(seconds: float = 86400) -> dt.datetime:
    """Return a timestamp the given number of seconds in the future."""
    return dt.datetime.now(dt.UTC) + dt.timedelta(seconds=seconds)


def make_token_pair(
    access_token: str | None = TEST_ACCESS_TOKEN, expires_in: float = 86400
) -> TokenPair:
    """Return a saved token pair for the test client."""
    return TokenPair(
        refresh_token=TEST_REFRESH_TOKEN,
        access_token=access_token,
        access_expires_at=future_expiry(expires_in),
    )


def make_saved_auth_data(expires_in: float = 86400) -> dict[str, Any]:
    """Return persisted credentials as stored in the config entry."""
    return {
        TEST_CLIENT_ID: {
            TOKEN_REFRESH_TOKEN: TEST_REFRESH_TOKEN,
            TOKEN_ACCESS_TOKEN: TEST_ACCESS_TOKEN,
            TOKEN_ACCESS_EXPIRES_AT: future_expiry(expires_in).isoformat(),
        }
    }


def mock_response(
    status: int = 200,
    body: Any = None,
    headers: dict[str, str] | None = None,
) -> MagicMock:
    """Return a mocked aiohttp response."""
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.json = AsyncMock(return_value=body)
    return response


class MockStreamContent:
    """Async iterator over event stream lines.

    After the last line the stream raises ``error`` if given, ends if
    ``hold_open`` is False, and otherwise stays open until the reading task
    is cancelled, the way a live event stream does.
    """

    def __init__(
        self,
        lines: list[str],
        hold_open: bool = True,
        error: Exception | None = None,
    ) -> None:
        """Initialize with the lines to deliver."""
        self._lines = lines
        self._hold_open = hold_open
        self._error = error

    async def _iterate(self):
        for line in self._lines:
            await asyncio.sleep(0)
            yield f"{line}\r\n".encode()
        if self._error is not None:
            raise self._error
        if self._hold_open:
            await asyncio.Event().wait()

    def __aiter__(self):
        """Return the line iterator."""
        return self._iterate()


def mock_stream_response(
    lines: list[str], hold_open: bool = True, error: Exception | None = None
) -> MagicMock:
    """Return a mocked event stream response."""
    response = mock_response(200)
    response.content = MockStreamContent(lines, hold_open, error)
    return response


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def auto_enable_custom_integrations(
    enable_custom_integrations: Generator,
) -> Generator:
    """Enable custom integrations for all tests."""
    return


@pytest.fixture
def mock_config_entry_data() -> dict[str, Any]:
    """Return config entry data for an authorized client."""
    return {
        CONF_CLIENT_ID: TEST_CLIENT_ID,
        CONF_SIMULATOR: False,
        CONF_SAVED_AUTH: make_saved_auth_data(),
    }


@pytest.fixture
def auth(hass: HomeAssistant) -> HomeConnectAuth:
    """Return an authorization engine holding a valid access token."""
    return HomeConnectAuth(
        hass,
        TEST_CLIENT_ID,
        saved_auth={TEST_CLIENT_ID: make_token_pair()},
    )


@pytest.fixture
def unauthorized_auth(hass: HomeAssistant) -> HomeConnectAuth:
    """Return an authorization engine without saved credentials."""
    return HomeConnectAuth(hass, TEST_CLIENT_ID)
