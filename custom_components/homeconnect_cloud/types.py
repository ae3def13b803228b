"""Type definitions for the Home Connect Cloud integration."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import datetime as dt
from enum import StrEnum
import logging
from typing import TYPE_CHECKING, Any, Generic, TypeAlias, TypeVar

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import CALLBACK_TYPE, callback

from .const import TOKEN_ACCESS_EXPIRES_AT, TOKEN_ACCESS_TOKEN, TOKEN_REFRESH_TOKEN

if TYPE_CHECKING:
    from .api import HomeConnectApiClient
    from .auth import HomeConnectAuth
    from .coordinator import HomeConnectCoordinator
    from .events import HomeConnectEventStreams

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


class AuthState(StrEnum):
    """Authorization engine states."""

    UNAUTHORIZED = "unauthorized"
    ACQUIRING = "acquiring"
    AUTHORIZED = "authorized"
    REFRESHING = "refreshing"


@dataclass
class TokenPair:
    """Saved authorization for one client identity."""

    refresh_token: str
    access_token: str | None
    access_expires_at: dt.datetime

    @classmethod
    def from_grant(cls, token: dict[str, Any]) -> TokenPair:
        """Create a token pair from a token endpoint response."""
        return cls(
            refresh_token=token["refresh_token"],
            access_token=token["access_token"],
            access_expires_at=dt.datetime.now(dt.UTC)
            + dt.timedelta(seconds=token["expires_in"]),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenPair:
        """Create a token pair from its persisted form."""
        return cls(
            refresh_token=data[TOKEN_REFRESH_TOKEN],
            access_token=data.get(TOKEN_ACCESS_TOKEN),
            access_expires_at=dt.datetime.fromisoformat(
                data[TOKEN_ACCESS_EXPIRES_AT]
            ),
        )

    def as_dict(self) -> dict[str, Any]:
        """Return the persisted form of the token pair."""
        return {
            TOKEN_REFRESH_TOKEN: self.refresh_token,
            TOKEN_ACCESS_TOKEN: self.access_token,
            TOKEN_ACCESS_EXPIRES_AT: self.access_expires_at.isoformat(),
        }


@dataclass(frozen=True)
class AuthorizationRequest:
    """A device flow authorization waiting for the user."""

    uri: str
    user_code: str | None
    expires_in: int


@dataclass(frozen=True)
class ApplianceEvent:
    """One record received from an appliance event stream."""

    haid: str
    fields: dict[str, Any]

    @property
    def event(self) -> str | None:
        """Return the event type (KEEP-ALIVE, STATUS, NOTIFY, ...)."""
        return self.fields.get("event")

    @property
    def data(self) -> Any:
        """Return the decoded payload, if any."""
        return self.fields.get("data")


class Channel(Generic[_T]):
    """Fan-out notification channel with typed payloads."""

    def __init__(self, name: str) -> None:
        """Initialize the channel."""
        self.name = name
        self._listeners: list[Callable[[_T], None]] = []

    @callback
    def async_subscribe(self, listener: Callable[[_T], None]) -> CALLBACK_TYPE:
        """Add a listener and return a callable that removes it."""
        self._listeners.append(listener)

        @callback
        def remove_listener() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove_listener

    @callback
    def async_publish(self, payload: _T) -> None:
        """Deliver a payload to every listener in subscription order."""
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception:
                _LOGGER.exception("Error in %s listener", self.name)

    @property
    def has_listeners(self) -> bool:
        """Return True if anything is subscribed."""
        return bool(self._listeners)


@dataclass
class HomeConnectRuntimeData:
    """Runtime data for the Home Connect Cloud integration."""

    auth: HomeConnectAuth
    api_client: HomeConnectApiClient
    event_streams: HomeConnectEventStreams
    coordinator: HomeConnectCoordinator


HomeConnectConfigEntry: TypeAlias = ConfigEntry[HomeConnectRuntimeData]
