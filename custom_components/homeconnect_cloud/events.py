"""Event streams for Home Connect appliances."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import re
from typing import TYPE_CHECKING, Any

import aiohttp
from homeassistant.core import CALLBACK_TYPE, callback
from homeassistant.helpers.aiohttp_client import async_get_clientsession
from homeassistant.util.json import json_loads

from .auth import async_read_json
from .const import (
    API_APPLIANCES,
    DEFAULT_TIMEOUT,
    DOMAIN,
    EVENT_STREAM_MEDIA_TYPE,
    EVENT_STREAM_RETRY_DELAY,
)
from .errors import (
    HomeConnectConnectionError,
    HomeConnectError,
    HomeConnectProtocolError,
    error_from_response,
)
from .types import ApplianceEvent, Channel

if TYPE_CHECKING:
    from collections.abc import Callable

    from homeassistant.core import HomeAssistant

    from .auth import HomeConnectAuth

_LOGGER = logging.getLogger(__name__)

_FIELD_RE = re.compile(r"^(\w+):\s*(.*)$")


class EventStreamParser:
    """Assemble event stream lines into event records.

    Records are separated by a blank line and consist of ``key: value``
    fields. A non-empty ``data`` field is decoded as JSON.
    """

    def __init__(self, haid: str) -> None:
        """Initialize the parser for one appliance."""
        self._haid = haid
        self._fields: dict[str, Any] = {}

    def feed_line(self, line: str) -> ApplianceEvent | None:
        """Process one line, returning a record when one is complete."""
        if not line:
            if not self._fields:
                return None
            event = ApplianceEvent(haid=self._haid, fields=self._fields)
            self._fields = {}
            return event

        match = _FIELD_RE.match(line)
        if match is None:
            # The simulator sends ":ok" at the start of a stream
            _LOGGER.debug("Unable to parse event line '%s' for %s", line, self._haid)
            return None

        key, value = match.groups()
        if key == "data" and value:
            try:
                value = json_loads(value)
            except ValueError:
                _LOGGER.warning(
                    "Unable to decode event data '%s' for %s", value, self._haid
                )
                return None
        self._fields[key] = value
        return None


@dataclass
class StreamHandle:
    """The event stream of one appliance."""

    haid: str
    task: asyncio.Task[None] | None = None
    response: aiohttp.ClientResponse | None = None
    cancelled: bool = False


class HomeConnectEventStreams:
    """Maintain one event stream per appliance and fan out its events."""

    def __init__(self, hass: HomeAssistant, auth: HomeConnectAuth) -> None:
        """Initialize the event stream manager.

        Args:
            hass: Home Assistant instance
            auth: Authorization engine shared with the REST client

        """
        self._hass = hass
        self._auth = auth
        self._session = async_get_clientsession(hass)
        self._streams: dict[str, StreamHandle] = {}
        self._channels: dict[str, Channel[ApplianceEvent]] = {}

    @property
    def active_streams(self) -> dict[str, bool]:
        """Return the streamed appliances and whether each is connected."""
        return {
            haid: handle.response is not None for haid, handle in self._streams.items()
        }

    @callback
    def async_subscribe(
        self, haid: str, listener: Callable[[ApplianceEvent], None]
    ) -> CALLBACK_TYPE:
        """Subscribe to the events of one appliance."""
        channel = self._channels.setdefault(haid, Channel(f"{haid} events"))
        return channel.async_subscribe(listener)

    async def async_start(self, haid: str) -> None:
        """Start the event stream for an appliance, replacing any existing one."""
        await self.async_stop(haid)
        handle = StreamHandle(haid=haid)
        self._streams[haid] = handle
        handle.task = self._hass.async_create_background_task(
            self._async_run_stream(handle), name=f"{DOMAIN}_events_{haid}"
        )

    async def async_stop(self, haid: str) -> None:
        """Stop the event stream for an appliance."""
        handle = self._streams.pop(haid, None)
        if handle is None:
            return

        _LOGGER.debug("Stopping events stream for %s", haid)
        handle.cancelled = True
        if handle.response is not None:
            handle.response.close()

        task = handle.task
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise

    async def async_stop_all(self) -> None:
        """Stop every event stream."""
        for haid in list(self._streams):
            await self.async_stop(haid)

    async def _async_run_stream(self, handle: StreamHandle) -> None:
        """Keep the event stream open until it is stopped."""
        url = f"{self._auth.api_url}{API_APPLIANCES}/{handle.haid}/events"

        while not handle.cancelled:
            await self._auth.async_wait_rate_limit("events request")
            await self._auth.async_wait_until_authorized()
            try:
                await self._async_stream(handle, url)
            except HomeConnectError as err:
                if handle.cancelled:
                    break
                _LOGGER.warning("Events stream for %s failed: %s", handle.haid, err)
                await self._async_backoff()
                continue
            except Exception:
                if handle.cancelled:
                    break
                _LOGGER.exception(
                    "Unexpected error in events stream for %s", handle.haid
                )
                await self._async_backoff()
                continue

            if not handle.cancelled:
                _LOGGER.debug("Events stream for %s ended, reopening", handle.haid)
                await self._async_backoff()

    async def _async_stream(self, handle: StreamHandle, url: str) -> None:
        """Open the event stream and deliver records until it ends."""
        headers = {
            "Accept": EVENT_STREAM_MEDIA_TYPE,
            "Authorization": self._auth.get_authorization(),
        }
        _LOGGER.debug("Starting events stream for %s", handle.haid)

        try:
            async with self._session.get(
                url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=DEFAULT_TIMEOUT),
            ) as response:
                if response.status != 200:
                    body = await async_read_json(response)
                    err = error_from_response(
                        response.status, body, response.headers
                    ) or HomeConnectProtocolError(
                        f"Unexpected events response for {handle.haid}"
                    )
                    self._auth.async_handle_error(err)
                    raise err

                handle.response = response
                parser = EventStreamParser(handle.haid)
                async for raw_line in response.content:
                    if handle.cancelled:
                        return
                    event = parser.feed_line(
                        raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
                    )
                    if event is not None and not handle.cancelled:
                        self._async_publish(event)

        except (aiohttp.ClientError, TimeoutError) as err:
            if handle.cancelled:
                return
            raise HomeConnectConnectionError(
                f"Connection error: {str(err) or type(err).__name__}"
            ) from err

        finally:
            handle.response = None

    @callback
    def _async_publish(self, event: ApplianceEvent) -> None:
        """Deliver a record to the appliance's subscribers."""
        channel = self._channels.get(event.haid)
        if channel is not None:
            channel.async_publish(event)

    async def _async_backoff(self) -> None:
        """Delay before reopening a failed stream."""
        await asyncio.sleep(EVENT_STREAM_RETRY_DELAY)
