"""DataUpdateCoordinator for Home Connect Cloud."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from homeassistant.core import CALLBACK_TYPE, callback
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed

from .const import APPLIANCE_RETRY_DELAY, DOMAIN
from .errors import HomeConnectError

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

    from .api import HomeConnectApiClient
    from .events import HomeConnectEventStreams
    from .types import ApplianceEvent

_LOGGER = logging.getLogger(__name__)


class HomeConnectCoordinator(DataUpdateCoordinator[dict[str, dict[str, Any]]]):
    """Coordinator holding the paired appliances and their latest events.

    Data is keyed by appliance ID. Each value holds the appliance details
    from the REST API and the most recent payload per event type, as
    received from the appliance's event stream.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        api_client: HomeConnectApiClient,
        event_streams: HomeConnectEventStreams,
    ) -> None:
        """Initialize the coordinator."""
        super().__init__(
            hass,
            _LOGGER,
            name=DOMAIN,
            update_interval=None,  # Event streams push updates
        )
        self.api_client = api_client
        self.event_streams = event_streams
        self._unsubscribe: dict[str, CALLBACK_TYPE] = {}

    async def _async_update_data(self) -> dict[str, dict[str, Any]]:
        """Fetch the paired appliances and align the event streams with them.

        Raises:
            UpdateFailed: If the appliance list cannot be fetched

        """
        try:
            appliances = await self.api_client.async_get_appliances()
        except HomeConnectError as err:
            raise UpdateFailed(f"Error fetching appliances: {err}") from err

        previous = self.data or {}
        data: dict[str, dict[str, Any]] = {}
        for appliance in appliances:
            haid = appliance.get("haId")
            if not haid:
                continue
            data[haid] = {
                "appliance": appliance,
                "events": previous.get(haid, {}).get("events", {}),
            }

        _LOGGER.debug("Fetched %d appliances", len(data))

        for haid in set(self._unsubscribe) - set(data):
            self._unsubscribe.pop(haid)()
            await self.event_streams.async_stop(haid)

        for haid in data:
            if haid not in self._unsubscribe:
                self._unsubscribe[haid] = self.event_streams.async_subscribe(
                    haid, self._async_handle_event
                )
                await self.event_streams.async_start(haid)

        return data

    async def async_start(self) -> None:
        """Fetch the appliances, retrying until it succeeds."""
        while True:
            await self.async_refresh()
            if self.last_update_success:
                return
            await asyncio.sleep(APPLIANCE_RETRY_DELAY)

    async def async_stop(self) -> None:
        """Unsubscribe from and stop every event stream."""
        for unsubscribe in self._unsubscribe.values():
            unsubscribe()
        self._unsubscribe.clear()
        await self.event_streams.async_stop_all()

    @callback
    def _async_handle_event(self, event: ApplianceEvent) -> None:
        """Record an event for its appliance."""
        if self.data is None or event.haid not in self.data or event.event is None:
            return

        appliance = self.data[event.haid]
        data = {
            **self.data,
            event.haid: {
                **appliance,
                "events": {**appliance["events"], event.event: event.data},
            },
        }
        self.async_set_updated_data(data)

    def get_appliance(self, haid: str) -> dict[str, Any] | None:
        """Get the current data for an appliance."""
        return (self.data or {}).get(haid)
