"""Diagnostics support for the Home Connect Cloud integration."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from homeassistant.components.diagnostics import async_redact_data

from .const import CONF_CLIENT_ID, CONF_SAVED_AUTH

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

    from .types import HomeConnectConfigEntry, HomeConnectRuntimeData

TO_REDACT = [
    CONF_CLIENT_ID,
    CONF_SAVED_AUTH,
]

# Appliance IDs and names identify the user's devices.
TO_REDACT_DATA = [
    "haId",
    "name",
    "enumber",
    "vib",
]


async def async_get_config_entry_diagnostics(
    hass: HomeAssistant, entry: HomeConnectConfigEntry
) -> dict[str, Any]:
    """Return diagnostics for a config entry."""
    rd: HomeConnectRuntimeData | None = getattr(entry, "runtime_data", None)

    auth_summary: dict[str, Any] = {}
    appliances: list[dict[str, Any]] = []
    if rd is not None:
        pair = rd.auth.token_pair
        auth_summary = {
            "state": rd.auth.state,
            "simulator": rd.auth.simulator,
            "has_refresh_token": pair is not None,
            "has_access_token": bool(pair and pair.access_token),
            "access_expires_at": pair.access_expires_at.isoformat() if pair else None,
            "earliest_retry": rd.auth.earliest_retry.isoformat(),
            "pending_waiters": rd.auth.pending_waiters,
        }

        streams = rd.event_streams.active_streams
        for haid, data in (rd.coordinator.data or {}).items():
            appliances.append(
                {
                    "appliance": async_redact_data(data["appliance"], TO_REDACT_DATA),
                    "event_types": sorted(data["events"]),
                    "stream_active": haid in streams,
                    "stream_connected": streams.get(haid, False),
                }
            )

    return {
        "entry_data": async_redact_data(dict(entry.data), TO_REDACT),
        "auth": auth_summary,
        "last_update_success": (
            rd.coordinator.last_update_success if rd is not None else False
        ),
        "appliances": appliances,
    }
