"""The Home Connect Cloud integration."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from homeassistant.core import callback
from homeassistant.helpers import issue_registry as ir

from .api import HomeConnectApiClient
from .auth import HomeConnectAuth, saved_auth_as_dict, saved_auth_from_dict
from .const import CONF_CLIENT_ID, CONF_SAVED_AUTH, CONF_SIMULATOR, DOMAIN
from .coordinator import HomeConnectCoordinator
from .events import HomeConnectEventStreams
from .types import (
    AuthorizationRequest,
    HomeConnectConfigEntry,
    HomeConnectRuntimeData,
    TokenPair,
)

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

_LOGGER = logging.getLogger(__name__)


def _issue_id(entry: HomeConnectConfigEntry) -> str:
    """Return the repair issue ID used to request authorization."""
    return f"authorization_required_{entry.entry_id}"


async def async_setup_entry(hass: HomeAssistant, entry: HomeConnectConfigEntry) -> bool:
    """Set up Home Connect Cloud from a config entry.

    Authorization and appliance discovery run as background tasks, so setup
    completes even while the device flow is waiting for the user.

    Args:
        hass: Home Assistant instance
        entry: Config entry for this integration

    Returns:
        True if setup was successful

    """
    _LOGGER.debug("Setting up Home Connect Cloud integration")

    auth = HomeConnectAuth(
        hass,
        entry.data[CONF_CLIENT_ID],
        simulator=entry.data.get(CONF_SIMULATOR, False),
        saved_auth=saved_auth_from_dict(entry.data.get(CONF_SAVED_AUTH, {})),
    )
    api_client = HomeConnectApiClient(auth)
    event_streams = HomeConnectEventStreams(hass, auth)
    coordinator = HomeConnectCoordinator(hass, api_client, event_streams)

    @callback
    def _async_save_credentials(saved_auth: dict[str, TokenPair]) -> None:
        """Persist updated credentials to the config entry."""
        hass.config_entries.async_update_entry(
            entry,
            data={**entry.data, CONF_SAVED_AUTH: saved_auth_as_dict(saved_auth)},
        )
        ir.async_delete_issue(hass, DOMAIN, _issue_id(entry))
        _LOGGER.debug("Config entry updated with new tokens")

    @callback
    def _async_request_authorization(request: AuthorizationRequest) -> None:
        """Ask the user to authorize access to their appliances."""
        _LOGGER.warning(
            "Home Connect authorization required, visit %s to approve access",
            request.uri,
        )
        ir.async_create_issue(
            hass,
            DOMAIN,
            _issue_id(entry),
            is_fixable=False,
            issue_domain=DOMAIN,
            severity=ir.IssueSeverity.WARNING,
            translation_key="authorization_required",
            translation_placeholders={
                "uri": request.uri,
                "user_code": request.user_code or "",
            },
        )

    entry.async_on_unload(
        auth.credentials_changed.async_subscribe(_async_save_credentials)
    )
    entry.async_on_unload(
        auth.authorization_requests.async_subscribe(_async_request_authorization)
    )

    entry.runtime_data = HomeConnectRuntimeData(
        auth=auth,
        api_client=api_client,
        event_streams=event_streams,
        coordinator=coordinator,
    )

    entry.async_create_background_task(
        hass, auth.async_run(), f"{DOMAIN}_auth_{entry.entry_id}"
    )
    entry.async_create_background_task(
        hass, coordinator.async_start(), f"{DOMAIN}_appliances_{entry.entry_id}"
    )

    return True


async def async_unload_entry(
    hass: HomeAssistant, entry: HomeConnectConfigEntry
) -> bool:
    """Unload a config entry.

    Background tasks created for the entry are cancelled by Home Assistant.

    Args:
        hass: Home Assistant instance
        entry: Config entry to unload

    Returns:
        True if unload was successful

    """
    _LOGGER.debug("Unloading Home Connect Cloud integration")
    await entry.runtime_data.coordinator.async_stop()
    ir.async_delete_issue(hass, DOMAIN, _issue_id(entry))
    return True
