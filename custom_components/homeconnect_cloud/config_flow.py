"""Config flow for Home Connect Cloud integration."""

from __future__ import annotations

import logging
from typing import Any

from homeassistant.config_entries import ConfigFlow, ConfigFlowResult
import homeassistant.helpers.config_validation as cv
import voluptuous as vol

from .const import CONF_CLIENT_ID, CONF_SAVED_AUTH, CONF_SIMULATOR, DOMAIN

_LOGGER = logging.getLogger(__name__)


class HomeConnectConfigFlow(ConfigFlow, domain=DOMAIN):  # type: ignore[call-arg,misc]
    """Handle a config flow for Home Connect Cloud.

    Only the client registration is collected here. Authorization of the
    user's account happens after setup through the device flow, or
    automatically when the appliance simulator is used.
    """

    VERSION = 1
    MINOR_VERSION = 1

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Handle the step where the user enters the client registration."""
        errors: dict[str, str] = {}

        if user_input is not None:
            client_id = user_input[CONF_CLIENT_ID].strip()
            simulator = user_input.get(CONF_SIMULATOR, False)

            if not client_id:
                errors[CONF_CLIENT_ID] = "invalid_client_id"
            else:
                await self.async_set_unique_id(client_id)
                self._abort_if_unique_id_configured()

                _LOGGER.debug("Creating entry (simulator: %s)", simulator)
                return self.async_create_entry(
                    title="Home Connect Simulator" if simulator else "Home Connect",
                    data={
                        CONF_CLIENT_ID: client_id,
                        CONF_SIMULATOR: simulator,
                        CONF_SAVED_AUTH: {},
                    },
                )

        data_schema = vol.Schema(
            {
                vol.Required(CONF_CLIENT_ID): cv.string,
                vol.Optional(CONF_SIMULATOR, default=False): cv.boolean,
            }
        )

        return self.async_show_form(
            step_id="user",
            data_schema=data_schema,
            errors=errors,
        )
