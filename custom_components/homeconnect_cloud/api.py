"""API client for the Home Connect appliance API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .const import API_APPLIANCES, MEDIA_TYPE
from .errors import HomeConnectError

if TYPE_CHECKING:
    from .auth import HomeConnectAuth

_LOGGER = logging.getLogger(__name__)


class HomeConnectApiClient:
    """Home Connect appliance API client."""

    def __init__(self, auth: HomeConnectAuth) -> None:
        """Initialize the API client.

        Args:
            auth: Authorization engine supplying the access token and the
                shared rate-limit deadline

        """
        self._auth = auth

    @property
    def api_url(self) -> str:
        """Return the API URL."""
        return self._auth.api_url

    async def _authenticated_request(
        self,
        method: str,
        haid: str | None = None,
        path: str = "",
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        """Make an authenticated appliance request, retrying while allowed.

        Each attempt waits out the shared rate-limit deadline and for a valid
        access token before the request is issued. Rate-limited attempts are
        repeated with the same parameters; anything else is raised.

        Args:
            method: HTTP method
            haid: Home appliance ID, or None for the appliance list
            path: Resource path below the appliance
            json_data: JSON body

        Returns:
            The ``data`` member of the response, or None for an empty reply

        Raises:
            HomeConnectError: If the request fails and cannot be retried

        """
        url = f"{self._auth.api_url}{API_APPLIANCES}"
        if haid:
            url += f"/{haid}{path}"

        while True:
            await self._auth.async_wait_rate_limit("API request")
            await self._auth.async_wait_until_authorized()

            headers = {
                "Accept": MEDIA_TYPE,
                "Content-Type": MEDIA_TYPE,
                "Authorization": self._auth.get_authorization(),
            }
            try:
                body = await self._auth.async_request_raw(
                    method, url, headers=headers, json_data=json_data
                )
            except HomeConnectError as err:
                if not err.retry:
                    raise
                _LOGGER.debug("Retrying %s %s after: %s", method, url, err)
                continue

            if isinstance(body, dict):
                return body.get("data")
            return None

    async def async_get_appliances(self) -> list[dict[str, Any]]:
        """Get the list of paired home appliances."""
        data = await self._authenticated_request("GET")
        return (data or {}).get("homeappliances", [])  # type: ignore[no-any-return]

    async def async_get_appliance(self, haid: str) -> dict[str, Any]:
        """Get details of a specific paired home appliance."""
        return await self._authenticated_request(  # type: ignore[no-any-return]
            "GET", haid
        )

    async def async_get_active_program(self, haid: str) -> dict[str, Any]:
        """Get the program which is currently being executed."""
        return await self._authenticated_request(  # type: ignore[no-any-return]
            "GET", haid, "/programs/active"
        )

    async def async_set_active_program(
        self,
        haid: str,
        program_key: str,
        options: list[dict[str, Any]] | None = None,
    ) -> None:
        """Start a program."""
        await self._authenticated_request(
            "PUT",
            haid,
            "/programs/active",
            _program_body(program_key, options),
        )

    async def async_stop_active_program(self, haid: str) -> None:
        """Stop the active program."""
        await self._authenticated_request("DELETE", haid, "/programs/active")

    async def async_get_selected_program(self, haid: str) -> dict[str, Any]:
        """Get the program which is currently selected."""
        return await self._authenticated_request(  # type: ignore[no-any-return]
            "GET", haid, "/programs/selected"
        )

    async def async_set_selected_program(
        self,
        haid: str,
        program_key: str,
        options: list[dict[str, Any]] | None = None,
    ) -> None:
        """Select a program."""
        await self._authenticated_request(
            "PUT",
            haid,
            "/programs/selected",
            _program_body(program_key, options),
        )

    async def async_get_available_programs(self, haid: str) -> list[dict[str, Any]]:
        """Get the list of available programs."""
        data = await self._authenticated_request("GET", haid, "/programs/available")
        return (data or {}).get("programs", [])  # type: ignore[no-any-return]

    async def async_get_available_program(
        self, haid: str, program_key: str
    ) -> dict[str, Any]:
        """Get the details of a specific available program."""
        return await self._authenticated_request(  # type: ignore[no-any-return]
            "GET", haid, f"/programs/available/{program_key}"
        )

    async def async_get_status(self, haid: str) -> list[dict[str, Any]]:
        """Get the current status."""
        data = await self._authenticated_request("GET", haid, "/status")
        return (data or {}).get("status", [])  # type: ignore[no-any-return]

    async def async_get_status_specific(
        self, haid: str, status_key: str
    ) -> dict[str, Any]:
        """Get a specific status."""
        return await self._authenticated_request(  # type: ignore[no-any-return]
            "GET", haid, f"/status/{status_key}"
        )

    async def async_get_settings(self, haid: str) -> list[dict[str, Any]]:
        """Get all settings."""
        data = await self._authenticated_request("GET", haid, "/settings")
        return (data or {}).get("settings", [])  # type: ignore[no-any-return]

    async def async_get_setting(self, haid: str, setting_key: str) -> dict[str, Any]:
        """Get a specific setting."""
        return await self._authenticated_request(  # type: ignore[no-any-return]
            "GET", haid, f"/settings/{setting_key}"
        )

    async def async_set_setting(self, haid: str, setting_key: str, value: Any) -> None:
        """Set a specific setting."""
        await self._authenticated_request(
            "PUT",
            haid,
            f"/settings/{setting_key}",
            {"data": {"key": setting_key, "value": value}},
        )


def _program_body(
    program_key: str, options: list[dict[str, Any]] | None
) -> dict[str, Any]:
    """Build the request body selecting or starting a program."""
    data: dict[str, Any] = {"key": program_key}
    if options is not None:
        data["options"] = options
    return {"data": data}
