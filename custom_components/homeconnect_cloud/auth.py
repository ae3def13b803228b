"""Authorization engine for the Home Connect API."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import contextlib
import dataclasses
import datetime as dt
import logging
import time
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

import aiohttp
from homeassistant.core import callback
from homeassistant.helpers.aiohttp_client import async_get_clientsession

from .const import (
    API_AUTHORIZE,
    API_DEVICE_AUTHORIZATION,
    API_TOKEN,
    AUTH_RETRY_DELAY,
    DEFAULT_DEVICE_CODE_EXPIRY,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TIMEOUT,
    REFRESH_RETRY_DELAY,
    SCOPES,
    TOKEN_REFRESH_WINDOW,
    URL_LIVE,
    URL_SIMULATOR,
    WAKE_AUTH,
)
from .errors import (
    HomeConnectAccessTokenError,
    HomeConnectAuthError,
    HomeConnectConnectionError,
    HomeConnectError,
    HomeConnectInvalidatedError,
    HomeConnectProtocolError,
    HomeConnectRateLimitError,
    error_from_response,
)
from .types import AuthorizationRequest, AuthState, Channel, TokenPair

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

_LOGGER = logging.getLogger(__name__)

_REDIRECT_STATUSES = (301, 302, 303, 307, 308)
_TOKEN_FIELDS = ("access_token", "refresh_token", "expires_in")


def saved_auth_from_dict(data: Mapping[str, Any]) -> dict[str, TokenPair]:
    """Load persisted credentials, skipping entries that cannot be parsed."""
    saved_auth: dict[str, TokenPair] = {}
    for client_id, token in data.items():
        try:
            saved_auth[client_id] = TokenPair.from_dict(token)
        except (KeyError, TypeError, ValueError):
            _LOGGER.warning("Ignoring malformed saved authorization for %s", client_id)
    return saved_auth


def saved_auth_as_dict(saved_auth: Mapping[str, TokenPair]) -> dict[str, Any]:
    """Return the persisted form of a credential mapping."""
    return {client_id: pair.as_dict() for client_id, pair in saved_auth.items()}


async def async_read_json(response: aiohttp.ClientResponse) -> Any:
    """Decode a JSON body, returning None if there is none or it is invalid."""
    try:
        return await response.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        return None


class HomeConnectAuth:
    """Obtain and maintain a single Home Connect access token.

    The engine owns the saved token pair and the shared rate-limit deadline.
    ``async_run`` must be running as a background task for authorization to
    be acquired and refreshed; REST calls and event streams block in
    ``async_wait_until_authorized`` until it has succeeded.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        client_id: str,
        *,
        simulator: bool = False,
        saved_auth: Mapping[str, TokenPair] | None = None,
        refresh_window: float = TOKEN_REFRESH_WINDOW,
    ) -> None:
        """Initialize the authorization engine.

        Args:
            hass: Home Assistant instance
            client_id: OAuth2 client ID of the registered application
            simulator: Use the appliance simulator instead of the live server
            saved_auth: Previously persisted credentials keyed by client ID
            refresh_window: Seconds before expiry to refresh the access token

        """
        self._hass = hass
        self._client_id = client_id
        self._simulator = simulator
        self._api_url = URL_SIMULATOR if simulator else URL_LIVE
        self._saved_auth: dict[str, TokenPair] = dict(saved_auth or {})
        self._refresh_window = dt.timedelta(seconds=refresh_window)
        self._session = async_get_clientsession(hass)

        self._waiters: list[asyncio.Future[None]] = []
        self._sleepers: dict[str, asyncio.Future[None]] = {}
        self._earliest_retry = dt.datetime.now(dt.UTC)
        self._request_count = 0
        self._state = (
            AuthState.AUTHORIZED if self.is_authorized else AuthState.UNAUTHORIZED
        )

        self.authorization_requests: Channel[AuthorizationRequest] = Channel(
            "authorization request"
        )
        self.credentials_changed: Channel[dict[str, TokenPair]] = Channel(
            "credentials changed"
        )

    @property
    def api_url(self) -> str:
        """Return the API URL."""
        return self._api_url

    @property
    def client_id(self) -> str:
        """Return the client ID."""
        return self._client_id

    @property
    def simulator(self) -> bool:
        """Return True when talking to the appliance simulator."""
        return self._simulator

    @property
    def state(self) -> AuthState:
        """Return the authorization state."""
        return self._state

    @property
    def token_pair(self) -> TokenPair | None:
        """Return the saved token pair for this client, if any."""
        return self._saved_auth.get(self._client_id)

    @property
    def earliest_retry(self) -> dt.datetime:
        """Return the earliest time another request may be issued."""
        return self._earliest_retry

    @property
    def pending_waiters(self) -> int:
        """Return the number of callers waiting for authorization."""
        return sum(1 for waiter in self._waiters if not waiter.done())

    @property
    def is_authorized(self) -> bool:
        """Return True if a non-expired access token is available."""
        pair = self.token_pair
        return bool(
            pair
            and pair.access_token
            and dt.datetime.now(dt.UTC) < pair.access_expires_at
        )

    async def async_run(self) -> None:
        """Obtain and maintain an access token until cancelled."""
        while True:
            try:
                if self._client_id not in self._saved_auth:
                    self._state = AuthState.ACQUIRING
                    if self._simulator:
                        token = await self._async_code_grant_flow()
                    else:
                        token = await self._async_device_flow()
                    self._token_save(token)

                while True:
                    pair = self.token_pair
                    if pair is None:
                        break

                    refresh_in = self._seconds_until_refresh(pair)
                    if pair.access_token and refresh_in > 0:
                        _LOGGER.debug(
                            "Refreshing access token in %d seconds", refresh_in
                        )
                        await self._async_sleep(refresh_in, WAKE_AUTH)

                    self._state = AuthState.REFRESHING
                    token = await self._async_token_refresh(pair.refresh_token)
                    self._token_save(token)

            except HomeConnectInvalidatedError as err:
                _LOGGER.debug("%s, re-evaluating authorization", err)

            except Exception as err:
                self._discard_access_token()
                if isinstance(err, HomeConnectError):
                    _LOGGER.warning("%s", err)
                else:
                    _LOGGER.exception(
                        "Unexpected error during Home Connect authorization"
                    )

                retry_in = (
                    REFRESH_RETRY_DELAY
                    if self._client_id in self._saved_auth
                    else AUTH_RETRY_DELAY
                )
                _LOGGER.info("Retrying client authorization in %s seconds", retry_in)
                await self._async_sleep(retry_in)

    async def async_wait_until_authorized(self) -> None:
        """Wait until an access token has been obtained."""
        if self.is_authorized:
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        await waiter

    def get_authorization(self) -> str:
        """Return the bearer credential for the current access token.

        Raises:
            HomeConnectAuthError: If there is no access token

        """
        pair = self.token_pair
        if pair is None or not pair.access_token:
            raise HomeConnectAuthError("Home Connect client is not authorized")
        return f"Bearer {pair.access_token}"

    @callback
    def invalidate_auth(self) -> None:
        """Forget the saved authorization so that it is acquired again."""
        self._saved_auth.pop(self._client_id, None)
        self._state = AuthState.UNAUTHORIZED
        self._wake(
            WAKE_AUTH, HomeConnectInvalidatedError("Client authorization invalidated")
        )

    @callback
    def invalidate_token(self) -> None:
        """Forget the access token but keep the refresh token."""
        self._discard_access_token()
        self._wake(WAKE_AUTH, HomeConnectInvalidatedError("Access token invalidated"))

    @callback
    def retry_after(self, seconds: float) -> None:
        """Delay further requests; the deadline is never moved earlier."""
        earliest = dt.datetime.now(dt.UTC) + dt.timedelta(seconds=seconds)
        if self._earliest_retry < earliest:
            self._earliest_retry = earliest
            _LOGGER.info("Home Connect requests delayed for %s seconds", seconds)

    @callback
    def async_handle_error(self, err: HomeConnectError) -> None:
        """Apply the side effects of a classified server error."""
        if isinstance(err, HomeConnectRateLimitError):
            self.retry_after(err.retry_after)
        elif isinstance(err, HomeConnectAuthError):
            self.invalidate_auth()
        elif isinstance(err, HomeConnectAccessTokenError):
            self.invalidate_token()

    async def async_wait_rate_limit(self, description: str = "request") -> None:
        """Wait until the shared rate-limit deadline has passed."""
        while True:
            deadline = self._earliest_retry
            retry_in = (deadline - dt.datetime.now(dt.UTC)).total_seconds()
            if retry_in <= 0:
                return
            _LOGGER.info(
                "Waiting %d seconds before issuing Home Connect %s",
                retry_in,
                description,
            )
            await self._async_sleep(retry_in)
            if self._earliest_retry <= deadline:
                return

    async def async_request_raw(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        form: dict[str, str] | None = None,
        json_data: Any = None,
        allow_redirects: bool = True,
    ) -> Any:
        """Issue a single Home Connect request.

        Returns:
            The decoded JSON body, the redirect target when redirects are not
            followed, or None for an empty reply or a pending authorization

        Raises:
            HomeConnectError: If the server reports an error or cannot be reached

        """
        self._request_count += 1
        log_prefix = f"Home Connect request #{self._request_count}"
        _LOGGER.debug("%s: %s %s", log_prefix, method, url)
        start = time.monotonic()
        status = "OK"

        request_kwargs: dict[str, Any] = {
            "headers": headers or {},
            "allow_redirects": allow_redirects,
            "timeout": aiohttp.ClientTimeout(total=DEFAULT_TIMEOUT),
        }
        if params:
            request_kwargs["params"] = params
        if form is not None:
            request_kwargs["data"] = form
        if json_data is not None:
            request_kwargs["json"] = json_data

        try:
            async with self._session.request(method, url, **request_kwargs) as response:
                if not allow_redirects and response.status in _REDIRECT_STATUSES:
                    location = response.headers.get("Location")
                    status = f"Redirect {location}"
                    return location

                if response.status == 204:
                    return None

                body = await async_read_json(response)
                if response.status < 300:
                    return body

                err = error_from_response(response.status, body, response.headers)
                if err is None:
                    status = "Authorization pending"
                    return None

                status = str(err)
                self.async_handle_error(err)
                raise err

        except (aiohttp.ClientError, TimeoutError) as err:
            status = str(err) or type(err).__name__
            raise HomeConnectConnectionError(f"Connection error: {status}") from err

        finally:
            _LOGGER.debug(
                "%s: %s +%dms",
                log_prefix,
                status,
                (time.monotonic() - start) * 1000,
            )

    async def _async_device_flow(self) -> dict[str, Any]:
        """Authorize using the device flow (live server)."""
        _LOGGER.info("Requesting Home Connect authorization using the Device Flow")
        await self.async_wait_rate_limit("authorization request")
        resp = await self.async_request_raw(
            "POST",
            f"{self._api_url}{API_DEVICE_AUTHORIZATION}",
            form={"client_id": self._client_id, "scope": " ".join(SCOPES)},
        )
        if not isinstance(resp, dict) or "device_code" not in resp:
            raise HomeConnectProtocolError(
                "Unexpected device authorization response from Home Connect"
            )
        uri = resp.get("verification_uri_complete") or resp.get("verification_uri")
        if not uri:
            raise HomeConnectProtocolError(
                "No verification URI in device authorization response"
            )

        interval = resp.get("interval", DEFAULT_POLL_INTERVAL)
        expires_in = resp.get("expires_in", DEFAULT_DEVICE_CODE_EXPIRY)
        self.authorization_requests.async_publish(
            AuthorizationRequest(
                uri=uri, user_code=resp.get("user_code"), expires_in=expires_in
            )
        )
        _LOGGER.info(
            "Waiting for completion of Home Connect authorization at %s "
            "(poll every %s seconds, device code expires after %s seconds)",
            uri,
            interval,
            expires_in,
        )

        expires_at = time.monotonic() + expires_in
        while True:
            await self._async_sleep(interval, WAKE_AUTH)
            if time.monotonic() >= expires_at:
                raise HomeConnectAuthError(
                    "Home Connect device code expired before authorization "
                    "was completed"
                )

            token = await self._async_token_request(
                {
                    "client_id": self._client_id,
                    "grant_type": "device_code",
                    "device_code": resp["device_code"],
                }
            )
            if token is not None:
                return token

    async def _async_code_grant_flow(self) -> dict[str, Any]:
        """Authorize by short-circuiting the code grant flow (simulator only)."""
        _LOGGER.info(
            "Attempting to short-circuit Authorization Code Grant Flow "
            "for the Home Connect appliance simulator"
        )
        await self.async_wait_rate_limit("authorization request")
        location = await self.async_request_raw(
            "GET",
            f"{self._api_url}{API_AUTHORIZE}",
            params={
                "client_id": self._client_id,
                "response_type": "code",
                "scope": " ".join(SCOPES),
                "user": "me",
            },
            allow_redirects=False,
        )
        if not isinstance(location, str):
            raise HomeConnectProtocolError(
                "Home Connect authorization request was not redirected"
            )

        codes = parse_qs(urlparse(location).query).get("code")
        if not codes:
            raise HomeConnectProtocolError(
                f"No authorization code in redirect to {location}"
            )
        _LOGGER.debug("Using authorization code to request token")

        token = await self._async_token_request(
            {
                "client_id": self._client_id,
                "grant_type": "authorization_code",
                "code": codes[0],
            }
        )
        if token is None:
            raise HomeConnectProtocolError("Authorization pending after code grant")
        return token

    async def _async_token_refresh(self, refresh_token: str) -> dict[str, Any]:
        """Exchange the refresh token for a new token pair."""
        _LOGGER.debug("Refreshing Home Connect access token")
        token = await self._async_token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )
        if token is None:
            raise HomeConnectProtocolError("Authorization pending during token refresh")
        return token

    async def _async_token_request(self, form: dict[str, str]) -> dict[str, Any] | None:
        """Post to the token endpoint, returning None while authorization is pending."""
        await self.async_wait_rate_limit("token request")
        token = await self.async_request_raw(
            "POST", f"{self._api_url}{API_TOKEN}", form=form
        )
        if token is None:
            return None
        if not isinstance(token, dict) or any(
            field not in token for field in _TOKEN_FIELDS
        ):
            raise HomeConnectProtocolError(
                "Unexpected token response from Home Connect"
            )
        return token

    @callback
    def _token_save(self, token: dict[str, Any]) -> None:
        """Store a new token pair and release everything waiting for it."""
        _LOGGER.debug(
            "Access token obtained (expires after %s seconds)", token["expires_in"]
        )
        self._saved_auth[self._client_id] = TokenPair.from_grant(token)
        self._state = AuthState.AUTHORIZED

        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

        self.credentials_changed.async_publish(dict(self._saved_auth))

    @callback
    def _discard_access_token(self) -> None:
        """Clear the access token, keeping any refresh token."""
        pair = self.token_pair
        if pair is not None and pair.access_token is not None:
            self._saved_auth[self._client_id] = dataclasses.replace(
                pair, access_token=None
            )
        self._state = AuthState.UNAUTHORIZED

    def _seconds_until_refresh(self, pair: TokenPair) -> float:
        """Return the delay before the access token should be refreshed."""
        refresh_at = pair.access_expires_at - self._refresh_window
        return (refresh_at - dt.datetime.now(dt.UTC)).total_seconds()

    async def _async_sleep(self, seconds: float, wake_id: str | None = None) -> None:
        """Sleep, optionally allowing ``_wake`` to interrupt with an error."""
        if wake_id is None:
            await asyncio.sleep(seconds)
            return

        sleeper: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._sleepers[wake_id] = sleeper
        try:
            with contextlib.suppress(TimeoutError):
                async with asyncio.timeout(seconds):
                    await sleeper
        finally:
            if self._sleepers.get(wake_id) is sleeper:
                del self._sleepers[wake_id]

    @callback
    def _wake(self, wake_id: str, err: Exception) -> None:
        """Interrupt an interruptible sleep with an error."""
        sleeper = self._sleepers.pop(wake_id, None)
        if sleeper is not None and not sleeper.done():
            sleeper.set_exception(err)
