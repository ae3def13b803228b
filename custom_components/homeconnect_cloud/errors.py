"""Exceptions and server error classification for the Home Connect API."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .const import (
    CLIENT_HELP_EXTRA,
    CLIENT_HELP_LINK,
    CLIENT_HELP_PREFIX,
    DEFAULT_RETRY_AFTER,
    TOKEN_RATE_LIMIT_DELAY,
)


class HomeConnectError(Exception):
    """General Home Connect exception.

    ``retry`` tells a caller that the same request may be issued again once
    the shared rate-limit deadline has passed.
    """

    retry = False


class HomeConnectConnectionError(HomeConnectError):
    """Network or connection failure."""


class HomeConnectApiError(HomeConnectError):
    """Unexpected error response from the server."""

    def __init__(self, message: str, status: int | None = None) -> None:
        """Initialize the error with the HTTP status, if known."""
        super().__init__(message)
        self.status = status


class HomeConnectRateLimitError(HomeConnectApiError):
    """The server asked for requests to be delayed."""

    retry = True

    def __init__(
        self, message: str, retry_after: float, status: int | None = None
    ) -> None:
        """Initialize the error with the requested delay in seconds."""
        super().__init__(message, status)
        self.retry_after = retry_after


class HomeConnectAccessTokenError(HomeConnectApiError):
    """The access token was rejected; the refresh token is still usable."""


class HomeConnectAuthError(HomeConnectApiError):
    """The client authorization is invalid and must be obtained again."""


class HomeConnectClientError(HomeConnectAuthError):
    """The client registration itself is misconfigured."""


class HomeConnectProtocolError(HomeConnectError):
    """The server replied with something that should not happen."""


class HomeConnectInvalidatedError(HomeConnectError):
    """A wait was interrupted because the authorization was invalidated."""


def error_from_response(
    status: int, body: Any, headers: Mapping[str, str]
) -> HomeConnectError | None:
    """Classify an error response.

    Returns None for a pending device flow authorization, otherwise the
    exception describing the failure. Side effects (invalidation, rate-limit
    deadline) are left to the caller.
    """
    if isinstance(body, dict) and body.get("error_description"):
        return _oauth_error(status, body)

    if (
        isinstance(body, dict)
        and isinstance(body.get("error"), dict)
        and body["error"].get("key")
    ):
        return _api_error(status, body["error"], headers)

    if status == 429:
        return HomeConnectRateLimitError(
            "Home Connect API error: Too many requests [429]",
            retry_after=parse_retry_after(headers),
            status=status,
        )

    return HomeConnectApiError(f"Home Connect API error: HTTP {status}", status)


def parse_retry_after(headers: Mapping[str, str]) -> float:
    """Return the Retry-After delay in seconds."""
    value = headers.get("Retry-After") or headers.get("retry-after")
    try:
        return max(float(value), 0.0) if value is not None else DEFAULT_RETRY_AFTER
    except ValueError:
        return DEFAULT_RETRY_AFTER


def _oauth_error(status: int, body: dict[str, Any]) -> HomeConnectError | None:
    """Classify an OAuth style error body."""
    error = body.get("error")
    description = str(body["error_description"])
    message = f"Home Connect API error: {description} [{error}]"

    if error == "authorization_pending":
        return None

    if error == "access_denied" and description.lower() == "too many requests":
        return HomeConnectRateLimitError(
            "Home Connect API error: Token refresh rate limit exceeded "
            "(only 100 refreshes are allowed per day)",
            retry_after=TOKEN_RATE_LIMIT_DELAY,
            status=status,
        )

    if error in ("access_denied", "invalid_grant", "expired_token"):
        return HomeConnectAuthError(message, status)

    if error == "unauthorized_client":
        message = f"Home Connect API error: {CLIENT_HELP_PREFIX}{description}"
        extra = CLIENT_HELP_EXTRA.get(description)
        if extra:
            message += CLIENT_HELP_LINK + extra
        return HomeConnectClientError(message, status)

    return HomeConnectApiError(message, status)


def _api_error(
    status: int, details: dict[str, Any], headers: Mapping[str, str]
) -> HomeConnectError:
    """Classify a resource API error body."""
    key = str(details["key"])
    text = (
        details.get("developerMessage")
        or details.get("description")
        or details.get("value")
    )
    message = f"Home Connect API error: {text} [{key}]"

    if key == "invalid_token":
        return HomeConnectAccessTokenError(message, status)
    if key == "429":
        return HomeConnectRateLimitError(
            message, retry_after=parse_retry_after(headers), status=status
        )
    return HomeConnectApiError(message, status)
