"""Tests for Home Connect server error classification."""

from __future__ import annotations

from custom_components.homeconnect_cloud.const import (
    DEFAULT_RETRY_AFTER,
    TOKEN_RATE_LIMIT_DELAY,
)
from custom_components.homeconnect_cloud.errors import (
    HomeConnectAccessTokenError,
    HomeConnectApiError,
    HomeConnectAuthError,
    HomeConnectClientError,
    HomeConnectRateLimitError,
    error_from_response,
    parse_retry_after,
)


def test_authorization_pending_is_not_an_error() -> None:
    """Test that a pending device flow authorization classifies as None."""
    body = {
        "error": "authorization_pending",
        "error_description": "The authorization request is still pending",
    }
    assert error_from_response(400, body, {}) is None


def test_token_refresh_rate_limit() -> None:
    """Test that the token refresh limit uses the fixed cool-down."""
    body = {"error": "access_denied", "error_description": "Too many requests"}

    err = error_from_response(403, body, {})

    assert isinstance(err, HomeConnectRateLimitError)
    assert err.retry_after == TOKEN_RATE_LIMIT_DELAY
    assert err.retry


def test_oauth_errors_invalidate_authorization() -> None:
    """Test that denied, invalid and expired grants are authorization errors."""
    for error in ("access_denied", "invalid_grant", "expired_token"):
        err = error_from_response(
            400, {"error": error, "error_description": "Nope"}, {}
        )
        assert type(err) is HomeConnectAuthError
        assert not err.retry
        assert f"[{error}]" in str(err)


def test_unauthorized_client_includes_remediation() -> None:
    """Test that a misconfigured client explains how to fix it."""
    body = {
        "error": "unauthorized_client",
        "error_description": "client has no redirect URI defined",
    }

    err = error_from_response(400, body, {})

    assert isinstance(err, HomeConnectClientError)
    assert isinstance(err, HomeConnectAuthError)
    message = str(err)
    assert "Unable to authorize Home Connect application" in message
    assert "https://developer.home-connect.com/applications" in message
    assert "'Success Redirect'" in message


def test_unauthorized_client_unknown_description() -> None:
    """Test that an unknown client problem has no remediation link."""
    body = {"error": "unauthorized_client", "error_description": "Something new"}

    err = error_from_response(400, body, {})

    assert isinstance(err, HomeConnectClientError)
    assert "developer.home-connect.com" not in str(err)


def test_invalid_token_is_access_token_error() -> None:
    """Test that a rejected access token keeps the refresh token usable."""
    body = {
        "error": {
            "key": "invalid_token",
            "description": "The access token expired",
        }
    }

    err = error_from_response(401, body, {})

    assert isinstance(err, HomeConnectAccessTokenError)
    assert not isinstance(err, HomeConnectAuthError)
    assert err.status == 401
    assert "The access token expired [invalid_token]" in str(err)


def test_resource_rate_limit_uses_retry_after() -> None:
    """Test that a 429 error body honours the Retry-After header."""
    body = {"error": {"key": "429", "description": "Too many requests"}}

    err = error_from_response(429, body, {"Retry-After": "30"})

    assert isinstance(err, HomeConnectRateLimitError)
    assert err.retry_after == 30


def test_bare_429_is_rate_limit() -> None:
    """Test that a 429 without a recognised body is still a rate limit."""
    err = error_from_response(429, None, {})

    assert isinstance(err, HomeConnectRateLimitError)
    assert err.retry_after == DEFAULT_RETRY_AFTER


def test_other_errors() -> None:
    """Test that unrecognised errors are generic and not retried."""
    err = error_from_response(
        409,
        {"error": {"key": "SDK.Error.WrongOperationState", "value": "Busy"}},
        {},
    )
    assert type(err) is HomeConnectApiError
    assert not err.retry
    assert "Busy" in str(err)

    err = error_from_response(500, "Internal error", {})
    assert type(err) is HomeConnectApiError
    assert str(err) == "Home Connect API error: HTTP 500"


def test_parse_retry_after() -> None:
    """Test Retry-After parsing with missing and malformed values."""
    assert parse_retry_after({"retry-after": "12"}) == 12
    assert parse_retry_after({}) == DEFAULT_RETRY_AFTER
    assert parse_retry_after({"Retry-After": "soon"}) == DEFAULT_RETRY_AFTER
