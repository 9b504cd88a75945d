"""Authenticated HTTP client for the Gmail API.

RefreshingTokenAuth is an httpx auth flow that keeps one account's access
token usable: it refreshes through the token endpoint when the token is
expired, and once more if the API still answers 401. Refreshed tokens live
in memory only; the file on disk is updated at the next login.
"""

import logging
from typing import Any, Generator, Optional

import httpx

from gsuite.auth.credentials import ClientCredentials
from gsuite.auth.tokens import Token
from gsuite.errors import ApiError

logger = logging.getLogger("gsuite.client")

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/"
PROFILE_PATH = "users/me/profile"
DEFAULT_TIMEOUT = 30.0


def _error_details(response: httpx.Response) -> tuple[Optional[str], str]:
    """(reason, message) from a Google API error body, best effort."""
    try:
        body = response.json()
    except ValueError:
        return None, response.text.strip()
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, str):
        # OAuth endpoints: {"error": "invalid_grant", "error_description": "..."}
        return error, body.get("error_description", error)
    if not isinstance(error, dict):
        return None, response.text.strip()
    reason = None
    for item in error.get("errors") or []:
        if isinstance(item, dict) and item.get("reason"):
            reason = item["reason"]
            break
    return reason, error.get("message", "")


def is_insufficient_scope(status_code: int, reason: Optional[str]) -> bool:
    """403 insufficientPermissions means the token lacks a scope.

    >>> is_insufficient_scope(403, "insufficientPermissions")
    True
    >>> is_insufficient_scope(403, "forbidden")
    False
    >>> is_insufficient_scope(401, "insufficientPermissions")
    False
    """
    return status_code == 403 and reason == "insufficientPermissions"


def raise_for_api_error(response: httpx.Response, action: str) -> None:
    """Raise ApiError with an actionable message for non-2xx responses."""
    if response.is_success:
        return
    status = response.status_code
    reason, message = _error_details(response)

    if status == 401:
        text = f"{action}: authentication expired or revoked. Run 'gsuite login' to re-authenticate"
    elif is_insufficient_scope(status, reason):
        text = (
            f"{action}: the saved login is missing a required permission. "
            "Run 'gsuite login' again and grant Gmail and calendar permission"
        )
    elif status == 404:
        text = f"{action}: not found"
    else:
        text = f"{action}: API error (HTTP {status})"
        if message:
            text += f": {message}"
    raise ApiError(text, status_code=status, reason=reason)


class RefreshingTokenAuth(httpx.Auth):
    """Bearer auth that refreshes the token on expiry or a 401."""

    requires_response_body = True

    def __init__(self, token: Token, client: ClientCredentials):
        self.token = token
        self.client = client

    def _can_refresh(self) -> bool:
        return bool(self.token.refresh_token)

    def build_refresh_request(self) -> httpx.Request:
        return httpx.Request(
            "POST",
            self.client.token_uri,
            data={
                "grant_type": "refresh_token",
                "refresh_token": self.token.refresh_token,
                "client_id": self.client.client_id,
                "client_secret": self.client.client_secret,
            },
        )

    def update_token(self, response: httpx.Response) -> None:
        if response.status_code != 200:
            reason, message = _error_details(response)
            logger.warning("Token refresh failed: HTTP %d (%s)", response.status_code, reason)
            raise ApiError(
                f"token refresh failed ({message or reason or response.status_code}). "
                "Run 'gsuite login' to re-authenticate",
                status_code=response.status_code,
                reason=reason,
            )
        try:
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            self.token = Token.from_token_response(data, previous=self.token)
        except ValueError as exc:
            raise ApiError(
                f"token refresh failed (unexpected token response: {exc}). "
                "Run 'gsuite login' to re-authenticate",
                status_code=response.status_code,
            ) from exc
        logger.info("Access token refreshed")

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        if self._can_refresh() and self.token.is_expired():
            refresh_response = yield self.build_refresh_request()
            self.update_token(refresh_response)

        request.headers["Authorization"] = self.token.authorization
        response = yield request

        if response.status_code == 401 and self._can_refresh():
            refresh_response = yield self.build_refresh_request()
            self.update_token(refresh_response)
            request.headers["Authorization"] = self.token.authorization
            yield request


class GmailClient:
    """Gmail API client bound to one account's token.

    Use as a context manager, or call close() when done.
    """

    def __init__(
        self,
        token: Token,
        client: ClientCredentials,
        *,
        base_url: str = GMAIL_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._auth = RefreshingTokenAuth(token, client)
        self._http = httpx.Client(
            base_url=base_url,
            auth=self._auth,
            timeout=timeout,
            transport=transport,
        )

    @property
    def token(self) -> Token:
        """The current token, including any refresh done by this client."""
        return self._auth.token

    def request(self, method: str, url: str, *, action: Optional[str] = None, **kwargs: Any) -> Any:
        """Send an authenticated request and return the decoded JSON body."""
        action = action or f"{method} {url}"
        try:
            response = self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise ApiError(f"{action}: request failed: {exc}", status_code=0) from exc
        raise_for_api_error(response, action)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                f"{action}: unexpected non-JSON response (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from exc

    def get_profile(self) -> dict:
        """Profile of the token's owner: emailAddress, messagesTotal, threadsTotal."""
        action = "failed to get user profile"
        profile = self.request("GET", PROFILE_PATH, action=action)
        if not isinstance(profile, dict):
            raise ApiError(f"{action}: unexpected response shape", status_code=200)
        return profile

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "GmailClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
