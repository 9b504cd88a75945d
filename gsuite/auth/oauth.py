"""OAuth2 authorization-code flow with PKCE for the browser login.

Flow:
1. Generate PKCE verifier + challenge and a CSRF state nonce
2. Bind the callback server on localhost:8089 (fail fast if taken)
3. Print the auth URL and try to open a browser
4. Wait for the callback (code or error) or the 2-minute deadline,
   whichever comes first
5. Exchange the code (+ verifier) for a token
6. Shut the callback server down, whatever happened

Nothing is written to disk here; the caller persists the token.
"""

import asyncio
import enum
import logging
import secrets
import webbrowser
from typing import Callable, Optional
from urllib.parse import urlencode

import click
import httpx
from aiohttp import web

from gsuite.auth.credentials import ClientCredentials
from gsuite.auth.pkce import generate_pkce, generate_state
from gsuite.auth.tokens import Token
from gsuite.errors import (
    AuthTimeoutError,
    FlowError,
    ListenerError,
    MissingCodeError,
    StateMismatchError,
    TokenExchangeError,
)

logger = logging.getLogger("gsuite.oauth")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CALLBACK_HOST = "localhost"
CALLBACK_PORT = 8089
CALLBACK_PATH = "/callback"
AUTH_TIMEOUT = 120.0  # seconds the user has to finish consent
SHUTDOWN_GRACE = 5.0  # seconds the callback server gets to drain on close
EXCHANGE_TIMEOUT = 30.0

SCOPES = [
    # Read, send, label and trash mail
    "https://www.googleapis.com/auth/gmail.modify",
    # Calendar read/write
    "https://www.googleapis.com/auth/calendar",
]

SUCCESS_PAGE = (
    "<html><body><h1>Authentication successful!</h1>"
    "<p>You can close this tab.</p></body></html>"
)
ALREADY_HANDLED_PAGE = (
    "<html><body><h1>Already signed in</h1>"
    "<p>This login has already completed. You can close this tab.</p></body></html>"
)


class FlowStatus(str, enum.Enum):
    IDLE = "idle"
    AWAITING_CODE = "awaiting_code"
    SUCCEEDED = "succeeded"
    STATE_MISMATCH = "state_mismatch"
    NO_CODE = "no_code"
    TIMED_OUT = "timed_out"
    LISTENER_ERROR = "listener_error"
    EXCHANGE_FAILED = "exchange_failed"


def redirect_uri_for(port: int) -> str:
    """
    >>> redirect_uri_for(8089)
    'http://localhost:8089/callback'
    """
    return f"http://{CALLBACK_HOST}:{port}{CALLBACK_PATH}"


def open_browser(url: str) -> None:
    """Try to open ``url`` in the user's browser. Never raises.

    The URL has already been printed, so a headless box just means the
    user copies it by hand.
    """
    try:
        if not webbrowser.open(url):
            logger.debug("No browser available to open the auth URL")
    except (webbrowser.Error, OSError) as exc:
        logger.debug("Browser launch failed: %s", exc)


def print_auth_url(url: str) -> None:
    click.echo("Opening browser for authentication...")
    click.echo(f"If the browser does not open, visit this URL:\n{url}\n")


# ---------------------------------------------------------------------------
# Callback listener
# ---------------------------------------------------------------------------


class CallbackListener:
    """Short-lived HTTP server that receives the OAuth redirect.

    Hands back exactly one outcome through a single-slot future: either the
    authorization code or the error that ended the flow. Later hits (browser
    retries, reloads) are answered but never change the outcome.
    """

    def __init__(
        self,
        expected_state: str,
        *,
        host: str = CALLBACK_HOST,
        port: int = CALLBACK_PORT,
        path: str = CALLBACK_PATH,
    ):
        self.expected_state = expected_state
        self.host = host
        self.port = port
        self.path = path
        self._runner: Optional[web.AppRunner] = None
        self._result: Optional[asyncio.Future] = None

    @property
    def delivered(self) -> bool:
        return self._result is not None and self._result.done()

    async def start(self) -> None:
        """Bind and start serving. Raises ListenerError if the port is taken."""
        self._result = asyncio.get_running_loop().create_future()

        app = web.Application()
        app.router.add_get(self.path, self._handle_callback)
        runner = web.AppRunner(app, shutdown_timeout=SHUTDOWN_GRACE)
        await runner.setup()

        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError as exc:
            await runner.cleanup()
            raise ListenerError(
                f"failed to start local server on port {self.port}: {exc}"
            ) from exc

        self._runner = runner
        if self.port == 0 and runner.addresses:
            self.port = runner.addresses[0][1]
        logger.info(f"OAuth callback server started on port {self.port}")

    def _deliver(self, *, code: Optional[str] = None, error: Optional[FlowError] = None) -> bool:
        """Set the outcome once. Returns False if one was already set."""
        if self._result is None or self._result.done():
            return False
        if error is not None:
            self._result.set_exception(error)
        else:
            self._result.set_result(code)
        return True

    async def _handle_callback(self, request: web.Request) -> web.Response:
        state = request.query.get("state", "")
        if not secrets.compare_digest(state.encode(), self.expected_state.encode()):
            logger.warning("OAuth callback rejected: state mismatch")
            self._deliver(error=StateMismatchError(
                "state mismatch: the callback did not come from this login request"
            ))
            return web.Response(status=400, text="State mismatch")

        code = request.query.get("code", "")
        if not code:
            provider_error = request.query.get("error")
            if provider_error:
                description = request.query.get("error_description", "")
                message = f"authorization denied by provider: {provider_error}"
                if description:
                    message += f" ({description})"
            else:
                message = "no authorization code in callback"
            logger.warning("OAuth callback rejected: %s", message)
            self._deliver(error=MissingCodeError(message))
            return web.Response(status=400, text="No authorization code")

        if not self._deliver(code=code):
            logger.debug("Ignoring repeated OAuth callback")
            return web.Response(text=ALREADY_HANDLED_PAGE, content_type="text/html")

        logger.info("Received authorization code")
        return web.Response(text=SUCCESS_PAGE, content_type="text/html")

    async def wait(self, timeout: float) -> str:
        """Block until the callback delivers, or raise AuthTimeoutError."""
        if self._result is None:
            raise FlowError("callback listener was not started")
        try:
            return await asyncio.wait_for(self._result, timeout)
        except asyncio.TimeoutError:
            raise AuthTimeoutError(
                f"timed out waiting for authentication callback (timeout: {timeout:g}s)"
            ) from None

    async def close(self) -> None:
        """Stop the server. Safe to call more than once."""
        if self._runner is None:
            return
        runner, self._runner = self._runner, None
        await runner.cleanup()
        logger.info("OAuth callback server stopped")

    async def __aenter__(self) -> "CallbackListener":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


# ---------------------------------------------------------------------------
# Authenticator
# ---------------------------------------------------------------------------


class OAuthFlow:
    """One browser login attempt. Single use: create a new flow to retry.

    Lifecycle (``status``):
        idle -> awaiting_code -> succeeded
                              -> state_mismatch | no_code | timed_out
        idle -> listener_error
        succeeded -> exchange_failed
    """

    def __init__(
        self,
        client: ClientCredentials,
        *,
        scopes: Optional[list[str]] = None,
        host: str = CALLBACK_HOST,
        port: int = CALLBACK_PORT,
        timeout: float = AUTH_TIMEOUT,
        open_browser: Callable[[str], None] = open_browser,
        announce: Callable[[str], None] = print_auth_url,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = client
        self.scopes = list(scopes or SCOPES)
        self.host = host
        self.port = port
        self.timeout = timeout
        self._open_browser = open_browser
        self._announce = announce
        self._transport = transport

        self.status = FlowStatus.IDLE
        self.state: Optional[str] = None
        self.auth_url: Optional[str] = None
        self._verifier: Optional[str] = None

    @property
    def redirect_uri(self) -> str:
        return redirect_uri_for(self.port)

    def build_auth_url(self, state: str, challenge: str) -> str:
        params = {
            "client_id": self.client.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "state": state,
            "prompt": "consent",
        }
        return f"{self.client.auth_uri}?{urlencode(params)}"

    def _launch_browser(self, url: str) -> None:
        try:
            self._open_browser(url)
        except Exception as exc:
            logger.debug("Browser launcher raised, continuing with printed URL: %s", exc)

    async def run(self) -> Token:
        """Run the whole flow and return the exchanged token."""
        if self.status is not FlowStatus.IDLE:
            raise FlowError("this login flow has already run; start a new one")

        self._verifier, challenge = generate_pkce()
        self.state = generate_state()
        listener = CallbackListener(self.state, host=self.host, port=self.port)
        try:
            await listener.start()
        except ListenerError:
            self.status = FlowStatus.LISTENER_ERROR
            raise
        # port 0 binds an ephemeral port; the redirect must name the real one
        self.port = listener.port
        self.auth_url = self.build_auth_url(self.state, challenge)

        try:
            self.status = FlowStatus.AWAITING_CODE
            self._announce(self.auth_url)
            self._launch_browser(self.auth_url)

            try:
                code = await listener.wait(self.timeout)
            except StateMismatchError:
                self.status = FlowStatus.STATE_MISMATCH
                raise
            except MissingCodeError:
                self.status = FlowStatus.NO_CODE
                raise
            except AuthTimeoutError:
                self.status = FlowStatus.TIMED_OUT
                raise

            self.status = FlowStatus.SUCCEEDED
            return await self.exchange_code(code)
        finally:
            await listener.close()

    async def exchange_code(self, code: str) -> Token:
        """POST the code and PKCE verifier to the token endpoint."""
        try:
            async with httpx.AsyncClient(timeout=EXCHANGE_TIMEOUT, transport=self._transport) as http:
                resp = await http.post(
                    self.client.token_uri,
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "code_verifier": self._verifier,
                        "client_id": self.client.client_id,
                        "client_secret": self.client.client_secret,
                        "redirect_uri": self.redirect_uri,
                    },
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            self.status = FlowStatus.EXCHANGE_FAILED
            raise TokenExchangeError(
                f"failed to exchange authorization code for token: {exc}"
            ) from exc

        if resp.status_code != 200:
            self.status = FlowStatus.EXCHANGE_FAILED
            logger.error(f"Token exchange HTTP {resp.status_code}")
            detail = resp.text.strip()
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                detail = body.get("error_description") or body.get("error") or detail
            raise TokenExchangeError(
                f"failed to exchange authorization code for token (HTTP {resp.status_code}): {detail}"
            )

        try:
            token = Token.from_token_response(resp.json())
        except ValueError as exc:
            self.status = FlowStatus.EXCHANGE_FAILED
            raise TokenExchangeError(f"unexpected token response: {exc}") from exc

        logger.info("Token exchange successful: expires_at=%s", token.expiry)
        return token


async def authenticate(client: ClientCredentials, **kwargs) -> Token:
    """Run a fresh OAuthFlow. Convenience wrapper for the service layer."""
    return await OAuthFlow(client, **kwargs).run()
