"""Service layer: login/logout, account management, and the client factory.

Every function takes a ServiceConfig and re-reads state from disk; there
is no caching between calls. Mail and calendar commands only need
new_gmail_client().
"""

import asyncio
import logging
from typing import Callable, Optional

from gsuite.auth.accounts import AccountEntry, AccountStore
from gsuite.auth.client import GmailClient
from gsuite.auth.credentials import ClientCredentials, load_client_credentials
from gsuite.auth.migrate import migrate_if_needed
from gsuite.auth.oauth import OAuthFlow, print_auth_url
from gsuite.auth.tokens import Token, TokenStore
from gsuite.config import ServiceConfig
from gsuite.errors import ConfigurationError, GsuiteError

logger = logging.getLogger("gsuite.service")

ClientFactory = Callable[[Token, ClientCredentials], GmailClient]
FlowFactory = Callable[..., OAuthFlow]


def _load_store(config: ServiceConfig) -> AccountStore:
    return AccountStore.load(config.paths.accounts_file)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


def login(
    config: ServiceConfig,
    *,
    announce: Callable[[str], None] = print_auth_url,
    flow_factory: FlowFactory = OAuthFlow,
    client_factory: ClientFactory = GmailClient,
) -> str:
    """Run the browser login, store the token, and make the account active.

    Returns the email of the account that logged in. Logging in again as
    an existing account replaces its token and switches to it.
    """
    client = load_client_credentials(config.credentials_file)

    flow = flow_factory(client, announce=announce)
    token = asyncio.run(flow.run())

    try:
        with client_factory(token, client) as gmail:
            profile = gmail.get_profile()
            token = gmail.token
    except GsuiteError as exc:
        raise GsuiteError(f"logged in, but failed to look up the account email: {exc}") from exc
    email = profile.get("emailAddress", "")
    if not email:
        raise GsuiteError("logged in, but the profile response has no email address")

    paths = config.paths
    TokenStore(paths).save(email, token)

    store = AccountStore.load(paths.accounts_file)
    store.add_account(email)
    store.save()

    logger.info("Logged in as %s", email)
    return email


def logout(config: ServiceConfig) -> str:
    """Remove the named (or active) account and delete its token."""
    ensure_migrated(config)
    store = _load_store(config)
    email = config.account or store.get_active()
    _remove(config, store, email)
    return email


# ---------------------------------------------------------------------------
# Account management
# ---------------------------------------------------------------------------


def list_accounts(config: ServiceConfig) -> tuple[list[AccountEntry], AccountStore]:
    """Entries (copies) plus the store, for rendering the active marker."""
    ensure_migrated(config)
    store = _load_store(config)
    return store.list(), store


def switch_account(config: ServiceConfig, email: str) -> None:
    ensure_migrated(config)
    store = _load_store(config)
    store.set_active(email)
    store.save()
    logger.info("Switched active account to %s", email)


def remove_account(config: ServiceConfig, email: str) -> None:
    ensure_migrated(config)
    _remove(config, _load_store(config), email)


def _remove(config: ServiceConfig, store: AccountStore, email: str) -> None:
    removed = store.remove_account(email)
    store.save()
    # token files are named after the stored spelling; delete the typed one too
    tokens = TokenStore(config.paths)
    for name in dict.fromkeys([removed.email, email]):
        tokens.delete(name)


# ---------------------------------------------------------------------------
# Client factory
# ---------------------------------------------------------------------------


def ensure_migrated(
    config: ServiceConfig,
    *,
    client: Optional[ClientCredentials] = None,
    client_factory: ClientFactory = GmailClient,
) -> Optional[str]:
    """Run the legacy-token migration if it has not happened yet.

    Without client credentials there is nobody to ask whose the legacy
    token is, so migration waits until the CLI is configured.
    """
    if client is None:
        try:
            client = load_client_credentials(config.credentials_file)
        except ConfigurationError:
            logger.debug("No client credentials configured, skipping migration")
            return None
    return migrate_if_needed(config.paths, client, client_factory=client_factory)


def resolve_account(config: ServiceConfig) -> str:
    """The explicitly requested account, else the active one."""
    if config.account:
        return config.account
    return _load_store(config).get_active()


def new_gmail_client(
    config: ServiceConfig,
    *,
    client_factory: ClientFactory = GmailClient,
) -> GmailClient:
    """Return a ready-to-use client for the resolved account."""
    client = load_client_credentials(config.credentials_file)
    ensure_migrated(config, client=client, client_factory=client_factory)
    email = resolve_account(config)
    token = TokenStore(config.paths).load(email)
    logger.debug("Using account %s", email)
    return client_factory(token, client)


def whoami(config: ServiceConfig, *, client_factory: ClientFactory = GmailClient) -> dict:
    """Profile of the resolved account."""
    with new_gmail_client(config, client_factory=client_factory) as gmail:
        return gmail.get_profile()
