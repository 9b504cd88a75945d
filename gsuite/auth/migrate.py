"""One-time migration from the single-token layout to per-account tokens.

Old layout:  token.json (no record of whose token it is)
New layout:  tokens/<email>.json + accounts.json

The legacy token is moved over by asking the API whose token it is. The
rename of token.json to token.json.bak is the last step: if anything
before it fails, token.json stays where it was and the next command simply
tries again. Safe to call on every invocation.
"""

import logging
from typing import Callable, Optional

from gsuite.auth.accounts import AccountStore
from gsuite.auth.client import GmailClient
from gsuite.auth.credentials import ClientCredentials
from gsuite.auth.tokens import Token, TokenStore
from gsuite.config import Paths
from gsuite.errors import GsuiteError, MigrationError

logger = logging.getLogger("gsuite.migrate")

ClientFactory = Callable[[Token, ClientCredentials], GmailClient]


def _discover_email(token: Token, client: ClientCredentials, client_factory: ClientFactory) -> tuple[str, Token]:
    """Ask the profile endpoint who owns ``token``.

    Returns the email and the token as it stands after the call (the client
    may have refreshed it on the way).
    """
    with client_factory(token, client) as gmail:
        profile = gmail.get_profile()
        current = gmail.token
    email = profile.get("emailAddress") if isinstance(profile, dict) else None
    if not email:
        raise MigrationError("profile response has no emailAddress")
    return email, current


def migrate_if_needed(
    paths: Paths,
    client: ClientCredentials,
    *,
    client_factory: ClientFactory = GmailClient,
) -> Optional[str]:
    """Move a legacy token into the multi-account layout.

    Returns the migrated email, or None when there was nothing to do
    (accounts already registered, or no legacy token on disk).
    Every failure is raised as MigrationError ("migration: ...").
    """
    try:
        store = AccountStore.load(paths.accounts_file)
    except GsuiteError as exc:
        raise MigrationError(f"failed to load account store: {exc}") from exc
    if store.accounts:
        return None

    tokens = TokenStore(paths)
    if not tokens.has_legacy():
        return None

    logger.info("Legacy token found at %s, migrating", tokens.legacy_path)
    try:
        legacy = tokens.load_legacy()
    except (GsuiteError, OSError) as exc:
        raise MigrationError(f"failed to load legacy token: {exc}") from exc

    try:
        email, token = _discover_email(legacy, client, client_factory)
    except MigrationError:
        raise
    except GsuiteError as exc:
        raise MigrationError(f"failed to discover email from legacy token: {exc}") from exc

    try:
        tokens.save(email, token)
    except GsuiteError as exc:
        raise MigrationError(f"failed to save per-account token for {email}: {exc}") from exc

    try:
        store.add_account(email)
        store.save()
    except GsuiteError as exc:
        raise MigrationError(f"failed to register account {email}: {exc}") from exc

    backup = paths.legacy_backup_file
    try:
        tokens.legacy_path.replace(backup)
    except OSError as exc:
        raise MigrationError(f"failed to rename legacy token to {backup}: {exc}") from exc

    logger.info("Migrated legacy token to account %s (backup at %s)", email, backup)
    return email
