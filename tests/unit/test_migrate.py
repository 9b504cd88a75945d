"""Unit tests for the legacy single-token migration.

The profile lookup is mostly faked with the gmail_factory fixture, so these
tests only exercise file handling and ordering: the legacy file must
survive every failure, and be renamed only once the new layout is
complete.
"""

import httpx
import pytest

from gsuite.auth.accounts import AccountStore
from gsuite.auth.client import GmailClient
from gsuite.auth.migrate import migrate_if_needed
from gsuite.auth.tokens import TokenStore
from gsuite.errors import ApiError, MigrationError


def test_nothing_to_do_on_fresh_install(paths, client_creds, gmail_factory):
    factory = gmail_factory()
    assert migrate_if_needed(paths, client_creds, client_factory=factory) is None
    assert factory.clients == []
    assert not paths.accounts_file.exists()


def test_existing_accounts_skip_migration(paths, client_creds, gmail_factory, make_token):
    store = AccountStore.load(paths.accounts_file)
    store.add_account("bob@example.com")
    store.save()
    TokenStore(paths).save_legacy(make_token())

    factory = gmail_factory()
    assert migrate_if_needed(paths, client_creds, client_factory=factory) is None
    assert factory.clients == []
    assert paths.legacy_token_file.exists()


def test_legacy_token_is_moved_to_account(paths, client_creds, gmail_factory, make_token):
    tokens = TokenStore(paths)
    tokens.save_legacy(make_token(access="legacy-access"))
    original_bytes = paths.legacy_token_file.read_bytes()

    factory = gmail_factory(email="alice@example.com")
    assert migrate_if_needed(paths, client_creds, client_factory=factory) == "alice@example.com"

    assert tokens.load("alice@example.com").access_token == "legacy-access"
    store = AccountStore.load(paths.accounts_file)
    assert store.get_active() == "alice@example.com"
    assert [a.email for a in store.accounts] == ["alice@example.com"]

    assert not paths.legacy_token_file.exists()
    assert paths.legacy_backup_file.read_bytes() == original_bytes


def test_migration_is_idempotent(paths, client_creds, gmail_factory, make_token):
    TokenStore(paths).save_legacy(make_token())
    factory = gmail_factory()

    assert migrate_if_needed(paths, client_creds, client_factory=factory) == "alice@example.com"
    assert migrate_if_needed(paths, client_creds, client_factory=factory) is None
    assert len(factory.clients) == 1
    assert factory.clients[0].closed


def test_profile_failure_leaves_legacy_file(paths, client_creds, gmail_factory, make_token):
    TokenStore(paths).save_legacy(make_token())
    original_bytes = paths.legacy_token_file.read_bytes()

    failing = gmail_factory(error=ApiError("failed to get user profile: API error (HTTP 500)", status_code=500))
    with pytest.raises(MigrationError) as exc_info:
        migrate_if_needed(paths, client_creds, client_factory=failing)

    assert str(exc_info.value).startswith("migration: ")
    assert "HTTP 500" in str(exc_info.value)
    assert paths.legacy_token_file.read_bytes() == original_bytes
    assert not paths.legacy_backup_file.exists()
    assert not paths.accounts_file.exists()

    # the next invocation retries and succeeds
    assert migrate_if_needed(paths, client_creds, client_factory=gmail_factory()) == "alice@example.com"
    assert paths.legacy_backup_file.read_bytes() == original_bytes


def test_profile_without_email_is_migration_error(paths, client_creds, gmail_factory, make_token):
    TokenStore(paths).save_legacy(make_token())

    with pytest.raises(MigrationError, match="no emailAddress"):
        migrate_if_needed(paths, client_creds, client_factory=gmail_factory(email=""))
    assert paths.legacy_token_file.exists()


def test_corrupt_legacy_token(paths, client_creds, gmail_factory):
    paths.config_dir.mkdir(parents=True)
    paths.legacy_token_file.write_text("{not json")

    factory = gmail_factory()
    with pytest.raises(MigrationError, match="failed to load legacy token"):
        migrate_if_needed(paths, client_creds, client_factory=factory)
    assert factory.clients == []
    assert paths.legacy_token_file.exists()


def test_corrupt_account_store(paths, client_creds, gmail_factory, make_token):
    TokenStore(paths).save_legacy(make_token())
    paths.accounts_file.write_text("[]")

    with pytest.raises(MigrationError, match="failed to load account store"):
        migrate_if_needed(paths, client_creds, client_factory=gmail_factory())


def test_non_json_profile_response_is_migration_error(paths, client_creds, make_token):
    TokenStore(paths).save_legacy(make_token())
    original_bytes = paths.legacy_token_file.read_bytes()

    def captive_portal(token, client):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, text="<html>captive portal</html>")
        )
        return GmailClient(token, client, transport=transport)

    with pytest.raises(MigrationError) as exc_info:
        migrate_if_needed(paths, client_creds, client_factory=captive_portal)

    assert str(exc_info.value).startswith("migration: ")
    assert "non-JSON" in str(exc_info.value)
    assert paths.legacy_token_file.read_bytes() == original_bytes
    assert not paths.legacy_backup_file.exists()


def test_token_save_failure_leaves_legacy_file(paths, client_creds, gmail_factory, make_token):
    TokenStore(paths).save_legacy(make_token())
    original_bytes = paths.legacy_token_file.read_bytes()
    # a plain file where the tokens/ directory should be
    paths.tokens_dir.write_text("")

    with pytest.raises(MigrationError, match="failed to save per-account token"):
        migrate_if_needed(paths, client_creds, client_factory=gmail_factory())

    assert paths.legacy_token_file.read_bytes() == original_bytes
    assert not paths.legacy_backup_file.exists()
    assert not paths.accounts_file.exists()


def test_account_store_save_failure_leaves_legacy_file(tmp_path, paths, client_creds, gmail_factory, make_token):
    TokenStore(paths).save_legacy(make_token())
    original_bytes = paths.legacy_token_file.read_bytes()
    # saving refuses to write through a symlink
    paths.accounts_file.symlink_to(tmp_path / "elsewhere.json")

    with pytest.raises(MigrationError, match="failed to register account alice@example.com"):
        migrate_if_needed(paths, client_creds, client_factory=gmail_factory())

    assert paths.legacy_token_file.read_bytes() == original_bytes
    assert not paths.legacy_backup_file.exists()
    assert not (tmp_path / "elsewhere.json").exists()
