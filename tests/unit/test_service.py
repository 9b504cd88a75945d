"""Unit tests for the service layer.

Login runs against a fake flow and profile client; everything else works
on a real config dir under tmp_path.
"""

import pytest

from gsuite import service
from gsuite.auth.accounts import AccountStore
from gsuite.auth.migrate import migrate_if_needed
from gsuite.auth.tokens import TokenStore
from gsuite.errors import (
    AccountError,
    ApiError,
    ConfigurationError,
    GsuiteError,
    NoActiveAccountError,
    TokenExchangeError,
    TokenNotFoundError,
)


class FakeFlow:
    """OAuthFlow stand-in that returns a canned token (or raises)."""

    def __init__(self, client, *, announce, token=None, error=None):
        self.client = client
        self.announce = announce
        self.token = token
        self.error = error

    async def run(self):
        self.announce("https://accounts.test/auth?state=x")
        if self.error is not None:
            raise self.error
        return self.token


def _flow_factory(token=None, error=None):
    def factory(client, *, announce):
        return FakeFlow(client, announce=announce, token=token, error=error)
    return factory


def _signed_in(config, make_token, *emails, active=None):
    """Register accounts with tokens on disk, as repeated logins would."""
    tokens = TokenStore(config.paths)
    store = AccountStore.load(config.paths.accounts_file)
    for email in emails:
        tokens.save(email, make_token(access=f"access-{email}"))
        store.add_account(email)
    if active is not None:
        store.set_active(active)
    store.save()


# ------------------------------------------------------------------
# login
# ------------------------------------------------------------------


def test_login_stores_token_and_activates(config, with_client_env, make_token, gmail_factory):
    announced = []
    token = make_token(access="fresh")

    email = service.login(
        config,
        announce=announced.append,
        flow_factory=_flow_factory(token=token),
        client_factory=gmail_factory(email="alice@example.com"),
    )

    assert email == "alice@example.com"
    assert announced == ["https://accounts.test/auth?state=x"]
    assert TokenStore(config.paths).load("alice@example.com").access_token == "fresh"
    assert AccountStore.load(config.paths.accounts_file).get_active() == "alice@example.com"


def test_second_login_adds_account_and_switches(config, with_client_env, make_token, gmail_factory):
    _signed_in(config, make_token, "alice@example.com")

    service.login(
        config,
        flow_factory=_flow_factory(token=make_token()),
        client_factory=gmail_factory(email="bob@example.com"),
    )

    store = AccountStore.load(config.paths.accounts_file)
    assert [a.email for a in store.accounts] == ["alice@example.com", "bob@example.com"]
    assert store.get_active() == "bob@example.com"


def test_login_flow_error_writes_nothing(config, with_client_env, gmail_factory):
    with pytest.raises(TokenExchangeError):
        service.login(
            config,
            flow_factory=_flow_factory(error=TokenExchangeError("exchange failed")),
            client_factory=gmail_factory(),
        )
    assert not config.paths.accounts_file.exists()
    assert not config.paths.tokens_dir.exists()


def test_login_profile_failure_is_reported(config, with_client_env, make_token, gmail_factory):
    with pytest.raises(GsuiteError, match="failed to look up the account email"):
        service.login(
            config,
            flow_factory=_flow_factory(token=make_token()),
            client_factory=gmail_factory(error=ApiError("boom", status_code=500)),
        )
    assert not config.paths.accounts_file.exists()


def test_login_without_credentials(config):
    with pytest.raises(ConfigurationError):
        service.login(config, flow_factory=_flow_factory())


# ------------------------------------------------------------------
# Account management
# ------------------------------------------------------------------


def test_logout_removes_active_and_reassigns(config, make_token):
    _signed_in(config, make_token, "alice@example.com", "bob@example.com", active="bob@example.com")

    assert service.logout(config) == "bob@example.com"

    store = AccountStore.load(config.paths.accounts_file)
    assert store.get_active() == "alice@example.com"
    assert not TokenStore(config.paths).exists("bob@example.com")
    assert TokenStore(config.paths).exists("alice@example.com")


def test_logout_with_account_override(config, make_token):
    _signed_in(config, make_token, "alice@example.com", "bob@example.com", active="bob@example.com")
    config.account = "alice@example.com"

    assert service.logout(config) == "alice@example.com"
    assert AccountStore.load(config.paths.accounts_file).get_active() == "bob@example.com"


def test_logout_with_no_accounts(config):
    with pytest.raises(NoActiveAccountError):
        service.logout(config)


def test_switch_and_list(config, make_token):
    _signed_in(config, make_token, "alice@example.com", "bob@example.com")

    service.switch_account(config, "alice@example.com")
    entries, store = service.list_accounts(config)

    assert [e.email for e in entries] == ["alice@example.com", "bob@example.com"]
    assert store.is_active("alice@example.com")
    assert not store.is_active("bob@example.com")


def test_switch_unknown_account(config, make_token):
    _signed_in(config, make_token, "alice@example.com")
    with pytest.raises(AccountError, match="not found"):
        service.switch_account(config, "nobody@example.com")


def test_remove_account_deletes_token(config, make_token):
    _signed_in(config, make_token, "alice@example.com", "bob@example.com", active="alice@example.com")

    service.remove_account(config, "bob@example.com")

    store = AccountStore.load(config.paths.accounts_file)
    assert [a.email for a in store.accounts] == ["alice@example.com"]
    assert store.get_active() == "alice@example.com"
    assert not TokenStore(config.paths).exists("bob@example.com")


def test_remove_account_without_token_file(config):
    store = AccountStore.load(config.paths.accounts_file)
    store.add_account("ghost@example.com")
    store.save()

    service.remove_account(config, "ghost@example.com")
    assert AccountStore.load(config.paths.accounts_file).accounts == []


# ------------------------------------------------------------------
# Client factory
# ------------------------------------------------------------------


def test_resolve_account_prefers_override(config, make_token):
    _signed_in(config, make_token, "alice@example.com", "bob@example.com", active="bob@example.com")
    assert service.resolve_account(config) == "bob@example.com"

    config.account = "alice@example.com"
    assert service.resolve_account(config) == "alice@example.com"


def test_new_gmail_client_uses_active_token(config, with_client_env, make_token, gmail_factory):
    _signed_in(config, make_token, "alice@example.com", "bob@example.com", active="alice@example.com")
    factory = gmail_factory()

    gmail = service.new_gmail_client(config, client_factory=factory)

    assert gmail.token.access_token == "access-alice@example.com"
    assert gmail.client.client_id == "test-client"


def test_new_gmail_client_missing_token(config, with_client_env, gmail_factory):
    store = AccountStore.load(config.paths.accounts_file)
    store.add_account("alice@example.com")
    store.save()

    with pytest.raises(TokenNotFoundError) as exc_info:
        service.new_gmail_client(config, client_factory=gmail_factory())
    assert exc_info.value.email == "alice@example.com"
    assert "gsuite login" in str(exc_info.value)


def test_new_gmail_client_migrates_first(config, with_client_env, make_token, gmail_factory):
    TokenStore(config.paths).save_legacy(make_token(access="legacy"))
    factory = gmail_factory(email="old@example.com")

    gmail = service.new_gmail_client(config, client_factory=factory)

    assert gmail.token.access_token == "legacy"
    assert AccountStore.load(config.paths.accounts_file).get_active() == "old@example.com"
    assert config.paths.legacy_backup_file.exists()
    # one client for the profile lookup, one handed back to the caller
    assert len(factory.clients) == 2


def test_new_gmail_client_requires_credentials(config, make_token):
    _signed_in(config, make_token, "alice@example.com")
    with pytest.raises(ConfigurationError):
        service.new_gmail_client(config)


def test_ensure_migrated_skips_without_credentials(config, make_token):
    TokenStore(config.paths).save_legacy(make_token())
    assert service.ensure_migrated(config) is None
    assert config.paths.legacy_token_file.exists()


def test_whoami_returns_profile(config, with_client_env, make_token, gmail_factory):
    _signed_in(config, make_token, "alice@example.com")
    factory = gmail_factory()

    profile = service.whoami(config, client_factory=factory)

    assert profile["emailAddress"] == "alice@example.com"
    assert profile["messagesTotal"] == 42
    assert factory.clients[0].closed


def test_remove_account_deletes_token_under_stored_spelling(config, make_token):
    _signed_in(config, make_token, "Alice@Example.com")

    service.remove_account(config, "alice@example.com")

    assert AccountStore.load(config.paths.accounts_file).accounts == []
    assert list(config.paths.tokens_dir.glob("*.json")) == []


def test_logout_named_account_deletes_both_spellings(config, make_token):
    _signed_in(config, make_token, "Alice@Example.com", "bob@example.com")
    # a later login typed in lower case left a second file behind
    TokenStore(config.paths).save("alice@example.com", make_token())
    config.account = "alice@example.com"

    service.logout(config)

    remaining = sorted(p.name for p in config.paths.tokens_dir.glob("*.json"))
    assert remaining == ["bob@example.com.json"]


def _migrate_with(monkeypatch, factory):
    """Point the service's migration at a fake profile client."""
    monkeypatch.setattr(
        service,
        "migrate_if_needed",
        lambda paths, client, **kwargs: migrate_if_needed(paths, client, client_factory=factory),
    )


def test_switch_account_migrates_legacy_token_first(config, with_client_env, make_token, gmail_factory, monkeypatch):
    TokenStore(config.paths).save_legacy(make_token())
    _migrate_with(monkeypatch, gmail_factory(email="old@example.com"))

    service.switch_account(config, "old@example.com")

    assert AccountStore.load(config.paths.accounts_file).get_active() == "old@example.com"
    assert config.paths.legacy_backup_file.exists()


def test_remove_account_migrates_legacy_token_first(config, with_client_env, make_token, gmail_factory, monkeypatch):
    TokenStore(config.paths).save_legacy(make_token())
    _migrate_with(monkeypatch, gmail_factory(email="old@example.com"))

    service.remove_account(config, "old@example.com")

    assert AccountStore.load(config.paths.accounts_file).accounts == []
    assert not TokenStore(config.paths).exists("old@example.com")
    assert config.paths.legacy_backup_file.exists()
