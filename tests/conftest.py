"""Shared fixtures for gsuite tests."""

from datetime import datetime, timedelta, timezone

import pytest

from gsuite.auth.credentials import ClientCredentials
from gsuite.auth.tokens import Token
from gsuite.config import Paths, ServiceConfig

CLIENT_JSON = (
    '{"installed": {"client_id": "test-client", "client_secret": "test-secret", '
    '"auth_uri": "https://accounts.test/auth", "token_uri": "https://oauth2.test/token"}}'
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's real credentials and config dir out of tests."""
    for name in ("GOOGLE_CREDENTIALS", "GOOGLE_APPLICATION_CREDENTIALS", "GSUITE_CONFIG_DIR"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def paths(tmp_path):
    """Paths rooted in a fresh temp config dir."""
    return Paths(tmp_path / "gsuite")


@pytest.fixture
def config(paths):
    """ServiceConfig pointing at the temp config dir."""
    return ServiceConfig(config_dir=paths.config_dir)


@pytest.fixture
def client_creds():
    """OAuth client matching CLIENT_JSON."""
    return ClientCredentials(
        client_id="test-client",
        client_secret="test-secret",
        auth_uri="https://accounts.test/auth",
        token_uri="https://oauth2.test/token",
    )


@pytest.fixture
def with_client_env(monkeypatch):
    """Configure client credentials through GOOGLE_CREDENTIALS."""
    monkeypatch.setenv("GOOGLE_CREDENTIALS", CLIENT_JSON)
    return CLIENT_JSON


@pytest.fixture
def make_token():
    """Factory for Token objects that are valid for an hour."""
    def _create(access="access-1", refresh="refresh-1", expires_in=3600):
        expiry = None
        if expires_in is not None:
            expiry = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        return Token(
            access_token=access,
            refresh_token=refresh,
            expiry=expiry,
            scopes=["https://www.googleapis.com/auth/gmail.modify"],
        )
    return _create


class FakeGmailClient:
    """Stands in for GmailClient: answers get_profile() from canned data."""

    def __init__(self, token, client, *, email, error=None):
        self.token = token
        self.client = client
        self.email = email
        self.error = error
        self.closed = False

    def get_profile(self):
        if self.error is not None:
            raise self.error
        return {"emailAddress": self.email, "messagesTotal": 42, "threadsTotal": 7}

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


@pytest.fixture
def gmail_factory():
    """Build client factories that record every client they hand out."""
    def _factory(email="alice@example.com", error=None):
        def factory(token, client):
            gmail = FakeGmailClient(token, client, email=email, error=error)
            factory.clients.append(gmail)
            return gmail
        factory.clients = []
        return factory
    return _factory
