"""OAuth2 client credentials (client ID/secret) loading.

Sources, first match wins:
  1. --credentials-file path
  2. GOOGLE_CREDENTIALS env var (raw JSON)
  3. GOOGLE_APPLICATION_CREDENTIALS env var (file path)

The JSON is the file Google Cloud Console hands out for an OAuth client,
with the client under an "installed" (desktop app) or "web" key.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

from gsuite.errors import ConfigurationError

logger = logging.getLogger("gsuite.credentials")

CREDENTIALS_JSON_ENV = "GOOGLE_CREDENTIALS"
CREDENTIALS_FILE_ENV = "GOOGLE_APPLICATION_CREDENTIALS"

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


class ClientCredentials(BaseModel):
    """The OAuth client this CLI authenticates as."""

    client_id: str
    client_secret: str = ""
    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI


def load_credentials_json(credentials_file: Optional[str] = None) -> str:
    """Return the raw client credentials JSON from the first available source."""
    if credentials_file:
        try:
            return Path(credentials_file).expanduser().read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(
                f"failed to read credentials file {credentials_file}: {exc}"
            ) from exc

    raw = os.environ.get(CREDENTIALS_JSON_ENV)
    if raw:
        return raw

    file_path = os.environ.get(CREDENTIALS_FILE_ENV)
    if file_path:
        try:
            return Path(file_path).expanduser().read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(
                f"failed to read {CREDENTIALS_FILE_ENV} file {file_path}: {exc}"
            ) from exc

    raise ConfigurationError(
        "no credentials found: set --credentials-file flag, "
        f"{CREDENTIALS_JSON_ENV} env var (JSON), or {CREDENTIALS_FILE_ENV} env var (file path)"
    )


def parse_client_credentials(raw: str) -> ClientCredentials:
    """Extract the OAuth client from an "installed" or "web" credentials JSON.

    >>> parse_client_credentials('{"installed": {"client_id": "id-1"}}').client_id
    'id-1'
    >>> parse_client_credentials('{"web": {"client_id": "w", "client_secret": "s"}}').client_secret
    's'
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"failed to parse credentials JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError("credentials JSON must be an object")

    client = data.get("installed")
    if client is None:
        client = data.get("web")
    if client is None:
        raise ConfigurationError('credentials JSON has neither "installed" nor "web" key')
    if not isinstance(client, dict):
        raise ConfigurationError("failed to parse client credentials: expected an object")

    if not client.get("client_id"):
        raise ConfigurationError("client_id is empty in credentials JSON")

    fields = {k: v for k, v in client.items() if k in ClientCredentials.model_fields and v}
    try:
        return ClientCredentials(**fields)
    except ValidationError as exc:
        raise ConfigurationError(f"failed to parse client credentials: {exc}") from exc


def load_client_credentials(credentials_file: Optional[str] = None) -> ClientCredentials:
    """Load and parse client credentials in one step."""
    creds = parse_client_credentials(load_credentials_json(credentials_file))
    logger.debug("Loaded OAuth client %s", creds.client_id)
    return creds
