"""Token record and the per-account token store.

One JSON file per account under ``tokens/``, named after the account email
exactly as given. Account lookups elsewhere are case-insensitive but file
names are not: ``Alice@x.com`` and ``alice@x.com`` map to two files. That
asymmetry is deliberate until a canonical form for identities is agreed on.

The legacy single-account file (``token.json``) is only read and written
here for migration; steady-state commands never touch it.
"""

import logging
import os
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from gsuite.auth.files import ensure_private_dir, write_private_file
from gsuite.config import Paths
from gsuite.errors import StorageError, TokenNotFoundError

logger = logging.getLogger("gsuite.tokens")

# Treat a token as expired this many seconds early so a request never
# leaves with a token that dies in flight.
EXPIRY_LEEWAY = 60

# Go-style RFC 3339 timestamps can carry nanoseconds; Python stops at micros.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def trim_fractional_seconds(value: Any) -> Any:
    """Cut RFC 3339 fractional seconds down to microseconds.

    >>> trim_fractional_seconds("2025-01-01T00:00:00.123456789Z")
    '2025-01-01T00:00:00.123456Z'
    """
    if isinstance(value, str):
        return _FRACTION_RE.sub(r"\1", value)
    return value


class Token(BaseModel):
    """OAuth2 token record as persisted on disk.

    Field names match the files written by earlier gsuite releases, so a
    legacy ``token.json`` loads without conversion.

    >>> t = Token(access_token="at", refresh_token="rt")
    >>> t.token_type, t.expiry is None
    ('Bearer', True)
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None
    scopes: list[str] = Field(default_factory=list)

    @field_validator("expiry", mode="before")
    @classmethod
    def _normalize_expiry(cls, value: Any) -> Any:
        if isinstance(value, str) and value.startswith("0001-01-01"):
            # zero time: "no expiry known"
            return None
        return trim_fractional_seconds(value)

    @field_validator("expiry")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_token_response(
        cls,
        data: dict,
        *,
        previous: Optional["Token"] = None,
        now: Optional[datetime] = None,
    ) -> "Token":
        """Build a Token from a token-endpoint JSON response.

        ``previous`` supplies the refresh token and scopes when the provider
        omits them (refresh responses usually do not rotate the refresh token).

        >>> now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        >>> t = Token.from_token_response(
        ...     {"access_token": "a", "expires_in": 3600, "scope": "x y"}, now=now)
        >>> t.expiry.isoformat(), t.scopes
        ('2026-01-01T01:00:00+00:00', ['x', 'y'])
        """
        if not data.get("access_token"):
            raise ValueError("token response has no access_token")
        now = now or datetime.now(timezone.utc)

        expiry = None
        expires_in = data.get("expires_in")
        if expires_in:
            expiry = now + timedelta(seconds=int(expires_in))

        scopes = data.get("scope", "").split() if data.get("scope") else []
        refresh_token = data.get("refresh_token")
        if previous is not None:
            refresh_token = refresh_token or previous.refresh_token
            scopes = scopes or list(previous.scopes)

        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type") or "Bearer",
            refresh_token=refresh_token,
            expiry=expiry,
            scopes=scopes,
        )

    def is_expired(self, *, leeway: int = EXPIRY_LEEWAY, now: Optional[datetime] = None) -> bool:
        """True when the access token is (about to be) unusable.

        A token with no expiry never expires on our side; the provider's
        401 is the only signal for those.

        >>> Token(access_token="a").is_expired()
        False
        >>> Token(access_token="a", expiry="2000-01-01T00:00:00Z").is_expired()
        True
        """
        if self.expiry is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.expiry - timedelta(seconds=leeway)

    @property
    def authorization(self) -> str:
        """Value for the Authorization header.

        >>> Token(access_token="abc", token_type="bearer").authorization
        'Bearer abc'
        """
        token_type = self.token_type or "Bearer"
        if token_type.lower() == "bearer":
            token_type = "Bearer"
        return f"{token_type} {self.access_token}"


# ---------------------------------------------------------------------------
# Token store
# ---------------------------------------------------------------------------


def _parse_token(path: Path) -> Token:
    """Read and validate a token file. FileNotFoundError propagates untouched."""
    raw = path.read_text(encoding="utf-8")
    try:
        return Token.model_validate_json(raw)
    except ValidationError as exc:
        raise StorageError(f"failed to parse token file {path}: {exc}") from exc


class TokenStore:
    """Per-account token files plus the deprecated single-token path."""

    def __init__(self, paths: Paths):
        self.paths = paths

    def path_for(self, email: str) -> Path:
        """Token file path for ``email``. The email is used verbatim.

        >>> TokenStore(Paths(Path("/cfg"))).path_for("alice@example.com").as_posix()
        '/cfg/tokens/alice@example.com.json'
        """
        if not email:
            raise StorageError("email cannot be empty")
        if os.sep in email or (os.altsep and os.altsep in email) or email in (".", ".."):
            raise StorageError(f"invalid account email for a token file name: {email!r}")
        return self.paths.tokens_dir / f"{email}.json"

    def exists(self, email: str) -> bool:
        return self.path_for(email).is_file()

    def save(self, email: str, token: Token) -> None:
        """Write ``token`` for ``email`` (0600, overwrites)."""
        path = self.path_for(email)
        try:
            ensure_private_dir(self.paths.tokens_dir)
            write_private_file(path, token.model_dump_json(indent=2, exclude_none=True))
        except OSError as exc:
            raise StorageError(f"failed to write token file {path}: {exc}") from exc
        logger.debug("Saved token for %s", email)

    def load(self, email: str) -> Token:
        """Load the token for ``email``.

        Raises TokenNotFoundError when the account has no token file, and
        StorageError when the file exists but cannot be read or parsed.
        """
        path = self.path_for(email)
        try:
            return _parse_token(path)
        except FileNotFoundError:
            raise TokenNotFoundError(email) from None
        except OSError as exc:
            raise StorageError(f"failed to read token file {path}: {exc}") from exc

    def delete(self, email: str) -> bool:
        """Remove the token for ``email``. Returns False if there was none."""
        path = self.path_for(email)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"failed to remove token file {path}: {exc}") from exc
        logger.debug("Deleted token for %s", email)
        return True

    # -- Legacy single-account token (migration only) -----------------------

    @property
    def legacy_path(self) -> Path:
        return self.paths.legacy_token_file

    def has_legacy(self) -> bool:
        return self.legacy_path.is_file()

    def save_legacy(self, token: Token) -> None:
        path = self.legacy_path
        try:
            write_private_file(path, token.model_dump_json(indent=2, exclude_none=True))
        except OSError as exc:
            raise StorageError(f"failed to write token file {path}: {exc}") from exc

    def load_legacy(self) -> Token:
        """Load the legacy token. FileNotFoundError is raised as-is."""
        path = self.legacy_path
        try:
            return _parse_token(path)
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise StorageError(f"failed to read token file {path}: {exc}") from exc
