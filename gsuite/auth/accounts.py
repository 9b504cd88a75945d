"""Account store: which accounts are logged in and which one is active.

Backed by ``accounts.json``. Every command loads it fresh, mutates it in
memory, and calls save() itself; nothing is written implicitly.

Active-account rules:
  - no accounts           -> active is empty
  - one account, no active -> that account is used (read-time fallback,
                              never written back)
  - several, no active     -> error; the user must pick one
  - removing the active one moves active to the first remaining account
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, PrivateAttr, ValidationError, field_validator

from gsuite.auth.files import write_private_file
from gsuite.auth.tokens import trim_fractional_seconds
from gsuite.errors import AccountError, NoActiveAccountError, StorageError

logger = logging.getLogger("gsuite.accounts")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountEntry(BaseModel):
    """One authenticated account."""

    email: str
    added_at: datetime = Field(default_factory=_utcnow)

    @field_validator("added_at", mode="before")
    @classmethod
    def _trim_added_at(cls, value):
        return trim_fractional_seconds(value)


class AccountStore(BaseModel):
    """Known accounts plus the active pointer.

    >>> s = AccountStore()
    >>> s.add_account("Alice@Example.com")
    >>> s.has_account("alice@example.com")
    True
    >>> s.get_active()
    'Alice@Example.com'
    """

    active: str = ""
    accounts: list[AccountEntry] = Field(default_factory=list)

    _path: Optional[Path] = PrivateAttr(default=None)

    # -- Persistence --------------------------------------------------------

    @classmethod
    def load(cls, path: Path) -> "AccountStore":
        """Read the store from ``path``. A missing file is an empty store."""
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            store = cls()
        except OSError as exc:
            raise StorageError(f"failed to read accounts file {path}: {exc}") from exc
        else:
            try:
                store = cls.model_validate_json(raw)
            except ValidationError as exc:
                raise StorageError(f"failed to parse accounts file {path}: {exc}") from exc
        store._path = path
        return store

    def save(self, path: Optional[Path] = None) -> None:
        """Write the whole store atomically with 0600 permissions."""
        path = path or self._path
        if path is None:
            raise StorageError("account store has no file path; pass one to save()")
        try:
            write_private_file(path, self.model_dump_json(indent=2))
        except OSError as exc:
            raise StorageError(f"failed to write accounts file {path}: {exc}") from exc
        self._path = path
        logger.debug("Saved account store (%d accounts) to %s", len(self.accounts), path)

    # -- Queries --------------------------------------------------------------

    def _index_of(self, email: str) -> int:
        folded = email.casefold()
        for i, entry in enumerate(self.accounts):
            if entry.email.casefold() == folded:
                return i
        return -1

    def has_account(self, email: str) -> bool:
        """Case-insensitive membership check.

        >>> AccountStore(accounts=[AccountEntry(email="A@x.com")]).has_account("a@X.COM")
        True
        """
        return bool(email) and self._index_of(email) != -1

    def get_active(self) -> str:
        """Return the account commands should use when none is named.

        >>> AccountStore(accounts=[AccountEntry(email="solo@x.com")]).get_active()
        'solo@x.com'
        """
        if self.active:
            return self.active
        if not self.accounts:
            raise NoActiveAccountError("no accounts configured. Run 'gsuite login' first")
        if len(self.accounts) == 1:
            return self.accounts[0].email
        raise NoActiveAccountError(
            "multiple accounts found but none is active. "
            "Use 'gsuite accounts switch <email>' to set one"
        )

    def is_active(self, email: str) -> bool:
        """True if ``email`` is the account get_active() would return."""
        try:
            return self.get_active().casefold() == email.casefold()
        except NoActiveAccountError:
            return False

    def list(self) -> list[AccountEntry]:
        """Copies of the entries; changing them does not change the store."""
        return [entry.model_copy() for entry in self.accounts]

    # -- Mutations ------------------------------------------------------------

    def add_account(self, email: str) -> None:
        """Register ``email`` (if new) and make it the active account."""
        if not email:
            raise AccountError("email cannot be empty")
        if not self.has_account(email):
            self.accounts.append(AccountEntry(email=email))
            logger.info("Added account %s", email)
        self.active = email

    def remove_account(self, email: str) -> AccountEntry:
        """Remove ``email``; if it was active, fall back to the first remaining.

        Returns the removed entry, whose spelling may differ from ``email``.
        """
        if not email:
            raise AccountError("email cannot be empty")
        idx = self._index_of(email)
        if idx == -1:
            raise AccountError(f"account {email} not found")
        removed = self.accounts.pop(idx)
        logger.info("Removed account %s", removed.email)

        if self.active.casefold() == email.casefold():
            self.active = self.accounts[0].email if self.accounts else ""
        return removed

    def set_active(self, email: str) -> None:
        if not email:
            raise AccountError("email cannot be empty")
        if not self.has_account(email):
            raise AccountError(
                f"account {email} not found. Run 'gsuite accounts list' to see logged-in accounts"
            )
        self.active = email
