"""Paths and per-invocation configuration.

Directory structure (under the config dir):
    accounts.json            -- known accounts + which one is active
    tokens/<email>.json      -- one OAuth2 token per account
    token.json               -- legacy single-account token (pre-migration)
    token.json.bak           -- legacy token after migration
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import click

APP_NAME = "gsuite"
CONFIG_DIR_ENV = "GSUITE_CONFIG_DIR"

ACCOUNTS_FILE = "accounts.json"
TOKENS_DIR = "tokens"
LEGACY_TOKEN_FILE = "token.json"
LEGACY_BACKUP_SUFFIX = ".bak"


def default_config_dir() -> Path:
    """Return the config directory: $GSUITE_CONFIG_DIR or the platform app dir.

    >>> import os
    >>> os.environ[CONFIG_DIR_ENV] = "/tmp/gsuite-doctest"
    >>> str(default_config_dir())
    '/tmp/gsuite-doctest'
    >>> del os.environ[CONFIG_DIR_ENV]
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path(click.get_app_dir(APP_NAME))


@dataclass(frozen=True)
class Paths:
    """Resolved on-disk locations for one config directory."""

    config_dir: Path

    @property
    def accounts_file(self) -> Path:
        return self.config_dir / ACCOUNTS_FILE

    @property
    def tokens_dir(self) -> Path:
        return self.config_dir / TOKENS_DIR

    @property
    def legacy_token_file(self) -> Path:
        return self.config_dir / LEGACY_TOKEN_FILE

    @property
    def legacy_backup_file(self) -> Path:
        return self.config_dir / (LEGACY_TOKEN_FILE + LEGACY_BACKUP_SUFFIX)


@dataclass
class ServiceConfig:
    """Everything a command needs to resolve an account and build a client.

    Built once per CLI invocation from the global options and passed down
    explicitly; nothing in the service layer reads CLI state.

    >>> ServiceConfig(config_dir=Path("/x")).paths.accounts_file
    PosixPath('/x/accounts.json')
    """

    account: Optional[str] = None
    credentials_file: Optional[str] = None
    config_dir: Optional[Path] = field(default=None)

    @property
    def paths(self) -> Paths:
        return Paths(self.config_dir or default_config_dir())
