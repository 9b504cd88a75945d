"""Exception hierarchy for gsuite.

Everything raised on purpose derives from GsuiteError so the CLI can turn
it into a one-line message and a non-zero exit code. Raw provider error
codes never reach the user; messages name the command that fixes things.
"""


class GsuiteError(Exception):
    """Base class for all gsuite errors."""


class ConfigurationError(GsuiteError):
    """Client credentials are missing or malformed. Not retryable."""


# ---------------------------------------------------------------------------
# Login flow errors -- all terminal for the current attempt
# ---------------------------------------------------------------------------


class FlowError(GsuiteError):
    """The browser login attempt failed; the whole login must be retried."""


class ListenerError(FlowError):
    """The local callback listener could not be started."""


class StateMismatchError(FlowError):
    """Callback arrived with a state value we did not issue."""


class MissingCodeError(FlowError):
    """Callback arrived without an authorization code."""


class AuthTimeoutError(FlowError):
    """The user did not finish the browser consent in time."""


class TokenExchangeError(FlowError):
    """The provider refused to exchange the authorization code."""


# ---------------------------------------------------------------------------
# Storage and account errors
# ---------------------------------------------------------------------------


class StorageError(GsuiteError):
    """A file on disk could not be read, parsed, or written."""


class TokenNotFoundError(StorageError):
    """No token file exists for the requested account."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(
            f"no OAuth2 token found for {email}. Run 'gsuite login' first to authenticate"
        )


class AccountError(GsuiteError):
    """An account store operation was given a bad or unknown identity."""


class NoActiveAccountError(AccountError):
    """No account can be chosen without the user saying which one."""


class MigrationError(GsuiteError):
    """Legacy token migration failed. The legacy file is left untouched.

    >>> str(MigrationError("failed to load legacy token"))
    'migration: failed to load legacy token'
    """

    def __init__(self, message: str):
        super().__init__(f"migration: {message}")


class ApiError(GsuiteError):
    """The provider API answered with a non-success status."""

    def __init__(self, message: str, status_code: int, reason: str | None = None):
        self.status_code = status_code
        self.reason = reason
        super().__init__(message)
