"""
gsuite - Gmail and Calendar from the command line.

The authentication core lives in ``gsuite.auth``: an OAuth2 + PKCE browser
login, per-account token files, the account store that tracks which account
is active, and a one-time migration from the old single-token layout.
"""

__version__ = "0.4.0"

__all__ = [
    "__version__",
]
