"""Authentication core: browser login, token and account stores, migration."""

from gsuite.auth.accounts import AccountEntry, AccountStore
from gsuite.auth.client import GmailClient, RefreshingTokenAuth
from gsuite.auth.credentials import ClientCredentials, load_client_credentials
from gsuite.auth.migrate import migrate_if_needed
from gsuite.auth.oauth import CallbackListener, FlowStatus, OAuthFlow, authenticate
from gsuite.auth.tokens import Token, TokenStore

__all__ = [
    "AccountEntry",
    "AccountStore",
    "CallbackListener",
    "ClientCredentials",
    "FlowStatus",
    "GmailClient",
    "OAuthFlow",
    "RefreshingTokenAuth",
    "Token",
    "TokenStore",
    "authenticate",
    "load_client_credentials",
    "migrate_if_needed",
]
