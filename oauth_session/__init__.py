"""OAuth2 authorization-code session manager.

Performs the browser login once, then keeps the access token fresh before
each authenticated request.
"""

from .callback_listener import AuthorizationCode, CallbackListener, await_authorization_code
from .client import OAuth2Client
from .endpoint_config import EndpointConfig
from .errors import (
    ConfigError,
    ExchangeError,
    ListenerError,
    LoginError,
    OAuthSessionError,
    RefreshError,
    RequestError,
)
from .session import Session
from .token_exchanger import TokenExchanger
from .tokens import TokenSet

__all__ = [
    "AuthorizationCode",
    "CallbackListener",
    "ConfigError",
    "EndpointConfig",
    "ExchangeError",
    "ListenerError",
    "LoginError",
    "OAuth2Client",
    "OAuthSessionError",
    "RefreshError",
    "RequestError",
    "Session",
    "TokenExchanger",
    "TokenSet",
    "await_authorization_code",
]
