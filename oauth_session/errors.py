from typing import Optional


class OAuthSessionError(Exception):
    """Base class for every error raised by oauth_session."""


class ConfigError(OAuthSessionError):
    """An endpoint URL could not be parsed as an absolute URL."""


class ListenerError(OAuthSessionError):
    """The local callback listener could not bind, serve, or finish the wait."""


class ExchangeError(OAuthSessionError):
    """A token endpoint exchange failed.

    ``status_code`` and ``body`` are set when the provider answered with a
    non-success status or a body that could not be decoded.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RefreshError(OAuthSessionError):
    """Raised by Session.ensure_valid; the ExchangeError is chained as __cause__."""


class RequestError(OAuthSessionError):
    """Raised by Session.authenticated_request on refresh or transport failure."""


class LoginError(OAuthSessionError):
    """Login aborted. ``step`` is one of "config", "listener" or "exchange"."""

    STEPS = ("config", "listener", "exchange")

    def __init__(self, step: str, message: str):
        if step not in self.STEPS:
            raise ValueError(f"Unknown login step: {step}")
        super().__init__(f"Login failed during {step} step: {message}")
        self.step = step
