import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from .callback_listener import CallbackListener
from .endpoint_config import EndpointConfig
from .errors import ConfigError, ExchangeError, ListenerError, LoginError
from .session import DEFAULT_EXPIRY_BUFFER_SECONDS, Session
from .token_exchanger import DEFAULT_TIMEOUT, TokenExchanger

logger = logging.getLogger(__name__)

DisplayFn = Callable[[str, EndpointConfig], None]


def print_authorize_url(url: str, config: EndpointConfig) -> None:
    print(
        "Please visit the following url, but make sure your browser is able to reach "
        f"{config.redirect_host}:{config.redirect_port} on this machine"
    )
    print(url)


class OAuth2Client:
    """Runs the authorization-code login and produces a Session.

    Steps: bind the callback listener, display the authorize URL, wait for a
    state-matching code, exchange it for tokens. A failure in any step raises
    LoginError naming that step; no Session is returned.
    """

    def __init__(
        self,
        config: EndpointConfig,
        *,
        exchanger: Optional[TokenExchanger] = None,
        http_client: Optional[httpx.Client] = None,
        display: Optional[DisplayFn] = None,
        callback_timeout: Optional[float] = None,
        expiry_buffer: float = DEFAULT_EXPIRY_BUFFER_SECONDS,
        http_timeout: Optional[float] = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.exchanger = exchanger or TokenExchanger(http_client=http_client, timeout=http_timeout, clock=clock)
        self.http_client = http_client
        self.display = display or print_authorize_url
        self.callback_timeout = callback_timeout
        self.expiry_buffer = expiry_buffer
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Dict[str, Any], **kwargs: Any) -> "OAuth2Client":
        """Build a client from a loaded config dict (see config.DEFAULT_CONFIG)."""

        try:
            config = EndpointConfig.new(
                settings.get("redirect_uri", ""),
                settings.get("scope", ""),
                settings.get("state") or None,
                settings.get("authorize_url", ""),
                settings.get("token_url", ""),
            )
        except ConfigError as e:
            raise LoginError("config", str(e)) from e

        callback_timeout = settings.get("callback_timeout")
        kwargs.setdefault("callback_timeout", float(callback_timeout) if callback_timeout else None)
        kwargs.setdefault("expiry_buffer", float(settings.get("expiry_buffer_seconds", DEFAULT_EXPIRY_BUFFER_SECONDS)))
        kwargs.setdefault("http_timeout", float(settings.get("http_timeout", DEFAULT_TIMEOUT)))
        return cls(config, **kwargs)

    def authorize_url(self, client_id: str) -> str:
        return self.config.build_authorize_url(client_id)

    def login(self, client_id: str, client_secret: str) -> Session:
        """Run the browser login and return a Session.

        Exceptions raised by the display callable propagate unchanged (they
        are not a login step); the listener is closed before they escape.
        """

        listener = CallbackListener(self.config, timeout=self.callback_timeout)
        try:
            listener.start()
            self.display(self.authorize_url(client_id), self.config)
            code = listener.wait()
        except ListenerError as e:
            raise LoginError("listener", str(e)) from e
        finally:
            listener.close()

        try:
            token = self.exchanger.exchange_code(
                self.config.token_url,
                code.code,
                self.config.redirect_uri,
                client_id,
                client_secret,
            )
        except ExchangeError as e:
            raise LoginError("exchange", str(e)) from e

        logger.info("Login complete, access token valid for %s seconds", token.expires_in)
        return Session(
            token,
            client_id=client_id,
            client_secret=client_secret,
            token_url=self.config.token_url,
            exchanger=self.exchanger,
            http_client=self.http_client,
            expiry_buffer=self.expiry_buffer,
            clock=self.clock,
        )
