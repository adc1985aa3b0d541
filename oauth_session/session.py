import logging
import threading
import time
from typing import Callable, Optional

import httpx

from .errors import ExchangeError, RefreshError, RequestError
from .token_exchanger import TokenExchanger
from .tokens import TokenSet

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_BUFFER_SECONDS = 5.0


class Session:
    """Authenticated session owning one TokenSet and the credentials to refresh it.

    The TokenSet is never mutated: a refresh swaps in a new value under a
    lock, so concurrent callers either see the old token or the new one.
    A failed refresh leaves the current TokenSet untouched.
    """

    def __init__(
        self,
        token: TokenSet,
        *,
        client_id: str,
        client_secret: str,
        token_url: str,
        exchanger: Optional[TokenExchanger] = None,
        http_client: Optional[httpx.Client] = None,
        expiry_buffer: float = DEFAULT_EXPIRY_BUFFER_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._token = token
        self._client_id = client_id
        self._client_secret = client_secret
        self.token_url = token_url
        self.exchanger = exchanger or TokenExchanger(clock=clock)
        self.expiry_buffer = float(expiry_buffer)
        self.clock = clock
        self._lock = threading.Lock()
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.Client(timeout=self.exchanger.timeout)

    # -----------------
    # Token state
    # -----------------

    @property
    def token(self) -> TokenSet:
        return self._token

    @property
    def access_token(self) -> str:
        return self._token.access_token

    @property
    def refresh_token(self) -> str:
        return self._token.refresh_token

    @property
    def expires_at(self) -> float:
        return self._token.expires_at

    def is_valid(self) -> bool:
        """True while now + expiry_buffer is still before the token's expiry."""

        return not self._token.expires_within(self.expiry_buffer, now=self.clock())

    def ensure_valid(self, exchanger: Optional[TokenExchanger] = None) -> TokenSet:
        """Refresh the token if it is expired or about to expire.

        Returns the TokenSet that is current once the check completes.
        Raises RefreshError (chaining the ExchangeError) when the refresh fails.
        """

        with self._lock:
            current = self._token
            if not current.expires_within(self.expiry_buffer, now=self.clock()):
                return current

            if not current.refresh_token:
                raise RefreshError("Access token expired and no refresh_token is available")

            logger.info("Refreshing access token")
            try:
                refreshed = (exchanger or self.exchanger).exchange_refresh_token(
                    self.token_url,
                    current.refresh_token,
                    self._client_id,
                    self._client_secret,
                )
            except ExchangeError as e:
                raise RefreshError(f"Token refresh failed: {e}") from e

            self._token = refreshed.carry_over(current)
            logger.info("Access token refreshed, valid for %s seconds", self._token.expires_in)
            return self._token

    # -----------------
    # Requests
    # -----------------

    def authorize(self, request: httpx.Request) -> httpx.Request:
        """Return a copy of ``request`` carrying a valid bearer token."""

        try:
            token = self.ensure_valid()
        except RefreshError as e:
            raise RequestError(f"Could not obtain a valid access token: {e}") from e

        headers = request.headers.copy()
        headers["Authorization"] = f"Bearer {token.access_token}"
        return httpx.Request(
            request.method,
            request.url,
            headers=headers,
            stream=request.stream,
            extensions=request.extensions,
        )

    def authenticated_request(self, request: httpx.Request) -> httpx.Response:
        """Send ``request`` with the bearer token and return the raw response.

        Non-success statuses are returned as-is; only refresh and transport
        failures raise RequestError.
        """

        authorized = self.authorize(request)
        try:
            return self._http_client.send(authorized)
        except httpx.HTTPError as e:
            raise RequestError(f"{request.method} {request.url} failed: {e}") from e

    def close(self) -> None:
        """Discard the session and close the transport it created."""

        if self._owns_http_client:
            self._http_client.close()

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Session(token_url={self.token_url!r}, expires_at={self.expires_at:.0f})"
