import base64
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from .errors import ExchangeError
from .tokens import TokenSet

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def basic_auth_header(client_id: str, client_secret: str) -> str:
    raw = f"{client_id}:{client_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


class TokenExchanger:
    """Performs the code and refresh-token grants against a token endpoint.

    Calls are blocking and never retried here; retry policy belongs to the
    caller. Pass ``http_client`` to reuse a connection pool or to inject a
    mock transport.
    """

    def __init__(
        self,
        *,
        http_client: Optional[httpx.Client] = None,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        self.http_client = http_client
        self.timeout = timeout
        self.clock = clock

    def exchange_code(
        self,
        token_url: str,
        code: str,
        redirect_uri: str,
        client_id: str,
        client_secret: str,
    ) -> TokenSet:
        payload = self._post_form(
            token_url,
            {
                "grant_type": "authorization_code",
                "code": str(code),
                "redirect_uri": redirect_uri,
            },
            client_id=client_id,
            client_secret=client_secret,
        )
        return TokenSet.from_token_response(payload, now=self.clock())

    def exchange_refresh_token(
        self,
        token_url: str,
        refresh_token: str,
        client_id: str,
        client_secret: str,
    ) -> TokenSet:
        """Redeem a refresh token.

        The returned TokenSet has an empty refresh_token when the provider did
        not issue a new one; Session keeps the previous value in that case.
        """

        payload = self._post_form(
            token_url,
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            client_id=client_id,
            client_secret=client_secret,
        )
        return TokenSet.from_token_response(payload, now=self.clock())

    def _post_form(self, url: str, form: Dict[str, str], *, client_id: str, client_secret: str) -> Dict[str, Any]:
        headers = {
            "Authorization": basic_auth_header(client_id, client_secret),
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }

        try:
            if self.http_client is not None:
                resp = self.http_client.post(url, data=form, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout, follow_redirects=False) as client:
                    resp = client.post(url, data=form, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ExchangeError(f"Token request to {url} failed: {e}") from e

        if not resp.is_success:
            raise ExchangeError(
                f"Token request failed (HTTP {resp.status_code})",
                status_code=resp.status_code,
                body=resp.text,
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise ExchangeError("Token response was not JSON", status_code=resp.status_code, body=resp.text) from e

        if not isinstance(payload, dict):
            raise ExchangeError("Token response was not an object", status_code=resp.status_code, body=resp.text)

        logger.debug("Token endpoint answered HTTP %s for grant_type=%s", resp.status_code, form.get("grant_type"))
        return payload
