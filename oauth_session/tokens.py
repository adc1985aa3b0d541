import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from .errors import ExchangeError


@dataclass(frozen=True)
class TokenSet:
    """Token pair issued by the provider's token endpoint.

    ``issued_at`` is the local capture time of the response, so
    ``expires_at`` is issued_at + expires_in.
    """

    access_token: str
    token_type: str
    refresh_token: str
    expires_in: int
    scope: str
    issued_at: float

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.expires_in

    def expires_within(self, seconds: float, *, now: Optional[float] = None) -> bool:
        now_ts = float(time.time() if now is None else now)
        return now_ts + float(seconds) >= self.expires_at

    def carry_over(self, previous: "TokenSet") -> "TokenSet":
        """Keep the previous refresh token (and scope) when this response omitted them."""

        return replace(
            self,
            refresh_token=self.refresh_token or previous.refresh_token,
            scope=self.scope or previous.scope,
        )

    @staticmethod
    def from_token_response(payload: Dict[str, Any], *, now: Optional[float] = None) -> "TokenSet":
        """Convert a token endpoint JSON object into a TokenSet.

        The provider returns:
        - access_token
        - token_type (defaults to Bearer)
        - expires_in (seconds)
        - refresh_token (optional on refresh)
        - scope (space-delimited string, optional)
        """

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ExchangeError("Token response has no access_token")

        expires_in = payload.get("expires_in", 0)
        if isinstance(expires_in, bool) or not isinstance(expires_in, int) or expires_in < 0:
            raise ExchangeError(f"Token response has an invalid expires_in: {expires_in!r}")

        for key in ("token_type", "refresh_token", "scope"):
            value = payload.get(key)
            if value is not None and not isinstance(value, str):
                raise ExchangeError(f"Token response field {key} must be a string")

        return TokenSet(
            access_token=access_token,
            token_type=payload.get("token_type") or "Bearer",
            refresh_token=payload.get("refresh_token") or "",
            expires_in=expires_in,
            scope=payload.get("scope") or "",
            issued_at=float(time.time() if now is None else now),
        )
