import ipaddress
import re
import secrets
import urllib.parse
from dataclasses import dataclass
from typing import Dict, Optional

from .errors import ConfigError

DEFAULT_PORTS = {"http": 80, "https": 443}


def generate_state() -> str:
    """Return a fresh random CSRF state value."""

    return secrets.token_urlsafe(16).rstrip("=")


_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9._-]*[A-Za-z0-9])?$")
_CONTROL_OR_SPACE_RE = re.compile(r"[\s\x00-\x1f\x7f]")


def _valid_hostname(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
        return True
    except ValueError:
        pass
    try:
        ascii_host = hostname.encode("idna").decode("ascii")
    except UnicodeError:
        return False
    return bool(_HOSTNAME_RE.match(ascii_host))


def _parse_absolute_url(name: str, value: str) -> urllib.parse.SplitResult:
    raw = str(value or "").strip()
    # urlsplit silently drops tabs and newlines; refuse them up front.
    if _CONTROL_OR_SPACE_RE.search(raw):
        raise ConfigError(f"{name} contains whitespace or control characters: {value!r}")

    try:
        parsed = urllib.parse.urlsplit(raw)
        # .port raises ValueError for non-numeric or out-of-range ports.
        parsed.port
    except ValueError as e:
        raise ConfigError(f"{name} is not a valid URL: {value!r} ({e})") from e

    if not parsed.scheme or not parsed.hostname:
        raise ConfigError(f"{name} must be an absolute URL, got {value!r}")
    if not _valid_hostname(parsed.hostname):
        raise ConfigError(f"{name} has an invalid host: {parsed.hostname!r}")
    return parsed


@dataclass(frozen=True)
class EndpointConfig:
    """Immutable description of the provider endpoints and the local redirect."""

    authorize_url: str
    token_url: str
    redirect_uri: str
    scope: str
    expected_state: str

    def __post_init__(self) -> None:
        for name in ("authorize_url", "token_url", "redirect_uri"):
            value = getattr(self, name)
            _parse_absolute_url(name, value)
            object.__setattr__(self, name, str(value).strip())

        if not self.expected_state:
            raise ConfigError("expected_state must not be empty")

    @classmethod
    def new(
        cls,
        redirect_uri: str,
        scope: str,
        state: Optional[str],
        authorize_url: str,
        token_url: str,
    ) -> "EndpointConfig":
        """Build a config, generating a random state when none is given."""

        return cls(
            authorize_url=authorize_url,
            token_url=token_url,
            redirect_uri=redirect_uri,
            scope=str(scope or ""),
            expected_state=str(state) if state else generate_state(),
        )

    @property
    def redirect_host(self) -> str:
        return urllib.parse.urlsplit(self.redirect_uri).hostname or ""

    @property
    def redirect_port(self) -> int:
        parsed = urllib.parse.urlsplit(self.redirect_uri)
        return parsed.port or DEFAULT_PORTS.get(parsed.scheme.lower(), 80)

    @property
    def redirect_path(self) -> str:
        return urllib.parse.urlsplit(self.redirect_uri).path or "/"

    def build_authorize_url(self, client_id: str) -> str:
        """Return authorize_url with the authorization-code query parameters set.

        Query parameters already present on authorize_url are kept; the ones
        below replace any existing value of the same name.
        """

        parsed = urllib.parse.urlsplit(self.authorize_url)
        params: Dict[str, str] = dict(urllib.parse.parse_qsl(parsed.query, keep_blank_values=True))
        params.update(
            {
                "client_id": str(client_id),
                "response_type": "code",
                "redirect_uri": self.redirect_uri,
                "state": self.expected_state,
                "scope": self.scope,
            }
        )
        return urllib.parse.urlunsplit(parsed._replace(query=urllib.parse.urlencode(params)))
