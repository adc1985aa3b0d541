import logging
import threading
import urllib.parse
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

from .endpoint_config import EndpointConfig
from .errors import ListenerError

logger = logging.getLogger(__name__)

SUCCESS_PAGE = (
    "<html><body><h3>Authorization received.</h3>"
    "<p>You can close this window and return to the terminal.</p></body></html>"
)


@dataclass(frozen=True)
class AuthorizationCode:
    """Authorization code captured from a state-matching callback."""

    code: str
    state: str

    def __str__(self) -> str:
        return self.code


class _CallbackServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, config: EndpointConfig, result: "Future[AuthorizationCode]"):
        self.config = config
        self.result = result
        self._resolve_lock = threading.Lock()
        super().__init__(address, _CallbackHandler)

    def resolve(self, *, code: Optional[AuthorizationCode] = None, error: Optional[Exception] = None) -> bool:
        """Settle the result once. Returns False if it was already settled."""

        with self._resolve_lock:
            if self.result.done():
                return False
            if error is not None:
                self.result.set_exception(error)
            else:
                self.result.set_result(code)
            return True


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer

    def do_GET(self) -> None:
        parsed = urllib.parse.urlsplit(self.path)
        if parsed.path != self.server.config.redirect_path:
            self._respond(404, "Not found")
            return

        params = urllib.parse.parse_qs(parsed.query)
        code = (params.get("code") or [""])[0]
        state = (params.get("state") or [""])[0]
        error = (params.get("error") or [""])[0]

        if state != self.server.config.expected_state:
            logger.warning("Ignoring OAuth callback with unexpected state")
            self._respond(400, "State mismatch. Still waiting for the authorization callback.")
            return

        if error:
            self.server.resolve(error=ListenerError(f"Provider returned an authorization error: {error}"))
            self._respond(400, f"Authorization failed: {error}")
            return

        if not code:
            self.server.resolve(error=ListenerError("Callback carried a matching state but no code"))
            self._respond(400, "Callback is missing the authorization code.")
            return

        if self.server.resolve(code=AuthorizationCode(code=code, state=state)):
            logger.info("Authorization code received")
        self._respond(200, SUCCESS_PAGE, content_type="text/html; charset=utf-8")

    def _respond(self, status: int, body: str, *, content_type: str = "text/plain; charset=utf-8") -> None:
        payload = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format, *args) -> None:
        logger.debug("callback listener: " + format, *args)


class CallbackListener:
    """Short-lived local HTTP listener for the provider's redirect.

    ``start()`` binds host:port from the redirect URI, ``wait()`` blocks until
    a callback with the expected state arrives (or ``timeout`` expires), and
    the socket is released as soon as the wait ends either way.
    """

    def __init__(self, config: EndpointConfig, *, timeout: Optional[float] = None):
        self.config = config
        self.timeout = timeout
        self._result: "Future[AuthorizationCode]" = Future()
        self._server: Optional[_CallbackServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "CallbackListener":
        if self._server is not None:
            raise ListenerError("Callback listener already started")

        address = (self.config.redirect_host, self.config.redirect_port)
        try:
            self._server = _CallbackServer(address, self.config, self._result)
        except OSError as e:
            raise ListenerError(f"Could not listen on {address[0]}:{address[1]}: {e}") from e

        self._thread = threading.Thread(target=self._serve, name="oauth-callback-listener", daemon=True)
        self._thread.start()
        logger.debug("Callback listener bound to %s:%s%s", address[0], address[1], self.config.redirect_path)
        return self

    def _serve(self) -> None:
        server = self._server
        try:
            server.serve_forever()
        except Exception as e:
            server.resolve(error=ListenerError(f"Callback listener failed: {e}"))

    def wait(self) -> AuthorizationCode:
        if self._server is None:
            raise ListenerError("Callback listener was not started")

        try:
            return self._result.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            raise ListenerError(f"No authorization callback received within {self.timeout} seconds") from e
        finally:
            self.close()

    def close(self) -> None:
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> "CallbackListener":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def await_authorization_code(config: EndpointConfig, *, timeout: Optional[float] = None) -> AuthorizationCode:
    """Bind the redirect listener and block until a state-matching code arrives."""

    return CallbackListener(config, timeout=timeout).start().wait()
