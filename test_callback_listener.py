import os
import socket
import sys
import threading
import unittest
import urllib.parse

import httpx

# Ensure local imports work when running this file directly.
THIS_DIR = os.path.dirname(os.path.abspath(__file__))
if THIS_DIR not in sys.path:
    sys.path.insert(0, THIS_DIR)

from oauth_session import (
    CallbackListener,
    EndpointConfig,
    ListenerError,
    LoginError,
    OAuth2Client,
    await_authorization_code,
)

TOKEN_URL = "https://p.example/token"


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def make_config(port: int, *, host: str = "127.0.0.1", state: str = "xyz") -> EndpointConfig:
    return EndpointConfig.new(f"http://{host}:{port}/cb", "read", state, "https://p.example/authorize", TOKEN_URL)


def call_back(port: int, query: str, path: str = "/cb") -> httpx.Response:
    return httpx.get(f"http://127.0.0.1:{port}{path}?{query}", timeout=5, trust_env=False)


class TestCallbackListener(unittest.TestCase):
    def test_matching_callback_yields_code_and_releases_port(self):
        port = free_port()
        listener = CallbackListener(make_config(port, host="localhost"), timeout=10).start()
        responses = []

        sender = threading.Thread(target=lambda: responses.append(call_back(port, "code=ABC&state=xyz")))
        sender.start()
        code = listener.wait()
        sender.join()

        self.assertEqual(code.code, "ABC")
        self.assertEqual(code.state, "xyz")
        self.assertEqual(responses[0].status_code, 200)

        # Listener is shut down: the port can be bound again.
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind(("127.0.0.1", port))

    def test_wrong_state_is_ignored_until_matching_callback(self):
        port = free_port()
        listener = CallbackListener(make_config(port), timeout=10).start()
        statuses = []

        def send():
            statuses.append(call_back(port, "code=FORGED&state=evil").status_code)
            statuses.append(call_back(port, "code=OLD").status_code)
            statuses.append(call_back(port, "code=ABC&state=xyz", path="/other").status_code)
            statuses.append(call_back(port, "code=ABC&state=xyz").status_code)

        sender = threading.Thread(target=send)
        sender.start()
        code = listener.wait()
        sender.join()

        self.assertEqual(code.code, "ABC")
        self.assertEqual(statuses, [400, 400, 404, 200])

    def test_concurrent_matching_callbacks_capture_one_code(self):
        port = free_port()
        listener = CallbackListener(make_config(port), timeout=10).start()
        outcomes = []
        start = threading.Event()

        def send(i):
            start.wait()
            try:
                outcomes.append(call_back(port, f"code=C{i}&state=xyz").status_code)
            except httpx.HTTPError as e:
                # Requests arriving while the listener shuts down may be dropped.
                outcomes.append(type(e).__name__)

        senders = [threading.Thread(target=send, args=(i,)) for i in range(5)]
        for t in senders:
            t.start()
        start.set()
        code = listener.wait()
        for t in senders:
            t.join()

        self.assertIn(code.code, {f"C{i}" for i in range(5)})
        self.assertEqual(len(outcomes), 5)
        self.assertGreaterEqual(outcomes.count(200), 1)

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind(("127.0.0.1", port))

    def test_root_redirect_path_matches_only_root(self):
        port = free_port()
        config = EndpointConfig.new(f"http://127.0.0.1:{port}", "read", "xyz", "https://p.example/authorize", TOKEN_URL)
        listener = CallbackListener(config, timeout=10).start()
        statuses = []

        def send():
            statuses.append(call_back(port, "code=ABC&state=xyz", path="/cb").status_code)
            statuses.append(call_back(port, "code=ABC&state=xyz", path="/").status_code)

        sender = threading.Thread(target=send)
        sender.start()
        code = listener.wait()
        sender.join()

        self.assertEqual(code.code, "ABC")
        self.assertEqual(statuses, [404, 200])

    def test_wrong_state_alone_never_yields_a_code(self):
        port = free_port()
        listener = CallbackListener(make_config(port), timeout=0.5).start()
        call_back(port, "code=FORGED&state=evil")

        with self.assertRaises(ListenerError):
            listener.wait()

    def test_provider_error_fails_the_wait(self):
        port = free_port()
        listener = CallbackListener(make_config(port), timeout=10).start()
        sender = threading.Thread(target=lambda: call_back(port, "error=access_denied&state=xyz"))
        sender.start()

        with self.assertRaises(ListenerError) as ctx:
            listener.wait()
        sender.join()
        self.assertIn("access_denied", str(ctx.exception))

    def test_port_in_use_raises(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen(1)
            port = blocker.getsockname()[1]

            with self.assertRaises(ListenerError):
                await_authorization_code(make_config(port), timeout=1)

    def test_wait_requires_start(self):
        with self.assertRaises(ListenerError):
            CallbackListener(make_config(free_port())).wait()


class TestOAuth2ClientLogin(unittest.TestCase):
    def make_client(self, port: int, token_handler, displayed: list) -> OAuth2Client:
        def display(url, config):
            displayed.append(url)
            query = urllib.parse.parse_qs(urllib.parse.urlsplit(url).query)
            state = query["state"][0]
            threading.Thread(target=lambda: call_back(port, f"code=ABC&state={state}")).start()

        return OAuth2Client(
            make_config(port),
            http_client=httpx.Client(transport=httpx.MockTransport(token_handler)),
            display=display,
            callback_timeout=10,
        )

    def test_login_produces_session(self):
        port = free_port()
        forms = []

        def token_handler(request):
            forms.append(dict(urllib.parse.parse_qsl(request.content.decode("utf-8"))))
            return httpx.Response(
                200, json={"access_token": "A1", "token_type": "Bearer", "expires_in": 3600, "refresh_token": "R1"}
            )

        displayed = []
        session = self.make_client(port, token_handler, displayed).login("my-client", "secret")

        self.assertEqual(len(displayed), 1)
        self.assertIn("client_id=my-client", displayed[0])
        self.assertEqual(forms, [{"grant_type": "authorization_code", "code": "ABC", "redirect_uri": f"http://127.0.0.1:{port}/cb"}])
        self.assertEqual(session.access_token, "A1")
        self.assertEqual(session.refresh_token, "R1")
        self.assertTrue(session.is_valid())

    def test_login_reports_exchange_step(self):
        port = free_port()
        client = self.make_client(port, lambda r: httpx.Response(401, json={"error": "invalid_client"}), [])

        with self.assertRaises(LoginError) as ctx:
            client.login("my-client", "wrong")
        self.assertEqual(ctx.exception.step, "exchange")

    def test_login_reports_listener_step(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen(1)
            port = blocker.getsockname()[1]
            displayed = []
            client = self.make_client(port, lambda r: httpx.Response(500), displayed)

            with self.assertRaises(LoginError) as ctx:
                client.login("my-client", "secret")

        self.assertEqual(ctx.exception.step, "listener")
        self.assertEqual(displayed, [])

    def test_display_failure_propagates_and_releases_port(self):
        port = free_port()

        def display(url, config):
            raise RuntimeError("no terminal")

        client = OAuth2Client(make_config(port), display=display, callback_timeout=10)
        with self.assertRaises(RuntimeError):
            client.login("my-client", "secret")

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind(("127.0.0.1", port))

    def test_from_settings_reports_config_step(self):
        with self.assertRaises(LoginError) as ctx:
            OAuth2Client.from_settings(
                {
                    "redirect_uri": "localhost:8085",
                    "authorize_url": "https://p.example/authorize",
                    "token_url": TOKEN_URL,
                }
            )
        self.assertEqual(ctx.exception.step, "config")

    def test_from_settings_applies_timeouts(self):
        client = OAuth2Client.from_settings(
            {
                "redirect_uri": "http://localhost:8085/callback",
                "authorize_url": "https://p.example/authorize",
                "token_url": TOKEN_URL,
                "scope": "read",
                "state": "505",
                "callback_timeout": 0,
                "http_timeout": 10,
                "expiry_buffer_seconds": 30,
            }
        )
        self.assertIsNone(client.callback_timeout)
        self.assertEqual(client.exchanger.timeout, 10.0)
        self.assertEqual(client.expiry_buffer, 30.0)
        self.assertEqual(client.config.expected_state, "505")


if __name__ == "__main__":
    unittest.main(verbosity=2)
