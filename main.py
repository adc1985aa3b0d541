import json
import sys
import webbrowser

import httpx
import questionary

from config import load_config, save_config, validate_config
from oauth_session import EndpointConfig, LoginError, OAuth2Client, RequestError, Session
from utils.logger import log_error, log_info, log_success, log_warning, setup_logging


def make_display(open_browser: bool):
    def display(url: str, endpoint: EndpointConfig) -> None:
        log_info("=" * 72)
        log_info("AUTHORIZATION")
        log_info("=" * 72)
        log_info(
            f"Visit the URL below. Your browser must be able to reach "
            f"{endpoint.redirect_host}:{endpoint.redirect_port} on this machine."
        )
        log_info(f"Authorize URL:\n{url}")
        log_info("=" * 72)

        if open_browser and questionary.confirm("Open the authorize URL in your default browser?", default=True).ask():
            if not webbrowser.open(url):
                log_warning("Could not open a browser. Copy the URL above instead.")

    return display


def prompt_credentials(config: dict) -> tuple[str, str]:
    client_id = str(config.get("client_id", "")).strip()
    client_secret = str(config.get("client_secret", "")).strip()

    if not client_id:
        client_id = (questionary.text("Client ID:").ask() or "").strip()
        if client_id and questionary.confirm("Save this Client ID to the config file?", default=False).ask():
            config["client_id"] = client_id
            save_config(config)
    if not client_secret:
        client_secret = (questionary.password("Client secret:").ask() or "").strip()

    return client_id, client_secret


def probe(session: Session, url: str) -> None:
    """Issue one authenticated GET to show the session works."""
    try:
        resp = session.authenticated_request(httpx.Request("GET", url))
    except RequestError as e:
        log_error(f"Authenticated request failed: {e}")
        return
    log_info(f"GET {url} -> HTTP {resp.status_code}")


def main() -> int:
    setup_logging()

    try:
        config = load_config()
    except json.JSONDecodeError as e:
        log_error(f"Config file contains invalid JSON: {e}")
        return 1
    except (OSError, ValueError) as e:
        log_error(f"Error loading config: {e}")
        return 1

    # Reconfigure with the level and file chosen in the config.
    setup_logging(config.get("log_level", "INFO"), log_file=config.get("log_file", ""))

    is_valid, errors = validate_config(config)
    if not is_valid:
        for err in errors:
            log_error(err)
        return 1

    try:
        client = OAuth2Client.from_settings(config, display=make_display(bool(config.get("open_browser", True))))
    except LoginError as e:
        log_error(str(e))
        return 1

    client_id, client_secret = prompt_credentials(config)
    if not client_id or not client_secret:
        log_error("Client ID and client secret are required.")
        return 1

    try:
        session = client.login(client_id, client_secret)
    except LoginError as e:
        log_error(str(e))
        if e.step == "listener":
            log_info("Tip: check that nothing else is listening on the redirect port.")
        elif e.step == "exchange":
            log_info("Tip: check the client credentials and the redirect URI registered with the provider.")
        return 1

    log_success("Login successful.")
    with session:
        if config.get("probe_url"):
            probe(session, config["probe_url"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
