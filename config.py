import json
import os
from typing import Any, Dict

CONFIG_PATH = os.environ.get("OAUTH_SESSION_CONFIG", "config.json")

# Default configuration values
DEFAULT_CONFIG = {
    # Client credentials (may also come from OAUTH_CLIENT_ID / OAUTH_CLIENT_SECRET)
    "client_id": "",
    "client_secret": "",

    # Provider endpoints
    "authorize_url": "https://accounts.spotify.com/authorize",
    "token_url": "https://accounts.spotify.com/api/token",
    "redirect_uri": "http://localhost:8085/callback",
    "scope": "user-read-playback-state",
    # Empty state means a random CSRF nonce per login.
    "state": "",

    # Timing
    "callback_timeout": 300,
    "http_timeout": 30,
    "expiry_buffer_seconds": 5,

    # CLI behavior
    "open_browser": True,
    "probe_url": "https://api.spotify.com/v1/me/player/currently-playing",
    "log_level": "INFO",
    "log_file": "",
}

# Validation rules for config fields
CONFIG_SCHEMA = {
    "client_id": {"type": str, "required": False},
    "client_secret": {"type": str, "required": False},

    "authorize_url": {"type": str, "required": True},
    "token_url": {"type": str, "required": True},
    "redirect_uri": {"type": str, "required": True},
    "scope": {"type": str, "required": False},
    "state": {"type": str, "required": False},

    # 0 waits forever for the browser callback.
    "callback_timeout": {"type": (int, float), "required": False, "min": 0, "max": 86400},
    "http_timeout": {"type": (int, float), "required": False, "min": 1, "max": 300},
    "expiry_buffer_seconds": {"type": (int, float), "required": False, "min": 0, "max": 3600},

    "open_browser": {"type": bool, "required": False},
    "probe_url": {"type": str, "required": False},
    "log_level": {"type": str, "required": False, "choices": ["DEBUG", "INFO", "WARNING", "ERROR"]},
    "log_file": {"type": str, "required": False},
}


def load_config(path: str = "") -> Dict[str, Any]:
    """Load configuration from file, applying defaults for missing fields.

    A missing file yields the defaults; environment credentials fill empty
    client_id / client_secret.
    """
    path = path or CONFIG_PATH
    config: Dict[str, Any] = {}
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            config = json.load(f)
        if not isinstance(config, dict):
            raise ValueError(f"Config file {path} must contain a JSON object.")

    # Apply defaults for missing fields
    for key, value in DEFAULT_CONFIG.items():
        if key not in config:
            config[key] = value

    if not config.get("client_id"):
        config["client_id"] = os.environ.get("OAUTH_CLIENT_ID", "")
    if not config.get("client_secret"):
        config["client_secret"] = os.environ.get("OAUTH_CLIENT_SECRET", "")

    return config


def validate_config(config: Dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate configuration against schema.
    Returns (is_valid, list_of_errors).
    """
    errors = []

    for key, rules in CONFIG_SCHEMA.items():
        # Check required fields
        if rules.get("required", False) and key not in config:
            errors.append(f"Missing required field: {key}")
            continue

        if key not in config:
            continue

        value = config[key]

        # bool is an int subclass; reject it for numeric fields.
        expected_type = rules.get("type")
        if expected_type and (
            not isinstance(value, expected_type) or (isinstance(value, bool) and expected_type is not bool)
        ):
            type_names = expected_type.__name__ if not isinstance(expected_type, tuple) else "/".join(t.__name__ for t in expected_type)
            errors.append(f"Field '{key}' must be {type_names}, got {type(value).__name__}")
            continue

        # Choices check
        if "choices" in rules and value not in rules["choices"]:
            errors.append(f"Field '{key}' must be one of {rules['choices']}, got '{value}'")

        # Range check for numeric values
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if "min" in rules and value < rules["min"]:
                errors.append(f"Field '{key}' must be >= {rules['min']}, got {value}")
            if "max" in rules and value > rules["max"]:
                errors.append(f"Field '{key}' must be <= {rules['max']}, got {value}")

    return len(errors) == 0, errors


def save_config(config: Dict[str, Any], path: str = "") -> bool:
    """Save configuration to file. Client secrets are never written."""
    path = path or CONFIG_PATH
    data = {k: v for k, v in config.items() if k != "client_secret"}
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        return True
    except OSError as e:
        raise IOError(f"Failed to save config: {e}") from e
