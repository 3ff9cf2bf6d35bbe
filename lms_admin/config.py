"""
Configuration management for the LMS admin client.
Loads settings from config.json or environment variables.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path

_CONFIG_DIR = Path(__file__).parent
_DEFAULT_CONFIG_FILE = _CONFIG_DIR / "config.json"

DEFAULT_API_BASE = "http://127.0.0.1:8000/api/v1"
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class LmsConfig:
    """Immutable configuration for LMS API access."""
    api_base: str = DEFAULT_API_BASE
    timeout: float = DEFAULT_TIMEOUT
    email: str | None = None
    password: str | None = None


_cached_config: LmsConfig | None = None


def config_file() -> Path:
    """Location of config.json. LMS_CONFIG_FILE overrides the default."""
    override = os.environ.get("LMS_CONFIG_FILE")
    return Path(override) if override else _DEFAULT_CONFIG_FILE


def read_config_data() -> dict:
    """Raw contents of config.json, or an empty dict if it doesn't exist."""
    path = config_file()
    if not path.exists():
        return {}
    with open(path) as f:
        return json.load(f)


def write_config_data(data: dict) -> None:
    """Overwrite config.json with data."""
    with open(config_file(), "w") as f:
        json.dump(data, f, indent=2)


def get_config() -> LmsConfig:
    """
    Load configuration from config.json or environment variables.
    Cached after first load.

    Environment variable fallbacks:
        LMS_API_URL, LMS_TIMEOUT, LMS_EMAIL, LMS_PASSWORD
    """
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    data = read_config_data()
    api_base = data.get("apiUrl", DEFAULT_API_BASE)
    timeout = data.get("timeout", DEFAULT_TIMEOUT)
    email = data.get("email")
    password = data.get("password")

    # Environment variables override / fallback
    api_base = os.environ.get("LMS_API_URL", api_base)
    timeout = os.environ.get("LMS_TIMEOUT", timeout)
    email = os.environ.get("LMS_EMAIL", email)
    password = os.environ.get("LMS_PASSWORD", password)

    try:
        timeout = float(timeout)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid timeout value: {timeout!r}")

    if not api_base:
        raise ValueError(
            "No API base URL found. Set LMS_API_URL env var or 'apiUrl' in config.json"
        )

    _cached_config = LmsConfig(
        api_base=api_base.rstrip("/"),
        timeout=timeout,
        email=email or None,
        password=password or None,
    )
    return _cached_config


def reload_config() -> LmsConfig:
    """Force reload configuration (useful after editing config.json)."""
    global _cached_config
    _cached_config = None
    return get_config()
