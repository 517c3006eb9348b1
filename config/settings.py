"""
Configuration loader for the Thymer queue bridge.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class AuthConfig:
    token: str = ""                     # shared secret; empty locks every guarded endpoint


@dataclass
class StoreConfig:
    backend: str = "memory"             # "memory" | "file" | "redis"
    file_dir: str = "./data"            # directory for file backend
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "thymer:queue"    # redis key namespace


@dataclass
class StreamConfig:
    poll_interval: float = 2.0          # seconds between queue checks
    session_timeout: float = 25.0       # seconds before the server ends a session


@dataclass
class Settings:
    app_name: str = "Thymer Queue"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8787
    peek_limit: int = 10
    auth: AuthConfig = field(default_factory=AuthConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)


@dataclass
class ClientConfig:
    url: str = ""
    token: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.url and self.token)


_settings: Optional[Settings] = None
_ENV_PLACEHOLDER = re.compile(r"\$\{(\w+)\}")


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return _ENV_PLACEHOLDER.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _is_unset(value: Any) -> bool:
    """Empty, or a ${VAR} placeholder whose variable was not set."""
    return not value or (isinstance(value, str) and _ENV_PLACEHOLDER.search(value) is not None)


def _or_default(value: Any, default: Any) -> Any:
    return default if _is_unset(value) else value


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "THYMER_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.host = raw.get("host", settings.host)
        settings.port = int(raw.get("port", settings.port))
        settings.peek_limit = int(raw.get("peek_limit", settings.peek_limit))

        if "auth" in raw:
            settings.auth = AuthConfig(token=str(raw["auth"].get("token") or ""))

        if "store" in raw:
            st = raw["store"]
            defaults = StoreConfig()
            settings.store = StoreConfig(
                backend=_or_default(st.get("backend"), defaults.backend),
                file_dir=_or_default(st.get("file_dir"), defaults.file_dir),
                redis_url=_or_default(st.get("redis_url"), defaults.redis_url),
                key_prefix=_or_default(st.get("key_prefix"), defaults.key_prefix),
            )

        if "stream" in raw:
            sm = raw["stream"]
            settings.stream = StreamConfig(
                poll_interval=float(sm.get("poll_interval", 2.0)),
                session_timeout=float(sm.get("session_timeout", 25.0)),
            )

    # An unresolved ${VAR} placeholder is not a secret
    if _is_unset(settings.auth.token):
        settings.auth.token = os.environ.get("THYMER_TOKEN", "")

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def load_client_config(config_path: str = None) -> ClientConfig:
    """
    Producer/consumer connection settings.

    THYMER_URL and THYMER_TOKEN win; anything missing is read from
    ~/.config/tm/config, a plain file of ``url=`` and ``token=`` lines.
    """
    config = ClientConfig(
        url=os.environ.get("THYMER_URL", ""),
        token=os.environ.get("THYMER_TOKEN", ""),
    )
    if config.complete:
        return config

    path = Path(config_path) if config_path else Path.home() / ".config" / "tm" / "config"
    if not path.exists():
        return config

    for line in path.read_text().splitlines():
        line = line.strip()
        if line.startswith("url="):
            config.url = line[len("url="):]
        elif line.startswith("token="):
            config.token = line[len("token="):]
    return config
