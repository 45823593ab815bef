"""Configuration management for the VCCE daemon.

Loads settings from ~/.config/vcce/config.cfg, a local .env file and the
process environment (in increasing order of precedence).
Provides ServerConfig (listener, AI and context settings).
"""

import configparser
from dataclasses import dataclass
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

# Default location for user configuration.
CONFIG_PATH = Path.home() / ".config" / "vcce" / "config.cfg"

DEFAULT_PORT = 7071
MAX_FRAME_LIMIT = 0xFFFFFFFF

# Environment variable -> raw config key
ENV_OVERRIDES = {
    "PORT": "port",
    "VCCE_HOST": "host",
    "MISTRAL_API_KEY": "mistral_api_key",
    "VCCE_LOG_LEVEL": "log_level",
    "VCCE_CONTEXT_BUDGET": "context_budget_bytes",
}


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    llm_model: str = "mistral-small-latest"
    temperature: float = 0.2
    max_tokens: int = 32000
    context_budget_bytes: int = 256 * 1024
    context_ttl: float = 0.0
    ignore_file: str = ".gitignore"
    ignore_matcher: str = "gitignore"
    kill_orphans: bool = True
    max_frame_bytes: int = 64 * 1024 * 1024
    log_level: str = "INFO"
    api_key: Optional[str] = None


def load_raw_config(
    path: Path = CONFIG_PATH,
    env: Optional[Mapping[str, Optional[str]]] = None,
    env_file: Optional[Path] = None,
) -> Dict[str, str]:
    """
    Load configuration values from the config file, .env and environment.
    Values are returned with lowercase keys for convenience.
    """
    cfg = configparser.ConfigParser()
    data: Dict[str, str] = {}

    if path.exists():
        cfg.read(path)
        if "DEFAULT" in cfg:
            data.update({k.lower(): v for k, v in cfg["DEFAULT"].items()})
        if "API_KEYS" in cfg:
            data.update({k.lower(): v for k, v in cfg["API_KEYS"].items()})

    if env is None:
        env_path = env_file or Path.cwd() / ".env"
        env = {**dotenv_values(env_path), **os.environ}

    for env_name, key in ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None and str(value).strip() != "":
            data[key] = str(value).strip()

    return data


def _get_bool(raw: Mapping[str, str], key: str, default: bool = False) -> bool:
    value = raw.get(key)
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_int(raw: Mapping[str, str], key: str, default: int) -> int:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(float(value))
    except ValueError:
        raise ValueError(f"Invalid integer for '{key}': {value!r}")


def _get_float(raw: Mapping[str, str], key: str, default: float) -> float:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid number for '{key}': {value!r}")


def get_server_config(raw: Optional[Dict[str, str]] = None) -> ServerConfig:
    """
    Build a ServerConfig from raw configuration values.
    Raises ValueError on malformed numeric values.
    """
    raw = load_raw_config() if raw is None else raw
    defaults = ServerConfig()

    max_frame_bytes = _get_int(raw, "max_frame_bytes", defaults.max_frame_bytes)
    if not 0 < max_frame_bytes <= MAX_FRAME_LIMIT:
        raise ValueError(
            f"Invalid value for 'max_frame_bytes': must be between 1 and {MAX_FRAME_LIMIT}"
        )

    ignore_matcher = raw.get("ignore_matcher", defaults.ignore_matcher).strip().lower()
    if ignore_matcher not in {"gitignore", "prefix"}:
        raise ValueError(f"Invalid value for 'ignore_matcher': {ignore_matcher!r}")

    api_key = raw.get("mistral_api_key", "").strip() or None

    return ServerConfig(
        host=raw.get("host", defaults.host).strip() or defaults.host,
        port=_get_int(raw, "port", defaults.port),
        llm_model=raw.get("llm_model", defaults.llm_model).strip() or defaults.llm_model,
        temperature=_get_float(raw, "temperature", defaults.temperature),
        max_tokens=_get_int(raw, "max_tokens", defaults.max_tokens),
        context_budget_bytes=_get_int(
            raw, "context_budget_bytes", defaults.context_budget_bytes
        ),
        context_ttl=_get_float(raw, "context_ttl", defaults.context_ttl),
        ignore_file=raw.get("ignore_file", defaults.ignore_file).strip() or defaults.ignore_file,
        ignore_matcher=ignore_matcher,
        kill_orphans=_get_bool(raw, "kill_orphans", defaults.kill_orphans),
        max_frame_bytes=max_frame_bytes,
        log_level=raw.get("log_level", defaults.log_level).strip().upper() or defaults.log_level,
        api_key=api_key,
    )
