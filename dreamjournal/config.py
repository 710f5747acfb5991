from __future__ import annotations

"""Application-wide configuration defaults and credential lookup."""

from dataclasses import dataclass, fields
import logging
import os
from pathlib import Path
from typing import Any

import tomllib

from .errors import ConfigError

_LOGGER = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".dreamjournal" / "data"
DEFAULT_STATE_DIR = Path.cwd() / "state"
DEFAULT_USER_CONFIG_PATH = Path.cwd() / "user_config.toml"
# provider:model; the provider selects the SDK and the credential
DEFAULT_MODEL_LLM = "openai:gpt-4.1-mini"
DEFAULT_MODEL_STT = "whisper-1"
DEFAULT_STT_LANGUAGE = "en"
DEFAULT_MAX_TOKENS_ANALYSIS = 5_000
DEFAULT_TEMPERATURE_ANALYSIS = 0.7
DEFAULT_LLM_TIMEOUT_SECONDS = 30.0
DEFAULT_STT_TIMEOUT_SECONDS = 60.0
DEFAULT_MIN_TEXT_LENGTH = 10
DEFAULT_MAX_TEXT_LENGTH = 8_000
DEFAULT_MAX_AUDIO_BYTES = 25 * 1024 * 1024
DEFAULT_ANALYSIS_REQUESTS_PER_HOUR = 100
DEFAULT_TRANSCRIBE_REQUESTS_PER_HOUR = 50
DEFAULT_SERVER_URL = "http://127.0.0.1:8765"

API_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass(slots=True)
class AppConfig:
    data_dir: Path = DEFAULT_DATA_DIR
    state_dir: Path = DEFAULT_STATE_DIR
    user_config_path: Path = DEFAULT_USER_CONFIG_PATH
    server_url: str = DEFAULT_SERVER_URL
    model_llm: str = DEFAULT_MODEL_LLM
    model_stt: str = DEFAULT_MODEL_STT
    stt_language: str = DEFAULT_STT_LANGUAGE
    # LLM generation controls
    llm_max_tokens_analysis: int = DEFAULT_MAX_TOKENS_ANALYSIS
    llm_temperature_analysis: float = DEFAULT_TEMPERATURE_ANALYSIS
    llm_timeout_seconds: float = DEFAULT_LLM_TIMEOUT_SECONDS
    stt_timeout_seconds: float = DEFAULT_STT_TIMEOUT_SECONDS
    # Input bounds enforced by the proxy, not the store
    min_text_length: int = DEFAULT_MIN_TEXT_LENGTH
    max_text_length: int = DEFAULT_MAX_TEXT_LENGTH
    max_audio_bytes: int = DEFAULT_MAX_AUDIO_BYTES
    analysis_requests_per_hour: int = DEFAULT_ANALYSIS_REQUESTS_PER_HOUR
    transcribe_requests_per_hour: int = DEFAULT_TRANSCRIBE_REQUESTS_PER_HOUR


CONFIG = AppConfig()


# Which AppConfig fields each user_config.toml table may override
_USER_CONFIG_SECTIONS: dict[str, dict[str, str]] = {
    "llm": {
        "model": "model_llm",
        "max_tokens": "llm_max_tokens_analysis",
        "temperature": "llm_temperature_analysis",
        "timeout_seconds": "llm_timeout_seconds",
    },
    "transcription": {
        "model": "model_stt",
        "language": "stt_language",
        "timeout_seconds": "stt_timeout_seconds",
        "max_audio_bytes": "max_audio_bytes",
    },
    "limits": {
        "min_text_length": "min_text_length",
        "max_text_length": "max_text_length",
        "analysis_per_hour": "analysis_requests_per_hour",
        "transcribe_per_hour": "transcribe_requests_per_hour",
    },
    "storage": {
        "data_dir": "data_dir",
        "state_dir": "state_dir",
    },
    "client": {
        "server_url": "server_url",
    },
}

_PATH_FIELDS = {f.name for f in fields(AppConfig) if f.type in ("Path", Path)}


def read_user_config(path: Path | None = None) -> dict[str, Any]:
    """Return the parsed user_config.toml, or an empty dict when absent."""

    target = path or CONFIG.user_config_path
    if not target.exists():
        return {}
    try:
        with target.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid configuration file {target}: {exc}") from exc


def load_user_config(path: Path | None = None, config: AppConfig = CONFIG) -> AppConfig:
    """Apply overrides from user_config.toml onto ``config`` in place."""

    data = read_user_config(path)
    for section, mapping in _USER_CONFIG_SECTIONS.items():
        table = data.get(section)
        if not isinstance(table, dict):
            continue
        for key, attr in mapping.items():
            if key not in table:
                continue
            value = table[key]
            if attr in _PATH_FIELDS:
                value = Path(str(value)).expanduser()
            setattr(config, attr, value)
            _LOGGER.debug("Config override %s.%s -> %s", section, key, attr)
    if path is not None:
        config.user_config_path = path
    return config


def resolve_api_key(provider: str, config_path: Path | None = None) -> str:
    """Return the upstream credential for ``provider``.

    Lookup order: process environment, then the ``[credentials]`` table of the
    local configuration file. Raises ConfigError when neither has a value.
    """

    env_var = API_KEY_ENV_VARS.get(provider)
    if env_var is None:
        raise ConfigError(f"Unsupported provider '{provider}'")

    key = os.environ.get(env_var, "").strip()
    if key:
        return key

    credentials = read_user_config(config_path).get("credentials") or {}
    if isinstance(credentials, dict):
        key = str(credentials.get(f"{provider}_api_key") or "").strip()
        if key:
            return key

    raise ConfigError(
        f"No API key configured for {provider}: set {env_var} or "
        f"[credentials].{provider}_api_key in user_config.toml"
    )
