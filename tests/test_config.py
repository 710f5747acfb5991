from __future__ import annotations

from pathlib import Path

import pytest

from dreamjournal.config import AppConfig, load_user_config, resolve_api_key
from dreamjournal.errors import ConfigError


def _write_config(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "user_config.toml"
    path.write_text(body, encoding="utf-8")
    return path


def test_user_config_overrides_defaults(tmp_path):
    path = _write_config(
        tmp_path,
        """
[llm]
model = "anthropic:claude-sonnet-4"
temperature = 0.2

[limits]
analysis_per_hour = 5

[storage]
data_dir = "~/dreams"

[client]
server_url = "http://example.test:9000"
""",
    )
    config = AppConfig()

    load_user_config(path, config)

    assert config.model_llm == "anthropic:claude-sonnet-4"
    assert config.llm_temperature_analysis == 0.2
    assert config.analysis_requests_per_hour == 5
    assert config.data_dir == Path("~/dreams").expanduser()
    assert config.server_url == "http://example.test:9000"
    assert config.user_config_path == path
    # untouched fields keep their defaults
    assert config.transcribe_requests_per_hour == 50


def test_missing_config_file_is_ignored(tmp_path):
    config = AppConfig()

    load_user_config(tmp_path / "absent.toml", config)

    assert config.model_llm == AppConfig().model_llm


def test_invalid_toml_raises_config_error(tmp_path):
    path = _write_config(tmp_path, "[llm\nmodel = ")

    with pytest.raises(ConfigError):
        load_user_config(path, AppConfig())


def test_api_key_from_environment_wins(tmp_path, monkeypatch):
    path = _write_config(tmp_path, '[credentials]\nopenai_api_key = "file-key"\n')
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")

    assert resolve_api_key("openai", path) == "env-key"


def test_api_key_from_config_file(tmp_path, monkeypatch):
    path = _write_config(tmp_path, '[credentials]\nanthropic_api_key = "file-key"\n')
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    assert resolve_api_key("anthropic", path) == "file-key"


def test_missing_api_key_raises(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ConfigError) as excinfo:
        resolve_api_key("openai", tmp_path / "absent.toml")

    assert "OPENAI_API_KEY" in excinfo.value.message
