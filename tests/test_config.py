"""Summary: Tests for Mailcast settings resolution.

Importance: Batch sizes and delivery settings must resolve the same way for the API and CLI.
Alternatives: Check settings by hand after each deploy.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

from mailcast.config import AppConfig, load_defaults, load_dotenv, parse_bool


DEFAULTS_PATH = Path(__file__).resolve().parents[1] / "config" / "defaults.json"


def _use_repo_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "config").mkdir()
    shutil.copy(DEFAULTS_PATH, tmp_path / "config" / "defaults.json")
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith(("MAILCAST_", "MAILGUN_")):
            monkeypatch.delenv(key, raising=False)


def test_load_defaults_reads_string_values(tmp_path: Path) -> None:
    path = tmp_path / "mailcast.json"
    path.write_text('{"chunk_size": "10"}', encoding="utf-8")
    assert load_defaults(path) == {"chunk_size": "10"}


def test_load_defaults_requires_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_defaults(tmp_path / "missing.json")


def test_load_dotenv_does_not_override_env(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Summary: Ensure .env values fill gaps without replacing real variables.

    Importance: Deployment environments must win over local files.
    Alternatives: Let .env values always override.
    """

    env_path = tmp_path / ".env"
    env_path.write_text(
        "# local settings\nMAILCAST_CHUNK_SIZE=50\nMAILCAST_SITE_URL=https://dotenv.example\n"
        "export MAILCAST_FROM_ADDRESS=\"news@example.com\"\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("MAILCAST_CHUNK_SIZE", "")
    monkeypatch.delenv("MAILCAST_CHUNK_SIZE")
    monkeypatch.setenv("MAILCAST_FROM_ADDRESS", "")
    monkeypatch.delenv("MAILCAST_FROM_ADDRESS")
    monkeypatch.setenv("MAILCAST_SITE_URL", "https://env.example")
    load_dotenv(env_path)
    assert os.getenv("MAILCAST_FROM_ADDRESS") == "news@example.com"
    assert os.getenv("MAILCAST_CHUNK_SIZE") == "50"
    assert os.getenv("MAILCAST_SITE_URL") == "https://env.example"


def test_app_config_uses_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify the shipped defaults give a working local setup.

    Importance: Batching and truncation constants come from configuration.
    Alternatives: Assert on each default separately in many small tests.
    """

    _use_repo_defaults(tmp_path, monkeypatch)
    config = AppConfig.from_env()
    assert config.db_path == "mailcast.db"
    assert config.chunk_size == 1000
    assert config.error_max_length == 2000
    assert config.recipient_limit == 0
    assert config.delivery_provider == "mock"
    assert config.smtp_user is None
    assert config.smtp_use_tls is False
    assert config.site_url == "http://localhost:8000"


def test_app_config_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_repo_defaults(tmp_path, monkeypatch)
    monkeypatch.setenv("MAILCAST_CHUNK_SIZE", "250")
    monkeypatch.setenv("MAILCAST_SITE_URL", "https://news.example.com/")
    monkeypatch.setenv("MAILCAST_SMTP_USE_TLS", "yes")
    monkeypatch.setenv("MAILGUN_DOMAIN", "mg.example.com")
    config = AppConfig.from_env()
    assert config.chunk_size == 250
    assert config.site_url == "https://news.example.com"
    assert config.smtp_use_tls is True
    assert config.mailgun_domain == "mg.example.com"


def test_parse_bool_variants() -> None:
    assert parse_bool("true")
    assert parse_bool(" On ")
    assert parse_bool(True)
    assert not parse_bool("0")
    assert not parse_bool("")
