"""Summary: Tests for configuration loading.

Importance: Ensures defaults, .env, and environment overrides behave correctly.
Alternatives: Validate configuration manually during runtime.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from campuslink.config import AppConfig, load_defaults, load_dotenv

DEFAULTS = """
{
  "db_path": "test.db",
  "api_host": "127.0.0.1",
  "api_port": "8000",
  "api_key": "",
  "log_level": "INFO",
  "badge_cap": "9",
  "default_user_name": "Local Student",
  "default_user_email": "student@campuslink.local"
}
""".strip()


def test_load_defaults_reads_json(tmp_path: Path) -> None:
    """Summary: Verify defaults are parsed from JSON.

    Importance: Confirms config file is the source of truth for variables.
    Alternatives: Hardcode defaults in the test.
    """

    defaults_path = tmp_path / "defaults.json"
    defaults_path.write_text("{\"db_path\": \"test.db\"}", encoding="utf-8")
    defaults = load_defaults(defaults_path)
    assert defaults["db_path"] == "test.db"


def test_load_defaults_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_defaults(tmp_path / "missing.json")


def test_load_dotenv_does_not_override_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Ensure .env values fill gaps without clobbering the environment.

    Importance: Validates local secret loading without external tools.
    Alternatives: Assume OS environment is always set.
    """

    env_path = tmp_path / ".env"
    env_path.write_text(
        "# local overrides\nCAMPUSLINK_LOG_LEVEL=DEBUG\nCAMPUSLINK_API_KEY=from-file\n",
        encoding="utf-8",
    )
    monkeypatch.delenv("CAMPUSLINK_LOG_LEVEL", raising=False)
    monkeypatch.setenv("CAMPUSLINK_API_KEY", "from-env")
    load_dotenv(env_path)
    assert os.getenv("CAMPUSLINK_LOG_LEVEL") == "DEBUG"
    assert os.getenv("CAMPUSLINK_API_KEY") == "from-env"
    monkeypatch.delenv("CAMPUSLINK_LOG_LEVEL", raising=False)


def test_app_config_uses_defaults_and_env(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Summary: Verify AppConfig honors defaults and environment overrides.

    Importance: Confirms config file remains the baseline for variables.
    Alternatives: Inline defaults directly in the AppConfig class.
    """

    monkeypatch.chdir(tmp_path)
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "defaults.json").write_text(DEFAULTS, encoding="utf-8")
    for name in (
        "CAMPUSLINK_DB_PATH",
        "CAMPUSLINK_API_KEY",
        "CAMPUSLINK_LOG_LEVEL",
        "CAMPUSLINK_DEFAULT_USER_NAME",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CAMPUSLINK_BADGE_CAP", "99")
    config = AppConfig.from_env()
    assert config.db_path == "test.db"
    assert config.api_port == 8000
    assert config.api_key == ""
    assert config.badge_cap == 99
    assert config.default_user_name == "Local Student"
