"""Tests for settings loading.

Covers:
* defaults when no files exist
* YAML settings and secrets merged into AppSettings
* environment overrides
* validation of chat limits
"""
import pytest
import yaml
from pydantic import ValidationError

from forum_realtime import config as config_module
from forum_realtime.config import (
    AppSettings,
    ChatSettings,
    get_config,
    load_settings,
    reset_config,
    set_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("FORUM_SETTINGS_FILE", "FORUM_SECRETS_FILE", "FORUM_JWT_SECRET"):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


def _write(path, data):
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestLoadSettings:
    def test_defaults_when_files_missing(self, tmp_path):
        settings = load_settings(tmp_path / "none.yaml", tmp_path / "none.secrets.yaml")
        assert settings.server.port == 5000
        assert settings.database.path == "forum_chat.duckdb"
        assert settings.chat.global_room == "global_chat"
        assert settings.secrets.jwt.secret_key is None
        assert settings.secrets.jwt.algorithm == "HS256"

    def test_yaml_files_merged(self, tmp_path):
        settings_file = _write(tmp_path / "forum.settings.yaml", {
            "server": {"port": 8080},
            "chat": {"max_page_size": 25, "banned_message": "Banned"},
            "logging": {"level": "debug"},
        })
        secrets_file = _write(tmp_path / "forum.secrets.yaml", {
            "jwt": {"secret_key": "s3cret"},
        })

        settings = load_settings(settings_file, secrets_file)

        assert settings.server.port == 8080
        assert settings.chat.max_page_size == 25
        assert settings.chat.banned_message == "Banned"
        assert settings.logging.level == "debug"
        assert settings.secrets.jwt.secret_key == "s3cret"

    def test_env_selects_files(self, tmp_path, monkeypatch):
        settings_file = _write(tmp_path / "alt.yaml", {"database": {"path": ":memory:"}})
        monkeypatch.setenv("FORUM_SETTINGS_FILE", str(settings_file))
        monkeypatch.setenv("FORUM_SECRETS_FILE", str(tmp_path / "missing.yaml"))

        assert load_settings().database.path == ":memory:"

    def test_env_secret_overrides_file(self, tmp_path, monkeypatch):
        secrets_file = _write(tmp_path / "s.yaml", {"jwt": {"secret_key": "from-file"}})
        monkeypatch.setenv("FORUM_JWT_SECRET", "from-env")

        settings = load_settings(tmp_path / "none.yaml", secrets_file)
        assert settings.secrets.jwt.secret_key == "from-env"

    def test_empty_yaml_file(self, tmp_path):
        empty = tmp_path / "empty.yaml"
        empty.write_text("", encoding="utf-8")
        assert load_settings(empty, empty).chat.default_page_size == 50


class TestChatSettingsValidation:
    def test_zero_page_size_rejected(self):
        with pytest.raises(ValidationError):
            ChatSettings(max_page_size=0)

    def test_negative_list_limit_rejected(self):
        with pytest.raises(ValidationError):
            ChatSettings(conversation_list_limit=-1)


class TestConfigCache:
    def test_get_config_is_cached(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config_module, "SETTINGS_FILE", tmp_path / "none.yaml")
        monkeypatch.setattr(config_module, "SECRETS_FILE", tmp_path / "none.secrets.yaml")
        assert get_config() is get_config()

    def test_set_and_reset(self):
        custom = AppSettings(chat=ChatSettings(global_room="lobby"))
        set_config(custom)
        assert get_config() is custom

        reset_config()
        set_config(AppSettings())
        assert get_config().chat.global_room == "global_chat"
