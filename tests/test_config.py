"""Tests for settings loading."""

import pytest

from todo_sync.config import Config, SyncSettings, load_settings, save_settings


class TestSyncSettings:

    def test_defaults(self):
        settings = SyncSettings(data_dir="/tmp/todo-sync-test")
        assert settings.batch_size == 10
        assert settings.max_retries == 3
        assert settings.connectivity_timeout == 5.0
        assert settings.api_base_url == "http://localhost:3000/api"

    def test_trailing_slash_stripped(self):
        settings = SyncSettings(api_base_url="http://remote/api/")
        assert settings.api_base_url == "http://remote/api"

    @pytest.mark.parametrize("field, value", [
        ("batch_size", 0),
        ("max_retries", 0),
        ("connectivity_timeout", 0),
        ("api_base_url", None),
        ("api_base_url", ""),
    ])
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValueError):
            SyncSettings(**{field: value})

    def test_env_overrides(self):
        settings = SyncSettings().with_env_overrides({
            "API_BASE_URL": "http://elsewhere/api",
            "SYNC_BATCH_SIZE": "25",
            "SYNC_RETRY_ATTEMPTS": "5",
        })
        assert settings.api_base_url == "http://elsewhere/api"
        assert settings.batch_size == 25
        assert settings.max_retries == 5

    def test_bad_env_value(self):
        with pytest.raises(ValueError, match="SYNC_BATCH_SIZE"):
            SyncSettings().with_env_overrides({"SYNC_BATCH_SIZE": "many"})

    def test_from_yaml_ignores_unknown_keys(self):
        settings = SyncSettings.from_yaml("batch_size: 4\ncolour: blue\n")
        assert settings.batch_size == 4


class TestConfigLoading:

    def test_save_then_load(self, tmp_path):
        path = tmp_path / "config.yaml"
        save_settings(SyncSettings(batch_size=7, data_dir=str(tmp_path)), path)

        Config.set(None)
        loaded = load_settings(path)
        assert loaded.batch_size == 7

    def test_missing_file_uses_defaults(self, tmp_path):
        loaded = load_settings(tmp_path / "absent.yaml")
        assert loaded.batch_size == 10

    def test_broken_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("batch_size: [unclosed\n")
        loaded = load_settings(path)
        assert loaded.max_retries == 3

    def test_environment_wins_over_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("batch_size: 4\n")
        monkeypatch.setenv("SYNC_BATCH_SIZE", "9")
        assert load_settings(path).batch_size == 9

    def test_cached_until_reload(self, tmp_path):
        assert Config.get().batch_size == 10

        config_file = tmp_path / "data" / "config.yaml"
        config_file.parent.mkdir(parents=True, exist_ok=True)
        config_file.write_text("batch_size: 6\n")

        assert Config.get().batch_size == 10
        assert Config.reload().batch_size == 6

    def test_null_base_url_in_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("api_base_url: null\nbatch_size: 4\n")

        loaded = load_settings(path)
        assert loaded.api_base_url == "http://localhost:3000/api"
        assert loaded.batch_size == 10
