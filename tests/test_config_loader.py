"""
Unit tests for configuration loading.

Tests multi-layer config merging, environment variable overrides,
caching, XDG directory handling and layered .env files.
"""

import json
import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from tasksync.core.config import (
    clear_cache,
    get_project_config_path,
    get_user_config_path,
    load_config,
    load_layered_env,
)
from tasksync.core.config.env import get_user_env_path, read_env_files
from tasksync.core.config.loader import (
    apply_env_overrides,
    deep_merge,
    get_default_config,
    get_xdg_config_home,
    load_json_file,
)
from tasksync.core.config.models import RemoteConfig, SyncConfig

def write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


# ==============================================================================
# Helper Functions Tests
# ==============================================================================


class TestDeepMerge:
    """Test the deep_merge helper function."""

    def test_nested_merge(self):
        base = {"a": 1, "b": {"x": 10, "y": 20}}
        override = {"b": {"y": 30, "z": 40}, "c": 3}
        assert deep_merge(base, override) == {"a": 1, "b": {"x": 10, "y": 30, "z": 40}, "c": 3}

    def test_override_replaces_non_dict(self):
        assert deep_merge({"a": [1, 2]}, {"a": [3]}) == {"a": [3]}

    def test_inputs_unchanged(self):
        base = {"b": {"x": 1}}
        deep_merge(base, {"b": {"x": 2}})
        assert base == {"b": {"x": 1}}


class TestLoadJsonFile:
    """Test JSON file loading."""

    def test_missing_file(self, tmp_path):
        assert load_json_file(tmp_path / "nope.json") is None

    def test_valid_file(self, tmp_path):
        path = write_json(tmp_path / "c.json", {"cache": {"page_size": 5}})
        assert load_json_file(path) == {"cache": {"page_size": 5}}

    def test_invalid_json_warns(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text("{not json")

        assert load_json_file(path) is None
        assert "Warning: Failed to parse config" in capsys.readouterr().out

    def test_non_object_ignored(self, tmp_path):
        assert load_json_file(write_json(tmp_path / "list.json", [1, 2])) is None


class TestPaths:
    """Test config path resolution."""

    def test_xdg_config_home(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert get_xdg_config_home() == tmp_path
        assert get_user_config_path() == tmp_path / "tasksync" / "config.json"

    def test_xdg_default(self, monkeypatch):
        monkeypatch.delenv("XDG_CONFIG_HOME")
        assert get_xdg_config_home() == Path.home() / ".config"

    def test_project_path(self, tmp_path):
        assert get_project_config_path(tmp_path) == tmp_path / ".tasksync.json"


# ==============================================================================
# Env overrides
# ==============================================================================


class TestEnvOverrides:
    """Test TASKSYNC_* environment variables."""

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("TASKSYNC_BASE_URL", "https://api.example.com")
        monkeypatch.setenv("TASKSYNC_TIMEOUT", "2.5")
        monkeypatch.setenv("TASKSYNC_MAX_RETRIES", "0")
        monkeypatch.setenv("TASKSYNC_PAGE_SIZE", "25")
        monkeypatch.setenv("TASKSYNC_RESYNC_ON_RECONNECT", "false")
        monkeypatch.setenv("TASKSYNC_EVENT_LOG", "1")
        monkeypatch.setenv("TASKSYNC_PROJECT", "demo")

        result = apply_env_overrides(get_default_config())

        assert result["remote"]["base_url"] == "https://api.example.com"
        assert result["remote"]["timeout_seconds"] == 2.5
        assert result["remote"]["max_retries"] == 0
        assert result["cache"]["page_size"] == 25
        assert result["cache"]["tombstone_limit"] == 1024
        assert result["realtime"]["resync_on_reconnect"] is False
        assert result["logging"] == {"event_log": True, "project_name": "demo"}

    @pytest.mark.parametrize(
        "var,value",
        [
            ("TASKSYNC_TIMEOUT", "soon"),
            ("TASKSYNC_TIMEOUT", "-1"),
            ("TASKSYNC_MAX_RETRIES", "-2"),
            ("TASKSYNC_PAGE_SIZE", "0"),
        ],
    )
    def test_invalid_values_ignored(self, monkeypatch, capsys, var, value):
        monkeypatch.setenv(var, value)

        result = apply_env_overrides(get_default_config())

        assert result == get_default_config()
        assert f"Warning: Invalid {var} value '{value}'" in capsys.readouterr().out

    def test_empty_value_ignored(self, monkeypatch):
        monkeypatch.setenv("TASKSYNC_PAGE_SIZE", "")
        assert apply_env_overrides(get_default_config()) == get_default_config()


# ==============================================================================
# load_config
# ==============================================================================


class TestLoadConfig:
    """Test layered config loading."""

    def test_defaults(self, tmp_path):
        config = load_config(tmp_path)

        assert isinstance(config, SyncConfig)
        assert config.remote.base_url is None
        assert config.remote.timeout_seconds == 30.0
        assert config.cache.page_size == 10
        assert config.realtime.entity_name == "tasks"
        assert config.logging.event_log is False

    def test_precedence(self, tmp_path, monkeypatch):
        write_json(
            get_user_config_path(),
            {"cache": {"page_size": 20, "tombstone_limit": 50}, "remote": "https://user.test"},
        )
        write_json(get_project_config_path(tmp_path), {"cache": {"page_size": 30}})
        monkeypatch.setenv("TASKSYNC_BASE_URL", "https://env.test/")

        config = load_config(tmp_path, use_cache=False)

        assert config.cache.page_size == 30
        assert config.cache.tombstone_limit == 50
        assert config.remote.base_url == "https://env.test"

    def test_remote_shorthand(self, tmp_path):
        write_json(get_project_config_path(tmp_path), {"remote": "https://api.test/"})
        config = load_config(tmp_path, use_cache=False)
        assert config.remote == RemoteConfig(base_url="https://api.test")

    def test_invalid_config_raises(self, tmp_path):
        write_json(get_project_config_path(tmp_path), {"cache": {"page_size": 1000}})
        with pytest.raises(ValidationError):
            load_config(tmp_path, use_cache=False)

    def test_unknown_sections_kept(self, tmp_path):
        write_json(get_project_config_path(tmp_path), {"dashboard": {"theme": "dark"}})
        config = load_config(tmp_path, use_cache=False)
        assert config.model_extra == {"dashboard": {"theme": "dark"}}

    def test_cache(self, tmp_path):
        first = load_config(tmp_path)
        write_json(get_project_config_path(tmp_path), {"cache": {"page_size": 3}})

        assert load_config(tmp_path) is first
        clear_cache()
        assert load_config(tmp_path).cache.page_size == 3


class TestLayeredEnv:
    """Test .env file layering."""

    def test_project_overrides_user_not_os(self, tmp_path, monkeypatch):
        user_env = tmp_path / "user.env"
        user_env.write_text("TS_A=user\nTS_B=user\nTS_C=user\n")
        project_env = tmp_path / ".env"
        project_env.write_text("TS_B=project\nTS_C=project\n")
        monkeypatch.setenv("TS_C", "os")
        for key in ("TS_A", "TS_B"):
            monkeypatch.delenv(key, raising=False)

        loaded = load_layered_env(
            project_dir=tmp_path,
            user_env_paths=[user_env],
            project_env_paths=[project_env],
        )

        try:
            assert loaded == {"TS_A", "TS_B"}
            assert os.environ["TS_A"] == "user"
            assert os.environ["TS_B"] == "project"
            assert os.environ["TS_C"] == "os"
        finally:
            for key in loaded:
                os.environ.pop(key, None)

    def test_missing_files(self, tmp_path):
        assert load_layered_env(project_dir=tmp_path, user_env_paths=[tmp_path / "none"]) == set()

    def test_default_locations(self, tmp_path, monkeypatch):
        """The user file lives under XDG; .env.local beats the project .env."""
        config_home = tmp_path / "config"
        (config_home / "tasksync").mkdir(parents=True)
        (config_home / "tasksync" / ".env").write_text("TS_USER=1\nTS_LOCAL=user\n")
        project = tmp_path / "project"
        project.mkdir()
        (project / ".env").write_text("TS_LOCAL=project\n")
        (project / ".env.local").write_text("TS_LOCAL=local\n")
        monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
        for key in ("TS_USER", "TS_LOCAL"):
            monkeypatch.delenv(key, raising=False)

        assert get_user_env_path() == config_home / "tasksync" / ".env"
        loaded = load_layered_env(project_dir=project)

        try:
            assert loaded == {"TS_USER", "TS_LOCAL"}
            assert os.environ["TS_USER"] == "1"
            assert os.environ["TS_LOCAL"] == "local"
        finally:
            for key in loaded:
                os.environ.pop(key, None)

    def test_read_env_files_skips_bare_keys(self, tmp_path):
        first = tmp_path / "first.env"
        first.write_text("TS_A=1\nTS_BARE\n")
        second = tmp_path / "second.env"
        second.write_text("TS_A=2\n")

        assert read_env_files([first, tmp_path / "missing.env", second]) == {"TS_A": "2"}
