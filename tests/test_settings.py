"""Tests for runtime settings loading."""

import json
from pathlib import Path

import pytest

from config import get_settings, load_settings, reset_settings, set_settings
from config.settings import Settings


def write_settings(path: Path, data) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestDefaults:
    """Test built-in defaults."""

    def test_defaults_without_file_or_env(self, tmp_path):
        """Test a missing file and empty environment give the defaults."""
        settings = load_settings(tmp_path / "missing.json", env={})

        assert settings.server.host == "127.0.0.1"
        assert settings.server.port == 3000
        assert settings.timeouts.terminate == 2.0
        assert settings.paths.metrics_file is None
        assert settings.logging.level == "WARNING"

    def test_get_timeout(self):
        """Test named timeouts fall back to the default for unknown names."""
        timeouts = Settings().timeouts
        assert timeouts.get_timeout("list_ports") == 5.0
        assert timeouts.get_timeout("nonexistent", 7.5) == 7.5


class TestFile:
    """Test the JSON settings file."""

    def test_file_values_are_coerced(self, tmp_path):
        """Test values take the type of the field they set."""
        path = write_settings(
            tmp_path / "config.json",
            {
                "paths": {"esp_path": "~/sdk", "metrics_file": str(tmp_path / "m.json")},
                "timeouts": {"terminate": "0.5"},
                "server": {"port": "8000", "cors_origins": "http://a, http://b"},
                "logging": {"console_enabled": "no"},
            },
        )

        settings = load_settings(path, env={})

        assert settings.paths.esp_path == Path.home() / "sdk"
        assert settings.paths.metrics_file == tmp_path / "m.json"
        assert settings.timeouts.terminate == 0.5
        assert settings.server.port == 8000
        assert settings.server.cors_origins == ["http://a", "http://b"]
        assert settings.logging.console_enabled is False

    def test_invalid_json(self, tmp_path):
        """Test a malformed file is rejected with its path."""
        path = tmp_path / "config.json"
        path.write_text("{oops", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid settings file"):
            load_settings(path, env={})

    def test_file_must_hold_an_object(self, tmp_path):
        """Test a JSON list is rejected."""
        path = write_settings(tmp_path / "config.json", ["paths"])
        with pytest.raises(ValueError, match="expected an object"):
            load_settings(path, env={})

    def test_unknown_section(self, tmp_path):
        """Test misspelled sections are reported."""
        path = write_settings(tmp_path / "config.json", {"timeout": {"terminate": 1}})
        with pytest.raises(ValueError, match="Unknown settings section: timeout"):
            load_settings(path, env={})

    def test_unknown_key(self, tmp_path):
        """Test misspelled keys are reported with their section."""
        path = write_settings(tmp_path / "config.json", {"server": {"hots": "0.0.0.0"}})
        with pytest.raises(ValueError, match="Unknown setting: server.hots"):
            load_settings(path, env={})


class TestEnvironment:
    """Test ESPCLI_* overrides."""

    def test_env_overrides_file(self, tmp_path):
        """Test environment variables win over the file."""
        path = write_settings(tmp_path / "config.json", {"server": {"port": 4000}})

        settings = load_settings(
            path,
            env={
                "ESPCLI_PORT": "5000",
                "ESPCLI_IDF_PATH": "/opt/esp-idf",
                "ESPCLI_LOG_LEVEL": "DEBUG",
            },
        )

        assert settings.server.port == 5000
        assert settings.paths.idf_path == Path("/opt/esp-idf")
        assert settings.logging.level == "DEBUG"

    def test_empty_env_value_is_ignored(self, tmp_path):
        """Test an empty variable does not clear a setting."""
        settings = load_settings(tmp_path / "missing.json", env={"ESPCLI_HOST": ""})
        assert settings.server.host == "127.0.0.1"


class TestProcessSettings:
    """Test the process-wide settings accessor."""

    def test_set_and_get(self):
        """Test set_settings replaces what get_settings returns."""
        settings = Settings()
        set_settings(settings)
        assert get_settings() is settings

    def test_reset_reloads(self, monkeypatch):
        """Test a reset loads fresh settings on next access."""
        monkeypatch.setenv("ESPCLI_MCP_PORT", "9999")
        before = get_settings()

        reset_settings()

        after = get_settings()
        assert after is not before
        assert after.server.mcp_port == 9999
