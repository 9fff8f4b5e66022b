"""Tests for configuration management."""

import pytest
from pydantic import ValidationError

from calsync_store.config import create_example_config, load_settings

from conftest import TestSettings


class TestSettingsValidation:
    """Tests for Settings."""

    def test_defaults(self, tmp_path):
        settings = TestSettings(data_dir=tmp_path, default_timezone="UTC")

        assert settings.database_url == f"sqlite:///{tmp_path}/calsync-store.db"
        assert settings.max_operations_per_commit is None
        assert settings.strict_status_updates is True
        assert settings.log_level == "INFO"

    def test_log_level_is_normalized(self, tmp_path):
        assert TestSettings(data_dir=tmp_path, log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level(self, tmp_path):
        with pytest.raises(ValidationError):
            TestSettings(data_dir=tmp_path, log_level="LOUD")

    def test_invalid_timezone(self, tmp_path):
        with pytest.raises(ValidationError):
            TestSettings(data_dir=tmp_path, default_timezone="Mars/Olympus")

    def test_invalid_max_operations(self, tmp_path):
        with pytest.raises(ValidationError):
            TestSettings(data_dir=tmp_path, max_operations_per_commit=0)

    def test_environment_variables(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MAX_OPERATIONS_PER_COMMIT", "50")
        monkeypatch.setenv("OWNER_ACCOUNT", "me@example.com")

        settings = TestSettings(data_dir=tmp_path)

        assert settings.max_operations_per_commit == 50
        assert settings.owner_account == "me@example.com"

    def test_required_settings(self, tmp_path):
        settings = TestSettings(data_dir=tmp_path)
        assert settings.validate_required_settings() == ["OWNER_ACCOUNT"]

        settings.owner_account = "me@example.com"
        assert settings.validate_required_settings() == []


class TestConfigFiles:
    """Tests for configuration files."""

    def test_load_settings_from_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("OWNER_ACCOUNT", raising=False)
        data_dir = tmp_path / "data"
        config = tmp_path / "test.env"
        config.write_text(f"DATA_DIR={data_dir}\nOWNER_ACCOUNT=me@example.com\nDEFAULT_TIMEZONE=Europe/Vienna\n")

        settings = load_settings(str(config))

        assert settings.owner_account == "me@example.com"
        assert settings.default_timezone == "Europe/Vienna"
        assert data_dir.is_dir()

    def test_create_example_config(self, tmp_path, monkeypatch):
        path = tmp_path / ".env"
        create_example_config(path)

        content = path.read_text()
        assert "STRICT_STATUS_UPDATES=true" in content
        assert "DEFAULT_TIMEZONE=UTC" in content

        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
        settings = load_settings(str(path))
        assert settings.strict_status_updates is True
