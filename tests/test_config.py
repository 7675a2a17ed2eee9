"""Tests for configuration management."""

from pathlib import Path

import pytest

from opsdeck.config import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_CONFIG_FILE,
    OpsdeckConfig,
    SchedulerConfig,
    ValidationError,
    clear_config_cache,
    ensure_directories,
    get_config,
    load_config,
    set_config,
    validate_config,
)


class TestConfigDefaults:
    """Test default configuration values."""

    def test_default_paths(self):
        """Test default config location."""
        assert DEFAULT_CONFIG_DIR == Path.home() / ".config" / "opsdeck"
        assert DEFAULT_CONFIG_FILE == "config.toml"

    def test_scheduler_defaults(self):
        """Test scheduler defaults."""
        config = SchedulerConfig()
        assert config.enabled is True
        assert config.default_timeout == 300.0
        assert config.default_retry_count == 0
        assert config.default_retry_delay == 60.0
        assert config.history_retention_days == 30
        assert config.max_page_size == 100

    def test_database_url_derived_from_data_dir(self, tmp_path):
        """Test that the database lives in the data directory by default."""
        config = OpsdeckConfig(data_dir=tmp_path)
        assert config.database_url == f"sqlite:///{tmp_path}/opsdeck.db"

    def test_explicit_database_url_kept(self, tmp_path):
        config = OpsdeckConfig(data_dir=tmp_path, database_url="sqlite:///:memory:")
        assert config.database_url == "sqlite:///:memory:"


class TestValidationError:
    """Test ValidationError dataclass."""

    def test_validation_error_str(self):
        """Test ValidationError string representation."""
        error = ValidationError(
            field="scheduler.default_timeout",
            message="Must be greater than zero",
            severity="error",
        )
        assert str(error) == "[ERROR] scheduler.default_timeout: Must be greater than zero"


class TestLoadConfig:
    """Test load_config function."""

    def test_missing_file_gives_defaults(self, tmp_path):
        """Test loading when the config file does not exist."""
        config = load_config(tmp_path / "missing.toml")
        assert config.scheduler == SchedulerConfig()

    def test_load_from_toml(self, tmp_path):
        """Test loading sections and paths from a TOML file."""
        config_path = tmp_path / "config.toml"
        config_path.write_text(
            f'data_dir = "{tmp_path}/data"\n'
            "\n"
            "[scheduler]\n"
            "default_retry_count = 3\n"
            "default_retry_delay = 15.0\n"
            'cleanup_cron = "@daily"\n'
            "\n"
            "[handlers]\n"
            "load_entry_points = false\n"
            "\n"
            "[logging]\n"
            'level = "DEBUG"\n'
            f'file = "{tmp_path}/opsdeck.log"\n'
        )

        config = load_config(config_path)

        assert config.scheduler.default_retry_count == 3
        assert config.scheduler.default_retry_delay == 15.0
        assert config.scheduler.cleanup_cron == "@daily"
        assert config.handlers.load_entry_points is False
        assert config.logging.level == "DEBUG"
        assert config.logging.file == tmp_path / "opsdeck.log"
        assert config.data_dir == tmp_path / "data"
        assert config.database_url == f"sqlite:///{tmp_path}/data/opsdeck.db"

    def test_unknown_keys_ignored(self, tmp_path):
        """Test that unknown keys do not break loading."""
        config_path = tmp_path / "config.toml"
        config_path.write_text("[scheduler]\nnot_a_setting = 1\ndefault_timeout = 10\n")

        config = load_config(config_path)

        assert config.scheduler.default_timeout == 10
        assert not hasattr(config.scheduler, "not_a_setting")

    def test_malformed_file_gives_defaults(self, tmp_path):
        """Test that a broken TOML file falls back to defaults."""
        config_path = tmp_path / "config.toml"
        config_path.write_text("[scheduler\n")

        config = load_config(config_path)
        assert config.scheduler == SchedulerConfig()

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        """Test that environment variables win over the file."""
        config_path = tmp_path / "config.toml"
        config_path.write_text("[scheduler]\ndefault_retry_count = 3\n")
        monkeypatch.setenv("OPSDECK_DEFAULT_RETRY_COUNT", "5")
        monkeypatch.setenv("OPSDECK_SCHEDULER_ENABLED", "false")
        monkeypatch.setenv("OPSDECK_LOG_LEVEL", "warning")

        config = load_config(config_path)

        assert config.scheduler.default_retry_count == 5
        assert config.scheduler.enabled is False
        assert config.logging.level == "WARNING"

    def test_env_data_dir(self, tmp_path, monkeypatch):
        """Test OPSDECK_DATA_DIR moves the database along."""
        monkeypatch.setenv("OPSDECK_DATA_DIR", str(tmp_path))

        config = load_config(tmp_path / "missing.toml")

        assert config.data_dir == tmp_path
        assert config.database_url == f"sqlite:///{tmp_path}/opsdeck.db"

    def test_env_database_url(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPSDECK_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("OPSDECK_DATABASE_URL", "postgresql://localhost/opsdeck")

        config = load_config(tmp_path / "missing.toml")
        assert config.database_url == "postgresql://localhost/opsdeck"

    def test_config_dir_env_locates_file(self, tmp_path, monkeypatch):
        """Test that OPSDECK_CONFIG_DIR is used to find config.toml."""
        (tmp_path / "config.toml").write_text("[scheduler]\nsync_interval = 5\n")
        monkeypatch.setenv("OPSDECK_CONFIG_DIR", str(tmp_path))

        config = load_config()

        assert config.scheduler.sync_interval == 5
        assert config.config_dir == tmp_path


class TestGlobalConfig:
    """Test the cached global configuration."""

    def test_set_and_get(self, tmp_path):
        config = OpsdeckConfig(data_dir=tmp_path, config_dir=tmp_path)
        set_config(config)
        assert get_config() is config

        clear_config_cache()
        assert get_config() is not config

    def test_ensure_directories(self, tmp_path):
        config = OpsdeckConfig(data_dir=tmp_path / "data", config_dir=tmp_path / "conf")
        ensure_directories(config)

        assert (tmp_path / "data").is_dir()
        assert (tmp_path / "conf").is_dir()


class TestValidateConfig:
    """Test validate_config function."""

    def test_defaults_are_valid(self, tmp_path):
        """Test that the default configuration has no problems."""
        assert validate_config(OpsdeckConfig(data_dir=tmp_path)) == []

    @pytest.mark.parametrize(
        "attr,value,field",
        [
            ("default_timeout", 0, "scheduler.default_timeout"),
            ("default_retry_count", -1, "scheduler.default_retry_count"),
            ("default_retry_delay", -5.0, "scheduler.default_retry_delay"),
            ("misfire_grace_time", 0, "scheduler.misfire_grace_time"),
            ("history_retention_days", -1, "scheduler.history_retention_days"),
            ("cleanup_cron", "every hour", "scheduler.cleanup_cron"),
            ("sync_interval", -1, "scheduler.sync_interval"),
            ("max_page_size", 0, "scheduler.max_page_size"),
        ],
    )
    def test_scheduler_errors(self, tmp_path, attr, value, field):
        """Test that invalid scheduler settings are errors."""
        config = OpsdeckConfig(data_dir=tmp_path)
        setattr(config.scheduler, attr, value)

        errors = validate_config(config)

        assert [(e.field, e.severity) for e in errors] == [(field, "error")]

    def test_http_timeout(self, tmp_path):
        config = OpsdeckConfig(data_dir=tmp_path)
        config.handlers.http_timeout = 0

        assert [e.field for e in validate_config(config)] == ["handlers.http_timeout"]

    def test_warnings(self, tmp_path):
        """Test that unknown log level and database scheme are warnings."""
        config = OpsdeckConfig(data_dir=tmp_path, database_url="mongodb://localhost")
        config.logging.level = "CHATTY"

        errors = validate_config(config)

        assert {e.field for e in errors} == {"logging.level", "database_url"}
        assert all(e.severity == "warning" for e in errors)
