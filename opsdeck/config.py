"""
Opsdeck Configuration Management.

Handles loading and validating configuration from various sources:
- Default values
- Configuration file (TOML)
- Environment variables
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "opsdeck"
DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "opsdeck"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class SchedulerConfig:
    """Configuration for the job scheduler."""

    enabled: bool = True

    # APScheduler timer behaviour
    misfire_grace_time: int = 300  # seconds

    # Job defaults applied when a create request leaves them out
    default_timeout: float = 300.0  # seconds
    default_retry_count: int = 0
    default_retry_delay: float = 60.0  # seconds

    # Execution history retention (0 disables cleanup)
    history_retention_days: int = 30
    cleanup_cron: str = "0 * * * *"  # Hourly

    # Listing
    max_page_size: int = 100

    # How often the running engine re-reads the store for jobs changed by
    # another process, in seconds (0 disables)
    sync_interval: int = 60


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class HandlerConfig:
    """Configuration for job handlers."""

    # Load handlers published under the opsdeck.handlers entry point group
    load_entry_points: bool = True

    # Default timeout for built-in HTTP handlers, in seconds
    http_timeout: float = 30.0


@dataclass
class OpsdeckConfig:
    """Main configuration container for Opsdeck."""

    # Paths
    config_dir: Path = DEFAULT_CONFIG_DIR
    data_dir: Path = DEFAULT_DATA_DIR

    # Sub-configurations
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    handlers: HandlerConfig = field(default_factory=HandlerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Database
    database_url: str = ""

    def __post_init__(self):
        """Derive the database URL from the data directory if unset."""
        if not self.database_url:
            self.database_url = f"sqlite:///{self.data_dir}/opsdeck.db"


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = "OPSDECK_"
) -> OpsdeckConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/opsdeck/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = OpsdeckConfig()

    if config_path is None:
        env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
        if env_config_dir:
            config_path = Path(env_config_dir) / DEFAULT_CONFIG_FILE
        else:
            config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

    if config_path.exists():
        config = _load_from_file(config_path, config)

    config = _load_from_env(config, env_prefix)

    return config


def _load_from_file(path: Path, config: OpsdeckConfig) -> OpsdeckConfig:
    """Load configuration from a TOML file."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return config

    for section_name in ("scheduler", "handlers", "logging"):
        section = getattr(config, section_name)
        for key, value in data.get(section_name, {}).items():
            if hasattr(section, key):
                setattr(section, key, value)
            else:
                logger.warning(f"Ignoring unknown config key {section_name}.{key}")

    if "config_dir" in data:
        config.config_dir = Path(data["config_dir"])
    if "data_dir" in data:
        config.data_dir = Path(data["data_dir"])
        if "database_url" not in data:
            config.database_url = f"sqlite:///{config.data_dir}/opsdeck.db"
    if "database_url" in data:
        config.database_url = data["database_url"]

    if isinstance(config.logging.file, str):
        config.logging.file = Path(config.logging.file)

    return config


def _env_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _load_from_env(config: OpsdeckConfig, prefix: str) -> OpsdeckConfig:
    """Load configuration from environment variables."""

    # Scheduler settings
    if env_val := os.environ.get(f"{prefix}SCHEDULER_ENABLED"):
        config.scheduler.enabled = _env_bool(env_val)
    if env_val := os.environ.get(f"{prefix}DEFAULT_TIMEOUT"):
        config.scheduler.default_timeout = float(env_val)
    if env_val := os.environ.get(f"{prefix}DEFAULT_RETRY_COUNT"):
        config.scheduler.default_retry_count = int(env_val)
    if env_val := os.environ.get(f"{prefix}DEFAULT_RETRY_DELAY"):
        config.scheduler.default_retry_delay = float(env_val)
    if env_val := os.environ.get(f"{prefix}HISTORY_RETENTION_DAYS"):
        config.scheduler.history_retention_days = int(env_val)
    if env_val := os.environ.get(f"{prefix}SYNC_INTERVAL"):
        config.scheduler.sync_interval = int(env_val)

    # Handler settings
    if env_val := os.environ.get(f"{prefix}LOAD_ENTRY_POINTS"):
        config.handlers.load_entry_points = _env_bool(env_val)

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()

    # Paths
    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)
    if env_val := os.environ.get(f"{prefix}DATA_DIR"):
        config.data_dir = Path(env_val)
        if not os.environ.get(f"{prefix}DATABASE_URL"):
            config.database_url = f"sqlite:///{config.data_dir}/opsdeck.db"
    if env_val := os.environ.get(f"{prefix}DATABASE_URL"):
        config.database_url = env_val

    return config


def ensure_directories(config: OpsdeckConfig) -> None:
    """Ensure all required directories exist."""
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.data_dir.mkdir(parents=True, exist_ok=True)


# Global configuration instance (lazy-loaded, CLI use only)
_global_config: Optional[OpsdeckConfig] = None


def get_config() -> OpsdeckConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: OpsdeckConfig) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    """Clear the global configuration cache."""
    global _global_config
    _global_config = None


def validate_config(config: Optional[OpsdeckConfig] = None) -> List[ValidationError]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate (default: loaded from file)

    Returns:
        List of validation errors (empty if valid)
    """
    from opsdeck.scheduler.triggers import is_valid_cron

    if config is None:
        config = load_config()

    errors: List[ValidationError] = []
    sched = config.scheduler

    if sched.default_timeout <= 0:
        errors.append(ValidationError(
            field="scheduler.default_timeout",
            message="Must be greater than zero",
            severity="error",
        ))

    if sched.default_retry_count < 0:
        errors.append(ValidationError(
            field="scheduler.default_retry_count",
            message="Must not be negative",
            severity="error",
        ))

    if sched.default_retry_delay < 0:
        errors.append(ValidationError(
            field="scheduler.default_retry_delay",
            message="Must not be negative",
            severity="error",
        ))

    if sched.misfire_grace_time <= 0:
        errors.append(ValidationError(
            field="scheduler.misfire_grace_time",
            message="Must be greater than zero",
            severity="error",
        ))

    if sched.history_retention_days < 0:
        errors.append(ValidationError(
            field="scheduler.history_retention_days",
            message="Must not be negative (0 disables cleanup)",
            severity="error",
        ))

    if not is_valid_cron(sched.cleanup_cron):
        errors.append(ValidationError(
            field="scheduler.cleanup_cron",
            message=f"Invalid cron expression: {sched.cleanup_cron}",
            severity="error",
        ))

    if sched.sync_interval < 0:
        errors.append(ValidationError(
            field="scheduler.sync_interval",
            message="Must not be negative (0 disables store sync)",
            severity="error",
        ))

    if sched.max_page_size < 1:
        errors.append(ValidationError(
            field="scheduler.max_page_size",
            message="Must be at least 1",
            severity="error",
        ))

    if config.handlers.http_timeout <= 0:
        errors.append(ValidationError(
            field="handlers.http_timeout",
            message="Must be greater than zero",
            severity="error",
        ))

    if config.logging.level.upper() not in VALID_LOG_LEVELS:
        errors.append(ValidationError(
            field="logging.level",
            message=f"Unknown log level '{config.logging.level}'",
            severity="warning",
        ))

    if not config.database_url.startswith(("sqlite:", "postgresql", "mysql")):
        errors.append(ValidationError(
            field="database_url",
            message="Unrecognized database URL scheme",
            severity="warning",
        ))

    return errors
