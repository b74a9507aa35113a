# compensation-core/config.py
"""
Configuration management for the compensation core.
Loads from .env, exposes static process-wide values.

Business settings (BinarySettings, packages) are NOT stored here - they are
owned by the settings collaborator and passed into every operation.
"""
import os
import logging
from typing import Any, Callable, Dict
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when an environment value cannot be parsed."""


class Config:
    """
    Process-wide settings. Values come from DEFAULTS, then the environment,
    then runtime overrides.

    Usage:
        Config.initialize_from_env()
        url = Config.get(Config.DATABASE_URL)

        # tests and scripts may override at runtime
        Config.set(Config.SETTINGS_CACHE_TTL, 0)
    """

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION KEYS
    # ═══════════════════════════════════════════════════════════════════════

    # Database
    DATABASE_URL = "DATABASE_URL"
    DEPENDENCY_TIMEOUT = "DEPENDENCY_TIMEOUT"

    # Logging
    LOG_LEVEL = "LOG_LEVEL"

    # Binary tree
    PLACEMENT_MAX_RETRIES = "PLACEMENT_MAX_RETRIES"
    MAX_TREE_DEPTH = "MAX_TREE_DEPTH"

    # Settings collaborator
    SETTINGS_CACHE_TTL = "SETTINGS_CACHE_TTL"

    # Scheduler
    SCHEDULER_TIMEZONE = "SCHEDULER_TIMEZONE"

    # ═══════════════════════════════════════════════════════════════════════
    # DEFAULTS
    # ═══════════════════════════════════════════════════════════════════════

    DEFAULTS: Dict[str, Any] = {
        DATABASE_URL: "sqlite:///compensation.db",
        DEPENDENCY_TIMEOUT: 5,
        LOG_LEVEL: "INFO",
        PLACEMENT_MAX_RETRIES: 3,
        MAX_TREE_DEPTH: 10000,
        SETTINGS_CACHE_TTL: 60,
        SCHEDULER_TIMEZONE: "UTC",
    }

    # ═══════════════════════════════════════════════════════════════════════
    # ENVIRONMENT PARSERS
    # ═══════════════════════════════════════════════════════════════════════

    # Env variable names match the keys
    _PARSERS: Dict[str, Callable[[str], Any]] = {
        DATABASE_URL: str,
        DEPENDENCY_TIMEOUT: float,
        LOG_LEVEL: str.upper,
        PLACEMENT_MAX_RETRIES: int,
        MAX_TREE_DEPTH: int,
        SETTINGS_CACHE_TTL: float,
        SCHEDULER_TIMEZONE: str,
    }

    _config: Dict[str, Any] = dict(DEFAULTS)
    _initialized: bool = False

    @classmethod
    def initialize_from_env(cls) -> None:
        """
        Read every known key from the environment (.env is optional).

        Unset keys keep their defaults.

        Raises:
            ConfigurationError: If a numeric value cannot be parsed
        """
        load_dotenv()
        logger.info("Reading compensation config from environment...")

        loaded = []
        for key, parse in cls._PARSERS.items():
            raw = os.getenv(key)
            if raw is None:
                continue
            try:
                cls._config[key] = parse(raw)
            except ValueError as e:
                logger.error(f"Bad value for {key}: {raw!r}")
                raise ConfigurationError(f"{key}: {e}") from e
            loaded.append(key)

        cls._initialized = True
        logger.info(f"Config ready ({len(loaded)} values from environment)")

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """Value for key, or default when the key is unknown."""
        return cls._config.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any, source: str = "runtime") -> None:
        """
        Override one value in the running process.

        Args:
            key: One of the Config key constants
            value: New value, already parsed
            source: Who changed it, for the debug log
        """
        cls._config[key] = value
        logger.debug(f"Config {key} -> {value!r} ({source})")

    @classmethod
    def reset(cls) -> None:
        """Restore defaults. Used by tests."""
        cls._config = dict(cls.DEFAULTS)
        cls._initialized = False
