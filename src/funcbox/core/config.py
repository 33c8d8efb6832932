"""
Configuration management system for funcbox.

Handles loading, validation, and environment overrides of all engine
settings with proper defaults.
"""

import os
import json
import tempfile
import yaml
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict, fields
import copy
import threading

from .exceptions import ConfigFileError, ConfigValidationError


@dataclass
class RuntimeConfig:
    """Docker substrate configuration."""

    images: Dict[str, str] = field(
        default_factory=lambda: {
            "javascript": "node:18-alpine",
            "python": "python:3.11-alpine",
        }
    )
    docker_base_url: Optional[str] = None  # None -> docker.from_env()
    container_workdir: str = "/app"
    network_disabled: bool = True
    pids_limit: int = 64
    security_opt: List[str] = field(default_factory=lambda: ["no-new-privileges"])
    cap_drop: List[str] = field(default_factory=lambda: ["ALL"])
    stop_timeout: int = 5  # seconds


@dataclass
class PoolConfig:
    """Warm sandbox pool configuration."""

    min_size: int = 2
    max_size: int = 10
    idle_timeout: float = 300.0  # seconds
    sweep_interval: float = 60.0  # seconds
    acquire_timeout: float = 30.0  # seconds
    warmup: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class PackagerConfig:
    """Bundle generation configuration."""

    bundle_root: str = field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "funcbox-bundles")
    )


@dataclass
class ExecutorConfig:
    """Invocation pipeline configuration."""

    strategy: str = "ephemeral"  # "ephemeral" or "pooled"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    console_logging: bool = True
    file_logging: bool = False
    log_file: str = "logs/funcbox.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class Config:
    """Main configuration class for funcbox."""

    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    packager: PackagerConfig = field(default_factory=PackagerConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Runtime state
    config_file: Optional[str] = None


_SECTIONS = {
    "runtime": RuntimeConfig,
    "pool": PoolConfig,
    "packager": PackagerConfig,
    "executor": ExecutorConfig,
    "logging": LoggingConfig,
}

VALID_STRATEGIES = ("ephemeral", "pooled")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigManager:
    """
    Configuration manager with loading, validation and env overrides.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to configuration file (YAML or JSON)
        """
        self.config_path = config_path
        self.config = Config()
        self._lock = threading.RLock()

        if config_path:
            self.load_config(config_path)
        else:
            self._apply_env_overrides()
            self._validate_config()

    def load_config(self, config_path: Optional[str] = None) -> Config:
        """
        Load configuration from file.

        Args:
            config_path: Path to configuration file

        Returns:
            Loaded Config object

        Raises:
            ConfigFileError: If file cannot be loaded
            ConfigValidationError: If configuration is invalid
        """
        if config_path:
            self.config_path = config_path

        if not self.config_path or not os.path.exists(self.config_path):
            with self._lock:
                self.config = Config()
                self._apply_env_overrides()
                self._validate_config()
            return self.config

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                if self.config_path.endswith((".yaml", ".yml")):
                    data = yaml.safe_load(f) or {}
                elif self.config_path.endswith(".json"):
                    data = json.load(f)
                else:
                    raise ConfigFileError(
                        self.config_path, "load_config", "unsupported config format"
                    )
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigFileError(self.config_path, "load_config", f"Invalid format: {e}")
        except OSError as e:
            raise ConfigFileError(self.config_path, "load_config", str(e))

        if not isinstance(data, dict):
            raise ConfigFileError(self.config_path, "load_config", "top level must be a mapping")

        with self._lock:
            self.config = self._merge_with_defaults(data)
            self.config.config_file = self.config_path
            self._apply_env_overrides()
            self._validate_config()
        return self.config

    def save_config(self, config_path: Optional[str] = None) -> bool:
        """
        Save current configuration to file.

        Args:
            config_path: Path to save configuration (uses current if None)

        Returns:
            True if saved successfully
        """
        if config_path:
            self.config_path = config_path

        if not self.config_path:
            raise ConfigFileError("<unset>", "save_config", "No configuration path specified")

        config_dict = asdict(self.config)
        config_dict.pop("config_file", None)

        try:
            config_dir = os.path.dirname(self.config_path)
            if config_dir:
                os.makedirs(config_dir, exist_ok=True)

            with open(self.config_path, "w", encoding="utf-8") as f:
                if self.config_path.endswith((".yaml", ".yml")):
                    yaml.dump(config_dict, f, default_flow_style=False, indent=2)
                else:
                    json.dump(config_dict, f, indent=2)
        except OSError as e:
            raise ConfigFileError(self.config_path, "save_config", str(e))

        return True

    def _merge_with_defaults(self, data: Dict[str, Any]) -> Config:
        """Merge loaded data over the default configuration."""
        merged = self._deep_merge(asdict(Config()), data)

        kwargs = {}
        for name, section_cls in _SECTIONS.items():
            section_data = merged.get(name) or {}
            known = {f.name for f in fields(section_cls)}
            unknown = set(section_data) - known
            if unknown:
                raise ConfigValidationError(
                    f"{name}.{sorted(unknown)[0]}", section_data[sorted(unknown)[0]],
                    "unknown configuration key",
                )
            kwargs[name] = section_cls(**section_data)
        return Config(**kwargs)

    def _deep_merge(self, default: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = copy.deepcopy(default)

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _validate_config(self):
        """
        Validate configuration values.

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        pool = self.config.pool
        if pool.min_size < 0:
            raise ConfigValidationError("pool.min_size", pool.min_size, "must be >= 0")
        if pool.max_size < 1:
            raise ConfigValidationError("pool.max_size", pool.max_size, "must be >= 1")
        if pool.min_size > pool.max_size:
            raise ConfigValidationError("pool.min_size", pool.min_size, "must be <= max_size")
        for name in ("idle_timeout", "sweep_interval", "acquire_timeout"):
            if getattr(pool, name) <= 0:
                raise ConfigValidationError(f"pool.{name}", getattr(pool, name), "must be > 0")

        for entry in pool.warmup:
            if not isinstance(entry, dict) or "language" not in entry:
                raise ConfigValidationError("pool.warmup", entry, "entries need a language")

        if not self.config.runtime.images:
            raise ConfigValidationError("runtime.images", {}, "at least one image required")

        if self.config.executor.strategy not in VALID_STRATEGIES:
            raise ConfigValidationError(
                "executor.strategy",
                self.config.executor.strategy,
                f"must be one of {', '.join(VALID_STRATEGIES)}",
            )

        if self.config.logging.level.upper() not in VALID_LOG_LEVELS:
            raise ConfigValidationError(
                "logging.level", self.config.logging.level, "invalid log level"
            )

    def _apply_env_overrides(self):
        """Apply environment variable overrides."""
        if "FUNCBOX_STRATEGY" in os.environ:
            self.config.executor.strategy = os.environ["FUNCBOX_STRATEGY"].strip().lower()

        if "FUNCBOX_BUNDLE_ROOT" in os.environ:
            self.config.packager.bundle_root = os.environ["FUNCBOX_BUNDLE_ROOT"]

        if "FUNCBOX_DOCKER_BASE_URL" in os.environ:
            self.config.runtime.docker_base_url = os.environ["FUNCBOX_DOCKER_BASE_URL"]

        if "FUNCBOX_LOG_LEVEL" in os.environ:
            self.config.logging.level = os.environ["FUNCBOX_LOG_LEVEL"].upper()

        for env_name, attr, cast in (
            ("FUNCBOX_POOL_MIN_SIZE", "min_size", int),
            ("FUNCBOX_POOL_MAX_SIZE", "max_size", int),
            ("FUNCBOX_IDLE_TIMEOUT", "idle_timeout", float),
        ):
            if env_name in os.environ:
                try:
                    setattr(self.config.pool, attr, cast(os.environ[env_name]))
                except ValueError:
                    pass

    def get_config_summary(self) -> Dict[str, Any]:
        """Get summary of current configuration."""
        return {
            "config_file": self.config.config_file,
            "strategy": self.config.executor.strategy,
            "languages": sorted(self.config.runtime.images),
            "pool": {
                "min_size": self.config.pool.min_size,
                "max_size": self.config.pool.max_size,
                "idle_timeout": self.config.pool.idle_timeout,
            },
            "bundle_root": self.config.packager.bundle_root,
            "log_level": self.config.logging.level,
        }


# Global configuration manager instance
_config_manager = None


def get_config_manager(config_path: Optional[str] = None) -> ConfigManager:
    """
    Get global configuration manager instance.

    Args:
        config_path: Path to configuration file (only used on first call)
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(config_path)
    return _config_manager


def get_config(config_path: Optional[str] = None) -> Config:
    """Get current configuration."""
    return get_config_manager(config_path).config
