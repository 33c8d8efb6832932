"""
funcbox core module

Configuration management, the exception hierarchy and logging setup
shared by the packager, runtime driver, pool and orchestrator.
"""

from .exceptions import FuncboxError, ConfigurationError
from .config import Config, ConfigManager, get_config
from .logging_setup import setup_logging

__all__ = [
    "FuncboxError",
    "ConfigurationError",
    "Config",
    "ConfigManager",
    "get_config",
    "setup_logging",
]
