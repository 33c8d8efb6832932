"""Logging setup for processes embedding the execution engine."""

import logging
from pathlib import Path
from typing import Optional

from .config import LoggingConfig

_HANDLER_MARK = "_funcbox_handler"


def setup_logging(config: Optional[LoggingConfig] = None, verbose: bool = False) -> None:
    """Configure the root logger level, console and file output."""
    config = config or LoggingConfig()
    level = logging.DEBUG if verbose else getattr(logging, config.level.upper(), logging.INFO)

    formatter = logging.Formatter(config.format, datefmt="%H:%M:%S")
    root_logger = logging.getLogger()

    # Re-running setup replaces our handlers instead of stacking them
    for handler in list(root_logger.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            root_logger.removeHandler(handler)
            handler.close()

    if config.console_logging:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        setattr(console_handler, _HANDLER_MARK, True)
        root_logger.addHandler(console_handler)

    if config.file_logging:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        setattr(file_handler, _HANDLER_MARK, True)
        root_logger.addHandler(file_handler)

    root_logger.setLevel(level)
    # docker-py / urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))
    logging.getLogger("docker").setLevel(max(level, logging.INFO))
