"""Logging configuration."""

import logging
import os
import sys

from pydantic import BaseModel

from toolgate.config import ToolgateConfig

# Fetch tool traffic is logged by httpx at INFO for every request
QUIET_LOGGERS = ("httpx", "httpcore")


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    file: str | None = None

    @classmethod
    def from_config(cls, config: ToolgateConfig) -> "LogConfig":
        return cls(level=config.log_level, file=config.log_file)


def setup_logging(config: ToolgateConfig | LogConfig | None = None) -> logging.Handler:
    """Set up logging for the tool runtime.

    Records go to stderr, or to the configured log file so a console
    frontend can keep stdout and stderr for tool output.

    Args:
        config: Runtime config or explicit logging config, defaults to
            ToolgateConfig.from_env()

    Returns:
        The handler installed on the root logger
    """
    if config is None:
        config = ToolgateConfig.from_env()
    if isinstance(config, ToolgateConfig):
        config = LogConfig.from_config(config)

    if config.file:
        handler: logging.Handler = logging.FileHandler(config.file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)

    level = getattr(logging, config.level.upper())
    # Module loggers set their own level, so the handler enforces the configured one
    handler.setLevel(level)

    logging.basicConfig(
        level=level,
        format=config.format,
        datefmt=config.date_format,
        handlers=[handler],
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)
        level: Explicit level, overrides the LOG_LEVEL environment variable

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    log_level = level if level else os.getenv("LOG_LEVEL", "INFO")
    logger.setLevel(log_level.upper())

    return logger
