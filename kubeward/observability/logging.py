"""Logging configuration for the manager process.

Logging is silent until the manager calls ``setup_logging`` with a LogConfig.

Example:
    from kubeward.observability.logging import LogConfig, setup_logging

    handler_ids = setup_logging(LogConfig(level="DEBUG", console=True))
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, get_args

from kubeward.observability.logger import logger

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

LOG_LEVELS: tuple[LogLevel, ...] = get_args(LogLevel.__value__)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum log level for the console.
        file: Path to log file, or None to skip file output.
        console: Whether to log to stderr through rich.
        rotation: File rotation size (e.g., "50 MB").
        retention: Number of old log files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Install handlers and return their IDs for teardown."""
    logger.remove()
    logger.enable("kubeward")
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(logger.add(sys.stderr, level=config.level))

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(logger.add(
            config.file,
            level="DEBUG",
            rotation=config.rotation,
            retention=config.retention,
            compression=True,
        ))

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("kubeward")
