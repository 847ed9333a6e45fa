"""
Utility functions for the Findawise Empire server.

This module provides:
- Application-wide loguru configuration
- Timing utilities for bootstrap steps
- Timestamp helpers shared by every JSON payload
"""

import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger


class LoggerConfig:
    """
    Centralized logging configuration for the server.

    Uses loguru for structured, colored logging with rotation.
    """

    @staticmethod
    def setup(
        log_dir: str = "",
        level: str = "INFO",
        rotation: str = "100 MB",
        retention: str = "10 days",
    ) -> None:
        """
        Configure application-wide logging.

        Args:
            log_dir: Directory to store log files. Empty means console only,
                which is what serverless runtimes with a read-only filesystem need.
            level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            rotation: When to rotate log files
            retention: How long to keep old log files
        """
        logger.remove()

        logger.add(
            sys.stderr,
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
            level=level,
            colorize=True,
        )

        if log_dir:
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)

            logger.add(
                log_path / "empire_{time}.log",
                format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
                level=level,
                rotation=rotation,
                retention=retention,
                compression="zip",
            )

        logger.info(f"Logger initialized - Level: {level}, Log dir: {log_dir or '<console>'}")


class Timer:
    """
    Context manager for timing bootstrap steps.

    Usage:
        with Timer("route registration"):
            # code to time
    """

    def __init__(self, name: str = "Operation", logger_level: str = "DEBUG"):
        self.name = name
        self.logger_level = logger_level
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        logger.log(self.logger_level, f"Starting: {self.name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.perf_counter()
        logger.log(self.logger_level, f"Completed: {self.name} - Duration: {self.elapsed:.4f}s")

    @property
    def elapsed(self) -> float:
        """Get elapsed time in seconds."""
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return end - self.start_time


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a trailing Z."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
