# -*- coding: utf-8 -*-
"""
Logger Utility for RiskPilot
============================

Centralized loguru configuration for the engine. Console output is set up on
import; file sinks with rotation are added when ``setup_logging`` is called
with ``file_output=True`` (the CLI does this).
"""

from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import Optional

from loguru import logger


class LoggerConfig:
    """Logger configuration management."""

    def __init__(
        self,
        log_level: str = "INFO",
        log_dir: Optional[Path] = None,
        console_output: bool = True,
        file_output: bool = False,
        rotation: str = "1 day",
        retention: str = "30 days"
    ):
        """
        Initialize logger configuration.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_dir: Directory for log files (defaults to ./logs)
            console_output: Enable console logging
            file_output: Enable file logging
            rotation: Log rotation policy
            retention: Log retention policy
        """
        self.log_level = log_level
        self.log_dir = log_dir or Path.cwd() / "logs"
        self.console_output = console_output
        self.file_output = file_output
        self.rotation = rotation
        self.retention = retention

    def setup_logger(self) -> None:
        """Setup logger with configured parameters."""
        logger.remove()

        if self.console_output:
            logger.add(
                sys.stderr,
                format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
                level=self.log_level,
                colorize=True
            )

        if self.file_output:
            self.log_dir.mkdir(parents=True, exist_ok=True)

            logger.add(
                self.log_dir / "riskpilot_{time:YYYY-MM-DD}.log",
                rotation=self.rotation,
                retention=self.retention,
                level="DEBUG",
                format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
                enqueue=True
            )

            # Decisions and triggers only, for audit
            logger.add(
                self.log_dir / "decisions_{time:YYYY-MM-DD}.log",
                rotation=self.rotation,
                retention=self.retention,
                level="INFO",
                format="{time:YYYY-MM-DD HH:mm:ss} | {extra[kind]} | {message}",
                filter=lambda record: "kind" in record["extra"],
                enqueue=True
            )

            logger.add(
                self.log_dir / "errors_{time:YYYY-MM-DD}.log",
                rotation=self.rotation,
                retention=self.retention,
                level="ERROR",
                format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}\n{exception}",
                enqueue=True
            )


_logger_config: Optional[LoggerConfig] = None


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    console_output: bool = True,
    file_output: bool = False,
    rotation: str = "1 day",
    retention: str = "30 days"
) -> None:
    """
    Setup global logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files
        console_output: Enable console logging
        file_output: Enable file logging
        rotation: Log rotation policy
        retention: Log retention policy
    """
    global _logger_config

    _logger_config = LoggerConfig(
        log_level=log_level,
        log_dir=log_dir,
        console_output=console_output,
        file_output=file_output,
        rotation=rotation,
        retention=retention
    )

    _logger_config.setup_logger()


class LogContext:
    """
    Timed operation scope.

    The keyword context is attached to every record logged inside the
    scope (``record["extra"]``), so a cycle id follows the cycle's own log
    lines and the decision audit file.
    """

    def __init__(self, operation: str, **context):
        self.operation = operation
        self.context = context
        self.start_time: Optional[float] = None
        self._scope = None

    def __enter__(self):
        self.start_time = time.time()
        self._scope = logger.contextualize(**self.context)
        self._scope.__enter__()

        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        logger.info(f"Starting {self.operation}" + (f" ({details})" if details else ""))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.time() - self.start_time if self.start_time else 0.0

        if exc_type is None:
            logger.info(f"Completed {self.operation} in {elapsed:.2f}s")
        else:
            logger.error(f"Failed {self.operation} after {elapsed:.2f}s: {exc_val}")

        self._scope.__exit__(exc_type, exc_val, exc_tb)
        return False


# Convenience functions
def log_decision(symbol: str, action: str, confidence: float, reasoning: str = ""):
    """Log an investment decision."""
    suffix = f" - {reasoning}" if reasoning else ""
    logger.bind(kind="decision").info(f"Decision: {symbol} [{action}] confidence={confidence:.1%}{suffix}")


def log_trigger(symbol: str, trigger_type: str, exit_price: float, realized_pnl: float):
    """Log a protective order trigger."""
    logger.bind(kind="trigger").warning(
        f"Trigger: {symbol} [{trigger_type}] exit={exit_price:.2f} pnl={realized_pnl:+.2f}"
    )


def log_cycle_results(analysed: int, allocations: int, decisions: int, execution_time: float):
    """Log analysis cycle summary."""
    logger.info(
        f"Analysis cycle completed: {analysed} analysed, {allocations} allocations, "
        f"{decisions} decisions in {execution_time:.2f}s"
    )


# Initialize default logging on import
if _logger_config is None:
    setup_logging()
