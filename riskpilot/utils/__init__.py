# -*- coding: utf-8 -*-
"""
Utilities Package for RiskPilot
===============================

Logging configuration and the convenience log helpers used by the engine.
"""

from .logger import (
    setup_logging,
    LogContext,
    LoggerConfig,
    log_decision,
    log_trigger,
    log_cycle_results,
)

__all__ = [
    # Logger utilities
    "setup_logging",
    "LogContext",
    "LoggerConfig",

    # Logging convenience functions
    "log_decision",
    "log_trigger",
    "log_cycle_results",
]

__version__ = "1.0.0"
__author__ = "RiskPilot Team"
__description__ = "Utility functions and helpers for RiskPilot"
