# -*- coding: utf-8 -*-
"""
Configuration Module for RiskPilot
=================================

Pydantic-based settings with range validation, YAML loading, environment
overrides and atomic updates.
"""

from .settings import (
    ConfigurationError,
    RiskTolerance,
    RiskConfig,
    AISettings,
    StopLossSettings,
    ScreeningThresholds,
    DataConfig,
    SchedulingConfig,
    EngineConfig,
    apply_update,
    load_config,
)

__all__ = [
    "ConfigurationError",
    "RiskTolerance",
    "RiskConfig",
    "AISettings",
    "StopLossSettings",
    "ScreeningThresholds",
    "DataConfig",
    "SchedulingConfig",
    "EngineConfig",
    "apply_update",
    "load_config",
]
