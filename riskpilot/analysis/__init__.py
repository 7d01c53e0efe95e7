# -*- coding: utf-8 -*-
"""
Analysis Package for RiskPilot
==============================

Screening, allocation and exit decision logic.

Modules:
    indicators: Technical indicator implementations (RSI, EMA/MACD, ATR)
    screener: Fundamental/technical scoring and the screening gate
    allocator: Constrained portfolio allocation and entry decisions
    exit_engine: Hard stops, scale-outs, composite exit score, emergency check
"""

from .indicators import (
    RSI,
    EMA,
    MACD,
    ATR,
    linear_trend,
)

from .screener import ScreeningAnalyzer
from .allocator import AllocationOptimizer
from .exit_engine import (
    ExitDecisionEngine,
    IndicatorSnapshot,
    ExitEvaluation,
    EmergencyCheck,
    FACTOR_NAMES,
)

__all__ = [
    # Technical Indicators
    "RSI",
    "EMA",
    "MACD",
    "ATR",
    "linear_trend",

    # Screening and allocation
    "ScreeningAnalyzer",
    "AllocationOptimizer",

    # Exit decisions
    "ExitDecisionEngine",
    "IndicatorSnapshot",
    "ExitEvaluation",
    "EmergencyCheck",
    "FACTOR_NAMES",
]

__version__ = "1.0.0"
__author__ = "RiskPilot Team"
__description__ = "Screening, allocation and exit analysis"
