# -*- coding: utf-8 -*-
"""
RiskPilot - Main Package
========================

Screens instruments, builds a constrained portfolio allocation and decides
whether to hold, scale out or exit each open position.

Modules:
    config: Configuration management with Pydantic validation
    data: Market data models, providers and the fallback gateway
    analysis: Indicators, screening, allocation and exit decisions
    monitor: Position/order registries and the protective order monitor
    scheduler: Workflow orchestration and periodic scheduling
    utils: Logging helpers
"""

__version__ = "1.0.0"
__author__ = "RiskPilot Team"
__description__ = "Portfolio screening, allocation and exit risk engine"
__license__ = "MIT"

# Core imports for easy access
from .config import EngineConfig, load_config
from .data import InvestmentDecision, MarketAnalysis, Position

__all__ = [
    "EngineConfig",
    "load_config",
    "InvestmentDecision",
    "MarketAnalysis",
    "Position",
]
