# -*- coding: utf-8 -*-
"""
Monitor Package for RiskPilot
=============================

Position and order registries and the real-time protective order monitor.
"""

from .registry import SymbolLocks, PositionRegistry, OrderRegistry
from .position_monitor import PositionMonitor, generate_order_id

__all__ = [
    "SymbolLocks",
    "PositionRegistry",
    "OrderRegistry",
    "PositionMonitor",
    "generate_order_id",
]

__version__ = "1.0.0"
__author__ = "RiskPilot Team"
__description__ = "Protective order monitoring"
