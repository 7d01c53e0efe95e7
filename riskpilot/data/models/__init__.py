# -*- coding: utf-8 -*-
"""
Data Models Package for RiskPilot
=================================

Data models for quotes, per-instrument analysis, allocations, positions,
protective orders and the decisions the engine produces.
"""

from .market import (
    Quote,
    QuoteError,
    QuoteResult,
    FundamentalMetrics,
    TechnicalAnalysis,
    TrendDirection,
    MASignal,
    MarketAnalysis,
    AllocationAction,
    PortfolioAllocation,
)

from .decision import (
    Side,
    DecisionAction,
    DecisionPriority,
    Urgency,
    TriggerType,
    OrderStatus,
    InvestmentDecision,
    Position,
    StopLossOrder,
    TriggerEvent,
)

__all__ = [
    # Market data models
    "Quote",
    "QuoteError",
    "QuoteResult",
    "FundamentalMetrics",
    "TechnicalAnalysis",
    "TrendDirection",
    "MASignal",
    "MarketAnalysis",
    "AllocationAction",
    "PortfolioAllocation",

    # Decision models
    "Side",
    "DecisionAction",
    "DecisionPriority",
    "Urgency",
    "TriggerType",
    "OrderStatus",
    "InvestmentDecision",
    "Position",
    "StopLossOrder",
    "TriggerEvent",
]
