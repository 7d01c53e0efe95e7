# -*- coding: utf-8 -*-
"""
Data Package for RiskPilot
==========================

This package provides data models and market data access for RiskPilot:

- Quote, analysis, allocation, position and decision models
- Market data providers (Yahoo Finance, Twelve Data, Alpha Vantage, Finnhub)
- The async market data gateway with provider fallback
"""

from .models import (
    # Market data models
    Quote,
    QuoteError,
    FundamentalMetrics,
    TechnicalAnalysis,
    MarketAnalysis,
    PortfolioAllocation,

    # Decision models
    Side,
    Position,
    StopLossOrder,
    TriggerEvent,
    InvestmentDecision,
)

from .providers import (
    MarketDataError,
    DataUnavailable,
    ProviderFailure,
    MarketDataProvider,
    MarketDataGateway,
)

__all__ = [
    # Market data models
    "Quote",
    "QuoteError",
    "FundamentalMetrics",
    "TechnicalAnalysis",
    "MarketAnalysis",
    "PortfolioAllocation",

    # Decision models
    "Side",
    "Position",
    "StopLossOrder",
    "TriggerEvent",
    "InvestmentDecision",

    # Market data access
    "MarketDataError",
    "DataUnavailable",
    "ProviderFailure",
    "MarketDataProvider",
    "MarketDataGateway",
]

__version__ = "1.0.0"
__author__ = "RiskPilot Team"
__description__ = "Market data models and providers"
