# -*- coding: utf-8 -*-
"""
Market Data Providers Package for RiskPilot
===========================================

Provider implementations behind one interface and the async gateway that
chains them with fallback.
"""

from .base import (
    MarketDataError,
    DataUnavailable,
    ProviderFailure,
    MarketDataProvider,
    parse_quote,
    normalize_history,
    mark_synthetic,
    is_synthetic_history,
    log_quote_errors,
)
from .yahoo_provider import YahooFinanceProvider
from .http_providers import TwelveDataProvider, AlphaVantageProvider, FinnhubProvider
from .synthetic_provider import SyntheticProvider
from .gateway import MarketDataGateway, build_providers

__all__ = [
    # Errors
    "MarketDataError",
    "DataUnavailable",
    "ProviderFailure",

    # Interface and helpers
    "MarketDataProvider",
    "parse_quote",
    "normalize_history",
    "mark_synthetic",
    "is_synthetic_history",
    "log_quote_errors",

    # Providers
    "YahooFinanceProvider",
    "TwelveDataProvider",
    "AlphaVantageProvider",
    "FinnhubProvider",
    "SyntheticProvider",

    # Gateway
    "MarketDataGateway",
    "build_providers",
]
