# -*- coding: utf-8 -*-
"""
Yahoo Finance Provider
======================

Quotes, daily history and fundamentals through yfinance. Needs no API key,
so it heads the default provider chain.
"""

from __future__ import annotations

import warnings
from datetime import datetime, timedelta
from typing import Optional

import pandas as pd
import yfinance as yf
from loguru import logger

from ..models.market import FundamentalMetrics, Quote
from .base import (
    DataUnavailable,
    MarketDataProvider,
    ProviderFailure,
    to_float,
    normalize_history,
    parse_quote,
)


class YahooFinanceProvider(MarketDataProvider):
    """Market data from Yahoo Finance"""

    name = "yahoo"

    def __init__(self):
        # Suppress yfinance warnings
        warnings.filterwarnings('ignore', category=FutureWarning)

    def _history(self, symbol: str, **kwargs) -> pd.DataFrame:
        try:
            return yf.Ticker(symbol).history(auto_adjust=False, prepost=False, **kwargs)
        except Exception as e:
            raise ProviderFailure(self.name, f"history request for {symbol} failed: {e}") from e

    def get_quote(self, symbol: str) -> Quote:
        daily = self._history(symbol, period="5d", interval="1d")

        if daily is None or daily.empty:
            raise DataUnavailable(symbol, "no recent bars", self.name)

        latest = daily.iloc[-1]
        previous_close = daily['Close'].iloc[-2] if len(daily) > 1 else latest.get('Open')

        return parse_quote(
            symbol,
            self.name,
            price=latest.get('Close'),
            volume=latest.get('Volume'),
            previous_close=previous_close,
        )

    def get_historical_prices(self, symbol: str, lookback: int) -> pd.DataFrame:
        # Calendar days covering the requested trading days
        start = datetime.now() - timedelta(days=int(lookback * 1.6) + 10)
        daily = self._history(symbol, start=start.strftime('%Y-%m-%d'), interval="1d")
        return normalize_history(symbol, self.name, daily, lookback)

    def get_fundamentals(self, symbol: str) -> Optional[FundamentalMetrics]:
        try:
            info = yf.Ticker(symbol).info or {}
        except Exception as e:
            logger.debug(f"Yahoo fundamentals unavailable for {symbol}: {e}")
            return None

        if not info:
            return None

        # Yahoo reports debt/equity in percent
        debt_to_equity = to_float(info.get('debtToEquity'))
        if debt_to_equity is not None:
            debt_to_equity /= 100

        return FundamentalMetrics(
            eps_growth=to_float(info.get('earningsGrowth')),
            roe=to_float(info.get('returnOnEquity')),
            sales_growth=to_float(info.get('revenueGrowth')),
            pe_ratio=to_float(info.get('trailingPE')),
            debt_to_equity=debt_to_equity,
            current_ratio=to_float(info.get('currentRatio')),
            operating_margin=to_float(info.get('operatingMargins')),
            sector=info.get('sector'),
        )
