# -*- coding: utf-8 -*-
"""
Synthetic Market Data Provider
==============================

Seeded random-walk quotes and bars for offline runs. Every quote it produces
is marked ``is_synthetic`` and it never invents fundamentals, so synthetic
instruments cannot pass the screening gate.
"""

from __future__ import annotations

import zlib
from datetime import datetime

import numpy as np
import pandas as pd

from ..models.market import Quote
from .base import MarketDataProvider, mark_synthetic, normalize_history


class SyntheticProvider(MarketDataProvider):
    """Deterministic random-walk data, keyed by symbol and seed"""

    name = "synthetic"

    def __init__(self, seed: int = 42, daily_volatility: float = 0.02):
        self.seed = seed
        self.daily_volatility = daily_volatility

    def _rng(self, symbol: str) -> np.random.Generator:
        return np.random.default_rng([self.seed, zlib.crc32(symbol.encode('utf-8'))])

    def _base_price(self, symbol: str) -> float:
        return 50.0 + zlib.crc32(symbol.encode('utf-8')) % 450

    def get_quote(self, symbol: str) -> Quote:
        rng = self._rng(symbol)
        previous_close = self._base_price(symbol)
        change_percent = float(rng.normal(0.0, self.daily_volatility * 100))
        price = round(previous_close * (1 + change_percent / 100), 2)

        return Quote(
            symbol=symbol,
            price=price,
            change=price - previous_close,
            change_percent=change_percent,
            volume=int(rng.integers(200_000, 5_000_000)),
            timestamp=datetime.now(),
            source=self.name,
            is_synthetic=True,
        )

    def get_historical_prices(self, symbol: str, lookback: int) -> pd.DataFrame:
        rng = self._rng(symbol)
        returns = rng.normal(0.0005, self.daily_volatility, lookback)
        closes = self._base_price(symbol) * np.exp(np.cumsum(returns))
        opens = np.concatenate([[closes[0]], closes[:-1]])

        spread = np.abs(rng.normal(0.0, self.daily_volatility / 2, lookback)) * closes
        frame = pd.DataFrame({
            'Open': opens,
            'High': np.maximum(opens, closes) + spread,
            'Low': np.minimum(opens, closes) - spread,
            'Close': closes,
            'Volume': rng.integers(200_000, 5_000_000, lookback).astype(float),
        }, index=pd.bdate_range(end=datetime.now().date(), periods=lookback))

        return mark_synthetic(normalize_history(symbol, self.name, frame, lookback))
