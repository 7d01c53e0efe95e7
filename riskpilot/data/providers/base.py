# -*- coding: utf-8 -*-
"""
Market Data Provider Interface
==============================

Abstract provider interface shared by every market data source, the error
hierarchy of the data layer, and the validation helpers that turn raw
provider payloads into ``Quote`` objects and OHLCV DataFrames.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd
from loguru import logger

from ..models.market import FundamentalMetrics, Quote, QuoteError, QuoteResult

OHLCV_COLUMNS = ['Open', 'High', 'Low', 'Close', 'Volume']
SYNTHETIC_ATTR = 'synthetic'


class MarketDataError(Exception):
    """Base exception for market data errors"""
    pass


class DataUnavailable(MarketDataError):
    """Provider answered but the data is missing or invalid"""

    def __init__(self, symbol: str, reason: str, source: str = "unknown"):
        super().__init__(f"{symbol}: {reason} ({source})")
        self.symbol = symbol
        self.reason = reason
        self.source = source


class ProviderFailure(MarketDataError):
    """Provider could not be reached or returned an API error"""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


def to_float(value: Any) -> Optional[float]:
    """Parse a numeric field, returning None when missing or not finite"""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip().rstrip('%')
        if not value or value.lower() in ('none', 'null', 'nan', '-'):
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_quote(
    symbol: str,
    source: str,
    price: Any,
    change: Any = None,
    change_percent: Any = None,
    volume: Any = None,
    previous_close: Any = None,
    volume_reported: bool = True,
    timestamp: Optional[datetime] = None,
) -> Quote:
    """
    Validate raw quote fields and build a Quote.

    Change figures missing from the payload are derived from
    ``previous_close`` when the provider supplies it. A provider that does
    not report volume at all passes ``volume_reported=False``.

    Raises:
        DataUnavailable: If a required field is missing or invalid
    """
    price_value = to_float(price)
    if price_value is None or price_value <= 0:
        raise DataUnavailable(symbol, f"invalid price {price!r}", source)

    change_value = to_float(change)
    pct_value = to_float(change_percent)
    prev_value = to_float(previous_close)

    if prev_value is not None and prev_value > 0:
        if change_value is None:
            change_value = price_value - prev_value
        if pct_value is None:
            pct_value = (price_value - prev_value) / prev_value * 100

    if change_value is None and pct_value is not None:
        change_value = price_value - price_value / (1 + pct_value / 100)
    if pct_value is None and change_value is not None:
        base = price_value - change_value
        if base > 0:
            pct_value = change_value / base * 100

    if change_value is None or pct_value is None:
        raise DataUnavailable(symbol, "missing change figures", source)

    if volume_reported:
        volume_value = to_float(volume)
        if volume_value is None or volume_value < 0:
            raise DataUnavailable(symbol, f"invalid volume {volume!r}", source)
    else:
        volume_value = 0.0

    return Quote(
        symbol=symbol,
        price=price_value,
        change=change_value,
        change_percent=pct_value,
        volume=int(volume_value),
        timestamp=timestamp or datetime.now(),
        source=source,
    )


def normalize_history(symbol: str, source: str, data: pd.DataFrame, lookback: int) -> pd.DataFrame:
    """
    Bring a provider frame to float OHLCV columns, oldest bar first.

    Raises:
        DataUnavailable: If no usable bars remain
    """
    if data is None or data.empty:
        raise DataUnavailable(symbol, "no historical data", source)

    missing = [col for col in OHLCV_COLUMNS if col not in data.columns]
    if missing:
        raise DataUnavailable(symbol, f"history missing columns {missing}", source)

    frame = data[OHLCV_COLUMNS].apply(pd.to_numeric, errors='coerce').dropna()
    frame = frame[(frame['Close'] > 0) & (frame['High'] >= frame['Low'])]
    frame = frame.sort_index()

    if frame.empty:
        raise DataUnavailable(symbol, "no valid bars after cleaning", source)

    return frame.tail(lookback)


def mark_synthetic(frame: pd.DataFrame) -> pd.DataFrame:
    """Label generated bars so nothing trading real positions mistakes them for market data"""
    frame.attrs[SYNTHETIC_ATTR] = True
    return frame


def is_synthetic_history(frame: Optional[pd.DataFrame]) -> bool:
    return frame is not None and bool(frame.attrs.get(SYNTHETIC_ATTR, False))


class MarketDataProvider(ABC):
    """Interface every market data source implements"""

    name: str = "base"

    def is_configured(self) -> bool:
        """Whether the provider has what it needs (API keys) to be queried"""
        return True

    @abstractmethod
    def get_quote(self, symbol: str) -> Quote:
        """
        Fetch the current quote.

        Raises:
            DataUnavailable: If the payload is missing or invalid
            ProviderFailure: If the provider cannot be reached
        """

    def get_multiple_quotes(self, symbols: List[str]) -> Dict[str, QuoteResult]:
        """
        Fetch quotes for several symbols.

        Per-symbol failures become ``QuoteError`` entries. ProviderFailure is
        raised only when no symbol succeeded.
        """
        results: Dict[str, QuoteResult] = {}
        last_failure: Optional[ProviderFailure] = None

        for symbol in symbols:
            try:
                results[symbol] = self.get_quote(symbol)
            except DataUnavailable as e:
                results[symbol] = QuoteError(symbol=symbol, reason=e.reason, source=self.name)
            except ProviderFailure as e:
                last_failure = e
                results[symbol] = QuoteError(symbol=symbol, reason=e.reason, source=self.name)

        if last_failure is not None and not any(isinstance(r, Quote) for r in results.values()):
            raise last_failure

        return results

    @abstractmethod
    def get_historical_prices(self, symbol: str, lookback: int) -> pd.DataFrame:
        """
        Fetch up to ``lookback`` daily OHLCV bars, oldest first.

        Raises:
            DataUnavailable: If the provider has no history for the symbol
            ProviderFailure: If the provider cannot be reached
        """

    def get_fundamentals(self, symbol: str) -> Optional[FundamentalMetrics]:
        """Fetch raw fundamental figures, or None when the provider has none"""
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


def log_quote_errors(errors: List[QuoteError]) -> None:
    """Log skipped symbols in one line"""
    if errors:
        summary = ", ".join(f"{e.symbol} ({e.reason})" for e in errors[:10])
        logger.warning(f"Skipping {len(errors)} symbols without usable quotes: {summary}")
