# -*- coding: utf-8 -*-
"""
EMA and MACD Indicators
=======================

Exponential moving averages seeded with the first price and smoothed with
multiplier 2 / (period + 1), plus MACD built on top of them.
"""

from __future__ import annotations

from typing import Union

import numpy as np
import pandas as pd


def _price_series(data: Union[pd.Series, pd.DataFrame], price_column: str) -> pd.Series:
    if isinstance(data, pd.DataFrame):
        if price_column not in data.columns:
            raise ValueError(f"Price column '{price_column}' not found")
        return data[price_column]
    return data


class EMA:
    """
    Exponential Moving Average (EMA) calculator.

    EMA_today = (Price_today * k) + (EMA_yesterday * (1 - k))
    where k = 2 / (Period + 1)
    """

    @staticmethod
    def calculate_ema(
        data: Union[pd.Series, pd.DataFrame],
        period: int,
        price_column: str = 'Close'
    ) -> pd.Series:
        """
        Calculate Exponential Moving Average.

        Args:
            data: Price data (Series or DataFrame with price column)
            period: Period for EMA calculation
            price_column: Column name for price if DataFrame (default: 'Close')

        Returns:
            Series with EMA values, first value equal to the first price

        Raises:
            ValueError: If invalid parameters or data
        """
        if period <= 0:
            raise ValueError("Period must be positive")

        prices = _price_series(data, price_column)

        if prices.empty:
            return pd.Series(dtype=float, index=prices.index)

        # adjust=False gives the recursive form seeded with the first value
        return prices.ewm(span=period, adjust=False).mean()


class MACD:
    """Moving Average Convergence Divergence"""

    @staticmethod
    def calculate_macd(
        data: Union[pd.Series, pd.DataFrame],
        fast: int = 12,
        slow: int = 26,
        signal: int = 9,
        price_column: str = 'Close'
    ) -> pd.DataFrame:
        """
        Calculate MACD line, signal line and histogram.

        Args:
            data: Price data
            fast: Fast EMA period
            slow: Slow EMA period
            signal: Signal EMA period

        Returns:
            DataFrame with 'macd', 'signal' and 'histogram' columns
        """
        if fast >= slow:
            raise ValueError("Fast period must be shorter than slow period")

        prices = _price_series(data, price_column)

        macd_line = EMA.calculate_ema(prices, fast) - EMA.calculate_ema(prices, slow)
        signal_line = EMA.calculate_ema(macd_line, signal)

        return pd.DataFrame({
            'macd': macd_line,
            'signal': signal_line,
            'histogram': macd_line - signal_line,
        })


def linear_trend(values: pd.Series) -> tuple:
    """
    Least-squares line through a series.

    Returns:
        (slope per bar, R squared, fitted relative move over the window)
    """
    y = values.dropna().to_numpy(dtype=float)
    if len(y) < 2:
        return 0.0, 0.0, 0.0

    x = np.arange(len(y))
    slope, intercept = np.polyfit(x, y, 1)
    fitted = slope * x + intercept

    total = np.sum((y - y.mean()) ** 2)
    r_squared = 1.0 - np.sum((y - fitted) ** 2) / total if total > 0 else 0.0

    start = fitted[0]
    relative_move = (fitted[-1] - start) / start if start > 0 else 0.0

    return float(slope), float(max(0.0, r_squared)), float(relative_move)
