# -*- coding: utf-8 -*-
"""
RSI (Relative Strength Index) Indicator
=======================================

Wilder-smoothed RSI. RSI is a momentum oscillator that measures the speed
and magnitude of recent price changes; the exit engine reads it as a stress
signal and the screener as a health band.
"""

from __future__ import annotations

from typing import Union

import numpy as np
import pandas as pd

# Floor for denominators that can reach zero on flat data
EPSILON = 1e-9


class RSI:
    """
    Relative Strength Index (RSI) calculator.

    RSI is calculated as RSI = 100 - (100 / (1 + RS))
    where RS = Average Gain / Average Loss over a specified period.
    """

    @staticmethod
    def calculate_rsi(
        data: Union[pd.Series, pd.DataFrame],
        period: int = 14,
        price_column: str = 'Close'
    ) -> pd.Series:
        """
        Calculate Relative Strength Index with Wilder's smoothing.

        The average loss is floored at EPSILON. When prices did not move at
        all over the smoothing window the RSI is 50.

        Args:
            data: Price data (Series or DataFrame with price column)
            period: Period for RSI calculation (default: 14)
            price_column: Column name for price if DataFrame (default: 'Close')

        Returns:
            Series with RSI values (NaN until ``period`` changes are available)

        Raises:
            ValueError: If invalid parameters or data
        """
        if period <= 0:
            raise ValueError("Period must be positive")

        if isinstance(data, pd.DataFrame):
            if price_column not in data.columns:
                raise ValueError(f"Price column '{price_column}' not found")
            prices = data[price_column]
        else:
            prices = data

        if prices.empty or len(prices) < period + 1:
            return pd.Series(np.nan, index=prices.index, dtype=float)

        price_changes = prices.diff()

        gains = price_changes.where(price_changes > 0, 0.0)
        losses = (-price_changes).where(price_changes < 0, 0.0)

        avg_gains = RSI._wilder_smoothing(gains, period)
        avg_losses = RSI._wilder_smoothing(losses, period)

        rs = avg_gains / avg_losses.clip(lower=EPSILON)
        rsi = 100 - (100 / (1 + rs))

        # No movement in either direction
        flat = (avg_gains < EPSILON) & (avg_losses < EPSILON)
        rsi[flat] = 50.0

        return rsi

    @staticmethod
    def _wilder_smoothing(data: pd.Series, period: int) -> pd.Series:
        """
        Apply Wilder's smoothing method.

        The first value is the simple mean of the first ``period`` changes,
        each later value is ``(prev * (period - 1) + current) / period``.

        Args:
            data: Input data series (first element is the undefined diff)
            period: Smoothing period

        Returns:
            Smoothed series
        """
        values = data.to_numpy(dtype=float)
        result = np.full(len(values), np.nan)

        if len(values) > period:
            result[period] = values[1:period + 1].mean()
            for i in range(period + 1, len(values)):
                result[i] = (result[i - 1] * (period - 1) + values[i]) / period

        return pd.Series(result, index=data.index)

    @staticmethod
    def latest(data: Union[pd.Series, pd.DataFrame], period: int = 14, default: float = 50.0) -> float:
        """Most recent RSI value, or ``default`` when there is not enough data"""
        rsi = RSI.calculate_rsi(data, period).dropna()
        return float(rsi.iloc[-1]) if not rsi.empty else default
