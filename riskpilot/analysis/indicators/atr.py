# -*- coding: utf-8 -*-
"""
ATR (Average True Range) Indicator
==================================

Wilder-smoothed Average True Range, the chandelier trailing stop built on it,
and the percentile rank used to detect volatility expansion.
"""

from __future__ import annotations

import numpy as np
import pandas as pd


class ATR:
    """
    Average True Range (ATR) calculator.

    ATR is a volatility indicator that averages true ranges over a
    specified period.
    """

    @staticmethod
    def calculate_true_range(data: pd.DataFrame) -> pd.Series:
        """
        Calculate True Range for each bar.

        True Range is the maximum of:
        1. Current High - Current Low
        2. |Current High - Previous Close|
        3. |Current Low - Previous Close|

        The first bar has no previous close and uses High - Low.

        Raises:
            ValueError: If required columns are missing
        """
        if data.empty:
            return pd.Series(dtype=float)

        required_columns = ['High', 'Low', 'Close']
        missing_columns = [col for col in required_columns if col not in data.columns]
        if missing_columns:
            raise ValueError(f"Missing required columns: {missing_columns}")

        high_low = data['High'] - data['Low']
        high_close = (data['High'] - data['Close'].shift(1)).abs()
        low_close = (data['Low'] - data['Close'].shift(1)).abs()

        return pd.concat([high_low, high_close, low_close], axis=1).max(axis=1)

    @staticmethod
    def calculate_atr(data: pd.DataFrame, period: int = 14) -> pd.Series:
        """
        Calculate Wilder-smoothed ATR.

        The first value (at ``period - 1``) is the mean of the first
        ``period`` true ranges; each later value is
        ``(prev * (period - 1) + tr) / period``.

        Args:
            data: DataFrame with OHLC data
            period: Period for ATR calculation (default: 14)

        Returns:
            Series with ATR values (NaN before the first full period)
        """
        if period <= 0:
            raise ValueError("Period must be positive")

        true_range = ATR.calculate_true_range(data)
        if true_range.empty:
            return pd.Series(dtype=float)

        values = true_range.to_numpy(dtype=float)
        atr = np.full(len(values), np.nan)

        if len(values) >= period:
            atr[period - 1] = values[:period].mean()
            for i in range(period, len(values)):
                atr[i] = (atr[i - 1] * (period - 1) + values[i]) / period

        return pd.Series(atr, index=data.index)

    @staticmethod
    def calculate_chandelier_exit(
        data: pd.DataFrame,
        atr: pd.Series,
        multiplier: float = 3.0,
        lookback: int = 22
    ) -> pd.DataFrame:
        """
        Calculate chandelier stop levels.

        Long: highest high over ``lookback`` bars minus ``multiplier * ATR``.
        Short: lowest low over ``lookback`` bars plus ``multiplier * ATR``.

        Returns:
            DataFrame with 'long' and 'short' columns (NaN until a full lookback)
        """
        highest = data['High'].rolling(window=lookback, min_periods=lookback).max()
        lowest = data['Low'].rolling(window=lookback, min_periods=lookback).min()

        return pd.DataFrame({
            'long': highest - multiplier * atr,
            'short': lowest + multiplier * atr,
        })

    @staticmethod
    def percentile_rank(atr: pd.Series, window: int = 50) -> float:
        """
        Rank of the latest ATR within the last ``window`` values.

        rank = (number of strictly smaller values + 1) / window. Returns 0.5
        until ``window`` values exist.
        """
        clean = atr.dropna()
        if len(clean) < window:
            return 0.5

        recent = clean.iloc[-window:].to_numpy()
        current = recent[-1]
        return float((np.sum(recent < current) + 1) / len(recent))
