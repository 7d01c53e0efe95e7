# -*- coding: utf-8 -*-
"""
Technical Indicators Package for RiskPilot
==========================================

Indicator implementations shared by the screener and the exit engine:
Wilder RSI, EMA/MACD, Wilder ATR with chandelier stops and ATR percentile
rank. All functions take pandas Series or OHLCV DataFrames with the columns
'Open', 'High', 'Low', 'Close', 'Volume'.
"""

from .rsi import RSI, EPSILON
from .ema import EMA, MACD, linear_trend
from .atr import ATR

__all__ = [
    "RSI",
    "EMA",
    "MACD",
    "ATR",
    "linear_trend",
    "EPSILON",
]

__version__ = "1.0.0"
__author__ = "RiskPilot Team"
__description__ = "Technical indicators for screening and exit decisions"
