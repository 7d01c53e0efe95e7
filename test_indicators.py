#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
RiskPilot - Technical Indicator Tests
=====================================

Wilder RSI and ATR seeding, chandelier levels, ATR percentile rank, EMA/MACD
and the linear trend fit.
"""

import math
import unittest

import numpy as np
import pandas as pd

from riskpilot.analysis.indicators import ATR, EMA, MACD, RSI, linear_trend


def bars_from_ranges(ranges, center=100.0):
    """OHLCV bars whose true range equals the given high-low ranges"""
    data = [
        {'Open': center, 'High': center + r / 2, 'Low': center - r / 2, 'Close': center, 'Volume': 1000}
        for r in ranges
    ]
    return pd.DataFrame(data, index=pd.date_range('2024-01-01', periods=len(ranges)))


class TestRSI(unittest.TestCase):
    """Wilder RSI"""

    def test_known_values(self):
        prices = pd.Series([10.0, 11.0, 10.0, 12.0])
        rsi = RSI.calculate_rsi(prices, period=2)

        self.assertTrue(math.isnan(rsi.iloc[1]))
        self.assertAlmostEqual(rsi.iloc[2], 50.0)
        self.assertAlmostEqual(rsi.iloc[3], 100 - 100 / 6)

    def test_only_gains_near_100(self):
        prices = pd.Series(np.linspace(100, 130, 30))
        self.assertGreater(RSI.latest(prices, 14), 99.9)

    def test_only_losses_near_0(self):
        prices = pd.Series(np.linspace(130, 100, 30))
        self.assertLess(RSI.latest(prices, 14), 0.1)

    def test_flat_prices_give_50(self):
        prices = pd.Series([100.0] * 30)
        self.assertEqual(RSI.latest(prices, 14), 50.0)

    def test_insufficient_data(self):
        prices = pd.Series([100.0, 101.0, 102.0])
        self.assertTrue(RSI.calculate_rsi(prices, 14).isna().all())
        self.assertEqual(RSI.latest(prices, 14, default=42.0), 42.0)

    def test_dataframe_input(self):
        frame = pd.DataFrame({'Close': np.linspace(100, 110, 20)})
        self.assertGreater(RSI.latest(frame, 14), 99.0)

    def test_invalid_period(self):
        with self.assertRaises(ValueError):
            RSI.calculate_rsi(pd.Series([1.0, 2.0]), period=0)


class TestATR(unittest.TestCase):
    """Wilder ATR, chandelier stops and percentile rank"""

    def test_constant_range(self):
        atr = ATR.calculate_atr(bars_from_ranges([2.0] * 20), period=14)

        self.assertTrue(atr.iloc[:13].isna().all())
        self.assertAlmostEqual(atr.iloc[13], 2.0)
        self.assertAlmostEqual(atr.iloc[-1], 2.0)

    def test_wilder_seeding(self):
        atr = ATR.calculate_atr(bars_from_ranges([1.0, 2.0, 3.0, 4.0]), period=2)

        self.assertAlmostEqual(atr.iloc[1], 1.5)
        self.assertAlmostEqual(atr.iloc[2], 2.25)
        self.assertAlmostEqual(atr.iloc[3], 3.125)

    def test_true_range_uses_previous_close(self):
        bars = pd.DataFrame({
            'High': [101.0, 111.0],
            'Low': [99.0, 109.0],
            'Close': [100.0, 110.0],
        })
        true_range = ATR.calculate_true_range(bars)
        self.assertAlmostEqual(true_range.iloc[0], 2.0)
        self.assertAlmostEqual(true_range.iloc[1], 11.0)

    def test_missing_columns(self):
        with self.assertRaises(ValueError):
            ATR.calculate_true_range(pd.DataFrame({'Close': [1.0, 2.0]}))

    def test_chandelier_levels(self):
        bars = bars_from_ranges([2.0] * 10)
        atr = ATR.calculate_atr(bars, period=3)
        chandelier = ATR.calculate_chandelier_exit(bars, atr, multiplier=2.0, lookback=3)

        self.assertAlmostEqual(chandelier['long'].iloc[-1], 101.0 - 4.0)
        self.assertAlmostEqual(chandelier['short'].iloc[-1], 99.0 + 4.0)
        self.assertTrue(math.isnan(chandelier['long'].iloc[0]))

    def test_percentile_rank(self):
        rising = pd.Series(np.arange(1.0, 51.0))
        falling = pd.Series(np.arange(50.0, 0.0, -1.0))

        self.assertAlmostEqual(ATR.percentile_rank(rising, 50), 1.0)
        self.assertAlmostEqual(ATR.percentile_rank(falling, 50), 1 / 50)
        self.assertEqual(ATR.percentile_rank(pd.Series([1.0, 2.0]), 50), 0.5)


class TestEMA(unittest.TestCase):
    """EMA and MACD"""

    def test_seeded_with_first_price(self):
        ema = EMA.calculate_ema(pd.Series([1.0, 2.0]), period=3)

        self.assertAlmostEqual(ema.iloc[0], 1.0)
        self.assertAlmostEqual(ema.iloc[1], 1.5)

    def test_constant_series(self):
        ema = EMA.calculate_ema(pd.Series([5.0] * 10), period=4)
        self.assertTrue(np.allclose(ema.to_numpy(), 5.0))

    def test_macd_rising_prices(self):
        macd = MACD.calculate_macd(pd.Series(np.linspace(100, 150, 60)))

        self.assertEqual(list(macd.columns), ['macd', 'signal', 'histogram'])
        self.assertGreater(macd['macd'].iloc[-1], 0)

    def test_macd_invalid_periods(self):
        with self.assertRaises(ValueError):
            MACD.calculate_macd(pd.Series([1.0, 2.0]), fast=26, slow=12)


class TestLinearTrend(unittest.TestCase):
    """Least-squares trend fit"""

    def test_perfect_line(self):
        slope, r_squared, move = linear_trend(pd.Series([10.0, 12.0, 14.0, 16.0, 18.0]))

        self.assertAlmostEqual(slope, 2.0)
        self.assertAlmostEqual(r_squared, 1.0)
        self.assertAlmostEqual(move, 0.8)

    def test_flat_series(self):
        slope, r_squared, move = linear_trend(pd.Series([5.0] * 10))

        self.assertAlmostEqual(slope, 0.0)
        self.assertEqual(r_squared, 0.0)
        self.assertAlmostEqual(move, 0.0)

    def test_too_short(self):
        self.assertEqual(linear_trend(pd.Series([1.0])), (0.0, 0.0, 0.0))


if __name__ == "__main__":
    unittest.main()
