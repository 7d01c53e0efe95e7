#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
RiskPilot - Market Data Tests
=============================

Quote validation, history normalization, the REST providers against mocked
sessions, the synthetic provider, and gateway fallback and timeouts.
"""

import time
import unittest
from unittest.mock import MagicMock, patch

import pandas as pd
import requests

from riskpilot.config import DataConfig
from riskpilot.data.models import FundamentalMetrics, Quote, QuoteError
from riskpilot.data.providers import (
    AlphaVantageProvider,
    DataUnavailable,
    FinnhubProvider,
    MarketDataGateway,
    MarketDataProvider,
    ProviderFailure,
    SyntheticProvider,
    TwelveDataProvider,
    build_providers,
    is_synthetic_history,
    normalize_history,
    parse_quote,
)


class FakeProvider(MarketDataProvider):
    """In-memory provider with scripted prices and failures"""

    def __init__(self, name, prices=None, fail=False, delay=0.0, fundamentals=None, history=None):
        self.name = name
        self.prices = prices or {}
        self.fail = fail
        self.delay = delay
        self.fundamentals = fundamentals
        self.history = history
        self.calls = 0

    def get_quote(self, symbol):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise ProviderFailure(self.name, "unreachable")
        if symbol not in self.prices:
            raise DataUnavailable(symbol, "unknown symbol", self.name)
        return parse_quote(symbol, self.name, price=self.prices[symbol], change=0.0, volume=1000)

    def get_historical_prices(self, symbol, lookback):
        if self.fail:
            raise ProviderFailure(self.name, "unreachable")
        if self.history is None:
            raise DataUnavailable(symbol, "no history", self.name)
        return self.history.tail(lookback)

    def get_fundamentals(self, symbol):
        return self.fundamentals


def mocked_session(payload):
    session = MagicMock()
    session.get.return_value.json.return_value = payload
    return session


class TestParseQuote(unittest.TestCase):
    """Raw quote validation"""

    def test_change_from_previous_close(self):
        quote = parse_quote("AAPL", "test", price="105", volume="1000", previous_close=100.0)

        self.assertAlmostEqual(quote.change, 5.0)
        self.assertAlmostEqual(quote.change_percent, 5.0)
        self.assertEqual(quote.volume, 1000)
        self.assertEqual(quote.source, "test")

    def test_percent_strings(self):
        quote = parse_quote("AAPL", "test", price=110.0, change="10", change_percent="10.0%", volume=5)
        self.assertAlmostEqual(quote.change_percent, 10.0)

    def test_change_percent_from_change(self):
        quote = parse_quote("AAPL", "test", price=110.0, change=10.0, volume=5)
        self.assertAlmostEqual(quote.change_percent, 10.0)

    def test_invalid_price(self):
        for price in (None, "abc", 0, -1.0, float('nan')):
            with self.assertRaises(DataUnavailable):
                parse_quote("AAPL", "test", price=price, change=0.0, volume=1)

    def test_missing_change(self):
        with self.assertRaises(DataUnavailable):
            parse_quote("AAPL", "test", price=100.0, volume=1)

    def test_volume_required_unless_unreported(self):
        with self.assertRaises(DataUnavailable):
            parse_quote("AAPL", "test", price=100.0, change=1.0, volume=None)

        quote = parse_quote("AAPL", "test", price=100.0, change=1.0, volume_reported=False)
        self.assertEqual(quote.volume, 0)


class TestNormalizeHistory(unittest.TestCase):
    """OHLCV cleaning"""

    def test_sorted_and_cleaned(self):
        frame = pd.DataFrame({
            'Open': ['10', '11', '12', '13'],
            'High': [11.0, 12.0, 11.0, 14.0],
            'Low': [9.0, 10.0, 12.5, 12.0],
            'Close': [10.5, 11.5, 12.0, 'bad'],
            'Volume': [100, 200, 300, 400],
        }, index=pd.to_datetime(['2024-01-04', '2024-01-03', '2024-01-02', '2024-01-01']))

        history = normalize_history("AAPL", "test", frame, lookback=10)

        # High below low and the unparseable close are dropped
        self.assertEqual(len(history), 2)
        self.assertTrue(history.index.is_monotonic_increasing)
        self.assertEqual(list(history.columns), ['Open', 'High', 'Low', 'Close', 'Volume'])

    def test_lookback_keeps_newest(self):
        frame = pd.DataFrame({
            'Open': range(1, 11), 'High': range(2, 12), 'Low': range(0, 10),
            'Close': range(1, 11), 'Volume': [1] * 10,
        }, index=pd.date_range('2024-01-01', periods=10))

        history = normalize_history("AAPL", "test", frame, lookback=3)

        self.assertEqual(list(history['Close']), [8.0, 9.0, 10.0])

    def test_empty_and_missing_columns(self):
        with self.assertRaises(DataUnavailable):
            normalize_history("AAPL", "test", pd.DataFrame(), 10)
        with self.assertRaises(DataUnavailable):
            normalize_history("AAPL", "test", pd.DataFrame({'Close': [1.0]}), 10)


class TestHTTPProviders(unittest.TestCase):
    """REST providers against mocked sessions"""

    def test_unconfigured(self):
        provider = TwelveDataProvider(None, session=MagicMock())

        self.assertFalse(provider.is_configured())
        with self.assertRaises(ProviderFailure):
            provider.get_quote("AAPL")

    def test_twelvedata_quote(self):
        provider = TwelveDataProvider("key", session=mocked_session({
            'close': '105.0', 'change': '5.0', 'percent_change': '5.0', 'volume': '2500000',
        }))

        quote = provider.get_quote("AAPL")

        self.assertEqual(quote.price, 105.0)
        self.assertEqual(quote.volume, 2_500_000)
        self.assertEqual(quote.source, "twelvedata")

    def test_twelvedata_errors(self):
        unknown = TwelveDataProvider("key", session=mocked_session(
            {'status': 'error', 'code': 404, 'message': 'symbol not found'}
        ))
        limited = TwelveDataProvider("key", session=mocked_session(
            {'status': 'error', 'code': 429, 'message': 'rate limit'}
        ))

        with self.assertRaises(DataUnavailable):
            unknown.get_quote("ZZZZ")
        with self.assertRaises(ProviderFailure):
            limited.get_quote("AAPL")

    def test_request_exception(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("connection refused")

        with self.assertRaises(ProviderFailure):
            FinnhubProvider("key", session=session).get_quote("AAPL")

    def test_finnhub_quote_without_volume(self):
        provider = FinnhubProvider("key", session=mocked_session({'c': 101.0, 'd': 1.0, 'dp': 1.0, 'pc': 100.0}))

        quote = provider.get_quote("AAPL")

        self.assertEqual(quote.price, 101.0)
        self.assertEqual(quote.volume, 0)

    def test_finnhub_unknown_symbol(self):
        provider = FinnhubProvider("key", session=mocked_session({'c': 0, 'd': None, 'dp': None, 'pc': 0}))
        with self.assertRaises(DataUnavailable):
            provider.get_quote("ZZZZ")

    def test_alpha_vantage_rate_limit(self):
        provider = AlphaVantageProvider("key", session=mocked_session({'Note': 'call frequency exceeded'}))
        with self.assertRaises(ProviderFailure):
            provider.get_quote("AAPL")

    def test_alpha_vantage_history(self):
        provider = AlphaVantageProvider("key", session=mocked_session({'Time Series (Daily)': {
            '2024-01-03': {'1. open': '11', '2. high': '12', '3. low': '10', '4. close': '11.5', '5. volume': '100'},
            '2024-01-02': {'1. open': '10', '2. high': '11', '3. low': '9', '4. close': '10.5', '5. volume': '100'},
        }}))

        history = provider.get_historical_prices("AAPL", 10)

        self.assertEqual(list(history['Close']), [10.5, 11.5])

    def test_build_providers_skips_missing_keys(self):
        names = [p.name for p in build_providers(DataConfig())]
        self.assertEqual(names, ["yahoo"])

        config = DataConfig(providers=["finnhub", "yahoo", "synthetic"], finnhub_api_key="key")
        self.assertEqual([p.name for p in build_providers(config)], ["finnhub", "yahoo"])


class TestSyntheticProvider(unittest.TestCase):
    """Seeded random walk"""

    def test_deterministic(self):
        first = SyntheticProvider(seed=7).get_quote("AAPL")
        second = SyntheticProvider(seed=7).get_quote("AAPL")

        self.assertEqual(first.price, second.price)
        self.assertTrue(first.is_synthetic)
        self.assertGreater(first.price, 0)

    def test_history_shape(self):
        history = SyntheticProvider().get_historical_prices("MSFT", 60)

        self.assertEqual(len(history), 60)
        self.assertTrue((history['High'] >= history['Low']).all())
        self.assertTrue(is_synthetic_history(history))

    def test_no_fundamentals(self):
        self.assertIsNone(SyntheticProvider().get_fundamentals("AAPL"))


class TestGateway(unittest.IsolatedAsyncioTestCase):
    """Provider fallback through the async gateway"""

    def make_gateway(self, providers, **config):
        gateway = MarketDataGateway(DataConfig(**config), providers=providers)
        self.addCleanup(gateway.shutdown)
        return gateway

    async def test_first_provider_serves(self):
        primary = FakeProvider("primary", {"AAPL": 100.0})
        backup = FakeProvider("backup", {"AAPL": 200.0})

        quote = await self.make_gateway([primary, backup]).get_quote("AAPL")

        self.assertEqual(quote.price, 100.0)
        self.assertEqual(backup.calls, 0)

    async def test_fallback_on_failure(self):
        gateway = self.make_gateway([FakeProvider("primary", fail=True), FakeProvider("backup", {"AAPL": 200.0})])

        quote = await gateway.get_quote("AAPL")

        self.assertEqual(quote.source, "backup")

    async def test_missing_symbols_retried_on_next_provider(self):
        gateway = self.make_gateway([
            FakeProvider("primary", {"AAPL": 100.0}),
            FakeProvider("backup", {"MSFT": 300.0}),
        ])

        quotes = await gateway.get_multiple_quotes(["AAPL", "MSFT", "ZZZZ", "AAPL"])

        self.assertEqual(list(quotes), ["AAPL", "MSFT", "ZZZZ"])
        self.assertEqual(quotes["AAPL"].source, "primary")
        self.assertEqual(quotes["MSFT"].source, "backup")
        self.assertIsInstance(quotes["ZZZZ"], QuoteError)

    async def test_all_providers_fail(self):
        gateway = self.make_gateway([FakeProvider("a", fail=True), FakeProvider("b", fail=True)])

        with self.assertRaises(ProviderFailure):
            await gateway.get_multiple_quotes(["AAPL"])

    async def test_no_providers(self):
        with self.assertRaises(ProviderFailure):
            await self.make_gateway([]).get_multiple_quotes(["AAPL"])

    async def test_unknown_symbol_raises(self):
        with self.assertRaises(DataUnavailable):
            await self.make_gateway([FakeProvider("primary")]).get_quote("ZZZZ")

    async def test_synthetic_fallback(self):
        gateway = self.make_gateway([FakeProvider("primary", fail=True)], allow_synthetic_fallback=True)

        quote = await gateway.get_quote("AAPL")

        self.assertTrue(quote.is_synthetic)
        self.assertEqual(quote.source, "synthetic")

    async def test_synthetic_not_used_by_default(self):
        gateway = self.make_gateway([FakeProvider("primary", fail=True)])

        with self.assertRaises(ProviderFailure):
            await gateway.get_quote("AAPL")

    async def test_timeout_becomes_provider_failure(self):
        slow = FakeProvider("slow", {"AAPL": 100.0}, delay=0.5)
        fast = FakeProvider("fast", {"AAPL": 101.0})
        gateway = self.make_gateway([slow, fast], request_timeout_seconds=0.05)

        quote = await gateway.get_quote("AAPL")

        self.assertEqual(quote.source, "fast")

    async def test_history_fallback_and_none(self):
        history = SyntheticProvider().get_historical_prices("AAPL", 40)
        history.attrs.clear()
        gateway = self.make_gateway([FakeProvider("primary"), FakeProvider("backup", history=history)])

        frame = await gateway.get_historical_prices("AAPL", 30)
        self.assertEqual(len(frame), 30)
        self.assertFalse(is_synthetic_history(frame))

        empty = self.make_gateway([FakeProvider("primary")])
        self.assertIsNone(await empty.get_historical_prices("AAPL"))

    async def test_synthetic_history_labelled(self):
        gateway = self.make_gateway([FakeProvider("primary")], allow_synthetic_fallback=True)

        frame = await gateway.get_historical_prices("AAPL", 30)

        self.assertEqual(len(frame), 30)
        self.assertTrue(is_synthetic_history(frame))
        self.assertIsNone(await gateway.get_fundamentals("AAPL"))

    async def test_fundamentals_first_available(self):
        metrics = FundamentalMetrics(roe=0.3)
        gateway = self.make_gateway([FakeProvider("primary"), FakeProvider("backup", fundamentals=metrics)])

        self.assertIs(await gateway.get_fundamentals("AAPL"), metrics)

    async def test_provider_batches_per_symbol_errors(self):
        provider = FakeProvider("primary", {"AAPL": 100.0})

        with patch.object(provider, 'get_quote', wraps=provider.get_quote) as wrapped:
            results = provider.get_multiple_quotes(["AAPL", "ZZZZ"])

        self.assertEqual(wrapped.call_count, 2)
        self.assertIsInstance(results["AAPL"], Quote)
        self.assertEqual(results["ZZZZ"].reason, "unknown symbol")


if __name__ == "__main__":
    unittest.main()
