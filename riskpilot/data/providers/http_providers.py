# -*- coding: utf-8 -*-
"""
HTTP Market Data Providers
==========================

Twelve Data, Alpha Vantage and Finnhub over their REST APIs. All three share
one ``requests`` session per provider with a per-call timeout and map API
error payloads to ProviderFailure.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import pandas as pd
import requests
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


class HTTPProvider(MarketDataProvider):
    """Shared session handling for key-based REST providers"""

    base_url = ""

    def __init__(self, api_key: Optional[str], timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': 'riskpilot/1.0'})

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        if not self.is_configured():
            raise ProviderFailure(self.name, "API key not configured")

        try:
            response = self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise ProviderFailure(self.name, f"request to {path} failed: {e}") from e
        except ValueError as e:
            raise ProviderFailure(self.name, f"invalid JSON from {path}") from e

    @staticmethod
    def _rows_to_frame(rows: Dict[str, Dict[str, Any]], field_map: Dict[str, str]) -> pd.DataFrame:
        """Build an OHLCV frame from a {date: {field: value}} mapping"""
        frame = pd.DataFrame.from_dict(rows, orient='index').rename(columns=field_map)
        frame.index = pd.to_datetime(frame.index)
        return frame


class TwelveDataProvider(HTTPProvider):
    """Market data from Twelve Data"""

    name = "twelvedata"
    base_url = "https://api.twelvedata.com"

    def _checked(self, payload: Any, symbol: str) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise ProviderFailure(self.name, "unexpected payload")
        if payload.get('status') == 'error':
            code = payload.get('code')
            message = payload.get('message', 'unknown error')
            if code in (400, 404):
                raise DataUnavailable(symbol, message, self.name)
            raise ProviderFailure(self.name, message)
        return payload

    def get_quote(self, symbol: str) -> Quote:
        data = self._checked(self._get_json("/quote", {'symbol': symbol, 'apikey': self.api_key}), symbol)
        return parse_quote(
            symbol,
            self.name,
            price=data.get('close'),
            change=data.get('change'),
            change_percent=data.get('percent_change'),
            volume=data.get('volume'),
            previous_close=data.get('previous_close'),
        )

    def get_historical_prices(self, symbol: str, lookback: int) -> pd.DataFrame:
        data = self._checked(self._get_json("/time_series", {
            'symbol': symbol,
            'interval': '1day',
            'outputsize': lookback,
            'apikey': self.api_key,
        }), symbol)

        values = data.get('values') or []
        rows = {row['datetime']: row for row in values if 'datetime' in row}
        frame = self._rows_to_frame(rows, {
            'open': 'Open', 'high': 'High', 'low': 'Low', 'close': 'Close', 'volume': 'Volume',
        }) if rows else pd.DataFrame()

        return normalize_history(symbol, self.name, frame, lookback)


class AlphaVantageProvider(HTTPProvider):
    """Market data from Alpha Vantage"""

    name = "alpha_vantage"
    base_url = "https://www.alphavantage.co"

    def _query(self, symbol: str, **params) -> Dict[str, Any]:
        payload = self._get_json("/query", {'symbol': symbol, 'apikey': self.api_key, **params})
        if not isinstance(payload, dict):
            raise ProviderFailure(self.name, "unexpected payload")

        # Rate limits come back as HTTP 200 with a note
        for key in ('Note', 'Information'):
            if key in payload:
                raise ProviderFailure(self.name, str(payload[key]))
        if 'Error Message' in payload:
            raise DataUnavailable(symbol, str(payload['Error Message']), self.name)

        return payload

    def get_quote(self, symbol: str) -> Quote:
        data = self._query(symbol, function='GLOBAL_QUOTE').get('Global Quote') or {}
        if not data:
            raise DataUnavailable(symbol, "empty global quote", self.name)

        return parse_quote(
            symbol,
            self.name,
            price=data.get('05. price'),
            change=data.get('09. change'),
            change_percent=data.get('10. change percent'),
            volume=data.get('06. volume'),
            previous_close=data.get('08. previous close'),
        )

    def get_historical_prices(self, symbol: str, lookback: int) -> pd.DataFrame:
        output_size = 'compact' if lookback <= 100 else 'full'
        data = self._query(symbol, function='TIME_SERIES_DAILY', outputsize=output_size)

        rows = data.get('Time Series (Daily)') or {}
        frame = self._rows_to_frame(rows, {
            '1. open': 'Open', '2. high': 'High', '3. low': 'Low',
            '4. close': 'Close', '5. volume': 'Volume',
        }) if rows else pd.DataFrame()

        return normalize_history(symbol, self.name, frame, lookback)

    def get_fundamentals(self, symbol: str) -> Optional[FundamentalMetrics]:
        try:
            data = self._query(symbol, function='OVERVIEW')
        except (DataUnavailable, ProviderFailure) as e:
            logger.debug(f"Alpha Vantage overview unavailable for {symbol}: {e}")
            return None

        if not data:
            return None

        sector = data.get('Sector')
        return FundamentalMetrics(
            eps_growth=to_float(data.get('QuarterlyEarningsGrowthYOY')),
            roe=to_float(data.get('ReturnOnEquityTTM')),
            sales_growth=to_float(data.get('QuarterlyRevenueGrowthYOY')),
            pe_ratio=to_float(data.get('PERatio')),
            operating_margin=to_float(data.get('OperatingMarginTTM')),
            sector=sector.title() if sector else None,
        )


class FinnhubProvider(HTTPProvider):
    """Market data from Finnhub"""

    name = "finnhub"
    base_url = "https://finnhub.io/api/v1"

    def get_quote(self, symbol: str) -> Quote:
        data = self._get_json("/quote", {'symbol': symbol, 'token': self.api_key})
        if not isinstance(data, dict):
            raise ProviderFailure(self.name, "unexpected payload")
        if 'error' in data:
            raise ProviderFailure(self.name, str(data['error']))

        # Unknown symbols come back as all zeros
        if not to_float(data.get('c')):
            raise DataUnavailable(symbol, "unknown symbol", self.name)

        return parse_quote(
            symbol,
            self.name,
            price=data.get('c'),
            change=data.get('d'),
            change_percent=data.get('dp'),
            previous_close=data.get('pc'),
            volume_reported=False,
        )

    def get_historical_prices(self, symbol: str, lookback: int) -> pd.DataFrame:
        now = int(time.time())
        data = self._get_json("/stock/candle", {
            'symbol': symbol,
            'resolution': 'D',
            'from': now - int(lookback * 1.6 + 10) * 86400,
            'to': now,
            'token': self.api_key,
        })
        if not isinstance(data, dict):
            raise ProviderFailure(self.name, "unexpected payload")
        if 'error' in data:
            raise ProviderFailure(self.name, str(data['error']))
        if data.get('s') != 'ok':
            raise DataUnavailable(symbol, "no candles", self.name)

        frame = pd.DataFrame({
            'Open': data.get('o', []),
            'High': data.get('h', []),
            'Low': data.get('l', []),
            'Close': data.get('c', []),
            'Volume': data.get('v', []),
        }, index=pd.to_datetime(data.get('t', []), unit='s'))

        return normalize_history(symbol, self.name, frame, lookback)

    def get_fundamentals(self, symbol: str) -> Optional[FundamentalMetrics]:
        try:
            data = self._get_json("/stock/metric", {'symbol': symbol, 'metric': 'all', 'token': self.api_key})
        except ProviderFailure as e:
            logger.debug(f"Finnhub metrics unavailable for {symbol}: {e}")
            return None

        metric = (data or {}).get('metric') or {}
        if not metric:
            return None

        def percent(key: str) -> Optional[float]:
            value = to_float(metric.get(key))
            return value / 100 if value is not None else None

        return FundamentalMetrics(
            eps_growth=percent('epsGrowthTTMYoy'),
            roe=percent('roeTTM'),
            sales_growth=percent('revenueGrowthTTMYoy'),
            pe_ratio=to_float(metric.get('peBasicExclExtraTTM')),
            debt_to_equity=to_float(metric.get('totalDebt/totalEquityQuarterly')),
            current_ratio=to_float(metric.get('currentRatioQuarterly')),
            operating_margin=percent('operatingMarginTTM'),
        )
