# -*- coding: utf-8 -*-
"""
Market Data Gateway
===================

Async front for the provider chain. Providers are tried in priority order;
each blocking provider call runs in a thread pool and is bounded by
``asyncio.wait_for``. The synthetic provider is consulted only when it is
enabled and every real provider failed.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
from loguru import logger

from ...config.settings import DataConfig
from ..models.market import FundamentalMetrics, Quote, QuoteError, QuoteResult
from .base import DataUnavailable, MarketDataError, MarketDataProvider, ProviderFailure, mark_synthetic
from .http_providers import AlphaVantageProvider, FinnhubProvider, TwelveDataProvider
from .synthetic_provider import SyntheticProvider
from .yahoo_provider import YahooFinanceProvider


def build_providers(config: DataConfig) -> List[MarketDataProvider]:
    """
    Instantiate the configured real providers in priority order.

    Providers missing their API key are left out of the chain.
    """
    factories: Dict[str, Callable[[], MarketDataProvider]] = {
        'yahoo': YahooFinanceProvider,
        'twelvedata': lambda: TwelveDataProvider(config.twelvedata_api_key, config.request_timeout_seconds),
        'alpha_vantage': lambda: AlphaVantageProvider(config.alpha_vantage_api_key, config.request_timeout_seconds),
        'finnhub': lambda: FinnhubProvider(config.finnhub_api_key, config.request_timeout_seconds),
    }

    providers = []
    for name in config.providers:
        if name == 'synthetic':
            continue  # handled by the gateway's fallback flag
        provider = factories[name]()
        if provider.is_configured():
            providers.append(provider)
        else:
            logger.info(f"Provider {name} not configured, skipping")

    return providers


class MarketDataGateway:
    """
    Priority-ordered market data access with fallback.

    Args:
        config: Data configuration
        providers: Real providers in priority order (built from config when omitted)
        synthetic: Provider used as last resort when ``allow_synthetic_fallback`` is set
    """

    def __init__(
        self,
        config: DataConfig,
        providers: Optional[List[MarketDataProvider]] = None,
        synthetic: Optional[MarketDataProvider] = None,
    ):
        self.config = config
        self.providers = providers if providers is not None else build_providers(config)
        self.synthetic = synthetic or SyntheticProvider(seed=config.synthetic_seed)
        self._executor = ThreadPoolExecutor(max_workers=config.max_workers, thread_name_prefix="marketdata")

        names = ", ".join(p.name for p in self.providers) or "none"
        logger.info(
            f"Market data gateway initialized with providers: {names}"
            + (" (+synthetic fallback)" if config.allow_synthetic_fallback else "")
        )

    async def _call(self, provider: MarketDataProvider, method: Callable[..., Any], *args) -> Any:
        """Run a blocking provider method in the pool with the configured timeout"""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, partial(method, *args)),
                timeout=self.config.request_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ProviderFailure(provider.name, f"timed out after {self.config.request_timeout_seconds}s") from e

    def _fallback_chain(self) -> List[MarketDataProvider]:
        if self.config.allow_synthetic_fallback:
            return [*self.providers, self.synthetic]
        return list(self.providers)

    async def get_quote(self, symbol: str) -> Quote:
        """
        Fetch one quote, falling back through the provider chain.

        Raises:
            DataUnavailable: If every provider answered but none had valid data
            ProviderFailure: If no provider could be reached
        """
        results = await self.get_multiple_quotes([symbol])
        result = results[symbol]
        if isinstance(result, QuoteError):
            raise DataUnavailable(symbol, result.reason, result.source)
        return result

    async def get_multiple_quotes(self, symbols: List[str]) -> Dict[str, QuoteResult]:
        """
        Fetch quotes for several symbols.

        Symbols a provider could not serve are retried on the next provider.
        Symbols nobody could serve come back as ``QuoteError``.

        Raises:
            ProviderFailure: If every provider in the chain failed outright
        """
        results: Dict[str, QuoteResult] = {}
        pending = list(dict.fromkeys(symbols))
        reached_any = False
        last_failure: Optional[ProviderFailure] = None

        for provider in self._fallback_chain():
            if not pending:
                break

            if provider is self.synthetic:
                logger.warning(f"All real providers failed for {len(pending)} symbols, using synthetic data")

            try:
                batch = await self._call(provider, provider.get_multiple_quotes, pending)
            except ProviderFailure as e:
                logger.warning(f"Provider {provider.name} failed: {e.reason}")
                last_failure = e
                continue

            reached_any = True
            still_pending = []
            for symbol in pending:
                result = batch.get(symbol)
                if isinstance(result, Quote):
                    results[symbol] = result
                else:
                    results[symbol] = result or QuoteError(symbol, "missing from batch", provider.name)
                    still_pending.append(symbol)
            pending = still_pending

        if not reached_any:
            raise last_failure or ProviderFailure("gateway", "no market data providers configured")

        return results

    async def get_historical_prices(self, symbol: str, lookback: Optional[int] = None) -> Optional[pd.DataFrame]:
        """
        Fetch daily OHLCV history.

        Returns:
            DataFrame oldest bar first, or None when no provider has history.
            Bars from the synthetic provider carry the synthetic label.
        """
        lookback = lookback or self.config.history_lookback

        for provider in self._fallback_chain():
            try:
                frame = await self._call(provider, provider.get_historical_prices, symbol, lookback)
            except MarketDataError as e:
                logger.debug(f"History for {symbol} unavailable from {provider.name}: {e}")
                continue

            if provider is self.synthetic:
                logger.warning(f"Using synthetic history for {symbol}")
                mark_synthetic(frame)
            return frame

        logger.info(f"No historical data for {symbol}, using quote-only analysis")
        return None

    async def get_fundamentals(self, symbol: str) -> Optional[FundamentalMetrics]:
        """First fundamentals any real provider returns, else None"""
        for provider in self.providers:
            try:
                metrics = await self._call(provider, provider.get_fundamentals, symbol)
            except MarketDataError as e:
                logger.debug(f"Fundamentals for {symbol} unavailable from {provider.name}: {e}")
                continue
            if metrics is not None:
                return metrics

        return None

    def shutdown(self) -> None:
        """Release the worker pool"""
        self._executor.shutdown(wait=False)
