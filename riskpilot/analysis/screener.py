# -*- coding: utf-8 -*-
"""
Screening Analyzer for RiskPilot
================================

Scores every instrument of the universe on fundamentals and technicals,
derives the 0-1 factors used by allocation, counts bearish signals for the
emergency check and applies the conjunctive screening gate.
"""

from __future__ import annotations

import asyncio
import math
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from ..config.settings import EngineConfig, ScreeningThresholds
from ..data.models import (
    FundamentalMetrics,
    MASignal,
    MarketAnalysis,
    Quote,
    QuoteError,
    TechnicalAnalysis,
    TrendDirection,
)
from ..data.providers import DataUnavailable, MarketDataGateway, is_synthetic_history, log_quote_errors
from .indicators import MACD, RSI, linear_trend

FUNDAMENTAL_WEIGHT = 0.6
TECHNICAL_WEIGHT = 0.4

# Fitted move below this is treated as sideways
SIDEWAYS_MOVE = 0.02

TRADING_DAYS = 252


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class ScreeningAnalyzer:
    """
    Per-instrument scoring and screening.

    Args:
        config: Engine configuration (screening thresholds and sector map)
        gateway: Market data gateway used by ``analyze_universe``
    """

    def __init__(self, config: EngineConfig, gateway: Optional[MarketDataGateway] = None):
        self.config = config
        self.gateway = gateway

    @property
    def thresholds(self) -> ScreeningThresholds:
        return self.config.screening

    # ------------------------------------------------------------------
    # Scoring rubrics
    # ------------------------------------------------------------------

    def score_fundamentals(self, metrics: FundamentalMetrics) -> float:
        """
        Additive fundamental rubric, capped at 10.

        EPS growth 0-3, ROE 0-2, sales growth 0-2, P/E, debt/equity and
        operating margin one point each. Missing figures score nothing.
        """
        t = self.thresholds
        score = 0.0

        if metrics.eps_growth is not None:
            if metrics.eps_growth >= 2 * t.min_eps_growth:
                score += 3
            elif metrics.eps_growth >= t.min_eps_growth:
                score += 2
            elif metrics.eps_growth > 0:
                score += 1

        if metrics.roe is not None:
            if metrics.roe >= 1.5 * t.min_roe:
                score += 2
            elif metrics.roe >= t.min_roe:
                score += 1

        if metrics.sales_growth is not None:
            if metrics.sales_growth >= 1.5 * t.min_sales_growth:
                score += 2
            elif metrics.sales_growth >= t.min_sales_growth:
                score += 1

        if metrics.pe_ratio is not None and 0 < metrics.pe_ratio <= t.max_pe:
            score += 1

        if metrics.debt_to_equity is not None and 0 <= metrics.debt_to_equity <= t.max_debt_to_equity:
            score += 1

        if metrics.operating_margin is not None and metrics.operating_margin >= t.min_operating_margin:
            score += 1

        return min(10.0, score)

    def score_technicals(self, technicals: TechnicalAnalysis) -> float:
        """Additive technical rubric, capped at 10"""
        t = self.thresholds
        score = 0.0

        if technicals.breakout:
            score += 3
        if technicals.volume_surge:
            score += 2

        if technicals.ma_signal is MASignal.BULLISH:
            score += 2
        elif technicals.ma_signal is MASignal.NEUTRAL:
            score += 1

        if t.rsi_band_low <= technicals.rsi <= t.rsi_band_high:
            score += 1
        if technicals.macd_bullish:
            score += 1
        if (technicals.trend_strength >= t.trend_strength_threshold
                and technicals.trend_direction is not TrendDirection.DOWN):
            score += 1

        return min(10.0, score)

    def combined_score(self, fundamental_score: float, technical_score: float) -> float:
        return _clamp(fundamental_score * FUNDAMENTAL_WEIGHT + technical_score * TECHNICAL_WEIGHT, 0.0, 10.0)

    # ------------------------------------------------------------------
    # Screening gate
    # ------------------------------------------------------------------

    def gate_failures(self, metrics: FundamentalMetrics, technicals: TechnicalAnalysis) -> List[str]:
        """
        Conditions of the screening gate that do not hold.

        A missing fundamental figure fails its condition.
        """
        t = self.thresholds
        failures = []

        def check(name: str, value: Optional[float], passes) -> None:
            if value is None:
                failures.append(f"{name} missing")
            elif not passes(value):
                failures.append(f"{name}={value:.2f}")

        check("eps_growth", metrics.eps_growth, lambda v: v >= t.min_eps_growth)
        check("roe", metrics.roe, lambda v: v >= t.min_roe)
        check("sales_growth", metrics.sales_growth, lambda v: v >= t.min_sales_growth)
        check("pe_ratio", metrics.pe_ratio, lambda v: 0 < v <= t.max_pe)
        check("debt_to_equity", metrics.debt_to_equity, lambda v: v <= t.max_debt_to_equity)
        check("current_ratio", metrics.current_ratio, lambda v: v >= t.min_current_ratio)

        if not technicals.breakout:
            failures.append("no breakout")
        if not technicals.volume_surge:
            failures.append("no volume surge")
        if technicals.rsi > t.rsi_max:
            failures.append(f"rsi={technicals.rsi:.1f}")
        if technicals.trend_strength < t.trend_strength_threshold:
            failures.append(f"trend_strength={technicals.trend_strength:.2f}")

        return failures

    def passes_screen(self, metrics: FundamentalMetrics, technicals: TechnicalAnalysis) -> bool:
        return not self.gate_failures(metrics, technicals)

    # ------------------------------------------------------------------
    # Technical analysis
    # ------------------------------------------------------------------

    def analyze_technicals(self, quote: Quote, history: Optional[pd.DataFrame] = None) -> TechnicalAnalysis:
        """Full model with enough history, simplified quote-only model otherwise"""
        if history is not None and len(history) >= self.thresholds.min_history_bars:
            return self._technicals_from_history(history)
        return self._technicals_from_quote(quote)

    def _technicals_from_history(self, history: pd.DataFrame) -> TechnicalAnalysis:
        t = self.thresholds
        closes = history['Close']
        price = float(closes.iloc[-1])

        rsi = RSI.latest(closes, t.rsi_period)

        macd_frame = MACD.calculate_macd(closes)
        macd = float(macd_frame['macd'].iloc[-1])
        macd_signal = float(macd_frame['signal'].iloc[-1])

        sma_short = float(closes.tail(t.ma_short).mean())
        sma_long = float(closes.tail(t.ma_long).mean())
        if price > sma_short > sma_long:
            ma_signal = MASignal.BULLISH
        elif price < sma_short < sma_long:
            ma_signal = MASignal.BEARISH
        else:
            ma_signal = MASignal.NEUTRAL

        # Breakout and volume surge compare the last bar with the bars before it
        prior = history.iloc[:-1]
        prior_high = float(prior['High'].tail(t.breakout_lookback).max())
        breakout = price > prior_high

        average_volume = float(prior['Volume'].tail(t.volume_average_period).mean())
        last_volume = float(history['Volume'].iloc[-1])
        volume_surge = average_volume > 0 and last_volume >= t.volume_surge_multiplier * average_volume

        _, r_squared, move = linear_trend(closes.tail(t.trend_lookback))
        if abs(move) < SIDEWAYS_MOVE:
            direction = TrendDirection.SIDEWAYS
        elif move > 0:
            direction = TrendDirection.UP
        else:
            direction = TrendDirection.DOWN

        return TechnicalAnalysis(
            rsi=rsi,
            macd=macd,
            macd_signal=macd_signal,
            ma_signal=ma_signal,
            breakout=breakout,
            volume_surge=volume_surge,
            trend_direction=direction,
            trend_strength=r_squared,
            support=float(prior['Low'].tail(t.breakout_lookback).min()),
            resistance=prior_high,
            from_history=True,
        )

    def _technicals_from_quote(self, quote: Quote) -> TechnicalAnalysis:
        t = self.thresholds
        change = quote.change_percent

        if change > 1:
            ma_signal = MASignal.BULLISH
            direction = TrendDirection.UP
        elif change > -1:
            ma_signal = MASignal.NEUTRAL
            direction = TrendDirection.SIDEWAYS
        else:
            ma_signal = MASignal.BEARISH
            direction = TrendDirection.DOWN

        previous_close = quote.previous_close
        return TechnicalAnalysis(
            rsi=_clamp(50 + change * 5, 0.0, 100.0),
            macd=quote.change,
            macd_signal=0.0,
            ma_signal=ma_signal,
            breakout=change >= t.breakout_change_pct,
            volume_surge=quote.volume >= t.simplified_volume_surge,
            trend_direction=direction,
            trend_strength=min(1.0, abs(change) / 5),
            support=min(quote.price, previous_close),
            resistance=max(quote.price, previous_close),
            from_history=False,
        )

    # ------------------------------------------------------------------
    # Derived factors
    # ------------------------------------------------------------------

    def _volatility(self, quote: Quote, history: Optional[pd.DataFrame]) -> float:
        if history is not None and len(history) >= self.thresholds.min_history_bars:
            returns = history['Close'].pct_change().dropna().tail(self.thresholds.trend_lookback)
            if len(returns) > 1:
                annualized = float(returns.std() * math.sqrt(TRADING_DAYS))
                if np.isfinite(annualized):
                    return _clamp(annualized)
        return min(1.0, abs(quote.change_percent) / 10)

    def _momentum(self, quote: Quote, history: Optional[pd.DataFrame]) -> float:
        if history is not None and len(history) > self.thresholds.trend_lookback:
            closes = history['Close']
            start = float(closes.iloc[-self.thresholds.trend_lookback - 1])
            return_pct = (float(closes.iloc[-1]) / start - 1) * 100 if start > 0 else 0.0
            return _clamp((return_pct + 10) / 20)
        return _clamp((quote.change_percent + 10) / 20)

    def _value_score(self, quote: Quote, history: Optional[pd.DataFrame], metrics: FundamentalMetrics) -> float:
        if history is not None and len(history) >= self.thresholds.min_history_bars:
            mean_close = float(history['Close'].mean())
            if mean_close > 0:
                # 20% below the mean scores 1.0, 20% above scores 0.0
                return _clamp(0.5 + (mean_close - quote.price) / mean_close * 2.5)
        if metrics.pe_ratio is not None and metrics.pe_ratio > 0:
            return _clamp(1 - metrics.pe_ratio / (2 * self.thresholds.max_pe))
        return 0.5

    @staticmethod
    def _sentiment_score(quote: Quote, technicals: TechnicalAnalysis) -> float:
        sentiment = 0.5 + quote.change_percent / 20
        if technicals.trend_direction is TrendDirection.UP:
            sentiment += 0.1
        elif technicals.trend_direction is TrendDirection.DOWN:
            sentiment -= 0.1
        return _clamp(sentiment)

    def count_bearish_signals(self, quote: Quote, technicals: TechnicalAnalysis) -> int:
        """Number of independent bearish conditions (0-6)"""
        t = self.thresholds
        signals = [
            technicals.ma_signal is MASignal.BEARISH,
            technicals.macd < technicals.macd_signal,
            technicals.rsi < t.rsi_bearish_level,
            technicals.trend_direction is TrendDirection.DOWN,
            technicals.support is not None and quote.price < technicals.support,
            quote.change_percent <= t.bearish_change_pct,
        ]
        return sum(signals)

    def resolve_sector(self, symbol: str, metrics: FundamentalMetrics) -> str:
        if metrics.sector:
            return metrics.sector
        return self.config.sector_map.get(symbol, "Unknown")

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(
        self,
        quote: Quote,
        history: Optional[pd.DataFrame] = None,
        fundamentals: Optional[FundamentalMetrics] = None,
    ) -> MarketAnalysis:
        """
        Analyze one instrument.

        Args:
            quote: Validated quote
            history: Optional daily OHLCV bars, oldest first
            fundamentals: Optional raw fundamental figures

        Returns:
            MarketAnalysis with scores, factors and the gate result

        Raises:
            DataUnavailable: If the quote is a QuoteError
        """
        if isinstance(quote, QuoteError):
            raise DataUnavailable(quote.symbol, quote.reason, quote.source)

        if is_synthetic_history(history) and not quote.is_synthetic:
            logger.warning(f"Ignoring synthetic history for {quote.symbol}, analysing the live quote alone")
            history = None

        metrics = fundamentals or FundamentalMetrics()
        technicals = self.analyze_technicals(quote, history)

        metrics.score = self.score_fundamentals(metrics)
        technicals.score = self.score_technicals(technicals)

        failures = self.gate_failures(metrics, technicals)
        if failures:
            logger.debug(f"{quote.symbol} fails screen: {', '.join(failures)}")

        return MarketAnalysis(
            symbol=quote.symbol,
            price=quote.price,
            change_percent=quote.change_percent,
            volatility=self._volatility(quote, history),
            momentum=self._momentum(quote, history),
            value_score=self._value_score(quote, history, metrics),
            sentiment_score=self._sentiment_score(quote, technicals),
            sector=self.resolve_sector(quote.symbol, metrics),
            fundamentals=metrics,
            technicals=technicals,
            combined_score=self.combined_score(metrics.score, technicals.score),
            bearish_signals=self.count_bearish_signals(quote, technicals),
            passed_screen=not failures,
            is_synthetic=quote.is_synthetic,
        )

    def screen(self, analyses: List[MarketAnalysis]) -> List[MarketAnalysis]:
        """Instruments that passed the gate"""
        return [analysis for analysis in analyses if analysis.passed_screen]

    async def _analyze_symbol(self, quote: Quote) -> Tuple[Optional[MarketAnalysis], Optional[pd.DataFrame]]:
        history, fundamentals = await asyncio.gather(
            self.gateway.get_historical_prices(quote.symbol),
            self.gateway.get_fundamentals(quote.symbol),
        )
        try:
            return self.analyze(quote, history, fundamentals), history
        except (DataUnavailable, ValueError) as e:
            logger.warning(f"Skipping {quote.symbol}: {e}")
            return None, history

    async def analyze_universe(
        self, symbols: Optional[List[str]] = None
    ) -> Tuple[List[MarketAnalysis], Dict[str, Quote], Dict[str, pd.DataFrame]]:
        """
        Fetch data for and analyze every symbol.

        Returns:
            (analyses, quotes by symbol, history by symbol). Symbols without
            a usable quote are logged and left out; symbols without history
            are missing from the third mapping.

        Raises:
            ProviderFailure: If no market data provider could be reached
        """
        if self.gateway is None:
            raise RuntimeError("ScreeningAnalyzer needs a gateway to analyze a universe")

        symbols = symbols or self.config.universe
        results = await self.gateway.get_multiple_quotes(symbols)

        quotes = {s: r for s, r in results.items() if isinstance(r, Quote)}
        log_quote_errors([r for r in results.values() if isinstance(r, QuoteError)])

        analysed = await asyncio.gather(*(self._analyze_symbol(q) for q in quotes.values()))
        analyses = [a for a, _ in analysed if a is not None]
        histories = {s: h for s, (_, h) in zip(quotes, analysed) if h is not None}

        passed = sum(1 for a in analyses if a.passed_screen)
        logger.info(f"Analysed {len(analyses)}/{len(symbols)} symbols, {passed} passed the screen")

        return analyses, quotes, histories
