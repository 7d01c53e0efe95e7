# -*- coding: utf-8 -*-
"""
Market Data Models for RiskPilot
================================

Data models for quotes, fundamental figures, technical analysis results,
per-instrument market analysis and portfolio allocations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


@dataclass
class Quote:
    """Current quote for one instrument"""

    symbol: str
    price: float
    change: float
    change_percent: float
    volume: int
    timestamp: datetime = field(default_factory=datetime.now)
    source: str = "unknown"
    is_synthetic: bool = False

    def __post_init__(self):
        """Validate quote consistency"""
        if self.price <= 0:
            raise ValueError(f"Quote price must be positive: {self.price}")

        if self.volume < 0:
            raise ValueError(f"Volume cannot be negative: {self.volume}")

    @property
    def previous_close(self) -> float:
        """Close implied by price and absolute change"""
        return self.price - self.change


@dataclass
class QuoteError:
    """Quote that could not be produced"""

    symbol: str
    reason: str
    source: str = "unknown"


QuoteResult = Union[Quote, QuoteError]


@dataclass
class FundamentalMetrics:
    """Raw fundamental ratios. Growth figures and margins are fractions."""

    eps_growth: Optional[float] = None
    roe: Optional[float] = None
    sales_growth: Optional[float] = None
    pe_ratio: Optional[float] = None
    debt_to_equity: Optional[float] = None
    current_ratio: Optional[float] = None
    operating_margin: Optional[float] = None
    sector: Optional[str] = None
    score: float = 0.0


class TrendDirection(Enum):
    """Direction of a fitted price trend"""

    UP = "up"
    DOWN = "down"
    SIDEWAYS = "sideways"


class MASignal(Enum):
    """Moving average alignment"""

    BULLISH = "bullish"
    NEUTRAL = "neutral"
    BEARISH = "bearish"


@dataclass
class TechnicalAnalysis:
    """Technical indicators and derived technical score"""

    rsi: float
    macd: float = 0.0
    macd_signal: float = 0.0
    ma_signal: MASignal = MASignal.NEUTRAL
    breakout: bool = False
    volume_surge: bool = False
    trend_direction: TrendDirection = TrendDirection.SIDEWAYS
    trend_strength: float = 0.0
    support: Optional[float] = None
    resistance: Optional[float] = None
    from_history: bool = False
    score: float = 0.0

    @property
    def macd_bullish(self) -> bool:
        return self.macd > self.macd_signal


@dataclass
class MarketAnalysis:
    """Per-instrument analysis for one cycle"""

    symbol: str
    price: float
    change_percent: float
    volatility: float
    momentum: float
    value_score: float
    sentiment_score: float
    sector: str
    fundamentals: FundamentalMetrics
    technicals: TechnicalAnalysis
    combined_score: float
    bearish_signals: int = 0
    passed_screen: bool = False
    is_synthetic: bool = False
    analysed_at: datetime = field(default_factory=datetime.now)

    @property
    def trend_direction(self) -> TrendDirection:
        return self.technicals.trend_direction

    @property
    def trend_strength(self) -> float:
        return self.technicals.trend_strength

    @property
    def support(self) -> Optional[float]:
        return self.technicals.support

    @property
    def resistance(self) -> Optional[float]:
        return self.technicals.resistance


class AllocationAction(Enum):
    """Action attached to a target allocation"""

    BUY = "buy"
    HOLD = "hold"


@dataclass
class PortfolioAllocation:
    """Target weight for one instrument"""

    symbol: str
    target_weight: float
    action: AllocationAction
    priority: float
    sector: str
    composite_score: float
    reasoning: str = ""

    def __post_init__(self):
        """Validate allocation"""
        if not 0.0 <= self.target_weight <= 1.0:
            raise ValueError(f"Target weight must be between 0 and 1: {self.target_weight}")

        if not 0.0 <= self.priority <= 1.0:
            raise ValueError(f"Priority must be between 0 and 1: {self.priority}")
