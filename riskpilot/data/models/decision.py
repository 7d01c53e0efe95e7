# -*- coding: utf-8 -*-
"""
Decision and Position Models for RiskPilot
==========================================

Data models for open positions, protective stop orders, trigger events and
the immutable investment decisions produced by the engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class Side(Enum):
    """Position side"""

    LONG = "long"
    SHORT = "short"

    @property
    def direction(self) -> int:
        """+1 for long, -1 for short"""
        return 1 if self is Side.LONG else -1


class DecisionAction(Enum):
    """Actions an investment decision can carry"""

    BUY = "buy"
    HOLD = "hold"
    EXIT = "exit"
    SCALE_OUT = "scale_out"


class DecisionPriority(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Urgency(Enum):
    IMMEDIATE = "immediate"
    HIGH = "high"
    NORMAL = "normal"


class TriggerType(Enum):
    """What caused a decision or an order trigger"""

    HARD_STOP = "hard_stop"
    SCALE_OUT = "scale_out"
    COMPOSITE = "composite"
    EMERGENCY = "emergency"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    TRAILING_STOP = "trailing_stop"


class OrderStatus(Enum):
    """Stop order lifecycle. Every status except ACTIVE is terminal."""

    ACTIVE = "active"
    TRIGGERED = "triggered"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


@dataclass(frozen=True)
class InvestmentDecision:
    """Immutable output record of the engine"""

    symbol: str
    action: DecisionAction
    quantity: float
    confidence: float
    reasoning: str
    strategy: str
    risk_score: float
    expected_return: float
    priority: DecisionPriority
    urgency: Optional[Urgency] = None
    trigger_type: Optional[TriggerType] = None
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    allocation_weight: Optional[float] = None
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        """Validate decision ranges"""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be between 0 and 1: {self.confidence}")

        if not 0.0 <= self.risk_score <= 10.0:
            raise ValueError(f"Risk score must be between 0 and 10: {self.risk_score}")

        if self.quantity < 0:
            raise ValueError(f"Quantity cannot be negative: {self.quantity}")

    @property
    def is_exit(self) -> bool:
        return self.action in (DecisionAction.EXIT, DecisionAction.SCALE_OUT)


@dataclass
class Position:
    """
    Open position.

    ``peak_unrealized`` is measured in R multiples of ``risk_per_share``.
    The exit engine annotates ``stop_price``, ``bars_held``,
    ``peak_unrealized``, ``realized_scaleouts`` and an unset
    ``risk_per_share``; everything else is owned by the caller.
    """

    symbol: str
    side: Side
    qty: float
    entry_price: float
    entry_time: datetime = field(default_factory=datetime.now)
    risk_per_share: Optional[float] = None
    stop_price: Optional[float] = None
    take_profit_levels: List[float] = field(default_factory=lambda: [1.0, 2.0])
    scale_out_percents: List[float] = field(default_factory=lambda: [0.5, 0.5])
    bars_held: int = 0
    peak_unrealized: float = 0.0
    realized_scaleouts: int = 0

    def __post_init__(self):
        """Validate position"""
        if self.entry_price <= 0:
            raise ValueError(f"Entry price must be positive: {self.entry_price}")

        if self.qty < 0:
            raise ValueError(f"Quantity cannot be negative: {self.qty}")

        if len(self.take_profit_levels) != len(self.scale_out_percents):
            raise ValueError("take_profit_levels and scale_out_percents must have the same length")

        for pct in self.scale_out_percents:
            if not 0 < pct <= 1:
                raise ValueError(f"Scale-out percent must be in (0, 1]: {pct}")

    @property
    def is_closed(self) -> bool:
        return self.qty <= 0

    @property
    def scale_outs_remaining(self) -> int:
        return len(self.take_profit_levels) - self.realized_scaleouts


@dataclass
class StopLossOrder:
    """Protective order owned by the position monitor"""

    id: str
    symbol: str
    quantity: float
    original_price: float
    stop_loss_price: float
    take_profit_price: Optional[float] = None
    trailing: bool = False
    trailing_percent: float = 0.0
    high_water_mark: Optional[float] = None
    status: OrderStatus = OrderStatus.ACTIVE
    trigger_type: Optional[TriggerType] = None
    created_at: datetime = field(default_factory=datetime.now)
    triggered_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    exit_price: Optional[float] = None
    realized_pnl: Optional[float] = None
    reason: str = ""

    def __post_init__(self):
        """Validate order"""
        if self.original_price <= 0:
            raise ValueError(f"Original price must be positive: {self.original_price}")

        if self.quantity <= 0:
            raise ValueError(f"Quantity must be positive: {self.quantity}")

        if not 0.0 <= self.trailing_percent < 1.0:
            raise ValueError(f"Trailing percent must be a fraction in [0, 1): {self.trailing_percent}")

        if self.high_water_mark is None:
            self.high_water_mark = self.original_price

    @property
    def is_active(self) -> bool:
        return self.status is OrderStatus.ACTIVE

    @property
    def protected_value(self) -> float:
        """Value still protected at the stop price"""
        return self.stop_loss_price * self.quantity


@dataclass
class TriggerEvent:
    """Emitted when a protective order triggers"""

    order_id: str
    symbol: str
    trigger_type: TriggerType
    reason: str
    realized_pnl: float
    exit_price: float
    timestamp: datetime = field(default_factory=datetime.now)
