# -*- coding: utf-8 -*-
"""
Exit Decision Engine for RiskPilot
==================================

Per-position exit logic evaluated every analysis cycle, in priority order:

1. Chandelier trailing stop refresh (only ever tightens the stop)
2. Hard stop: price through the stop exits immediately
3. Scale-out at the next R-multiple take-profit level
4. Composite risk score over six factors

A portfolio-wide emergency check runs before the per-position logic and
force-exits weak positions when most of the analysed market is breaking
down.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from loguru import logger

from ..config.settings import RiskConfig, apply_update
from ..data.models import (
    DecisionAction,
    DecisionPriority,
    InvestmentDecision,
    MarketAnalysis,
    Position,
    Side,
    TrendDirection,
    TriggerType,
    Urgency,
)
from ..data.providers import is_synthetic_history
from .indicators import ATR, EMA, EPSILON, RSI

# Fallback ATR as a fraction of price when bars are unavailable
FALLBACK_ATR_FRACTION = 0.02

FACTOR_NAMES = ('momentum', 'vol_expansion', 'rsi_stress', 'structure_break', 'drawdown', 'time')


@dataclass
class IndicatorSnapshot:
    """Indicator values for the latest bar of one instrument"""

    bars: int = 0
    degraded: bool = True
    atr: float = float('nan')
    atr_pct_rank: float = 0.5
    rsi: float = 50.0
    ema_fast: float = float('nan')
    ema_slow: float = float('nan')
    ema_fast_prev: float = float('nan')
    ema_slow_prev: float = float('nan')
    chandelier_long: float = float('nan')
    chandelier_short: float = float('nan')
    structure_low: float = float('nan')
    structure_high: float = float('nan')


@dataclass
class ExitEvaluation:
    """Outcome of one position evaluation"""

    symbol: str
    action: DecisionAction
    reason: str
    confidence: float
    trigger_type: Optional[TriggerType] = None
    factors: Dict[str, float] = field(default_factory=dict)
    score: Optional[float] = None
    dominant_factor: Optional[str] = None
    stop_price: Optional[float] = None
    quantity: float = 0.0
    r_multiple: float = 0.0
    target_r: Optional[float] = None
    target_price: Optional[float] = None


@dataclass
class EmergencyCheck:
    """Result of the portfolio-wide emergency check"""

    panic: bool
    bearish_fraction: float
    forced_exits: List[str] = field(default_factory=list)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _is_set(value: Optional[float]) -> bool:
    return value is not None and not math.isnan(value)


class ExitDecisionEngine:
    """
    Multi-factor exit decisions for open positions.

    The engine annotates positions in place (stop price, bars held, peak R,
    realized scale-outs, quantity after a scale-out) and returns an
    ``ExitEvaluation``. Callers serialize access per symbol.

    Args:
        config: Risk configuration
    """

    def __init__(self, config: Optional[RiskConfig] = None):
        self.config = config or RiskConfig()

    def update_config(self, updates: Dict[str, Any]) -> RiskConfig:
        """
        Apply configuration updates atomically.

        Raises:
            ConfigurationError: If any value is invalid (configuration unchanged)
        """
        self.config = apply_update(self.config, updates)
        logger.info(f"Risk configuration updated: {sorted(updates)}")
        return self.config

    # ------------------------------------------------------------------
    # Indicators
    # ------------------------------------------------------------------

    def prepare_indicators(self, bars: Optional[pd.DataFrame]) -> IndicatorSnapshot:
        """
        Compute the indicator snapshot for the latest bar.

        With fewer than ``min_bars_for_indicators`` bars the snapshot is
        degraded: bar-based factors score 0 and the trailing refresh is
        skipped. Synthetic bars always give a degraded snapshot.
        """
        cfg = self.config
        if is_synthetic_history(bars):
            logger.warning("Synthetic bars, indicator snapshot degraded")
            return IndicatorSnapshot(bars=len(bars))
        if bars is None or len(bars) < cfg.min_bars_for_indicators:
            return IndicatorSnapshot(bars=0 if bars is None else len(bars))

        closes = bars['Close']
        atr_series = ATR.calculate_atr(bars, cfg.atr_length)
        chandelier = ATR.calculate_chandelier_exit(bars, atr_series, cfg.chandelier_mult, cfg.chandelier_lookback)
        ema_fast = EMA.calculate_ema(closes, cfg.ema_fast)
        ema_slow = EMA.calculate_ema(closes, cfg.ema_slow)

        structure = closes.tail(cfg.structure_lookback)
        atr_clean = atr_series.dropna()

        return IndicatorSnapshot(
            bars=len(bars),
            degraded=False,
            atr=max(float(atr_clean.iloc[-1]), EPSILON) if not atr_clean.empty else float('nan'),
            atr_pct_rank=ATR.percentile_rank(atr_series, cfg.vol_window),
            rsi=RSI.latest(closes, cfg.rsi_len),
            ema_fast=float(ema_fast.iloc[-1]),
            ema_slow=float(ema_slow.iloc[-1]),
            ema_fast_prev=float(ema_fast.iloc[-2]),
            ema_slow_prev=float(ema_slow.iloc[-2]),
            chandelier_long=float(chandelier['long'].iloc[-1]),
            chandelier_short=float(chandelier['short'].iloc[-1]),
            structure_low=float(structure.min()),
            structure_high=float(structure.max()),
        )

    # ------------------------------------------------------------------
    # Stops and R multiples
    # ------------------------------------------------------------------

    def initial_stop_price(self, position: Position, atr: float, price: float) -> float:
        """Entry offset by ``initial_atr_mult`` ATRs against the position"""
        if not _is_set(atr) or atr <= 0:
            atr = price * FALLBACK_ATR_FRACTION
        return position.entry_price - position.side.direction * self.config.initial_atr_mult * atr

    @staticmethod
    def r_multiple(position: Position, price: float) -> float:
        if not position.risk_per_share or position.risk_per_share <= 0:
            return 0.0
        move = (price - position.entry_price) * position.side.direction
        return move / position.risk_per_share

    @staticmethod
    def tighten_stop(position: Position, candidate: Optional[float]) -> float:
        """Move the stop to ``candidate`` only if that is more protective"""
        if not _is_set(candidate):
            return position.stop_price
        if position.stop_price is None:
            position.stop_price = candidate
        elif position.side is Side.LONG:
            position.stop_price = max(position.stop_price, candidate)
        else:
            position.stop_price = min(position.stop_price, candidate)
        return position.stop_price

    @staticmethod
    def hard_stop_hit(position: Position, price: float) -> bool:
        if position.stop_price is None:
            return False
        if position.side is Side.LONG:
            return price <= position.stop_price
        return price >= position.stop_price

    def _ensure_risk(self, position: Position, snapshot: IndicatorSnapshot, price: float) -> None:
        if position.stop_price is None:
            position.stop_price = self.initial_stop_price(position, snapshot.atr, price)
            logger.debug(f"{position.symbol}: initial stop set at {position.stop_price:.2f}")

        if not position.risk_per_share or position.risk_per_share <= 0:
            position.risk_per_share = max(abs(position.entry_price - position.stop_price), EPSILON)

    # ------------------------------------------------------------------
    # Risk factors
    # ------------------------------------------------------------------

    @staticmethod
    def momentum_flag(side: Side, snapshot: IndicatorSnapshot) -> float:
        """1.0 when the EMAs are crossed or both sloping against the position"""
        values = (snapshot.ema_fast, snapshot.ema_slow, snapshot.ema_fast_prev, snapshot.ema_slow_prev)
        if snapshot.degraded or not all(_is_set(v) for v in values):
            return 0.0

        fast_below_slow = snapshot.ema_fast < snapshot.ema_slow
        fast_slope = snapshot.ema_fast - snapshot.ema_fast_prev
        slow_slope = snapshot.ema_slow - snapshot.ema_slow_prev

        if side is Side.LONG:
            crossed = fast_below_slow
            adverse_slope = fast_slope < 0 and slow_slope < 0
        else:
            crossed = not fast_below_slow
            adverse_slope = fast_slope > 0 and slow_slope > 0

        return 1.0 if crossed or adverse_slope else 0.0

    def vol_expansion_flag(self, snapshot: IndicatorSnapshot) -> float:
        if snapshot.degraded:
            return 0.0
        return 1.0 if snapshot.atr_pct_rank >= self.config.vol_pct_for_exit else 0.0

    def rsi_stress(self, side: Side, snapshot: IndicatorSnapshot) -> float:
        """Distance into the adverse RSI extreme over the stress band"""
        if snapshot.degraded:
            return 0.0
        cfg = self.config
        if side is Side.LONG:
            return _clamp((cfg.rsi_exit_long - snapshot.rsi) / cfg.rsi_stress_band)
        return _clamp((snapshot.rsi - cfg.rsi_exit_short) / cfg.rsi_stress_band)

    @staticmethod
    def structure_break(side: Side, snapshot: IndicatorSnapshot, price: float) -> float:
        """1.0 when price closes beyond the prior N-bar close extreme against the position"""
        if snapshot.degraded:
            return 0.0
        if side is Side.LONG:
            return 1.0 if _is_set(snapshot.structure_low) and price < snapshot.structure_low else 0.0
        return 1.0 if _is_set(snapshot.structure_high) and price > snapshot.structure_high else 0.0

    def drawdown_component(self, position: Position, price: float) -> float:
        """Giveback from the peak R, saturating at ``max_intrade_drawdown_r``"""
        r_now = self.r_multiple(position, price)
        position.peak_unrealized = max(position.peak_unrealized, r_now)
        giveback = position.peak_unrealized - r_now
        return _clamp(giveback / self.config.max_intrade_drawdown_r)

    def time_component(self, position: Position) -> float:
        return _clamp(position.bars_held / self.config.max_bars_in_trade)

    def composite_score(self, factors: Dict[str, float]) -> Tuple[float, Dict[str, float]]:
        """
        Weighted factor sum clamped to [0, 1].

        Returns:
            (score, weighted contribution per factor)
        """
        cfg = self.config
        weights = {
            'momentum': cfg.w_momentum,
            'vol_expansion': cfg.w_vol_expansion,
            'rsi_stress': cfg.w_rsi_stress,
            'structure_break': cfg.w_structure_break,
            'drawdown': cfg.w_drawdown,
            'time': cfg.w_time,
        }
        contributions = {name: weights[name] * factors.get(name, 0.0) for name in FACTOR_NAMES}
        return _clamp(sum(contributions.values())), contributions

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _check_scale_out(self, position: Position, price: float) -> Optional[ExitEvaluation]:
        if not self.config.enable_scale_outs or position.realized_scaleouts >= len(position.take_profit_levels):
            return None

        index = position.realized_scaleouts
        target_r = position.take_profit_levels[index]
        direction = position.side.direction
        target_price = position.entry_price + target_r * position.risk_per_share * direction

        hit = price >= target_price if position.side is Side.LONG else price <= target_price
        if not hit:
            return None

        qty_to_sell = position.qty * position.scale_out_percents[index]
        position.qty = max(0.0, position.qty - qty_to_sell)
        position.realized_scaleouts += 1

        # Lock in breakeven once profits have been taken
        self.tighten_stop(position, position.entry_price)

        return ExitEvaluation(
            symbol=position.symbol,
            action=DecisionAction.SCALE_OUT,
            reason=f"Take profit at {target_r:g}R level",
            confidence=0.9,
            trigger_type=TriggerType.SCALE_OUT,
            factors={'take_profit': 1.0},
            stop_price=position.stop_price,
            quantity=qty_to_sell,
            r_multiple=self.r_multiple(position, price),
            target_r=target_r,
            target_price=target_price,
        )

    def evaluate_position(
        self,
        position: Position,
        price: float,
        snapshot: Optional[IndicatorSnapshot] = None,
    ) -> ExitEvaluation:
        """
        Decide whether to hold, scale out or exit one position.

        Args:
            position: Open position (annotated in place)
            price: Current price
            snapshot: Indicators for the instrument, degraded when omitted

        Returns:
            ExitEvaluation
        """
        if price <= 0:
            raise ValueError(f"Price must be positive: {price}")

        snapshot = snapshot or IndicatorSnapshot()
        position.bars_held += 1
        self._ensure_risk(position, snapshot, price)

        if not snapshot.degraded:
            chandelier = snapshot.chandelier_long if position.side is Side.LONG else snapshot.chandelier_short
            self.tighten_stop(position, chandelier)

        if self.hard_stop_hit(position, price):
            return ExitEvaluation(
                symbol=position.symbol,
                action=DecisionAction.EXIT,
                reason=f"Hard stop hit at {position.stop_price:.2f}",
                confidence=1.0,
                trigger_type=TriggerType.HARD_STOP,
                factors={'hard_stop': 1.0},
                stop_price=position.stop_price,
                quantity=position.qty,
                r_multiple=self.r_multiple(position, price),
            )

        scale_out = self._check_scale_out(position, price)
        if scale_out is not None:
            return scale_out

        factors = {
            'momentum': self.momentum_flag(position.side, snapshot),
            'vol_expansion': self.vol_expansion_flag(snapshot),
            'rsi_stress': self.rsi_stress(position.side, snapshot),
            'structure_break': self.structure_break(position.side, snapshot, price),
            'drawdown': self.drawdown_component(position, price),
            'time': self.time_component(position),
        }
        score, contributions = self.composite_score(factors)
        dominant = max(contributions, key=contributions.get)

        if score >= self.config.exit_threshold:
            return ExitEvaluation(
                symbol=position.symbol,
                action=DecisionAction.EXIT,
                reason=f"Composite risk score {score:.1%} (dominated by {dominant})",
                confidence=score,
                trigger_type=TriggerType.COMPOSITE,
                factors=factors,
                score=score,
                dominant_factor=dominant,
                stop_price=position.stop_price,
                quantity=position.qty,
                r_multiple=self.r_multiple(position, price),
            )

        return ExitEvaluation(
            symbol=position.symbol,
            action=DecisionAction.HOLD,
            reason=f"Risk manageable: {score:.1%} risk score",
            confidence=1 - score,
            factors=factors,
            score=score,
            dominant_factor=dominant,
            stop_price=position.stop_price,
            r_multiple=self.r_multiple(position, price),
        )

    # ------------------------------------------------------------------
    # Portfolio emergency
    # ------------------------------------------------------------------

    def check_portfolio_emergency(
        self,
        analyses: List[MarketAnalysis],
        positions: List[Position],
    ) -> EmergencyCheck:
        """
        Detect a market-wide breakdown.

        Panic when the share of analysed instruments with at least
        ``panic_bearish_signals`` bearish signals and a down trend reaches
        ``panic_threshold``. During panic every position whose own analysis
        shows at least ``forced_exit_bearish_signals`` is forced out.
        """
        if not analyses:
            return EmergencyCheck(panic=False, bearish_fraction=0.0)

        cfg = self.config
        panicked = sum(
            1 for a in analyses
            if a.bearish_signals >= cfg.panic_bearish_signals and a.trend_direction is TrendDirection.DOWN
        )
        fraction = panicked / len(analyses)

        if fraction < cfg.panic_threshold:
            return EmergencyCheck(panic=False, bearish_fraction=fraction)

        by_symbol = {a.symbol: a for a in analyses}
        forced = [
            p.symbol for p in positions
            if p.symbol in by_symbol and by_symbol[p.symbol].bearish_signals >= cfg.forced_exit_bearish_signals
        ]

        logger.warning(
            f"Portfolio emergency: {fraction:.0%} of instruments bearish, forcing exit of {len(forced)} positions"
        )
        return EmergencyCheck(panic=True, bearish_fraction=fraction, forced_exits=forced)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def to_decision(self, position: Position, evaluation: ExitEvaluation, price: float) -> InvestmentDecision:
        """Convert an evaluation into an immutable InvestmentDecision"""
        if evaluation.trigger_type is TriggerType.HARD_STOP:
            urgency, priority, risk_score = Urgency.IMMEDIATE, DecisionPriority.HIGH, 10.0
        elif evaluation.trigger_type is TriggerType.SCALE_OUT:
            urgency, priority, risk_score = Urgency.HIGH, DecisionPriority.MEDIUM, 3.0
        elif evaluation.action is DecisionAction.EXIT:
            urgency = Urgency.HIGH if (evaluation.score or 0) >= 0.85 else Urgency.NORMAL
            priority, risk_score = DecisionPriority.HIGH, (evaluation.score or 0) * 10
        else:
            urgency, priority, risk_score = None, DecisionPriority.LOW, (evaluation.score or 0) * 10

        next_target = None
        if position.realized_scaleouts < len(position.take_profit_levels) and position.risk_per_share:
            next_r = position.take_profit_levels[position.realized_scaleouts]
            next_target = position.entry_price + next_r * position.risk_per_share * position.side.direction

        return InvestmentDecision(
            symbol=position.symbol,
            action=evaluation.action,
            quantity=evaluation.quantity,
            confidence=_clamp(evaluation.confidence),
            reasoning=evaluation.reason,
            strategy="Risk Exit" if evaluation.action is not DecisionAction.HOLD else "Risk Monitor",
            risk_score=_clamp(risk_score, 0.0, 10.0),
            expected_return=(price / position.entry_price - 1) * 100 * position.side.direction,
            priority=priority,
            urgency=urgency,
            trigger_type=evaluation.trigger_type,
            stop_loss_price=position.stop_price,
            take_profit_price=next_target,
        )

    def emergency_decision(self, position: Position, analysis: MarketAnalysis, fraction: float) -> InvestmentDecision:
        """Forced exit during a portfolio emergency"""
        return InvestmentDecision(
            symbol=position.symbol,
            action=DecisionAction.EXIT,
            quantity=position.qty,
            confidence=1.0,
            reasoning=(
                f"Portfolio emergency: {fraction:.0%} of market bearish, "
                f"{analysis.bearish_signals} bearish signals on {position.symbol}"
            ),
            strategy="Emergency Exit",
            risk_score=10.0,
            expected_return=(analysis.price / position.entry_price - 1) * 100 * position.side.direction,
            priority=DecisionPriority.HIGH,
            urgency=Urgency.IMMEDIATE,
            trigger_type=TriggerType.EMERGENCY,
            stop_loss_price=position.stop_price,
        )
