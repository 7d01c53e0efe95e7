# -*- coding: utf-8 -*-
"""
Allocation Optimizer for RiskPilot
==================================

Ranks screened instruments, assigns target weights under position, sector
and minimum-size constraints, and turns the allocations into entry
decisions sized against the configured investment amount.
"""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from ..config.settings import AISettings, RiskTolerance, apply_update
from ..data.models import (
    AllocationAction,
    DecisionAction,
    DecisionPriority,
    InvestmentDecision,
    MarketAnalysis,
    PortfolioAllocation,
)
from ..utils.logger import log_decision

# Tolerance for floating point weight comparisons and share rounding
WEIGHT_TOLERANCE = 1e-9


class AllocationOptimizer:
    """
    Constrained portfolio allocation.

    The composite score blends the screening score with the allocation
    factors::

        composite = combined * 0.7
                    + (momentum * 0.4 + value * 0.2 + sentiment * 0.3
                       + (1 - volatility) * 0.1) * 0.3

    Candidates are taken in descending composite order. Each receives
    ``min(remaining * max_position_fraction, composite * 0.4 * (1 - volatility * 0.5))``
    clamped to what is left of its sector limit, and is kept only above
    ``min_allocation_weight``.
    """

    def __init__(self, settings: AISettings):
        self.settings = settings

    def update_settings(self, updates: Dict[str, Any]) -> AISettings:
        """
        Apply settings updates atomically.

        Raises:
            ConfigurationError: If any value is invalid (settings unchanged)
        """
        self.settings = apply_update(self.settings, updates)
        logger.info(f"Allocation settings updated: {sorted(updates)}")
        return self.settings

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    @staticmethod
    def composite_score(analysis: MarketAnalysis) -> float:
        factor_blend = (
            analysis.momentum * 0.4
            + analysis.value_score * 0.2
            + analysis.sentiment_score * 0.3
            + (1 - analysis.volatility) * 0.1
        )
        return analysis.combined_score * 0.7 + factor_blend * 0.3

    @staticmethod
    def priority(composite: float) -> float:
        """Composite score mapped to 0-1"""
        return max(0.0, min(1.0, composite / 10))

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def optimize(self, analyses: List[MarketAnalysis], held_symbols: Iterable[str] = ()) -> List[PortfolioAllocation]:
        """
        Build target allocations from screened analyses.

        Args:
            analyses: Instruments that passed the screen
            held_symbols: Symbols with an open position (allocated as HOLD)

        Returns:
            Allocations, possibly empty. Weights sum to at most 1 and no
            sector exceeds its limit.
        """
        held = set(held_symbols)
        scored = sorted(
            ((self.composite_score(a), a) for a in analyses),
            key=lambda item: item[0],
            reverse=True,
        )

        allocations: List[PortfolioAllocation] = []
        remaining = 1.0
        sector_weights: Dict[str, float] = defaultdict(float)

        for composite, analysis in scored:
            if len(allocations) >= self.settings.max_positions:
                break

            target = min(
                remaining * self.settings.max_position_fraction,
                composite * 0.4 * (1 - analysis.volatility * 0.5),
            )

            sector_room = max(0.0, self.settings.sector_limit(analysis.sector) - sector_weights[analysis.sector])
            target = min(target, sector_room)

            if target <= self.settings.min_allocation_weight:
                logger.debug(f"Skipping {analysis.symbol}: weight {target:.3f} below floor")
                continue

            allocations.append(PortfolioAllocation(
                symbol=analysis.symbol,
                target_weight=target,
                action=AllocationAction.HOLD if analysis.symbol in held else AllocationAction.BUY,
                priority=self.priority(composite),
                sector=analysis.sector,
                composite_score=composite,
            ))
            sector_weights[analysis.sector] += target
            remaining -= target

        allocations = self.normalize(allocations)

        if allocations:
            total = sum(a.target_weight for a in allocations)
            logger.info(f"Allocated {len(allocations)} positions, total weight {total:.3f}")
        else:
            logger.info("No allocations this cycle")

        return allocations

    def normalize(self, allocations: List[PortfolioAllocation]) -> List[PortfolioAllocation]:
        """
        Scale weights up to sum to 1 without breaking sector limits.

        Sectors that would exceed their limit are pinned at the limit and
        the rest of the weight is spread over the other sectors in
        proportion. When every represented sector is pinned the remainder
        stays unallocated.
        """
        if not allocations:
            return allocations

        by_sector: Dict[str, float] = defaultdict(float)
        for allocation in allocations:
            by_sector[allocation.sector] += allocation.target_weight

        factors: Dict[str, float] = {}
        active = {sector for sector, weight in by_sector.items() if weight > 0}
        budget = 1.0

        while active:
            active_total = sum(by_sector[s] for s in active)
            scale = budget / active_total

            pinned = {
                s for s in active
                if by_sector[s] * scale > self.settings.sector_limit(s) + WEIGHT_TOLERANCE
            }
            if not pinned:
                for sector in active:
                    factors[sector] = scale
                break

            for sector in pinned:
                limit = self.settings.sector_limit(sector)
                factors[sector] = limit / by_sector[sector]
                budget -= limit
            active -= pinned

        for allocation in allocations:
            allocation.target_weight = min(1.0, allocation.target_weight * factors.get(allocation.sector, 1.0))

        return allocations

    # ------------------------------------------------------------------
    # Entry decisions
    # ------------------------------------------------------------------

    def adjust_for_risk_tolerance(self, confidence: float, change_percent: float) -> float:
        move = abs(change_percent)
        tolerance = self.settings.risk_tolerance

        if tolerance is RiskTolerance.CONSERVATIVE:
            factor = 0.6 if move > 5 else 0.9
        elif tolerance is RiskTolerance.AGGRESSIVE:
            factor = 1.2 if move > 3 else 0.9
        else:
            factor = 0.8 if move > 8 else 1.0

        return max(0.0, min(1.0, confidence * factor))

    @staticmethod
    def determine_strategy(analysis: MarketAnalysis) -> str:
        if analysis.momentum > 0.7:
            return "Momentum Growth"
        if analysis.value_score > 0.7:
            return "Value Discovery"
        if analysis.sentiment_score > 0.8:
            return "Market Sentiment"
        if analysis.volatility > 0.6:
            return "Volatility Harvesting"
        return "Balanced Strategy"

    @staticmethod
    def risk_score(analysis: MarketAnalysis) -> float:
        volatility_risk = analysis.volatility * 4
        sector_risk = 2 if analysis.sector == "Technology" else 1
        momentum_risk = 2 if analysis.momentum < 0.3 else 0
        return min(10.0, volatility_risk + sector_risk + momentum_risk)

    @staticmethod
    def expected_return(analysis: MarketAnalysis, composite: float) -> float:
        """Expected return in percent"""
        base = composite / 10 * 15
        return max(0.0, base + analysis.momentum * 5 - analysis.volatility * 3)

    @staticmethod
    def _reasoning(analysis: MarketAnalysis, allocation: PortfolioAllocation) -> str:
        reasons = []
        if analysis.momentum > 0.7:
            reasons.append("Strong momentum")
        if analysis.value_score > 0.6:
            reasons.append("Attractive valuation")
        if analysis.sentiment_score > 0.7:
            reasons.append("Positive sentiment")
        if analysis.technicals.score >= 6:
            reasons.append("Favorable technicals")
        if analysis.fundamentals.score >= 6:
            reasons.append("Strong fundamentals")
        if allocation.target_weight > 0.15:
            reasons.append("High conviction position")

        return ", ".join(reasons) + "." if reasons else "Balanced risk-return profile."

    @staticmethod
    def _priority_label(priority: float) -> DecisionPriority:
        if priority > 0.7:
            return DecisionPriority.HIGH
        if priority > 0.4:
            return DecisionPriority.MEDIUM
        return DecisionPriority.LOW

    def generate_decisions(
        self,
        allocations: List[PortfolioAllocation],
        analyses: List[MarketAnalysis],
        held_symbols: Iterable[str] = (),
    ) -> List[InvestmentDecision]:
        """
        Entry decisions for BUY allocations.

        Quantity is ``floor(investment_amount * weight / price)``; allocations
        that round to zero shares and symbols already held are skipped.
        """
        by_symbol = {a.symbol: a for a in analyses}
        held = set(held_symbols)
        decisions: List[InvestmentDecision] = []

        for allocation in allocations:
            analysis: Optional[MarketAnalysis] = by_symbol.get(allocation.symbol)
            if analysis is None or allocation.symbol in held or allocation.action is not AllocationAction.BUY:
                continue

            quantity = math.floor(self.settings.investment_amount * allocation.target_weight / analysis.price + WEIGHT_TOLERANCE)
            if quantity <= 0:
                logger.debug(f"Skipping {allocation.symbol}: allocation buys no whole shares")
                continue

            confidence = min(0.95, analysis.sentiment_score + allocation.target_weight * 2)
            confidence = self.adjust_for_risk_tolerance(confidence, analysis.change_percent)

            stop_loss_price = None
            if self.settings.enable_stop_loss:
                stop_loss_price = analysis.price * (1 - self.settings.stop_loss_percent / 100)

            take_profit_price = None
            if self.settings.enable_take_profit:
                take_profit_price = analysis.price * (1 + self.settings.take_profit_percent / 100)

            decision = InvestmentDecision(
                symbol=allocation.symbol,
                action=DecisionAction.BUY,
                quantity=quantity,
                confidence=confidence,
                reasoning=self._reasoning(analysis, allocation),
                strategy=self.determine_strategy(analysis),
                risk_score=self.risk_score(analysis),
                expected_return=self.expected_return(analysis, allocation.composite_score),
                priority=self._priority_label(allocation.priority),
                stop_loss_price=stop_loss_price,
                take_profit_price=take_profit_price,
                allocation_weight=allocation.target_weight,
            )
            decisions.append(decision)
            log_decision(decision.symbol, decision.action.value, decision.confidence, decision.reasoning)

        return decisions
