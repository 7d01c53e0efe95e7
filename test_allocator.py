#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
RiskPilot - Allocation Optimizer Tests
======================================

Sector-capped allocation, weight normalization, position limits and entry
decision sizing.
"""

import unittest
from collections import defaultdict

from riskpilot.analysis import AllocationOptimizer
from riskpilot.config import AISettings, ConfigurationError, RiskTolerance
from riskpilot.data.models import (
    AllocationAction,
    DecisionAction,
    DecisionPriority,
    FundamentalMetrics,
    MarketAnalysis,
    TechnicalAnalysis,
)


def make_analysis(symbol, sector="Technology", combined=8.0, price=100.0, volatility=0.2,
                  momentum=0.5, value=0.5, sentiment=0.5, change_percent=1.0) -> MarketAnalysis:
    return MarketAnalysis(
        symbol=symbol,
        price=price,
        change_percent=change_percent,
        volatility=volatility,
        momentum=momentum,
        value_score=value,
        sentiment_score=sentiment,
        sector=sector,
        fundamentals=FundamentalMetrics(score=combined),
        technicals=TechnicalAnalysis(rsi=55.0, score=combined),
        combined_score=combined,
        passed_screen=True,
    )


def sector_totals(allocations):
    totals = defaultdict(float)
    for allocation in allocations:
        totals[allocation.sector] += allocation.target_weight
    return totals


class TestSectorLimits(unittest.TestCase):
    """Sector caps hold through ranking and normalization"""

    def setUp(self):
        self.optimizer = AllocationOptimizer(AISettings())

    def test_two_technology_candidates_capped(self):
        analyses = [make_analysis("NVDA", combined=9.0), make_analysis("MSFT", combined=8.0)]

        allocations = self.optimizer.optimize(analyses)

        self.assertEqual([a.symbol for a in allocations], ["NVDA", "MSFT"])
        total = sum(a.target_weight for a in allocations)
        self.assertLessEqual(total, 0.4 + 1e-9)
        self.assertAlmostEqual(allocations[0].target_weight, 0.3)
        self.assertAlmostEqual(allocations[1].target_weight, 0.1)

    def test_weights_fill_to_one_across_sectors(self):
        analyses = [
            make_analysis("AAPL", "Technology"),
            make_analysis("AMZN", "Consumer"),
            make_analysis("JNJ", "Healthcare"),
        ]

        allocations = self.optimizer.optimize(analyses)
        totals = sector_totals(allocations)

        self.assertAlmostEqual(sum(totals.values()), 1.0)
        self.assertLessEqual(totals["Technology"], 0.4 + 1e-9)
        self.assertLessEqual(totals["Consumer"], 0.3 + 1e-9)
        self.assertLessEqual(totals["Healthcare"], 0.3 + 1e-9)

    def test_remainder_unallocated_when_sectors_pinned(self):
        analyses = [make_analysis("NVDA", combined=9.0), make_analysis("AMZN", "Consumer", combined=7.0)]

        allocations = self.optimizer.optimize(analyses)
        totals = sector_totals(allocations)

        self.assertLessEqual(sum(totals.values()), 1.0)
        self.assertLessEqual(totals["Technology"], 0.4 + 1e-9)
        self.assertLessEqual(totals["Consumer"], 0.3 + 1e-9)


class TestAllocation(unittest.TestCase):
    """Ranking and candidate selection"""

    def setUp(self):
        self.settings = AISettings(sector_allocation_limits={}, default_sector_limit=1.0)
        self.optimizer = AllocationOptimizer(self.settings)

    def test_normalized_to_one(self):
        analyses = [make_analysis(s, combined=c) for s, c in (("A", 9.0), ("B", 7.0), ("C", 5.0))]

        allocations = self.optimizer.optimize(analyses)

        self.assertAlmostEqual(sum(a.target_weight for a in allocations), 1.0)
        weights = [a.target_weight for a in allocations]
        self.assertEqual(weights, sorted(weights, reverse=True))

    def test_max_positions(self):
        optimizer = AllocationOptimizer(self.settings.copy(update={'max_positions': 2}))
        analyses = [make_analysis(s) for s in ("A", "B", "C", "D")]

        self.assertEqual(len(optimizer.optimize(analyses)), 2)

    def test_weak_candidates_dropped(self):
        weak = make_analysis("WEAK", combined=0.0, volatility=1.0, momentum=0.0, value=0.0, sentiment=0.0)
        self.assertEqual(self.optimizer.optimize([weak]), [])

    def test_empty_input(self):
        self.assertEqual(self.optimizer.optimize([]), [])

    def test_held_symbols_are_hold(self):
        allocations = self.optimizer.optimize([make_analysis("A"), make_analysis("B")], held_symbols=["B"])
        actions = {a.symbol: a.action for a in allocations}

        self.assertEqual(actions["A"], AllocationAction.BUY)
        self.assertEqual(actions["B"], AllocationAction.HOLD)

    def test_priority_in_range(self):
        for allocation in self.optimizer.optimize([make_analysis("A", combined=10.0, momentum=1.0)]):
            self.assertGreaterEqual(allocation.priority, 0.0)
            self.assertLessEqual(allocation.priority, 1.0)


class TestEntryDecisions(unittest.TestCase):
    """BUY decisions sized against the investment amount"""

    def setUp(self):
        self.optimizer = AllocationOptimizer(AISettings())
        self.analyses = [make_analysis("NVDA", combined=9.0), make_analysis("MSFT", combined=8.0)]

    def test_quantities_and_levels(self):
        allocations = self.optimizer.optimize(self.analyses)
        decisions = self.optimizer.generate_decisions(allocations, self.analyses)

        by_symbol = {d.symbol: d for d in decisions}
        nvda = by_symbol["NVDA"]

        self.assertEqual(nvda.action, DecisionAction.BUY)
        self.assertEqual(nvda.quantity, 300)
        self.assertEqual(by_symbol["MSFT"].quantity, 100)
        self.assertAlmostEqual(nvda.stop_loss_price, 92.0)
        self.assertAlmostEqual(nvda.take_profit_price, 115.0)
        self.assertAlmostEqual(nvda.confidence, 0.95)
        self.assertAlmostEqual(nvda.allocation_weight, 0.3)

    def test_held_symbols_skipped(self):
        allocations = self.optimizer.optimize(self.analyses, held_symbols=["NVDA"])
        decisions = self.optimizer.generate_decisions(allocations, self.analyses, held_symbols=["NVDA"])

        self.assertEqual([d.symbol for d in decisions], ["MSFT"])

    def test_zero_share_allocation_skipped(self):
        expensive = [make_analysis("BRK", price=1_000_000.0)]
        allocations = self.optimizer.optimize(expensive)

        self.assertEqual(self.optimizer.generate_decisions(allocations, expensive), [])

    def test_stop_and_take_profit_disabled(self):
        optimizer = AllocationOptimizer(AISettings(enable_stop_loss=False, enable_take_profit=False))
        allocations = optimizer.optimize(self.analyses)
        decision = optimizer.generate_decisions(allocations, self.analyses)[0]

        self.assertIsNone(decision.stop_loss_price)
        self.assertIsNone(decision.take_profit_price)


class TestDecisionDetails(unittest.TestCase):
    """Confidence adjustment, strategy and risk labelling"""

    def test_risk_tolerance_adjustment(self):
        conservative = AllocationOptimizer(AISettings(risk_tolerance=RiskTolerance.CONSERVATIVE))
        aggressive = AllocationOptimizer(AISettings(risk_tolerance=RiskTolerance.AGGRESSIVE))
        moderate = AllocationOptimizer(AISettings())

        self.assertAlmostEqual(conservative.adjust_for_risk_tolerance(0.8, 6.0), 0.48)
        self.assertAlmostEqual(aggressive.adjust_for_risk_tolerance(0.9, 4.0), 1.0)
        self.assertAlmostEqual(moderate.adjust_for_risk_tolerance(0.8, 9.0), 0.64)

    def test_strategy_selection(self):
        self.assertEqual(AllocationOptimizer.determine_strategy(make_analysis("A", momentum=0.8)), "Momentum Growth")
        self.assertEqual(AllocationOptimizer.determine_strategy(make_analysis("A", value=0.8)), "Value Discovery")
        self.assertEqual(AllocationOptimizer.determine_strategy(make_analysis("A")), "Balanced Strategy")

    def test_risk_score_capped(self):
        risky = make_analysis("A", volatility=1.0, momentum=0.1)
        self.assertEqual(AllocationOptimizer.risk_score(risky), 8.0)
        self.assertLessEqual(AllocationOptimizer.risk_score(risky), 10.0)

    def test_expected_return_floor(self):
        weak = make_analysis("A", momentum=0.0, volatility=1.0)
        self.assertEqual(AllocationOptimizer.expected_return(weak, 0.0), 0.0)

    def test_priority_labels(self):
        self.assertEqual(AllocationOptimizer._priority_label(0.8), DecisionPriority.HIGH)
        self.assertEqual(AllocationOptimizer._priority_label(0.5), DecisionPriority.MEDIUM)
        self.assertEqual(AllocationOptimizer._priority_label(0.1), DecisionPriority.LOW)

    def test_invalid_settings_update_rejected(self):
        optimizer = AllocationOptimizer(AISettings())

        with self.assertRaises(ConfigurationError):
            optimizer.update_settings({'max_positions': 0})

        self.assertEqual(optimizer.settings.max_positions, 6)


if __name__ == "__main__":
    unittest.main()
