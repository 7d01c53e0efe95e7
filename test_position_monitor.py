#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
RiskPilot - Position Monitor Tests
==================================

Order creation defaults, trigger rule priority, trailing stops, order
updates and expiry, monitor ticks through a mocked gateway and statistics.
"""

import unittest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

from riskpilot.config import ConfigurationError, StopLossSettings
from riskpilot.data.models import OrderStatus, Position, Quote, QuoteError, Side, TriggerType
from riskpilot.data.providers import ProviderFailure
from riskpilot.monitor import OrderRegistry, PositionMonitor, PositionRegistry, SymbolLocks, generate_order_id


def make_quote(symbol, price, **kwargs) -> Quote:
    return Quote(symbol=symbol, price=price, change=0.0, change_percent=0.0, volume=1_000_000, **kwargs)


class TestOrderCreation(unittest.TestCase):
    """Defaults and the max-loss cap"""

    def setUp(self):
        self.monitor = PositionMonitor(StopLossSettings())

    def test_defaults(self):
        order = self.monitor.create_order("AAPL", 100, 100.0)

        self.assertTrue(order.id.startswith("SL_"))
        self.assertEqual(order.status, OrderStatus.ACTIVE)
        self.assertAlmostEqual(order.stop_loss_price, 92.0)
        self.assertAlmostEqual(order.take_profit_price, 115.0)
        self.assertTrue(order.trailing)
        self.assertAlmostEqual(order.trailing_percent, 0.10)
        self.assertEqual(order.high_water_mark, 100.0)
        self.assertEqual(self.monitor.get_order(order.id), order)

    def test_max_loss_raises_stop(self):
        order = self.monitor.create_order("AAPL", 1000, 100.0)
        self.assertAlmostEqual(order.stop_loss_price, 95.0)

    def test_non_positive_quantity_rejected(self):
        for quantity in (0, -10):
            with self.subTest(quantity=quantity):
                with self.assertRaises(ValueError):
                    self.monitor.create_order("AAPL", quantity, 100.0)

        self.assertEqual(self.monitor.get_active_orders(), [])

    def test_custom_levels(self):
        order = self.monitor.create_order("AAPL", 10, 100.0, stop_loss_price=97.0, take_profit_price=130.0,
                                          trailing=False)

        self.assertEqual(order.stop_loss_price, 97.0)
        self.assertEqual(order.take_profit_price, 130.0)
        self.assertFalse(order.trailing)
        self.assertEqual(order.trailing_percent, 0.0)

    def test_take_profit_disabled(self):
        monitor = PositionMonitor(StopLossSettings(enable_take_profit=False))
        self.assertIsNone(monitor.create_order("AAPL", 10, 100.0).take_profit_price)

    def test_short_positions_not_protected(self):
        short = Position(symbol="TSLA", side=Side.SHORT, qty=10, entry_price=100.0)
        self.assertIsNone(self.monitor.create_order_for_position(short))

        long = Position(symbol="AAPL", side=Side.LONG, qty=10, entry_price=100.0, stop_price=96.0)
        self.assertEqual(self.monitor.create_order_for_position(long).stop_loss_price, 96.0)

    def test_order_ids_unique(self):
        ids = {generate_order_id() for _ in range(100)}
        self.assertEqual(len(ids), 100)


class TestTriggerRules(unittest.TestCase):
    """First matching rule wins"""

    def setUp(self):
        self.monitor = PositionMonitor(StopLossSettings())
        self.order = self.monitor.create_order("AAPL", 100, 100.0)

    def test_no_trigger_inside_band(self):
        self.assertIsNone(self.monitor.check_order(self.order, 100.0))

    def test_emergency_stop(self):
        trigger_type, reason = self.monitor.check_order(self.order, 79.0)

        self.assertEqual(trigger_type, TriggerType.STOP_LOSS)
        self.assertIn("Emergency", reason)

    def test_stop_loss(self):
        trigger_type, reason = self.monitor.check_order(self.order, 92.0)

        self.assertEqual(trigger_type, TriggerType.STOP_LOSS)
        self.assertIn("Stop-loss", reason)

    def test_take_profit(self):
        trigger_type, _ = self.monitor.check_order(self.order, 115.0)
        self.assertEqual(trigger_type, TriggerType.TAKE_PROFIT)

    def test_trailing_breach(self):
        monitor = PositionMonitor(StopLossSettings(enable_take_profit=False))
        order = monitor.create_order("AAPL", 100, 100.0)
        order.high_water_mark = 130.0

        trigger_type, _ = monitor.check_order(order, 116.0)

        self.assertEqual(trigger_type, TriggerType.TRAILING_STOP)

    def test_stop_loss_disabled_still_trails(self):
        monitor = PositionMonitor(StopLossSettings(enable_stop_loss=False))
        order = monitor.create_order("AAPL", 100, 100.0)

        self.assertIsNone(monitor.check_order(order, 91.0))
        trigger_type, _ = monitor.check_order(order, 85.0)
        self.assertEqual(trigger_type, TriggerType.TRAILING_STOP)

    def test_trailing_raises_stop(self):
        self.assertTrue(self.monitor.update_trailing(self.order, 110.0))
        self.assertAlmostEqual(self.order.stop_loss_price, 99.0)
        self.assertEqual(self.order.high_water_mark, 110.0)

        self.assertFalse(self.monitor.update_trailing(self.order, 105.0))
        self.assertAlmostEqual(self.order.stop_loss_price, 99.0)

        self.assertTrue(self.monitor.update_trailing(self.order, 111.0))
        self.assertAlmostEqual(self.order.stop_loss_price, 99.9)


class TestOrderManagement(unittest.TestCase):
    """Updates, cancellation and expiry"""

    def setUp(self):
        self.monitor = PositionMonitor(StopLossSettings())
        self.order = self.monitor.create_order("AAPL", 100, 100.0)

    def test_looser_stop_ignored(self):
        self.assertTrue(self.monitor.update_order(self.order.id, stop_loss_price=85.0))
        self.assertAlmostEqual(self.order.stop_loss_price, 92.0)

    def test_tighter_stop_applied(self):
        self.monitor.update_order(self.order.id, stop_loss_price=95.0, take_profit_price=120.0)

        self.assertEqual(self.order.stop_loss_price, 95.0)
        self.assertEqual(self.order.take_profit_price, 120.0)

    def test_trailing_percent_validated(self):
        with self.assertRaises(ValueError):
            self.monitor.update_order(self.order.id, trailing_percent=150.0)

        self.monitor.update_order(self.order.id, trailing_percent=5.0)
        self.assertAlmostEqual(self.order.trailing_percent, 0.05)

    def test_unknown_order(self):
        self.assertFalse(self.monitor.update_order("SL_missing", stop_loss_price=99.0))
        self.assertFalse(self.monitor.cancel_order("SL_missing"))

    def test_cancel(self):
        self.assertTrue(self.monitor.cancel_order(self.order.id))

        self.assertEqual(self.order.status, OrderStatus.CANCELLED)
        self.assertEqual(self.monitor.get_active_orders(), [])
        self.assertFalse(self.monitor.cancel_order(self.order.id))
        self.assertFalse(self.monitor.update_order(self.order.id, stop_loss_price=99.0))

    def test_expiry(self):
        expiring = self.monitor.create_order("MSFT", 10, 300.0, expires_at=datetime.now() - timedelta(minutes=1))

        expired = self.monitor.expire_orders()

        self.assertEqual(expired, [expiring])
        self.assertEqual(expiring.status, OrderStatus.EXPIRED)
        self.assertEqual(self.monitor.get_active_orders(), [self.order])

    def test_invalid_settings_rejected(self):
        with self.assertRaises(ConfigurationError):
            self.monitor.update_settings({'emergency_stop_percent': 150.0})
        self.assertEqual(self.monitor.settings.emergency_stop_percent, 20.0)


class TestMonitorTick(unittest.IsolatedAsyncioTestCase):
    """Ticks against mocked quotes"""

    def setUp(self):
        self.locks = SymbolLocks()
        self.positions = PositionRegistry(self.locks)
        self.orders = OrderRegistry(self.locks)
        self.gateway = MagicMock()
        self.on_trigger = MagicMock()
        self.on_rebalance = AsyncMock()

        self.monitor = PositionMonitor(
            StopLossSettings(),
            gateway=self.gateway,
            orders=self.orders,
            positions=self.positions,
            on_trigger=self.on_trigger,
            on_rebalance=self.on_rebalance,
        )
        self.positions.add(Position(symbol="AAPL", side=Side.LONG, qty=100, entry_price=100.0, stop_price=92.0))
        self.order = self.monitor.create_order("AAPL", 100, 100.0)

    async def test_stop_loss_trigger(self):
        self.gateway.get_multiple_quotes = AsyncMock(return_value={"AAPL": make_quote("AAPL", 91.0)})

        events = await self.monitor.tick()

        self.assertEqual(len(events), 1)
        event = events[0]
        self.assertEqual(event.trigger_type, TriggerType.STOP_LOSS)
        self.assertAlmostEqual(event.realized_pnl, -900.0)
        self.assertEqual(self.order.status, OrderStatus.TRIGGERED)
        self.assertEqual(self.monitor.get_triggered_orders(), [self.order])
        self.assertNotIn("AAPL", self.positions)
        self.on_trigger.assert_called_once_with(event)
        self.on_rebalance.assert_awaited_once_with(event)
        self.assertEqual(self.monitor.ticks, 1)

    async def test_no_rebalance_when_disabled(self):
        self.monitor.settings = StopLossSettings(auto_rebalance_after_trigger=False)
        self.gateway.get_multiple_quotes = AsyncMock(return_value={"AAPL": make_quote("AAPL", 120.0)})

        events = await self.monitor.tick()

        self.assertEqual(events[0].trigger_type, TriggerType.TAKE_PROFIT)
        self.on_rebalance.assert_not_awaited()

    async def test_provider_failure_skips_tick(self):
        self.gateway.get_multiple_quotes = AsyncMock(side_effect=ProviderFailure("yahoo", "unreachable"))

        events = await self.monitor.tick()

        self.assertEqual(events, [])
        self.assertEqual(self.monitor.skipped_ticks, 1)
        self.assertEqual(self.monitor.ticks, 0)
        self.assertTrue(self.order.is_active)
        self.assertAlmostEqual(self.order.stop_loss_price, 92.0)

    async def test_missing_quote_leaves_order(self):
        self.gateway.get_multiple_quotes = AsyncMock(
            return_value={"AAPL": QuoteError(symbol="AAPL", reason="no price")}
        )

        self.assertEqual(await self.monitor.tick(), [])
        self.assertTrue(self.order.is_active)

    async def test_synthetic_quote_never_fires_or_trails(self):
        for price in (80.0, 130.0):
            with self.subTest(price=price):
                self.gateway.get_multiple_quotes = AsyncMock(
                    return_value={"AAPL": make_quote("AAPL", price, source="synthetic", is_synthetic=True)}
                )

                self.assertEqual(await self.monitor.tick(), [])

                self.assertTrue(self.order.is_active)
                self.assertAlmostEqual(self.order.stop_loss_price, 92.0)
                self.assertEqual(self.order.high_water_mark, 100.0)
                self.assertEqual(self.positions.get("AAPL").qty, 100)
                self.assertAlmostEqual(self.positions.get("AAPL").stop_price, 92.0)

        self.on_trigger.assert_not_called()

    async def test_new_high_tightens_position_stop(self):
        self.gateway.get_multiple_quotes = AsyncMock(return_value={"AAPL": make_quote("AAPL", 110.0)})

        self.assertEqual(await self.monitor.tick(), [])

        self.assertAlmostEqual(self.order.stop_loss_price, 99.0)
        self.assertAlmostEqual(self.positions.get("AAPL").stop_price, 99.0)

    async def test_no_active_orders(self):
        self.monitor.cancel_order(self.order.id)
        self.gateway.get_multiple_quotes = AsyncMock()

        self.assertEqual(await self.monitor.tick(), [])
        self.gateway.get_multiple_quotes.assert_not_awaited()

    async def test_sync_position_stop(self):
        self.positions.get("AAPL").stop_price = 96.0

        async with self.locks.lock("AAPL"):
            await self.monitor.sync_position_stop("AAPL")

        self.assertEqual(self.order.stop_loss_price, 96.0)

    async def test_statistics(self):
        second = self.monitor.create_order("MSFT", 10, 100.0)
        self.monitor.create_order("NVDA", 10, 100.0)

        await self.monitor.process_order(self.order, 115.0)
        await self.monitor.process_order(second, 92.0)
        stats = self.monitor.get_statistics()

        self.assertEqual(stats['total_active_orders'], 1)
        self.assertEqual(stats['total_triggered'], 2)
        self.assertEqual(stats['take_profits'], 1)
        self.assertEqual(stats['stop_losses'], 1)
        self.assertEqual(stats['trailing_stops'], 0)
        self.assertAlmostEqual(stats['total_realized_pnl'], 1500.0 - 80.0)
        self.assertAlmostEqual(stats['average_pnl'], (1500.0 - 80.0) / 2)
        self.assertAlmostEqual(stats['total_protected_value'], 920.0)

    async def test_finished_order_not_reprocessed(self):
        await self.monitor.process_order(self.order, 91.0)
        self.on_trigger.reset_mock()

        self.assertIsNone(await self.monitor.process_order(self.order, 80.0))
        self.on_trigger.assert_not_called()


class TestScheduling(unittest.TestCase):
    """Monitor job registration"""

    def test_start_and_stop(self):
        monitor = PositionMonitor(StopLossSettings())
        scheduler = MagicMock()

        monitor.start(scheduler, interval_seconds=5)

        kwargs = scheduler.add_job.call_args.kwargs
        self.assertEqual(kwargs['id'], PositionMonitor.JOB_ID)
        self.assertEqual(kwargs['max_instances'], 1)
        self.assertTrue(kwargs['coalesce'])

        monitor.stop(scheduler)
        scheduler.remove_job.assert_called_once_with(PositionMonitor.JOB_ID)


if __name__ == "__main__":
    unittest.main()
