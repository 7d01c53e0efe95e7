# -*- coding: utf-8 -*-
"""
Position Monitor for RiskPilot
==============================

Owns the live stop-loss / take-profit / trailing-stop orders and checks them
against fresh quotes on its own interval, independent of the analysis cycle.

Each tick, per active order, the first matching rule wins:

(a) loss from the original price reaches ``emergency_stop_percent``
(b) price at or below the stop-loss price
(c) price at or above the take-profit price
(d) trailing breach: price <= high water mark * (1 - trailing percent)

Orders protect long holdings.
"""

from __future__ import annotations

import inspect
import time
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from ..config.settings import StopLossSettings, apply_update
from ..data.models import OrderStatus, Position, Quote, Side, StopLossOrder, TriggerEvent, TriggerType
from ..data.providers import MarketDataError, MarketDataGateway
from ..utils.logger import log_trigger
from .registry import OrderRegistry, PositionRegistry

TriggerCallback = Callable[[TriggerEvent], Any]


def generate_order_id() -> str:
    return f"SL_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class PositionMonitor:
    """
    Real-time protective order monitoring.

    Args:
        settings: Stop-loss settings
        gateway: Market data gateway used for each tick's quotes
        orders: Order registry (created when omitted)
        positions: Position registry kept in sync with order stops
        on_trigger: Called with every TriggerEvent (may be async)
        on_rebalance: Called after a trigger when auto-rebalance is enabled (may be async)
    """

    JOB_ID = 'position_monitor'

    def __init__(
        self,
        settings: StopLossSettings,
        gateway: Optional[MarketDataGateway] = None,
        orders: Optional[OrderRegistry] = None,
        positions: Optional[PositionRegistry] = None,
        on_trigger: Optional[TriggerCallback] = None,
        on_rebalance: Optional[TriggerCallback] = None,
    ):
        self.settings = settings
        self.gateway = gateway
        self.positions = positions
        self.orders = orders or OrderRegistry(positions.locks if positions else None)
        self.locks = self.orders.locks
        self.on_trigger = on_trigger
        self.on_rebalance = on_rebalance

        self.ticks = 0
        self.skipped_ticks = 0
        self.last_tick: Optional[datetime] = None

        logger.info("Position monitor initialized")

    def update_settings(self, updates: Dict[str, Any]) -> StopLossSettings:
        """
        Apply settings updates atomically.

        Raises:
            ConfigurationError: If any value is invalid (settings unchanged)
        """
        self.settings = apply_update(self.settings, updates)
        logger.info(f"Stop-loss settings updated: {sorted(updates)}")
        return self.settings

    # ------------------------------------------------------------------
    # Order management
    # ------------------------------------------------------------------

    def create_order(
        self,
        symbol: str,
        quantity: float,
        original_price: float,
        stop_loss_price: Optional[float] = None,
        take_profit_price: Optional[float] = None,
        trailing: Optional[bool] = None,
        trailing_percent: Optional[float] = None,
        expires_at: Optional[datetime] = None,
    ) -> StopLossOrder:
        """
        Create and register a protective order.

        Defaults come from the settings. The stop is raised when needed so
        that the loss at the stop stays within ``max_loss_per_position``.

        Args:
            symbol: Instrument symbol
            quantity: Protected quantity
            original_price: Entry price
            stop_loss_price: Custom stop price
            take_profit_price: Custom take-profit price
            trailing: Enable trailing (defaults to the settings flag)
            trailing_percent: Trailing distance in percent
            expires_at: Expiry time, after which the order is expired

        Returns:
            The active order

        Raises:
            ValueError: If quantity is not positive
        """
        if quantity <= 0:
            raise ValueError(f"Quantity must be positive: {quantity}")

        s = self.settings

        stop = stop_loss_price or original_price * (1 - s.default_stop_loss_percent / 100)
        max_loss_stop = original_price - s.max_loss_per_position / quantity
        if stop < max_loss_stop:
            logger.debug(f"{symbol}: stop raised to {max_loss_stop:.2f} to cap loss at {s.max_loss_per_position:.0f}")
            stop = max_loss_stop

        take_profit = None
        if s.enable_take_profit:
            take_profit = take_profit_price or original_price * (1 + s.default_take_profit_percent / 100)

        use_trailing = s.enable_trailing_stop if trailing is None else trailing
        percent = trailing_percent if trailing_percent is not None else s.default_trailing_stop_percent

        order = StopLossOrder(
            id=generate_order_id(),
            symbol=symbol,
            quantity=quantity,
            original_price=original_price,
            stop_loss_price=stop,
            take_profit_price=take_profit,
            trailing=use_trailing,
            trailing_percent=percent / 100 if use_trailing else 0.0,
            expires_at=expires_at,
        )
        self.orders.add(order)

        tp_text = f"{take_profit:.2f}" if take_profit else "N/A"
        logger.info(f"Created stop order for {symbol}: stop at {stop:.2f}, take profit at {tp_text}")
        return order

    def create_order_for_position(self, position: Position) -> Optional[StopLossOrder]:
        """Protective order mirroring a long position's stop"""
        if position.side is not Side.LONG:
            logger.warning(f"Protective orders cover long positions only, skipping {position.symbol}")
            return None
        return self.create_order(
            position.symbol,
            position.qty,
            position.entry_price,
            stop_loss_price=position.stop_price,
        )

    def get_order(self, order_id: str) -> Optional[StopLossOrder]:
        return self.orders.get(order_id)

    def get_active_orders(self) -> List[StopLossOrder]:
        return self.orders.active()

    def get_triggered_orders(self, limit: int = 50) -> List[StopLossOrder]:
        return self.orders.history(OrderStatus.TRIGGERED, limit)

    def cancel_order(self, order_id: str) -> bool:
        order = self.orders.get(order_id)
        if order is None:
            return False

        order.status = OrderStatus.CANCELLED
        self.orders.archive(order)
        logger.info(f"Cancelled stop order {order_id} for {order.symbol}")
        return True

    def update_order(
        self,
        order_id: str,
        stop_loss_price: Optional[float] = None,
        take_profit_price: Optional[float] = None,
        trailing_percent: Optional[float] = None,
    ) -> bool:
        """
        Update an active order.

        A stop-loss price below the current one is not applied.

        Returns:
            True when the order exists and is active
        """
        order = self.orders.get(order_id)
        if order is None or not order.is_active:
            return False

        if stop_loss_price is not None:
            if stop_loss_price < order.stop_loss_price:
                logger.warning(
                    f"Ignoring looser stop {stop_loss_price:.2f} for {order.symbol} "
                    f"(current {order.stop_loss_price:.2f})"
                )
            else:
                order.stop_loss_price = stop_loss_price

        if take_profit_price is not None:
            order.take_profit_price = take_profit_price

        if trailing_percent is not None:
            if not 0 < trailing_percent < 100:
                raise ValueError(f"Trailing percent must be between 0 and 100: {trailing_percent}")
            order.trailing = True
            order.trailing_percent = trailing_percent / 100

        logger.info(f"Updated stop order {order_id} for {order.symbol}")
        return True

    def expire_orders(self, now: Optional[datetime] = None) -> List[StopLossOrder]:
        """Expire active orders whose ``expires_at`` has passed"""
        now = now or datetime.now()
        expired = []

        for order in self.orders.active():
            if order.expires_at is not None and order.expires_at <= now:
                order.status = OrderStatus.EXPIRED
                order.reason = f"Expired at {order.expires_at.isoformat()}"
                self.orders.archive(order)
                expired.append(order)

        if expired:
            logger.info(f"Expired {len(expired)} stop orders")
        return expired

    # ------------------------------------------------------------------
    # Trigger logic
    # ------------------------------------------------------------------

    def check_order(self, order: StopLossOrder, price: float) -> Optional[Tuple[TriggerType, str]]:
        """
        Apply the trigger rules in priority order.

        Returns:
            (trigger type, reason) for the first matching rule, else None
        """
        loss_percent = (order.original_price - price) / order.original_price * 100
        if loss_percent >= self.settings.emergency_stop_percent:
            return TriggerType.STOP_LOSS, (
                f"Emergency stop: {loss_percent:.1f}% loss exceeds "
                f"{self.settings.emergency_stop_percent:g}% threshold"
            )

        if self.settings.enable_stop_loss and price <= order.stop_loss_price:
            return TriggerType.STOP_LOSS, (
                f"Stop-loss: price {price:.2f} hit stop level {order.stop_loss_price:.2f}"
            )

        if order.take_profit_price is not None and price >= order.take_profit_price:
            return TriggerType.TAKE_PROFIT, (
                f"Take-profit: price {price:.2f} hit target {order.take_profit_price:.2f}"
            )

        if order.trailing and order.trailing_percent > 0 and order.high_water_mark:
            trailing_stop = order.high_water_mark * (1 - order.trailing_percent)
            if price <= trailing_stop:
                return TriggerType.TRAILING_STOP, (
                    f"Trailing stop: price {price:.2f} fell {order.trailing_percent:.0%} "
                    f"from high of {order.high_water_mark:.2f}"
                )

        return None

    def update_trailing(self, order: StopLossOrder, price: float) -> bool:
        """
        Raise the high water mark on a new high and tighten the stop.

        Returns:
            True when the stop moved
        """
        if not order.trailing or order.trailing_percent <= 0:
            return False
        if order.high_water_mark is not None and price <= order.high_water_mark:
            return False

        order.high_water_mark = price
        new_stop = price * (1 - order.trailing_percent)
        if new_stop > order.stop_loss_price:
            order.stop_loss_price = new_stop
            logger.debug(f"Trailing stop for {order.symbol} raised to {new_stop:.2f} (high {price:.2f})")
            return True
        return False

    async def _notify(self, callback: Optional[TriggerCallback], event: TriggerEvent) -> None:
        if callback is None:
            return
        result = callback(event)
        if inspect.isawaitable(result):
            await result

    async def trigger_order(
        self,
        order: StopLossOrder,
        trigger_type: TriggerType,
        reason: str,
        price: float,
    ) -> TriggerEvent:
        """Finish a triggered order, record its P&L and emit the event"""
        order.status = OrderStatus.TRIGGERED
        order.trigger_type = trigger_type
        order.triggered_at = datetime.now()
        order.exit_price = price
        order.realized_pnl = (price - order.original_price) * order.quantity
        order.reason = reason
        self.orders.archive(order)

        if self.positions is not None:
            self.positions.reduce(order.symbol, order.quantity)

        event = TriggerEvent(
            order_id=order.id,
            symbol=order.symbol,
            trigger_type=trigger_type,
            reason=reason,
            realized_pnl=order.realized_pnl,
            exit_price=price,
            timestamp=order.triggered_at,
        )
        log_trigger(order.symbol, trigger_type.value, price, order.realized_pnl)

        await self._notify(self.on_trigger, event)
        if self.settings.auto_rebalance_after_trigger:
            logger.info(f"Requesting portfolio rebalance after {trigger_type.value} on {order.symbol}")
            await self._notify(self.on_rebalance, event)

        return event

    async def process_order(self, order: StopLossOrder, price: float) -> Optional[TriggerEvent]:
        """Check one order against a price under its symbol lock"""
        async with self.locks.lock(order.symbol):
            if not order.is_active:
                return None

            result = self.check_order(order, price)
            if result is not None:
                trigger_type, reason = result
                return await self.trigger_order(order, trigger_type, reason, price)

            if self.update_trailing(order, price) and self.positions is not None:
                self.positions.tighten_stop(order.symbol, order.stop_loss_price)

        return None

    async def sync_position_stop(self, symbol: str) -> None:
        """
        Carry a tightened position stop into the symbol's orders.

        Callers hold the symbol lock.
        """
        if self.positions is None:
            return
        position = self.positions.get(symbol)
        if position is None or position.side is not Side.LONG or position.stop_price is None:
            return

        for order in self.orders.for_symbol(symbol):
            if position.stop_price > order.stop_loss_price:
                order.stop_loss_price = position.stop_price

    async def tick(self) -> List[TriggerEvent]:
        """
        One monitoring pass over every active order.

        Provider failures skip the tick and leave every order unchanged.
        Synthetic quotes never fire or trail an order.
        """
        self.expire_orders()

        active = self.orders.active()
        if not active:
            return []

        symbols = sorted({order.symbol for order in active})
        try:
            quotes = await self.gateway.get_multiple_quotes(symbols)
        except MarketDataError as e:
            self.skipped_ticks += 1
            logger.warning(f"Monitor tick skipped, market data unavailable: {e}")
            return []

        events = []
        for order in active:
            quote = quotes.get(order.symbol)
            if not isinstance(quote, Quote):
                logger.debug(f"No quote for {order.symbol} this tick")
                continue
            if quote.is_synthetic:
                logger.warning(f"Synthetic quote for {order.symbol}, not checking its triggers")
                continue

            event = await self.process_order(order, quote.price)
            if event is not None:
                events.append(event)

        self.ticks += 1
        self.last_tick = datetime.now()
        return events

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def start(self, scheduler: BaseScheduler, interval_seconds: int = 10) -> None:
        """Register the monitor tick as its own interval job"""
        scheduler.add_job(
            func=self.tick,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=self.JOB_ID,
            name='Position Monitor Tick',
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        logger.info(f"Position monitoring started (every {interval_seconds}s)")

    def stop(self, scheduler: BaseScheduler) -> None:
        if scheduler.get_job(self.JOB_ID) is not None:
            scheduler.remove_job(self.JOB_ID)
            logger.info("Position monitoring stopped")

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_statistics(self) -> Dict[str, Any]:
        """Counts by trigger type, realized P&L and protected value"""
        triggered = self.orders.history(OrderStatus.TRIGGERED, limit=self.orders.history_limit)
        counts = Counter(order.trigger_type for order in triggered)
        total_pnl = sum(order.realized_pnl or 0.0 for order in triggered)

        return {
            'total_active_orders': len(self.orders),
            'total_triggered': len(triggered),
            'take_profits': counts[TriggerType.TAKE_PROFIT],
            'stop_losses': counts[TriggerType.STOP_LOSS],
            'trailing_stops': counts[TriggerType.TRAILING_STOP],
            'total_realized_pnl': total_pnl,
            'average_pnl': total_pnl / len(triggered) if triggered else 0.0,
            'total_protected_value': sum(order.protected_value for order in self.orders.active()),
            'ticks': self.ticks,
            'skipped_ticks': self.skipped_ticks,
        }
