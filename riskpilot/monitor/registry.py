# -*- coding: utf-8 -*-
"""
Position and Order Registries
=============================

Owned in-memory registries for open positions and protective orders. Both
share one ``SymbolLocks`` table so the analysis cycle and the monitor tick
never mutate the same symbol at the same time.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import DefaultDict, Dict, List, Optional

from loguru import logger

from ..data.models import OrderStatus, Position, Side, StopLossOrder


class SymbolLocks:
    """One asyncio.Lock per symbol, created on first use"""

    def __init__(self):
        self._locks: DefaultDict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock(self, symbol: str) -> asyncio.Lock:
        return self._locks[symbol]

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._locks


class PositionRegistry:
    """
    Open positions keyed by symbol.

    Mutations of a position must happen while holding ``locks.lock(symbol)``.
    """

    def __init__(self, locks: Optional[SymbolLocks] = None):
        self.locks = locks or SymbolLocks()
        self._positions: Dict[str, Position] = {}

    def add(self, position: Position) -> Position:
        if position.symbol in self._positions:
            raise ValueError(f"Position already open for {position.symbol}")
        self._positions[position.symbol] = position
        logger.info(
            f"Opened {position.side.value} position {position.symbol}: "
            f"{position.qty:g} @ {position.entry_price:.2f}"
        )
        return position

    def get(self, symbol: str) -> Optional[Position]:
        return self._positions.get(symbol)

    def all(self) -> List[Position]:
        return list(self._positions.values())

    def symbols(self) -> List[str]:
        return list(self._positions)

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._positions

    def remove(self, symbol: str) -> Optional[Position]:
        position = self._positions.pop(symbol, None)
        if position is not None:
            logger.info(f"Closed position {symbol}")
        return position

    def release_if_flat(self, symbol: str) -> bool:
        """Drop the position once its quantity reaches zero"""
        position = self._positions.get(symbol)
        if position is not None and position.is_closed:
            self.remove(symbol)
            return True
        return False

    def reduce(self, symbol: str, quantity: float) -> Optional[Position]:
        """Reduce quantity after an exit fill, dropping the position when flat"""
        position = self._positions.get(symbol)
        if position is None:
            return None
        position.qty = max(0.0, position.qty - quantity)
        self.release_if_flat(symbol)
        return position

    def tighten_stop(self, symbol: str, stop_price: float) -> Optional[float]:
        """Move a position's stop toward protection, never away from it"""
        position = self._positions.get(symbol)
        if position is None:
            return None
        if position.stop_price is None:
            position.stop_price = stop_price
        elif position.side is Side.LONG:
            position.stop_price = max(position.stop_price, stop_price)
        else:
            position.stop_price = min(position.stop_price, stop_price)
        return position.stop_price


class OrderRegistry:
    """
    Active protective orders plus the history of finished ones.

    Finished orders (triggered, cancelled, expired) move to the history,
    newest first.
    """

    def __init__(self, locks: Optional[SymbolLocks] = None, history_limit: int = 500):
        self.locks = locks or SymbolLocks()
        self.history_limit = history_limit
        self._active: Dict[str, StopLossOrder] = {}
        self._history: List[StopLossOrder] = []

    def add(self, order: StopLossOrder) -> StopLossOrder:
        if not order.is_active:
            raise ValueError(f"Only active orders can be registered, got {order.status.value}")
        self._active[order.id] = order
        return order

    def get(self, order_id: str) -> Optional[StopLossOrder]:
        return self._active.get(order_id)

    def active(self) -> List[StopLossOrder]:
        return list(self._active.values())

    def for_symbol(self, symbol: str) -> List[StopLossOrder]:
        return [order for order in self._active.values() if order.symbol == symbol]

    def __len__(self) -> int:
        return len(self._active)

    def archive(self, order: StopLossOrder) -> None:
        """Move a finished order out of the active set"""
        if order.status is OrderStatus.ACTIVE:
            raise ValueError(f"Order {order.id} is still active")
        self._active.pop(order.id, None)
        self._history.insert(0, order)
        del self._history[self.history_limit:]

    def history(self, status: Optional[OrderStatus] = None, limit: int = 50) -> List[StopLossOrder]:
        orders = self._history if status is None else [o for o in self._history if o.status is status]
        return orders[:limit]
