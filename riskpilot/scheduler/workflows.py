# -*- coding: utf-8 -*-
"""
Workflow Orchestrator for RiskPilot
===================================

Wires the market data gateway, screener, allocator, exit engine and position
monitor together and schedules the two periodic loops on one asyncio event
loop: the analysis cycle and the position monitor tick.

Analysis cycle order:

1. Fetch quotes and analyse the universe
2. Portfolio-wide emergency check
3. Per-position exit evaluation under the symbol lock
4. Allocation and entry decisions (suppressed during an emergency)
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from ..analysis import AllocationOptimizer, EmergencyCheck, ExitDecisionEngine, ScreeningAnalyzer
from ..config.settings import EngineConfig, apply_update
from ..data.models import (
    DecisionAction,
    InvestmentDecision,
    MarketAnalysis,
    PortfolioAllocation,
    Position,
    Quote,
    Side,
    TriggerEvent,
)
from ..data.providers import MarketDataGateway, ProviderFailure
from ..monitor import OrderRegistry, PositionMonitor, PositionRegistry, SymbolLocks
from ..utils.logger import LogContext, log_cycle_results, log_decision

ANALYSIS_JOB_ID = 'analysis_cycle'


@dataclass
class CycleResult:
    """Outcome of one analysis cycle"""

    cycle_id: str
    started_at: datetime = field(default_factory=datetime.now)
    analyses: List[MarketAnalysis] = field(default_factory=list)
    allocations: List[PortfolioAllocation] = field(default_factory=list)
    entry_decisions: List[InvestmentDecision] = field(default_factory=list)
    exit_decisions: List[InvestmentDecision] = field(default_factory=list)
    emergency: Optional[EmergencyCheck] = None
    skipped: bool = False
    error: Optional[str] = None
    execution_time: float = 0.0

    @property
    def decisions(self) -> List[InvestmentDecision]:
        return self.exit_decisions + self.entry_decisions

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cycle_id': self.cycle_id,
            'started_at': self.started_at.isoformat(),
            'skipped': self.skipped,
            'error': self.error,
            'analysed': len(self.analyses),
            'passed_screen': [a.symbol for a in self.analyses if a.passed_screen],
            'panic': bool(self.emergency and self.emergency.panic),
            'bearish_fraction': self.emergency.bearish_fraction if self.emergency else 0.0,
            'allocations': {a.symbol: round(a.target_weight, 4) for a in self.allocations},
            'decisions': [
                {
                    'symbol': d.symbol,
                    'action': d.action.value,
                    'quantity': d.quantity,
                    'confidence': round(d.confidence, 3),
                    'trigger': d.trigger_type.value if d.trigger_type else None,
                    'reasoning': d.reasoning,
                }
                for d in self.decisions
            ],
            'execution_time': round(self.execution_time, 3),
        }


class WorkflowOrchestrator:
    """
    Main workflow orchestrator for RiskPilot.

    Exit decisions are applied to the position registry as they are made
    (positions are closed on EXIT, reduced on SCALE_OUT). BUY decisions open
    positions only when ``execute_entries`` is set.

    Args:
        config: Engine configuration
        gateway: Market data gateway (built from config when omitted)
        execute_entries: Open positions and protective orders for BUY decisions
    """

    def __init__(
        self,
        config: EngineConfig,
        gateway: Optional[MarketDataGateway] = None,
        execute_entries: bool = False,
    ):
        self.config = config
        self.execute_entries = execute_entries
        self.scheduler = AsyncIOScheduler(timezone=config.scheduling.timezone)
        self.is_running = False

        # Core components
        self.gateway = gateway or MarketDataGateway(config.data)
        self.screener = ScreeningAnalyzer(config, self.gateway)
        self.allocator = AllocationOptimizer(config.ai)
        self.exit_engine = ExitDecisionEngine(config.risk)

        self.locks = SymbolLocks()
        self.positions = PositionRegistry(self.locks)
        self.orders = OrderRegistry(self.locks)
        self.monitor = PositionMonitor(
            config.stop_loss,
            self.gateway,
            self.orders,
            self.positions,
            on_trigger=self._on_trigger,
            on_rebalance=self._on_rebalance,
        )

        # Workflow state
        self.last_cycle: Optional[CycleResult] = None
        self.recent_triggers: List[TriggerEvent] = []
        self.workflow_stats = {
            'total_runs': 0,
            'successful_runs': 0,
            'failed_runs': 0,
            'skipped_cycles': 0,
            'decisions_generated': 0,
            'triggers': 0,
        }

        # Setup scheduler event listeners
        self.scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)

        logger.info("Workflow orchestrator initialized")

    async def initialize(self) -> bool:
        """
        Set up the periodic jobs and start the scheduler.

        Returns:
            True if initialization successful, False otherwise
        """
        try:
            self._setup_scheduled_jobs()

            self.scheduler.start()
            self.is_running = True

            logger.info("Workflow orchestrator started successfully")
            return True

        except Exception as e:
            logger.error(f"Failed to initialize workflow orchestrator: {e}")
            return False

    def _setup_scheduled_jobs(self):
        """Analysis cycle and monitor tick, each on its own interval"""
        scheduling = self.config.scheduling

        self.scheduler.add_job(
            func=self.run_analysis_cycle,
            trigger=IntervalTrigger(seconds=scheduling.analysis_interval_seconds),
            id=ANALYSIS_JOB_ID,
            name='Analysis and Allocation Cycle',
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self.monitor.start(self.scheduler, scheduling.monitor_interval_seconds)

        logger.info(
            f"Scheduled jobs: analysis every {scheduling.analysis_interval_seconds}s, "
            f"monitor every {scheduling.monitor_interval_seconds}s"
        )

    # ------------------------------------------------------------------
    # Analysis cycle
    # ------------------------------------------------------------------

    async def run_analysis_cycle(self) -> CycleResult:
        """
        Run one analysis cycle.

        A provider outage skips the cycle and leaves positions and orders
        untouched.
        """
        result = CycleResult(cycle_id=f"cycle_{uuid.uuid4().hex[:8]}")
        start_time = time.time()

        with LogContext("analysis cycle", cycle_id=result.cycle_id, positions=len(self.positions)):
            try:
                analyses, quotes, histories = await self.screener.analyze_universe(self._cycle_symbols())
            except ProviderFailure as e:
                logger.warning(f"Skipping analysis cycle, market data unavailable: {e}")
                result.skipped = True
                result.error = str(e)
                self.workflow_stats['skipped_cycles'] += 1
                self.last_cycle = result
                return result

            result.analyses = analyses

            # Synthetic analyses never force an exit or open a position
            live = [a for a in analyses if not a.is_synthetic]
            result.emergency = self.exit_engine.check_portfolio_emergency(live, self.positions.all())
            result.exit_decisions = await self._evaluate_positions(live, quotes, histories, result.emergency)

            if result.emergency.panic:
                logger.warning("Entry decisions suppressed during portfolio emergency")
            else:
                held = self.positions.symbols()
                # No re-entry in the cycle that closed the position
                exited = {d.symbol for d in result.exit_decisions if d.action is DecisionAction.EXIT}
                screened = [a for a in self.screener.screen(live) if a.symbol not in exited]
                result.allocations = self.allocator.optimize(screened, held)
                result.entry_decisions = self.allocator.generate_decisions(result.allocations, screened, held)

                if self.execute_entries:
                    await self._execute_entries(result.entry_decisions, quotes)

        result.execution_time = time.time() - start_time
        self.workflow_stats['decisions_generated'] += len(result.decisions)
        self.last_cycle = result

        log_cycle_results(len(result.analyses), len(result.allocations), len(result.decisions), result.execution_time)
        return result

    def _cycle_symbols(self) -> List[str]:
        """Universe plus any held symbol outside it"""
        symbols = list(self.config.universe)
        symbols.extend(s for s in self.positions.symbols() if s not in symbols)
        return symbols

    async def _evaluate_positions(
        self,
        analyses: List[MarketAnalysis],
        quotes: Dict[str, Quote],
        histories: Dict[str, pd.DataFrame],
        emergency: EmergencyCheck,
    ) -> List[InvestmentDecision]:
        """
        Exit decisions for every held position.

        Positions quoted only by the synthetic provider are left alone. The
        indicator snapshot is built from the history the screener already
        fetched, before the symbol lock is taken.
        """
        by_symbol = {a.symbol: a for a in analyses}
        decisions = []

        for position in self.positions.all():
            symbol = position.symbol
            quote = quotes.get(symbol)
            if quote is None:
                logger.warning(f"No quote for held position {symbol}, skipping evaluation")
                continue
            if quote.is_synthetic:
                logger.warning(f"Only synthetic data for held position {symbol}, skipping evaluation")
                continue

            snapshot = self.exit_engine.prepare_indicators(histories.get(symbol))

            async with self.locks.lock(symbol):
                # The monitor may have closed it while we waited
                if self.positions.get(symbol) is not position:
                    continue

                if emergency.panic and symbol in emergency.forced_exits:
                    decision = self.exit_engine.emergency_decision(position, by_symbol[symbol], emergency.bearish_fraction)
                else:
                    evaluation = self.exit_engine.evaluate_position(position, quote.price, snapshot)
                    decision = self.exit_engine.to_decision(position, evaluation, quote.price)

                self._apply_exit(position, decision)
                await self.monitor.sync_position_stop(symbol)

            if decision.action is not DecisionAction.HOLD:
                log_decision(decision.symbol, decision.action.value, decision.confidence, decision.reasoning)
            decisions.append(decision)

        return decisions

    def _apply_exit(self, position: Position, decision: InvestmentDecision) -> None:
        """Reflect an exit decision in the registries. Caller holds the symbol lock."""
        symbol = position.symbol

        if decision.action is DecisionAction.EXIT:
            position.qty = 0.0

        if position.is_closed:
            self.positions.release_if_flat(symbol)
            for order in self.orders.for_symbol(symbol):
                self.monitor.cancel_order(order.id)

        elif decision.action is DecisionAction.SCALE_OUT:
            # Quantity was already reduced by the exit engine
            for order in self.orders.for_symbol(symbol):
                order.quantity = min(order.quantity, position.qty)

    async def _execute_entries(self, decisions: List[InvestmentDecision], quotes: Dict[str, Quote]) -> None:
        for decision in decisions:
            quote = quotes.get(decision.symbol)
            if decision.action is not DecisionAction.BUY or quote is None:
                continue
            await self.open_position(decision.symbol, decision.quantity, quote.price, decision.stop_loss_price)

    async def open_position(
        self,
        symbol: str,
        quantity: float,
        entry_price: float,
        stop_price: Optional[float] = None,
        side: Side = Side.LONG,
    ) -> Position:
        """Register a filled entry and protect it with a stop order"""
        async with self.locks.lock(symbol):
            position = self.positions.add(Position(
                symbol=symbol,
                side=side,
                qty=quantity,
                entry_price=entry_price,
                stop_price=stop_price,
            ))
            if self.config.stop_loss.enable_stop_loss:
                order = self.monitor.create_order_for_position(position)
                if order is not None:
                    self.positions.tighten_stop(symbol, order.stop_loss_price)
            if position.stop_price is not None:
                # R-multiples are measured from the stop at entry
                position.risk_per_share = abs(entry_price - position.stop_price)
        return position

    # ------------------------------------------------------------------
    # Monitor callbacks
    # ------------------------------------------------------------------

    def _on_trigger(self, event: TriggerEvent) -> None:
        self.workflow_stats['triggers'] += 1
        self.recent_triggers.insert(0, event)
        del self.recent_triggers[50:]

    def _on_rebalance(self, event: TriggerEvent) -> None:
        """Pull the next analysis cycle forward to now"""
        if not self.is_running or self.scheduler.get_job(ANALYSIS_JOB_ID) is None:
            logger.debug(f"Rebalance after {event.symbol} trigger deferred to the next cycle")
            return
        self.scheduler.modify_job(ANALYSIS_JOB_ID, next_run_time=datetime.now(self.scheduler.timezone))

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def update_config(self, updates: Dict[str, Any]) -> EngineConfig:
        """
        Apply configuration updates atomically and hand the new sections to
        the components.

        Raises:
            ConfigurationError: If any value is invalid (configuration unchanged)
        """
        config = apply_update(self.config, updates)

        self.config = config
        self.screener.config = config
        self.allocator.settings = config.ai
        self.exit_engine.config = config.risk
        self.monitor.settings = config.stop_loss

        logger.info(f"Engine configuration updated: {sorted(updates)}")
        return config

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _job_executed(self, event):
        """Handle successful job execution."""
        self.workflow_stats['total_runs'] += 1
        self.workflow_stats['successful_runs'] += 1
        logger.debug(f"Job executed successfully: {event.job_id}")

    def _job_error(self, event):
        """Handle job execution errors."""
        self.workflow_stats['total_runs'] += 1
        self.workflow_stats['failed_runs'] += 1
        logger.error(f"Job failed: {event.job_id} - {event.exception}")

    async def shutdown(self):
        """Shutdown the scheduler and release the provider pool."""
        if self.is_running:
            logger.info("Shutting down workflow orchestrator...")
            self.scheduler.shutdown(wait=False)
            self.is_running = False
        self.gateway.shutdown()
        logger.info("Workflow orchestrator shut down complete")

    def get_status(self) -> Dict[str, Any]:
        """Get current orchestrator status."""
        return {
            'is_running': self.is_running,
            'last_cycle': self.last_cycle.to_dict() if self.last_cycle else None,
            'open_positions': self.positions.symbols(),
            'monitor': self.monitor.get_statistics(),
            'workflow_stats': self.workflow_stats.copy(),
            'scheduled_jobs': [
                {
                    'id': job.id,
                    'name': job.name,
                    'next_run_time': job.next_run_time.isoformat() if job.next_run_time else None
                }
                for job in self.scheduler.get_jobs()
            ]
        }


# Convenience functions
async def create_orchestrator(config: EngineConfig, **kwargs) -> WorkflowOrchestrator:
    """Create and initialize a workflow orchestrator."""
    orchestrator = WorkflowOrchestrator(config, **kwargs)
    if await orchestrator.initialize():
        return orchestrator
    else:
        raise RuntimeError("Failed to initialize workflow orchestrator")


async def run_single_cycle(config: EngineConfig, **kwargs) -> CycleResult:
    """Run one analysis cycle without scheduling."""
    orchestrator = WorkflowOrchestrator(config, **kwargs)

    try:
        return await orchestrator.run_analysis_cycle()
    finally:
        await orchestrator.shutdown()
