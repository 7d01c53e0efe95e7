# -*- coding: utf-8 -*-
"""
RiskPilot - Main Application Entry Point
========================================

Runs the analysis cycle once or starts the scheduled engine with the
position monitor.

Usage:
    python main.py                         # Run one analysis cycle
    python main.py --symbols AAPL MSFT     # Analyse a custom universe
    python main.py --config custom.yaml    # Use custom configuration
    python main.py --validate-config       # Only validate configuration
    python main.py --show-config           # Print the effective configuration
    python main.py --scheduled             # Start scheduled automation
    python main.py --scheduled --paper     # Also open positions for BUY decisions
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from riskpilot.config import ConfigurationError, EngineConfig, apply_update, load_config
from riskpilot.scheduler import CycleResult, WorkflowOrchestrator, create_orchestrator
from riskpilot.utils import setup_logging

DEFAULT_CONFIG = Path(__file__).parent / "riskpilot" / "config" / "engine_config.yaml"


class MainApplication:
    """Main application entry for RiskPilot."""

    def __init__(self, config_path: Optional[Path] = None, symbols: Optional[List[str]] = None):
        """
        Initialize the main application.

        Args:
            config_path: Path to configuration file
            symbols: Universe override

        Raises:
            ConfigurationError: If the symbol override is rejected
        """
        self.config_path = config_path or DEFAULT_CONFIG
        self.config: EngineConfig = load_config(self.config_path)

        if symbols:
            self.config = apply_update(self.config, {'universe': symbols})

        self.results_dir = Path.cwd() / "results"

        logger.info(f"Application initialized with config: {self.config_path}")

    def validate_config(self) -> bool:
        """Re-validate the loaded configuration and report provider availability."""
        try:
            EngineConfig(**self.config.dict())
        except Exception as e:
            logger.error(f"Configuration invalid: {e}")
            return False

        data = self.config.data
        keyed = {
            'twelvedata': data.twelvedata_api_key,
            'alpha_vantage': data.alpha_vantage_api_key,
            'finnhub': data.finnhub_api_key,
        }
        missing = [name for name in data.providers if name in keyed and not keyed[name]]
        if missing:
            logger.warning(f"Providers without API keys will be skipped: {', '.join(missing)}")

        print(f"✅ Configuration valid ({self.config_path})")
        print(f"   Universe: {', '.join(self.config.universe)}")
        print(f"   Providers: {', '.join(data.providers)}"
              + (" (+synthetic fallback)" if data.allow_synthetic_fallback else ""))
        return True

    def show_config(self) -> None:
        config_dict = self.config.dict()
        for field_name in ('twelvedata_api_key', 'alpha_vantage_api_key', 'finnhub_api_key'):
            config_dict['data'].pop(field_name, None)
        print(json.dumps(config_dict, indent=2, default=str))

    async def run_once(self, save: bool = False) -> Optional[CycleResult]:
        """Run one analysis cycle and print its decisions."""
        orchestrator = WorkflowOrchestrator(self.config)

        try:
            result = await orchestrator.run_analysis_cycle()
        finally:
            await orchestrator.shutdown()

        if result.skipped:
            print(f"\n⚠️  Cycle skipped: {result.error}")
            return None

        self._print_cycle(result)

        if save:
            self.results_dir.mkdir(exist_ok=True)
            output_file = self.results_dir / f"{result.cycle_id}.json"
            with open(output_file, 'w', encoding='utf-8') as f:
                json.dump(result.to_dict(), f, indent=2, default=str)
            logger.info(f"Results saved to {output_file}")

        return result

    @staticmethod
    def _print_cycle(result: CycleResult) -> None:
        print("\n" + "=" * 70)
        print(f"RiskPilot cycle {result.cycle_id}")
        print("=" * 70)

        print(f"Analysed: {len(result.analyses)} instruments")
        for analysis in sorted(result.analyses, key=lambda a: a.combined_score, reverse=True):
            flag = "✓" if analysis.passed_screen else "✗"
            synthetic = " [synthetic]" if analysis.is_synthetic else ""
            print(f"  {flag} {analysis.symbol:<6} {analysis.price:>10.2f}  "
                  f"score {analysis.combined_score:4.1f}  {analysis.sector}{synthetic}")

        if result.emergency and result.emergency.panic:
            print(f"\n🚨 Portfolio emergency: {result.emergency.bearish_fraction:.0%} of instruments bearish")

        if result.allocations:
            print("\nAllocations:")
            for allocation in result.allocations:
                print(f"  {allocation.symbol:<6} {allocation.target_weight:6.1%}  [{allocation.action.value}]")

        if result.decisions:
            print("\nDecisions:")
            for decision in result.decisions:
                print(f"  {decision.symbol:<6} {decision.action.value.upper():<9} qty {decision.quantity:g}  "
                      f"confidence {decision.confidence:.0%}")
                print(f"         {decision.reasoning}")
        else:
            print("\nNo decisions this cycle")

    async def start_automated_mode(self, execute_entries: bool = False):
        """Start the scheduled analysis cycle and position monitor."""
        print("\n🤖 Starting RiskPilot scheduled mode...")
        print("Press Ctrl+C to stop.")

        orchestrator = await create_orchestrator(self.config, execute_entries=execute_entries)

        print("✅ Scheduler started")
        print("📅 Schedule:")
        for job in orchestrator.scheduler.get_jobs():
            print(f"   • {job.name}: {job.next_run_time}")

        try:
            while orchestrator.is_running:
                await asyncio.sleep(60)
        except (KeyboardInterrupt, asyncio.CancelledError):
            print("\n⏹️  Stopping RiskPilot...")
        finally:
            await orchestrator.shutdown()
            print("✅ RiskPilot stopped")


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="RiskPilot - Portfolio screening, allocation and exit risk engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                         # One analysis cycle
  python main.py --symbols AAPL NVDA     # Custom universe
  python main.py --scheduled             # Scheduled mode with position monitor
  python main.py --validate-config       # Configuration check only
  python main.py --log-level DEBUG       # Enable debug logging
        """
    )

    parser.add_argument(
        '--config',
        type=Path,
        help='Path to configuration file'
    )

    parser.add_argument(
        '--symbols',
        nargs='+',
        help='Override the configured universe'
    )

    parser.add_argument(
        '--scheduled',
        action='store_true',
        help='Start scheduled automation mode'
    )

    parser.add_argument(
        '--paper',
        action='store_true',
        help='Open positions and protective orders for BUY decisions (scheduled mode)'
    )

    parser.add_argument(
        '--save',
        action='store_true',
        help='Save cycle results as JSON under ./results'
    )

    parser.add_argument(
        '--validate-config',
        action='store_true',
        help='Validate configuration only'
    )

    parser.add_argument(
        '--show-config',
        action='store_true',
        help='Print the effective configuration'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help='Logging level (default: INFO)'
    )

    parser.add_argument(
        '--log-files',
        action='store_true',
        help='Also write rotating log files under ./logs'
    )

    parser.add_argument(
        '--version',
        action='version',
        version='RiskPilot v1.0.0'
    )

    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None):
    """Main application entry point."""
    args = parse_arguments(argv)

    setup_logging(args.log_level, file_output=args.log_files)

    try:
        app = MainApplication(args.config, args.symbols)

        logger.info("=" * 70)
        logger.info("RiskPilot v1.0.0")
        logger.info(f"Config: {app.config_path}")
        logger.info("=" * 70)

        if args.validate_config:
            sys.exit(0 if app.validate_config() else 1)

        elif args.show_config:
            app.show_config()

        elif args.scheduled:
            await app.start_automated_mode(execute_entries=args.paper)

        else:
            result = await app.run_once(save=args.save)
            if result is None:
                sys.exit(1)

        logger.info("Application completed successfully")

    except ConfigurationError as e:
        logger.error(f"Configuration rejected: {e}")
        sys.exit(2)

    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Application failed: {e}")
        if args.log_level == 'DEBUG':
            logger.exception("Full traceback:")
        sys.exit(1)


def run():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nApplication interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
