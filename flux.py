#!/usr/bin/env python3
"""
⚡ Flux Load Testing Tool
=========================
Drives concurrent HTTP traffic against a target for a fixed duration, either
one repeated request or a chain of dependent scenario steps, and reports
latency percentiles, throughput and error rates.

Requirements:
    pip install aiohttp rich pyyaml hdrhistogram jsonpath-ng

Usage:
    python flux.py --config config.yaml
    python flux.py --config config.yaml --concurrency 50 --duration 2m --mode sync
    python flux.py --config config.yaml --no-live --json out/report.json
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional, List, Tuple, Callable

from rich.logging import RichHandler

from flux_client import HttpClient
from flux_config import RunConfig, ExecutionMode, load_config
from flux_errors import ConfigError
from flux_executor import WorkerPool
from flux_metrics import MetricsCollector, RequestOutcome, Summary
from flux_report import Reporter
from flux_ui import TerminalUI, console

logger = logging.getLogger("flux")

LIVE_UPDATE_INTERVAL_SECS = 1.0


def resolve_log_level(verbose: bool = False) -> int:
    """FLUX_LOG_LEVEL wins over --verbose; unknown names fall back to INFO."""
    default = logging.DEBUG if verbose else logging.INFO
    name = os.environ.get("FLUX_LOG_LEVEL", "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        return logging.INFO
    return level


def configure_logging(verbose: bool = False):
    level = resolve_log_level(verbose)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


async def _live_updates(metrics: MetricsCollector, ui: TerminalUI, duration_secs: int):
    """Offer a LiveSnapshot to the display once per second for the run duration."""
    elapsed = 0
    while elapsed < duration_secs:
        await asyncio.sleep(LIVE_UPDATE_INTERVAL_SECS)
        elapsed += 1
        ui.update_progress(elapsed, metrics.live_snapshot())


def _install_signal_handlers() -> bool:
    # SIGTERM is observed and logged only: the run still ends when its duration elapses.
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(
            signal.SIGTERM,
            lambda: logger.warning("Received SIGTERM; the run continues until its duration elapses"),
        )
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers not supported on this platform")
        return False
    return True


async def run_load_test(
    config: RunConfig,
    duration_secs: int,
    ui: Optional[TerminalUI] = None,
    client_factory: Callable[[], object] = HttpClient,
) -> Tuple[Summary, List[RequestOutcome]]:
    """Run the whole test and return the final summary and the result log."""
    metrics = MetricsCollector()
    pool = WorkerPool(config, metrics, duration_secs, client_factory)
    signals_installed = _install_signal_handlers()

    ticker = None
    if ui is not None:
        ui.start_progress()
        ticker = asyncio.create_task(_live_updates(metrics, ui, duration_secs))

    try:
        try:
            logger.info("Starting load test execution")
            await pool.run()
            if ticker is not None:
                await ticker
        finally:
            if ticker is not None:
                if not ticker.done():
                    ticker.cancel()
                ui.finish_progress()

        # Nothing recorded during close() is part of the summary
        logger.info("Generating summary")
        summary = metrics.summary()
        results = metrics.results()
    finally:
        await pool.close()
        if signals_installed:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGTERM)

    return summary, results


def write_reports(config: RunConfig, summary: Summary, results: List[RequestOutcome], ui: TerminalUI):
    """Report failures are logged; they never change the outcome of the run."""
    reporter = Reporter(summary, results)

    try:
        reporter.generate_json(config.output.json)
        ui.display_success(f"JSON report saved to: {config.output.json}")
    except OSError as e:
        logger.error("Failed to generate JSON report: %s", e)

    try:
        reporter.generate_html(config.output.html)
        ui.display_success(f"HTML report saved to: {config.output.html}")
    except OSError as e:
        logger.error("Failed to generate HTML report: %s", e)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="⚡ Flux Load Testing Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the configuration in config.yaml
  python flux.py --config config.yaml

  # Override workers and duration
  python flux.py --config config.yaml --concurrency 100 --duration 5m

  # Staggered worker start
  python flux.py --config config.yaml --mode sync
        """,
    )
    parser.add_argument("--config", "-f", default="config.yaml", help="YAML configuration file")
    parser.add_argument("--concurrency", "-c", type=int, help="Number of concurrent workers")
    parser.add_argument("--duration", "-d", help="Test duration (e.g. 30s, 5m, 1h)")
    parser.add_argument("--mode", "-m", choices=[m.value for m in ExecutionMode], help="Execution mode")
    parser.add_argument("--json", help="JSON report output path")
    parser.add_argument("--html", help="HTML report output path")
    parser.add_argument("--no-live", action="store_true", help="Disable the live progress display")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    overrides = {
        "concurrency": args.concurrency,
        "duration": args.duration,
        "mode": args.mode,
        "json": args.json,
        "html": args.html,
    }

    try:
        config = load_config(args.config, overrides)
        duration_secs = config.duration_secs
    except ConfigError as e:
        TerminalUI(0).display_error(f"Failed to load configuration: {e}")
        return 1

    ui = TerminalUI(duration_secs)
    ui.display_banner(config)

    summary, results = asyncio.run(
        run_load_test(config, duration_secs, ui=None if args.no_live else ui)
    )

    ui.display_summary(summary)
    write_reports(config, summary, results, ui)

    logger.info("Flux load test completed")
    return 0


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
