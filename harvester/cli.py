"""Command-line interface.

Usage:
    harvester run --strategy intelligent --targets lider,jumbo --categories bebidas,lacteos
    harvester run --no-resume --max-items 200 --output ./out --verbose
    harvester targets
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import structlog

from harvester.config import settings
from harvester.core.exceptions import ConfigurationError, PersistenceError
from harvester.core.logging import configure_logging
from harvester.schemas.target import Target, load_targets
from harvester.scrapers.browser import BrowserProvider
from harvester.scrapers.orchestrator import (
    EXIT_FATAL,
    INTELLIGENT,
    HarvestOrchestrator,
    RunOptions,
    build_orchestrator,
    select_targets,
)
from harvester.scrapers.strategies import STRATEGY_CLASSES
from harvester.services.report_service import print_summary

logger = structlog.get_logger(__name__)

STRATEGY_CHOICES = [INTELLIGENT] + [strategy_class.name for strategy_class in STRATEGY_CLASSES]


def _csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="harvester",
        description="Adaptive multi-strategy product harvester.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
examples:
  # Harvest every configured target, letting the selector pick strategies
  harvester run

  # Two targets, two categories, pinned strategy
  harvester run --targets lider,jumbo --categories bebidas,lacteos --strategy standard

  # Start over instead of resuming the last unfinished session
  harvester run --no-resume --max-items 200

  # Show configured targets and their categories
  harvester targets
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a harvest session")
    run.add_argument(
        "--strategy",
        choices=STRATEGY_CHOICES,
        default=INTELLIGENT,
        help="Strategy to use for every attempt, or 'intelligent' to rank them per target (default)",
    )
    run.add_argument("--targets", type=_csv, default=None, help="Comma-separated target ids (default: all)")
    run.add_argument("--categories", type=_csv, default=None, help="Comma-separated category slugs")
    run.add_argument("--max-items", type=_positive_int, default=None, help=f"Item budget (default: {settings.MAX_ITEMS})")
    run.add_argument("--concurrency", type=_positive_int, default=None, help=f"Worker count (default: {settings.CONCURRENCY})")
    run.add_argument(
        "--max-attempts", type=_positive_int, default=None, help=f"Attempts per target (default: {settings.MAX_ATTEMPTS})"
    )
    run.add_argument("--output", type=Path, default=None, help=f"Output directory (default: {settings.OUTPUT_DIR})")
    run.add_argument(
        "--resume",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Resume the newest unfinished session younger than RESUME_MAX_AGE_HOURS",
    )
    run.add_argument("--targets-file", type=Path, default=None, help="JSON targets file (default: packaged targets)")
    run.add_argument("--headed", action="store_true", help="Show the browser window")
    run.add_argument("--verbose", "-v", action="store_true", help="Debug logging on the console")

    targets = subparsers.add_parser("targets", help="List configured targets and their categories")
    targets.add_argument("--targets-file", type=Path, default=None, help="JSON targets file (default: packaged targets)")
    return parser


def _load_targets(path: Optional[Path]) -> List[Target]:
    if path is None and settings.TARGETS_FILE:
        path = Path(settings.TARGETS_FILE)
    return load_targets(path)


def list_targets(args: argparse.Namespace) -> int:
    try:
        targets = _load_targets(args.targets_file)
    except ConfigurationError as exc:
        print(f"[error] {exc.message}", file=sys.stderr)
        return EXIT_FATAL

    print(f"{'Target':<16} {'Name':<20} {'Categories'}")
    print("-" * 64)
    for target in targets:
        categories = ", ".join(target.known_categories()) or "(search)"
        print(f"{target.id:<16} {target.display_name:<20} {categories}")
    return 0


async def _run_orchestrator(orchestrator: HarvestOrchestrator):
    """Run with SIGINT/SIGTERM mapped to a graceful stop."""
    loop = asyncio.get_running_loop()
    installed = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, orchestrator.request_stop)
            installed.append(signum)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable on some platforms and threads
            pass
    try:
        return await orchestrator.run()
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)


def run_harvest(args: argparse.Namespace, browser: Optional[BrowserProvider] = None) -> int:
    """Execute the run command.

    Args:
        args: Parsed run arguments
        browser: Browser provider override (tests); defaults to Playwright

    Returns:
        Process exit code: 0 success, 1 fatal error, 2 partial success
    """
    configure_logging(verbose=args.verbose, level=settings.LOG_LEVEL)

    try:
        targets = select_targets(_load_targets(args.targets_file), args.targets)
        options = RunOptions.from_settings(
            settings,
            strategy=args.strategy,
            target_ids=args.targets,
            categories=args.categories or [],
            max_items=args.max_items,
            concurrency=args.concurrency,
            max_attempts=args.max_attempts,
            output_dir=args.output,
            resume=args.resume,
        )
        orchestrator = build_orchestrator(
            settings,
            targets,
            options,
            browser=browser,
            headless=settings.HEADLESS and not args.headed,
        )
    except ConfigurationError as exc:
        logger.error("setup_failed", error=exc.message)
        print(f"[error] {exc.message}", file=sys.stderr)
        return EXIT_FATAL

    logger.info(
        "run_starting",
        targets=[target.id for target in targets],
        strategy=options.strategy,
        categories=options.categories,
        max_items=options.max_items,
        concurrency=options.concurrency,
    )

    try:
        result = asyncio.run(_run_orchestrator(orchestrator))
    except (ConfigurationError, PersistenceError) as exc:
        logger.error("run_failed", error=exc.message)
        print(f"[error] {exc.message}", file=sys.stderr)
        return EXIT_FATAL
    except KeyboardInterrupt:
        print("\n[stopped] Interrupted by user.", file=sys.stderr)
        return EXIT_FATAL

    print_summary(result.report)
    return result.exit_code


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "targets":
        return list_targets(args)
    return run_harvest(args)


if __name__ == "__main__":
    sys.exit(main())
