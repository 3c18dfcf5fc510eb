"""CLI entry point for running tests inside a host application."""

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from host_test_runner.catalog_loader import load_selected_catalog
from host_test_runner.controller import RunController
from host_test_runner.hosts.loading import load_host_manifest
from host_test_runner.hosts.process import cleanup_channels
from host_test_runner.journal import ExportRejectedError, export_journals
from host_test_runner.models.result import (
    RunSummary,
    TestComplete,
    TestFailed,
    TestTimedOut,
)
from host_test_runner.models.session import select_product
from host_test_runner.presentation import selection_summary
from host_test_runner.session import SettingsStore, load_session
from host_test_runner.watcher import CatalogWatcher

DEFAULT_SETTINGS_PATH = Path.home() / ".config" / "host-test-runner" / "settings.yaml"

STATUS_SYMBOLS = {
    "success": "✓",
    "failure": "✗",
    "error": "!",
    "inconclusive": "?",
    "timed_out": "⏱",
    "not_runnable": "-",
    "cancelled": "x",
    "skipped": ">",
    "ignored": ">",
}


def log_results_summary(log: logging.Logger, summary: RunSummary) -> None:
    """Log a formatted summary of test outcomes."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for outcome in summary.outcomes:
        symbol = STATUS_SYMBOLS.get(outcome.status, "?")
        log.info(
            "%s %s: %s (%.2fs)",
            symbol,
            outcome.qualified_name,
            outcome.status,
            outcome.duration,
        )
        if outcome.message:
            log.info("  Message: %s", outcome.message)

    for error in summary.configuration_errors:
        log.info("Configuration error: %s", error)
    if summary.run_error:
        log.info("Run error: %s", summary.run_error)


def format_output(summary: RunSummary) -> dict[str, Any]:
    """Format a run summary for JSON output."""
    results = [
        {
            "test": outcome.qualified_name,
            "assembly": outcome.assembly,
            "model": outcome.model,
            "status": outcome.status,
            "duration": outcome.duration,
            "message": outcome.message,
        }
        for outcome in summary.outcomes
    ]
    return {
        "total": len(results),
        "passed": summary.counts.passed,
        "skipped": summary.counts.skipped,
        "failed": summary.counts.failed,
        "cancelled": summary.cancelled,
        "configuration_errors": list(summary.configuration_errors),
        "run_error": summary.run_error,
        "results_path": str(summary.results_path) if summary.results_path else None,
        "results": results,
    }


async def run_tests(
    log: logging.Logger, controller: RunController
) -> RunSummary | None:
    """Run the selected tests once, logging progress and the summary."""
    handle = controller.start()
    if handle is None:  # pragma: no cover
        return None

    async for event in handle.events():
        if isinstance(event, TestFailed):
            log.error("%s failed: %s", event.test, event.message)
        elif isinstance(event, TestTimedOut):
            log.warning("%s timed out", event.test)
        elif isinstance(event, TestComplete):
            log.info("Batch completed: %s", ", ".join(event.tests))
    summary = await handle.wait()

    log_results_summary(log, summary)
    print(json.dumps(format_output(summary), indent=2))
    return summary


async def wait_for_any(*events: asyncio.Event) -> None:
    """Wait until at least one of the events is set."""
    waiters = [asyncio.create_task(event.wait()) for event in events]
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()


async def rerun_on_change(
    log: logging.Logger,
    controller: RunController,
    stop: asyncio.Event,
    poll_interval: float = 1.0,
) -> RunSummary | None:
    """Run the tests again after every catalog reload until stop is set.

    Returns:
        Summary of the last run, or None if the catalog never changed

    """
    changed = asyncio.Event()
    summary: RunSummary | None = None
    async with CatalogWatcher.from_controller(
        controller, poll_interval=poll_interval, on_reload=lambda _: changed.set()
    ):
        while True:
            await wait_for_any(changed, stop)
            if stop.is_set():
                return summary
            changed.clear()
            log.info("Selected tests: %s", selection_summary(controller.catalog))
            latest = await run_tests(log, controller)
            if latest is not None:
                summary = latest


async def run(
    session_path: Path,
    host_key: str,
    host_config_json: str,
    settings_path: Path = DEFAULT_SETTINGS_PATH,
    product: int | None = None,
    watch: bool = False,
) -> int:
    """Run the selected tests of a session and return exit code."""
    log = logging.getLogger("host_test_runner")

    log.info("Loading session: %s", session_path)
    session = await load_session(session_path)

    if product is not None:
        try:
            session = select_product(session, product)
        except IndexError as e:
            log.error("%s", e)
            return 1
        log.info("Using host product: %s", session.products[product].name)

    log.info("Loading host: %s", host_key)
    manifest = load_host_manifest(host_key)
    config = manifest.config_cls(**json.loads(host_config_json))

    catalog = await load_selected_catalog(session)
    log.info("Selected tests: %s", selection_summary(catalog))

    settings = SettingsStore(path=settings_path)
    settings.load()
    settings.remember(session_path.resolve())

    async with manifest.supervisor_factory(config, session) as supervisor:
        controller = RunController(
            catalog=catalog, session=session, supervisor=supervisor
        )
        stop = asyncio.Event()

        def interrupt() -> None:
            if controller.is_running:
                controller.cancel()
            else:
                stop.set()

        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, interrupt)
        try:
            summary = await run_tests(log, controller)
            if watch:
                latest = await rerun_on_change(log, controller, stop)
                if latest is not None:
                    summary = latest
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)

    if summary is None:  # pragma: no cover
        return 1
    return 1 if summary.has_failures else 0


async def export(session_path: Path, export_folder: Path) -> int:
    """Export a journal per selected test and return exit code."""
    log = logging.getLogger("host_test_runner")

    session = await load_session(session_path)
    catalog = await load_selected_catalog(session)
    try:
        written = export_journals(catalog, session, export_folder)
    except ExportRejectedError as e:
        log.error("Journals were not exported: %s", e)
        return 1

    for path in written:
        print(path)
    return 0


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run tests inside an external host application"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the selected tests")
    run_parser.add_argument(
        "--session", type=Path, required=True, help="Path to the session file"
    )
    run_parser.add_argument(
        "--host", default="process", help="Host key (default: process)"
    )
    run_parser.add_argument(
        "--host-config", default="{}", help="JSON configuration for the host"
    )
    run_parser.add_argument(
        "--settings",
        type=Path,
        default=DEFAULT_SETTINGS_PATH,
        help="Path to the user settings file",
    )
    run_parser.add_argument(
        "--product",
        type=int,
        default=None,
        help="Index of the session's host product to run in",
    )
    run_parser.add_argument(
        "--watch",
        action="store_true",
        help="Run again whenever the catalog file changes (Ctrl+C to stop)",
    )

    export_parser = subparsers.add_parser(
        "export", help="Export a journal per selected test"
    )
    export_parser.add_argument(
        "--session", type=Path, required=True, help="Path to the session file"
    )
    export_parser.add_argument(
        "--export-folder", type=Path, required=True, help="Folder for the journals"
    )

    cleanup_parser = subparsers.add_parser(
        "cleanup", help="Remove channels left behind by interrupted runs"
    )
    cleanup_parser.add_argument(
        "--channel-dir",
        type=Path,
        default=None,
        help="Directory channels were created in (default: temp directory)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    if args.command == "run":
        exit_code = asyncio.run(
            run(
                session_path=args.session,
                host_key=args.host,
                host_config_json=args.host_config,
                settings_path=args.settings,
                product=args.product,
                watch=args.watch,
            )
        )
    elif args.command == "export":
        exit_code = asyncio.run(
            export(session_path=args.session, export_folder=args.export_folder)
        )
    else:
        cleanup_channels(args.channel_dir)
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
