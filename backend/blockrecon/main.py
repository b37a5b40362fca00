"""
Reconciler entrypoint.
Streams blocks for the configured window, compares each against the reference node,
then prints the final report.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Optional

from pydantic import ValidationError

from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.http_client import JsonRpcHTTPClient

from blockrecon.backoff import BackoffPolicy
from blockrecon.comparator import Comparator
from blockrecon.config import ReconcilerSettings
from blockrecon.engine import Deadline, Reconciler
from blockrecon.report import Report, print_report
from blockrecon.sources.base import BlockFilter, ReferenceSource, StreamSource
from blockrecon.sources.rpc import JsonRpcReferenceSource
from blockrecon.sources.stream import WebsocketStreamSource
from blockrecon.supervisor import RetrySupervisor, SessionState

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_BAD_CONFIG = 2


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="blockrecon",
        description="Compare per-block transaction counts from a block stream against a reference RPC node.",
    )
    parser.add_argument("--endpoint", default=None, help="Streaming source websocket URL (env BR_RECON_ENDPOINT)")
    parser.add_argument("--x-token", default=None, help="Streaming source auth token (env BR_RECON_X_TOKEN)")
    parser.add_argument("--rpc-uri", default=None, help="Reference JSON-RPC URL (env BR_RECON_RPC_URI)")
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Observation window in seconds (default: 60)",
    )
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> ReconcilerSettings:
    """Build settings from the environment, with explicitly passed flags taking precedence."""
    overrides: dict[str, Any] = {
        "endpoint": args.endpoint,
        "x_token": args.x_token,
        "rpc_uri": args.rpc_uri,
        "duration_s": args.duration,
    }
    return ReconcilerSettings(**{k: v for k, v in overrides.items() if v is not None})


async def reconcile(
    settings: ReconcilerSettings,
    source: StreamSource,
    reference: ReferenceSource,
    report: Report,
) -> SessionState:
    """Run the supervised stream/compare loop for one observation window."""
    deadline = Deadline(settings.duration_s)
    reconciler = Reconciler(
        report,
        Comparator(reference, report),
        deadline,
        max_concurrent=settings.max_concurrent_comparisons,
    )
    supervisor = RetrySupervisor(
        source,
        reconciler,
        policy=BackoffPolicy.from_settings(settings),
        block_filter=BlockFilter(include_transactions=True, commitment=settings.commitment),
        max_malformed_updates=settings.max_malformed_updates,
    )
    logger.info(
        "reconciler_started",
        endpoint=source.endpoint,
        rpc_uri=reference.endpoint,
        duration_s=settings.duration_s,
        commitment=settings.commitment.value,
    )
    return await supervisor.run()


async def run(settings: ReconcilerSettings) -> SessionState:
    report = Report()
    source = WebsocketStreamSource(
        settings.endpoint,
        settings.x_token,
        connect_timeout_s=settings.connect_timeout_s,
        ping_interval_s=settings.ws_ping_interval_s,
    )
    async with JsonRpcHTTPClient("reference", settings.rpc_uri, timeout_s=settings.rpc_timeout_s) as rpc:
        state = await reconcile(settings, source, JsonRpcReferenceSource(rpc, settings.commitment), report)
    await print_report(report)
    return state


def main(argv: Optional[list[str]] = None) -> int:
    setup_logging("blockrecon")
    args = parse_args(argv)
    try:
        settings = settings_from_args(args)
    except ValidationError as e:
        logger.error("invalid_configuration", error=str(e))
        return EXIT_BAD_CONFIG

    start_metrics_server()
    state = asyncio.run(run(settings))
    if state is not SessionState.COMPLETED:
        # Stream failures during the run are reported, not turned into exit status
        logger.warning("reconciler_stopped_early", state=state.value)
    return EXIT_OK


def main_entry() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    main_entry()
