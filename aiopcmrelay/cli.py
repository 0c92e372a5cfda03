"""Command-line interface for running the relay server."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from collections.abc import Sequence
from typing import Any

from aiopcmrelay.config import RelayConfig
from aiopcmrelay.server import RelayServer

logger = logging.getLogger(__name__)

# CLI flag -> RelayConfig field, flags left unset keep the file or default value.
_OVERRIDES = (
    "host",
    "port",
    "stream_path",
    "sample_rate",
    "bit_rate",
    "flush_interval",
    "low_pass_cutoff",
    "max_retries",
    "retry_delay",
    "connect_timeout",
    "max_buffered_samples",
)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the relay server."""
    parser = argparse.ArgumentParser(description="Relay PCM WebSocket audio as MP3 SSE")
    parser.add_argument("--config", default=None, help="JSON file with relay settings")
    parser.add_argument("--host", default=None, help="Interface to listen on")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    parser.add_argument("--stream-path", default=None, help="Path of the subscription route")
    parser.add_argument("--sample-rate", type=int, default=None, help="Upstream PCM rate in Hz")
    parser.add_argument("--bit-rate", type=int, default=None, help="MP3 bitrate in kbps")
    parser.add_argument(
        "--flush-interval", type=float, default=None, help="Seconds between MP3 events"
    )
    parser.add_argument(
        "--low-pass-cutoff", type=float, default=None, help="Low-pass cutoff in Hz"
    )
    parser.add_argument("--max-retries", type=int, default=None, help="Upstream retry ceiling")
    parser.add_argument(
        "--retry-delay", type=float, default=None, help="Seconds between upstream retries"
    )
    parser.add_argument(
        "--connect-timeout", type=float, default=None, help="Upstream handshake deadline"
    )
    parser.add_argument(
        "--max-buffered-samples",
        type=int,
        default=None,
        help="Drop the oldest audio once this many samples wait for a flush",
    )
    parser.add_argument(
        "--allowed-origin",
        action="append",
        dest="allowed_origins",
        default=None,
        help="Origin allowed to subscribe, repeat for several",
    )
    parser.add_argument(
        "--host-rewrite",
        action="append",
        dest="host_rewrites",
        default=None,
        metavar="OLD=NEW",
        help="Replace OLD with NEW in the upstream host, repeat for several",
    )
    parser.add_argument(
        "--retryable-status",
        action="append",
        type=int,
        dest="retryable_statuses",
        default=None,
        help="Upstream status treated as transient, repeat for several",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> RelayConfig:
    """Merge the optional settings file with the flags given on the command line."""
    config = RelayConfig.load(args.config) if args.config else RelayConfig()
    changes: dict[str, Any] = {
        name: getattr(args, name) for name in _OVERRIDES if getattr(args, name) is not None
    }
    if args.allowed_origins is not None:
        changes["allowed_origins"] = list(args.allowed_origins)
    if args.retryable_statuses is not None:
        changes["retryable_statuses"] = list(args.retryable_statuses)
    if args.host_rewrites is not None:
        rewrites: dict[str, str] = {}
        for item in args.host_rewrites:
            old, sep, new = item.partition("=")
            if not sep or not old:
                raise ValueError(f"Invalid host rewrite {item!r}, expected OLD=NEW")
            rewrites[old] = new
        changes["host_rewrites"] = rewrites
    return dataclasses.replace(config, **changes)


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Run the relay until interrupted."""
    args = parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=getattr(logging, args.log_level))

    try:
        config = build_config(args)
    except (OSError, ValueError) as err:
        logger.error("Invalid configuration: %s", err)  # noqa: TRY400
        return 2

    server = RelayServer(config)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        logger.debug("Received interrupt signal, shutting down...")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    await server.start()
    try:
        await stop.wait()
    finally:
        await server.stop()
    return 0


def main() -> int:
    """Run the CLI."""
    return asyncio.run(main_async(sys.argv[1:]))


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
