"""Command-line interface for watching the Bybit P2P rate in a terminal."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from typing import Iterable, Optional

from dotenv import load_dotenv

from .client import P2PClient
from .config import ConfigNotFoundError, WatchConfig, load_watch_config
from .controller import PollController
from .display import render_snapshot
from .state import Snapshot

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Poll Bybit P2P USDT/RUB offers and print rolling average rates."
    )
    parser.add_argument(
        "--config",
        required=False,
        help="Path to a YAML/JSON config file (default: P2PWATCH_CONFIG env var).",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("P2PWATCH_LOG_LEVEL"),
        help="Logging level (default: P2PWATCH_LOG_LEVEL env var, then config, then INFO).",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single refresh cycle, print it and exit (non-zero on failure).",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_snapshot(snapshot: Snapshot) -> None:
    print(render_snapshot(snapshot), flush=True)
    print("-" * 60, flush=True)


async def _run_loop(config: WatchConfig, once: bool = False) -> int:
    endpoint = config.endpoint
    async with P2PClient(
        endpoint.base_url,
        endpoint.path,
        timeout=endpoint.timeout_seconds,
    ) as client:
        controller = PollController(client)

        if once:
            await controller.refresh()
            _print_snapshot(controller.snapshot)
            return 1 if controller.snapshot.error else 0

        controller.subscribe(_print_snapshot)
        stop_event = asyncio.Event()

        def _handle_stop(*_) -> None:
            stop_event.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _handle_stop)
        if hasattr(signal, "SIGUSR1"):
            loop.add_signal_handler(signal.SIGUSR1, controller.retry)

        controller.start()
        await stop_event.wait()
        await controller.stop()
    return 0


def main(argv: Optional[Iterable[str]] = None) -> None:
    load_dotenv(os.getenv("P2PWATCH_ENV_FILE") or ".env")
    args = _parse_args(argv)
    try:
        config = load_watch_config(args.config)
    except (ConfigNotFoundError, ValueError) as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    _configure_logging(args.log_level or config.log_level)
    logger.debug("Using endpoint %s%s", config.endpoint.base_url, config.endpoint.path)

    exit_code = asyncio.run(_run_loop(config, once=args.once))
    if exit_code:
        raise SystemExit(exit_code)


__all__ = ["main"]


if __name__ == "__main__":  # pragma: no cover
    main()
