"""
CLI entrypoint for the feed relay.

Usage: feedrelay [--log-level LEVEL] [--debug]

Waits for a reader on the local pipe, then connects to the remote feed and
relays alert and symbol_update messages until SIGINT or SIGTERM. Either
signal exits with status 0, including while still waiting for the reader.

Options:
  --log-level TEXT   Root log level (default: INFO)
  --debug            Shortcut for --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from types import FrameType
from typing import Optional

from feedrelay.relay.channel import LocalChannel
from feedrelay.relay.config import RelayConfig
from feedrelay.relay.errors import TransportContextError
from feedrelay.relay.supervisor import Supervisor

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feedrelay",
        description="Relay remote feed alerts to a local named pipe",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Root log level.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose per-frame logging.",
    )
    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if args.debug else getattr(logging, args.log_level)
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _interrupt(signum: int, frame: Optional[FrameType]) -> None:
    raise KeyboardInterrupt


async def _run_relay(config: RelayConfig, channel: LocalChannel) -> None:
    supervisor = Supervisor(config, channel)
    await supervisor.run()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args)

    config = RelayConfig()
    channel = LocalChannel(config.channel)

    # SIGTERM must end the blocking open() as cleanly as SIGINT does
    previous = signal.signal(signal.SIGTERM, _interrupt)
    try:
        channel.open()
    except KeyboardInterrupt:
        print("Interrupted while waiting for pipe reader.")
        channel.close()
        return 0
    finally:
        signal.signal(signal.SIGTERM, previous)

    try:
        asyncio.run(_run_relay(config, channel))
    except KeyboardInterrupt:
        return 0
    except TransportContextError as exc:
        print(f"[!] {exc}")
        return 1
    finally:
        channel.close()

    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
