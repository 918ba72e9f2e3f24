"""Entry point: uv run -m ssesource URL"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from .client.event_source import EventSource
from .config import EventSourceConfig
from .event import Event
from .logging_config import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Tail a Server-Sent Events stream")
    parser.add_argument("url", help="Event stream URL")
    parser.add_argument("--retry", type=float, default=None, help="Initial retry interval in seconds (default: 1)")
    parser.add_argument(
        "--event", action="append", default=[], metavar="NAME",
        help="Only print message events with this name (repeatable)",
    )
    parser.add_argument("--header", action="append", default=[], metavar="KEY:VALUE", help="Extra request header")
    parser.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    parser.add_argument("--quiet", action="store_true", help="Log to file only, not stderr")
    args = parser.parse_args()

    try:
        config = _config_from_args(args)
    except ValueError as exc:
        parser.error(str(exc))

    setup_logging(config.log_dir, config.log_level, console=not args.quiet)

    try:
        asyncio.run(_tail(args.url, config, args.event))
    except KeyboardInterrupt:
        pass


def _config_from_args(args: argparse.Namespace) -> EventSourceConfig:
    """Build the config with command-line overrides, validated like the environment."""
    overrides: dict[str, object] = {}
    if args.retry is not None:
        overrides["retry_interval"] = args.retry
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.header:
        headers: dict[str, str] = {}
        for header in args.header:
            key, sep, value = header.partition(":")
            if not sep:
                raise ValueError(f"--header expects KEY:VALUE, got {header!r}")
            headers[key.strip()] = value.strip()
        overrides["headers"] = headers
    return EventSourceConfig(**overrides)


def _print_event(event: Event) -> None:
    sys.stdout.write(json.dumps(event.to_dict()) + "\n")
    sys.stdout.flush()


async def _tail(url: str, config: EventSourceConfig, event_names: list[str]) -> None:
    """Print open, error and message events until cancelled."""
    async with EventSource(url, config=config) as source:
        source.on_open(_print_event)
        source.on_error(_print_event)
        if not event_names:
            source.on_message(_print_event)
        for name in event_names:
            source.add_event_listener(name, _print_event)
        await asyncio.Event().wait()


if __name__ == "__main__":
    main()
