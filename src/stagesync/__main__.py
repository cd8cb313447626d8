"""Command-line entry point: run a relay, or watch one with a sync agent.

    stagesync relay --port 4001
    stagesync watch --url ws://192.168.1.20:4001
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from stagesync.agent import SyncAgent, SyncStatus
from stagesync.config import AgentConfig, RelayConfig
from stagesync.document import StageDocument
from stagesync.exceptions import StageSyncConfigError
from stagesync.models import Snapshot
from stagesync.relay import run_relay

_LOG = logging.getLogger("stagesync")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="stagesync",
        description="Relay and watch the shared stage document.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    relay = sub.add_parser("relay", help="Run the in-memory relay.")
    relay.add_argument("--host", default=None, help="Bind address (default: STAGE_SYNC_BIND or 0.0.0.0).")
    relay.add_argument("--port", type=int, default=None, help="Port (default: STAGE_SYNC_PORT or 4001).")

    watch = sub.add_parser("watch", help="Connect an agent and log what it sees.")
    watch.add_argument("--url", default=None, help="Relay URL (default: resolved from STAGE_SYNC_* env).")
    watch.add_argument(
        "--reconnect-delay",
        type=float,
        default=None,
        help="Seconds between reconnect attempts (default: 2.0).",
    )
    return parser.parse_args(argv)


def _install_stop_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on Windows event loops.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signum, stop.set)


async def _relay(args: argparse.Namespace) -> None:
    overrides = {key: value for key, value in (("host", args.host), ("port", args.port)) if value is not None}
    stop = asyncio.Event()
    _install_stop_handlers(stop)
    await run_relay(RelayConfig.from_env(**overrides), stop_event=stop)


async def _watch(args: argparse.Namespace) -> None:
    overrides: dict[str, object] = {}
    if args.url:
        overrides["url"] = args.url
    if args.reconnect_delay is not None:
        overrides["reconnect_delay"] = args.reconnect_delay
    config = AgentConfig.from_env(**overrides)

    def on_status(status: SyncStatus, error: str | None) -> None:
        if error:
            _LOG.info("status=%s (%s)", status.value, error)
        else:
            _LOG.info("status=%s", status.value)

    def on_snapshot(snapshot: Snapshot) -> None:
        active = sum(1 for issue in snapshot.issues if issue.is_active)
        _LOG.info(
            "snapshot equipment=%d issues=%d active=%d",
            len(snapshot.equipment),
            len(snapshot.issues),
            active,
        )

    document = StageDocument()
    document.subscribe(on_snapshot)
    stop = asyncio.Event()
    _install_stop_handlers(stop)
    async with SyncAgent(document, config, on_status=on_status) as agent:
        if agent.status == SyncStatus.UNAVAILABLE:
            return
        _LOG.info("origin=%s url=%s", agent.origin_id, agent.url)
        await stop.wait()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.command == "relay":
            asyncio.run(_relay(args))
        else:
            asyncio.run(_watch(args))
    except StageSyncConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
