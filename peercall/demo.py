"""Command-line demo of a complete call between two in-process peers.

Alice calls Bob over an in-process relay with generated audio/video. Bob
answers (or declines with --reject), the call runs for a few seconds with
real aiortc peer connections, and both call-log records are printed at the
end. It is intended for manual experimentation rather than automated testing.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import (
    CALL_LOG,
    DURATION,
    ERROR,
    STATE_CHANGE,
    Call,
    CallClient,
    CallConfig,
    CallEvent,
    CallLogRecord,
    IncomingCall,
    LocalRelay,
    MediaKind,
    MemoryCallLogSink,
    SyntheticMediaDevices,
)
from ._utils import format_duration


CONSOLE = Console()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a loopback peer-to-peer call demo")
    parser.add_argument(
        "--media",
        choices={"voice", "video"},
        default="video",
        help="Call type",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=5.0,
        help="Seconds to keep the call up once connected",
    )
    parser.add_argument(
        "--reject",
        action="store_true",
        help="Bob declines the call instead of answering",
    )
    parser.add_argument(
        "--screen-share",
        action="store_true",
        help="Alice shares her screen halfway through the call",
    )
    parser.add_argument(
        "--ring-timeout",
        type=float,
        default=15.0,
        help="Seconds before an unanswered call is cancelled",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices={"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"},
        help="Logging verbosity",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Shortcut for --log-level=DEBUG",
    )
    return parser


def _configure_logging(level: str, debug: bool) -> None:
    effective_level = "DEBUG" if debug else level
    logging.basicConfig(
        level=getattr(logging, effective_level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[
            RichHandler(
                console=CONSOLE,
                rich_tracebacks=True,
                show_path=False,
                show_time=False,
            )
        ],
        force=True,
    )


def _watch(call: Call, name: str) -> None:
    def on_state(event: CallEvent) -> None:
        CONSOLE.print(f"[cyan]{name}[/]: {event.previous_state.value} → [bold]{event.state.value}[/]")

    def on_duration(event: CallEvent) -> None:
        CONSOLE.print(f"[dim]{name}: {format_duration(event.duration or 0)}[/]")

    def on_error(event: CallEvent) -> None:
        style = "red" if event.fatal else "yellow"
        CONSOLE.print(f"[{style}]{name}: {event.error}[/]")

    def on_log(event: CallEvent) -> None:
        CONSOLE.print(f"[green]{name}[/]: call logged as {event.record.call_status.value}")

    call.on(STATE_CHANGE, on_state)
    call.on(DURATION, on_duration)
    call.on(ERROR, on_error)
    call.on(CALL_LOG, on_log)


def _render_records(records: List[CallLogRecord]) -> Table:
    table = Table(title="Call log")
    table.add_column("Receiver")
    table.add_column("Type")
    table.add_column("Duration", justify="right")
    table.add_column("Status")
    for record in records:
        table.add_row(
            record.receiver_id,
            record.call_type.value,
            format_duration(record.duration),
            record.call_status.value,
        )
    return table


async def _run_demo(args: argparse.Namespace) -> int:
    _configure_logging(args.log_level, args.debug)

    relay = LocalRelay()
    sink = MemoryCallLogSink()
    config = CallConfig(ring_timeout=args.ring_timeout)
    devices = SyntheticMediaDevices()
    media_kind = MediaKind(args.media)
    answered = asyncio.Event()
    bob_calls: List[Call] = []

    alice = CallClient(
        "alice", relay.connect("alice"), "Alice", config=config, devices=devices, log_sink=sink
    )
    bob = CallClient(
        "bob", relay.connect("bob"), "Bob", config=config, devices=devices, log_sink=sink
    )

    async def on_invite(invite: IncomingCall) -> None:
        CONSOLE.print(f"[magenta]Bob[/]: {invite.caller_name} is calling ({invite.media_kind.value})")
        if args.reject:
            await bob.reject(invite.caller_id)
            return
        call = await bob.accept(invite.caller_id)
        _watch(call, "Bob")
        bob_calls.append(call)
        answered.set()

    bob.on_incoming_call = on_invite

    try:
        async with alice, bob:
            call = await alice.place_call("bob", media_kind, remote_name="Bob")
            _watch(call, "Alice")

            if args.reject:
                await call.wait_ended(timeout=args.ring_timeout + 5)
            else:
                await asyncio.wait_for(answered.wait(), timeout=args.ring_timeout)
                if args.screen_share and media_kind == MediaKind.VIDEO:
                    await asyncio.sleep(args.duration / 2)
                    if await call.start_screen_share():
                        CONSOLE.print("[cyan]Alice[/]: sharing screen")
                    await asyncio.sleep(args.duration / 2)
                    await call.stop_screen_share()
                else:
                    await asyncio.sleep(args.duration)
                await call.hangup()
                for bob_call in bob_calls:
                    await bob_call.wait_ended(timeout=5.0)
    except asyncio.TimeoutError:
        logging.warning("Bob never answered")
    except Exception as exc:  # pragma: no cover - demo convenience
        logging.exception(f"Demo failed: {exc}")
        return 1

    CONSOLE.print(_render_records(sink.records))
    CONSOLE.print(
        Panel(
            f"{len(relay.history)} signalling messages relayed",
            title="Demo Summary",
            border_style="green",
        )
    )
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    return asyncio.run(_run_demo(args))


if __name__ == "__main__":
    raise SystemExit(main())
