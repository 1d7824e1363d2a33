"""Command-line call client.

Connects to the rendezvous server, pairs with a peer over aiortc and drives the shared
focus timer from stdin.

Usage:
    python -m pomopair.client                      # open a new room and print its invite
    python -m pomopair.client --room <room-id>     # join an existing room
    python -m pomopair.client --invite <url>       # join via an invite URL
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .core.config import settings
from .services.aiortc_engine import AiortcMediaEngine
from .services.call import CallActiveError, CallController, parse_invite
from .services.timer import TimerState

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  start | stop | toggle | reset    control the shared timer
  + | -                            adjust the timer by the configured step
  mute | video                     toggle outgoing audio / video
  join <invite-url>                switch to another room (before the call connects)
  status                           show room, role and timer
  quit                             hang up and exit"""


def _print_status(controller: CallController) -> None:
    state = controller.timer.state
    role = controller.role.value if controller.role else "pending"
    print(
        f"room={controller.room_id} role={role} phase={controller.negotiation.phase.value} "
        f"timer={state.time_string} running={state.is_running} full={controller.room_full}"
    )


async def _read_line() -> str:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, sys.stdin.readline)


async def _handle_command(controller: CallController, line: str) -> bool:
    command, _, argument = line.strip().partition(" ")
    timer = controller.timer
    step = settings.timer_adjust_step

    if command in ("quit", "exit"):
        return False
    if command == "start":
        await timer.start()
    elif command == "stop":
        await timer.stop()
    elif command == "toggle":
        await timer.toggle()
    elif command == "reset":
        await timer.reset()
    elif command in ("+", "-"):
        if not await timer.adjust(step if command == "+" else -step):
            print("Timer can only be adjusted while stopped and above zero.")
    elif command == "mute":
        print("muted" if controller.toggle_mute() else "unmuted")
    elif command == "video":
        print("video on" if controller.toggle_video() else "video off")
    elif command == "join":
        try:
            if not await controller.attempt_join_from_invite(argument):
                print("Not an invite URL, or a call is already connected.")
        except CallActiveError as exc:
            print(exc)
    elif command == "status":
        _print_status(controller)
    elif command:
        print(HELP_TEXT)
    return True


async def run_client(args: argparse.Namespace) -> int:
    room_id = args.room
    if args.invite:
        room_id = parse_invite(args.invite)
        if room_id is None:
            logger.error("Invite must start with %s", settings.invite_url_prefix)
            return 2

    def on_change(state: TimerState) -> None:
        logger.debug("Timer %s running=%s", state.time_string, state.is_running)

    async def on_finished() -> None:
        print("Focus session complete!")

    controller = CallController(
        lambda: AiortcMediaEngine(ice_servers=args.ice_server or None),
        room_id,
        signaling_url=args.server,
    )
    controller.timer.on_change = on_change
    controller.timer.on_finished = on_finished

    await controller.connect()
    print(f"Share this invite: {controller.share_url}")
    print(HELP_TEXT)

    try:
        while True:
            line = await _read_line()
            if not line:
                break
            if not await _handle_command(controller, line):
                break
    finally:
        await controller.disconnect()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="pomopair call client")
    parser.add_argument("--server", default=settings.signaling_url, help="Rendezvous WebSocket URL")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--room", help="Join an existing room id")
    group.add_argument("--invite", help="Join the room named by an invite URL")
    parser.add_argument(
        "--ice-server",
        action="append",
        default=[],
        help="STUN/TURN URL (repeatable); defaults to the configured ICE servers",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run_client(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
