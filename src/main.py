"""
Console driver for a packing session.

Resumes the picker's open packing session for a run (or starts a new one),
then walks through the narrated commands from the keyboard:

    n / Enter  pack current item, or acknowledge a machine announcement
    b          go back (or dismiss a machine announcement)
    s          skip current item
    r          repeat
    p          pause and quit (session stays open)
    a          abandon the session
    q          stop (finish when complete, abandon otherwise)
"""

import argparse
import sys
from typing import List, Optional

from app_config import load_app_config
from exceptions import RoutePackerError
from logger import get_logger
from narration import create_narrator
from packing_session_player import PackingSessionPlayer
from runs_service import RunsService
from session_state import PlayerState, SessionPhase
from session_summary import export_progress_report, machine_progress

logger = get_logger(__name__)

PROMPT = "[n]ext [b]ack [s]kip [r]epeat [p]ause [a]bandon [q]uit > "


def print_state(state: PlayerState) -> None:
    if state.machine_completion is not None:
        print(f"*** {state.machine_completion.message}")
    elif state.phase is SessionPhase.COMPLETE:
        print("*** Packing session complete.")
    elif state.current_command is not None and not state.is_speaking:
        command = state.current_command
        print(
            f"[{state.current_index + 1}/{state.command_count}] "
            f"({state.completed_count}/{state.total_items} items) {command.narration_text}"
        )
    if state.error_message:
        print(f"Error: {state.error_message}")


def print_run_overview(player: PackingSessionPlayer) -> None:
    """Pending work of the run, and how much of it another packing session holds."""
    detail = player.run_detail
    if detail is None:
        return
    pending = detail.pending_pick_entries
    held_elsewhere = [
        entry for entry in pending
        if entry.is_in_packing_session and entry.packing_session_id != player.packing_session_id
    ]
    line = f"{len(pending)} pick entries pending in run {detail.id}"
    if held_elsewhere:
        line += f" ({len(held_elsewhere)} held by another packing session)"
    print(line)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Audio-guided packing for a vending route run.")
    parser.add_argument("run_id", help="Run to pack")
    parser.add_argument("--config", default="config.ini", help="Path to config.ini")
    parser.add_argument(
        "--category", action="append", dest="categories",
        help="Only pack SKUs of this category (repeatable); used when starting a new session",
    )
    parser.add_argument("--report", help="Write an Excel progress report here when leaving")
    return parser.parse_args(argv)


def open_packing_session(service: RunsService, run_id: str, categories: Optional[List[str]]):
    """Resume the active packing session for the run, or start a new one."""
    session = service.fetch_active_packing_session(run_id)
    if session is not None:
        logger.info(f"Resuming packing session {session.id}")
        return session
    return service.create_packing_session(run_id, categories)


def run(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config = load_app_config(args.config)

    service = RunsService(
        config.api.base_url,
        config.api.access_token,
        timeout=config.api.timeout_seconds,
    )

    try:
        session = open_packing_session(service, args.run_id, args.categories)
    except RoutePackerError as e:
        logger.error(f"Could not open a packing session: {e}")
        print(f"Error: {e.get_display_message()}")
        return 1

    narrator = create_narrator(
        config.narration.engine,
        voice=config.narration.voice,
        words_per_minute=config.narration.words_per_minute,
    )
    player = PackingSessionPlayer(
        args.run_id,
        session.id,
        service,
        narrator,
        settings=config.session,
    )
    player.state_changed.connect(print_state)

    state = player.load()
    if state.phase is SessionPhase.ERROR:
        player.sync.shutdown()
        return 1
    print_run_overview(player)

    commands = player.commands
    exit_code = 0
    try:
        while True:
            commands = player.commands or commands
            try:
                key = input(PROMPT).strip().lower()
            except EOFError:
                player.dismiss()
                break

            if key in ("", "n"):
                player.go_forward()
            elif key == "b":
                player.go_back()
            elif key == "s":
                player.skip_current()
            elif key == "r":
                player.repeat_current()
            elif key == "p":
                player.pause()
                print("Paused. Run again to resume this session.")
                break
            elif key == "a":
                player.abandon()
                break
            elif key == "q":
                if not player.stop_session():
                    exit_code = 1
                break
            else:
                print(f"Unknown key: {key}")
    except KeyboardInterrupt:
        player.dismiss()
    finally:
        resolved = player.completed_entry_ids
        print(machine_progress(commands, resolved).to_string(index=False))
        if args.report:
            export_progress_report(commands, resolved, args.report)
        player.sync.shutdown()

    return exit_code


if __name__ == "__main__":
    sys.exit(run())
