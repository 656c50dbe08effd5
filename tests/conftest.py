"""
Pytest configuration file for Route Packer tests.

This file sets up the Python path so tests can import the flat modules in
'src', and provides builders for audio commands, run detail and a mocked
backend shared by the player tests.
"""

import os
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Run Qt headless so QApplication can start without a display
os.environ.setdefault('QT_QPA_PLATFORM', 'offscreen')

# Get the repository root directory (parent of tests directory)
repo_root = Path(__file__).parent.parent

# Add src directory to sys.path (for src modules)
src_dir = repo_root / 'src'
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from app_config import SessionSettings  # noqa: E402
from audio_commands import AudioCommand, AudioCommandsResponse, CommandKind  # noqa: E402
from best_effort_sync import BestEffortSync  # noqa: E402
from narration import SilentNarrator  # noqa: E402
from packing_session_player import PackingSessionPlayer  # noqa: E402
from run_models import Location, Machine, PackingSessionResult, PickEntry, RunDetail  # noqa: E402

RUN_ID = "run-1"
PACKING_SESSION_ID = "ps-1"


def location_command(command_id, location_id="L1", location_name="Central Station"):
    return AudioCommand(
        id=command_id,
        kind=CommandKind.LOCATION,
        narration_text=f"Go to {location_name}",
        type_name="location",
        location_id=location_id,
        location_name=location_name,
    )


def machine_command(command_id, machine_id, machine_code=None, location_id="L1",
                    location_name="Central Station"):
    return AudioCommand(
        id=command_id,
        kind=CommandKind.MACHINE,
        narration_text=f"Machine {machine_code or machine_id}",
        type_name="machine",
        location_id=location_id,
        location_name=location_name,
        machine_id=machine_id,
        machine_code=machine_code,
    )


def item_command(command_id, machine_id, entry_ids, machine_code=None, location_id="L1",
                 location_name="Central Station", sku_name="Snickers", quantity=4):
    return AudioCommand(
        id=command_id,
        kind=CommandKind.ITEM,
        narration_text=f"{quantity} {sku_name}",
        pick_entry_ids=tuple(entry_ids),
        type_name="item",
        location_id=location_id,
        location_name=location_name,
        machine_id=machine_id,
        machine_code=machine_code,
        sku_name=sku_name,
        quantity=quantity,
    )


def scenario_commands():
    """[location L1, machine M1, item I1(e1), machine M2, item I2(e2, e3)]"""
    return [
        location_command("L1"),
        machine_command("M1", "M1", machine_code="A12"),
        item_command("I1", "M1", ["e1"], machine_code="A12"),
        machine_command("M2", "M2", machine_code="B07"),
        item_command("I2", "M2", ["e2", "e3"], machine_code="B07", sku_name="Twix", quantity=2),
    ]


def make_run_detail(entry_ids=("e1", "e2", "e3"), picked=()):
    central = Location(id="L1", name="Central Station")
    machines = [
        Machine(id="M1", code="A12", description="Snack machine", location=central),
        Machine(id="M2", code="B07", description="Drinks machine", location=central),
        Machine(id="M9", code="Z99", location=Location(id="L9", name="Airport")),
    ]
    machine_by_entry = {"e1": machines[0]}
    entries = [
        PickEntry(
            id=entry_id,
            count=1,
            is_picked=entry_id in picked,
            machine=machine_by_entry.get(entry_id, machines[1]),
            location=central,
        )
        for entry_id in entry_ids
    ]
    return RunDetail(id=RUN_ID, status="PICKING", locations=[central], machines=machines,
                     pick_entries=entries)


def make_service(commands=None, picked=(), has_items=True):
    """MagicMock backend answering the load and terminal calls successfully."""
    commands = tuple(scenario_commands() if commands is None else commands)
    service = MagicMock()
    service.fetch_audio_commands.return_value = AudioCommandsResponse(
        run_id=RUN_ID,
        commands=commands,
        total_items=sum(1 for command in commands if command.is_item),
        has_items=has_items,
    )
    entry_ids = [entry_id for command in commands for entry_id in command.pick_entry_ids]
    service.fetch_run_detail.return_value = make_run_detail(entry_ids, picked)
    service.fetch_chocolate_boxes.return_value = []
    service.finish_packing_session.return_value = PackingSessionResult(
        id=PACKING_SESSION_ID, status="FINISHED", cleared_pick_entries=0
    )
    service.abandon_packing_session.return_value = PackingSessionResult(
        id=PACKING_SESSION_ID, status="ABANDONED", cleared_pick_entries=2
    )
    return service


def make_player(service, narrator=None, **kwargs):
    """Player with inline sync and inline finish so assertions can follow each call."""
    kwargs.setdefault('sync', BestEffortSync(sync_mode=True))
    kwargs.setdefault('settings', SessionSettings(finish_poll_interval_ms=5, finish_wait_timeout_seconds=5))
    kwargs.setdefault('run_in_background', False)
    return PackingSessionPlayer(
        RUN_ID,
        PACKING_SESSION_ID,
        service,
        narrator if narrator is not None else SilentNarrator(),
        **kwargs,
    )


@pytest.fixture
def narrator():
    return SilentNarrator()


@pytest.fixture
def service():
    return make_service()


@pytest.fixture
def player(service, narrator):
    return make_player(service, narrator)
