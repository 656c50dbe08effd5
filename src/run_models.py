"""
Run detail and packing session records returned by the backend.

These are read-only views of backend state. The player uses them to seed
the completion set (pick entries with their picked flag) and to look up
display metadata (machine, location, sku) for the current command.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from logger import get_logger

logger = get_logger(__name__)


def parse_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse ISO timestamp to datetime object

    Handles the 'Z' suffix the backend emits and naive timestamps.
    Always returns a timezone-aware datetime.

    Args:
        timestamp_str: ISO 8601 timestamp

    Returns:
        datetime (timezone-aware) or None if missing or invalid
    """
    if not timestamp_str:
        return None

    try:
        value = str(timestamp_str)
        if value.endswith('Z'):
            value = value[:-1] + '+00:00'
        dt = datetime.fromisoformat(value)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, TypeError) as e:
        logger.warning(f"Could not parse timestamp '{timestamp_str}': {e}")
        return None


@dataclass(frozen=True)
class Location:
    id: str
    name: Optional[str] = None
    address: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Location":
        return cls(id=str(data['id']), name=data.get('name'), address=data.get('address'))


@dataclass(frozen=True)
class Machine:
    id: str
    code: str
    description: Optional[str] = None
    machine_type_name: Optional[str] = None
    location: Optional[Location] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Machine":
        machine_type = data.get('machineType') or {}
        location = data.get('location')
        return cls(
            id=str(data['id']),
            code=str(data.get('code') or ''),
            description=data.get('description'),
            machine_type_name=machine_type.get('name'),
            location=Location.from_dict(location) if location else None,
        )


@dataclass(frozen=True)
class Sku:
    id: str
    code: str
    name: str
    type: str = ""
    category: Optional[str] = None
    is_fresh_or_frozen: bool = False
    count_needed_pointer: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sku":
        return cls(
            id=str(data['id']),
            code=str(data.get('code') or ''),
            name=str(data.get('name') or ''),
            type=str(data.get('type') or ''),
            category=data.get('category'),
            is_fresh_or_frozen=bool(data.get('isFreshOrFrozen', False)),
            count_needed_pointer=data.get('countNeededPointer'),
        )


@dataclass(frozen=True)
class PickEntry:
    """
    One needed-item-at-a-coil record of a run.

    Attributes:
        id (str): Backend pick entry id, referenced by item commands
        count (int): Quantity to pack
        override_count (int | None): Quantity set by hand, replacing count
        is_picked (bool): Whether the backend considers the entry packed
        coil_code (str | None): Slot in the machine the item is for
        packing_session_id (str | None): Session currently holding the entry
    """
    id: str
    count: int
    is_picked: bool
    override_count: Optional[int] = None
    picked_at: Optional[datetime] = None
    coil_code: Optional[str] = None
    sku: Optional[Sku] = None
    machine: Optional[Machine] = None
    location: Optional[Location] = None
    packing_session_id: Optional[str] = None

    @property
    def is_in_packing_session(self) -> bool:
        return bool((self.packing_session_id or '').strip())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PickEntry":
        coil = data.get('coil') or {}
        sku = data.get('sku')
        machine = data.get('machine')
        location = data.get('location')
        return cls(
            id=str(data['id']),
            count=int(data.get('count') or 0),
            override_count=int(data['overrideCount']) if data.get('overrideCount') is not None else None,
            is_picked=bool(data.get('isPicked', False)),
            picked_at=parse_timestamp(data.get('pickedAt')),
            coil_code=coil.get('code'),
            sku=Sku.from_dict(sku) if sku else None,
            machine=Machine.from_dict(machine) if machine else None,
            location=Location.from_dict(location) if location else None,
            packing_session_id=data.get('packingSessionId'),
        )


@dataclass(frozen=True)
class ChocolateBox:
    id: str
    number: int
    machine: Optional[Machine] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChocolateBox":
        machine = data.get('machine')
        return cls(
            id=str(data['id']),
            number=int(data.get('number') or 0),
            machine=Machine.from_dict(machine) if machine else None,
        )


@dataclass(frozen=True)
class RunDetail:
    """Payload of GET runs/{runId}, reduced to what a packing session needs."""
    id: str
    status: str
    locations: List[Location] = field(default_factory=list)
    machines: List[Machine] = field(default_factory=list)
    pick_entries: List[PickEntry] = field(default_factory=list)
    chocolate_boxes: List[ChocolateBox] = field(default_factory=list)

    @property
    def picked_entry_ids(self) -> frozenset:
        return frozenset(entry.id for entry in self.pick_entries if entry.is_picked)

    @property
    def pending_pick_entries(self) -> List[PickEntry]:
        return [entry for entry in self.pick_entries if not entry.is_picked]

    def find_pick_entry(self, entry_id: str) -> Optional[PickEntry]:
        return next((entry for entry in self.pick_entries if entry.id == entry_id), None)

    def find_machine(self, machine_id: str) -> Optional[Machine]:
        return next((machine for machine in self.machines if machine.id == machine_id), None)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunDetail":
        # Zero-count entries are placeholders and never appear in a session
        pick_entries = [
            PickEntry.from_dict(item)
            for item in data.get('pickItems') or []
            if int(item.get('count') or 0) > 0
        ]
        return cls(
            id=str(data['id']),
            status=str(data.get('status') or ''),
            locations=[Location.from_dict(item) for item in data.get('locations') or []],
            machines=[Machine.from_dict(item) for item in data.get('machines') or []],
            pick_entries=pick_entries,
            chocolate_boxes=[ChocolateBox.from_dict(item) for item in data.get('chocolateBoxes') or []],
        )


@dataclass(frozen=True)
class PackingSession:
    """A remote packing session as returned by create / fetch-active."""
    id: str
    run_id: str
    user_id: str
    status: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    assigned_pick_entries: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackingSession":
        return cls(
            id=str(data['id']),
            run_id=str(data.get('runId') or ''),
            user_id=str(data.get('userId') or ''),
            status=str(data.get('status') or ''),
            started_at=parse_timestamp(data.get('startedAt')),
            finished_at=parse_timestamp(data.get('finishedAt')),
            assigned_pick_entries=data.get('assignedPickEntries'),
        )


@dataclass(frozen=True)
class PackingSessionResult:
    """Terminal response of the finish and abandon endpoints."""
    id: str
    status: str
    cleared_pick_entries: int = 0
    finished_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackingSessionResult":
        return cls(
            id=str(data['id']),
            status=str(data.get('status') or ''),
            cleared_pick_entries=int(data.get('clearedPickEntries') or 0),
            finished_at=parse_timestamp(data.get('finishedAt')),
        )
