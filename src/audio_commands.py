"""
Audio command model.

The backend generates a flat, ordered list of narration steps for a packing
session. Each step is a location, machine or item command; the hierarchy is
implied by shared location/machine identity rather than parent pointers:

    location L1
        machine M1
            item I1 (entries e1)
        machine M2
            item I2 (entries e2, e3)

An item command may resolve more than one pick entry when several physical
entries are read out as a single instruction.

Commands are immutable for the lifetime of a session; only the completion
set and the player's position change.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from logger import get_logger
from exceptions import ValidationError

logger = get_logger(__name__)


class CommandKind(str, Enum):
    LOCATION = "location"
    MACHINE = "machine"
    ITEM = "item"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "CommandKind":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER


class IdentityRole(str, Enum):
    """Which grouping an identity key is computed for."""
    MACHINE = "machine"
    LOCATION = "location"


def _clean(value: Optional[str]) -> str:
    """Trim whitespace; None becomes an empty string."""
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class AudioCommand:
    """
    One step in the narration sequence.

    Only kind, the identity fields and pick_entry_ids drive navigation.
    Everything else is carried for display.
    """
    id: str
    kind: CommandKind
    narration_text: str
    pick_entry_ids: Tuple[str, ...] = ()
    type_name: str = ""
    location_id: Optional[str] = None
    location_name: Optional[str] = None
    location_address: Optional[str] = None
    machine_id: Optional[str] = None
    machine_name: Optional[str] = None
    machine_code: Optional[str] = None
    machine_description: Optional[str] = None
    machine_type_name: Optional[str] = None
    sku_name: Optional[str] = None
    sku_code: Optional[str] = None
    quantity: int = 0
    coil_code: Optional[str] = None
    coil_codes: Tuple[str, ...] = ()
    order: int = 0

    @property
    def is_item(self) -> bool:
        return self.kind is CommandKind.ITEM

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AudioCommand":
        """
        Build a command from the backend's JSON representation.

        Raises:
            ValidationError: If the id is missing or pickEntryIds is not a list
        """
        command_id = _clean(data.get('id'))
        if not command_id:
            raise ValidationError("Audio command is missing its id")

        raw_entry_ids = data.get('pickEntryIds') or []
        if not isinstance(raw_entry_ids, list):
            raise ValidationError(f"Audio command {command_id} has malformed pickEntryIds")

        # Blank ids can never be marked picked remotely, drop them up front
        entry_ids: List[str] = []
        for entry_id in raw_entry_ids:
            cleaned = _clean(entry_id)
            if cleaned and cleaned not in entry_ids:
                entry_ids.append(cleaned)

        type_name = str(data.get('type') or '')
        kind = CommandKind.parse(type_name)
        if kind is CommandKind.OTHER:
            logger.warning(f"Audio command {command_id} has unknown type '{type_name}'")
        if kind is CommandKind.ITEM and not entry_ids:
            logger.warning(f"Item command {command_id} has no pick entries; treating it as resolved")

        return cls(
            id=command_id,
            kind=kind,
            narration_text=str(data.get('audioCommand') or ''),
            pick_entry_ids=tuple(entry_ids),
            type_name=type_name,
            location_id=data.get('locationId'),
            location_name=data.get('locationName'),
            location_address=data.get('locationAddress'),
            machine_id=data.get('machineId'),
            machine_name=data.get('machineName'),
            machine_code=data.get('machineCode'),
            machine_description=data.get('machineDescription'),
            machine_type_name=data.get('machineTypeName'),
            sku_name=data.get('skuName'),
            sku_code=data.get('skuCode'),
            quantity=int(data.get('count') or 0),
            coil_code=data.get('coilCode'),
            coil_codes=tuple(data.get('coilCodes') or ()),
            order=int(data.get('order') or 0),
        )


@dataclass(frozen=True)
class AudioCommandsResponse:
    """Payload of GET runs/{runId}/audio-commands."""
    run_id: str
    commands: Tuple[AudioCommand, ...] = field(default_factory=tuple)
    total_items: int = 0
    has_items: bool = False

    @property
    def session_entry_ids(self) -> frozenset:
        """Every pick entry id that an item command in this session resolves."""
        return frozenset(
            entry_id
            for command in self.commands if command.is_item
            for entry_id in command.pick_entry_ids
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AudioCommandsResponse":
        raw_commands = data.get('audioCommands')
        if not isinstance(raw_commands, list):
            raise ValidationError("Audio commands response is missing 'audioCommands'")

        commands = tuple(AudioCommand.from_dict(item) for item in raw_commands)
        return cls(
            run_id=str(data.get('runId') or ''),
            commands=commands,
            total_items=int(data.get('totalItems') or 0),
            has_items=bool(data.get('hasItems', bool(commands))),
        )


def identity_key(command: AudioCommand, role: IdentityRole) -> str:
    """
    Grouping key for a command's machine or location.

    Priority (first non-blank value after trimming wins):
        machine:  machine_id -> "code-<machine_code>" -> "name-<machine_name>"
        location: location_id -> "name-<location_name>"
    When none is available the key is "<role>-synthetic-<command id>", which
    is unique per command so two unidentified machines never merge.

    Note: two distinct machines that both lack an id and a code but share a
    name will produce the same key and be tracked as one machine.
    """
    if role is IdentityRole.MACHINE:
        machine_id = _clean(command.machine_id)
        if machine_id:
            return machine_id
        machine_code = _clean(command.machine_code)
        if machine_code:
            return f"code-{machine_code}"
        machine_name = _clean(command.machine_name)
        if machine_name:
            return f"name-{machine_name}"
    else:
        location_id = _clean(command.location_id)
        if location_id:
            return location_id
        location_name = _clean(command.location_name)
        if location_name:
            return f"name-{location_name}"

    return f"{role.value}-synthetic-{command.id}"


def has_identity(command: AudioCommand, role: IdentityRole) -> bool:
    """True when identity_key() would not fall back to a synthetic key."""
    return not identity_key(command, role).startswith(f"{role.value}-synthetic-")


def machine_designator(command: AudioCommand) -> str:
    """Spoken subject for a machine: code, then name, then description."""
    machine_code = _clean(command.machine_code)
    if machine_code:
        return f"Machine {machine_code}"
    machine_name = _clean(command.machine_name)
    if machine_name:
        return f"Machine {machine_name}"
    description = _clean(command.machine_description)
    if description:
        return description
    return "This machine"


def machine_completion_message(command: AudioCommand) -> str:
    """
    Announcement for a machine whose items are all resolved.

    Examples:
        "Machine A12 complete at Central Station."
        "This machine complete."
    """
    subject = machine_designator(command)
    location_name = _clean(command.location_name)
    if location_name:
        return f"{subject} complete at {location_name}."
    return f"{subject} complete."
