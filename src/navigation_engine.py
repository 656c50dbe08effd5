"""
Navigation over a packing session's command sequence.

All queries are synchronous and pure with respect to the command list and
the completion tracker; the engine never mutates either. The player owns
the current position and asks the engine where to go next.

Playability rules:
- item: playable while at least one of its pick entries is unresolved
- machine: playable only when it introduces unfinished work, i.e. an
  unresolved item of the same machine follows before the next boundary of a
  different machine or location
- location: playable only when an unresolved item of the same location
  follows before the next location of a different identity
- anything else: always playable

Inside a boundary, an item that carries no machine (or location) identity of
its own belongs to the enclosing machine (or location).
"""

from typing import Optional, Sequence

from audio_commands import (
    AudioCommand,
    CommandKind,
    IdentityRole,
    has_identity,
    identity_key,
)
from completion_tracker import CompletionTracker
from logger import get_logger

logger = get_logger(__name__)


class NavigationEngine:
    """
    Computes playable positions for a fixed command sequence.

    Attributes:
        commands (Sequence[AudioCommand]): The session's commands, in order
        tracker (CompletionTracker): Shared completion set
    """

    def __init__(self, commands: Sequence[AudioCommand], tracker: CompletionTracker):
        self.commands = tuple(commands)
        self.tracker = tracker

    @property
    def count(self) -> int:
        return len(self.commands)

    def is_playable(self, index: int) -> bool:
        command = self.commands[index]

        if command.kind is CommandKind.ITEM:
            return not self.tracker.is_item_fully_resolved(command)
        if command.kind is CommandKind.MACHINE:
            return self.has_pending_work_for_machine(index)
        if command.kind is CommandKind.LOCATION:
            return self.has_pending_work_for_location(index)
        return True

    def next_playable_index(self, start: int) -> Optional[int]:
        """
        First playable index at or after start.

        Returns:
            The index, or None when nothing playable remains (session complete)
        """
        index = max(start, 0)
        while index < self.count:
            if self.is_playable(index):
                return index
            index += 1
        return None

    def first_pending_item_index(self) -> Optional[int]:
        """Index of the first item command with unresolved entries."""
        for index, command in enumerate(self.commands):
            if command.is_item and not self.tracker.is_item_fully_resolved(command):
                return index
        return None

    def context_start_index(self, pending_index: int) -> int:
        """
        Where to resume so the enclosing context is announced again.

        Walks back from the pending item and returns the nearest preceding
        location command with the same location identity; failing that the
        nearest preceding machine command with the same machine identity;
        failing both, the pending item itself.
        """
        if pending_index >= self.count:
            return max(self.count - 1, 0)

        target = self.commands[pending_index]
        location_key = identity_key(target, IdentityRole.LOCATION)
        machine_key = identity_key(target, IdentityRole.MACHINE)
        nearest_machine_index = None

        for index in range(pending_index - 1, -1, -1):
            command = self.commands[index]
            if (command.kind is CommandKind.LOCATION
                    and identity_key(command, IdentityRole.LOCATION) == location_key):
                return index
            if (nearest_machine_index is None
                    and command.kind is CommandKind.MACHINE
                    and identity_key(command, IdentityRole.MACHINE) == machine_key):
                nearest_machine_index = index

        if nearest_machine_index is not None:
            return nearest_machine_index
        return pending_index

    def has_pending_work_for_machine(self, index: int) -> bool:
        """Whether the machine command at index introduces unresolved items."""
        machine_command = self.commands[index]
        machine_key = identity_key(machine_command, IdentityRole.MACHINE)
        location_key = identity_key(machine_command, IdentityRole.LOCATION)

        for candidate in self.commands[index + 1:]:
            if (candidate.kind is CommandKind.MACHINE
                    and identity_key(candidate, IdentityRole.MACHINE) != machine_key):
                break
            if (candidate.kind is CommandKind.LOCATION
                    and identity_key(candidate, IdentityRole.LOCATION) != location_key):
                break
            if not candidate.is_item:
                continue
            if self._belongs_to(candidate, IdentityRole.MACHINE, machine_key) \
                    and not self.tracker.is_item_fully_resolved(candidate):
                return True
        return False

    def has_pending_work_for_location(self, index: int) -> bool:
        """Whether the location command at index introduces unresolved items."""
        location_key = identity_key(self.commands[index], IdentityRole.LOCATION)

        for candidate in self.commands[index + 1:]:
            if (candidate.kind is CommandKind.LOCATION
                    and identity_key(candidate, IdentityRole.LOCATION) != location_key):
                break
            if not candidate.is_item:
                continue
            if self._belongs_to(candidate, IdentityRole.LOCATION, location_key) \
                    and not self.tracker.is_item_fully_resolved(candidate):
                return True
        return False

    def has_remaining_items_for_machine(self, machine_key: str, after_index: int) -> bool:
        """
        Whether any unresolved item with exactly this machine identity exists
        anywhere after after_index.
        """
        for candidate in self.commands[after_index + 1:]:
            if not candidate.is_item:
                continue
            if identity_key(candidate, IdentityRole.MACHINE) != machine_key:
                continue
            if not self.tracker.is_item_fully_resolved(candidate):
                return True
        return False

    @staticmethod
    def _belongs_to(candidate: AudioCommand, role: IdentityRole, key: str) -> bool:
        # Items without an identity of their own inherit the enclosing one
        if not has_identity(candidate, role):
            return True
        return identity_key(candidate, role) == key
