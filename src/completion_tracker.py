"""
Completion set for a packing session.

Holds the pick entry ids considered resolved, either packed or explicitly
skipped. The set only grows within a session; going back moves the
position but never un-resolves work.
"""

from typing import FrozenSet, Iterable

from audio_commands import AudioCommand
from logger import get_logger

logger = get_logger(__name__)


class CompletionTracker:
    """
    Tracks resolved pick entry ids.

    The tracker never talks to the backend; callers decide whether and how a
    resolution is synced remotely.
    """

    def __init__(self, resolved: Iterable[str] = ()):
        self._resolved = set(resolved)

    @classmethod
    def seeded(cls, picked_entry_ids: Iterable[str], session_entry_ids: Iterable[str]) -> "CompletionTracker":
        """
        Seed from backend state at load time.

        An entry counts as pre-resolved only when the backend marks it picked
        AND it belongs to this session's commands, so picks made in other
        sessions of the same run never leak in.
        """
        session_ids = set(session_entry_ids)
        resolved = {entry_id for entry_id in picked_entry_ids if entry_id in session_ids}
        logger.debug(f"Seeded completion set with {len(resolved)} of {len(session_ids)} session entries")
        return cls(resolved)

    def mark_resolved(self, entry_ids: Iterable[str]) -> None:
        """Idempotent union into the completion set."""
        self._resolved.update(entry_id for entry_id in entry_ids if entry_id)

    def is_resolved(self, entry_id: str) -> bool:
        return entry_id in self._resolved

    def is_item_fully_resolved(self, command: AudioCommand) -> bool:
        """
        True iff every pick entry of the command is resolved.

        An item without entries is vacuously resolved and is never played.
        """
        return all(entry_id in self._resolved for entry_id in command.pick_entry_ids)

    @property
    def resolved_ids(self) -> FrozenSet[str]:
        return frozenset(self._resolved)

    def __len__(self) -> int:
        return len(self._resolved)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._resolved
