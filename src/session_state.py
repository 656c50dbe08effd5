"""
Explicit state of a packing session, emitted after every transition.

The player keeps its mutable fields private and publishes an immutable
PlayerState snapshot instead, so any UI layer can subscribe without
binding to the player's internals.

Phase flow:
    LOADING -> ERROR | PLAYING | MACHINE_COMPLETION_PENDING | COMPLETE
            -> PAUSED | ABANDONED | FINISHED
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from audio_commands import AudioCommand


class SessionPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"
    PLAYING = "playing"
    MACHINE_COMPLETION_PENDING = "machine_completion_pending"
    COMPLETE = "complete"
    PAUSED = "paused"
    ABANDONED = "abandoned"
    FINISHED = "finished"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionPhase.ABANDONED, SessionPhase.FINISHED)


@dataclass(frozen=True)
class MachineCompletionInfo:
    """Announcement shown (and spoken) when every item of a machine is resolved."""
    machine_key: str
    message: str
    machine_code: Optional[str] = None
    machine_name: Optional[str] = None
    machine_description: Optional[str] = None
    location_name: Optional[str] = None


@dataclass(frozen=True)
class PlayerState:
    phase: SessionPhase
    current_index: int
    command_count: int
    current_command: Optional[AudioCommand]
    is_session_complete: bool
    is_speaking: bool
    machine_completion: Optional[MachineCompletionInfo]
    error_message: Optional[str]
    completed_count: int
    total_items: int

    @property
    def progress(self) -> float:
        if self.total_items <= 0:
            return 0.0
        return self.completed_count / self.total_items
