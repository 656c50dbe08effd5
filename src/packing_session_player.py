"""
Packing session player.

Walks a picker through a run's generated audio commands: narrates the
current step, tracks which pick entries are resolved, skips work that is
already done, announces finished machines and closes the remote packing
session exactly once.

Threading model:
- Navigation (go_forward, go_back, skip_current, repeat_current) is called
  serially from one place (UI thread or the console loop)
- Pick status updates go through BestEffortSync and never block navigation
- The remote finish/abandon latch is the one piece of state that is safe
  to hit concurrently; natural completion and an explicit stop can race to
  close the same session and only one request is ever sent
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Set, Tuple

from PySide6.QtCore import QObject, Qt, Signal

from audio_commands import (
    AudioCommand,
    CommandKind,
    IdentityRole,
    has_identity,
    identity_key,
    machine_completion_message,
)
from app_config import SessionSettings
from best_effort_sync import BestEffortSync
from completion_tracker import CompletionTracker
from exceptions import RoutePackerError, ServiceError, SessionLoadError
from logger import get_logger, set_packing_session_context, set_run_context
from narration import NarrationGateway, RemoteCommandBridge
from navigation_engine import NavigationEngine
from run_models import ChocolateBox, Machine, PackingSessionResult, PickEntry, RunDetail
from session_state import MachineCompletionInfo, PlayerState, SessionPhase

logger = get_logger(__name__)

SESSION_COMPLETE_NARRATION = "Packing session complete. Great job."
NO_ITEMS_MESSAGE = "No items to pack in this run."

FINISH = "finish"
ABANDON = "abandon"

_NAVIGABLE_PHASES = (SessionPhase.PLAYING, SessionPhase.MACHINE_COMPLETION_PENDING)


class PackingSessionPlayer(QObject):
    """
    Session lifecycle controller for one packing session.

    Every public transition returns the resulting PlayerState and also emits
    it through state_changed, so a UI can either poll the return value or
    subscribe.

    Attributes:
        state_changed (Signal): Emitted with a PlayerState after every change
        error_occurred (Signal): Emitted with a picker-facing message when a
                                 load or stop fails
        run_id (str): Run being packed
        packing_session_id (str): Remote packing session driven by this player
        run_detail (RunDetail | None): Latest run detail, for display lookups
        chocolate_boxes (List[ChocolateBox]): Boxes of the run, sorted by number
        updating_sku_ids (Set[str]): SKUs with an adjustment in flight
        updating_pick_ids (Set[str]): Pick entries with an adjustment in flight
        is_stopping_session (bool): True while stop_session() is running
    """
    state_changed = Signal(object)  # PlayerState
    error_occurred = Signal(str)

    def __init__(
        self,
        run_id: str,
        packing_session_id: str,
        service,
        narrator: NarrationGateway,
        remote_controls: Optional[RemoteCommandBridge] = None,
        sync: Optional[BestEffortSync] = None,
        settings: Optional[SessionSettings] = None,
        run_in_background: bool = True,
    ):
        """
        Args:
            run_id: Run being packed
            packing_session_id: Remote packing session to drive
            service: Backend client (RunsService or a compatible object)
            narrator: Narration gateway used for every utterance
            remote_controls: Headset/lock-screen bridge; a no-op one if omitted
            sync: Pick status sync; a background one if omitted
            settings: Finish latch polling settings
            run_in_background: Finish the remote session on a worker thread
                               when the session completes naturally
        """
        super().__init__()

        self.run_id = run_id
        self.packing_session_id = packing_session_id
        self.service = service
        self.narrator = narrator
        self.remote_controls = remote_controls or RemoteCommandBridge()
        self.sync = sync or BestEffortSync()
        self.settings = settings or SessionSettings()
        self.run_in_background = run_in_background

        self.run_detail: Optional[RunDetail] = None
        self.chocolate_boxes: List[ChocolateBox] = []
        self.updating_sku_ids: Set[str] = set()
        self.updating_pick_ids: Set[str] = set()
        self.is_stopping_session = False

        self._commands: Tuple[AudioCommand, ...] = ()
        self._tracker = CompletionTracker()
        self._engine = NavigationEngine(self._commands, self._tracker)
        self._index = 0
        self._phase = SessionPhase.IDLE
        self._is_session_complete = False
        self._is_speaking = False
        self._is_paused = False
        self._machine_completion: Optional[MachineCompletionInfo] = None
        self._announced_machines: Set[str] = set()
        self._error_message: Optional[str] = None

        self._stop_lock = threading.Lock()
        self._terminal_lock = threading.Lock()
        self._terminal_kind: Optional[str] = None
        self._terminal_in_flight = False
        self._terminal_result: Optional[PackingSessionResult] = None

        # Narrators may report from their own threads; handlers only flip a flag
        self.narrator.utterance_started.connect(self._on_utterance_started, Qt.DirectConnection)
        self.narrator.utterance_finished.connect(self._on_utterance_ended, Qt.DirectConnection)
        self.narrator.utterance_cancelled.connect(self._on_utterance_ended, Qt.DirectConnection)

        logger.info(f"PackingSessionPlayer initialized for run {run_id}, session {packing_session_id}")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def commands(self) -> Tuple[AudioCommand, ...]:
        return self._commands

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_command(self) -> Optional[AudioCommand]:
        if 0 <= self._index < len(self._commands):
            return self._commands[self._index]
        return None

    @property
    def completed_entry_ids(self) -> frozenset:
        return self._tracker.resolved_ids

    @property
    def announced_machine_keys(self) -> frozenset:
        return frozenset(self._announced_machines)

    @property
    def has_synced_finished_session(self) -> bool:
        with self._terminal_lock:
            return self._terminal_kind == FINISH and self._terminal_result is not None

    @property
    def state(self) -> PlayerState:
        return PlayerState(
            phase=self._phase,
            current_index=self._index,
            command_count=len(self._commands),
            current_command=self.current_command,
            is_session_complete=self._is_session_complete,
            is_speaking=self._is_speaking,
            machine_completion=self._machine_completion,
            error_message=self._error_message,
            completed_count=self.completed_count,
            total_items=self.total_items,
        )

    def _publish(self) -> PlayerState:
        state = self.state
        self.state_changed.emit(state)
        return state

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    @property
    def total_items(self) -> int:
        return sum(1 for command in self._commands if command.is_item)

    @property
    def completed_count(self) -> int:
        return sum(
            1 for command in self._commands
            if command.is_item and self._tracker.is_item_fully_resolved(command)
        )

    @property
    def progress(self) -> float:
        total = self.total_items
        if total == 0:
            return 0.0
        return self.completed_count / total

    @property
    def can_go_back(self) -> bool:
        return self._index > 0

    @property
    def can_go_forward(self) -> bool:
        return self._index < len(self._commands) - 1

    @property
    def can_skip(self) -> bool:
        """Skipping is offered only for an item while nothing is being spoken."""
        command = self.current_command
        return (self._phase is SessionPhase.PLAYING
                and command is not None and command.is_item
                and not self._is_speaking)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self) -> PlayerState:
        """
        Fetch commands, run detail and chocolate boxes, then position the
        player on the context of the first pending item.

        A load that cannot present a command sequence leaves the player in
        the ERROR phase and abandons the remote session.
        """
        set_run_context(self.run_id)
        set_packing_session_context(self.packing_session_id)

        self._phase = SessionPhase.LOADING
        self._error_message = None
        self._is_paused = False
        self._publish()

        logger.info(f"Loading packing session {self.packing_session_id}")
        try:
            with ThreadPoolExecutor(max_workers=3, thread_name_prefix="session-load") as pool:
                commands_future = pool.submit(
                    self.service.fetch_audio_commands, self.run_id, self.packing_session_id
                )
                detail_future = pool.submit(self.service.fetch_run_detail, self.run_id)
                boxes_future = pool.submit(self.service.fetch_chocolate_boxes, self.run_id)

                response = commands_future.result()
                run_detail = detail_future.result()
                try:
                    boxes = boxes_future.result()
                except RoutePackerError as e:
                    logger.error(f"Failed to load chocolate boxes: {e}")
                    boxes = []

            if not response.has_items:
                raise SessionLoadError(NO_ITEMS_MESSAGE)
        except SessionLoadError as e:
            return self._fail_load(e)
        except RoutePackerError as e:
            return self._fail_load(SessionLoadError(f"Could not load session data: {e}", cause=e))

        self._commands = response.commands
        self._tracker = CompletionTracker.seeded(run_detail.picked_entry_ids, response.session_entry_ids)
        self._engine = NavigationEngine(self._commands, self._tracker)
        self.run_detail = run_detail
        self.chocolate_boxes = sorted(boxes, key=lambda box: box.number)
        self._announced_machines.clear()
        self._machine_completion = None
        self._is_session_complete = False

        logger.info(
            f"Loaded {len(self._commands)} commands ({self.total_items} items, "
            f"{len(self._tracker)} entries already resolved)"
        )

        self.narrator.activate_audio_session()

        pending_index = self._engine.first_pending_item_index()
        if pending_index is None:
            logger.info("Nothing left to pack; session is already complete")
            self._complete_session()
            return self._publish()

        self._index = self._engine.context_start_index(pending_index)
        self._phase = SessionPhase.PLAYING
        self.remote_controls.activate(self.go_forward, self.repeat_current)
        logger.debug(f"First pending item at {pending_index}, starting at {self._index}")

        self._narrate_current()
        return self._publish()

    def _fail_load(self, error: SessionLoadError) -> PlayerState:
        message = error.get_display_message()
        logger.error(f"Failed to load packing session {self.packing_session_id}: {error}")

        try:
            self._terminate_remote(ABANDON)
        except RoutePackerError as e:
            logger.error(f"Failed to abandon packing session after load failure: {e}")

        self._clear_local_state()
        self._error_message = message
        self._phase = SessionPhase.ERROR
        self.error_occurred.emit(message)
        return self._publish()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def go_forward(self) -> PlayerState:
        """Pack the current item and move on; acknowledges a machine announcement."""
        return self._advance(is_picked=True)

    def skip_current(self) -> PlayerState:
        """Like go_forward, but the item is reported to the backend as not picked."""
        return self._advance(is_picked=False)

    def _advance(self, is_picked: bool) -> PlayerState:
        if self._phase not in _NAVIGABLE_PHASES:
            logger.warning(f"Ignoring navigation in phase {self._phase.value}")
            return self.state

        self.narrator.stop_immediately()

        if self._machine_completion is not None:
            logger.debug(f"Machine completion acknowledged: {self._machine_completion.machine_key}")
            self._machine_completion = None
            self._move_to_next_playable(self._index + 1)
            return self._publish()

        command = self.current_command
        if command is None:
            return self.state

        if command.is_item:
            self._resolve_item(command, is_picked)

        next_index = self._engine.next_playable_index(self._index + 1)
        if next_index is None:
            # The last machine's announcement is folded into session completion
            if self._is_completion_boundary(command):
                self._announced_machines.add(identity_key(command, IdentityRole.MACHINE))
            self._complete_session()
            return self._publish()

        completion = self._check_machine_completion(command)
        if completion is not None:
            self._machine_completion = completion
            self._phase = SessionPhase.MACHINE_COMPLETION_PENDING
            logger.info(f"Machine complete: {completion.message}")
            self.narrator.speak(completion.message)
            return self._publish()

        self._index = next_index
        self._phase = SessionPhase.PLAYING
        logger.debug(f"Advanced to command {self._index}")
        self._narrate_current()
        return self._publish()

    def go_back(self) -> PlayerState:
        """
        Step back one command, or dismiss a pending machine announcement.

        Never un-resolves work. The resulting command is narrated even if it
        would normally be skipped.
        """
        if self._phase not in _NAVIGABLE_PHASES:
            logger.warning(f"Ignoring navigation in phase {self._phase.value}")
            return self.state

        self.narrator.stop_immediately()

        if self._machine_completion is not None:
            logger.debug(f"Machine completion dismissed: {self._machine_completion.machine_key}")
            self._machine_completion = None
            self._phase = SessionPhase.PLAYING
            return self._publish()

        self._index = max(self._index - 1, 0)
        self._phase = SessionPhase.PLAYING
        logger.debug(f"Went back to command {self._index}")
        self._narrate_current()
        return self._publish()

    def repeat_current(self) -> PlayerState:
        """Narrate the current command (or pending announcement) again."""
        if self._phase in _NAVIGABLE_PHASES or self._phase is SessionPhase.COMPLETE:
            self._narrate_current()
        else:
            logger.warning(f"Ignoring repeat in phase {self._phase.value}")
        return self.state

    def _resolve_item(self, command: AudioCommand, is_picked: bool) -> None:
        entry_ids = list(command.pick_entry_ids)
        self._tracker.mark_resolved(entry_ids)
        if not entry_ids:
            return

        action = "picked" if is_picked else "skipped"
        self.sync.submit(
            f"mark {len(entry_ids)} entries {action} for command {command.id}",
            self.service.update_pick_statuses,
            self.run_id,
            entry_ids,
            is_picked,
        )
        logger.debug(f"Item {command.id} {action}")

    def _move_to_next_playable(self, start: int) -> None:
        next_index = self._engine.next_playable_index(start)
        if next_index is None:
            self._complete_session()
            return
        self._index = next_index
        self._phase = SessionPhase.PLAYING
        self._narrate_current()

    @staticmethod
    def _is_completion_boundary(command: AudioCommand) -> bool:
        return (command.kind in (CommandKind.ITEM, CommandKind.MACHINE)
                and has_identity(command, IdentityRole.MACHINE))

    def _check_machine_completion(self, command: AudioCommand) -> Optional[MachineCompletionInfo]:
        if not self._is_completion_boundary(command):
            return None

        machine_key = identity_key(command, IdentityRole.MACHINE)
        if machine_key in self._announced_machines:
            return None
        if self._engine.has_remaining_items_for_machine(machine_key, self._index):
            return None

        self._announced_machines.add(machine_key)
        return MachineCompletionInfo(
            machine_key=machine_key,
            message=machine_completion_message(command),
            machine_code=command.machine_code,
            machine_name=command.machine_name,
            machine_description=command.machine_description,
            location_name=command.location_name,
        )

    def _narrate_current(self) -> None:
        if self._machine_completion is not None:
            self.narrator.speak(self._machine_completion.message)
            return
        if self._is_session_complete:
            self.narrator.speak(SESSION_COMPLETE_NARRATION)
            return

        command = self.current_command
        if command is None:
            return
        if command.narration_text:
            self.narrator.speak(command.narration_text)
        else:
            logger.warning(f"Command {command.id} has no narration text")

    # ------------------------------------------------------------------
    # Narration events
    # ------------------------------------------------------------------

    def _on_utterance_started(self, _text: str) -> None:
        self._is_speaking = True
        self._publish()

    def _on_utterance_ended(self, _text: str) -> None:
        if not self._is_speaking:
            return
        self._is_speaking = False
        self._publish()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _complete_session(self) -> None:
        self._index = len(self._commands)
        self._is_session_complete = True
        self._machine_completion = None
        self._phase = SessionPhase.COMPLETE
        self.remote_controls.deactivate()
        logger.info(f"Packing session {self.packing_session_id} complete")

        self.narrator.speak(SESSION_COMPLETE_NARRATION)

        if self.run_in_background:
            threading.Thread(
                target=self._finish_after_completion, daemon=True, name="packing-session-finish"
            ).start()
        else:
            self._finish_after_completion()

    def _finish_after_completion(self) -> None:
        try:
            self._terminate_remote(FINISH)
        except RoutePackerError as e:
            # stop_session() retries the finish and reports the error
            logger.error(f"Failed to finish packing session after completion: {e}")

    def pause(self) -> PlayerState:
        """Stop narrating and release audio; the remote session stays open."""
        if self._phase.is_terminal:
            logger.warning(f"Cannot pause a {self._phase.value} session")
            return self.state
        self._release_audio()
        self._is_paused = True
        self._phase = SessionPhase.PAUSED
        logger.info(f"Packing session {self.packing_session_id} paused")
        return self._publish()

    def abandon(self) -> PlayerState:
        """Stop immediately and abandon the remote session, tolerating failure."""
        self._release_audio()
        try:
            self._terminate_remote(ABANDON)
        except RoutePackerError as e:
            logger.error(f"Failed to abandon packing session {self.packing_session_id}: {e}")

        self._clear_local_state()
        self._phase = SessionPhase.ABANDONED
        return self._publish()

    def stop_session(self) -> bool:
        """
        Close the session: finish when it is complete, abandon otherwise.

        Local commands are cleared whatever the outcome.

        Returns:
            True if the remote session was closed; False if the call failed
            or another stop is already running
        """
        with self._stop_lock:
            if self.is_stopping_session:
                logger.warning("Stop already in progress; ignoring")
                return False
            self.is_stopping_session = True

        try:
            self._release_audio()
            kind = FINISH if (self._is_session_complete or self.has_synced_finished_session) else ABANDON
            logger.info(f"Stopping packing session {self.packing_session_id} ({kind})")

            try:
                result = self._terminate_remote(kind)
                if result is None:
                    raise ServiceError(f"Packing session {self.packing_session_id} could not be closed")
            except RoutePackerError as e:
                message = e.get_display_message()
                logger.error(f"Failed to {kind} packing session {self.packing_session_id}: {e}")
                self._clear_local_state()
                self._error_message = message
                self._phase = SessionPhase.ERROR
                self.error_occurred.emit(message)
                self._publish()
                return False

            self._clear_local_state()
            if self._terminal_kind == FINISH:
                self._phase = SessionPhase.FINISHED
            else:
                self._phase = SessionPhase.ABANDONED
            self._publish()
            return True
        finally:
            self.is_stopping_session = False

    def dismiss(self) -> bool:
        """
        Called when the session screen goes away.

        Stops the session unless the picker explicitly paused it or it is
        already closed.
        """
        if self._is_paused or self._phase.is_terminal:
            logger.debug(f"Dismissed in phase {self._phase.value}; nothing to do")
            return True
        return self.stop_session()

    def _release_audio(self) -> None:
        self.narrator.stop_immediately()
        self._is_speaking = False
        self.narrator.deactivate_audio_session()
        self.remote_controls.deactivate()

    def _clear_local_state(self) -> None:
        self._commands = ()
        self._engine = NavigationEngine(self._commands, self._tracker)
        self._index = 0
        self._machine_completion = None

    def _terminate_remote(self, kind: str) -> Optional[PackingSessionResult]:
        """
        Send the terminal request for this packing session at most once.

        A caller arriving while a terminal request is in flight polls until
        it resolves and then returns its result. Once one kind (finish or
        abandon) has been attempted the other kind is never sent; the same
        kind may be retried after a failure.

        Returns:
            The terminal result, or None when a request of the other kind
            was attempted and failed

        Raises:
            RoutePackerError: If this call's request fails or the wait times out
        """
        poll_interval = self.settings.finish_poll_interval_ms / 1000
        deadline = time.monotonic() + self.settings.finish_wait_timeout_seconds

        while True:
            with self._terminal_lock:
                if self._terminal_result is not None:
                    return self._terminal_result
                if not self._terminal_in_flight:
                    if self._terminal_kind is not None and self._terminal_kind != kind:
                        logger.warning(
                            f"Packing session already had a {self._terminal_kind} attempt; not sending {kind}"
                        )
                        return None
                    self._terminal_kind = kind
                    self._terminal_in_flight = True
                    break
            if time.monotonic() >= deadline:
                raise ServiceError(f"Timed out waiting for packing session {self.packing_session_id} to close")
            time.sleep(poll_interval)

        try:
            if kind == FINISH:
                # Pick statuses must land before the session closes
                if not self.sync.flush(timeout=self.settings.finish_wait_timeout_seconds):
                    logger.warning("Pending pick status updates did not drain before finish")
                result = self.service.finish_packing_session(self.run_id, self.packing_session_id)
            else:
                result = self.service.abandon_packing_session(self.run_id, self.packing_session_id)
        except RoutePackerError:
            with self._terminal_lock:
                self._terminal_in_flight = False
            raise

        with self._terminal_lock:
            self._terminal_result = result
            self._terminal_in_flight = False

        self._refresh_run_detail()
        return result

    # ------------------------------------------------------------------
    # Display lookups
    # ------------------------------------------------------------------

    @property
    def current_pick_entry(self) -> Optional[PickEntry]:
        command = self.current_command
        if command is None or not command.pick_entry_ids or self.run_detail is None:
            return None
        return self.run_detail.find_pick_entry(command.pick_entry_ids[0])

    @property
    def current_machine(self) -> Optional[Machine]:
        command = self.current_command
        if command is None or self.run_detail is None:
            return None
        if command.machine_id:
            machine = self.run_detail.find_machine(command.machine_id)
            if machine is not None:
                return machine
        entry = self.current_pick_entry
        return entry.machine if entry else None

    @property
    def current_location_name(self) -> Optional[str]:
        candidates = []
        command = self.current_command
        if command is not None:
            candidates.append(command.location_name)
        machine = self.current_machine
        if machine is not None and machine.location is not None:
            candidates.append(machine.location.name)
        entry = self.current_pick_entry
        if entry is not None and entry.location is not None:
            candidates.append(entry.location.name)

        for name in candidates:
            trimmed = (name or '').strip()
            if trimmed:
                return trimmed
        return None

    @property
    def current_location_machines(self) -> List[Machine]:
        """Machines at the location the picker is currently working through."""
        if self.run_detail is None or not self._commands:
            return []

        last = min(self._index, len(self._commands) - 1)
        location_command = next(
            (self._commands[i] for i in range(last, -1, -1)
             if self._commands[i].kind is CommandKind.LOCATION),
            None,
        )
        if location_command is None:
            return []

        location_id = (location_command.location_id or '').strip()
        location_name = (location_command.location_name or '').strip()
        machines = []
        for machine in self.run_detail.machines:
            if machine.location is None:
                continue
            if location_id and machine.location.id == location_id:
                machines.append(machine)
            elif not location_id and location_name and (machine.location.name or '').strip() == location_name:
                machines.append(machine)
        return machines

    # ------------------------------------------------------------------
    # Auxiliary actions
    # ------------------------------------------------------------------

    def create_chocolate_box(self, number: int, machine_id: str) -> ChocolateBox:
        """Create a box; backend errors propagate to the caller."""
        box = self.service.create_chocolate_box(self.run_id, number, machine_id)
        logger.info(f"Created chocolate box {number} for machine {machine_id}")
        self._refresh_chocolate_boxes()
        return box

    def delete_chocolate_box(self, box_id: str) -> None:
        try:
            self.service.delete_chocolate_box(self.run_id, box_id)
            logger.info(f"Deleted chocolate box {box_id}")
        except RoutePackerError as e:
            logger.error(f"Failed to delete chocolate box {box_id}: {e}")
        self._refresh_chocolate_boxes()

    def update_count_pointer(self, entry: PickEntry, count_needed_pointer: str) -> None:
        """Change which count field the SKU uses and reload the commands."""
        if entry.sku is None:
            logger.warning(f"Pick entry {entry.id} has no SKU; cannot update count pointer")
            return

        sku_id = entry.sku.id
        self.updating_sku_ids.add(sku_id)
        try:
            self.service.update_sku_count_pointer(sku_id, count_needed_pointer)
            logger.info(f"Updated count pointer of SKU {sku_id} to {count_needed_pointer}")
            self._reload_commands()
        except RoutePackerError as e:
            logger.error(f"Failed to update count pointer of SKU {sku_id}: {e}")
        finally:
            self.updating_sku_ids.discard(sku_id)

    def toggle_cold_chest(self, entry: PickEntry) -> None:
        """Flip the SKU's fresh/frozen flag."""
        if entry.sku is None:
            logger.warning(f"Pick entry {entry.id} has no SKU; cannot toggle cold chest")
            return

        sku_id = entry.sku.id
        self.updating_sku_ids.add(sku_id)
        try:
            self.service.update_sku_fresh_status(sku_id, not entry.sku.is_fresh_or_frozen)
            logger.info(f"Toggled cold chest for SKU {sku_id}")
            self._refresh_run_detail()
        except RoutePackerError as e:
            logger.error(f"Failed to toggle cold chest for SKU {sku_id}: {e}")
        finally:
            self.updating_sku_ids.discard(sku_id)

    def update_override(self, entry: PickEntry, override_count: Optional[int]) -> None:
        """Override the quantity of one pick entry and reload the commands."""
        self.updating_pick_ids.add(entry.id)
        try:
            self.service.update_pick_entry_override(self.run_id, entry.id, override_count)
            logger.info(f"Set override of pick entry {entry.id} to {override_count}")
            self._reload_commands()
        except RoutePackerError as e:
            logger.error(f"Failed to update override of pick entry {entry.id}: {e}")
        finally:
            self.updating_pick_ids.discard(entry.id)

    def replace_expiry_overrides(self, entry: PickEntry, overrides: List[Tuple[str, int]]) -> None:
        self.updating_pick_ids.add(entry.id)
        try:
            self.service.replace_pick_entry_expiry_overrides(self.run_id, entry.id, overrides)
            logger.info(f"Replaced {len(overrides)} expiry overrides of pick entry {entry.id}")
            self._refresh_run_detail()
        except RoutePackerError as e:
            logger.error(f"Failed to update expiry of pick entry {entry.id}: {e}")
        finally:
            self.updating_pick_ids.discard(entry.id)

    def _reload_commands(self) -> None:
        """
        Refetch the command sequence mid-session.

        Work resolved locally stays resolved and the player stays on the same
        command when it still exists.
        """
        response = self.service.fetch_audio_commands(self.run_id, self.packing_session_id)
        run_detail = self.service.fetch_run_detail(self.run_id)

        current = self.current_command
        picked = run_detail.picked_entry_ids | self._tracker.resolved_ids

        self._commands = response.commands
        self._tracker = CompletionTracker.seeded(picked, response.session_entry_ids)
        self._engine = NavigationEngine(self._commands, self._tracker)
        self.run_detail = run_detail

        if self._is_session_complete:
            self._index = len(self._commands)
        else:
            ids = [command.id for command in self._commands]
            if current is not None and current.id in ids:
                self._index = ids.index(current.id)
            else:
                self._index = min(self._index, max(len(self._commands) - 1, 0))

        logger.info(f"Reloaded {len(self._commands)} commands")
        self._publish()

    def _refresh_run_detail(self) -> None:
        try:
            self.run_detail = self.service.fetch_run_detail(self.run_id)
        except RoutePackerError as e:
            logger.error(f"Failed to refresh run detail: {e}")

    def _refresh_chocolate_boxes(self) -> None:
        try:
            boxes = self.service.fetch_chocolate_boxes(self.run_id)
            self.chocolate_boxes = sorted(boxes, key=lambda box: box.number)
        except RoutePackerError as e:
            logger.error(f"Failed to refresh chocolate boxes: {e}")
