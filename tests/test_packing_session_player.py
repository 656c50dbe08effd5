"""
Tests for src/packing_session_player.py: the session lifecycle controller.

Tests cover:
- Load: seeding, resume position, immediate completion, load failures
- Navigation: forward, skip, back, repeat, machine completion announcements
- Completion set growth and position bounds over mixed navigation
- Finish/abandon exclusivity, including concurrent stops
- Pause, abandon, stop and dismiss lifecycle transitions
- Progress accessors, display lookups and auxiliary actions
"""

import random
import threading
import time
from unittest.mock import patch

import pytest

from conftest import (
    PACKING_SESSION_ID,
    RUN_ID,
    item_command,
    make_player,
    make_run_detail,
    make_service,
    scenario_commands,
)
from exceptions import (
    ChocolateBoxNumberExistsError,
    InsufficientPermissionsError,
    NetworkError,
    PackingSessionNotFoundError,
    ServiceError,
    SessionLoadError,
)
from narration import SilentNarrator
from packing_session_player import NO_ITEMS_MESSAGE, SESSION_COMPLETE_NARRATION
from run_models import ChocolateBox, PackingSessionResult, PickEntry, Sku
from session_state import PlayerState, SessionPhase


# ============================================================================
# Load
# ============================================================================

class TestLoad:

    def test_fresh_session_starts_at_enclosing_location(self, player, narrator):
        state = player.load()

        assert state.phase is SessionPhase.PLAYING
        assert state.current_index == 0
        assert state.command_count == 5
        assert state.current_command.id == "L1"
        assert narrator.spoken == ["Go to Central Station"]

    def test_load_fetches_commands_detail_and_boxes(self, player, service):
        player.load()

        service.fetch_audio_commands.assert_called_once_with(RUN_ID, PACKING_SESSION_ID)
        service.fetch_run_detail.assert_called_once_with(RUN_ID)
        service.fetch_chocolate_boxes.assert_called_once_with(RUN_ID)

    def test_seed_ignores_picks_outside_this_session(self, narrator):
        service = make_service()
        service.fetch_run_detail.return_value = make_run_detail(
            ("e1", "e2", "e3", "foreign"), picked=("foreign",)
        )
        player = make_player(service, narrator)

        player.load()

        assert player.completed_entry_ids == frozenset()
        assert player.current_index == 0

    def test_resume_uses_context_of_first_pending_item(self, narrator):
        service = make_service(picked=("e1",))
        player = make_player(service, narrator)

        state = player.load()

        # I2 is first pending; the nearest location with matching identity is L1
        assert state.current_index == 0
        assert player.completed_entry_ids == frozenset({"e1"})

        state = player.go_forward()
        assert state.current_command.id == "M2"
        assert state.current_index == 3

    def test_nothing_pending_completes_immediately(self, narrator):
        service = make_service(picked=("e1", "e2", "e3"))
        player = make_player(service, narrator)

        state = player.load()

        assert state.phase is SessionPhase.COMPLETE
        assert state.is_session_complete
        assert state.current_index == state.command_count
        assert narrator.spoken[-1] == SESSION_COMPLETE_NARRATION
        service.finish_packing_session.assert_called_once_with(RUN_ID, PACKING_SESSION_ID)

    def test_load_failure_abandons_remote_session(self, narrator):
        service = make_service()
        service.fetch_run_detail.side_effect = NetworkError("offline")
        player = make_player(service, narrator)
        errors = []
        player.error_occurred.connect(errors.append)

        state = player.load()

        assert state.phase is SessionPhase.ERROR
        assert state.error_message == NetworkError("offline").get_display_message()
        assert errors == [state.error_message]
        assert state.command_count == 0
        service.abandon_packing_session.assert_called_once_with(RUN_ID, PACKING_SESSION_ID)
        service.finish_packing_session.assert_not_called()

    def test_load_failure_tolerates_failed_abandon(self, narrator):
        service = make_service()
        service.fetch_audio_commands.side_effect = ServiceError("boom", status_code=500)
        service.abandon_packing_session.side_effect = NetworkError("offline")
        player = make_player(service, narrator)

        state = player.load()

        assert state.phase is SessionPhase.ERROR
        assert "code 500" in state.error_message

    def test_load_failure_keeps_backend_error_as_cause(self, narrator):
        service = make_service()
        cause = InsufficientPermissionsError()
        service.fetch_run_detail.side_effect = cause
        player = make_player(service, narrator)

        with patch.object(player, '_fail_load', wraps=player._fail_load) as fail_load:
            state = player.load()

        error = fail_load.call_args[0][0]
        assert isinstance(error, SessionLoadError)
        assert error.cause is cause
        assert state.error_message == cause.get_display_message()

    def test_run_without_items_fails_to_load(self, narrator):
        service = make_service(has_items=False)
        player = make_player(service, narrator)

        state = player.load()

        assert state.phase is SessionPhase.ERROR
        assert state.error_message == NO_ITEMS_MESSAGE
        service.abandon_packing_session.assert_called_once()

    def test_chocolate_box_failure_does_not_fail_load(self, service, narrator):
        service.fetch_chocolate_boxes.side_effect = ServiceError("boom", status_code=500)
        player = make_player(service, narrator)

        state = player.load()

        assert state.phase is SessionPhase.PLAYING
        assert player.chocolate_boxes == []

    def test_chocolate_boxes_are_sorted(self, service, narrator):
        service.fetch_chocolate_boxes.return_value = [
            ChocolateBox(id="b2", number=7), ChocolateBox(id="b1", number=2),
        ]
        player = make_player(service, narrator)

        player.load()

        assert [box.number for box in player.chocolate_boxes] == [2, 7]


# ============================================================================
# Navigation
# ============================================================================

class TestNavigation:

    def test_walkthrough_announces_machine_before_next_machine(self, player, service, narrator):
        player.load()
        assert player.go_forward().current_index == 1
        assert player.go_forward().current_index == 2

        state = player.go_forward()

        assert state.phase is SessionPhase.MACHINE_COMPLETION_PENDING
        assert state.current_index == 2
        assert state.machine_completion.message == "Machine A12 complete at Central Station."
        assert narrator.spoken[-1] == "Machine A12 complete at Central Station."
        service.update_pick_statuses.assert_called_once_with(RUN_ID, ["e1"], True)

        state = player.go_forward()

        assert state.phase is SessionPhase.PLAYING
        assert state.machine_completion is None
        assert state.current_command.id == "M2"

    def test_skip_reports_entries_as_not_picked(self, narrator):
        service = make_service(picked=("e1",))
        player = make_player(service, narrator)
        player.load()
        player.go_forward()
        player.go_forward()
        assert player.current_command.id == "I2"

        state = player.skip_current()

        service.update_pick_statuses.assert_called_once_with(RUN_ID, ["e2", "e3"], False)
        assert player.completed_entry_ids >= {"e2", "e3"}
        assert state.phase is SessionPhase.COMPLETE

    def test_last_machine_is_folded_into_completion(self, narrator):
        service = make_service(picked=("e1",))
        player = make_player(service, narrator)
        player.load()
        player.go_forward()
        player.go_forward()

        state = player.go_forward()

        assert state.phase is SessionPhase.COMPLETE
        assert state.machine_completion is None
        assert "M2" in player.announced_machine_keys
        assert narrator.spoken[-1] == SESSION_COMPLETE_NARRATION
        service.finish_packing_session.assert_called_once()

    def test_back_dismisses_announcement_without_moving(self, player):
        player.load()
        player.go_forward()
        player.go_forward()
        player.go_forward()

        state = player.go_back()

        assert state.phase is SessionPhase.PLAYING
        assert state.machine_completion is None
        assert state.current_index == 2

    def test_machine_is_announced_once(self, player, narrator):
        player.load()
        player.go_forward()
        player.go_forward()
        player.go_forward()   # announcement
        player.go_back()      # dismiss

        state = player.go_forward()   # I1 again

        assert state.machine_completion is None
        assert state.current_command.id == "M2"
        assert player.announced_machine_keys == frozenset({"M1"})
        assert narrator.spoken.count("Machine A12 complete at Central Station.") == 1

    def test_back_narrates_resolved_command(self, player, narrator):
        player.load()
        for _ in range(4):
            player.go_forward()
        assert player.current_index == 3
        resolved = player.completed_entry_ids

        state = player.go_back()

        assert state.current_index == 2
        assert narrator.spoken[-1] == "4 Snickers"
        assert player.completed_entry_ids == resolved

    def test_back_floors_at_zero(self, player):
        player.load()
        assert player.go_back().current_index == 0

    def test_repeat_narrates_current_command(self, player, narrator):
        player.load()
        player.go_forward()

        state = player.repeat_current()

        assert state.current_index == 1
        assert narrator.spoken[-2:] == ["Machine A12", "Machine A12"]

    def test_repeat_narrates_pending_announcement(self, player, narrator):
        player.load()
        for _ in range(3):
            player.go_forward()

        player.repeat_current()

        assert narrator.spoken[-2:] == ["Machine A12 complete at Central Station."] * 2

    def test_pick_sync_failure_does_not_block_navigation(self, service, narrator):
        service.update_pick_statuses.side_effect = NetworkError("offline")
        player = make_player(service, narrator)
        player.load()
        player.go_forward()
        player.go_forward()

        state = player.go_forward()

        assert state.phase is SessionPhase.MACHINE_COMPLETION_PENDING
        assert "e1" in player.completed_entry_ids
        assert len(player.sync.failures) == 1

    def test_item_without_entries_is_skipped(self, narrator):
        commands = scenario_commands()
        commands.insert(3, item_command("I0", "M1", []))
        player = make_player(make_service(commands), narrator)
        player.load()

        visited = [player.current_command.id]
        while not player.state.is_session_complete:
            state = player.go_forward()
            if state.current_command is not None:
                visited.append(state.current_command.id)

        assert "I0" not in visited

    def test_navigation_is_ignored_when_not_playing(self, player, service):
        player.load()
        player.pause()

        state = player.go_forward()

        assert state.phase is SessionPhase.PAUSED
        service.update_pick_statuses.assert_not_called()


class TestCompletionAndBounds:

    def _bigger_route(self):
        return scenario_commands() + [
            item_command("I3", "M2", ["e4"], machine_code="B07"),
            item_command("I4", "M2", ["e5", "e6"], machine_code="B07"),
        ]

    @pytest.mark.parametrize("seed", range(5))
    def test_completion_grows_and_position_stays_in_bounds(self, narrator, seed):
        player = make_player(make_service(self._bigger_route()), narrator)
        player.load()
        rng = random.Random(seed)
        actions = [player.go_forward, player.skip_current, player.go_back, player.repeat_current]

        previous = player.completed_entry_ids
        for _ in range(60):
            state = rng.choice(actions)()

            assert player.completed_entry_ids >= previous
            previous = player.completed_entry_ids

            assert 0 <= state.current_index <= state.command_count
            assert (state.current_index == state.command_count) == state.is_session_complete

    def test_back_never_unresolves(self, player):
        player.load()
        player.go_forward()
        player.go_forward()
        player.go_forward()
        resolved = player.completed_entry_ids

        player.go_back()
        player.go_back()
        player.go_back()

        assert player.completed_entry_ids == resolved


# ============================================================================
# Lifecycle
# ============================================================================

class TestLifecycle:

    def test_pause_keeps_remote_session_open(self, player, service, narrator):
        player.load()

        state = player.pause()

        assert state.phase is SessionPhase.PAUSED
        assert narrator.audio_session_active is False
        service.abandon_packing_session.assert_not_called()
        service.finish_packing_session.assert_not_called()

    def test_pause_clears_speaking_even_without_cancel_report(self, service):
        narrator = SilentNarrator(auto_finish=False)
        narrator.stop_immediately = lambda: None
        player = make_player(service, narrator)
        assert player.load().is_speaking is True

        state = player.pause()

        assert state.is_speaking is False

    @pytest.mark.parametrize("close", ["abandon", "stop_session"])
    def test_pause_after_close_keeps_terminal_phase(self, player, service, close):
        player.load()
        getattr(player, close)()
        closed_phase = player.state.phase
        assert closed_phase.is_terminal

        state = player.pause()

        assert state.phase is closed_phase
        assert player.dismiss() is True
        service.abandon_packing_session.assert_called_once()

    def test_dismiss_after_pause_does_nothing(self, player, service):
        player.load()
        player.pause()

        assert player.dismiss() is True
        service.abandon_packing_session.assert_not_called()

    def test_dismiss_abandons_by_default(self, player, service):
        player.load()

        assert player.dismiss() is True
        assert player.state.phase is SessionPhase.ABANDONED
        service.abandon_packing_session.assert_called_once()

    def test_abandon_tolerates_remote_failure(self, player, service):
        service.abandon_packing_session.side_effect = NetworkError("offline")
        player.load()

        state = player.abandon()

        assert state.phase is SessionPhase.ABANDONED
        assert state.command_count == 0

    def test_stop_before_completion_abandons(self, player, service):
        player.load()

        assert player.stop_session() is True

        assert player.state.phase is SessionPhase.ABANDONED
        assert player.commands == ()
        service.abandon_packing_session.assert_called_once()
        service.finish_packing_session.assert_not_called()

    def test_stop_failure_surfaces_error_and_clears_commands(self, player, service):
        service.abandon_packing_session.side_effect = PackingSessionNotFoundError()
        player.load()

        assert player.stop_session() is False

        state = player.state
        assert state.phase is SessionPhase.ERROR
        assert state.error_message == PackingSessionNotFoundError().get_display_message()
        assert state.command_count == 0
        assert state.current_index == 0

    def test_failed_stop_can_be_retried(self, player, service):
        service.abandon_packing_session.side_effect = [
            NetworkError("offline"),
            PackingSessionResult(id=PACKING_SESSION_ID, status="ABANDONED"),
        ]
        player.load()

        assert player.stop_session() is False
        assert player.stop_session() is True
        assert service.abandon_packing_session.call_count == 2

    def test_stop_while_stopping_is_refused(self, player, service):
        player.load()
        player.is_stopping_session = True

        assert player.stop_session() is False
        service.abandon_packing_session.assert_not_called()

    def test_failed_natural_finish_is_retried_by_stop(self, narrator):
        service = make_service(picked=("e1",))
        service.finish_packing_session.side_effect = [
            NetworkError("offline"),
            PackingSessionResult(id=PACKING_SESSION_ID, status="FINISHED"),
        ]
        player = make_player(service, narrator)
        player.load()
        player.go_forward()
        player.go_forward()
        assert player.go_forward().phase is SessionPhase.COMPLETE

        assert player.stop_session() is True

        assert player.state.phase is SessionPhase.FINISHED
        assert service.finish_packing_session.call_count == 2
        service.abandon_packing_session.assert_not_called()

    def test_parallel_stops_after_completion_send_one_finish(self, narrator):
        service = make_service(picked=("e1",))
        player = make_player(service, narrator)
        player.load()
        player.go_forward()
        player.go_forward()
        player.skip_current()
        assert player.state.is_session_complete

        results = []
        threads = [threading.Thread(target=lambda: results.append(player.stop_session())) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert True in results
        assert service.finish_packing_session.call_count == 1
        service.abandon_packing_session.assert_not_called()
        assert player.has_synced_finished_session

    def test_stop_racing_background_finish_sends_one_request(self, narrator):
        release = threading.Event()
        service = make_service(picked=("e1", "e2"))

        def slow_finish(run_id, packing_session_id):
            release.wait(5)
            return PackingSessionResult(id=packing_session_id, status="FINISHED")

        service.finish_packing_session.side_effect = slow_finish
        player = make_player(service, narrator, run_in_background=True)
        player.load()
        player.go_forward()
        player.go_forward()
        player.go_forward()
        assert player.state.is_session_complete

        results = []
        stopper = threading.Thread(target=lambda: results.append(player.stop_session()))
        stopper.start()
        time.sleep(0.05)
        release.set()
        stopper.join(5)

        assert results == [True]
        assert service.finish_packing_session.call_count == 1
        service.abandon_packing_session.assert_not_called()

    def test_completed_session_never_abandons_after_finish(self, narrator):
        service = make_service(picked=("e1", "e2", "e3"))
        player = make_player(service, narrator)
        player.load()

        player.abandon()

        service.abandon_packing_session.assert_not_called()
        service.finish_packing_session.assert_called_once()


# ============================================================================
# Narration, signals and remote controls
# ============================================================================

class TestNarrationEvents:

    def test_is_speaking_follows_narrator(self, service):
        narrator = SilentNarrator(auto_finish=False)
        player = make_player(service, narrator)

        assert player.load().is_speaking is True
        assert player.can_skip is False

        narrator.finish_current()

        assert player.state.is_speaking is False

    def test_skip_offered_on_item_when_quiet(self, player):
        player.load()
        player.go_forward()
        player.go_forward()
        assert player.can_skip is True

    def test_state_changed_is_emitted(self, qtbot, player):
        player.load()

        with qtbot.waitSignal(player.state_changed, timeout=1000) as blocker:
            player.go_forward()

        assert isinstance(blocker.args[0], PlayerState)

    def test_remote_controls(self, player, narrator):
        player.load()
        controls = player.remote_controls
        assert controls.is_active

        controls.trigger_next()
        assert player.current_index == 1

        controls.trigger_previous()
        assert narrator.spoken[-2:] == ["Machine A12", "Machine A12"]

        player.pause()
        assert not controls.is_active


# ============================================================================
# Progress and display lookups
# ============================================================================

class TestProgressAndLookups:

    def test_progress_accessors(self, player):
        player.load()

        assert player.total_items == 2
        assert player.completed_count == 0
        assert player.progress == 0.0
        assert player.can_go_back is False
        assert player.can_go_forward is True

        for _ in range(3):
            player.go_forward()

        assert player.completed_count == 1
        assert player.progress == 0.5
        assert player.can_go_back is True

    def test_progress_without_items(self, player):
        assert player.progress == 0.0

    def test_lookups_for_current_item(self, player):
        player.load()
        player.go_forward()
        player.go_forward()

        assert player.current_pick_entry.id == "e1"
        assert player.current_machine.code == "A12"
        assert player.current_location_name == "Central Station"
        assert [machine.code for machine in player.current_location_machines] == ["A12", "B07"]

    def test_lookups_before_load(self, player):
        assert player.current_pick_entry is None
        assert player.current_machine is None
        assert player.current_location_name is None
        assert player.current_location_machines == []


# ============================================================================
# Auxiliary actions
# ============================================================================

def _entry_with_sku(is_fresh_or_frozen=False):
    sku = Sku(id="sku-1", code="SN", name="Snickers", is_fresh_or_frozen=is_fresh_or_frozen)
    return PickEntry(id="e1", count=4, is_picked=False, sku=sku)


class TestAuxiliaryActions:

    def test_create_chocolate_box_refreshes_list(self, player, service):
        player.load()
        box = ChocolateBox(id="b1", number=3)
        service.create_chocolate_box.return_value = box
        service.fetch_chocolate_boxes.return_value = [box]

        assert player.create_chocolate_box(3, "M1") == box

        service.create_chocolate_box.assert_called_once_with(RUN_ID, 3, "M1")
        assert player.chocolate_boxes == [box]

    def test_create_chocolate_box_conflict_propagates(self, player, service):
        service.create_chocolate_box.side_effect = ChocolateBoxNumberExistsError()

        with pytest.raises(ChocolateBoxNumberExistsError):
            player.create_chocolate_box(3, "M1")

    def test_delete_chocolate_box_failure_is_logged(self, player, service):
        service.delete_chocolate_box.side_effect = ServiceError("boom", status_code=500)

        player.delete_chocolate_box("b1")

        service.fetch_chocolate_boxes.assert_called_once_with(RUN_ID)

    def test_toggle_cold_chest(self, player, service):
        player.load()

        player.toggle_cold_chest(_entry_with_sku(is_fresh_or_frozen=False))

        service.update_sku_fresh_status.assert_called_once_with("sku-1", True)
        assert service.fetch_run_detail.call_count == 2
        assert player.updating_sku_ids == set()

    def test_update_count_pointer_reloads_commands(self, player, service):
        player.load()
        player.go_forward()

        player.update_count_pointer(_entry_with_sku(), "total")

        service.update_sku_count_pointer.assert_called_once_with("sku-1", "total")
        assert service.fetch_audio_commands.call_count == 2
        assert player.current_command.id == "M1"
        assert player.updating_sku_ids == set()

    def test_update_count_pointer_failure_is_logged(self, player, service):
        player.load()
        service.update_sku_count_pointer.side_effect = ServiceError("boom", status_code=500)

        player.update_count_pointer(_entry_with_sku(), "total")

        assert service.fetch_audio_commands.call_count == 1
        assert player.updating_sku_ids == set()

    def test_entry_without_sku_is_ignored(self, player, service):
        entry = PickEntry(id="e1", count=1, is_picked=False)

        player.toggle_cold_chest(entry)
        player.update_count_pointer(entry, "total")

        service.update_sku_fresh_status.assert_not_called()
        service.update_sku_count_pointer.assert_not_called()

    def test_update_override_reloads_commands(self, player, service):
        player.load()
        entry = PickEntry(id="e2", count=2, is_picked=False)

        player.update_override(entry, 5)

        service.update_pick_entry_override.assert_called_once_with(RUN_ID, "e2", 5)
        assert service.fetch_audio_commands.call_count == 2
        assert player.updating_pick_ids == set()

    def test_update_override_failure_is_logged(self, player, service):
        player.load()
        service.update_pick_entry_override.side_effect = NetworkError("offline")

        player.update_override(PickEntry(id="e2", count=2, is_picked=False), None)

        assert service.fetch_audio_commands.call_count == 1
        assert player.updating_pick_ids == set()

    def test_pick_entry_is_marked_updating_while_in_flight(self, player, service):
        player.load()
        seen = []
        service.update_pick_entry_override.side_effect = (
            lambda *args: seen.append(set(player.updating_pick_ids))
        )

        player.update_override(PickEntry(id="e2", count=2, is_picked=False), 1)

        assert seen == [{"e2"}]

    def test_replace_expiry_overrides_refreshes_run_detail(self, player, service):
        player.load()
        overrides = [("2025-12-01", 3)]

        player.replace_expiry_overrides(PickEntry(id="e1", count=4, is_picked=False), overrides)

        service.replace_pick_entry_expiry_overrides.assert_called_once_with(RUN_ID, "e1", overrides)
        assert service.fetch_run_detail.call_count == 2
        assert player.updating_pick_ids == set()

    def test_replace_expiry_overrides_failure_is_logged(self, player, service):
        player.load()
        service.replace_pick_entry_expiry_overrides.side_effect = ServiceError("boom", status_code=500)

        player.replace_expiry_overrides(PickEntry(id="e1", count=4, is_picked=False), [])

        assert service.fetch_run_detail.call_count == 1
        assert player.updating_pick_ids == set()
