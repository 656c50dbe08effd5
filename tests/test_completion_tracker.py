"""Unit tests for src/completion_tracker.py."""

from completion_tracker import CompletionTracker
from conftest import item_command


class TestSeeding:

    def test_only_picked_entries_of_this_session_are_seeded(self):
        tracker = CompletionTracker.seeded(
            picked_entry_ids=['e1', 'foreign'],
            session_entry_ids=['e1', 'e2'],
        )

        assert tracker.resolved_ids == frozenset({'e1'})
        assert 'foreign' not in tracker

    def test_empty_seed(self):
        tracker = CompletionTracker.seeded([], ['e1'])
        assert len(tracker) == 0


class TestMarkResolved:

    def test_mark_is_idempotent(self):
        tracker = CompletionTracker()
        tracker.mark_resolved(['e1', 'e2'])
        tracker.mark_resolved(['e1'])

        assert len(tracker) == 2
        assert tracker.is_resolved('e1')

    def test_blank_ids_are_ignored(self):
        tracker = CompletionTracker()
        tracker.mark_resolved(['', None, 'e1'])
        assert tracker.resolved_ids == frozenset({'e1'})


class TestItemResolution:

    def test_partially_resolved_item_is_pending(self):
        tracker = CompletionTracker(['e2'])
        command = item_command('I2', 'M2', ['e2', 'e3'])
        assert not tracker.is_item_fully_resolved(command)

        tracker.mark_resolved(['e3'])
        assert tracker.is_item_fully_resolved(command)

    def test_item_without_entries_is_vacuously_resolved(self):
        tracker = CompletionTracker()
        assert tracker.is_item_fully_resolved(item_command('I0', 'M1', []))
