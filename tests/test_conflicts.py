"""
Tests for conflict detection.
"""
from types import SimpleNamespace

import pytest

from timetable_sync.algorithms.conflicts import ConflictDetector, check_conflicts
from timetable_sync.models.entities import Batch, ConflictKind, Room, RoomCategory

from conftest import make_assignment


def kinds(conflicts):
    return sorted(c.kind.value for c in conflicts)


class TestPairwiseConflicts:
    """Test the room, faculty and batch checks."""

    def test_room_double_booking(self, faculty, rooms, batches):
        """Two batches in R1 at the same time both get a Room conflict naming R1."""
        x = make_assignment('X', day=0, slot=2, room='R1', batch='B1', faculty=('F1',))
        y = make_assignment('Y', day=0, slot=2, room='R1', batch='B2', faculty=('F3',))

        result = check_conflicts([x, y], faculty, rooms, batches=batches)

        assert set(result) == {'X', 'Y'}
        for assignment_id in ('X', 'Y'):
            room_conflicts = [c for c in result[assignment_id] if c.kind == ConflictKind.ROOM]
            assert len(room_conflicts) == 1
            assert 'R1' in room_conflicts[0].message
            assert room_conflicts[0].assignment_ids == ['X', 'Y']

    def test_message_names_both_batches(self, faculty, rooms, batches):
        x = make_assignment('X', room='R1', batch='B1', faculty=('F1',))
        y = make_assignment('Y', room='R1', batch='B2', faculty=('F3',))

        result = check_conflicts([x, y], faculty, rooms, batches=batches)

        assert 'CS-A vs CS-B' in result['X'][0].message

    def test_faculty_double_booking(self, faculty, rooms, batches):
        x = make_assignment('X', room='R1', batch='B1', faculty=('F1',))
        y = make_assignment('Y', room='R2', batch='B2', faculty=('F1',))

        result = check_conflicts([x, y], faculty, rooms, batches=batches)

        assert kinds(result['X']) == ['Faculty']
        assert 'Ada Lovelace' in result['X'][0].message

    def test_one_conflict_per_shared_faculty_member(self, faculty, rooms, batches):
        """Team-taught sessions sharing two teachers produce two Faculty conflicts."""
        x = make_assignment('X', room='R1', batch='B1', faculty=('F1', 'F2'))
        y = make_assignment('Y', room='R2', batch='B2', faculty=('F2', 'F1', 'F3'))

        result = check_conflicts([x, y], faculty, rooms, batches=batches)

        assert kinds(result['X']) == ['Faculty', 'Faculty']
        messages = ' '.join(c.message for c in result['X'])
        assert 'Ada Lovelace' in messages
        assert 'Alan Turing' in messages

    def test_disjoint_faculty_do_not_clash(self, faculty, rooms, batches):
        x = make_assignment('X', room='R1', batch='B1', faculty=('F1',))
        y = make_assignment('Y', room='R2', batch='B2', faculty=('F2',))

        assert check_conflicts([x, y], faculty, rooms, batches=batches) == {}

    def test_batch_concurrent_classes(self, faculty, rooms, batches):
        x = make_assignment('X', room='R1', batch='B1', faculty=('F1',))
        y = make_assignment('Y', room='R2', batch='B1', faculty=('F3',))

        result = check_conflicts([x, y], faculty, rooms, batches=batches)

        assert kinds(result['Y']) == ['Batch']
        assert result['Y'][0].message == 'Batch CS-A has concurrent classes scheduled'

    def test_all_constraints_at_once(self, faculty, rooms, batches):
        """Identical placements violate room, faculty and batch together."""
        x = make_assignment('X')
        y = make_assignment('Y')

        result = check_conflicts([x, y], faculty, rooms, batches=batches)

        assert kinds(result['X']) == ['Batch', 'Faculty', 'Room']
        assert kinds(result['Y']) == ['Batch', 'Faculty', 'Room']

    def test_different_slots_never_clash(self, faculty, rooms, batches):
        x = make_assignment('X', day=0, slot=1)
        y = make_assignment('Y', day=0, slot=2)
        z = make_assignment('Z', day=1, slot=1)

        assert check_conflicts([x, y, z], faculty, rooms, batches=batches) == {}

    def test_three_way_room_clash(self, faculty, rooms, batches):
        """Every pair in a bucket is compared."""
        entries = [
            make_assignment('A', room='R1', batch='B1', faculty=('F1',)),
            make_assignment('B', room='R1', batch='B2', faculty=('F2',)),
            make_assignment('C', room='R1', batch='B3', faculty=('F3',)),
        ]

        result = check_conflicts(entries, faculty, rooms, batches=batches)

        for assignment_id in ('A', 'B', 'C'):
            assert kinds(result[assignment_id]) == ['Room', 'Room']

    def test_unknown_references_render_as_unknown(self, faculty, rooms):
        x = make_assignment('X', room='R404', batch='B1', faculty=('F1',))
        y = make_assignment('Y', room='R404', batch='B2', faculty=('F9',))

        result = check_conflicts([x, y], faculty, rooms)

        message = result['X'][0].message
        assert 'Unknown Room (R404)' in message
        assert 'Unknown Batch (B1)' in message

    def test_accepts_lists(self, faculty, rooms, batches):
        """Reference tables may be lists instead of id mappings."""
        x = make_assignment('X', room='R1', batch='B1', faculty=('F1',))
        y = make_assignment('Y', room='R1', batch='B2', faculty=('F3',))

        result = check_conflicts([x, y], list(faculty.values()), list(rooms.values()),
                                 batches=list(batches.values()))

        assert set(result) == {'X', 'Y'}


class TestExternalAssignments:
    """Test checking drafts against committed assignments."""

    def test_external_participates_but_is_not_reported(self, faculty, rooms, batches):
        x = make_assignment('X', room='R1', batch='B1', faculty=('F1',))
        committed = make_assignment('Z', room='R1', batch='B2', faculty=('F3',))

        result = check_conflicts([x], faculty, rooms, external=[committed], batches=batches)

        assert list(result) == ['X']
        assert result['X'][0].assignment_ids == ['X']

    def test_external_only_clashes_are_ignored(self, faculty, rooms, batches):
        first = make_assignment('Z1', room='R1', batch='B1')
        second = make_assignment('Z2', room='R1', batch='B2')

        assert check_conflicts([], faculty, rooms, external=[first, second], batches=batches) == {}

    def test_draft_supersedes_external_copy(self, faculty, rooms, batches):
        """An assignment being edited does not clash with its own committed version."""
        draft = make_assignment('X', day=1, slot=1)
        stale = make_assignment('X', day=1, slot=1)

        assert check_conflicts([draft], faculty, rooms, external=[stale], batches=batches) == {}


class TestCapacity:
    """Test the per-assignment capacity check."""

    def test_room_too_small(self, faculty):
        rooms = {'LH1': Room(id='LH1', name='LH-1', category=RoomCategory.LECTURE_HALL, capacity=30)}
        batches = {'CSA': Batch(id='CSA', name='CS-A', student_count=40)}
        x = make_assignment('X', room='LH1', batch='CSA', faculty=('F1',))

        result = check_conflicts([x], faculty, rooms, batches=batches)

        assert len(result['X']) == 1
        conflict = result['X'][0]
        assert conflict.kind == ConflictKind.CAPACITY
        assert 'LH-1' in conflict.message
        assert 'CS-A' in conflict.message
        assert '30' in conflict.message
        assert '40' in conflict.message

    def test_subject_named_when_known(self, faculty, subjects):
        rooms = {'LH1': Room(id='LH1', name='LH-1', capacity=10)}
        batches = {'CSA': Batch(id='CSA', name='CS-A', student_count=40)}
        x = make_assignment('X', room='LH1', batch='CSA', subject='S1')

        result = check_conflicts([x], faculty, rooms, subjects=subjects, batches=batches)

        assert result['X'][0].message.endswith('for Calculus')

    def test_exact_fit_is_fine(self, faculty):
        rooms = {'LH1': Room(id='LH1', name='LH-1', capacity=40)}
        batches = {'CSA': Batch(id='CSA', name='CS-A', student_count=40)}

        assert check_conflicts([make_assignment('X', room='LH1', batch='CSA')], faculty, rooms,
                               batches=batches) == {}

    @pytest.mark.parametrize('room_id,batch_id', [('R404', 'B1'), ('R1', 'B404')])
    def test_skipped_for_unknown_references(self, faculty, rooms, batches, room_id, batch_id):
        x = make_assignment('X', room=room_id, batch=batch_id)

        assert check_conflicts([x], faculty, rooms, batches=batches) == {}

    def test_not_checked_for_external(self, faculty):
        rooms = {'LH1': Room(id='LH1', name='LH-1', capacity=10)}
        batches = {'CSA': Batch(id='CSA', name='CS-A', student_count=40)}
        committed = make_assignment('Z', day=3, room='LH1', batch='CSA')

        assert check_conflicts([], faculty, rooms, external=[committed], batches=batches) == {}


class TestDetector:
    """Test ConflictDetector and repeatability."""

    def test_repeated_checks_are_identical(self, faculty, rooms, batches):
        draft = [
            make_assignment('X', room='R1', batch='B1', faculty=('F1', 'F2')),
            make_assignment('Y', room='R1', batch='B2', faculty=('F2',)),
            make_assignment('Z', slot=1, room='LAB', batch='B1', faculty=('F3',)),
        ]

        first = check_conflicts(draft, faculty, rooms, batches=batches)
        second = check_conflicts(draft, faculty, rooms, batches=batches)

        assert first == second

    def test_reads_current_service_tables(self, faculty, rooms, batches):
        service = SimpleNamespace(faculty=faculty, rooms=rooms, subjects={}, batches=batches)
        detector = ConflictDetector(service)
        x = make_assignment('X', room='R1', batch='B1')

        assert detector.check([x]) == {}

        service.rooms = {'R1': Room(id='R1', name='R1', capacity=5)}
        result = detector.check([x])

        assert kinds(result['X']) == ['Capacity']
