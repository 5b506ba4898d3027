"""
Shared fixtures for the test suite.
"""
import pytest

from timetable_sync.errors import PersistenceError
from timetable_sync.models.entities import (
    Batch, ClassAssignment, Faculty, Room, RoomCategory, Subject, SubjectCategory
)
from timetable_sync.store.memory import InMemoryDocumentStore


def make_assignment(assignment_id, day=0, slot=0, room='R1', batch='B1',
                    faculty=('F1',), subject='S1', locked=False):
    """Build a ClassAssignment with sensible defaults."""
    return ClassAssignment(
        id=assignment_id,
        day=day,
        slot=slot,
        subject_id=subject,
        faculty_ids=tuple(faculty),
        room_id=room,
        batch_id=batch,
        locked=locked,
    )


class FailingStore(InMemoryDocumentStore):
    """In-memory store whose Nth commit (1-based) fails."""

    def __init__(self, fail_on, **kwargs):
        super().__init__(**kwargs)
        self.fail_on = fail_on
        self.attempts = 0

    def commit(self, operations):
        self.attempts += 1
        if self.attempts == self.fail_on:
            raise PersistenceError("simulated transaction failure")
        super().commit(operations)


@pytest.fixture
def rooms():
    return {
        'R1': Room(id='R1', name='R1', category=RoomCategory.LECTURE_HALL, capacity=60),
        'R2': Room(id='R2', name='R2', category=RoomCategory.LECTURE_HALL, capacity=60),
        'LAB': Room(id='LAB', name='Physics Lab', category=RoomCategory.LAB, capacity=30),
    }


@pytest.fixture
def faculty():
    return {
        'F1': Faculty(id='F1', name='Ada Lovelace', subject_ids={'S1'}),
        'F2': Faculty(id='F2', name='Alan Turing', subject_ids={'S1', 'S2'}),
        'F3': Faculty(id='F3', name='Grace Hopper', subject_ids={'S2'}),
    }


@pytest.fixture
def subjects():
    return {
        'S1': Subject(id='S1', code='MA101', name='Calculus', category=SubjectCategory.THEORY),
        'S2': Subject(id='S2', code='PH101L', name='Physics Lab', category=SubjectCategory.PRACTICAL),
    }


@pytest.fixture
def batches():
    return {
        'B1': Batch(id='B1', name='CS-A', student_count=40, subject_ids=['S1', 'S2']),
        'B2': Batch(id='B2', name='CS-B', student_count=35, subject_ids=['S1']),
    }


@pytest.fixture
def store():
    return InMemoryDocumentStore(max_batch_operations=500)
