"""
Tests for document conversion, snapshot loading and reports.
"""
import json

import pandas as pd
import pytest

from timetable_sync.data.converter import DataConverter
from timetable_sync.data.loader import SnapshotLoader, validate_relationships
from timetable_sync.errors import ValidationError
from timetable_sync.models.entities import (
    Conflict, ConflictKind, RoomCategory, Snapshot, SubjectCategory
)

from conftest import make_assignment


class TestDocuments:
    """Test document parsing and validation."""

    def test_assignment_document(self):
        doc = {'id': 'A1', 'day': 1, 'slot': 2, 'subjectId': 'S1', 'facultyIds': ['F1', 'F2', 'F1'],
               'roomId': 'R1', 'batchId': 'B1'}

        assignment = DataConverter.assignment_from_doc(doc)

        assert assignment.faculty_ids == ('F1', 'F2')
        assert not assignment.locked
        assert DataConverter.assignment_to_doc(assignment)['facultyIds'] == ['F1', 'F2']

    def test_single_teacher_shape_rejected(self):
        doc = {'id': 'A1', 'day': 1, 'slot': 2, 'subjectId': 'S1', 'facultyId': 'F1',
               'roomId': 'R1', 'batchId': 'B1'}

        with pytest.raises(ValidationError, match='facultyIds'):
            DataConverter.assignment_from_doc(doc)

    @pytest.mark.parametrize('change', [
        {'day': -1},
        {'slot': 'late'},
        {'facultyIds': []},
        {'roomId': ''},
        {'locked': 'yes'},
        {'day': True},
    ])
    def test_malformed_assignment(self, change):
        doc = {'id': 'A1', 'day': 1, 'slot': 2, 'subjectId': 'S1', 'facultyIds': ['F1'],
               'roomId': 'R1', 'batchId': 'B1'}
        doc.update(change)

        with pytest.raises(ValidationError):
            DataConverter.assignment_from_doc(doc)

    def test_legacy_keys(self):
        room = DataConverter.room_from_doc({'id': 'R1', 'name': 'Lab 1', 'type': 'Lab', 'capacity': 20})
        batch = DataConverter.batch_from_doc({'id': 'B1', 'name': 'CS-A', 'size': 40, 'subjects': ['S1']})
        faculty = DataConverter.faculty_from_doc({'id': 'F1', 'name': 'Ada', 'subjects': 'S1; S2'})

        assert room.category == RoomCategory.LAB
        assert batch.student_count == 40
        assert batch.subject_ids == ['S1']
        assert faculty.subject_ids == {'S1', 'S2'}

    def test_unknown_category(self):
        with pytest.raises(ValidationError, match='Seminar'):
            DataConverter.subject_from_doc({'id': 'S1', 'name': 'Talks', 'category': 'Seminar'})

    def test_parse_many_names_position(self):
        records = [{'id': 'R1', 'name': 'LH-1'}, {'id': 'R2'}]

        with pytest.raises(ValidationError, match=r'rooms\[1\]'):
            DataConverter.parse_many(records, DataConverter.room_from_doc, 'rooms')

    def test_snapshot_requires_core_collections(self):
        with pytest.raises(ValidationError, match='rooms, subjects'):
            DataConverter.snapshot_from_raw({'faculty': []})

    def test_snapshot_documents_include_settings(self):
        raw = {
            'rooms': [], 'subjects': [{'id': 'S1', 'name': 'Calculus', 'category': 'Practical'}],
            'faculty': [],
            'settings': {'collegeStartTime': '08:00', 'periodDuration': 50, 'breaks': []},
        }

        snapshot = DataConverter.snapshot_from_raw(raw)
        documents = DataConverter.snapshot_to_documents(snapshot)

        assert snapshot.subjects[0].category == SubjectCategory.PRACTICAL
        assert snapshot.settings.breaks == []
        assert documents['settings'][0]['collegeStartTime'] == '08:00'
        assert documents['settings'][0]['id'] == 'config'


class TestLoader:
    """Test reading snapshots from disk."""

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            SnapshotLoader(str(tmp_path / 'nothing.json'))

    def test_json_file(self, tmp_path):
        path = tmp_path / 'export.json'
        path.write_text(json.dumps({
            'rooms': [{'id': 'R1', 'name': 'LH-1', 'capacity': 60}],
            'subjects': [{'id': 'S1', 'name': 'Calculus'}],
            'faculty': [{'id': 'F1', 'name': 'Ada', 'subjectIds': ['S1']}],
        }))

        snapshot = SnapshotLoader(str(path)).load()

        assert snapshot.counts()['rooms'] == 1
        assert snapshot.schedule == []

    def test_invalid_json(self, tmp_path):
        path = tmp_path / 'broken.json'
        path.write_text('{not json')

        with pytest.raises(ValidationError):
            SnapshotLoader(str(path)).load_raw()

    def test_csv_directory(self, tmp_path):
        pd.DataFrame([{'id': 'R1', 'name': 'LH-1', 'category': 'Lecture Hall', 'capacity': 60}]) \
            .to_csv(tmp_path / 'Rooms.csv', index=False)
        pd.DataFrame([{'id': 'S1', 'code': 'MA101', 'name': 'Calculus', 'category': 'Theory'}]) \
            .to_csv(tmp_path / 'Subjects.csv', index=False)
        pd.DataFrame([{'id': 'F1', 'name': 'Ada', 'subjectIds': 'S1'}]) \
            .to_csv(tmp_path / 'Faculty.csv', index=False)
        pd.DataFrame([{'id': 'A1', 'day': 0, 'slot': 1, 'subjectId': 'S1', 'facultyIds': 'F1;F2',
                       'roomId': 'R1', 'batchId': 'B1', 'locked': 'true'}]) \
            .to_csv(tmp_path / 'Schedule.csv', index=False)

        snapshot = SnapshotLoader(str(tmp_path)).load()

        assert snapshot.rooms[0].capacity == 60
        assert snapshot.faculty[0].subject_ids == {'S1'}
        assert snapshot.batches == []
        assignment = snapshot.schedule[0]
        assert assignment.faculty_ids == ('F1', 'F2')
        assert assignment.locked is True
        assert assignment.slot == 1

    def test_csv_directory_missing_required_file(self, tmp_path):
        pd.DataFrame([{'id': 'R1', 'name': 'LH-1'}]).to_csv(tmp_path / 'Rooms.csv', index=False)

        with pytest.raises(ValidationError, match='Subjects.csv'):
            SnapshotLoader(str(tmp_path)).load_raw()

    def test_validate_relationships(self, rooms, subjects, faculty, batches):
        snapshot = Snapshot(
            rooms=list(rooms.values()), subjects=list(subjects.values()),
            faculty=list(faculty.values()), batches=list(batches.values()),
            schedule=[make_assignment('A1', room='R9', faculty=('F1', 'F9'))],
        )

        issues = validate_relationships(snapshot)

        assert issues == [
            'Assignment A1 references unknown room R9',
            'Assignment A1 references unknown faculty F9',
        ]


class TestReports:
    """Test DataFrame reports."""

    def test_conflicts_frame(self):
        conflict = Conflict(ConflictKind.ROOM, 'Room R1 double booked', ['X', 'Y'])

        df = DataConverter.convert_conflicts_to_df({'X': [conflict], 'Y': [conflict]})

        assert list(df.columns) == ['Assignment ID', 'Kind', 'Message', 'Involved']
        assert len(df) == 2
        assert df.iloc[0]['Involved'] == 'X;Y'

    def test_empty_conflicts_frame(self):
        assert DataConverter.convert_conflicts_to_df({}).empty

    def test_batch_grid(self, subjects, rooms):
        assignments = [
            make_assignment('A1', day=0, slot=0, subject='S1', room='R1', batch='B1'),
            make_assignment('A2', day=0, slot=0, subject='S2', room='LAB', batch='B1'),
            make_assignment('A3', day=1, slot=1, subject='S1', room='R2', batch='B2'),
        ]

        grid = DataConverter.convert_to_batch_grid_df(
            assignments, 'B1', subjects, rooms, ['Mon', 'Tue'], ['9:00', '10:00'])

        assert grid.at['9:00', 'Mon'] == 'MA101 @ R1 / PH101L @ Physics Lab'
        assert grid.at['10:00', 'Tue'] == ''
