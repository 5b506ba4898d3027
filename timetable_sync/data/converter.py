"""
Data converter module.

Handles conversions between different data representations:
- Store documents / raw JSON records to domain objects
- Domain objects to store documents
- Domain objects to DataFrames for reports

Records are validated here, at the boundary: a malformed record raises
ValidationError instead of travelling further as an untyped dict.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

import pandas as pd

from ..errors import ValidationError
from ..models.entities import (
    Batch, BreakPeriod, ClassAssignment, Conflict, Department, Faculty,
    FacultyAvailability, Room, RoomCategory, Snapshot, Subject,
    SubjectAssignment, SubjectCategory, TimetableSettings
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

SETTINGS_COLLECTION = 'settings'
SETTINGS_DOC_ID = 'config'

# Collection name for each snapshot attribute, in import dependency order.
COLLECTIONS = {
    'departments': 'departments',
    'rooms': 'rooms',
    'subjects': 'subjects',
    'faculty': 'faculty',
    'batches': 'batches',
    'availability': 'facultyAvailability',
    'schedule': 'schedule',
}


def _require(record: Mapping, key: str, kind: str) -> Any:
    value = record.get(key)
    if value is None or value == "":
        raise ValidationError(f"{kind} record {record.get('id', '?')!r} is missing {key!r}")
    return value


def _as_int(value: Any, key: str, kind: str, record_id: Any, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{kind} {record_id!r}: {key} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{kind} {record_id!r}: {key} must be an integer, got {value!r}")
    if number != value and not isinstance(value, str):
        raise ValidationError(f"{kind} {record_id!r}: {key} must be an integer, got {value!r}")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{kind} {record_id!r}: {key} must be >= {minimum}, got {number}")
    return number


def _as_id_list(value: Any, key: str, kind: str, record_id: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        # CSV exports store lists as semicolon separated values
        return [v.strip() for v in value.split(';') if v.strip()]
    if not isinstance(value, (list, tuple, set)):
        raise ValidationError(f"{kind} {record_id!r}: {key} must be a list")
    return [str(v) for v in value]


def _as_enum(enum_cls, value: Any, kind: str, record_id: Any):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(e.value for e in enum_cls)
        raise ValidationError(f"{kind} {record_id!r}: category {value!r} is not one of {allowed}")


def _require_mapping(record: Any, kind: str) -> Mapping:
    if not isinstance(record, Mapping):
        raise ValidationError(f"{kind} record must be an object, got {type(record).__name__}")
    return record


class DataConverter:
    """
    Converts between the document, domain and report representations.

    Document keys are camelCase and every document repeats its id as a field.
    Legacy keys (``type``, ``size``, ``subjects``) are accepted on input.
    """

    @staticmethod
    def department_from_doc(doc: Mapping) -> Department:
        doc = _require_mapping(doc, 'Department')
        return Department(
            id=str(_require(doc, 'id', 'Department')),
            name=str(_require(doc, 'name', 'Department')),
            code=str(doc.get('code') or ''),
        )

    @staticmethod
    def room_from_doc(doc: Mapping) -> Room:
        doc = _require_mapping(doc, 'Room')
        room_id = str(_require(doc, 'id', 'Room'))
        category = doc.get('category', doc.get('type', RoomCategory.LECTURE_HALL.value))
        return Room(
            id=room_id,
            name=str(_require(doc, 'name', 'Room')),
            category=_as_enum(RoomCategory, category, 'Room', room_id),
            capacity=_as_int(doc.get('capacity', 0), 'capacity', 'Room', room_id, minimum=0),
        )

    @staticmethod
    def subject_from_doc(doc: Mapping) -> Subject:
        doc = _require_mapping(doc, 'Subject')
        subject_id = str(_require(doc, 'id', 'Subject'))
        category = doc.get('category', doc.get('type', SubjectCategory.THEORY.value))
        return Subject(
            id=subject_id,
            code=str(doc.get('code') or ''),
            name=str(_require(doc, 'name', 'Subject')),
            category=_as_enum(SubjectCategory, category, 'Subject', subject_id),
            credits=_as_int(doc.get('credits', 0), 'credits', 'Subject', subject_id, minimum=0),
            hours_per_week=_as_int(doc.get('hoursPerWeek', 0), 'hoursPerWeek', 'Subject', subject_id, minimum=0),
        )

    @staticmethod
    def faculty_from_doc(doc: Mapping) -> Faculty:
        doc = _require_mapping(doc, 'Faculty')
        faculty_id = str(_require(doc, 'id', 'Faculty'))
        subject_ids = doc.get('subjectIds', doc.get('subjects'))
        return Faculty(
            id=faculty_id,
            name=str(_require(doc, 'name', 'Faculty')),
            subject_ids=set(_as_id_list(subject_ids, 'subjectIds', 'Faculty', faculty_id)),
        )

    @staticmethod
    def batch_from_doc(doc: Mapping) -> Batch:
        doc = _require_mapping(doc, 'Batch')
        batch_id = str(_require(doc, 'id', 'Batch'))
        student_count = doc.get('studentCount', doc.get('size', 0))

        subject_assignments = []
        for entry in doc.get('subjectAssignments') or []:
            entry = _require_mapping(entry, 'Batch subject assignment')
            subject_assignments.append(SubjectAssignment(
                subject_id=str(_require(entry, 'subjectId', 'Batch subject assignment')),
                faculty_ids=_as_id_list(entry.get('facultyIds'), 'facultyIds', 'Batch', batch_id),
            ))

        fixed_room = doc.get('fixedRoomId')
        department = doc.get('departmentId')
        return Batch(
            id=batch_id,
            name=str(_require(doc, 'name', 'Batch')),
            student_count=_as_int(student_count, 'studentCount', 'Batch', batch_id, minimum=0),
            subject_ids=_as_id_list(doc.get('subjectIds', doc.get('subjects')), 'subjectIds', 'Batch', batch_id),
            fixed_room_id=str(fixed_room) if fixed_room else None,
            department_id=str(department) if department else None,
            semester=_as_int(doc.get('semester', 0), 'semester', 'Batch', batch_id, minimum=0),
            subject_assignments=subject_assignments,
        )

    @staticmethod
    def availability_from_doc(doc: Mapping) -> FacultyAvailability:
        doc = _require_mapping(doc, 'FacultyAvailability')
        faculty_id = str(_require(doc, 'facultyId', 'FacultyAvailability'))
        raw = doc.get('availability') or {}
        if not isinstance(raw, Mapping):
            raise ValidationError(f"FacultyAvailability {faculty_id!r}: availability must be a day -> slots mapping")

        slots = {}
        for day, day_slots in raw.items():
            # JSON object keys are strings
            day_index = _as_int(day, 'day', 'FacultyAvailability', faculty_id, minimum=0)
            slots[day_index] = {
                _as_int(s, 'slot', 'FacultyAvailability', faculty_id, minimum=0)
                for s in (day_slots or [])
            }
        return FacultyAvailability(faculty_id=faculty_id, slots=slots)

    @staticmethod
    def assignment_from_doc(doc: Mapping) -> ClassAssignment:
        doc = _require_mapping(doc, 'ClassAssignment')
        assignment_id = str(_require(doc, 'id', 'ClassAssignment'))

        if 'facultyIds' not in doc and 'facultyId' in doc:
            raise ValidationError(
                f"ClassAssignment {assignment_id!r} uses the single-teacher 'facultyId' field; "
                f"'facultyIds' is required"
            )
        faculty_ids = _as_id_list(doc.get('facultyIds'), 'facultyIds', 'ClassAssignment', assignment_id)
        if not faculty_ids:
            raise ValidationError(f"ClassAssignment {assignment_id!r} has no faculty")

        locked = doc.get('locked', False)
        if not isinstance(locked, bool):
            raise ValidationError(f"ClassAssignment {assignment_id!r}: locked must be a boolean")

        return ClassAssignment(
            id=assignment_id,
            day=_as_int(_require(doc, 'day', 'ClassAssignment'), 'day', 'ClassAssignment', assignment_id, minimum=0),
            slot=_as_int(_require(doc, 'slot', 'ClassAssignment'), 'slot', 'ClassAssignment', assignment_id, minimum=0),
            subject_id=str(_require(doc, 'subjectId', 'ClassAssignment')),
            # Ordered, duplicates dropped
            faculty_ids=tuple(dict.fromkeys(faculty_ids)),
            room_id=str(_require(doc, 'roomId', 'ClassAssignment')),
            batch_id=str(_require(doc, 'batchId', 'ClassAssignment')),
            locked=locked,
        )

    @staticmethod
    def settings_from_doc(doc: Mapping) -> TimetableSettings:
        doc = _require_mapping(doc, 'Settings')
        defaults = TimetableSettings()
        breaks = defaults.breaks
        if 'breaks' in doc:
            breaks = []
            for entry in doc.get('breaks') or []:
                entry = _require_mapping(entry, 'Break')
                breaks.append(BreakPeriod(
                    name=str(entry.get('name', 'Break')),
                    start_time=str(_require(entry, 'startTime', 'Break')),
                    end_time=str(_require(entry, 'endTime', 'Break')),
                ))

        return TimetableSettings(
            college_start_time=str(doc.get('collegeStartTime', defaults.college_start_time)),
            college_end_time=str(doc.get('collegeEndTime', defaults.college_end_time)),
            period_duration=_as_int(doc.get('periodDuration', defaults.period_duration),
                                    'periodDuration', 'Settings', SETTINGS_DOC_ID),
            working_days=list(doc.get('workingDays', defaults.working_days)),
            breaks=breaks,
        )

    # --- domain -> documents ---

    @staticmethod
    def department_to_doc(department: Department) -> Dict[str, Any]:
        return {'id': department.id, 'name': department.name, 'code': department.code}

    @staticmethod
    def room_to_doc(room: Room) -> Dict[str, Any]:
        return {
            'id': room.id,
            'name': room.name,
            'category': room.category.value,
            'capacity': room.capacity,
        }

    @staticmethod
    def subject_to_doc(subject: Subject) -> Dict[str, Any]:
        return {
            'id': subject.id,
            'code': subject.code,
            'name': subject.name,
            'category': subject.category.value,
            'credits': subject.credits,
            'hoursPerWeek': subject.hours_per_week,
        }

    @staticmethod
    def faculty_to_doc(faculty: Faculty) -> Dict[str, Any]:
        return {'id': faculty.id, 'name': faculty.name, 'subjectIds': sorted(faculty.subject_ids)}

    @staticmethod
    def batch_to_doc(batch: Batch) -> Dict[str, Any]:
        return {
            'id': batch.id,
            'name': batch.name,
            'studentCount': batch.student_count,
            'subjectIds': list(batch.subject_ids),
            'fixedRoomId': batch.fixed_room_id,
            'departmentId': batch.department_id,
            'semester': batch.semester,
            'subjectAssignments': [
                {'subjectId': a.subject_id, 'facultyIds': list(a.faculty_ids)}
                for a in batch.subject_assignments
            ],
        }

    @staticmethod
    def availability_to_doc(availability: FacultyAvailability) -> Dict[str, Any]:
        return {
            'id': availability.faculty_id,
            'facultyId': availability.faculty_id,
            'availability': {
                str(day): sorted(slots) for day, slots in sorted(availability.slots.items())
            },
        }

    @staticmethod
    def assignment_to_doc(assignment: ClassAssignment) -> Dict[str, Any]:
        return {
            'id': assignment.id,
            'day': assignment.day,
            'slot': assignment.slot,
            'subjectId': assignment.subject_id,
            'facultyIds': list(assignment.faculty_ids),
            'roomId': assignment.room_id,
            'batchId': assignment.batch_id,
            'locked': assignment.locked,
        }

    @staticmethod
    def settings_to_doc(settings: TimetableSettings) -> Dict[str, Any]:
        return {
            'id': SETTINGS_DOC_ID,
            'collegeStartTime': settings.college_start_time,
            'collegeEndTime': settings.college_end_time,
            'periodDuration': settings.period_duration,
            'workingDays': list(settings.working_days),
            'breaks': [
                {'name': b.name, 'startTime': b.start_time, 'endTime': b.end_time}
                for b in settings.breaks
            ],
        }

    # --- collections ---

    @classmethod
    def parse_many(cls, records: Optional[Iterable[Any]], parser: Callable[[Mapping], T], kind: str) -> List[T]:
        """Parse a collection, naming the offending position when a record is malformed."""
        parsed = []
        for index, record in enumerate(records or []):
            try:
                parsed.append(parser(record))
            except ValidationError as e:
                raise ValidationError(f"{kind}[{index}]: {e}")
        return parsed

    @classmethod
    def snapshot_from_raw(cls, raw: Mapping) -> Snapshot:
        """
        Convert a raw dataset (as exported or loaded from JSON) to a Snapshot.

        Raises:
            ValidationError: if faculty, rooms or subjects are missing, or any
                record is malformed
        """
        if not isinstance(raw, Mapping):
            raise ValidationError("Snapshot must be an object of collections")

        missing = [name for name in ('faculty', 'rooms', 'subjects') if raw.get(name) is None]
        if missing:
            raise ValidationError(f"Snapshot is missing required collections: {', '.join(missing)}")

        settings = raw.get('settings')
        return Snapshot(
            departments=cls.parse_many(raw.get('departments'), cls.department_from_doc, 'departments'),
            rooms=cls.parse_many(raw.get('rooms'), cls.room_from_doc, 'rooms'),
            subjects=cls.parse_many(raw.get('subjects'), cls.subject_from_doc, 'subjects'),
            faculty=cls.parse_many(raw.get('faculty'), cls.faculty_from_doc, 'faculty'),
            batches=cls.parse_many(raw.get('batches'), cls.batch_from_doc, 'batches'),
            schedule=cls.parse_many(raw.get('schedule'), cls.assignment_from_doc, 'schedule'),
            availability=cls.parse_many(
                raw.get('facultyAvailability', raw.get('availability')),
                cls.availability_from_doc, 'facultyAvailability'
            ),
            settings=cls.settings_from_doc(settings) if settings else None,
        )

    @classmethod
    def snapshot_to_documents(cls, snapshot: Snapshot) -> Dict[str, List[Dict[str, Any]]]:
        """Documents per store collection, in dependency order."""
        documents = {
            COLLECTIONS['departments']: [cls.department_to_doc(d) for d in snapshot.departments],
            COLLECTIONS['rooms']: [cls.room_to_doc(r) for r in snapshot.rooms],
            COLLECTIONS['subjects']: [cls.subject_to_doc(s) for s in snapshot.subjects],
            COLLECTIONS['faculty']: [cls.faculty_to_doc(f) for f in snapshot.faculty],
            COLLECTIONS['batches']: [cls.batch_to_doc(b) for b in snapshot.batches],
            COLLECTIONS['availability']: [cls.availability_to_doc(a) for a in snapshot.availability],
            COLLECTIONS['schedule']: [cls.assignment_to_doc(a) for a in snapshot.schedule],
        }
        if snapshot.settings is not None:
            documents[SETTINGS_COLLECTION] = [cls.settings_to_doc(snapshot.settings)]
        return documents

    # --- reports ---

    @staticmethod
    def convert_conflicts_to_df(conflict_map: Mapping[str, List[Conflict]]) -> pd.DataFrame:
        """
        Flatten a conflict map into one row per (assignment, conflict).

        Returns:
            DataFrame with columns: Assignment ID, Kind, Message, Involved
        """
        rows = []
        for assignment_id, conflicts in conflict_map.items():
            for conflict in conflicts:
                rows.append({
                    'Assignment ID': assignment_id,
                    'Kind': conflict.kind.value,
                    'Message': conflict.message,
                    'Involved': ';'.join(conflict.assignment_ids),
                })
        return pd.DataFrame(rows, columns=['Assignment ID', 'Kind', 'Message', 'Involved'])

    @staticmethod
    def convert_to_batch_grid_df(assignments: Iterable[ClassAssignment],
                                 batch_id: str,
                                 subjects: Mapping[str, Subject],
                                 rooms: Mapping[str, Room],
                                 day_labels: List[str],
                                 slot_labels: List[str]) -> pd.DataFrame:
        """
        Build a slot x day grid for one batch.

        Cells hold "<subject code> @ <room name>"; clashing entries are joined
        with " / ". Unknown ids are shown as "Unknown".
        """
        grid = pd.DataFrame('', index=slot_labels, columns=day_labels)
        for assignment in assignments:
            if assignment.batch_id != batch_id:
                continue
            if assignment.day >= len(day_labels) or assignment.slot >= len(slot_labels):
                logger.warning(f"Assignment {assignment.id} lies outside the configured week")
                continue

            subject = subjects.get(assignment.subject_id)
            room = rooms.get(assignment.room_id)
            cell = f"{subject.code or subject.name if subject else 'Unknown'} @ {room.name if room else 'Unknown'}"

            row, column = slot_labels[assignment.slot], day_labels[assignment.day]
            current = grid.at[row, column]
            grid.at[row, column] = f"{current} / {cell}" if current else cell

        grid.index.name = 'Slot'
        return grid
