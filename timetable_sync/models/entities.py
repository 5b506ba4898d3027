"""
Entity models for the timetable core.
These classes represent the records the conflict detector, synchronizer and
importer work with. Reference data (subjects, faculty, rooms, batches,
departments) is read-only here; it is edited elsewhere.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple


class SubjectCategory(str, Enum):
    THEORY = "Theory"
    PRACTICAL = "Practical"
    WORKSHOP = "Workshop"


class RoomCategory(str, Enum):
    LECTURE_HALL = "Lecture Hall"
    LAB = "Lab"
    WORKSHOP = "Workshop"


class ConflictKind(str, Enum):
    FACULTY = "Faculty"
    ROOM = "Room"
    BATCH = "Batch"
    CAPACITY = "Capacity"


@dataclass
class Department:
    """Represents an academic department."""
    id: str
    name: str
    code: str = ""


@dataclass
class Subject:
    """Represents a subject; its category decides which rooms can host it."""
    id: str
    code: str
    name: str
    category: SubjectCategory = SubjectCategory.THEORY
    credits: int = 0
    hours_per_week: int = 0


@dataclass
class Room:
    """Represents a teaching room."""
    id: str
    name: str
    category: RoomCategory = RoomCategory.LECTURE_HALL
    capacity: int = 0


@dataclass
class Faculty:
    """Represents a faculty member and the subjects they may teach."""
    id: str
    name: str
    subject_ids: Set[str] = field(default_factory=set)

    def can_teach(self, subject_id: str) -> bool:
        """Check if this faculty member is qualified for a subject."""
        return subject_id in self.subject_ids


@dataclass
class SubjectAssignment:
    """Which faculty teach a given subject to a batch."""
    subject_id: str
    faculty_ids: List[str] = field(default_factory=list)


@dataclass
class Batch:
    """Represents a cohort of students sharing a curriculum and schedule."""
    id: str
    name: str
    student_count: int = 0
    subject_ids: List[str] = field(default_factory=list)
    fixed_room_id: Optional[str] = None
    department_id: Optional[str] = None
    semester: int = 0
    subject_assignments: List[SubjectAssignment] = field(default_factory=list)

    @property
    def all_subject_ids(self) -> List[str]:
        """Subjects from the flat list and the structured assignments, in order."""
        seen = list(self.subject_ids)
        for assignment in self.subject_assignments:
            if assignment.subject_id not in seen:
                seen.append(assignment.subject_id)
        return seen


@dataclass
class FacultyAvailability:
    """Declared teaching slots per day for one faculty member.

    A day missing from ``slots`` means the faculty member cannot teach that day.
    Faculty without any FacultyAvailability record are unrestricted.
    """
    faculty_id: str
    slots: Dict[int, Set[int]] = field(default_factory=dict)

    def allows(self, day: int, slot: int) -> bool:
        return slot in self.slots.get(day, set())


@dataclass
class ClassAssignment:
    """A class placed at (day, slot) for one batch, room and set of faculty."""
    id: str
    day: int
    slot: int
    subject_id: str
    faculty_ids: Tuple[str, ...]
    room_id: str
    batch_id: str
    locked: bool = False

    @property
    def slot_key(self) -> Tuple[int, int]:
        return (self.day, self.slot)

    def teaches(self, faculty_id: str) -> bool:
        return faculty_id in self.faculty_ids


@dataclass
class Conflict:
    """A violated constraint, attached to every draft assignment involved."""
    kind: ConflictKind
    message: str
    assignment_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'message': self.message,
            'assignmentIds': list(self.assignment_ids),
        }


@dataclass
class BreakPeriod:
    name: str
    start_time: str
    end_time: str


@dataclass
class TimetableSettings:
    """Day layout used to turn slot indices into clock times."""
    college_start_time: str = "09:00"
    college_end_time: str = "17:00"
    period_duration: int = 60
    working_days: List[str] = field(default_factory=lambda: ["Mon", "Tue", "Wed", "Thu", "Fri"])
    breaks: List[BreakPeriod] = field(
        default_factory=lambda: [BreakPeriod("Lunch Break", "13:00", "14:00")]
    )


@dataclass
class RankedSubstitute:
    """A faculty member who could cover an assignment, with the metrics behind the score."""
    faculty: Faculty
    score: int
    workload: int
    gaps: int
    can_teach_original: bool
    allocated_to_batch: bool
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'facultyId': self.faculty.id,
            'name': self.faculty.name,
            'score': self.score,
            'workload': self.workload,
            'gaps': self.gaps,
            'canTeachOriginal': self.can_teach_original,
            'allocatedToBatch': self.allocated_to_batch,
            'reasons': list(self.reasons),
        }


@dataclass
class Snapshot:
    """A complete dataset: every entity collection plus the schedule."""
    departments: List[Department] = field(default_factory=list)
    rooms: List[Room] = field(default_factory=list)
    subjects: List[Subject] = field(default_factory=list)
    faculty: List[Faculty] = field(default_factory=list)
    batches: List[Batch] = field(default_factory=list)
    schedule: List[ClassAssignment] = field(default_factory=list)
    availability: List[FacultyAvailability] = field(default_factory=list)
    settings: Optional[TimetableSettings] = None

    def counts(self) -> Dict[str, int]:
        return {
            'departments': len(self.departments),
            'rooms': len(self.rooms),
            'subjects': len(self.subjects),
            'faculty': len(self.faculty),
            'batches': len(self.batches),
            'schedule': len(self.schedule),
            'availability': len(self.availability),
        }
