from .entities import (
    Batch, BreakPeriod, ClassAssignment, Conflict, ConflictKind, Department,
    Faculty, FacultyAvailability, RankedSubstitute, Room, RoomCategory, Snapshot, Subject,
    SubjectAssignment, SubjectCategory, TimetableSettings,
)
