"""
Availability rules.

Pure predicates answering "is this resource free at (day, slot)". They are
used to filter candidates during manual placement and mirror the clashes the
conflict detector reports.
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..models.entities import (
    Batch, ClassAssignment, Faculty, FacultyAvailability, RankedSubstitute, Room, RoomCategory,
    Subject, SubjectCategory
)

_REQUIRED_ROOM_CATEGORY = {
    SubjectCategory.PRACTICAL: RoomCategory.LAB,
    SubjectCategory.WORKSHOP: RoomCategory.WORKSHOP,
}


def required_room_category(subject: Subject) -> RoomCategory:
    """Practicals need a lab, workshops a workshop, everything else a lecture hall."""
    return _REQUIRED_ROOM_CATEGORY.get(subject.category, RoomCategory.LECTURE_HALL)


def room_suits_subject(room: Room, subject: Subject) -> bool:
    return room.category == required_room_category(subject)


def _availability_lookup(
    availability: Optional[Iterable[FacultyAvailability]]
) -> Mapping[str, FacultyAvailability]:
    if availability is None:
        return {}
    if isinstance(availability, Mapping):
        return availability
    return {entry.faculty_id: entry for entry in availability}


def is_faculty_available(faculty_id: str,
                         day: int,
                         slot: int,
                         all_assignments: Iterable[ClassAssignment],
                         availability: Optional[Iterable[FacultyAvailability]] = None) -> bool:
    """
    Check whether a faculty member can take a class at (day, slot).

    Args:
        faculty_id: Faculty member to check
        day: Day index
        slot: Slot index within the day
        all_assignments: Assignments already placed
        availability: Declared availability, as a list or a faculty_id mapping.
            Faculty without an entry are treated as always available.

    Returns:
        False if the declared availability excludes the slot or the faculty
        member already teaches at (day, slot), True otherwise
    """
    declared = _availability_lookup(availability).get(faculty_id)
    if declared is not None and not declared.allows(day, slot):
        return False

    return not any(
        a.day == day and a.slot == slot and a.teaches(faculty_id)
        for a in all_assignments
    )


def is_room_available(room_id: str,
                      day: int,
                      slot: int,
                      batch: Batch,
                      subject: Subject,
                      room: Room,
                      all_assignments: Iterable[ClassAssignment]) -> bool:
    """
    Check whether a room can host a batch for a subject at (day, slot).

    The room must be large enough for the batch, of the category the subject
    requires, and not already booked at (day, slot).
    """
    if room.capacity < batch.student_count:
        return False
    if not room_suits_subject(room, subject):
        return False

    return not any(
        a.day == day and a.slot == slot and a.room_id == room_id
        for a in all_assignments
    )


def is_batch_available(batch_id: str,
                       day: int,
                       slot: int,
                       all_assignments: Iterable[ClassAssignment]) -> bool:
    """A batch is free unless it already has a class at (day, slot)."""
    return not any(
        a.day == day and a.slot == slot and a.batch_id == batch_id
        for a in all_assignments
    )


def free_rooms(day: int,
               slot: int,
               batch: Batch,
               subject: Subject,
               rooms: Iterable[Room],
               all_assignments: Iterable[ClassAssignment]) -> List[Room]:
    """Rooms that could host the batch for the subject at (day, slot)."""
    placed = list(all_assignments)
    return [
        room for room in rooms
        if is_room_available(room.id, day, slot, batch, subject, room, placed)
    ]


def free_faculty(day: int,
                 slot: int,
                 subject_id: str,
                 faculty: Iterable[Faculty],
                 all_assignments: Iterable[ClassAssignment],
                 availability: Optional[Iterable[FacultyAvailability]] = None) -> List[Faculty]:
    """Qualified faculty members who are free at (day, slot)."""
    placed = list(all_assignments)
    lookup: Dict[str, FacultyAvailability] = dict(_availability_lookup(availability))
    return [
        member for member in faculty
        if member.can_teach(subject_id)
        and is_faculty_available(member.id, day, slot, placed, lookup)
    ]


# Score weights: qualification and batch familiarity dominate, then a light
# workload, then a compact day.
_TEACHES_SUBJECT_POINTS = 50
_ALLOCATED_POINTS = 30
_WORKLOAD_POINTS = 15
_GAP_POINTS = 5


def schedule_gaps(faculty_id: str, all_assignments: Iterable[ClassAssignment],
                  extra_slot: Optional[Tuple[int, int]] = None) -> int:
    """Idle slots between a faculty member's classes, summed over days."""
    slots_by_day = defaultdict(set)
    for a in all_assignments:
        if a.teaches(faculty_id):
            slots_by_day[a.day].add(a.slot)
    if extra_slot is not None:
        slots_by_day[extra_slot[0]].add(extra_slot[1])

    gaps = 0
    for slots in slots_by_day.values():
        ordered = sorted(slots)
        gaps += sum(later - earlier - 1 for earlier, later in zip(ordered, ordered[1:]))
    return gaps


def rank_substitutes(assignment: ClassAssignment,
                     faculty: Iterable[Faculty],
                     all_assignments: Iterable[ClassAssignment],
                     availability: Optional[Iterable[FacultyAvailability]] = None,
                     batch: Optional[Batch] = None) -> List[RankedSubstitute]:
    """
    Rank faculty who could cover an assignment in place of its current teachers.

    Candidates must be free at the assignment's (day, slot) and qualified for
    at least one subject. Each gets a score out of 100:

    - 50 if they can teach the assignment's subject
    - 30 if they are allocated to the batch, either through the batch's
      subject allocations or by already teaching one of its classes
    - up to 15 for a light workload (one point lost per placed class)
    - up to 5 for a compact day (one point lost per idle slot, counting
      the class being covered)

    Args:
        assignment: The class that needs covering
        faculty: Every faculty member
        all_assignments: Everything already placed
        availability: Declared availability records
        batch: The assignment's batch, used for its subject allocations

    Returns:
        Candidates, best first; ties go to the lighter workload, then the
        more compact day, then the faculty id
    """
    placed = list(all_assignments)
    lookup: Dict[str, FacultyAvailability] = dict(_availability_lookup(availability))

    allocated = {
        faculty_id
        for allocation in (batch.subject_assignments if batch is not None else [])
        for faculty_id in allocation.faculty_ids
    }
    allocated.update(
        faculty_id for a in placed if a.batch_id == assignment.batch_id and a.id != assignment.id
        for faculty_id in a.faculty_ids
    )

    ranked = []
    for member in faculty:
        if member.id in assignment.faculty_ids or not member.subject_ids:
            continue
        if not is_faculty_available(member.id, assignment.day, assignment.slot, placed, lookup):
            continue

        workload = sum(1 for a in placed if a.teaches(member.id))
        gaps = schedule_gaps(member.id, placed, assignment.slot_key)
        can_teach = member.can_teach(assignment.subject_id)
        is_allocated = member.id in allocated

        score = (
            (_TEACHES_SUBJECT_POINTS if can_teach else 0)
            + (_ALLOCATED_POINTS if is_allocated else 0)
            + max(0, _WORKLOAD_POINTS - workload)
            + max(0, _GAP_POINTS - gaps)
        )

        reasons = []
        if can_teach:
            reasons.append("Can teach the original subject")
        if is_allocated:
            reasons.append("Already allocated to this batch")
        if workload < _WORKLOAD_POINTS // 2:
            reasons.append(f"Has a light workload ({workload} classes)")
        if gaps == 0:
            reasons.append("Maintains a compact schedule")

        ranked.append(RankedSubstitute(
            faculty=member, score=score, workload=workload, gaps=gaps,
            can_teach_original=can_teach, allocated_to_batch=is_allocated, reasons=reasons,
        ))

    ranked.sort(key=lambda r: (-r.score, r.workload, r.gaps, r.faculty.id))
    return ranked
