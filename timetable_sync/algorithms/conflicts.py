"""
Conflict detection for draft schedules.

A draft is checked against itself and against externally committed
assignments (approved schedules, active substitutions). Only draft
assignments receive conflicts: committed assignments take part in clashes
but are never reported, since only the draft being edited is actionable.
"""
import logging
from collections import defaultdict
from itertools import combinations
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ..models.entities import (
    Batch, ClassAssignment, Conflict, ConflictKind, Faculty, Room, Subject
)

logger = logging.getLogger(__name__)

ConflictMap = Dict[str, List[Conflict]]


def _index(records) -> Mapping:
    if records is None:
        return {}
    if isinstance(records, Mapping):
        return records
    return {record.id: record for record in records}


def _name(lookup: Mapping, record_id: str, kind: str) -> str:
    record = lookup.get(record_id)
    if record is None:
        return f"Unknown {kind} ({record_id})"
    return record.name


def _label(lookup: Mapping, record_id: str, kind: str) -> str:
    """Name plus id, so a message can be traced back to the record."""
    name = _name(lookup, record_id, kind)
    if record_id in lookup and name != record_id:
        return f"{name} ({record_id})"
    return name


def check_conflicts(draft: Iterable[ClassAssignment],
                    faculty: Iterable[Faculty],
                    rooms: Iterable[Room],
                    external: Optional[Iterable[ClassAssignment]] = None,
                    subjects: Optional[Iterable[Subject]] = None,
                    batches: Optional[Iterable[Batch]] = None) -> ConflictMap:
    """
    Find every constraint a draft violates.

    Assignments are bucketed by (day, slot) so pairs are only compared inside
    a bucket. Within a bucket each unordered pair is checked for a shared
    room, shared faculty members and a shared batch. Capacity is checked per
    draft assignment.

    Args:
        draft: Assignments being edited
        faculty: Faculty records (list or id mapping), used for messages
        rooms: Room records (list or id mapping)
        external: Committed assignments to check the draft against. An
            external assignment whose id is also in the draft is superseded
            by the draft version.
        subjects: Optional subject records, used for messages
        batches: Batch records; needed for the capacity check and for
            batch names in messages

    Returns:
        Mapping of draft assignment id to its conflicts. Assignments without
        conflicts are absent from the mapping.
    """
    draft = list(draft)
    faculty_by_id = _index(faculty)
    rooms_by_id = _index(rooms)
    subjects_by_id = _index(subjects)
    batches_by_id = _index(batches)

    draft_ids: Set[str] = {a.id for a in draft}
    committed = [a for a in (external or []) if a.id not in draft_ids]

    conflict_map: ConflictMap = {}

    def report(conflict: Conflict) -> None:
        for assignment_id in conflict.assignment_ids:
            conflict_map.setdefault(assignment_id, []).append(conflict)

    def batch_name(batch_id: str) -> str:
        return _name(batches_by_id, batch_id, "Batch")

    # Draft assignments first so bucket order, and therefore output order, is stable.
    buckets: Dict[Tuple[int, int], List[ClassAssignment]] = defaultdict(list)
    for assignment in draft + committed:
        buckets[assignment.slot_key].append(assignment)

    for entries in buckets.values():
        if len(entries) < 2:
            continue

        for first, second in combinations(entries, 2):
            involved = [a.id for a in (first, second) if a.id in draft_ids]
            if not involved:
                continue

            pair = f"{batch_name(first.batch_id)} vs {batch_name(second.batch_id)}"

            if first.room_id == second.room_id:
                room_name = _label(rooms_by_id, first.room_id, "Room")
                report(Conflict(
                    ConflictKind.ROOM,
                    f"Room {room_name} double booked ({pair})",
                    involved,
                ))

            shared_faculty = [f for f in first.faculty_ids if f in second.faculty_ids]
            for faculty_id in shared_faculty:
                faculty_name = _name(faculty_by_id, faculty_id, "Faculty")
                report(Conflict(
                    ConflictKind.FACULTY,
                    f"Faculty {faculty_name} double booked ({pair})",
                    involved,
                ))

            if first.batch_id == second.batch_id:
                report(Conflict(
                    ConflictKind.BATCH,
                    f"Batch {batch_name(first.batch_id)} has concurrent classes scheduled",
                    involved,
                ))

    for assignment in draft:
        batch = batches_by_id.get(assignment.batch_id)
        room = rooms_by_id.get(assignment.room_id)
        if batch is None or room is None:
            continue
        if room.capacity < batch.student_count:
            subject = subjects_by_id.get(assignment.subject_id)
            subject_note = f" for {subject.name}" if subject else ""
            report(Conflict(
                ConflictKind.CAPACITY,
                f"Room {_label(rooms_by_id, room.id, 'Room')} seats {room.capacity}, too small for "
                f"{_label(batches_by_id, batch.id, 'Batch')} ({batch.student_count} students){subject_note}",
                [assignment.id],
            ))

    if conflict_map:
        logger.debug(f"{len(conflict_map)} of {len(draft)} draft assignments have conflicts")

    return conflict_map


class ConflictDetector:
    """
    Conflict detection bound to a schedule service.

    Reference tables are read from the service on every call, so results
    always reflect the current state. Nothing is cached.
    """

    def __init__(self, service):
        self.service = service

    def check(self,
              draft: Iterable[ClassAssignment],
              external: Optional[Iterable[ClassAssignment]] = None) -> ConflictMap:
        return check_conflicts(
            draft,
            faculty=self.service.faculty,
            rooms=self.service.rooms,
            external=external,
            subjects=self.service.subjects,
            batches=self.service.batches,
        )
