"""
Reference migration for bulk imports.

Snapshots exported by older system generations use ad-hoc identifiers. The
migrator gives every record a canonical id (PREFIX-SLUG-XXX) and rewrites
every cross-entity reference to match. Entity types are processed in
dependency order, each one using the remap tables built before it:

    departments -> rooms -> subjects -> faculty -> batches
    -> faculty availability -> schedule

A reference that no remap table can resolve is left unchanged and reported
as dangling; the data is kept rather than dropped.
"""
import logging
import random
import re
import string
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..models.entities import Batch, ClassAssignment, Faculty, Snapshot, SubjectAssignment

logger = logging.getLogger(__name__)

DEPARTMENT_PREFIX = 'DEPT'
ROOM_PREFIX = 'RM'
SUBJECT_PREFIX = 'SUB'
FACULTY_PREFIX = 'FAC'
BATCH_PREFIX = 'BAT'
SCHEDULE_PREFIX = 'SCH'

SLUG_LENGTH = 20
SUFFIX_LENGTH = 3
SCHEDULE_SUFFIX_LENGTH = 9

_ALPHABET = string.digits + string.ascii_uppercase


def slugify(name: str) -> str:
    """Upper-case a name and collapse every run of other characters to '-'."""
    slug = re.sub(r'[^A-Z0-9]+', '-', name.strip().upper()).strip('-')
    return slug[:SLUG_LENGTH].rstrip('-')


def is_canonical(record_id: str, prefix: str) -> bool:
    return record_id.startswith(f"{prefix}-")


@dataclass
class DanglingReference:
    """A reference to an id that is not part of the imported data."""
    entity: str
    record_id: str
    field: str
    reference: str

    def __str__(self) -> str:
        return f"{self.entity} {self.record_id}.{self.field} -> {self.reference}"


@dataclass
class AmbiguousReference:
    """A reference to a legacy id shared by several records."""
    entity: str
    record_id: str
    field: str
    reference: str
    resolved_to: str
    candidates: List[str]


@dataclass
class ImportReport:
    """What the migration changed and what it could not resolve."""
    remapped: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)
    dangling: List[DanglingReference] = field(default_factory=list)
    ambiguous: List[AmbiguousReference] = field(default_factory=list)

    @property
    def remap_count(self) -> int:
        return sum(len(new) for table in self.remapped.values() for new in table.values())

    def to_dict(self) -> dict:
        return {
            'remapped': self.remapped,
            'dangling': [vars(d) for d in self.dangling],
            'ambiguous': [vars(a) for a in self.ambiguous],
        }


class IdRemap:
    """
    Old -> new id table for one entity type.

    A legacy id may belong to several records, so each old id maps to the
    list of canonical ids issued for it, in input order.
    """

    def __init__(self, entity: str):
        self.entity = entity
        self.mapping: Dict[str, List[str]] = defaultdict(list)
        self.known: Set[str] = set()

    def add(self, old_id: str, new_id: str) -> None:
        if old_id in self.known and old_id not in self.mapping:
            # A record already kept this id; it stays a candidate.
            self.mapping[old_id].append(old_id)
        self.known.add(new_id)
        self.mapping[old_id].append(new_id)

    def keep(self, record_id: str) -> None:
        self.known.add(record_id)

    def candidates(self, old_id: str) -> List[str]:
        return self.mapping.get(old_id, [])


class ReferenceMigrator:
    """
    Canonicalizes a snapshot's identifiers.

    Args:
        suffix: Callable returning a random base-36 string of the requested
            length; injectable for deterministic tests
    """

    def __init__(self, suffix: Optional[Callable[[int], str]] = None):
        self._suffix = suffix or self._random_suffix
        self._issued: Set[str] = set()
        self.report = ImportReport()

    @staticmethod
    def _random_suffix(length: int) -> str:
        return ''.join(random.choice(_ALPHABET) for _ in range(length))

    def readable_id(self, prefix: str, name: str) -> str:
        """Issue PREFIX-SLUG-XXX, unique within this migration."""
        slug = slugify(name) or 'ITEM'
        while True:
            candidate = f"{prefix}-{slug}-{self._suffix(SUFFIX_LENGTH)}"
            if candidate not in self._issued:
                self._issued.add(candidate)
                return candidate

    def schedule_id(self) -> str:
        while True:
            candidate = f"{SCHEDULE_PREFIX}-{self._suffix(SCHEDULE_SUFFIX_LENGTH)}"
            if candidate not in self._issued:
                self._issued.add(candidate)
                return candidate

    def _canonicalize(self, records: Sequence, prefix: str, entity: str,
                      natural_key: Callable) -> Tuple[IdRemap, List[str]]:
        """
        Assign ids to one entity type.

        Records whose id already has the prefix keep it unless an earlier
        record already claimed the same id.

        Returns:
            The remap table and the new id of each record, in input order
        """
        remap = IdRemap(entity)
        new_ids = []
        for record in records:
            if is_canonical(record.id, prefix) and record.id not in remap.known:
                remap.keep(record.id)
                self._issued.add(record.id)
                new_ids.append(record.id)
                continue

            new_id = self.readable_id(prefix, natural_key(record))
            remap.add(record.id, new_id)
            new_ids.append(new_id)

        for old_id, issued in remap.mapping.items():
            if len(issued) > 1:
                logger.warning(f"{len(issued)} {entity} records share the legacy id {old_id!r}")
            logger.debug(f"{entity} {old_id} -> {', '.join(issued)}")
        self.report.remapped[entity] = {old: list(new) for old, new in remap.mapping.items()}
        return remap, new_ids

    def _resolve(self, remap: IdRemap, reference: Optional[str], entity: str, record_id: str,
                 field_name: str, prefer: Optional[Callable[[str], bool]] = None) -> Optional[str]:
        """
        Rewrite one reference through a remap table.

        When a legacy id was shared by several records, ``prefer`` picks the
        intended one by context; without a unique match the first record
        wins and the choice is reported.
        """
        if not reference:
            return reference

        candidates = remap.candidates(reference)
        if not candidates:
            if reference not in remap.known:
                dangling = DanglingReference(entity, record_id, field_name, reference)
                self.report.dangling.append(dangling)
                logger.warning(f"Unresolved reference {dangling}, left unchanged")
            return reference

        if len(candidates) == 1:
            return candidates[0]

        matches = [c for c in candidates if prefer(c)] if prefer else []
        if len(matches) == 1:
            return matches[0]

        chosen = (matches or candidates)[0]
        self.report.ambiguous.append(
            AmbiguousReference(entity, record_id, field_name, reference, chosen, list(candidates))
        )
        logger.warning(
            f"Ambiguous reference {entity} {record_id}.{field_name} -> {reference}, using {chosen}"
        )
        return chosen

    def migrate(self, snapshot: Snapshot) -> Tuple[Snapshot, ImportReport]:
        """
        Canonicalize ids and rewrite references.

        Returns:
            The canonical snapshot and a report of remaps, dangling and
            ambiguous references
        """
        self.report = ImportReport()
        self._issued = set()

        departments, department_remap = self._migrate_simple(
            snapshot.departments, DEPARTMENT_PREFIX, 'departments', lambda d: d.code or d.name)
        rooms, room_remap = self._migrate_simple(
            snapshot.rooms, ROOM_PREFIX, 'rooms', lambda r: r.name)
        subjects, subject_remap = self._migrate_simple(
            snapshot.subjects, SUBJECT_PREFIX, 'subjects', lambda s: s.code or s.name)

        faculty, faculty_remap = self._migrate_faculty(snapshot.faculty, subject_remap)
        teaches = {f.id: f.subject_ids for f in faculty}

        batches, batch_remap = self._migrate_batches(
            snapshot.batches, department_remap, room_remap, subject_remap, faculty_remap, teaches)
        studies = {b.id: set(b.all_subject_ids) for b in batches}

        availability = [
            replace(entry, faculty_id=self._resolve(
                faculty_remap, entry.faculty_id, 'facultyAvailability', entry.faculty_id, 'facultyId'))
            for entry in snapshot.availability
        ]

        schedule = self._migrate_schedule(
            snapshot.schedule, batch_remap, room_remap, subject_remap, faculty_remap, teaches, studies)

        canonical = Snapshot(
            departments=departments,
            rooms=rooms,
            subjects=subjects,
            faculty=faculty,
            batches=batches,
            schedule=schedule,
            availability=availability,
            settings=snapshot.settings,
        )

        logger.info(
            f"Migration issued {self.report.remap_count} new ids; "
            f"{len(self.report.dangling)} dangling and {len(self.report.ambiguous)} ambiguous references"
        )
        return canonical, self.report

    def _migrate_simple(self, records: Sequence, prefix: str, entity: str, natural_key):
        remap, new_ids = self._canonicalize(records, prefix, entity, natural_key)
        return [replace(record, id=new_id) for record, new_id in zip(records, new_ids)], remap

    def _migrate_faculty(self, records: Sequence[Faculty],
                         subject_remap: IdRemap) -> Tuple[List[Faculty], IdRemap]:
        remap, new_ids = self._canonicalize(records, FACULTY_PREFIX, 'faculty', lambda f: f.name)
        migrated = []
        for record, new_id in zip(records, new_ids):
            subjects = {
                self._resolve(subject_remap, s, 'faculty', new_id, 'subjectIds')
                for s in sorted(record.subject_ids)
            }
            migrated.append(replace(record, id=new_id, subject_ids=subjects))
        return migrated, remap

    def _migrate_batches(self, records: Sequence[Batch], department_remap: IdRemap,
                         room_remap: IdRemap, subject_remap: IdRemap, faculty_remap: IdRemap,
                         teaches: Dict[str, Set[str]]) -> Tuple[List[Batch], IdRemap]:
        remap, new_ids = self._canonicalize(records, BATCH_PREFIX, 'batches', lambda b: b.name)
        migrated = []
        for record, new_id in zip(records, new_ids):
            assignments = []
            for entry in record.subject_assignments:
                subject_id = self._resolve(subject_remap, entry.subject_id, 'batches', new_id,
                                           'subjectAssignments.subjectId')
                assignments.append(SubjectAssignment(
                    subject_id=subject_id,
                    faculty_ids=[
                        self._resolve(faculty_remap, f, 'batches', new_id, 'subjectAssignments.facultyIds',
                                      prefer=lambda c, s=subject_id: s in teaches.get(c, ()))
                        for f in entry.faculty_ids
                    ],
                ))

            migrated.append(replace(
                record,
                id=new_id,
                fixed_room_id=self._resolve(room_remap, record.fixed_room_id, 'batches', new_id, 'fixedRoomId'),
                department_id=self._resolve(department_remap, record.department_id, 'batches', new_id,
                                            'departmentId'),
                subject_ids=[
                    self._resolve(subject_remap, s, 'batches', new_id, 'subjectIds')
                    for s in record.subject_ids
                ],
                subject_assignments=assignments,
            ))
        return migrated, remap

    def _migrate_schedule(self, records: Iterable[ClassAssignment], batch_remap: IdRemap,
                          room_remap: IdRemap, subject_remap: IdRemap, faculty_remap: IdRemap,
                          teaches: Dict[str, Set[str]],
                          studies: Dict[str, Set[str]]) -> List[ClassAssignment]:
        migrated = []
        for record in records:
            if record.id and is_canonical(record.id, SCHEDULE_PREFIX) and record.id not in self._issued:
                new_id = record.id
                self._issued.add(new_id)
            else:
                new_id = self.schedule_id()

            subject_id = self._resolve(subject_remap, record.subject_id, 'schedule', new_id, 'subjectId')
            migrated.append(replace(
                record,
                id=new_id,
                subject_id=subject_id,
                batch_id=self._resolve(batch_remap, record.batch_id, 'schedule', new_id, 'batchId',
                                       prefer=lambda c: subject_id in studies.get(c, ())),
                room_id=self._resolve(room_remap, record.room_id, 'schedule', new_id, 'roomId'),
                faculty_ids=tuple(
                    self._resolve(faculty_remap, f, 'schedule', new_id, 'facultyIds',
                                  prefer=lambda c: subject_id in teaches.get(c, ()))
                    for f in record.faculty_ids
                ),
            ))
        return migrated


def migrate_snapshot(snapshot: Snapshot,
                     suffix: Optional[Callable[[int], str]] = None) -> Tuple[Snapshot, ImportReport]:
    """Canonicalize a snapshot with a fresh migrator."""
    return ReferenceMigrator(suffix=suffix).migrate(snapshot)
