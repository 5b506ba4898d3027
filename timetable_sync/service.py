"""
Schedule service.

Owns the reference tables, the local schedule and the availability table,
and exposes the operations callers use: conflict checks, availability
queries, saving, resetting, importing and generating schedules.

The service is passed by reference to the conflict detector and the
synchronizer; there is no module-level state.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .algorithms import availability as rules
from .algorithms.conflicts import ConflictDetector, ConflictMap
from .commands import Command, PendingConfirmation, ResetSchedule, SaveSchedule
from .config import DEFAULT_CHUNK_SIZE, validate_settings
from .data.converter import COLLECTIONS, SETTINGS_COLLECTION, SETTINGS_DOC_ID, DataConverter
from .data.importer import ImportReport, ReferenceMigrator
from .errors import ValidationError
from .models.entities import (
    Batch, ClassAssignment, Department, Faculty, FacultyAvailability, RankedSubstitute, Room,
    Snapshot, Subject, TimetableSettings
)
from .store.base import DocumentStore
from .synchronizer import BulkSynchronizer, Confirmation, SyncResult

logger = logging.getLogger(__name__)


@dataclass
class GenerationRequest:
    """Everything an external schedule generator is given."""
    subjects: List[Subject]
    faculty: List[Faculty]
    rooms: List[Room]
    batches: List[Batch]
    availability: List[FacultyAvailability]
    settings: TimetableSettings
    batch_id: Optional[str] = None
    locked: List[ClassAssignment] = field(default_factory=list)
    committed: List[ClassAssignment] = field(default_factory=list)


Generator = Callable[[GenerationRequest], Iterable[Union[ClassAssignment, Dict[str, Any]]]]


@dataclass
class Draft:
    """A candidate schedule, annotated with its conflicts."""
    assignments: List[ClassAssignment]
    conflicts: ConflictMap
    batch_id: Optional[str] = None
    dropped: List[str] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


@dataclass
class ImportResult:
    """Canonical snapshot, migration report and outcome of the store writes."""
    snapshot: Snapshot
    report: ImportReport
    sync: SyncResult

    @property
    def success(self) -> bool:
        return self.sync.success


class ScheduleService:
    """
    Single owner of timetable state.

    Reference tables are dictionaries keyed by id. ``assignments`` is the
    local schedule; ``external`` holds committed assignments (approved
    schedules of other terms, active substitutions) that drafts are checked
    against but that are never reported themselves.
    """

    def __init__(self, store: DocumentStore, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.store = store
        self.departments: Dict[str, Department] = {}
        self.rooms: Dict[str, Room] = {}
        self.subjects: Dict[str, Subject] = {}
        self.faculty: Dict[str, Faculty] = {}
        self.batches: Dict[str, Batch] = {}
        self.availability: Dict[str, FacultyAvailability] = {}
        self.assignments: List[ClassAssignment] = []
        self.external: List[ClassAssignment] = []
        self.settings = TimetableSettings()

        self.synchronizer = BulkSynchronizer(store, state=self, chunk_size=chunk_size)
        self.detector = ConflictDetector(self)

        self._unsubscribe: List[Callable[[], None]] = []
        self._stale = False

    # --- state loading ---

    def refresh(self) -> None:
        """Reload every table and the schedule from the store."""
        for collection in list(COLLECTIONS.values()) + [SETTINGS_COLLECTION]:
            self._load(collection, self.store.get_all(collection))
        self._stale = False
        logger.info(
            f"Loaded {len(self.assignments)} assignments, {len(self.batches)} batches, "
            f"{len(self.faculty)} faculty, {len(self.rooms)} rooms"
        )

    def _load(self, collection: str, documents: List[Dict[str, Any]]) -> None:
        convert = DataConverter
        if collection == COLLECTIONS['departments']:
            self.departments = {d.id: d for d in convert.parse_many(documents, convert.department_from_doc, collection)}
        elif collection == COLLECTIONS['rooms']:
            self.rooms = {r.id: r for r in convert.parse_many(documents, convert.room_from_doc, collection)}
        elif collection == COLLECTIONS['subjects']:
            self.subjects = {s.id: s for s in convert.parse_many(documents, convert.subject_from_doc, collection)}
        elif collection == COLLECTIONS['faculty']:
            self.faculty = {f.id: f for f in convert.parse_many(documents, convert.faculty_from_doc, collection)}
        elif collection == COLLECTIONS['batches']:
            self.batches = {b.id: b for b in convert.parse_many(documents, convert.batch_from_doc, collection)}
        elif collection == COLLECTIONS['availability']:
            self.availability = {
                a.faculty_id: a
                for a in convert.parse_many(documents, convert.availability_from_doc, collection)
            }
        elif collection == COLLECTIONS['schedule']:
            self.assignments = convert.parse_many(documents, convert.assignment_from_doc, collection)
        elif collection == SETTINGS_COLLECTION:
            config = next((d for d in documents if d.get('id') == SETTINGS_DOC_ID), None)
            self.settings = convert.settings_from_doc(config) if config else TimetableSettings()

    def watch(self) -> None:
        """
        Follow store changes. While a synchronization is running, changes
        are only noted; state is reloaded once it has finished.
        """
        if self._unsubscribe:
            return
        for collection in list(COLLECTIONS.values()) + [SETTINGS_COLLECTION]:
            self._unsubscribe.append(self.store.subscribe(collection, self._on_change))

    def unwatch(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def _on_change(self, collection: str, documents: List[Dict[str, Any]]) -> None:
        if self.synchronizer.busy:
            self._stale = True
            return
        self._load(collection, documents)

    def reconcile_if_stale(self) -> None:
        if self._stale:
            self.refresh()

    # --- local state used by the synchronizer and commands ---

    def replace_assignments(self, assignments: Iterable[ClassAssignment],
                            batch_id: Optional[str] = None) -> None:
        assignments = list(assignments)
        if batch_id is None:
            self.assignments = assignments
        else:
            self.assignments = [a for a in self.assignments if a.batch_id != batch_id] + assignments

    def clear_assignments(self) -> None:
        self.assignments = []

    def get_assignment(self, assignment_id: str) -> Optional[ClassAssignment]:
        return next((a for a in self.assignments if a.id == assignment_id), None)

    def update_assignment(self, assignment: ClassAssignment) -> None:
        """Swap in a new version of an assignment, matched by id."""
        self.assignments = [assignment if a.id == assignment.id else a for a in self.assignments]

    def remove_assignment(self, assignment_id: str) -> Optional[ClassAssignment]:
        removed = self.get_assignment(assignment_id)
        self.assignments = [a for a in self.assignments if a.id != assignment_id]
        return removed

    def assignments_for_batch(self, batch_id: str) -> List[ClassAssignment]:
        return [a for a in self.assignments if a.batch_id == batch_id]

    def snapshot(self) -> Snapshot:
        return Snapshot(
            departments=list(self.departments.values()),
            rooms=list(self.rooms.values()),
            subjects=list(self.subjects.values()),
            faculty=list(self.faculty.values()),
            batches=list(self.batches.values()),
            schedule=list(self.assignments),
            availability=list(self.availability.values()),
            settings=self.settings,
        )

    # --- commands ---

    def apply(self, command: Command) -> Tuple[Any, PendingConfirmation]:
        """
        Apply a command locally and hand back its pending store write.

        Raises:
            ValidationError: before any state changes
        """
        command.validate(self)
        optimistic = command.apply_locally(self)
        return optimistic, PendingConfirmation(self, command)

    def save_schedule(self, assignments: Iterable[ClassAssignment],
                      scope: Optional[str] = None) -> SyncResult:
        """Replace the schedule (or one batch of it) locally, then in the store."""
        _, pending = self.apply(SaveSchedule(list(assignments), scope))
        return pending.confirm()

    def reset_schedule(self, confirm: Confirmation = False) -> SyncResult:
        """Clear all assignments once confirmed."""
        _, pending = self.apply(ResetSchedule(confirm))
        return pending.confirm()

    # --- validation ---

    def check_conflicts(self, draft: Iterable[ClassAssignment],
                        external: Optional[Iterable[ClassAssignment]] = None) -> ConflictMap:
        """Conflicts of a draft; ``external`` defaults to the service's committed set."""
        return self.detector.check(draft, self.external if external is None else external)

    def is_faculty_available(self, faculty_id: str, day: int, slot: int,
                             assignments: Optional[Iterable[ClassAssignment]] = None) -> bool:
        placed = self.assignments + self.external if assignments is None else assignments
        return rules.is_faculty_available(faculty_id, day, slot, placed, self.availability)

    def is_room_available(self, room_id: str, day: int, slot: int, batch_id: str, subject_id: str,
                          assignments: Optional[Iterable[ClassAssignment]] = None) -> bool:
        room = self.rooms.get(room_id)
        batch = self.batches.get(batch_id)
        subject = self.subjects.get(subject_id)
        if room is None or batch is None or subject is None:
            return False
        placed = self.assignments + self.external if assignments is None else assignments
        return rules.is_room_available(room_id, day, slot, batch, subject, room, placed)

    def is_batch_available(self, batch_id: str, day: int, slot: int,
                           assignments: Optional[Iterable[ClassAssignment]] = None) -> bool:
        placed = self.assignments + self.external if assignments is None else assignments
        return rules.is_batch_available(batch_id, day, slot, placed)

    def rank_substitutes(self, assignment_id: str) -> List[RankedSubstitute]:
        """
        Faculty who could cover an assignment, best first.

        Raises:
            ValidationError: if the assignment is unknown
        """
        assignment = self.get_assignment(assignment_id)
        if assignment is None:
            raise ValidationError(f"Unknown assignment {assignment_id}")
        return rules.rank_substitutes(
            assignment, self.faculty.values(), self.assignments + self.external,
            self.availability, self.batches.get(assignment.batch_id),
        )

    # --- import ---

    def import_snapshot(self, raw: Dict[str, Any],
                        migrator: Optional[ReferenceMigrator] = None) -> ImportResult:
        """
        Canonicalize a raw dataset and replace everything with it.

        Local state is replaced first; the store is then rewritten collection
        by collection in chunked transactions, the schedule last.

        Raises:
            ValidationError: if required collections are missing or a record
                is malformed; nothing has changed in that case
        """
        snapshot = DataConverter.snapshot_from_raw(raw)
        if snapshot.settings is not None:
            validate_settings(snapshot.settings)
        logger.info(f"Importing snapshot: {snapshot.counts()}")

        canonical, report = (migrator or ReferenceMigrator()).migrate(snapshot)

        self._set_tables(canonical)
        self.synchronizer.apply_locally(canonical.schedule)

        documents = DataConverter.snapshot_to_documents(canonical)
        schedule_docs = documents.pop(COLLECTIONS['schedule'])

        sync = SyncResult(success=True)
        for collection, docs in documents.items():
            result = self.synchronizer.replace_collection(collection, docs)
            sync = sync.merge(result)
            if not result.success:
                break
        else:
            logger.debug(f"Replacing schedule with {len(schedule_docs)} assignments")
            sync = sync.merge(self.synchronizer.persist_schedule(canonical.schedule))

        if sync.success:
            logger.info(f"Import complete: {sync.written} documents in {sync.transactions} transactions")
            self.reconcile_if_stale()
        else:
            logger.error(f"Import failed after {sync.transactions} transactions: {sync.detail}")
            self.refresh()

        return ImportResult(snapshot=canonical, report=report, sync=sync)

    def load_snapshot(self, snapshot: Snapshot) -> None:
        """Replace local state with a snapshot without writing to the store."""
        self._set_tables(snapshot)
        self.assignments = list(snapshot.schedule)

    def _set_tables(self, snapshot: Snapshot) -> None:
        self.departments = {d.id: d for d in snapshot.departments}
        self.rooms = {r.id: r for r in snapshot.rooms}
        self.subjects = {s.id: s for s in snapshot.subjects}
        self.faculty = {f.id: f for f in snapshot.faculty}
        self.batches = {b.id: b for b in snapshot.batches}
        self.availability = {a.faculty_id: a for a in snapshot.availability}
        if snapshot.settings is not None:
            self.settings = snapshot.settings

    # --- generation ---

    def check_generation_preconditions(self, batch_id: Optional[str] = None) -> None:
        """
        Raises:
            ValidationError: when resources are missing or the batch is unknown
            ConfigurationError: when the timetable settings are invalid
        """
        missing = [name for name, table in
                   (('subjects', self.subjects), ('faculty', self.faculty), ('rooms', self.rooms))
                   if not table]
        if missing:
            raise ValidationError(f"Add {', '.join(missing)} before generating a schedule")
        if not self.batches:
            raise ValidationError("Add at least one batch before generating a schedule")
        if batch_id is not None and batch_id not in self.batches:
            raise ValidationError(f"Select a valid batch; {batch_id} does not exist")
        validate_settings(self.settings)

    def generate_schedule(self, generator: Generator, batch_id: Optional[str] = None) -> Draft:
        """
        Ask an external generator for a candidate schedule.

        Locked assignments in scope are kept; candidates that would put the
        same batch in the same (day, slot) as a locked one are dropped. The
        draft is checked against committed assignments outside its scope.
        Nothing is saved.
        """
        self.check_generation_preconditions(batch_id)

        in_scope = self.assignments if batch_id is None else self.assignments_for_batch(batch_id)
        locked = [a for a in in_scope if a.locked]
        committed = list(self.external)
        if batch_id is not None:
            committed += [a for a in self.assignments if a.batch_id != batch_id]

        request = GenerationRequest(
            subjects=list(self.subjects.values()),
            faculty=list(self.faculty.values()),
            rooms=list(self.rooms.values()),
            batches=list(self.batches.values()),
            availability=list(self.availability.values()),
            settings=self.settings,
            batch_id=batch_id,
            locked=locked,
            committed=committed,
        )
        candidates = [self._candidate(c) for c in generator(request)]
        logger.info(f"Generator returned {len(candidates)} candidate assignments")

        occupied = {(a.day, a.slot, a.batch_id) for a in locked}
        taken_ids = {a.id for a in locked}
        assignments = list(locked)
        dropped = []
        for candidate in candidates:
            if batch_id is not None and candidate.batch_id != batch_id:
                dropped.append(candidate.id)
                continue
            key = (candidate.day, candidate.slot, candidate.batch_id)
            if key in occupied or candidate.id in taken_ids:
                dropped.append(candidate.id)
                continue
            assignments.append(candidate)
            taken_ids.add(candidate.id)

        if dropped:
            logger.info(f"Dropped {len(dropped)} candidates outside scope or clashing with locked classes")

        conflicts = self.check_conflicts(assignments, committed)
        return Draft(assignments=assignments, conflicts=conflicts, batch_id=batch_id, dropped=dropped)

    @staticmethod
    def _candidate(candidate: Union[ClassAssignment, Dict[str, Any]]) -> ClassAssignment:
        if isinstance(candidate, ClassAssignment):
            return candidate
        document = dict(candidate)
        document.setdefault('id', f"SCH-{uuid.uuid4().hex[:9].upper()}")
        return DataConverter.assignment_from_doc(document)
