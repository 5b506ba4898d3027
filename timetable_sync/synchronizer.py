"""
Bulk schedule synchronization.

Makes the persisted schedule match a freshly computed one. Stores limit how
many operations a single transaction may hold, so existing documents are
deleted and new ones written in fixed-size chunks, one committed transaction
per chunk, strictly one after another.

Chunks are atomic; the operation as a whole is not. A failure part way
leaves the chunks committed before it in place and is reported in the
returned SyncResult (``partial``). Reloading state from the store
reconciles the local view afterwards.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar, Union

from .config import DEFAULT_CHUNK_SIZE, validate_chunk_size
from .data.converter import COLLECTIONS, DataConverter
from .errors import PersistenceError, ValidationError
from .models.entities import ClassAssignment
from .store.base import Document, DocumentStore, WriteOperation

logger = logging.getLogger(__name__)

SCHEDULE_COLLECTION = COLLECTIONS['schedule']
RETRY_MESSAGE = "Error saving schedule to the store. Please try again."

T = TypeVar('T')
Scope = Tuple[str, Optional[str]]
Confirmation = Union[bool, Callable[[], bool]]


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


@dataclass
class SyncResult:
    """Outcome of a synchronization operation."""
    success: bool
    scope: Optional[str] = None
    deleted: int = 0
    written: int = 0
    delete_transactions: int = 0
    write_transactions: int = 0
    error: Optional[str] = None
    detail: Optional[str] = None
    cancelled: bool = False

    @property
    def transactions(self) -> int:
        return self.delete_transactions + self.write_transactions

    @property
    def partial(self) -> bool:
        """True when the operation failed after committing some chunks."""
        return not self.success and self.transactions > 0

    def merge(self, other: 'SyncResult') -> 'SyncResult':
        return SyncResult(
            success=self.success and other.success,
            scope=self.scope,
            deleted=self.deleted + other.deleted,
            written=self.written + other.written,
            delete_transactions=self.delete_transactions + other.delete_transactions,
            write_transactions=self.write_transactions + other.write_transactions,
            error=self.error or other.error,
            detail=self.detail or other.detail,
            cancelled=self.cancelled or other.cancelled,
        )

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'scope': self.scope,
            'deleted': self.deleted,
            'written': self.written,
            'deleteTransactions': self.delete_transactions,
            'writeTransactions': self.write_transactions,
            'partial': self.partial,
            'cancelled': self.cancelled,
            'error': self.error,
        }


class ScopeLock:
    """
    Serialises synchronization operations whose scopes overlap.

    A scope is (collection, batch_id). A batch_id of None covers the whole
    collection and so overlaps every scope of that collection.
    """

    def __init__(self):
        self._condition = threading.Condition()
        self._active: List[Scope] = []

    @staticmethod
    def overlaps(first: Scope, second: Scope) -> bool:
        if first[0] != second[0]:
            return False
        return first[1] is None or second[1] is None or first[1] == second[1]

    @property
    def busy(self) -> bool:
        with self._condition:
            return bool(self._active)

    @contextmanager
    def hold(self, scope: Scope):
        with self._condition:
            while any(self.overlaps(scope, active) for active in self._active):
                self._condition.wait()
            self._active.append(scope)
        try:
            yield
        finally:
            with self._condition:
                self._active.remove(scope)
                self._condition.notify_all()


class BulkSynchronizer:
    """
    Replaces persisted assignment sets chunk by chunk.

    ``state`` is the object owning the local schedule (the ScheduleService).
    When given, it is updated optimistically before any store write through
    ``replace_assignments(assignments, batch_id)`` and ``clear_assignments()``.
    """

    def __init__(self, store: DocumentStore, state=None,
                 chunk_size: int = DEFAULT_CHUNK_SIZE, lock: Optional[ScopeLock] = None):
        validate_chunk_size(chunk_size, store.max_batch_operations)
        self.store = store
        self.state = state
        self.chunk_size = chunk_size
        self.lock = lock or ScopeLock()

    @property
    def busy(self) -> bool:
        return self.lock.busy

    def validate_schedule(self, assignments: Sequence[ClassAssignment],
                          target_scope: Optional[str] = None) -> None:
        """
        Check a replacement set before anything changes.

        Raises:
            ValidationError: on duplicate ids, on assignments outside the
                target batch, or on ids already used by another batch
        """
        seen = set()
        for assignment in assignments:
            if assignment.id in seen:
                raise ValidationError(f"Duplicate assignment id {assignment.id}")
            seen.add(assignment.id)

        if target_scope is None:
            return

        outside = [a.id for a in assignments if a.batch_id != target_scope]
        if outside:
            raise ValidationError(
                f"Assignments {', '.join(outside[:5])} do not belong to batch {target_scope}"
            )

        # The store is authoritative; local state may be missing or stale.
        taken = {
            d['id'] for d in self.store.get_all(SCHEDULE_COLLECTION)
            if d.get('batchId') != target_scope
        }
        if self.state is not None:
            taken.update(a.id for a in self.state.assignments if a.batch_id != target_scope)
        reused = sorted(seen & taken)
        if reused:
            raise ValidationError(
                f"Assignment ids {', '.join(reused[:5])} are used by other batches"
            )

    def apply_locally(self, assignments: Sequence[ClassAssignment],
                      target_scope: Optional[str] = None) -> None:
        if self.state is not None:
            self.state.replace_assignments(assignments, target_scope)

    def save_schedule(self, assignments: Iterable[ClassAssignment],
                      target_scope: Optional[str] = None) -> SyncResult:
        """
        Replace the schedule, or only one batch's part of it.

        Args:
            assignments: The new assignment set
            target_scope: Batch id. When given, only that batch's assignments
                are replaced; every other batch is left untouched.

        Returns:
            SyncResult; on failure ``partial`` tells whether chunks were
            already committed
        """
        assignments = list(assignments)
        self.validate_schedule(assignments, target_scope)
        self.apply_locally(assignments, target_scope)
        return self.persist_schedule(assignments, target_scope)

    def persist_schedule(self, assignments: Sequence[ClassAssignment],
                         target_scope: Optional[str] = None) -> SyncResult:
        """Write a replacement set to the store without touching local state."""
        documents = [DataConverter.assignment_to_doc(a) for a in assignments]
        where = ('batchId', target_scope) if target_scope is not None else None
        result = self._replace(SCHEDULE_COLLECTION, documents, where, target_scope)

        if result.success:
            logger.info(
                f"Saved {result.written} assignments"
                + (f" for batch {target_scope}" if target_scope else "")
                + f" in {result.transactions} transactions"
            )
        return result

    def reset_schedule(self, confirm: Confirmation = False) -> SyncResult:
        """
        Clear every assignment, locally and in the store.

        Args:
            confirm: True, or a callable asked for confirmation. Nothing
                happens unless it confirms.
        """
        confirmed = confirm() if callable(confirm) else bool(confirm)
        if not confirmed:
            logger.info("Schedule reset cancelled")
            return SyncResult(success=False, cancelled=True)

        if self.state is not None:
            self.state.clear_assignments()
        return self.persist_reset()

    def persist_reset(self) -> SyncResult:
        """Delete every persisted assignment without touching local state."""
        result = self._replace(SCHEDULE_COLLECTION, [], None, None)
        if result.success:
            logger.info(f"Schedule reset, {result.deleted} assignments removed")
        return result

    def replace_collection(self, collection: str, documents: Sequence[Document]) -> SyncResult:
        """Replace every document of a collection, chunked like the schedule."""
        return self._replace(collection, list(documents), None, None)

    def _replace(self, collection: str, documents: Sequence[Document],
                 where, scope: Optional[str]) -> SyncResult:
        result = SyncResult(success=True, scope=scope)

        with self.lock.hold((collection, scope)):
            try:
                existing = self.store.get_all(collection, where)

                for chunk in chunked(existing, self.chunk_size):
                    self.store.commit([WriteOperation.delete(collection, d['id']) for d in chunk])
                    result.deleted += len(chunk)
                    result.delete_transactions += 1
                    logger.debug(f"Deleted {len(chunk)} documents from {collection}")

                for chunk in chunked(documents, self.chunk_size):
                    self.store.commit([WriteOperation.set(collection, d['id'], d) for d in chunk])
                    result.written += len(chunk)
                    result.write_transactions += 1
                    logger.debug(f"Wrote {len(chunk)} documents to {collection}")

            except PersistenceError as e:
                logger.error(
                    f"Replacing {collection} failed after {result.transactions} committed "
                    f"transactions: {e}"
                )
                result.success = False
                result.error = RETRY_MESSAGE
                result.detail = str(e)

        return result
