"""
Schedule commands.

Every change to the schedule is a command with two halves: a synchronous
local update that callers see immediately, and a store write performed when
the returned PendingConfirmation is confirmed. If the write fails the local
view is reconciled by reloading state from the store.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, List, Optional, Sequence, Set

from .data.converter import DataConverter
from .errors import PersistenceError, ValidationError
from .models.entities import ClassAssignment
from .store.base import WriteOperation
from .synchronizer import RETRY_MESSAGE, SCHEDULE_COLLECTION, Confirmation, SyncResult

logger = logging.getLogger(__name__)


class Command(ABC):
    """A schedule change."""

    @abstractmethod
    def apply_locally(self, service) -> Any:
        """Update local state and return the optimistic result."""

    @abstractmethod
    def persist(self, service) -> SyncResult:
        """Write the change to the store."""

    def validate(self, service) -> None:
        """Raise ValidationError before anything changes."""


class SaveSchedule(Command):
    """Replace the whole schedule, or one batch's part of it."""

    def __init__(self, assignments: Sequence[ClassAssignment], batch_id: Optional[str] = None):
        self.assignments = list(assignments)
        self.batch_id = batch_id

    def validate(self, service) -> None:
        service.synchronizer.validate_schedule(self.assignments, self.batch_id)

    def apply_locally(self, service) -> List[ClassAssignment]:
        service.synchronizer.apply_locally(self.assignments, self.batch_id)
        return list(service.assignments)

    def persist(self, service) -> SyncResult:
        return service.synchronizer.persist_schedule(self.assignments, self.batch_id)


class ResetSchedule(Command):
    """Clear the schedule once the user confirms."""

    def __init__(self, confirm: Confirmation = False):
        self.confirm = confirm
        self.confirmed = False

    def apply_locally(self, service) -> bool:
        self.confirmed = self.confirm() if callable(self.confirm) else bool(self.confirm)
        if self.confirmed:
            service.clear_assignments()
        else:
            logger.info("Schedule reset cancelled")
        return self.confirmed

    def persist(self, service) -> SyncResult:
        if not self.confirmed:
            return SyncResult(success=False, cancelled=True)
        return service.synchronizer.persist_reset()


class _SingleTransactionCommand(Command):
    """Commands small enough to commit as one transaction."""

    def operations(self, service) -> List[WriteOperation]:
        raise NotImplementedError

    def batch_ids(self) -> Set[str]:
        """Batches whose stored assignments the commit touches."""
        raise NotImplementedError

    def persist(self, service) -> SyncResult:
        operations = self.operations(service)
        batches = self.batch_ids()
        # A commit touching two batches locks the whole schedule.
        scope = next(iter(batches)) if len(batches) == 1 else None
        with service.synchronizer.lock.hold((SCHEDULE_COLLECTION, scope)):
            try:
                service.store.commit(operations)
            except PersistenceError as e:
                logger.error(f"{type(self).__name__} failed: {e}")
                return SyncResult(success=False, scope=scope, error=RETRY_MESSAGE, detail=str(e))
        return SyncResult(success=True, scope=scope, written=len(operations), write_transactions=1)

    @staticmethod
    def _movable(service, assignment_id: str) -> ClassAssignment:
        assignment = service.get_assignment(assignment_id)
        if assignment is None:
            raise ValidationError(f"Unknown assignment {assignment_id}")
        if assignment.locked:
            raise ValidationError(f"Assignment {assignment_id} is locked")
        return assignment

    @staticmethod
    def _set_operations(assignments: Sequence[ClassAssignment]) -> List[WriteOperation]:
        return [
            WriteOperation.set(SCHEDULE_COLLECTION, a.id, DataConverter.assignment_to_doc(a))
            for a in assignments
        ]


class MoveAssignment(_SingleTransactionCommand):
    """Drag an assignment to another (day, slot)."""

    def __init__(self, assignment_id: str, day: int, slot: int):
        self.assignment_id = assignment_id
        self.day = day
        self.slot = slot
        self.moved: Optional[ClassAssignment] = None

    def validate(self, service) -> None:
        self._movable(service, self.assignment_id)
        if self.day < 0 or self.slot < 0:
            raise ValidationError("Day and slot must not be negative")

    def apply_locally(self, service) -> ClassAssignment:
        # Caller-held assignments are never mutated; a copy replaces them.
        original = service.get_assignment(self.assignment_id)
        self.moved = replace(original, day=self.day, slot=self.slot)
        service.update_assignment(self.moved)
        return self.moved

    def batch_ids(self) -> Set[str]:
        return {self.moved.batch_id}

    def operations(self, service) -> List[WriteOperation]:
        return self._set_operations([self.moved])


class SwapAssignments(_SingleTransactionCommand):
    """Exchange the (day, slot) of two assignments."""

    def __init__(self, first_id: str, second_id: str):
        self.first_id = first_id
        self.second_id = second_id
        self.swapped: List[ClassAssignment] = []

    def validate(self, service) -> None:
        if self.first_id == self.second_id:
            raise ValidationError("Cannot swap an assignment with itself")
        self._movable(service, self.first_id)
        self._movable(service, self.second_id)

    def apply_locally(self, service) -> List[ClassAssignment]:
        first = service.get_assignment(self.first_id)
        second = service.get_assignment(self.second_id)
        self.swapped = [
            replace(first, day=second.day, slot=second.slot),
            replace(second, day=first.day, slot=first.slot),
        ]
        for assignment in self.swapped:
            service.update_assignment(assignment)
        return list(self.swapped)

    def batch_ids(self) -> Set[str]:
        return {a.batch_id for a in self.swapped}

    def operations(self, service) -> List[WriteOperation]:
        return self._set_operations(self.swapped)


class DeleteAssignment(_SingleTransactionCommand):
    """Remove one assignment."""

    def __init__(self, assignment_id: str):
        self.assignment_id = assignment_id
        self.removed: Optional[ClassAssignment] = None

    def validate(self, service) -> None:
        if service.get_assignment(self.assignment_id) is None:
            raise ValidationError(f"Unknown assignment {self.assignment_id}")

    def apply_locally(self, service) -> ClassAssignment:
        self.removed = service.remove_assignment(self.assignment_id)
        return self.removed

    def batch_ids(self) -> Set[str]:
        return {self.removed.batch_id}

    def operations(self, service) -> List[WriteOperation]:
        return [WriteOperation.delete(SCHEDULE_COLLECTION, self.assignment_id)]


class PendingConfirmation:
    """The store half of an applied command."""

    def __init__(self, service, command: Command):
        self.service = service
        self.command = command
        self.result: Optional[SyncResult] = None

    @property
    def done(self) -> bool:
        return self.result is not None

    def confirm(self) -> SyncResult:
        """
        Write the change. Runs at most once; later calls return the first
        result. On failure the service reloads from the store.
        """
        if self.result is not None:
            return self.result

        self.result = self.command.persist(self.service)

        if not self.result.success and not self.result.cancelled:
            logger.warning(
                f"{type(self.command).__name__} was not fully persisted"
                f"{' (partially committed)' if self.result.partial else ''}; reloading from store"
            )
            self.service.refresh()
        else:
            self.service.reconcile_if_stale()

        return self.result
