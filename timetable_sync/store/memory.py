"""
In-memory document store.

Used by the tests and as the base of the file-backed store. Commits are
all-or-nothing and listeners are notified once per changed collection.
"""
import copy
import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from ..errors import PersistenceError
from .base import DELETE, SET, Document, DocumentStore, Filter, Listener, WriteOperation

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """Document store held in process memory."""

    def __init__(self, max_batch_operations: int = 500,
                 initial: Optional[Dict[str, List[Document]]] = None):
        self.max_batch_operations = max_batch_operations
        self._collections: Dict[str, Dict[str, Document]] = defaultdict(dict)
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._lock = threading.RLock()
        self.commit_log: List[List[WriteOperation]] = []

        for name, documents in (initial or {}).items():
            for document in documents:
                self._collections[name][document['id']] = copy.deepcopy(document)

    def get_all(self, collection: str, where: Optional[Filter] = None) -> List[Document]:
        with self._lock:
            documents = list(self._collections.get(collection, {}).values())
        if where is not None:
            field_name, value = where
            documents = [d for d in documents if d.get(field_name) == value]
        return copy.deepcopy(documents)

    def set(self, collection: str, doc_id: str, data: Document) -> None:
        self.commit([WriteOperation.set(collection, doc_id, data)])

    def delete(self, collection: str, doc_id: str) -> None:
        self.commit([WriteOperation.delete(collection, doc_id)])

    def commit(self, operations: List[WriteOperation]) -> None:
        if len(operations) > self.max_batch_operations:
            raise PersistenceError(
                f"Batch of {len(operations)} operations exceeds the limit of {self.max_batch_operations}"
            )

        with self._lock:
            # Stage on a copy so a bad operation leaves the store untouched.
            staged = {name: dict(docs) for name, docs in self._collections.items()}
            touched = set()
            for op in operations:
                if op.kind == SET:
                    if op.data is None:
                        raise PersistenceError(f"Set on {op.collection}/{op.doc_id} without data")
                    staged.setdefault(op.collection, {})[op.doc_id] = copy.deepcopy(op.data)
                elif op.kind == DELETE:
                    staged.setdefault(op.collection, {}).pop(op.doc_id, None)
                else:
                    raise PersistenceError(f"Unknown operation {op.kind!r}")
                touched.add(op.collection)

            previous = self._collections
            self._collections = defaultdict(dict, staged)
            try:
                self._after_commit()
            except PersistenceError:
                self._collections = previous
                raise
            self.commit_log.append(list(operations))

        for name in sorted(touched):
            self._notify(name)

    def _after_commit(self) -> None:
        """Hook for subclasses that persist the committed state."""

    def _notify(self, collection: str) -> None:
        listeners = list(self._listeners.get(collection, []))
        if not listeners:
            return
        documents = self.get_all(collection)
        for listener in listeners:
            listener(collection, documents)

    def subscribe(self, collection: str, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners[collection].append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners[collection]:
                    self._listeners[collection].remove(listener)

        return unsubscribe

    def dump(self) -> Dict[str, List[Document]]:
        """Copy of every collection, for persistence and inspection."""
        with self._lock:
            return {
                name: copy.deepcopy(list(docs.values()))
                for name, docs in self._collections.items()
            }
