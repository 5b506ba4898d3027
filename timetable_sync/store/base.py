"""
Document store contract.

The core persists through a small document-store interface: collections of
JSON-like documents keyed by id, filtered reads, single-document writes,
change subscriptions, and batched commits that are atomic up to a fixed
number of operations.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

Document = Dict[str, Any]
Filter = Tuple[str, Any]
Listener = Callable[[str, List[Document]], None]

SET = 'set'
DELETE = 'delete'


@dataclass
class WriteOperation:
    """One set or delete inside a batched commit."""
    kind: str
    collection: str
    doc_id: str
    data: Optional[Document] = field(default=None)

    @classmethod
    def set(cls, collection: str, doc_id: str, data: Document) -> 'WriteOperation':
        return cls(SET, collection, doc_id, data)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> 'WriteOperation':
        return cls(DELETE, collection, doc_id)


class DocumentStore(ABC):
    """
    Persistence used by the synchronizer, importer and service.

    ``max_batch_operations`` is a hard limit: ``commit`` rejects larger
    batches. Callers chunk their work to stay below it.
    """

    max_batch_operations: int = 500

    @abstractmethod
    def get_all(self, collection: str, where: Optional[Filter] = None) -> List[Document]:
        """Return every document in a collection, optionally where field == value."""

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Document) -> None:
        """Create or overwrite a single document."""

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        """Delete a single document; deleting a missing document is not an error."""

    @abstractmethod
    def commit(self, operations: List[WriteOperation]) -> None:
        """
        Apply a batch of operations atomically.

        Raises:
            PersistenceError: if the batch exceeds the limit or cannot be
                applied. Nothing from the batch is applied in that case.
        """

    @abstractmethod
    def subscribe(self, collection: str, listener: Listener) -> Callable[[], None]:
        """
        Call ``listener(collection, documents)`` with the collection's
        contents after every change to it.

        Returns:
            A callable that removes the subscription
        """
