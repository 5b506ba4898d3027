"""
File-backed document store.

Keeps every collection in a single JSON file, rewritten after each commit.
"""
import json
import logging
import os
import tempfile
from pathlib import Path

from ..errors import PersistenceError
from .memory import InMemoryDocumentStore

logger = logging.getLogger(__name__)


class JsonFileDocumentStore(InMemoryDocumentStore):
    """In-memory store mirrored to a JSON file on disk."""

    def __init__(self, path: str, max_batch_operations: int = 500):
        self.path = Path(path)
        initial = {}
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    initial = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise PersistenceError(f"Cannot read store file {self.path}: {e}")
            logger.info(f"Opened store {self.path}")
        else:
            logger.info(f"Store {self.path} does not exist yet, starting empty")

        super().__init__(max_batch_operations=max_batch_operations, initial=initial)

    def _after_commit(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a temporary file first so a crash never leaves half a file.
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix='.tmp')
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(self.dump(), f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise PersistenceError(f"Cannot write store file {self.path}: {e}")
