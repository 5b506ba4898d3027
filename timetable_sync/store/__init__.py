from .base import DocumentStore, WriteOperation
from .memory import InMemoryDocumentStore
from .json_file import JsonFileDocumentStore

__all__ = ['DocumentStore', 'WriteOperation', 'InMemoryDocumentStore', 'JsonFileDocumentStore']
