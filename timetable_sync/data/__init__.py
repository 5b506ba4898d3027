from .converter import DataConverter
from .importer import ReferenceMigrator, migrate_snapshot
from .loader import SnapshotLoader, validate_relationships

__all__ = ['DataConverter', 'ReferenceMigrator', 'migrate_snapshot', 'SnapshotLoader', 'validate_relationships']
