"""
Snapshot loader.

Reads a raw dataset either from a single JSON export or from a directory of
CSV files (one per collection), and checks cross-collection references.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from ..errors import ValidationError
from ..models.entities import Snapshot
from .converter import DataConverter

logger = logging.getLogger(__name__)

# CSV file name for each raw collection key
CSV_FILES = {
    'departments': 'Departments.csv',
    'rooms': 'Rooms.csv',
    'subjects': 'Subjects.csv',
    'faculty': 'Faculty.csv',
    'batches': 'Batches.csv',
    'schedule': 'Schedule.csv',
}
REQUIRED_CSV = ('rooms', 'subjects', 'faculty')


class SnapshotLoader:
    """
    Handles loading raw snapshots from disk.

    JSON exports may carry every collection, including nested batch subject
    assignments, faculty availability and settings. CSV directories carry
    the flat collections only, with list fields separated by semicolons.
    """

    def __init__(self, input_path: str):
        """
        Args:
            input_path: A .json file or a directory of CSV files
        """
        self.input_path = Path(input_path)
        if not self.input_path.exists():
            logger.error(f"Input not found at {self.input_path}")
            raise FileNotFoundError(f"Input not found at {self.input_path}")

    def load_raw(self) -> Dict[str, Any]:
        """
        Load the raw collections without converting them.

        Returns:
            Dictionary of collection name to list of records
        """
        if self.input_path.is_dir():
            return self._load_csv_directory()

        logger.info(f"Loading snapshot from {self.input_path}")
        try:
            with open(self.input_path, 'r') as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"{self.input_path} is not valid JSON: {e}")

        if not isinstance(raw, dict):
            raise ValidationError(f"{self.input_path} must contain an object of collections")
        return raw

    def _load_csv_directory(self) -> Dict[str, Any]:
        logger.info(f"Loading CSV snapshot from {self.input_path}")
        raw: Dict[str, Any] = {}

        for key, file_name in CSV_FILES.items():
            path = self.input_path / file_name
            if not path.exists():
                if key in REQUIRED_CSV:
                    logger.error(f"Missing input file: {file_name}")
                    raise ValidationError(f"Missing input file: {file_name}")
                logger.warning(f"{file_name} not found, using empty collection")
                raw[key] = []
                continue

            try:
                df = pd.read_csv(path, dtype=str, keep_default_na=False)
            except pd.errors.EmptyDataError:
                logger.warning(f"{file_name} is empty, using empty collection")
                raw[key] = []
                continue

            raw[key] = [self._clean_row(key, row) for row in df.to_dict(orient='records')]
            logger.info(f"{key.capitalize()} loaded: {len(raw[key])} records")

        return raw

    @staticmethod
    def _clean_row(key: str, row: Dict[str, str]) -> Dict[str, Any]:
        """Drop empty cells and restore the non-string fields CSV flattened."""
        record: Dict[str, Any] = {k: v for k, v in row.items() if v != ''}
        if key == 'schedule':
            if 'facultyIds' in record:
                record['facultyIds'] = [f.strip() for f in record['facultyIds'].split(';') if f.strip()]
            if 'locked' in record:
                record['locked'] = record['locked'].strip().lower() in ('true', 'yes', '1', 'y')
        return record

    def load(self) -> Snapshot:
        """Load and convert the snapshot."""
        snapshot = DataConverter.snapshot_from_raw(self.load_raw())
        logger.info(f"Snapshot loaded: {snapshot.counts()}")
        return snapshot


def validate_relationships(snapshot: Snapshot) -> List[str]:
    """
    Check that every reference in a snapshot points at a known record.

    Returns:
        Human-readable issues; empty when all references resolve
    """
    issues = []
    subjects = {s.id for s in snapshot.subjects}
    faculty = {f.id for f in snapshot.faculty}
    rooms = {r.id for r in snapshot.rooms}
    batches = {b.id for b in snapshot.batches}

    for member in snapshot.faculty:
        for subject_id in sorted(member.subject_ids - subjects):
            issues.append(f"Faculty {member.id} teaches unknown subject {subject_id}")

    for batch in snapshot.batches:
        if batch.fixed_room_id and batch.fixed_room_id not in rooms:
            issues.append(f"Batch {batch.id} has unknown fixed room {batch.fixed_room_id}")
        for subject_id in batch.all_subject_ids:
            if subject_id not in subjects:
                issues.append(f"Batch {batch.id} studies unknown subject {subject_id}")

    for assignment in snapshot.schedule:
        if assignment.batch_id not in batches:
            issues.append(f"Assignment {assignment.id} references unknown batch {assignment.batch_id}")
        if assignment.room_id not in rooms:
            issues.append(f"Assignment {assignment.id} references unknown room {assignment.room_id}")
        if assignment.subject_id not in subjects:
            issues.append(f"Assignment {assignment.id} references unknown subject {assignment.subject_id}")
        for faculty_id in assignment.faculty_ids:
            if faculty_id not in faculty:
                issues.append(f"Assignment {assignment.id} references unknown faculty {faculty_id}")

    for issue in issues[:100]:
        logger.warning(issue)
    if issues:
        logger.warning(f"Found {len(issues)} reference issues")
    else:
        logger.info("All relationships are valid")

    return issues
