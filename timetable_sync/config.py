"""
Configuration for the timetable core.

Runtime tunables come from the environment (optionally via a .env file).
Timetable settings describe the teaching day and are validated before use.
"""
import logging
import os
import re
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv

from .errors import ConfigurationError
from .models.entities import TimetableSettings

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 400
DEFAULT_MAX_BATCH_OPERATIONS = 500

_TIME_PATTERN = re.compile(r'^([01]?\d|2[0-3]):([0-5]\d)$')


@dataclass
class CoreConfig:
    """Tunables for the synchronizer and the outer surfaces."""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS
    store_path: str = "timetable_store.json"
    log_level: str = "INFO"

    def validate(self) -> None:
        if self.max_batch_operations <= 0:
            raise ConfigurationError(
                f"Transaction limit must be positive, got {self.max_batch_operations}"
            )
        validate_chunk_size(self.chunk_size, self.max_batch_operations)


def validate_chunk_size(chunk_size: int, max_batch_operations: int) -> None:
    """Reject chunk sizes that are non-positive or exceed the store's limit."""
    if chunk_size <= 0:
        raise ConfigurationError(f"Chunk size must be positive, got {chunk_size}")
    if chunk_size > max_batch_operations:
        raise ConfigurationError(
            f"Chunk size {chunk_size} exceeds the store transaction limit of {max_batch_operations}"
        )


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def load_config() -> CoreConfig:
    """
    Build the runtime configuration from the environment.

    A .env file in the working directory is loaded first; variables already
    set in the environment take precedence.

    Returns:
        Validated CoreConfig
    """
    load_dotenv()

    config = CoreConfig(
        chunk_size=_int_from_env('TIMETABLE_CHUNK_SIZE', DEFAULT_CHUNK_SIZE),
        max_batch_operations=_int_from_env('TIMETABLE_MAX_BATCH_OPERATIONS', DEFAULT_MAX_BATCH_OPERATIONS),
        store_path=os.environ.get('TIMETABLE_STORE_PATH', 'timetable_store.json'),
        log_level=os.environ.get('TIMETABLE_LOG_LEVEL', 'INFO'),
    )
    config.validate()

    logger.debug(f"Loaded configuration: {config}")
    return config


def time_to_minutes(value: str) -> int:
    """Convert an "HH:MM" string to minutes from midnight."""
    match = _TIME_PATTERN.match(value or "")
    if not match:
        raise ConfigurationError(f"Invalid time {value!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def minutes_to_readable(minutes: int) -> str:
    """Format minutes from midnight as a 12-hour clock time, e.g. "9:00 AM"."""
    hours, mins = divmod(minutes, 60)
    suffix = 'PM' if hours >= 12 else 'AM'
    hours = hours % 12 or 12
    return f"{hours}:{mins:02d} {suffix}"


def validate_settings(settings: TimetableSettings) -> None:
    """
    Check timetable settings before they are used.

    Raises:
        ConfigurationError: if the period duration is not positive, a time is
            malformed, the day ends before it starts, or a break is inverted.
    """
    if settings.period_duration <= 0:
        raise ConfigurationError(
            f"Period duration must be positive, got {settings.period_duration}"
        )

    start = time_to_minutes(settings.college_start_time)
    end = time_to_minutes(settings.college_end_time)
    if end <= start:
        raise ConfigurationError(
            f"College end time {settings.college_end_time} is not after start time {settings.college_start_time}"
        )

    for period in settings.breaks:
        if time_to_minutes(period.end_time) <= time_to_minutes(period.start_time):
            raise ConfigurationError(f"Break {period.name!r} ends before it starts")

    if not settings.working_days:
        raise ConfigurationError("At least one working day is required")


def generate_time_slots(settings: TimetableSettings) -> List[str]:
    """
    Lay out the teaching periods of a day.

    Periods never overlap a break: a period that would run into a break is
    dropped and the next one starts when the break ends.

    Returns:
        Slot labels such as "9:00 AM - 10:00 AM", indexed by slot number
    """
    validate_settings(settings)

    start = time_to_minutes(settings.college_start_time)
    end = time_to_minutes(settings.college_end_time)
    duration = settings.period_duration
    breaks = sorted(
        ((time_to_minutes(b.start_time), time_to_minutes(b.end_time)) for b in settings.breaks)
    )

    slots = []
    current = start
    while current + duration <= end:
        proposed_end = current + duration
        overlapping = next(
            (b for b in breaks if current < b[1] and proposed_end > b[0]), None
        )
        if overlapping:
            current = overlapping[1]
            continue

        slots.append(f"{minutes_to_readable(current)} - {minutes_to_readable(proposed_end)}")
        current = proposed_end

    return slots
