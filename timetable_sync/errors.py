"""
Exception types raised by the timetable core.

Scheduling conflicts are not exceptions: the conflict detector returns them
as data. Unresolved references found during import are reported, not raised.
"""


class TimetableError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(TimetableError):
    """Input is missing or malformed; raised before any state changes."""


class ConfigurationError(TimetableError):
    """Settings or tunables are invalid."""


class PersistenceError(TimetableError):
    """A store transaction failed. Nothing from the failing transaction was applied."""
