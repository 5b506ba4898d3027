"""
Timetable synchronization core.

Validates class assignments against each other and against committed
schedules, and keeps a document store in step with the local schedule.
"""
__version__ = "0.1.0"
