"""
Scheduling package for subsync.

Exports the scheduler adapter, the pure schedule computation and the
reminder backends.
"""

from subsync.scheduling.backends import InMemoryReminderBackend, JsonFileReminderBackend, ReminderBackend
from subsync.scheduling.scheduler import ReminderPolicy, SchedulerAdapter, schedule_for

__all__ = [
    "InMemoryReminderBackend",
    "JsonFileReminderBackend",
    "ReminderBackend",
    "ReminderPolicy",
    "SchedulerAdapter",
    "schedule_for",
]
