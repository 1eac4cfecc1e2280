"""Recurring reminder engine package."""

__all__ = [
    "config",
    "reminders_db",
    "reminders_models",
    "reminders_windows",
    "reminders_logic",
    "reminders_occurrence",
    "reminders_store",
    "reminders_service",
    "schemas",
]
