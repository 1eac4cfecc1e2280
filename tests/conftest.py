"""共通フィクスチャ（インメモリSQLite、記録用の通知先、固定時刻）。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterator, Optional

import pytest

from reminder_engine import reminders_db
from reminder_engine.reminders_db import RemindersBase, dispose_reminders_db, init_reminders_db
from reminder_engine.reminders_models import Habit, Reminder, Routine


USER_ID = "user-1"
OTHER_USER_ID = "user-2"


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    """aware UTC の datetime を作る。"""
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


class RecordingSink:
    """dispatch の呼び出しを記録する通知先。fail_for に含まれる receiver は例外を投げる。"""

    def __init__(self, *, fail_for: Optional[set[str]] = None) -> None:
        self.calls: list[dict] = []
        self.fail_for = set(fail_for or ())

    def dispatch(self, *, receiver_id: str, text: str, type: str, entity_id: Optional[str]) -> None:
        if receiver_id in self.fail_for:
            raise RuntimeError("sink unavailable")
        self.calls.append({"receiver_id": receiver_id, "text": text, "type": type, "entity_id": entity_id})


@pytest.fixture()
def engine():
    eng = init_reminders_db("sqlite://")
    yield eng
    RemindersBase.metadata.drop_all(bind=eng)
    dispose_reminders_db()


@pytest.fixture()
def db(engine) -> Iterator:
    session = reminders_db.RemindersSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def make_habit(db):
    def _make(
        *,
        user_id: str = USER_ID,
        habit_name: str = "Drink water",
        frequency: Optional[str] = "Daily",
        reminder_time: Optional[str] = None,
        created_at: Optional[datetime] = None,
        status: int = 1,
    ) -> Habit:
        habit = Habit(
            user_id=user_id,
            habit_name=habit_name,
            frequency=frequency,
            reminder_time=reminder_time,
            status=status,
        )
        if created_at is not None:
            habit.created_at = created_at.replace(tzinfo=None)
        db.add(habit)
        db.commit()
        return habit

    return _make


@pytest.fixture()
def make_routine(db):
    def _make(*, user_id: str = USER_ID, routine_name: str = "Morning stretch") -> Routine:
        routine = Routine(user_id=user_id, routine_name=routine_name)
        db.add(routine)
        db.commit()
        return routine

    return _make


@pytest.fixture()
def make_reminder(db):
    """スイープ用に、状態を直接指定してリマインダー行を作る。"""

    def _make(
        *,
        user_id: str = USER_ID,
        scheduled_at: Optional[datetime],
        time: Optional[str] = None,
        days: Optional[str] = None,
        tz: str = "UTC",
        habit_id: Optional[str] = None,
        routine_id: Optional[str] = None,
        name: Optional[str] = None,
        active: bool = True,
        last_triggered_at: Optional[datetime] = None,
    ) -> Reminder:
        reminder = Reminder(
            user_id=user_id,
            habit_id=habit_id,
            routine_id=routine_id,
            name=name,
            time=time,
            days=days,
            tz=tz,
            active=active,
            scheduled_at_utc=(int(scheduled_at.timestamp()) if scheduled_at is not None else None),
            last_triggered_at_utc=(int(last_triggered_at.timestamp()) if last_triggered_at is not None else None),
        )
        db.add(reminder)
        db.commit()
        return reminder

    return _make
