"""
リマインダーDBのリポジトリ（最小のクエリ補助）

目的:
- API/ストア操作/スイープから同じクエリを呼べるようにする。
- 行の更新は呼び出し側が ORM インスタンス経由で行う（主キー単位の単一行更新）。
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from reminder_engine.reminders_models import Habit, Reminder, Routine


def get_user_reminder(db: Session, *, user_id: str, reminder_id: str) -> Optional[Reminder]:
    """ユーザー所有のリマインダーを1件返す（無ければ None）。"""

    return (
        db.query(Reminder)
        .filter(Reminder.id == str(reminder_id), Reminder.user_id == str(user_id))
        .first()
    )


def find_active_time_conflict(
    db: Session,
    *,
    user_id: str,
    time: str,
    exclude_id: Optional[str] = None,
) -> Optional[Reminder]:
    """
    同一ユーザーで同じ time を持つ有効なリマインダーを返す。

    対象の種類（習慣/ルーティン）は問わない。exclude_id は編集中の自分自身を除外する。
    """

    q = db.query(Reminder).filter(
        Reminder.user_id == str(user_id),
        Reminder.active.is_(True),
        Reminder.time == str(time),
    )
    if exclude_id is not None:
        q = q.filter(Reminder.id != str(exclude_id))
    return q.first()


def list_user_reminders(db: Session, *, user_id: str) -> list[Reminder]:
    """ユーザーのリマインダー一覧（有効なもの優先、新しい順）。"""

    return (
        db.query(Reminder)
        .filter(Reminder.user_id == str(user_id))
        .order_by(Reminder.active.desc(), Reminder.created_at.desc())
        .all()
    )


def list_active_user_reminders(db: Session, *, user_id: str) -> list[Reminder]:
    return (
        db.query(Reminder)
        .filter(Reminder.user_id == str(user_id), Reminder.active.is_(True))
        .all()
    )


def fetch_due_reminders(db: Session, *, now_utc_ts: int, limit: int) -> list[Reminder]:
    """
    発火対象候補を返す。

    - active かつ scheduled_at_utc が NULL でなく now 以前
    - scheduled_at_utc 昇順、件数上限あり（1回のスイープのコストを抑える）
    """

    return (
        db.query(Reminder)
        .filter(Reminder.active.is_(True))
        .filter(Reminder.scheduled_at_utc.is_not(None))
        .filter(Reminder.scheduled_at_utc <= int(now_utc_ts))
        .order_by(Reminder.scheduled_at_utc.asc(), Reminder.created_at.asc())
        .limit(int(limit))
        .all()
    )


def get_user_habit(db: Session, *, user_id: str, habit_id: str) -> Optional[Habit]:
    return db.query(Habit).filter(Habit.id == str(habit_id), Habit.user_id == str(user_id)).first()


def get_user_routine(db: Session, *, user_id: str, routine_id: str) -> Optional[Routine]:
    return db.query(Routine).filter(Routine.id == str(routine_id), Routine.user_id == str(user_id)).first()


def fetch_legacy_habits(db: Session, *, limit: int) -> list[Habit]:
    """
    旧形式（habits.reminder_time）で通知すべき習慣を返す。

    - status=1 かつ未削除、reminder_time あり
    - Reminder 行を1件も持たない習慣のみ（構造化済みの習慣は本スイープ側で配信する）
    """

    has_reminder_row = select(Reminder.id).where(Reminder.habit_id == Habit.id).exists()
    return (
        db.query(Habit)
        .filter(Habit.status == 1)
        .filter(Habit.deleted_at.is_(None))
        .filter(Habit.reminder_time.is_not(None))
        .filter(~has_reminder_row)
        .order_by(Habit.created_at.asc())
        .limit(int(limit))
        .all()
    )
