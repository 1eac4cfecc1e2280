"""
旧形式（habits.reminder_time）リマインダーの互換処理

- 互換スイープ: 本スイープの後に同じ tick 内で走り、
  UTC の HH:MM が一致した習慣へ通知する（透かし無し）。
- バックフィル: 旧形式の習慣を Reminder 行へ移し替える（一度きりの移行用）。

NOTE:
- 互換スイープは last_triggered を持たないため、同じ分に tick が複数回走ると重複通知し得る。
  Reminder 行を持つ習慣は対象外にして、本スイープとの二重配信だけは避ける。
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from reminder_engine import reminders_repo
from reminder_engine.errors import ValidationError
from reminder_engine.notifications import NOTIFICATION_TYPE_REMINDER, NotificationSink
from reminder_engine.reminders_logic import (
    WEEKDAYS_MON_FIRST,
    HabitFrequency,
    ScheduleDescriptor,
    ensure_utc,
    normalize_time,
    to_utc_ts,
    weekday_label,
)
from reminder_engine.reminders_models import Habit, Reminder
from reminder_engine.reminders_occurrence import compute_next_occurrence


logger = logging.getLogger(__name__)

LEGACY_REMINDER_TEXT = "Habit Reminder: It's time for your habit."


def frequency_matches(frequency: Optional[str], now: datetime, created_at: Optional[datetime]) -> bool:
    """
    習慣の頻度が「今日（UTC曜日）」に当たるか。

    - Daily / 未設定 / 不明: 常に True
    - Weekdays: 月-金
    - Weekends: 土日
    - Weekly: 習慣の作成日と同じ曜日
    """

    today = ensure_utc(now).date()
    if frequency == HabitFrequency.WEEKDAYS.value:
        return today.weekday() < 5
    if frequency == HabitFrequency.WEEKENDS.value:
        return today.weekday() >= 5
    if frequency == HabitFrequency.WEEKLY.value:
        if created_at is None:
            return True
        return ensure_utc(created_at).weekday() == today.weekday()
    return True


def run_legacy_pass(db: Session, *, sink: NotificationSink, now: datetime, limit: int = 500) -> int:
    """
    旧形式の習慣リマインダーを配信する。

    reminder_time の先頭 HH:MM を UTC の現在分と比べる。配信件数を返す。
    """

    now_utc = ensure_utc(now)
    current = now_utc.strftime("%H:%M")

    dispatched = 0
    for habit in reminders_repo.fetch_legacy_habits(db, limit=limit):
        if not habit.user_id or not habit.reminder_time:
            continue
        if str(habit.reminder_time)[:5] != current:
            continue
        if not frequency_matches(habit.frequency, now_utc, habit.created_at):
            continue

        try:
            sink.dispatch(
                receiver_id=str(habit.user_id),
                text=LEGACY_REMINDER_TEXT,
                type=NOTIFICATION_TYPE_REMINDER,
                entity_id=str(habit.id),
            )
        except Exception:  # noqa: BLE001
            logger.exception("legacy reminder dispatch failed: habit=%s", habit.id)
            continue
        dispatched += 1

    return dispatched


def _legacy_days(habit: Habit) -> tuple[str, ...]:
    """旧形式の頻度を曜日集合へ（Weekly は作成日の UTC 曜日）。"""

    if habit.frequency == HabitFrequency.WEEKDAYS.value:
        return WEEKDAYS_MON_FIRST[:5]
    if habit.frequency == HabitFrequency.WEEKENDS.value:
        return WEEKDAYS_MON_FIRST[5:]
    if habit.frequency == HabitFrequency.WEEKLY.value and habit.created_at is not None:
        return (weekday_label(ensure_utc(habit.created_at).date()),)
    return WEEKDAYS_MON_FIRST


def backfill_legacy_habit_reminders(db: Session, *, now: datetime, limit: int = 500) -> int:
    """
    旧形式の習慣を Reminder 行へ移し替える。

    - tz は UTC（旧形式は UTC の壁時計で比較していたため）
    - 同じユーザーで同じ時刻の有効なリマインダーがあれば作らない
    - 移し替えた件数を返す（commit は呼び出し側）
    """

    created = 0
    for habit in reminders_repo.fetch_legacy_habits(db, limit=limit):
        try:
            time = normalize_time(habit.reminder_time)
        except ValidationError:
            logger.warning("skip legacy habit with malformed reminder_time: habit=%s value=%r", habit.id, habit.reminder_time)
            continue
        if time is None:
            continue

        conflict = reminders_repo.find_active_time_conflict(db, user_id=str(habit.user_id), time=time)
        if conflict is not None:
            logger.info("skip legacy habit (time slot taken): habit=%s time=%s", habit.id, time)
            continue

        schedule = ScheduleDescriptor(time=time, days=_legacy_days(habit), tz="UTC")
        scheduled_at = compute_next_occurrence(schedule, now)
        db.add(
            Reminder(
                user_id=str(habit.user_id),
                habit_id=str(habit.id),
                name=habit.habit_name,
                time=schedule.time,
                days=schedule.days_csv,
                tz=schedule.tz,
                window=None,
                active=True,
                scheduled_at_utc=(to_utc_ts(scheduled_at) if scheduled_at is not None else None),
            )
        )
        # 同じ時刻の別の習慣を次の周回で衝突検出できるよう、都度 flush する
        db.flush()
        created += 1

    if created:
        logger.info("legacy habit reminders backfilled: created=%d at=%s", created, ensure_utc(now).isoformat())
    return created
