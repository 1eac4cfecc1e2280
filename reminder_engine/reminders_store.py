"""
リマインダーのストア操作（作成/編集/ON-OFF/削除/一覧/今日の予定）

役割:
- 入力を正規化・検証して reminders 行へ反映する。
- 同一ユーザーの「有効なリマインダー同士で time が重複しない」を保証する。
- 習慣リンクは繰り返し（time + days + tz）、ルーティンリンクは単発（scheduled_at）として保存する。

トランザクション:
- ここでは flush までを行い、commit は呼び出し側（API/バッチ）が行う。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from reminder_engine import reminders_repo
from reminder_engine.errors import NotFoundError, ValidationError
from reminder_engine.reminders_logic import (
    ScheduleDescriptor,
    build_scheduled_at,
    ensure_utc,
    normalize_days,
    normalize_habit_schedule,
    normalize_time,
    parse_date,
    parse_days_csv,
    resolve_time_zone,
    to_utc_ts,
    validate_time_zone,
    weekday_label,
)
from reminder_engine.reminders_models import Reminder
from reminder_engine.reminders_occurrence import compute_next_occurrence
from reminder_engine.reminders_windows import WINDOWS, window_for, validate_time_in_window
from reminder_engine.schemas import HabitReminderRequest, ReminderEditRequest, ReminderTargetRequest, RoutineReminderRequest


logger = logging.getLogger(__name__)

DUPLICATE_TIME_MESSAGE = "Already have a reminder at that time"
DEFAULT_ROUTINE_REMINDER_NAME = "Routine Reminder"
UPCOMING_LIMIT = 3


@dataclass
class MutationResult:
    """
    作成/編集/ON-OFF の結果。

    時刻の重複は例外にせず success=False で返す（クライアントの再送に優しくするため）。
    """

    success: bool
    reminder: Optional[Reminder] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class UpcomingReminder:
    """今日これから発火するリマインダーと、その発火時刻（aware UTC）。"""

    reminder: Reminder
    when: datetime


def _require_user(user_id: Optional[str]) -> str:
    s = str(user_id or "").strip()
    if not s:
        raise ValidationError("User ID is required")
    return s


def _has_time_conflict(db: Session, *, user_id: str, time: Optional[str], exclude_id: Optional[str] = None) -> bool:
    if not time:
        return False
    return reminders_repo.find_active_time_conflict(db, user_id=user_id, time=time, exclude_id=exclude_id) is not None


def create_reminder(
    db: Session,
    *,
    user_id: str,
    request: ReminderTargetRequest,
    now: datetime,
) -> MutationResult:
    """
    リマインダーを作成する。

    - 時間帯が指定されていれば、時刻がその時間帯のスロットに乗っているか検証する
    - 習慣リンク: 頻度（または明示の曜日）から曜日集合を作り、次回発火を計算する
    - ルーティンリンク: date（省略時は tz の今日）+ 時刻で単発の発火時刻を作る
    - 同一ユーザーの有効なリマインダーと time が重複すれば success=False
    - 習慣には reminder_time / preferred_time を、ルーティンには remind_at をミラーする
    """

    uid = _require_user(user_id)
    window_key = window_for(request.preferred_time)
    validate_time_in_window(request.reminder_time, window_key)

    # --- 対象ごとのスケジュール ---
    habit = None
    routine = None
    if isinstance(request, HabitReminderRequest):
        habit = reminders_repo.get_user_habit(db, user_id=uid, habit_id=request.habit_id)
        if habit is None:
            raise NotFoundError("Habit not found")
        schedule = normalize_habit_schedule(
            reminder_time=request.reminder_time,
            frequency=habit.frequency,
            tz_name=request.tz,
            explicit_days=request.days,
            now=now,
        )
        scheduled_at = compute_next_occurrence(schedule, now)
        label = request.name or habit.habit_name
    else:
        tz = validate_time_zone(request.tz)
        time = normalize_time(request.reminder_time)
        if time is None:
            raise ValidationError("reminder_time is required")
        day = parse_date(request.date) if request.date else ensure_utc(now).astimezone(tz).date()
        schedule = ScheduleDescriptor(time=time, days=None, tz=tz.key)
        scheduled_at = build_scheduled_at(day, time, tz)
        routine = reminders_repo.get_user_routine(db, user_id=uid, routine_id=request.routine_id)
        label = request.name or (routine.routine_name if routine is not None else None) or DEFAULT_ROUTINE_REMINDER_NAME

    # --- 同じ時刻の有効なリマインダーがあれば作らない ---
    if _has_time_conflict(db, user_id=uid, time=schedule.time):
        return MutationResult(success=False, message=DUPLICATE_TIME_MESSAGE)

    reminder = Reminder(
        user_id=uid,
        habit_id=(habit.id if habit is not None else None),
        routine_id=(request.routine_id if isinstance(request, RoutineReminderRequest) else None),
        name=label,
        time=schedule.time,
        days=schedule.days_csv,
        tz=schedule.tz,
        window=(window_key.value if window_key is not None else None),
        active=True,
        scheduled_at_utc=(to_utc_ts(scheduled_at) if scheduled_at is not None else None),
        last_triggered_at_utc=None,
    )
    db.add(reminder)

    # --- 旧形式の列へミラー（後方互換） ---
    if habit is not None:
        habit.reminder_time = schedule.time
        if window_key is not None:
            habit.preferred_time = WINDOWS[window_key].name
    if routine is not None and scheduled_at is not None:
        routine.remind_at_utc = to_utc_ts(scheduled_at)

    db.flush()
    logger.info(
        "reminder created: id=%s user=%s target=%s time=%s days=%s tz=%s scheduled_at=%s",
        reminder.id,
        uid,
        "habit" if habit is not None else "routine",
        reminder.time,
        reminder.days,
        reminder.tz,
        scheduled_at.isoformat() if scheduled_at is not None else None,
    )
    return MutationResult(success=True, reminder=reminder)


def edit_reminder(
    db: Session,
    *,
    user_id: str,
    reminder_id: str,
    request: ReminderEditRequest,
) -> MutationResult:
    """
    リマインダーを部分更新する。

    重要:
    - time/時間帯が変わる場合は、新しい（無ければ既存の）時間帯で再検証する。
    - scheduled_at は date が明示された場合のみ再計算する。
      時刻だけの変更は、次回の発火後の再計算で反映される。
    """

    uid = _require_user(user_id)
    reminder = reminders_repo.get_user_reminder(db, user_id=uid, reminder_id=reminder_id)
    if reminder is None:
        raise NotFoundError("Reminder not found")

    # --- 時刻と時間帯（空の時刻は未指定扱い） ---
    incoming_time = (request.incoming_time or "").strip() or None
    incoming_window = request.incoming_window
    new_window_key = window_for(incoming_window) if incoming_window is not None else None
    window_key = new_window_key if new_window_key is not None else window_for(reminder.window)

    time = normalize_time(incoming_time) if incoming_time is not None else reminder.time
    if (incoming_time is not None or new_window_key is not None) and time:
        validate_time_in_window(time, window_key)

    # --- 曜日（習慣リンクのみ意味を持つ） ---
    days = reminder.days
    if request.days_supplied and reminder.habit_id is not None:
        days = ScheduleDescriptor(time=time, days=normalize_days(request.days)).days_csv

    tz_name = validate_time_zone(request.tz).key if request.tz else (reminder.tz or "UTC")

    # --- 同じ時刻の有効なリマインダー（自分以外）があれば更新しない ---
    if reminder.active and _has_time_conflict(db, user_id=uid, time=time, exclude_id=reminder.id):
        return MutationResult(success=False, message=DUPLICATE_TIME_MESSAGE)

    # --- 日付の明示があるときだけ scheduled_at を作り直す ---
    scheduled_at_utc = reminder.scheduled_at_utc
    if request.date and time:
        scheduled = build_scheduled_at(parse_date(request.date), time, validate_time_zone(tz_name))
        scheduled_at_utc = to_utc_ts(scheduled)

    if request.name is not None:
        reminder.name = request.name
    reminder.time = time
    reminder.days = days
    reminder.tz = tz_name
    if new_window_key is not None:
        reminder.window = new_window_key.value
    reminder.scheduled_at_utc = scheduled_at_utc

    db.flush()
    logger.info("reminder edited: id=%s user=%s", reminder.id, uid)
    return MutationResult(success=True, reminder=reminder)


def toggle_reminder_active(db: Session, *, user_id: str, reminder_id: str) -> MutationResult:
    """
    active を反転する。scheduled_at / last_triggered_at には触れない。

    再有効化で他の有効なリマインダーと time が重なる場合は success=False。
    """

    uid = _require_user(user_id)
    reminder = reminders_repo.get_user_reminder(db, user_id=uid, reminder_id=reminder_id)
    if reminder is None:
        raise NotFoundError("Reminder not found")

    if not reminder.active and _has_time_conflict(db, user_id=uid, time=reminder.time, exclude_id=reminder.id):
        return MutationResult(success=False, message=DUPLICATE_TIME_MESSAGE)

    reminder.active = not bool(reminder.active)
    db.flush()
    logger.info("reminder toggled: id=%s active=%s", reminder.id, reminder.active)
    return MutationResult(success=True, reminder=reminder)


def delete_reminder(db: Session, *, user_id: str, reminder_id: str) -> None:
    """リマインダーを物理削除する。"""

    uid = _require_user(user_id)
    reminder = reminders_repo.get_user_reminder(db, user_id=uid, reminder_id=reminder_id)
    if reminder is None:
        raise NotFoundError("Reminder not found")
    db.delete(reminder)
    db.flush()
    logger.info("reminder deleted: id=%s user=%s", reminder_id, uid)


def list_reminders(db: Session, *, user_id: str) -> list[Reminder]:
    """ユーザーのリマインダー一覧。"""

    return reminders_repo.list_user_reminders(db, user_id=_require_user(user_id))


def _today_instant(reminder: Reminder, *, now: datetime) -> Optional[datetime]:
    """scheduled_at が無い繰り返しリマインダーの「今日の発火時刻」を求める。"""

    tz = resolve_time_zone(reminder.tz)
    local_today = now.astimezone(tz).date()
    days = parse_days_csv(reminder.days)
    if days is not None and weekday_label(local_today) not in days:
        return None
    try:
        return build_scheduled_at(local_today, str(reminder.time), tz)
    except ValidationError:
        return None


def list_upcoming(db: Session, *, user_id: str, now: datetime) -> list[UpcomingReminder]:
    """
    今日（UTC日付）これから発火するリマインダーを近い順に最大3件返す。

    発火時刻は scheduled_at を優先し、無ければ time + days + tz から今日の分を求める。
    """

    now_utc = ensure_utc(now)
    today = now_utc.date()

    upcoming: list[UpcomingReminder] = []
    for r in reminders_repo.list_active_user_reminders(db, user_id=_require_user(user_id)):
        when = r.scheduled_at
        if when is None and r.time:
            when = _today_instant(r, now=now_utc)
        if when is None:
            continue
        when = when.astimezone(timezone.utc)
        if when.date() != today or when <= now_utc:
            continue
        upcoming.append(UpcomingReminder(reminder=r, when=when))

    upcoming.sort(key=lambda u: u.when)
    return upcoming[:UPCOMING_LIMIT]
