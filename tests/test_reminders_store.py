from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from conftest import OTHER_USER_ID, USER_ID, utc
from reminder_engine import reminders_store
from reminder_engine.errors import NotFoundError, ValidationError
from reminder_engine.reminders_models import Reminder
from reminder_engine.schemas import (
    HabitReminderRequest,
    ReminderCreateRequest,
    ReminderEditRequest,
    ReminderTargetRequest,
    RoutineReminderRequest,
)


FRIDAY_MORNING = utc(2024, 1, 12, 10, 0)


def _habit_request(habit_id: str, time: str = "09:30", **kwargs) -> HabitReminderRequest:
    return HabitReminderRequest(habit_id=habit_id, reminder_time=time, preferred_time="Morning", **kwargs)


# --- 作成 ---


def test_create_habit_reminder_weekdays(db, make_habit):
    habit = make_habit(frequency="Weekdays", habit_name="Stretch")

    result = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id), now=FRIDAY_MORNING)

    assert result.success is True
    r = result.reminder
    assert r.habit_id == habit.id
    assert r.routine_id is None
    assert r.name == "Stretch"
    assert r.time == "09:30:00"
    assert r.days == "Mon,Tue,Wed,Thu,Fri"
    assert r.tz == "UTC"
    assert r.window == "morning"
    assert r.active is True
    assert r.is_recurring is True
    # 金曜 10:00 に作成 -> 次は月曜 09:30
    assert r.scheduled_at == utc(2024, 1, 15, 9, 30)
    assert habit.reminder_time == "09:30:00"
    assert habit.preferred_time == "Morning"


def test_create_habit_reminder_explicit_days_and_name(db, make_habit):
    habit = make_habit(frequency="Daily")

    result = reminders_store.create_reminder(
        db,
        user_id=USER_ID,
        request=_habit_request(habit.id, days=["sunday", "Sat"], name="Weekend water", tz="Asia/Tokyo"),
        now=FRIDAY_MORNING,
    )

    assert result.success is True
    assert result.reminder.days == "Sat,Sun"
    assert result.reminder.name == "Weekend water"
    assert result.reminder.tz == "Asia/Tokyo"
    # 金曜 19:00 JST に作成 -> 次は土曜 09:30 JST（= 1/13 00:30Z）
    assert result.reminder.scheduled_at == utc(2024, 1, 13, 0, 30)


def test_create_habit_reminder_requires_owned_habit(db, make_habit):
    habit = make_habit(user_id=OTHER_USER_ID)

    with pytest.raises(NotFoundError):
        reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id), now=FRIDAY_MORNING)
    with pytest.raises(NotFoundError):
        reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request("missing"), now=FRIDAY_MORNING)


def test_create_rejects_time_outside_window(db, make_habit):
    habit = make_habit()

    with pytest.raises(ValidationError):
        reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id, "10:00"), now=FRIDAY_MORNING)
    with pytest.raises(ValidationError):
        reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id, "06:00"), now=FRIDAY_MORNING)
    with pytest.raises(ValidationError):
        reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id, "07:45"), now=FRIDAY_MORNING)


def test_create_rejects_invalid_time_zone(db, make_habit):
    habit = make_habit()

    with pytest.raises(ValidationError, match="invalid tz"):
        reminders_store.create_reminder(
            db, user_id=USER_ID, request=_habit_request(habit.id, tz="Mars/Olympus"), now=FRIDAY_MORNING
        )


def test_create_routine_reminder_with_explicit_date(db, make_routine):
    routine = make_routine(routine_name="Gym")
    request = RoutineReminderRequest(
        routine_id=routine.id,
        reminder_time="08:00:00",
        tz="America/New_York",
        date="2024-01-10",
    )

    result = reminders_store.create_reminder(db, user_id=USER_ID, request=request, now=utc(2024, 1, 9, 12, 0))

    assert result.success is True
    r = result.reminder
    assert r.scheduled_at == utc(2024, 1, 10, 13, 0)
    assert r.time == "08:00:00"
    assert r.days is None
    assert r.name == "Gym"
    assert r.is_recurring is False
    assert routine.remind_at_utc == int(utc(2024, 1, 10, 13, 0).timestamp())


def test_create_routine_reminder_defaults_to_today_in_tz(db):
    request = RoutineReminderRequest(
        routine_id="routine-without-row",
        reminder_time="21:30",
        preferred_time="Night",
        tz="America/New_York",
    )
    # 2024-01-10 03:00Z はニューヨークではまだ 1/9
    result = reminders_store.create_reminder(db, user_id=USER_ID, request=request, now=utc(2024, 1, 10, 3, 0))

    assert result.success is True
    assert result.reminder.name == "Routine Reminder"
    assert result.reminder.scheduled_at == utc(2024, 1, 10, 2, 30)


def test_create_request_requires_exactly_one_target():
    with pytest.raises(ValidationError):
        ReminderCreateRequest(reminder_time="09:30").to_target_request()
    with pytest.raises(ValidationError):
        ReminderCreateRequest(reminder_time="09:30", habit_id="h", routine_id="r").to_target_request()
    with pytest.raises(ValidationError):
        ReminderCreateRequest(reminder_time=" ", habit_id="h").to_target_request()

    target = ReminderCreateRequest(reminder_time="09:30", routine_id="r", date="2024-01-10").to_target_request()
    assert isinstance(target, RoutineReminderRequest)
    assert target.date == "2024-01-10"


def test_tagged_request_is_resolved_by_kind(db, make_routine):
    routine = make_routine(routine_name="Gym")
    adapter = TypeAdapter(ReminderTargetRequest)

    request = adapter.validate_python(
        {"kind": "routine", "routine_id": routine.id, "reminder_time": "08:00", "date": "2024-01-10"}
    )
    assert isinstance(request, RoutineReminderRequest)
    with pytest.raises(PydanticValidationError):
        adapter.validate_python({"kind": "unknown", "reminder_time": "08:00"})

    result = reminders_store.create_reminder(db, user_id=USER_ID, request=request, now=utc(2024, 1, 9, 12, 0))
    assert result.success is True
    assert result.reminder.scheduled_at == utc(2024, 1, 10, 8, 0)


# --- 時刻の重複 ---


def test_duplicate_active_time_is_rejected(db, make_habit, make_routine):
    first = make_habit(habit_name="A")
    second = make_habit(habit_name="B")
    routine = make_routine()

    assert reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(first.id), now=FRIDAY_MORNING).success

    dup = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(second.id), now=FRIDAY_MORNING)
    assert dup.success is False
    assert dup.message == "Already have a reminder at that time"
    assert dup.reminder is None

    # 対象の種類が違っても同じ
    dup_routine = reminders_store.create_reminder(
        db,
        user_id=USER_ID,
        request=RoutineReminderRequest(routine_id=routine.id, reminder_time="09:30:00", date="2024-01-13"),
        now=FRIDAY_MORNING,
    )
    assert dup_routine.success is False

    assert db.query(Reminder).count() == 1


def test_time_used_only_by_inactive_reminder_is_free(db, make_habit):
    first = make_habit(habit_name="A")
    second = make_habit(habit_name="B")
    created = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(first.id), now=FRIDAY_MORNING)
    reminders_store.toggle_reminder_active(db, user_id=USER_ID, reminder_id=created.reminder.id)

    result = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(second.id), now=FRIDAY_MORNING)

    assert result.success is True


def test_same_time_for_other_user_is_allowed(db, make_habit):
    mine = make_habit()
    theirs = make_habit(user_id=OTHER_USER_ID)

    assert reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(mine.id), now=FRIDAY_MORNING).success
    assert reminders_store.create_reminder(
        db, user_id=OTHER_USER_ID, request=_habit_request(theirs.id), now=FRIDAY_MORNING
    ).success


# --- ON/OFF ---


def test_toggle_flips_active_without_touching_schedule(db, make_habit):
    habit = make_habit()
    r = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id), now=FRIDAY_MORNING).reminder
    scheduled = r.scheduled_at_utc

    off = reminders_store.toggle_reminder_active(db, user_id=USER_ID, reminder_id=r.id)
    assert off.success is True and off.reminder.active is False
    on = reminders_store.toggle_reminder_active(db, user_id=USER_ID, reminder_id=r.id)
    assert on.success is True and on.reminder.active is True
    assert on.reminder.scheduled_at_utc == scheduled


def test_reenable_conflicting_time_is_rejected(db, make_habit):
    first = make_habit(habit_name="A")
    second = make_habit(habit_name="B")
    r1 = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(first.id), now=FRIDAY_MORNING).reminder
    reminders_store.toggle_reminder_active(db, user_id=USER_ID, reminder_id=r1.id)
    assert reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(second.id), now=FRIDAY_MORNING).success

    result = reminders_store.toggle_reminder_active(db, user_id=USER_ID, reminder_id=r1.id)

    assert result.success is False
    assert r1.active is False


def test_toggle_other_users_reminder_is_not_found(db, make_habit):
    habit = make_habit()
    r = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id), now=FRIDAY_MORNING).reminder

    with pytest.raises(NotFoundError):
        reminders_store.toggle_reminder_active(db, user_id=OTHER_USER_ID, reminder_id=r.id)


# --- 編集 ---


def test_edit_name_only_keeps_schedule(db, make_habit):
    habit = make_habit()
    r = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id), now=FRIDAY_MORNING).reminder
    before = (r.scheduled_at_utc, r.time, r.days, r.tz, r.window)

    result = reminders_store.edit_reminder(
        db, user_id=USER_ID, reminder_id=r.id, request=ReminderEditRequest(name="Renamed")
    )

    assert result.success is True
    assert r.name == "Renamed"
    assert (r.scheduled_at_utc, r.time, r.days, r.tz, r.window) == before


@pytest.mark.parametrize("blank", ["", "   "])
def test_edit_with_blank_time_keeps_existing_time(db, make_habit, blank):
    habit = make_habit(frequency="Daily")
    r = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id), now=FRIDAY_MORNING).reminder

    result = reminders_store.edit_reminder(db, user_id=USER_ID, reminder_id=r.id, request=ReminderEditRequest(time=blank))

    assert result.success is True
    assert r.time == "09:30:00"
    assert r.is_recurring is True


def test_edit_time_is_validated_against_existing_window(db, make_habit):
    habit = make_habit()
    r = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id), now=FRIDAY_MORNING).reminder

    with pytest.raises(ValidationError):
        reminders_store.edit_reminder(db, user_id=USER_ID, reminder_id=r.id, request=ReminderEditRequest(time="19:00"))

    result = reminders_store.edit_reminder(
        db, user_id=USER_ID, reminder_id=r.id, request=ReminderEditRequest(reminder_time="08:00")
    )
    assert result.success is True
    assert r.time == "08:00:00"


def test_edit_time_and_window_together(db, make_habit):
    habit = make_habit()
    r = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id), now=FRIDAY_MORNING).reminder

    result = reminders_store.edit_reminder(
        db,
        user_id=USER_ID,
        reminder_id=r.id,
        request=ReminderEditRequest(time="19:00", window="Evening (6-9 PM)"),
    )

    assert result.success is True
    assert r.time == "19:00:00"
    assert r.window == "evening"


def test_edit_with_date_recomputes_schedule(db, make_habit):
    habit = make_habit()
    r = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id), now=FRIDAY_MORNING).reminder

    reminders_store.edit_reminder(
        db,
        user_id=USER_ID,
        reminder_id=r.id,
        request=ReminderEditRequest(date="2024-02-01", tz="Europe/London"),
    )

    assert r.tz == "Europe/London"
    assert r.scheduled_at == utc(2024, 2, 1, 9, 30)


def test_edit_days_null_means_every_day(db, make_habit):
    habit = make_habit(frequency="Weekends")
    r = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id), now=FRIDAY_MORNING).reminder
    assert r.days == "Sat,Sun"

    reminders_store.edit_reminder(db, user_id=USER_ID, reminder_id=r.id, request=ReminderEditRequest(days=["Mon"]))
    assert r.days == "Mon"

    reminders_store.edit_reminder(
        db, user_id=USER_ID, reminder_id=r.id, request=ReminderEditRequest.model_validate({"days": None})
    )
    assert r.days is None


def test_edit_into_taken_time_is_rejected(db, make_habit):
    first = make_habit(habit_name="A")
    second = make_habit(habit_name="B")
    reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(first.id, "09:30"), now=FRIDAY_MORNING)
    r2 = reminders_store.create_reminder(
        db, user_id=USER_ID, request=_habit_request(second.id, "08:30"), now=FRIDAY_MORNING
    ).reminder

    result = reminders_store.edit_reminder(
        db, user_id=USER_ID, reminder_id=r2.id, request=ReminderEditRequest(time="09:30")
    )

    assert result.success is False
    assert r2.time == "08:30:00"


def test_edit_unknown_reminder_is_not_found(db):
    with pytest.raises(NotFoundError):
        reminders_store.edit_reminder(db, user_id=USER_ID, reminder_id="missing", request=ReminderEditRequest(name="x"))


# --- 削除/一覧 ---


def test_delete_reminder(db, make_habit):
    habit = make_habit()
    r = reminders_store.create_reminder(db, user_id=USER_ID, request=_habit_request(habit.id), now=FRIDAY_MORNING).reminder

    with pytest.raises(NotFoundError):
        reminders_store.delete_reminder(db, user_id=OTHER_USER_ID, reminder_id=r.id)

    reminders_store.delete_reminder(db, user_id=USER_ID, reminder_id=r.id)
    assert db.query(Reminder).count() == 0


def test_list_reminders_active_first_then_newest(db, make_reminder):
    old_active = make_reminder(scheduled_at=None, time="07:00:00", name="old")
    inactive = make_reminder(scheduled_at=None, time="08:00:00", name="off", active=False)
    new_active = make_reminder(scheduled_at=None, time="09:00:00", name="new")
    make_reminder(user_id=OTHER_USER_ID, scheduled_at=None, time="10:00:00", name="theirs")
    old_active.created_at = datetime(2024, 1, 1)
    inactive.created_at = datetime(2024, 1, 3)
    new_active.created_at = datetime(2024, 1, 2)
    db.commit()

    names = [r.name for r in reminders_store.list_reminders(db, user_id=USER_ID)]

    assert names == ["new", "old", "off"]


def test_missing_user_is_validation_error(db):
    with pytest.raises(ValidationError):
        reminders_store.list_reminders(db, user_id="  ")


# --- 今日の予定 ---


def test_list_upcoming_returns_three_nearest_today(db, make_reminder):
    now = utc(2024, 1, 10, 8, 0)
    make_reminder(scheduled_at=utc(2024, 1, 10, 7, 0), name="past")
    make_reminder(scheduled_at=utc(2024, 1, 10, 12, 0), name="noon")
    make_reminder(scheduled_at=utc(2024, 1, 10, 9, 0), name="nine")
    make_reminder(scheduled_at=utc(2024, 1, 11, 9, 0), name="tomorrow")
    make_reminder(scheduled_at=None, time="10:00:00", name="recurring-ten")
    make_reminder(scheduled_at=utc(2024, 1, 10, 18, 0), name="evening")
    make_reminder(scheduled_at=utc(2024, 1, 10, 8, 30), name="inactive", active=False)

    upcoming = reminders_store.list_upcoming(db, user_id=USER_ID, now=now)

    assert [u.reminder.name for u in upcoming] == ["nine", "recurring-ten", "noon"]
    assert upcoming[1].when == utc(2024, 1, 10, 10, 0)


def test_list_upcoming_respects_day_set_for_unscheduled(db, make_reminder):
    # 2024-01-10 は水曜
    make_reminder(scheduled_at=None, time="20:00:00", days="Mon,Tue", name="not-today")
    make_reminder(scheduled_at=None, time="20:00:00", days="Wed", name="today", user_id=USER_ID)

    upcoming = reminders_store.list_upcoming(db, user_id=USER_ID, now=utc(2024, 1, 10, 8, 0))

    assert [u.reminder.name for u in upcoming] == ["today"]


def test_list_upcoming_excludes_instant_equal_to_now(db, make_reminder):
    now = utc(2024, 1, 10, 9, 0)
    make_reminder(scheduled_at=now, name="now")
    make_reminder(scheduled_at=now.replace(minute=1), name="next-minute")

    upcoming = reminders_store.list_upcoming(db, user_id=USER_ID, now=now)

    assert [u.reminder.name for u in upcoming] == ["next-minute"]
