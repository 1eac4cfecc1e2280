"""
リマインダーAPI（/api/reminders/*）

目的:
- 習慣/ルーティンに紐づくリマインダーを作成・編集・ON/OFF・削除する。
- 発火処理はバックグラウンドの ReminderService が担当する（このAPIは定義/状態の更新のみ）。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from reminder_engine import reminders_store, schemas
from reminder_engine.deps import get_clock, get_current_user_id, get_reminders_db_dep
from reminder_engine.errors import NotFoundError, ReminderError, ValidationError
from reminder_engine.reminders_logic import Clock, parse_days_csv
from reminder_engine.reminders_models import Reminder
from reminder_engine.reminders_windows import describe_window


router = APIRouter(prefix="/reminders", tags=["reminders"])


def _to_http_error(exc: ReminderError) -> HTTPException:
    """ストア操作の例外をHTTPエラーへ変換する。"""

    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)


def _reminder_to_item(r: Reminder) -> schemas.ReminderItem:
    """ORMのReminderをAPIレスポンスのReminderItemへ変換する。"""

    return schemas.ReminderItem(
        id=str(r.id),
        user_id=str(r.user_id),
        habit_id=(str(r.habit_id) if r.habit_id else None),
        routine_id=(str(r.routine_id) if r.routine_id else None),
        name=r.name,
        time=r.time,
        days=list(parse_days_csv(r.days) or []),
        tz=str(r.tz or "UTC"),
        window=r.window,
        scheduled_at=r.scheduled_at,
        active=bool(r.active),
        last_triggered_at=r.last_triggered_at,
        created_at=r.created_at,
    )


def _mutation_response(result: reminders_store.MutationResult) -> schemas.ReminderMutationResponse:
    return schemas.ReminderMutationResponse(
        success=bool(result.success),
        message=result.message,
        reminder=(_reminder_to_item(result.reminder) if result.reminder is not None else None),
    )


@router.post("/set", response_model=schemas.ReminderMutationResponse)
def set_reminder(
    request: schemas.ReminderCreateRequest,
    user_id: str = Depends(get_current_user_id),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_reminders_db_dep),
) -> schemas.ReminderMutationResponse:
    """習慣またはルーティンにリマインダーを設定する。"""

    try:
        target = request.to_target_request()
        result = reminders_store.create_reminder(db, user_id=user_id, request=target, now=clock())
    except ReminderError as exc:
        db.rollback()
        raise _to_http_error(exc) from exc

    if result.success:
        db.commit()
        db.refresh(result.reminder)
    else:
        db.rollback()
    return _mutation_response(result)


@router.get("", response_model=schemas.RemindersListResponse)
def list_reminders(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_reminders_db_dep),
) -> schemas.RemindersListResponse:
    """リマインダー一覧を返す。"""

    items = reminders_store.list_reminders(db, user_id=user_id)
    return schemas.RemindersListResponse(reminders=[_reminder_to_item(r) for r in items])


@router.get("/upcoming", response_model=schemas.UpcomingRemindersResponse)
def upcoming_reminders(
    user_id: str = Depends(get_current_user_id),
    clock: Clock = Depends(get_clock),
    db: Session = Depends(get_reminders_db_dep),
) -> schemas.UpcomingRemindersResponse:
    """今日これから発火するリマインダー（最大3件）。"""

    upcoming = reminders_store.list_upcoming(db, user_id=user_id, now=clock())
    return schemas.UpcomingRemindersResponse(
        coming_up_today=[
            schemas.UpcomingReminderItem(
                id=str(u.reminder.id),
                name=str(u.reminder.name or "Reminder"),
                time=u.reminder.time,
                scheduled_at=u.when,
                habit_id=u.reminder.habit_id,
                routine_id=u.reminder.routine_id,
            )
            for u in upcoming
        ]
    )


@router.get("/reminder-slots/{preferred}", response_model=schemas.ReminderSlotsResponse)
def reminder_slots(preferred: str) -> schemas.ReminderSlotsResponse:
    """時間帯ラベルに対応する30分刻みのスロットを返す。"""

    try:
        window, slots = describe_window(preferred)
    except ValidationError as exc:
        raise _to_http_error(exc) from exc

    return schemas.ReminderSlotsResponse(
        preferred_time=window.name,
        preferred_time_label=window.ui_label,
        slots=[schemas.ReminderSlot(value=s.value, value_iso=s.value_iso, label=s.label) for s in slots],
    )


@router.patch("/{reminder_id}/turn-off-on", response_model=schemas.ReminderMutationResponse)
def turn_off_on(
    reminder_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_reminders_db_dep),
) -> schemas.ReminderMutationResponse:
    """リマインダーの ON/OFF を切り替える。"""

    try:
        result = reminders_store.toggle_reminder_active(db, user_id=user_id, reminder_id=reminder_id)
    except ReminderError as exc:
        db.rollback()
        raise _to_http_error(exc) from exc

    if result.success:
        db.commit()
        db.refresh(result.reminder)
    return _mutation_response(result)


@router.patch("/{reminder_id}", response_model=schemas.ReminderMutationResponse)
def edit_reminder(
    reminder_id: str,
    request: schemas.ReminderEditRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_reminders_db_dep),
) -> schemas.ReminderMutationResponse:
    """リマインダーを更新する（部分更新）。"""

    try:
        result = reminders_store.edit_reminder(db, user_id=user_id, reminder_id=reminder_id, request=request)
    except ReminderError as exc:
        db.rollback()
        raise _to_http_error(exc) from exc

    if result.success:
        db.commit()
        db.refresh(result.reminder)
    else:
        db.rollback()
    return _mutation_response(result)


@router.delete("/{reminder_id}", response_model=schemas.SuccessResponse)
def delete_reminder(
    reminder_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_reminders_db_dep),
) -> schemas.SuccessResponse:
    """リマインダーを削除する。"""

    try:
        reminders_store.delete_reminder(db, user_id=user_id, reminder_id=reminder_id)
    except ReminderError as exc:
        db.rollback()
        raise _to_http_error(exc) from exc

    db.commit()
    return schemas.SuccessResponse()
