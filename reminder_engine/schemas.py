"""API リクエスト/レスポンスの Pydantic モデル。"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from reminder_engine.errors import ValidationError


DaysInput = Union[List[str], str]


def _strip_or_none(value: Optional[str]) -> Optional[str]:
    s = str(value or "").strip()
    return s or None


# --- 作成リクエスト（対象ごとの閉じた型） ---


class HabitReminderRequest(BaseModel):
    """習慣リンクのリマインダー作成（繰り返し）。"""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["habit"] = "habit"
    habit_id: str
    reminder_time: str
    preferred_time: Optional[str] = None
    tz: Optional[str] = None
    days: Optional[DaysInput] = None
    name: Optional[str] = None


class RoutineReminderRequest(BaseModel):
    """ルーティンリンクのリマインダー作成（単発）。"""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["routine"] = "routine"
    routine_id: str
    reminder_time: str
    preferred_time: Optional[str] = None
    tz: Optional[str] = None
    date: Optional[str] = None
    name: Optional[str] = None


ReminderTargetRequest = Annotated[
    Union[HabitReminderRequest, RoutineReminderRequest],
    Field(discriminator="kind"),
]


class ReminderCreateRequest(BaseModel):
    """
    /reminders/set 用リクエスト（通信上の形）。

    habit_id / routine_id のどちらか一方だけを受け付け、
    to_target_request() で対象ごとの閉じた型へ変換する。
    """

    reminder_time: str
    preferred_time: Optional[str] = None
    habit_id: Optional[str] = None
    routine_id: Optional[str] = None
    tz: Optional[str] = None
    days: Optional[DaysInput] = None
    name: Optional[str] = None
    date: Optional[str] = None

    def to_target_request(self) -> ReminderTargetRequest:
        """対象の排他を検証して、習慣/ルーティン用のリクエストへ変換する。"""

        habit_id = _strip_or_none(self.habit_id)
        routine_id = _strip_or_none(self.routine_id)
        if not str(self.reminder_time or "").strip():
            raise ValidationError("reminder_time is required")
        if habit_id and routine_id:
            raise ValidationError("Provide only one of habit_id or routine_id")
        if habit_id:
            return HabitReminderRequest(
                habit_id=habit_id,
                reminder_time=self.reminder_time,
                preferred_time=self.preferred_time,
                tz=self.tz,
                days=self.days,
                name=self.name,
            )
        if routine_id:
            return RoutineReminderRequest(
                routine_id=routine_id,
                reminder_time=self.reminder_time,
                preferred_time=self.preferred_time,
                tz=self.tz,
                date=self.date,
                name=self.name,
            )
        raise ValidationError("Provide habit_id or routine_id")


class ReminderEditRequest(BaseModel):
    """
    リマインダー部分更新。

    - time / reminder_time はどちらでも可（time 優先）
    - preferred_time / window はどちらでも可（preferred_time 優先）
    - days を明示的に null で送ると「毎日」に戻す
    """

    name: Optional[str] = None
    time: Optional[str] = None
    reminder_time: Optional[str] = None
    days: Optional[DaysInput] = None
    tz: Optional[str] = None
    preferred_time: Optional[str] = None
    window: Optional[str] = None
    date: Optional[str] = None

    @property
    def incoming_time(self) -> Optional[str]:
        return self.time if self.time is not None else self.reminder_time

    @property
    def incoming_window(self) -> Optional[str]:
        return self.preferred_time if self.preferred_time is not None else self.window

    @property
    def days_supplied(self) -> bool:
        return "days" in self.model_fields_set


# --- レスポンス ---


class ReminderItem(BaseModel):
    """リマインダー1件。"""

    id: str
    user_id: str
    habit_id: Optional[str] = None
    routine_id: Optional[str] = None
    name: Optional[str] = None
    time: Optional[str] = None
    days: List[str] = Field(default_factory=list)
    tz: str
    window: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    active: bool
    last_triggered_at: Optional[datetime] = None
    created_at: datetime


class ReminderMutationResponse(BaseModel):
    """作成/更新/ON-OFF の結果（重複時刻は success=false + message）。"""

    success: bool
    message: Optional[str] = None
    reminder: Optional[ReminderItem] = None


class RemindersListResponse(BaseModel):
    success: bool = True
    reminders: List[ReminderItem]


class UpcomingReminderItem(BaseModel):
    """今日これから発火するリマインダー。"""

    id: str
    name: str
    time: Optional[str] = None
    scheduled_at: datetime
    habit_id: Optional[str] = None
    routine_id: Optional[str] = None


class UpcomingRemindersResponse(BaseModel):
    success: bool = True
    coming_up_today: List[UpcomingReminderItem]


class ReminderSlot(BaseModel):
    value: str
    value_iso: str
    label: str


class ReminderSlotsResponse(BaseModel):
    """時間帯ごとの30分刻みスロット。"""

    success: bool = True
    preferred_time: str
    preferred_time_label: str
    slots: List[ReminderSlot]
    format: Dict[str, str] = Field(
        default_factory=lambda: {"ui": "label", "value": "HH:MM", "stored": "HH:MM:SS"}
    )


class SuccessResponse(BaseModel):
    success: bool = True


class NotificationItem(BaseModel):
    """アプリ内通知1件。"""

    id: str
    text: str
    type: str
    entity_id: Optional[str] = None
    created_at: datetime
    read_at: Optional[datetime] = None


class NotificationsListResponse(BaseModel):
    success: bool = True
    unread: int
    data: List[NotificationItem]
