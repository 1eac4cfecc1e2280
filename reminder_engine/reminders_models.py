"""
リマインダーDB（reminders.db）のORMモデル

reminders.db は以下を扱う：
- リマインダー定義（習慣リンク=繰り返し / ルーティンリンク=単発）と実行状態
- 習慣・ルーティン（エンジンが読む/ミラーする列のみ）
- 配信済み通知
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from reminder_engine.reminders_db import RemindersBase


# UUIDの文字列長（ハイフン含む36文字）
_UUID_STR_LEN = 36
_USER_ID_MAX_LEN = 64
_NAME_MAX_LEN = 255
_TIME_OF_DAY_MAX_LEN = 8  # "HH:MM:SS"
_DAYS_MAX_LEN = 27  # "Mon,Tue,Wed,Thu,Fri,Sat,Sun"
_TZ_MAX_LEN = 64
_WINDOW_MAX_LEN = 16
_FREQUENCY_MAX_LEN = 16
_NOTIFICATION_TYPE_MAX_LEN = 32


def _uuid_str() -> str:
    """UUID文字列を生成するファクトリ関数。"""

    return str(uuid4())


def _utcnow() -> datetime:
    """naive UTC の現在時刻（created_at/updated_at 用）。"""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_ts_to_datetime(value: Optional[int]) -> Optional[datetime]:
    """UTC epoch seconds を aware UTC datetime へ変換する（None はそのまま）。"""

    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class Reminder(RemindersBase):
    """
    リマインダー定義テーブル。

    対象:
    - habit_id: 習慣リンク（time + days + tz で繰り返し）
    - routine_id: ルーティンリンク（scheduled_at_utc で単発）
    どちらか一方のみが入る。

    days:
    - "Mon,Tue,..." のカンマ区切り。NULL は毎日。

    実行状態:
    - scheduled_at_utc: 次回発火（UTC epoch seconds）
    - last_triggered_at_utc: 最後に配信した分（UTC epoch seconds、分単位に切り捨て）
    """

    __tablename__ = "reminders"
    __table_args__ = (
        Index("ix_reminders_user_active_time", "user_id", "active", "time"),
        Index("ix_reminders_active_scheduled", "active", "scheduled_at_utc"),
    )

    id: Mapped[str] = mapped_column(String(_UUID_STR_LEN), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(String(_USER_ID_MAX_LEN), nullable=False)

    habit_id: Mapped[Optional[str]] = mapped_column(String(_UUID_STR_LEN), nullable=True, index=True)
    routine_id: Mapped[Optional[str]] = mapped_column(String(_UUID_STR_LEN), nullable=True)

    name: Mapped[Optional[str]] = mapped_column(String(_NAME_MAX_LEN), nullable=True)

    # 繰り返し: 時刻（HH:MM:SS）。NULL は純粋な単発
    time: Mapped[Optional[str]] = mapped_column(String(_TIME_OF_DAY_MAX_LEN), nullable=True)
    days: Mapped[Optional[str]] = mapped_column(String(_DAYS_MAX_LEN), nullable=True)
    tz: Mapped[str] = mapped_column(String(_TZ_MAX_LEN), nullable=False, default="UTC")
    window: Mapped[Optional[str]] = mapped_column(String(_WINDOW_MAX_LEN), nullable=True)

    scheduled_at_utc: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_triggered_at_utc: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    @property
    def scheduled_at(self) -> Optional[datetime]:
        """次回発火（aware UTC）。"""
        return utc_ts_to_datetime(self.scheduled_at_utc)

    @property
    def last_triggered_at(self) -> Optional[datetime]:
        """最終配信の分バケット（aware UTC）。"""
        return utc_ts_to_datetime(self.last_triggered_at_utc)

    @property
    def is_recurring(self) -> bool:
        """
        time があれば繰り返し扱い（days の有無は問わない）。

        NOTE: ルーティンリンクは time を持つが単発（scheduled_at のみ）として扱う。
        """
        return bool(self.time) and self.routine_id is None


class Habit(RemindersBase):
    """
    習慣テーブル（外部CRUDの管理対象。エンジンは必要な列だけを読む）。

    reminder_time / frequency は Reminder 導入前の旧形式で、互換スイープが参照する。
    status: 1=有効
    """

    __tablename__ = "habits"

    id: Mapped[str] = mapped_column(String(_UUID_STR_LEN), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(String(_USER_ID_MAX_LEN), nullable=False, index=True)
    habit_name: Mapped[str] = mapped_column(String(_NAME_MAX_LEN), nullable=False)

    frequency: Mapped[Optional[str]] = mapped_column(String(_FREQUENCY_MAX_LEN), nullable=True)
    preferred_time: Mapped[Optional[str]] = mapped_column(String(_WINDOW_MAX_LEN), nullable=True)
    reminder_time: Mapped[Optional[str]] = mapped_column(String(_TIME_OF_DAY_MAX_LEN), nullable=True)

    status: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class Routine(RemindersBase):
    """ルーティンテーブル（単発リマインダーの発火時刻をミラーする）。"""

    __tablename__ = "routines"

    id: Mapped[str] = mapped_column(String(_UUID_STR_LEN), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(String(_USER_ID_MAX_LEN), nullable=False, index=True)
    routine_name: Mapped[str] = mapped_column(String(_NAME_MAX_LEN), nullable=False)
    remind_at_utc: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class Notification(RemindersBase):
    """配信済み通知（アプリ内通知一覧用）。"""

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(_UUID_STR_LEN), primary_key=True, default=_uuid_str)
    receiver_id: Mapped[Optional[str]] = mapped_column(String(_USER_ID_MAX_LEN), nullable=True, index=True)
    sender_id: Mapped[Optional[str]] = mapped_column(String(_USER_ID_MAX_LEN), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(_NOTIFICATION_TYPE_MAX_LEN), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(_UUID_STR_LEN), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
