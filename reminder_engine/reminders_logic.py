"""
リマインダー入力の正規化ロジック

- 時刻（HH:MM / HH:MM:SS / ISO日時）を HH:MM:SS へ
- 曜日リスト（配列/カンマ区切り、フル/3文字、大小無視）を "Mon".."Sun" の集合へ
- 習慣の頻度（Daily/Weekdays/Weekends/Weekly）を曜日集合へ
- ルーティンの日付+時刻+TZ を UTC の絶対時刻へ

このモジュールは「DB/HTTP」に依存しない純粋ロジックとして扱う。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from enum import Enum
from typing import Callable, Iterable, Optional, Union
from zoneinfo import ZoneInfo

from reminder_engine.errors import ValidationError


# 現在時刻の取得関数（テストで差し替える）
Clock = Callable[[], datetime]

DEFAULT_TZ = "UTC"

WEEKDAYS_MON_FIRST: tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_WEEKDAY_ALIASES: dict[str, str] = {
    **{d.lower(): d for d in WEEKDAYS_MON_FIRST},
    "monday": "Mon",
    "tuesday": "Tue",
    "wednesday": "Wed",
    "thursday": "Thu",
    "friday": "Fri",
    "saturday": "Sat",
    "sunday": "Sun",
}

_TIME_RE = re.compile(r"^(\d{2}):(\d{2})(?::(\d{2}))?$")
_ISO_TIME_RE = re.compile(r"T(\d{2}:\d{2}(?::\d{2})?)")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class HabitFrequency(str, Enum):
    """習慣の頻度。"""

    DAILY = "Daily"
    WEEKDAYS = "Weekdays"
    WEEKENDS = "Weekends"
    WEEKLY = "Weekly"


def utc_now() -> datetime:
    """現在時刻（aware UTC）を返す。"""

    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """naive は UTC とみなし、aware は UTC へ変換する。"""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_utc_ts(value: datetime) -> int:
    """datetime を UTC epoch seconds に変換する。"""

    return int(ensure_utc(value).timestamp())


def validate_time_zone(tz_name: Optional[str]) -> ZoneInfo:
    """
    IANA time zone を検証して ZoneInfo を返す。

    例: "America/New_York"。空は UTC 扱い。
    """

    name = str(tz_name or "").strip() or DEFAULT_TZ

    # --- ZoneInfo の生成で検証する ---
    try:
        return ZoneInfo(name)
    except Exception as exc:  # noqa: BLE001
        raise ValidationError(f"invalid tz: {name}") from exc


def resolve_time_zone(tz_name: Optional[str]) -> tzinfo:
    """
    保存済みの tz を解決する（スイープ/計算用）。

    保存時に検証済みの想定だが、解決できない値は UTC として扱う。
    """

    try:
        return validate_time_zone(tz_name)
    except ValidationError:
        return timezone.utc


def parse_time_of_day(value: str) -> tuple[int, int, int]:
    """HH:MM / HH:MM:SS を (hour, minute, second) にパースする。"""

    m = _TIME_RE.match(str(value or "").strip())
    if not m:
        raise ValidationError("reminder_time must be HH:MM or HH:MM:SS (optionally inside ISO datetime)")
    hour = int(m.group(1))
    minute = int(m.group(2))
    second = int(m.group(3) or 0)
    if not (0 <= hour <= 23):
        raise ValidationError("reminder_time hour must be 00..23")
    if not (0 <= minute <= 59) or not (0 <= second <= 59):
        raise ValidationError("reminder_time minute/second must be 00..59")
    return hour, minute, second


def normalize_time(raw: Optional[str]) -> Optional[str]:
    """
    時刻を HH:MM:SS に正規化する。

    - "09:30" / "09:30:15"
    - "2024-01-10T09:30:00Z" など ISO 日時（時刻部分のみ採用）
    空は None。
    """

    s = str(raw or "").strip()
    if not s:
        return None
    if not _TIME_RE.match(s):
        iso = _ISO_TIME_RE.search(s)
        if iso is None:
            raise ValidationError("reminder_time must be HH:MM or HH:MM:SS (optionally inside ISO datetime)")
        s = iso.group(1)
    hour, minute, second = parse_time_of_day(s)
    return f"{hour:02d}:{minute:02d}:{second:02d}"


def normalize_days(values: Union[str, Iterable[str], None]) -> Optional[tuple[str, ...]]:
    """
    曜日リストを正規化する。

    - 配列 or カンマ区切り文字列
    - 大小無視、フル表記/3文字表記
    - 重複排除、Mon-first で整列
    - 解釈できないトークンは黙って捨てる
    何も残らなければ None（= 毎日）。
    """

    if values is None:
        return None
    items = values.split(",") if isinstance(values, str) else list(values)

    seen: set[str] = set()
    for raw in items:
        s = str(raw or "").strip().lower()
        if not s:
            continue
        day = _WEEKDAY_ALIASES.get(s)
        if day is None:
            continue
        seen.add(day)

    if not seen:
        return None
    return tuple(d for d in WEEKDAYS_MON_FIRST if d in seen)


def days_to_csv(days: Optional[Iterable[str]]) -> Optional[str]:
    """曜日集合を保存用のカンマ区切りへ。None は None。"""

    if days is None:
        return None
    return ",".join(days)


def parse_days_csv(value: Optional[str]) -> Optional[tuple[str, ...]]:
    """保存済みのカンマ区切り曜日を集合へ戻す。NULL/空は None（= 毎日）。"""

    if value is None or not str(value).strip():
        return None
    return tuple(d.strip() for d in str(value).split(",") if d.strip())


def weekday_label(d: date) -> str:
    """日付の曜日を "Mon".."Sun" で返す。"""

    return WEEKDAYS_MON_FIRST[d.weekday()]


def days_for_frequency(
    frequency: Optional[str],
    *,
    tz: tzinfo,
    now: datetime,
) -> tuple[str, ...]:
    """
    習慣の頻度を曜日集合へ変換する。

    - Daily / 未設定 / 不明: 全曜日
    - Weekdays: Mon-Fri
    - Weekends: Sat, Sun
    - Weekly: 設定時点の「今日」（指定TZ）の曜日1つ
    """

    if frequency == HabitFrequency.WEEKDAYS.value:
        return WEEKDAYS_MON_FIRST[:5]
    if frequency == HabitFrequency.WEEKENDS.value:
        return WEEKDAYS_MON_FIRST[5:]
    if frequency == HabitFrequency.WEEKLY.value:
        # 週1の曜日は「習慣の作成日」ではなく「リマインダーを設定した日」に固定する
        return (weekday_label(ensure_utc(now).astimezone(tz).date()),)
    return WEEKDAYS_MON_FIRST


def parse_date(value: str) -> date:
    """YYYY-MM-DD を date にパースする。"""

    s = str(value or "").strip()
    if not _DATE_RE.match(s):
        raise ValidationError("date must be YYYY-MM-DD")
    try:
        return date.fromisoformat(s)
    except ValueError as exc:
        raise ValidationError("date must be a valid calendar date") from exc


def build_scheduled_at(day: date, time_hhmmss: str, tz: tzinfo) -> datetime:
    """日付+時刻を指定TZの壁時計として解釈し、aware UTC で返す。"""

    hour, minute, second = parse_time_of_day(time_hhmmss)
    local = datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=tz)
    return local.astimezone(timezone.utc)


@dataclass(frozen=True)
class ScheduleDescriptor:
    """
    繰り返しスケジュールの正規形。

    - time: HH:MM:SS（None なら繰り返し無し）
    - days: 許可曜日（None は毎日）
    - tz: IANA タイムゾーン名
    """

    time: Optional[str]
    days: Optional[tuple[str, ...]]
    tz: str = DEFAULT_TZ

    @classmethod
    def from_fields(cls, *, time: Optional[str], days: Optional[str], tz: Optional[str]) -> "ScheduleDescriptor":
        """DBの列（days はカンマ区切り）から組み立てる。"""

        return cls(time=time or None, days=parse_days_csv(days), tz=str(tz or DEFAULT_TZ))

    @property
    def days_csv(self) -> Optional[str]:
        return days_to_csv(self.days)


def normalize_habit_schedule(
    *,
    reminder_time: str,
    frequency: Optional[str],
    tz_name: Optional[str],
    explicit_days: Union[str, Iterable[str], None],
    now: datetime,
) -> ScheduleDescriptor:
    """
    習慣リンクのリマインダー入力を ScheduleDescriptor にまとめる。

    明示の曜日リストが（正規化後に）空でなければ、頻度より優先する。
    """

    tz = validate_time_zone(tz_name)
    time = normalize_time(reminder_time)
    if time is None:
        raise ValidationError("reminder_time is required")

    days = normalize_days(explicit_days)
    if days is None:
        days = days_for_frequency(frequency, tz=tz, now=now)
    return ScheduleDescriptor(time=time, days=days, tz=tz.key)
