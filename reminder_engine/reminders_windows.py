"""
時間帯（Morning/Afternoon/Evening/Night）カタログ

- UI表示ラベル（現行/旧）を時間帯キーへ正規化する
- 時間帯ごとの30分刻みスロットを生成する
- 任意の時刻文字列が時間帯に収まるかを検証する

DB/HTTPに依存しない純粋ロジック。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from reminder_engine.errors import ValidationError


class PreferredWindow(str, Enum):
    """時間帯キー（DBの reminders.window にはこの値を小文字で保存する）。"""

    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


@dataclass(frozen=True)
class WindowDefinition:
    """時間帯の定義。時刻範囲は [start_hour, end_hour)。"""

    key: PreferredWindow
    name: str
    start_hour: int
    end_hour: int
    ui_label: str


WINDOWS: dict[PreferredWindow, WindowDefinition] = {
    PreferredWindow.MORNING: WindowDefinition(PreferredWindow.MORNING, "Morning", 6, 10, "Morning (6-10 AM)"),
    PreferredWindow.AFTERNOON: WindowDefinition(PreferredWindow.AFTERNOON, "Afternoon", 12, 16, "Afternoon (12-4 PM)"),
    PreferredWindow.EVENING: WindowDefinition(PreferredWindow.EVENING, "Evening", 18, 21, "Evening (6-9 PM)"),
    PreferredWindow.NIGHT: WindowDefinition(PreferredWindow.NIGHT, "Night", 21, 23, "Night (9-11 PM)"),
}

# UIラベル → キー（小文字化して照合する）
_LABEL_TO_KEY: dict[str, PreferredWindow] = {
    **{d.ui_label.lower(): k for k, d in WINDOWS.items()},
    # 旧UIの表記（互換のため受け付ける）
    "morning (6-10am)": PreferredWindow.MORNING,
    "afternoon (10am-2pm)": PreferredWindow.AFTERNOON,
    "evening (2pm-6pm)": PreferredWindow.EVENING,
    "night (6pm-10pm)": PreferredWindow.NIGHT,
}

_TIME_RE = re.compile(r"^([0-2]\d):([0-5]\d)(?::([0-5]\d))?$")
_ISO_TIME_RE = re.compile(r"T(\d{2}:\d{2}:\d{2})")

SLOT_MINUTES: tuple[int, ...] = (0, 30)


@dataclass(frozen=True)
class ReminderSlot:
    """時間帯内の選択肢1つ分。"""

    value: str  # "HH:MM"
    value_iso: str  # "HH:MM:SS"
    label: str  # "6:30 AM"


def window_for(label: Optional[str]) -> Optional[PreferredWindow]:
    """
    時間帯ラベルをキーへ正規化する。

    - キー（"Morning" / "morning"）
    - UIラベル（"Morning (6-10 AM)" など、旧表記含む）
    のどちらも受け付ける。解釈できなければ None（= 時間帯の制約なし）。
    """

    s = str(label or "").strip()
    if not s:
        return None
    try:
        return PreferredWindow(s.lower())
    except ValueError:
        return _LABEL_TO_KEY.get(s.lower())


def format_am_pm(hour: int, minute: int) -> str:
    """24時間表記を "h:MM AM/PM" に整形する。"""

    suffix = "PM" if hour >= 12 else "AM"
    hour12 = ((hour + 11) % 12) + 1
    return f"{hour12}:{minute:02d} {suffix}"


def slots_for(key: PreferredWindow) -> list[ReminderSlot]:
    """
    時間帯内の30分刻みスロットを時刻順に返す。

    - 開始時刻ちょうど（:00）は含めない（UI上の最初の選択肢は開始時の :30）
    - 終了時刻以降は含めない
    """

    win = WINDOWS[PreferredWindow(key)]
    slots: list[ReminderSlot] = []
    for hour in range(win.start_hour, win.end_hour):
        for minute in SLOT_MINUTES:
            if hour == win.start_hour and minute == 0:
                continue
            value = f"{hour:02d}:{minute:02d}"
            slots.append(ReminderSlot(value=value, value_iso=f"{value}:00", label=format_am_pm(hour, minute)))
    return slots


def validate_time_in_window(time_value: str, key: Optional[PreferredWindow]) -> None:
    """
    時刻が時間帯のスロットに乗っているかを検証する。

    - HH:MM / HH:MM:SS（ISO日時の時刻部分も可）
    - 分は :00 か :30
    - 時は [start_hour, end_hour)
    時間帯が無い場合は何もしない。
    """

    if key is None:
        return
    win = WINDOWS[PreferredWindow(key)]

    s = str(time_value or "").strip()
    iso = _ISO_TIME_RE.search(s)
    if iso:
        s = iso.group(1)
    m = _TIME_RE.match(s)
    if not m:
        raise ValidationError("reminder_time must be HH:MM or HH:MM:SS (optionally inside ISO datetime)")

    hour = int(m.group(1))
    minute = int(m.group(2))
    if minute not in SLOT_MINUTES:
        raise ValidationError("reminder_time must be on 30-minute boundary")
    if hour < win.start_hour or hour >= win.end_hour:
        raise ValidationError(f"reminder_time must fall within {win.name} window")
    if hour == win.start_hour and minute == 0:
        raise ValidationError(f"reminder_time must fall within {win.name} window (first slot is {win.start_hour:02d}:30)")


def describe_window(label: Optional[str]) -> tuple[WindowDefinition, list[ReminderSlot]]:
    """ラベルを解決して時間帯定義とスロット一覧を返す。解決できなければ ValidationError。"""

    key = window_for(label)
    if key is None:
        raise ValidationError("Invalid preferred time")
    return WINDOWS[key], slots_for(key)
