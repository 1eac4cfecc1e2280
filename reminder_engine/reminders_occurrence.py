"""
次回発火時刻の計算

ScheduleDescriptor（time + days + tz）と基準時刻から、
「基準時刻より厳密に後」の最初の発火時刻（UTC）を求める。

方針:
- 基準時刻は呼び出し側が渡す（内部で現在時刻を読まない）。
- TZ解決は関数として注入できる（既定は zoneinfo）。
- 探索は最大8日で打ち切り、見つからなければ「翌日の同時刻」に倒す。
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, Optional

from reminder_engine.errors import ValidationError
from reminder_engine.reminders_logic import (
    ScheduleDescriptor,
    ensure_utc,
    parse_time_of_day,
    resolve_time_zone,
    weekday_label,
)


logger = logging.getLogger(__name__)

TzResolver = Callable[[str], tzinfo]

# 当日 + 1週間分
MAX_LOOKAHEAD_DAYS = 8


def compute_next_occurrence(
    schedule: ScheduleDescriptor,
    reference: datetime,
    *,
    tz_resolver: TzResolver = resolve_time_zone,
) -> Optional[datetime]:
    """
    次回発火時刻（aware UTC）を計算する。

    返り値:
    - None: time が無い（繰り返しではない）、または time が不正

    手順:
    - 基準時刻を tz の壁時計に直し、その日付から1日ずつ進める
    - 「その日付 + time」が許可曜日で、かつ基準時刻より後なら採用
    """

    if not schedule.time:
        return None
    try:
        hour, minute, second = parse_time_of_day(schedule.time)
    except ValidationError:
        logger.warning("cannot compute occurrence for malformed time: %r", schedule.time)
        return None

    tz = tz_resolver(schedule.tz)
    ref = ensure_utc(reference)
    base_date = ref.astimezone(tz).date()
    allowed = set(schedule.days) if schedule.days is not None else None

    for offset in range(0, MAX_LOOKAHEAD_DAYS):
        d = base_date + timedelta(days=offset)
        if allowed is not None and weekday_label(d) not in allowed:
            continue
        candidate = datetime(d.year, d.month, d.day, hour, minute, second, tzinfo=tz)
        if candidate <= ref:
            continue
        return candidate.astimezone(timezone.utc)

    # 曜日集合が空/不正のときのみ到達する。翌日の同時刻を返す（発火時刻は必ず持たせる）
    logger.warning(
        "scheduling anomaly: no matching day within %d days (days=%r tz=%s); falling back to next day",
        MAX_LOOKAHEAD_DAYS,
        schedule.days,
        schedule.tz,
    )
    d = base_date + timedelta(days=1)
    fallback = datetime(d.year, d.month, d.day, hour, minute, second, tzinfo=tz)
    return fallback.astimezone(timezone.utc)
