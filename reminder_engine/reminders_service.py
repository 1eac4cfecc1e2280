"""
リマインダー（Reminders）配信サービス

役割:
- reminders.db を定期的に確認し、due なリマインダーを1件ずつ配信する。
- 配信後に次回発火へ進める（繰り返し）か、無効化する（単発）。
- 同じ tick の最後に旧形式（habits.reminder_time）の互換スイープを走らせる。

設計方針:
- cron無し運用を前提に、バックグラウンドスレッド（reminders_runner）から tick() を呼び出す。
- 1件ずつ順に処理し、1件ごとにコミットする（分単位の透かしを競合なく更新するため）。
- 配信失敗は1件単位で握りつぶしてログする。リマインダー自体は「発火済み」として進める。
- DBに届かない tick は丸ごと諦め、次の分の tick に任せる（猶予10分の範囲で追いつく）。
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, ContextManager, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import ObjectDeletedError, StaleDataError

from reminder_engine import reminders_repo
from reminder_engine.notifications import NOTIFICATION_TYPE_REMINDER, NotificationSink
from reminder_engine.reminders_db import reminders_session_scope
from reminder_engine.reminders_legacy import run_legacy_pass
from reminder_engine.reminders_logic import Clock, ScheduleDescriptor, ensure_utc, resolve_time_zone, to_utc_ts, utc_now
from reminder_engine.reminders_models import Reminder
from reminder_engine.reminders_occurrence import TzResolver, compute_next_occurrence


logger = logging.getLogger(__name__)

DEFAULT_GRACE_WINDOW_SECONDS = 10 * 60
DEFAULT_BATCH_SIZE = 200
DEFAULT_LEGACY_BATCH_SIZE = 500

# 再計算の基準は「今 + 1分」（同じ分の再発火を避ける）
_RESCHEDULE_OFFSET = timedelta(minutes=1)

SessionScopeFactory = Callable[[], ContextManager[Session]]


@dataclass
class SweepStats:
    """1回の tick の集計（ログ/テスト用）。"""

    due: int = 0
    dispatched: int = 0
    dispatch_failed: int = 0
    skipped_same_minute: int = 0
    missed: int = 0
    vanished: int = 0
    legacy_dispatched: int = 0
    aborted: bool = False

    @property
    def has_activity(self) -> bool:
        return bool(self.due or self.legacy_dispatched or self.aborted)


def minute_bucket(now: datetime) -> datetime:
    """秒以下を切り捨てた「分」の時刻。"""

    return ensure_utc(now).replace(second=0, microsecond=0)


def build_reminder_message(reminder: Reminder) -> tuple[str, str, Optional[str]]:
    """
    通知のタイトル・本文・関連IDを組み立てる。

    関連IDは習慣/ルーティンのID（どちらも無ければリマインダー自身のID）。
    """

    if reminder.habit_id:
        title = reminder.name or "Habit Reminder"
        return title, f"{title}: It's time for your habit.", str(reminder.habit_id)
    if reminder.routine_id:
        title = reminder.name or "Routine Reminder"
        return title, f"{title}: Your routine is scheduled now.", str(reminder.routine_id)
    title = reminder.name or "Reminder"
    return title, title, str(reminder.id)


class ReminderService:
    """
    リマインダーの配信を行うサービス。

    - tick() は複数回呼ばれても安全（重複実行は抑制）。
    - 時刻は clock から取得する（テストでは固定時刻を注入する）。
    """

    def __init__(
        self,
        *,
        sink: NotificationSink,
        session_scope: SessionScopeFactory = reminders_session_scope,
        clock: Clock = utc_now,
        grace_window_seconds: int = DEFAULT_GRACE_WINDOW_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        legacy_enabled: bool = True,
        legacy_batch_size: int = DEFAULT_LEGACY_BATCH_SIZE,
        tz_resolver: TzResolver = resolve_time_zone,
    ) -> None:
        self._sink = sink
        self._session_scope = session_scope
        self._clock = clock
        self._grace_window_seconds = int(grace_window_seconds)
        self._batch_size = int(batch_size)
        self._legacy_enabled = bool(legacy_enabled)
        self._legacy_batch_size = int(legacy_batch_size)
        self._tz_resolver = tz_resolver
        self._lock = threading.Lock()
        self._running = False

    def tick(self, now: Optional[datetime] = None) -> Optional[SweepStats]:
        """
        due なリマインダーを配信し、続けて互換スイープを行う。

        他の tick が実行中なら何もせず None を返す。
        """

        # --- 多重実行を抑止 ---
        with self._lock:
            if self._running:
                return None
            self._running = True

        stats = SweepStats()
        try:
            current = ensure_utc(now if now is not None else self._clock())
            with self._session_scope() as db:
                self.run_delivery_sweep(db, now=current, stats=stats)
                if self._legacy_enabled:
                    stats.legacy_dispatched = run_legacy_pass(
                        db, sink=self._sink, now=current, limit=self._legacy_batch_size
                    )
        except SQLAlchemyError:
            stats.aborted = True
            logger.exception("reminder sweep aborted: store unavailable")
        finally:
            with self._lock:
                self._running = False

        if stats.has_activity:
            logger.info(
                "reminder sweep: due=%d dispatched=%d failed=%d same_minute=%d missed=%d vanished=%d legacy=%d aborted=%s",
                stats.due,
                stats.dispatched,
                stats.dispatch_failed,
                stats.skipped_same_minute,
                stats.missed,
                stats.vanished,
                stats.legacy_dispatched,
                stats.aborted,
            )
        return stats

    def run_delivery_sweep(self, db: Session, *, now: datetime, stats: Optional[SweepStats] = None) -> SweepStats:
        """
        本スイープ（Reminder 行の配信）。

        手順:
        - active かつ scheduled_at <= now を scheduled_at 昇順で上限件数まで取り出す
        - 同じ分に配信済みならスキップ
        - 猶予を超えて遅れたものは配信せず「取りこぼし」として片付ける
        - 配信して、次回へ進める（1件ごとにコミット）
        """

        stats = stats if stats is not None else SweepStats()
        now_utc = ensure_utc(now)
        now_ts = to_utc_ts(now_utc)
        bucket_ts = to_utc_ts(minute_bucket(now_utc))

        due = reminders_repo.fetch_due_reminders(db, now_utc_ts=now_ts, limit=self._batch_size)
        stats.due = len(due)
        # コミットで属性が期限切れになるため、id は先に控えておく
        due_ids = [r.id for r in due]
        for reminder_id, r in zip(due_ids, due):
            try:
                self._process_one(db, r, now=now_utc, now_ts=now_ts, bucket_ts=bucket_ts, stats=stats)
            except (ObjectDeletedError, StaleDataError):
                # 並行して API から削除/更新された行は飛ばし、残りの配信を続ける
                db.rollback()
                stats.vanished += 1
                logger.info("reminder changed during sweep; skipped: id=%s", reminder_id)

        return stats

    def _process_one(
        self,
        db: Session,
        r: Reminder,
        *,
        now: datetime,
        now_ts: int,
        bucket_ts: int,
        stats: SweepStats,
    ) -> None:
        # --- 同じ分の再発火を防ぐ ---
        if r.last_triggered_at_utc is not None and int(r.last_triggered_at_utc) >= bucket_ts:
            stats.skipped_same_minute += 1
            logger.debug("skip reminder already triggered this minute: id=%s", r.id)
            return

        # --- 猶予切れ（取りこぼし）は配信しない ---
        lateness = now_ts - int(r.scheduled_at_utc or 0)
        if lateness > self._grace_window_seconds:
            stats.missed += 1
            self._retire_missed(r, now=now, lateness_seconds=lateness)
            db.commit()
            return

        if self._dispatch_one(r):
            stats.dispatched += 1
        else:
            stats.dispatch_failed += 1

        self._advance(r, now=now, bucket_ts=bucket_ts)
        db.commit()

    def _dispatch_one(self, reminder: Reminder) -> bool:
        """1件配信する。失敗しても例外は外へ出さない。"""

        _, text, entity_id = build_reminder_message(reminder)
        try:
            self._sink.dispatch(
                receiver_id=str(reminder.user_id),
                text=text,
                type=NOTIFICATION_TYPE_REMINDER,
                entity_id=entity_id,
            )
        except Exception:  # noqa: BLE001
            logger.exception("reminder dispatch failed: id=%s user=%s", reminder.id, reminder.user_id)
            return False
        return True

    def _next_occurrence(self, reminder: Reminder, *, reference: datetime) -> Optional[datetime]:
        schedule = ScheduleDescriptor.from_fields(time=reminder.time, days=reminder.days, tz=reminder.tz)
        return compute_next_occurrence(schedule, reference, tz_resolver=self._tz_resolver)

    def _advance(self, reminder: Reminder, *, now: datetime, bucket_ts: int) -> None:
        """
        配信後の状態遷移。

        - 繰り返し: 透かしを更新し、今+1分を基準に次回を再計算
        - 単発: 透かしを更新して無効化（scheduled_at はそのまま）
        """

        reminder.last_triggered_at_utc = int(bucket_ts)
        if not reminder.is_recurring:
            reminder.active = False
            return

        next_at = self._next_occurrence(reminder, reference=now + _RESCHEDULE_OFFSET)
        if next_at is None:
            # time が壊れている繰り返しは進められないので止める
            logger.warning("recurring reminder has no next occurrence; deactivating: id=%s", reminder.id)
            reminder.active = False
            return
        reminder.scheduled_at_utc = to_utc_ts(next_at)

    def _retire_missed(self, reminder: Reminder, *, now: datetime, lateness_seconds: int) -> None:
        """
        猶予切れの片付け（配信はしない、透かしも更新しない）。

        - 繰り返し: 次回を未来へ進める
        - 単発: 無効化
        """

        logger.warning(
            "reminder occurrence missed: id=%s late_by=%ds recurring=%s",
            reminder.id,
            lateness_seconds,
            reminder.is_recurring,
        )
        if not reminder.is_recurring:
            reminder.active = False
            return

        next_at = self._next_occurrence(reminder, reference=now)
        if next_at is None:
            reminder.active = False
            return
        reminder.scheduled_at_utc = to_utc_ts(next_at)
