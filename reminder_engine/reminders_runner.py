"""
リマインダー配信スイープの定期実行（バックグラウンドスレッド）

アプリケーション起動時にバックグラウンドスレッドで ReminderService.tick() を
一定間隔（既定60秒、境界に揃える）で呼び出す。
プロセス内で同時に動くスイープは1つだけにする。
"""

from __future__ import annotations

import logging
import threading
import time

from reminder_engine.reminders_service import ReminderService


logger = logging.getLogger(__name__)

_lock = threading.Lock()
_thread: threading.Thread | None = None
_stop_event: threading.Event | None = None


def seconds_until_next_boundary(now_s: float, interval_seconds: float) -> float:
    """次の間隔境界（例: 次の分の0秒）までの秒数。"""
    if interval_seconds <= 0:
        return 0.0
    remainder = now_s % interval_seconds
    return interval_seconds - remainder


def run_forever(
    *,
    service: ReminderService,
    interval_seconds: float = 60.0,
    stop_event: threading.Event | None = None,
) -> None:
    """スイープのメインループ。tick の例外でスレッドを落とさない。"""
    logger.info("reminder sweep start (interval=%.1fs)", interval_seconds)
    while True:
        if stop_event is not None and stop_event.is_set():
            break
        try:
            service.tick()
        except Exception:  # noqa: BLE001
            logger.exception("reminder sweep tick failed")

        wait_s = seconds_until_next_boundary(time.time(), float(interval_seconds))
        if stop_event is not None:
            if stop_event.wait(wait_s):
                break
        else:
            time.sleep(wait_s)
    logger.info("reminder sweep stopped")


def is_alive() -> bool:
    """
    スイープスレッドの稼働状態を確認する。

    スレッドが存在し、実行中であればTrueを返す。
    """
    t = _thread
    return t is not None and t.is_alive()


def start(*, service: ReminderService, interval_seconds: float = 60.0) -> None:
    """
    スイープスレッドを起動する。

    既に起動済みの場合は何もしない。
    デーモンスレッドとして起動し、アプリ終了時に自動停止する。
    """
    with _lock:
        global _thread, _stop_event
        if _thread is not None and _thread.is_alive():
            return

        stop_event = threading.Event()
        t = threading.Thread(
            target=run_forever,
            kwargs={
                "service": service,
                "interval_seconds": float(interval_seconds),
                "stop_event": stop_event,
            },
            name="reminder_engine_sweep",
            daemon=True,
        )
        _stop_event = stop_event
        _thread = t
        t.start()


def stop(*, timeout_seconds: float = 5.0) -> None:
    """
    スイープスレッドを停止する。

    停止イベントをセットし、指定秒数までスレッドの終了を待機する。
    """
    with _lock:
        global _thread, _stop_event
        if _stop_event is not None:
            _stop_event.set()
        t = _thread

    if t is not None:
        t.join(timeout_seconds)

    with _lock:
        _thread = None
        _stop_event = None
