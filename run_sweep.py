"""reminder_engine スイープ単体起動スクリプト（APIサーバとは別プロセスで配信する場合）。"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path


# プロジェクトルートを PYTHONPATH に追加
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="reminder_engine sweep runner")
    parser.add_argument("--once", action="store_true", help="1回だけ tick して終了する")
    parser.add_argument(
        "--interval-seconds",
        dest="interval_seconds",
        type=float,
        default=None,
        help="tick の間隔（未指定なら設定ファイルの sweep_interval_seconds）",
    )
    parser.add_argument(
        "--backfill-legacy",
        dest="backfill_legacy",
        action="store_true",
        help="旧形式（habits.reminder_time）を Reminder 行へ移し替えて終了する",
    )
    return parser.parse_args()


def main() -> None:
    args = _parse_args()

    from reminder_engine.config import ConfigStore, load_config, set_global_config_store
    from reminder_engine.logging_config import setup_logging
    from reminder_engine.notifications import AppNotificationSink
    from reminder_engine.reminders_db import init_reminders_db, reminders_session_scope
    from reminder_engine.reminders_legacy import backfill_legacy_habit_reminders
    from reminder_engine.reminders_logic import utc_now
    from reminder_engine.reminders_runner import run_forever
    from reminder_engine.reminders_service import ReminderService

    toml_config = load_config()
    setup_logging(
        toml_config.log_level,
        log_file_enabled=toml_config.log_file_enabled,
        log_file_path=toml_config.log_file_path,
    )
    set_global_config_store(ConfigStore(toml_config))
    init_reminders_db(toml_config.database_url)

    if args.backfill_legacy:
        with reminders_session_scope() as session:
            created = backfill_legacy_habit_reminders(session, now=utc_now(), limit=toml_config.legacy_batch_size)
        print(f"backfilled {created} legacy habit reminder(s)")
        return

    service = ReminderService(
        sink=AppNotificationSink(),
        grace_window_seconds=toml_config.grace_window_seconds,
        batch_size=toml_config.sweep_batch_size,
        legacy_enabled=toml_config.legacy_sweep_enabled,
        legacy_batch_size=toml_config.legacy_batch_size,
    )

    if args.once:
        service.tick()
        return

    interval = args.interval_seconds if args.interval_seconds is not None else toml_config.sweep_interval_seconds
    run_forever(service=service, interval_seconds=float(interval))


if __name__ == "__main__":
    main()
