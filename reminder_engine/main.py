"""FastAPI エントリポイント。"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from reminder_engine import event_stream
from reminder_engine.api import events, notifications, reminders
from reminder_engine.config import Config, get_config_store
from reminder_engine.logging_config import setup_logging, suppress_uvicorn_access_log_paths


security = HTTPBearer()
logger = logging.getLogger(__name__)


def verify_token(credentials: HTTPAuthorizationCredentials = Depends(security)) -> str:
    """Bearerトークンを検証し、OKならトークン文字列を返す。"""
    token = get_config_store().config.token
    if credentials.credentials != token:
        logger.warning("Authentication failed: invalid token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication token")
    return credentials.credentials


def create_app(config: Optional[Config] = None, *, db_url: Optional[str] = None) -> FastAPI:
    """
    アプリ生成と初期化（設定→ログ→リマインダーDB→ルータ登録）をまとめて行う。

    config / db_url を渡すとそれを使う（テスト用）。省略時は config/setting.toml を読む。
    """
    from reminder_engine.config import ConfigStore, load_config, set_global_config_store
    from reminder_engine.reminders_db import dispose_reminders_db, init_reminders_db

    # 1. TOML設定読み込み
    toml_config = config if config is not None else load_config()
    setup_logging(
        toml_config.log_level,
        log_file_enabled=toml_config.log_file_enabled,
        log_file_path=toml_config.log_file_path,
    )
    suppress_uvicorn_access_log_paths("/api/health")
    set_global_config_store(ConfigStore(toml_config))

    # 2. リマインダーDB初期化
    init_reminders_db(db_url or toml_config.database_url)

    # 3. FastAPIアプリ作成
    app = FastAPI(title="Reminder Engine API")

    app.include_router(reminders.router, dependencies=[Depends(verify_token)], prefix="/api")
    app.include_router(notifications.router, dependencies=[Depends(verify_token)], prefix="/api")
    app.include_router(events.router, prefix="/api")

    @app.get("/api/health")
    async def health():
        """稼働確認用のヘルスチェック。"""
        from reminder_engine import reminders_runner

        return {"status": "healthy", "sweep_running": reminders_runner.is_alive()}

    @app.on_event("startup")
    async def start_event_stream_dispatcher() -> None:
        """イベント配信のdispatcherを起動。"""
        loop = asyncio.get_running_loop()
        event_stream.install(loop)
        await event_stream.start_dispatcher()

    @app.on_event("startup")
    async def start_reminder_sweep() -> None:
        """同一プロセス内のスイープスレッドを起動（1分ごとに due を配信）。"""
        from reminder_engine import reminders_runner
        from reminder_engine.notifications import AppNotificationSink
        from reminder_engine.reminders_service import ReminderService

        if not toml_config.sweep_enabled:
            logger.info("reminder sweep disabled by config")
            return

        service = ReminderService(
            sink=AppNotificationSink(),
            grace_window_seconds=toml_config.grace_window_seconds,
            batch_size=toml_config.sweep_batch_size,
            legacy_enabled=toml_config.legacy_sweep_enabled,
            legacy_batch_size=toml_config.legacy_batch_size,
        )
        reminders_runner.start(service=service, interval_seconds=toml_config.sweep_interval_seconds)
        logger.info("reminder sweep started (interval=%.1fs)", toml_config.sweep_interval_seconds)

    @app.on_event("shutdown")
    async def stop_reminder_sweep() -> None:
        """スイープスレッドを停止。"""
        from reminder_engine import reminders_runner

        await asyncio.to_thread(reminders_runner.stop, timeout_seconds=5.0)

    @app.on_event("shutdown")
    async def stop_event_stream_dispatcher() -> None:
        """イベント配信のdispatcherを停止。"""
        await event_stream.stop_dispatcher()
        event_stream.uninstall()

    @app.on_event("shutdown")
    async def close_reminders_db() -> None:
        """リマインダーDBのエンジンを破棄。"""
        dispose_reminders_db()

    return app
