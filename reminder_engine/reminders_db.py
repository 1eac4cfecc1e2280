"""
リマインダーDB（reminders.db）接続とセッション管理

reminders / habits / routines / notifications を同一DBで扱う。
CRUD API と配信スイープは同じセッションファクトリを共有する。
"""

from __future__ import annotations

import contextlib
import logging
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from reminder_engine import paths


logger = logging.getLogger(__name__)

# reminders.db 用 Base
RemindersBase = declarative_base()

# グローバルセッション（reminders.db 用）
RemindersSessionLocal: sessionmaker | None = None
_engine: Engine | None = None


def get_reminders_db_url() -> str:
    """reminders.db のSQLAlchemy URLを返す。"""

    p = paths.get_data_dir() / "reminders.db"
    return f"sqlite:///{p}"


def _is_sqlite_memory_url(db_url: str) -> bool:
    return db_url in {"sqlite://", "sqlite:///:memory:"} or db_url.endswith(":memory:")


def init_reminders_db(db_url: str | None = None) -> Engine:
    """
    reminders.db を初期化する（起動時）。

    - セッションファクトリを作成する
    - テーブルを作成する

    NOTE:
    - インメモリSQLiteは接続ごとに別DBになるため、StaticPool で1接続を共有する。
    """

    global RemindersSessionLocal, _engine

    url = db_url or get_reminders_db_url()
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if _is_sqlite_memory_url(url):
            engine = create_engine(url, future=True, connect_args=connect_args, poolclass=StaticPool)
        else:
            connect_args["timeout"] = 10.0
            engine = create_engine(url, future=True, connect_args=connect_args)
    else:
        engine = create_engine(url, future=True, pool_pre_ping=True)

    RemindersSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    # テーブル群を作成（モデル import が必要）
    import reminder_engine.reminders_models  # noqa: F401

    RemindersBase.metadata.create_all(bind=engine)
    _engine = engine
    logger.info("reminders DB initialized: %s", engine.url.render_as_string(hide_password=True))
    return engine


def dispose_reminders_db() -> None:
    """エンジンを破棄してセッションファクトリを未初期化に戻す（停止時/テスト用）。"""

    global RemindersSessionLocal, _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None
    RemindersSessionLocal = None


def get_reminders_db() -> Iterator[Session]:
    """
    reminders.db のセッションを取得する（FastAPI依存性注入用）。

    使用後は自動でクローズされる。
    """

    if RemindersSessionLocal is None:
        raise RuntimeError("Reminders database not initialized. Call init_reminders_db() first.")
    session = RemindersSessionLocal()
    try:
        yield session
    finally:
        session.close()


@contextlib.contextmanager
def reminders_session_scope() -> Iterator[Session]:
    """
    reminders.db のセッションスコープ（with文用）。

    正常終了時はコミット、例外時はロールバックする。
    """

    if RemindersSessionLocal is None:
        raise RuntimeError("Reminders database not initialized. Call init_reminders_db() first.")
    session = RemindersSessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
