"""依存オブジェクトの生成。"""

from __future__ import annotations

from typing import Iterator, Optional

from fastapi import Header, HTTPException, status
from sqlalchemy.orm import Session

from reminder_engine.reminders_db import get_reminders_db
from reminder_engine.reminders_logic import Clock, utc_now


def get_reminders_db_dep() -> Iterator[Session]:
    """リマインダーDBセッションのFastAPI依存性注入用。"""
    yield from get_reminders_db()


def get_clock() -> Clock:
    """現在時刻の取得関数（テストでは dependency_overrides で固定時刻に差し替える）。"""
    return utc_now


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """
    操作ユーザーIDを X-User-Id ヘッダーから取得する。

    認証そのものは前段（Bearerトークン/ゲートウェイ）の責務とし、ここでは存在のみ確認する。
    """
    user_id = str(x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header is required")
    return user_id
