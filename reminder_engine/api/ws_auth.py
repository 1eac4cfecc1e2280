"""
WebSocket用の認証ユーティリティ

WebSocket接続時にAuthorizationヘッダーのBearerトークンと X-User-Id を検証する。
認証失敗時はWS_1008_POLICY_VIOLATIONでコネクションをクローズする。
"""

from __future__ import annotations

from typing import Optional

from fastapi import WebSocket, status

from reminder_engine.config import get_token


async def authenticate_ws_bearer(websocket: WebSocket) -> Optional[str]:
    """
    WebSocket接続のBearerトークンを検証し、購読するユーザーIDを返す。

    ブラウザ等でヘッダーを付けられない場合に備え、user_id はクエリ文字列でも受け付ける。
    認証失敗時はWS_1008_POLICY_VIOLATIONでクローズしてNoneを返す。
    """
    # WebSocketはHTTPステータスを返せないため、認証失敗は規約違反としてcloseする
    auth_header = websocket.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None

    provided = auth_header.split(" ", 1)[1].strip()
    expected = get_token()
    if provided != expected:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None

    user_id = str(websocket.headers.get("X-User-Id") or websocket.query_params.get("user_id") or "").strip()
    if not user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None

    return user_id
