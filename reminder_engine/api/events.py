"""
WebSocketによるアプリイベントストリーミングAPI

配信されたリマインダー通知をリアルタイムで届ける。
クライアントはこのストリームを購読して、自分宛ての通知を受け取る。
"""

from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from reminder_engine import event_stream
from reminder_engine.api.ws_auth import authenticate_ws_bearer


router = APIRouter(prefix="/events", tags=["events"])


@router.websocket("/stream")
async def stream_events(websocket: WebSocket) -> None:
    """
    自分宛てのアプリイベントをWebSocketでストリーミング配信する。

    Bearer認証後に接続を受け入れ、切断時は自動でクライアント登録解除。
    """
    user_id = await authenticate_ws_bearer(websocket)
    if user_id is None:
        return

    await websocket.accept()
    await event_stream.add_client(websocket, user_id=user_id)
    await event_stream.send_buffer(websocket, user_id=user_id)

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await event_stream.remove_client(websocket)
