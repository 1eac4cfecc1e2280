"""
WebSocket向けアプリイベント配信

リマインダー通知などのアプリケーションイベントを
WebSocketクライアントにリアルタイム配信する。
イベントはリングバッファに保持され、新規接続時にキャッチアップ可能。

NOTE:
- publish() はスイープのスレッドからも呼ばれるため、call_soon_threadsafe でキューへ渡す。
- クライアントはユーザーID単位で登録し、receiver_id が一致するものだけへ送る。
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from fastapi import WebSocket


MAX_BUFFER = 200


@dataclass
class AppEvent:
    """
    WebSocket配信用のイベント。

    宛先ユーザーと関連エンティティ（リマインダー/習慣）に紐づくデータを保持する。
    """

    event_id: str  # イベント固有ID（UUID）
    ts: str  # ISO形式タイムスタンプ
    type: str  # イベント種別（reminder等）
    receiver_id: str  # 宛先ユーザーID
    entity_id: Optional[str]  # 関連エンティティID
    data: Dict[str, Any]  # 追加データ


_event_queue: Optional[asyncio.Queue[AppEvent]] = None
_buffer: Deque[AppEvent] = deque(maxlen=MAX_BUFFER)
_clients: Dict["WebSocket", str] = {}
_dispatch_task: Optional[asyncio.Task[None]] = None
_handler_installed = False
_loop: Optional[asyncio.AbstractEventLoop] = None
logger = logging.getLogger(__name__)


def _serialize_event(event: AppEvent) -> str:
    """
    イベントをJSON文字列にシリアライズする。

    WebSocket送信用の最小ペイロードに整形する。
    """
    return json.dumps(
        {
            "event_id": event.event_id,
            "ts": event.ts,
            "type": event.type,
            "entity_id": event.entity_id,
            "data": event.data,
        },
        ensure_ascii=False,
        separators=(",", ":"),
    )


def install(loop: asyncio.AbstractEventLoop) -> None:
    """
    イベントストリームを初期化する。

    publish()で使用するイベントループとキューをセットアップする。
    多重呼び出しは無視される。
    """
    global _event_queue, _handler_installed, _loop
    if _handler_installed:
        return
    _loop = loop
    _event_queue = asyncio.Queue()
    _handler_installed = True
    logger.info("event stream installed")


def uninstall() -> None:
    """イベントストリームを未初期化に戻す（アプリ終了時/テスト用）。"""
    global _event_queue, _handler_installed, _loop
    _event_queue = None
    _loop = None
    _handler_installed = False
    _buffer.clear()
    _clients.clear()


async def start_dispatcher() -> None:
    """
    イベント配信タスクを起動する。

    キューからイベントを取り出し、宛先の一致するクライアントへ配信する。
    """
    global _dispatch_task
    if _dispatch_task is not None:
        return
    if _event_queue is None:
        raise RuntimeError("event queue is not initialized. call install() first.")
    loop = asyncio.get_running_loop()
    _dispatch_task = loop.create_task(_dispatch_loop())
    logger.info("event stream dispatcher started")


async def stop_dispatcher() -> None:
    """
    イベント配信タスクを停止する。

    アプリケーション終了時に呼び出してタスクをキャンセルする。
    """
    global _dispatch_task
    if _dispatch_task is None:
        return
    _dispatch_task.cancel()
    try:
        await _dispatch_task
    except asyncio.CancelledError:  # pragma: no cover
        pass
    _dispatch_task = None


def publish(*, type: str, receiver_id: str, entity_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None) -> None:
    """
    イベントをキューに投入する。

    スレッドセーフにイベントを追加し、dispatcherが配信を行う。
    未初期化（スイープ単体実行など）のときは何もしない。
    """
    if _event_queue is None or _loop is None:
        return
    event = AppEvent(
        event_id=str(uuid.uuid4()),
        ts=datetime.now(timezone.utc).isoformat(),
        type=type,
        receiver_id=str(receiver_id),
        entity_id=(str(entity_id) if entity_id is not None else None),
        data=data or {},
    )
    try:
        _loop.call_soon_threadsafe(_event_queue.put_nowait, event)
    except RuntimeError:
        # ループ終了後の publish は捨てる（通知自体は DB に残っている）
        logger.debug("event loop is closed; dropping event type=%s", type)


def get_buffer_snapshot(receiver_id: Optional[str] = None) -> List[AppEvent]:
    """
    バッファ内の直近イベントを取得する。

    receiver_id を指定した場合はそのユーザー宛てのみ返す。
    """
    events = list(_buffer)
    if receiver_id is None:
        return events
    return [e for e in events if e.receiver_id == str(receiver_id)]


async def add_client(ws: "WebSocket", *, user_id: str) -> None:
    """
    WebSocketクライアントを購読リストに登録する。

    以降、このユーザー宛てのイベントが配信される。
    """
    _clients[ws] = str(user_id)


async def remove_client(ws: "WebSocket") -> None:
    """
    WebSocketクライアントを購読リストから解除する。

    切断時やエラー時に呼び出される。
    """
    _clients.pop(ws, None)


async def send_buffer(ws: "WebSocket", *, user_id: str) -> None:
    """
    バッファ内のイベントを送信する。

    新規接続時にキャッチアップとして、そのユーザー宛ての直近イベントを順に送信する。
    """
    for event in get_buffer_snapshot(user_id):
        await ws.send_text(_serialize_event(event))


async def _dispatch_loop() -> None:
    while True:
        if _event_queue is None:  # pragma: no cover
            await asyncio.sleep(0.1)
            continue
        event = await _event_queue.get()
        _buffer.append(event)
        payload = _serialize_event(event)

        dead_clients: List["WebSocket"] = []
        for ws, user_id in list(_clients.items()):
            if user_id != event.receiver_id:
                continue
            try:
                await ws.send_text(payload)
            except Exception:  # noqa: BLE001
                dead_clients.append(ws)

        for ws in dead_clients:
            await remove_client(ws)
