"""
通知の配信先（Notification sink）

スイープは配信先をこのプロトコル越しに呼ぶ（戻り値は使わない、失敗は例外）。
アプリ用の実装は notifications テーブルへ保存し、WebSocket にも流す。
"""

from __future__ import annotations

import logging
from typing import Callable, ContextManager, Optional, Protocol

from sqlalchemy.orm import Session

from reminder_engine import event_stream
from reminder_engine.reminders_db import reminders_session_scope
from reminder_engine.reminders_models import Notification


logger = logging.getLogger(__name__)

NOTIFICATION_TYPE_REMINDER = "reminder"

SessionScopeFactory = Callable[[], ContextManager[Session]]


class NotificationSink(Protocol):
    """通知の配信先。"""

    def dispatch(self, *, receiver_id: str, text: str, type: str, entity_id: Optional[str]) -> None:
        ...


class AppNotificationSink:
    """
    アプリ内通知としての配信先。

    - 通知行は独立したセッションでコミットする（スイープ側のロールバックに巻き込まない）
    - コミット後に event_stream へ publish する
    """

    def __init__(self, *, session_scope: SessionScopeFactory = reminders_session_scope) -> None:
        self._session_scope = session_scope

    def dispatch(self, *, receiver_id: str, text: str, type: str, entity_id: Optional[str]) -> None:
        with self._session_scope() as db:
            row = Notification(
                receiver_id=str(receiver_id),
                sender_id=None,
                text=str(text),
                type=str(type),
                entity_id=(str(entity_id) if entity_id is not None else None),
            )
            db.add(row)
            db.flush()
            notification_id = row.id

        event_stream.publish(
            type=str(type),
            receiver_id=str(receiver_id),
            entity_id=entity_id,
            data={"notification_id": notification_id, "text": str(text)},
        )
        logger.debug("notification dispatched: receiver=%s entity=%s", receiver_id, entity_id)
