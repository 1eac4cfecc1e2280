"""
API ルーター群

reminder_engine の REST API エンドポイントを定義するルーターモジュール群。
FastAPI の APIRouter を使用して各エンドポイントを実装する。

含まれるルーター:
- reminders: リマインダーの作成/編集/ON-OFF/削除/一覧/スロット
- notifications: 受信通知の一覧
- events: 通知のWebSocketストリーム
"""
