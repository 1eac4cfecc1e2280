"""リマインダーエンジンの例外。

- ValidationError: ユーザー入力の不備（HTTPでは400）
- NotFoundError: 対象が存在しない / 所有者が違う（HTTPでは404）

いずれも呼び出し元へ同期的に返すためのもので、システム障害としてはログしない。
"""

from __future__ import annotations


class ReminderError(Exception):
    """リマインダー操作の基底例外。"""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ReminderError):
    """入力検証エラー（時刻形式・時間帯・対象指定など）。"""


class NotFoundError(ReminderError):
    """対象のリマインダー/習慣が見つからない。"""
