"""設定読み込みとランタイム設定ストア。"""

from __future__ import annotations

import pathlib
from dataclasses import dataclass
from typing import Optional

import tomli

from reminder_engine import paths


@dataclass
class Config:
    """TOML起動設定（起動時のみ使用、変更不可）。"""

    token: str
    log_level: str

    # ログ出力
    log_file_enabled: bool = False
    log_file_path: str = "logs/reminder_engine.log"

    # 配信スイープ
    sweep_enabled: bool = True
    sweep_interval_seconds: float = 60.0
    grace_window_seconds: int = 10 * 60
    sweep_batch_size: int = 200

    # 旧形式（habits.reminder_time）の互換スイープ
    legacy_sweep_enabled: bool = True
    legacy_batch_size: int = 500

    # 未指定なら data/reminders.db（SQLite）
    database_url: Optional[str] = None


# 必須キー / 任意キー（デフォルトは Config 側）
_REQUIRED_KEYS = ("token", "log_level")
_OPTIONAL_KEYS: dict[str, type] = {
    "log_file_enabled": bool,
    "log_file_path": str,
    "sweep_enabled": bool,
    "sweep_interval_seconds": float,
    "grace_window_seconds": int,
    "sweep_batch_size": int,
    "legacy_sweep_enabled": bool,
    "legacy_batch_size": int,
    "database_url": str,
}


class ConfigStore:
    """ランタイム設定ストア。"""

    def __init__(self, toml_config: Config) -> None:
        self._toml = toml_config

    @property
    def config(self) -> Config:
        """起動時に読み込んだ設定を返す。"""
        return self._toml

    @property
    def token(self) -> str:
        """API認証用トークン。"""
        return self._toml.token


def _require(config_dict: dict, key: str) -> str:
    if key not in config_dict or config_dict[key] in (None, ""):
        raise ValueError(f"config key '{key}' is required")
    return config_dict[key]


def _coerce(key: str, value, expected: type):
    """TOML値を期待型へ寄せる（int→float のみ許容、bool と数値の取り違えは弾く）。"""
    if expected is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if expected in (int, float) and isinstance(value, bool):
        raise ValueError(f"config key '{key}' must be a number")
    if not isinstance(value, expected):
        raise ValueError(f"config key '{key}' must be {expected.__name__}")
    return value


def parse_config(data: dict) -> Config:
    """TOMLを読み込んだ dict から Config を構築する。"""
    allowed_keys = set(_REQUIRED_KEYS) | set(_OPTIONAL_KEYS)
    unknown_keys = sorted(set(data.keys()) - allowed_keys)
    if unknown_keys:
        keys = ", ".join(repr(k) for k in unknown_keys)
        raise ValueError(f"unknown config key(s): {keys}")

    optional = {
        key: _coerce(key, data[key], expected)
        for key, expected in _OPTIONAL_KEYS.items()
        if key in data
    }

    config = Config(
        token=_require(data, "token"),
        log_level=_require(data, "log_level"),
        **optional,
    )
    if config.grace_window_seconds < 0:
        raise ValueError("config key 'grace_window_seconds' must be >= 0")
    if config.sweep_batch_size <= 0 or config.legacy_batch_size <= 0:
        raise ValueError("batch sizes must be positive")
    return config


def load_config(path: str | pathlib.Path | None = None) -> Config:
    """TOML設定のみ読み込み。"""
    config_path = pathlib.Path(path) if path is not None else paths.get_default_config_file_path()
    if not config_path.exists():
        raise FileNotFoundError(f"config file not found: {config_path}")

    with config_path.open("rb") as f:
        data = tomli.load(f)

    return parse_config(data)


_config_store: ConfigStore | None = None


def set_global_config_store(store: ConfigStore) -> None:
    """グローバルConfigStoreを設定。"""
    global _config_store
    _config_store = store


def get_config_store() -> ConfigStore:
    """グローバルConfigStoreを取得。"""
    global _config_store
    if _config_store is None:
        raise RuntimeError("ConfigStore not initialized")
    return _config_store


def get_token() -> str:
    """API認証用トークンを返す。"""
    return get_config_store().token
