from datetime import datetime, timezone
from typing import Optional

"""
ユーティリティモジュール。
- `AppConstants` : アプリケーション定数
- `webkit_to_unix` / `unix_to_webkit` : JSON(WebKit時刻) と HTML(Unix秒) の日時変換
"""

# WebKit時刻(1601-01-01起点のマイクロ秒)とUnixエポックの差（秒）
_WEBKIT_EPOCH_DELTA = 11644473600


# アプリケーション定数
class AppConstants:
    """アプリケーション全体で使用する定数"""

    # リンクチェック関連
    DEFAULT_CONCURRENCY = 5
    MIN_CONCURRENCY = 1
    PRIMARY_TIMEOUT = 30
    SECONDARY_TIMEOUT = 20
    USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36'

    # HTMLインポート時の合成ID開始値（JSON由来の小さいIDと衝突させない）
    HTML_ID_OFFSET = 100

    # JSONエクスポートの既定バージョン
    JSON_EXPORT_VERSION = 1

    # ログ設定
    LOG_FILE = 'bookmark_sweeper.log'
    LOG_MAX_BYTES = 1024 * 1024 * 5
    LOG_BACKUP_COUNT = 3


def webkit_to_unix(value: Optional[str]) -> Optional[str]:
    """WebKit時刻の文字列をUnix秒の文字列に変換する。変換できない場合はNone。"""
    if not value:
        return None
    try:
        micros = int(value)
    except (TypeError, ValueError):
        return None
    seconds = micros // 1_000_000 - _WEBKIT_EPOCH_DELTA
    if seconds < 0:
        return None
    return str(seconds)


def unix_to_webkit(value: Optional[str]) -> Optional[str]:
    """Unix秒の文字列をWebKit時刻の文字列に変換する。変換できない場合はNone。"""
    if not value:
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    if seconds < 0:
        return None
    return str((seconds + _WEBKIT_EPOCH_DELTA) * 1_000_000)


def today_stamp(now: Optional[datetime] = None) -> str:
    """Return the date as YYYYMMDD (local time unless `now` is given)."""
    now = now or datetime.now(timezone.utc).astimezone()
    return now.strftime('%Y%m%d')
