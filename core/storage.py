import os
import configparser
import logging
from datetime import datetime
from urllib.parse import quote, urlparse, urlunparse
from typing import Optional, Dict, Any

from .utils import AppConstants, today_stamp

"""
ストレージ／設定モジュール。
- `ConfigManager` : `config.ini` を管理するクラス
- `decode_bookmarks` / `encode_bookmarks` : 形式ごとの読み書きの振り分け
- `load_bookmarks` / `save_bookmarks` : ファイル入出力
"""

logger = logging.getLogger(__name__)

FORMAT_JSON = "json"
FORMAT_HTML = "html"
SUPPORTED_FORMATS = (FORMAT_JSON, FORMAT_HTML)

PROXY_ENV_VAR = "BOOKMARK_CHECKER_PROXY"


class ConfigManager:
    """設定ファイル(config.ini)の管理を専門に行うクラス。"""

    def __init__(self, config_path='config.ini'):
        self.config_path = config_path
        self.config = configparser.ConfigParser()
        self.load_config()

    def load_config(self):
        """設定ファイルを読み込む"""
        if os.path.exists(self.config_path):
            self.config.read(self.config_path, encoding='utf-8')

    def get_concurrency(self) -> int:
        """同時チェック数（1未満は1に丸める）"""
        try:
            value = self.config.getint('Checker', 'concurrency', fallback=AppConstants.DEFAULT_CONCURRENCY)
        except ValueError:
            logger.warning("Invalid [Checker] concurrency in %s; using default", self.config_path)
            value = AppConstants.DEFAULT_CONCURRENCY
        return max(AppConstants.MIN_CONCURRENCY, value)

    def _get_timeout(self, option: str, default: float) -> float:
        try:
            value = self.config.getfloat('Checker', option, fallback=default)
        except ValueError:
            logger.warning("Invalid [Checker] %s in %s; using default", option, self.config_path)
            return float(default)
        return value if value > 0 else float(default)

    def get_primary_timeout(self) -> float:
        return self._get_timeout('primary_timeout', AppConstants.PRIMARY_TIMEOUT)

    def get_secondary_timeout(self) -> float:
        return self._get_timeout('secondary_timeout', AppConstants.SECONDARY_TIMEOUT)

    def get_user_agent(self) -> str:
        return self.config.get('Checker', 'user_agent', fallback=AppConstants.USER_AGENT)

    def get_output_directory(self) -> str:
        return self.config.get('Output', 'directory', fallback='.')

    def _validate_proxy_url(self, url: Optional[str]) -> bool:
        """
        プロキシURLの形式を検証する

        Args:
            url: 検証するURL文字列

        Returns:
            有効な場合はTrue、無効な場合はFalse
        """
        if not url:
            return False
        try:
            parsed = urlparse(url)
            # httpまたはhttpsスキームを要求
            if parsed.scheme.lower() not in ('http', 'https'):
                return False
            # ホスト名が存在することを確認
            if not parsed.netloc:
                return False
            return True
        except ValueError:
            return False

    def get_proxy_settings(self) -> Optional[Dict[str, Any]]:
        """
        プロキシ設定を取得し、検証する

        優先順位:
        1. 環境変数 BOOKMARK_CHECKER_PROXY
        2. config.ini の [Proxy] セクション

        Returns:
            プロキシ設定の辞書（'url', 'user', 'password'を含む）、
            無効な設定または設定がない場合はNone
        """
        env_url = os.environ.get(PROXY_ENV_VAR)
        if env_url:
            env_url = env_url.strip()
            if self._validate_proxy_url(env_url):
                return {'url': env_url, 'user': None, 'password': None}
            logger.warning("Ignoring invalid proxy URL in %s", PROXY_ENV_VAR)

        if 'Proxy' not in self.config:
            return None

        proxy_section = self.config['Proxy']
        url = proxy_section.get('url')

        # URL検証
        if not self._validate_proxy_url(url):
            return None

        return {
            'url': url,
            'user': proxy_section.get('user'),
            'password': proxy_section.get('password')
        }

    def get_proxy_for_httpx(self, use_proxy: bool = True) -> Optional[str]:
        """
        httpx 用のプロキシURLを返す（認証情報はURLに埋め込む）

        Args:
            use_proxy: プロキシを使用するかどうか

        Returns:
            プロキシURL、またはNone
        """
        if not use_proxy:
            return None

        settings = self.get_proxy_settings()
        if not settings:
            return None

        user = settings.get('user')
        password = settings.get('password')
        if not (user and password):
            return settings['url']

        parsed = urlparse(settings['url'])
        netloc = f"{quote(user, safe='')}:{quote(password, safe='')}@{parsed.netloc}"
        return urlunparse(parsed._replace(netloc=netloc))


from .model import BookmarkFormatError, BookmarkTree
from .chrome_json import parse_chrome_json, export_chrome_json
from .netscape import parse_netscape_html, export_netscape_html


def detect_format(text: str, filename: Optional[str] = None) -> str:
    """拡張子、なければ内容の先頭からJSONかHTMLかを判定する。"""
    if filename:
        ext = os.path.splitext(filename)[1].lower()
        if ext == '.json':
            return FORMAT_JSON
        if ext in ('.html', '.htm'):
            return FORMAT_HTML
    head = text.lstrip('\ufeff \t\r\n')
    return FORMAT_JSON if head.startswith('{') else FORMAT_HTML


def _check_format(fmt: str) -> str:
    fmt = (fmt or '').lower()
    if fmt not in SUPPORTED_FORMATS:
        raise BookmarkFormatError(f"unsupported format: {fmt!r}")
    return fmt


def decode_bookmarks(data, format_hint: Optional[str] = None) -> BookmarkTree:
    """
    バイト列または文字列をツリーに変換する。

    Args:
        data: ファイルの内容（bytes は UTF-8 として扱う）
        format_hint: "json" / "html"、None の場合は内容から判定

    Returns:
        BookmarkTree

    Raises:
        BookmarkFormatError: どちらの形式としても不正な場合
        UnicodeDecodeError: UTF-8 として読めない場合
    """
    text = data.decode('utf-8-sig') if isinstance(data, (bytes, bytearray)) else data
    fmt = _check_format(format_hint) if format_hint else detect_format(text)
    if fmt == FORMAT_JSON:
        return parse_chrome_json(text)
    return parse_netscape_html(text)


def encode_bookmarks(tree: BookmarkTree, fmt: str) -> str:
    if _check_format(fmt) == FORMAT_JSON:
        return export_chrome_json(tree)
    return export_netscape_html(tree)


def default_filename(fmt: str, now: Optional[datetime] = None) -> str:
    """`Bookmarks_<YYYYMMDD>.<json|html>` 形式の保存ファイル名"""
    return f"Bookmarks_{today_stamp(now)}.{_check_format(fmt)}"


def load_bookmarks(path: str) -> tuple[BookmarkTree, str]:
    """Load a bookmark file.

    Args:
        path: ブックマークファイルのパス

    Returns:
        (tree, format) のタプル

    Raises:
        OSError: ファイル読み込みエラー
        UnicodeDecodeError: 文字コードエラー
        BookmarkFormatError: パースエラー
    """
    with open(path, 'r', encoding='utf-8-sig') as f:
        data = f.read()
    fmt = detect_format(data, path)
    tree = decode_bookmarks(data, fmt)
    logger.info("Loaded %s bookmarks from %s", fmt, path)
    return tree, fmt


def save_bookmarks(path: str, tree: BookmarkTree, fmt: str) -> str:
    """
    Save bookmarks in the given format.

    Args:
        path: 保存先のファイルパス
        tree: 保存するツリー
        fmt: "json" / "html"

    Returns:
        保存したファイルのパス

    Raises:
        OSError: ファイル書き込みエラー
    """
    text = encode_bookmarks(tree, fmt)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(text)
    logger.info("Saved %s bookmarks to %s", fmt, path)
    return path
