import logging
import os
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set

from core.model import BookmarkFormatError, BookmarkTree, Link, prune, traverse_links
from core.storage import (
    decode_bookmarks,
    default_filename,
    detect_format,
    load_bookmarks,
    save_bookmarks,
    FORMAT_JSON,
)
from services.link_checker import (
    CheckReport,
    LinkChecker,
    LinkStatus,
    StatusKind,
    UNCHECKED,
)

logger = logging.getLogger(__name__)

ResultCallback = Callable[[str, LinkStatus], None]


class BookmarkLoadError(Exception):
    """Loading a bookmark file failed; the previous session state is unchanged."""


class BookmarkSession:
    """
    読み込み → チェック → 選択 → 保存 の状態を保持するセッション。

    現在のツリー、リンクごとのステータス、失敗したリンクのID、削除対象の選択を持つ。
    セッション同士は状態を共有しない。
    """

    def __init__(self):
        self.tree: Optional[BookmarkTree] = None
        self.source_format: str = FORMAT_JSON
        self.source_path: Optional[str] = None
        self.statuses: Dict[str, LinkStatus] = {}
        self.failed_ids: Set[str] = set()
        self.selection: Set[str] = set()
        self.checked = 0
        self.total = 0

    # ---- 読み込み ----

    def _replace_tree(self, tree: BookmarkTree, fmt: str, path: Optional[str]) -> None:
        self.tree = tree
        self.source_format = fmt
        self.source_path = path
        self.statuses = {link.id: UNCHECKED for link in traverse_links(tree)}
        self.failed_ids = set()
        self.selection = set()
        self.checked = 0
        self.total = 0

    def load(self, path: str) -> BookmarkTree:
        """
        ファイルを読み込む。失敗した場合は以前の状態をそのまま残す。

        Raises:
            BookmarkLoadError: 読み込み・文字コード・形式のいずれかのエラー
        """
        try:
            tree, fmt = load_bookmarks(path)
        except BookmarkFormatError as e:
            logger.warning("Invalid bookmark file %s: %s", path, e)
            raise BookmarkLoadError(f"無効なブックマークファイルです: {e}") from e
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read %s: %s", path, e)
            raise BookmarkLoadError(f"ファイルの読み込みに失敗しました: {e}") from e
        self._replace_tree(tree, fmt, path)
        return tree

    def load_text(self, data, format_hint: Optional[str] = None) -> BookmarkTree:
        try:
            tree = decode_bookmarks(data, format_hint)
        except (BookmarkFormatError, UnicodeDecodeError) as e:
            logger.warning("Invalid bookmark data: %s", e)
            raise BookmarkLoadError(f"無効なブックマークファイルです: {e}") from e
        self._replace_tree(tree, (format_hint or _sniff(data)).lower(), None)
        return tree

    # ---- リンク ----

    def links(self) -> List[Link]:
        return traverse_links(self.tree) if self.tree else []

    def failed_links(self) -> List[Link]:
        """再チェック表示用: 失敗したリンクだけを走査順で返す。"""
        return [link for link in self.links() if link.id in self.failed_ids]

    def _apply_result(self, link_id: str, status: LinkStatus) -> None:
        self.statuses[link_id] = status
        self.checked += 1
        if status.is_failure:
            self.failed_ids.add(link_id)
        else:
            self.failed_ids.discard(link_id)
        if status.kind is StatusKind.NOT_FOUND:
            # 404 は削除候補として事前に選択しておく
            self.selection.add(link_id)

    async def _run(self, checker: LinkChecker, links: List[Link],
                   on_result: Optional[ResultCallback]) -> CheckReport:
        self.checked = 0
        self.total = len(links)

        def handle(link_id: str, status: LinkStatus) -> None:
            self._apply_result(link_id, status)
            if on_result:
                on_result(link_id, status)

        return await checker.run(links, handle)

    async def check_all(self, checker: LinkChecker,
                        on_result: Optional[ResultCallback] = None) -> CheckReport:
        """すべてのリンクをチェックする（ステータスと失敗一覧はリセットされる）。"""
        links = self.links()
        self.statuses = {link.id: UNCHECKED for link in links}
        self.failed_ids = set()
        return await self._run(checker, links, on_result)

    async def recheck_failed(self, checker: LinkChecker,
                             on_result: Optional[ResultCallback] = None) -> CheckReport:
        """前回失敗したリンクだけを再チェックする。OK になったものは失敗一覧から外れる。"""
        return await self._run(checker, self.failed_links(), on_result)

    # ---- 選択 ----

    def select(self, ids: Iterable[str]) -> None:
        self.selection.update(ids)

    def deselect(self, ids: Iterable[str]) -> None:
        self.selection.difference_update(ids)

    def clear_selection(self) -> None:
        self.selection.clear()

    # ---- 保存 ----

    def pruned_tree(self) -> BookmarkTree:
        if self.tree is None:
            raise RuntimeError("no bookmarks loaded")
        return prune(self.tree, self.selection)

    def save(self, path: Optional[str] = None, fmt: Optional[str] = None,
             directory: Optional[str] = None, now: Optional[datetime] = None) -> str:
        """
        選択したリンクを除いたツリーを保存する。

        Args:
            path: 保存先（省略時は `Bookmarks_<YYYYMMDD>.<ext>`）
            fmt: "json" / "html"（省略時は読み込んだ形式）
            directory: path 省略時の保存先ディレクトリ
            now: ファイル名に使う日時（省略時は現在）

        Returns:
            保存したファイルのパス
        """
        fmt = fmt or self.source_format
        tree = self.pruned_tree()
        if path is None:
            path = os.path.join(directory or '.', default_filename(fmt, now))
        save_bookmarks(path, tree, fmt)
        logger.info("Saved %s with %d links selected for removal", path, len(self.selection))
        return path


def _sniff(data) -> str:
    text = data.decode('utf-8-sig') if isinstance(data, (bytes, bytearray)) else data
    return detect_format(text)
