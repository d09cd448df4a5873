import io
import html
import logging
from typing import Callable, Dict, List, Optional, Set

from bs4 import BeautifulSoup, Tag

from .model import BookmarkFormatError, BookmarkTree, Folder, Link, Node
from .utils import AppConstants, unix_to_webkit, webkit_to_unix

# Netscape Bookmark HTML Format
BOOKMARK_HTML_HEADER = """<!DOCTYPE NETSCAPE-Bookmark-file-1>
<!-- This is an automatically generated file.
     It will be read and overwritten.
     DO NOT EDIT! -->
<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">
<TITLE>Bookmarks</TITLE>
<H1>Bookmarks</H1>
<DL><p>
"""
BOOKMARK_HTML_FOOTER = """</DL><p>
"""

# トップレベルのフォルダ名による振り分け（英語・日本語の2ロケール）
BOOKMARK_BAR_NAMES = frozenset({"bookmarks bar", "bookmark bar", "ブックマーク バー", "ブックマークバー"})
OTHER_BOOKMARKS_NAMES = frozenset({"other bookmarks", "その他のブックマーク"})

logger = logging.getLogger(__name__)


def _id_counter(start: int) -> Callable[[], str]:
    state = {"next": start}

    def next_id() -> str:
        value = state["next"]
        state["next"] += 1
        return str(value)
    return next_id


def _following_list(h3: Tag) -> Optional[Tag]:
    """見出しの直後にある <DL>（フォルダの中身）を返す。"""
    for sibling in h3.next_siblings:
        if not isinstance(sibling, Tag):
            continue
        if sibling.name == "dl":
            return sibling
        if sibling.name not in ("p", "dd"):
            return None
        # 閉じられていない <DD>（フォルダの説明）の中に <DL> が入る
        nested = sibling.find("dl", recursive=False)
        if nested is not None:
            return nested
    return None


def _collect_items(container: Tag, next_id: Callable[[], str], toolbar_ids: Set[str]) -> List[Node]:
    """
    <DL> 配下を文書順に走査してノードのリストを作る。

    html.parser は閉じられていない <DT>/<p> を入れ子にするため、再帰ではなく
    明示的なスタックで走査する。<H3> の直後の <DL> はそのフォルダの子として扱い、
    それ以外の要素は現在の階層にそのまま展開する。
    PERSONAL_TOOLBAR_FOLDER の付いたフォルダのIDは toolbar_ids に追加する。
    """
    top: List[Node] = []
    folder_lists: Dict[int, List[Node]] = {}
    stack = [(child, top) for child in reversed(container.contents)]
    while stack:
        element, sink = stack.pop()
        if not isinstance(element, Tag):
            continue
        if element.name == "h3":
            folder = Folder(
                id=next_id(),
                name=element.get_text().strip(),
                date_added=unix_to_webkit(element.get("add_date")),
                date_modified=unix_to_webkit(element.get("last_modified")),
            )
            if element.get("personal_toolbar_folder", "").lower() == "true":
                toolbar_ids.add(folder.id)
            sink.append(folder)
            dl = _following_list(element)
            if dl is not None:
                folder_lists[id(dl)] = folder.children
            continue
        if element.name == "a":
            sink.append(Link(
                id=next_id(),
                name=element.get_text().strip(),
                url=element.get("href", ""),
                date_added=unix_to_webkit(element.get("add_date")),
                date_modified=unix_to_webkit(element.get("last_modified")),
            ))
            continue
        if element.name == "dl":
            sink = folder_lists.get(id(element), sink)
        stack.extend((child, sink) for child in reversed(element.contents))
    return top


def _absorb(root: Folder, folder: Folder) -> None:
    root.name = folder.name
    root.date_added = root.date_added or folder.date_added
    root.date_modified = root.date_modified or folder.date_modified
    root.children.extend(folder.children)


def parse_netscape_html(text: str) -> BookmarkTree:
    """
    Netscape形式のブックマークHTMLをパースする。

    トップレベルのフォルダは名前で bookmark_bar / other に振り分け、
    いずれにも当てはまらないフォルダとフォルダ外のリンクは bookmark_bar の子に追加する。
    PERSONAL_TOOLBAR_FOLDER="true" のフォルダは名前に関係なく bookmark_bar とみなす。
    IDは `AppConstants.HTML_ID_OFFSET` から連番で振り直す。

    Args:
        text: HTML文字列

    Returns:
        BookmarkTree

    Raises:
        BookmarkFormatError: ブックマークのリストもリンクも見つからない場合
    """
    soup = BeautifulSoup(text, "html.parser")
    container = soup.select_one("dl")
    if container is None:
        if soup.find("a") is None:
            raise BookmarkFormatError("no bookmark list found in HTML")
        container = soup

    next_id = _id_counter(AppConstants.HTML_ID_OFFSET)
    toolbar_ids: Set[str] = set()
    items = _collect_items(container, next_id, toolbar_ids)

    bar = Folder(id="1", name="Bookmarks bar")
    other = Folder(id="2", name="Other bookmarks")
    for item in items:
        if isinstance(item, Folder):
            key = item.name.strip().lower()
            if item.id in toolbar_ids or key in BOOKMARK_BAR_NAMES:
                _absorb(bar, item)
            elif key in OTHER_BOOKMARKS_NAMES:
                _absorb(other, item)
            else:
                bar.append(item)
        else:
            bar.append(item)

    logger.debug("Parsed %d top-level HTML items", len(items))
    return BookmarkTree(bookmark_bar=bar, other=other, version=AppConstants.JSON_EXPORT_VERSION)


def _date_attrs(node: Node) -> str:
    attrs = ""
    add_date = webkit_to_unix(node.date_added)
    if add_date:
        attrs += f' ADD_DATE="{add_date}"'
    last_modified = webkit_to_unix(node.date_modified)
    if last_modified:
        attrs += f' LAST_MODIFIED="{last_modified}"'
    return attrs


def export_netscape_html(tree: BookmarkTree) -> str:
    out = io.StringIO()
    out.write(BOOKMARK_HTML_HEADER)

    def esc(s: str) -> str:
        return html.escape(s or "", quote=True)

    def write_link(node: Link, ind: str) -> None:
        out.write(f'{ind}<DT><A HREF="{esc(node.url)}"{_date_attrs(node)}>{esc(node.name)}</A>\n')

    def write_folder(node: Folder, indent: int = 1, extra_attrs: str = "") -> None:
        ind = "    " * indent
        out.write(f'{ind}<DT><H3{_date_attrs(node)}{extra_attrs}>{esc(node.name)}</H3>\n')
        out.write(f"{ind}<DL><p>\n")
        for ch in node.children:
            if isinstance(ch, Folder):
                write_folder(ch, indent + 1)
            else:
                write_link(ch, ind + "    ")
        out.write(f"{ind}</DL><p>\n")

    for key, root in tree.roots():
        if not root.children:
            continue
        # ブラウザのインポートでツールバーとして扱われるようにする
        attrs = ' PERSONAL_TOOLBAR_FOLDER="true"' if key == "bookmark_bar" else ""
        write_folder(root, 1, attrs)
    out.write(BOOKMARK_HTML_FOOTER)
    return out.getvalue()
