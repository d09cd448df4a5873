import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

"""
ブックマークツリーのモデル。
- `Folder` / `Link` : ノード（閉じた直和型 `Node`）
- `BookmarkTree` : bookmark_bar / other / synced の3つのルート
- `traverse_links`, `prune`, `clone` : I/O を持たない純粋なツリー操作
"""


class BookmarkFormatError(ValueError):
    """The input is not a bookmark export this application understands."""


# ルートのキー（JSONエクスポートの `roots` と同じ名前・同じ走査順）
ROOT_KEYS = ("bookmark_bar", "other", "synced")


@dataclass
class Link:
    id: str
    name: str = ""
    url: str = ""
    date_added: Optional[str] = None
    date_modified: Optional[str] = None
    # 元データにあった未知のフィールド（guid, meta_info など）
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Folder:
    id: str
    name: str = ""
    children: List["Node"] = field(default_factory=list)
    date_added: Optional[str] = None
    date_modified: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def append(self, child: "Node") -> None:
        self.children.append(child)


Node = Union[Folder, Link]


@dataclass
class BookmarkTree:
    """A bookmark collection with up to three named root folders."""
    bookmark_bar: Optional[Folder] = None
    other: Optional[Folder] = None
    synced: Optional[Folder] = None
    version: int = 1
    # 元データのトップレベルにあった未知のキー
    extra: Dict[str, Any] = field(default_factory=dict)

    def is_valid(self) -> bool:
        return self.bookmark_bar is not None or self.other is not None

    def roots(self) -> Iterator[Tuple[str, Folder]]:
        """存在するルートを (キー, フォルダ) として bookmark_bar, other, synced の順に返す。"""
        for key in ROOT_KEYS:
            folder = getattr(self, key)
            if folder is not None:
                yield key, folder


def iter_nodes(node: Node) -> Iterator[Node]:
    """深さ優先・前順でノードを列挙する（自分自身を含む）。"""
    yield node
    if isinstance(node, Folder):
        for child in node.children:
            yield from iter_nodes(child)


def traverse_links(tree: BookmarkTree) -> List[Link]:
    """
    ツリー内のリンクを深さ優先・前順で集める。

    フォルダは返さない。IDが空のリンクは除外するが、URLが空のリンクは含める
    （リンクチェック側で「チェック対象なし」として扱う）。

    Args:
        tree: 対象のツリー

    Returns:
        Link のリスト（bookmark_bar, other, synced の順）
    """
    links = []
    for _, root in tree.roots():
        for node in iter_nodes(root):
            if isinstance(node, Link) and node.id:
                links.append(node)
    return links


def find_node(tree: BookmarkTree, node_id: str) -> Optional[Node]:
    for _, root in tree.roots():
        for node in iter_nodes(root):
            if node.id == node_id:
                return node
    return None


def count_folders(tree: BookmarkTree) -> int:
    """Number of folders below the roots (roots themselves excluded)."""
    total = 0
    for _, root in tree.roots():
        total += sum(1 for node in iter_nodes(root) if isinstance(node, Folder)) - 1
    return total


def clone(tree: BookmarkTree) -> BookmarkTree:
    """入力と参照を共有しない完全なコピーを返す。"""
    return copy.deepcopy(tree)


def _prune_folder(folder: Folder, ids: frozenset) -> Folder:
    children = []
    for child in folder.children:
        if isinstance(child, Folder):
            # フォルダは空になっても残す
            children.append(_prune_folder(child, ids))
        elif isinstance(child, Link):
            if child.id not in ids:
                children.append(copy.deepcopy(child))
        else:
            raise TypeError(f"unexpected node type: {type(child).__name__}")
    return Folder(
        id=folder.id,
        name=folder.name,
        children=children,
        date_added=folder.date_added,
        date_modified=folder.date_modified,
        extra=copy.deepcopy(folder.extra),
    )


def prune(tree: BookmarkTree, ids_to_remove: Iterable[str]) -> BookmarkTree:
    """
    指定IDのリンクを取り除いた新しいツリーを返す。

    入力ツリーは変更しない。フォルダは削除対象にならず、存在しないIDは無視される。

    Args:
        tree: 元のツリー
        ids_to_remove: 削除するリンクのID

    Returns:
        刈り込み後のツリー（入力とは参照を共有しない）
    """
    ids = frozenset(ids_to_remove)
    pruned = BookmarkTree(version=tree.version, extra=copy.deepcopy(tree.extra))
    for key, root in tree.roots():
        setattr(pruned, key, _prune_folder(root, ids))
    return pruned
