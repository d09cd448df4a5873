import json
import logging
from typing import Any, Dict

from .model import BookmarkFormatError, BookmarkTree, Folder, Link, Node, ROOT_KEYS
from .utils import AppConstants

"""
Chromium 系ブラウザのブックマーク JSON (`Bookmarks` ファイル形式) の読み書き。
"""

logger = logging.getLogger(__name__)

_NODE_KEYS = ("id", "name", "type", "url", "children", "date_added", "date_modified")
# 刈り込みで内容が変わるため書き出さない
_DROPPED_TOP_LEVEL = ("checksum",)


def _extra_fields(raw: Dict[str, Any], known) -> Dict[str, Any]:
    return {k: v for k, v in raw.items() if k not in known}


def _optional_str(value) -> Any:
    return None if value is None else str(value)


def _text(value) -> str:
    return "" if value is None else str(value)


def _parse_node(raw: Any, path: str) -> Node:
    if not isinstance(raw, dict):
        raise BookmarkFormatError(f"{path}: node must be an object")
    node_type = raw.get("type")
    node_id = str(raw.get("id", ""))
    name = _text(raw.get("name"))
    if node_type == "url":
        return Link(
            id=node_id,
            name=name,
            url=_text(raw.get("url")),
            date_added=_optional_str(raw.get("date_added")),
            date_modified=_optional_str(raw.get("date_modified")),
            extra=_extra_fields(raw, _NODE_KEYS),
        )
    if node_type == "folder" or (node_type is None and "children" in raw):
        children = raw.get("children")
        if children is None:
            children = []
        if not isinstance(children, list):
            raise BookmarkFormatError(f"{path}: children must be a list")
        folder = Folder(
            id=node_id,
            name=name,
            date_added=_optional_str(raw.get("date_added")),
            date_modified=_optional_str(raw.get("date_modified")),
            extra=_extra_fields(raw, _NODE_KEYS),
        )
        for index, child in enumerate(children):
            folder.append(_parse_node(child, f"{path}/{index}"))
        return folder
    raise BookmarkFormatError(f"{path}: unknown node type {node_type!r}")


def parse_chrome_json(text: str) -> BookmarkTree:
    """
    JSONエクスポートをパースしてツリーを返す。

    `roots` に `bookmark_bar` か `other` の少なくとも一方が必要。
    部分的な受け入れはしない。

    Args:
        text: JSON文字列

    Returns:
        BookmarkTree

    Raises:
        BookmarkFormatError: JSONとして不正、または必要なルートがない場合
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise BookmarkFormatError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("roots"), dict):
        raise BookmarkFormatError("missing 'roots' object")
    roots = data["roots"]
    if not (isinstance(roots.get("bookmark_bar"), dict) or isinstance(roots.get("other"), dict)):
        raise BookmarkFormatError("'roots' has neither 'bookmark_bar' nor 'other'")

    version = data.get("version", AppConstants.JSON_EXPORT_VERSION)
    tree = BookmarkTree(
        version=version if isinstance(version, int) else AppConstants.JSON_EXPORT_VERSION,
        extra=_extra_fields(data, ("roots", "version")),
    )
    for key in ROOT_KEYS:
        raw = roots.get(key)
        if raw is None:
            continue
        if isinstance(raw, dict) and "type" not in raw:
            # ルートは type が省略されていてもフォルダとみなす
            raw = dict(raw, type="folder")
        root = _parse_node(raw, key)
        if not isinstance(root, Folder):
            raise BookmarkFormatError(f"{key}: root must be a folder")
        setattr(tree, key, root)

    ignored = [k for k in roots if k not in ROOT_KEYS]
    if ignored:
        logger.info("Ignoring unsupported roots: %s", ", ".join(ignored))
    return tree


def _node_to_dict(node: Node) -> Dict[str, Any]:
    out: Dict[str, Any] = dict(node.extra)
    out["id"] = node.id
    out["name"] = node.name
    if isinstance(node, Folder):
        out["type"] = "folder"
        out["children"] = [_node_to_dict(child) for child in node.children]
    elif isinstance(node, Link):
        out["type"] = "url"
        out["url"] = node.url
    else:
        raise TypeError(f"unexpected node type: {type(node).__name__}")
    if node.date_added is not None:
        out["date_added"] = node.date_added
    if node.date_modified is not None:
        out["date_modified"] = node.date_modified
    return out


def export_chrome_json(tree: BookmarkTree) -> str:
    """Serialize the tree in the browser's own layout (sorted keys, 3-space indent)."""
    data: Dict[str, Any] = {k: v for k, v in tree.extra.items() if k not in _DROPPED_TOP_LEVEL}
    data["roots"] = {key: _node_to_dict(root) for key, root in tree.roots()}
    data["version"] = tree.version
    return json.dumps(data, ensure_ascii=False, indent=3, sort_keys=True)
