"""Tests for the tree model operations."""

from core.model import (
    BookmarkTree,
    Folder,
    Link,
    clone,
    count_folders,
    find_node,
    prune,
    traverse_links,
)


def link_ids(tree):
    return [link.id for link in traverse_links(tree)]


class TestTraverseLinks:
    def test_preorder_across_roots(self, nested_tree):
        assert link_ids(nested_tree) == ["10", "11", "12", "13", "14", "15"]

    def test_folders_are_not_yielded(self, nested_tree):
        assert all(isinstance(link, Link) for link in traverse_links(nested_tree))

    def test_empty_url_is_kept(self, nested_tree):
        assert find_node(nested_tree, "13") in traverse_links(nested_tree)

    def test_links_without_id_are_skipped(self):
        tree = BookmarkTree(bookmark_bar=Folder(id="1", children=[
            Link(id="", name="anon", url="https://x.example"),
            Link(id="5", name="named", url="https://y.example"),
        ]))
        assert link_ids(tree) == ["5"]

    def test_missing_roots(self):
        tree = BookmarkTree(other=Folder(id="2", children=[Link(id="9", url="u")]))
        assert link_ids(tree) == ["9"]


class TestPrune:
    def test_removes_selected_links_in_order(self, nested_tree):
        pruned = prune(nested_tree, {"11", "14"})
        assert link_ids(pruned) == ["10", "12", "13", "15"]

    def test_matches_filtered_traversal(self, nested_tree):
        removed = {"10", "12", "15"}
        expected = [i for i in link_ids(nested_tree) if i not in removed]
        assert link_ids(prune(nested_tree, removed)) == expected

    def test_empty_set_keeps_everything(self, nested_tree):
        pruned = prune(nested_tree, set())
        assert pruned == nested_tree
        assert pruned is not nested_tree

    def test_all_ids_leaves_folders(self, nested_tree):
        pruned = prune(nested_tree, link_ids(nested_tree))
        assert traverse_links(pruned) == []
        assert count_folders(pruned) == count_folders(nested_tree) == 3
        assert find_node(pruned, "21").children == []

    def test_unknown_and_folder_ids_are_ignored(self, nested_tree):
        pruned = prune(nested_tree, {"nope", "20"})
        assert link_ids(pruned) == link_ids(nested_tree)
        assert find_node(pruned, "20") is not None

    def test_input_is_untouched(self, nested_tree):
        before = clone(nested_tree)
        pruned = prune(nested_tree, {"10"})
        pruned.bookmark_bar.children.append(Link(id="99", url="x"))
        find_node(pruned, "11").name = "changed"
        assert nested_tree == before

    def test_keeps_metadata(self, nested_tree):
        pruned = prune(nested_tree, set())
        assert find_node(pruned, "14").date_added == "13300000000000000"
        assert pruned.synced is not None


class TestClone:
    def test_deep_copy(self, nested_tree):
        copy = clone(nested_tree)
        assert copy == nested_tree
        copy.other.children.clear()
        assert len(nested_tree.other.children) == 2


class TestTreeValidity:
    def test_needs_bar_or_other(self):
        assert not BookmarkTree(synced=Folder(id="3")).is_valid()
        assert BookmarkTree(other=Folder(id="2")).is_valid()

    def test_roots_order(self, nested_tree):
        assert [key for key, _ in nested_tree.roots()] == ["bookmark_bar", "other", "synced"]
