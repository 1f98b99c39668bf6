from __future__ import annotations

import pytest

from authgraph.errors import AlreadyExistsError, CycleDetectedError, InvalidArgumentError
from authgraph.hierarchy import HierarchyIndex
from authgraph.manager import AuthManager
from authgraph.types import ItemType


def test_add_child_rejects_self_edge(blog: AuthManager) -> None:
    with pytest.raises(InvalidArgumentError):
        blog.add_child("admin", "admin")


def test_add_child_rejects_role_under_permission(blog: AuthManager) -> None:
    with pytest.raises(InvalidArgumentError):
        blog.add_child("readPost", "reader")

    assert not blog.has_child("readPost", "reader")


def test_permission_may_contain_permission(blog: AuthManager) -> None:
    assert blog.add_child("updatePost", "readPost") is True
    assert blog.has_child("updatePost", "readPost")


def test_add_child_rejects_duplicate_edge(blog: AuthManager) -> None:
    with pytest.raises(AlreadyExistsError):
        blog.add_child("admin", "author")


def test_add_child_rejects_unknown_items(blog: AuthManager) -> None:
    with pytest.raises(InvalidArgumentError):
        blog.add_child("admin", "ghost")
    with pytest.raises(InvalidArgumentError):
        blog.add_child("ghost", "admin")


def test_add_child_rejects_cycles(blog: AuthManager) -> None:
    assert blog.can_add_child("author", "admin") is False

    with pytest.raises(CycleDetectedError):
        blog.add_child("author", "admin")

    assert not blog.has_child("author", "admin")
    assert sorted(blog.get_children("author")) == ["createPost", "readPost"]


def test_add_child_rejects_long_cycles(blog: AuthManager) -> None:
    blog.add(blog.create_role("owner"))
    blog.add_child("owner", "admin")

    with pytest.raises(CycleDetectedError):
        blog.add_child("author", "owner")
    assert blog.can_add_child("reader", "owner") is True


def test_edge_set_stays_acyclic(blog: AuthManager) -> None:
    blog.add(blog.create_role("owner"))
    blog.add_child("owner", "admin")
    blog.add_child("owner", "reader")

    attempts = [
        ("reader", "owner"),
        ("author", "owner"),
        ("createPost", "createPost"),
        ("author", "reader"),
        ("reader", "author"),
    ]
    for parent, child in attempts:
        try:
            blog.add_child(parent, child)
        except (CycleDetectedError, InvalidArgumentError):
            pass

    children_list = blog.get_children_list()
    for start in children_list:
        seen: set[str] = set()
        HierarchyIndex.get_children_recursive(start, children_list, seen)
        assert start not in seen


def test_remove_child(blog: AuthManager) -> None:
    assert blog.remove_child("admin", "author") is True
    assert blog.remove_child("admin", "author") is False
    assert not blog.has_child("admin", "author")


def test_remove_children(blog: AuthManager) -> None:
    assert blog.remove_children("author") is True
    assert blog.get_children("author") == {}
    assert blog.remove_children("author") is False


def test_remove_children_by_type(blog: AuthManager) -> None:
    assert blog.remove_children_by_type("admin", ItemType.PERMISSION) is True

    assert set(blog.get_children("admin")) == {"author"}
    assert blog.remove_children_by_type("admin", "permission") is False
    assert blog.remove_children_by_type("admin", None) is False
    assert blog.remove_children_by_type("admin", "") is False


def test_get_children_returns_items(blog: AuthManager) -> None:
    children = blog.get_children("author")

    assert set(children) == {"createPost", "readPost"}
    assert all(child.type is ItemType.PERMISSION for child in children.values())


def test_get_children_recursive_terminates_on_cycles() -> None:
    children_list = {"a": ["b"], "b": ["c"], "c": ["a", "d"]}
    result: set[str] = set()

    HierarchyIndex.get_children_recursive("a", children_list, result)

    assert result == {"a", "b", "c", "d"}


def test_get_children_recursive_shares_accumulator() -> None:
    children_list = {"x": ["y"], "z": ["y"], "y": ["w"]}
    result: set[str] = set()

    HierarchyIndex.get_children_recursive("x", children_list, result)
    HierarchyIndex.get_children_recursive("z", children_list, result)

    assert result == {"y", "w"}


def test_detect_loop(blog: AuthManager) -> None:
    with blog.unit_of_work() as stores:
        assert stores.hierarchy.detect_loop("createPost", "admin") is True
        assert stores.hierarchy.detect_loop("admin", "createPost") is False
        assert stores.hierarchy.detect_loop("reader", "reader") is True


def test_build_tree_from_top_roles(blog: AuthManager) -> None:
    tree = blog.build_tree()

    assert set(tree) == {"admin", "reader"}
    assert tree["admin"].to_dict() == {
        "title": "Admin",
        "items": {"author": {"title": "Author", "items": {}}},
    }
    assert tree["reader"].items == {}


def test_build_tree_below_root(blog: AuthManager) -> None:
    blog.add(blog.create_role("guest", description="Guest"))
    blog.add_child("author", "guest")

    tree = blog.build_tree("admin")

    assert set(tree) == {"author"}
    assert set(tree["author"].items) == {"guest"}
    assert tree["author"].items["guest"].title == "Guest"


def test_build_tree_excludes_permissions(blog: AuthManager) -> None:
    def names(nodes: dict) -> set[str]:
        found = set(nodes)
        for node in nodes.values():
            found |= names(node.items)
        return found

    assert names(blog.build_tree()).isdisjoint(blog.get_permissions())
