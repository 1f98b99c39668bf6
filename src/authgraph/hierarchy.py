"""Parent/child edges between authorization items."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from authgraph.db.models import AuthItem, AuthItemChild
from authgraph.errors import AlreadyExistsError, CycleDetectedError, InvalidArgumentError
from authgraph.logging import log_context
from authgraph.types import Item, ItemType, TreeNode, item_name

logger = logging.getLogger(__name__)


class HierarchyIndex:
    """Edge storage plus the graph queries built on top of it.

    The edge set is kept acyclic, self-loops are rejected, and a permission is
    never the parent of a role. Traversals run over an adjacency mapping
    fetched in one query rather than one query per hop.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------- item lookups ------------------

    def _require_item(self, name: str) -> Item:
        row = self._session.scalars(select(AuthItem).where(AuthItem.name == name)).first()
        if row is None:
            raise InvalidArgumentError(f"Item '{name}' does not exist.")
        return row.to_item()

    # ------------- edge mutation -----------------

    def add_child(self, parent: Item | str, child: Item | str) -> bool:
        parent_name = item_name(parent)
        child_name = item_name(child)

        if parent_name == child_name:
            logger.warning(
                "authgraph.hierarchy.self_edge_rejected",
                extra=log_context(parent=parent_name, child=child_name),
            )
            raise InvalidArgumentError(f"Cannot add '{parent_name}' as a child of itself.")

        parent_item = self._require_item(parent_name)
        child_item = self._require_item(child_name)

        if parent_item.is_permission and child_item.is_role:
            logger.warning(
                "authgraph.hierarchy.type_rejected",
                extra=log_context(parent=parent_name, child=child_name),
            )
            raise InvalidArgumentError("Cannot add a role as a child of a permission.")

        if self.has_child(parent_name, child_name):
            raise AlreadyExistsError(
                f"'{child_name}' is already a child of '{parent_name}'."
            )

        if self.detect_loop(parent_name, child_name):
            logger.warning(
                "authgraph.hierarchy.cycle_rejected",
                extra=log_context(parent=parent_name, child=child_name),
            )
            raise CycleDetectedError(
                f"Cannot add '{child_name}' as a child of '{parent_name}'. "
                "A loop has been detected."
            )

        self._session.add(AuthItemChild(parent=parent_name, child=child_name))
        self._session.flush()
        logger.info(
            "authgraph.hierarchy.child_added",
            extra=log_context(parent=parent_name, child=child_name),
        )
        return True

    def remove_child(self, parent: Item | str, child: Item | str) -> bool:
        result = self._session.execute(
            delete(AuthItemChild).where(
                AuthItemChild.parent == item_name(parent),
                AuthItemChild.child == item_name(child),
            )
        )
        removed = result.rowcount > 0
        if removed:
            logger.info(
                "authgraph.hierarchy.child_removed",
                extra=log_context(parent=item_name(parent), child=item_name(child)),
            )
        return removed

    def remove_children(self, parent: Item | str) -> bool:
        result = self._session.execute(
            delete(AuthItemChild).where(AuthItemChild.parent == item_name(parent))
        )
        return result.rowcount > 0

    def remove_children_by_type(self, parent: Item | str, type: ItemType | str | None) -> bool:
        """Detach only those children of ``parent`` whose own type is ``type``."""

        if not type:
            return False
        item_type = ItemType(type)
        parent_name = item_name(parent)

        names = self._session.scalars(
            select(AuthItemChild.child)
            .join(AuthItem, AuthItem.name == AuthItemChild.child)
            .where(AuthItemChild.parent == parent_name, AuthItem.type == item_type)
        ).all()
        if not names:
            return False

        self._session.execute(
            delete(AuthItemChild).where(
                AuthItemChild.parent == parent_name,
                AuthItemChild.child.in_(names),
            )
        )
        logger.info(
            "authgraph.hierarchy.children_removed",
            extra=log_context(parent=parent_name, type=item_type.value, count=len(names)),
        )
        return True

    # ------------- cascades ----------------------

    def rename_item(self, old_name: str, new_name: str) -> None:
        edges = self._session.scalars(
            select(AuthItemChild).where(
                or_(AuthItemChild.parent == old_name, AuthItemChild.child == old_name)
            )
        ).all()
        for edge in edges:
            if edge.parent == old_name:
                edge.parent = new_name
            if edge.child == old_name:
                edge.child = new_name
        self._session.flush()

    def remove_item(self, name: str) -> None:
        self._session.execute(
            delete(AuthItemChild).where(
                or_(AuthItemChild.parent == name, AuthItemChild.child == name)
            )
        )

    def remove_items(self, names: Iterable[str]) -> None:
        """Drop every edge with one of ``names`` on either end."""

        names = list(names)
        if names:
            self._session.execute(
                delete(AuthItemChild).where(
                    or_(AuthItemChild.parent.in_(names), AuthItemChild.child.in_(names))
                )
            )

    def remove_all(self) -> None:
        self._session.execute(delete(AuthItemChild))

    # ------------- reads -------------------------

    def has_child(self, parent: Item | str, child: Item | str) -> bool:
        found = self._session.execute(
            select(AuthItemChild.parent).where(
                AuthItemChild.parent == item_name(parent),
                AuthItemChild.child == item_name(child),
            )
        ).first()
        return found is not None

    def get_children(self, name: Item | str) -> dict[str, Item]:
        rows = self._session.scalars(
            select(AuthItem)
            .join(AuthItemChild, AuthItemChild.child == AuthItem.name)
            .where(AuthItemChild.parent == item_name(name))
        ).all()
        return {row.name: row.to_item() for row in rows}

    def get_parents(self, name: Item | str) -> list[str]:
        return list(
            self._session.scalars(
                select(AuthItemChild.parent).where(AuthItemChild.child == item_name(name))
            ).all()
        )

    def get_children_list(self) -> dict[str, list[str]]:
        """Return every edge grouped by parent name."""

        children: dict[str, list[str]] = {}
        for parent, child in self._session.execute(
            select(AuthItemChild.parent, AuthItemChild.child)
        ).all():
            children.setdefault(parent, []).append(child)
        return children

    def get_parents_list(self) -> dict[str, list[str]]:
        """Return every edge grouped by child name."""

        parents: dict[str, list[str]] = {}
        for parent, child in self._session.execute(
            select(AuthItemChild.parent, AuthItemChild.child)
        ).all():
            parents.setdefault(child, []).append(parent)
        return parents

    @staticmethod
    def get_children_recursive(
        name: str,
        children_list: Mapping[str, Iterable[str]],
        result: set[str],
    ) -> None:
        """Add every descendant of ``name`` to ``result``.

        Nodes already present in ``result`` are not expanded again, so the same
        accumulator can be shared across several starting points.
        """
        stack = [name]
        while stack:
            current = stack.pop()
            for child in children_list.get(current, ()):
                if child in result:
                    continue
                result.add(child)
                stack.append(child)

    def detect_loop(self, parent: Item | str, child: Item | str) -> bool:
        """Whether ``parent`` is reachable from ``child`` through child edges."""

        parent_name = item_name(parent)
        child_name = item_name(child)
        if parent_name == child_name:
            return True

        children_list = self.get_children_list()
        visited = {child_name}
        stack = [child_name]
        while stack:
            current = stack.pop()
            for grandchild in children_list.get(current, ()):
                if grandchild == parent_name:
                    return True
                if grandchild not in visited:
                    visited.add(grandchild)
                    stack.append(grandchild)
        return False

    # ------------- display -----------------------

    def build_tree(
        self,
        root: Item | str | None = None,
        roles: Mapping[str, Item] | None = None,
    ) -> dict[str, TreeNode]:
        """Project the role hierarchy into nested nodes.

        Without ``root`` the tree starts at every role that no other role has
        as a child; with ``root`` it starts at the root's role children.
        Permissions never appear in the result.
        """
        if not roles:
            rows = self._session.scalars(
                select(AuthItem).where(AuthItem.type == ItemType.ROLE).order_by(AuthItem.name)
            ).all()
            roles = {row.name: row.to_item() for row in rows}

        children_list = self.get_children_list()

        if root is None:
            role_children = {
                child
                for parent, children in children_list.items()
                if parent in roles
                for child in children
                if child in roles
            }
            starts = [name for name in roles if name not in role_children]
        else:
            starts = [
                child for child in children_list.get(item_name(root), ()) if child in roles
            ]

        def _node(name: str) -> TreeNode:
            return TreeNode(name=name, title=roles[name].description)

        tree: dict[str, TreeNode] = {}
        stack: list[tuple[TreeNode, frozenset[str]]] = []
        for name in starts:
            node = _node(name)
            tree[name] = node
            stack.append((node, frozenset({name})))

        while stack:
            node, path = stack.pop()
            for child in children_list.get(node.name, ()):
                if child not in roles or child in path:
                    continue
                child_node = _node(child)
                node.items[child] = child_node
                stack.append((child_node, path | {child}))

        return tree


__all__ = ["HierarchyIndex"]
