"""Public facade over the authorization stores."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from authgraph.assignments import AssignmentStore
from authgraph.checker import AccessChecker, AccessPolicy
from authgraph.db.engine import (
    build_engine,
    build_sessionmaker,
    create_schema,
    session_scope,
)
from authgraph.errors import InvalidArgumentError
from authgraph.hierarchy import HierarchyIndex
from authgraph.items import ItemStore
from authgraph.locking import HIERARCHY_KEY, KeyedLock
from authgraph.logging import log_context
from authgraph.rules import Rule, RuleCodec, RuleEvaluator
from authgraph.settings import Settings, get_settings
from authgraph.types import (
    Assignment,
    Item,
    ItemType,
    TreeNode,
    item_name,
    normalize_user_id,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Stores:
    session: Session
    items: ItemStore
    hierarchy: HierarchyIndex
    assignments: AssignmentStore
    checker: AccessChecker


def _rule_key(name: str) -> str:
    return f"rule:{name}"


def _user_key(user_id: str) -> str:
    return f"user:{user_id}"


class AuthManager:
    """Role/permission manager backed by a SQLAlchemy session factory.

    Every public method runs as one unit of work: the stores share a single
    session, which is committed when the method returns and rolled back if it
    raises. Mutations are additionally serialized per item name. Writes that
    delete items or depend on an item existing also hold the shared hierarchy
    lock, so their checks cannot interleave with a conflicting write.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        engine: Engine | None = None,
        session_factory: sessionmaker[Session] | None = None,
        policy: AccessPolicy | None = None,
        codec: RuleCodec | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        if session_factory is None:
            engine = engine or build_engine(self.settings)
            session_factory = build_sessionmaker(engine)
        self.engine = engine if engine is not None else session_factory.kw.get("bind")
        self._session_factory = session_factory
        self.policy = policy or AccessPolicy.from_settings(self.settings)
        self._codec = codec or RuleCodec()
        self._locks = locks if locks is not None else KeyedLock()

    # ------------- plumbing ----------------------

    @contextmanager
    def unit_of_work(self) -> Iterator[_Stores]:
        with session_scope(self._session_factory) as session:
            hierarchy = HierarchyIndex(session)
            assignments = AssignmentStore(session)
            items = ItemStore(
                session,
                hierarchy=hierarchy,
                assignments=assignments,
                codec=self._codec,
                rule_removal=self.settings.rule_removal,
            )
            checker = AccessChecker(
                items=items,
                assignments=assignments,
                hierarchy=hierarchy,
                evaluator=RuleEvaluator(items.get_rule),
                policy=self.policy,
            )
            yield _Stores(session, items, hierarchy, assignments, checker)

    def create_schema(self) -> None:
        if self.engine is None:
            raise RuntimeError("No engine is bound to this manager.")
        create_schema(self.engine)
        logger.info("authgraph.schema.created")

    # ------------- factories ---------------------

    @staticmethod
    def create_role(name: str, **kwargs: Any) -> Item:
        """Build an unsaved role; pass it to :meth:`add` to store it."""

        return Item.role(name, **kwargs)

    @staticmethod
    def create_permission(name: str, **kwargs: Any) -> Item:
        """Build an unsaved permission; pass it to :meth:`add` to store it."""

        return Item.permission(name, **kwargs)

    # ------------- generic item/rule CRUD --------

    def add(self, obj: Item | Rule) -> bool:
        if isinstance(obj, Item):
            with self._locks.hold(obj.name), self.unit_of_work() as stores:
                return stores.items.add_item(obj)
        if isinstance(obj, Rule):
            with self._locks.hold(_rule_key(obj.name)), self.unit_of_work() as stores:
                return stores.items.add_rule(obj)
        raise InvalidArgumentError("Adding unsupported object type.")

    def remove(self, obj: Item | Rule) -> bool:
        if isinstance(obj, Item):
            with self._locks.hold(obj.name, HIERARCHY_KEY), self.unit_of_work() as stores:
                return stores.items.remove_item(obj)
        if isinstance(obj, Rule):
            with self._locks.hold(_rule_key(obj.name), HIERARCHY_KEY), self.unit_of_work() as stores:
                return stores.items.remove_rule(obj)
        raise InvalidArgumentError("Removing unsupported object type.")

    def update(self, name: str, obj: Item | Rule) -> bool:
        if isinstance(obj, Item):
            with self._locks.hold(name, obj.name, HIERARCHY_KEY), self.unit_of_work() as stores:
                return stores.items.update_item(name, obj)
        if isinstance(obj, Rule):
            with self._locks.hold(_rule_key(name), _rule_key(obj.name)), self.unit_of_work() as stores:
                return stores.items.update_rule(name, obj)
        raise InvalidArgumentError("Updating unsupported object type.")

    # ------------- item reads --------------------

    def get_item(self, name: str) -> Item | None:
        with self.unit_of_work() as stores:
            return stores.items.get_item(name)

    def item_exists(self, name: str) -> bool:
        with self.unit_of_work() as stores:
            return stores.items.item_exists(name)

    def get_role(self, name: str) -> Item | None:
        item = self.get_item(name)
        return item if item is not None and item.is_role else None

    def get_roles(self) -> dict[str, Item]:
        with self.unit_of_work() as stores:
            return stores.items.get_items(ItemType.ROLE)

    def get_permission(self, name: str) -> Item | None:
        item = self.get_item(name)
        return item if item is not None and item.is_permission else None

    def get_permissions(self) -> dict[str, Item]:
        with self.unit_of_work() as stores:
            return stores.items.get_items(ItemType.PERMISSION)

    def get_rule(self, name: str) -> Rule | None:
        with self.unit_of_work() as stores:
            return stores.items.get_rule(name)

    def get_rules(self) -> dict[str, Rule]:
        with self.unit_of_work() as stores:
            return stores.items.get_rules()

    # ------------- hierarchy ---------------------

    def add_child(self, parent: Item | str, child: Item | str) -> bool:
        keys = (item_name(parent), item_name(child), HIERARCHY_KEY)
        with self._locks.hold(*keys), self.unit_of_work() as stores:
            return stores.hierarchy.add_child(parent, child)

    def can_add_child(self, parent: Item | str, child: Item | str) -> bool:
        with self.unit_of_work() as stores:
            return not stores.hierarchy.detect_loop(parent, child)

    def remove_child(self, parent: Item | str, child: Item | str) -> bool:
        keys = (item_name(parent), item_name(child), HIERARCHY_KEY)
        with self._locks.hold(*keys), self.unit_of_work() as stores:
            return stores.hierarchy.remove_child(parent, child)

    def remove_children(self, parent: Item | str) -> bool:
        with self._locks.hold(item_name(parent), HIERARCHY_KEY), self.unit_of_work() as stores:
            return stores.hierarchy.remove_children(parent)

    def remove_children_by_type(self, parent: Item | str, type: ItemType | str | None) -> bool:
        with self._locks.hold(item_name(parent), HIERARCHY_KEY), self.unit_of_work() as stores:
            return stores.hierarchy.remove_children_by_type(parent, type)

    def has_child(self, parent: Item | str, child: Item | str) -> bool:
        with self.unit_of_work() as stores:
            return stores.hierarchy.has_child(parent, child)

    def get_children(self, name: Item | str) -> dict[str, Item]:
        with self.unit_of_work() as stores:
            return stores.hierarchy.get_children(name)

    def get_children_list(self) -> dict[str, list[str]]:
        with self.unit_of_work() as stores:
            return stores.hierarchy.get_children_list()

    def build_tree(
        self,
        root: Item | str | None = None,
        roles: Mapping[str, Item] | None = None,
    ) -> dict[str, TreeNode]:
        with self.unit_of_work() as stores:
            return stores.hierarchy.build_tree(root, roles)

    # ------------- assignments -------------------

    def assign(self, item: Item | str, user_id: object) -> Assignment:
        name = item_name(item)
        normalized = normalize_user_id(user_id)
        # Item removals hold HIERARCHY_KEY, so the existence check stays valid
        # until commit.
        keys = (name, _user_key(normalized or ""), HIERARCHY_KEY)
        with self._locks.hold(*keys), self.unit_of_work() as stores:
            if not stores.items.item_exists(name):
                logger.warning(
                    "authgraph.assignment.unknown_item",
                    extra=log_context(user_id=normalized, item=name),
                )
                raise InvalidArgumentError(f"Item '{name}' does not exist.")
            return stores.assignments.assign(name, normalized)

    def revoke(self, item: Item | str, user_id: object) -> bool:
        name = item_name(item)
        normalized = normalize_user_id(user_id)
        with self._locks.hold(name, _user_key(normalized or "")), self.unit_of_work() as stores:
            return stores.assignments.revoke(name, normalized)

    def revoke_all(self, user_id: object) -> bool:
        normalized = normalize_user_id(user_id)
        with self._locks.hold(_user_key(normalized or "")), self.unit_of_work() as stores:
            return stores.assignments.revoke_all(normalized)

    def get_assignment(self, item: Item | str, user_id: object) -> Assignment | None:
        with self.unit_of_work() as stores:
            return stores.assignments.get_assignment(item, user_id)

    def get_assignments(self, user_id: object) -> dict[str, Assignment]:
        with self.unit_of_work() as stores:
            return stores.assignments.get_assignments(user_id)

    def get_assignments_for_item(self, item: Item | str) -> dict[str, Assignment]:
        with self.unit_of_work() as stores:
            return stores.assignments.get_assignments_for_item(item)

    def get_user_ids_by_role(self, item: Item | str) -> list[str]:
        with self.unit_of_work() as stores:
            return stores.assignments.get_user_ids_by_item(item)

    # ------------- access ------------------------

    def check_access(
        self,
        user_id: object,
        permission_name: str,
        params: Mapping[str, Any] | None = None,
    ) -> bool:
        with self.unit_of_work() as stores:
            return stores.checker.check_access(user_id, permission_name, params)

    def get_permissions_by_role(self, role_name: str) -> dict[str, Item]:
        with self.unit_of_work() as stores:
            return stores.checker.get_permissions_by_role(role_name)

    def get_permissions_by_user(self, user_id: object) -> dict[str, Item]:
        with self.unit_of_work() as stores:
            return stores.checker.get_permissions_by_user(user_id)

    def get_roles_by_user(self, user_id: object) -> dict[str, Item]:
        with self.unit_of_work() as stores:
            return stores.checker.get_roles_by_user(user_id)

    def get_child_roles(self, role_name: str) -> dict[str, Item]:
        with self.unit_of_work() as stores:
            return stores.checker.get_child_roles(role_name)

    # ------------- bulk removal ------------------

    def remove_all(self) -> None:
        """Clear assignments, edges, items and rules."""

        with self._locks.hold(HIERARCHY_KEY), self.unit_of_work() as stores:
            stores.assignments.remove_all()
            stores.hierarchy.remove_all()
            stores.items.remove_all_items(ItemType.PERMISSION)
            stores.items.remove_all_items(ItemType.ROLE)
            stores.items.remove_all_rules()
        logger.info("authgraph.store.cleared")

    def remove_all_permissions(self) -> int:
        with self._locks.hold(HIERARCHY_KEY), self.unit_of_work() as stores:
            return stores.items.remove_all_items(ItemType.PERMISSION)

    def remove_all_roles(self) -> int:
        with self._locks.hold(HIERARCHY_KEY), self.unit_of_work() as stores:
            return stores.items.remove_all_items(ItemType.ROLE)

    def remove_all_rules(self) -> None:
        with self._locks.hold(HIERARCHY_KEY), self.unit_of_work() as stores:
            stores.items.remove_all_rules()

    def remove_all_assignments(self) -> None:
        with self.unit_of_work() as stores:
            stores.assignments.remove_all()


__all__ = ["AuthManager"]
