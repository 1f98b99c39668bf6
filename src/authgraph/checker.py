"""Access evaluation over the item hierarchy."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from authgraph.assignments import AssignmentStore
from authgraph.hierarchy import HierarchyIndex
from authgraph.items import ItemStore
from authgraph.logging import log_context
from authgraph.rules import RuleEvaluator
from authgraph.settings import Settings
from authgraph.types import Item, ItemType, normalize_user_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessPolicy:
    """Explicit overrides applied by :class:`AccessChecker`.

    ``god_id`` is compared with the string form of the requesting user id;
    ``default_roles`` are treated as assigned to every user.
    """

    god_id: str | None = None
    default_roles: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_settings(cls, settings: Settings) -> AccessPolicy:
        return cls(god_id=settings.god_id, default_roles=frozenset(settings.default_roles))

    def is_god(self, user_id: object) -> bool:
        return bool(self.god_id) and user_id is not None and self.god_id == str(user_id)


class AccessChecker:
    """Answer "may this user perform this permission?".

    The checked item and every ancestor reached through parent edges is
    tested in turn: a failing rule vetoes that item, a direct assignment or
    default role grants, and otherwise the walk continues upward. Access is
    granted when any path succeeds.
    """

    def __init__(
        self,
        *,
        items: ItemStore,
        assignments: AssignmentStore,
        hierarchy: HierarchyIndex,
        evaluator: RuleEvaluator | None = None,
        policy: AccessPolicy | None = None,
    ) -> None:
        self._items = items
        self._assignments = assignments
        self._hierarchy = hierarchy
        self._evaluator = evaluator or RuleEvaluator(items.get_rule)
        self._policy = policy or AccessPolicy()

    @property
    def policy(self) -> AccessPolicy:
        return self._policy

    def check_access(
        self,
        user_id: object,
        permission_name: str,
        params: Mapping[str, Any] | None = None,
    ) -> bool:
        if self._policy.is_god(user_id):
            logger.debug(
                "authgraph.check.bypass",
                extra=log_context(user_id=user_id, item=permission_name),
            )
            return True

        normalized = normalize_user_id(user_id)
        assignments = self._assignments.get_assignments(normalized)
        params = params or {}

        parents_list = self._hierarchy.get_parents_list()
        candidates = {permission_name}
        self._hierarchy.get_children_recursive(permission_name, parents_list, candidates)
        items = self._items.get_items_by_names(candidates)

        visited: set[str] = set()
        stack = [permission_name]
        while stack:
            name = stack.pop()
            if name in visited:
                continue
            visited.add(name)

            item = items.get(name)
            if item is None:
                continue

            logger.debug(
                "authgraph.check.visit",
                extra=log_context(user_id=normalized, item=name, type=item.type.value),
            )

            if not self._evaluator.evaluate(item.rule_name, normalized, item, params):
                continue

            if name in assignments or name in self._policy.default_roles:
                logger.debug(
                    "authgraph.check.granted",
                    extra=log_context(user_id=normalized, item=permission_name, via=name),
                )
                return True

            stack.extend(reversed(parents_list.get(name, ())))

        logger.debug(
            "authgraph.check.denied",
            extra=log_context(user_id=normalized, item=permission_name),
        )
        return False

    # ------------- derived queries ---------------

    def _descendants(self, roots: Iterable[str]) -> set[str]:
        children_list = self._hierarchy.get_children_list()
        result = set(roots)
        for name in list(result):
            self._hierarchy.get_children_recursive(name, children_list, result)
        return result

    def get_permissions_by_role(self, role_name: str) -> dict[str, Item]:
        children_list = self._hierarchy.get_children_list()
        result: set[str] = set()
        self._hierarchy.get_children_recursive(role_name, children_list, result)
        return self._items.get_items_by_names(result, ItemType.PERMISSION)

    def get_permissions_by_user(self, user_id: object) -> dict[str, Item]:
        """Permissions assigned to the user directly or through assigned roles."""

        assignments = self._assignments.get_assignments(user_id)
        if not assignments:
            return {}
        return self._items.get_items_by_names(
            self._descendants(assignments), ItemType.PERMISSION
        )

    def get_roles_by_user(self, user_id: object) -> dict[str, Item]:
        """Roles assigned to the user plus every role they inherit."""

        assignments = self._assignments.get_assignments(user_id)
        if not assignments:
            return {}
        return self._items.get_items_by_names(self._descendants(assignments), ItemType.ROLE)

    def get_child_roles(self, role_name: str) -> dict[str, Item]:
        """The role itself and every role below it."""

        if self._items.get_item(role_name) is None:
            return {}
        return self._items.get_items_by_names(self._descendants([role_name]), ItemType.ROLE)


__all__ = ["AccessChecker", "AccessPolicy"]
