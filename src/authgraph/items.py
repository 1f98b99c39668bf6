"""Item and rule storage, including the cascades that keep references intact."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from authgraph.assignments import AssignmentStore
from authgraph.db.models import AuthItem, AuthRule
from authgraph.errors import AlreadyExistsError, InvalidArgumentError
from authgraph.hierarchy import HierarchyIndex
from authgraph.logging import log_context
from authgraph.rules import Rule, RuleCodec
from authgraph.settings import RuleRemovalPolicy
from authgraph.types import Item, ItemType, epoch_now, item_name

logger = logging.getLogger(__name__)


def _rule_name(rule: Rule | str) -> str:
    return rule.name if isinstance(rule, Rule) else str(rule)


def _require_json(item: Item) -> None:
    if item.data is None:
        return
    try:
        json.dumps(item.data)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(
            f"Data for item '{item.name}' is not JSON-serializable: {exc}"
        ) from exc


class ItemStore:
    """CRUD over items and rules keyed by unique name.

    Renames and removals cascade to hierarchy edges and assignments through
    the collaborators sharing this session, so the caller's transaction covers
    the whole operation. Dependents are deleted before the owning row and
    renamed after it, so foreign keys hold at every step.
    """

    def __init__(
        self,
        session: Session,
        *,
        hierarchy: HierarchyIndex | None = None,
        assignments: AssignmentStore | None = None,
        codec: RuleCodec | None = None,
        rule_removal: RuleRemovalPolicy = "delete_items",
    ) -> None:
        self._session = session
        self.hierarchy = hierarchy or HierarchyIndex(session)
        self.assignments = assignments or AssignmentStore(session)
        self._codec = codec or RuleCodec()
        self._rule_removal = rule_removal

    # ------------- items: reads ------------------

    def _item_row(self, name: str) -> AuthItem | None:
        return self._session.scalars(select(AuthItem).where(AuthItem.name == name)).first()

    def get_item(self, name: str) -> Item | None:
        row = self._item_row(name)
        return row.to_item() if row is not None else None

    def item_exists(self, name: str) -> bool:
        found = self._session.execute(
            select(AuthItem.name).where(AuthItem.name == name)
        ).first()
        return found is not None

    def get_items(self, type: ItemType | str) -> dict[str, Item]:
        rows = self._session.scalars(
            select(AuthItem).where(AuthItem.type == ItemType(type)).order_by(AuthItem.name)
        ).all()
        return {row.name: row.to_item() for row in rows}

    def get_items_by_names(
        self,
        names: Iterable[str],
        type: ItemType | str | None = None,
    ) -> dict[str, Item]:
        """Resolve a set of names in one query, optionally restricted to ``type``."""

        names = sorted(set(names))
        if not names:
            return {}
        stmt = select(AuthItem).where(AuthItem.name.in_(names))
        if type is not None:
            stmt = stmt.where(AuthItem.type == ItemType(type))
        rows = self._session.scalars(stmt.order_by(AuthItem.name)).all()
        return {row.name: row.to_item() for row in rows}

    # ------------- items: writes -----------------

    def add_item(self, item: Item) -> bool:
        if self.item_exists(item.name):
            raise AlreadyExistsError(f"An item named '{item.name}' already exists.")
        _require_json(item)

        now = epoch_now()
        if item.created_at is None:
            item.created_at = now
        if item.updated_at is None:
            item.updated_at = now

        self._session.add(
            AuthItem(
                name=item.name,
                type=ItemType(item.type),
                description=item.description or "",
                rule_name=item.rule_name,
                data=item.data,
                created_at=item.created_at,
                updated_at=item.updated_at,
            )
        )
        self._session.flush()
        logger.info(
            "authgraph.item.added",
            extra=log_context(item=item.name, type=ItemType(item.type).value),
        )
        return True

    def update_item(self, old_name: str, item: Item) -> bool:
        """Rewrite ``old_name`` with the fields of ``item``.

        The item type is fixed at creation and is not changed here.
        """
        row = self._item_row(old_name)
        if row is None:
            return False

        renamed = item.name != old_name
        if renamed and self.item_exists(item.name):
            raise AlreadyExistsError(f"An item named '{item.name}' already exists.")
        _require_json(item)

        item.type = row.type
        item.created_at = row.created_at
        item.updated_at = epoch_now()
        row.name = item.name
        row.description = item.description or ""
        row.rule_name = item.rule_name
        row.data = item.data
        row.updated_at = item.updated_at
        self._session.flush()

        # ON UPDATE CASCADE may already have moved the references.
        if renamed:
            self.hierarchy.rename_item(old_name, item.name)
            self.assignments.rename_item(old_name, item.name)
        logger.info(
            "authgraph.item.updated",
            extra=log_context(item=item.name, previous=old_name),
        )
        return True

    def remove_item(self, item: Item | str) -> bool:
        name = item_name(item)
        self.hierarchy.remove_item(name)
        self.assignments.remove_item(name)
        result = self._session.execute(delete(AuthItem).where(AuthItem.name == name))
        removed = result.rowcount > 0
        if removed:
            logger.info("authgraph.item.removed", extra=log_context(item=name))
        return removed

    def _remove_items(self, names: list[str]) -> None:
        if not names:
            return
        self.hierarchy.remove_items(names)
        self.assignments.remove_items(names)
        self._session.execute(delete(AuthItem).where(AuthItem.name.in_(names)))

    def remove_all_items(self, type: ItemType | str) -> int:
        """Remove every item of ``type`` together with its edges and assignments."""

        item_type = ItemType(type)
        names = list(
            self._session.scalars(select(AuthItem.name).where(AuthItem.type == item_type)).all()
        )
        self._remove_items(names)
        if names:
            logger.info(
                "authgraph.item.removed_all",
                extra=log_context(type=item_type.value, count=len(names)),
            )
        return len(names)

    # ------------- rules -------------------------

    def _rule_exists(self, name: str) -> bool:
        found = self._session.execute(select(AuthRule.name).where(AuthRule.name == name)).first()
        return found is not None

    def get_rule(self, name: str) -> Rule | None:
        row = self._session.scalars(select(AuthRule).where(AuthRule.name == name)).first()
        if row is None:
            return None
        return self._codec.loads(row.data, created_at=row.created_at, updated_at=row.updated_at)

    def get_rules(self) -> dict[str, Rule]:
        rules: dict[str, Rule] = {}
        for row in self._session.scalars(select(AuthRule).order_by(AuthRule.name)).all():
            rule = self._codec.loads(row.data, created_at=row.created_at, updated_at=row.updated_at)
            if rule is not None:
                rules[row.name] = rule
        return rules

    def add_rule(self, rule: Rule) -> bool:
        if self._rule_exists(rule.name):
            raise AlreadyExistsError(f"A rule named '{rule.name}' already exists.")

        now = epoch_now()
        if rule.created_at is None:
            rule.created_at = now
        if rule.updated_at is None:
            rule.updated_at = now

        self._session.add(
            AuthRule(
                name=rule.name,
                data=self._codec.dumps(rule),
                created_at=rule.created_at,
                updated_at=rule.updated_at,
            )
        )
        self._session.flush()
        logger.info("authgraph.rule.added", extra=log_context(rule=rule.name))
        return True

    def update_rule(self, old_name: str, rule: Rule) -> bool:
        row = self._session.scalars(select(AuthRule).where(AuthRule.name == old_name)).first()
        if row is None:
            return False

        if rule.name != old_name:
            if self._rule_exists(rule.name):
                raise AlreadyExistsError(f"A rule named '{rule.name}' already exists.")
            self._session.execute(
                update(AuthItem)
                .where(AuthItem.rule_name == old_name)
                .values(rule_name=rule.name)
            )

        rule.created_at = row.created_at
        rule.updated_at = epoch_now()
        row.name = rule.name
        row.data = self._codec.dumps(rule)
        row.updated_at = rule.updated_at
        self._session.flush()
        logger.info(
            "authgraph.rule.updated",
            extra=log_context(rule=rule.name, previous=old_name),
        )
        return True

    def remove_rule(self, rule: Rule | str) -> bool:
        """Delete a rule and apply the configured policy to items that use it.

        ``delete_items`` removes every referencing item (with its edges and
        assignments); ``detach`` clears their ``rule_name`` instead.
        """
        name = _rule_name(rule)
        if self._rule_removal == "detach":
            self._session.execute(
                update(AuthItem).where(AuthItem.rule_name == name).values(rule_name=None)
            )
        else:
            names = list(
                self._session.scalars(
                    select(AuthItem.name).where(AuthItem.rule_name == name)
                ).all()
            )
            self._remove_items(names)
            if names:
                logger.warning(
                    "authgraph.rule.items_removed",
                    extra=log_context(rule=name, items=",".join(sorted(names))),
                )

        result = self._session.execute(delete(AuthRule).where(AuthRule.name == name))
        removed = result.rowcount > 0
        if removed:
            logger.info("authgraph.rule.removed", extra=log_context(rule=name))
        return removed

    def remove_all_rules(self) -> None:
        """Drop every rule, detaching the references held by items."""

        self._session.execute(
            update(AuthItem).where(AuthItem.rule_name.is_not(None)).values(rule_name=None)
        )
        self._session.execute(delete(AuthRule))


__all__ = ["ItemStore"]
