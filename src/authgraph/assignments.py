"""User to item assignment storage."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from authgraph.db.models import AuthAssignment
from authgraph.errors import InvalidArgumentError
from authgraph.logging import log_context
from authgraph.types import Assignment, Item, epoch_now, item_name, normalize_user_id

logger = logging.getLogger(__name__)


class AssignmentStore:
    """CRUD over ``(user_id, item_name)`` assignment records.

    User ids are stored in string form. An empty user id reads as "no
    assignments" rather than raising.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def _find(self, user_id: str, name: str) -> AuthAssignment | None:
        return self._session.scalars(
            select(AuthAssignment).where(
                AuthAssignment.user_id == user_id,
                AuthAssignment.item_name == name,
            )
        ).first()

    def assign(self, item: Item | str, user_id: object) -> Assignment:
        """Grant ``item`` to ``user_id``; an existing grant is returned unchanged."""

        normalized = normalize_user_id(user_id)
        if normalized is None:
            raise InvalidArgumentError("Cannot assign an item to an empty user id.")
        name = item_name(item)

        existing = self._find(normalized, name)
        if existing is not None:
            return existing.to_assignment()

        row = AuthAssignment(user_id=normalized, item_name=name, created_at=epoch_now())
        self._session.add(row)
        self._session.flush()
        logger.info(
            "authgraph.assignment.created",
            extra=log_context(user_id=normalized, item=name),
        )
        return row.to_assignment()

    def revoke(self, item: Item | str, user_id: object) -> bool:
        normalized = normalize_user_id(user_id)
        if normalized is None:
            return False
        name = item_name(item)
        result = self._session.execute(
            delete(AuthAssignment).where(
                AuthAssignment.user_id == normalized,
                AuthAssignment.item_name == name,
            )
        )
        revoked = result.rowcount > 0
        if revoked:
            logger.info(
                "authgraph.assignment.revoked",
                extra=log_context(user_id=normalized, item=name),
            )
        return revoked

    def revoke_all(self, user_id: object) -> bool:
        normalized = normalize_user_id(user_id)
        if normalized is None:
            return False
        result = self._session.execute(
            delete(AuthAssignment).where(AuthAssignment.user_id == normalized)
        )
        if result.rowcount:
            logger.info(
                "authgraph.assignment.revoked_all",
                extra=log_context(user_id=normalized, count=result.rowcount),
            )
        return result.rowcount > 0

    def get_assignment(self, item: Item | str, user_id: object) -> Assignment | None:
        normalized = normalize_user_id(user_id)
        if normalized is None:
            return None
        row = self._find(normalized, item_name(item))
        return row.to_assignment() if row is not None else None

    def get_assignments(self, user_id: object) -> dict[str, Assignment]:
        normalized = normalize_user_id(user_id)
        if normalized is None:
            return {}
        rows = self._session.scalars(
            select(AuthAssignment).where(AuthAssignment.user_id == normalized)
        ).all()
        return {row.item_name: row.to_assignment() for row in rows}

    def get_assignments_for_item(self, item: Item | str) -> dict[str, Assignment]:
        rows = self._session.scalars(
            select(AuthAssignment).where(AuthAssignment.item_name == item_name(item))
        ).all()
        return {row.user_id: row.to_assignment() for row in rows}

    def get_user_ids_by_item(self, item: Item | str) -> list[str]:
        return sorted(self.get_assignments_for_item(item))

    # ------------- cascades ----------------------

    def rename_item(self, old_name: str, new_name: str) -> None:
        rows = self._session.scalars(
            select(AuthAssignment).where(AuthAssignment.item_name == old_name)
        ).all()
        for row in rows:
            row.item_name = new_name
        self._session.flush()

    def remove_item(self, name: str) -> None:
        self._session.execute(delete(AuthAssignment).where(AuthAssignment.item_name == name))

    def remove_items(self, names: Iterable[str]) -> None:
        names = list(names)
        if names:
            self._session.execute(
                delete(AuthAssignment).where(AuthAssignment.item_name.in_(names))
            )

    def remove_all(self) -> None:
        self._session.execute(delete(AuthAssignment))


__all__ = ["AssignmentStore"]
