"""Value types shared across the authorization stores."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def epoch_now() -> int:
    """Return the current time as integer epoch seconds."""

    return int(time.time())


class ItemType(str, Enum):
    """Closed set of authorization item kinds."""

    ROLE = "role"
    PERMISSION = "permission"


@dataclass
class Item:
    """A named role or permission.

    Names share a single namespace across both types because edges and
    assignments are keyed purely by name.
    """

    name: str
    type: ItemType
    description: str = ""
    rule_name: str | None = None
    data: Any = None
    created_at: int | None = None
    updated_at: int | None = None

    def __post_init__(self) -> None:
        self.type = ItemType(self.type)

    @classmethod
    def role(cls, name: str, **kwargs: Any) -> Item:
        return cls(name=name, type=ItemType.ROLE, **kwargs)

    @classmethod
    def permission(cls, name: str, **kwargs: Any) -> Item:
        return cls(name=name, type=ItemType.PERMISSION, **kwargs)

    @property
    def is_role(self) -> bool:
        return self.type is ItemType.ROLE

    @property
    def is_permission(self) -> bool:
        return self.type is ItemType.PERMISSION


@dataclass(frozen=True)
class Assignment:
    """A direct grant of an item to a user."""

    user_id: str
    item_name: str
    created_at: int


@dataclass
class TreeNode:
    """One role in the display projection of the hierarchy."""

    name: str
    title: str
    items: dict[str, TreeNode] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "items": {name: node.to_dict() for name, node in self.items.items()},
        }


def item_name(item: Item | str) -> str:
    """Accept either an ``Item`` or a bare name."""

    return item.name if isinstance(item, Item) else str(item)


def normalize_user_id(user_id: object) -> str | None:
    """Return ``user_id`` in its stored string form, or ``None`` when empty."""

    if user_id is None:
        return None
    normalized = str(user_id)
    return normalized or None


__all__ = [
    "Assignment",
    "Item",
    "ItemType",
    "TreeNode",
    "epoch_now",
    "item_name",
    "normalize_user_id",
]
