"""SQLAlchemy models for the four authorization tables."""

from __future__ import annotations

from enum import Enum
from typing import Any

from sqlalchemy import JSON, BigInteger, ForeignKey, Index, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from authgraph.types import Assignment, Item, ItemType

from .base import Base


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


item_type_enum = SAEnum(
    ItemType,
    name="auth_item_type",
    native_enum=False,
    length=20,
    values_callable=_enum_values,
)


class AuthItem(Base):
    """Role or permission row keyed by its globally unique name."""

    __tablename__ = "auth_item"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[ItemType] = mapped_column(item_type_enum, nullable=False)
    description: Mapped[str] = mapped_column(Text(), nullable=False, default="")
    rule_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    data: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_auth_item_type", "type"),
        Index("ix_auth_item_rule_name", "rule_name"),
    )

    def to_item(self) -> Item:
        return Item(
            name=self.name,
            type=ItemType(self.type),
            description=self.description or "",
            rule_name=self.rule_name,
            data=self.data,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class AuthRule(Base):
    """Serialized rule payload keyed by rule name."""

    __tablename__ = "auth_rule"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[str] = mapped_column(Text(), nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


class AuthItemChild(Base):
    """Directed hierarchy edge from ``parent`` to ``child``."""

    __tablename__ = "auth_item_child"

    parent: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("auth_item.name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    child: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("auth_item.name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )

    __table_args__ = (Index("ix_auth_item_child_child", "child"),)


class AuthAssignment(Base):
    """Direct grant of an item to a user."""

    __tablename__ = "auth_assignment"

    item_name: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("auth_item.name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (Index("ix_auth_assignment_user_id", "user_id"),)

    def to_assignment(self) -> Assignment:
        return Assignment(
            user_id=self.user_id,
            item_name=self.item_name,
            created_at=self.created_at,
        )


__all__ = ["AuthAssignment", "AuthItem", "AuthItemChild", "AuthRule", "item_type_enum"]
