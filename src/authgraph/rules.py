"""Rule contract, payload codec, and evaluation."""

from __future__ import annotations

import importlib
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from authgraph.logging import log_context
from authgraph.types import Item

logger = logging.getLogger(__name__)


class Rule(BaseModel):
    """Base class for integrator-supplied predicates attached to items.

    Subclasses declare whatever state they need as pydantic fields and
    implement :meth:`execute`. The state is persisted alongside the class path,
    so subclasses must be importable at module level.
    """

    model_config = ConfigDict(extra="ignore")

    name: str
    created_at: int | None = None
    updated_at: int | None = None

    def execute(self, user_id: str | None, item: Item, params: Mapping[str, Any]) -> bool:
        raise NotImplementedError


class RuleCodec:
    """Serialize rules to a JSON envelope and back.

    The envelope is ``{"class": "<module>:<qualname>", "state": {...}}``.
    Timestamps live in their own columns and are not part of the state.
    """

    @staticmethod
    def class_path(rule_cls: type[Rule]) -> str:
        return f"{rule_cls.__module__}:{rule_cls.__qualname__}"

    def dumps(self, rule: Rule) -> str:
        state = rule.model_dump(mode="json", exclude={"created_at", "updated_at"})
        return json.dumps(
            {"class": self.class_path(type(rule)), "state": state},
            separators=(",", ":"),
            sort_keys=True,
        )

    def loads(
        self,
        payload: str | None,
        *,
        created_at: int | None = None,
        updated_at: int | None = None,
    ) -> Rule | None:
        """Return the decoded rule, or ``None`` when the payload is unusable."""

        if not payload:
            return None
        try:
            envelope = json.loads(payload)
            rule_cls = self._resolve(envelope["class"])
            state = dict(envelope.get("state") or {})
            state["created_at"] = created_at
            state["updated_at"] = updated_at
            return rule_cls.model_validate(state)
        except (ValueError, TypeError, KeyError, ImportError, AttributeError, ValidationError) as exc:
            logger.warning(
                "authgraph.rule.decode_failed",
                extra=log_context(error=type(exc).__name__, detail=str(exc)),
            )
            return None

    @staticmethod
    def _resolve(path: str) -> type[Rule]:
        module_name, _, qualname = str(path).partition(":")
        if not module_name or not qualname:
            raise ValueError(f"Malformed rule class path '{path}'")
        target: Any = importlib.import_module(module_name)
        for attribute in qualname.split("."):
            target = getattr(target, attribute)
        if not isinstance(target, type) or not issubclass(target, Rule):
            raise TypeError(f"'{path}' is not a Rule subclass")
        return target


RuleLoader = Callable[[str], Rule | None]


class RuleEvaluator:
    """Run the rule attached to an item.

    Items without a rule pass. A rule name that cannot be loaded denies.
    """

    def __init__(self, loader: RuleLoader) -> None:
        self._loader = loader

    def evaluate(
        self,
        rule_name: str | None,
        user_id: str | None,
        item: Item,
        params: Mapping[str, Any] | None = None,
    ) -> bool:
        if not rule_name:
            return True

        rule = self._loader(rule_name)
        if rule is None:
            logger.warning(
                "authgraph.rule.unavailable",
                extra=log_context(user_id=user_id, item=item.name, rule=rule_name),
            )
            return False

        allowed = bool(rule.execute(user_id, item, params or {}))
        logger.debug(
            "authgraph.rule.evaluated",
            extra=log_context(user_id=user_id, item=item.name, rule=rule_name, allowed=allowed),
        )
        return allowed


__all__ = ["Rule", "RuleCodec", "RuleEvaluator", "RuleLoader"]
