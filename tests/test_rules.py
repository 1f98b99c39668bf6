from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import pytest
from sqlalchemy.engine import Engine

from authgraph.db.models import AuthRule
from authgraph.errors import AlreadyExistsError
from authgraph.manager import AuthManager
from authgraph.rules import Rule, RuleCodec, RuleEvaluator
from authgraph.settings import Settings
from authgraph.types import Item


class OwnerRule(Rule):
    """Passes when ``params[key]`` equals the requesting user id."""

    key: str = "author_id"

    def execute(self, user_id: str | None, item: Item, params: Mapping[str, Any]) -> bool:
        value = params.get(self.key)
        return value is not None and str(value) == user_id


class NeverRule(Rule):
    def execute(self, user_id: str | None, item: Item, params: Mapping[str, Any]) -> bool:
        return False


class NotARule:
    pass


def test_codec_preserves_class_and_state() -> None:
    codec = RuleCodec()
    payload = codec.dumps(OwnerRule(name="isOwner", key="owner", created_at=10, updated_at=20))

    envelope = json.loads(payload)
    assert envelope["class"] == f"{__name__}:OwnerRule"
    assert envelope["state"] == {"name": "isOwner", "key": "owner"}

    restored = codec.loads(payload, created_at=10, updated_at=20)
    assert isinstance(restored, OwnerRule)
    assert restored.key == "owner"
    assert restored.created_at == 10
    assert restored.updated_at == 20


@pytest.mark.parametrize(
    "payload",
    [
        None,
        "",
        "not json",
        json.dumps({"state": {"name": "x"}}),
        json.dumps({"class": "authgraph_missing_module:Rule", "state": {"name": "x"}}),
        json.dumps({"class": f"{__name__}:Missing", "state": {"name": "x"}}),
        json.dumps({"class": f"{__name__}:NotARule", "state": {"name": "x"}}),
        json.dumps({"class": f"{__name__}:OwnerRule", "state": {}}),
    ],
)
def test_codec_returns_none_for_unusable_payloads(payload: str | None) -> None:
    assert RuleCodec().loads(payload) is None


def test_evaluator_passes_items_without_rules() -> None:
    evaluator = RuleEvaluator(lambda name: pytest.fail("loader should not be called"))

    assert evaluator.evaluate(None, "1", Item.role("r"), {}) is True


def test_evaluator_denies_unavailable_rules(caplog: pytest.LogCaptureFixture) -> None:
    evaluator = RuleEvaluator(lambda name: None)

    with caplog.at_level(logging.WARNING, logger="authgraph.rules"):
        assert evaluator.evaluate("gone", "1", Item.role("r"), {}) is False

    assert any(record.getMessage() == "authgraph.rule.unavailable" for record in caplog.records)


def test_evaluator_runs_rule_with_params() -> None:
    rule = OwnerRule(name="isOwner")
    evaluator = RuleEvaluator({"isOwner": rule}.get)

    assert evaluator.evaluate("isOwner", "3", Item.permission("p"), {"author_id": 3}) is True
    assert evaluator.evaluate("isOwner", "3", Item.permission("p"), {"author_id": 4}) is False
    assert evaluator.evaluate("isOwner", "3", Item.permission("p"), None) is False


def test_add_and_get_rule(manager: AuthManager) -> None:
    assert manager.add(OwnerRule(name="isOwner", key="owner")) is True

    rule = manager.get_rule("isOwner")
    assert isinstance(rule, OwnerRule)
    assert rule.key == "owner"
    assert rule.created_at is not None
    assert set(manager.get_rules()) == {"isOwner"}
    assert manager.get_rule("missing") is None


def test_add_rule_rejects_duplicates(manager: AuthManager) -> None:
    manager.add(NeverRule(name="never"))

    with pytest.raises(AlreadyExistsError):
        manager.add(NeverRule(name="never"))


def test_get_rules_skips_undecodable_rows(manager: AuthManager) -> None:
    manager.add(NeverRule(name="never"))
    with manager.unit_of_work() as stores:
        stores.session.add(AuthRule(name="broken", data="{oops", created_at=0, updated_at=0))

    assert set(manager.get_rules()) == {"never"}
    assert manager.get_rule("broken") is None


def test_update_rule_rename_cascades_to_items(manager: AuthManager) -> None:
    manager.add(OwnerRule(name="isOwner"))
    manager.add(manager.create_permission("updatePost", rule_name="isOwner"))

    assert manager.update("isOwner", OwnerRule(name="isAuthor", key="author")) is True

    assert manager.get_rule("isOwner") is None
    assert manager.get_rule("isAuthor").key == "author"
    assert manager.get_permission("updatePost").rule_name == "isAuthor"


def test_update_missing_rule_returns_false(manager: AuthManager) -> None:
    assert manager.update("ghost", NeverRule(name="ghost")) is False


def test_remove_rule_deletes_referencing_items(manager: AuthManager) -> None:
    manager.add(NeverRule(name="never"))
    manager.add(manager.create_role("author"))
    manager.add(manager.create_permission("updatePost", rule_name="never"))
    manager.add(manager.create_permission("readPost"))
    manager.add_child("author", "updatePost")
    manager.assign("updatePost", "1")

    assert manager.remove(manager.get_rule("never")) is True

    assert manager.get_rule("never") is None
    assert manager.get_item("updatePost") is None
    assert manager.get_item("readPost") is not None
    assert manager.get_children("author") == {}
    assert manager.get_assignments("1") == {}


def test_remove_rule_detach_policy(engine: Engine) -> None:
    settings = Settings(_env_file=None, database_url="sqlite:///:memory:", rule_removal="detach")
    manager = AuthManager(settings, engine=engine)
    manager.add(NeverRule(name="never"))
    manager.add(manager.create_permission("updatePost", rule_name="never"))

    assert manager.remove(NeverRule(name="never")) is True

    assert manager.get_rule("never") is None
    assert manager.get_permission("updatePost").rule_name is None


def test_remove_all_rules_detaches_items(manager: AuthManager) -> None:
    manager.add(NeverRule(name="never"))
    manager.add(OwnerRule(name="isOwner"))
    manager.add(manager.create_permission("updatePost", rule_name="isOwner"))

    manager.remove_all_rules()

    assert manager.get_rules() == {}
    assert manager.get_permission("updatePost").rule_name is None
