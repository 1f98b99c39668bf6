"""Role and permission authorization backed by SQLAlchemy."""

from authgraph.checker import AccessChecker, AccessPolicy
from authgraph.errors import (
    AlreadyExistsError,
    AuthGraphError,
    CycleDetectedError,
    InvalidArgumentError,
)
from authgraph.manager import AuthManager
from authgraph.rules import Rule, RuleCodec, RuleEvaluator
from authgraph.settings import Settings, get_settings, reload_settings
from authgraph.types import Assignment, Item, ItemType, TreeNode

__all__ = [
    "AccessChecker",
    "AccessPolicy",
    "AlreadyExistsError",
    "Assignment",
    "AuthGraphError",
    "AuthManager",
    "CycleDetectedError",
    "InvalidArgumentError",
    "Item",
    "ItemType",
    "Rule",
    "RuleCodec",
    "RuleEvaluator",
    "Settings",
    "TreeNode",
    "get_settings",
    "reload_settings",
]
