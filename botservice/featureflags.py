"""In-memory feature flags with attribute rules and percentage rollout."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from botservice.logger import Logger

_MASK64 = (1 << 64) - 1


def _to_int64(value: int) -> int:
    value &= _MASK64
    return value - (1 << 64) if value >= 1 << 63 else value


@dataclass
class Rule:
    attribute: str
    operator: str
    value: Any


@dataclass
class FeatureFlag:
    key: str
    enabled: bool = False
    percentage: int = 0
    rules: list[Rule] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass
class EvaluationContext:
    user_id: str = ""
    email: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)


def _default_flags() -> list[FeatureFlag]:
    return [
        FeatureFlag(key="new_user_onboarding", enabled=True, percentage=100),
        FeatureFlag(key="advanced_analytics", enabled=False, percentage=0),
        FeatureFlag(
            key="beta_features",
            enabled=True,
            percentage=10,
            rules=[Rule(attribute="user_type", operator="eq", value="beta_tester")],
        ),
    ]


class InMemoryClient:
    """Feature flag client backed by a dictionary; starts with development defaults."""

    def __init__(self, logger: Logger | None = None, flags: Iterable[FeatureFlag] | None = None) -> None:
        self._logger = logger or Logger()
        self._lock = threading.RLock()
        self._flags: dict[str, FeatureFlag] = {}
        with self._lock:
            for flag in [*_default_flags(), *(flags or ())]:
                self._flags[flag.key] = flag

    def is_enabled(self, flag_key: str, eval_ctx: EvaluationContext) -> bool:
        with self._lock:
            flag = self._flags.get(flag_key)
        if flag is None:
            self._logger.debug("Feature flag not found", "flag_key", flag_key)
            return False
        if not flag.enabled:
            return False
        if flag.rules and not self._evaluate_rules(flag.rules, eval_ctx):
            return False
        if flag.percentage < 100:
            return self._evaluate_percentage(flag_key, eval_ctx.user_id, flag.percentage)
        return True

    def get_variation(self, flag_key: str, eval_ctx: EvaluationContext, default_value: Any) -> Any:
        if not self.is_enabled(flag_key, eval_ctx):
            return default_value
        with self._lock:
            flag = self._flags.get(flag_key)
        if flag is None:
            return default_value
        return flag.metadata.get("variation", default_value)

    def refresh_flags(self) -> None:
        self._logger.info("Refreshing feature flags")

    def close(self) -> None:
        with self._lock:
            self._flags = {}

    def _evaluate_rules(self, rules: list[Rule], eval_ctx: EvaluationContext) -> bool:
        return all(self._evaluate_rule(rule, self._attribute(rule.attribute, eval_ctx)) for rule in rules)

    @staticmethod
    def _attribute(name: str, eval_ctx: EvaluationContext) -> Any:
        if name == "user_id":
            return eval_ctx.user_id
        if name == "email":
            return eval_ctx.email
        return eval_ctx.attributes.get(name)

    @staticmethod
    def _evaluate_rule(rule: Rule, value: Any) -> bool:
        members = rule.value if isinstance(rule.value, (list, tuple)) else None
        if rule.operator == "eq":
            return value == rule.value
        if rule.operator == "ne":
            return value != rule.value
        if rule.operator == "in":
            return members is not None and value in members
        if rule.operator == "not_in":
            return members is None or value not in members
        return False

    @staticmethod
    def _evaluate_percentage(flag_key: str, user_id: str, percentage: int) -> bool:
        digest = 0
        for char in flag_key + user_id:
            digest = _to_int64(digest * 31 + ord(char))
        if digest < 0:
            digest = _to_int64(-digest)
        bucket = abs(digest) % 100
        if digest < 0:
            bucket = -bucket
        return bucket < percentage