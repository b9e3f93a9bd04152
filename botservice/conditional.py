"""Conditional expressions and event triggers for bots."""

from __future__ import annotations

import enum
import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping

from botservice.logger import Logger

ActionHandler = Callable[["Trigger", Mapping[str, Any]], Any]


class TriggerEvent(str, enum.Enum):
    MESSAGE_RECEIVED = "message_received"


@dataclass
class Conditional:
    bot_id: str
    expression: str
    id: str = ""
    name: str = ""
    description: str = ""
    type: str = "simple"
    priority: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Trigger:
    bot_id: str
    event: TriggerEvent
    id: str = ""
    name: str = ""
    description: str = ""
    condition: str = ""
    action: dict[str, Any] = field(default_factory=dict)
    priority: int = 0
    enabled: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


def _format_value(value: Any) -> str:
    """Render a value the way placeholders expect: lower-case booleans, compact numbers."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_format_value(item) for item in value) + "]"
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "map[" + " ".join(f"{_format_value(k)}:{_format_value(v)}" for k, v in items) + "]"
    return str(value)


def _replace_variables(expression: str, values: Mapping[str, Any]) -> str:
    result = expression
    for key, value in values.items():
        result = result.replace("{{" + str(key) + "}}", _format_value(value))
    return result


def _split_pair(text: str, operator: str) -> tuple[str, str] | None:
    parts = text.split(operator)
    if len(parts) != 2:
        return None
    return parts[0].strip(), parts[1].strip()


def evaluate_expression(expression: str, input: Mapping[str, Any] | None = None) -> bool:
    """Evaluate a simple conditional expression after substituting ``{{name}}`` placeholders.

    Supported forms are ``a == b``, ``a != b``, ``text contains word``, ``text regex pattern``
    and the literals true/1/yes and false/0/no. Anything else evaluates to False.
    Raises ValueError for an invalid regular expression.
    """
    evaluated = _replace_variables(expression, input or {})

    if "==" in evaluated and (pair := _split_pair(evaluated, "==")) is not None:
        return pair[0] == pair[1]
    if "!=" in evaluated and (pair := _split_pair(evaluated, "!=")) is not None:
        return pair[0] != pair[1]
    if "contains" in evaluated and (pair := _split_pair(evaluated, "contains")) is not None:
        text, keyword = pair
        return keyword.lower() in text.lower()
    if "regex" in evaluated and (pair := _split_pair(evaluated, "regex")) is not None:
        text, pattern = pair
        try:
            return re.search(pattern, text) is not None
        except re.error as exc:
            raise ValueError(f"invalid regular expression {pattern!r}: {exc}") from exc

    return evaluated.lower() in ("true", "1", "yes")


class ConditionalService:
    """Stores conditionals and evaluates them against input values."""

    def __init__(self, logger: Logger | None = None) -> None:
        self._logger = logger or Logger()
        self._conditionals: dict[str, Conditional] = {}
        self._lock = threading.RLock()

    def get_conditional(self, conditional_id: str) -> Conditional:
        with self._lock:
            conditional = self._conditionals.get(conditional_id)
        if conditional is None:
            raise LookupError(f"conditional not found: {conditional_id}")
        return conditional

    def get_conditionals_by_bot(self, bot_id: str) -> list[Conditional]:
        with self._lock:
            return [c for c in self._conditionals.values() if c.bot_id == bot_id]

    def create_conditional(self, conditional: Conditional) -> None:
        if not conditional.id:
            conditional.id = str(uuid.uuid4())
        now = datetime.now()
        conditional.created_at = now
        conditional.updated_at = now
        with self._lock:
            self._conditionals[conditional.id] = conditional

    def update_conditional(self, conditional: Conditional) -> None:
        with self._lock:
            if conditional.id not in self._conditionals:
                raise LookupError(f"conditional not found: {conditional.id}")
            conditional.updated_at = datetime.now()
            self._conditionals[conditional.id] = conditional

    def delete_conditional(self, conditional_id: str) -> None:
        with self._lock:
            if self._conditionals.pop(conditional_id, None) is None:
                raise LookupError(f"conditional not found: {conditional_id}")

    def evaluate_conditional(self, conditional_id: str, input: Mapping[str, Any] | None = None) -> bool:
        """Evaluate the stored conditional's expression; raises LookupError if it is unknown."""
        return evaluate_expression(self.get_conditional(conditional_id).expression, input)

    def evaluate_expression(self, expression: str, input: Mapping[str, Any] | None = None) -> bool:
        return evaluate_expression(expression, input)


class TriggerService:
    """Stores triggers and runs them when their event occurs and their condition holds."""

    def __init__(
        self,
        conditional_service: ConditionalService,
        logger: Logger | None = None,
        action_handlers: Mapping[str, ActionHandler] | None = None,
    ) -> None:
        self._conditionals = conditional_service
        self._logger = logger or Logger()
        self._handlers = dict(action_handlers or {})
        self._triggers: dict[str, Trigger] = {}
        self._lock = threading.RLock()
        self.executions: list[tuple[str, dict[str, Any]]] = []

    def get_trigger(self, trigger_id: str) -> Trigger:
        with self._lock:
            trigger = self._triggers.get(trigger_id)
        if trigger is None:
            raise LookupError(f"trigger not found: {trigger_id}")
        return trigger

    def get_triggers_by_bot(self, bot_id: str) -> list[Trigger]:
        with self._lock:
            return [t for t in self._triggers.values() if t.bot_id == bot_id]

    def get_triggers_by_event(self, bot_id: str, event: TriggerEvent) -> list[Trigger]:
        return [t for t in self.get_triggers_by_bot(bot_id) if t.event == event]

    def create_trigger(self, trigger: Trigger) -> None:
        if not trigger.id:
            trigger.id = str(uuid.uuid4())
        now = datetime.now()
        trigger.created_at = now
        trigger.updated_at = now
        with self._lock:
            self._triggers[trigger.id] = trigger

    def update_trigger(self, trigger: Trigger) -> None:
        with self._lock:
            if trigger.id not in self._triggers:
                raise LookupError(f"trigger not found: {trigger.id}")
            trigger.updated_at = datetime.now()
            self._triggers[trigger.id] = trigger

    def delete_trigger(self, trigger_id: str) -> None:
        with self._lock:
            if self._triggers.pop(trigger_id, None) is None:
                raise LookupError(f"trigger not found: {trigger_id}")

    def execute_trigger(self, trigger_id: str, event_data: Mapping[str, Any] | None = None) -> None:
        """Run a trigger's action through the handler registered for its action type."""
        trigger = self.get_trigger(trigger_id)
        data = dict(event_data or {})
        handler = self._handlers.get(trigger.action.get("type", ""))
        if handler is not None:
            handler(trigger, data)
        with self._lock:
            self.executions.append((trigger.id, data))

    def process_event(
        self, bot_id: str, event: TriggerEvent, event_data: Mapping[str, Any] | None = None
    ) -> list[str]:
        """Run the bot's enabled triggers for an event in priority order; return the ids run."""
        with self._lock:
            enabled = sorted(
                (t for t in self._triggers.values() if t.bot_id == bot_id and t.enabled),
                key=lambda t: t.priority,
            )
        executed: list[str] = []
        for trigger in (t for t in enabled if t.event == event):
            if trigger.condition:
                try:
                    met = self._conditionals.evaluate_conditional(trigger.condition, event_data)
                except (LookupError, ValueError) as exc:
                    self._logger.error(
                        "Failed to evaluate trigger condition", "trigger_id", trigger.id, "error", str(exc)
                    )
                    continue
                if not met:
                    continue
            try:
                self.execute_trigger(trigger.id, event_data)
            except Exception as exc:  # one failing action must not stop the others
                self._logger.error("Failed to execute trigger", "trigger_id", trigger.id, "error", str(exc))
                continue
            executed.append(trigger.id)
        return executed