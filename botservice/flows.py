"""Bot conversation flows and the steps they are made of."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from botservice.logger import Logger


class StepType(str, enum.Enum):
    MESSAGE = "message"
    DECISION = "decision"
    INPUT = "input"
    API_CALL = "api_call"
    AI = "ai"


@dataclass
class BotFlow:
    id: str
    bot_id: str
    name: str = ""
    trigger: str = ""
    entry_point: str = ""
    is_default: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class BotStep:
    id: str
    flow_id: str
    type: StepType
    content: dict[str, Any] = field(default_factory=dict)
    next_step_id: str | None = None
    conditions: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BotStepService:
    """Stores the steps of bot flows."""

    def __init__(self, logger: Logger | None = None) -> None:
        self._logger = logger or Logger()
        self._steps: dict[str, BotStep] = {}
        self._lock = threading.RLock()

    def get_step(self, step_id: str) -> BotStep:
        with self._lock:
            step = self._steps.get(step_id)
        if step is None:
            raise LookupError(f"step not found: {step_id}")
        return step

    def get_steps_by_flow(self, flow_id: str) -> list[BotStep]:
        with self._lock:
            return [s for s in self._steps.values() if s.flow_id == flow_id]

    def create_step(self, step: BotStep) -> None:
        now = datetime.now()
        step.created_at = now
        step.updated_at = now
        with self._lock:
            self._steps[step.id] = step

    def update_step(self, step: BotStep) -> None:
        with self._lock:
            if step.id not in self._steps:
                raise LookupError(f"step not found: {step.id}")
            step.updated_at = datetime.now()
            self._steps[step.id] = step

    def delete_step(self, step_id: str) -> None:
        with self._lock:
            if self._steps.pop(step_id, None) is None:
                raise LookupError(f"step not found: {step_id}")


class BotFlowService:
    """Stores bot flows; deleting a flow deletes its steps too."""

    def __init__(self, step_service: BotStepService, logger: Logger | None = None) -> None:
        self._steps = step_service
        self._logger = logger or Logger()
        self._flows: dict[str, BotFlow] = {}
        self._lock = threading.RLock()

    def get_flow(self, flow_id: str) -> BotFlow:
        with self._lock:
            flow = self._flows.get(flow_id)
        if flow is None:
            raise LookupError(f"flow not found: {flow_id}")
        return flow

    def get_flows_by_bot(self, bot_id: str) -> list[BotFlow]:
        with self._lock:
            return [f for f in self._flows.values() if f.bot_id == bot_id]

    def create_flow(self, flow: BotFlow) -> None:
        now = datetime.now()
        flow.created_at = now
        flow.updated_at = now
        with self._lock:
            self._flows[flow.id] = flow

    def update_flow(self, flow: BotFlow) -> None:
        with self._lock:
            if flow.id not in self._flows:
                raise LookupError(f"flow not found: {flow.id}")
            flow.updated_at = datetime.now()
            self._flows[flow.id] = flow

    def delete_flow(self, flow_id: str) -> None:
        for step in self._steps.get_steps_by_flow(flow_id):
            try:
                self._steps.delete_step(step.id)
            except LookupError as exc:
                self._logger.error("Failed to delete step", "step_id", step.id, "error", str(exc))
        with self._lock:
            if self._flows.pop(flow_id, None) is None:
                raise LookupError(f"flow not found: {flow_id}")