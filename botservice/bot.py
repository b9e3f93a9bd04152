"""Bots and the processing of incoming messages through their flows and steps."""

from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping, Protocol

from botservice.conversation import ConversationService, ConversationSession
from botservice.flows import BotFlow, BotFlowService, BotStep, BotStepService, StepType
from botservice.logger import Logger
from botservice.smart_reply import MCPTask, MCPTaskResult, SmartReplyService

_YES_WORDS = ("yes", "sí", "si", "ok", "okay")
_NO_WORDS = ("no", "nope", "not")
_AGENT_TIMEOUT = timedelta(seconds=30)


class BotStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Channel(str, enum.Enum):
    WEB = "web"
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"


class ResponseType(str, enum.Enum):
    TEXT = "text"
    OPTIONS = "options"


@dataclass
class ResponseOption:
    id: str = ""
    text: str = ""
    value: str = ""


@dataclass
class Bot:
    id: str
    name: str = ""
    owner_id: str = ""
    channel: Channel = Channel.WEB
    status: BotStatus = BotStatus.ACTIVE
    config: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class IncomingMessage:
    bot_id: str
    user_id: str
    content: str
    id: str = ""
    channel: Channel = Channel.WEB
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None


@dataclass
class BotResponse:
    content: str
    type: str = ResponseType.TEXT
    options: list[ResponseOption] = field(default_factory=list)
    next_step_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class _Agent(Protocol):
    id: str


class _Orchestrator(Protocol):
    def instantiate_mcp(self, config: Mapping[str, Any]) -> _Agent: ...

    def pass_context(self, agent_id: str, context: Mapping[str, Any]) -> None: ...

    def execute_task(self, task: MCPTask) -> MCPTaskResult: ...

    def terminate_agent(self, agent_id: str) -> None: ...


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(keyword.lower() in lowered for keyword in keywords)


def _evaluate_condition(condition: str, user_input: str) -> bool:
    if condition == "contains_yes":
        return _contains_any(user_input, _YES_WORDS)
    if condition == "contains_no":
        return _contains_any(user_input, _NO_WORDS)
    return user_input == condition


def _parse_options(raw: Any) -> list[ResponseOption]:
    if not raw:
        return []
    if not isinstance(raw, list) or not all(isinstance(item, Mapping) for item in raw):
        raise ValueError("failed to parse step content: options must be a list of objects")
    return [
        ResponseOption(
            id=str(item.get("id", "")),
            text=str(item.get("text", "")),
            value=str(item.get("value", "")),
        )
        for item in raw
    ]


class BotService:
    """Manages bots and answers incoming messages by walking their flows."""

    def __init__(
        self,
        flow_service: BotFlowService,
        step_service: BotStepService,
        conversation_service: ConversationService,
        smart_reply_service: SmartReplyService | None = None,
        orchestrator: _Orchestrator | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._flows = flow_service
        self._steps = step_service
        self._conversations = conversation_service
        self._smart_replies = smart_reply_service
        self._orchestrator = orchestrator
        self._logger = logger or Logger()
        self._bots: dict[str, Bot] = {}
        self._lock = threading.RLock()

    def get_bot(self, bot_id: str) -> Bot:
        with self._lock:
            bot = self._bots.get(bot_id)
        if bot is None:
            raise LookupError(f"bot not found: {bot_id}")
        return bot

    def get_bots_by_owner(self, owner_id: str) -> list[Bot]:
        with self._lock:
            return [b for b in self._bots.values() if b.owner_id == owner_id]

    def create_bot(self, bot: Bot) -> None:
        now = datetime.now()
        bot.created_at = now
        bot.updated_at = now
        with self._lock:
            self._bots[bot.id] = bot

    def update_bot(self, bot: Bot) -> None:
        with self._lock:
            if bot.id not in self._bots:
                raise LookupError(f"bot not found: {bot.id}")
            bot.updated_at = datetime.now()
            self._bots[bot.id] = bot

    def delete_bot(self, bot_id: str) -> None:
        with self._lock:
            if self._bots.pop(bot_id, None) is None:
                raise LookupError(f"bot not found: {bot_id}")

    def process_incoming_message(self, message: IncomingMessage) -> BotResponse:
        """Run the current step of the user's conversation and advance the session.

        Raises LookupError when the bot, a default flow or the entry step is missing,
        and ValueError when a step's definition cannot be used.
        """
        try:
            session = self._conversations.get_session(message.user_id, message.bot_id)
        except LookupError:
            now = datetime.now()
            session = ConversationSession(
                bot_id=message.bot_id,
                user_id=message.user_id,
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(hours=24),
            )

        try:
            bot = self.get_bot(message.bot_id)
        except LookupError as exc:
            raise LookupError(f"bot not found: {exc}") from exc

        if bot.status != BotStatus.ACTIVE:
            return BotResponse(content="Bot is currently unavailable", type=ResponseType.TEXT)

        flow = self._resolve_flow(session, message)
        step = self._resolve_step(session, flow)

        try:
            response, next_step_id = self._process_step(step, message, session)
        except ValueError as exc:
            raise ValueError(f"failed to process step: {exc}") from exc

        session.current_flow_id = flow.id
        session.current_step_id = next_step_id or ""
        session.updated_at = datetime.now()
        session.context["last_message"] = message.content
        session.context["last_response"] = response.content

        try:
            self._conversations.update_session(session)
        except Exception as exc:  # a failed save must not lose the reply
            self._logger.error("Failed to update session", "error", str(exc))

        return response

    def _resolve_flow(self, session: ConversationSession, message: IncomingMessage) -> BotFlow:
        if session.current_flow_id:
            try:
                return self._flows.get_flow(session.current_flow_id)
            except LookupError:
                self._logger.warn(
                    "Current flow not found, using default", "flow_id", session.current_flow_id
                )

        flows = self._flows.get_flows_by_bot(message.bot_id)
        triggered = next((f for f in flows if f.trigger and f.trigger == message.content), None)
        if triggered is not None:
            return triggered
        default = next((f for f in flows if f.is_default), None)
        if default is None:
            raise LookupError(f"no default flow found: bot {message.bot_id}")
        return default

    def _resolve_step(self, session: ConversationSession, flow: BotFlow) -> BotStep:
        if session.current_step_id:
            try:
                return self._steps.get_step(session.current_step_id)
            except LookupError:
                self._logger.warn(
                    "Current step not found, using entry point", "step_id", session.current_step_id
                )
        try:
            return self._steps.get_step(flow.entry_point)
        except LookupError as exc:
            raise LookupError(f"entry point step not found: {exc}") from exc

    def _process_step(
        self, step: BotStep, message: IncomingMessage, session: ConversationSession
    ) -> tuple[BotResponse, str | None]:
        if not isinstance(step.content, Mapping):
            raise ValueError("failed to parse step content")
        if step.type == StepType.MESSAGE:
            return self._message_step(step)
        if step.type == StepType.DECISION:
            return self._decision_step(step, message)
        if step.type == StepType.INPUT:
            return self._input_step(step, message, session)
        if step.type == StepType.API_CALL:
            return self._api_call_step(step, message, session)
        if step.type == StepType.AI:
            return self._ai_step(step, message, session)
        return BotResponse(content="Unknown step type", type=ResponseType.TEXT), step.next_step_id

    def _message_step(self, step: BotStep) -> tuple[BotResponse, str | None]:
        content = step.content
        response = BotResponse(
            content=str(content.get("text", "")),
            type=str(content.get("type", "")),
            options=_parse_options(content.get("options")),
            next_step_id=step.next_step_id,
        )
        return response, step.next_step_id

    def _decision_step(self, step: BotStep, message: IncomingMessage) -> tuple[BotResponse, str | None]:
        conditions = step.conditions
        if not isinstance(conditions, Mapping) or not conditions:
            raise ValueError("failed to parse conditions")
        rules = conditions.get("rules") or []
        if not isinstance(rules, list):
            raise ValueError("failed to parse conditions: rules must be a list")
        for rule in rules:
            if not isinstance(rule, Mapping):
                raise ValueError("failed to parse conditions: rule must be an object")
            if _evaluate_condition(str(rule.get("condition", "")), message.content):
                return (
                    BotResponse(content="Condition matched, proceeding...", type=ResponseType.TEXT),
                    str(rule.get("next_step", "")),
                )
        return (
            BotResponse(content="Proceeding with default path...", type=ResponseType.TEXT),
            str(conditions.get("default", "")),
        )

    def _input_step(
        self, step: BotStep, message: IncomingMessage, session: ConversationSession
    ) -> tuple[BotResponse, str | None]:
        variable = str(step.content.get("variable", ""))
        session.context[variable] = message.content
        response = BotResponse(
            content=f"Thank you! I've saved your response: {message.content}",
            type=ResponseType.TEXT,
        )
        return response, step.next_step_id

    def _api_call_step(
        self, step: BotStep, message: IncomingMessage, session: ConversationSession
    ) -> tuple[BotResponse, str | None]:
        content = step.content
        agent_type = str(content.get("agent_type", ""))
        agent_config = {
            "type": agent_type,
            "name": f"api-agent-{step.id}",
            "version": "1.0",
            "config": dict(content.get("config") or {}),
            "capabilities": ["http_request", "api_call"],
            "timeout": _AGENT_TIMEOUT,
        }

        try:
            if self._orchestrator is None:
                raise RuntimeError("no MCP orchestrator configured")
            agent = self._orchestrator.instantiate_mcp(agent_config)
        except Exception as exc:
            self._logger.error("Failed to instantiate MCP agent", "error", str(exc))
            return (
                BotResponse(content="Unable to process API request at this time", type=ResponseType.TEXT),
                step.next_step_id,
            )

        agent_context = dict(session.context)
        agent_context["user_message"] = message.content
        agent_context["user_id"] = message.user_id
        agent_context["bot_id"] = message.bot_id
        try:
            self._orchestrator.pass_context(agent.id, agent_context)
        except Exception as exc:
            self._logger.error("Failed to pass context to agent", "error", str(exc))

        task = MCPTask(
            id=f"task-{step.id}-{time.time_ns()}",
            type=agent_type,
            description=f"API call for step {step.id}",
            input=dict(content.get("task") or {}),
            priority=5,
            metadata={"step_id": step.id, "message_id": message.id},
        )
        try:
            result = self._orchestrator.execute_task(task)
        except Exception as exc:
            self._logger.error("MCP task execution failed", "error", str(exc))
            return (
                BotResponse(content="API request failed. Please try again later.", type=ResponseType.TEXT),
                step.next_step_id,
            )

        if result.success:
            if "response" in result.output:
                text = f"API call successful: {result.output['response']}"
            else:
                text = "API call completed successfully"
            session.context["api_result"] = result.output
        else:
            text = f"API call failed: {result.error}"

        try:
            self._orchestrator.terminate_agent(agent.id)
        except Exception as exc:
            self._logger.error("Failed to terminate agent", "agent_id", agent.id, "error", str(exc))

        response = BotResponse(
            content=text,
            type=ResponseType.TEXT,
            metadata={
                "task_id": result.task_id,
                "duration": str(timedelta(milliseconds=result.execution_time)),
                "agent_type": agent_type,
            },
        )
        return response, step.next_step_id

    def _ai_step(
        self, step: BotStep, message: IncomingMessage, session: ConversationSession
    ) -> tuple[BotResponse, str | None]:
        try:
            if self._smart_replies is None:
                raise RuntimeError("no smart reply service configured")
            reply = self._smart_replies.generate_ai_response(message.bot_id, message.content, session.context)
        except Exception as exc:
            self._logger.error("Failed to generate AI response", "error", str(exc))
            return (
                BotResponse(
                    content="I'm having trouble understanding. Could you please rephrase?",
                    type=ResponseType.TEXT,
                ),
                step.next_step_id,
            )
        response = BotResponse(
            content=reply.response,
            type=ResponseType.TEXT,
            metadata={"confidence": reply.confidence, "intent": reply.intent},
        )
        return response, step.next_step_id