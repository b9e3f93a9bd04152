"""Smart replies: stored intents and AI-generated answers with confidence scores."""

from __future__ import annotations

import dataclasses
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Protocol

from botservice.logger import Logger

_SYSTEM_PROMPT = (
    "You are a helpful customer service assistant. "
    "Provide clear, concise, and helpful responses."
)

_INTENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "greeting": ("hello", "hi", "hey", "good morning", "good afternoon"),
    "goodbye": ("bye", "goodbye", "see you", "farewell"),
    "help": ("help", "assist", "support", "how to"),
    "information": ("what", "how", "when", "where", "why", "info"),
    "complaint": ("problem", "issue", "wrong", "error", "complaint"),
    "compliment": ("good", "great", "excellent", "amazing", "wonderful"),
    "question": ("?", "question", "ask"),
}


@dataclass
class MCPTask:
    id: str
    type: str
    description: str = ""
    input: dict[str, Any] = field(default_factory=dict)
    priority: int = 0
    timeout: int = 0
    context: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass
class MCPTaskResult:
    task_id: str
    success: bool
    output: dict[str, Any] = field(default_factory=dict)
    error: str = ""
    agent_id: str = ""
    execution_time: int = 0


@dataclass
class SmartReply:
    bot_id: str
    intent: str
    response: str
    confidence: float = 0.0
    id: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class _Orchestrator(Protocol):
    def execute_task_domain(self, task: MCPTask) -> MCPTaskResult: ...


class _AIResponse(Protocol):
    content: str
    tokens_used: int
    finish_reason: str


class _AIClient(Protocol):
    def generate_response(self, prompt: str, *, max_tokens: int, temperature: float) -> _AIResponse: ...


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def _byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def build_prompt_with_context(prompt: str, context: Mapping[str, Any] | None) -> str:
    """Prefix the user's message with the conversation context as a bullet list."""
    lines = "".join(f"- {key}: {value}\n" for key, value in (context or {}).items())
    return (
        "Context:\n"
        + lines
        + "\nUser message: "
        + prompt
        + "\n\nPlease provide a helpful and contextually appropriate response."
    )


def extract_intent(prompt: str) -> str:
    """Guess the intent of a message from keywords; ``general`` when nothing matches."""
    lowered = prompt.lower()
    for intent, keywords in _INTENT_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return intent
    return "general"


def calculate_confidence(content: str, finish_reason: str) -> float:
    """Confidence of a fallback AI response, in [0, 1]."""
    confidence = 0.7
    if finish_reason == "stop":
        confidence += 0.2
    elif finish_reason == "length":
        confidence += 0.1
    else:
        confidence -= 0.1
    if _byte_length(content) > 50:
        confidence += 0.1
    return _clamp(confidence)


def calculate_mcp_confidence(result: MCPTaskResult, finish_reason: str, response_text: str) -> float:
    """Confidence of an MCP-generated response, in [0, 1]."""
    confidence = 0.7
    confidence += 0.1 if result.success else -0.3
    if finish_reason == "stop":
        confidence += 0.2
    elif finish_reason == "length":
        confidence += 0.1
    if result.execution_time < 100:
        confidence -= 0.1
    elif result.execution_time > 5000:
        confidence -= 0.05
    length = _byte_length(response_text)
    if length > 50:
        confidence += 0.1
    if length < 10:
        confidence -= 0.2
    return _clamp(confidence)


class SmartReplyService:
    """Stores smart replies and generates new ones, preferring MCP over the plain AI client."""

    def __init__(
        self,
        ai_client: _AIClient | None = None,
        orchestrator: _Orchestrator | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._ai_client = ai_client
        self._orchestrator = orchestrator
        self._logger = logger or Logger()
        self._replies: dict[str, SmartReply] = {}
        self._lock = threading.RLock()

    def get_smart_reply(self, reply_id: str) -> SmartReply:
        with self._lock:
            reply = self._replies.get(reply_id)
        if reply is None:
            raise LookupError(f"smart reply not found: {reply_id}")
        return reply

    def get_smart_replies_by_bot(self, bot_id: str) -> list[SmartReply]:
        with self._lock:
            return [r for r in self._replies.values() if r.bot_id == bot_id]

    def create_smart_reply(self, reply: SmartReply) -> None:
        if not reply.id:
            reply.id = str(uuid.uuid4())
        now = datetime.now()
        reply.created_at = now
        reply.updated_at = now
        with self._lock:
            self._replies[reply.id] = reply

    def update_smart_reply(self, reply: SmartReply) -> None:
        with self._lock:
            if reply.id not in self._replies:
                raise LookupError(f"smart reply not found: {reply.id}")
            reply.updated_at = datetime.now()
            self._replies[reply.id] = reply

    def delete_smart_reply(self, reply_id: str) -> None:
        with self._lock:
            if self._replies.pop(reply_id, None) is None:
                raise LookupError(f"smart reply not found: {reply_id}")

    def generate_ai_response(
        self, bot_id: str, prompt: str, context: Mapping[str, Any] | None = None
    ) -> SmartReply:
        """Generate a reply; falls back to the AI client if MCP fails.

        Raises RuntimeError when neither source produces a response.
        """
        context = dict(context or {})
        full_prompt = build_prompt_with_context(prompt, context)
        try:
            return self._generate_with_mcp(bot_id, full_prompt, context)
        except RuntimeError as exc:
            self._logger.warn("MCP generation failed, falling back to AI client", "error", str(exc))
        return self._generate_with_ai_client(bot_id, full_prompt)

    def _generate_with_mcp(self, bot_id: str, prompt: str, context: dict[str, Any]) -> SmartReply:
        if self._orchestrator is None:
            raise RuntimeError("no MCP orchestrator configured")
        task = MCPTask(
            id=f"smart-reply-{bot_id}-{time.time_ns()}",
            type="text_generation",
            description="Generate smart reply for bot conversation",
            input={
                "prompt": prompt,
                "temperature": 0.7,
                "max_tokens": 500,
                "system": _SYSTEM_PROMPT,
            },
            priority=5,
            timeout=30000,
            context=context,
            metadata={"bot_id": bot_id, "source": "smart_reply_service", "task_type": "conversation"},
            created_at=datetime.now(),
        )
        try:
            result = self._orchestrator.execute_task_domain(task)
        except Exception as exc:
            raise RuntimeError(f"MCP task execution failed: {exc}") from exc
        if not result.success:
            raise RuntimeError(f"MCP task failed: {result.error}")

        text = result.output.get("text")
        response_text = text if isinstance(text, str) else ""
        tokens = result.output.get("tokens_used")
        tokens_used = int(tokens) if isinstance(tokens, (int, float)) and not isinstance(tokens, bool) else 0
        reason = result.output.get("finish_reason")
        finish_reason = reason if isinstance(reason, str) else ""
        if not response_text:
            raise RuntimeError("no text response from MCP agent")

        intent = extract_intent(prompt)
        now = datetime.now()
        reply = SmartReply(
            bot_id=bot_id,
            intent=intent,
            response=response_text,
            confidence=calculate_mcp_confidence(result, finish_reason, response_text),
            created_at=now,
            updated_at=now,
        )
        self._logger.info(
            "AI response generated via MCP",
            "bot_id", bot_id,
            "intent", intent,
            "confidence", reply.confidence,
            "tokens_used", tokens_used,
            "agent_id", result.agent_id,
            "execution_time", result.execution_time,
        )
        return reply

    def _generate_with_ai_client(self, bot_id: str, prompt: str) -> SmartReply:
        if self._ai_client is None:
            raise RuntimeError("failed to generate AI response: no AI client configured")
        try:
            response = self._ai_client.generate_response(prompt, max_tokens=500, temperature=0.7)
        except Exception as exc:
            raise RuntimeError(f"failed to generate AI response: {exc}") from exc

        intent = extract_intent(prompt)
        now = datetime.now()
        reply = SmartReply(
            bot_id=bot_id,
            intent=intent,
            response=response.content,
            confidence=calculate_confidence(response.content, response.finish_reason),
            created_at=now,
            updated_at=now,
        )
        self._logger.info(
            "AI response generated via fallback client",
            "bot_id", bot_id,
            "intent", intent,
            "confidence", reply.confidence,
            "tokens_used", getattr(response, "tokens_used", 0),
        )
        return reply

    def train_intents(self, bot_id: str, intents: Iterable[SmartReply]) -> None:
        """Store copies of the given replies as intents of ``bot_id``."""
        count = 0
        for intent in intents:
            trained = dataclasses.replace(intent, bot_id=bot_id)
            self.create_smart_reply(trained)
            count += 1
        self._logger.info("Intents trained successfully", "bot_id", bot_id, "count", count)