"""Long-term per-user memory with expiry, search and context summaries."""

from __future__ import annotations

import dataclasses
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from botservice.logger import Logger

_MemoryKey = tuple[str, str, str]


class MemoryNotFoundError(LookupError):
    """No memory is stored under the requested key."""


class MemoryExpiredError(LookupError):
    """The requested memory exists but has passed its expiry time."""


@dataclass
class Memory:
    user_id: str
    bot_id: str
    key: str
    type: str = ""
    content: dict[str, Any] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    importance: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now()) > self.expires_at


@dataclass
class ContextSummary:
    user_id: str
    bot_id: str
    summary: str = ""
    key_points: list[str] = field(default_factory=list)
    entities: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class MemoryStats:
    user_id: str
    bot_id: str
    total_memories: int = 0
    memories_by_type: dict[str, int] = field(default_factory=dict)
    memories_by_importance: dict[int, int] = field(default_factory=dict)
    oldest_memory: datetime | None = None
    newest_memory: datetime | None = None
    last_updated: datetime | None = None


class MemoryService:
    """Thread-safe in-memory store of memories and context summaries."""

    def __init__(self, logger: Logger | None = None, max_memories: int = 1000, retention_days: int = 30) -> None:
        self._logger = logger or Logger()
        self.max_memories = max_memories if max_memories > 0 else 1000
        self.retention_days = retention_days if retention_days > 0 else 30
        self._memories: dict[_MemoryKey, Memory] = {}
        self._summaries: dict[tuple[str, str], ContextSummary] = {}
        self._lock = threading.RLock()

    def _owned_by(self, user_id: str, bot_id: str, now: datetime):
        """Yield live memories belonging to a user and bot."""
        for (uid, bid, key), memory in self._memories.items():
            if uid == user_id and bid == bot_id and key and not memory.is_expired(now):
                yield memory

    def store_memory(self, memory: Memory) -> None:
        with self._lock:
            if len(self._memories) >= self.max_memories:
                self._evict_oldest_memory()
            now = datetime.now()
            if memory.created_at is None:
                memory.created_at = now
            memory.updated_at = now
            if memory.expires_at is None:
                memory.expires_at = now + timedelta(days=self.retention_days)
            self._memories[(memory.user_id, memory.bot_id, memory.key)] = memory
        self._logger.info(
            "Memory stored",
            "user_id", memory.user_id,
            "bot_id", memory.bot_id,
            "key", memory.key,
            "type", memory.type,
            "importance", memory.importance,
        )

    def get_memory(self, user_id: str, bot_id: str, key: str) -> Memory:
        with self._lock:
            memory = self._memories.get((user_id, bot_id, key))
            if memory is None:
                raise MemoryNotFoundError("memory not found")
            if memory.is_expired():
                raise MemoryExpiredError("memory has expired")
            return dataclasses.replace(memory)

    def get_user_memories(self, user_id: str, bot_id: str) -> list[Memory]:
        with self._lock:
            return [dataclasses.replace(m) for m in self._owned_by(user_id, bot_id, datetime.now())]

    def update_memory(self, memory: Memory) -> None:
        key = (memory.user_id, memory.bot_id, memory.key)
        with self._lock:
            if key not in self._memories:
                raise MemoryNotFoundError("memory not found")
            memory.updated_at = datetime.now()
            self._memories[key] = memory
        self._logger.info(
            "Memory updated", "user_id", memory.user_id, "bot_id", memory.bot_id, "key", memory.key
        )

    def delete_memory(self, user_id: str, bot_id: str, key: str) -> None:
        with self._lock:
            if self._memories.pop((user_id, bot_id, key), None) is None:
                raise MemoryNotFoundError("memory not found")
        self._logger.info("Memory deleted", "user_id", user_id, "bot_id", bot_id, "key", key)

    def search_memories(self, user_id: str, bot_id: str, query: str, limit: int = 10) -> list[Memory]:
        if limit <= 0:
            limit = 10
        result: list[Memory] = []
        with self._lock:
            for memory in self._owned_by(user_id, bot_id, datetime.now()):
                if len(result) >= limit:
                    break
                if _matches_query(memory, query):
                    result.append(dataclasses.replace(memory))
        return result

    def get_context_summary(self, user_id: str, bot_id: str) -> ContextSummary:
        with self._lock:
            summary = self._summaries.get((user_id, bot_id))
            if summary is None:
                now = datetime.now()
                return ContextSummary(user_id=user_id, bot_id=bot_id, created_at=now, updated_at=now)
            return dataclasses.replace(summary)

    def update_context_summary(self, summary: ContextSummary) -> None:
        with self._lock:
            now = datetime.now()
            summary.updated_at = now
            if summary.created_at is None:
                summary.created_at = now
            self._summaries[(summary.user_id, summary.bot_id)] = summary
        self._logger.info(
            "Context summary updated",
            "user_id", summary.user_id,
            "bot_id", summary.bot_id,
            "key_points", len(summary.key_points),
        )

    def cleanup_expired_memories(self) -> int:
        """Remove every expired memory and return how many were removed."""
        with self._lock:
            now = datetime.now()
            expired = [key for key, memory in self._memories.items() if memory.is_expired(now)]
            for key in expired:
                del self._memories[key]
        if expired:
            self._logger.info("Expired memories cleaned up", "count", len(expired))
        return len(expired)

    def get_memory_stats(self, user_id: str, bot_id: str) -> MemoryStats:
        now = datetime.now()
        with self._lock:
            live = list(self._owned_by(user_id, bot_id, now))
        created = [m.created_at for m in live if m.created_at is not None]
        return MemoryStats(
            user_id=user_id,
            bot_id=bot_id,
            total_memories=len(live),
            memories_by_type=dict(Counter(m.type for m in live)),
            memories_by_importance=dict(Counter(m.importance for m in live)),
            oldest_memory=min([now, *created]),
            newest_memory=max(created, default=None),
            last_updated=now,
        )

    def _evict_oldest_memory(self) -> None:
        if not self._memories:
            return
        oldest_key = min(
            self._memories,
            key=lambda k: self._memories[k].created_at or datetime.min,
        )
        del self._memories[oldest_key]
        self._logger.info("Evicted oldest memory", "key", ":".join(oldest_key))


def _matches_query(memory: Memory, query: str) -> bool:
    query = query.lower()
    text = memory.content.get("text")
    if isinstance(text, str) and query in text.lower():
        return True
    if any(query in tag.lower() for tag in memory.tags):
        return True
    return query in memory.key.lower()