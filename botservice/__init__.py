"""Conversational bot engine: flows, sessions, smart replies, memory, triggers and tasks."""

__version__ = "1.0.0"

__all__ = [
    "bot",
    "conditional",
    "conversation",
    "events",
    "featureflags",
    "flows",
    "health",
    "logger",
    "memory",
    "smart_reply",
    "tasks",
    "tracing",
    "users",
]