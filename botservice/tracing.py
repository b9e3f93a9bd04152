"""Lightweight tracing: configuration and in-process trace records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable


@dataclass
class TracingConfig:
    service_name: str = ""
    service_version: str = ""
    environment: str = ""
    jaeger_endpoint: str = ""
    enabled: bool = False


@dataclass
class _Tracer:
    config: TracingConfig
    closed: bool = False

    def shutdown(self) -> None:
        self.closed = True


def init_tracing(config: TracingConfig) -> Callable[[], None]:
    """Set up tracing and return a shutdown function.

    No exporter is configured, so shutdown only marks the tracer as closed.
    """
    tracer = _Tracer(config=config)
    return tracer.shutdown


@dataclass
class Trace:
    id: str
    name: str
    attributes: dict[str, str] = field(default_factory=dict)
    ended: bool = False

    def end(self) -> None:
        self.ended = True

    def add_attribute(self, key: str, value: str) -> None:
        self.attributes[key] = value

    def __enter__(self) -> "Trace":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.end()


def start_trace(name: str) -> Trace:
    """Begin a trace named ``name``."""
    return Trace(id="trace-" + name, name=name)