"""Liveness and readiness reporting."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping


class HealthService:
    """Reports service health and readiness from optional named checks."""

    def __init__(self, checks: Mapping[str, Callable[[], bool]] | None = None) -> None:
        self._started = time.monotonic()
        self._checks = dict(checks or {})

    def check_health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc),
            "uptime": str(timedelta(seconds=time.monotonic() - self._started)),
            "service": "it-bot-service",
            "version": "1.0.0",
        }

    def check_readiness(self) -> dict[str, Any]:
        checks = {name: bool(check()) for name, check in self._checks.items()}
        return {
            "ready": all(checks.values()),
            "timestamp": datetime.now(timezone.utc),
            "checks": checks,
        }