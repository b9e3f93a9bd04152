"""User management with an audit trail of every operation."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from botservice.logger import Logger


@dataclass
class User:
    email: str
    id: str = ""
    name: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class AuditLog:
    action: str
    resource: str
    user_id: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    created_at: datetime | None = None


class UserUseCase:
    """Creates, reads, updates and deletes users, recording an audit entry for each."""

    def __init__(self, logger: Logger | None = None) -> None:
        self._logger = logger or Logger()
        self._users: dict[str, User] = {}
        self._lock = threading.RLock()
        self.audit_logs: list[AuditLog] = []

    def _find(self, user_id: str) -> User:
        with self._lock:
            user = self._users.get(user_id)
        if user is None:
            raise LookupError(f"user not found: {user_id}")
        return user

    def get_user(self, user_id: str) -> User:
        try:
            user = self._find(user_id)
        except LookupError as exc:
            self._logger.error("Failed to get user", "user_id", user_id, "error", str(exc))
            raise LookupError(f"failed to get user: {exc}") from exc
        self._log_audit_event("", "USER_READ", "user", {"target_user_id": user_id})
        return user

    def create_user(self, user: User) -> None:
        """Store a new user; raises ValueError for a missing or duplicate e-mail."""
        if not user.email:
            raise ValueError("email is required")
        with self._lock:
            if any(u.email == user.email for u in self._users.values()):
                raise ValueError(f"user with email {user.email} already exists")
            if not user.id:
                user.id = str(uuid.uuid4())
            now = datetime.now()
            user.created_at = now
            user.updated_at = now
            self._users[user.id] = user
        self._log_audit_event("", "USER_CREATE", "user", {"user_id": user.id, "email": user.email})
        self._logger.info("User created successfully", "user_id", user.id, "email", user.email)

    def update_user(self, user: User) -> None:
        with self._lock:
            try:
                existing = self._find(user.id)
            except LookupError as exc:
                raise LookupError(f"user not found: {exc}") from exc
            old_email = existing.email
            user.updated_at = datetime.now()
            self._users[user.id] = user
        self._log_audit_event(
            "", "USER_UPDATE", "user", {"user_id": user.id, "old_email": old_email, "new_email": user.email}
        )
        self._logger.info("User updated successfully", "user_id", user.id)

    def delete_user(self, user_id: str) -> None:
        with self._lock:
            try:
                user = self._find(user_id)
            except LookupError as exc:
                raise LookupError(f"user not found: {exc}") from exc
            del self._users[user_id]
        self._log_audit_event("", "USER_DELETE", "user", {"user_id": user_id, "email": user.email})
        self._logger.info("User deleted successfully", "user_id", user_id)

    def list_users(self, limit: int = 0, offset: int = 0) -> list[User]:
        """Return users in creation order; a non-positive limit means no limit."""
        with self._lock:
            users = list(self._users.values())
        users = users[max(offset, 0):]
        if limit > 0:
            users = users[:limit]
        self._log_audit_event(
            "", "USER_LIST", "user", {"limit": limit, "offset": offset, "count": len(users)}
        )
        return users

    def _log_audit_event(self, user_id: str, action: str, resource: str, details: dict[str, Any]) -> None:
        entry = AuditLog(
            action=action,
            resource=resource,
            user_id=user_id,
            details=details,
            id=str(uuid.uuid4()),
            created_at=datetime.now(),
        )
        with self._lock:
            self.audit_logs.append(entry)