"""Asynchronous task execution on a pool of worker threads."""

from __future__ import annotations

import dataclasses
import enum
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol

from botservice.logger import Logger
from botservice.smart_reply import MCPTask, MCPTaskResult

_POLL_INTERVAL = 0.05
_JOIN_TIMEOUT = 5.0


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class AsyncTask:
    type: str
    id: str = ""
    description: str = ""
    input: dict[str, Any] = field(default_factory=dict)
    priority: int = 0
    timeout: int = 0
    context: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    user_id: str = ""
    bot_id: str = ""
    status: TaskStatus = TaskStatus.PENDING
    result: dict[str, Any] = field(default_factory=dict)
    error: str = ""
    execution_time: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class TimeRange:
    start: datetime | None = None
    end: datetime | None = None


@dataclass
class TaskFilters:
    status: TaskStatus | None = None
    type: str | None = None
    user_id: str | None = None
    bot_id: str | None = None
    created_at: TimeRange | None = None
    limit: int = 0
    offset: int = 0

    def matches(self, task: AsyncTask) -> bool:
        if self.status is not None and task.status != self.status:
            return False
        if self.type is not None and task.type != self.type:
            return False
        if self.user_id is not None and task.user_id != self.user_id:
            return False
        if self.bot_id is not None and task.bot_id != self.bot_id:
            return False
        if self.created_at is not None and task.created_at is not None:
            if self.created_at.start is not None and task.created_at < self.created_at.start:
                return False
            if self.created_at.end is not None and task.created_at > self.created_at.end:
                return False
        return True


@dataclass
class WorkerStats:
    id: str
    status: str = "idle"
    tasks_executed: int = 0
    last_task: str | None = None
    last_activity: datetime | None = None
    average_time: timedelta = timedelta(0)


@dataclass
class TaskStats:
    total_tasks: int = 0
    pending_tasks: int = 0
    running_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    cancelled_tasks: int = 0
    tasks_by_type: dict[str, int] = field(default_factory=dict)
    average_time: timedelta = timedelta(0)
    worker_stats: dict[str, WorkerStats] = field(default_factory=dict)
    last_updated: datetime | None = None


class _Orchestrator(Protocol):
    def execute_task_domain(self, task: MCPTask) -> MCPTaskResult: ...


def _running_average(previous: timedelta, sample: timedelta, count: int) -> timedelta:
    return sample if count == 1 else (previous + sample) / 2


class TaskManager:
    """Queues tasks and runs them through an orchestrator on worker threads."""

    def __init__(
        self,
        orchestrator: _Orchestrator,
        logger: Logger | None = None,
        worker_count: int = 5,
        max_queue_size: int = 1000,
    ) -> None:
        self._orchestrator = orchestrator
        self._logger = logger or Logger()
        self.worker_count = worker_count if worker_count > 0 else 5
        self.max_queue_size = max_queue_size if max_queue_size > 0 else 1000
        self._tasks: dict[str, AsyncTask] = {}
        self._lock = threading.RLock()
        self._stats = TaskStats()
        self._queue: queue.Queue[AsyncTask] | None = None
        self._stop_event: threading.Event | None = None
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        """Start the workers; raises RuntimeError if already started."""
        with self._lock:
            if self._stop_event is not None:
                raise RuntimeError("task manager already started")
            self._queue = queue.Queue(maxsize=self.max_queue_size)
            self._stop_event = threading.Event()
            self._threads = []
            for number in range(1, self.worker_count + 1):
                worker_id = f"worker-{number}"
                stats = WorkerStats(id=worker_id, last_activity=datetime.now())
                self._stats.worker_stats[worker_id] = stats
                thread = threading.Thread(
                    target=self._run_worker,
                    args=(stats, self._queue, self._stop_event),
                    name=worker_id,
                    daemon=True,
                )
                self._threads.append(thread)
                thread.start()
        self._logger.info(
            "Task manager started",
            "worker_count", self.worker_count,
            "max_queue_size", self.max_queue_size,
        )

    def stop(self) -> None:
        """Signal the workers to finish and wait briefly for them to exit."""
        with self._lock:
            stop_event, threads = self._stop_event, self._threads
            self._stop_event = None
            self._queue = None
            self._threads = []
        if stop_event is not None:
            stop_event.set()
            for thread in threads:
                thread.join(_JOIN_TIMEOUT)
        self._logger.info("Task manager stopped")

    def submit_task(self, task: AsyncTask) -> None:
        """Queue a task; raises RuntimeError if not started or if the queue is full."""
        with self._lock:
            if self._queue is None:
                raise RuntimeError("task manager not started")
            if not task.id:
                task.id = f"task-{time.time_ns()}"
            now = datetime.now()
            task.created_at = now
            task.updated_at = now
            task.status = TaskStatus.PENDING
            self._tasks[task.id] = task

            self._stats.total_tasks += 1
            self._stats.pending_tasks += 1
            self._stats.tasks_by_type[task.type] = self._stats.tasks_by_type.get(task.type, 0) + 1

            try:
                self._queue.put_nowait(task)
            except queue.Full:
                task.status = TaskStatus.FAILED
                task.error = "task queue is full"
                task.completed_at = datetime.now()
                self._stats.pending_tasks -= 1
                self._stats.failed_tasks += 1
                raise RuntimeError("task queue is full") from None
        self._logger.info(
            "Task submitted", "task_id", task.id, "type", task.type, "priority", task.priority
        )

    def get_task(self, task_id: str) -> AsyncTask:
        """Return a copy of a task; raises LookupError if it is unknown."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise LookupError(f"task not found: {task_id}")
            return dataclasses.replace(task)

    def list_tasks(self, filters: TaskFilters | None = None) -> list[AsyncTask]:
        """Return copies of the tasks that match, in submission order."""
        with self._lock:
            result = [
                dataclasses.replace(task)
                for task in self._tasks.values()
                if filters is None or filters.matches(task)
            ]
        if filters is not None:
            if 0 < filters.offset < len(result):
                result = result[filters.offset:]
            if 0 < filters.limit < len(result):
                result = result[: filters.limit]
        return result

    def cancel_task(self, task_id: str) -> None:
        """Cancel a task; raises LookupError if unknown, ValueError if already finished."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise LookupError(f"task not found: {task_id}")
            if task.status in (TaskStatus.COMPLETED, TaskStatus.FAILED):
                raise ValueError("cannot cancel completed task")
            if task.status == TaskStatus.CANCELLED:
                raise ValueError("task already cancelled")
            previous = task.status
            now = datetime.now()
            task.status = TaskStatus.CANCELLED
            task.updated_at = now
            task.completed_at = now
            task.error = "task cancelled by user"
            if previous == TaskStatus.PENDING:
                self._stats.pending_tasks -= 1
            elif previous == TaskStatus.RUNNING:
                self._stats.running_tasks -= 1
            self._stats.cancelled_tasks += 1
        self._logger.info("Task cancelled", "task_id", task_id)

    def get_stats(self) -> TaskStats:
        """Return a snapshot of the manager's statistics."""
        with self._lock:
            return dataclasses.replace(
                self._stats,
                tasks_by_type=dict(self._stats.tasks_by_type),
                worker_stats={
                    key: dataclasses.replace(value) for key, value in self._stats.worker_stats.items()
                },
                last_updated=datetime.now(),
            )

    def _run_worker(
        self, stats: WorkerStats, task_queue: queue.Queue[AsyncTask], stop_event: threading.Event
    ) -> None:
        self._logger.info("Task worker started", "worker_id", stats.id)
        while not stop_event.is_set():
            try:
                task = task_queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            self._execute_task(stats, task)
        self._logger.info("Task worker stopped", "worker_id", stats.id)

    def _execute_task(self, stats: WorkerStats, task: AsyncTask) -> None:
        started = time.monotonic()
        with self._lock:
            if task.status == TaskStatus.CANCELLED:
                return
            stats.status = "busy"
            stats.last_task = task.id
            stats.last_activity = datetime.now()
            now = datetime.now()
            task.status = TaskStatus.RUNNING
            task.updated_at = now
            task.started_at = now
            self._stats.pending_tasks -= 1
            self._stats.running_tasks += 1

        self._logger.info("Executing task", "worker_id", stats.id, "task_id", task.id, "type", task.type)
        mcp_task = MCPTask(
            id=task.id,
            type=task.type,
            description=task.description,
            input=task.input,
            priority=task.priority,
            timeout=task.timeout,
            context=task.context,
            metadata=task.metadata,
            created_at=task.created_at,
        )
        result: MCPTaskResult | None = None
        error = ""
        try:
            result = self._orchestrator.execute_task_domain(mcp_task)
        except Exception as exc:  # any orchestrator failure marks the task failed
            error = str(exc)
        duration = timedelta(seconds=time.monotonic() - started)

        with self._lock:
            stats.status = "idle"
            stats.tasks_executed += 1
            stats.average_time = _running_average(stats.average_time, duration, stats.tasks_executed)
            if task.status == TaskStatus.CANCELLED:
                return
            now = datetime.now()
            task.updated_at = now
            task.completed_at = now
            task.execution_time = int(duration.total_seconds() * 1000)
            self._stats.running_tasks -= 1

            if result is None or not result.success:
                task.status = TaskStatus.FAILED
                task.error = error if result is None else result.error
                task.result = {"success": False, "error": task.error}
                self._stats.failed_tasks += 1
            else:
                task.status = TaskStatus.COMPLETED
                task.result = {
                    "success": True,
                    "output": result.output,
                    "agent_id": result.agent_id,
                    "execution_time": result.execution_time,
                }
                self._stats.completed_tasks += 1

            finished = self._stats.completed_tasks + self._stats.failed_tasks
            self._stats.average_time = _running_average(self._stats.average_time, duration, finished)

        if task.status == TaskStatus.FAILED:
            self._logger.error(
                "Task execution failed",
                "worker_id", stats.id, "task_id", task.id, "duration", duration, "error", task.error,
            )
        else:
            self._logger.info(
                "Task execution completed",
                "worker_id", stats.id, "task_id", task.id, "duration", duration,
                "agent_id", result.agent_id if result else "",
            )