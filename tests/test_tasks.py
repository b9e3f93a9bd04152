import threading
import time
from datetime import datetime, timedelta

import pytest

from botservice.smart_reply import MCPTaskResult
from botservice.tasks import (
    AsyncTask,
    TaskFilters,
    TaskManager,
    TaskStatus,
    TimeRange,
)


class FakeOrchestrator:
    def __init__(self, success=True, error="", raise_exc=None, gate=None):
        self.success = success
        self.error = error
        self.raise_exc = raise_exc
        self.gate = gate
        self.calls = []

    def execute_task_domain(self, task):
        self.calls.append(task)
        if self.gate is not None:
            self.gate.wait(5)
        if self.raise_exc is not None:
            raise self.raise_exc
        return MCPTaskResult(
            task_id=task.id,
            success=self.success,
            output={"text": task.input.get("prompt", "")},
            error=self.error,
            agent_id="agent-1",
            execution_time=42,
        )


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def status_of(manager, task_id):
    return manager.get_task(task_id).status


@pytest.fixture
def running():
    managers = []

    def make(orchestrator, **kwargs):
        manager = TaskManager(orchestrator, **kwargs)
        manager.start()
        managers.append((manager, orchestrator))
        return manager

    yield make
    for manager, orchestrator in managers:
        if orchestrator.gate is not None:
            orchestrator.gate.set()
        manager.stop()


def test_submit_before_start_raises():
    manager = TaskManager(FakeOrchestrator())
    with pytest.raises(RuntimeError, match="not started"):
        manager.submit_task(AsyncTask(type="text_generation"))


def test_start_twice_raises(running):
    manager = running(FakeOrchestrator())
    with pytest.raises(RuntimeError, match="already started"):
        manager.start()


def test_defaults_for_non_positive_sizes(running):
    manager = running(FakeOrchestrator(), worker_count=0, max_queue_size=0)
    assert manager.worker_count == 5
    assert manager.max_queue_size == 1000
    assert sorted(manager.get_stats().worker_stats) == [f"worker-{n}" for n in range(1, 6)]


def test_successful_task_completes(running):
    manager = running(FakeOrchestrator(), worker_count=2)
    task = AsyncTask(type="text_generation", input={"prompt": "hello"})
    manager.submit_task(task)
    assert task.id.startswith("task-")
    assert wait_until(lambda: status_of(manager, task.id) == TaskStatus.COMPLETED)

    done = manager.get_task(task.id)
    assert done.result == {
        "success": True,
        "output": {"text": "hello"},
        "agent_id": "agent-1",
        "execution_time": 42,
    }
    assert done.started_at is not None and done.completed_at is not None
    assert done.completed_at >= done.started_at

    stats = manager.get_stats()
    assert stats.total_tasks == 1
    assert stats.completed_tasks == 1
    assert stats.pending_tasks == 0
    assert stats.running_tasks == 0
    assert stats.tasks_by_type == {"text_generation": 1}


def test_task_passed_to_orchestrator(running):
    orchestrator = FakeOrchestrator()
    manager = running(orchestrator, worker_count=1)
    task = AsyncTask(id="t-1", type="summarize", description="d", priority=7, metadata={"k": "v"})
    manager.submit_task(task)
    assert wait_until(lambda: len(orchestrator.calls) == 1)
    sent = orchestrator.calls[0]
    assert (sent.id, sent.type, sent.description, sent.priority) == ("t-1", "summarize", "d", 7)
    assert sent.metadata == {"k": "v"}


def test_unsuccessful_result_marks_failed(running):
    manager = running(FakeOrchestrator(success=False, error="agent down"), worker_count=1)
    manager.submit_task(AsyncTask(id="t-fail", type="x"))
    assert wait_until(lambda: status_of(manager, "t-fail") == TaskStatus.FAILED)
    task = manager.get_task("t-fail")
    assert task.error == "agent down"
    assert task.result == {"success": False, "error": "agent down"}
    assert manager.get_stats().failed_tasks == 1


def test_orchestrator_exception_marks_failed(running):
    manager = running(FakeOrchestrator(raise_exc=RuntimeError("boom")), worker_count=1)
    manager.submit_task(AsyncTask(id="t-exc", type="x"))
    assert wait_until(lambda: status_of(manager, "t-exc") == TaskStatus.FAILED)
    assert manager.get_task("t-exc").error == "boom"


def test_get_task_unknown_raises(running):
    manager = running(FakeOrchestrator())
    with pytest.raises(LookupError, match="task not found: missing"):
        manager.get_task("missing")


def test_get_task_returns_copy(running):
    manager = running(FakeOrchestrator(gate=threading.Event()), worker_count=1)
    manager.submit_task(AsyncTask(id="t-copy", type="x", description="original"))
    copy = manager.get_task("t-copy")
    copy.description = "changed"
    assert manager.get_task("t-copy").description == "original"


def test_cancel_pending_task(running):
    orchestrator = FakeOrchestrator(gate=threading.Event())
    manager = running(orchestrator, worker_count=1)
    manager.submit_task(AsyncTask(id="a", type="x"))
    assert wait_until(lambda: status_of(manager, "a") == TaskStatus.RUNNING)
    manager.submit_task(AsyncTask(id="b", type="x"))

    manager.cancel_task("b")
    cancelled = manager.get_task("b")
    assert cancelled.status == TaskStatus.CANCELLED
    assert cancelled.error == "task cancelled by user"
    stats = manager.get_stats()
    assert stats.cancelled_tasks == 1
    assert stats.pending_tasks == 0

    orchestrator.gate.set()
    assert wait_until(lambda: status_of(manager, "a") == TaskStatus.COMPLETED)
    time.sleep(0.1)
    assert status_of(manager, "b") == TaskStatus.CANCELLED
    assert [t.id for t in orchestrator.calls] == ["a"]


def test_cancel_running_task_stays_cancelled(running):
    orchestrator = FakeOrchestrator(gate=threading.Event())
    manager = running(orchestrator, worker_count=1)
    manager.submit_task(AsyncTask(id="r", type="x"))
    assert wait_until(lambda: status_of(manager, "r") == TaskStatus.RUNNING)
    manager.cancel_task("r")
    assert manager.get_stats().running_tasks == 0
    orchestrator.gate.set()
    assert wait_until(lambda: manager.get_stats().worker_stats["worker-1"].tasks_executed == 1)
    assert status_of(manager, "r") == TaskStatus.CANCELLED
    assert manager.get_stats().completed_tasks == 0


def test_cancel_finished_task_raises(running):
    manager = running(FakeOrchestrator(), worker_count=1)
    manager.submit_task(AsyncTask(id="done", type="x"))
    assert wait_until(lambda: status_of(manager, "done") == TaskStatus.COMPLETED)
    with pytest.raises(ValueError, match="cannot cancel completed task"):
        manager.cancel_task("done")


def test_cancel_unknown_raises(running):
    manager = running(FakeOrchestrator())
    with pytest.raises(LookupError):
        manager.cancel_task("nope")


def test_queue_full(running):
    orchestrator = FakeOrchestrator(gate=threading.Event())
    manager = running(orchestrator, worker_count=1, max_queue_size=1)
    manager.submit_task(AsyncTask(id="first", type="x"))
    assert wait_until(lambda: status_of(manager, "first") == TaskStatus.RUNNING)
    manager.submit_task(AsyncTask(id="second", type="x"))
    with pytest.raises(RuntimeError, match="task queue is full"):
        manager.submit_task(AsyncTask(id="third", type="x"))
    rejected = manager.get_task("third")
    assert rejected.status == TaskStatus.FAILED
    assert rejected.error == "task queue is full"
    stats = manager.get_stats()
    assert stats.total_tasks == 3
    assert stats.failed_tasks == 1
    assert stats.pending_tasks == 1


def test_list_tasks_filters(running):
    manager = running(FakeOrchestrator(gate=threading.Event()), worker_count=1)
    manager.submit_task(AsyncTask(id="1", type="alpha", user_id="u1", bot_id="b1"))
    manager.submit_task(AsyncTask(id="2", type="beta", user_id="u2", bot_id="b1"))
    manager.submit_task(AsyncTask(id="3", type="alpha", user_id="u2", bot_id="b2"))

    assert [t.id for t in manager.list_tasks()] == ["1", "2", "3"]
    assert [t.id for t in manager.list_tasks(TaskFilters(type="alpha"))] == ["1", "3"]
    assert [t.id for t in manager.list_tasks(TaskFilters(user_id="u2"))] == ["2", "3"]
    assert [t.id for t in manager.list_tasks(TaskFilters(bot_id="b2"))] == ["3"]
    assert [t.id for t in manager.list_tasks(TaskFilters(type="alpha", user_id="u2"))] == ["3"]


def test_list_tasks_status_and_time(running):
    manager = running(FakeOrchestrator(gate=threading.Event()), worker_count=1)
    manager.submit_task(AsyncTask(id="1", type="x"))
    assert wait_until(lambda: status_of(manager, "1") == TaskStatus.RUNNING)
    manager.submit_task(AsyncTask(id="2", type="x"))

    assert [t.id for t in manager.list_tasks(TaskFilters(status=TaskStatus.PENDING))] == ["2"]
    future = datetime.now() + timedelta(hours=1)
    assert manager.list_tasks(TaskFilters(created_at=TimeRange(start=future))) == []
    assert len(manager.list_tasks(TaskFilters(created_at=TimeRange(end=future)))) == 2


def test_list_tasks_pagination(running):
    manager = running(FakeOrchestrator(gate=threading.Event()), worker_count=1)
    for n in range(1, 6):
        manager.submit_task(AsyncTask(id=str(n), type="x"))
    assert [t.id for t in manager.list_tasks(TaskFilters(offset=1, limit=2))] == ["2", "3"]
    assert [t.id for t in manager.list_tasks(TaskFilters(limit=3))] == ["1", "2", "3"]
    # an offset past the end leaves the list untouched
    assert len(manager.list_tasks(TaskFilters(offset=10))) == 5


def test_worker_stats_track_executions(running):
    manager = running(FakeOrchestrator(), worker_count=1)
    for n in range(3):
        manager.submit_task(AsyncTask(id=f"w{n}", type="x"))
    assert wait_until(lambda: manager.get_stats().completed_tasks == 3)
    assert wait_until(lambda: manager.get_stats().worker_stats["worker-1"].tasks_executed == 3)
    worker = manager.get_stats().worker_stats["worker-1"]
    assert worker.status == "idle"
    assert worker.last_task == "w2"


def test_stats_snapshot_is_independent(running):
    manager = running(FakeOrchestrator(), worker_count=1)
    snapshot = manager.get_stats()
    snapshot.tasks_by_type["fake"] = 99
    snapshot.worker_stats["worker-1"].tasks_executed = 99
    fresh = manager.get_stats()
    assert "fake" not in fresh.tasks_by_type
    assert fresh.worker_stats["worker-1"].tasks_executed == 0


def test_stop_prevents_submission():
    manager = TaskManager(FakeOrchestrator(), worker_count=1)
    manager.start()
    manager.stop()
    with pytest.raises(RuntimeError, match="not started"):
        manager.submit_task(AsyncTask(type="x"))