from datetime import datetime, timedelta

import pytest

from botservice.memory import (
    ContextSummary,
    Memory,
    MemoryExpiredError,
    MemoryNotFoundError,
    MemoryService,
)


@pytest.fixture
def service():
    return MemoryService()


def _memory(key, user="u1", bot="b1", **kwargs):
    return Memory(user_id=user, bot_id=bot, key=key, **kwargs)


def test_store_and_get_round_trip(service):
    service.store_memory(_memory("name", type="fact", content={"text": "Alice"}, importance=3))
    got = service.get_memory("u1", "b1", "name")
    assert got.content == {"text": "Alice"}
    assert got.type == "fact"
    assert got.importance == 3


def test_store_sets_default_retention(service):
    memory = _memory("k")
    service.store_memory(memory)
    assert memory.expires_at - memory.created_at == timedelta(days=30)
    assert memory.updated_at == memory.created_at


def test_custom_retention_days():
    svc = MemoryService(retention_days=7)
    memory = _memory("k")
    svc.store_memory(memory)
    assert memory.expires_at - memory.created_at == timedelta(days=7)


def test_get_returns_copy(service):
    service.store_memory(_memory("k", importance=1))
    copy = service.get_memory("u1", "b1", "k")
    copy.importance = 9
    assert service.get_memory("u1", "b1", "k").importance == 1


def test_get_missing_raises(service):
    with pytest.raises(MemoryNotFoundError):
        service.get_memory("u1", "b1", "nope")


def test_get_expired_raises(service):
    service.store_memory(_memory("old", expires_at=datetime.now() - timedelta(seconds=1)))
    with pytest.raises(MemoryExpiredError):
        service.get_memory("u1", "b1", "old")


def test_user_memories_filtered_by_user_and_bot(service):
    service.store_memory(_memory("a"))
    service.store_memory(_memory("b"))
    service.store_memory(_memory("c", user="u2"))
    service.store_memory(_memory("d", bot="b2"))
    service.store_memory(_memory("e", expires_at=datetime.now() - timedelta(days=1)))
    keys = sorted(m.key for m in service.get_user_memories("u1", "b1"))
    assert keys == ["a", "b"]


def test_update_memory(service):
    service.store_memory(_memory("k", importance=1))
    service.update_memory(_memory("k", importance=5, expires_at=datetime.now() + timedelta(days=1)))
    assert service.get_memory("u1", "b1", "k").importance == 5


def test_update_missing_raises(service):
    with pytest.raises(MemoryNotFoundError):
        service.update_memory(_memory("missing"))


def test_delete_memory(service):
    service.store_memory(_memory("k"))
    service.delete_memory("u1", "b1", "k")
    with pytest.raises(MemoryNotFoundError):
        service.get_memory("u1", "b1", "k")
    with pytest.raises(MemoryNotFoundError):
        service.delete_memory("u1", "b1", "k")


def test_search_matches_text_tags_and_key(service):
    service.store_memory(_memory("m1", content={"text": "Likes PIZZA"}))
    service.store_memory(_memory("m2", tags=["Food", "pizza-lover"]))
    service.store_memory(_memory("pizza_pref"))
    service.store_memory(_memory("m4", content={"text": "likes sushi"}))
    found = sorted(m.key for m in service.search_memories("u1", "b1", "Pizza", 10))
    assert found == ["m1", "m2", "pizza_pref"]


def test_search_respects_limit_and_default(service):
    for index in range(12):
        service.store_memory(_memory(f"note{index}"))
    assert len(service.search_memories("u1", "b1", "note", 3)) == 3
    assert len(service.search_memories("u1", "b1", "note", 0)) == 10


def test_context_summary_default_is_empty(service):
    summary = service.get_context_summary("u1", "b1")
    assert summary.summary == ""
    assert summary.key_points == []
    assert summary.entities == {}


def test_context_summary_round_trip(service):
    service.update_context_summary(
        ContextSummary(user_id="u1", bot_id="b1", summary="talked about pizza", key_points=["pizza"])
    )
    summary = service.get_context_summary("u1", "b1")
    assert summary.summary == "talked about pizza"
    assert summary.key_points == ["pizza"]
    assert summary.created_at is not None


def test_cleanup_expired(service):
    service.store_memory(_memory("live"))
    service.store_memory(_memory("dead", expires_at=datetime.now() - timedelta(hours=1)))
    assert service.cleanup_expired_memories() == 1
    assert [m.key for m in service.get_user_memories("u1", "b1")] == ["live"]
    assert service.cleanup_expired_memories() == 0


def test_memory_stats(service):
    early = datetime.now() - timedelta(days=2)
    late = datetime.now() - timedelta(days=1)
    service.store_memory(_memory("a", type="fact", importance=1, created_at=early))
    service.store_memory(_memory("b", type="fact", importance=2, created_at=late))
    service.store_memory(_memory("c", type="preference", importance=2, created_at=late))
    stats = service.get_memory_stats("u1", "b1")
    assert stats.total_memories == 3
    assert stats.memories_by_type == {"fact": 2, "preference": 1}
    assert stats.memories_by_importance == {1: 1, 2: 2}
    assert stats.oldest_memory == early
    assert stats.newest_memory == late


def test_stats_empty_has_no_newest(service):
    stats = service.get_memory_stats("nobody", "b1")
    assert stats.total_memories == 0
    assert stats.newest_memory is None


def test_eviction_removes_oldest():
    svc = MemoryService(max_memories=2)
    now = datetime.now()
    svc.store_memory(_memory("first", created_at=now - timedelta(days=3)))
    svc.store_memory(_memory("second", created_at=now - timedelta(days=1)))
    svc.store_memory(_memory("third"))
    keys = sorted(m.key for m in svc.get_user_memories("u1", "b1"))
    assert keys == ["second", "third"]