"""Tests for the bounded per-room history store."""
import pytest

from roomchat.history import HistoryStore
from roomchat.schemas import Message


def msg(body, room="LOBBY", sender="c1"):
    return Message(room_id=room, sender_id=sender, display_name="Ann", body=body)


def test_fifo_eviction_keeps_most_recent():
    store = HistoryStore(capacity=2)
    m1, m2, m3 = msg("m1"), msg("m2"), msg("m3")
    for m in (m1, m2, m3):
        store.append("LOBBY", m)
    assert [m.id for m in store.snapshot("LOBBY")] == [m2.id, m3.id]


def test_length_never_exceeds_capacity():
    store = HistoryStore(capacity=100)
    messages = [msg(f"message {i}") for i in range(101)]
    for m in messages:
        store.append("LOBBY", m)
        assert len(store.snapshot("LOBBY")) <= 100
    snapshot = store.snapshot("LOBBY")
    assert len(snapshot) == 100
    assert snapshot[0].id == messages[1].id
    assert snapshot[-1].id == messages[-1].id
    assert messages[0].id not in {m.id for m in snapshot}


def test_rooms_are_isolated():
    store = HistoryStore(capacity=1)
    store.append("a", msg("one", room="a"))
    store.append("b", msg("two", room="b"))
    assert [m.body for m in store.snapshot("a")] == ["one"]
    assert [m.body for m in store.snapshot("b")] == ["two"]


def test_snapshot_is_a_copy():
    store = HistoryStore()
    store.append("LOBBY", msg("hi"))
    snapshot = store.snapshot("LOBBY")
    snapshot.clear()
    assert len(store.snapshot("LOBBY")) == 1


def test_snapshot_of_unknown_room_is_empty():
    assert HistoryStore().snapshot("nowhere") == []


def test_remove_reports_whether_it_removed():
    store = HistoryStore()
    keep, drop = msg("keep"), msg("drop")
    store.append("LOBBY", keep)
    store.append("LOBBY", drop)
    assert store.remove("LOBBY", drop.id) is True
    assert store.remove("LOBBY", drop.id) is False
    assert store.remove("other", keep.id) is False
    assert [m.id for m in store.snapshot("LOBBY")] == [keep.id]


def test_find_looks_across_rooms():
    store = HistoryStore()
    m = msg("hello", room="b")
    store.append("a", msg("other", room="a"))
    store.append("b", m)
    assert store.find(m.id) is m
    assert store.find("missing") is None


def test_search_is_case_sensitive_substring():
    store = HistoryStore()
    store.append("LOBBY", msg("Hello world"))
    store.append("LOBBY", msg("hello there"))
    assert [m.body for m in store.search("LOBBY", "hello")] == ["hello there"]
    assert [m.body for m in store.search("LOBBY", "o")] == ["Hello world", "hello there"]
    assert len(store.search("LOBBY", "")) == 2
    assert store.search("nowhere", "hello") == []


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        HistoryStore(capacity=0)
