"""Tests for the in-memory document store."""

import pytest

from syncxo.store import (
    SERVER_TIMESTAMP,
    DocumentNotFound,
    InMemoryDocumentStore,
    StoreError,
    all_of,
    where,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_create_get_update_delete():
    store = InMemoryDocumentStore(clock=FakeClock())
    store.create("rooms", "A", {"status": "waiting", "board": ["", ""]})
    merged = store.update("rooms", "A", {"status": "ready"})
    assert merged == {"status": "ready", "board": ["", ""]}
    assert store.get("rooms", "A")["status"] == "ready"
    store.delete("rooms", "A")
    assert store.get("rooms", "A") is None


def test_documents_are_copied_in_and_out():
    store = InMemoryDocumentStore()
    board = ["", ""]
    store.create("rooms", "A", {"board": board})
    board.append("X")
    fetched = store.get("rooms", "A")
    fetched["board"].append("O")
    assert store.get("rooms", "A")["board"] == ["", ""]


def test_update_missing_document_raises():
    store = InMemoryDocumentStore()
    with pytest.raises(DocumentNotFound):
        store.update("rooms", "missing", {"status": "ready"})


def test_server_timestamps_use_store_clock():
    clock = FakeClock(50.0)
    store = InMemoryDocumentStore(clock=clock)
    store.create("rooms", "A", {"createdAt": SERVER_TIMESTAMP})
    clock.now = 75.0
    doc = store.update("rooms", "A", {"lastActivity": SERVER_TIMESTAMP})
    assert doc == {"createdAt": 50.0, "lastActivity": 75.0}


def test_query_with_filters_order_and_limit():
    store = InMemoryDocumentStore()
    store.create("rooms", "A", {"status": "waiting", "lastActivity": 10})
    store.create("rooms", "B", {"status": "playing", "lastActivity": 5})
    store.create("rooms", "C", {"status": "finished", "lastActivity": 1})
    store.create("rooms", "D", {"status": "waiting", "lastActivity": 100})

    stale = store.query(
        "rooms",
        all_of(where("status", "in", ["waiting", "playing"]), where("lastActivity", "<", 50)),
        order_by="lastActivity",
    )
    assert [d["lastActivity"] for d in stale] == [5, 10]
    assert len(store.query("rooms", limit=2)) == 2


def test_filter_ignores_missing_and_incomparable_fields():
    check = where("lastActivity", "<", 10)
    assert not check({})
    assert not check({"lastActivity": None})
    with pytest.raises(ValueError):
        where("status", "like", "w%")


def test_subscribe_delivers_current_state_changes_and_deletion():
    store = InMemoryDocumentStore()
    store.create("rooms", "A", {"turn": "X"})
    seen = []
    cancel = store.subscribe("rooms", "A", seen.append)
    store.update("rooms", "A", {"turn": "O"})
    store.delete("rooms", "A")
    assert seen == [{"turn": "X"}, {"turn": "O"}, None]

    cancel()
    store.create("rooms", "A", {"turn": "X"})
    assert len(seen) == 3


def test_subscription_never_goes_backwards():
    store = InMemoryDocumentStore()
    store.create("rooms", "A", {"n": 0})
    first, second = [], []

    def writer(doc):
        first.append(doc["n"])
        if doc["n"] == 1:
            store.update("rooms", "A", {"n": 2})

    store.subscribe("rooms", "A", writer)
    store.subscribe("rooms", "A", lambda doc: second.append(doc["n"]))
    store.update("rooms", "A", {"n": 1})

    # The nested write reaches the second subscriber before the outer
    # dispatch does; the older copy is then dropped.
    assert first == [0, 1, 2]
    assert second == [0, 2]
    assert store.get("rooms", "A") == {"n": 2}


def test_append_subscribe_replays_then_streams_in_order():
    clock = FakeClock(1.0)
    store = InMemoryDocumentStore(clock=clock)
    store.add("rooms/A/messages", {"text": "first", "timestamp": SERVER_TIMESTAMP})
    clock.now = 2.0
    store.add("rooms/A/messages", {"text": "second", "timestamp": SERVER_TIMESTAMP})

    texts = []
    cancel = store.append_subscribe("rooms/A/messages", "timestamp", lambda d: texts.append(d["text"]))
    clock.now = 3.0
    store.add("rooms/A/messages", {"text": "third", "timestamp": SERVER_TIMESTAMP})
    assert texts == ["first", "second", "third"]

    cancel()
    store.add("rooms/A/messages", {"text": "fourth", "timestamp": SERVER_TIMESTAMP})
    assert texts == ["first", "second", "third"]


def test_append_entries_dispatched_out_of_order_are_all_delivered():
    store = InMemoryDocumentStore()
    first, second = [], []

    def replier(doc):
        first.append(doc["text"])
        if doc["text"] == "hola":
            store.add("rooms/A/messages", {"text": "buenas", "timestamp": 2.0})

    store.append_subscribe("rooms/A/messages", "timestamp", replier)
    store.append_subscribe("rooms/A/messages", "timestamp", lambda d: second.append(d["text"]))
    store.add("rooms/A/messages", {"text": "hola", "timestamp": 1.0})

    # The reply is dispatched to the second subscriber before the message
    # that triggered it; both still arrive, once each.
    assert first == ["hola", "buenas"]
    assert second == ["buenas", "hola"]


def test_transact_is_read_modify_write():
    store = InMemoryDocumentStore()
    store.create("rooms", "A", {"count": 1})
    doc = store.transact("rooms", "A", lambda cur: {"count": cur["count"] + 1})
    assert doc == {"count": 2}
    unchanged = store.transact("rooms", "A", lambda cur: None)
    assert unchanged == {"count": 2}


def test_transact_abort_writes_nothing():
    store = InMemoryDocumentStore()
    store.create("rooms", "A", {"count": 1})

    def mutate(current):
        raise RuntimeError("abort")

    with pytest.raises(RuntimeError):
        store.transact("rooms", "A", mutate)
    assert store.get("rooms", "A") == {"count": 1}


def test_fail_next_simulates_outage():
    store = InMemoryDocumentStore()
    store.fail_next()
    with pytest.raises(StoreError):
        store.get("rooms", "A")
    assert store.get("rooms", "A") is None


def test_failing_subscriber_does_not_block_writer():
    store = InMemoryDocumentStore()
    store.create("rooms", "A", {"n": 0})

    def broken(doc):
        raise RuntimeError("boom")

    store.subscribe("rooms", "A", broken)
    assert store.update("rooms", "A", {"n": 1}) == {"n": 1}
