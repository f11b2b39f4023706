"""Unit tests for snapshot storage."""

import pytest
from pydantic import ValidationError

from clueprint.exceptions import SnapshotNotFoundError
from clueprint.models.snapshot import DomSnapshot
from clueprint.snapshot_store import SnapshotStore


def test_store_generates_ids_when_missing():
    store = SnapshotStore(capacity=3)

    first = store.store(DomSnapshot())
    second = store.store(DomSnapshot())

    assert first == "snap_1"
    assert second == "snap_2"
    assert store.ids() == ["snap_1", "snap_2"]


def test_store_keeps_given_id():
    store = SnapshotStore(capacity=3)

    assert store.store(DomSnapshot(id="before")) == "before"
    assert "before" in store


def test_store_evicts_oldest_over_capacity():
    store = SnapshotStore(capacity=2)
    for name in ("one", "two", "three"):
        store.store(DomSnapshot(id=name))

    assert store.ids() == ["two", "three"]
    assert store.get("one") is None


def test_require_unknown_id_raises():
    store = SnapshotStore(capacity=2)

    with pytest.raises(SnapshotNotFoundError):
        store.require("nope")


def test_stored_snapshots_are_frozen():
    """Snapshots cannot be modified once stored."""
    store = SnapshotStore(capacity=2)
    store.store(DomSnapshot(id="s", url="https://a.test"))

    with pytest.raises(ValidationError):
        store.require("s").url = "https://b.test"


def test_stored_snapshot_elements_are_read_only():
    """The element map of a stored snapshot cannot be edited in place."""
    store = SnapshotStore(capacity=2)
    store.store(DomSnapshot.model_validate({"id": "s", "elements": {"#a": {"classes": ["x"]}}}))
    snapshot = store.require("s")

    with pytest.raises(TypeError):
        snapshot.elements["#b"] = snapshot.elements["#a"]
    with pytest.raises(TypeError):
        del snapshot.elements["#a"]

    assert list(snapshot.elements) == ["#a"]
    assert snapshot.model_dump(by_alias=True)["elements"]["#a"]["classes"] == ("x",)


def test_default_snapshot_elements_are_read_only():
    with pytest.raises(TypeError):
        DomSnapshot().elements["#a"] = None


def test_clear_returns_count():
    store = SnapshotStore(capacity=5)
    store.store(DomSnapshot(id="a"))
    store.store(DomSnapshot(id="b"))

    assert store.clear() == 2
    assert len(store) == 0
