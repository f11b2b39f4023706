"""Unit tests for DOM snapshot diffing."""

import pytest
from clueprint.diff_engine import diff, diff_snapshots, parse_inline_styles
from clueprint.exceptions import SnapshotNotFoundError
from clueprint.models.snapshot import DomSnapshot
from clueprint.snapshot_store import SnapshotStore


def make_snapshot(snapshot_id: str, elements: dict) -> DomSnapshot:
    return DomSnapshot.model_validate({"id": snapshot_id, "url": "https://app.test/", "elements": elements})


@pytest.fixture
def snapshot_a():
    return make_snapshot(
        "A",
        {
            "#a": {"classes": ["card"], "size": {"width": 100, "height": 50}},
            "#b": {"classes": ["btn", "primary"], "size": {"width": 80, "height": 30}},
        },
    )


@pytest.fixture
def snapshot_b():
    return make_snapshot(
        "B",
        {
            "#b": {"classes": ["btn", "disabled"], "size": {"width": 80, "height": 30}},
            "#c": {"classes": [], "size": {"width": 10, "height": 10}},
        },
    )


def test_diff_of_snapshot_with_itself_is_empty(snapshot_a):
    """diff(A, A) has no changes."""
    result = diff_snapshots(snapshot_a, snapshot_a)

    assert result.is_empty
    assert result.before == "A"
    assert result.after == "A"


def test_diff_added_removed_and_changed(snapshot_a, snapshot_b):
    """#a removed, #b changed (classes only), #c added, in selector order."""
    result = diff_snapshots(snapshot_a, snapshot_b)

    assert [(c.selector, c.type) for c in result.changes] == [
        ("#a", "removed"),
        ("#b", "changed"),
        ("#c", "added"),
    ]
    changed = result.changes[1].changes
    assert changed.classes.added == ["disabled"]
    assert changed.classes.removed == ["primary"]
    assert changed.size is None
    assert changed.styles is None


def test_identical_selector_produces_no_entry():
    """A selector unchanged on every axis is omitted."""
    element = {"classes": ["x"], "size": {"width": 1, "height": 2}, "inlineStyles": "color: red"}
    before = make_snapshot("1", {"#same": element, "#gone": {}})
    after = make_snapshot("2", {"#same": element})

    result = diff_snapshots(before, after)

    assert [c.selector for c in result.changes] == ["#gone"]


def test_size_change_is_reported():
    before = make_snapshot("1", {"#box": {"size": {"width": 100, "height": 20}}})
    after = make_snapshot("2", {"#box": {"size": {"width": 100, "height": 40}}})

    change = diff_snapshots(before, after).changes[0]

    assert change.type == "changed"
    assert change.changes.size.before.height == 20
    assert change.changes.size.after.height == 40


def test_style_changes_report_missing_side_as_none():
    """Only differing or one-sided properties are reported."""
    before = make_snapshot("1", {"#el": {"inlineStyles": "color: red; margin: 0"}})
    after = make_snapshot("2", {"#el": {"inlineStyles": "color: blue; margin: 0; display: none"}})

    styles = diff_snapshots(before, after).changes[0].changes.styles

    assert [(s.property, s.before, s.after) for s in styles] == [
        ("color", "red", "blue"),
        ("display", None, "none"),
    ]


def test_parse_inline_styles_lowercases_and_last_wins():
    assert parse_inline_styles("Color: Red; color: blue;; bogus; margin:0 auto") == {
        "color": "blue",
        "margin": "0 auto",
    }


def test_snapshot_accepts_map_entries_list():
    """Elements sent as [selector, element] pairs are keyed by selector."""
    snapshot = DomSnapshot.model_validate(
        {"id": "s", "elements": [["#a", {"classes": ["x"]}], ["#b", {"classes": []}]]}
    )

    assert sorted(snapshot.elements) == ["#a", "#b"]
    assert snapshot.elements["#a"].selector == "#a"


def test_diff_by_id_uses_store(snapshot_a, snapshot_b):
    store = SnapshotStore(capacity=5)
    store.store(snapshot_a)
    store.store(snapshot_b)

    result = diff(store, "A", "B")

    assert len(result.changes) == 3


def test_diff_by_id_unknown_snapshot(snapshot_a):
    store = SnapshotStore(capacity=5)
    store.store(snapshot_a)

    with pytest.raises(SnapshotNotFoundError) as exc_info:
        diff(store, "A", "missing")

    assert exc_info.value.code == "snapshot_not_found"
    assert "missing" in exc_info.value.message
