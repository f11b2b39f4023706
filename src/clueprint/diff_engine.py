"""Sparse diff between two DOM snapshots."""

from typing import Dict, List, Optional

from .models.snapshot import (
    ClassChange,
    DiffResult,
    DomSnapshot,
    ElementChange,
    ElementChanges,
    ElementSnapshot,
    SizeChange,
    StyleChange,
)
from .snapshot_store import SnapshotStore


def parse_inline_styles(inline: str) -> Dict[str, str]:
    """
    Parse a ``style`` attribute into a property -> value map.

    Property names are lowercased; values keep their case. Declarations
    without a colon are ignored, and a later declaration wins.

    >>> parse_inline_styles("color: red; Margin:0 auto;")
    {'color': 'red', 'margin': '0 auto'}
    """
    styles: Dict[str, str] = {}
    for declaration in (inline or "").split(";"):
        prop, sep, value = declaration.partition(":")
        prop = prop.strip().lower()
        if not sep or not prop:
            continue
        styles[prop] = value.strip()
    return styles


def diff_classes(before: ElementSnapshot, after: ElementSnapshot) -> Optional[ClassChange]:
    before_set, after_set = set(before.classes), set(after.classes)
    added = sorted(after_set - before_set)
    removed = sorted(before_set - after_set)
    if not added and not removed:
        return None
    return ClassChange(added=added, removed=removed)


def diff_size(before: ElementSnapshot, after: ElementSnapshot) -> Optional[SizeChange]:
    if before.size.width == after.size.width and before.size.height == after.size.height:
        return None
    return SizeChange(before=before.size, after=after.size)


def diff_styles(before: ElementSnapshot, after: ElementSnapshot) -> Optional[List[StyleChange]]:
    before_styles = parse_inline_styles(before.inline_styles)
    after_styles = parse_inline_styles(after.inline_styles)
    changes = [
        StyleChange(property=prop, before=before_styles.get(prop), after=after_styles.get(prop))
        for prop in sorted(before_styles.keys() | after_styles.keys())
        if before_styles.get(prop) != after_styles.get(prop)
    ]
    return changes or None


def diff_snapshots(before: DomSnapshot, after: DomSnapshot) -> DiffResult:
    """
    Compute the sparse diff from ``before`` to ``after``.

    Selectors are visited in lexicographic order so the output is stable.
    Elements only in ``after`` are added, only in ``before`` removed. Shared
    selectors are compared on class set, exact size and inline-style map;
    a selector with no difference on any axis produces no entry.
    """
    changes: List[ElementChange] = []

    for selector in sorted(before.elements.keys() | after.elements.keys()):
        before_el = before.elements.get(selector)
        after_el = after.elements.get(selector)

        if before_el is None:
            changes.append(ElementChange(selector=selector, type="added"))
            continue
        if after_el is None:
            changes.append(ElementChange(selector=selector, type="removed"))
            continue

        element_changes = ElementChanges(
            classes=diff_classes(before_el, after_el),
            size=diff_size(before_el, after_el),
            styles=diff_styles(before_el, after_el),
        )
        if element_changes.classes or element_changes.size or element_changes.styles:
            changes.append(
                ElementChange(selector=selector, type="changed", changes=element_changes)
            )

    return DiffResult(before=before.id, after=after.id, changes=changes)


def diff(store: SnapshotStore, before_id: str, after_id: str) -> DiffResult:
    """
    Diff two stored snapshots by id.

    Raises:
        SnapshotNotFoundError: If either id is not in the store
    """
    before = store.require(before_id)
    after = store.require(after_id)
    return diff_snapshots(before, after)
