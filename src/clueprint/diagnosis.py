"""Signal correlation for single captures and flow recordings.

Everything here is a pure function of its arguments: no broker state, no
clock. Ambiguous signals are downgraded (into ``unusual`` or left out of
``root_cause``) rather than raising.
"""

from typing import Iterable, List, Optional, Sequence

from .models.context import BrowserContext, CapturedElement, Diagnosis, SourceInfo
from .models.flow import FlowDiagnosis, FlowEvent, FlowSummary

# Flow event types that can follow a click as its consequence
CONSEQUENCE_TYPES = frozenset({"navigation", "refresh", "network_error", "console_error"})
FAILURE_TYPES = frozenset({"network_error", "console_error"})
TRIGGER_TYPES = frozenset({"click"})

TIMELINE_LIMIT = 10

# Classes shorter than this match too much unrelated text
_MIN_TOKEN_LENGTH = 3


def _seconds(ms: float) -> str:
    return f"{ms / 1000:.1f}s"


def _element_tokens(element: CapturedElement) -> List[str]:
    """Strings whose presence in an error message ties it to the element."""
    tokens = [element.selector]
    if element.id:
        tokens.append(element.id)
    tokens.extend(c for c in element.classes if len(c) >= _MIN_TOKEN_LENGTH)
    return [t for t in tokens if t]


def _source_tokens(source_info: Optional[SourceInfo]) -> List[str]:
    """Component name and file basename, matched against messages and error sources."""
    if source_info is None:
        return []
    tokens = [source_info.component]
    if source_info.file:
        tokens.append(source_info.file.rsplit("/", 1)[-1])
    return [t for t in tokens if t]


def _selector_covers(source: str, selector: str) -> bool:
    """True if ``source`` is the element itself or a descendant selector of it."""
    return source == selector or source.startswith(selector + " ")


def _mentions(text: str, tokens: Iterable[str]) -> bool:
    return any(token in text for token in tokens)


def _append_unique(target: List[str], item: str) -> None:
    if item not in target:
        target.append(item)


def diagnose_capture(
    capture_ts: float,
    element: CapturedElement,
    context: BrowserContext,
    window_ms: float = 5000,
    existing: Optional[Diagnosis] = None,
    source_info: Optional[SourceInfo] = None,
) -> Diagnosis:
    """
    Correlate buffered browser signals with a captured element.

    Signals inside the trailing window that reference the element become
    ``related_errors`` (console errors, failed loads) or ``suspected``
    (layout shifts of the element). Everything else observed, whether out
    of the window, unrelated, or missing a timestamp, lands in ``unusual``.

    Args:
        capture_ts: Capture time in epoch milliseconds
        element: The captured element
        context: Errors, network failures and layout shifts to consider
        window_ms: Trailing window before the capture
        existing: Diagnosis computed by the page script, merged first
        source_info: Framework component info for the element, if known

    Returns:
        Diagnosis: A new diagnosis; ``existing`` is not modified
    """
    result = Diagnosis(
        suspected=list(existing.suspected) if existing else [],
        unusual=list(existing.unusual) if existing else [],
        related_errors=list(existing.related_errors) if existing else [],
    )
    source_tokens = _source_tokens(source_info)
    tokens = _element_tokens(element) + source_tokens

    def placement(ts: Optional[float]) -> Optional[str]:
        """None if inside the window, otherwise why the signal is out."""
        if not ts:
            return "without timestamp"
        age = capture_ts - ts
        if age < 0:
            return f"{_seconds(-age)} after capture"
        if age > window_ms:
            return f"{_seconds(age)} before capture, outside {_seconds(window_ms)} window"
        return None

    for error in context.errors:
        label = f"{error.message[:100]}{f' ({error.source})' if error.source else ''}"
        if error.count > 1:
            label += f" x{error.count}"
        out_of_window = placement(error.timestamp)
        if out_of_window:
            _append_unique(result.unusual, f"Console error {out_of_window}: {label}")
        elif _mentions(error.message, tokens) or _mentions(error.source or "", source_tokens):
            _append_unique(result.related_errors, label)
        else:
            age = _seconds(capture_ts - error.timestamp)
            _append_unique(result.unusual, f"Unrelated console error {age} before capture: {label}")

    load_refs = [
        element.attributes[attr]
        for attr in ("src", "href")
        if element.attributes.get(attr)
    ]
    for failure in context.network_failures:
        label = f"{failure.url} ({failure.status if failure.status is not None else 'failed'})"
        out_of_window = placement(failure.timestamp)
        if out_of_window:
            _append_unique(result.unusual, f"Network failure {out_of_window}: {label}")
        elif any(ref in failure.url for ref in load_refs):
            _append_unique(result.related_errors, f"Failed to load: {label}")
        else:
            age = _seconds(capture_ts - failure.timestamp)
            _append_unique(result.unusual, f"Unrelated network failure {age} before capture: {label}")

    for shift in context.layout_shifts:
        sources = [s.selector for s in shift.sources]
        touches_element = any(_selector_covers(s, element.selector) for s in sources if s)
        label = f"layout shift {shift.value:.3f}"
        out_of_window = placement(shift.timestamp)
        if out_of_window or not touches_element:
            where = out_of_window or "elsewhere on the page"
            targets = f" on {', '.join(sources)}" if sources else ""
            _append_unique(result.unusual, f"{label.capitalize()}{targets} {where}")
        else:
            age = _seconds(capture_ts - (shift.timestamp or capture_ts))
            _append_unique(result.suspected, f"{label} moved {element.selector} {age} before capture")

    return result


def summarize_flow(events: Sequence[FlowEvent]) -> FlowSummary:
    """Per-type counts for a recording."""

    def count(*types: str) -> int:
        return sum(1 for e in events if e.type in types)

    return FlowSummary(
        total_events=len(events),
        clicks=count("click"),
        inputs=count("input"),
        scrolls=count("scroll"),
        navigations=count("navigation", "refresh"),
        network_requests=count("network_request", "network_response"),
        network_errors=count("network_error"),
        console_errors=count("console_error"),
        layout_shifts=count("layout_shift"),
    )


def describe_event(event: FlowEvent) -> str:
    """One-line, compact description used by the diagnosis timeline."""
    data = event.data
    if event.type == "click":
        target = f"\"{str(data['text'])[:40]}\"" if data.get("text") else data.get("selector") or "element"
        return f"CLICK {target}"
    if event.type in ("network_error", "network_response", "network_request"):
        path = str(data.get("url") or "").split("?")[0].split("/")[-2:]
        status = data.get("status", "")
        suffix = f" FAILED \"{data.get('statusText', '')}\"" if event.type == "network_error" else ""
        return f"{data.get('method', 'GET')} /{'/'.join(path)} → {status}{suffix}"
    if event.type == "console_error":
        return f"ERROR \"{str(data.get('message') or '')[:80]}\""
    if event.type == "console_warn":
        return f"WARN \"{str(data.get('message') or '')[:60]}\""
    if event.type == "navigation":
        if data.get("event") == "recording_start":
            return f"START on \"{data.get('title') or 'page'}\" ({data.get('url')})"
        return f"NAVIGATE → {data.get('url') or 'unknown'}"
    if event.type == "input":
        return f"INPUT {data.get('inputType') or 'text'} \"{data.get('label') or data.get('selector') or ''}\""
    if event.type == "scroll":
        return f"SCROLL {data.get('direction') or ''} to {data.get('scrollPercent') or 0}%"
    if event.type == "element_select":
        return f"SELECTED {data.get('selector')}"
    return event.type.upper()


def _click_target(click: FlowEvent) -> str:
    return str(click.data.get("selector") or click.data.get("text") or "element")


def diagnose_flow(
    events: Sequence[FlowEvent],
    start_time: float = 0,
    window_ms: float = 2000,
) -> FlowDiagnosis:
    """
    Diagnose a recording from its events.

    A navigation, network error or console error within ``window_ms`` after
    a click is its probable consequence. ``root_cause`` names the trigger of
    the terminal failure only when exactly one click falls in the window
    before it; with zero or several candidates it stays unset.

    Args:
        events: Recorded events; re-sorted by time, ties keep their order
        start_time: Origin for timeline offsets, in the events' time base
        window_ms: Maximum click-to-consequence delay
    """
    ordered = sorted(events, key=lambda e: e.time)

    consequences: List[str] = []
    first_failing_click: Optional[FlowEvent] = None
    for i, event in enumerate(ordered):
        if event.type not in TRIGGER_TYPES:
            continue
        for later in ordered[i + 1:]:
            delay = later.time - event.time
            if delay > window_ms:
                break
            if later.type in CONSEQUENCE_TYPES:
                consequences.append(
                    f"{describe_event(later)} {int(delay)}ms after click on {_click_target(event)}"
                )
                if later.type in FAILURE_TYPES and first_failing_click is None:
                    first_failing_click = event

    failures = [(i, e) for i, e in enumerate(ordered) if e.type in FAILURE_TYPES]

    if first_failing_click is not None:
        suspected_issue = f"Error occurred after clicking {_click_target(first_failing_click)}"
    elif failures:
        suspected_issue = f"{len(failures)} error(s) with no click shortly before"
    else:
        suspected_issue = "No obvious issues detected"

    root_cause: Optional[str] = None
    if failures:
        terminal_index, terminal = failures[-1]
        candidates = [
            e
            for e in ordered[:terminal_index]
            if e.type in TRIGGER_TYPES and 0 <= terminal.time - e.time <= window_ms
        ]
        if len(candidates) == 1:
            trigger = candidates[0]
            root_cause = (
                f"Click on {_click_target(trigger)} at {_seconds(trigger.time - start_time)} "
                f"led to {describe_event(terminal)} "
                f"{int(terminal.time - trigger.time)}ms later"
            )

    timeline = "\n".join(
        f"{_seconds(e.time - start_time)} {describe_event(e)}" for e in ordered[:TIMELINE_LIMIT]
    )

    return FlowDiagnosis(
        suspected_issue=suspected_issue,
        timeline=timeline,
        consequences=consequences,
        root_cause=root_cause,
    )
