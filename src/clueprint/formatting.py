"""Compact text reports for tool responses.

Reports are written for an assistant to read: short labelled sections,
truncated values, and nothing that needs a renderer.
"""

from typing import Dict, List, Optional
from urllib.parse import urlparse

from .models.context import FreeSelectCapture, InspectCapture, PageDiagnostics
from .models.flow import FlowEvent, FlowRecording
from .models.snapshot import DiffResult, DomSnapshot

RULE = "━" * 56
WIDE_RULE = "━" * 70
THIN_RULE = "─" * 70

FULL_TIMELINE_LIMIT = 50
DIFF_CHANGE_LIMIT = 20

IMPORTANT_ATTRIBUTES = {"role", "href", "src", "type", "name", "value", "placeholder", "title", "alt"}

IMPLICIT_ROLES = {
    "a": "link",
    "button": "button",
    "input": "textbox",
    "select": "combobox",
    "textarea": "textbox",
    "img": "img",
    "nav": "navigation",
    "main": "main",
    "header": "banner",
    "footer": "contentinfo",
    "aside": "complementary",
    "article": "article",
    "section": "region",
    "form": "form",
    "table": "table",
    "ul": "list",
    "ol": "list",
    "li": "listitem",
    **{f"h{level}": "heading" for level in range(1, 7)},
}

EVENT_MARKERS = {
    "refresh": "↻",
    "navigation": "↻",
    "click": "●",
    "input": "✎",
    "scroll": "↕",
    "network_request": "↑",
    "network_response": "✓",
    "network_error": "❌",
    "console_log": "·",
    "console_warn": "⚠️",
    "console_error": "❌",
    "dom_mutation": "~",
    "layout_shift": "⇅",
    "element_select": "◎",
    "form_submit": "▤",
    "keypress": "⌨",
    "mouse_move": "→",
}


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _seconds(ms: float) -> str:
    return f"{ms / 1000:.1f}"


def _px(value: float) -> str:
    return f"{value:g}"


def _url_path(url: str, segments: int = 3) -> str:
    return "/".join(str(url or "").split("?")[0].split("/")[-segments:])


def _style_note(prop: str, value: str) -> Optional[str]:
    """Hint for style values that commonly look wrong."""
    if prop == "border-radius" and value in ("0", "0px"):
        return "sharp (recommend 4-8px)"
    if prop == "padding":
        digits = value.split("px")[0].strip()
        if digits.isdigit() and int(digits) < 8:
            return "cramped (recommend 12px+)"
    if prop == "background" and value in ("#cccccc", "rgb(204, 204, 204)"):
        return "bland gray"
    return None


def _style_lines(capture: InspectCapture, css_detail: int) -> List[str]:
    """
    Styles section at the requested detail level.

    0 = none, 1 = layout and visual, 2 = plus typography, 3 = every
    captured computed style.
    """
    if css_detail <= 0:
        return []

    styles = capture.element.styles
    if css_detail >= 3:
        groups: Dict[str, Dict[str, str]] = {
            "layout": styles.layout,
            "size": styles.size,
            "spacing": styles.spacing,
            "visual": styles.visual,
            "text": styles.text or {},
        }
        lines = ["STYLES:"]
        for group, values in groups.items():
            if values:
                lines.append(f"  [{group}]")
                lines.extend(f"    {prop}: {value}" for prop, value in values.items())
        return lines + [""]

    important = [
        ("display", styles.layout.get("display")),
        ("position", styles.layout.get("position")),
        ("background", styles.visual.get("background") or styles.visual.get("backgroundColor")),
        ("padding", styles.spacing.get("padding")),
        ("border-radius", styles.visual.get("borderRadius")),
    ]
    if css_detail >= 2 and styles.text:
        important.extend(
            (prop, styles.text.get(key))
            for prop, key in (
                ("font-family", "fontFamily"),
                ("font-size", "fontSize"),
                ("font-weight", "fontWeight"),
                ("line-height", "lineHeight"),
                ("color", "color"),
            )
        )

    lines = ["STYLES:"]
    for prop, value in important:
        if not value or value in ("none", "static"):
            continue
        note = _style_note(prop, value)
        lines.append(f"  {prop}: {value}{f' ← {note}' if note else ''}")
    return lines + [""]


def format_element_report(capture: InspectCapture, css_detail: int = 1) -> str:
    """
    Format an Option+Click element capture.

    Args:
        capture: The inspect capture
        css_detail: 0-3, how much computed style to include

    Returns:
        str: Report text
    """
    el = capture.element
    lines: List[str] = []

    header = el.tag
    if el.id:
        header += f"#{el.id}"
    if el.classes:
        header += "." + ".".join(el.classes[:2])
    lines += [f"ELEMENT: {header}", RULE, ""]

    lines.append(f"SELECTOR: {el.selector}")
    lines.append(f"SIZE: {_px(el.rect.width)}×{_px(el.rect.height)}px")
    if el.classes:
        lines.append(f"CLASSES: {', '.join(el.classes)}")
    lines.append(f"TEXT: \"{el.text or '(empty)'}\"")
    if capture.user_instruction:
        lines.append(f"USER NOTE: {capture.user_instruction}")

    important_attrs = [
        (key, value)
        for key, value in el.attributes.items()
        if key.startswith(("data-", "aria-")) or key in IMPORTANT_ATTRIBUTES
    ]
    if important_attrs:
        lines.append("ATTRIBUTES:")
        lines.extend(f"  {key}: {_truncate(value, 50)}" for key, value in important_attrs[:10])

    role = el.attributes.get("role") or IMPLICIT_ROLES.get(el.tag)
    aria_label = el.attributes.get("aria-label")
    if role or aria_label:
        accessibility = f"ACCESSIBILITY: role=\"{role or 'none'}\""
        if aria_label:
            accessibility += f", label=\"{aria_label}\""
        if el.attributes.get("aria-describedby"):
            accessibility += f", describedby=\"{el.attributes['aria-describedby']}\""
        lines.append(accessibility)

    if capture.source_info and capture.source_info.component:
        info = capture.source_info
        location = f" ({info.file}{f':{info.line}' if info.line else ''})" if info.file else ""
        lines.append(f"COMPONENT: {info.component} [{info.framework}]{location}")
    lines.append("")

    lines += _style_lines(capture, css_detail)

    if capture.parent.selector:
        parent_styles = capture.parent.styles
        gap = f", gap: {parent_styles['gap']}" if parent_styles.get("gap") else ""
        lines += [f"PARENT: {capture.parent.selector} ({parent_styles.get('display', 'block')}{gap})", ""]

    if len(capture.siblings) > 1:
        lines.append(f"SIBLINGS ({len(capture.siblings)} {el.tag}s):")
        for sibling in capture.siblings[:5]:
            marker = " ⚠️ ← SELECTED" if sibling.is_selected else " ✓"
            anomaly = f" ({sibling.anomaly})" if sibling.anomaly else ""
            lines.append(
                f"  {sibling.selector}: {_px(sibling.size.width)}×{_px(sibling.size.height)}px"
                f"{marker}{anomaly}"
            )
        lines.append("")

    if capture.css_rules and css_detail > 0:
        lines.append("CSS RULES:")
        for rule in capture.css_rules[-5:]:
            props = "; ".join(f"{k}: {v}" for k, v in list(rule.properties.items())[:3])
            override = " ⚠️ OVERRIDING" if rule.is_overriding else ""
            lines.append(f"  {rule.selector} {{ {props} }} → {rule.source}{override}")
        lines.append("")

    context = capture.browser_context
    if context.errors or context.network_failures:
        lines.append("BROWSER CONTEXT:")
        for error in context.errors[:3]:
            source = f" ({error.source})" if error.source else ""
            count = f" ×{error.count}" if error.count > 1 else ""
            lines.append(f"  ❌ {error.message[:80]}{source}{count}")
        for failure in context.network_failures[:3]:
            lines.append(
                f"  ❌ {failure.method} {failure.url[:50]} → {failure.status} {failure.status_text or ''}".rstrip()
            )
        lines.append("")

    diagnosis = capture.diagnosis
    if not diagnosis.is_empty:
        lines.append("DIAGNOSIS:")
        lines.extend(f"  • {item}" for item in diagnosis.suspected)
        lines.extend(f"  • {item}" for item in diagnosis.related_errors)
        lines.extend(f"  • {item}" for item in diagnosis.unusual)
        lines.append("")

    if diagnosis.related_errors:
        first = diagnosis.related_errors[0]
        if "(" in first and ")" in first:
            lines.append(f"SUGGESTED FIX: {first[first.rindex('(') + 1:first.rindex(')')]}")

    return "\n".join(lines).rstrip()


def format_region_report(capture: FreeSelectCapture) -> str:
    """Format a Cmd+Shift+Drag region capture."""
    lines = [f"REGION: {_px(capture.region.width)}×{_px(capture.region.height)}px", RULE, ""]
    lines += [f"INTENT: {capture.intent.upper()}", ""]
    if capture.user_note:
        lines += [f"USER NOTE: {capture.user_note}", ""]

    lines.append(f"ELEMENTS ({len(capture.elements)}):")
    for el in capture.elements[:10]:
        text = f" \"{el.text[:30]}\"" if el.text else ""
        lines.append(f"  • {el.tag}.{el.selector.split('.')[-1]}{text} [{el.role}]")
    lines.append("")

    if capture.structure:
        lines.append("STRUCTURE:")
        lines.extend(f"  {line}" for line in capture.structure.split("\n"))
        lines.append("")

    analysis = capture.aesthetic_analysis
    if analysis:
        if analysis.issues:
            lines.append("ISSUES:")
            lines.extend(f"  ⚠️ {issue}" for issue in analysis.issues)
            lines.append("")
        if analysis.suggestions:
            lines.append("SUGGESTIONS:")
            lines.extend(f"  • {suggestion}" for suggestion in analysis.suggestions)
            lines.append("")
        if analysis.color_palette:
            lines += [f"COLORS: {', '.join(analysis.color_palette[:5])}", ""]

    if capture.browser_context.errors:
        lines.append("ERRORS:")
        lines.extend(f"  ❌ {error.message[:80]}" for error in capture.browser_context.errors[:3])
        lines.append("")

    return "\n".join(lines).rstrip()


def describe_event_verbose(event: FlowEvent) -> str:
    """Full-timeline line body for one event."""
    data = event.data
    if event.type == "click":
        text = f"\"{str(data['text'])[:50]}\"" if data.get("text") else ""
        role = f"[{data['role']}] " if data.get("role") else ""
        selector = str(data.get("selector") or "element")[:60]
        coords = f" at ({data.get('x')}, {data.get('y')})" if "x" in data else ""
        href = f" → {data['href']}" if data.get("href") else ""
        nearby = data.get("nearbyClickables")
        nearby_text = f" | nearby: {', '.join(nearby[:2])}" if nearby else ""
        return f"CLICK {role}{text or selector}{coords}{href}{nearby_text}"
    if event.type == "scroll":
        section = f" near \"{str(data['nearSection'])[:40]}\"" if data.get("nearSection") else ""
        delta = f" delta={data['delta']}px" if data.get("delta") else ""
        return (
            f"SCROLL {data.get('direction') or ''} to {data.get('scrollPercent') or 0}% "
            f"y={data.get('scrollY')}px{delta}{section}"
        )
    if event.type == "input":
        return (
            f"INPUT [{data.get('inputType') or 'text'}] "
            f"\"{data.get('label') or data.get('selector') or 'field'}\" "
            f"typed {data.get('valueLength') or 0} chars"
        )
    if event.type == "form_submit":
        return (
            f"SUBMIT {data.get('method') or 'POST'} form → {data.get('action') or 'same page'} "
            f"({data.get('fieldCount') or 0} fields)"
        )
    if event.type == "keypress":
        return f"KEYPRESS {data.get('combo') or data.get('key')} on {data.get('target') or 'page'}"
    if event.type == "mouse_move":
        role = f"[{data['role']}] " if data.get("role") else ""
        return f"HOVER {role}{data.get('target') or ''} at ({data.get('x')}, {data.get('y')})"
    if event.type == "navigation":
        if data.get("event") == "recording_start":
            return f"RECORDING START on \"{data.get('title') or 'page'}\" | URL: {data.get('url')}"
        return f"NAVIGATE → {data.get('url') or 'unknown'}"
    if event.type == "refresh":
        return "PAGE REFRESH"
    if event.type == "network_response":
        duration = f" ({data['duration']}ms)" if data.get("duration") else ""
        return f"{data.get('method', 'GET')} /{_url_path(data.get('url'))} → {data.get('status')}{duration}"
    if event.type == "network_error":
        return (
            f"{data.get('method', 'GET')} /{_url_path(data.get('url'))} → "
            f"❌ {data.get('status')} \"{data.get('statusText') or ''}\""
        )
    if event.type == "console_error":
        source = f" ({data['source']})" if data.get("source") else ""
        return f"ERROR: \"{str(data.get('message') or '')[:100]}\"{source}"
    if event.type == "console_warn":
        return f"WARN: \"{str(data.get('message') or '')[:80]}\""
    if event.type == "element_select":
        return f"SELECTED: {data.get('selector')}"
    return f"{event.type.upper()} {str(data)[:80]}"


def format_flow_report(
    recording: FlowRecording,
    include_successful_requests: bool = False,
    title: str = "FLOW RECORDING",
) -> str:
    """
    Format a finished flow recording.

    Args:
        recording: Recording with offset times
        include_successful_requests: List 2xx responses under NETWORK ACTIVITY
        title: Report heading

    Returns:
        str: Report text
    """
    summary = recording.summary
    events = recording.events
    duration = _seconds(recording.duration)

    lines = [f"{title} ({duration}s, {summary.total_events} events)", WIDE_RULE, ""]
    lines += [
        "SUMMARY:",
        f"  Duration: {duration}s",
        f"  Clicks: {summary.clicks} | Inputs: {summary.inputs} | Scrolls: {summary.scrolls}",
        f"  Navigations: {summary.navigations} | Network: {summary.network_requests} req, "
        f"{summary.network_errors} errors",
        f"  Console errors: {summary.console_errors} | Layout shifts: {summary.layout_shifts}",
        "",
    ]

    scrolls = [e.data for e in events if e.type == "scroll"]
    if scrolls:
        directions = [d.get("direction") for d in scrolls]
        lines += [
            "SCROLL BEHAVIOR:",
            f"  Max scroll depth: {max(d.get('scrollPercent') or 0 for d in scrolls)}% | "
            f"Down: {directions.count('down')}x | Up: {directions.count('up')}x",
        ]
        last = scrolls[-1]
        if last.get("pageHeight"):
            lines.append(f"  Page height: {last.get('pageHeight')}px | Viewport: {last.get('viewportHeight')}px")
        lines.append("")

    clicks = [e for e in events if e.type == "click"]
    if clicks:
        lines.append("CLICK TARGETS:")
        for click in clicks[:10]:
            lines.append(f"  {_seconds(click.time)}s {describe_event_verbose(click)[len('CLICK '):]}")
        if len(clicks) > 10:
            lines.append(f"  ... {len(clicks) - 10} more clicks")
        lines.append("")

    inputs = [e for e in events if e.type == "input"]
    if inputs:
        lines.append("INPUT EVENTS:")
        for event in inputs[:5]:
            d = event.data
            lines.append(
                f"  {_seconds(event.time)}s {d.get('inputType') or 'text'} "
                f"\"{d.get('label') or d.get('selector')}\" ({d.get('valueLength') or 0} chars)"
            )
        lines.append("")

    network_types = {"network_error", "network_response"} if include_successful_requests else {"network_error"}
    network = [e for e in events if e.type in network_types]
    if network:
        lines.append("NETWORK ACTIVITY:" if include_successful_requests else "NETWORK FAILURES:")
        for event in network[:10]:
            lines.append(f"  {_seconds(event.time)}s {describe_event_verbose(event)}")
        if len(network) > 10:
            lines.append(f"  ... {len(network) - 10} more requests")
        lines.append("")

    errors = [e for e in events if e.type == "console_error"]
    if errors:
        lines.append("CONSOLE ERRORS:")
        for event in errors[:5]:
            lines.append(f"  {_seconds(event.time)}s ❌ {str(event.data.get('message') or '')[:100]}")
            if event.data.get("source"):
                lines.append(f"       → {event.data['source']}")
        lines.append("")

    timeline = [
        e for e in events if include_successful_requests or e.type != "network_response"
    ]
    lines += ["FULL TIMELINE:", THIN_RULE]
    for event in timeline[:FULL_TIMELINE_LIMIT]:
        marker = EVENT_MARKERS.get(event.type, "•")
        lines.append(f"{_seconds(event.time):>6}s  {marker} {describe_event_verbose(event)}")
    if len(timeline) > FULL_TIMELINE_LIMIT:
        lines.append(f"  ... {len(timeline) - FULL_TIMELINE_LIMIT} more events")
    lines.append("")

    if recording.final_selection is not None:
        selection = recording.final_selection
        if isinstance(selection, InspectCapture):
            lines += [f"FINAL SELECTION: {selection.element.selector}", ""]
        else:
            lines += [
                f"FINAL SELECTION: region {_px(selection.region.width)}×{_px(selection.region.height)}px",
                "",
            ]

    diagnosis = recording.diagnosis
    lines += [THIN_RULE, "DIAGNOSIS:", f"  {diagnosis.suspected_issue}"]
    if diagnosis.root_cause:
        lines.append(f"  Root cause: {diagnosis.root_cause}")
    if diagnosis.consequences:
        lines.append("  Consequences:")
        lines.extend(f"    - {item}" for item in diagnosis.consequences)
    if diagnosis.timeline:
        lines.append("  Timeline:")
        lines.extend(f"    {line}" for line in diagnosis.timeline.split("\n"))

    return "\n".join(lines)


def _rating(value: float, good: float, poor: float) -> str:
    if value < good:
        return "← Good"
    if value < poor:
        return "⚠️ Needs improvement"
    return "❌ Poor"


def format_diagnostics_report(
    diagnostics: PageDiagnostics,
    include_warnings: bool = False,
    include_performance: bool = True,
) -> str:
    """
    Format whole-page diagnostics.

    Args:
        diagnostics: Report from the extension
        include_warnings: Add the WARNINGS section
        include_performance: Add LCP, CLS and long tasks
    """
    parsed = urlparse(diagnostics.url)
    location = f"{parsed.netloc}{parsed.path}" if parsed.netloc else diagnostics.url or "(unknown page)"
    lines = [f"PAGE DIAGNOSTICS: {location}", RULE, ""]

    if diagnostics.errors:
        lines.append(f"ERRORS ({len(diagnostics.errors)}):")
        for error in diagnostics.errors[:5]:
            count = f" (×{error.count})" if error.count > 1 else ""
            lines += [f"  ❌ {error.message[:60]}", f"     → {error.source}{count}"]
        lines.append("")

    if diagnostics.network_failures:
        lines.append(f"NETWORK FAILURES ({len(diagnostics.network_failures)}):")
        for failure in diagnostics.network_failures[:5]:
            path = urlparse(failure.url).path or failure.url
            lines.append(f"  ❌ {failure.method} {path[:40]} → {failure.status} {failure.status_text}")
        lines.append("")

    if not diagnostics.errors and not diagnostics.network_failures:
        lines += ["No console errors or network failures.", ""]

    if include_performance:
        performance = diagnostics.performance
        lines.append("PERFORMANCE:")
        if performance.lcp:
            lines.append(
                f"  LCP: {_seconds(performance.lcp.value)}s ({performance.lcp.element}) "
                f"{_rating(performance.lcp.value, 2500, 4000)}"
            )
        lines.append(f"  CLS: {performance.cls.value:.3f} {_rating(performance.cls.value, 0.1, 0.25)}")
        for shift in performance.cls.shifts[:2]:
            lines.append(f"      ({shift.element} shifted {shift.delta:.3f})")
        if performance.long_tasks:
            longest = max(task.duration for task in performance.long_tasks)
            lines.append(f"  Long tasks: {len(performance.long_tasks)} (longest: {longest:g}ms)")
        lines.append("")

    a11y = diagnostics.accessibility
    if a11y.missing_alt_text or a11y.missing_labels or a11y.low_contrast:
        lines.append("ACCESSIBILITY:")
        if a11y.missing_alt_text:
            lines.append(f"  ⚠️ {a11y.missing_alt_text} images missing alt text")
        if a11y.missing_labels:
            lines.append(f"  ⚠️ {a11y.missing_labels} form inputs missing labels")
        if a11y.low_contrast:
            lines.append(f"  ⚠️ {a11y.low_contrast} elements with low contrast")
        lines.append("")

    if include_warnings and diagnostics.warnings:
        lines.append("WARNINGS:")
        lines.extend(f"  ⚠️ {warning}" for warning in diagnostics.warnings)

    return "\n".join(lines).rstrip()


def format_snapshot_report(snapshot: DomSnapshot) -> str:
    lines = [
        "DOM snapshot taken.",
        f"ID: {snapshot.id}",
        f"Elements: {len(snapshot.elements)}",
    ]
    if snapshot.selector:
        lines.append(f"Root: {snapshot.selector}")
    lines.append(f"URL: {snapshot.url or '(unknown)'}")
    lines += ["", "Use this ID with diff_dom_snapshots to compare changes."]
    return "\n".join(lines)


def format_diff_report(diff: DiffResult) -> str:
    """Format a snapshot diff, listing at most DIFF_CHANGE_LIMIT changes."""
    lines = [f"DOM DIFF: {diff.before} → {diff.after}", "━" * 40, f"Changes: {len(diff.changes)}", ""]
    if diff.is_empty:
        lines.append("No differences between the snapshots.")
        return "\n".join(lines)

    markers = {"added": "+", "removed": "-", "changed": "~"}
    for change in diff.changes[:DIFF_CHANGE_LIMIT]:
        lines.append(f"{markers[change.type]} {change.type.upper()}: {change.selector}")
        details = change.changes
        if details is None:
            continue
        if details.classes:
            if details.classes.added:
                lines.append(f"   + classes: {', '.join(details.classes.added)}")
            if details.classes.removed:
                lines.append(f"   - classes: {', '.join(details.classes.removed)}")
        if details.size:
            before, after = details.size.before, details.size.after
            lines.append(
                f"   size: {_px(before.width)}×{_px(before.height)} → {_px(after.width)}×{_px(after.height)}"
            )
        for style in details.styles or []:
            lines.append(f"   style {style.property}: {style.before or '(unset)'} → {style.after or '(unset)'}")
    if len(diff.changes) > DIFF_CHANGE_LIMIT:
        lines.append(f"... {len(diff.changes) - DIFF_CHANGE_LIMIT} more changes")
    return "\n".join(lines)
