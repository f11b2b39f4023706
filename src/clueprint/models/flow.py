"""Flow recording models."""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from pydantic import Field

from .context import Selection, WireModel

# Event types emitted by the page instrumentation
EventType = Literal[
    "refresh",
    "navigation",
    "click",
    "input",
    "scroll",
    "network_request",
    "network_response",
    "network_error",
    "console_log",
    "console_warn",
    "console_error",
    "dom_mutation",
    "layout_shift",
    "element_select",
    "form_submit",
    "keypress",
    "mouse_move",
]


class RecordingState(str, Enum):
    """Flow recording lifecycle."""
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    COMPLETED = "completed"


class FlowEvent(WireModel):
    """
    One recorded event.

    While buffered, ``time`` is the self-reported epoch-millisecond
    timestamp; inside a finished FlowRecording it is the offset from the
    recording start.
    """

    time: float
    type: EventType
    data: Dict[str, Any] = Field(default_factory=dict)


class FlowSummary(WireModel):
    """Per-type event counts."""

    total_events: int = 0
    clicks: int = 0
    inputs: int = 0
    scrolls: int = 0
    navigations: int = 0
    network_requests: int = 0
    network_errors: int = 0
    console_errors: int = 0
    layout_shifts: int = 0


class FlowDiagnosis(WireModel):
    suspected_issue: str = "No obvious issues detected"
    timeline: str = ""
    consequences: List[str] = Field(default_factory=list)
    root_cause: Optional[str] = None


class FlowRecording(WireModel):
    """A finished recording: ordered events plus summary and diagnosis."""

    mode: Literal["flow"] = "flow"
    start_time: float = 0
    duration: float = 0
    events: List[FlowEvent] = Field(default_factory=list)
    final_selection: Optional[Selection] = None
    summary: FlowSummary = Field(default_factory=FlowSummary)
    diagnosis: FlowDiagnosis = Field(default_factory=FlowDiagnosis)
