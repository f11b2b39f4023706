"""Data models for Clueprint."""

from .context import (
    BrowserContext,
    CapturedElement,
    ConsoleEntry,
    Diagnosis,
    FreeSelectCapture,
    InspectCapture,
    NetworkEntry,
    PageDiagnostics,
)
from .flow import FlowDiagnosis, FlowEvent, FlowRecording, FlowSummary, RecordingState
from .messages import Command, ExtensionMessage, parse_inbound
from .snapshot import DiffResult, DomSnapshot, ElementChange, ElementSnapshot
from .tool import ToolContent, ToolResponse

__all__ = [
    "BrowserContext",
    "CapturedElement",
    "ConsoleEntry",
    "Diagnosis",
    "FreeSelectCapture",
    "InspectCapture",
    "NetworkEntry",
    "PageDiagnostics",
    "FlowDiagnosis",
    "FlowEvent",
    "FlowRecording",
    "FlowSummary",
    "RecordingState",
    "Command",
    "ExtensionMessage",
    "parse_inbound",
    "DiffResult",
    "DomSnapshot",
    "ElementChange",
    "ElementSnapshot",
    "ToolContent",
    "ToolResponse",
]
