"""WebSocket message models for the extension protocol."""

from enum import Enum
from typing import Annotated, Any, FrozenSet, Literal, Optional, Tuple, Type, Union
from pydantic import Field, TypeAdapter

from .context import FreeSelectCapture, InspectCapture, ConsoleEntry, NetworkEntry, WireModel
from .flow import FlowEvent


class Command(str, Enum):
    """Commands the broker sends to the extension."""
    GET_SELECTION = "GET_SELECTION"
    GET_DIAGNOSTICS = "GET_DIAGNOSTICS"
    START_RECORDING = "START_RECORDING"
    STOP_RECORDING = "STOP_RECORDING"
    SNAPSHOT_DOM = "SNAPSHOT_DOM"
    GET_RECENT_ACTIVITY = "GET_RECENT_ACTIVITY"
    PING = "PING"


class ExtensionMessage(WireModel):
    """Common envelope: responses echo the command's id, events carry none."""

    id: Optional[str] = Field(None, description="Correlation id of the command answered")
    error: Optional[str] = Field(None, description="Error reported by the extension")


# Responses. Payloads stay raw here; the tool layer validates them against
# the model it expects so a malformed answer fails one call, not the stream.

class SelectionResponse(ExtensionMessage):
    type: Literal["SELECTION_RESPONSE"] = "SELECTION_RESPONSE"
    payload: Any = None


class DiagnosticsResponse(ExtensionMessage):
    type: Literal["DIAGNOSTICS_RESPONSE"] = "DIAGNOSTICS_RESPONSE"
    payload: Any = None


class RecordingStarted(ExtensionMessage):
    """Ack of START_RECORDING, or (without id) a start from the extension UI."""

    type: Literal["RECORDING_STARTED"] = "RECORDING_STARTED"
    payload: Any = None


class RecordingResponse(ExtensionMessage):
    type: Literal["RECORDING_RESPONSE"] = "RECORDING_RESPONSE"
    payload: Any = None


class SnapshotResponse(ExtensionMessage):
    type: Literal["SNAPSHOT_RESPONSE"] = "SNAPSHOT_RESPONSE"
    payload: Any = None


class RecentActivityResponse(ExtensionMessage):
    type: Literal["RECENT_ACTIVITY_RESPONSE"] = "RECENT_ACTIVITY_RESPONSE"
    payload: Any = None


class Pong(ExtensionMessage):
    type: Literal["PONG"] = "PONG"
    payload: Any = None


# Unsolicited events

class ElementSelected(ExtensionMessage):
    type: Literal["ELEMENT_SELECTED"] = "ELEMENT_SELECTED"
    payload: InspectCapture


class RegionSelected(ExtensionMessage):
    type: Literal["REGION_SELECTED"] = "REGION_SELECTED"
    payload: FreeSelectCapture


class ConsoleEvent(ExtensionMessage):
    type: Literal["CONSOLE_EVENT"] = "CONSOLE_EVENT"
    payload: ConsoleEntry


class NetworkEvent(ExtensionMessage):
    type: Literal["NETWORK_EVENT"] = "NETWORK_EVENT"
    payload: NetworkEntry


class FlowEventMessage(ExtensionMessage):
    type: Literal["FLOW_EVENT"] = "FLOW_EVENT"
    payload: FlowEvent


class RecordingStopped(ExtensionMessage):
    """Recording stopped from the extension UI."""

    type: Literal["RECORDING_STOPPED"] = "RECORDING_STOPPED"
    payload: Any = None


class BufferRecording(ExtensionMessage):
    """The extension's own rolling buffer, pushed as a recording."""

    type: Literal["BUFFER_RECORDING"] = "BUFFER_RECORDING"
    payload: Any = None


INBOUND_MESSAGE_MODELS: Tuple[Type[ExtensionMessage], ...] = (
    SelectionResponse,
    DiagnosticsResponse,
    RecordingStarted,
    RecordingResponse,
    SnapshotResponse,
    RecentActivityResponse,
    Pong,
    ElementSelected,
    RegionSelected,
    ConsoleEvent,
    NetworkEvent,
    FlowEventMessage,
    RecordingStopped,
    BufferRecording,
)

# Every tag the broker must know how to handle
INBOUND_TYPES: FrozenSet[str] = frozenset(
    model.model_fields["type"].default for model in INBOUND_MESSAGE_MODELS
)

InboundMessage = Annotated[
    Union[
        SelectionResponse,
        DiagnosticsResponse,
        RecordingStarted,
        RecordingResponse,
        SnapshotResponse,
        RecentActivityResponse,
        Pong,
        ElementSelected,
        RegionSelected,
        ConsoleEvent,
        NetworkEvent,
        FlowEventMessage,
        RecordingStopped,
        BufferRecording,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_inbound(data: Any) -> ExtensionMessage:
    """
    Validate a decoded JSON message against the closed inbound union.

    Raises:
        pydantic.ValidationError: Unknown type tag or malformed payload
    """
    return _inbound_adapter.validate_python(data)
