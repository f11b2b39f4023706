"""Session broker between MCP tool calls and the browser extension."""

import asyncio
import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError

from .config import Settings
from .diagnosis import diagnose_flow, summarize_flow
from .exceptions import (
    BrokerError,
    ConnectionLostError,
    ConnectionSupersededError,
    NoActiveRecordingError,
    NoExtensionConnectedError,
    RecordingAlreadyActiveError,
    RequestTimeoutError,
    ExtensionRequestError,
)
from .models.context import ConsoleEntry, FreeSelectCapture, InspectCapture, NetworkEntry
from .models.flow import FlowEvent, FlowRecording, RecordingState
from .models.messages import (
    INBOUND_TYPES,
    BufferRecording,
    Command,
    ConsoleEvent,
    ElementSelected,
    ExtensionMessage,
    FlowEventMessage,
    NetworkEvent,
    Pong,
    RecordingStarted,
    RecordingStopped,
    RegionSelected,
    parse_inbound,
)
from .models.snapshot import DomSnapshot
from .ring_buffer import ActivityBuffer, ConsoleBuffer, RingBuffer
from .snapshot_store import SnapshotStore
from .types import Clock, CommandMessageDict, ExtensionSendCallback, HealthDict

logger = logging.getLogger(__name__)

SelectionCapture = Union[InspectCapture, FreeSelectCapture]

_CONSOLE_FLOW_TYPES = {"error": "console_error", "warn": "console_warn"}


class BrokerConfig(BaseModel):
    """Tunables for a SessionBroker, decoupled from the global settings."""

    request_timeout: float = 10.0
    max_console_entries: int = 50
    max_network_entries: int = 50
    activity_window_seconds: float = 30.0
    activity_sweep_seconds: float = 5.0
    activity_max_events: int = 5000
    max_snapshots: int = 20
    capture_console: bool = True
    capture_network: bool = True
    flow_consequence_window_ms: float = 2000

    @classmethod
    def from_settings(cls, settings: Settings) -> "BrokerConfig":
        return cls(
            request_timeout=settings.REQUEST_TIMEOUT_SECONDS,
            max_console_entries=settings.MAX_CONSOLE_ENTRIES,
            max_network_entries=settings.MAX_NETWORK_ENTRIES,
            activity_window_seconds=settings.ACTIVITY_WINDOW_SECONDS,
            activity_sweep_seconds=settings.ACTIVITY_SWEEP_SECONDS,
            activity_max_events=settings.ACTIVITY_MAX_EVENTS,
            max_snapshots=settings.MAX_SNAPSHOTS,
            capture_console=settings.CAPTURE_CONSOLE,
            capture_network=settings.CAPTURE_NETWORK,
            flow_consequence_window_ms=settings.FLOW_CONSEQUENCE_WINDOW_MS,
        )


class ExtensionConnection:
    """One accepted extension WebSocket, as seen by the broker."""

    def __init__(
        self,
        connection_id: str,
        send: ExtensionSendCallback,
        connected_at: Optional[float] = None,
    ) -> None:
        self.connection_id = connection_id
        self.send = send
        self.connected_at = connected_at if connected_at is not None else time.time()
        self.last_pong: Optional[float] = None
        self.superseded = False


class PendingRequest:
    """A command sent to the extension that is waiting for its response."""

    def __init__(
        self,
        request_id: str,
        tool_name: str,
        command: Command,
        connection_id: str,
        future: "asyncio.Future[Any]",
        timeout: float,
        created_at: float,
    ) -> None:
        self.id = request_id
        self.tool_name = tool_name
        self.command = command
        self.connection_id = connection_id
        self.future = future
        self.timeout = timeout
        self.created_at = created_at


def build_flow_recording(
    events: List[FlowEvent],
    start_time: float,
    end_time: float,
    window_ms: float = 2000,
    final_selection: Optional[SelectionCapture] = None,
) -> FlowRecording:
    """
    Turn absolute-time events into a finished recording.

    Events are ordered by their self-reported time; ``sorted`` is stable, so
    events with equal times keep their arrival order. Times become offsets
    from ``start_time``.
    """
    ordered = sorted(events, key=lambda e: e.time)
    relative = [
        FlowEvent(time=e.time - start_time, type=e.type, data=dict(e.data)) for e in ordered
    ]
    last_time = ordered[-1].time if ordered else start_time
    return FlowRecording(
        start_time=start_time,
        duration=max(end_time, last_time) - start_time,
        events=relative,
        final_selection=final_selection,
        summary=summarize_flow(relative),
        diagnosis=diagnose_flow(relative, start_time=0, window_ms=window_ms),
    )


class FlowRecordingSession:
    """The single in-progress flow recording."""

    def __init__(self, start_time: float) -> None:
        self.start_time = start_time
        self.state = RecordingState.RECORDING
        self.events: List[FlowEvent] = []
        self.final_selection: Optional[SelectionCapture] = None

    def append(self, event: FlowEvent) -> None:
        self.events.append(event)

    def adopt(self, payload: Any) -> int:
        """
        Take events from the extension's stop response.

        Only used when nothing was streamed during the recording. The
        extension reports times relative to the start; they are shifted
        back to absolute so they sort with everything else.

        Returns:
            int: Number of events adopted
        """
        if not isinstance(payload, dict) or self.events:
            return 0
        try:
            reported = FlowRecording.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed stop response: {e.error_count()} error(s)")
            return 0
        for event in reported.events:
            self.events.append(
                FlowEvent(time=self.start_time + event.time, type=event.type, data=event.data)
            )
        if self.final_selection is None and reported.final_selection is not None:
            self.final_selection = reported.final_selection
        return len(reported.events)

    def finalize(self, end_time: float, window_ms: float) -> FlowRecording:
        self.state = RecordingState.FINALIZING
        recording = build_flow_recording(
            self.events,
            start_time=self.start_time,
            end_time=end_time,
            window_ms=window_ms,
            final_selection=self.final_selection,
        )
        self.state = RecordingState.COMPLETED
        return recording


# Inbox items: ("message", connection_id, data), ("opened", connection, None)
# or ("closed", connection_id, None)
_InboxItem = Tuple[str, Any, Any]


class SessionBroker:
    """
    Owns everything shared between tool calls and the extension.

    Features:
    - Single authoritative extension connection with supersession
    - Correlation of commands and responses (one future per request)
    - Flow recording state machine
    - Console, network and activity buffers plus the snapshot store
    - One inbound queue processed in arrival order by ``run()``
    """

    def __init__(self, config: Optional[BrokerConfig] = None, clock: Clock = time.time):
        self.config = config or BrokerConfig()
        self._clock = clock

        self.console = ConsoleBuffer(self.config.max_console_entries)
        self.network: RingBuffer[NetworkEntry] = RingBuffer(self.config.max_network_entries)
        self.activity = ActivityBuffer(
            max_age_seconds=self.config.activity_window_seconds,
            capacity=self.config.activity_max_events,
            clock=clock,
        )
        self.snapshots = SnapshotStore(self.config.max_snapshots)

        self.current_selection: Optional[SelectionCapture] = None
        self.selection_received_at: Optional[float] = None
        self.last_recording: Optional[FlowRecording] = None

        self._connection: Optional[ExtensionConnection] = None
        self._pending: Dict[str, PendingRequest] = {}
        self._request_counter = itertools.count(1)
        self._recording: Optional[FlowRecordingSession] = None

        self._inbox: "asyncio.Queue[_InboxItem]" = asyncio.Queue()
        self._consumer_task: Optional[asyncio.Task[None]] = None
        self._sweep_task: Optional[asyncio.Task[None]] = None

        self._handlers: Dict[str, Callable[[Any], None]] = {
            "SELECTION_RESPONSE": self._ignore_orphan_response,
            "DIAGNOSTICS_RESPONSE": self._ignore_orphan_response,
            "RECORDING_RESPONSE": self._ignore_orphan_response,
            "SNAPSHOT_RESPONSE": self._ignore_orphan_response,
            "RECENT_ACTIVITY_RESPONSE": self._ignore_orphan_response,
            "PONG": self._handle_pong,
            "ELEMENT_SELECTED": self._handle_element_selected,
            "REGION_SELECTED": self._handle_region_selected,
            "CONSOLE_EVENT": self._handle_console_event,
            "NETWORK_EVENT": self._handle_network_event,
            "FLOW_EVENT": self._handle_flow_event,
            "RECORDING_STARTED": self._handle_recording_started,
            "RECORDING_STOPPED": self._handle_recording_stopped,
            "BUFFER_RECORDING": self._handle_buffer_recording,
        }
        missing = INBOUND_TYPES - self._handlers.keys()
        unknown = self._handlers.keys() - INBOUND_TYPES
        if missing or unknown:
            raise RuntimeError(
                f"Inbound handler table out of sync: missing={sorted(missing)}, "
                f"unknown={sorted(unknown)}"
            )

    # ------------------------------------------------------------------
    # Read accessors

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def connection(self) -> Optional[ExtensionConnection]:
        return self._connection

    @property
    def is_recording(self) -> bool:
        return self._recording is not None

    @property
    def recording_state(self) -> RecordingState:
        if self._recording is None:
            return RecordingState.IDLE
        return self._recording.state

    @property
    def recording_start_time(self) -> Optional[float]:
        return self._recording.start_time if self._recording else None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def now_ms(self) -> float:
        return self._clock() * 1000

    def health(self) -> HealthDict:
        return {
            "status": "healthy",
            "service": "clueprint",
            "extension_connected": self.is_connected,
            "recording": self.recording_state.value,
            "pending_requests": self.pending_count,
            "snapshots": len(self.snapshots),
        }

    # ------------------------------------------------------------------
    # Tool calls

    async def submit_tool_call(
        self,
        tool_name: str,
        command: Union[Command, str],
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Send a command to the extension and wait for its response.

        Args:
            tool_name: Tool on whose behalf the command is sent (for logs)
            command: Extension command
            payload: Optional command payload
            timeout: Seconds to wait; defaults to the configured request timeout

        Returns:
            The response payload

        Raises:
            NoExtensionConnectedError: No authoritative connection
            ConnectionLostError: Send failed or the connection closed first
            ConnectionSupersededError: A newer connection took over first
            RequestTimeoutError: No response in time
            ExtensionRequestError: The extension answered with an error
        """
        connection = self._connection
        if connection is None:
            raise NoExtensionConnectedError()

        command = Command(command)
        timeout = self.config.request_timeout if timeout is None else timeout
        request_id = f"req_{next(self._request_counter)}_{int(self.now_ms())}"
        future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self._pending[request_id] = PendingRequest(
            request_id=request_id,
            tool_name=tool_name,
            command=command,
            connection_id=connection.connection_id,
            future=future,
            timeout=timeout,
            created_at=self._clock(),
        )

        message: CommandMessageDict = {"type": command.value, "id": request_id}
        if payload is not None:
            message["payload"] = payload

        logger.debug(f"[{tool_name}] -> {command.value} ({request_id})")
        try:
            try:
                await connection.send(message)
            except Exception as e:
                logger.warning(f"Failed to send {command.value} to {connection.connection_id}: {e}")
                raise ConnectionLostError(request_id) from e

            try:
                return await asyncio.wait_for(future, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"[{tool_name}] {command.value} timed out after {timeout:g}s ({request_id})")
                raise RequestTimeoutError(command.value, timeout) from None
        finally:
            self._pending.pop(request_id, None)

    def cancel_all_pending(self) -> int:
        """
        Cancel every pending request (assistant went away).

        Returns:
            int: Number of requests cancelled
        """
        pending = list(self._pending.values())
        self._pending.clear()
        for request in pending:
            if not request.future.done():
                request.future.cancel()
        if pending:
            logger.info(f"Cancelled {len(pending)} pending request(s)")
        return len(pending)

    def _fail_pending(self, connection_id: str, error: Callable[[str], BrokerError]) -> int:
        failed = [r for r in self._pending.values() if r.connection_id == connection_id]
        for request in failed:
            del self._pending[request.id]
            if not request.future.done():
                request.future.set_exception(error(request.id))
        return len(failed)

    def _resolve_response(self, connection_id: str, message: ExtensionMessage) -> None:
        request = self._pending.get(message.id)
        if request is None:
            logger.warning(f"Dropping {message.type} for unknown request {message.id}")
            return
        if request.connection_id != connection_id:
            logger.warning(
                f"Dropping {message.type} for {message.id}: sent on "
                f"{request.connection_id}, answered on {connection_id}"
            )
            return

        del self._pending[message.id]
        if request.future.done():
            return
        if message.error:
            request.future.set_exception(ExtensionRequestError(message.error))
        else:
            request.future.set_result(message.payload)
        logger.debug(
            f"[{request.tool_name}] <- {message.type} ({message.id}, "
            f"{(self._clock() - request.created_at) * 1000:.0f}ms)"
        )

    # ------------------------------------------------------------------
    # Connection lifecycle

    def on_connection_opened(self, connection: ExtensionConnection) -> None:
        """Install ``connection`` as authoritative, superseding any previous one."""
        previous = self._connection
        if previous is not None and previous.connection_id != connection.connection_id:
            previous.superseded = True
            failed = self._fail_pending(previous.connection_id, ConnectionSupersededError)
            logger.info(
                f"Extension connection {previous.connection_id} superseded by "
                f"{connection.connection_id} ({failed} pending request(s) failed)"
            )
        self._connection = connection
        logger.info(f"Extension connected: {connection.connection_id}")

    def on_connection_closed(self, connection_id: str) -> None:
        """Forget the authoritative connection; closing a superseded one is a no-op."""
        if self._connection is None or self._connection.connection_id != connection_id:
            logger.debug(f"Ignoring close of non-authoritative connection {connection_id}")
            return
        failed = self._fail_pending(connection_id, ConnectionLostError)
        self._connection = None
        logger.info(f"Extension disconnected: {connection_id} ({failed} pending request(s) failed)")

    def is_authoritative(self, connection_id: str) -> bool:
        return self._connection is not None and self._connection.connection_id == connection_id

    # ------------------------------------------------------------------
    # Inbound messages

    def on_extension_message(self, connection_id: str, data: Any) -> None:
        """
        Validate and route one decoded message from the extension.

        Messages with an id are responses and resolve their pending request;
        everything else is an event dispatched by type.
        """
        try:
            message = parse_inbound(data)
        except ValidationError as e:
            msg_type = data.get("type") if isinstance(data, dict) else type(data).__name__
            logger.warning(
                f"Dropping invalid message from {connection_id} (type={msg_type}): "
                f"{e.error_count()} validation error(s)"
            )
            return

        if message.id is not None:
            self._resolve_response(connection_id, message)
            return

        if not self.is_authoritative(connection_id):
            logger.debug(f"Dropping {message.type} from non-authoritative connection {connection_id}")
            return

        self._handlers[message.type](message)

    def _ignore_orphan_response(self, message: ExtensionMessage) -> None:
        logger.debug(f"Ignoring {message.type} without request id")

    def _handle_pong(self, message: Pong) -> None:
        if self._connection is not None:
            self._connection.last_pong = self._clock()

    def _record_activity(self, event: FlowEvent) -> None:
        self.activity.push(event)
        if self._recording is not None:
            self._recording.append(event)

    def _handle_element_selected(self, message: ElementSelected) -> None:
        capture = message.payload
        self.current_selection = capture
        self.selection_received_at = self._clock()
        logger.info(f"Element selected: {capture.element.selector}")

        self._record_activity(
            FlowEvent(
                time=capture.timestamp or self.now_ms(),
                type="element_select",
                data={"selector": capture.element.selector, "tag": capture.element.tag},
            )
        )
        if self._recording is not None:
            self._recording.final_selection = capture

    def _handle_region_selected(self, message: RegionSelected) -> None:
        capture = message.payload
        self.current_selection = capture
        self.selection_received_at = self._clock()
        logger.info(
            f"Region selected: {capture.region.width:g}x{capture.region.height:g} "
            f"({len(capture.elements)} elements)"
        )
        if self._recording is not None:
            self._recording.final_selection = capture

    def _handle_console_event(self, message: ConsoleEvent) -> None:
        if not self.config.capture_console:
            return
        entry: ConsoleEntry = message.payload
        if not entry.timestamp:
            entry.timestamp = self.now_ms()
        self.console.push(entry)
        self._record_activity(
            FlowEvent(
                time=entry.timestamp,
                type=_CONSOLE_FLOW_TYPES.get(entry.type, "console_log"),
                data={"message": entry.message, "source": entry.source},
            )
        )

    def _handle_network_event(self, message: NetworkEvent) -> None:
        if not self.config.capture_network:
            return
        entry: NetworkEntry = message.payload
        if not entry.timestamp:
            entry.timestamp = self.now_ms()
        self.network.push(entry)
        self._record_activity(
            FlowEvent(
                time=entry.timestamp,
                type="network_error" if entry.failed else "network_response",
                data={
                    "url": entry.url,
                    "method": entry.method,
                    "status": entry.status,
                    "statusText": entry.status_text,
                    "duration": entry.duration,
                },
            )
        )

    def _handle_flow_event(self, message: FlowEventMessage) -> None:
        self._record_activity(message.payload)

    def _handle_recording_started(self, message: RecordingStarted) -> None:
        if self._recording is not None:
            logger.debug("Extension reported recording start; already recording")
            return
        self.start_recording()
        logger.info("Recording started from the extension")

    def _handle_recording_stopped(self, message: RecordingStopped) -> None:
        if self._recording is not None:
            recording = self.stop_recording(extension_payload=message.payload)
            logger.info(f"Recording stopped from the extension: {recording.summary.total_events} events")
            return
        recording = self._parse_recording(message.payload)
        if recording is not None:
            self.last_recording = recording
            logger.info(f"Recording received from the extension: {recording.summary.total_events} events")

    def _handle_buffer_recording(self, message: BufferRecording) -> None:
        recording = self._parse_recording(message.payload)
        if recording is not None:
            self.last_recording = recording
            logger.info(f"Buffer recording received: {recording.summary.total_events} events")

    def _parse_recording(self, payload: Any) -> Optional[FlowRecording]:
        if payload is None:
            return None
        try:
            return FlowRecording.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed recording payload: {e.error_count()} error(s)")
            return None

    # ------------------------------------------------------------------
    # Flow recording

    def start_recording(self) -> float:
        """
        Begin a flow recording.

        Returns:
            float: Start time in epoch milliseconds

        Raises:
            RecordingAlreadyActiveError: A recording is already in progress
        """
        if self._recording is not None:
            raise RecordingAlreadyActiveError()
        self._recording = FlowRecordingSession(start_time=self.now_ms())
        logger.info("Flow recording started")
        return self._recording.start_time

    def stop_recording(self, extension_payload: Any = None) -> FlowRecording:
        """
        Finish the active recording and keep it as the last recording.

        Args:
            extension_payload: The extension's own recording, adopted only
                if no events were streamed

        Raises:
            NoActiveRecordingError: Nothing is being recorded
        """
        session = self._recording
        if session is None:
            raise NoActiveRecordingError()

        adopted = session.adopt(extension_payload)
        if adopted:
            logger.info(f"Adopted {adopted} event(s) from the extension's stop response")

        recording = session.finalize(
            end_time=self.now_ms(), window_ms=self.config.flow_consequence_window_ms
        )
        self._recording = None
        self.last_recording = recording
        logger.info(
            f"Flow recording completed: {recording.summary.total_events} events, "
            f"{recording.duration / 1000:.1f}s"
        )
        return recording

    def abort_recording(self) -> bool:
        """Discard the active recording without producing a result."""
        if self._recording is None:
            return False
        self._recording = None
        logger.info("Flow recording aborted")
        return True

    def recent_activity(self) -> Optional[FlowRecording]:
        """The activity window as a recording, or None if nothing happened."""
        self.activity.sweep()
        events = self.activity.items()
        if not events:
            return None
        now = self.now_ms()
        start = min(e.time for e in events)
        return build_flow_recording(
            events,
            start_time=start,
            end_time=now,
            window_ms=self.config.flow_consequence_window_ms,
        )

    # ------------------------------------------------------------------
    # Snapshots

    def store_snapshot(self, payload: Any) -> DomSnapshot:
        """
        Validate a snapshot from the extension and store it.

        Raises:
            pydantic.ValidationError: The payload is not a snapshot
        """
        snapshot = DomSnapshot.model_validate(payload)
        snapshot_id = self.snapshots.store(snapshot)
        return self.snapshots.require(snapshot_id)

    # ------------------------------------------------------------------
    # Inbox and background tasks

    def post_message(self, connection_id: str, data: Any) -> None:
        self._inbox.put_nowait(("message", connection_id, data))

    def post_connection_opened(self, connection: ExtensionConnection) -> None:
        self._inbox.put_nowait(("opened", connection, None))

    def post_connection_closed(self, connection_id: str) -> None:
        self._inbox.put_nowait(("closed", connection_id, None))

    def process(self, item: _InboxItem) -> None:
        kind, first, second = item
        if kind == "message":
            self.on_extension_message(first, second)
        elif kind == "opened":
            self.on_connection_opened(first)
        elif kind == "closed":
            self.on_connection_closed(first)
        else:
            logger.error(f"Unknown inbox item kind: {kind}")

    def drain(self) -> int:
        """Process everything currently queued (used by tests and shutdown)."""
        processed = 0
        while not self._inbox.empty():
            self.process(self._inbox.get_nowait())
            processed += 1
        return processed

    async def run(self) -> None:
        """Consume the inbox forever, one item at a time, in arrival order."""
        while True:
            item = await self._inbox.get()
            try:
                self.process(item)
            except Exception as e:
                logger.error(f"Error processing inbound {item[0]}: {e}", exc_info=True)

    @property
    def running(self) -> bool:
        return self._consumer_task is not None

    def start(self) -> None:
        """Start the inbox consumer and the activity sweeper."""
        if self._consumer_task is None:
            self._consumer_task = asyncio.create_task(self.run())
            logger.debug("Broker consumer task started")
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.debug("Activity sweep task started")

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.config.activity_sweep_seconds)
                removed = self.activity.sweep()
                if removed:
                    logger.debug(f"Swept {removed} expired activity event(s)")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in activity sweep: {e}", exc_info=True)

    async def shutdown(self) -> None:
        """Cancel pending requests and background tasks."""
        self.cancel_all_pending()
        for task in (self._consumer_task, self._sweep_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._consumer_task = None
        self._sweep_task = None
        logger.info("Broker stopped")
