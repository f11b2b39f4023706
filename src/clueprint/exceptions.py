"""Custom exception classes for Clueprint."""


class ClueprintError(Exception):
    """Base exception for Clueprint errors."""

    def __init__(self, message: str, code: str = "internal", detail: str = ""):
        self.message = message
        self.code = code
        self.detail = detail
        super().__init__(message)


class BrokerError(ClueprintError):
    """Errors related to the extension connection and pending requests."""

    pass


class NoExtensionConnectedError(BrokerError):
    """No browser extension is connected."""

    def __init__(self):
        super().__init__(
            "Browser extension not connected. Please ensure:\n"
            "1. The Clueprint extension is installed in Chrome\n"
            "2. The extension popup shows \"MCP: Connected\"\n"
            "3. Refresh the page if just installed",
            code="no_extension",
        )


class ConnectionLostError(BrokerError):
    """The extension disconnected before answering."""

    def __init__(self, request_id: str = ""):
        super().__init__(
            "Extension connection lost before a response arrived. "
            "Try reloading the extension or refreshing the page, then retry.",
            code="connection_lost",
            detail=request_id,
        )


class ConnectionSupersededError(BrokerError):
    """A newer extension connection replaced the one serving the request."""

    def __init__(self, request_id: str = ""):
        super().__init__(
            "Extension reconnected while the request was in flight "
            "(page reload or navigation). Retry the request.",
            code="connection_superseded",
            detail=request_id,
        )


class RequestTimeoutError(BrokerError):
    """The extension did not answer in time."""

    def __init__(self, command: str, timeout: float):
        super().__init__(
            f"Request timed out: {command} (no response within {timeout:g}s)",
            code="timeout",
        )


class ExtensionRequestError(BrokerError):
    """The extension answered with an error."""

    def __init__(self, message: str):
        super().__init__(f"Extension reported an error: {message}", code="extension_error")


class RecordingError(ClueprintError):
    """Errors related to flow recording."""

    pass


class RecordingAlreadyActiveError(RecordingError):
    """A recording is already in progress."""

    def __init__(self):
        super().__init__(
            "Recording is already in progress. Stop it first with stop_flow_recording.",
            code="recording_active",
        )


class NoActiveRecordingError(RecordingError):
    """No recording is in progress."""

    def __init__(self):
        super().__init__(
            "No recording in progress. Start one with start_flow_recording.",
            code="no_recording",
        )


class SnapshotError(ClueprintError):
    """Errors related to DOM snapshots."""

    pass


class SnapshotNotFoundError(SnapshotError):
    """Snapshot not found."""

    def __init__(self, snapshot_id: str):
        super().__init__(f"Snapshot not found: {snapshot_id}", code="snapshot_not_found")


class ToolError(ClueprintError):
    """Errors related to tool call arguments or state."""

    pass


class InvalidToolParamsError(ToolError):
    """Tool arguments are missing or malformed."""

    def __init__(self, message: str):
        super().__init__(message, code="invalid_params")


class NothingSelectedError(ToolError):
    """The user has not selected anything in the browser."""

    def __init__(self):
        super().__init__(
            "Nothing selected. To select:\n"
            "1. Hold Option (Alt on Windows) and click any element, or\n"
            "2. Use Cmd+Shift+Drag to select a region\n"
            "3. Then say \"clueprint inspect\"",
            code="nothing_selected",
        )


class ConnectionRejectedError(ClueprintError):
    """Errors related to accepting WebSocket connections."""

    pass


class InvalidOriginError(ConnectionRejectedError):
    """Invalid WebSocket origin."""

    def __init__(self, origin: str):
        super().__init__(
            f"Invalid origin: {origin}. Only chrome-extension:// allowed.",
            code="invalid_origin",
        )
