"""Models for captured UI context from browser extension."""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for payloads exchanged with the extension (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Size(WireModel):
    """Element size in CSS pixels."""

    width: float = 0
    height: float = 0


class ElementRect(WireModel):
    """Element bounding box."""

    width: float = 0
    height: float = 0
    top: float = 0
    left: float = 0


class ElementStyles(WireModel):
    """Computed styles grouped the way the capture script groups them."""

    layout: Dict[str, str] = Field(default_factory=dict)
    size: Dict[str, str] = Field(default_factory=dict)
    spacing: Dict[str, str] = Field(default_factory=dict)
    visual: Dict[str, str] = Field(default_factory=dict)
    text: Optional[Dict[str, str]] = None


class CapturedElement(WireModel):
    """Represents a captured DOM element."""

    selector: str = Field(..., description="Unique CSS selector")
    tag: str = Field("", description="HTML tag name (e.g., 'button', 'div')")
    id: Optional[str] = Field(None, description="Element ID attribute")
    classes: List[str] = Field(default_factory=list, description="CSS class names")
    text: str = Field("", description="Element text content")
    attributes: Dict[str, str] = Field(
        default_factory=dict, description="Element attributes"
    )
    rect: ElementRect = Field(default_factory=ElementRect)
    styles: ElementStyles = Field(default_factory=ElementStyles)


class ParentInfo(WireModel):
    selector: str = ""
    tag: str = ""
    styles: Dict[str, str] = Field(default_factory=dict)


class SiblingInfo(WireModel):
    selector: str
    size: Size = Field(default_factory=Size)
    classes: List[str] = Field(default_factory=list)
    is_selected: bool = False
    anomaly: Optional[str] = None


class CssRule(WireModel):
    source: str = ""
    selector: str = ""
    properties: Dict[str, str] = Field(default_factory=dict)
    is_overriding: bool = False


class ConsoleEntry(WireModel):
    """A console message seen by the page instrumentation."""

    type: Literal["log", "info", "debug", "warn", "error"] = "log"
    message: str
    stack: Optional[str] = None
    source: Optional[str] = None
    timestamp: float = Field(0, description="Epoch milliseconds")
    count: int = 1


class NetworkEntry(WireModel):
    """A network request seen by the page instrumentation."""

    url: str
    method: str = "GET"
    status: Optional[int] = None
    status_text: Optional[str] = None
    duration: Optional[float] = None
    transfer_size: Optional[int] = None
    initiator_type: Optional[str] = None
    initiator: Optional[str] = None
    response_body: Optional[str] = None
    timestamp: float = Field(0, description="Epoch milliseconds")

    @property
    def failed(self) -> bool:
        """Status 0 (blocked/aborted) or any 4xx/5xx."""
        return self.status is not None and (self.status == 0 or self.status >= 400)


class LayoutShiftSource(WireModel):
    selector: str


class LayoutShift(WireModel):
    value: float = 0
    sources: List[LayoutShiftSource] = Field(default_factory=list)
    timestamp: Optional[float] = None


class BrowserContext(WireModel):
    """Errors, failures and shifts buffered in the page at capture time."""

    errors: List[ConsoleEntry] = Field(default_factory=list)
    network_failures: List[NetworkEntry] = Field(default_factory=list)
    layout_shifts: List[LayoutShift] = Field(default_factory=list)


class Diagnosis(WireModel):
    """Pre-diagnosis attached to a single capture."""

    suspected: List[str] = Field(default_factory=list)
    unusual: List[str] = Field(default_factory=list)
    related_errors: List[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.suspected or self.unusual or self.related_errors)


class SourceInfo(WireModel):
    """Framework component the element was rendered by (dev builds only)."""

    framework: str = ""
    component: str = ""
    file: Optional[str] = None
    line: Optional[int] = None


class InspectCapture(WireModel):
    """Single element captured via Option+Click."""

    mode: Literal["inspect"] = "inspect"
    intent: str = "other"
    timestamp: float = Field(0, description="Epoch milliseconds")
    user_instruction: Optional[str] = None
    element: CapturedElement
    parent: ParentInfo = Field(default_factory=ParentInfo)
    siblings: List[SiblingInfo] = Field(default_factory=list)
    css_rules: List[CssRule] = Field(default_factory=list)
    browser_context: BrowserContext = Field(default_factory=BrowserContext)
    source_info: Optional[SourceInfo] = None
    diagnosis: Diagnosis = Field(default_factory=Diagnosis)
    screenshot: Optional[str] = None


class RegionElement(WireModel):
    selector: str = ""
    tag: str = ""
    text: str = ""
    role: str = ""
    styles: Dict[str, Any] = Field(default_factory=dict)
    has_interaction_states: bool = False


class AestheticAnalysis(WireModel):
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    color_palette: List[str] = Field(default_factory=list)


class FreeSelectCapture(WireModel):
    """Screen region captured via Cmd+Shift+Drag."""

    mode: Literal["free-select"] = "free-select"
    intent: str = "other"
    user_note: Optional[str] = None
    timestamp: float = Field(0, description="Epoch milliseconds")
    region: ElementRect = Field(default_factory=ElementRect)
    screenshot: Optional[str] = None
    elements: List[RegionElement] = Field(default_factory=list)
    structure: str = ""
    aesthetic_analysis: Optional[AestheticAnalysis] = None
    browser_context: BrowserContext = Field(default_factory=BrowserContext)


# Either kind of user selection, told apart by its "mode" tag
Selection = Annotated[Union[InspectCapture, FreeSelectCapture], Field(discriminator="mode")]


class ErrorSummary(WireModel):
    message: str
    source: str = "unknown"
    count: int = 1


class NetworkFailure(WireModel):
    url: str
    method: str = "GET"
    status: int = 0
    status_text: str = "Unknown"


class LargestContentfulPaint(WireModel):
    value: float
    element: str = ""


class ShiftSummary(WireModel):
    element: str = ""
    delta: float = 0


class CumulativeLayoutShift(WireModel):
    value: float = 0
    shifts: List[ShiftSummary] = Field(default_factory=list)


class LongTask(WireModel):
    duration: float
    start_time: float = 0


class PerformanceSummary(WireModel):
    lcp: Optional[LargestContentfulPaint] = None
    cls: CumulativeLayoutShift = Field(default_factory=CumulativeLayoutShift)
    long_tasks: List[LongTask] = Field(default_factory=list)


class AccessibilitySummary(WireModel):
    missing_alt_text: int = 0
    low_contrast: int = 0
    missing_labels: int = 0


class PageDiagnostics(WireModel):
    """Whole-page health report returned for the audit tool."""

    mode: Literal["diagnostics"] = "diagnostics"
    url: str = ""
    timestamp: float = 0
    errors: List[ErrorSummary] = Field(default_factory=list)
    network_failures: List[NetworkFailure] = Field(default_factory=list)
    performance: PerformanceSummary = Field(default_factory=PerformanceSummary)
    accessibility: AccessibilitySummary = Field(default_factory=AccessibilitySummary)
    warnings: List[str] = Field(default_factory=list)
