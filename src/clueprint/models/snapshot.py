"""DOM snapshot and diff models."""

from types import MappingProxyType
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from pydantic import ConfigDict, Field, field_serializer, field_validator

from .context import Size, WireModel


class ElementSnapshot(WireModel):
    """State of one element at snapshot time."""

    model_config = ConfigDict(frozen=True)

    selector: str
    classes: Tuple[str, ...] = ()
    size: Size = Field(default_factory=Size)
    inline_styles: str = ""


class DomSnapshot(WireModel):
    """Immutable DOM snapshot keyed by selector."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    timestamp: float = 0
    url: str = ""
    selector: Optional[str] = Field(None, description="Root selector of a subtree snapshot")
    # Read-only view; frozen alone would still allow item assignment
    elements: Mapping[str, ElementSnapshot] = Field(default_factory=dict, validate_default=True)

    @field_validator("elements", mode="before")
    @classmethod
    def _normalize_elements(cls, value: Any) -> Any:
        """
        Accept the shapes the extension may send.

        A JS Map arrives either as a list of [selector, element] pairs or
        as a plain list of elements; objects may omit the selector key.
        """
        if value is None:
            return {}
        if isinstance(value, dict):
            return {
                selector: {"selector": selector, **element}
                if isinstance(element, dict) and "selector" not in element
                else element
                for selector, element in value.items()
            }
        if isinstance(value, list):
            normalized: Dict[str, Any] = {}
            for item in value:
                if isinstance(item, (list, tuple)) and len(item) == 2:
                    selector, element = item
                    if isinstance(element, dict) and "selector" not in element:
                        element = {"selector": selector, **element}
                    normalized[selector] = element
                elif isinstance(item, dict) and "selector" in item:
                    normalized[item["selector"]] = item
            return normalized
        return value

    @field_validator("elements")
    @classmethod
    def _freeze_elements(cls, value: Mapping[str, ElementSnapshot]) -> Mapping[str, ElementSnapshot]:
        return MappingProxyType(dict(value))

    @field_serializer("elements", mode="wrap")
    def _serialize_elements(self, value: Mapping[str, ElementSnapshot], handler):
        return handler(dict(value))


class ClassChange(WireModel):
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)


class SizeChange(WireModel):
    before: Size
    after: Size


class StyleChange(WireModel):
    property: str
    before: Optional[str] = None
    after: Optional[str] = None


class ElementChanges(WireModel):
    classes: Optional[ClassChange] = None
    size: Optional[SizeChange] = None
    styles: Optional[List[StyleChange]] = None


class ElementChange(WireModel):
    selector: str
    type: Literal["added", "removed", "changed"]
    changes: Optional[ElementChanges] = None


class DiffResult(WireModel):
    """Sparse diff between two snapshots; derived, never stored."""

    before: str
    after: str
    changes: List[ElementChange] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.changes
