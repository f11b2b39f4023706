"""Tool response models returned to the assistant."""

import re
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

_DATA_URL_PREFIX = re.compile(r"^data:image/[a-z]+;base64,")


class ToolContent(BaseModel):
    """One content block of a tool response."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["text", "image"]
    text: Optional[str] = None
    data: Optional[str] = Field(None, description="Base64 image data")
    mime_type: Optional[str] = Field(None, alias="mimeType")


class ToolResponse(BaseModel):
    """Structured answer to a tool call."""

    model_config = ConfigDict(populate_by_name=True)

    content: List[ToolContent] = Field(default_factory=list)
    is_error: bool = Field(False, alias="isError")

    @property
    def text(self) -> str:
        """All text blocks joined, for logging and tests."""
        return "\n".join(c.text for c in self.content if c.type == "text" and c.text)

    @classmethod
    def from_text(cls, text: str, screenshot: Optional[str] = None) -> "ToolResponse":
        """
        Create a text response, optionally with a screenshot attached.

        Args:
            text: Report text
            screenshot: Base64 JPEG, with or without a data URL prefix
        """
        content = [ToolContent(type="text", text=text)]
        if screenshot:
            content.append(
                ToolContent(
                    type="image",
                    data=_DATA_URL_PREFIX.sub("", screenshot),
                    mime_type="image/jpeg",
                )
            )
        return cls(content=content)

    @classmethod
    def error(cls, message: str) -> "ToolResponse":
        """Create an error response."""
        return cls(content=[ToolContent(type="text", text=f"Error: {message}")], is_error=True)
