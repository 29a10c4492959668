"""Message and content part data models."""

import json
from typing import Annotated, Any, Literal

from cuid2 import cuid_wrapper
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

cuid = cuid_wrapper()

MessageRole = Literal["user", "assistant", "tool"]


class _Part(BaseModel):
    """Shared config: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class TextPart(_Part):
    """Narrative text emitted by the model."""

    type: Literal["text"] = "text"
    text: str


class ReasoningPart(_Part):
    """Model reasoning, kept alongside text."""

    type: Literal["reasoning"] = "reasoning"
    text: str


class ToolCallPart(_Part):
    """The model requesting a tool."""

    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultOutput(_Part):
    """Outcome payload of a tool call."""

    type: Literal["text", "json"] = "text"
    value: Any = None

    @classmethod
    def from_value(cls, value: Any) -> "ToolResultOutput":
        """Wrap a raw tool return value, strings as text and everything else as json."""
        if isinstance(value, str):
            return cls(type="text", value=value)
        return cls(type="json", value=value)

    def as_text(self) -> str:
        """Render the payload as text."""
        if self.type == "text":
            return "" if self.value is None else str(self.value)
        return json.dumps(self.value)


class ToolResultPart(_Part):
    """Outcome of a previously issued tool call."""

    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    output: ToolResultOutput


ContentPart = Annotated[
    TextPart | ReasoningPart | ToolCallPart | ToolResultPart,
    Field(discriminator="type"),
]


class PromptContext(_Part):
    """Links messages and tool updates to the prompt that produced them."""

    id: str


class Message(_Part):
    """One conversational turn or tool record."""

    id: str = Field(default_factory=cuid)
    role: MessageRole
    content: str | list[ContentPart]
    prompt_context: PromptContext | None = None

    def parts(self) -> list[ContentPart]:
        """Content as a list of parts; plain string content yields no parts."""
        return self.content if isinstance(self.content, list) else []

    def tool_calls(self) -> list[ToolCallPart]:
        """Tool call parts of this message, in order."""
        return [part for part in self.parts() if isinstance(part, ToolCallPart)]

    def tool_results(self) -> list[ToolResultPart]:
        """Tool result parts of this message, in order."""
        return [part for part in self.parts() if isinstance(part, ToolResultPart)]

    def text_content(self) -> str:
        """Concatenated text of the message, ignoring reasoning and tool parts."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(part.text for part in self.content if isinstance(part, TextPart))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted camelCase shape."""
        return self.model_dump(by_alias=True, exclude_none=True)


def is_empty_content(content: str | list[ContentPart]) -> bool:
    """Check whether message content carries nothing worth storing."""
    if isinstance(content, str):
        return not content.strip()
    for part in content:
        if isinstance(part, (TextPart, ReasoningPart)):
            if part.text.strip():
                return False
        else:
            return False
    return True
