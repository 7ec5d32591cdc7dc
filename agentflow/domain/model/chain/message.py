"""Message chain domain model.

A chain is the ordered conversation state exchanged with the model. Each
message has a role and an ordered list of parts; a part is one of the
variants of the ``MessagePart`` union and is matched on by type, never by
duck-typing.

Chains are persisted as JSON blobs, so every part knows how to serialize
itself and the module exposes ``chain_to_json`` / ``chain_from_json``.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agentflow.domain.exceptions import ChainSerializationError


class ChatMessageRole(str, Enum):
    """Role of a message in the chain."""

    SYSTEM = "system"
    HUMAN = "human"
    AI = "ai"
    TOOL = "tool"


class PartType(str, Enum):
    """Discriminator of message part variants."""

    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_CALL_RESPONSE = "tool_call_response"
    REASONING = "reasoning"


@dataclass
class TextPart:
    """Plain text content."""

    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": PartType.TEXT.value, "text": self.text}


@dataclass
class ToolCall:
    """A function call requested by the model."""

    id: str
    name: str
    arguments: str = "{}"
    type: str = "function"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": PartType.TOOL_CALL.value,
            "id": self.id,
            "call_type": self.type,
            "name": self.name,
            "arguments": self.arguments,
        }


@dataclass
class ToolCallResponse:
    """The result of a tool call, carried by a tool message."""

    tool_call_id: str
    name: str
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": PartType.TOOL_CALL_RESPONSE.value,
            "tool_call_id": self.tool_call_id,
            "name": self.name,
            "content": self.content,
        }


@dataclass
class ReasoningPart:
    """Reasoning content returned by thinking models."""

    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": PartType.REASONING.value, "content": self.content}


MessagePart = TextPart | ToolCall | ToolCallResponse | ReasoningPart


def part_from_dict(data: dict[str, Any]) -> MessagePart:
    """Build a message part from its serialized form."""
    if not isinstance(data, dict):
        raise ValueError(f"expected a message part object, got {type(data).__name__}")
    part_type = data.get("type")
    if part_type == PartType.TEXT.value:
        return TextPart(text=data.get("text", ""))
    if part_type == PartType.TOOL_CALL.value:
        return ToolCall(
            id=data.get("id", ""),
            name=data.get("name", ""),
            arguments=data.get("arguments", "{}"),
            type=data.get("call_type", "function"),
        )
    if part_type == PartType.TOOL_CALL_RESPONSE.value:
        return ToolCallResponse(
            tool_call_id=data.get("tool_call_id", ""),
            name=data.get("name", ""),
            content=data.get("content", ""),
        )
    if part_type == PartType.REASONING.value:
        return ReasoningPart(content=data.get("content", ""))
    raise ValueError(f"unknown message part type: {part_type!r}")


@dataclass
class Message:
    """One turn in a chain."""

    role: ChatMessageRole
    parts: list[MessagePart] = field(default_factory=list)

    @classmethod
    def text(cls, role: ChatMessageRole, *texts: str) -> "Message":
        """Create a message made of text parts."""
        return cls(role=role, parts=[TextPart(text=t) for t in texts])

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls.text(ChatMessageRole.SYSTEM, text)

    @classmethod
    def human(cls, text: str) -> "Message":
        return cls.text(ChatMessageRole.HUMAN, text)

    @classmethod
    def ai(cls, text: str) -> "Message":
        return cls.text(ChatMessageRole.AI, text)

    @classmethod
    def tool_response(cls, tool_call_id: str, name: str, content: str) -> "Message":
        return cls(
            role=ChatMessageRole.TOOL,
            parts=[ToolCallResponse(tool_call_id=tool_call_id, name=name, content=content)],
        )

    def tool_calls(self) -> list[ToolCall]:
        """Return the tool calls carried by this message, in order."""
        return [part for part in self.parts if isinstance(part, ToolCall)]

    def tool_responses(self) -> list[ToolCallResponse]:
        """Return the tool call responses carried by this message, in order."""
        return [part for part in self.parts if isinstance(part, ToolCallResponse)]

    def text_content(self, separator: str = "\n") -> str:
        """Join the text parts of the message."""
        return separator.join(part.text for part in self.parts if isinstance(part, TextPart))

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "parts": [part.to_dict() for part in self.parts],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        if not isinstance(data, dict):
            raise ValueError(f"expected a message object, got {type(data).__name__}")
        return cls(
            role=ChatMessageRole(data["role"]),
            parts=[part_from_dict(part) for part in data.get("parts") or []],
        )


def chain_to_json(chain: list[Message]) -> str:
    """Serialize a chain into its persisted JSON form."""
    try:
        return json.dumps([msg.to_dict() for msg in chain], ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ChainSerializationError(f"failed to marshal msg chain: {e}", cause=e) from e


def chain_from_json(blob: str | bytes | None) -> list[Message]:
    """Deserialize a persisted chain.

    Raises:
        ChainSerializationError: If the blob is not a valid chain
    """
    if blob is None or blob == "" or blob == b"":
        return []
    try:
        raw = json.loads(blob)
        if not isinstance(raw, list):
            raise ValueError(f"expected a list of messages, got {type(raw).__name__}")
        return [Message.from_dict(item) for item in raw]
    except (TypeError, ValueError, KeyError) as e:
        raise ChainSerializationError(f"failed to unmarshal msg chain: {e}", cause=e) from e


def is_empty_chain(blob: str | bytes | None) -> bool:
    """Return True if the blob is empty or can not be decoded."""
    try:
        return len(chain_from_json(blob)) == 0
    except ChainSerializationError:
        return True


def clone_chain(chain: list[Message]) -> list[Message]:
    """Deep copy a chain through its serialized form."""
    return [Message.from_dict(msg.to_dict()) for msg in chain]
