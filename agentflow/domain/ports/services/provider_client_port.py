"""Provider Client Port - interface of the LLM adapter the engine calls.

Adapters for concrete vendors live outside of this package; they translate
the chain and tool definitions into their wire format and back.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from agentflow.domain.model.chain.message import Message, ToolCall
from agentflow.domain.ports.services.tools_executor_port import ToolDefinition


class ProviderOptionsType(str, Enum):
    """Option sets a provider keeps per agent role."""

    PRIMARY_AGENT = "primary_agent"
    ASSISTANT = "assistant"
    SIMPLE = "simple"
    SIMPLE_JSON = "simple_json"
    ADVISER = "adviser"
    GENERATOR = "generator"
    REFINER = "refiner"
    SEARCHER = "searcher"
    ENRICHER = "enricher"
    CODER = "coder"
    INSTALLER = "installer"
    PENTESTER = "pentester"
    REFLECTOR = "reflector"


class StreamingChunkType(str, Enum):
    REASONING = "reasoning"
    TEXT = "text"
    TOOL_CALL = "tool_call"
    DONE = "done"


@dataclass
class StreamingChunk:
    """Incremental piece of a model response."""

    type: StreamingChunkType
    content: str = ""
    reasoning_content: str = ""


StreamingCallback = Callable[[StreamingChunk], Awaitable[None]]


@dataclass
class ContentChoice:
    """One alternative returned by the model."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    generation_info: dict[str, Any] | None = None
    reasoning_content: str = ""


@dataclass
class ContentResponse:
    choices: list[ContentChoice] = field(default_factory=list)


@runtime_checkable
class ProviderClient(Protocol):
    """Model adapter bound to one provider configuration."""

    def type(self) -> str:
        """Provider type name, stored on every chain row."""
        ...

    def model(self, options_type: ProviderOptionsType) -> str:
        ...

    def get_usage(self, info: dict[str, Any]) -> tuple[int, int]:
        """Extract (input tokens, output tokens) from generation info."""
        ...

    async def call(self, options_type: ProviderOptionsType, prompt: str) -> str:
        ...

    async def call_ex(
        self,
        options_type: ProviderOptionsType,
        chain: list[Message],
        stream_cb: StreamingCallback | None = None,
    ) -> ContentResponse:
        ...

    async def call_with_tools(
        self,
        options_type: ProviderOptionsType,
        chain: list[Message],
        tools: list[ToolDefinition],
        stream_cb: StreamingCallback | None = None,
    ) -> ContentResponse:
        ...
