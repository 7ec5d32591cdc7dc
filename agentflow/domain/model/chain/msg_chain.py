"""Persisted message chain entity."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class MsgChainType(str, Enum):
    """Agent role that owns a persisted chain."""

    PRIMARY_AGENT = "primary_agent"
    REPORTER = "reporter"
    GENERATOR = "generator"
    REFINER = "refiner"
    REFLECTOR = "reflector"
    ENRICHER = "enricher"
    ADVISER = "adviser"
    CODER = "coder"
    MEMORIST = "memorist"
    SEARCHER = "searcher"
    INSTALLER = "installer"
    PENTESTER = "pentester"
    SUMMARIZER = "summarizer"
    TOOL_CALL_FIXER = "tool_call_fixer"
    ASSISTANT = "assistant"


@dataclass(kw_only=True)
class MsgChain:
    """A chain row.

    Attributes:
        id: Storage-issued identifier.
        type: Role that owns the chain.
        model: Model name declared for the call.
        model_provider: Provider type that served the chain.
        chain: Serialized message list (JSON).
        flow_id: Owning flow.
        task_id: Owning task, if any.
        subtask_id: Owning subtask, if any.
        usage_in: Cumulative input tokens.
        usage_out: Cumulative output tokens.
    """

    id: int = 0
    type: MsgChainType
    model: str = ""
    model_provider: str = ""
    chain: str = "[]"
    flow_id: int
    task_id: int | None = None
    subtask_id: int | None = None
    usage_in: int = 0
    usage_out: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
