"""Structured view of a message chain.

A chain is parsed into sections. Each section starts with a header (a system
message, a human message or both) followed by body pairs; a body pair is one
AI message plus the tool messages answering its calls:

    Section
      Header: [System] [Human]
      Body:   AI(tool calls) -> Tool, Tool   (request-response)
              AI(text)                       (completion)
              AI(summary call) -> Tool       (summarization)

Parsing with ``force=True`` repairs what it can instead of failing: pending
calls are answered with ``FALLBACK_RESPONSE_CONTENT``, stray responses get a
synthetic call, orphan tool messages are dropped and duplicate human messages
are merged.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from agentflow.domain.model.chain.message import (
    ChatMessageRole,
    Message,
    ReasoningPart,
    TextPart,
    ToolCall,
    ToolCallResponse,
    clone_chain,
)
from agentflow.infrastructure.agent.chain.tool_call_ids import (
    generate_tool_call_id,
    matches_tool_call_id,
)
from agentflow.infrastructure.agent.errors import ChainStructureError

logger = logging.getLogger(__name__)

FALLBACK_REQUEST_ARGS = "{}"
FALLBACK_RESPONSE_CONTENT = "the call was not handled, please try again"
SUMMARIZATION_TOOL_NAME = "execute_task_and_return_summary"


class BodyPairType(str, Enum):
    """Kind of exchange held by a body pair."""

    REQUEST_RESPONSE = "request-response"
    COMPLETION = "completion"
    SUMMARIZATION = "summarization"


def message_size(msg: Message) -> int:
    """Size of the message payload in bytes."""
    size = 0
    for part in msg.parts:
        match part:
            case TextPart(text=text):
                size += len(text.encode())
            case ToolCall():
                size += len(part.id) + len(part.type) + len(part.name.encode())
                size += len(part.arguments.encode())
            case ToolCallResponse():
                size += len(part.tool_call_id) + len(part.name.encode())
                size += len(part.content.encode())
            case ReasoningPart():
                pass
    return size


@dataclass
class ToolCallPair:
    """A tool call and its response; either side may be missing."""

    tool_call: ToolCall | None = None
    response: ToolCallResponse | None = None


@dataclass
class ToolCallsInfo:
    """Matching state of the calls and responses of one body pair.

    ID lists are sorted for deterministic repair order.
    """

    pending_ids: list[str] = field(default_factory=list)
    unmatched_ids: list[str] = field(default_factory=list)
    pending: dict[str, ToolCallPair] = field(default_factory=dict)
    completed: dict[str, ToolCallPair] = field(default_factory=dict)
    unmatched: dict[str, ToolCallPair] = field(default_factory=dict)


@dataclass
class Header:
    system_message: Message | None = None
    human_message: Message | None = None

    def messages(self) -> list[Message]:
        return [m for m in (self.system_message, self.human_message) if m is not None]

    def size(self) -> int:
        return sum(message_size(m) for m in self.messages())


@dataclass
class BodyPair:
    type: BodyPairType
    ai_message: Message
    tool_messages: list[Message] = field(default_factory=list)

    @classmethod
    def from_ai_message(
        cls, ai_message: Message, tool_messages: list[Message] | None = None
    ) -> "BodyPair":
        """Create a body pair, detecting its type from the first tool call."""
        pair_type = BodyPairType.COMPLETION
        calls = ai_message.tool_calls()
        if calls:
            if calls[0].name == SUMMARIZATION_TOOL_NAME:
                pair_type = BodyPairType.SUMMARIZATION
            else:
                pair_type = BodyPairType.REQUEST_RESPONSE
        return cls(type=pair_type, ai_message=ai_message, tool_messages=list(tool_messages or []))

    def tool_calls_info(self) -> ToolCallsInfo:
        info = ToolCallsInfo()
        for call in self.ai_message.tool_calls():
            info.pending[call.id] = ToolCallPair(tool_call=call)

        for msg in self.tool_messages:
            for resp in msg.tool_responses():
                pair = info.pending.pop(resp.tool_call_id, None)
                if pair is None:
                    info.unmatched[resp.tool_call_id] = ToolCallPair(response=resp)
                else:
                    pair.response = resp
                    info.completed[resp.tool_call_id] = pair

        info.pending_ids = sorted(info.pending)
        info.unmatched_ids = sorted(info.unmatched)
        return info

    def is_valid(self) -> bool:
        if self.type == BodyPairType.COMPLETION and self.tool_messages:
            return False
        if self.type == BodyPairType.REQUEST_RESPONSE and not self.tool_messages:
            return False
        if self.type == BodyPairType.SUMMARIZATION and len(self.tool_messages) != 1:
            return False
        info = self.tool_calls_info()
        return not info.pending and not info.unmatched

    def messages(self) -> list[Message]:
        return [self.ai_message, *self.tool_messages]

    def size(self) -> int:
        return sum(message_size(m) for m in self.messages())


@dataclass
class ChainSection:
    header: Header
    body: list[BodyPair] = field(default_factory=list)

    def messages(self) -> list[Message]:
        result = self.header.messages()
        for pair in self.body:
            result.extend(pair.messages())
        return result

    def size(self) -> int:
        return self.header.size() + sum(pair.size() for pair in self.body)


class ChainAST:
    """Sections of a chain, rebuilt into messages with ``messages()``."""

    def __init__(self, sections: list[ChainSection] | None = None):
        self.sections: list[ChainSection] = sections or []

    @classmethod
    def from_messages(cls, chain: list[Message], force: bool = False) -> "ChainAST":
        """Parse a chain.

        The input list is copied; mutating the AST never touches it.

        Args:
            chain: Messages in chain order
            force: Repair inconsistencies instead of raising

        Raises:
            ChainStructureError: If the chain can not be parsed
        """
        ast = cls()
        if not chain:
            return ast

        chain = clone_chain(chain)
        if chain[0].role not in (ChatMessageRole.SYSTEM, ChatMessageRole.HUMAN):
            raise ChainStructureError(
                "unexpected chain begin: first message must be System or Human, "
                f"got {chain[0].role.value}",
                message_index=0,
            )

        section: ChainSection | None = None
        pair: BodyPair | None = None

        def fix_pending_calls() -> None:
            if pair is None or pair.type == BodyPairType.COMPLETION:
                return
            info = pair.tool_calls_info()
            if not info.pending_ids:
                return
            if not force:
                ids = ", ".join(info.pending_ids)
                raise ChainStructureError(f"tool calls with IDs [{ids}] have no response")
            for call_id in info.pending_ids:
                call = info.pending[call_id].tool_call
                pair.tool_messages.append(
                    Message.tool_response(call_id, call.name, FALLBACK_RESPONSE_CONTENT)
                )

        def fix_unmatched_calls() -> None:
            if pair is None or pair.type == BodyPairType.COMPLETION:
                return
            info = pair.tool_calls_info()
            if not info.unmatched_ids:
                return
            if not force:
                ids = ", ".join(info.unmatched_ids)
                raise ChainStructureError(f"tool calls with IDs [{ids}] have no response")
            for call_id in info.unmatched_ids:
                resp = info.unmatched[call_id].response
                pair.ai_message.parts.append(
                    ToolCall(id=call_id, name=resp.name, arguments=FALLBACK_REQUEST_ARGS)
                )

        for idx, msg in enumerate(chain):
            match msg.role:
                case ChatMessageRole.SYSTEM:
                    if section is not None:
                        raise ChainStructureError(
                            "unexpected system message in the middle of a chain",
                            message_index=idx,
                        )
                    section = ChainSection(header=Header(system_message=msg))
                    ast.sections.append(section)
                    pair = None

                case ChatMessageRole.HUMAN:
                    if section is not None and section.header.human_message is not None:
                        if not section.body:
                            if not force:
                                raise ChainStructureError(
                                    "double human messages in the middle of a chain",
                                    message_index=idx,
                                )
                            section.header.human_message.parts.extend(msg.parts)
                        else:
                            section = ChainSection(header=Header(human_message=msg))
                            ast.sections.append(section)
                            fix_pending_calls()
                            pair = None
                    elif section is not None:
                        if section.body and not force:
                            raise ChainStructureError(
                                "got human message after AI message in the middle of a chain",
                                message_index=idx,
                            )
                        section.header.human_message = msg
                    else:
                        section = ChainSection(header=Header(human_message=msg))
                        ast.sections.append(section)
                        pair = None

                case ChatMessageRole.AI:
                    if section is None:
                        raise ChainStructureError(
                            "unexpected AI message without a preceding header",
                            message_index=idx,
                        )
                    fix_pending_calls()
                    pair = BodyPair.from_ai_message(msg)
                    section.body.append(pair)

                case ChatMessageRole.TOOL:
                    if section is None:
                        raise ChainStructureError(
                            "unexpected tool message without a preceding header",
                            message_index=idx,
                        )
                    if pair is None or pair.type == BodyPairType.COMPLETION:
                        if not force:
                            raise ChainStructureError(
                                "unexpected tool message without a preceding AI message "
                                "with tool calls",
                                message_index=idx,
                            )
                        logger.debug(f"[ChainAST] Dropping orphan tool message at {idx}")
                        continue
                    pair.tool_messages.append(msg)
                    fix_unmatched_calls()

        fix_pending_calls()
        return ast

    # ========================================================================
    # Rendering
    # ========================================================================

    def messages(self) -> list[Message]:
        result: list[Message] = []
        for section in self.sections:
            result.extend(section.messages())
        return result

    def size(self) -> int:
        return sum(section.size() for section in self.sections)

    def __str__(self) -> str:
        lines = ["ChainAST {"]
        for idx, section in enumerate(self.sections):
            lines.append(f"  Section {idx} {{")
            if section.header.system_message is not None:
                lines.append("    SystemMessage")
            if section.header.human_message is not None:
                lines.append("    HumanMessage")
            for pdx, pair in enumerate(section.body):
                lines.append(
                    f"    BodyPair {pdx} ({pair.type.value}, {len(pair.tool_messages)} tool msgs)"
                )
            lines.append("  }")
        lines.append("}")
        return "\n".join(lines)

    # ========================================================================
    # Mutations
    # ========================================================================

    def append_human_message(self, content: str) -> None:
        """Add a human turn to the end of the chain.

        1. Empty chain: a new section holding the message.
        2. Last section has a body: a new section holding the message.
        3. Last section has no human message: the message joins its header.
        4. Otherwise the text is appended to the existing human message.
        """
        if not self.sections or self.sections[-1].body:
            self.sections.append(ChainSection(header=Header(human_message=Message.human(content))))
            return

        header = self.sections[-1].header
        if header.human_message is None:
            header.human_message = Message.human(content)
            return

        header.human_message.parts.append(TextPart(text=content))

    def add_tool_response(self, tool_call_id: str, tool_name: str, content: str) -> None:
        """Set the response of a tool call, adding it if it does not exist yet.

        Raises:
            ChainStructureError: If no request-response pair holds the call
        """
        for section in self.sections:
            for pair in section.body:
                if pair.type != BodyPairType.REQUEST_RESPONSE:
                    continue
                if not any(call.id == tool_call_id for call in pair.ai_message.tool_calls()):
                    continue

                for msg in pair.tool_messages:
                    for resp in msg.tool_responses():
                        if resp.tool_call_id == tool_call_id:
                            resp.content = content
                            return

                resp = ToolCallResponse(tool_call_id=tool_call_id, name=tool_name, content=content)
                if pair.tool_messages:
                    pair.tool_messages[-1].parts.append(resp)
                else:
                    pair.tool_messages.append(Message(role=ChatMessageRole.TOOL, parts=[resp]))
                return

        raise ChainStructureError(f"tool call with ID {tool_call_id} not found")

    def find_tool_call_responses(self, tool_call_id: str) -> list[ToolCallResponse]:
        responses = []
        for section in self.sections:
            for pair in section.body:
                if pair.type != BodyPairType.REQUEST_RESPONSE:
                    continue
                for msg in pair.tool_messages:
                    responses.extend(
                        resp for resp in msg.tool_responses() if resp.tool_call_id == tool_call_id
                    )
        return responses

    def normalize_tool_call_ids(self, template: str) -> None:
        """Rewrite call IDs that do not match the template, keeping responses paired."""
        for section in self.sections:
            for pair in section.body:
                if pair.type == BodyPairType.COMPLETION:
                    continue

                mapping: dict[str, str] = {}
                for call in pair.ai_message.tool_calls():
                    if not matches_tool_call_id(template, call.id):
                        new_id = generate_tool_call_id(template)
                        mapping[call.id] = new_id
                        call.id = new_id

                if not mapping:
                    continue
                for msg in pair.tool_messages:
                    for resp in msg.tool_responses():
                        if resp.tool_call_id in mapping:
                            resp.tool_call_id = mapping[resp.tool_call_id]

    def clear_reasoning(self) -> None:
        """Drop provider-specific reasoning parts from every message."""
        for msg in self.messages():
            msg.parts = [part for part in msg.parts if not isinstance(part, ReasoningPart)]
