"""Tests for ChainAST parsing, repair and mutations."""

import pytest

from agentflow.domain.model.chain.message import (
    ChatMessageRole,
    Message,
    ReasoningPart,
    TextPart,
    ToolCall,
)
from agentflow.infrastructure.agent.chain.chain_ast import (
    FALLBACK_RESPONSE_CONTENT,
    SUMMARIZATION_TOOL_NAME,
    BodyPair,
    BodyPairType,
    ChainAST,
    message_size,
)
from agentflow.infrastructure.agent.chain.tool_call_ids import matches_tool_call_id
from agentflow.infrastructure.agent.errors import ChainStructureError


def ai_calls(*calls: ToolCall) -> Message:
    return Message(role=ChatMessageRole.AI, parts=list(calls))


def call(call_id: str, name: str = "terminal") -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments='{"cmd": "id"}')


# ============================================================================
# Parsing
# ============================================================================


@pytest.mark.unit
class TestChainASTParsing:
    """Tests for ChainAST.from_messages."""

    def test_empty_chain(self) -> None:
        ast = ChainAST.from_messages([])

        assert ast.sections == []
        assert ast.messages() == []

    def test_parses_sections_and_pair_types(self) -> None:
        chain = [
            Message.system("sys"),
            Message.human("task"),
            ai_calls(call("c1")),
            Message.tool_response("c1", "terminal", "uid=0"),
            Message.ai("thinking out loud"),
            Message.human("next"),
            ai_calls(call("s1", SUMMARIZATION_TOOL_NAME)),
            Message.tool_response("s1", SUMMARIZATION_TOOL_NAME, "summary"),
        ]

        ast = ChainAST.from_messages(chain)

        assert len(ast.sections) == 2
        first, second = ast.sections
        assert first.header.system_message is not None
        assert first.header.human_message.text_content() == "task"
        assert [p.type for p in first.body] == [
            BodyPairType.REQUEST_RESPONSE,
            BodyPairType.COMPLETION,
        ]
        assert second.header.system_message is None
        assert [p.type for p in second.body] == [BodyPairType.SUMMARIZATION]
        assert ast.messages() == chain

    def test_parsing_copies_input(self) -> None:
        chain = [Message.system("sys"), Message.human("task")]

        ast = ChainAST.from_messages(chain)
        ast.sections[0].header.human_message.parts.append(TextPart(text="changed"))

        assert len(chain[1].parts) == 1

    @pytest.mark.parametrize(
        "chain",
        [
            [Message.ai("hello")],
            [Message.tool_response("c1", "terminal", "x")],
        ],
    )
    def test_chain_must_start_with_header(self, chain) -> None:
        with pytest.raises(ChainStructureError) as exc_info:
            ChainAST.from_messages(chain, force=True)

        assert "unexpected chain begin" in exc_info.value.message

    def test_system_message_in_the_middle_is_rejected(self) -> None:
        chain = [Message.system("a"), Message.human("h"), Message.system("b")]

        with pytest.raises(ChainStructureError):
            ChainAST.from_messages(chain, force=True)

    def test_pending_call_without_force_raises(self) -> None:
        chain = [Message.system("sys"), Message.human("task"), ai_calls(call("c1"))]

        with pytest.raises(ChainStructureError) as exc_info:
            ChainAST.from_messages(chain)

        assert "c1" in exc_info.value.message


# ============================================================================
# Repair
# ============================================================================


@pytest.mark.unit
class TestChainASTRepair:
    """Tests for force=True repairs."""

    def test_pending_calls_get_fallback_responses(self) -> None:
        chain = [
            Message.system("sys"),
            Message.human("task"),
            ai_calls(call("c2"), call("c1")),
            Message.tool_response("c2", "terminal", "done"),
        ]

        messages = ChainAST.from_messages(chain, force=True).messages()

        responses = [r for m in messages for r in m.tool_responses()]
        assert [r.tool_call_id for r in responses] == ["c2", "c1"]
        assert responses[1].content == FALLBACK_RESPONSE_CONTENT

    def test_pending_calls_closed_before_next_human_section(self) -> None:
        chain = [
            Message.system("sys"),
            Message.human("task"),
            ai_calls(call("c1")),
            Message.human("user answer"),
        ]

        ast = ChainAST.from_messages(chain, force=True)

        assert len(ast.sections) == 2
        pair = ast.sections[0].body[0]
        assert pair.is_valid()
        assert pair.tool_messages[0].tool_responses()[0].content == FALLBACK_RESPONSE_CONTENT

    def test_stray_response_gets_synthetic_call(self) -> None:
        chain = [
            Message.system("sys"),
            Message.human("task"),
            ai_calls(call("c1")),
            Message(
                role=ChatMessageRole.TOOL,
                parts=[
                    *Message.tool_response("c1", "terminal", "ok").parts,
                    *Message.tool_response("ghost", "file", "content").parts,
                ],
            ),
        ]

        ast = ChainAST.from_messages(chain, force=True)

        pair = ast.sections[0].body[0]
        assert [c.id for c in pair.ai_message.tool_calls()] == ["c1", "ghost"]
        assert pair.ai_message.tool_calls()[1].name == "file"
        assert pair.is_valid()

    def test_orphan_tool_message_is_dropped(self) -> None:
        chain = [
            Message.system("sys"),
            Message.human("task"),
            Message.ai("text"),
            Message.tool_response("c1", "terminal", "x"),
        ]

        with pytest.raises(ChainStructureError):
            ChainAST.from_messages(chain)
        messages = ChainAST.from_messages(chain, force=True).messages()

        assert [m.role for m in messages] == [
            ChatMessageRole.SYSTEM,
            ChatMessageRole.HUMAN,
            ChatMessageRole.AI,
        ]

    def test_double_human_messages_are_merged(self) -> None:
        chain = [Message.system("sys"), Message.human("one"), Message.human("two")]

        with pytest.raises(ChainStructureError):
            ChainAST.from_messages(chain)
        ast = ChainAST.from_messages(chain, force=True)

        assert len(ast.sections) == 1
        assert ast.sections[0].header.human_message.text_content() == "one\ntwo"

    def test_repair_is_idempotent(self) -> None:
        chain = [Message.system("sys"), Message.human("task"), ai_calls(call("c1"))]

        once = ChainAST.from_messages(chain, force=True).messages()
        twice = ChainAST.from_messages(once, force=True).messages()

        assert once == twice


# ============================================================================
# Mutations
# ============================================================================


@pytest.mark.unit
class TestChainASTMutations:
    """Tests for AST mutation helpers."""

    def test_append_human_message_to_empty_chain(self) -> None:
        ast = ChainAST()

        ast.append_human_message("hello")

        assert ast.messages() == [Message.human("hello")]

    def test_append_human_message_after_body_opens_section(self) -> None:
        ast = ChainAST.from_messages([Message.system("sys"), Message.human("a"), Message.ai("b")])

        ast.append_human_message("c")

        assert len(ast.sections) == 2
        assert ast.messages()[-1] == Message.human("c")

    def test_append_human_message_fills_missing_header(self) -> None:
        ast = ChainAST.from_messages([Message.system("sys")])

        ast.append_human_message("task")

        assert ast.sections[0].header.human_message == Message.human("task")

    def test_append_human_message_extends_existing_human(self) -> None:
        ast = ChainAST.from_messages([Message.system("sys"), Message.human("a")])

        ast.append_human_message("b")

        assert ast.sections[0].header.human_message.text_content() == "a\nb"

    def test_add_tool_response_replaces_existing(self) -> None:
        ast = ChainAST.from_messages(
            [
                Message.system("sys"),
                Message.human("task"),
                ai_calls(call("c1")),
                Message.tool_response("c1", "terminal", "old"),
            ]
        )

        ast.add_tool_response("c1", "terminal", "new")

        assert [r.content for r in ast.find_tool_call_responses("c1")] == ["new"]

    def test_add_tool_response_unknown_call(self) -> None:
        ast = ChainAST.from_messages([Message.system("sys"), Message.human("task")])

        with pytest.raises(ChainStructureError):
            ast.add_tool_response("missing", "terminal", "x")

    def test_normalize_tool_call_ids_keeps_pairs(self) -> None:
        template = "toolu_{r:24:b}"
        ast = ChainAST.from_messages(
            [
                Message.system("sys"),
                Message.human("task"),
                ai_calls(call("call_abc")),
                Message.tool_response("call_abc", "terminal", "ok"),
            ]
        )

        ast.normalize_tool_call_ids(template)

        pair = ast.sections[0].body[0]
        new_id = pair.ai_message.tool_calls()[0].id
        assert matches_tool_call_id(template, new_id)
        assert pair.tool_messages[0].tool_responses()[0].tool_call_id == new_id
        assert pair.is_valid()

    def test_clear_reasoning(self) -> None:
        ast = ChainAST.from_messages(
            [
                Message.system("sys"),
                Message.human("task"),
                Message(
                    role=ChatMessageRole.AI,
                    parts=[ReasoningPart(content="secret"), TextPart(text="answer")],
                ),
            ]
        )

        ast.clear_reasoning()

        assert ast.messages()[-1].parts == [TextPart(text="answer")]


@pytest.mark.unit
class TestBodyPair:
    def test_summarization_call_is_detected(self) -> None:
        pair = BodyPair.from_ai_message(
            ai_calls(call("s1", SUMMARIZATION_TOOL_NAME)),
            [Message.tool_response("s1", SUMMARIZATION_TOOL_NAME, "summary text")],
        )

        assert pair.type == BodyPairType.SUMMARIZATION
        assert pair.is_valid()

    def test_summarization_needs_one_tool_message(self) -> None:
        pair = BodyPair.from_ai_message(ai_calls(call("s1", SUMMARIZATION_TOOL_NAME)))

        assert not pair.is_valid()

    def test_completion_with_tool_messages_is_invalid(self) -> None:
        pair = BodyPair(
            type=BodyPairType.COMPLETION,
            ai_message=Message.ai("text"),
            tool_messages=[Message.tool_response("c1", "terminal", "x")],
        )

        assert not pair.is_valid()

    def test_message_size_counts_bytes(self) -> None:
        assert message_size(Message.human("abc")) == 3
        assert message_size(Message.human("é")) == 2
        assert message_size(Message(role=ChatMessageRole.AI, parts=[ReasoningPart("xyz")])) == 0
