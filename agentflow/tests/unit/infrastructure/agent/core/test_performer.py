"""Tests for AgentChainPerformer, the execution loop of every agent role."""

import pytest

from agentflow.domain.model.agent.agent_context import AgentContext
from agentflow.domain.model.chain.message import ChatMessageRole, Message, chain_from_json
from agentflow.domain.model.chain.msg_chain import MsgChainType
from agentflow.domain.ports.services.prompt_renderer_port import PromptType
from agentflow.domain.ports.services.provider_client_port import ProviderOptionsType
from agentflow.domain.ports.services.tools_executor_port import ToolDefinition
from agentflow.infrastructure.agent.chain.consistency import find_unresponded_tool_calls
from agentflow.infrastructure.agent.config import ExecutionConfig
from agentflow.infrastructure.agent.core.caller import ChainCaller
from agentflow.infrastructure.agent.core.performer import AgentChainPerformer
from agentflow.infrastructure.agent.core.reflector import Reflector
from agentflow.infrastructure.agent.core.stream import StreamChunkType
from agentflow.infrastructure.agent.errors import AgentError, AgentExecutionError
from agentflow.infrastructure.agent.execution_context import (
    ASSISTANT_MODE_CONTEXT,
    ExecutionContextBuilder,
)
from agentflow.infrastructure.agent.tools import registry
from agentflow.infrastructure.agent.tools.bridge import ToolCallBridge
from agentflow.infrastructure.agent.tools.executor import RoleToolsExecutor
from agentflow.infrastructure.agent.tools.fixer import ToolCallArgsFixer
from agentflow.infrastructure.agent.tools.names import FINAL_TOOL_NAME
from agentflow.tests.fakes import (
    FakeSummarizer,
    RecordingHandler,
    StreamRecorder,
    text_response,
    tool_call,
    tool_calls_response,
)

INITIAL_CHAIN = [Message.system("you are a pentester"), Message.human("scan 10.0.0.5")]


async def summarize_handler(text: str) -> str:
    return f"summary of {len(text)} chars"


def build_performer(caller, prompter, config, repository) -> AgentChainPerformer:
    return AgentChainPerformer(
        caller=caller,
        bridge=ToolCallBridge(ToolCallArgsFixer(caller, prompter), config),
        reflector=Reflector(caller, prompter, config),
        context_builder=ExecutionContextBuilder(1, repository, prompter),
        summarize_handler_factory=lambda task_id, subtask_id: summarize_handler,
        config=config,
    )


@pytest.fixture
def performer(caller, prompter, config, repository) -> AgentChainPerformer:
    return build_performer(caller, prompter, config, repository)


@pytest.fixture
def terminal() -> RecordingHandler:
    return RecordingHandler(result="22/tcp open ssh")


@pytest.fixture
def done() -> RecordingHandler:
    return RecordingHandler(result="function done successfully processed arguments")


@pytest.fixture
def executor(terminal, done) -> RoleToolsExecutor:
    return RoleToolsExecutor(
        definitions=[
            ToolDefinition(name="terminal", description="run a command"),
            registry.get_definition(FINAL_TOOL_NAME),
        ],
        handlers={"terminal": terminal, FINAL_TOOL_NAME: done},
        barriers=[FINAL_TOOL_NAME],
    )


@pytest.fixture
async def chain_id(caller) -> int:
    msg_chain = await caller.create_msg_chain(
        MsgChainType.PENTESTER, ProviderOptionsType.PENTESTER, INITIAL_CHAIN, None, None
    )
    return msg_chain.id


def stored_chain(repository, chain_id: int) -> list[Message]:
    return chain_from_json(repository.chains[chain_id].chain)


async def perform(performer, chain_id, executor, options=ProviderOptionsType.PENTESTER, **kwargs):
    await performer.perform_agent_chain(
        AgentContext(parent_role=MsgChainType.PRIMARY_AGENT, current_role=MsgChainType.PENTESTER),
        options,
        chain_id,
        kwargs.pop("task_id", None),
        kwargs.pop("subtask_id", None),
        INITIAL_CHAIN,
        executor,
        **kwargs,
    )


# ============================================================================
# Loop termination
# ============================================================================


@pytest.mark.unit
class TestPerformAgentChain:
    """Tests for the tool-calling loop."""

    @pytest.mark.asyncio
    async def test_runs_until_barrier(
        self, performer, chain_id, executor, client, repository, terminal, done
    ) -> None:
        scan = tool_call("terminal", {"input": "nmap 10.0.0.5"})
        finish = tool_call(FINAL_TOOL_NAME, {"success": True, "result": "ssh", "message": "m"})
        client.script(
            ProviderOptionsType.PENTESTER,
            tool_calls_response(scan, info={"input": 100, "output": 10}),
            tool_calls_response(finish, info={"input": 120, "output": 5}),
        )

        await perform(performer, chain_id, executor)

        chain = stored_chain(repository, chain_id)
        assert [m.role for m in chain] == [
            ChatMessageRole.SYSTEM,
            ChatMessageRole.HUMAN,
            ChatMessageRole.AI,
            ChatMessageRole.TOOL,
            ChatMessageRole.AI,
            ChatMessageRole.TOOL,
        ]
        assert chain[2].tool_calls() == [scan]
        assert chain[3].tool_responses()[0].content == "22/tcp open ssh"
        assert chain[5].tool_responses()[0].tool_call_id == finish.id
        assert len(terminal.calls) == 1
        assert len(done.calls) == 1
        assert (repository.chains[chain_id].usage_in, repository.chains[chain_id].usage_out) == (
            220,
            15,
        )

    @pytest.mark.asyncio
    async def test_all_calls_of_barrier_turn_are_executed(
        self, performer, chain_id, executor, client, repository, terminal
    ) -> None:
        client.script(
            ProviderOptionsType.PENTESTER,
            tool_calls_response(
                tool_call(FINAL_TOOL_NAME, {"success": True, "result": "r", "message": "m"}),
                tool_call("terminal", {"input": "id"}),
            ),
        )

        await perform(performer, chain_id, executor)

        chain = stored_chain(repository, chain_id)
        assert len(chain) == 5
        assert len(terminal.calls) == 1
        assert find_unresponded_tool_calls(chain) == []

    @pytest.mark.asyncio
    async def test_context_is_read_from_flow(
        self, performer, chain_id, executor, client, prompter
    ) -> None:
        client.script(
            ProviderOptionsType.PENTESTER,
            text_response("let me think"),
            tool_calls_response(tool_call(FINAL_TOOL_NAME)),
        )

        await perform(performer, chain_id, executor)

        assert prompter.params_of(PromptType.REFLECTOR)["ExecutionContext"] == (
            ASSISTANT_MODE_CONTEXT
        )

    @pytest.mark.asyncio
    async def test_context_failure(self, performer, chain_id, executor, repository) -> None:
        repository.fail_on = {"get_flow_tasks"}

        with pytest.raises(AgentExecutionError, match="failed to get execution context"):
            await perform(performer, chain_id, executor)

    @pytest.mark.asyncio
    async def test_text_reply_goes_through_reflector(
        self, performer, chain_id, executor, client, repository
    ) -> None:
        client.script(
            ProviderOptionsType.PENTESTER,
            text_response("I should scan the host first"),
            tool_calls_response(tool_call(FINAL_TOOL_NAME)),
        )

        await perform(performer, chain_id, executor)

        chain = stored_chain(repository, chain_id)
        # The text reply and the advice are not part of the agent chain
        assert len(chain) == 4
        assert chain[2].tool_calls()[0].name == FINAL_TOOL_NAME
        assert len(repository.chains_of(MsgChainType.REFLECTOR)) == 1

    @pytest.mark.asyncio
    async def test_reflector_failure_propagates(
        self, performer, chain_id, executor, client, repository
    ) -> None:
        client.script(ProviderOptionsType.PENTESTER, *[text_response("talking")] * 4)

        with pytest.raises(AgentExecutionError, match="reflector limit calls reached"):
            await perform(performer, chain_id, executor)

        assert stored_chain(repository, chain_id) == INITIAL_CHAIN

    @pytest.mark.asyncio
    async def test_tool_failure_leaves_pending_call(
        self, caller, prompter, repository, chain_id, client
    ) -> None:
        config = ExecutionConfig(max_retries_tool_call=1, retry_delay_seconds=0)
        performer = build_performer(caller, prompter, config, repository)
        executor = RoleToolsExecutor(
            definitions=[ToolDefinition(name="terminal", description="run")],
            handlers={"terminal": RecordingHandler(failures=5)},
            barriers=[],
        )
        client.script_simple(ProviderOptionsType.SIMPLE_JSON, text_response('{"input": "id"}'))
        client.script(
            ProviderOptionsType.PENTESTER,
            tool_calls_response(tool_call("terminal", {"input": "id"})),
        )

        with pytest.raises(AgentError, match="reached max retries to call function"):
            await perform(performer, chain_id, executor)

        chain = stored_chain(repository, chain_id)
        assert len(chain) == 3
        assert len(find_unresponded_tool_calls(chain)) == 1

    @pytest.mark.asyncio
    async def test_model_failure_propagates(self, performer, chain_id, executor) -> None:
        # Nothing is scripted: every attempt fails
        with pytest.raises(AgentError, match="failed to call agent chain"):
            await perform(performer, chain_id, executor)


# ============================================================================
# Summarization
# ============================================================================


@pytest.mark.unit
class TestChainSummarization:
    @pytest.mark.asyncio
    async def test_summarizer_runs_between_turns(
        self, performer, chain_id, executor, client
    ) -> None:
        summarizer = FakeSummarizer()
        client.script(
            ProviderOptionsType.PENTESTER,
            tool_calls_response(tool_call("terminal", {"input": "id"})),
            tool_calls_response(tool_call(FINAL_TOOL_NAME)),
        )

        await perform(performer, chain_id, executor, summarizer=summarizer)

        # Not after the barrier turn
        assert summarizer.calls == 1

    @pytest.mark.asyncio
    async def test_summarizer_failure_is_tolerated(
        self, performer, chain_id, executor, client, repository
    ) -> None:
        summarizer = FakeSummarizer(fail=True)
        client.script(
            ProviderOptionsType.PENTESTER,
            tool_calls_response(tool_call("terminal", {"input": "id"})),
            tool_calls_response(tool_call(FINAL_TOOL_NAME)),
        )

        await perform(performer, chain_id, executor, summarizer=summarizer)

        assert summarizer.calls == 1
        assert len(stored_chain(repository, chain_id)) == 6


# ============================================================================
# Assistant
# ============================================================================


@pytest.mark.unit
class TestAssistantResult:
    """Tests for the assistant role, which may finish with plain text."""

    @pytest.mark.asyncio
    async def test_text_reply_finishes_the_turn(
        self, performer, chain_id, executor, client, repository
    ) -> None:
        client.script(ProviderOptionsType.ASSISTANT, text_response("port 22 is open"))

        await perform(performer, chain_id, executor, options=ProviderOptionsType.ASSISTANT)

        chain = stored_chain(repository, chain_id)
        assert chain[-1] == Message.ai("port 22 is open")
        assert repository.chains_of(MsgChainType.REFLECTOR) == []

    @pytest.mark.asyncio
    async def test_streamed_update(
        self, repository, client, prompter, config, chain_id, executor
    ) -> None:
        recorder = StreamRecorder()
        caller = ChainCaller(1, repository, client, config, stream_handler=recorder)
        performer = build_performer(caller, prompter, config, repository)
        client.script(ProviderOptionsType.ASSISTANT, text_response("port 22 is open"))

        await perform(performer, chain_id, executor, options=ProviderOptionsType.ASSISTANT)

        updates = [c for c in recorder.chunks if c.type == StreamChunkType.UPDATE]
        # One update from the model call and one for the final answer
        assert len(updates) == 2
        assert updates[-1].content == "port 22 is open"
        assert updates[-1].stream_id == updates[0].stream_id
