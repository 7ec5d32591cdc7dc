"""Tests for RoleToolsExecutor, the per-role factory and the tool registry."""

import json

import pytest

from agentflow.domain.ports.services.agent_log_port import MsgLogResultFormat, MsgLogType
from agentflow.domain.ports.services.tools_executor_port import (
    AssistantExecutorConfig,
    CoderExecutorConfig,
    ContextToolsExecutor,
    EnricherExecutorConfig,
    FlowToolsExecutor,
    GeneratorExecutorConfig,
    InstallerExecutorConfig,
    MemoristExecutorConfig,
    PentesterExecutorConfig,
    PrimaryExecutorConfig,
    RefinerExecutorConfig,
    ReporterExecutorConfig,
    SearcherExecutorConfig,
    ToolDefinition,
)
from agentflow.infrastructure.agent.errors import AgentExecutionError, AgentValidationError
from agentflow.infrastructure.agent.tools import names, registry
from agentflow.infrastructure.agent.tools.executor import RoleToolsExecutor
from agentflow.infrastructure.agent.tools.factory import RoleToolsExecutorFactory
from agentflow.infrastructure.agent.tools.registry import EnvironmentTool, EnvironmentToolKind
from agentflow.tests.fakes import FakeMsgLog, RecordingHandler

# ============================================================================
# RoleToolsExecutor
# ============================================================================


def make_executor(handlers: dict, **kwargs) -> RoleToolsExecutor:
    return RoleToolsExecutor(
        definitions=[ToolDefinition(name=name, description=name) for name in handlers],
        handlers=handlers,
        barriers=kwargs.pop("barriers", []),
        task_id=1,
        subtask_id=2,
        **kwargs,
    )


@pytest.mark.unit
class TestRoleToolsExecutor:
    """Tests for executing tools of one role."""

    @pytest.mark.asyncio
    async def test_executes_handler(self) -> None:
        handler = RecordingHandler(result="root")
        executor = make_executor({"terminal": handler})

        result = await executor.execute(0, "c1", "terminal", "", '{"input": "whoami"}')

        assert result == "root"
        assert handler.calls == [("terminal", '{"input": "whoami"}')]

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported_to_model(self) -> None:
        executor = make_executor({"terminal": RecordingHandler()})

        result = await executor.execute(0, "c1", "nmap", "", "{}")

        assert result == "function 'nmap' not found in available tools list"

    @pytest.mark.asyncio
    async def test_malformed_arguments_are_reported_to_model(self) -> None:
        handler = RecordingHandler()
        executor = make_executor({"terminal": handler})

        result = await executor.execute(0, "c1", "terminal", "", "{input: ls")

        assert result.startswith("failed to unmarshal 'terminal' tool call arguments: ")
        assert result.endswith(": fix it")
        assert handler.calls == []

    @pytest.mark.asyncio
    async def test_handler_failure_raises(self) -> None:
        executor = make_executor({"terminal": RecordingHandler(failures=1)})

        with pytest.raises(AgentExecutionError) as exc_info:
            await executor.execute(0, "c1", "terminal", "", "{}")

        assert exc_info.value.message == "failed to execute handler: bad arguments for terminal"
        assert exc_info.value.tool_name == "terminal"

    @pytest.mark.asyncio
    async def test_message_is_logged_with_result(self) -> None:
        msg_log = FakeMsgLog()
        executor = make_executor({"terminal": RecordingHandler(result="uid=0")}, msg_log=msg_log)

        await executor.execute(5, "c1", "terminal", "plan", '{"input": "id", "message": "whoami"}')

        assert msg_log.messages == [
            {
                "type": MsgLogType.TERMINAL,
                "task_id": 1,
                "subtask_id": 2,
                "stream_id": 5,
                "thinking": "plan",
                "msg": "whoami",
            }
        ]
        assert msg_log.results == [(1, 5, "uid=0", MsgLogResultFormat.TERMINAL)]

    @pytest.mark.asyncio
    async def test_call_without_message_is_not_logged(self) -> None:
        msg_log = FakeMsgLog()
        executor = make_executor({"terminal": RecordingHandler()}, msg_log=msg_log)

        await executor.execute(0, "c1", "terminal", "", '{"input": "id"}')

        assert msg_log.messages == []
        assert msg_log.results == []

    @pytest.mark.asyncio
    async def test_long_terminal_output_is_summarized(self) -> None:
        prompts: list[str] = []

        async def summarizer(prompt: str) -> str:
            prompts.append(prompt)
            return "short summary"

        msg_log = FakeMsgLog()
        executor = make_executor(
            {"terminal": RecordingHandler(result="x" * 100)},
            msg_log=msg_log,
            summarizer=summarizer,
            result_size_limit=50,
        )

        result = await executor.execute(0, "c1", "terminal", "", '{"input": "cat", "message": "m"}')

        assert result == "short summary"
        assert msg_log.results[0][3] == MsgLogResultFormat.MARKDOWN
        assert '<function name="terminal">' in prompts[0]
        assert "input: cat" in prompts[0]
        assert "x" * 100 in prompts[0]

    @pytest.mark.asyncio
    async def test_other_tools_are_not_summarized(self) -> None:
        async def summarizer(prompt: str) -> str:
            raise AssertionError("must not be called")

        executor = make_executor(
            {"file": RecordingHandler(result="y" * 100)}, summarizer=summarizer, result_size_limit=10
        )

        assert await executor.execute(0, "c1", "file", "", "{}") == "y" * 100

    @pytest.mark.asyncio
    async def test_summarizer_failure_raises(self) -> None:
        async def summarizer(prompt: str) -> str:
            raise RuntimeError("model down")

        executor = make_executor(
            {"browser": RecordingHandler(result="z" * 100)},
            summarizer=summarizer,
            result_size_limit=10,
        )

        with pytest.raises(AgentExecutionError, match="failed to summarize result"):
            await executor.execute(0, "c1", "browser", "", "{}")

    def test_summarize_prompt_truncates_long_arguments(self) -> None:
        executor = make_executor({"terminal": RecordingHandler()})

        prompt = executor.get_summarize_prompt("terminal", {"input": "a" * 2000}, "out")

        assert "a" * 1024 + "... [truncated]" in prompt
        assert "a" * 1025 not in prompt

    def test_get_tool_schema(self) -> None:
        executor = RoleToolsExecutor(
            definitions=[
                ToolDefinition(name="terminal", description="run", parameters={"type": "object"})
            ],
            handlers={},
            barriers=[],
        )

        assert executor.get_tool_schema("terminal") == {"type": "object"}
        assert "success" in executor.get_tool_schema(names.FINAL_TOOL_NAME)["properties"]
        with pytest.raises(AgentValidationError, match="tool nmap not found"):
            executor.get_tool_schema("nmap")

    def test_barrier_helpers(self) -> None:
        executor = RoleToolsExecutor(
            definitions=[registry.get_definition(names.FINAL_TOOL_NAME)],
            handlers={},
            barriers=[names.FINAL_TOOL_NAME, "unregistered"],
        )

        assert executor.is_barrier_function(names.FINAL_TOOL_NAME)
        assert not executor.is_barrier_function("terminal")
        assert executor.get_barrier_tool_names() == [names.FINAL_TOOL_NAME, "unregistered"]
        tools = executor.get_barrier_tools()
        assert [tool.name for tool in tools] == [names.FINAL_TOOL_NAME]
        assert json.loads(tools[0].schema)["type"] == "object"

    def test_is_a_context_tools_executor(self) -> None:
        assert isinstance(make_executor({}), ContextToolsExecutor)


# ============================================================================
# RoleToolsExecutorFactory
# ============================================================================


def environment_tools() -> list[EnvironmentTool]:
    def tool(name: str, kind: EnvironmentToolKind) -> EnvironmentTool:
        return EnvironmentTool(
            definition=ToolDefinition(name=name, description=name),
            handler=RecordingHandler(result=name),
            kind=kind,
        )

    return [
        tool("terminal", EnvironmentToolKind.SHELL),
        tool("file", EnvironmentToolKind.SHELL),
        tool("browser", EnvironmentToolKind.BROWSER),
        tool("google", EnvironmentToolKind.SEARCH_ENGINE),
        tool("search_in_memory", EnvironmentToolKind.MEMORY),
    ]


H = RecordingHandler()


@pytest.fixture
def factory() -> RoleToolsExecutorFactory:
    return RoleToolsExecutorFactory(environment_tools=environment_tools())


def tool_names(executor: RoleToolsExecutor) -> set[str]:
    return {definition.name for definition in executor.tools()}


@pytest.mark.unit
class TestRoleToolsExecutorFactory:
    """Tests for per-role capability sets."""

    def test_primary_executor(self, factory) -> None:
        executor = factory.get_primary_executor(
            PrimaryExecutorConfig(
                task_id=1,
                subtask_id=2,
                barrier=H,
                adviser=H,
                coder=H,
                installer=H,
                memorist=H,
                pentester=H,
                searcher=H,
            )
        )

        assert tool_names(executor) == {
            "done",
            "advice",
            "coder",
            "maintenance",
            "memorist",
            "pentester",
            "search",
        }
        assert executor.get_barrier_tool_names() == ["done"]
        assert (executor.task_id, executor.subtask_id) == (1, 2)

    def test_primary_executor_with_ask_user(self) -> None:
        factory = RoleToolsExecutorFactory(ask_user=True)

        executor = factory.get_primary_executor(
            PrimaryExecutorConfig(
                task_id=1,
                subtask_id=2,
                barrier=H,
                adviser=H,
                coder=H,
                installer=H,
                memorist=H,
                pentester=H,
                searcher=H,
            )
        )

        assert executor.get_barrier_tool_names() == ["done", "ask_user"]
        assert executor.handlers["ask_user"] is H

    @pytest.mark.parametrize(
        ("build", "expected"),
        [
            (
                lambda f: f.get_installer_executor(
                    InstallerExecutorConfig(
                        adviser=H, memorist=H, searcher=H, maintenance_result=H
                    )
                ),
                {"maintenance_result", "advice", "memorist", "search", "terminal", "file",
                 "browser", "search_in_memory"},
            ),
            (
                lambda f: f.get_coder_executor(
                    CoderExecutorConfig(
                        adviser=H, installer=H, memorist=H, searcher=H, code_result=H
                    )
                ),
                {"code_result", "advice", "maintenance", "memorist", "search", "browser",
                 "search_in_memory"},
            ),
            (
                lambda f: f.get_pentester_executor(
                    PentesterExecutorConfig(
                        adviser=H, coder=H, installer=H, memorist=H, searcher=H, hack_result=H
                    )
                ),
                {"hack_result", "advice", "coder", "maintenance", "memorist", "search",
                 "terminal", "file", "browser", "search_in_memory"},
            ),
            (
                lambda f: f.get_searcher_executor(
                    SearcherExecutorConfig(memorist=H, search_result=H)
                ),
                {"search_result", "memorist", "browser", "google", "search_in_memory"},
            ),
            (
                lambda f: f.get_memorist_executor(MemoristExecutorConfig(memorist_result=H)),
                {"memorist_result", "terminal", "file", "search_in_memory"},
            ),
            (
                lambda f: f.get_enricher_executor(
                    EnricherExecutorConfig(memorist=H, searcher=H, enricher_result=H)
                ),
                {"enricher_result", "memorist", "search"},
            ),
            (
                lambda f: f.get_generator_executor(
                    GeneratorExecutorConfig(task_id=1, memorist=H, searcher=H, subtask_list=H)
                ),
                {"memorist", "search", "subtask_list", "terminal", "file", "browser"},
            ),
            (
                lambda f: f.get_refiner_executor(
                    RefinerExecutorConfig(task_id=1, memorist=H, searcher=H, subtask_patch=H)
                ),
                {"memorist", "search", "subtask_patch", "terminal", "file"},
            ),
            (
                lambda f: f.get_reporter_executor(ReporterExecutorConfig(report_result=H)),
                {"report_result"},
            ),
        ],
    )
    def test_role_capabilities(self, factory, build, expected: set[str]) -> None:
        executor = build(factory)

        assert tool_names(executor) == expected
        assert len(executor.get_barrier_tool_names()) == 1

    def test_assistant_without_agents_uses_environment(self, factory) -> None:
        executor = factory.get_assistant_executor(AssistantExecutorConfig(use_agents=False))

        assert tool_names(executor) == {"terminal", "file", "browser", "google", "search_in_memory"}
        assert executor.get_barrier_tool_names() == []

    def test_assistant_with_agents(self, factory) -> None:
        executor = factory.get_assistant_executor(
            AssistantExecutorConfig(
                use_agents=True,
                adviser=H,
                coder=H,
                installer=H,
                memorist=H,
                pentester=H,
                searcher=H,
            )
        )

        assert tool_names(executor) == {
            "advice",
            "coder",
            "maintenance",
            "memorist",
            "pentester",
            "search",
            "terminal",
            "file",
            "browser",
        }

    def test_missing_handler(self, factory) -> None:
        with pytest.raises(AgentValidationError, match="code result handler is required"):
            factory.get_coder_executor(
                CoderExecutorConfig(
                    adviser=H, installer=H, memorist=H, searcher=H, code_result=None
                )
            )

    def test_assistant_with_agents_requires_handlers(self, factory) -> None:
        with pytest.raises(AgentValidationError, match="adviser handler is required"):
            factory.get_assistant_executor(AssistantExecutorConfig(use_agents=True))

    def test_role_tool_wins_over_environment_tool(self) -> None:
        shadow = EnvironmentTool(
            definition=ToolDefinition(name="memorist", description="host memorist"),
            handler=RecordingHandler(result="host"),
            kind=EnvironmentToolKind.MEMORY,
        )
        factory = RoleToolsExecutorFactory(environment_tools=[shadow])

        executor = factory.get_searcher_executor(
            SearcherExecutorConfig(memorist=H, search_result=H)
        )

        assert executor.handlers["memorist"] is H
        assert len(executor.tools()) == 2

    def test_is_a_flow_tools_executor(self, factory) -> None:
        assert isinstance(factory, FlowToolsExecutor)


# ============================================================================
# Registry
# ============================================================================


@pytest.mark.unit
class TestRegistry:
    def test_every_engine_tool_is_registered(self) -> None:
        expected = {
            value
            for key, value in vars(names).items()
            if key.endswith("_TOOL_NAME")
            and value not in (names.TERMINAL_TOOL_NAME, names.FILE_TOOL_NAME, names.BROWSER_TOOL_NAME)
        }

        assert set(registry.REGISTRY) == expected

    def test_definition_carries_pydantic_schema(self) -> None:
        definition = registry.get_definition(names.SUBTASK_LIST_TOOL_NAME)

        assert definition.parameters["required"] == ["subtasks", "message"]
        assert definition.to_dict()["function"]["name"] == "subtask_list"

    def test_unknown_definition(self) -> None:
        with pytest.raises(KeyError):
            registry.get_definition("nmap")

    @pytest.mark.parametrize(
        ("name", "msg_type", "result_format"),
        [
            ("terminal", MsgLogType.TERMINAL, MsgLogResultFormat.TERMINAL),
            ("file", MsgLogType.FILE, MsgLogResultFormat.PLAIN),
            ("browser", MsgLogType.BROWSER, MsgLogResultFormat.PLAIN),
            ("search", MsgLogType.SEARCH, MsgLogResultFormat.MARKDOWN),
            ("memorist", MsgLogType.SEARCH, MsgLogResultFormat.MARKDOWN),
            ("advice", MsgLogType.ADVICE, MsgLogResultFormat.MARKDOWN),
            ("ask_user", MsgLogType.ASK, MsgLogResultFormat.MARKDOWN),
            ("done", MsgLogType.DONE, MsgLogResultFormat.MARKDOWN),
            ("coder", MsgLogType.THOUGHTS, MsgLogResultFormat.MARKDOWN),
        ],
    )
    def test_message_kinds(self, name: str, msg_type, result_format) -> None:
        assert registry.get_message_type(name) == msg_type
        assert registry.get_result_format(name) == result_format
