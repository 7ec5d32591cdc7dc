"""In-memory collaborators of the engine shared by the test suite."""

import itertools
import json
from collections import defaultdict
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from agentflow.domain.exceptions import TemplateNotFoundError
from agentflow.domain.model.chain.message import Message, ToolCall, clone_chain
from agentflow.domain.model.chain.msg_chain import MsgChain, MsgChainType
from agentflow.domain.model.flow.task import Subtask, SubtaskStatus, Task, TaskStatus
from agentflow.domain.ports.repositories.flow_repository import FlowRepository
from agentflow.domain.ports.services.agent_log_port import MsgLogResultFormat, MsgLogType
from agentflow.domain.ports.services.prompt_renderer_port import PromptType
from agentflow.domain.ports.services.provider_client_port import (
    ContentChoice,
    ContentResponse,
    ProviderOptionsType,
    StreamingCallback,
    StreamingChunk,
    StreamingChunkType,
)
from agentflow.domain.ports.services.tools_executor_port import SummarizeHandler, ToolDefinition
from agentflow.infrastructure.agent.chain.tool_call_ids import generate_tool_call_id
from agentflow.infrastructure.agent.core.stream import StreamMessageChunk
from agentflow.infrastructure.agent.errors import RecordNotFoundError

# ============================================================================
# Model responses
# ============================================================================


def tool_call(name: str, arguments: Any = None, call_id: str | None = None) -> ToolCall:
    """Build a tool call; dict arguments are JSON encoded."""
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments or {})
    return ToolCall(id=call_id or generate_tool_call_id(), name=name, arguments=arguments)


def tool_calls_response(
    *calls: ToolCall,
    info: dict[str, Any] | None = None,
    content: str = "",
    reasoning: str = "",
) -> ContentResponse:
    return ContentResponse(
        choices=[
            ContentChoice(
                content=content,
                tool_calls=list(calls),
                generation_info=info,
                reasoning_content=reasoning,
            )
        ]
    )


def text_response(text: str, info: dict[str, Any] | None = None) -> ContentResponse:
    return ContentResponse(choices=[ContentChoice(content=text, generation_info=info)])


class FakeProviderClient:
    """Model client replaying scripted responses per option set.

    A scripted item is either a ``ContentResponse`` or an exception to raise.
    Tool-enabled calls fail when their script is exhausted; simple calls fall
    back to ``"<options> answer"``.
    """

    def __init__(self) -> None:
        self.scripts: dict[ProviderOptionsType, list[Any]] = defaultdict(list)
        self.simple_scripts: dict[ProviderOptionsType, list[Any]] = defaultdict(list)
        self.tool_calls_log: list[tuple[ProviderOptionsType, list[Message], list[str]]] = []
        self.simple_calls_log: list[tuple[ProviderOptionsType, list[Message]]] = []
        self.prompts: list[str] = []
        self.title = "Scan the target host"

    def script(self, options_type: ProviderOptionsType, *items: Any) -> None:
        self.scripts[options_type].extend(items)

    def script_simple(self, options_type: ProviderOptionsType, *items: Any) -> None:
        self.simple_scripts[options_type].extend(items)

    def type(self) -> str:
        return "fake"

    def model(self, options_type: ProviderOptionsType) -> str:
        return f"fake-{options_type.value}"

    def get_usage(self, info: dict[str, Any]) -> tuple[int, int]:
        return int(info.get("input", 0)), int(info.get("output", 0))

    async def call(self, options_type: ProviderOptionsType, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.title

    async def call_ex(
        self,
        options_type: ProviderOptionsType,
        chain: list[Message],
        stream_cb: StreamingCallback | None = None,
    ) -> ContentResponse:
        self.simple_calls_log.append((options_type, clone_chain(chain)))
        queue = self.simple_scripts[options_type]
        item = queue.pop(0) if queue else text_response(f"{options_type.value} answer")
        if isinstance(item, BaseException):
            raise item
        return item

    async def call_with_tools(
        self,
        options_type: ProviderOptionsType,
        chain: list[Message],
        tools: list[ToolDefinition],
        stream_cb: StreamingCallback | None = None,
    ) -> ContentResponse:
        self.tool_calls_log.append((options_type, clone_chain(chain), [t.name for t in tools]))
        queue = self.scripts[options_type]
        if not queue:
            raise RuntimeError(f"no scripted response for {options_type.value}")
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item

        if stream_cb is not None:
            for choice in item.choices:
                if choice.reasoning_content:
                    await stream_cb(
                        StreamingChunk(
                            type=StreamingChunkType.REASONING,
                            reasoning_content=choice.reasoning_content,
                        )
                    )
                if choice.content:
                    await stream_cb(
                        StreamingChunk(type=StreamingChunkType.TEXT, content=choice.content)
                    )
            await stream_cb(StreamingChunk(type=StreamingChunkType.DONE))
        return item

    def calls_of(self, options_type: ProviderOptionsType) -> list[list[Message]]:
        """Chains sent with tools for one option set."""
        return [chain for opts, chain, _ in self.tool_calls_log if opts == options_type]


# ============================================================================
# Prompts
# ============================================================================


class FakePromptRenderer:
    """Renders ``<template name>`` and records every call."""

    def __init__(
        self,
        missing: set[PromptType] | None = None,
        overrides: dict[PromptType, Callable[[Any], str]] | None = None,
    ) -> None:
        self.missing = set(missing or ())
        self.overrides = dict(overrides or {})
        self.rendered: list[tuple[PromptType, Any]] = []

    def render_template(self, prompt_type: PromptType, params: Any) -> str:
        if prompt_type in self.missing:
            raise TemplateNotFoundError(prompt_type)
        self.rendered.append((prompt_type, dict(params) if isinstance(params, dict) else params))
        if prompt_type in self.overrides:
            return self.overrides[prompt_type](params)
        return f"<{prompt_type.value}>"

    def params_of(self, prompt_type: PromptType) -> Any:
        """Parameters of the last rendering of a template."""
        for rendered_type, params in reversed(self.rendered):
            if rendered_type == prompt_type:
                return params
        raise AssertionError(f"template {prompt_type.value} was not rendered")

    def count(self, prompt_type: PromptType) -> int:
        return sum(1 for rendered_type, _ in self.rendered if rendered_type == prompt_type)


# ============================================================================
# Storage
# ============================================================================


class InMemoryFlowRepository(FlowRepository):
    """Dictionary backed storage of one or more flows.

    ``fail_on`` holds method names that raise ``RuntimeError``.
    """

    def __init__(self, flow_id: int = 1) -> None:
        self.flow_id = flow_id
        self.tasks: dict[int, Task] = {}
        self.subtasks: dict[int, Subtask] = {}
        self.chains: dict[int, MsgChain] = {}
        self.assistants: dict[int, bool] = {}
        self.fail_on: set[str] = set()
        self._task_ids = itertools.count(1)
        self._subtask_ids = itertools.count(1)
        self._chain_ids = itertools.count(1)

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise RuntimeError(f"{operation} failed")

    # === Seeding ===

    def add_task(
        self,
        input: str = "scan the host",
        title: str = "",
        status: TaskStatus = TaskStatus.RUNNING,
        flow_id: int | None = None,
    ) -> Task:
        task = Task(
            id=next(self._task_ids),
            flow_id=flow_id if flow_id is not None else self.flow_id,
            title=title or input,
            input=input,
            status=status,
        )
        self.tasks[task.id] = task
        return task

    def add_subtask(
        self,
        task_id: int,
        title: str,
        description: str = "",
        status: SubtaskStatus = SubtaskStatus.CREATED,
        result: str = "",
        context: str = "",
    ) -> Subtask:
        subtask = Subtask(
            id=next(self._subtask_ids),
            task_id=task_id,
            title=title,
            description=description or f"{title} description",
            status=status,
            result=result,
            context=context,
        )
        self.subtasks[subtask.id] = subtask
        return subtask

    def add_assistant(self, use_agents: bool = False) -> int:
        assistant_id = len(self.assistants) + 1
        self.assistants[assistant_id] = use_agents
        return assistant_id

    def chains_of(self, chain_type: MsgChainType) -> list[MsgChain]:
        return [c for c in self.chains.values() if c.type == chain_type]

    # === Message chains ===

    async def create_msg_chain(self, msg_chain: MsgChain) -> MsgChain:
        self._check("create_msg_chain")
        stored = replace(msg_chain, id=next(self._chain_ids))
        self.chains[stored.id] = stored
        return replace(stored)

    async def get_msg_chain(self, chain_id: int) -> MsgChain:
        self._check("get_msg_chain")
        if chain_id not in self.chains:
            raise RecordNotFoundError("msg_chain", chain_id)
        return replace(self.chains[chain_id])

    async def update_msg_chain(self, chain_id: int, chain: str) -> MsgChain:
        self._check("update_msg_chain")
        if chain_id not in self.chains:
            raise RecordNotFoundError("msg_chain", chain_id)
        self.chains[chain_id].chain = chain
        return replace(self.chains[chain_id])

    async def update_msg_chain_usage(
        self, chain_id: int, usage_in: int, usage_out: int
    ) -> MsgChain:
        self._check("update_msg_chain_usage")
        if chain_id not in self.chains:
            raise RecordNotFoundError("msg_chain", chain_id)
        stored = self.chains[chain_id]
        stored.usage_in += usage_in
        stored.usage_out += usage_out
        return replace(stored)

    async def get_flow_task_type_last_msg_chain(
        self, flow_id: int, task_id: int | None, chain_type: MsgChainType
    ) -> MsgChain | None:
        self._check("get_flow_task_type_last_msg_chain")
        matches = [
            c
            for c in self.chains.values()
            if c.flow_id == flow_id and c.task_id == task_id and c.type == chain_type
        ]
        if not matches:
            return None
        return replace(max(matches, key=lambda c: c.id))

    # === Tasks ===

    async def get_task(self, task_id: int) -> Task:
        self._check("get_task")
        if task_id not in self.tasks:
            raise RecordNotFoundError("task", task_id)
        return replace(self.tasks[task_id])

    async def get_flow_task(self, flow_id: int, task_id: int) -> Task:
        self._check("get_flow_task")
        task = self.tasks.get(task_id)
        if task is None or task.flow_id != flow_id:
            raise RecordNotFoundError("task", task_id)
        return replace(task)

    async def get_flow_tasks(self, flow_id: int) -> list[Task]:
        self._check("get_flow_tasks")
        return [
            replace(t)
            for t in sorted(self.tasks.values(), key=lambda t: t.id)
            if t.flow_id == flow_id
        ]

    # === Subtasks ===

    async def get_subtask(self, subtask_id: int) -> Subtask:
        self._check("get_subtask")
        if subtask_id not in self.subtasks:
            raise RecordNotFoundError("subtask", subtask_id)
        return replace(self.subtasks[subtask_id])

    async def get_flow_subtask(self, flow_id: int, subtask_id: int) -> Subtask:
        self._check("get_flow_subtask")
        subtask = self.subtasks.get(subtask_id)
        if subtask is None or self.tasks[subtask.task_id].flow_id != flow_id:
            raise RecordNotFoundError("subtask", subtask_id)
        return replace(subtask)

    async def get_flow_subtasks(self, flow_id: int) -> list[Subtask]:
        self._check("get_flow_subtasks")
        return [
            replace(s)
            for s in sorted(self.subtasks.values(), key=lambda s: s.id)
            if self.tasks[s.task_id].flow_id == flow_id
        ]

    async def get_task_planned_subtasks(self, task_id: int) -> list[Subtask]:
        self._check("get_task_planned_subtasks")
        return [
            replace(s)
            for s in sorted(self.subtasks.values(), key=lambda s: s.id)
            if s.task_id == task_id and s.status == SubtaskStatus.CREATED
        ]

    async def update_subtask_context(self, subtask_id: int, context: str) -> Subtask:
        self._check("update_subtask_context")
        if subtask_id not in self.subtasks:
            raise RecordNotFoundError("subtask", subtask_id)
        self.subtasks[subtask_id].context = context
        return replace(self.subtasks[subtask_id])

    async def update_subtask_result(self, subtask_id: int, result: str) -> Subtask:
        self._check("update_subtask_result")
        if subtask_id not in self.subtasks:
            raise RecordNotFoundError("subtask", subtask_id)
        self.subtasks[subtask_id].result = result
        return replace(self.subtasks[subtask_id])

    # === Assistants ===

    async def get_assistant_use_agents(self, assistant_id: int) -> bool:
        self._check("get_assistant_use_agents")
        if assistant_id not in self.assistants:
            raise RecordNotFoundError("assistant", assistant_id)
        return self.assistants[assistant_id]


# ============================================================================
# Log sinks, summarizer and stream
# ============================================================================


class FakeAgentLog:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.entries: list[tuple[MsgChainType, MsgChainType, str, str, int | None, int | None]] = []

    async def put_log(
        self,
        parent_role: MsgChainType,
        child_role: MsgChainType,
        question: str,
        answer: str,
        task_id: int | None,
        subtask_id: int | None,
    ) -> int:
        if self.fail:
            raise RuntimeError("agent log unavailable")
        self.entries.append((parent_role, child_role, question, answer, task_id, subtask_id))
        return len(self.entries)


class FakeMsgLog:
    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []
        self.results: list[tuple[int, int, str, MsgLogResultFormat]] = []

    async def put_msg(
        self,
        msg_type: MsgLogType,
        task_id: int | None,
        subtask_id: int | None,
        stream_id: int,
        thinking: str,
        msg: str,
    ) -> int:
        self.messages.append(
            {
                "type": msg_type,
                "task_id": task_id,
                "subtask_id": subtask_id,
                "stream_id": stream_id,
                "thinking": thinking,
                "msg": msg,
            }
        )
        return len(self.messages)

    async def update_msg_result(
        self,
        msg_id: int,
        stream_id: int,
        result: str,
        result_format: MsgLogResultFormat,
    ) -> None:
        self.results.append((msg_id, stream_id, result, result_format))


class FakeSummarizer:
    """Chain summarizer that keeps chains as they are, or fails on demand."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def summarize_chain(
        self, handler: SummarizeHandler, chain: list[Message]
    ) -> list[Message]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("summarizer unavailable")
        return list(chain)


class StreamRecorder:
    def __init__(self) -> None:
        self.chunks: list[StreamMessageChunk] = []

    async def __call__(self, chunk: StreamMessageChunk) -> None:
        self.chunks.append(chunk)


class RecordingHandler:
    """Tool handler returning a fixed result, optionally failing first."""

    def __init__(self, result: str = "ok", failures: int = 0) -> None:
        self.result = result
        self.failures = failures
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, name: str, args: str) -> str:
        self.calls.append((name, args))
        if self.failures > 0:
            self.failures -= 1
            raise ValueError(f"bad arguments for {name}")
        return self.result
