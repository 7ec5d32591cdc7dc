"""Capability-scoped tool executor.

One ``RoleToolsExecutor`` is built per agent invocation by the
``RoleToolsExecutorFactory``. It owns the tool definitions handed to the
model, the handler of every tool and the barrier set of the role.

Unknown tools and malformed JSON arguments are answered with a message the
model can act on. Handler failures raise so that the bridge can repair the
arguments and retry.
"""

import json
import logging
from typing import Any

from agentflow.configuration.logging import truncate_for_log
from agentflow.domain.ports.services.agent_log_port import MsgLogProvider, MsgLogResultFormat
from agentflow.domain.ports.services.tools_executor_port import (
    ExecutorHandler,
    FunctionInfo,
    SummarizeHandler,
    ToolDefinition,
)
from agentflow.infrastructure.agent.errors import AgentExecutionError, AgentValidationError
from agentflow.infrastructure.agent.tools import registry
from agentflow.infrastructure.agent.tools.names import SUMMARIZABLE_TOOL_NAMES

logger = logging.getLogger(__name__)

DEFAULT_RESULT_SIZE_LIMIT = 16 * 1024
MAX_ARG_VALUE_LENGTH = 1024


class RoleToolsExecutor:
    """Tools, handlers and barriers of one agent role."""

    def __init__(
        self,
        definitions: list[ToolDefinition],
        handlers: dict[str, ExecutorHandler],
        barriers: list[str],
        task_id: int | None = None,
        subtask_id: int | None = None,
        msg_log: MsgLogProvider | None = None,
        summarizer: SummarizeHandler | None = None,
        result_size_limit: int = DEFAULT_RESULT_SIZE_LIMIT,
    ) -> None:
        self.definitions = definitions
        self.handlers = handlers
        self.barriers = dict.fromkeys(barriers)
        self.task_id = task_id
        self.subtask_id = subtask_id
        self.msg_log = msg_log
        self.summarizer = summarizer
        self.result_size_limit = result_size_limit

    def tools(self) -> list[ToolDefinition]:
        return list(self.definitions)

    async def execute(
        self,
        stream_id: int,
        tool_call_id: str,
        name: str,
        thinking: str,
        args: str,
    ) -> str:
        handler = self.handlers.get(name)
        if handler is None:
            return f"function '{name}' not found in available tools list"

        try:
            parsed = json.loads(args)
        except (TypeError, ValueError) as e:
            return f"failed to unmarshal '{name}' tool call arguments: {e}: fix it"

        message = ""
        if isinstance(parsed, dict) and isinstance(parsed.get("message"), str):
            message = parsed["message"]

        msg_id = 0
        if message and self.msg_log is not None:
            msg_id = await self.msg_log.put_msg(
                registry.get_message_type(name),
                self.task_id,
                self.subtask_id,
                stream_id,
                thinking,
                message,
            )

        logger.debug(
            f"[ToolsExecutor] Executing {name} ({tool_call_id}): {truncate_for_log(args)}"
        )
        result_format = registry.get_result_format(name)
        try:
            result = await handler(name, args)
        except Exception as e:
            raise AgentExecutionError(
                f"failed to execute handler: {e}", step="execute", tool_name=name, cause=e
            ) from e

        if (
            self.summarizer is not None
            and name in SUMMARIZABLE_TOOL_NAMES
            and len(result) > self.result_size_limit
        ):
            prompt = self.get_summarize_prompt(name, parsed, result)
            try:
                result = await self.summarizer(prompt)
            except Exception as e:
                raise AgentExecutionError(
                    f"failed to summarize result: {e}", step="summarize", tool_name=name, cause=e
                ) from e
            result_format = MsgLogResultFormat.MARKDOWN

        if message and self.msg_log is not None:
            await self.msg_log.update_msg_result(msg_id, stream_id, result, result_format)

        return result

    def get_summarize_prompt(self, name: str, args: Any, result: str) -> str:
        """Build the prompt that shortens a long tool result."""
        lines = []
        if isinstance(args, dict):
            for key, value in args.items():
                text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
                if len(text) > MAX_ARG_VALUE_LENGTH:
                    text = text[:MAX_ARG_VALUE_LENGTH] + "... [truncated]"
                lines.append(f"{key}: {text}")

        try:
            schema = json.dumps(self.get_tool_schema(name), indent=2)
        except AgentValidationError:
            schema = ""

        formatted_args = "\n".join(lines)
        return (
            "<instructions>\n"
            f"Summarize the output of the '{name}' function call in at most "
            f"{self.result_size_limit // 2} characters.\n"
            "Keep every actionable detail: exact error messages, file paths, URLs, commands "
            "and technical terms. Start with what the call achieved or attempted and "
            "structure the rest with headings and bullet points.\n"
            "</instructions>\n\n"
            f'<function name="{name}">\n'
            f"<arguments>\n{formatted_args}\n</arguments>\n"
            f"<schema>\n{schema}\n</schema>\n"
            "</function>\n\n"
            f"<result>\n{result}\n</result>"
        )

    def get_tool_schema(self, name: str) -> dict[str, Any]:
        for definition in self.definitions:
            if definition.name == name:
                return definition.parameters
        if name in registry.REGISTRY:
            return registry.REGISTRY[name].schema()
        raise AgentValidationError(f"tool {name} not found", field="name", value=name)

    def is_barrier_function(self, name: str) -> bool:
        return name in self.barriers

    def get_barrier_tool_names(self) -> list[str]:
        return list(self.barriers)

    def get_barrier_tools(self) -> list[FunctionInfo]:
        tools = []
        for name in self.barriers:
            try:
                schema = self.get_tool_schema(name)
            except AgentValidationError:
                logger.warning(f"[ToolsExecutor] Barrier tool {name} has no schema")
                continue
            tools.append(FunctionInfo(name=name, schema=json.dumps(schema)))
        return tools
