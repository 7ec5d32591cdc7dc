"""Tool call bridge between the execution loop and a tools executor.

Each call is checked against the repeating-call detector first. A repeating
call is answered with a redirect message and never executed. Otherwise the
call is executed; when the handler fails, the arguments are repaired by the
``ToolCallArgsFixer`` and the call is retried, up to
``ExecutionConfig.max_retries_tool_call`` executions.
"""

import logging

from agentflow.configuration.logging import truncate_for_log
from agentflow.domain.ports.services.tools_executor_port import ContextToolsExecutor
from agentflow.infrastructure.agent.config import ExecutionConfig
from agentflow.infrastructure.agent.core.caller import CallResult
from agentflow.infrastructure.agent.doom_loop.detector import RepeatingCallDetector
from agentflow.infrastructure.agent.errors import AgentExecutionError, error_text
from agentflow.infrastructure.agent.tools.fixer import ToolCallArgsFixer
from agentflow.infrastructure.telemetry.tracing import add_span_attributes

logger = logging.getLogger(__name__)


class ToolCallBridge:
    """Runs the tool calls of one model turn."""

    def __init__(self, fixer: ToolCallArgsFixer, config: ExecutionConfig | None = None) -> None:
        self.fixer = fixer
        self.config = config or ExecutionConfig()

    async def exec_tool_call(
        self,
        chain_id: int,
        index: int,
        result: CallResult,
        detector: RepeatingCallDetector,
        executor: ContextToolsExecutor,
    ) -> str:
        """Execute ``result.tool_calls[index]`` and return the tool response.

        Raises:
            AgentExecutionError: If the schema lookup or the argument repair
                fails, or the call failed on every attempt
        """
        # Only the first call of a turn is attached to the turn's stream.
        stream_id, thinking = 0, ""
        if index == 0:
            stream_id, thinking = result.stream_id, result.thinking

        tool_call = result.tool_calls[index]
        name = tool_call.name
        args = tool_call.arguments
        add_span_attributes({"tool.name": name, "tool.call_id": tool_call.id, "chain.id": chain_id})

        if detector.detect(tool_call):
            logger.warning(
                f"[ToolCallBridge] Tool call {name} is repeating in chain {chain_id}: "
                f"{truncate_for_log(args)}"
            )
            return f"tool call '{name}' is repeating, please try another tool"

        last_error: Exception | None = None
        for attempt in range(self.config.max_retries_tool_call):
            try:
                return await executor.execute(stream_id, tool_call.id, name, thinking, args)
            except Exception as e:
                last_error = e
                logger.warning(
                    f"[ToolCallBridge] Failed to exec function {name} "
                    f"(attempt {attempt + 1}/{self.config.max_retries_tool_call}): {e}"
                )

            try:
                schema = executor.get_tool_schema(name)
            except Exception as e:
                logger.error(f"[ToolCallBridge] Failed to get tool schema of {name}: {e}")
                raise AgentExecutionError(
                    f"failed to get tool schema: {error_text(e)}",
                    step="exec_tool_call",
                    tool_name=name,
                    cause=e,
                ) from e

            try:
                args = await self.fixer.fix(name, args, schema, last_error)
            except Exception as e:
                logger.error(f"[ToolCallBridge] Failed to fix tool call args of {name}: {e}")
                raise AgentExecutionError(
                    f"failed to fix tool call args: {error_text(e)}",
                    step="exec_tool_call",
                    tool_name=name,
                    cause=e,
                ) from e

        logger.error(f"[ToolCallBridge] Failed to exec function {name}: {last_error}")
        raise AgentExecutionError(
            f"failed to exec function '{name}': reached max retries to call function: "
            f"{error_text(last_error)}",
            step="exec_tool_call",
            tool_name=name,
            cause=last_error,
        )
