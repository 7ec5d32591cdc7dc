"""Repair of tool call arguments rejected by a handler."""

import json
import logging
from typing import Any

from agentflow.domain.model.chain.msg_chain import MsgChainType
from agentflow.domain.ports.services.prompt_renderer_port import PromptRenderer, PromptType
from agentflow.domain.ports.services.provider_client_port import ProviderOptionsType
from agentflow.infrastructure.agent.core.caller import ChainCaller
from agentflow.infrastructure.agent.errors import AgentExecutionError, error_text
from agentflow.infrastructure.telemetry.tracing import async_with_tracer

logger = logging.getLogger(__name__)


class ToolCallArgsFixer:
    """Asks the model to rewrite arguments so they satisfy the tool schema."""

    def __init__(self, caller: ChainCaller, prompter: PromptRenderer) -> None:
        self.caller = caller
        self.prompter = prompter

    @async_with_tracer("tool_call_fixer")
    async def fix(
        self,
        name: str,
        args: str,
        schema: dict[str, Any],
        error: BaseException,
    ) -> str:
        """Return new JSON arguments for the failed call.

        Raises:
            AgentExecutionError: If the prompts can not be rendered or the
                model call fails
        """
        try:
            user_prompt = self.prompter.render_template(
                PromptType.INPUT_TOOL_CALL_FIXER,
                {
                    "ToolCallName": name,
                    "ToolCallArgs": args,
                    "ToolCallSchema": json.dumps(schema),
                    "ToolCallError": error_text(error),
                },
            )
        except Exception as e:
            raise AgentExecutionError(
                f"failed to get user tool call fixer template: {error_text(e)}",
                step="fix_args",
                tool_name=name,
                cause=e,
            ) from e

        try:
            system_prompt = self.prompter.render_template(PromptType.TOOL_CALL_FIXER, {})
        except Exception as e:
            raise AgentExecutionError(
                f"failed to get system tool call fixer template: {error_text(e)}",
                step="fix_args",
                tool_name=name,
                cause=e,
            ) from e

        try:
            fixed = await self.caller.perform_simple_chain(
                None,
                None,
                ProviderOptionsType.SIMPLE_JSON,
                MsgChainType.TOOL_CALL_FIXER,
                system_prompt,
                user_prompt,
            )
        except Exception as e:
            raise AgentExecutionError(
                f"failed to get tool call fixer result: {error_text(e)}",
                step="fix_args",
                tool_name=name,
                cause=e,
            ) from e

        logger.debug(f"[ToolCallFixer] Rewrote arguments of {name}")
        return fixed
