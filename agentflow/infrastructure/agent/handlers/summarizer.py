"""Result summarizer used for long tool results and chain compression."""

import logging

from agentflow.domain.model.chain.msg_chain import MsgChainType
from agentflow.domain.ports.services.prompt_renderer_port import PromptRenderer, PromptType
from agentflow.domain.ports.services.provider_client_port import ProviderOptionsType
from agentflow.infrastructure.agent.config import ExecutionConfig
from agentflow.infrastructure.agent.core.caller import ChainCaller
from agentflow.infrastructure.agent.errors import AgentExecutionError, error_text
from agentflow.infrastructure.agent.execution_context import get_current_time

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n{TRUNCATED}...\n\n"


def truncate_middle(text: str, limit: int) -> str:
    """Keep the first and last ``limit`` characters of texts longer than twice the limit."""
    if len(text) <= 2 * limit:
        return text
    return text[:limit] + TRUNCATION_MARKER + text[-limit:]


class SummarizeResultHandler:
    """Summarizes text through a ``summarizer`` simple chain of one task/subtask."""

    def __init__(
        self,
        caller: ChainCaller,
        prompter: PromptRenderer,
        task_id: int | None,
        subtask_id: int | None,
        config: ExecutionConfig | None = None,
    ) -> None:
        self.caller = caller
        self.prompter = prompter
        self.task_id = task_id
        self.subtask_id = subtask_id
        self.config = config or ExecutionConfig()

    async def __call__(self, result: str) -> str:
        try:
            system_prompt = self.prompter.render_template(
                PromptType.SUMMARIZER,
                {
                    "TaskID": self.task_id,
                    "SubtaskID": self.subtask_id,
                    "CurrentTime": get_current_time(),
                },
            )
        except Exception as e:
            raise AgentExecutionError(
                f"failed to get summarizer template: {error_text(e)}", step="summarize", cause=e
            ) from e

        # oversized results keep their head and tail
        result = truncate_middle(result, self.config.msg_summarizer_limit)

        try:
            return await self.caller.perform_simple_chain(
                self.task_id,
                self.subtask_id,
                ProviderOptionsType.SIMPLE,
                MsgChainType.SUMMARIZER,
                system_prompt,
                result,
            )
        except Exception as e:
            raise AgentExecutionError(
                f"failed to get summary: {error_text(e)}", step="summarize", cause=e
            ) from e
