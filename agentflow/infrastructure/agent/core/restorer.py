"""Chain restoration for agents started again on the same task.

An agent role re-entered for a task continues from its last chain instead of
starting empty: the system prompt is replaced, an unfinished human turn or
an unanswered tool-call turn is dropped, the new human prompt is appended,
tool call IDs are normalized and provider reasoning is cleared. Anything that
goes wrong falls back to a fresh ``[system, human]`` chain. The result is
always persisted as a new chain row.
"""

import logging

from agentflow.domain.model.chain.message import Message, chain_from_json, is_empty_chain
from agentflow.domain.model.chain.msg_chain import MsgChainType
from agentflow.domain.ports.repositories.flow_repository import FlowRepository
from agentflow.domain.ports.services.provider_client_port import ProviderOptionsType
from agentflow.domain.ports.services.summarizer_port import Summarizer
from agentflow.domain.ports.services.tools_executor_port import SummarizeHandler
from agentflow.infrastructure.agent.chain.chain_ast import BodyPairType, ChainAST
from agentflow.infrastructure.agent.config import ExecutionConfig
from agentflow.infrastructure.agent.core.caller import ChainCaller
from agentflow.infrastructure.agent.errors import AgentError, ChainStructureError

logger = logging.getLogger(__name__)


def initial_chain(system_prompt: str, human_prompt: str) -> list[Message]:
    chain = [Message.system(system_prompt)]
    if human_prompt:
        chain.append(Message.human(human_prompt))
    return chain


class ChainRestorer:
    """Rebuilds the chain of an agent role from its last persisted run."""

    def __init__(
        self,
        flow_id: int,
        repository: FlowRepository,
        caller: ChainCaller,
        summarizer: Summarizer | None = None,
        config: ExecutionConfig | None = None,
    ) -> None:
        self.flow_id = flow_id
        self.repository = repository
        self.caller = caller
        self.summarizer = summarizer
        self.config = config or ExecutionConfig()

    async def restore_chain(
        self,
        task_id: int | None,
        subtask_id: int | None,
        options_type: ProviderOptionsType,
        chain_type: MsgChainType,
        system_prompt: str,
        human_prompt: str,
        summarize_handler: SummarizeHandler,
    ) -> tuple[int, list[Message]]:
        """Return the ID of the new chain row and its messages.

        Raises:
            StorageError: If the new chain row can not be created
        """
        try:
            last = await self.repository.get_flow_task_type_last_msg_chain(
                self.flow_id, task_id, chain_type
            )
        except Exception as e:
            logger.warning(f"[ChainRestorer] Failed to load last {chain_type.value} chain: {e}")
            last = None

        if last is None or is_empty_chain(last.chain):
            chain = initial_chain(system_prompt, human_prompt)
        else:
            try:
                chain = await self._rebuild(
                    last.chain, system_prompt, human_prompt, summarize_handler
                )
            except AgentError as e:
                logger.warning(
                    f"[ChainRestorer] Failed to restore {chain_type.value} chain {last.id}, "
                    f"starting a new one: {e}"
                )
                chain = initial_chain(system_prompt, human_prompt)

        msg_chain = await self.caller.create_msg_chain(
            chain_type, options_type, chain, task_id, subtask_id
        )
        return msg_chain.id, chain

    async def _rebuild(
        self,
        blob: str,
        system_prompt: str,
        human_prompt: str,
        summarize_handler: SummarizeHandler,
    ) -> list[Message]:
        ast = ChainAST.from_messages(chain_from_json(blob), force=True)
        if not ast.sections:
            raise ChainStructureError("failed to get sections from restored chain")

        ast.sections[0].header.system_message = Message.system(system_prompt)
        if human_prompt:
            last_section = ast.sections[-1]
            if not last_section.body:
                # the previous human turn was never answered
                last_section.header.human_message = None
            else:
                last_pair = last_section.body[-1]
                if last_pair.type == BodyPairType.REQUEST_RESPONSE and not last_pair.tool_messages:
                    last_section.body.pop()
            ast.append_human_message(human_prompt)

        ast.normalize_tool_call_ids(self.config.tool_call_id_template)
        ast.clear_reasoning()

        if self.summarizer is None:
            return ast.messages()
        try:
            return await self.summarizer.summarize_chain(summarize_handler, ast.messages())
        except Exception as e:
            logger.warning(f"[ChainRestorer] Failed to summarize restored chain: {e}")
            return ast.messages()
