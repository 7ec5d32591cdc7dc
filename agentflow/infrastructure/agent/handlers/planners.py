"""Planning agents of a task: subtask generator, subtask refiner and reporter.

Planners run at task level (no subtask) as root agents. The generator and
the refiner may consult the memorist and a task searcher; the reporter has
only its result tool.
"""

import logging

from agentflow.domain.model.agent.agent_context import AgentContext
from agentflow.domain.model.agent.tool_args import SubtaskInfo, SubtaskList, SubtaskPatch, TaskResult
from agentflow.domain.model.chain.message import Message, chain_from_json, is_empty_chain
from agentflow.domain.model.chain.msg_chain import MsgChain, MsgChainType
from agentflow.domain.model.flow.task import Subtask
from agentflow.domain.ports.services.provider_client_port import ProviderOptionsType
from agentflow.domain.ports.services.tools_executor_port import (
    GeneratorExecutorConfig,
    RefinerExecutorConfig,
    ReporterExecutorConfig,
)
from agentflow.infrastructure.agent.chain.chain_ast import BodyPairType, ChainAST
from agentflow.infrastructure.agent.core.restorer import initial_chain
from agentflow.infrastructure.agent.errors import AgentValidationError, ChainStructureError
from agentflow.infrastructure.agent.execution_context import subtasks_to_markdown
from agentflow.infrastructure.agent.handlers.base import ResultBarrier, parse_payload
from agentflow.infrastructure.agent.handlers.factory import HandlerFactory
from agentflow.infrastructure.agent.subtask_patch import (
    apply_subtask_operations,
    convert_subtask_info_patch,
    validate_subtask_patch,
)
from agentflow.infrastructure.telemetry.tracing import async_with_tracer

logger = logging.getLogger(__name__)


def restore_refiner_chain(blob: str, system_prompt: str, human_prompt: str) -> list[Message]:
    """Continue the first section of a previous generator/refiner chain.

    The last request-response pair (the previous subtask list or patch) and
    everything after it are removed, then trailing completions are dropped.

    Raises:
        ChainStructureError: If the chain has no sections
    """
    ast = ChainAST.from_messages(chain_from_json(blob), force=True)
    if not ast.sections:
        raise ChainStructureError("failed to get sections from refiner chain ast")

    # later sections may come from the reflector
    section = ast.sections[0]
    section.header.system_message = Message.system(system_prompt)
    section.header.human_message = Message.human(human_prompt)

    for idx in range(len(section.body) - 1, -1, -1):
        if section.body[idx].type == BodyPairType.REQUEST_RESPONSE:
            section.body = section.body[:idx]
            break

    for idx in range(len(section.body) - 1, -1, -1):
        if section.body[idx].type != BodyPairType.COMPLETION:
            section.body = section.body[: idx + 1]
            break

    return section.messages()


class SubtaskPatchBarrier(ResultBarrier[SubtaskPatch]):
    """``subtask_patch`` barrier; rejects patches with invalid operations."""

    def __init__(self) -> None:
        super().__init__(SubtaskPatch, "subtask patch successfully processed", "subtask patch")

    async def __call__(self, name: str, args: str) -> str:
        logger.debug(f"[Refiner] Received subtask patch ({len(args)} bytes)")
        patch = parse_payload(SubtaskPatch, args, self.what)
        try:
            validate_subtask_patch(patch)
        except AgentValidationError as e:
            logger.error(f"[Refiner] Invalid subtask patch: {e}")
            raise AgentValidationError(
                f"invalid subtask patch: {e.message}",
                field="operations",
                operation_index=e.operation_index,
                cause=e,
            ) from e
        logger.debug(f"[Refiner] Subtask patch validated: {len(patch.operations)} operations")
        self.value = patch
        return self.reply


class TaskPlanners:
    """Runs the generator, refiner and reporter agents of a flow."""

    def __init__(self, handlers: HandlerFactory) -> None:
        self.handlers = handlers

    @property
    def flow_id(self) -> int:
        return self.handlers.flow_id

    async def _create_chain(
        self,
        chain_type: MsgChainType,
        options_type: ProviderOptionsType,
        chain: list[Message],
        task_id: int | None,
        subtask_id: int | None = None,
    ) -> int:
        msg_chain = await self.handlers.caller.create_msg_chain(
            chain_type, options_type, chain, task_id, subtask_id
        )
        return msg_chain.id

    @async_with_tracer("reporter")
    async def perform_task_result_reporter(
        self,
        task_id: int | None,
        subtask_id: int | None,
        system_prompt: str,
        user_prompt: str,
        question: str,
    ) -> TaskResult:
        agent_ctx = AgentContext.root(MsgChainType.REPORTER)
        options_type = ProviderOptionsType.SIMPLE
        chain = [Message.system(system_prompt), Message.human(user_prompt)]

        barrier = ResultBarrier(TaskResult, "report result successfully processed", "task result")
        try:
            executor = self.handlers.tools.get_reporter_executor(
                ReporterExecutorConfig(task_id=task_id, subtask_id=subtask_id, report_result=barrier)
            )
        except Exception as e:
            raise HandlerFactory.wrap("failed to get reporter executor", e) from e

        chain_id = await self._create_chain(
            MsgChainType.REPORTER, options_type, chain, task_id, subtask_id
        )
        try:
            await self.handlers.performer.perform_agent_chain(
                agent_ctx,
                options_type,
                chain_id,
                task_id,
                subtask_id,
                chain,
                executor,
                self.handlers.summarizer,
            )
        except Exception as e:
            raise HandlerFactory.wrap("failed to get task reporter result", e) from e

        result = barrier.value or TaskResult(result="", message="")
        await self.handlers.put_agent_log(agent_ctx, question, result.result, task_id, subtask_id)
        return result

    @async_with_tracer("generator")
    async def perform_subtasks_generator(
        self, task_id: int, system_prompt: str, user_prompt: str, question: str
    ) -> list[SubtaskInfo]:
        agent_ctx = AgentContext.root(MsgChainType.GENERATOR)
        options_type = ProviderOptionsType.GENERATOR
        chain = [Message.system(system_prompt), Message.human(user_prompt)]

        try:
            memorist = await self.handlers.memorist(agent_ctx, task_id, None)
        except Exception as e:
            raise HandlerFactory.wrap("failed to get memorist handler", e) from e
        try:
            searcher = await self.handlers.task_searcher(agent_ctx, task_id)
        except Exception as e:
            raise HandlerFactory.wrap("failed to get searcher handler", e) from e

        barrier = ResultBarrier(SubtaskList, "subtask list successfully processed", "subtask list")
        try:
            executor = self.handlers.tools.get_generator_executor(
                GeneratorExecutorConfig(
                    task_id=task_id, memorist=memorist, searcher=searcher, subtask_list=barrier
                )
            )
        except Exception as e:
            raise HandlerFactory.wrap("failed to get generator executor", e) from e

        chain_id = await self._create_chain(MsgChainType.GENERATOR, options_type, chain, task_id)
        try:
            await self.handlers.performer.perform_agent_chain(
                agent_ctx,
                options_type,
                chain_id,
                task_id,
                None,
                chain,
                executor,
                self.handlers.summarizer,
            )
        except Exception as e:
            raise HandlerFactory.wrap("failed to get subtasks generator result", e) from e

        subtasks = barrier.value.subtasks if barrier.value is not None else []
        await self.handlers.put_agent_log(
            agent_ctx, question, subtasks_to_markdown(subtasks), task_id, None
        )
        return subtasks

    async def _last_chain(self, task_id: int, chain_type: MsgChainType) -> MsgChain | None:
        try:
            msg_chain = await self.handlers.repository.get_flow_task_type_last_msg_chain(
                self.flow_id, task_id, chain_type
            )
        except Exception as e:
            logger.debug(f"[Refiner] No {chain_type.value} chain for task {task_id}: {e}")
            return None
        if msg_chain is None or is_empty_chain(msg_chain.chain):
            return None
        return msg_chain

    async def _refiner_chain(
        self, task_id: int, system_prompt: str, user_prompt: str
    ) -> list[Message]:
        refiner = await self._last_chain(task_id, MsgChainType.REFINER)
        if refiner is not None:
            try:
                return restore_refiner_chain(refiner.chain, system_prompt, user_prompt)
            except Exception as e:
                raise HandlerFactory.wrap("failed to restore chain from refiner state", e) from e

        generator = await self._last_chain(task_id, MsgChainType.GENERATOR)
        if generator is not None:
            try:
                return restore_refiner_chain(generator.chain, system_prompt, user_prompt)
            except Exception as e:
                raise HandlerFactory.wrap("failed to restore chain from generator state", e) from e

        return initial_chain(system_prompt, user_prompt)

    @async_with_tracer("refiner")
    async def perform_subtasks_refiner(
        self,
        task_id: int,
        planned: list[Subtask],
        system_prompt: str,
        user_prompt: str,
        question: str,
    ) -> list[SubtaskInfo]:
        agent_ctx = AgentContext.root(MsgChainType.REFINER)
        options_type = ProviderOptionsType.REFINER
        logger.debug(f"[Refiner] Starting subtasks refiner for task {task_id} ({len(planned)} planned)")

        chain = await self._refiner_chain(task_id, system_prompt, user_prompt)

        try:
            memorist = await self.handlers.memorist(agent_ctx, task_id, None)
        except Exception as e:
            raise HandlerFactory.wrap("failed to get memorist handler", e) from e
        try:
            searcher = await self.handlers.task_searcher(agent_ctx, task_id)
        except Exception as e:
            raise HandlerFactory.wrap("failed to get searcher handler", e) from e

        barrier = SubtaskPatchBarrier()
        try:
            executor = self.handlers.tools.get_refiner_executor(
                RefinerExecutorConfig(
                    task_id=task_id, memorist=memorist, searcher=searcher, subtask_patch=barrier
                )
            )
        except Exception as e:
            raise HandlerFactory.wrap("failed to get refiner executor", e) from e

        chain_id = await self._create_chain(MsgChainType.REFINER, options_type, chain, task_id)
        logger.debug(f"[Refiner] Created chain {chain_id} for task {task_id}")
        try:
            await self.handlers.performer.perform_agent_chain(
                agent_ctx,
                options_type,
                chain_id,
                task_id,
                None,
                chain,
                executor,
                self.handlers.summarizer,
            )
        except Exception as e:
            logger.error(f"[Refiner] Agent chain {chain_id} failed: {e}")
            raise HandlerFactory.wrap("failed to get subtasks refiner result", e) from e

        patch = barrier.value or SubtaskPatch()
        try:
            patched = apply_subtask_operations(planned, patch)
        except Exception as e:
            logger.error(f"[Refiner] Failed to apply subtask operations: {e}")
            raise HandlerFactory.wrap("failed to apply subtask operations", e) from e

        logger.debug(
            f"[Refiner] Applied {len(patch.operations)} operations: "
            f"{len(planned)} -> {len(patched)} subtasks"
        )

        subtasks = convert_subtask_info_patch(patched)
        await self.handlers.put_agent_log(
            agent_ctx, question, subtasks_to_markdown(subtasks), task_id, None
        )
        return subtasks
