"""Handlers of the delegating tools.

Every handler is bound to the agent that owns the executor it sits in
(``agent_ctx``) and to the task/subtask that agent works on. When called it
renders the prompts of the sub-agent and runs it through the
``HandlerFactory``, which descends the agent context.
"""

import logging
from typing import TYPE_CHECKING, Any

from agentflow.domain.model.agent.agent_context import AgentContext
from agentflow.domain.model.agent.tool_args import (
    AskAdvice,
    CoderAction,
    ComplexSearch,
    MaintenanceAction,
    MemoristAction,
    PentesterAction,
)
from agentflow.domain.model.chain.msg_chain import MsgChainType
from agentflow.domain.model.flow.task import Subtask, Task
from agentflow.domain.ports.services.prompt_renderer_port import PromptType
from agentflow.infrastructure.agent.chain.chain_ast import SUMMARIZATION_TOOL_NAME
from agentflow.infrastructure.agent.errors import error_text
from agentflow.infrastructure.agent.execution_context import get_current_time
from agentflow.infrastructure.agent.handlers.base import AgentHandler
from agentflow.infrastructure.agent.tools import names

if TYPE_CHECKING:
    from agentflow.infrastructure.agent.handlers.factory import HandlerFactory

logger = logging.getLogger(__name__)

PENTEST_DOCKER_IMAGE = "vxcontrol/kali-linux"


class _BoundHandler:
    """State shared by handlers: owner context, task scope and execution context."""

    def __init__(
        self,
        factory: "HandlerFactory",
        agent_ctx: AgentContext,
        task_id: int | None,
        subtask_id: int | None,
        execution_context: str,
        task: Task | None = None,
        subtask: Subtask | None = None,
    ) -> None:
        self.factory = factory
        self.agent_ctx = agent_ctx
        self.task_id = task_id
        self.subtask_id = subtask_id
        self.execution_context = execution_context
        self.task = task
        self.subtask = subtask

    def _common_system_context(self) -> dict[str, Any]:
        return {
            "SummarizationToolName": SUMMARIZATION_TOOL_NAME,
            "ExecutionContext": self.execution_context,
            "Lang": self.factory.language,
            "CurrentTime": get_current_time(),
            "ToolPlaceholder": names.TOOL_PLACEHOLDER,
        }


class AskAdviceHandler(_BoundHandler, AgentHandler[AskAdvice]):
    """``advice``: enriches the question, then asks the adviser."""

    payload_model = AskAdvice
    payload_name = "ask advice"

    async def handle(self, payload: AskAdvice) -> str:
        enriches = await self._enrich(payload)
        return await self._advise(payload, enriches)

    async def _enrich(self, ask: AskAdvice) -> str:
        system_context = {
            "EnricherToolName": names.ENRICHER_RESULT_TOOL_NAME,
            **self._common_system_context(),
        }
        user_prompt, system_prompt = self.factory.render_prompts(
            "enricher",
            PromptType.QUESTION_ENRICHER,
            {"Question": ask.question, "Code": ask.code, "Output": ask.output},
            PromptType.ENRICHER,
            system_context,
        )
        try:
            return await self.factory.perform_enricher(
                self.agent_ctx.descend(MsgChainType.ENRICHER),
                self.task_id,
                self.subtask_id,
                system_prompt,
                user_prompt,
                ask.question,
            )
        except Exception as e:
            raise self.factory.wrap("failed to get enriches for the question", e) from e

    async def _advise(self, ask: AskAdvice, enriches: str) -> str:
        user_prompt, system_prompt = self.factory.render_prompts(
            "adviser",
            PromptType.QUESTION_ADVISER,
            {
                "Question": ask.question,
                "Code": ask.code,
                "Output": ask.output,
                "Enriches": enriches,
            },
            PromptType.ADVISER,
            {"ExecutionContext": self.execution_context, "CurrentTime": get_current_time()},
        )
        try:
            advice = await self.factory.perform_adviser(
                self.agent_ctx.descend(MsgChainType.ADVISER),
                self.task_id,
                self.subtask_id,
                system_prompt,
                user_prompt,
            )
        except Exception as e:
            raise self.factory.wrap("failed to get advice", e) from e
        return advice


class CoderHandler(_BoundHandler, AgentHandler[CoderAction]):
    """``coder``: delegates writing code to the coder agent."""

    payload_model = CoderAction
    payload_name = "code"

    async def handle(self, payload: CoderAction) -> str:
        system_context = {
            "CodeResultToolName": names.CODE_RESULT_TOOL_NAME,
            "SearchToolName": names.SEARCH_TOOL_NAME,
            "AdviceToolName": names.ADVICE_TOOL_NAME,
            "MemoristToolName": names.MEMORIST_TOOL_NAME,
            "MaintenanceToolName": names.MAINTENANCE_TOOL_NAME,
            "DockerImage": self.factory.image,
            **self._common_system_context(),
        }
        user_prompt, system_prompt = self.factory.render_prompts(
            "coder",
            PromptType.QUESTION_CODER,
            {"Question": payload.question},
            PromptType.CODER,
            system_context,
        )
        try:
            return await self.factory.perform_coder(
                self.agent_ctx.descend(MsgChainType.CODER),
                self.task_id,
                self.subtask_id,
                system_prompt,
                user_prompt,
                payload.question,
            )
        except Exception as e:
            raise self.factory.wrap("failed to get coder result", e) from e


class InstallerHandler(_BoundHandler, AgentHandler[MaintenanceAction]):
    """``maintenance``: delegates environment maintenance to the installer agent."""

    payload_model = MaintenanceAction
    payload_name = "installer"

    async def handle(self, payload: MaintenanceAction) -> str:
        system_context = {
            "MaintenanceResultToolName": names.MAINTENANCE_RESULT_TOOL_NAME,
            "SearchToolName": names.SEARCH_TOOL_NAME,
            "AdviceToolName": names.ADVICE_TOOL_NAME,
            "MemoristToolName": names.MEMORIST_TOOL_NAME,
            "DockerImage": self.factory.image,
            **self._common_system_context(),
        }
        user_prompt, system_prompt = self.factory.render_prompts(
            "installer",
            PromptType.QUESTION_INSTALLER,
            {"Question": payload.question},
            PromptType.INSTALLER,
            system_context,
        )
        try:
            return await self.factory.perform_installer(
                self.agent_ctx.descend(MsgChainType.INSTALLER),
                self.task_id,
                self.subtask_id,
                system_prompt,
                user_prompt,
                payload.question,
            )
        except Exception as e:
            raise self.factory.wrap("failed to get installer result", e) from e


class PentesterHandler(_BoundHandler, AgentHandler[PentesterAction]):
    """``pentester``: delegates a penetration test to the pentester agent."""

    payload_model = PentesterAction
    payload_name = "hack"

    async def handle(self, payload: PentesterAction) -> str:
        system_context = {
            "HackResultToolName": names.HACK_RESULT_TOOL_NAME,
            "SearchToolName": names.SEARCH_TOOL_NAME,
            "CoderToolName": names.CODER_TOOL_NAME,
            "AdviceToolName": names.ADVICE_TOOL_NAME,
            "MemoristToolName": names.MEMORIST_TOOL_NAME,
            "MaintenanceToolName": names.MAINTENANCE_TOOL_NAME,
            "DockerImage": self.factory.image,
            "IsDefaultDockerImage": self.factory.image.lower().startswith(PENTEST_DOCKER_IMAGE),
            **self._common_system_context(),
        }
        user_prompt, system_prompt = self.factory.render_prompts(
            "pentester",
            PromptType.QUESTION_PENTESTER,
            {"Question": payload.question},
            PromptType.PENTESTER,
            system_context,
        )
        try:
            return await self.factory.perform_pentester(
                self.agent_ctx.descend(MsgChainType.PENTESTER),
                self.task_id,
                self.subtask_id,
                system_prompt,
                user_prompt,
                payload.question,
            )
        except Exception as e:
            raise self.factory.wrap("failed to get pentester result", e) from e


class MemoristHandler(_BoundHandler, AgentHandler[MemoristAction]):
    """``memorist``: answers questions about previous work from the long-term memory."""

    payload_model = MemoristAction
    payload_name = "memorist"

    async def _execution_details(
        self, action: MemoristAction
    ) -> tuple[str, Task | None, Subtask | None]:
        details: list[str] = []
        requested_task: Task | None = None
        requested_subtask: Subtask | None = None
        repository = self.factory.repository
        flow_id = self.factory.flow_id

        if action.task_id is not None and action.task_id == self.task_id:
            details.append(f"user requested current task '{self.task_id}'")
        elif action.task_id is not None:
            try:
                requested_task = await repository.get_flow_task(flow_id, action.task_id)
            except Exception as e:
                details.append(
                    f"failed to get requested task '{action.task_id}': {error_text(e)}"
                )
        else:
            details.append(f"user no specified task, using current task '{self.task_id}'")

        if action.subtask_id is not None and action.subtask_id == self.subtask_id:
            details.append(f"user requested current subtask '{self.subtask_id}'")
        elif action.subtask_id is not None:
            try:
                requested_subtask = await repository.get_flow_subtask(flow_id, action.subtask_id)
            except Exception as e:
                details.append(
                    f"failed to get requested subtask '{action.subtask_id}': {error_text(e)}"
                )
        elif self.subtask_id is not None:
            details.append(f"user no specified subtask, using current subtask '{self.subtask_id}'")
        else:
            details.append("user no specified subtask, using all subtasks related to the task")

        return "".join(f"{line}\n" for line in details), requested_task, requested_subtask

    async def handle(self, payload: MemoristAction) -> str:
        details, requested_task, requested_subtask = await self._execution_details(payload)
        system_context = {
            "MemoristResultToolName": names.MEMORIST_RESULT_TOOL_NAME,
            "TerminalToolName": names.TERMINAL_TOOL_NAME,
            "FileToolName": names.FILE_TOOL_NAME,
            "DockerImage": self.factory.image,
            **self._common_system_context(),
        }
        user_prompt, system_prompt = self.factory.render_prompts(
            "memorist",
            PromptType.QUESTION_MEMORIST,
            {
                "Question": payload.question,
                "Task": requested_task,
                "Subtask": requested_subtask,
                "ExecutionDetails": details,
            },
            PromptType.MEMORIST,
            system_context,
        )
        try:
            return await self.factory.perform_memorist(
                self.agent_ctx.descend(MsgChainType.MEMORIST),
                self.task_id,
                self.subtask_id,
                system_prompt,
                user_prompt,
                payload.question,
            )
        except Exception as e:
            raise self.factory.wrap("failed to get memorist result", e) from e


class SearcherHandler(_BoundHandler, AgentHandler[ComplexSearch]):
    """``search``: researches a question with the searcher agent.

    Task searchers (planning agents) have no subtask; subtask searchers pass
    both the task and the subtask into the question prompt.
    """

    payload_model = ComplexSearch
    payload_name = "search"

    async def handle(self, payload: ComplexSearch) -> str:
        user_context: dict[str, Any] = {"Question": payload.question, "Task": self.task}
        if self.subtask_id is not None:
            user_context["Subtask"] = self.subtask
        system_context = {
            "SearchResultToolName": names.SEARCH_RESULT_TOOL_NAME,
            **self._common_system_context(),
        }
        user_prompt, system_prompt = self.factory.render_prompts(
            "searcher",
            PromptType.QUESTION_SEARCHER,
            user_context,
            PromptType.SEARCHER,
            system_context,
        )
        try:
            return await self.factory.perform_searcher(
                self.agent_ctx.descend(MsgChainType.SEARCHER),
                self.task_id,
                self.subtask_id,
                system_prompt,
                user_prompt,
                payload.question,
            )
        except Exception as e:
            raise self.factory.wrap("failed to get searcher result", e) from e
