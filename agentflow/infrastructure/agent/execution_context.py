"""Execution context of a flow.

The execution context is the text each agent receives about where it stands:
the current task, the other tasks of the flow and the planned, current and
completed subtasks. A full context is prepared (and summarized) once per
subtask and stored on it; short contexts are rendered on demand for agents
running outside a subtask.
"""

import logging
from datetime import datetime

from agentflow.domain.model.agent.tool_args import SubtaskInfo
from agentflow.domain.model.chain.message import Message, chain_from_json, is_empty_chain
from agentflow.domain.model.chain.msg_chain import MsgChainType
from agentflow.domain.model.flow.task import Subtask, SubtasksInfo, SubtaskStatus, TasksInfo
from agentflow.domain.ports.repositories.flow_repository import FlowRepository
from agentflow.domain.ports.services.prompt_renderer_port import PromptRenderer, PromptType
from agentflow.domain.ports.services.tools_executor_port import SummarizeHandler
from agentflow.infrastructure.agent.chain.chain_ast import ChainAST
from agentflow.infrastructure.agent.errors import (
    AgentExecutionError,
    AgentValidationError,
    StorageError,
    error_text,
)

logger = logging.getLogger(__name__)

ASSISTANT_MODE_CONTEXT = "flow has no tasks, it's using in assistant mode"
CURRENT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

TASK_SUMMARY_TEMPLATE = """## Task Summary

### User Requirements
*Summarized input from user:*

{human}

### Execution Results
*Summarized actions and outcomes:*

{ai}"""


def get_current_time() -> str:
    return datetime.now().strftime(CURRENT_TIME_FORMAT)


def subtasks_to_markdown(subtasks: list[SubtaskInfo]) -> str:
    """Render a generated plan as numbered markdown sections."""
    parts = []
    for idx, subtask in enumerate(subtasks, start=1):
        parts.append(f"# Subtask {idx}\n\n")
        parts.append(f"## {subtask.title}\n\n{subtask.description}\n\n")
    return "".join(parts)


def get_subtasks_info(task_id: int, subtasks: list[Subtask]) -> SubtasksInfo:
    """Split the subtasks of a task by lifecycle; task_id 0 takes all of them."""
    info = SubtasksInfo()
    for subtask in subtasks:
        if task_id != 0 and subtask.task_id != task_id:
            continue
        match subtask.status:
            case SubtaskStatus.CREATED:
                info.planned.append(subtask)
            case SubtaskStatus.FINISHED | SubtaskStatus.FAILED:
                info.completed.append(subtask)
            case _:
                info.subtask = subtask
    return info


def _messages_to_text(tag: str, messages: list[Message]) -> str:
    lines = [f"<{tag}>"]
    for msg in messages:
        lines.append(f'<message role="{msg.role.value}">')
        text = msg.text_content()
        if text:
            lines.append(text)
        for call in msg.tool_calls():
            lines.append(f'<tool_call name="{call.name}">{call.arguments}</tool_call>')
        for resp in msg.tool_responses():
            lines.append(f'<tool_result name="{resp.name}">{resp.content}</tool_result>')
        lines.append("</message>")
    lines.append(f"</{tag}>\n")
    return "\n".join(lines)


async def generate_summary(
    handler: SummarizeHandler,
    human_messages: list[Message],
    ai_messages: list[Message],
) -> str:
    """Summarize human requests, AI work in their context, or both.

    Raises:
        AgentValidationError: If both message lists are empty
    """
    if not human_messages and not ai_messages:
        raise AgentValidationError("cannot summarize empty message list")

    if human_messages and ai_messages:
        instructions = (
            "Summarize the AI messages, using the user tasks as context. Keep results, "
            "findings, errors and the commands or files involved."
        )
    elif ai_messages:
        instructions = "Summarize the AI messages. Keep results, findings and errors."
    else:
        instructions = "Summarize the user tasks into the requirements they describe."

    prompt = f"<instructions>{instructions}</instructions>\n\n"
    if human_messages:
        prompt += _messages_to_text("tasks", human_messages)
    if ai_messages:
        prompt += _messages_to_text("messages", ai_messages)
    return await handler(prompt)


class ExecutionContextBuilder:
    """Reads flow state from storage and renders execution contexts."""

    def __init__(self, flow_id: int, repository: FlowRepository, prompter: PromptRenderer) -> None:
        self.flow_id = flow_id
        self.repository = repository
        self.prompter = prompter

    async def get_tasks_info(self, task_id: int) -> TasksInfo:
        """Current task, the other flow tasks and every subtask of the flow."""
        try:
            tasks = await self.repository.get_flow_tasks(self.flow_id)
        except Exception as e:
            raise StorageError(
                f"failed to get flow tasks: {error_text(e)}", entity="task", cause=e
            ) from e

        info = TasksInfo(tasks=list(tasks))
        for idx, task in enumerate(info.tasks):
            if task.id == task_id:
                info.task = info.tasks.pop(idx)
                break

        try:
            info.subtasks = await self.repository.get_flow_subtasks(self.flow_id)
        except Exception as e:
            raise StorageError(
                f"failed to get flow subtasks: {error_text(e)}", entity="subtask", cause=e
            ) from e
        return info

    async def prepare_execution_context(
        self, task_id: int, subtask_id: int, summarize_handler: SummarizeHandler
    ) -> str:
        """Render and summarize the full context of a subtask."""
        tasks_info = await self.get_tasks_info(task_id)
        subtasks_info = get_subtasks_info(task_id, tasks_info.subtasks)

        if subtasks_info.subtask is None:
            ordered = sorted(
                [*subtasks_info.planned, *subtasks_info.completed], key=lambda s: s.id
            )
            for idx, subtask in enumerate(ordered):
                if subtask.id == subtask_id:
                    subtasks_info.subtask = subtask
                    subtasks_info.planned = ordered[idx + 1 :]
                    subtasks_info.completed = ordered[:idx]
                    break

        try:
            raw = self.prompter.render_template(
                PromptType.FULL_EXECUTION_CONTEXT,
                {
                    "Task": tasks_info.task,
                    "Tasks": tasks_info.tasks,
                    "CompletedSubtasks": subtasks_info.completed,
                    "Subtask": subtasks_info.subtask,
                    "PlannedSubtasks": subtasks_info.planned,
                },
            )
        except Exception as e:
            raise AgentExecutionError(
                f"failed to render execution context: {error_text(e)}",
                step="execution_context",
                cause=e,
            ) from e

        try:
            return await summarize_handler(raw)
        except Exception as e:
            raise AgentExecutionError(
                f"failed to summarize execution context: {error_text(e)}",
                step="execution_context",
                cause=e,
            ) from e

    async def get_execution_context(self, task_id: int | None, subtask_id: int | None) -> str:
        """Context for an agent run: stored subtask context, then task, then flow."""
        if task_id is not None and subtask_id is not None:
            return await self._by_subtask(task_id, subtask_id)
        if task_id is not None:
            return await self._by_task(task_id)
        return await self._by_flow()

    async def _by_subtask(self, task_id: int, subtask_id: int) -> str:
        try:
            subtask = await self.repository.get_subtask(subtask_id)
        except Exception as e:
            logger.debug(f"[ExecutionContext] Subtask {subtask_id} not loaded: {e}")
        else:
            if subtask.task_id == task_id and subtask.context:
                return subtask.context
        return await self._by_task(task_id)

    async def _by_task(self, task_id: int) -> str:
        try:
            tasks_info = await self.get_tasks_info(task_id)
        except StorageError as e:
            logger.warning(f"[ExecutionContext] Falling back to flow context: {e}")
            return await self._by_flow()

        subtasks_info = get_subtasks_info(task_id, tasks_info.subtasks)
        try:
            return self.prompter.render_template(
                PromptType.SHORT_EXECUTION_CONTEXT,
                {
                    "Task": tasks_info.task,
                    "Tasks": tasks_info.tasks,
                    "CompletedSubtasks": subtasks_info.completed,
                    "Subtask": subtasks_info.subtask,
                    "PlannedSubtasks": subtasks_info.planned,
                },
            )
        except Exception as e:
            logger.warning(f"[ExecutionContext] Falling back to flow context: {e}")
            return await self._by_flow()

    async def _by_flow(self) -> str:
        try:
            tasks = await self.repository.get_flow_tasks(self.flow_id)
        except Exception as e:
            raise StorageError(
                f"failed to get flow tasks: {error_text(e)}", entity="task", cause=e
            ) from e

        if not tasks:
            return ASSISTANT_MODE_CONTEXT

        try:
            subtasks = await self.repository.get_flow_subtasks(self.flow_id)
        except Exception as e:
            raise StorageError(
                f"failed to get flow subtasks: {error_text(e)}", entity="subtask", cause=e
            ) from e

        for task in reversed(tasks):
            subtasks_info = get_subtasks_info(task.id, subtasks)
            try:
                return self.prompter.render_template(
                    PromptType.SHORT_EXECUTION_CONTEXT,
                    {
                        "Task": task,
                        "Tasks": tasks,
                        "CompletedSubtasks": subtasks_info.completed,
                        "Subtask": subtasks_info.subtask,
                        "PlannedSubtasks": subtasks_info.planned,
                    },
                )
            except Exception as e:
                logger.debug(f"[ExecutionContext] Task {task.id} context not rendered: {e}")
                continue

        subtasks_info = get_subtasks_info(0, subtasks)
        try:
            return self.prompter.render_template(
                PromptType.SHORT_EXECUTION_CONTEXT,
                {
                    "Tasks": tasks,
                    "CompletedSubtasks": subtasks_info.completed,
                    "Subtask": subtasks_info.subtask,
                    "PlannedSubtasks": subtasks_info.planned,
                },
            )
        except Exception as e:
            raise AgentExecutionError(
                f"failed to render execution context: {error_text(e)}",
                step="execution_context",
                cause=e,
            ) from e

    async def get_task_primary_agent_chain_summary(
        self, task_id: int, summarize_handler: SummarizeHandler
    ) -> str:
        """Summary of what the user asked for in a task and what was done."""
        try:
            msg_chain = await self.repository.get_flow_task_type_last_msg_chain(
                self.flow_id, task_id, MsgChainType.PRIMARY_AGENT
            )
        except Exception as e:
            raise StorageError(
                f"failed to get task primary agent chain: {error_text(e)}",
                entity="msg_chain",
                cause=e,
            ) from e
        if msg_chain is None or is_empty_chain(msg_chain.chain):
            raise AgentExecutionError(
                "failed to get task primary agent chain: chain is empty", step="task_summary"
            )

        ast = ChainAST.from_messages(chain_from_json(msg_chain.chain), force=True)
        human_messages: list[Message] = []
        ai_messages: list[Message] = []
        for section in ast.sections:
            if section.header.human_message is not None:
                human_messages.append(section.header.human_message)
            for pair in section.body:
                ai_messages.extend(pair.messages())

        human_summary = await generate_summary(summarize_handler, human_messages, [])
        ai_summary = await generate_summary(summarize_handler, human_messages, ai_messages)
        return TASK_SUMMARY_TEMPLATE.format(human=human_summary, ai=ai_summary)


