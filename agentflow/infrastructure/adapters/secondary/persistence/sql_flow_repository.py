"""
SQLAlchemy implementation of FlowRepository.
"""

import logging

from sqlalchemy import select

from agentflow.domain.model.chain.msg_chain import MsgChain, MsgChainType
from agentflow.domain.model.flow.task import Subtask, SubtaskStatus, Task, TaskStatus
from agentflow.domain.ports.repositories.flow_repository import FlowRepository
from agentflow.infrastructure.adapters.secondary.common.base_repository import (
    BaseRepository,
    handle_db_errors,
)
from agentflow.infrastructure.adapters.secondary.persistence.models import (
    Assistant as DBAssistant,
    MsgChain as DBMsgChain,
    Subtask as DBSubtask,
    Task as DBTask,
)
from agentflow.infrastructure.agent.errors import RecordNotFoundError

logger = logging.getLogger(__name__)


class SqlFlowRepository(BaseRepository, FlowRepository):
    """SQLAlchemy implementation of the engine storage port.

    Every mutating call commits on its own.
    """

    # === Message chains ===

    @handle_db_errors("msg_chain")
    async def create_msg_chain(self, msg_chain: MsgChain) -> MsgChain:
        db_chain = DBMsgChain(
            type=msg_chain.type.value,
            model=msg_chain.model,
            model_provider=msg_chain.model_provider,
            chain=msg_chain.chain,
            flow_id=msg_chain.flow_id,
            task_id=msg_chain.task_id,
            subtask_id=msg_chain.subtask_id,
            usage_in=msg_chain.usage_in,
            usage_out=msg_chain.usage_out,
        )
        self._session.add(db_chain)
        await self._commit()
        return self._chain_to_domain(db_chain)

    async def _get_db_chain(self, chain_id: int) -> DBMsgChain:
        result = await self._session.execute(select(DBMsgChain).where(DBMsgChain.id == chain_id))
        db_chain = result.scalar_one_or_none()
        if db_chain is None:
            raise RecordNotFoundError("msg_chain", chain_id)
        return db_chain

    @handle_db_errors("msg_chain")
    async def get_msg_chain(self, chain_id: int) -> MsgChain:
        return self._chain_to_domain(await self._get_db_chain(chain_id))

    @handle_db_errors("msg_chain")
    async def update_msg_chain(self, chain_id: int, chain: str) -> MsgChain:
        db_chain = await self._get_db_chain(chain_id)
        db_chain.chain = chain
        await self._commit()
        return self._chain_to_domain(db_chain)

    @handle_db_errors("msg_chain")
    async def update_msg_chain_usage(
        self, chain_id: int, usage_in: int, usage_out: int
    ) -> MsgChain:
        db_chain = await self._get_db_chain(chain_id)
        db_chain.usage_in += usage_in
        db_chain.usage_out += usage_out
        await self._commit()
        return self._chain_to_domain(db_chain)

    @handle_db_errors("msg_chain")
    async def get_flow_task_type_last_msg_chain(
        self, flow_id: int, task_id: int | None, chain_type: MsgChainType
    ) -> MsgChain | None:
        query = select(DBMsgChain).where(
            DBMsgChain.flow_id == flow_id, DBMsgChain.type == chain_type.value
        )
        if task_id is None:
            query = query.where(DBMsgChain.task_id.is_(None))
        else:
            query = query.where(DBMsgChain.task_id == task_id)
        query = query.order_by(DBMsgChain.id.desc()).limit(1)
        result = await self._session.execute(query)
        db_chain = result.scalar_one_or_none()
        return self._chain_to_domain(db_chain) if db_chain is not None else None

    # === Tasks ===

    @handle_db_errors("task")
    async def get_task(self, task_id: int) -> Task:
        result = await self._session.execute(select(DBTask).where(DBTask.id == task_id))
        db_task = result.scalar_one_or_none()
        if db_task is None:
            raise RecordNotFoundError("task", task_id)
        return self._task_to_domain(db_task)

    @handle_db_errors("task")
    async def get_flow_task(self, flow_id: int, task_id: int) -> Task:
        result = await self._session.execute(
            select(DBTask).where(DBTask.id == task_id, DBTask.flow_id == flow_id)
        )
        db_task = result.scalar_one_or_none()
        if db_task is None:
            raise RecordNotFoundError("task", task_id)
        return self._task_to_domain(db_task)

    @handle_db_errors("task")
    async def get_flow_tasks(self, flow_id: int) -> list[Task]:
        result = await self._session.execute(
            select(DBTask).where(DBTask.flow_id == flow_id).order_by(DBTask.id)
        )
        return [self._task_to_domain(t) for t in result.scalars().all()]

    # === Subtasks ===

    async def _get_db_subtask(self, subtask_id: int) -> DBSubtask:
        result = await self._session.execute(select(DBSubtask).where(DBSubtask.id == subtask_id))
        db_subtask = result.scalar_one_or_none()
        if db_subtask is None:
            raise RecordNotFoundError("subtask", subtask_id)
        return db_subtask

    @handle_db_errors("subtask")
    async def get_subtask(self, subtask_id: int) -> Subtask:
        return self._subtask_to_domain(await self._get_db_subtask(subtask_id))

    @handle_db_errors("subtask")
    async def get_flow_subtask(self, flow_id: int, subtask_id: int) -> Subtask:
        result = await self._session.execute(
            select(DBSubtask)
            .join(DBTask, DBSubtask.task_id == DBTask.id)
            .where(DBSubtask.id == subtask_id, DBTask.flow_id == flow_id)
        )
        db_subtask = result.scalar_one_or_none()
        if db_subtask is None:
            raise RecordNotFoundError("subtask", subtask_id)
        return self._subtask_to_domain(db_subtask)

    @handle_db_errors("subtask")
    async def get_flow_subtasks(self, flow_id: int) -> list[Subtask]:
        result = await self._session.execute(
            select(DBSubtask)
            .join(DBTask, DBSubtask.task_id == DBTask.id)
            .where(DBTask.flow_id == flow_id)
            .order_by(DBSubtask.id)
        )
        return [self._subtask_to_domain(s) for s in result.scalars().all()]

    @handle_db_errors("subtask")
    async def get_task_planned_subtasks(self, task_id: int) -> list[Subtask]:
        result = await self._session.execute(
            select(DBSubtask)
            .where(
                DBSubtask.task_id == task_id,
                DBSubtask.status == SubtaskStatus.CREATED.value,
            )
            .order_by(DBSubtask.id)
        )
        return [self._subtask_to_domain(s) for s in result.scalars().all()]

    @handle_db_errors("subtask")
    async def update_subtask_context(self, subtask_id: int, context: str) -> Subtask:
        db_subtask = await self._get_db_subtask(subtask_id)
        db_subtask.context = context
        await self._commit()
        return self._subtask_to_domain(db_subtask)

    @handle_db_errors("subtask")
    async def update_subtask_result(self, subtask_id: int, result: str) -> Subtask:
        db_subtask = await self._get_db_subtask(subtask_id)
        db_subtask.result = result
        await self._commit()
        return self._subtask_to_domain(db_subtask)

    # === Assistants ===

    @handle_db_errors("assistant")
    async def get_assistant_use_agents(self, assistant_id: int) -> bool:
        result = await self._session.execute(
            select(DBAssistant.use_agents).where(DBAssistant.id == assistant_id)
        )
        use_agents = result.scalar_one_or_none()
        if use_agents is None:
            raise RecordNotFoundError("assistant", assistant_id)
        return use_agents

    # === Conversion ===

    @staticmethod
    def _chain_to_domain(db_chain: DBMsgChain) -> MsgChain:
        chain = MsgChain(
            id=db_chain.id,
            type=MsgChainType(db_chain.type),
            model=db_chain.model,
            model_provider=db_chain.model_provider,
            chain=db_chain.chain,
            flow_id=db_chain.flow_id,
            task_id=db_chain.task_id,
            subtask_id=db_chain.subtask_id,
            usage_in=db_chain.usage_in,
            usage_out=db_chain.usage_out,
        )
        if db_chain.created_at is not None:
            chain.created_at = db_chain.created_at
        if db_chain.updated_at is not None:
            chain.updated_at = db_chain.updated_at
        return chain

    @staticmethod
    def _task_to_domain(db_task: DBTask) -> Task:
        task = Task(
            id=db_task.id,
            flow_id=db_task.flow_id,
            title=db_task.title,
            input=db_task.input,
            status=TaskStatus(db_task.status),
            result=db_task.result,
        )
        if db_task.created_at is not None:
            task.created_at = db_task.created_at
        return task

    @staticmethod
    def _subtask_to_domain(db_subtask: DBSubtask) -> Subtask:
        subtask = Subtask(
            id=db_subtask.id,
            task_id=db_subtask.task_id,
            title=db_subtask.title,
            description=db_subtask.description,
            status=SubtaskStatus(db_subtask.status),
            result=db_subtask.result,
            context=db_subtask.context,
        )
        if db_subtask.created_at is not None:
            subtask.created_at = db_subtask.created_at
        return subtask
