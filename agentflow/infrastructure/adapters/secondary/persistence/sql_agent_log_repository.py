"""
SQLAlchemy implementation of the AgentLogProvider port.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from agentflow.domain.model.chain.msg_chain import MsgChainType
from agentflow.infrastructure.adapters.secondary.common.base_repository import (
    BaseRepository,
    handle_db_errors,
)
from agentflow.infrastructure.adapters.secondary.persistence.models import AgentLog as DBAgentLog

logger = logging.getLogger(__name__)


class SqlAgentLogRepository(BaseRepository):
    """Stores the audit entries of sub-agent invocations of one flow."""

    def __init__(self, session: AsyncSession, flow_id: int) -> None:
        super().__init__(session)
        self.flow_id = flow_id

    @handle_db_errors("agent_log")
    async def put_log(
        self,
        parent_role: MsgChainType,
        child_role: MsgChainType,
        question: str,
        answer: str,
        task_id: int | None,
        subtask_id: int | None,
    ) -> int:
        db_log = DBAgentLog(
            flow_id=self.flow_id,
            initiator=parent_role.value,
            executor=child_role.value,
            task=question,
            result=answer,
            task_id=task_id,
            subtask_id=subtask_id,
        )
        self._session.add(db_log)
        await self._commit()
        logger.debug(
            f"Agent log {db_log.id}: {parent_role.value} -> {child_role.value} (task {task_id})"
        )
        return db_log.id
