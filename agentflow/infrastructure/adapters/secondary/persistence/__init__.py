"""SQLAlchemy persistence of flows, tasks, subtasks, chains and agent logs."""

from agentflow.infrastructure.adapters.secondary.persistence.sql_agent_log_repository import (
    SqlAgentLogRepository,
)
from agentflow.infrastructure.adapters.secondary.persistence.sql_flow_repository import (
    SqlFlowRepository,
)

__all__ = ["SqlAgentLogRepository", "SqlFlowRepository"]
