"""Building blocks of sub-agent handlers.

A handler is what an executor calls when the model invokes a delegating tool
(``coder``, ``search``, ...). ``AgentHandler`` parses the tool arguments into
their pydantic payload and hands them to ``handle``. ``ResultBarrier`` is the
handler of a role's result tool: it keeps the parsed payload so the caller
can read it after the loop stopped.
"""

import logging
from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import ValidationError

from agentflow.domain.model.agent.tool_args import ToolArgs
from agentflow.infrastructure.agent.errors import AgentValidationError

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=ToolArgs)


def parse_payload(model: type[PayloadT], args: str, what: str) -> PayloadT:
    """Validate tool arguments against a payload model.

    Raises:
        AgentValidationError: ``failed to unmarshal <what>: <error>``
    """
    try:
        return model.model_validate_json(args)
    except ValidationError as e:
        logger.error(f"[AgentHandler] Failed to unmarshal {what}: {e}")
        raise AgentValidationError(
            f"failed to unmarshal {what}: {e}", field="args", value=args, cause=e
        ) from e


class AgentHandler(ABC, Generic[PayloadT]):
    """Tool handler that delegates the call to another agent."""

    payload_model: type[PayloadT]
    payload_name: str

    async def __call__(self, name: str, args: str) -> str:
        payload = parse_payload(self.payload_model, args, f"{self.payload_name} payload")
        return await self.handle(payload)

    @abstractmethod
    async def handle(self, payload: PayloadT) -> str:
        ...


class ResultBarrier(Generic[PayloadT]):
    """Handler of a result tool; stores the last accepted payload."""

    def __init__(self, model: type[PayloadT], reply: str, what: str = "result") -> None:
        self.model = model
        self.reply = reply
        self.what = what
        self.value: PayloadT | None = None

    async def __call__(self, name: str, args: str) -> str:
        self.value = parse_payload(self.model, args, self.what)
        return self.reply
