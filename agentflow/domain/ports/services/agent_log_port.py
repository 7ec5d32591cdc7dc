"""Agent Log Port - audit and user-facing message sinks."""

from enum import Enum
from typing import Protocol, runtime_checkable

from agentflow.domain.model.chain.msg_chain import MsgChainType


class MsgLogType(str, Enum):
    """Kind of user-facing message."""

    ANSWER = "answer"
    REPORT = "report"
    THOUGHTS = "thoughts"
    ADVICE = "advice"
    ASK = "ask"
    DONE = "done"
    TERMINAL = "terminal"
    FILE = "file"
    BROWSER = "browser"
    SEARCH = "search"


class MsgLogResultFormat(str, Enum):
    PLAIN = "plain"
    MARKDOWN = "markdown"
    TERMINAL = "terminal"


@runtime_checkable
class AgentLogProvider(Protocol):
    """Audit log of sub-agent invocations.

    Callers treat it as fire-and-forget: a failing ``put_log`` is logged and
    never fails the agent call.
    """

    async def put_log(
        self,
        parent_role: MsgChainType,
        child_role: MsgChainType,
        question: str,
        answer: str,
        task_id: int | None,
        subtask_id: int | None,
    ) -> int:
        ...


@runtime_checkable
class MsgLogProvider(Protocol):
    """Messages shown to the user while a flow runs."""

    async def put_msg(
        self,
        msg_type: MsgLogType,
        task_id: int | None,
        subtask_id: int | None,
        stream_id: int,
        thinking: str,
        msg: str,
    ) -> int:
        ...

    async def update_msg_result(
        self,
        msg_id: int,
        stream_id: int,
        result: str,
        result_format: MsgLogResultFormat,
    ) -> None:
        ...
