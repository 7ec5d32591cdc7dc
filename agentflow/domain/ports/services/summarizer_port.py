"""Summarizer Port - compresses an overlong chain."""

from typing import Protocol, runtime_checkable

from agentflow.domain.model.chain.message import Message
from agentflow.domain.ports.services.tools_executor_port import SummarizeHandler


@runtime_checkable
class Summarizer(Protocol):
    async def summarize_chain(
        self, handler: SummarizeHandler, chain: list[Message]
    ) -> list[Message]:
        """Return a possibly shortened chain.

        Failures are reported by raising; callers keep the original chain and
        carry on.
        """
        ...
