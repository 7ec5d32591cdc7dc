"""Model call primitives with bounded retry.

``ChainCaller`` wraps exactly one model invocation per call:

- ``call_with_retries``: a tool-enabled call of the agent chain
- ``perform_simple_chain``: a one-shot system+human call without tools whose
  exchange is persisted as its own chain row

Both retry with a fixed delay up to a fixed ceiling. A response without
choices is a hard failure. ``asyncio.CancelledError`` is never caught, so
cancellation propagates out of every retry layer unchanged.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from agentflow.domain.model.chain.message import ChatMessageRole, Message, ToolCall, chain_to_json
from agentflow.domain.model.chain.msg_chain import MsgChain, MsgChainType
from agentflow.domain.ports.repositories.flow_repository import FlowRepository
from agentflow.domain.ports.services.agent_log_port import MsgLogType
from agentflow.domain.ports.services.provider_client_port import (
    ContentResponse,
    ProviderClient,
    ProviderOptionsType,
    StreamingCallback,
    StreamingChunk,
    StreamingChunkType,
)
from agentflow.domain.ports.services.tools_executor_port import ContextToolsExecutor
from agentflow.infrastructure.agent.config import ExecutionConfig
from agentflow.infrastructure.agent.core.stream import (
    StreamChunkType,
    StreamIdCounter,
    StreamMessageChunk,
    StreamMessageHandler,
)
from agentflow.infrastructure.agent.errors import AgentCommunicationError, StorageError
from agentflow.infrastructure.agent.retry.policy import FixedDelayRetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class CallResult:
    """Aggregated outcome of one model call.

    Attributes:
        stream_id: Stream the call was emitted on, 0 if not streamed
        tool_calls: Tool calls of all choices, in order
        info: Generation info of the last choice that had one
        thinking: Last non-empty reasoning content
        content: Non-blank text of all choices joined with newlines
    """

    stream_id: int = 0
    tool_calls: list[ToolCall] = field(default_factory=list)
    info: dict[str, Any] | None = None
    thinking: str = ""
    content: str = ""


class ChainCaller:
    """Retrying model calls bound to one flow."""

    def __init__(
        self,
        flow_id: int,
        repository: FlowRepository,
        client: ProviderClient,
        config: ExecutionConfig | None = None,
        stream_handler: StreamMessageHandler | None = None,
        stream_ids: StreamIdCounter | None = None,
    ) -> None:
        self.flow_id = flow_id
        self.repository = repository
        self.client = client
        self.config = config or ExecutionConfig()
        self.stream_handler = stream_handler
        self.stream_ids = stream_ids or StreamIdCounter()

    def _agent_chain_policy(self) -> FixedDelayRetryPolicy:
        return FixedDelayRetryPolicy(
            max_attempts=self.config.max_retries_agent_chain,
            delay_seconds=self.config.retry_delay_seconds,
        )

    def _simple_chain_policy(self) -> FixedDelayRetryPolicy:
        return FixedDelayRetryPolicy(
            max_attempts=self.config.max_retries_simple_chain,
            delay_seconds=self.config.retry_delay_seconds,
        )

    def _stream_callback(self, stream_id: int, msg_type: MsgLogType) -> StreamingCallback:
        handler = self.stream_handler

        async def on_chunk(chunk: StreamingChunk) -> None:
            match chunk.type:
                case StreamingChunkType.REASONING:
                    await handler(
                        StreamMessageChunk(
                            type=StreamChunkType.THINKING,
                            msg_type=msg_type,
                            thinking=chunk.reasoning_content,
                            stream_id=stream_id,
                        )
                    )
                case StreamingChunkType.TEXT:
                    await handler(
                        StreamMessageChunk(
                            type=StreamChunkType.CONTENT,
                            msg_type=msg_type,
                            content=chunk.content,
                            stream_id=stream_id,
                        )
                    )
                case StreamingChunkType.DONE:
                    await handler(
                        StreamMessageChunk(
                            type=StreamChunkType.FLUSH,
                            msg_type=msg_type,
                            stream_id=stream_id,
                        )
                    )
                case StreamingChunkType.TOOL_CALL:
                    pass  # tool calls arrive in the final response

        return on_chunk

    async def stream_update(self, result: CallResult, msg_type: MsgLogType) -> None:
        """Emit the final aggregated content of a turn."""
        await self.stream_handler(
            StreamMessageChunk(
                type=StreamChunkType.UPDATE,
                msg_type=msg_type,
                content=result.content,
                thinking=result.thinking,
                stream_id=result.stream_id,
            )
        )

    async def call_with_retries(
        self,
        chain: list[Message],
        options_type: ProviderOptionsType,
        executor: ContextToolsExecutor,
    ) -> CallResult:
        """Call the model with the executor's tools.

        Raises:
            AgentCommunicationError: If every attempt failed or the response
                has no choices
        """
        msg_type = MsgLogType.ANSWER
        result = CallResult()
        policy = self._agent_chain_policy()
        response: ContentResponse | None = None
        last_error: Exception | None = None

        for attempt in policy.attempts():
            stream_cb = None
            if self.stream_handler is not None:
                result.stream_id = self.stream_ids.next()
                stream_cb = self._stream_callback(result.stream_id, msg_type)

            try:
                response = await self.client.call_with_tools(
                    options_type, chain, executor.tools(), stream_cb
                )
                break
            except Exception as e:
                last_error = e
                logger.warning(
                    f"[ChainCaller] Agent chain call attempt {attempt + 1}/"
                    f"{policy.max_attempts} failed: {e}"
                )
                if policy.is_last(attempt):
                    break
                await policy.wait()

        if response is None:
            raise AgentCommunicationError(
                "failed to call agent chain: max retries reached, "
                f"{policy.max_attempts}: {last_error}",
                service=self.client.type(),
                attempts=policy.max_attempts,
                cause=last_error,
            )

        if not response.choices:
            raise AgentCommunicationError("no choices in response", service=self.client.type())

        parts: list[str] = []
        for choice in response.choices:
            if choice.content.strip():
                parts.append(choice.content)
            if choice.generation_info is not None:
                result.info = choice.generation_info
            result.tool_calls.extend(choice.tool_calls)
            if choice.reasoning_content:
                result.thinking = choice.reasoning_content
        result.content = "\n".join(parts)

        if self.stream_handler is not None and result.stream_id != 0:
            try:
                await self.stream_update(result, msg_type)
            except Exception as e:
                logger.warning(f"[ChainCaller] Failed to stream turn update: {e}")
            # Content and thinking were streamed as standalone messages, tool
            # calls must not update that stream again.
            if result.tool_calls and result.content:
                result.stream_id = 0
                result.thinking = ""

        return result

    async def perform_simple_chain(
        self,
        task_id: int | None,
        subtask_id: int | None,
        options_type: ProviderOptionsType,
        chain_type: MsgChainType,
        system_prompt: str,
        user_prompt: str,
    ) -> str:
        """Run a system+human chain without tools and persist the exchange.

        Returns:
            The contents of all choices joined with blank lines
        """
        chain = [Message.system(system_prompt), Message.human(user_prompt)]
        policy = self._simple_chain_policy()
        response: ContentResponse | None = None
        last_error: Exception | None = None

        for attempt in policy.attempts():
            try:
                response = await self.client.call_ex(options_type, chain)
                break
            except Exception as e:
                last_error = e
                logger.warning(
                    f"[ChainCaller] Simple chain ({chain_type.value}) attempt {attempt + 1}/"
                    f"{policy.max_attempts} failed: {e}"
                )
                if policy.is_last(attempt):
                    break
                await policy.wait()

        if response is None:
            raise AgentCommunicationError(
                f"failed to call simple chain: {last_error}",
                service=self.client.type(),
                attempts=policy.max_attempts,
                cause=last_error,
            )

        if not response.choices:
            raise AgentCommunicationError("no choices in response", service=self.client.type())

        parts: list[str] = []
        usage_in, usage_out = 0, 0
        for choice in response.choices:
            parts.append(choice.content)
            usage_in, usage_out = self.client.get_usage(choice.generation_info or {})
        chain.append(Message.text(ChatMessageRole.AI, *parts))

        await self.create_msg_chain(
            chain_type,
            options_type,
            chain,
            task_id,
            subtask_id,
            usage_in=usage_in,
            usage_out=usage_out,
        )
        return "\n\n".join(parts)

    # ========================================================================
    # Persistence
    # ========================================================================

    async def create_msg_chain(
        self,
        chain_type: MsgChainType,
        options_type: ProviderOptionsType,
        chain: list[Message],
        task_id: int | None,
        subtask_id: int | None,
        usage_in: int = 0,
        usage_out: int = 0,
    ) -> MsgChain:
        """Persist a new chain row for an agent invocation."""
        msg_chain = MsgChain(
            type=chain_type,
            model=self.client.model(options_type),
            model_provider=self.client.type(),
            chain=chain_to_json(chain),
            flow_id=self.flow_id,
            task_id=task_id,
            subtask_id=subtask_id,
            usage_in=usage_in,
            usage_out=usage_out,
        )
        try:
            return await self.repository.create_msg_chain(msg_chain)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                f"failed to create msg chain: {e}", entity="msg_chain", cause=e
            ) from e

    async def update_msg_chain(self, chain_id: int, chain: list[Message]) -> None:
        blob = chain_to_json(chain)
        try:
            await self.repository.update_msg_chain(chain_id, blob)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                f"failed to update msg chain in DB: {e}", entity="msg_chain", cause=e
            ) from e

    async def update_msg_chain_usage(self, chain_id: int, info: dict[str, Any] | None) -> None:
        usage_in, usage_out = 0, 0
        if info is not None:
            usage_in, usage_out = self.client.get_usage(info)
        try:
            await self.repository.update_msg_chain_usage(chain_id, usage_in, usage_out)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                f"failed to update msg chain usage in DB: {e}", entity="msg_chain", cause=e
            ) from e
