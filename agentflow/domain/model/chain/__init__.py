"""Message chains and their persisted form."""

from agentflow.domain.model.chain.message import (
    ChatMessageRole,
    Message,
    ToolCall,
    ToolCallResponse,
    chain_from_json,
    chain_to_json,
)
from agentflow.domain.model.chain.msg_chain import MsgChain, MsgChainType

__all__ = [
    "ChatMessageRole",
    "Message",
    "MsgChain",
    "MsgChainType",
    "ToolCall",
    "ToolCallResponse",
    "chain_from_json",
    "chain_to_json",
]
