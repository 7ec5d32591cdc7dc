"""Chain structure: AST, consistency repair and tool call IDs."""

from agentflow.infrastructure.agent.chain.chain_ast import BodyPairType, ChainAST
from agentflow.infrastructure.agent.chain.consistency import (
    ensure_chain_consistency,
    update_msg_chain_result,
)

__all__ = ["BodyPairType", "ChainAST", "ensure_chain_consistency", "update_msg_chain_result"]
