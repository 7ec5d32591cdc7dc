"""Chain consistency helpers built on ``ChainAST``."""

import logging

from agentflow.domain.model.chain.message import ChatMessageRole, Message, ToolCall
from agentflow.infrastructure.agent.chain.chain_ast import BodyPairType, ChainAST
from agentflow.infrastructure.agent.errors import ChainStructureError

logger = logging.getLogger(__name__)


def ensure_chain_consistency(chain: list[Message]) -> list[Message]:
    """Answer every pending tool call with the fallback response.

    Idempotent; a consistent chain comes back unchanged.

    Raises:
        ChainStructureError: If the chain can not be repaired
    """
    if not chain:
        return chain
    return ChainAST.from_messages(chain, force=True).messages()


def find_unresponded_tool_calls(chain: list[Message]) -> list[ToolCall]:
    """Return the calls of the last AI message that no later tool message answers."""
    for idx in range(len(chain) - 1, -1, -1):
        if chain[idx].role != ChatMessageRole.AI:
            continue
        calls = chain[idx].tool_calls()
        answered = {
            resp.tool_call_id
            for msg in chain[idx + 1 :]
            if msg.role == ChatMessageRole.TOOL
            for resp in msg.tool_responses()
        }
        return [call for call in calls if call.id not in answered]
    return []


def update_msg_chain_result(chain: list[Message], tool_name: str, result: str) -> list[Message]:
    """Deliver an external result (usually a user answer) into a chain.

    If the last exchange is a request-response whose responses include
    ``tool_name``, that response content is replaced. Otherwise pending calls
    are closed with the fallback response and ``result`` becomes a new human
    message.
    """
    if not chain:
        return [Message.human(result)]

    ast = ChainAST.from_messages(chain, force=True)
    last_section = ast.sections[-1]
    if not last_section.body:
        ast.append_human_message(result)
        return ast.messages()

    last_pair = last_section.body[-1]
    if last_pair.type == BodyPairType.REQUEST_RESPONSE:
        for call in last_pair.ai_message.tool_calls():
            if call.name == tool_name and ast.find_tool_call_responses(call.id):
                ast.add_tool_response(call.id, tool_name, result)
                return ast.messages()

    ast.append_human_message(result)
    return ast.messages()


def get_last_human_message(chain: list[Message]) -> str:
    """Return the text of the most recent human header, or an empty string."""
    try:
        ast = ChainAST.from_messages(chain, force=True)
    except ChainStructureError as e:
        logger.debug(f"[ChainConsistency] Could not parse chain for last human message: {e}")
        return ""

    for section in reversed(ast.sections):
        if section.header.human_message is not None:
            return section.header.human_message.text_content("\n")
    return ""
