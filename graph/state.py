"""TurnState schema — everything one turn carries from the first model pass to the reply."""

from typing import Any, Dict, List, TypedDict

from graph.tool_handlers import ToolContext
from graph.tools import ToolCall
from storage.chat_sessions import ChatMessage


class TurnState(TypedDict):
    """Flat state dict for a single user turn."""

    session_id: str
    history: List[ChatMessage]            # stored transcript, user message included
    tool_context: ToolContext

    # Produced by the turn; persisted only once the turn succeeds
    new_messages: List[ChatMessage]
    tool_calls: List[ToolCall]
    tool_results: List[Dict[str, Any]]    # [{id, name, success, message, ...}]
    reply_text: str
    model_calls: int


def initial_turn_state(session_id: str, history: List[ChatMessage], tool_context: ToolContext) -> TurnState:
    """Factory — returns a clean starting state."""
    return TurnState(
        session_id=session_id,
        history=list(history),
        tool_context=tool_context,
        new_messages=[],
        tool_calls=[],
        tool_results=[],
        reply_text="",
        model_calls=0,
    )
