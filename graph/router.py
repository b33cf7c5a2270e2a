"""Deterministic router — NO LLM calls, pure rule-based branching."""

from typing import Literal

from langgraph.graph import END

from graph.state import TurnState

RouterDest = Literal["execute_tools", "__end__"]


def route_after_first_pass(state: TurnState) -> RouterDest:
    """Tool calls go to execution (and then the second pass); a plain reply ends the turn."""
    if state["tool_calls"]:
        return "execute_tools"
    return END
