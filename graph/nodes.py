"""Turn nodes — first model pass, ordered tool execution, second model pass.

Dependencies (model, executor, context builder) are bound with
`functools.partial` in the builder; each node returns a partial state update.
"""

import asyncio
import json
import logging
from typing import Callable, List

from errors import ModelEmptyResponse, TimeoutFailure
from graph.llm import ChatModel, ModelReply
from graph.state import TurnState
from graph.tool_handlers import ToolContext, ToolExecutor
from graph.tools import ParsedToolCall, parse_tool_call
from storage.chat_sessions import ChatMessage, ToolCallRecord

logger = logging.getLogger(__name__)

ContextBuilder = Callable[[ToolContext], str]


async def _call_model(model: ChatModel, messages: List[ChatMessage], context: str, timeout: float) -> ModelReply:
    try:
        return await asyncio.wait_for(model.generate(messages, context), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise TimeoutFailure(f"Model call exceeded {timeout:.0f}s") from e


async def first_pass_node(state: TurnState, *, model: ChatModel, build_context: ContextBuilder, timeout: float) -> dict:
    """Ask the model what to do with the user's message."""
    context = build_context(state["tool_context"])
    reply = await _call_model(model, state["history"], context, timeout)
    calls = [parse_tool_call(c["id"], c["name"], c.get("args")) for c in reply.tool_calls]

    if not calls:
        if not reply.text:
            raise ModelEmptyResponse("Model returned neither text nor tool calls")
        return {
            "reply_text": reply.text,
            "new_messages": [ChatMessage(role="assistant", content=reply.text)],
            "model_calls": state["model_calls"] + 1,
        }

    logger.info("Session %s: model requested %s", state["session_id"], [c.name for c in calls])
    assistant = ChatMessage(
        role="assistant",
        content=reply.text,
        tool_calls=[ToolCallRecord(id=c["id"], name=c["name"], args=c.get("args") or {}) for c in reply.tool_calls],
    )
    return {
        "tool_calls": calls,
        "new_messages": [assistant],
        "model_calls": state["model_calls"] + 1,
    }


async def execute_tools_node(state: TurnState, *, executor: ToolExecutor) -> dict:
    """Run every requested tool in the order the model listed them, one at a time."""
    ctx = state["tool_context"]
    results = []
    tool_messages = []
    for call in state["tool_calls"]:
        result = await executor.execute(ctx, call)
        record = {"id": call.id, "name": call.name, "args": _args_of(call), **result.as_dict()}
        results.append(record)
        tool_messages.append(ChatMessage(
            role="tool",
            tool_call_id=call.id,
            name=call.name,
            content=json.dumps(result.as_dict(), default=str),
        ))
    return {
        "tool_results": results,
        "new_messages": state["new_messages"] + tool_messages,
    }


async def second_pass_node(state: TurnState, *, model: ChatModel, build_context: ContextBuilder, timeout: float) -> dict:
    """Let the model read every tool result and write the reply; empty text fails the turn."""
    context = build_context(state["tool_context"])
    reply = await _call_model(model, state["history"] + state["new_messages"], context, timeout)
    if reply.tool_calls:
        logger.warning(
            "Session %s: ignoring %d tool call(s) requested on the second pass",
            state["session_id"], len(reply.tool_calls),
        )
    if not reply.text:
        raise ModelEmptyResponse("Model returned empty text after tool execution")
    return {
        "reply_text": reply.text,
        "new_messages": state["new_messages"] + [ChatMessage(role="assistant", content=reply.text)],
        "model_calls": state["model_calls"] + 1,
    }


def _args_of(call) -> dict:
    if isinstance(call, ParsedToolCall):
        return call.args.model_dump(by_alias=True, exclude_none=True)
    return dict(call.raw_args)
