"""LLM client — the model collaborator behind both passes of a turn.

The model is used ONLY for:
  ✅ Writing the user-facing reply
  ✅ Requesting tool calls (form writes, lookups, scoring)
  ❌ NOT for deciding what a tool does or when state is saved
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from config import GOOGLE_API_KEY, LLM_MODEL, LLM_TEMPERATURE
from graph.tools import tool_definitions
from prompts.chat_prompts import SYSTEM_PROMPT
from storage.chat_sessions import ChatMessage

logger = logging.getLogger(__name__)


@dataclass
class ModelReply:
    text: str = ""
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)   # [{id, name, args}]


class ChatModel(Protocol):
    async def generate(self, messages: List[ChatMessage], context: str) -> ModelReply: ...


def to_langchain_messages(messages: List[ChatMessage], system: str) -> List[BaseMessage]:
    """Replay the stored transcript in the shape LangChain chat models expect."""
    converted: List[BaseMessage] = [SystemMessage(content=system)]
    for msg in messages:
        if msg.role == "user":
            converted.append(HumanMessage(content=msg.content))
        elif msg.role == "assistant":
            converted.append(AIMessage(
                content=msg.content,
                tool_calls=[{"id": c.id, "name": c.name, "args": c.args} for c in msg.tool_calls],
            ))
        elif msg.role == "tool":
            converted.append(ToolMessage(content=msg.content, tool_call_id=msg.tool_call_id or "", name=msg.name))
        else:
            converted.append(SystemMessage(content=msg.content))
    return converted


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts).strip()
    return ""


class GeminiChatModel:
    """Gemini via `langchain_google_genai`, with the tool catalog bound."""

    def __init__(self, model: str = LLM_MODEL, api_key: str = GOOGLE_API_KEY,
                 temperature: float = LLM_TEMPERATURE, system_prompt: str = SYSTEM_PROMPT):
        if not api_key:
            raise ValueError("GOOGLE_API_KEY is not set. Check your .env file.")
        self.system_prompt = system_prompt
        self._llm = ChatGoogleGenerativeAI(
            model=model,
            google_api_key=api_key,
            temperature=temperature,
        ).bind_tools(tool_definitions())

    async def generate(self, messages: List[ChatMessage], context: str) -> ModelReply:
        system = f"{self.system_prompt}\n\n{context}" if context else self.system_prompt
        response = await self._llm.ainvoke(to_langchain_messages(messages, system))

        calls = []
        for call in getattr(response, "tool_calls", None) or []:
            calls.append({
                "id": call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                "name": call.get("name", ""),
                "args": call.get("args") or {},
            })
        text = _text_of(response.content)
        logger.debug("Model replied with %d chars and %d tool call(s)", len(text), len(calls))
        return ModelReply(text=text, tool_calls=calls)


def build_chat_model(model: Optional[str] = None) -> GeminiChatModel:
    return GeminiChatModel(model=model or LLM_MODEL)
