"""Chat sessions — message history, captured user data and the optional application link."""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Protocol

from pydantic import BaseModel, Field

from errors import SessionNotFound
from storage.database import Database

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ToolCallRecord(BaseModel):
    id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "tool", "system"]
    content: str = ""
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    tool_call_id: Optional[str] = None    # set on role="tool"
    name: Optional[str] = None            # tool name on role="tool"
    timestamp: datetime = Field(default_factory=_now)


class ChatSession(BaseModel):
    session_id: str
    messages: List[ChatMessage] = Field(default_factory=list)
    user_data: Dict[str, Any] = Field(default_factory=dict)
    application_id: Optional[str] = None
    owner_ref: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class ChatSessionStore(Protocol):
    async def create(self, owner_ref: Optional[str] = None) -> ChatSession: ...

    async def get(self, session_id: str) -> Optional[ChatSession]: ...

    async def append_message(self, session_id: str, message: ChatMessage) -> None: ...

    async def update_user_data(self, session_id: str, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def link_application(self, session_id: str, application_id: str) -> None: ...

    async def delete(self, session_id: str) -> bool: ...


class SqliteChatSessionStore:
    """Sessions in `chat_sessions`, messages appended in arrival order to `chat_messages`."""

    def __init__(self, db: Database):
        self.db = db

    async def create(self, owner_ref: Optional[str] = None) -> ChatSession:
        session = ChatSession(session_id=str(uuid.uuid4()), owner_ref=owner_ref)
        await self.db.execute(
            "INSERT INTO chat_sessions (session_id, owner_ref, user_data, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (session.session_id, owner_ref, "{}", session.created_at.isoformat(), session.updated_at.isoformat()),
        )
        logger.info("Chat session created: %s", session.session_id)
        return session

    async def get(self, session_id: str) -> Optional[ChatSession]:
        row = await self.db.fetch_one("SELECT * FROM chat_sessions WHERE session_id = ?", (session_id,))
        if row is None:
            return None
        rows = await self.db.fetch_all(
            "SELECT payload FROM chat_messages WHERE session_id = ? ORDER BY id", (session_id,),
        )
        return ChatSession(
            session_id=row["session_id"],
            messages=[ChatMessage.model_validate_json(r["payload"]) for r in rows],
            user_data=json.loads(row["user_data"] or "{}"),
            application_id=row["application_id"],
            owner_ref=row["owner_ref"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def _require(self, session_id: str):
        row = await self.db.fetch_one("SELECT * FROM chat_sessions WHERE session_id = ?", (session_id,))
        if row is None:
            raise SessionNotFound(session_id)
        return row

    async def _touch(self, session_id: str) -> None:
        await self.db.execute(
            "UPDATE chat_sessions SET updated_at = ? WHERE session_id = ?", (_now().isoformat(), session_id),
        )

    async def append_message(self, session_id: str, message: ChatMessage) -> None:
        await self._require(session_id)
        await self.db.execute(
            "INSERT INTO chat_messages (session_id, payload) VALUES (?, ?)",
            (session_id, message.model_dump_json()),
        )
        await self._touch(session_id)

    async def update_user_data(self, session_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        row = await self._require(session_id)
        merged = {**json.loads(row["user_data"] or "{}"), **data}
        await self.db.execute(
            "UPDATE chat_sessions SET user_data = ?, updated_at = ? WHERE session_id = ?",
            (json.dumps(merged, default=str), _now().isoformat(), session_id),
        )
        return merged

    async def link_application(self, session_id: str, application_id: str) -> None:
        await self._require(session_id)
        await self.db.execute(
            "UPDATE chat_sessions SET application_id = ?, updated_at = ? WHERE session_id = ?",
            (application_id, _now().isoformat(), session_id),
        )
        logger.info("Chat session %s linked to application %s", session_id, application_id)

    async def delete(self, session_id: str) -> bool:
        row = await self.db.fetch_one("SELECT session_id FROM chat_sessions WHERE session_id = ?", (session_id,))
        if row is None:
            return False
        await self.db.execute("DELETE FROM chat_messages WHERE session_id = ?", (session_id,))
        await self.db.execute("DELETE FROM chat_sessions WHERE session_id = ?", (session_id,))
        logger.info("Chat session deleted: %s", session_id)
        return True
