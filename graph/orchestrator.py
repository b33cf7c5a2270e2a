"""Turn orchestrator — chat session lifecycle and the two-pass model/tool protocol.

One turn per session at a time, enforced by a per-session `asyncio.Lock`
held from the first store read to the final save. Different sessions run
concurrently and share nothing but the stores.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, AsyncIterator, Dict, List, Optional

from config import LANGSMITH_TRACING, MODEL_TIMEOUT_SECONDS
from errors import SessionNotFound, TurnFailed
from forms.state_cache import FormStateCache
from graph.builder import build_turn_graph
from graph.context import build_context
from graph.state import initial_turn_state
from graph.tool_handlers import ToolContext, ToolExecutor
from langsmith_tracing import clear_session_trace, turn_trace
from services.broadcast import rooms_for
from storage.chat_sessions import ChatMessage, ChatSession
from workers.inactivity import InactivityTimers

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    session_id: str
    reply: str
    tool_results: List[Dict[str, Any]] = field(default_factory=list)
    application_id: Optional[str] = None
    fields: Optional[Dict[str, Any]] = None
    model_calls: int = 0
    conversation_ended: bool = False


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class TurnOrchestrator:
    def __init__(self, sessions, forms: FormStateCache, executor: ToolExecutor, model,
                 broadcaster, renderer, timers: InactivityTimers,
                 model_timeout: float = MODEL_TIMEOUT_SECONDS, tracing: bool = LANGSMITH_TRACING):
        self.sessions = sessions
        self.forms = forms
        self.executor = executor
        self.broadcaster = broadcaster
        self.renderer = renderer
        self.timers = timers
        self.tracing = tracing
        self.graph = build_turn_graph(model, executor, partial(build_context, forms), model_timeout)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def _locked(self, session_id: str) -> AsyncIterator[ChatSession]:
        """Hold the session's lock and yield the session; unknown ids leave no lock behind."""
        async with self._lock(session_id):
            session = await self.sessions.get(session_id)
            if session is None:
                self._locks.pop(session_id, None)
                raise SessionNotFound(session_id)
            yield session

    async def _require(self, session_id: str) -> ChatSession:
        session = await self.sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    # ── Session lifecycle ───────────────────────────────────────────────
    async def create_session(self, owner_ref: Optional[str] = None) -> ChatSession:
        return await self.sessions.create(owner_ref)

    async def get_session(self, session_id: str) -> ChatSession:
        return await self._require(session_id)

    async def add_message(self, session_id: str, message: ChatMessage) -> None:
        await self._require(session_id)
        await self.sessions.append_message(session_id, message)

    async def delete_session(self, session_id: str) -> None:
        """Cancel the timer and close the form session before the chat session goes away."""
        async with self._locked(session_id) as session:
            self.timers.cancel(session_id)
            if session.application_id and self.forms.has(session.application_id):
                await self.forms.end(session.application_id)
            await self.sessions.delete(session_id)
            clear_session_trace(session_id)
        self._locks.pop(session_id, None)
        logger.info("Session %s deleted", session_id)

    # ── Turn ────────────────────────────────────────────────────────────
    async def handle_message(self, session_id: str, text: str, application_id: Optional[str] = None) -> TurnResult:
        async with self._locked(session_id) as session:
            if application_id and application_id != session.application_id:
                previous = session.application_id
                await self.sessions.link_application(session_id, application_id)
                session.application_id = application_id
                if previous:
                    await self.forms.end(previous)
            if session.application_id:
                # Rebuilds the form session if it was evicted (e.g. after a restart).
                await self.forms.start(session.application_id)

            user_message = ChatMessage(role="user", content=text)
            await self.sessions.append_message(session_id, user_message)

            ctx = ToolContext(
                session_id=session_id,
                application_id=session.application_id,
                flow=session.user_data.get("conversationFlow"),
            )
            state = initial_turn_state(session_id, session.messages + [user_message], ctx)

            try:
                with turn_trace(session_id, self.tracing):
                    final = await self.graph.ainvoke(state)
            except TurnFailed:
                # Tool effects already applied stay in memory (still dirty) for the next save.
                logger.error("Turn failed for session %s", session_id, exc_info=True)
                raise

            for message in final["new_messages"]:
                await self.sessions.append_message(session_id, message)

            fields = await self._after_turn(session_id, ctx)
            return TurnResult(
                session_id=session_id,
                reply=final["reply_text"],
                tool_results=final["tool_results"],
                application_id=ctx.application_id,
                fields=fields,
                model_calls=final["model_calls"],
                conversation_ended=ctx.ended,
            )

    async def _after_turn(self, session_id: str, ctx: ToolContext) -> Optional[Dict[str, Any]]:
        application_id = ctx.application_id
        if not application_id or not self.forms.has(application_id):
            return None

        if ctx.touched:
            await self.forms.save(application_id)
        snapshot = self.forms.complete_snapshot(application_id)
        await self.broadcaster.publish(
            "pdf-fields-update",
            {"sessionId": session_id, "applicationId": application_id, "timestamp": _now(), "forms": snapshot},
            rooms_for(session_id),
        )
        self._arm_timer(session_id, application_id)
        return snapshot

    def _arm_timer(self, session_id: str, application_id: str) -> None:
        async def regenerate_previews():
            # Same lock as a turn, so no tool writes land while the save is in flight.
            async with self._lock(session_id):
                # The form session may have ended between arming and firing.
                if not self.forms.has(application_id):
                    return
                await self.forms.save(application_id)
                artifacts = await self.renderer.regenerate(application_id)
                await self.broadcaster.publish(
                    "preview-regenerated",
                    {"sessionId": session_id, "applicationId": application_id, "timestamp": _now(), "artifacts": artifacts},
                    rooms_for(session_id),
                )

        self.timers.reset(session_id, regenerate_previews)

    # ── Form session access ─────────────────────────────────────────────
    async def field_snapshot(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Read-only view for the GET routes; never opens a form session."""
        session = await self._require(session_id)
        if not session.application_id:
            return None
        view = await self.forms.peek(session.application_id)
        return {"applicationId": session.application_id, **view}

    async def finalize(self, session_id: str) -> Dict[str, Any]:
        """Explicit save plus preview regeneration, outside any turn."""
        async with self._locked(session_id) as session:
            application_id = session.application_id
            if not application_id:
                return {"saved": False, "artifacts": [], "message": "No application linked to this session"}

            await self.forms.start(application_id)
            self.timers.cancel(session_id)
            saved = await self.forms.save(application_id)
            artifacts = await self.renderer.regenerate(application_id)
            await self.broadcaster.publish(
                "preview-regenerated",
                {"sessionId": session_id, "applicationId": application_id, "timestamp": _now(), "artifacts": artifacts},
                rooms_for(session_id),
            )
            return {"saved": saved, "artifacts": artifacts, "applicationId": application_id}

    async def end_form_session(self, session_id: str) -> bool:
        async with self._locked(session_id) as session:
            self.timers.cancel(session_id)
            if session.application_id and self.forms.has(session.application_id):
                return await self.forms.end(session.application_id)
            return False

    async def shutdown(self) -> None:
        """Stop every timer and flush dirty form sessions."""
        self.timers.cancel_all()
        for application_id in self.forms.active_ids():
            await self.forms.end(application_id)
