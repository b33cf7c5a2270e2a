"""FastAPI entrypoint — exposes the chat turn orchestrator via REST, with Socket.IO alongside."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from config import CORS_ORIGINS, HOST, LOG_LEVEL, PORT
from errors import ModelEmptyResponse, SessionNotFound, TimeoutFailure, TurnFailed
from graph.orchestrator import TurnOrchestrator

logger = logging.getLogger(__name__)


# ── Request models ──────────────────────────────────────────────────────
class CreateSessionRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    owner_ref: Optional[str] = None


class MessageRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str = Field(..., min_length=1)
    application_id: Optional[str] = None


# ── App factory ─────────────────────────────────────────────────────────
def create_app(orchestrator: TurnOrchestrator) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await orchestrator.shutdown()

    app = FastAPI(title="Loan Forms Agent", version="1.0.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Error mapping ───────────────────────────────────────────────────
    @app.exception_handler(SessionNotFound)
    async def session_not_found(request: Request, exc: SessionNotFound):
        return JSONResponse(status_code=404, content={"success": False, "error": str(exc)})

    @app.exception_handler(TurnFailed)
    async def turn_failed(request: Request, exc: TurnFailed):
        if isinstance(exc, TimeoutFailure):
            status = 504
        elif isinstance(exc, ModelEmptyResponse):
            status = 502
        else:
            status = 500
        return JSONResponse(status_code=status, content={"success": False, "error": str(exc)})

    # ── Endpoints ───────────────────────────────────────────────────────
    @app.post("/api/chat/sessions", status_code=201)
    async def create_session(req: Optional[CreateSessionRequest] = None):
        """Create an empty chat session."""
        session = await orchestrator.create_session(req.owner_ref if req else None)
        return {"success": True, "session": session.model_dump(mode="json")}

    @app.get("/api/chat/sessions/{session_id}")
    async def get_session(session_id: str):
        """Session with its transcript, plus the captured field snapshot when linked."""
        session = await orchestrator.get_session(session_id)
        return {
            "success": True,
            "session": session.model_dump(mode="json"),
            "fields": await orchestrator.field_snapshot(session_id),
        }

    @app.delete("/api/chat/sessions/{session_id}")
    async def delete_session(session_id: str):
        await orchestrator.delete_session(session_id)
        return {"success": True}

    @app.post("/api/chat/sessions/{session_id}/messages")
    async def post_message(session_id: str, req: MessageRequest):
        """Run one turn and return the assistant's reply."""
        result = await orchestrator.handle_message(session_id, req.message, req.application_id)
        return {
            "success": True,
            "sessionId": result.session_id,
            "reply": result.reply,
            "toolResults": result.tool_results,
            "applicationId": result.application_id,
            "fields": result.fields,
            "conversationEnded": result.conversation_ended,
        }

    @app.get("/api/chat/sessions/{session_id}/messages")
    async def get_messages(session_id: str):
        session = await orchestrator.get_session(session_id)
        return {"success": True, "messages": [m.model_dump(mode="json") for m in session.messages]}

    @app.get("/api/chat/sessions/{session_id}/userData")
    async def get_user_data(session_id: str):
        session = await orchestrator.get_session(session_id)
        return {"success": True, "userData": session.user_data, "applicationId": session.application_id}

    @app.get("/api/chat/sessions/{session_id}/fields")
    async def get_fields(session_id: str):
        return {"success": True, "fields": await orchestrator.field_snapshot(session_id)}

    @app.post("/api/chat/sessions/{session_id}/finalize")
    async def finalize(session_id: str):
        """Save now and regenerate previews without waiting for the inactivity timer."""
        return {"success": True, **(await orchestrator.finalize(session_id))}

    return app


def create_default_app():
    """Production wiring: Gemini model, SQLite stores, Socket.IO broadcast."""
    from bootstrap import build_runtime
    from graph.llm import build_chat_model
    from services.broadcast import SocketIOBroadcaster

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    broadcaster = SocketIOBroadcaster(allowed_origins=CORS_ORIGINS)
    runtime = build_runtime(build_chat_model(), broadcaster)
    return broadcaster.asgi_app(create_app(runtime.orchestrator))


# ── Run ─────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:create_default_app", factory=True, host=HOST, port=PORT, reload=True)
