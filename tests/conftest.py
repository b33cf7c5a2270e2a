"""Shared fakes: spy field store, scripted chat model, recording broadcaster, manual clock."""

from typing import Any, Dict, List, Optional, Tuple

import pytest

from errors import PersistenceFailure
from forms.mapping import FieldMapper
from forms.schema import DocumentType, FieldDefinition, FieldKind, SchemaRegistry
from forms.state_cache import FormStateCache
from graph.llm import ModelReply
from graph.orchestrator import TurnOrchestrator
from graph.tool_handlers import ToolExecutor
from services.applications import SqliteApplicationService
from storage.chat_sessions import SqliteChatSessionStore
from storage.database import Database
from workers.inactivity import InactivityTimers


class SpyFieldStore:
    """In-memory FieldStore that counts writes and can be told to fail."""

    def __init__(self):
        self.data: Dict[Tuple[str, DocumentType], Dict[str, Any]] = {}
        self.loads = 0
        self.writes = 0
        self.fail_writes = False

    async def load_fields(self, application_id, doc):
        self.loads += 1
        stored = self.data.get((application_id, DocumentType(doc)))
        return dict(stored) if stored is not None else None

    async def save_fields(self, application_id, doc, fields):
        if self.fail_writes:
            raise PersistenceFailure("store unavailable")
        self.writes += 1
        self.data.setdefault((application_id, DocumentType(doc)), {}).update(fields)


class ScriptedChatModel:
    """Returns queued replies in order and records what each call saw."""

    def __init__(self, replies: Optional[List[ModelReply]] = None):
        self.replies = list(replies or [])
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, messages, context):
        self.calls.append({"messages": list(messages), "context": context})
        if not self.replies:
            raise AssertionError("ScriptedChatModel ran out of replies")
        return self.replies.pop(0)


class RecordingBroadcaster:
    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any], List[str]]] = []

    async def publish(self, event, payload, rooms):
        self.events.append((event, payload, list(rooms)))

    def named(self, event: str):
        return [e for e in self.events if e[0] == event]


class FakeRenderer:
    def __init__(self):
        self.calls: List[str] = []

    async def regenerate(self, application_id):
        self.calls.append(application_id)
        return [f"{application_id}/SBA_1919_preview.json", f"{application_id}/SBA_413_preview.json"]


class FakeHandle:
    def __init__(self, deadline, job):
        self.deadline = deadline
        self.job = job
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock: jobs run only when `advance` moves past their deadline."""

    def __init__(self):
        self.now = 0.0
        self.handles: List[FakeHandle] = []

    def call_later(self, delay, job):
        handle = FakeHandle(self.now + delay, job)
        self.handles.append(handle)
        return handle

    async def advance(self, seconds: float):
        self.now += seconds
        due = [h for h in self.handles if not h.cancelled and h.deadline <= self.now]
        for handle in due:
            self.handles.remove(handle)
            await handle.job()


def tool_call(name: str, args: Dict[str, Any] = None, call_id: str = None) -> Dict[str, Any]:
    return {"id": call_id or f"call_{name}", "name": name, "args": args or {}}


@pytest.fixture
def small_registry():
    """Two required fields and one optional field on each form."""
    return SchemaRegistry({
        DocumentType.SBA_1919: [
            FieldDefinition("applicantname", required=True, label="Applicant Name"),
            FieldDefinition("busphone", required=True, label="Business Phone"),
            FieldDefinition("dba", label="DBA"),
        ],
        DocumentType.SBA_413: [
            FieldDefinition("name", required=True, label="Name"),
            FieldDefinition("businessPhone", required=True, label="Business Phone"),
            FieldDefinition("wosbMarried", kind=FieldKind.CHECKBOX, label="Married"),
        ],
    })


@pytest.fixture
def field_store():
    return SpyFieldStore()


@pytest.fixture
def forms(field_store):
    return FormStateCache(field_store)


@pytest.fixture
def mapper(forms):
    return FieldMapper(forms)


@pytest.fixture
def db():
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def sessions(db):
    return SqliteChatSessionStore(db)


@pytest.fixture
def applications(db):
    return SqliteApplicationService(db)


@pytest.fixture
def executor(forms, mapper, sessions, applications, broadcaster):
    return ToolExecutor(forms, mapper, sessions, applications, broadcaster)


@pytest.fixture
def make_orchestrator(forms, executor, sessions, broadcaster, renderer, scheduler):
    def _make(replies: List[ModelReply], timeout: float = 5.0):
        model = ScriptedChatModel(replies)
        orchestrator = TurnOrchestrator(
            sessions=sessions,
            forms=forms,
            executor=executor,
            model=model,
            broadcaster=broadcaster,
            renderer=renderer,
            timers=InactivityTimers(30, scheduler),
            model_timeout=timeout,
            tracing=False,
        )
        return orchestrator, model
    return _make
