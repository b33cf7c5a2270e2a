"""Runtime wiring — builds every stateful collaborator once and hands them out explicitly."""

import logging
from dataclasses import dataclass
from typing import Optional

from config import DATABASE_PATH, INACTIVITY_SECONDS, MODEL_TIMEOUT_SECONDS, PREVIEW_DIR
from forms.mapping import FieldMapper
from forms.schema import DEFAULT_REGISTRY, SchemaRegistry
from forms.state_cache import FormStateCache
from graph.orchestrator import TurnOrchestrator
from graph.tool_handlers import ToolExecutor
from services.applications import SqliteApplicationService
from storage.chat_sessions import SqliteChatSessionStore
from storage.database import Database
from storage.field_store import SqliteFieldStore
from workers.inactivity import InactivityTimers
from workers.preview_renderer import StorePreviewRenderer

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    db: Database
    forms: FormStateCache
    orchestrator: TurnOrchestrator
    broadcaster: object


def build_runtime(model, broadcaster, database_path: str = DATABASE_PATH,
                  preview_dir: str = PREVIEW_DIR, inactivity_seconds: float = INACTIVITY_SECONDS,
                  model_timeout: float = MODEL_TIMEOUT_SECONDS, scheduler=None,
                  registry: SchemaRegistry = DEFAULT_REGISTRY, tracing: Optional[bool] = None) -> Runtime:
    db = Database(database_path)
    field_store = SqliteFieldStore(db)
    forms = FormStateCache(field_store, registry)
    sessions = SqliteChatSessionStore(db)
    executor = ToolExecutor(
        forms=forms,
        mapper=FieldMapper(forms),
        sessions=sessions,
        applications=SqliteApplicationService(db),
        broadcaster=broadcaster,
    )
    kwargs = {} if tracing is None else {"tracing": tracing}
    orchestrator = TurnOrchestrator(
        sessions=sessions,
        forms=forms,
        executor=executor,
        model=model,
        broadcaster=broadcaster,
        renderer=StorePreviewRenderer(field_store, preview_dir, registry),
        timers=InactivityTimers(inactivity_seconds, scheduler),
        model_timeout=model_timeout,
        **kwargs,
    )
    logger.info("Runtime ready (db=%s, inactivity=%ss)", database_path, inactivity_seconds)
    return Runtime(db=db, forms=forms, orchestrator=orchestrator, broadcaster=broadcaster)
