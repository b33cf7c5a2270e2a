"""LangSmith tracing — one chat session = one trace, one child run per turn."""

import logging
import os
from contextlib import contextmanager

import langsmith as ls
from langsmith.run_trees import RunTree

from config import LANGSMITH_TRACING, LANGSMITH_PROJECT

logger = logging.getLogger(__name__)

# In-memory store: session_id -> root RunTree
_session_trace_store: dict[str, RunTree] = {}


def _ensure_env():
    """Ensure LangSmith env vars are set when tracing is enabled."""
    if LANGSMITH_TRACING:
        os.environ.setdefault("LANGCHAIN_TRACING_V2", "true")
        os.environ.setdefault("LANGCHAIN_PROJECT", LANGSMITH_PROJECT)


def _root_for(session_id: str) -> RunTree:
    root = _session_trace_store.get(session_id)
    if root is None:
        root = RunTree(name="loan_chat_session", run_type="chain")
        root.add_metadata({"session_id": session_id})
        root.add_tags(["loan-forms", "chat"])
        root.post()
        _session_trace_store[session_id] = root
    return root


@contextmanager
def turn_trace(session_id: str, enabled: bool = LANGSMITH_TRACING):
    """
    Group every model call of one turn under the session's root trace.
    The root is created on the first turn and reused until the session is deleted.
    """
    if not enabled:
        yield
        return

    _ensure_env()
    root = _root_for(session_id)
    with ls.tracing_context(
        project_name=LANGSMITH_PROJECT,
        enabled=True,
        parent=root,
        metadata={"session_id": session_id},
        tags=["loan-forms", "turn"],
    ):
        yield str(root.id)


def clear_session_trace(session_id: str) -> None:
    """End the root run and remove it from the store when the session is deleted."""
    root = _session_trace_store.pop(session_id, None)
    if root:
        try:
            root.end()
            root.patch()
        except Exception:
            logger.warning("Could not close LangSmith trace for %s", session_id, exc_info=True)
