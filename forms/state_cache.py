"""Session state cache — in-memory form state per application with dirty-tracking write-back.

One `SessionFormState` per application id lives here while a form session is
active. The persistent store is read by `start` (and by `peek`, which never
caches what it reads) and written only by `save` / `end`. Every mutation is synchronous, so a single event loop never
observes a half-applied update.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from errors import PersistenceFailure, UnknownField
from forms.schema import DEFAULT_REGISTRY, DocumentType, FieldKind, FieldValue, SchemaRegistry

logger = logging.getLogger(__name__)

_TRUTHY = ("true", "1", "yes", "on", "x")


def is_filled(value: Any) -> bool:
    """Booleans count when True; strings count when non-blank."""
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip() != ""


@dataclass
class DocumentStateEntry:
    all_fields: Dict[str, FieldValue]
    filled_fields: List[str] = field(default_factory=list)
    empty_fields: List[str] = field(default_factory=list)
    missing_required: List[str] = field(default_factory=list)
    is_submittable: bool = False
    cursor_index: int = 0


@dataclass
class SessionFormState:
    application_id: str
    sba_1919: DocumentStateEntry
    sba_413: DocumentStateEntry
    active_document: Optional[DocumentType] = None
    dirty: bool = False
    last_saved: Optional[datetime] = None
    # Bumped on every field write; `save` compares it to tell whether its snapshot is still current.
    revision: int = 0

    def entry(self, doc: DocumentType) -> DocumentStateEntry:
        return self.sba_1919 if DocumentType(doc) is DocumentType.SBA_1919 else self.sba_413


@dataclass
class UpdateResult:
    success: bool
    next_field: Optional[str] = None
    is_submittable: bool = False
    message: Optional[str] = None


@dataclass
class SkipResult:
    success: bool
    skipped_field: str = ""
    next_field: Optional[str] = None
    was_required: bool = False
    message: Optional[str] = None


class FormStateCache:
    """Owns every live `SessionFormState`, keyed by application id.

    Constructed once per runtime and handed to whoever needs it; nothing here
    is module-global, so tests get a clean cache per instance.
    """

    def __init__(self, store, registry: SchemaRegistry = DEFAULT_REGISTRY):
        self.store = store
        self.registry = registry
        self._states: Dict[str, SessionFormState] = {}

    # ── Lifecycle ───────────────────────────────────────────────────────
    async def start(self, application_id: str) -> SessionFormState:
        existing = self._states.get(application_id)
        if existing is not None:
            logger.debug("Form session already active for %s", application_id)
            return existing

        state = await self._load(application_id)

        # Another coroutine may have started the same session while we were loading.
        existing = self._states.get(application_id)
        if existing is not None:
            return existing

        self._states[application_id] = state
        logger.info(
            "Form session started for %s (1919: %d filled, 413: %d filled)",
            application_id, len(state.sba_1919.filled_fields), len(state.sba_413.filled_fields),
        )
        return state

    async def save(self, application_id: str) -> bool:
        state = self._states.get(application_id)
        if state is None:
            logger.warning("No form session to save for %s", application_id)
            return False
        if not state.dirty:
            return True

        revision = state.revision
        snapshot = {
            doc: dict(state.entry(doc).all_fields) for doc in DocumentType
        }
        try:
            for doc, values in snapshot.items():
                await self.store.save_fields(application_id, doc, values)
        except PersistenceFailure:
            logger.exception("Failed to save form state for %s; will retry on next save", application_id)
            return False

        state.last_saved = datetime.now(timezone.utc)
        # Writes that landed while the store was busy are not in the snapshot; stay dirty for them.
        if state.revision == revision:
            state.dirty = False
        else:
            logger.debug("Form state for %s changed during save; still dirty", application_id)
        logger.info(
            "Saved form state for %s (%d fields)",
            application_id, sum(len(v) for v in snapshot.values()),
        )
        return True

    async def end(self, application_id: str) -> bool:
        if application_id not in self._states:
            return False
        try:
            saved = await self.save(application_id)
        finally:
            self._states.pop(application_id, None)
        logger.info("Form session ended for %s (saved=%s)", application_id, saved)
        return saved

    # ── Reads ───────────────────────────────────────────────────────────
    def has(self, application_id: str) -> bool:
        return application_id in self._states

    def get(self, application_id: str) -> Optional[SessionFormState]:
        return self._states.get(application_id)

    def active_ids(self) -> List[str]:
        return list(self._states)

    def next_field(self, application_id: str, doc: DocumentType) -> Optional[str]:
        state = self._states.get(application_id)
        if state is None:
            return None
        empty = state.entry(doc).empty_fields
        return empty[0] if empty else None

    def progress(self, application_id: str) -> Optional[Dict[str, int]]:
        state = self._states.get(application_id)
        if state is None:
            return None
        return self._progress_of(state)

    def complete_snapshot(self, application_id: str) -> Optional[Dict[str, Dict[str, Any]]]:
        """Field values, progress and submittable flag per document, schema keys only."""
        state = self._states.get(application_id)
        if state is None:
            return None
        return self._snapshot_of(state)

    async def peek(self, application_id: str) -> Dict[str, Any]:
        """Progress and snapshot for an application without opening a form session.

        Served from the live state when one is active, otherwise built from the
        store and thrown away.
        """
        state = self._states.get(application_id)
        if state is None:
            state = await self._load(application_id)
        return {"progress": self._progress_of(state), "forms": self._snapshot_of(state)}

    def summary(self, application_id: str) -> Optional[Dict[str, Any]]:
        """Compact view used when briefing the model on where the user is."""
        state = self._states.get(application_id)
        if state is None:
            return None
        documents = {}
        for doc in DocumentType:
            entry = state.entry(doc)
            next_field = entry.empty_fields[0] if entry.empty_fields else None
            documents[doc.value] = {
                "next_field": next_field,
                "next_field_label": self.registry.label_of(doc, next_field) if next_field else None,
                "filled": len(entry.filled_fields),
                "empty": len(entry.empty_fields),
                "missing_required": list(entry.missing_required),
                "submittable": entry.is_submittable,
            }
        return {
            "application_id": application_id,
            "active_document": state.active_document.value if state.active_document else None,
            "documents": documents,
            "dirty": state.dirty,
        }

    # ── Mutations ───────────────────────────────────────────────────────
    def set_active_document(self, application_id: str, doc: DocumentType) -> bool:
        state = self._states.get(application_id)
        if state is None:
            logger.warning("No form session found for %s", application_id)
            return False
        state.active_document = DocumentType(doc)
        return True

    def update_field(self, application_id: str, doc: DocumentType, field_name: str, value: FieldValue) -> UpdateResult:
        state = self._states.get(application_id)
        if state is None:
            return UpdateResult(success=False, message=f"No session found for {application_id}")

        doc = DocumentType(doc)
        entry = state.entry(doc)
        if not self.registry.has_field(doc, field_name):
            error = UnknownField(doc.value, field_name)
            logger.warning("%s on %s for %s", error, doc.value, application_id)
            return UpdateResult(success=False, is_submittable=entry.is_submittable, message=str(error))

        entry.all_fields[field_name] = self._coerce(doc, field_name, value)
        state.dirty = True
        state.revision += 1
        self._recompute(doc, entry)

        names = self.registry.names_of(doc)
        entry.cursor_index = self.registry.index_of(doc, field_name)
        next_field = self._scan_empty(names, entry.empty_fields, entry.cursor_index)

        logger.info("Updated %s.%s for %s, next: %s", doc.value, field_name, application_id, next_field or "COMPLETE")
        return UpdateResult(
            success=True,
            next_field=next_field,
            is_submittable=entry.is_submittable,
            message=None if next_field else "All fields filled",
        )

    def skip_field(self, application_id: str, doc: DocumentType) -> SkipResult:
        state = self._states.get(application_id)
        if state is None:
            return SkipResult(success=False, message=f"No session found for {application_id}")

        doc = DocumentType(doc)
        entry = state.entry(doc)
        names = self.registry.names_of(doc)

        if entry.empty_fields:
            skipped = entry.empty_fields[0]
        else:
            skipped = names[entry.cursor_index] if 0 <= entry.cursor_index < len(names) else ""
        was_required = self.registry.is_required(doc, skipped)

        skipped_index = self.registry.index_of(doc, skipped)
        candidates = [name for name in entry.empty_fields if name != skipped]
        next_field = self._scan_empty(names, candidates, skipped_index)
        if next_field is not None:
            entry.cursor_index = self.registry.index_of(doc, next_field)

        logger.info(
            "Skipped %s.%s for %s (required: %s), next: %s",
            doc.value, skipped, application_id, was_required, next_field or "COMPLETE",
        )
        return SkipResult(
            success=True,
            skipped_field=skipped,
            next_field=next_field,
            was_required=was_required,
            message=f"Skipped required field: {self.registry.label_of(doc, skipped)}" if was_required else None,
        )

    # ── Internals ───────────────────────────────────────────────────────
    async def _load(self, application_id: str) -> SessionFormState:
        persisted_1919, persisted_413 = await asyncio.gather(
            self.store.load_fields(application_id, DocumentType.SBA_1919),
            self.store.load_fields(application_id, DocumentType.SBA_413),
        )
        return SessionFormState(
            application_id=application_id,
            sba_1919=self._build_entry(DocumentType.SBA_1919, persisted_1919),
            sba_413=self._build_entry(DocumentType.SBA_413, persisted_413),
        )

    def _progress_of(self, state: SessionFormState) -> Dict[str, int]:
        result = {}
        for doc in DocumentType:
            total = self.registry.size(doc)
            filled = len(state.entry(doc).filled_fields)
            result[doc.value] = round(100 * filled / total) if total else 0
        return result

    def _snapshot_of(self, state: SessionFormState) -> Dict[str, Dict[str, Any]]:
        progress = self._progress_of(state)
        snapshot = {}
        for doc in DocumentType:
            entry = state.entry(doc)
            snapshot[doc.value] = {
                "fields": {
                    name: entry.all_fields[name]
                    for name in self.registry.names_of(doc)
                    if name in entry.all_fields
                },
                "progress": progress[doc.value],
                "submittable": entry.is_submittable,
            }
        return snapshot

    def _build_entry(self, doc: DocumentType, persisted: Optional[Dict[str, Any]]) -> DocumentStateEntry:
        values = self.registry.empty_defaults(doc)
        for name, value in (persisted or {}).items():
            # Stored keys outside the schema are data we do not own; never cache them.
            if name in values:
                values[name] = self._coerce(doc, name, value)
        entry = DocumentStateEntry(all_fields=values)
        self._recompute(doc, entry)
        return entry

    def _coerce(self, doc: DocumentType, field_name: str, value: Any) -> FieldValue:
        definition = self.registry.definition(doc, field_name)
        if definition is not None and definition.kind is FieldKind.CHECKBOX:
            if isinstance(value, str):
                return value.strip().lower() in _TRUTHY
            return bool(value)
        if value is None:
            return ""
        if isinstance(value, bool):
            return value
        return str(value)

    def _recompute(self, doc: DocumentType, entry: DocumentStateEntry) -> None:
        filled, empty, missing = [], [], []
        for definition in self.registry.fields_of(doc):
            if is_filled(entry.all_fields.get(definition.name)):
                filled.append(definition.name)
            else:
                empty.append(definition.name)
                if definition.required:
                    missing.append(definition.name)
        entry.filled_fields = filled
        entry.empty_fields = empty
        entry.missing_required = missing
        entry.is_submittable = not missing

    @staticmethod
    def _scan_empty(names: List[str], empty: List[str], from_index: int) -> Optional[str]:
        """First member of `empty` after `from_index`, wrapping to the start but never reaching it."""
        pool = set(empty)
        for name in names[from_index + 1:]:
            if name in pool:
                return name
        for name in names[:max(from_index, 0)]:
            if name in pool:
                return name
        return None
