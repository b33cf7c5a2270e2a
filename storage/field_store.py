"""Persistent per-field storage for form values."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from forms.schema import DocumentType
from storage.database import Database

logger = logging.getLogger(__name__)


class FieldStore(Protocol):
    async def load_fields(self, application_id: str, doc: DocumentType) -> Optional[Dict[str, Any]]: ...

    async def save_fields(self, application_id: str, doc: DocumentType, fields: Dict[str, Any]) -> None: ...


class SqliteFieldStore:
    """One row per (application, document, field); saves upsert field by field.

    Fields written by other code paths for the same application are left
    untouched, because nothing is ever replaced wholesale.
    """

    def __init__(self, db: Database):
        self.db = db

    async def load_fields(self, application_id: str, doc: DocumentType) -> Optional[Dict[str, Any]]:
        rows = await self.db.fetch_all(
            "SELECT field_name, value FROM form_fields WHERE application_id = ? AND document = ?",
            (application_id, DocumentType(doc).value),
        )
        if not rows:
            return None
        return {row["field_name"]: json.loads(row["value"]) for row in rows}

    async def save_fields(self, application_id: str, doc: DocumentType, fields: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        document = DocumentType(doc).value
        await self.db.execute_many(
            """
            INSERT INTO form_fields (application_id, document, field_name, value, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (application_id, document, field_name)
            DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            [(application_id, document, name, json.dumps(value), now) for name, value in fields.items()],
        )
        logger.debug("Upserted %d %s fields for %s", len(fields), document, application_id)
