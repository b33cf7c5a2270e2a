"""Preview renderer — writes the persisted field values of each form to a preview artifact.

Invoked by the inactivity timer or an explicit finalize, never inline in a
turn. Artifacts are JSON files, one per document type, named after the
application.
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from typing import List, Protocol

from forms.schema import DEFAULT_REGISTRY, DocumentType, SchemaRegistry

logger = logging.getLogger(__name__)


class PreviewRenderer(Protocol):
    async def regenerate(self, application_id: str) -> List[str]: ...


def _write_json(path: str, payload: dict) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str)
    os.replace(tmp, path)


class StorePreviewRenderer:
    """Reads from the field store (not the in-memory cache), so previews reflect what was saved."""

    def __init__(self, store, output_dir: str, registry: SchemaRegistry = DEFAULT_REGISTRY):
        self.store = store
        self.output_dir = output_dir
        self.registry = registry

    async def regenerate(self, application_id: str) -> List[str]:
        artifacts = []
        for doc in DocumentType:
            values = await self.store.load_fields(application_id, doc) or {}
            fields = self.registry.empty_defaults(doc)
            fields.update({k: v for k, v in values.items() if k in fields})
            payload = {
                "applicationId": application_id,
                "documentType": doc.value,
                "generatedAt": datetime.now(timezone.utc).isoformat(),
                "fields": [
                    {
                        "name": name,
                        "label": self.registry.label_of(doc, name),
                        "required": self.registry.is_required(doc, name),
                        "value": value,
                    }
                    for name, value in fields.items()
                ],
            }
            path = os.path.join(self.output_dir, application_id, f"{doc.value}_preview.json")
            await asyncio.to_thread(_write_json, path, payload)
            artifacts.append(path)
        logger.info("Regenerated %d preview artifact(s) for %s", len(artifacts), application_id)
        return artifacts
