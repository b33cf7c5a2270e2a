"""Context block — a fresh summary of the conversation flow and form state for each model call."""

from typing import Optional

from forms.mapping import UNIFIED_FIELDS
from forms.schema import DocumentType
from forms.state_cache import FormStateCache
from graph.tool_handlers import ToolContext


def build_context(forms: FormStateCache, ctx: ToolContext) -> str:
    """Rebuilt on every call from the live cache; never reused between passes."""
    lines = ["## CURRENT STATE"]
    lines.append(f"Conversation flow: {ctx.flow or 'not yet detected'}")

    summary = forms.summary(ctx.application_id) if ctx.application_id else None
    if summary is None:
        lines.append("Linked application: none (no form session yet)")
        return "\n".join(lines)

    lines.append(f"Linked application: {summary['application_id']}")
    lines.append(f"Active form: {summary['active_document'] or 'none'}")
    for doc in DocumentType:
        info = summary["documents"][doc.value]
        next_field = _describe_next(info["next_field"], info["next_field_label"])
        lines.append(
            f"- {doc.value}: {info['filled']} filled, {info['empty']} empty, "
            f"{len(info['missing_required'])} required missing, "
            f"submittable={'yes' if info['submittable'] else 'no'}, next field: {next_field}"
        )
        if info["missing_required"]:
            labels = [forms.registry.label_of(doc, name) for name in info["missing_required"]]
            lines.append(f"  required still missing: {', '.join(labels)}")

    lines.append("Unified fields (fill both forms at once): " + ", ".join(m.unified_name for m in UNIFIED_FIELDS))
    return "\n".join(lines)


def _describe_next(name: Optional[str], label: Optional[str]) -> str:
    if not name:
        return "none (all filled)"
    return f"{name} ({label})" if label and label != name else name
