"""Tool execution — one handler per catalog entry, results captured as data.

Handlers never raise across the turn boundary: any exception becomes a
failed `ToolResult` that is fed back to the model so the conversation can
route around it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from forms.mapping import (
    ENTITY_GROUP_BY_DOCUMENT,
    ENTITY_TYPE_MAPPING,
    FieldMapper,
    resolve_entity_type,
)
from forms.schema import DocumentType
from forms.state_cache import FormStateCache
from graph.tools import (
    CaptureApplicantProfileArgs,
    CaptureCheckboxSelectionArgs,
    CaptureHighlightFieldArgs,
    CaptureOpenSBAFormArgs,
    CaptureSkipFieldArgs,
    CaptureUnifiedFieldArgs,
    ChancesBuyerArgs,
    ChancesOwnerArgs,
    DetectConversationFlowArgs,
    EndConversationArgs,
    GetFilledFieldsArgs,
    InvalidToolCall,
    RetrieveAllApplicationsArgs,
    RetrieveApplicationStatusArgs,
    ToolCall,
)
from services.broadcast import rooms_for
from services.eligibility import EligibilityResult, score_buyer, score_owner

logger = logging.getLogger(__name__)

# Profile keys (as captured in userData) that also fill a unified form field.
PROFILE_TO_UNIFIED = {
    "name": "applicantName",
    "businessName": "businessName",
    "businessPhone": "businessPhone",
    "businessAddress": "businessAddress",
    "homeAddress": "homeAddress",
}

FLOW_INSTRUCTIONS = {
    "new_application": "Ask whether they own the business or are buying one, then gather eligibility details",
    "continue_application": "Ask for their business name, phone or application id to find the application",
    "check_status": "Ask for their business name, phone or application id to look up the status",
}


@dataclass
class ToolResult:
    success: bool
    message: str
    instruction: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.instruction:
            out["instruction"] = self.instruction
        if self.data is not None:
            out["data"] = self.data
        return out


@dataclass
class ToolContext:
    """Per-turn scratchpad shared by the handlers of one turn, in call order."""

    session_id: str
    application_id: Optional[str] = None
    touched: bool = False
    ended: bool = False
    flow: Optional[str] = None
    events: List[str] = field(default_factory=list)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _form_label(doc: DocumentType) -> str:
    return "[Form 413]" if doc is DocumentType.SBA_413 else "[Form 1919]"


class ToolExecutor:
    def __init__(self, forms: FormStateCache, mapper: FieldMapper, sessions, applications, broadcaster):
        self.forms = forms
        self.mapper = mapper
        self.sessions = sessions
        self.applications = applications
        self.broadcaster = broadcaster
        self._handlers = {
            "detectConversationFlow": self.detect_conversation_flow,
            "captureApplicantProfile": self.capture_applicant_profile,
            "captureUnifiedField": self.capture_unified_field,
            "captureHighlightField": self.capture_highlight_field,
            "captureSkipField": self.capture_skip_field,
            "captureCheckboxSelection": self.capture_checkbox_selection,
            "captureOpenSBAForm": self.capture_open_sba_form,
            "chancesUserSBAApprovedBUYER": self.chances_buyer,
            "chancesUserSBAApprovedOWNER": self.chances_owner,
            "retrieveApplicationStatus": self.retrieve_application_status,
            "retrieveAllApplications": self.retrieve_all_applications,
            "getFilledFields": self.get_filled_fields,
            "endConversation": self.end_conversation,
        }

    async def execute(self, ctx: ToolContext, call: ToolCall) -> ToolResult:
        if isinstance(call, InvalidToolCall):
            logger.warning("Rejected tool call %s: %s", call.name, call.error)
            return ToolResult(success=False, message=call.error)

        handler = self._handlers.get(call.name)
        if handler is None:
            logger.warning("Unknown tool: %s", call.name)
            return ToolResult(success=False, message=f"Unknown tool: {call.name}")

        try:
            result = await handler(ctx, call.args)
        except Exception as e:
            logger.warning("Tool %s failed for session %s", call.name, ctx.session_id, exc_info=True)
            return ToolResult(success=False, message=f"Error executing {call.name}: {e}")

        if not result.success:
            logger.warning("Tool %s returned failure: %s", call.name, result.message)
        return result

    # ── Helpers ─────────────────────────────────────────────────────────
    async def _publish(self, ctx: ToolContext, event: str, payload: Dict[str, Any]) -> None:
        body = {"sessionId": ctx.session_id, "timestamp": _now(), "source": "chat", **payload}
        await self.broadcaster.publish(event, body, rooms_for(ctx.session_id))
        ctx.events.append(event)

    def _active_form(self, ctx: ToolContext) -> Optional[str]:
        if ctx.application_id and self.forms.has(ctx.application_id):
            return ctx.application_id
        return None

    def _no_form(self) -> ToolResult:
        return ToolResult(
            success=False,
            message="No active form session. Create or resume an application first.",
            instruction="Help the user check eligibility or find their existing application before filling forms",
        )

    def _resolve_doc(self, ctx: ToolContext, form_type: Optional[str]) -> DocumentType:
        if form_type:
            return DocumentType(form_type)
        state = self.forms.get(ctx.application_id) if ctx.application_id else None
        if state and state.active_document:
            return state.active_document
        return DocumentType.SBA_1919

    def _prefill_from_profile(self, application_id: str, profile: Dict[str, Any]) -> List[str]:
        applied = []
        for key, unified in PROFILE_TO_UNIFIED.items():
            value = profile.get(key)
            if value in (None, "", "Undisclosed"):
                continue
            results = self.mapper.apply_unified(application_id, unified, str(value))
            if any(r is not None and r.success for r in results.values()):
                applied.append(unified)
        return applied

    async def _link_and_start(self, ctx: ToolContext, application_id: str) -> None:
        previous = ctx.application_id
        await self.sessions.link_application(ctx.session_id, application_id)
        ctx.application_id = application_id
        if previous and previous != application_id:
            # Flush and drop the form session the chat just moved away from.
            await self.forms.end(previous)
        await self.forms.start(application_id)

    # ── Flow & profile ──────────────────────────────────────────────────
    async def detect_conversation_flow(self, ctx: ToolContext, args: DetectConversationFlowArgs) -> ToolResult:
        await self.sessions.update_user_data(ctx.session_id, {"conversationFlow": args.flow})
        ctx.flow = args.flow
        return ToolResult(
            success=True,
            message=f"Conversation flow: {args.flow}",
            instruction=FLOW_INSTRUCTIONS[args.flow],
            data={"flow": args.flow},
        )

    async def capture_applicant_profile(self, ctx: ToolContext, args: CaptureApplicantProfileArgs) -> ToolResult:
        captured = args.model_dump(by_alias=True, exclude_none=True)
        if not captured:
            return ToolResult(success=False, message="No profile fields provided")

        await self.sessions.update_user_data(ctx.session_id, captured)
        await self._publish(ctx, "form-field-update", {"fields": captured})

        applied: List[str] = []
        application_id = self._active_form(ctx)
        if application_id:
            applied = self._prefill_from_profile(application_id, captured)
            ctx.touched = ctx.touched or bool(applied)

        return ToolResult(
            success=True,
            message=f"Captured {', '.join(captured)}",
            instruction="Acknowledge briefly and ask for the next missing detail",
            data={"captured": captured, "formFieldsUpdated": applied},
        )

    # ── Form capture ────────────────────────────────────────────────────
    async def capture_unified_field(self, ctx: ToolContext, args: CaptureUnifiedFieldArgs) -> ToolResult:
        application_id = self._active_form(ctx)
        if application_id is None:
            return self._no_form()

        mapping = self.mapper.mapping_of(args.unified_name)
        if mapping is None:
            return ToolResult(
                success=False,
                message=f"Unknown unified field: {args.unified_name}. Available: {', '.join(self.mapper.unified_names())}",
            )

        results = self.mapper.apply_unified(application_id, args.unified_name, args.value)
        ctx.touched = True

        updated = {}
        for doc in DocumentType:
            result = results[doc.value]
            target = mapping.field_for(doc)
            if result is not None and result.success:
                updated[doc.value] = {target: args.value}
        await self._publish(ctx, "form-field-update", {"fields": updated, "unifiedName": args.unified_name})

        data = {
            doc: (None if r is None else {
                "success": r.success,
                "nextField": r.next_field,
                "isSubmittable": r.is_submittable,
                "message": r.message,
            })
            for doc, r in results.items()
        }
        if not updated:
            return ToolResult(success=False, message=f"Could not write {args.unified_name} to either form", data=data)

        where = "both forms" if len(updated) == 2 else ", ".join(updated)
        return ToolResult(
            success=True,
            message=f"{args.unified_name} captured on {where}",
            instruction="Confirm briefly and ask for the next field",
            data=data,
        )

    async def capture_highlight_field(self, ctx: ToolContext, args: CaptureHighlightFieldArgs) -> ToolResult:
        application_id = self._active_form(ctx)
        if application_id is None:
            return self._no_form()

        doc = self._resolve_doc(ctx, args.form_type)
        if not self.forms.registry.has_field(doc, args.field):
            return ToolResult(success=False, message=f"{_form_label(doc)} Unknown field: {args.field}")

        next_field = None
        is_submittable = self.forms.get(application_id).entry(doc).is_submittable
        if args.text is not None:
            result = self.forms.update_field(application_id, doc, args.field, args.text)
            ctx.touched = True
            next_field, is_submittable = result.next_field, result.is_submittable

        await self._publish(ctx, "highlight-fields", {
            "fields": [args.field],
            "formType": doc.value,
            "text": args.text,
        })

        label = self.forms.registry.label_of(doc, args.field)
        return ToolResult(
            success=True,
            message=f"{_form_label(doc)} {label} " + ("updated" if args.text is not None else "highlighted"),
            instruction="Ask the user for the highlighted field" if args.text is None else "Confirm and move to the next field",
            data={"field": args.field, "nextField": next_field, "isSubmittable": is_submittable},
        )

    async def capture_skip_field(self, ctx: ToolContext, args: CaptureSkipFieldArgs) -> ToolResult:
        application_id = self._active_form(ctx)
        if application_id is None:
            return self._no_form()

        doc = self._resolve_doc(ctx, args.form_type)
        result = self.forms.skip_field(application_id, doc)
        ctx.touched = True

        if result.next_field:
            await self._publish(ctx, "highlight-fields", {"fields": [result.next_field], "formType": doc.value})

        instruction = "Move on to the next field"
        if result.was_required:
            instruction = "Warn the user this field is required before the form can be submitted, then move on"
        return ToolResult(
            success=result.success,
            message=result.message or f"{_form_label(doc)} Skipped {result.skipped_field}",
            instruction=instruction,
            data={"skippedField": result.skipped_field, "nextField": result.next_field, "wasRequired": result.was_required},
        )

    async def capture_checkbox_selection(self, ctx: ToolContext, args: CaptureCheckboxSelectionArgs) -> ToolResult:
        application_id = self._active_form(ctx)
        if application_id is None:
            return self._no_form()

        doc = DocumentType(args.form_type) if args.form_type else DocumentType.SBA_1919
        group = self.mapper.group_of(doc, args.group)
        if group is None:
            return ToolResult(
                success=False,
                message=f"Unknown checkbox group: {args.group}. Available groups: {', '.join(self.mapper.groups_of(doc))}",
            )

        entity_option = resolve_entity_type(args.value) if ENTITY_GROUP_BY_DOCUMENT[doc] == args.group else None
        if entity_option is not None:
            results = self.mapper.apply_entity_group(application_id, entity_option)
            fields = {d: {ENTITY_TYPE_MAPPING[entity_option][d]: True} for d, r in results.items() if r and r.success}
            group_checkboxes = {
                d.value: self.mapper.group_of(d, ENTITY_GROUP_BY_DOCUMENT[d]).members for d in DocumentType
            }
            field_name = ENTITY_TYPE_MAPPING[entity_option][doc.value]
        else:
            field_name, result, _ = self.mapper.select_checkbox(application_id, doc, args.group, args.value)
            if field_name is None:
                return ToolResult(
                    success=False,
                    message=f"Unknown value '{args.value}' for group '{args.group}'. Available values: {', '.join(group.options)}",
                )
            fields = {doc.value: {field_name: True}} if result.success else {}
            group_checkboxes = {doc.value: group.members} if group.exclusive else None

        if not fields:
            return ToolResult(
                success=False,
                message=f"Could not select \"{args.value}\" in group \"{args.group}\"",
                data={"fieldName": field_name},
            )

        ctx.touched = True
        await self.sessions.update_user_data(ctx.session_id, {field_name: True})
        await self._publish(ctx, "checkbox-selection", {
            "fields": fields,
            "fieldType": "checkbox",
            "formType": doc.value,
            "groupCheckboxes": group_checkboxes,
        })

        scope = "both forms" if entity_option is not None else _form_label(doc)
        return ToolResult(
            success=True,
            message=f"{scope}: checkbox \"{args.value}\" in group \"{args.group}\" captured.",
            instruction="Acknowledge the selection briefly",
            data={"fieldName": field_name, "groupCheckboxes": group_checkboxes},
        )

    async def capture_open_sba_form(self, ctx: ToolContext, args: CaptureOpenSBAFormArgs) -> ToolResult:
        application_id = self._active_form(ctx)
        if application_id is None:
            return self._no_form()

        doc = DocumentType(args.form_type)
        self.forms.set_active_document(application_id, doc)
        ctx.touched = True
        entry = self.forms.get(application_id).entry(doc)
        next_field = self.forms.next_field(application_id, doc)

        await self._publish(ctx, "open-sba-form", {"formType": doc.value, "nextField": next_field})
        if next_field:
            await self._publish(ctx, "highlight-fields", {"fields": [next_field], "formType": doc.value})

        return ToolResult(
            success=True,
            message=f"{_form_label(doc)} opened; {len(entry.empty_fields)} field(s) left",
            instruction=(
                f"Ask for {self.forms.registry.label_of(doc, next_field)}" if next_field
                else "Every field is filled; offer to review the form"
            ),
            data={
                "formType": doc.value,
                "nextField": next_field,
                "missingRequired": list(entry.missing_required),
                "isSubmittable": entry.is_submittable,
            },
        )

    # ── Eligibility ─────────────────────────────────────────────────────
    async def chances_buyer(self, ctx: ToolContext, args: ChancesBuyerArgs) -> ToolResult:
        result = score_buyer(
            purchase_price=args.purchase_price,
            available_cash=args.available_cash,
            business_cash_flow=args.business_cash_flow,
            credit_score=args.buyer_credit_score,
            is_us_citizen=args.is_us_citizen,
            business_years_running=args.business_years_running,
            industry_experience=args.industry_experience,
        )
        return await self._eligibility_outcome(ctx, "buyer", args.model_dump(by_alias=True), result)

    async def chances_owner(self, ctx: ToolContext, args: ChancesOwnerArgs) -> ToolResult:
        result = score_owner(
            monthly_revenue=args.monthly_revenue,
            monthly_expenses=args.monthly_expenses,
            existing_debt_payment=args.existing_debt_payment,
            requested_loan_amount=args.requested_loan_amount,
            credit_score=args.owner_credit_score,
            is_us_citizen=args.is_us_citizen,
            business_years_running=args.business_years_running,
        )
        return await self._eligibility_outcome(ctx, "owner", args.model_dump(by_alias=True), result)

    async def _eligibility_outcome(self, ctx: ToolContext, user_type: str, inputs: Dict[str, Any],
                                   result: EligibilityResult) -> ToolResult:
        profile = await self.sessions.update_user_data(ctx.session_id, {
            "userType": user_type,
            "loanChances": result.as_dict(),
            **inputs,
        })
        data: Dict[str, Any] = result.as_dict()

        if not result.eligible:
            return ToolResult(
                success=True,
                message=f"Eligibility calculated: {result.chance} chance (not eligible)",
                instruction="Explain kindly why they do not qualify right now and what could change that",
                data=data,
            )

        draft = await self.applications.create_draft(profile, result)
        await self._link_and_start(ctx, draft.application_id)
        prefilled = self._prefill_from_profile(draft.application_id, profile)
        ctx.touched = True

        data.update({"draftApplicationId": draft.application_id, "prefilled": prefilled})
        return ToolResult(
            success=True,
            message=f"Eligibility calculated: {result.chance} chance",
            instruction="Present their approval chances and list the reasons. Ask if they're ready to fill out the form",
            data=data,
        )

    # ── Lookup & lifecycle ──────────────────────────────────────────────
    async def retrieve_application_status(self, ctx: ToolContext, args: RetrieveApplicationStatusArgs) -> ToolResult:
        app = await self.applications.find(args.identifier)
        if app is None:
            return ToolResult(success=False, message=f"No application found for: {args.identifier}")

        data = app.model_dump(mode="json")
        progress = self.forms.progress(app.application_id)
        if progress is not None:
            data["progress"] = progress
        return ToolResult(
            success=True,
            message="Application found",
            instruction="Summarize their application status based on the data returned",
            data=data,
        )

    async def retrieve_all_applications(self, ctx: ToolContext, args: RetrieveAllApplicationsArgs) -> ToolResult:
        apps = await self.applications.list_recent(50)
        return ToolResult(
            success=True,
            message=f"Found {len(apps)} applications",
            instruction="List their applications and ask them to select one",
            data={"applications": [a.summary() for a in apps]},
        )

    async def get_filled_fields(self, ctx: ToolContext, args: GetFilledFieldsArgs) -> ToolResult:
        app = await self.applications.get(args.application_id)
        if app is None:
            return ToolResult(success=False, message=f"Application not found: {args.application_id}")

        await self._link_and_start(ctx, app.application_id)
        ctx.touched = True
        state = self.forms.get(app.application_id)
        progress = self.forms.progress(app.application_id)

        data = {}
        for doc in DocumentType:
            entry = state.entry(doc)
            data[doc.value] = {
                "filledFields": list(entry.filled_fields),
                "emptyFields": list(entry.empty_fields),
                "missingRequired": list(entry.missing_required),
                "progress": progress[doc.value],
            }
        return ToolResult(
            success=True,
            message="Field analysis complete",
            instruction="Tell them you found their application and will continue from where they left off",
            data=data,
        )

    async def end_conversation(self, ctx: ToolContext, args: EndConversationArgs) -> ToolResult:
        await self._publish(ctx, "conversation-ended", {"reason": args.reason})
        ctx.ended = True
        return ToolResult(
            success=True,
            message=f"Conversation ended: {args.reason}",
            instruction="Thank them for chatting and wish them well",
            data={"reason": args.reason},
        )
