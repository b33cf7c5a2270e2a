"""Tool catalog — the closed set of actions the model may request, validated at the boundary.

Every tool has a pydantic argument model keyed by its wire name. Anything the
model sends that is not in the catalog, or whose arguments do not validate,
becomes an `InvalidToolCall` and is answered with a failed result.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

FormTypeName = Literal["SBA_1919", "SBA_413"]


class ToolArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _stringify(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


# ── Flow & profile ──────────────────────────────────────────────────────
class DetectConversationFlowArgs(ToolArgs):
    flow: Literal["new_application", "continue_application", "check_status"]


class CaptureApplicantProfileArgs(ToolArgs):
    name: Optional[str] = Field(None, description="Applicant's full name")
    business_name: Optional[str] = Field(None, description="Business name")
    business_phone: Optional[str] = Field(None, description="Business phone number")
    business_address: Optional[str] = Field(None, description="Business street address")
    home_address: Optional[str] = Field(None, description="Applicant's home address")
    credit_score: Optional[int] = Field(None, description="Personal credit score (300-850)")
    year_founded: Optional[int] = Field(None, description="Year the business was founded")
    us_citizen: Optional[bool] = Field(None, alias="usCitizen", description="Whether the applicant is a U.S. citizen")
    annual_revenue: Optional[float] = Field(None, description="Annual revenue in USD")
    monthly_revenue: Optional[float] = Field(None, description="Monthly revenue in USD")
    monthly_expenses: Optional[float] = Field(None, description="Monthly expenses in USD")
    existing_debt_payment: Optional[float] = Field(None, description="Existing monthly debt payments in USD")
    requested_loan_amount: Optional[float] = Field(None, description="Requested loan amount in USD")
    loan_purpose: Optional[str] = Field(None, description="What the loan is for")
    purchase_price: Optional[float] = Field(None, description="Purchase price of the business being bought")
    available_cash: Optional[float] = Field(None, description="Cash available for a down payment")
    business_cash_flow: Optional[float] = Field(None, description="Annual cash flow of the business")
    industry_experience: Optional[str] = Field(None, description="Relevant industry experience")
    user_type: Optional[Literal["owner", "buyer"]] = Field(None, description="Existing owner or buyer")


# ── Form capture ────────────────────────────────────────────────────────
class CaptureUnifiedFieldArgs(ToolArgs):
    unified_name: str = Field(..., description="Unified field name, e.g. applicantName, businessPhone")
    value: str = Field(..., description="The value the user gave")

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> Any:
        return _stringify(v)


class CaptureHighlightFieldArgs(ToolArgs):
    field: str = Field(..., description="Native field name on the form")
    text: Optional[str] = Field(None, description="Value to write into the field, if the user provided one")
    form_type: Optional[FormTypeName] = None

    @field_validator("text", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Any:
        return _stringify(v)


class CaptureSkipFieldArgs(ToolArgs):
    form_type: Optional[FormTypeName] = None


class CaptureCheckboxSelectionArgs(ToolArgs):
    group: str = Field(..., description="Checkbox group, e.g. entity, veteranStatus, businessType")
    value: str = Field(..., description="Selected option label within the group")
    form_type: Optional[FormTypeName] = None

    @field_validator("group", "value")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()


class CaptureOpenSBAFormArgs(ToolArgs):
    form_type: FormTypeName


# ── Eligibility ─────────────────────────────────────────────────────────
class ChancesBuyerArgs(ToolArgs):
    purchase_price: float = Field(..., gt=0)
    available_cash: float = Field(..., ge=0)
    business_cash_flow: float
    buyer_credit_score: float = Field(..., ge=300, le=850)
    is_us_citizen: bool = Field(..., alias="isUSCitizen")
    business_years_running: float = Field(..., ge=0)
    industry_experience: Optional[str] = None


class ChancesOwnerArgs(ToolArgs):
    monthly_revenue: float = Field(..., gt=0)
    monthly_expenses: float = Field(..., ge=0)
    existing_debt_payment: float = Field(0, ge=0)
    requested_loan_amount: float = Field(..., gt=0)
    owner_credit_score: float = Field(..., ge=300, le=850)
    is_us_citizen: bool = Field(..., alias="isUSCitizen")
    business_years_running: float = Field(..., ge=0)


# ── Lookup & lifecycle ──────────────────────────────────────────────────
class RetrieveApplicationStatusArgs(ToolArgs):
    identifier: str = Field(..., min_length=1, description="Application id, business name or phone")


class RetrieveAllApplicationsArgs(ToolArgs):
    pass


class GetFilledFieldsArgs(ToolArgs):
    application_id: str = Field(..., min_length=1)


class EndConversationArgs(ToolArgs):
    reason: str = "completed"


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: Type[ToolArgs]
    mutates_form: bool = False


TOOL_SPECS: Dict[str, ToolSpec] = {spec.name: spec for spec in [
    ToolSpec("detectConversationFlow",
             "Classify what the user wants: start a new application, continue an existing one, or check status.",
             DetectConversationFlowArgs),
    ToolSpec("captureApplicantProfile",
             "Record applicant details mentioned in conversation (name, business, finances). Only pass fields the user stated.",
             CaptureApplicantProfileArgs, mutates_form=True),
    ToolSpec("captureUnifiedField",
             "Write one answer that applies to both SBA forms (e.g. applicantName, businessPhone, homeAddress).",
             CaptureUnifiedFieldArgs, mutates_form=True),
    ToolSpec("captureHighlightField",
             "Highlight a field on the open SBA form; when the user gave its value, also write it.",
             CaptureHighlightFieldArgs, mutates_form=True),
    ToolSpec("captureSkipField",
             "Skip the current empty field on the SBA form and move to the next one.",
             CaptureSkipFieldArgs, mutates_form=True),
    ToolSpec("captureCheckboxSelection",
             "Tick a checkbox option: entity type, veteran status, sex, race, ethnicity, special ownership, yes/no questions, business type, marital status or loan program.",
             CaptureCheckboxSelectionArgs, mutates_form=True),
    ToolSpec("captureOpenSBAForm",
             "Open one of the SBA forms for guided completion.",
             CaptureOpenSBAFormArgs, mutates_form=True),
    ToolSpec("chancesUserSBAApprovedBUYER",
             "Score SBA approval chances for someone buying a business, and create a draft application.",
             ChancesBuyerArgs, mutates_form=True),
    ToolSpec("chancesUserSBAApprovedOWNER",
             "Score SBA approval chances for an existing business owner, and create a draft application.",
             ChancesOwnerArgs, mutates_form=True),
    ToolSpec("retrieveApplicationStatus",
             "Look up an application by id, business name or phone number.",
             RetrieveApplicationStatusArgs),
    ToolSpec("retrieveAllApplications",
             "List the most recently updated applications.",
             RetrieveAllApplicationsArgs),
    ToolSpec("getFilledFields",
             "Resume an application: load its forms and report which fields are filled and empty.",
             GetFilledFieldsArgs, mutates_form=True),
    ToolSpec("endConversation",
             "Signal that the conversation is over.",
             EndConversationArgs),
]}


@dataclass
class ParsedToolCall:
    id: str
    name: str
    args: ToolArgs

    @property
    def spec(self) -> ToolSpec:
        return TOOL_SPECS[self.name]


@dataclass
class InvalidToolCall:
    id: str
    name: str
    raw_args: Dict[str, Any] = field(default_factory=dict)
    error: str = ""


ToolCall = Union[ParsedToolCall, InvalidToolCall]


def parse_tool_call(call_id: str, name: str, args: Optional[Dict[str, Any]]) -> ToolCall:
    spec = TOOL_SPECS.get(name)
    raw = dict(args or {})
    if spec is None:
        return InvalidToolCall(call_id, name, raw, f"Unknown tool: {name}")
    try:
        return ParsedToolCall(call_id, name, spec.args_model.model_validate(raw))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'args'}: {err['msg']}" for err in e.errors()
        )
        return InvalidToolCall(call_id, name, raw, f"Invalid arguments for {name}: {problems}")


def _clean_schema(node: Any) -> Any:
    """Flatten pydantic's JSON schema into the subset function-calling APIs accept."""
    if isinstance(node, dict):
        node = {k: v for k, v in node.items() if k not in ("title", "default")}
        any_of = node.pop("anyOf", None)
        if any_of:
            non_null = [s for s in any_of if s.get("type") != "null"]
            merged = dict(non_null[0]) if non_null else {}
            merged.update(node)
            node = merged
        return {k: _clean_schema(v) for k, v in node.items()}
    if isinstance(node, list):
        return [_clean_schema(v) for v in node]
    return node


def tool_definitions() -> List[Dict[str, Any]]:
    """OpenAI-style function declarations for `bind_tools`."""
    definitions = []
    for spec in TOOL_SPECS.values():
        parameters = _clean_schema(spec.args_model.model_json_schema(by_alias=True))
        parameters.setdefault("properties", {})
        definitions.append({
            "type": "function",
            "function": {"name": spec.name, "description": spec.description, "parameters": parameters},
        })
    return definitions
