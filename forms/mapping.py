"""Cross-document field mapper — one conversational answer, up to two form fields.

Unified fields carry a prompt and the native field name on each form (either
side may be absent, never both). Checkbox groups are mutually exclusive sets
of checkbox fields; the entity-type group spans both forms at once.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from forms.schema import DocumentType, FieldValue
from forms.state_cache import FormStateCache, UpdateResult

logger = logging.getLogger(__name__)

CrossFormResult = Dict[str, Optional[UpdateResult]]


@dataclass(frozen=True)
class UnifiedFieldMapping:
    unified_name: str
    prompt: str
    sba_1919: Optional[str] = None
    sba_413: Optional[str] = None

    def __post_init__(self):
        if self.sba_1919 is None and self.sba_413 is None:
            raise ValueError(f"Unified field '{self.unified_name}' maps to neither form")

    def field_for(self, doc: DocumentType) -> Optional[str]:
        return self.sba_1919 if DocumentType(doc) is DocumentType.SBA_1919 else self.sba_413


@dataclass(frozen=True)
class CheckboxGroup:
    """Checkbox fields of one form sharing a question; `options` maps label → field name."""

    name: str
    document: DocumentType
    options: Dict[str, str]
    exclusive: bool = True
    aliases: Dict[str, str] = field(default_factory=dict)

    @property
    def members(self) -> List[str]:
        return list(self.options.values())

    def resolve(self, value: str) -> Optional[str]:
        wanted = _normalize(value)
        for label, field_name in self.options.items():
            if wanted in (_normalize(label), _normalize(field_name)):
                return field_name
        alias = self.aliases.get(wanted)
        return self.options.get(alias) if alias else None


def _normalize(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", (text or "").lower())


# ── Unified fields ─────────────────────────────────────────────────────
UNIFIED_FIELDS: Tuple[UnifiedFieldMapping, ...] = (
    UnifiedFieldMapping("applicantName", "What is your full name?", "applicantname", "name"),
    UnifiedFieldMapping("businessName", "What is the name of your business?", "operatingnbusname", "businessNameOfApplicantBorrower"),
    UnifiedFieldMapping("businessPhone", "What is your business phone number?", "busphone", "businessPhone"),
    UnifiedFieldMapping("businessAddress", "What is your business address?", "busAddr", "businessAddress"),
    UnifiedFieldMapping("homeAddress", "What is your home address?", "ownHome1", "homeAddress"),
    UnifiedFieldMapping("ownerSSN", "What is your Social Security Number?", "ownTin1", "socialSecurityNo"),
    UnifiedFieldMapping("printName", "Please print your name for the signature.", "ownName1", "printName"),
    UnifiedFieldMapping("signatureDate", "What is today's date for the signature?", None, "date"),
)

# ── Entity type (spans both forms) ─────────────────────────────────────
ENTITY_TYPE_MAPPING: Dict[str, Dict[str, str]] = {
    "Sole Proprietor": {"SBA_1919": "soleprop", "SBA_413": "businessTypeSoleProprietor"},
    "Partnership": {"SBA_1919": "partnership", "SBA_413": "businessTypePartnership"},
    "C-Corp": {"SBA_1919": "ccorp", "SBA_413": "businessTypeCorporation"},
    "S-Corp": {"SBA_1919": "scorp", "SBA_413": "businessTypeSCorp"},
    "LLC": {"SBA_1919": "llc", "SBA_413": "businessTypeLLC"},
}

ENTITY_ALIASES = {
    "soleproprietorship": "Sole Proprietor",
    "sole": "Sole Proprietor",
    "corporation": "C-Corp",
    "corp": "C-Corp",
    "ccorporation": "C-Corp",
    "scorporation": "S-Corp",
    "limitedliabilitycompany": "LLC",
}

# ── Per-form checkbox groups ───────────────────────────────────────────
CHECKBOX_GROUPS_1919: Dict[str, CheckboxGroup] = {
    "entity": CheckboxGroup(
        "entity", DocumentType.SBA_1919,
        {"Sole Proprietor": "soleprop", "Partnership": "partnership", "C-Corp": "ccorp",
         "S-Corp": "scorp", "LLC": "llc", "Other": "etother"},
        aliases=dict(ENTITY_ALIASES),
    ),
    "specialOwnershipType": CheckboxGroup(
        "specialOwnershipType", DocumentType.SBA_1919,
        {"ESOP": "ownESOP", "401k": "own401k", "Cooperative": "ownCooperative",
         "Native American Tribe": "ownNATribe", "Other": "ownOther"},
        exclusive=False,
    ),
    "veteranStatus": CheckboxGroup(
        "veteranStatus", DocumentType.SBA_1919,
        {"Non-Veteran": "statNonVet", "Veteran": "statVet", "Veteran with Disability": "statVetD",
         "Spouse of Veteran": "statVetSp", "Not Disclosed": "statND"},
    ),
    "sex": CheckboxGroup("sex", DocumentType.SBA_1919, {"Male": "male", "Female": "female"}),
    "race": CheckboxGroup(
        "race", DocumentType.SBA_1919,
        {"American Indian or Alaska Native": "raceAIAN", "Asian": "raceAsian",
         "Black or African American": "raceBAA", "Native Hawaiian or Pacific Islander": "raceNHPI",
         "White": "raceWhite", "Not Disclosed": "raceND"},
        exclusive=False,
    ),
    "ethnicity": CheckboxGroup(
        "ethnicity", DocumentType.SBA_1919,
        {"Hispanic or Latino": "ethHisp", "Not Hispanic or Latino": "ethNot", "Not Disclosed": "ethND"},
    ),
}
for _n in range(1, 11):
    CHECKBOX_GROUPS_1919[f"question{_n}"] = CheckboxGroup(
        f"question{_n}", DocumentType.SBA_1919, {"Yes": f"q{_n}Yes", "No": f"q{_n}No"},
    )

CHECKBOX_GROUPS_413: Dict[str, CheckboxGroup] = {
    "loanProgram": CheckboxGroup(
        "loanProgram", DocumentType.SBA_413,
        {"Disaster Business Loan Application": "loanProgramDisaster",
         "8(a) Business Development": "loanProgram8a",
         "Women Owned Small Business (WOSB) Federal Contracting Program": "loanProgramWOSB",
         "7(a) loan": "loanProgram7a", "504 loan": "loanProgram504", "Surety Bonds": "loanProgramSBG"},
        exclusive=False,
        aliases={"wosb": "Women Owned Small Business (WOSB) Federal Contracting Program",
                 "disaster": "Disaster Business Loan Application", "8a": "8(a) Business Development"},
    ),
    "businessType": CheckboxGroup(
        "businessType", DocumentType.SBA_413,
        {"Corporation": "businessTypeCorporation", "S-Corp": "businessTypeSCorp", "LLC": "businessTypeLLC",
         "Partnership": "businessTypePartnership", "Sole Proprietor": "businessTypeSoleProprietor"},
        aliases={"ccorp": "Corporation", "soleproprietorship": "Sole Proprietor",
                 "scorporation": "S-Corp", "limitedliabilitycompany": "LLC"},
    ),
    "wosbMaritalStatus": CheckboxGroup(
        "wosbMaritalStatus", DocumentType.SBA_413, {"Married": "wosbMarried", "Not Married": "wosbNotMarried"},
    ),
}

CHECKBOX_GROUPS: Dict[DocumentType, Dict[str, CheckboxGroup]] = {
    DocumentType.SBA_1919: CHECKBOX_GROUPS_1919,
    DocumentType.SBA_413: CHECKBOX_GROUPS_413,
}

# Group on each form whose members the entity-type selection keeps exclusive.
ENTITY_GROUP_BY_DOCUMENT = {DocumentType.SBA_1919: "entity", DocumentType.SBA_413: "businessType"}


def resolve_entity_type(value: str) -> Optional[str]:
    wanted = _normalize(value)
    for option in ENTITY_TYPE_MAPPING:
        if _normalize(option) == wanted:
            return option
    return ENTITY_ALIASES.get(wanted)


class FieldMapper:
    """Applies unified answers and checkbox selections through a `FormStateCache`."""

    def __init__(self, cache: FormStateCache,
                 unified_fields=UNIFIED_FIELDS,
                 checkbox_groups=CHECKBOX_GROUPS):
        self.cache = cache
        self._unified = {m.unified_name: m for m in unified_fields}
        self._groups = checkbox_groups

    def mapping_of(self, unified_name: str) -> Optional[UnifiedFieldMapping]:
        return self._unified.get(unified_name)

    def unified_names(self) -> List[str]:
        return list(self._unified)

    def group_of(self, doc: DocumentType, group_name: str) -> Optional[CheckboxGroup]:
        return self._groups.get(DocumentType(doc), {}).get(group_name)

    def groups_of(self, doc: DocumentType) -> List[str]:
        return list(self._groups.get(DocumentType(doc), {}))

    def apply_unified(self, application_id: str, unified_name: str, value: FieldValue) -> CrossFormResult:
        """Write `value` to every form the unified field maps to; each side independently."""
        result: CrossFormResult = {doc.value: None for doc in DocumentType}
        mapping = self.mapping_of(unified_name)
        if mapping is None:
            logger.warning("No mapping found for unified field: %s", unified_name)
            return result

        for doc in DocumentType:
            target = mapping.field_for(doc)
            if target is None:
                continue
            result[doc.value] = self.cache.update_field(application_id, doc, target, value)
            if not result[doc.value].success:
                logger.warning("Unified %s → %s.%s failed: %s",
                               unified_name, doc.value, target, result[doc.value].message)
        return result

    def apply_entity_group(self, application_id: str, option_name: str) -> CrossFormResult:
        """Select one entity type on both forms, clearing every sibling first.

        Runs without suspension points, so no other coroutine can observe two
        entity boxes ticked on either form.
        """
        result: CrossFormResult = {doc.value: None for doc in DocumentType}
        option = resolve_entity_type(option_name)
        if option is None:
            logger.warning("No mapping found for entity type: %s", option_name)
            return result

        chosen = ENTITY_TYPE_MAPPING[option]
        for doc in DocumentType:
            group = self.group_of(doc, ENTITY_GROUP_BY_DOCUMENT[doc])
            target = chosen[doc.value]
            for member in group.members if group else []:
                if member != target:
                    self.cache.update_field(application_id, doc, member, False)
            result[doc.value] = self.cache.update_field(application_id, doc, target, True)

        logger.info("Entity type '%s' applied to both forms for %s", option, application_id)
        return result

    def select_checkbox(self, application_id: str, doc: DocumentType, group_name: str, value: str) -> Tuple[Optional[str], Optional[UpdateResult], List[str]]:
        """Tick one option of a per-form group.

        Returns (field_name, update_result, cleared_siblings); field_name is None
        when the group or option is unknown.
        """
        group = self.group_of(doc, group_name)
        if group is None:
            return None, None, []
        field_name = group.resolve(value)
        if field_name is None:
            return None, None, []

        cleared = []
        if group.exclusive:
            for member in group.members:
                if member != field_name:
                    self.cache.update_field(application_id, doc, member, False)
                    cleared.append(member)
        return field_name, self.cache.update_field(application_id, doc, field_name, True), cleared
