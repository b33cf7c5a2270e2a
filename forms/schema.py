"""Field schema registry — static field definitions for the two SBA forms.

The registry is the authoritative key set for every form session: persisted
values are overlaid onto it, never the other way round.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

FieldValue = Union[str, bool]


class DocumentType(str, Enum):
    """The two output documents a single conversation fills in."""

    SBA_1919 = "SBA_1919"   # Business Loan Application
    SBA_413 = "SBA_413"     # Personal Financial Statement


class FieldKind(str, Enum):
    TEXT = "text"
    CHECKBOX = "checkbox"


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    required: bool = False
    kind: FieldKind = FieldKind.TEXT
    label: Optional[str] = None

    def empty_value(self) -> FieldValue:
        return False if self.kind is FieldKind.CHECKBOX else ""


def _text(name: str, label: str, required: bool = False) -> FieldDefinition:
    return FieldDefinition(name, required, FieldKind.TEXT, label)


def _box(name: str, label: str) -> FieldDefinition:
    return FieldDefinition(name, False, FieldKind.CHECKBOX, label)


def _owner(n: int) -> List[FieldDefinition]:
    return [
        _text(f"ownName{n}", f"Owner {n} Name"),
        _text(f"ownTitle{n}", f"Owner {n} Title"),
        _text(f"ownPerc{n}", f"Owner {n} Percentage"),
        _text(f"ownTin{n}", f"Owner {n} TIN"),
        _text(f"ownHome{n}", f"Owner {n} Home Address"),
    ]


def _yes_no(n: int) -> List[FieldDefinition]:
    return [_box(f"q{n}Yes", f"Question {n} Yes"), _box(f"q{n}No", f"Question {n} No")]


# ── SBA Form 1919: Business Loan Application ──────────────────────────
SBA_1919_FIELDS: Tuple[FieldDefinition, ...] = tuple([
    _text("applicantname", "Applicant Name", required=True),
    _text("operatingnbusname", "Operating Business Name", required=True),
    _text("busTIN", "Business TIN", required=True),
    _text("busphone", "Business Phone", required=True),
    _text("busAddr", "Business Address", required=True),
    _text("yearbeginoperations", "Year Begin Operations"),
    _text("dba", "DBA"),
    _text("PrimarIndustry", "Primary Industry"),
    _text("UniqueEntityID", "Unique Entity ID"),
    _text("projAddr", "Project Address"),
    _text("pocName", "POC Name"),
    _text("pocEmail", "POC Email"),
    # Entity type
    _box("soleprop", "Sole Proprietor"),
    _box("partnership", "Partnership"),
    _box("ccorp", "C-Corp"),
    _box("scorp", "S-Corp"),
    _box("llc", "LLC"),
    _box("etother", "Entity Other"),
    _text("entityother", "Entity Other Description"),
    # Special ownership type
    _box("ownESOP", "ESOP"),
    _box("own401k", "401k"),
    _box("ownCooperative", "Cooperative"),
    _box("ownNATribe", "Native American Tribe"),
    _box("ownOther", "Ownership Other"),
    _text("specOwnTypeOther", "Special Ownership Type Other"),
    # Employment & financing
    _text("existEmp", "Existing Employees"),
    _text("fteJobs", "FTE Jobs"),
    _text("fteCreate", "FTE Jobs Created"),
    _text("debtAmt", "Debt Amount"),
    _text("purchAmt", "Purchase Amount"),
    *_owner(1),
    *_owner(2),
    *_owner(3),
    _text("ownPos", "Owner Position"),
    # Veteran status
    _box("statNonVet", "Non-Veteran"),
    _box("statVet", "Veteran"),
    _box("statVetD", "Veteran with Disability"),
    _box("statVetSp", "Spouse of Veteran"),
    _box("statND", "Veteran Status Not Disclosed"),
    # Sex
    _box("male", "Male"),
    _box("female", "Female"),
    # Race
    _box("raceAIAN", "American Indian or Alaska Native"),
    _box("raceAsian", "Asian"),
    _box("raceBAA", "Black or African American"),
    _box("raceNHPI", "Native Hawaiian or Pacific Islander"),
    _box("raceWhite", "White"),
    _box("raceND", "Race Not Disclosed"),
    # Ethnicity
    _box("ethHisp", "Hispanic or Latino"),
    _box("ethNot", "Not Hispanic or Latino"),
    _box("ethND", "Ethnicity Not Disclosed"),
    *[d for n in range(1, 11) for d in _yes_no(n)],
    # Use of proceeds
    _text("EquipAmt", "Equipment Amount"),
    _text("capitalAmt", "Working Capital Amount"),
    _text("busAcqAmt", "Business Acquisition Amount"),
    _text("invAmt", "Inventory Amount"),
    _text("otherAmt1", "Other Amount 1"),
    _text("other1spec", "Other Amount 1 Specification"),
    _text("otherAmt2", "Other Amount 2"),
    _text("other2spec", "Other Amount 2 Specification"),
    # Export & signature
    _text("expSalesTot", "Total Export Sales"),
    _text("expCtry1", "Export Country 1"),
    _text("expCtry2", "Export Country 2"),
    _text("expCtry3", "Export Country 3"),
    _text("repName", "Representative Name"),
    _text("repTitle", "Representative Title"),
    _text("sigDate", "Signature Date"),
])

# ── SBA Form 413: Personal Financial Statement ────────────────────────
SBA_413_FIELDS: Tuple[FieldDefinition, ...] = tuple([
    # Loan program
    _box("loanProgramDisaster", "Disaster Business Loan"),
    _box("loanProgram8a", "8(a) Business Development"),
    _box("loanProgramWOSB", "Women-Owned Small Business"),
    _box("loanProgram7a", "7(a) Loan"),
    _box("loanProgram504", "504 Loan"),
    _box("loanProgramSBG", "Surety Bonds"),
    # Applicant
    _text("name", "Name", required=True),
    _text("businessPhone", "Business Phone", required=True),
    _text("homeAddress", "Home Address", required=True),
    _text("homePhone", "Home Phone"),
    _text("businessNameOfApplicantBorrower", "Business Name of Applicant/Borrower", required=True),
    _text("businessAddress", "Business Address"),
    # Business type
    _box("businessTypeCorporation", "Corporation"),
    _box("businessTypeSCorp", "S-Corp"),
    _box("businessTypeLLC", "LLC"),
    _box("businessTypePartnership", "Partnership"),
    _box("businessTypeSoleProprietor", "Sole Proprietor"),
    # WOSB marital status
    _box("wosbMarried", "Married"),
    _box("wosbNotMarried", "Not Married"),
    # Assets
    _text("cashOnHand", "Cash on Hand & in Banks"),
    _text("savingsAccounts", "Savings Accounts"),
    _text("iraAccounts", "IRA or Other Retirement Account"),
    _text("accountsNotesReceivable", "Accounts & Notes Receivable"),
    _text("lifeInsuranceCashValue", "Life Insurance Cash Surrender Value"),
    _text("stocksBonds", "Stocks and Bonds"),
    _text("realEstate", "Real Estate"),
    _text("automobiles", "Automobiles"),
    _text("otherPersonalProperty", "Other Personal Property"),
    _text("otherAssets", "Other Assets"),
    _text("totalAssets", "Total Assets"),
    # Liabilities
    _text("accountsPayable", "Accounts Payable"),
    _text("notesPayableBanks", "Notes Payable to Banks and Others"),
    _text("installmentAccountAuto", "Installment Account (Auto)"),
    _text("installmentAccountOther", "Installment Account (Other)"),
    _text("loansAgainstLifeInsurance", "Loan(s) Against Life Insurance"),
    _text("mortgagesOnRealEstate", "Mortgages on Real Estate"),
    _text("unpaidTaxes", "Unpaid Taxes"),
    _text("otherLiabilities", "Other Liabilities"),
    _text("totalLiabilities", "Total Liabilities"),
    _text("netWorth", "Net Worth"),
    # Income
    _text("salary", "Salary"),
    _text("netInvestmentIncome", "Net Investment Income"),
    _text("realEstateIncome", "Real Estate Income"),
    _text("otherIncome", "Other Income"),
    _text("contingentLiabilities", "Contingent Liabilities"),
    _text("lifeInsuranceHeld", "Life Insurance Held"),
    # Signatures
    _text("date", "Date", required=True),
    _text("printName", "Print Name", required=True),
    _text("socialSecurityNo", "Social Security No.", required=True),
    _text("date2", "Co-Applicant Date"),
    _text("printName2", "Co-Applicant Print Name"),
    _text("socialSecurityNo2", "Co-Applicant Social Security No."),
])


class SchemaRegistry:
    """Read-only lookup over the field definitions of each document type."""

    def __init__(self, definitions: Mapping[DocumentType, Sequence[FieldDefinition]]):
        missing = [doc.value for doc in DocumentType if doc not in definitions]
        if missing:
            raise ValueError(f"Schema missing for document(s): {', '.join(missing)}")

        self._fields: Dict[DocumentType, Tuple[FieldDefinition, ...]] = {}
        self._by_name: Dict[DocumentType, Dict[str, FieldDefinition]] = {}
        self._index: Dict[DocumentType, Dict[str, int]] = {}
        for doc in DocumentType:
            fields = tuple(definitions[doc])
            names = [f.name for f in fields]
            if len(set(names)) != len(names):
                raise ValueError(f"Duplicate field names in {doc.value} schema")
            self._fields[doc] = fields
            self._by_name[doc] = {f.name: f for f in fields}
            self._index[doc] = {name: i for i, name in enumerate(names)}

    def fields_of(self, doc: DocumentType) -> List[FieldDefinition]:
        return list(self._fields[doc])

    def names_of(self, doc: DocumentType) -> List[str]:
        return [f.name for f in self._fields[doc]]

    def required_of(self, doc: DocumentType) -> List[str]:
        return [f.name for f in self._fields[doc] if f.required]

    def empty_defaults(self, doc: DocumentType) -> Dict[str, FieldValue]:
        """Fresh map on every call: '' for text fields, False for checkboxes."""
        return {f.name: f.empty_value() for f in self._fields[doc]}

    def definition(self, doc: DocumentType, field_name: str) -> Optional[FieldDefinition]:
        return self._by_name[doc].get(field_name)

    def has_field(self, doc: DocumentType, field_name: str) -> bool:
        return field_name in self._by_name[doc]

    def index_of(self, doc: DocumentType, field_name: str) -> int:
        return self._index[doc].get(field_name, -1)

    def label_of(self, doc: DocumentType, field_name: str) -> str:
        field = self._by_name[doc].get(field_name)
        return (field.label if field and field.label else None) or field_name

    def is_required(self, doc: DocumentType, field_name: str) -> bool:
        field = self._by_name[doc].get(field_name)
        return bool(field and field.required)

    def size(self, doc: DocumentType) -> int:
        return len(self._fields[doc])


DEFAULT_REGISTRY = SchemaRegistry({
    DocumentType.SBA_1919: SBA_1919_FIELDS,
    DocumentType.SBA_413: SBA_413_FIELDS,
})
