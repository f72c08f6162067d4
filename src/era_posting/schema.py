"""Schema definitions for decoded remittance data and posting records.

Provides:
- Pydantic models for the decoded 835 document tree (immutable once built).
- Table names and enum-like constants for the records the posting engine persists.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enum-like constants
# ---------------------------------------------------------------------------
PAYMENT_METHODS = ["ACH", "Check", "Wire", "Credit Card", "Other"]
POSTING_TYPES = ["Insurance Payment", "Patient Payment", "Adjustment", "Refund", "Write-off"]
POSTING_STATUSES = ["Pending", "Posted", "Error", "Reversed"]
FILE_STATUSES = ["Uploaded", "Parsed", "Posting", "Posted", "Partially Posted", "Error"]
CLAIM_STATUSES = ["Submitted", "In Process", "Paid", "Denied", "Rejected"]
RECONCILIATION_STATUSES = ["Balanced", "Unbalanced", "Resolved"]

# ---------------------------------------------------------------------------
# Store table names
# ---------------------------------------------------------------------------
CLAIMS = "claims"
ERA_FILES = "era_files"
ERA_CLAIM_DETAILS = "era_claim_details"
ERA_SERVICE_LINES = "era_service_lines"
PAYMENT_POSTINGS = "payment_postings"
PAYMENT_ADJUSTMENTS = "payment_adjustments"
PAYMENT_RECONCILIATIONS = "payment_reconciliations"

RECORD_TABLES = [
    ERA_FILES,
    ERA_CLAIM_DETAILS,
    ERA_SERVICE_LINES,
    PAYMENT_POSTINGS,
    PAYMENT_ADJUSTMENTS,
    PAYMENT_RECONCILIATIONS,
]

# Columns a claims table must carry to be loaded into a store
CLAIM_COLUMNS: dict[str, str] = {
    "id": "String",
    "claim_id": "String",
    "payer_claim_control_number": "String",
    "patient_first_name": "String",
    "patient_last_name": "String",
    "statement_from_date": "Date",
    "billed_amount": "Float64",
    "paid_amount": "Float64",
    "claim_status": "String",
}

REQUIRED_CLAIM_COLUMNS: list[str] = ["id", "claim_id", "billed_amount"]


# ---------------------------------------------------------------------------
# Decoded 835 document
# ---------------------------------------------------------------------------
class _Decoded(BaseModel):
    model_config = ConfigDict(frozen=True)


class Address(_Decoded):
    street1: str | None = None
    street2: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None


class Contact(_Decoded):
    name: str | None = None
    phone: str | None = None
    email: str | None = None


class ERAEntity(_Decoded):
    """A party named in an N1 loop."""

    entity_identifier_code: str = Field(description="'PR' payer or 'PE' payee")
    name: str = ""
    identification_code: str = Field(default="", description="Tax ID, NPI, payer ID")
    address: Address | None = None
    contact: Contact | None = None


class ERAAdjustment(_Decoded):
    """One group/reason/amount triple from a CAS segment."""

    adjustment_group: str = Field(description="'CO' | 'PR' | 'OA' | 'PI'")
    reason_code: str
    amount: float
    quantity: float | None = None


class PatientInfo(_Decoded):
    first_name: str = ""
    last_name: str = ""
    middle_name: str | None = None
    member_id: str | None = None


class RenderingProvider(_Decoded):
    npi: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    organization_name: str | None = None


class ERAServiceLine(_Decoded):
    """One adjudicated procedure (SVC loop) with its derived roll-ups."""

    procedure_code: str
    procedure_modifiers: list[str] = Field(default_factory=list)
    revenue_code: str | None = None
    billed_amount: float = 0.0
    paid_amount: float = 0.0
    billed_units: float = 0.0
    paid_units: float = 0.0
    service_date: date
    adjustments: list[ERAAdjustment] = Field(default_factory=list)
    allowed_amount: float | None = None
    line_item_control_number: str | None = None

    contractual_adjustment: float = Field(default=0.0, description="Sum of CO adjustments")
    deductible: float = Field(default=0.0, description="PR adjustments with CARC 1")
    coinsurance: float = Field(default=0.0, description="PR adjustments with CARC 2")
    copay: float = Field(default=0.0, description="PR adjustments with CARC 3")
    patient_responsibility: float = Field(default=0.0, description="Sum of PR adjustments")


class ERAClaim(_Decoded):
    """One adjudicated claim (LX/CLP loop)."""

    patient_control_number: str
    claim_status_code: str
    claim_status_description: str
    billed_amount: float = 0.0
    paid_amount: float = 0.0
    patient_responsibility: float = 0.0
    claim_filing_indicator_code: str = ""
    payer_claim_control_number: str | None = None
    facility_type_code: str | None = None
    claim_adjustments: list[ERAAdjustment] = Field(default_factory=list)
    patient: PatientInfo = Field(default_factory=PatientInfo)
    rendering_provider: RenderingProvider | None = None
    statement_from_date: date | None = None
    statement_to_date: date | None = None
    received_date: date | None = None
    service_lines: list[ERAServiceLine] = Field(default_factory=list)

    @property
    def allowed_amount(self) -> float:
        """Sum of the service lines' allowed amounts (absent counts as 0)."""
        return round(sum(line.allowed_amount or 0.0 for line in self.service_lines), 2)


class ERAProviderAdjustment(_Decoded):
    """A provider-level adjustment (PLB)."""

    provider_identifier: str
    fiscal_period_date: date
    reason_code: str
    adjustment_identifier: str = ""
    amount: float = 0.0


class ERAFile(_Decoded):
    """A fully decoded 835 remittance transaction."""

    # ISA
    interchange_control_number: str = ""
    interchange_sender_id: str = ""
    interchange_receiver_id: str = ""
    interchange_date: datetime

    # GS / ST
    functional_group_control_number: str = ""
    transaction_control_number: str = ""

    # BPR
    transaction_handling_code: str = Field(default="", description="I=Payment, H=Advice")
    payment_amount: float = 0.0
    credit_debit_flag: str = Field(default="", description="C=Credit, D=Debit")
    payment_method: str = Field(default="Other", description="One of PAYMENT_METHODS")
    payment_format: str = ""
    payment_date: date
    check_eft_number: str | None = None

    # TRN
    trace_number: str = ""
    originator_id: str = ""

    payer: ERAEntity
    payee: ERAEntity | None = None
    claims: list[ERAClaim] = Field(default_factory=list)
    provider_adjustments: list[ERAProviderAdjustment] = Field(default_factory=list)
    total_segments: int = 0

    @property
    def total_service_lines(self) -> int:
        return sum(len(c.service_lines) for c in self.claims)
