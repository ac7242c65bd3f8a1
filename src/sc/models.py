"""Core data models for templates, deals, contracts, tokens, and signatures."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ContractStatus(str, Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    SENT_FOR_SIGNATURE = "sent_for_signature"
    PARTIALLY_SIGNED = "partially_signed"
    FULLY_EXECUTED = "fully_executed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SignerRole(str, Enum):
    CLIENT = "client"
    SPEAKER = "speaker"
    ADMIN = "admin"      # internal counter-signature


class VariableType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    EMAIL = "email"
    CURRENCY = "currency"
    SELECT = "select"
    TEXTAREA = "textarea"


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

class TemplateSection(BaseModel):
    id: str
    title: str
    body: str = ""
    order: int = 0
    required: bool = True
    editable: bool = True


class TemplateVariable(BaseModel):
    key: str
    label: str = ""
    type: VariableType = VariableType.TEXT
    required: bool = False
    default_value: Any = None
    options: list[str] = Field(default_factory=list)

    @property
    def display_label(self) -> str:
        return self.label or self.key.replace("_", " ").title()


class ContractTemplate(BaseModel):
    id: str
    name: str
    description: str = ""
    version: int = 1
    contract_type: str = "client_speaker"
    event_types: list[str] = Field(default_factory=list)
    sections: list[TemplateSection] = Field(default_factory=list)
    variables: list[TemplateVariable] = Field(default_factory=list)
    required_sections: list[str] = Field(default_factory=list)

    def variable(self, key: str) -> TemplateVariable | None:
        return next((v for v in self.variables if v.key == key), None)


# ---------------------------------------------------------------------------
# Deal (external CRM record)
# ---------------------------------------------------------------------------

class ClientInfo(BaseModel):
    name: str = ""
    company: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""


class SpeakerInfo(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    fee: float | None = None


class EventInfo(BaseModel):
    title: str = ""
    starts_on: date | None = None
    time: str = ""
    location: str = ""
    venue: str = ""
    event_type: str = ""  # in-person, virtual, webinar, workshop
    attendee_count: int | None = None


class FinancialTerms(BaseModel):
    deal_value: float | None = None
    payment_terms: str = ""
    travel_stipend: float | None = None
    currency: str = "USD"


class TravelArrangements(BaseModel):
    travel_required: bool = False
    flight_required: bool = False
    hotel_required: bool = False
    notes: str = ""


class Deal(BaseModel):
    id: int | None = None
    client: ClientInfo = Field(default_factory=ClientInfo)
    speaker: SpeakerInfo = Field(default_factory=SpeakerInfo)
    event: EventInfo = Field(default_factory=EventInfo)
    financial: FinancialTerms = Field(default_factory=FinancialTerms)
    travel: TravelArrangements = Field(default_factory=TravelArrangements)


# ---------------------------------------------------------------------------
# Contract (the master record)
# ---------------------------------------------------------------------------

class Contract(BaseModel):
    id: int = 0
    contract_number: str
    title: str
    contract_type: str = "client_speaker"
    template_id: str = ""
    template_version: int = 1
    deal_id: int | None = None

    # Party / event snapshot at conversion time
    client: ClientInfo = Field(default_factory=ClientInfo)
    speaker: SpeakerInfo = Field(default_factory=SpeakerInfo)
    event: EventInfo = Field(default_factory=EventInfo)
    total_amount: float | None = None

    # Rendered document, independent of later template edits
    document_body: str = ""
    field_values: dict[str, str] = Field(default_factory=dict)

    status: ContractStatus = ContractStatus.DRAFT
    requires_admin_signature: bool = False
    created_by: str = ""

    # Lifecycle
    created_at: datetime = Field(default_factory=datetime.now)
    sent_at: datetime | None = None
    expires_at: datetime | None = None
    viewed_at: datetime | None = None
    executed_at: datetime | None = None
    activated_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def has_speaker(self) -> bool:
        return bool(self.speaker.name.strip())


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------

class SignerToken(BaseModel):
    token: str
    contract_id: int
    signer_type: SignerRole
    used: bool = False
    created_at: datetime = Field(default_factory=datetime.now)
    viewed_at: datetime | None = None


class Signature(BaseModel):
    id: int = 0
    contract_id: int
    signer_type: SignerRole
    signer_name: str
    signer_email: str
    signer_title: str = ""
    image_data: str
    ip_address: str = ""
    user_agent: str = ""
    signed_at: datetime = Field(default_factory=datetime.now)


class SignatureSubmission(BaseModel):
    name: str = ""
    email: str = ""
    title: str = ""
    image_data: str = ""
    ip_address: str = ""
    user_agent: str = ""


class SignerStatus(BaseModel):
    signer_type: SignerRole
    required: bool = True
    signed: bool = False
    signer_name: str = ""
    signed_at: datetime | None = None


class SigningView(BaseModel):
    """Read-only projection of a contract shown behind a signing link."""

    contract_number: str
    title: str
    status: ContractStatus
    document_body: str
    client_name: str = ""
    client_company: str = ""
    speaker_name: str = ""
    event_title: str = ""
    event_date: date | None = None
    event_location: str = ""
    total_amount: float | None = None
    expires_at: datetime | None = None
    signer_type: SignerRole
    can_sign: bool
    reason: str | None = None
    signers: list[SignerStatus] = Field(default_factory=list)


class Resolution(BaseModel):
    contract: Contract
    token: SignerToken
    signer_type: SignerRole
    can_sign: bool
    reason: str | None = None  # contract_not_signable, already_signed, expired
    signatures: list[Signature] = Field(default_factory=list)


class SigningResult(BaseModel):
    contract: Contract
    signature: Signature
    signatures: list[Signature] = Field(default_factory=list)
    executed: bool = False


class ContractEvent(BaseModel):
    id: int = 0
    contract_id: int
    action: str
    detail: str = ""
    ts: datetime | None = None


class ContractDetail(BaseModel):
    """Admin view: the contract with everything recorded against it."""

    contract: Contract
    signers: list[SignerStatus] = Field(default_factory=list)
    signatures: list[Signature] = Field(default_factory=list)
    tokens: list[SignerToken] = Field(default_factory=list)
    events: list[ContractEvent] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------

class Notification(BaseModel):
    title: str
    body: str
    priority: str = "normal"  # low, normal, high, urgent
    url: str = ""
    contract_id: int | None = None
