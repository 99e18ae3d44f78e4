from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, Dict, Any, List, Union, Literal, Annotated
from datetime import datetime, timezone, timedelta
from enum import Enum
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class ClientStatus(str, Enum):
    PROSPECT = "prospect"
    ACTIVE = "active"
    INACTIVE = "inactive"
    CHURNED = "churned"

class PaymentType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    INSTALLMENTS = "installments"

class ProposalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"

class QuestionType(str, Enum):
    TEXT = "text"
    EMAIL = "email"
    TEXTAREA = "textarea"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    SELECT = "select"

class QuestionnaireStatus(str, Enum):
    SENT = "sent"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    EXPIRED = "expired"

class ContentCategory(str, Enum):
    REPORTS = "reports"
    RESOURCES = "resources"
    TRAINING = "training"
    LINKS = "links"

class ContentType(str, Enum):
    LINK = "link"
    FILE = "file"
    VIDEO = "video"

class TrackedEntityType(str, Enum):
    PROPOSAL = "proposal"
    QUESTIONNAIRE = "questionnaire"
    PORTAL = "portal"

class AuditAction(str, Enum):
    # Clients
    CLIENT_CREATED = "CLIENT_CREATED"
    CLIENT_UPDATED = "CLIENT_UPDATED"
    CLIENT_STATUS_CHANGED = "CLIENT_STATUS_CHANGED"
    CLIENT_DELETED = "CLIENT_DELETED"
    PORTAL_CREATED = "PORTAL_CREATED"

    # Proposals
    PROPOSAL_CREATED = "PROPOSAL_CREATED"
    PROPOSAL_ACCEPTED = "PROPOSAL_ACCEPTED"
    PROPOSAL_DELETED = "PROPOSAL_DELETED"
    CHECKOUT_SESSION_FAILED = "CHECKOUT_SESSION_FAILED"

    # Questionnaires
    QUESTIONNAIRE_SENT = "QUESTIONNAIRE_SENT"
    QUESTIONNAIRE_COMPLETED = "QUESTIONNAIRE_COMPLETED"
    TEMPLATE_SAVED = "TEMPLATE_SAVED"

    # Content
    CONTENT_SAVED = "CONTENT_SAVED"
    CONTENT_DELETED = "CONTENT_DELETED"

    # Billing
    STRIPE_EVENT_FAILED = "STRIPE_EVENT_FAILED"
    INSTALLMENTS_COMPLETED = "INSTALLMENTS_COMPLETED"


# ============================================================================
# CLIENTS & PORTALS
# ============================================================================

class ClientContact(BaseModel):
    """Contact snapshot embedded in proposals and questionnaires."""
    model_config = ConfigDict(extra="ignore")

    name: str
    email: EmailStr
    company: Optional[str] = None
    phone: Optional[str] = None

class Client(BaseModel):
    model_config = ConfigDict(extra="ignore")

    client_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    email: EmailStr
    company: Optional[str] = None
    phone: Optional[str] = None
    stored_status: ClientStatus = ClientStatus.PROSPECT  # Operator authoritative
    portal_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    last_activity: Optional[datetime] = None

    def contact(self) -> ClientContact:
        return ClientContact(name=self.name, email=self.email, company=self.company, phone=self.phone)

class Portal(BaseModel):
    model_config = ConfigDict(extra="ignore")

    portal_id: str
    client_id: str
    client_email: EmailStr
    client_name: str
    client_company: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)


# ============================================================================
# SERVICES & PROPOSALS
# ============================================================================

class Service(BaseModel):
    """Catalog entry (shared) or custom entry (embedded in one proposal)."""
    model_config = ConfigDict(extra="ignore")

    service_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    description: str = ""
    price: Optional[int] = None  # Whole currency units
    features: List[str] = Field(default_factory=list)
    highlighted: bool = False

class CustomService(Service):
    is_custom: bool = True

class Proposal(BaseModel):
    model_config = ConfigDict(extra="ignore")

    proposal_id: str
    client_id: str
    client: ClientContact
    selected_services: List[str] = Field(default_factory=list)  # Catalog service ids
    custom_services: List[CustomService] = Field(default_factory=list)
    cost: int  # Authoritative total; operator may override the services sum
    payment_type: PaymentType = PaymentType.FULL
    is_recurring: bool = False
    down_payment: Optional[int] = None
    installment_count: Optional[int] = None
    remainder_due_days: Optional[int] = None  # Partial only
    status: ProposalStatus = ProposalStatus.PENDING
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    expires_in_days: int = 30
    checkout_url: Optional[str] = None
    checkout_error: Optional[str] = None
    accepted_at: Optional[datetime] = None
    installments_paid: int = 0  # Paid subscription invoices, installments only

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(days=self.expires_in_days)


# ============================================================================
# QUESTIONNAIRES
# ============================================================================

class QuestionOption(BaseModel):
    model_config = ConfigDict(extra="ignore")

    option_id: str
    text: str
    allow_custom: bool = False  # "Other - ____" style free-text sub-answer

class _QuestionBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    question_id: str
    title: str
    description: Optional[str] = None
    required: bool = False
    placeholder: Optional[str] = None

class TextQuestion(_QuestionBase):
    type: Literal["text", "email", "textarea"] = "text"

class ChoiceQuestion(_QuestionBase):
    """Single selection (radio buttons or a select box)."""
    type: Literal["radio", "select"] = "radio"
    options: List[QuestionOption] = Field(default_factory=list)

class MultiChoiceQuestion(_QuestionBase):
    type: Literal["checkbox"] = "checkbox"
    options: List[QuestionOption] = Field(default_factory=list)

Question = Annotated[
    Union[TextQuestion, ChoiceQuestion, MultiChoiceQuestion],
    Field(discriminator="type"),
]

class TextAnswer(BaseModel):
    kind: Literal["text"] = "text"
    value: str = ""

class OptionSelection(BaseModel):
    option_id: str
    custom_text: Optional[str] = None

class ChoiceAnswer(BaseModel):
    kind: Literal["choice"] = "choice"
    option_id: str = ""
    custom_text: Optional[str] = None

class MultiChoiceAnswer(BaseModel):
    kind: Literal["multi_choice"] = "multi_choice"
    selections: List[OptionSelection] = Field(default_factory=list)

    @property
    def option_ids(self) -> List[str]:
        return [s.option_id for s in self.selections]

Answer = Annotated[
    Union[TextAnswer, ChoiceAnswer, MultiChoiceAnswer],
    Field(discriminator="kind"),
]

class QuestionnaireTemplate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    template_id: str
    name: str
    description: str = ""
    questions: List[Question] = Field(default_factory=list)
    is_builtin: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

class Questionnaire(BaseModel):
    model_config = ConfigDict(extra="ignore")

    questionnaire_id: str
    client_id: str
    client: ClientContact
    template_id: str
    title: str
    status: QuestionnaireStatus = QuestionnaireStatus.SENT
    answers: Dict[str, Answer] = Field(default_factory=dict)
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    sent_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# ============================================================================
# PORTAL CONTENT & ANALYTICS
# ============================================================================

class ContentItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    description: Optional[str] = None
    url: Optional[str] = None
    category: ContentCategory
    type: ContentType = ContentType.LINK
    client_ids: List[str] = Field(default_factory=list)  # Empty = every client
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

class AnalyticsEvent(BaseModel):
    """Append-only open record. Never mutated after insert."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    entity_type: TrackedEntityType = TrackedEntityType.PROPOSAL
    entity_id: str
    event: str = "open"
    section: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


# ============================================================================
# AUDIT
# ============================================================================

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_id: Optional[str] = None
    client_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
