from pydantic import BaseModel, EmailStr, Field, ConfigDict, AliasChoices, field_validator
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from enum import Enum
import uuid

from services.wizard_workflow import WizardStep

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class UserRole(str, Enum):
    ROLE_CLIENT = "ROLE_CLIENT"
    ROLE_NOTARY = "ROLE_NOTARY"
    ROLE_ADMIN = "ROLE_ADMIN"

class SubmissionStatus(str, Enum):
    DRAFT = "draft"              # Legacy records saved before intake finished
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"      # Closed by staff; the wizard no longer advances it

class DocumentType(str, Enum):
    PERSONAL = "personal"
    CORPORATE = "corporate"
    LEGAL = "legal"
    OTHERS = "others"

class FileScope(str, Enum):
    CLIENT_UPLOADS = "client_uploads"
    NOTARIZED = "notarized"

class PaymentStatus(str, Enum):
    PAID = "paid"

class AuditAction(str, Enum):
    SUBMISSION_CREATED = "SUBMISSION_CREATED"
    SUBMISSION_STEP_ADVANCED = "SUBMISSION_STEP_ADVANCED"
    SUBMISSION_FILES_UPLOADED = "SUBMISSION_FILES_UPLOADED"
    CHECKOUT_SESSION_CREATED = "CHECKOUT_SESSION_CREATED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_REFUNDED = "PAYMENT_REFUNDED"
    NOTARIZED_FILES_UPLOADED = "NOTARIZED_FILES_UPLOADED"
    FILE_ACCESS_GRANTED = "FILE_ACCESS_GRANTED"
    RETENTION_PURGE_RUN = "RETENTION_PURGE_RUN"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

# ============================================================================
# STORED DOCUMENTS
# ============================================================================

class Submission(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    submission_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    client_email: EmailStr
    full_name: str
    service_slug: str
    service_id: Optional[str] = None
    document_type: Optional[DocumentType] = None
    document_title: Optional[str] = None
    document_description: Optional[str] = None
    additional_notes: Optional[str] = None
    uploaded_files: str = "[]"  # JSON-encoded list of file descriptors
    selected_options: str = "[]"
    selected_add_ons: str = "[]"
    extra_copies: int = Field(default=0, ge=0)
    courier_address: Optional[Dict[str, Any]] = None
    current_step: WizardStep = WizardStep.FORM_SUBMITTED
    status: SubmissionStatus = SubmissionStatus.IN_PROGRESS
    total_amount_cents: Optional[int] = None
    total_amount: Optional[float] = None
    currency: Optional[str] = None
    session_id: Optional[str] = None
    order_id: Optional[str] = None
    version: int = 1
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("client_email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

class PaymentOrder(BaseModel):
    """Paid order, written once per Stripe checkout session."""
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    order_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    submission_id: Optional[str] = None
    amount: Optional[float] = None
    amount_cents: Optional[int] = None
    currency: str
    customer_email: Optional[str] = None
    service_slug: Optional[str] = None
    cal_link: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PAID
    created_at: datetime = Field(default_factory=_utcnow)

class FileIndexEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    file_id: str
    client_email: str
    batch_id: str
    scope: FileScope
    path: str
    name: str
    size: int = 0
    content_type: Optional[str] = None
    uploaded_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

class RefundRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    refund_id: str
    session_id: Optional[str] = None
    payment_intent_id: str
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    reason: Optional[str] = None
    status: str
    requested_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_role: Optional[UserRole] = None
    actor_id: Optional[str] = None
    client_email: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_utcnow)

# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class CamelModel(BaseModel):
    """Request body accepting both the camelCase wire names and snake_case."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

class SubmissionCreateRequest(CamelModel):
    full_name: str = Field(alias="fullName", min_length=1)
    email: EmailStr
    service_slug: str = Field(validation_alias=AliasChoices("serviceSlug", "serviceId", "service_slug"))
    document_title: Optional[str] = Field(default=None, alias="documentTitle")
    document_description: Optional[str] = Field(default=None, alias="documentDescription")
    additional_notes: Optional[str] = Field(default=None, alias="additionalNotes")

class StepRequest(CamelModel):
    # Client's last seen version; stale values are rejected with 409
    expected_version: Optional[int] = Field(default=None, alias="expectedVersion")

class DocumentTypeStepRequest(StepRequest):
    document_type: DocumentType = Field(alias="documentType")

class ServiceSelectionStepRequest(StepRequest):
    option_keys: List[str] = Field(alias="optionKeys", min_length=1)

class AddOnsStepRequest(StepRequest):
    add_on_ids: List[str] = Field(default_factory=list, alias="addOnIds")
    extra_copies: int = Field(default=0, alias="extraCopies", ge=0)
    courier_address: Optional[Dict[str, Any]] = Field(default=None, alias="courierAddress")

class CheckoutItem(CamelModel):
    # One document per order; a cart quantity is dropped with the other unknown fields
    service_slug: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("serviceSlug", "serviceId", "service_slug"),
    )
    option_keys: List[str] = Field(default_factory=list, alias="optionKeys")
    add_on_ids: List[str] = Field(default_factory=list, alias="addOnIds")
    extra_copies: int = Field(default=0, alias="extraCopies", ge=0)

class CheckoutSessionRequest(CamelModel):
    test: bool = False
    items: List[CheckoutItem] = Field(default_factory=list)
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")
    submission_id: Optional[str] = Field(default=None, alias="submissionId")
    success_url: Optional[str] = Field(default=None, alias="successUrl")
    cancel_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("cancelUrl", "failureUrl", "cancel_url"),
    )
    user_email: Optional[EmailStr] = Field(default=None, alias="userEmail")
    user_id: Optional[str] = Field(default=None, alias="userId")

class VerifySessionRequest(CamelModel):
    session_id: str = Field(alias="sessionId", min_length=1)

class RefundRequest(CamelModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    payment_intent_id: Optional[str] = Field(default=None, alias="paymentIntentId")
    amount_cents: Optional[int] = Field(default=None, alias="amountCents", gt=0)
    reason: Optional[str] = None
    # Retries with the same key return the first refund instead of refunding twice
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")

class GrantFile(CamelModel):
    file_id: str = Field(alias="fileId", min_length=1)
    name: Optional[str] = None

class GrantAccessRequest(CamelModel):
    client_email: Optional[str] = Field(default=None, alias="clientEmail")
    files: List[GrantFile] = Field(default_factory=list)

class PurgeRunRequest(CamelModel):
    dry_run: Optional[bool] = Field(default=None, alias="dryRun")
    retention_days: Optional[float] = Field(default=None, alias="retentionDays", ge=0)