from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


DRAFT_STATUS = "draft"
DRAFT_NEXT_ACTION = "Submit application"
ON_HOLD_STATUS = "on_hold"
CANCELLED_STATUS = "cancelled"

OVERRIDE_STATUSES = frozenset({ON_HOLD_STATUS, CANCELLED_STATUS})


class ActorRole(str, Enum):
    ADMIN = "Admin"
    PARTNER = "Partner"
    UNIVERSITY = "University"
    IMMIGRATION = "Immigration"
    SYSTEM = "System"


class RejectionCode(str, Enum):
    UNKNOWN_STATE = "unknown_state"
    ILLEGAL_TRANSITION = "illegal_transition"
    ACTOR_MISMATCH = "actor_mismatch"
    MISSING_REASON = "missing_reason"
    DOCUMENTS_INCOMPLETE = "documents_incomplete"
    ALREADY_TERMINAL = "already_terminal"
    ON_HOLD = "on_hold"
    NOT_HELD = "not_held"
    NOT_CANCELLABLE = "not_cancellable"


class TriggerName(str, Enum):
    APPLICATION_SUBMITTED = "application_submitted"
    ALL_DOCUMENTS_UPLOADED = "all_documents_uploaded"
    PARTIAL_DOCUMENTS_UPLOADED = "partial_documents_uploaded"
    STAGE1_FINAL_APPROVAL = "stage1_final_approval"
    STAGE1_FINAL_REJECTION = "stage1_final_rejection"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RESUBMISSION_REQUIRED = "resubmission_required"


class AdminDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class ApplicationCreateRequest(BaseModel):
    partner_id: str = Field(min_length=1)
    student_id: str = Field(min_length=1)
    university: str | None = None
    program: str | None = None
    documents_required: list[str] = Field(default_factory=list)


class TransitionRequest(BaseModel):
    status: str = Field(min_length=1)
    reason: str | None = None
    requested_documents: list[str] | None = None


class ReasonRequest(BaseModel):
    reason: str | None = None


class AdminDecisionRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    decision: AdminDecision
    reason: str | None = None


class StageHistoryEntryDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stage: int
    status: str
    timestamp: datetime
    actor: str
    actor_id: str | None = None
    reason: str | None = None


class ApplicationDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    partner_id: str | None = None
    student_id: str | None = None
    university: str | None = None
    program: str | None = None
    stage: int
    status: str
    next_actor: ActorRole | None = None
    next_action: str | None = None
    documents_required: list[str] = Field(default_factory=list)
    active_document_request_id: str | None = None
    rejection_reason: str | None = None
    hold_reason: str | None = None
    cancel_reason: str | None = None
    resume_reason: str | None = None
    previous_status: str | None = None
    held_by: str | None = None
    held_at: datetime | None = None
    resumed_by: str | None = None
    resumed_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    approved_by: str | None = None
    released_by: str | None = None
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class StageHistoryResponse(BaseModel):
    application_id: str
    items: list[StageHistoryEntryDTO]


class TransitionRejectionDTO(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    code: RejectionCode
    message: str
    details: dict = Field(default_factory=dict)


class DocumentUploadRequest(BaseModel):
    document_type: str = Field(min_length=1, max_length=100)
    file_name: str | None = Field(default=None, max_length=255)
    stage: int = Field(default=1, ge=1, le=5)


class DocumentReviewRequest(BaseModel):
    status: DocumentStatus

    @field_validator("status")
    @classmethod
    def _not_pending(cls, value: DocumentStatus) -> DocumentStatus:
        if value == DocumentStatus.PENDING:
            raise ValueError("A review must approve or reject the document")
        return value


class DocumentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    application_id: str
    document_type: str
    status: DocumentStatus
    stage: int
    file_name: str | None = None
    uploaded_by: str | None = None
    uploaded_at: datetime | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    version: int


class DocumentListResponse(BaseModel):
    application_id: str
    total: int
    items: list[DocumentDTO]


class StatusChangeDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stage: int
    previous_status: str
    new_status: str
    actor: str
    trigger: TriggerName | None = None
    reason: str | None = None


class TransitionOutcomeDTO(BaseModel):
    accepted: bool
    previous_status: str | None = None
    new_status: str | None = None
    system_triggered: bool = False
    trigger: TriggerName | None = None
    message: str | None = None
    changes: list[StatusChangeDTO] = Field(default_factory=list)
    application: ApplicationDTO | None = None
    rejection: TransitionRejectionDTO | None = None


class DocumentEventResponse(BaseModel):
    document: DocumentDTO
    outcome: TransitionOutcomeDTO


class TransitionCheckResponse(BaseModel):
    allowed: bool
    stage: int | None = None
    target_status: str | None = None
    next_actor: ActorRole | None = None
    next_action: str | None = None
    rejection: TransitionRejectionDTO | None = None
