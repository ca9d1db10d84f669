from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime

from app.schemas.workflow import CANCELLED_STATUS, DRAFT_STATUS, ON_HOLD_STATUS, ActorRole


@dataclass(frozen=True)
class StageHistoryEntry:
    stage: int
    status: str
    timestamp: datetime
    actor: str
    actor_id: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class ApplicationRecord:
    id: str
    stage: int = 1
    status: str = DRAFT_STATUS
    next_actor: ActorRole | None = None
    next_action: str | None = None
    stage_history: tuple[StageHistoryEntry, ...] = ()
    documents_required: tuple[str, ...] = ()
    active_document_request_id: str | None = None
    partner_id: str | None = None
    student_id: str | None = None
    university: str | None = None
    program: str | None = None
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
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_held(self) -> bool:
        return self.status == ON_HOLD_STATUS

    @property
    def is_cancelled(self) -> bool:
        return self.status == CANCELLED_STATUS

    @property
    def last_entry(self) -> StageHistoryEntry | None:
        return self.stage_history[-1] if self.stage_history else None


def new_application_id() -> str:
    return str(uuid.uuid4())


@dataclass
class DocumentRecord:
    id: str
    application_id: str
    document_type: str
    status: str
    stage: int = 1
    file_name: str | None = None
    uploaded_by: str | None = None
    uploaded_at: datetime | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    version: int = 1


def new_document_request_id() -> str:
    return f"docreq-{uuid.uuid4().hex}"
