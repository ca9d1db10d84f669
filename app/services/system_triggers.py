from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable

from app.schemas.workflow import ActorRole, TriggerName
from app.services.actors import Actor
from app.services.application_documents import DocumentQuery, DocumentSnapshot, load_snapshot
from app.services.application_records import ApplicationRecord
from app.services.authority_matrix import AuthorityMatrix
from app.services.transition_validator import INTAKE_STATUSES, TransitionDecision, validate

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Application rejected by admin"

ALL_DOCUMENTS_FROM = frozenset(
    {"correction_requested_admin", "documents_partially_submitted", "documents_resubmission_required"}
)
PARTIAL_DOCUMENTS_FROM = frozenset({"correction_requested_admin", "documents_resubmission_required"})
FINAL_APPROVAL_FROM = frozenset({"documents_approved"})
FINAL_REJECTION_FROM = frozenset(
    {"new_application", "under_review_admin", "documents_under_review", "documents_rejected"}
)


@dataclass(frozen=True)
class TriggerResult:
    applied: bool
    trigger: TriggerName
    previous_status: str
    new_status: str | None = None
    next_actor: ActorRole | None = None
    next_action: str | None = None
    message: str = ""
    history_reason: str | None = None
    rejection_reason: str | None = None
    decision: TransitionDecision | None = field(default=None, compare=False, repr=False)

    @classmethod
    def skipped(cls, trigger: TriggerName, application: ApplicationRecord, message: str) -> TriggerResult:
        return cls(applied=False, trigger=trigger, previous_status=application.status, message=message)


def _by(triggered_by: Actor | None, default: str) -> str:
    if triggered_by is None:
        return default
    return triggered_by.label.lower()


def _in_stage1(application: ApplicationRecord, allowed: Iterable[str]) -> bool:
    return application.stage == 1 and application.status in allowed


def on_application_submitted(application: ApplicationRecord, triggered_by: Actor | None = None) -> TriggerResult:
    trigger = TriggerName.APPLICATION_SUBMITTED
    if not _in_stage1(application, INTAKE_STATUSES):
        return TriggerResult.skipped(trigger, application, "Application already submitted")
    return TriggerResult(
        applied=True,
        trigger=trigger,
        previous_status=application.status,
        new_status="new_application",
        message="Application automatically set to new_application by System",
        history_reason=f"Application submitted by {_by(triggered_by, 'partner')}",
    )


def on_partial_documents_uploaded(application: ApplicationRecord, triggered_by: Actor | None = None) -> TriggerResult:
    trigger = TriggerName.PARTIAL_DOCUMENTS_UPLOADED
    if not _in_stage1(application, PARTIAL_DOCUMENTS_FROM):
        return TriggerResult.skipped(trigger, application, "Invalid status for partial document upload")
    return TriggerResult(
        applied=True,
        trigger=trigger,
        previous_status=application.status,
        new_status="documents_partially_submitted",
        message="Status automatically set to documents_partially_submitted by System",
        history_reason=f"{_by(triggered_by, 'partner').capitalize()} uploaded partial documents",
    )


def on_all_documents_uploaded(application: ApplicationRecord, triggered_by: Actor | None = None) -> TriggerResult:
    trigger = TriggerName.ALL_DOCUMENTS_UPLOADED
    if not _in_stage1(application, ALL_DOCUMENTS_FROM):
        return TriggerResult.skipped(trigger, application, "Invalid status for complete document upload")
    return TriggerResult(
        applied=True,
        trigger=trigger,
        previous_status=application.status,
        new_status="documents_submitted",
        message="Status automatically set to documents_submitted by System",
        history_reason=f"{_by(triggered_by, 'partner').capitalize()} uploaded all requested documents",
    )


def all_required_approved(required: Iterable[str], snapshot: DocumentSnapshot) -> bool:
    return set(required) <= snapshot.approved


def is_partial_upload(required: Iterable[str], snapshot: DocumentSnapshot) -> bool:
    return bool(snapshot.submitted) and not set(required) <= snapshot.submitted


def on_document_upload(
    application: ApplicationRecord,
    snapshot: DocumentSnapshot,
    triggered_by: Actor | None = None,
) -> TriggerResult:
    """Pick the complete or partial upload trigger from the document snapshot."""
    if all_required_approved(application.documents_required, snapshot):
        return on_all_documents_uploaded(application, triggered_by)
    if is_partial_upload(application.documents_required, snapshot):
        return on_partial_documents_uploaded(application, triggered_by)
    return TriggerResult.skipped(
        TriggerName.PARTIAL_DOCUMENTS_UPLOADED,
        application,
        "No valid documents uploaded",
    )


def on_stage1_final_approval(application: ApplicationRecord, triggered_by: Actor | None = None) -> TriggerResult:
    trigger = TriggerName.STAGE1_FINAL_APPROVAL
    if not _in_stage1(application, FINAL_APPROVAL_FROM):
        return TriggerResult.skipped(trigger, application, "Can only approve Stage 1 from documents_approved status")
    return TriggerResult(
        applied=True,
        trigger=trigger,
        previous_status=application.status,
        new_status="approved_stage1",
        message="Status automatically set to approved_stage1 by System",
        history_reason=f"Stage 1 approved by {_by(triggered_by, 'admin')} - ready for university",
    )


def on_stage1_final_rejection(
    application: ApplicationRecord,
    triggered_by: Actor | None = None,
    reason: str | None = None,
) -> TriggerResult:
    trigger = TriggerName.STAGE1_FINAL_REJECTION
    if not _in_stage1(application, FINAL_REJECTION_FROM):
        return TriggerResult.skipped(trigger, application, "Invalid status for final rejection")
    rejection = (reason or "").strip() or DEFAULT_REJECTION_REASON
    return TriggerResult(
        applied=True,
        trigger=trigger,
        previous_status=application.status,
        new_status="rejected_stage1",
        message="Status automatically set to rejected_stage1 by System",
        history_reason=rejection,
        rejection_reason=rejection,
    )


class SystemTriggerDispatcher:
    """Runs triggers as the System actor and gates every result through the validator.

    Callers hand in the record they just read from the store (or the state they
    are about to commit for a follow-on hop), never state supplied by a client.
    """

    def __init__(self, matrix: AuthorityMatrix, documents: DocumentQuery) -> None:
        self._matrix = matrix
        self._documents = documents
        self._system = Actor.system()

    async def _compute(
        self,
        application: ApplicationRecord,
        trigger: TriggerName | None,
        triggered_by: Actor | None,
        reason: str | None,
    ) -> TriggerResult:
        if trigger is None:
            snapshot = await load_snapshot(self._documents, application.id)
            return on_document_upload(application, snapshot, triggered_by)
        if trigger == TriggerName.APPLICATION_SUBMITTED:
            return on_application_submitted(application, triggered_by)
        if trigger == TriggerName.ALL_DOCUMENTS_UPLOADED:
            return on_all_documents_uploaded(application, triggered_by)
        if trigger == TriggerName.PARTIAL_DOCUMENTS_UPLOADED:
            return on_partial_documents_uploaded(application, triggered_by)
        if trigger == TriggerName.STAGE1_FINAL_APPROVAL:
            return on_stage1_final_approval(application, triggered_by)
        return on_stage1_final_rejection(application, triggered_by, reason)

    async def evaluate(
        self,
        application: ApplicationRecord,
        trigger: TriggerName | None,
        *,
        triggered_by: Actor | None = None,
        reason: str | None = None,
    ) -> TriggerResult:
        """Evaluate ``trigger``; ``None`` means a document upload whose trigger depends on completeness."""
        if application.is_held:
            return TriggerResult.skipped(
                trigger or TriggerName.PARTIAL_DOCUMENTS_UPLOADED,
                application,
                "Application is on hold",
            )
        result = await self._compute(application, trigger, triggered_by, reason)
        if not result.applied:
            logger.debug(
                "Trigger not applied application_id=%s trigger=%s reason=%s",
                application.id,
                result.trigger.value,
                result.message,
            )
            return result

        decision = await validate(
            application,
            result.new_status,
            self._system,
            result.history_reason,
            matrix=self._matrix,
            documents=self._documents,
        )
        if not decision.accepted:
            logger.warning(
                "Trigger blocked by workflow matrix application_id=%s trigger=%s code=%s",
                application.id,
                result.trigger.value,
                decision.rejection.code.value,
            )
            return replace(
                result,
                applied=False,
                new_status=None,
                message=decision.rejection.message,
                decision=decision,
            )
        return replace(
            result,
            next_actor=decision.next_actor,
            next_action=decision.next_action,
            decision=decision,
        )
