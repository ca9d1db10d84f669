from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.schemas.workflow import DRAFT_STATUS, ActorRole, RejectionCode
from app.schemas.workflow_matrix import StatusDefinition
from app.services.actors import Actor
from app.services.application_documents import DocumentQuery
from app.services.application_records import ApplicationRecord
from app.services.authority_matrix import AuthorityMatrix, ResolvedTarget

INTAKE_STATUSES = frozenset({DRAFT_STATUS, ""})


@dataclass(frozen=True)
class TransitionRejection:
    code: RejectionCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionDecision:
    accepted: bool
    stage: int | None = None
    status: str | None = None
    next_actor: ActorRole | None = None
    next_action: str | None = None
    entry: StatusDefinition | None = None
    rejection: TransitionRejection | None = None

    @classmethod
    def accept(cls, target: ResolvedTarget) -> TransitionDecision:
        return cls(
            accepted=True,
            stage=target.stage,
            status=target.status,
            next_actor=target.entry.next_actor,
            next_action=target.entry.next_action,
            entry=target.entry,
        )

    @classmethod
    def reject(cls, code: RejectionCode, message: str, **details: Any) -> TransitionDecision:
        return cls(accepted=False, rejection=TransitionRejection(code=code, message=message, details=details))


def _has_reason(reason: str | None) -> bool:
    return bool(reason and reason.strip())


def _resolve_intake(application: ApplicationRecord, requested_status: str, matrix: AuthorityMatrix) -> ResolvedTarget | None:
    if requested_status != matrix.entry_status:
        return None
    entry = matrix.find(application.stage, requested_status)
    if entry is None:
        return None
    return ResolvedTarget(stage=application.stage, status=requested_status, entry=entry)


async def _missing_documents(
    application: ApplicationRecord,
    target: StatusDefinition,
    documents: DocumentQuery | None,
) -> list[str]:
    required = set(target.required_documents)
    if target.requires_requested_documents:
        required.update(application.documents_required)
    if not required:
        return []
    approved = await documents.approved_document_types(application.id) if documents else set()
    return sorted(required - approved)


async def validate(
    application: ApplicationRecord,
    requested_status: str,
    actor: Actor,
    reason: str | None = None,
    *,
    matrix: AuthorityMatrix,
    documents: DocumentQuery | None = None,
) -> TransitionDecision:
    """Decide whether ``actor`` may move ``application`` to ``requested_status``.

    Never writes. The accepted decision carries the target's next actor and
    action so the caller can apply them verbatim.
    """
    stage, status = application.stage, application.status

    if application.is_cancelled or matrix.is_terminal(stage, status):
        return TransitionDecision.reject(
            RejectionCode.ALREADY_TERMINAL,
            f"Application is in terminal status {status}",
            stage=stage,
            status=status,
        )
    if application.is_held:
        return TransitionDecision.reject(
            RejectionCode.ON_HOLD,
            "Application is on hold; resume or cancel it first",
            previous_status=application.previous_status,
        )

    if stage == 1 and status in INTAKE_STATUSES:
        target = _resolve_intake(application, requested_status, matrix)
        authorized = ActorRole.SYSTEM
    else:
        current = matrix.find(stage, status)
        if current is None:
            return TransitionDecision.reject(
                RejectionCode.UNKNOWN_STATE,
                f"No workflow entry for stage {stage} status {status}",
                stage=stage,
                status=status,
            )
        target = matrix.resolve_target(stage, status, requested_status)
        authorized = current.next_actor

    if target is None:
        return TransitionDecision.reject(
            RejectionCode.ILLEGAL_TRANSITION,
            f"Cannot move from {status} to {requested_status}",
            stage=stage,
            status=status,
            requested_status=requested_status,
            allowed=[target_status for _, target_status in matrix.reachable(stage, status)],
        )

    if not (actor.has_role(authorized) or actor.can_override):
        return TransitionDecision.reject(
            RejectionCode.ACTOR_MISMATCH,
            f"{status} is waiting on {authorized.value}",
            expected_actor=authorized.value,
            actor=actor.label,
        )
    # Upload-driven statuses are only reachable through the document triggers.
    if target.entry.entered_by_system and not actor.is_system:
        return TransitionDecision.reject(
            RejectionCode.ACTOR_MISMATCH,
            f"{target.status} is set by the System when documents are uploaded",
            expected_actor=ActorRole.SYSTEM.value,
            actor=actor.label,
        )

    if target.entry.requires_reason and not _has_reason(reason):
        return TransitionDecision.reject(
            RejectionCode.MISSING_REASON,
            f"A reason is required to move to {target.status}",
            requested_status=target.status,
        )

    if target.entry.requires_document_request and not application.active_document_request_id:
        return TransitionDecision.reject(
            RejectionCode.DOCUMENTS_INCOMPLETE,
            "No open document request for this application",
            requested_status=target.status,
        )

    missing = await _missing_documents(application, target.entry, documents)
    if missing:
        return TransitionDecision.reject(
            RejectionCode.DOCUMENTS_INCOMPLETE,
            "Required documents have not been approved",
            missing_documents=missing,
        )

    return TransitionDecision.accept(target)
