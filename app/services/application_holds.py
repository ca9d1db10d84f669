from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from app.schemas.workflow import CANCELLED_STATUS, DRAFT_NEXT_ACTION, ON_HOLD_STATUS, ActorRole, RejectionCode
from app.services import stage_history
from app.services.actors import Actor
from app.services.application_records import ApplicationRecord
from app.services.authority_matrix import AuthorityMatrix
from app.services.transition_validator import INTAKE_STATUSES, TransitionRejection

HOLD_NEXT_ACTION = "Resume or cancel the application"
CANCEL_NEXT_ACTION = "Acknowledge cancellation"


@dataclass(frozen=True)
class OverridePlan:
    """Result of planning a hold, resume or cancel; ``record`` is unsaved."""

    previous_status: str
    record: ApplicationRecord | None = None
    rejection: TransitionRejection | None = None

    @property
    def accepted(self) -> bool:
        return self.record is not None

    @property
    def new_status(self) -> str | None:
        return self.record.status if self.record else None


def _reject(application: ApplicationRecord, code: RejectionCode, message: str, **details) -> OverridePlan:
    return OverridePlan(
        previous_status=application.status,
        rejection=TransitionRejection(code=code, message=message, details=details),
    )


def _authorized(actor: Actor) -> bool:
    return actor.has_role(ActorRole.ADMIN) or actor.can_override


def _clean(reason: str | None) -> str | None:
    if reason is None:
        return None
    return reason.strip() or None


def plan_hold(
    application: ApplicationRecord,
    actor: Actor,
    reason: str | None,
    *,
    matrix: AuthorityMatrix,
    now: datetime,
) -> OverridePlan:
    if application.is_cancelled or matrix.is_terminal(application.stage, application.status):
        return _reject(application, RejectionCode.ALREADY_TERMINAL, "Terminal applications cannot be held")
    if application.is_held:
        return _reject(
            application,
            RejectionCode.ON_HOLD,
            "Application is already on hold",
            previous_status=application.previous_status,
        )
    if not _authorized(actor):
        return _reject(application, RejectionCode.ACTOR_MISMATCH, "Only an admin can hold an application")
    reason = _clean(reason)
    if reason is None:
        return _reject(application, RejectionCode.MISSING_REASON, "A reason is required to hold an application")

    entry = stage_history.record(application, application.stage, ON_HOLD_STATUS, actor, reason, now=now)
    held = replace(
        application,
        status=ON_HOLD_STATUS,
        previous_status=application.status,
        next_actor=ActorRole.ADMIN,
        next_action=HOLD_NEXT_ACTION,
        hold_reason=reason,
        held_by=actor.id,
        held_at=entry.timestamp,
        stage_history=application.stage_history + (entry,),
        updated_at=entry.timestamp,
    )
    return OverridePlan(previous_status=application.status, record=held)


def _resumed_owner(
    application: ApplicationRecord, restored: str, matrix: AuthorityMatrix
) -> tuple[ActorRole | None, str | None]:
    # Drafts have no matrix entry; the partner still owes the submission.
    if application.stage == 1 and restored in INTAKE_STATUSES:
        return ActorRole.PARTNER, DRAFT_NEXT_ACTION
    definition = matrix.find(application.stage, restored)
    if definition is None:
        return None, None
    return definition.next_actor, definition.next_action


def plan_resume(
    application: ApplicationRecord,
    actor: Actor,
    reason: str | None,
    *,
    matrix: AuthorityMatrix,
    now: datetime,
) -> OverridePlan:
    """Restore the pre-hold status. Triggers are not re-run here."""
    if application.is_cancelled:
        return _reject(application, RejectionCode.ALREADY_TERMINAL, "Cancelled applications cannot be resumed")
    if not application.is_held or not application.previous_status:
        return _reject(application, RejectionCode.NOT_HELD, "Application is not on hold")
    if not _authorized(actor):
        return _reject(application, RejectionCode.ACTOR_MISMATCH, "Only an admin can resume an application")

    reason = _clean(reason)
    restored = application.previous_status
    next_actor, next_action = _resumed_owner(application, restored, matrix)
    entry = stage_history.record(application, application.stage, restored, actor, reason, now=now)
    resumed = replace(
        application,
        status=restored,
        next_actor=next_actor,
        next_action=next_action,
        previous_status=None,
        hold_reason=None,
        held_by=None,
        held_at=None,
        resume_reason=reason,
        resumed_by=actor.id,
        resumed_at=entry.timestamp,
        stage_history=application.stage_history + (entry,),
        updated_at=entry.timestamp,
    )
    return OverridePlan(previous_status=application.status, record=resumed)


def plan_cancel(
    application: ApplicationRecord,
    actor: Actor,
    reason: str | None,
    *,
    matrix: AuthorityMatrix,
    now: datetime,
) -> OverridePlan:
    if application.is_cancelled:
        return _reject(application, RejectionCode.ALREADY_TERMINAL, "Application is already cancelled")
    if matrix.is_terminal(application.stage, application.status):
        return _reject(
            application,
            RejectionCode.NOT_CANCELLABLE,
            f"Application in terminal status {application.status} cannot be cancelled",
        )
    if not _authorized(actor):
        return _reject(application, RejectionCode.ACTOR_MISMATCH, "Only an admin can cancel an application")
    reason = _clean(reason)
    if reason is None:
        return _reject(application, RejectionCode.MISSING_REASON, "A reason is required to cancel an application")

    entry = stage_history.record(application, application.stage, CANCELLED_STATUS, actor, reason, now=now)
    cancelled = replace(
        application,
        status=CANCELLED_STATUS,
        previous_status=application.previous_status if application.is_held else application.status,
        next_actor=ActorRole.PARTNER,
        next_action=CANCEL_NEXT_ACTION,
        cancel_reason=reason,
        cancelled_by=actor.id,
        cancelled_at=entry.timestamp,
        stage_history=application.stage_history + (entry,),
        updated_at=entry.timestamp,
    )
    return OverridePlan(previous_status=application.status, record=cancelled)
