from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Awaitable, Callable, Iterable
from weakref import WeakValueDictionary

from app.schemas.workflow import (
    CANCELLED_STATUS,
    DRAFT_NEXT_ACTION,
    DRAFT_STATUS,
    ON_HOLD_STATUS,
    ActorRole,
    AdminDecision,
    RejectionCode,
    TriggerName,
)
from app.schemas.workflow_matrix import Notification, StatusDefinition
from app.services import stage_history
from app.services.actors import Actor
from app.services.application_documents import DocumentRegistry
from app.services.application_holds import OverridePlan, plan_cancel, plan_hold, plan_resume
from app.services.application_records import ApplicationRecord, new_application_id, new_document_request_id
from app.services.application_store import ApplicationStore
from app.services.authority_matrix import AuthorityMatrix
from app.services.stage_history import Clock
from app.services.system_triggers import SystemTriggerDispatcher, TriggerResult
from app.services.transition_validator import TransitionDecision, TransitionRejection, validate

logger = logging.getLogger(__name__)

# A follow-on trigger's own output is never evaluated again in the same call.
FOLLOW_ON_HOPS = 1


@dataclass(frozen=True)
class StatusChange:
    application_id: str
    stage: int
    previous_status: str
    new_status: str
    actor: str
    actor_id: str | None
    occurred_at: datetime
    trigger: TriggerName | None = None
    reason: str | None = None
    previous_stage: int | None = None
    override: str | None = None
    entry: StatusDefinition | None = None

    @property
    def notifications(self) -> tuple[Notification, ...]:
        return self.entry.notifications if self.entry else ()

    @property
    def audit_event(self) -> str:
        if self.override:
            return f"application.{self.override}"
        if self.entry and self.entry.audit_event:
            return self.entry.audit_event
        return f"application.{self.new_status}"


@dataclass(frozen=True)
class TransitionOutcome:
    accepted: bool
    application: ApplicationRecord | None = None
    previous_status: str | None = None
    new_status: str | None = None
    changes: tuple[StatusChange, ...] = ()
    system_triggered: bool = False
    rejection: TransitionRejection | None = None
    trigger: TriggerName | None = None
    message: str | None = None

    @classmethod
    def rejected(cls, application: ApplicationRecord, rejection: TransitionRejection) -> TransitionOutcome:
        return cls(
            accepted=False,
            application=application,
            previous_status=application.status,
            rejection=rejection,
            message=rejection.message,
        )


Observer = Callable[[StatusChange], "Awaitable[None] | None"]


class WorkflowEngine:
    """Single entry point for every status change an application goes through.

    Calls for one application id are serialized by an in-process lock, and the
    store's version check rejects writes based on a stale read. Each call
    commits at most one ``put``; a follow-on system transition rides along in
    the same write as the change that caused it. Observers are notified after
    the lock is released.
    """

    def __init__(
        self,
        store: ApplicationStore,
        documents: DocumentRegistry,
        matrix: AuthorityMatrix,
        *,
        clock: Clock = stage_history.utc_now,
    ) -> None:
        self.store = store
        self.documents = documents
        self.matrix = matrix
        self._clock = clock
        self._dispatcher = SystemTriggerDispatcher(matrix, documents)
        self._system = Actor.system()
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()
        self._observers: list[Observer] = []

    def subscribe(self, callback: Observer) -> Callable[[], None]:
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _lock_for(self, application_id: str) -> asyncio.Lock:
        lock = self._locks.get(application_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[application_id] = lock
        return lock

    async def get(self, application_id: str) -> ApplicationRecord:
        return await self.store.get(application_id)

    def _apply(
        self,
        application: ApplicationRecord,
        decision: TransitionDecision,
        actor: Actor,
        reason: str | None,
        trigger: TriggerName | None = None,
        requested_documents: Iterable[str] | None = None,
    ) -> tuple[ApplicationRecord, StatusChange]:
        reason = reason.strip() if reason and reason.strip() else None
        entry = stage_history.record(application, decision.stage, decision.status, actor, reason, now=self._clock())
        updates = {
            "stage": decision.stage,
            "status": decision.status,
            "next_actor": decision.next_actor,
            "next_action": decision.next_action,
            "stage_history": application.stage_history + (entry,),
            "updated_at": entry.timestamp,
        }
        target = decision.entry
        if target.records_rejection and reason:
            updates["rejection_reason"] = reason
        if target.provenance_field:
            updates[target.provenance_field] = actor.id
        if target.opens_document_request:
            updates["active_document_request_id"] = new_document_request_id()
            if requested_documents is not None:
                updates["documents_required"] = tuple(dict.fromkeys(requested_documents))
        elif target.closes_document_request:
            updates["active_document_request_id"] = None
        change = StatusChange(
            application_id=application.id,
            stage=decision.stage,
            previous_status=application.status,
            new_status=decision.status,
            actor=entry.actor,
            actor_id=actor.id,
            occurred_at=entry.timestamp,
            trigger=trigger,
            reason=reason,
            previous_stage=application.stage,
            entry=target,
        )
        return replace(application, **updates), change

    def _override_change(self, plan: OverridePlan, actor: Actor, kind: str) -> StatusChange:
        record = plan.record
        entry = record.last_entry
        return StatusChange(
            application_id=record.id,
            stage=record.stage,
            previous_status=plan.previous_status,
            new_status=record.status,
            actor=entry.actor,
            actor_id=actor.id,
            occurred_at=entry.timestamp,
            reason=entry.reason,
            previous_stage=record.stage,
            override=kind,
        )

    async def _notify(self, changes: Iterable[StatusChange]) -> None:
        for change in changes:
            for observer in list(self._observers):
                try:
                    result = observer(change)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception(
                        "Workflow observer failed application_id=%s status=%s",
                        change.application_id,
                        change.new_status,
                    )

    async def _commit(
        self,
        current: ApplicationRecord,
        updated: ApplicationRecord,
        changes: list[StatusChange],
        *,
        system_triggered: bool,
        trigger: TriggerName | None = None,
        message: str | None = None,
    ) -> TransitionOutcome:
        stored = await self.store.put(updated, expected_version=current.version)
        for change in changes:
            logger.info(
                "Workflow status changed application_id=%s stage=%s %s -> %s actor=%s",
                change.application_id,
                change.stage,
                change.previous_status,
                change.new_status,
                change.actor,
            )
        return TransitionOutcome(
            accepted=True,
            application=stored,
            previous_status=current.status,
            new_status=stored.status,
            changes=tuple(changes),
            system_triggered=system_triggered,
            trigger=trigger,
            message=message,
        )

    async def check_transition(
        self,
        application_id: str,
        requested_status: str,
        actor: Actor,
        reason: str | None = None,
    ) -> TransitionDecision:
        """Pre-flight check for ``transition``; nothing is written."""
        application = await self.store.get(application_id)
        planners = {ON_HOLD_STATUS: plan_hold, CANCELLED_STATUS: plan_cancel}
        if requested_status in planners:
            plan = planners[requested_status](
                application, actor, reason, matrix=self.matrix, now=self._clock()
            )
            if not plan.accepted:
                return TransitionDecision(accepted=False, rejection=plan.rejection)
            return TransitionDecision(
                accepted=True,
                stage=plan.record.stage,
                status=plan.record.status,
                next_actor=plan.record.next_actor,
                next_action=plan.record.next_action,
            )
        return await validate(
            application,
            requested_status,
            actor,
            reason,
            matrix=self.matrix,
            documents=self.documents,
        )

    async def transition(
        self,
        application_id: str,
        requested_status: str,
        actor: Actor,
        reason: str | None = None,
        *,
        requested_documents: Iterable[str] | None = None,
    ) -> TransitionOutcome:
        """Validate and apply one requested status change.

        ``requested_documents`` replaces the application's required document
        types when the target opens a document request.
        """
        if requested_status == ON_HOLD_STATUS:
            return await self.hold(application_id, actor, reason)
        if requested_status == CANCELLED_STATUS:
            return await self.cancel(application_id, actor, reason)

        async with self._lock_for(application_id):
            outcome = await self._transition_locked(
                application_id, requested_status, actor, reason, requested_documents
            )
        # Observers run outside the lock so they may call back into the engine.
        await self._notify(outcome.changes)
        return outcome

    async def _transition_locked(
        self,
        application_id: str,
        requested_status: str,
        actor: Actor,
        reason: str | None,
        requested_documents: Iterable[str] | None,
    ) -> TransitionOutcome:
        current = await self.store.get(application_id)
        decision = await validate(
            current,
            requested_status,
            actor,
            reason,
            matrix=self.matrix,
            documents=self.documents,
        )
        if not decision.accepted:
            logger.info(
                "Workflow transition rejected application_id=%s status=%s requested=%s code=%s",
                application_id,
                current.status,
                requested_status,
                decision.rejection.code.value,
            )
            return TransitionOutcome.rejected(current, decision.rejection)

        updated, change = self._apply(current, decision, actor, reason, requested_documents=requested_documents)
        changes = [change]
        system_triggered = False
        follow_on: TriggerResult | None = None
        pending = decision.entry.follow_on_trigger
        for _ in range(FOLLOW_ON_HOPS):
            if pending is None:
                break
            follow_on = await self._dispatcher.evaluate(updated, pending, triggered_by=actor, reason=reason)
            if not follow_on.applied:
                break
            updated, change = self._apply(
                updated,
                follow_on.decision,
                self._system,
                follow_on.history_reason,
                trigger=follow_on.trigger,
            )
            changes.append(change)
            system_triggered = True
            pending = None

        return await self._commit(
            current,
            updated,
            changes,
            system_triggered=system_triggered,
            trigger=follow_on.trigger if system_triggered else None,
            message=follow_on.message if follow_on else None,
        )

    async def _fire(
        self,
        application_id: str,
        trigger: TriggerName | None,
        triggered_by: Actor | None,
        reason: str | None = None,
    ) -> TransitionOutcome:
        async with self._lock_for(application_id):
            outcome = await self._fire_locked(application_id, trigger, triggered_by, reason)
        await self._notify(outcome.changes)
        return outcome

    async def _fire_locked(
        self,
        application_id: str,
        trigger: TriggerName | None,
        triggered_by: Actor | None,
        reason: str | None,
    ) -> TransitionOutcome:
        current = await self.store.get(application_id)
        result = await self._dispatcher.evaluate(current, trigger, triggered_by=triggered_by, reason=reason)
        if not result.applied:
            rejection = result.decision.rejection if result.decision else None
            return TransitionOutcome(
                accepted=False,
                application=current,
                previous_status=current.status,
                rejection=rejection,
                trigger=result.trigger,
                message=result.message,
            )
        updated, change = self._apply(
            current,
            result.decision,
            self._system,
            result.history_reason,
            trigger=result.trigger,
        )
        return await self._commit(
            current,
            updated,
            [change],
            system_triggered=True,
            trigger=result.trigger,
            message=result.message,
        )

    async def create_application(
        self,
        actor: Actor,
        *,
        partner_id: str,
        student_id: str,
        documents_required: Iterable[str] = (),
        university: str | None = None,
        program: str | None = None,
        submit: bool = True,
    ) -> TransitionOutcome:
        """Create a draft and, unless ``submit`` is False, fire the submission trigger."""
        if not (actor.has_role(ActorRole.PARTNER) or actor.has_role(ActorRole.ADMIN) or actor.can_override):
            return TransitionOutcome(
                accepted=False,
                rejection=TransitionRejection(
                    code=RejectionCode.ACTOR_MISMATCH,
                    message="Only partners or admins can create applications",
                    details={"actor": actor.label},
                ),
            )
        now = self._clock()
        draft = ApplicationRecord(
            id=new_application_id(),
            stage=1,
            status=DRAFT_STATUS,
            next_actor=ActorRole.PARTNER,
            next_action=DRAFT_NEXT_ACTION,
            documents_required=tuple(dict.fromkeys(documents_required)),
            partner_id=partner_id,
            student_id=student_id,
            university=university,
            program=program,
            created_at=now,
            updated_at=now,
        )
        created = await self.store.create(draft)
        logger.info("Application draft created application_id=%s partner_id=%s", created.id, partner_id)
        if not submit:
            return TransitionOutcome(
                accepted=True,
                application=created,
                new_status=created.status,
            )
        return await self.submit_application(created.id, actor)

    async def submit_application(self, application_id: str, actor: Actor | None = None) -> TransitionOutcome:
        return await self._fire(application_id, TriggerName.APPLICATION_SUBMITTED, actor)

    async def document_uploaded(self, application_id: str, actor: Actor | None = None) -> TransitionOutcome:
        """React to a document upload; completeness decides between the full and partial triggers."""
        return await self._fire(application_id, None, actor)

    async def admin_decision(
        self,
        application_id: str,
        decision: AdminDecision | str,
        actor: Actor,
        reason: str | None = None,
    ) -> TransitionOutcome:
        decision = AdminDecision(decision)
        if not (actor.has_role(ActorRole.ADMIN) or actor.can_override):
            current = await self.store.get(application_id)
            return TransitionOutcome.rejected(
                current,
                TransitionRejection(
                    code=RejectionCode.ACTOR_MISMATCH,
                    message="Only an admin can record a stage 1 decision",
                    details={"expected_actor": ActorRole.ADMIN.value, "actor": actor.label},
                ),
            )
        if decision == AdminDecision.REJECT:
            return await self._fire(application_id, TriggerName.STAGE1_FINAL_REJECTION, actor, reason)

        current = await self.store.get(application_id)
        if current.stage == 1 and current.status == "documents_approved":
            return await self._fire(application_id, TriggerName.STAGE1_FINAL_APPROVAL, actor)
        return await self.transition(application_id, "documents_approved", actor, reason)

    async def _override(
        self, application_id: str, actor: Actor, reason: str | None, planner, kind: str
    ) -> TransitionOutcome:
        async with self._lock_for(application_id):
            current = await self.store.get(application_id)
            plan = planner(current, actor, reason, matrix=self.matrix, now=self._clock())
            if not plan.accepted:
                logger.info(
                    "Workflow override rejected application_id=%s status=%s code=%s",
                    application_id,
                    current.status,
                    plan.rejection.code.value,
                )
                return TransitionOutcome.rejected(current, plan.rejection)
            outcome = await self._commit(
                current,
                plan.record,
                [self._override_change(plan, actor, kind)],
                system_triggered=False,
            )
        await self._notify(outcome.changes)
        return outcome

    async def hold(self, application_id: str, actor: Actor, reason: str | None = None) -> TransitionOutcome:
        return await self._override(application_id, actor, reason, plan_hold, "held")

    async def resume(self, application_id: str, actor: Actor, reason: str | None = None) -> TransitionOutcome:
        return await self._override(application_id, actor, reason, plan_resume, "resumed")

    async def cancel(self, application_id: str, actor: Actor, reason: str | None = None) -> TransitionOutcome:
        return await self._override(application_id, actor, reason, plan_cancel, "cancelled")
