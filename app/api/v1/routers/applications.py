from fastapi import APIRouter, Body, Depends, Query, status

from app.api import deps
from app.core.errors import rejection_http_exception
from app.schemas.workflow import (
    ActorRole,
    AdminDecisionRequest,
    ApplicationCreateRequest,
    ApplicationDTO,
    DocumentDTO,
    DocumentEventResponse,
    DocumentListResponse,
    DocumentReviewRequest,
    DocumentStatus,
    DocumentUploadRequest,
    ReasonRequest,
    StageHistoryEntryDTO,
    StageHistoryResponse,
    StatusChangeDTO,
    TransitionCheckResponse,
    TransitionOutcomeDTO,
    TransitionRejectionDTO,
    TransitionRequest,
)
from app.services import stage_history
from app.services.actors import Actor
from app.services.application_documents import DocumentRegistry
from app.services.workflow_engine import TransitionOutcome, WorkflowEngine

router = APIRouter(prefix="/applications", tags=["applications"])


def _outcome_dto(outcome: TransitionOutcome) -> TransitionOutcomeDTO:
    rejection = None
    if outcome.rejection is not None:
        rejection = TransitionRejectionDTO(
            code=outcome.rejection.code,
            message=outcome.rejection.message,
            details=outcome.rejection.details,
        )
    return TransitionOutcomeDTO(
        accepted=outcome.accepted,
        previous_status=outcome.previous_status,
        new_status=outcome.new_status,
        system_triggered=outcome.system_triggered,
        trigger=outcome.trigger,
        message=outcome.message,
        changes=[StatusChangeDTO.model_validate(change) for change in outcome.changes],
        application=ApplicationDTO.model_validate(outcome.application) if outcome.application else None,
        rejection=rejection,
    )


def _outcome_payload(outcome: TransitionOutcome) -> TransitionOutcomeDTO:
    if outcome.rejection is not None:
        raise rejection_http_exception(outcome.rejection)
    return _outcome_dto(outcome)


@router.post("", response_model=TransitionOutcomeDTO, status_code=status.HTTP_201_CREATED)
async def create_application(
    payload: ApplicationCreateRequest,
    actor: Actor = Depends(deps.get_current_actor),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
):
    outcome = await engine.create_application(
        actor,
        partner_id=payload.partner_id,
        student_id=payload.student_id,
        documents_required=payload.documents_required,
        university=payload.university,
        program=payload.program,
    )
    return _outcome_payload(outcome)


@router.get("/{application_id}", response_model=ApplicationDTO)
async def get_application(
    application_id: str,
    actor: Actor = Depends(deps.get_current_actor),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
):
    application = await engine.get(application_id)
    return ApplicationDTO.model_validate(application)


@router.get("/{application_id}/history", response_model=StageHistoryResponse)
async def get_history(
    application_id: str,
    system_only: bool = Query(default=False),
    actor: Actor = Depends(deps.get_current_actor),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
):
    application = await engine.get(application_id)
    entries = stage_history.system_entries(application) if system_only else application.stage_history
    return StageHistoryResponse(
        application_id=application.id,
        items=[StageHistoryEntryDTO.model_validate(entry) for entry in entries],
    )


@router.get("/{application_id}/transitions/check", response_model=TransitionCheckResponse)
async def check_transition(
    application_id: str,
    target_status: str = Query(alias="status", min_length=1),
    reason: str | None = Query(default=None),
    actor: Actor = Depends(deps.get_current_actor),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
):
    decision = await engine.check_transition(application_id, target_status, actor, reason)
    rejection = None
    if decision.rejection is not None:
        rejection = TransitionRejectionDTO(
            code=decision.rejection.code,
            message=decision.rejection.message,
            details=decision.rejection.details,
        )
    return TransitionCheckResponse(
        allowed=decision.accepted,
        stage=decision.stage,
        target_status=decision.status,
        next_actor=decision.next_actor,
        next_action=decision.next_action,
        rejection=rejection,
    )


@router.post("/{application_id}/transitions", response_model=TransitionOutcomeDTO)
async def transition_application(
    application_id: str,
    payload: TransitionRequest,
    actor: Actor = Depends(deps.get_current_actor),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
):
    outcome = await engine.transition(
        application_id,
        payload.status,
        actor,
        payload.reason,
        requested_documents=payload.requested_documents,
    )
    return _outcome_payload(outcome)


@router.post("/{application_id}/hold", response_model=TransitionOutcomeDTO)
async def hold_application(
    application_id: str,
    payload: ReasonRequest,
    actor: Actor = Depends(deps.get_current_actor),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
):
    return _outcome_payload(await engine.hold(application_id, actor, payload.reason))


@router.post("/{application_id}/resume", response_model=TransitionOutcomeDTO)
async def resume_application(
    application_id: str,
    payload: ReasonRequest | None = Body(default=None),
    actor: Actor = Depends(deps.get_current_actor),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
):
    reason = payload.reason if payload else None
    return _outcome_payload(await engine.resume(application_id, actor, reason))


@router.post("/{application_id}/cancel", response_model=TransitionOutcomeDTO)
async def cancel_application(
    application_id: str,
    payload: ReasonRequest,
    actor: Actor = Depends(deps.get_current_actor),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
):
    return _outcome_payload(await engine.cancel(application_id, actor, payload.reason))


@router.post("/{application_id}/events/document-uploaded", response_model=TransitionOutcomeDTO)
async def document_uploaded(
    application_id: str,
    actor: Actor = Depends(deps.require_role(ActorRole.PARTNER, ActorRole.ADMIN)),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
):
    return _outcome_payload(await engine.document_uploaded(application_id, actor))


@router.post("/{application_id}/events/admin-decision", response_model=TransitionOutcomeDTO)
async def admin_decision(
    application_id: str,
    payload: AdminDecisionRequest,
    actor: Actor = Depends(deps.get_current_actor),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
):
    outcome = await engine.admin_decision(application_id, payload.decision, actor, payload.reason)
    return _outcome_payload(outcome)


@router.get("/{application_id}/documents", response_model=DocumentListResponse)
async def list_documents(
    application_id: str,
    actor: Actor = Depends(deps.get_current_actor),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
    registry: DocumentRegistry = Depends(deps.get_document_registry),
):
    await engine.get(application_id)
    documents = await registry.documents_for(application_id)
    return DocumentListResponse(
        application_id=application_id,
        total=len(documents),
        items=[DocumentDTO.model_validate(document) for document in documents],
    )


@router.post(
    "/{application_id}/documents",
    response_model=DocumentEventResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    application_id: str,
    payload: DocumentUploadRequest,
    actor: Actor = Depends(deps.require_role(ActorRole.PARTNER, ActorRole.ADMIN)),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
    registry: DocumentRegistry = Depends(deps.get_document_registry),
):
    await engine.get(application_id)
    document = await registry.upload_document(
        application_id,
        payload.document_type,
        uploaded_by=actor.id,
        file_name=payload.file_name,
        stage=payload.stage,
    )
    # The document is stored either way; the outcome says whether the status moved.
    outcome = await engine.document_uploaded(application_id, actor)
    return DocumentEventResponse(document=DocumentDTO.model_validate(document), outcome=_outcome_dto(outcome))


@router.post(
    "/{application_id}/documents/{document_id}/review",
    response_model=DocumentEventResponse,
)
async def review_document(
    application_id: str,
    document_id: str,
    payload: DocumentReviewRequest,
    actor: Actor = Depends(deps.require_role(ActorRole.ADMIN)),
    engine: WorkflowEngine = Depends(deps.get_workflow_engine),
    registry: DocumentRegistry = Depends(deps.get_document_registry),
):
    await engine.get(application_id)
    document = await registry.review_document(application_id, document_id, payload.status, reviewed_by=actor.id)
    if payload.status == DocumentStatus.APPROVED:
        outcome = await engine.document_uploaded(application_id, actor)
    else:
        application = await engine.get(application_id)
        outcome = TransitionOutcome(
            accepted=False,
            application=application,
            previous_status=application.status,
            message="Document review recorded",
        )
    return DocumentEventResponse(document=DocumentDTO.model_validate(document), outcome=_outcome_dto(outcome))
