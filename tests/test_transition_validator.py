import pytest

from app.schemas.workflow import ActorRole, RejectionCode
from app.services.actors import Actor
from app.services.transition_validator import validate

from conftest import approve_documents, make_application


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "stage,status",
    [(1, "mystery_status"), (2, "new_application"), (4, "commission_pending"), (5, "visa_approved")],
)
async def test_unknown_state(matrix, documents, admin, stage, status):
    application = make_application(stage=stage, status=status)
    decision = await validate(application, "anything", admin, matrix=matrix, documents=documents)
    assert not decision.accepted
    assert decision.rejection.code == RejectionCode.UNKNOWN_STATE


@pytest.mark.asyncio
async def test_illegal_transition_lists_allowed_targets(matrix, documents, admin):
    application = make_application(status="new_application")
    decision = await validate(application, "documents_approved", admin, matrix=matrix, documents=documents)
    assert decision.rejection.code == RejectionCode.ILLEGAL_TRANSITION
    assert decision.rejection.details["allowed"] == ["under_review_admin", "rejected_stage1"]


@pytest.mark.asyncio
async def test_wrong_actor_is_rejected(matrix, documents, partner):
    application = make_application(status="new_application")
    decision = await validate(application, "under_review_admin", partner, matrix=matrix, documents=documents)
    assert decision.rejection.code == RejectionCode.ACTOR_MISMATCH
    assert decision.rejection.details["expected_actor"] == "Admin"


@pytest.mark.asyncio
async def test_admin_role_alone_does_not_bypass_actor(matrix, documents, admin):
    application = make_application(stage=2, status="sent_to_university")
    decision = await validate(
        application, "rejected_university", admin, "Programme full", matrix=matrix, documents=documents
    )
    assert decision.rejection.code == RejectionCode.ACTOR_MISMATCH


@pytest.mark.asyncio
async def test_override_claim_bypasses_actor(matrix, documents, override_admin):
    application = make_application(stage=2, status="sent_to_university")
    decision = await validate(
        application, "rejected_university", override_admin, "Programme full", matrix=matrix, documents=documents
    )
    assert decision.accepted
    assert decision.next_actor == ActorRole.PARTNER


@pytest.mark.asyncio
@pytest.mark.parametrize("reason", [None, "", "   "])
async def test_missing_reason(matrix, documents, admin, reason):
    application = make_application(status="under_review_admin")
    decision = await validate(
        application, "correction_requested_admin", admin, reason, matrix=matrix, documents=documents
    )
    assert decision.rejection.code == RejectionCode.MISSING_REASON


@pytest.mark.asyncio
async def test_requested_documents_must_be_approved(matrix, documents, admin):
    application = make_application(status="documents_under_review", documents_required=("passport", "transcript"))
    documents.upload(application.id, "passport")

    decision = await validate(application, "documents_approved", admin, matrix=matrix, documents=documents)
    assert decision.rejection.code == RejectionCode.DOCUMENTS_INCOMPLETE
    assert decision.rejection.details["missing_documents"] == ["passport", "transcript"]

    approve_documents(documents, application.id, ["passport", "transcript"])
    decision = await validate(application, "documents_approved", admin, matrix=matrix, documents=documents)
    assert decision.accepted


@pytest.mark.asyncio
async def test_entry_gate_documents_are_checked(matrix, documents, university):
    application = make_application(stage=2, status="sent_to_university")
    decision = await validate(application, "offer_letter_issued", university, matrix=matrix, documents=documents)
    assert decision.rejection.details["missing_documents"] == ["offer_letter"]

    approve_documents(documents, application.id, ["offer_letter"])
    decision = await validate(application, "offer_letter_issued", university, matrix=matrix, documents=documents)
    assert decision.accepted
    assert decision.next_actor == ActorRole.PARTNER


@pytest.mark.asyncio
async def test_accepted_decision_describes_target(matrix, documents, admin):
    application = make_application(status="new_application")
    decision = await validate(application, "under_review_admin", admin, matrix=matrix, documents=documents)
    assert decision.accepted
    assert (decision.stage, decision.status) == (1, "under_review_admin")
    assert decision.next_actor == ActorRole.ADMIN
    assert decision.next_action == "Review application and request documents"


@pytest.mark.asyncio
async def test_cross_stage_target(matrix, documents, admin):
    application = make_application(status="approved_stage1")
    decision = await validate(application, "sent_to_university", admin, matrix=matrix, documents=documents)
    assert decision.accepted
    assert decision.stage == 2
    assert decision.next_actor == ActorRole.UNIVERSITY


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "stage,status",
    [(1, "rejected_stage1"), (3, "visa_rejected"), (5, "commission_paid"), (2, "cancelled")],
)
async def test_terminal_statuses_reject_everything(matrix, documents, override_admin, stage, status):
    application = make_application(stage=stage, status=status)
    decision = await validate(application, "under_review_admin", override_admin, "x", matrix=matrix, documents=documents)
    assert decision.rejection.code == RejectionCode.ALREADY_TERMINAL


@pytest.mark.asyncio
async def test_held_application_blocks_even_system(matrix, documents):
    application = make_application(status="on_hold", previous_status="documents_under_review")
    decision = await validate(application, "documents_approved", Actor.system(), matrix=matrix, documents=documents)
    assert decision.rejection.code == RejectionCode.ON_HOLD
    assert decision.rejection.details["previous_status"] == "documents_under_review"


@pytest.mark.asyncio
async def test_draft_only_leaves_through_system_submission(matrix, documents, partner):
    draft = make_application(status="draft", history=())

    decision = await validate(draft, "new_application", Actor.system(), matrix=matrix, documents=documents)
    assert decision.accepted
    assert decision.next_actor == ActorRole.ADMIN

    decision = await validate(draft, "new_application", partner, matrix=matrix, documents=documents)
    assert decision.rejection.code == RejectionCode.ACTOR_MISMATCH

    decision = await validate(draft, "under_review_admin", Actor.system(), matrix=matrix, documents=documents)
    assert decision.rejection.code == RejectionCode.ILLEGAL_TRANSITION


@pytest.mark.asyncio
async def test_validation_never_writes(matrix, documents, admin):
    application = make_application(status="documents_under_review")
    before = documents.list_documents(application.id)
    await validate(application, "documents_approved", admin, matrix=matrix, documents=documents)
    assert documents.list_documents(application.id) == before
    assert application.status == "documents_under_review"


@pytest.mark.asyncio
@pytest.mark.parametrize("target", ["documents_submitted", "documents_partially_submitted"])
async def test_upload_statuses_cannot_be_set_by_hand(matrix, documents, partner, override_admin, target):
    application = make_application(status="correction_requested_admin", documents_required=("passport",))

    for actor in (partner, override_admin):
        decision = await validate(application, target, actor, matrix=matrix, documents=documents)
        assert decision.rejection.code == RejectionCode.ACTOR_MISMATCH
        assert decision.rejection.details["expected_actor"] == "System"

    decision = await validate(application, target, Actor.system(), matrix=matrix, documents=documents)
    assert decision.accepted


@pytest.mark.asyncio
async def test_upload_statuses_need_an_open_document_request(matrix, documents):
    application = make_application(status="correction_requested_admin", active_document_request_id=None)

    decision = await validate(application, "documents_submitted", Actor.system(), matrix=matrix, documents=documents)

    assert decision.rejection.code == RejectionCode.DOCUMENTS_INCOMPLETE
    assert decision.rejection.message == "No open document request for this application"
