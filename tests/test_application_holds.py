from datetime import datetime, timezone

import pytest

from app.schemas.workflow import DRAFT_NEXT_ACTION, ActorRole, RejectionCode
from app.services.application_holds import (
    CANCEL_NEXT_ACTION,
    HOLD_NEXT_ACTION,
    plan_cancel,
    plan_hold,
    plan_resume,
)

from conftest import make_application

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def test_hold_records_previous_status(matrix, admin):
    application = make_application(status="documents_under_review")

    plan = plan_hold(application, admin, "Awaiting fraud check", matrix=matrix, now=NOW)

    assert plan.accepted
    held = plan.record
    assert held.status == "on_hold"
    assert held.previous_status == "documents_under_review"
    assert held.next_actor == ActorRole.ADMIN
    assert held.next_action == HOLD_NEXT_ACTION
    assert (held.hold_reason, held.held_by, held.held_at) == ("Awaiting fraud check", "admin-1", NOW)
    assert held.stage_history[-1].status == "on_hold"
    assert held.stage_history[-1].reason == "Awaiting fraud check"
    assert application.status == "documents_under_review"
    assert len(application.stage_history) == 1


@pytest.mark.parametrize(
    "status,code",
    [
        ("on_hold", RejectionCode.ON_HOLD),
        ("cancelled", RejectionCode.ALREADY_TERMINAL),
        ("rejected_stage1", RejectionCode.ALREADY_TERMINAL),
    ],
)
def test_hold_refuses_held_and_terminal(matrix, admin, status, code):
    application = make_application(status=status, previous_status="new_application")
    plan = plan_hold(application, admin, "reason", matrix=matrix, now=NOW)
    assert not plan.accepted
    assert plan.rejection.code == code


def test_hold_requires_admin_and_reason(matrix, partner, override_admin):
    application = make_application(status="new_application")

    plan = plan_hold(application, partner, "reason", matrix=matrix, now=NOW)
    assert plan.rejection.code == RejectionCode.ACTOR_MISMATCH

    plan = plan_hold(application, override_admin, "  ", matrix=matrix, now=NOW)
    assert plan.rejection.code == RejectionCode.MISSING_REASON


def test_resume_restores_matrix_entry_and_clears_hold(matrix, admin):
    held = plan_hold(make_application(status="correction_requested_admin"), admin, "Paused", matrix=matrix, now=NOW)

    plan = plan_resume(held.record, admin, None, matrix=matrix, now=NOW)

    resumed = plan.record
    assert plan.previous_status == "on_hold"
    assert resumed.status == "correction_requested_admin"
    assert resumed.next_actor == ActorRole.PARTNER
    assert resumed.next_action == "Upload requested documents"
    assert resumed.previous_status is None
    assert (resumed.hold_reason, resumed.held_by, resumed.held_at) == (None, None, None)
    assert (resumed.resumed_by, resumed.resumed_at, resumed.resume_reason) == ("admin-1", NOW, None)
    assert [entry.status for entry in resumed.stage_history][-2:] == ["on_hold", "correction_requested_admin"]


def test_resume_held_draft_hands_back_to_partner(matrix, admin):
    draft = make_application(status="draft", next_actor=ActorRole.PARTNER, next_action=DRAFT_NEXT_ACTION)
    held = plan_hold(draft, admin, "Checking partner agreement", matrix=matrix, now=NOW).record
    assert held.next_action == HOLD_NEXT_ACTION

    resumed = plan_resume(held, admin, None, matrix=matrix, now=NOW).record

    assert resumed.status == "draft"
    assert resumed.next_actor == ActorRole.PARTNER
    assert resumed.next_action == DRAFT_NEXT_ACTION


def test_resume_requires_a_hold(matrix, admin):
    plan = plan_resume(make_application(status="new_application"), admin, "go", matrix=matrix, now=NOW)
    assert plan.rejection.code == RejectionCode.NOT_HELD

    plan = plan_resume(make_application(status="cancelled"), admin, "go", matrix=matrix, now=NOW)
    assert plan.rejection.code == RejectionCode.ALREADY_TERMINAL


def test_resume_requires_admin(matrix, partner):
    application = make_application(status="on_hold", previous_status="new_application")
    plan = plan_resume(application, partner, None, matrix=matrix, now=NOW)
    assert plan.rejection.code == RejectionCode.ACTOR_MISMATCH


def test_cancel_from_active_status(matrix, admin):
    application = make_application(stage=3, status="visa_fee_submitted")

    plan = plan_cancel(application, admin, "Student withdrew", matrix=matrix, now=NOW)

    cancelled = plan.record
    assert cancelled.status == "cancelled"
    assert cancelled.stage == 3
    assert cancelled.previous_status == "visa_fee_submitted"
    assert cancelled.next_actor == ActorRole.PARTNER
    assert cancelled.next_action == CANCEL_NEXT_ACTION
    assert (cancelled.cancel_reason, cancelled.cancelled_by, cancelled.cancelled_at) == (
        "Student withdrew",
        "admin-1",
        NOW,
    )


def test_cancel_from_hold_keeps_pre_hold_status(matrix, admin):
    held = plan_hold(make_application(status="documents_approved"), admin, "Paused", matrix=matrix, now=NOW).record

    cancelled = plan_cancel(held, admin, "Duplicate application", matrix=matrix, now=NOW).record

    assert cancelled.previous_status == "documents_approved"
    assert [entry.status for entry in cancelled.stage_history][-2:] == ["on_hold", "cancelled"]


@pytest.mark.parametrize(
    "stage,status,code",
    [
        (1, "cancelled", RejectionCode.ALREADY_TERMINAL),
        (1, "rejected_stage1", RejectionCode.NOT_CANCELLABLE),
        (5, "commission_paid", RejectionCode.NOT_CANCELLABLE),
    ],
)
def test_cancel_refuses_terminal(matrix, admin, stage, status, code):
    plan = plan_cancel(make_application(stage=stage, status=status), admin, "x", matrix=matrix, now=NOW)
    assert plan.rejection.code == code
    assert plan.new_status is None


def test_cancel_requires_reason(matrix, admin):
    plan = plan_cancel(make_application(), admin, None, matrix=matrix, now=NOW)
    assert plan.rejection.code == RejectionCode.MISSING_REASON
