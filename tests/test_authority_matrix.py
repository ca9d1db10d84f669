import copy
import json

import pytest
from pydantic import ValidationError

from app.schemas.workflow import ActorRole
from app.schemas.workflow_matrix import parse_status_ref
from app.services.authority_matrix import (
    DEFAULT_MATRIX,
    AuthorityMatrixConfigError,
    load_authority_matrix,
)


def _matrix_copy() -> dict:
    return copy.deepcopy(DEFAULT_MATRIX)


def test_default_matrix_covers_five_stages(matrix):
    assert matrix.version == DEFAULT_MATRIX["version"]
    assert matrix.entry_status == "new_application"
    assert sorted(matrix.config.stages) == [1, 2, 3, 4, 5]
    assert "documents_under_review" in matrix.statuses(1)
    assert matrix.stage_name(5) == "Commission"
    assert matrix.stage_name(9) is None


def test_every_edge_stays_in_stage_or_advances_by_one(matrix):
    for stage in matrix.config.stages:
        for status in matrix.statuses(stage):
            for target_stage, target_status in matrix.reachable(stage, status):
                assert target_stage in (stage, stage + 1)
                assert matrix.find(target_stage, target_status) is not None


def test_terminal_statuses(matrix):
    assert matrix.terminal_statuses() == {
        (1, "rejected_stage1"),
        (2, "rejected_university"),
        (3, "visa_rejected"),
        (5, "commission_paid"),
    }
    assert matrix.reachable(1, "rejected_stage1") == []


def test_cross_stage_target_resolves_to_next_stage(matrix):
    target = matrix.resolve_target(1, "approved_stage1", "sent_to_university")
    assert target.stage == 2
    assert target.status == "sent_to_university"
    assert target.entry.next_actor == ActorRole.UNIVERSITY


def test_resolve_target_rejects_unlisted_status(matrix):
    assert matrix.resolve_target(1, "new_application", "documents_approved") is None
    assert matrix.resolve_target(1, "no_such_status", "under_review_admin") is None


def test_entry_raises_for_unknown_key(matrix):
    with pytest.raises(KeyError):
        matrix.entry(2, "new_application")


def test_status_literal_is_scoped_by_stage(matrix):
    assert matrix.find(1, "sent_to_university") is None
    assert matrix.find(2, "sent_to_university") is not None


def test_loaded_entries_are_immutable(matrix):
    entry = matrix.entry(1, "new_application")
    with pytest.raises(ValidationError):
        entry.next_action = "changed"


def test_parse_status_ref():
    assert parse_status_ref("documents_submitted", 1) == (1, "documents_submitted")
    assert parse_status_ref("3:visa_fee_submitted", 2) == (3, "visa_fee_submitted")
    with pytest.raises(ValueError):
        parse_status_ref("x:visa_fee_submitted", 2)


def test_unknown_target_fails_at_load():
    raw = _matrix_copy()
    raw["stages"][1]["statuses"]["new_application"]["transitions"] = ("under_review_admin", "missing_status")
    with pytest.raises(AuthorityMatrixConfigError, match="missing_status"):
        load_authority_matrix(raw)


def test_backward_stage_edge_fails_at_load():
    raw = _matrix_copy()
    raw["stages"][2]["statuses"]["university_corrections_submitted"]["transitions"] = (
        "1:documents_submitted",
    )
    with pytest.raises(AuthorityMatrixConfigError, match="advance by one"):
        load_authority_matrix(raw)


def test_stage_skipping_edge_fails_at_load():
    raw = _matrix_copy()
    raw["stages"][1]["statuses"]["approved_stage1"]["transitions"] = ("3:visa_fee_submitted",)
    with pytest.raises(AuthorityMatrixConfigError):
        load_authority_matrix(raw)


def test_duplicate_target_fails_at_load():
    raw = _matrix_copy()
    raw["stages"][1]["statuses"]["new_application"]["transitions"] = (
        "under_review_admin",
        "1:under_review_admin",
    )
    with pytest.raises(AuthorityMatrixConfigError, match="twice"):
        load_authority_matrix(raw)


@pytest.mark.parametrize("reserved", ["on_hold", "cancelled", "draft"])
def test_reserved_status_keys_fail_at_load(reserved):
    raw = _matrix_copy()
    raw["stages"][4]["statuses"][reserved] = {
        "name": "Reserved",
        "next_actor": "Admin",
        "next_action": "Nothing",
        "transitions": ("arrival_confirmed",),
    }
    with pytest.raises(AuthorityMatrixConfigError, match="Reserved"):
        load_authority_matrix(raw)


def test_terminal_entry_with_exits_fails_at_load():
    raw = _matrix_copy()
    raw["stages"][1]["statuses"]["rejected_stage1"]["transitions"] = ("new_application",)
    with pytest.raises(AuthorityMatrixConfigError, match="Terminal"):
        load_authority_matrix(raw)


def test_dead_end_entry_fails_at_load():
    raw = _matrix_copy()
    raw["stages"][4]["statuses"]["arrival_verified"]["transitions"] = ()
    with pytest.raises(AuthorityMatrixConfigError, match="must declare transitions"):
        load_authority_matrix(raw)


def test_unknown_follow_on_trigger_fails_at_load():
    raw = _matrix_copy()
    raw["stages"][1]["statuses"]["documents_approved"]["follow_on_trigger"] = "stage9_magic"
    with pytest.raises(AuthorityMatrixConfigError):
        load_authority_matrix(raw)


def test_system_cannot_be_next_actor():
    raw = _matrix_copy()
    raw["stages"][1]["statuses"]["new_application"]["next_actor"] = "System"
    with pytest.raises(AuthorityMatrixConfigError, match="human actor"):
        load_authority_matrix(raw)


def test_unknown_entry_field_fails_at_load():
    raw = _matrix_copy()
    raw["stages"][1]["statuses"]["new_application"]["escalate_after_hours"] = 48
    with pytest.raises(AuthorityMatrixConfigError):
        load_authority_matrix(raw)


def test_matrix_loads_from_json_file(tmp_path):
    path = tmp_path / "matrix.json"
    raw = _matrix_copy()
    raw["version"] = "file-1"
    path.write_text(json.dumps(raw), encoding="utf-8")

    matrix = load_authority_matrix(str(path))

    assert matrix.version == "file-1"
    assert matrix.resolve_target(1, "approved_stage1", "sent_to_university").stage == 2


def test_unreadable_matrix_file_fails_at_load(tmp_path):
    path = tmp_path / "matrix.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(AuthorityMatrixConfigError, match="Unable to read"):
        load_authority_matrix(str(path))
    with pytest.raises(AuthorityMatrixConfigError):
        load_authority_matrix(str(tmp_path / "absent.json"))


def test_upload_statuses_are_system_entered(matrix):
    entered = {
        (stage, status)
        for stage in matrix.config.stages
        for status in matrix.statuses(stage)
        if matrix.entry(stage, status).entered_by_system
    }
    assert entered == {(1, "documents_partially_submitted"), (1, "documents_submitted")}


def test_document_request_lifecycle_flags(matrix):
    assert matrix.entry(1, "correction_requested_admin").opens_document_request
    assert matrix.entry(1, "documents_resubmission_required").opens_document_request
    assert matrix.entry(1, "documents_approved").closes_document_request
    assert matrix.entry(1, "documents_rejected").closes_document_request
    assert matrix.entry(1, "documents_submitted").requires_document_request


def test_status_cannot_open_and_close_a_request():
    raw = _matrix_copy()
    raw["stages"][1]["statuses"]["documents_approved"]["opens_document_request"] = True
    with pytest.raises(AuthorityMatrixConfigError, match="open and close"):
        load_authority_matrix(raw)
