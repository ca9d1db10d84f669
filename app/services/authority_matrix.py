from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from app.core.settings import settings
from app.schemas.workflow import ActorRole, TriggerName
from app.schemas.workflow_matrix import (
    AuthorityMatrixConfig,
    StatusDefinition,
    parse_status_ref,
)

logger = logging.getLogger(__name__)


class AuthorityMatrixConfigError(RuntimeError):
    pass


ADMIN = ActorRole.ADMIN.value
PARTNER = ActorRole.PARTNER.value
UNIVERSITY = ActorRole.UNIVERSITY.value
IMMIGRATION = ActorRole.IMMIGRATION.value


DEFAULT_MATRIX: dict[str, Any] = {
    "version": "2.0.0",
    "entry_status": "new_application",
    "stages": {
        1: {
            "name": "Application Review",
            "statuses": {
                "new_application": {
                    "name": "New Application",
                    "next_actor": ADMIN,
                    "next_action": "Change status to Under Review by Admin",
                    "transitions": ("under_review_admin", "rejected_stage1"),
                    "notifications": ({"to": ADMIN, "template": "application_received"},),
                    "audit_event": "application.submitted",
                },
                "under_review_admin": {
                    "name": "Under Review by Admin",
                    "next_actor": ADMIN,
                    "next_action": "Review application and request documents",
                    "transitions": (
                        "correction_requested_admin",
                        "documents_under_review",
                        "rejected_stage1",
                    ),
                    "audit_event": "application.review_started",
                },
                "correction_requested_admin": {
                    "name": "Correction Requested by Admin",
                    "next_actor": PARTNER,
                    "next_action": "Upload requested documents",
                    "transitions": ("documents_partially_submitted", "documents_submitted"),
                    "requires_reason": True,
                    "opens_document_request": True,
                    "records_rejection": True,
                    "notifications": ({"to": PARTNER, "template": "documents_requested"},),
                    "audit_event": "application.correction_requested",
                },
                "documents_partially_submitted": {
                    "name": "Documents Partially Submitted",
                    "next_actor": PARTNER,
                    "next_action": "Upload remaining documents",
                    "transitions": ("documents_submitted",),
                    "entered_by_system": True,
                    "requires_document_request": True,
                    "audit_event": "documents.partially_submitted",
                },
                "documents_submitted": {
                    "name": "Documents Submitted",
                    "next_actor": ADMIN,
                    "next_action": "Admin to start document review",
                    "transitions": ("documents_under_review",),
                    "entered_by_system": True,
                    "requires_document_request": True,
                    "notifications": ({"to": ADMIN, "template": "documents_submitted"},),
                    "audit_event": "documents.submitted",
                },
                "documents_under_review": {
                    "name": "Documents Under Review",
                    "next_actor": ADMIN,
                    "next_action": "Review submitted documents",
                    "transitions": (
                        "documents_approved",
                        "documents_rejected",
                        "documents_resubmission_required",
                        "rejected_stage1",
                    ),
                    "audit_event": "documents.review_started",
                },
                "documents_resubmission_required": {
                    "name": "Documents Resubmission Required",
                    "next_actor": PARTNER,
                    "next_action": "Resubmit rejected documents",
                    "transitions": ("documents_partially_submitted", "documents_submitted"),
                    "requires_reason": True,
                    "opens_document_request": True,
                    "records_rejection": True,
                    "notifications": ({"to": PARTNER, "template": "documents_resubmission_required"},),
                    "audit_event": "documents.resubmission_required",
                },
                "documents_approved": {
                    "name": "Documents Approved",
                    "next_actor": ADMIN,
                    "next_action": "Confirm Stage 1 approval",
                    "transitions": ("approved_stage1",),
                    "requires_requested_documents": True,
                    "closes_document_request": True,
                    "follow_on_trigger": TriggerName.STAGE1_FINAL_APPROVAL.value,
                    "audit_event": "documents.approved",
                },
                "documents_rejected": {
                    "name": "Documents Rejected",
                    "next_actor": ADMIN,
                    "next_action": "Confirm final rejection",
                    "transitions": ("rejected_stage1",),
                    "requires_reason": True,
                    "records_rejection": True,
                    "follow_on_trigger": TriggerName.STAGE1_FINAL_REJECTION.value,
                    "closes_document_request": True,
                    "audit_event": "documents.rejected",
                },
                "approved_stage1": {
                    "name": "Stage 1 Approved",
                    "next_actor": ADMIN,
                    "next_action": "Prepare & submit to University",
                    "transitions": ("2:sent_to_university",),
                    "notifications": ({"to": PARTNER, "template": "stage1_approved"},),
                    "audit_event": "stage1.approved",
                },
                "rejected_stage1": {
                    "name": "Stage 1 Rejected",
                    "next_actor": PARTNER,
                    "next_action": "Acknowledge rejection",
                    "terminal": True,
                    "requires_reason": True,
                    "records_rejection": True,
                    "notifications": ({"to": PARTNER, "template": "stage1_rejected"},),
                    "audit_event": "stage1.rejected",
                },
            },
        },
        2: {
            "name": "University Submission",
            "statuses": {
                "sent_to_university": {
                    "name": "Sent to University",
                    "next_actor": UNIVERSITY,
                    "next_action": "Waiting for university response",
                    "transitions": (
                        "university_requested_corrections",
                        "offer_letter_issued",
                        "rejected_university",
                    ),
                    "notifications": ({"to": UNIVERSITY, "template": "application_forwarded"},),
                    "audit_event": "university.submitted",
                },
                "university_requested_corrections": {
                    "name": "University Requested Corrections",
                    "next_actor": PARTNER,
                    "next_action": "Upload requested corrections",
                    "transitions": ("university_corrections_submitted",),
                    "requires_reason": True,
                    "records_rejection": True,
                    "notifications": ({"to": PARTNER, "template": "university_corrections_requested"},),
                    "audit_event": "university.corrections_requested",
                },
                "university_corrections_submitted": {
                    "name": "Corrections Submitted",
                    "next_actor": ADMIN,
                    "next_action": "Review and forward corrections to University",
                    "transitions": ("sent_to_university",),
                    "audit_event": "university.corrections_submitted",
                },
                "offer_letter_issued": {
                    "name": "Offer Letter Issued",
                    "next_actor": PARTNER,
                    "next_action": "Pay visa fee and upload proof of payment",
                    "transitions": ("3:visa_fee_submitted",),
                    "required_documents": ("offer_letter",),
                    "notifications": ({"to": PARTNER, "template": "offer_letter_issued"},),
                    "audit_event": "university.offer_issued",
                },
                "rejected_university": {
                    "name": "Rejected by University",
                    "next_actor": PARTNER,
                    "next_action": "Acknowledge university rejection",
                    "terminal": True,
                    "requires_reason": True,
                    "records_rejection": True,
                    "notifications": ({"to": PARTNER, "template": "university_rejected"},),
                    "audit_event": "university.rejected",
                },
            },
        },
        3: {
            "name": "Offer & Visa",
            "statuses": {
                "visa_fee_submitted": {
                    "name": "Visa Fee Submitted",
                    "next_actor": ADMIN,
                    "next_action": "Verify visa fee payment",
                    "transitions": ("visa_fee_approved", "visa_fee_rejected"),
                    "required_documents": ("visa_fee_receipt",),
                    "audit_event": "visa.fee_submitted",
                },
                "visa_fee_rejected": {
                    "name": "Visa Fee Rejected",
                    "next_actor": PARTNER,
                    "next_action": "Upload a valid visa fee receipt",
                    "transitions": ("visa_fee_submitted",),
                    "requires_reason": True,
                    "records_rejection": True,
                    "audit_event": "visa.fee_rejected",
                },
                "visa_fee_approved": {
                    "name": "Visa Fee Approved",
                    "next_actor": ADMIN,
                    "next_action": "Submit visa application to Immigration",
                    "transitions": ("submitted_to_immigration",),
                    "audit_event": "visa.fee_approved",
                },
                "submitted_to_immigration": {
                    "name": "Submitted to Immigration",
                    "next_actor": IMMIGRATION,
                    "next_action": "Awaiting immigration decision",
                    "transitions": (
                        "immigration_requested_documents",
                        "visa_approved",
                        "visa_rejected",
                    ),
                    "notifications": ({"to": IMMIGRATION, "template": "visa_application_submitted"},),
                    "audit_event": "visa.submitted",
                },
                "immigration_requested_documents": {
                    "name": "Immigration Requested Documents",
                    "next_actor": PARTNER,
                    "next_action": "Upload documents requested by Immigration",
                    "transitions": ("immigration_documents_submitted",),
                    "requires_reason": True,
                    "records_rejection": True,
                    "notifications": ({"to": PARTNER, "template": "immigration_documents_requested"},),
                    "audit_event": "visa.documents_requested",
                },
                "immigration_documents_submitted": {
                    "name": "Immigration Documents Submitted",
                    "next_actor": ADMIN,
                    "next_action": "Forward documents to Immigration",
                    "transitions": ("submitted_to_immigration",),
                    "audit_event": "visa.documents_submitted",
                },
                "visa_approved": {
                    "name": "Visa Approved",
                    "next_actor": PARTNER,
                    "next_action": "Plan student arrival",
                    "transitions": ("4:arrival_planned",),
                    "notifications": ({"to": PARTNER, "template": "visa_approved"},),
                    "audit_event": "visa.approved",
                },
                "visa_rejected": {
                    "name": "Visa Rejected",
                    "next_actor": PARTNER,
                    "next_action": "Acknowledge visa rejection",
                    "terminal": True,
                    "requires_reason": True,
                    "records_rejection": True,
                    "notifications": ({"to": PARTNER, "template": "visa_rejected"},),
                    "audit_event": "visa.rejected",
                },
            },
        },
        4: {
            "name": "Arrival & Enrollment",
            "statuses": {
                "arrival_planned": {
                    "name": "Arrival Planned",
                    "next_actor": ADMIN,
                    "next_action": "Confirm arrival plan",
                    "transitions": ("arrival_confirmed",),
                    "audit_event": "arrival.planned",
                },
                "arrival_confirmed": {
                    "name": "Arrival Confirmed",
                    "next_actor": UNIVERSITY,
                    "next_action": "Verify student arrival",
                    "transitions": ("arrival_verified",),
                    "audit_event": "arrival.confirmed",
                },
                "arrival_verified": {
                    "name": "Arrival Verified",
                    "next_actor": UNIVERSITY,
                    "next_action": "Confirm enrollment",
                    "transitions": ("enrollment_confirmed",),
                    "audit_event": "arrival.verified",
                },
                "enrollment_confirmed": {
                    "name": "Enrollment Confirmed",
                    "next_actor": ADMIN,
                    "next_action": "Open commission review",
                    "transitions": ("5:commission_pending",),
                    "notifications": ({"to": PARTNER, "template": "enrollment_confirmed"},),
                    "audit_event": "enrollment.confirmed",
                },
            },
        },
        5: {
            "name": "Commission",
            "statuses": {
                "commission_pending": {
                    "name": "Commission Pending",
                    "next_actor": ADMIN,
                    "next_action": "Review and approve commission",
                    "transitions": ("commission_approved",),
                    "audit_event": "commission.pending",
                },
                "commission_approved": {
                    "name": "Commission Approved",
                    "next_actor": ADMIN,
                    "next_action": "Release commission payment",
                    "transitions": ("commission_released",),
                    "provenance_field": "approved_by",
                    "audit_event": "commission.approved",
                },
                "commission_released": {
                    "name": "Commission Released",
                    "next_actor": PARTNER,
                    "next_action": "Confirm commission receipt",
                    "transitions": ("commission_paid", "commission_transfer_disputed"),
                    "required_documents": ("commission_transfer_receipt",),
                    "provenance_field": "released_by",
                    "notifications": ({"to": PARTNER, "template": "commission_released"},),
                    "audit_event": "commission.released",
                },
                "commission_transfer_disputed": {
                    "name": "Commission Transfer Disputed",
                    "next_actor": ADMIN,
                    "next_action": "Resolve commission payment dispute",
                    "transitions": ("commission_released",),
                    "requires_reason": True,
                    "notifications": ({"to": ADMIN, "template": "commission_disputed"},),
                    "audit_event": "commission.disputed",
                },
                "commission_paid": {
                    "name": "Commission Paid",
                    "next_actor": PARTNER,
                    "next_action": "Workflow complete",
                    "terminal": True,
                    "audit_event": "commission.paid",
                },
            },
        },
    },
}


@dataclass(frozen=True)
class ResolvedTarget:
    stage: int
    status: str
    entry: StatusDefinition


class AuthorityMatrix:
    """Read-only index over a validated matrix configuration."""

    def __init__(self, config: AuthorityMatrixConfig) -> None:
        self._config = config
        self._entries: dict[tuple[int, str], StatusDefinition] = {}
        self._targets: dict[tuple[int, str], dict[str, tuple[int, str]]] = {}
        for stage, definition in config.stages.items():
            for status, entry in definition.statuses.items():
                self._entries[(stage, status)] = entry
                self._targets[(stage, status)] = {
                    target_status: (target_stage, target_status)
                    for target_stage, target_status in (
                        parse_status_ref(raw, stage) for raw in entry.transitions
                    )
                }

    @property
    def config(self) -> AuthorityMatrixConfig:
        return self._config

    @property
    def version(self) -> str:
        return self._config.version

    @property
    def entry_status(self) -> str:
        return self._config.entry_status

    def find(self, stage: int, status: str) -> StatusDefinition | None:
        return self._entries.get((stage, status))

    def entry(self, stage: int, status: str) -> StatusDefinition:
        found = self.find(stage, status)
        if found is None:
            raise KeyError((stage, status))
        return found

    def statuses(self, stage: int) -> list[str]:
        definition = self._config.stages.get(stage)
        return list(definition.statuses) if definition else []

    def stage_name(self, stage: int) -> str | None:
        definition = self._config.stages.get(stage)
        return definition.name if definition else None

    def reachable(self, stage: int, status: str) -> list[tuple[int, str]]:
        return list(self._targets.get((stage, status), {}).values())

    def resolve_target(self, stage: int, status: str, requested_status: str) -> ResolvedTarget | None:
        key = self._targets.get((stage, status), {}).get(requested_status)
        if key is None:
            return None
        return ResolvedTarget(stage=key[0], status=key[1], entry=self._entries[key])

    def is_terminal(self, stage: int, status: str) -> bool:
        found = self.find(stage, status)
        return bool(found and found.terminal)

    def terminal_statuses(self) -> set[tuple[int, str]]:
        return {key for key, entry in self._entries.items() if entry.terminal}


def _read_matrix_file(path: str) -> Mapping[str, Any]:
    try:
        with open(Path(path), "r", encoding="utf-8") as matrix_file:
            return json.load(matrix_file)
    except (OSError, json.JSONDecodeError) as exc:
        raise AuthorityMatrixConfigError(f"Unable to read workflow matrix {path}: {exc}") from exc


def load_authority_matrix(source: Mapping[str, Any] | str | None = None) -> AuthorityMatrix:
    """Validate and index a matrix definition; misconfiguration fails here, never at transition time."""
    if source is None:
        raw = DEFAULT_MATRIX
    elif isinstance(source, str):
        raw = _read_matrix_file(source)
    else:
        raw = source
    try:
        config = AuthorityMatrixConfig.model_validate(raw)
    except ValidationError as exc:
        raise AuthorityMatrixConfigError(f"Invalid workflow matrix: {exc}") from exc
    matrix = AuthorityMatrix(config)
    logger.info(
        "Workflow matrix loaded version=%s statuses=%s",
        matrix.version,
        sum(len(stage.statuses) for stage in config.stages.values()),
    )
    return matrix


@lru_cache(maxsize=1)
def get_authority_matrix() -> AuthorityMatrix:
    return load_authority_matrix(settings.workflow_matrix_path)
