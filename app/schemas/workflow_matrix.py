from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.schemas.workflow import DRAFT_STATUS, OVERRIDE_STATUSES, ActorRole, TriggerName


MIN_STAGE = 1
MAX_STAGE = 5
RESERVED_STATUSES = OVERRIDE_STATUSES | {DRAFT_STATUS, ""}


def parse_status_ref(raw: str, default_stage: int) -> tuple[int, str]:
    """Parse ``"status"`` or ``"<stage>:status"`` into a composite key."""
    if ":" not in raw:
        return default_stage, raw
    stage_part, status = raw.split(":", 1)
    try:
        stage = int(stage_part)
    except ValueError as exc:
        raise ValueError(f"Invalid stage prefix in status reference {raw!r}") from exc
    return stage, status


class Notification(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=False)

    to: ActorRole
    template: str = Field(min_length=1)


class StatusDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    next_actor: ActorRole
    next_action: str = Field(min_length=1)
    transitions: tuple[str, ...] = ()
    requires_reason: bool = False
    required_documents: tuple[str, ...] = ()
    requires_requested_documents: bool = False
    entered_by_system: bool = False
    opens_document_request: bool = False
    closes_document_request: bool = False
    requires_document_request: bool = False
    terminal: bool = False
    records_rejection: bool = False
    provenance_field: Literal["approved_by", "released_by"] | None = None
    follow_on_trigger: TriggerName | None = None
    notifications: tuple[Notification, ...] = ()
    audit_event: str | None = None

    @field_validator("next_actor")
    @classmethod
    def _human_next_actor(cls, value: ActorRole) -> ActorRole:
        if value == ActorRole.SYSTEM:
            raise ValueError("next_actor must be a human actor")
        return value

    @model_validator(mode="after")
    def _terminal_has_no_exits(self) -> "StatusDefinition":
        if self.terminal and self.transitions:
            raise ValueError(f"Terminal status {self.name!r} cannot declare transitions")
        if not self.terminal and not self.transitions:
            raise ValueError(f"Non-terminal status {self.name!r} must declare transitions")
        if self.opens_document_request and self.closes_document_request:
            raise ValueError(f"Status {self.name!r} cannot both open and close a document request")
        return self


class StageDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    statuses: dict[str, StatusDefinition]

    @field_validator("statuses")
    @classmethod
    def _no_reserved_keys(cls, value: dict[str, StatusDefinition]) -> dict[str, StatusDefinition]:
        reserved = sorted(set(value) & RESERVED_STATUSES)
        if reserved:
            raise ValueError(f"Reserved statuses cannot be configured: {', '.join(reserved)}")
        if not value:
            raise ValueError("A stage must define at least one status")
        return value


class AuthorityMatrixConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str = Field(min_length=1)
    entry_status: str = "new_application"
    stages: dict[int, StageDefinition]

    @model_validator(mode="after")
    def _check_references(self) -> "AuthorityMatrixConfig":
        known = {
            (stage, status)
            for stage, definition in self.stages.items()
            for status in definition.statuses
        }
        for stage in self.stages:
            if stage < MIN_STAGE or stage > MAX_STAGE:
                raise ValueError(f"Stage {stage} is outside {MIN_STAGE}..{MAX_STAGE}")
        if (MIN_STAGE, self.entry_status) not in known:
            raise ValueError(f"Entry status {self.entry_status!r} is not defined in stage {MIN_STAGE}")

        for stage, definition in self.stages.items():
            for status, entry in definition.statuses.items():
                seen: set[str] = set()
                for raw in entry.transitions:
                    target_stage, target_status = parse_status_ref(raw, stage)
                    if (target_stage, target_status) not in known:
                        raise ValueError(
                            f"({stage}, {status}) references unknown status "
                            f"({target_stage}, {target_status})"
                        )
                    if target_stage not in (stage, stage + 1):
                        raise ValueError(
                            f"({stage}, {status}) -> ({target_stage}, {target_status}) "
                            "must stay in the stage or advance by one"
                        )
                    if target_status in seen:
                        raise ValueError(f"({stage}, {status}) lists {target_status!r} twice")
                    seen.add(target_status)
        return self
