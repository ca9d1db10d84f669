from __future__ import annotations

from dataclasses import replace
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.models import Application, ApplicationStageHistory
from app.schemas.workflow import ActorRole
from app.services.application_records import ApplicationRecord, StageHistoryEntry


class StoreError(RuntimeError):
    """Persistence failed; nothing from the call was written."""


class ConcurrentModificationError(StoreError):
    pass


class ApplicationNotFoundError(LookupError):
    def __init__(self, application_id: str) -> None:
        super().__init__(f"Application {application_id} not found")
        self.application_id = application_id


class ApplicationStore(Protocol):
    async def get(self, application_id: str) -> ApplicationRecord: ...

    async def create(self, record: ApplicationRecord) -> ApplicationRecord: ...

    async def put(self, record: ApplicationRecord, *, expected_version: int) -> ApplicationRecord: ...


def _ensure_append_only(current: ApplicationRecord, updated: ApplicationRecord) -> None:
    existing = current.stage_history
    if updated.stage_history[: len(existing)] != existing:
        raise StoreError(f"Stage history for {current.id} may only be appended to")


class InMemoryApplicationStore:
    """Process-local store; read-after-write consistent for a single id."""

    def __init__(self) -> None:
        self._records: dict[str, ApplicationRecord] = {}

    async def get(self, application_id: str) -> ApplicationRecord:
        record = self._records.get(application_id)
        if record is None:
            raise ApplicationNotFoundError(application_id)
        return record

    async def create(self, record: ApplicationRecord) -> ApplicationRecord:
        if record.id in self._records:
            raise StoreError(f"Application {record.id} already exists")
        stored = replace(record, version=1)
        self._records[record.id] = stored
        return stored

    async def put(self, record: ApplicationRecord, *, expected_version: int) -> ApplicationRecord:
        current = await self.get(record.id)
        if current.version != expected_version:
            raise ConcurrentModificationError(
                f"Application {record.id} is at version {current.version}, expected {expected_version}"
            )
        _ensure_append_only(current, record)
        stored = replace(record, version=current.version + 1)
        self._records[record.id] = stored
        return stored


_COPIED_FIELDS = (
    "partner_id",
    "student_id",
    "university",
    "program",
    "stage",
    "status",
    "next_action",
    "active_document_request_id",
    "rejection_reason",
    "hold_reason",
    "cancel_reason",
    "resume_reason",
    "previous_status",
    "held_by",
    "held_at",
    "resumed_by",
    "resumed_at",
    "cancelled_by",
    "cancelled_at",
    "approved_by",
    "released_by",
    "created_at",
    "updated_at",
)


def record_from_row(row: Application) -> ApplicationRecord:
    history = tuple(
        StageHistoryEntry(
            stage=entry.stage,
            status=entry.status,
            timestamp=entry.recorded_at,
            actor=entry.actor,
            actor_id=entry.actor_id,
            reason=entry.reason,
        )
        for entry in sorted(row.stage_history, key=lambda item: item.sequence)
    )
    values = {name: getattr(row, name) for name in _COPIED_FIELDS}
    return ApplicationRecord(
        id=row.id,
        next_actor=ActorRole(row.next_actor) if row.next_actor else None,
        stage_history=history,
        documents_required=tuple(row.documents_required or ()),
        version=row.version,
        **values,
    )


def history_row(application_id: str, sequence: int, entry: StageHistoryEntry) -> ApplicationStageHistory:
    return ApplicationStageHistory(
        application_id=application_id,
        sequence=sequence,
        stage=entry.stage,
        status=entry.status,
        actor=entry.actor,
        actor_id=entry.actor_id,
        reason=entry.reason,
        recorded_at=entry.timestamp,
    )


def copy_record_to_row(record: ApplicationRecord, row: Application) -> None:
    for name in _COPIED_FIELDS:
        value = getattr(record, name)
        if name == "created_at" and value is None:
            continue
        setattr(row, name, value)
    row.next_actor = record.next_actor.value if record.next_actor else None
    row.documents_required = list(record.documents_required)
    existing = len(row.stage_history)
    if len(record.stage_history) < existing:
        raise StoreError(f"Stage history for {record.id} may only be appended to")
    for sequence, entry in enumerate(record.stage_history[existing:], start=existing + 1):
        row.stage_history.append(history_row(record.id, sequence, entry))


class SqlApplicationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _load(self, session: AsyncSession, application_id: str, *, for_update: bool = False) -> Application:
        row = await session.get(
            Application,
            application_id,
            options=[selectinload(Application.stage_history)],
            with_for_update=for_update,
        )
        if row is None:
            raise ApplicationNotFoundError(application_id)
        return row

    async def get(self, application_id: str) -> ApplicationRecord:
        try:
            async with self._session_factory() as session:
                row = await self._load(session, application_id)
                return record_from_row(row)
        except SQLAlchemyError as exc:
            raise StoreError(f"Unable to load application {application_id}") from exc

    async def create(self, record: ApplicationRecord) -> ApplicationRecord:
        row = Application(id=record.id, stage_history=[])
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    copy_record_to_row(record, row)
                    session.add(row)
                return record_from_row(row)
        except SQLAlchemyError as exc:
            raise StoreError(f"Unable to create application {record.id}") from exc

    async def put(self, record: ApplicationRecord, *, expected_version: int) -> ApplicationRecord:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await self._load(session, record.id, for_update=True)
                    if row.version != expected_version:
                        raise ConcurrentModificationError(
                            f"Application {record.id} is at version {row.version}, expected {expected_version}"
                        )
                    # Status fields and appended history commit in one transaction.
                    copy_record_to_row(record, row)
                return record_from_row(row)
        except StaleDataError as exc:
            raise ConcurrentModificationError(f"Application {record.id} changed concurrently") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Unable to persist application {record.id}") from exc
