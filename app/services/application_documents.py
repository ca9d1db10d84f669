from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.application_document import ApplicationDocument
from app.schemas.workflow import DocumentStatus
from app.services.application_records import DocumentRecord
from app.services.application_store import StoreError
from app.services.stage_history import utc_now


class DocumentQuery(Protocol):
    async def approved_document_types(self, application_id: str) -> set[str]: ...

    async def pending_document_types(self, application_id: str) -> set[str]: ...


class DocumentRegistry(DocumentQuery, Protocol):
    async def upload_document(
        self,
        application_id: str,
        document_type: str,
        *,
        uploaded_by: str | None = None,
        file_name: str | None = None,
        stage: int = 1,
    ) -> DocumentRecord: ...

    async def review_document(
        self,
        application_id: str,
        document_id: str,
        status: DocumentStatus,
        *,
        reviewed_by: str | None = None,
    ) -> DocumentRecord: ...

    async def documents_for(self, application_id: str) -> list[DocumentRecord]: ...


@dataclass(frozen=True)
class DocumentSnapshot:
    approved: frozenset[str]
    pending: frozenset[str]

    @property
    def submitted(self) -> frozenset[str]:
        return self.approved | self.pending


async def load_snapshot(query: DocumentQuery, application_id: str) -> DocumentSnapshot:
    approved = await query.approved_document_types(application_id)
    pending = await query.pending_document_types(application_id)
    return DocumentSnapshot(approved=frozenset(approved), pending=frozenset(pending))


class DocumentNotFoundError(LookupError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class InMemoryDocumentRegistry:
    """Document collaborator for single-process deployments and tests."""

    def __init__(self) -> None:
        self._documents: dict[str, DocumentRecord] = {}

    def upload(
        self,
        application_id: str,
        document_type: str,
        *,
        uploaded_by: str | None = None,
        file_name: str | None = None,
        stage: int = 1,
        status: DocumentStatus = DocumentStatus.PENDING,
    ) -> DocumentRecord:
        previous = [
            doc
            for doc in self._documents.values()
            if doc.application_id == application_id and doc.document_type == document_type
        ]
        document = DocumentRecord(
            id=str(uuid.uuid4()),
            application_id=application_id,
            document_type=document_type,
            status=DocumentStatus(status).value,
            stage=stage,
            file_name=file_name,
            uploaded_by=uploaded_by,
            uploaded_at=utc_now(),
            version=len(previous) + 1,
        )
        self._documents[document.id] = document
        return document

    def review(self, document_id: str, status: DocumentStatus, *, reviewed_by: str | None = None) -> DocumentRecord:
        document = self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        updated = replace(
            document,
            status=DocumentStatus(status).value,
            reviewed_by=reviewed_by,
            reviewed_at=utc_now(),
        )
        self._documents[document_id] = updated
        return updated

    def list_documents(self, application_id: str) -> list[DocumentRecord]:
        return [doc for doc in self._documents.values() if doc.application_id == application_id]

    async def upload_document(
        self,
        application_id: str,
        document_type: str,
        *,
        uploaded_by: str | None = None,
        file_name: str | None = None,
        stage: int = 1,
    ) -> DocumentRecord:
        return self.upload(
            application_id,
            document_type,
            uploaded_by=uploaded_by,
            file_name=file_name,
            stage=stage,
        )

    async def review_document(
        self,
        application_id: str,
        document_id: str,
        status: DocumentStatus,
        *,
        reviewed_by: str | None = None,
    ) -> DocumentRecord:
        document = self._documents.get(document_id)
        if document is None or document.application_id != application_id:
            raise DocumentNotFoundError(document_id)
        return self.review(document_id, status, reviewed_by=reviewed_by)

    async def documents_for(self, application_id: str) -> list[DocumentRecord]:
        return self.list_documents(application_id)

    def _types_with_status(self, application_id: str, status: DocumentStatus) -> set[str]:
        return {
            doc.document_type
            for doc in self._documents.values()
            if doc.application_id == application_id and doc.status == status.value
        }

    async def approved_document_types(self, application_id: str) -> set[str]:
        return self._types_with_status(application_id, DocumentStatus.APPROVED)

    async def pending_document_types(self, application_id: str) -> set[str]:
        return self._types_with_status(application_id, DocumentStatus.PENDING)


def document_from_row(row: ApplicationDocument) -> DocumentRecord:
    return DocumentRecord(
        id=row.id,
        application_id=row.application_id,
        document_type=row.document_type,
        status=row.status,
        stage=row.stage,
        file_name=row.file_name,
        uploaded_by=row.uploaded_by,
        uploaded_at=row.uploaded_at,
        reviewed_by=row.reviewed_by,
        reviewed_at=row.reviewed_at,
        version=row.version,
    )


class SqlDocumentRegistry:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _types_with_status(self, application_id: str, status: DocumentStatus) -> set[str]:
        stmt = (
            select(ApplicationDocument.document_type)
            .where(
                ApplicationDocument.application_id == application_id,
                ApplicationDocument.status == status.value,
            )
            .distinct()
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return set(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StoreError("Document lookup failed") from exc

    async def approved_document_types(self, application_id: str) -> set[str]:
        return await self._types_with_status(application_id, DocumentStatus.APPROVED)

    async def pending_document_types(self, application_id: str) -> set[str]:
        return await self._types_with_status(application_id, DocumentStatus.PENDING)

    async def upload_document(
        self,
        application_id: str,
        document_type: str,
        *,
        uploaded_by: str | None = None,
        file_name: str | None = None,
        stage: int = 1,
    ) -> DocumentRecord:
        previous = select(ApplicationDocument.id).where(
            ApplicationDocument.application_id == application_id,
            ApplicationDocument.document_type == document_type,
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    existing = (await session.execute(previous)).scalars().all()
                    row = ApplicationDocument(
                        id=str(uuid.uuid4()),
                        application_id=application_id,
                        stage=stage,
                        document_type=document_type,
                        file_name=file_name,
                        status=DocumentStatus.PENDING.value,
                        version=len(existing) + 1,
                        uploaded_by=uploaded_by,
                        uploaded_at=utc_now(),
                    )
                    session.add(row)
                return document_from_row(row)
        except SQLAlchemyError as exc:
            raise StoreError(f"Unable to record document for application {application_id}") from exc

    async def review_document(
        self,
        application_id: str,
        document_id: str,
        status: DocumentStatus,
        *,
        reviewed_by: str | None = None,
    ) -> DocumentRecord:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(ApplicationDocument, document_id, with_for_update=True)
                    if row is None or row.application_id != application_id:
                        raise DocumentNotFoundError(document_id)
                    row.status = DocumentStatus(status).value
                    row.reviewed_by = reviewed_by
                    row.reviewed_at = utc_now()
                return document_from_row(row)
        except SQLAlchemyError as exc:
            raise StoreError(f"Unable to review document {document_id}") from exc

    async def documents_for(self, application_id: str) -> list[DocumentRecord]:
        stmt = (
            select(ApplicationDocument)
            .where(ApplicationDocument.application_id == application_id)
            .order_by(ApplicationDocument.uploaded_at, ApplicationDocument.version)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [document_from_row(row) for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise StoreError(f"Unable to list documents for application {application_id}") from exc
