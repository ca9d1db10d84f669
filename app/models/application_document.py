import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)

from app.db.base import Base


DOCUMENT_STATUSES = (
    "pending",
    "approved",
    "rejected",
    "resubmission_required",
)


class ApplicationDocument(Base):
    __tablename__ = "application_documents"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'resubmission_required')",
            name="ck_application_document_status",
        ),
        Index("ix_application_documents_application_status", "application_id", "status"),
    )

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    application_id = Column(
        String(64),
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage = Column(Integer, nullable=False, default=1)
    document_type = Column(String(100), nullable=False)
    file_name = Column(String(255), nullable=True)
    status = Column(String(30), nullable=False, default="pending")
    version = Column(Integer, nullable=False, default=1)
    uploaded_by = Column(String(64), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    reviewed_by = Column(String(64), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
