import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


class Application(Base):
    __tablename__ = "applications"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("stage BETWEEN 1 AND 5", name="ck_application_stage_range"),
        CheckConstraint("version >= 1", name="ck_application_version_positive"),
        CheckConstraint(
            "next_actor IS NULL OR next_actor IN ('Admin', 'Partner', 'University', 'Immigration')",
            name="ck_application_next_actor",
        ),
        Index("ix_applications_stage_status", "stage", "status"),
        Index("ix_applications_next_actor", "next_actor"),
    )

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    partner_id = Column(String(64), nullable=True, index=True)
    student_id = Column(String(64), nullable=True, index=True)
    university = Column(String(255), nullable=True)
    program = Column(String(255), nullable=True)
    stage = Column(Integer, nullable=False, default=1)
    status = Column(String(64), nullable=False, default="draft")
    next_actor = Column(String(20), nullable=True)
    next_action = Column(Text, nullable=True)
    documents_required = Column(JSON, nullable=False, default=list)
    active_document_request_id = Column(String(64), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    hold_reason = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    resume_reason = Column(Text, nullable=True)
    previous_status = Column(String(64), nullable=True)
    held_by = Column(String(64), nullable=True)
    held_at = Column(DateTime(timezone=True), nullable=True)
    resumed_by = Column(String(64), nullable=True)
    resumed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String(64), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(String(64), nullable=True)
    released_by = Column(String(64), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    stage_history = relationship(
        "ApplicationStageHistory",
        back_populates="application",
        order_by="ApplicationStageHistory.sequence",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}
