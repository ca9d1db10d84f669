import uuid

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


class ApplicationStageHistory(Base):
    __tablename__ = "application_stage_history"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("application_id", "sequence", name="uq_stage_history_application_sequence"),
    )

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    application_id = Column(
        String(64),
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence = Column(Integer, nullable=False)
    stage = Column(Integer, nullable=False)
    status = Column(String(64), nullable=False)
    actor = Column(String(20), nullable=False)
    actor_id = Column(String(64), nullable=True)
    reason = Column(Text, nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False)

    application = relationship("Application", back_populates="stage_history")
