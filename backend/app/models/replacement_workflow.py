import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, Enum as SAEnum, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class ReplacementWorkflowStatus(str, Enum):
    detected = "detected"
    offering = "offering"
    accepted = "accepted"
    unfilled = "unfilled"
    cancelled = "cancelled"


TERMINAL_WORKFLOW_STATUSES = frozenset(
    {
        ReplacementWorkflowStatus.accepted,
        ReplacementWorkflowStatus.unfilled,
        ReplacementWorkflowStatus.cancelled,
    }
)


class ReplacementWorkflow(Base):
    __tablename__ = "replacement_workflows"
    __table_args__ = (
        UniqueConstraint(
            "absence_event_id",
            "class_id",
            "day",
            "period",
            "date",
            name="uq_replacement_workflows_identity",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    absence_event_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    class_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    term_id: Mapped[str] = mapped_column(String(36), nullable=False)
    day: Mapped[str] = mapped_column(String(20), nullable=False)
    period: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    subject_id: Mapped[str] = mapped_column(String(50), nullable=False)
    absent_teacher_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[ReplacementWorkflowStatus] = mapped_column(
        SAEnum(ReplacementWorkflowStatus, name="replacement_workflow_status"),
        nullable=False,
        default=ReplacementWorkflowStatus.detected,
        index=True,
    )
    assigned_teacher_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    unfilled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    alerted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())
