import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class SubjectRequirement(Base):
    __tablename__ = "subject_requirements"
    __table_args__ = (
        UniqueConstraint("class_id", "subject_id", name="uq_subject_requirements_class_subject"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    class_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    subject_id: Mapped[str] = mapped_column(String(50), nullable=False)
    subject_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    teacher_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    periods_per_week: Mapped[int] = mapped_column(Integer, nullable=False)
    requires_double_period: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
