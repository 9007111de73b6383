import uuid
from datetime import datetime

from sqlalchemy import DateTime, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class TeacherAvailability(Base):
    __tablename__ = "teacher_availability"
    __table_args__ = (
        UniqueConstraint("teacher_id", "term_id", name="uq_teacher_availability_teacher_term"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    teacher_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    term_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    # [{"day": "Monday", "period": 3}, ...]
    blocked_slots: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def blocked_cells(self) -> set[tuple[str, int]]:
        cells: set[tuple[str, int]] = set()
        for item in self.blocked_slots or []:
            day = str(item.get("day", "")).strip()
            period = item.get("period")
            if day and isinstance(period, int):
                cells.add((day, period))
        return cells
