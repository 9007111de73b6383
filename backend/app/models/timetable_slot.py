import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Boolean, Date, DateTime, Enum as SAEnum, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class SlotKind(str, Enum):
    period = "period"
    assembly = "assembly"
    break_ = "break"
    anthem = "anthem"


class SlotSource(str, Enum):
    generator = "generator"
    manual = "manual"
    replacement = "replacement"


class TimetableSlot(Base):
    __tablename__ = "timetable_slots"
    __table_args__ = (
        UniqueConstraint(
            "class_id",
            "term_id",
            "day",
            "period",
            "override_date",
            name="uq_timetable_slots_identity",
        ),
        Index("ix_timetable_slots_term_day_period", "term_id", "day", "period"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    class_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    term_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    day: Mapped[str] = mapped_column(String(20), nullable=False)
    period: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[SlotKind] = mapped_column(
        SAEnum(SlotKind, name="timetable_slot_kind", values_callable=lambda kinds: [item.value for item in kinds]),
        nullable=False,
        default=SlotKind.period,
    )
    subject_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    teacher_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    is_double_period: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    override_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    source: Mapped[SlotSource] = mapped_column(
        SAEnum(SlotSource, name="timetable_slot_source"),
        nullable=False,
        default=SlotSource.generator,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_override(self) -> bool:
        return self.override_date is not None
