import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, Enum as SAEnum, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class LeaveType(str, Enum):
    sick = "sick"
    casual = "casual"
    academic = "academic"
    personal = "personal"
    ad_hoc = "ad_hoc"


class DayPortion(str, Enum):
    full_day = "full_day"
    first_half = "first_half"
    second_half = "second_half"


class AbsenceStatus(str, Enum):
    active = "active"
    cancelled = "cancelled"


class AbsenceEvent(Base):
    __tablename__ = "absence_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    teacher_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    term_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    leave_type: Mapped[LeaveType] = mapped_column(SAEnum(LeaveType, name="absence_leave_type"), nullable=False)
    day_portion: Mapped[DayPortion] = mapped_column(
        SAEnum(DayPortion, name="absence_day_portion"),
        nullable=False,
        default=DayPortion.full_day,
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[AbsenceStatus] = mapped_column(
        SAEnum(AbsenceStatus, name="absence_status"),
        nullable=False,
        default=AbsenceStatus.active,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def covers(self, value: date) -> bool:
        return self.start_date <= value <= self.end_date
