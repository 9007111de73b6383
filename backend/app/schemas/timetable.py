from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from app.models.timetable_slot import SlotKind, SlotSource


def _normalize_day(value: str) -> str:
    day = value.strip().title()
    if not day:
        raise ValueError("day is required")
    return day


class TimetableSlotOut(BaseModel):
    id: str
    class_id: str
    term_id: str
    day: str
    period: int
    kind: SlotKind
    subject_id: str | None = None
    teacher_id: str | None = None
    is_double_period: bool
    override_date: date | None = None
    source: SlotSource
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class SlotUpsertRequest(BaseModel):
    class_id: str = Field(min_length=1, max_length=36)
    term_id: str = Field(min_length=1, max_length=36)
    day: str
    period: int = Field(ge=1, le=20)
    kind: SlotKind = SlotKind.period
    subject_id: str | None = Field(default=None, min_length=1, max_length=50)
    teacher_id: str | None = Field(default=None, min_length=1, max_length=36)
    is_double_period: bool = False
    override_date: date | None = None

    @field_validator("day")
    @classmethod
    def validate_day(cls, value: str) -> str:
        return _normalize_day(value)


class CatalogPeriodOut(BaseModel):
    period: int
    start_time: str | None = None
    end_time: str | None = None
    kinds: dict[str, str]


class CatalogOut(BaseModel):
    working_days: list[str]
    periods_per_day: int
    academic_slots_per_week: int
    adjacent_pairs: list[tuple[str, int, int]]
    periods: list[CatalogPeriodOut]


class TeacherTimetableOut(BaseModel):
    teacher_id: str
    term_id: str
    weekly_periods: int
    slots: list[TimetableSlotOut]


class WeeklySummaryOut(BaseModel):
    class_id: str
    term_id: str
    days: dict[str, list[TimetableSlotOut]]
    subject_counts: dict[str, int]
    academic_slots: int
    filled_slots: int
    free_slots: int
