from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator, model_validator


class TermCreate(BaseModel):
    id: str | None = Field(default=None, min_length=1, max_length=36)
    name: str = Field(min_length=1, max_length=100)
    start_date: date
    end_date: date
    is_active: bool = False

    @model_validator(mode="after")
    def validate_range(self) -> "TermCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TermOut(BaseModel):
    id: str
    name: str
    start_date: date
    end_date: date
    is_active: bool
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class ClassSectionCreate(BaseModel):
    id: str | None = Field(default=None, min_length=1, max_length=36)
    term_id: str = Field(min_length=1, max_length=36)
    grade: int = Field(ge=1, le=12)
    section: str = Field(min_length=1, max_length=10)
    name: str | None = Field(default=None, max_length=50)

    @field_validator("section")
    @classmethod
    def normalize_section(cls, value: str) -> str:
        return value.strip().upper()


class ClassSectionOut(BaseModel):
    id: str
    term_id: str
    grade: int
    section: str
    name: str

    model_config = {"from_attributes": True}


class TeacherCreate(BaseModel):
    id: str | None = Field(default=None, min_length=1, max_length=36)
    name: str = Field(min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=255)
    subject_ids: list[str] = Field(default_factory=list)
    is_substitute_eligible: bool = False
    is_active: bool = True

    @field_validator("subject_ids")
    @classmethod
    def dedupe_subjects(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(item.strip() for item in value if item.strip()))


class TeacherOut(BaseModel):
    id: str
    name: str
    email: str | None = None
    subject_ids: list[str]
    is_substitute_eligible: bool
    is_active: bool

    model_config = {"from_attributes": True}


class SubjectRequirementCreate(BaseModel):
    subject_id: str = Field(min_length=1, max_length=50)
    subject_name: str | None = Field(default=None, max_length=200)
    teacher_id: str = Field(min_length=1, max_length=36)
    periods_per_week: int = Field(ge=1, le=40)
    requires_double_period: bool = False

    @model_validator(mode="after")
    def validate_double(self) -> "SubjectRequirementCreate":
        if self.requires_double_period and self.periods_per_week < 2:
            raise ValueError("A double period needs at least 2 periods per week")
        return self


class SubjectRequirementOut(BaseModel):
    id: str
    class_id: str
    subject_id: str
    subject_name: str | None = None
    teacher_id: str
    periods_per_week: int
    requires_double_period: bool

    model_config = {"from_attributes": True}


class BlockedSlot(BaseModel):
    day: str
    period: int = Field(ge=1, le=20)

    @field_validator("day")
    @classmethod
    def normalize_day(cls, value: str) -> str:
        return value.strip().title()


class TeacherAvailabilityUpdate(BaseModel):
    term_id: str = Field(min_length=1, max_length=36)
    blocked_slots: list[BlockedSlot] = Field(default_factory=list)


class TeacherAvailabilityOut(BaseModel):
    teacher_id: str
    term_id: str
    blocked_slots: list[BlockedSlot]

    model_config = {"from_attributes": True}
