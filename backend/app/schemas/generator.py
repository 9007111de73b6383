from __future__ import annotations

from pydantic import BaseModel, Field

from app.core.config import Settings
from app.schemas.timetable import TimetableSlotOut


class GenerationSettings(BaseModel):
    max_backtracks: int = Field(default=2000, ge=0, le=1_000_000)
    max_daily_periods_per_subject: int | None = Field(default=None, ge=1, le=20)

    @classmethod
    def from_settings(cls, settings: Settings, override: "GenerationSettings | None" = None) -> "GenerationSettings":
        base = cls(
            max_backtracks=settings.generator_max_backtracks,
            max_daily_periods_per_subject=settings.generator_max_daily_periods_per_subject,
        )
        if override is None:
            return base
        return base.model_copy(update=override.model_dump(exclude_unset=True))


class GenerateTimetableRequest(BaseModel):
    term_id: str = Field(min_length=1, max_length=36)
    class_id: str | None = Field(default=None, min_length=1, max_length=36)
    settings_override: GenerationSettings | None = None


class GenerationConflict(BaseModel):
    class_id: str
    subject_id: str | None = None
    teacher_id: str | None = None
    remaining: int | None = None
    reason: str


class ClassGenerationOut(BaseModel):
    class_id: str
    term_id: str
    slots: list[TimetableSlotOut]
    conflicts: list[dict]
    backtracks: int
    elapsed_ms: int


class FailedClass(BaseModel):
    class_id: str
    reason: str
    conflicts: list[dict] = Field(default_factory=list)


class BatchGenerationOut(BaseModel):
    term_id: str
    success: list[str]
    failed: list[FailedClass]


class RequirementStats(BaseModel):
    total_subjects: int
    total_periods: int
    available_periods: int


class RequirementValidationOut(BaseModel):
    valid: bool
    errors: list[str]
    stats: RequirementStats
