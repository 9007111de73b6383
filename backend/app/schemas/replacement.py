from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field, model_validator

from app.models.absence_event import AbsenceStatus, DayPortion, LeaveType
from app.models.replacement_offer import ReplacementOfferStatus
from app.models.replacement_workflow import ReplacementWorkflowStatus


class AbsenceCreate(BaseModel):
    teacher_id: str = Field(min_length=1, max_length=36)
    term_id: str = Field(min_length=1, max_length=36)
    start_date: date
    end_date: date | None = None
    leave_type: LeaveType
    day_portion: DayPortion = DayPortion.full_day
    reason: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def default_end_date(self) -> "AbsenceCreate":
        if self.end_date is None:
            self.end_date = self.start_date
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class AbsenceOut(BaseModel):
    id: str
    teacher_id: str
    term_id: str
    start_date: date
    end_date: date
    leave_type: LeaveType
    day_portion: DayPortion
    reason: str | None = None
    status: AbsenceStatus
    created_at: datetime | None = None
    cancelled_at: datetime | None = None

    model_config = {"from_attributes": True}


class ReplacementOfferOut(BaseModel):
    id: str
    workflow_id: str
    class_id: str
    term_id: str
    day: str
    period: int
    date: date
    candidate_teacher_id: str
    rank: int
    status: ReplacementOfferStatus
    offered_at: datetime
    expires_at: datetime | None = None
    responded_at: datetime | None = None
    decline_reason: str | None = None

    model_config = {"from_attributes": True}


class ReplacementWorkflowOut(BaseModel):
    id: str
    absence_event_id: str
    class_id: str
    term_id: str
    day: str
    period: int
    date: date
    subject_id: str
    absent_teacher_id: str
    status: ReplacementWorkflowStatus
    assigned_teacher_id: str | None = None
    unfilled_reason: str | None = None
    alerted_at: datetime | None = None

    model_config = {"from_attributes": True}


class WorkflowStatusOut(BaseModel):
    workflow: ReplacementWorkflowOut
    offers: list[ReplacementOfferOut]


class ReplacementStatusOut(BaseModel):
    absence: AbsenceOut
    workflows: list[WorkflowStatusOut]
    summary: dict[str, int]


class OfferRespond(BaseModel):
    teacher_id: str | None = Field(default=None, min_length=1, max_length=36)


class OfferDecline(OfferRespond):
    reason: str | None = Field(default=None, max_length=1000)


class ExpireOffersOut(BaseModel):
    expired_count: int
