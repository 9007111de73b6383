from __future__ import annotations

from fastapi import APIRouter, Depends, status

from app.api.deps import get_resolver
from app.schemas.replacement import AbsenceCreate, AbsenceOut, ReplacementStatusOut
from app.services.replacement_resolver import ReplacementResolver

router = APIRouter()


@router.post("/absences", response_model=AbsenceOut, status_code=status.HTTP_201_CREATED)
def record_absence(
    payload: AbsenceCreate,
    resolver: ReplacementResolver = Depends(get_resolver),
) -> AbsenceOut:
    event = resolver.record_absence(
        teacher_id=payload.teacher_id,
        term_id=payload.term_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        leave_type=payload.leave_type,
        day_portion=payload.day_portion,
        reason=payload.reason,
    )
    resolver.db.refresh(event)
    return event


@router.post("/absences/{absence_id}/cancel", response_model=AbsenceOut)
def cancel_absence(
    absence_id: str,
    resolver: ReplacementResolver = Depends(get_resolver),
) -> AbsenceOut:
    event = resolver.cancel_absence(absence_id)
    resolver.db.refresh(event)
    return event


@router.get("/absences/{absence_id}/replacements", response_model=ReplacementStatusOut)
def get_replacement_status(
    absence_id: str,
    resolver: ReplacementResolver = Depends(get_resolver),
) -> ReplacementStatusOut:
    return ReplacementStatusOut.model_validate(resolver.replacement_status(absence_id), from_attributes=True)
