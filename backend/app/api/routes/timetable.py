from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import get_catalog, get_db
from app.core.exceptions import ResourceNotFoundError
from app.models.class_section import ClassSection
from app.models.teacher import Teacher
from app.models.term import Term
from app.models.timetable_slot import SlotKind
from app.schemas.conflict import ConflictReport
from app.schemas.timetable import (
    CatalogOut,
    SlotUpsertRequest,
    TeacherTimetableOut,
    TimetableSlotOut,
    WeeklySummaryOut,
)
from app.services.audit import log_activity
from app.services.calendar import SlotCatalog
from app.services.conflict_service import ConflictService
from app.services.timetable_store import (
    SlotDraft,
    SlotRef,
    get_base_slots,
    get_effective_slots,
    get_teacher_timetable,
    remove_override,
    upsert_slot,
    weekly_summary,
)

router = APIRouter()


def _term_classes(db: Session, term_id: str, class_id: str | None) -> list[str]:
    if class_id is not None:
        section = db.get(ClassSection, class_id)
        if section is None or section.term_id != term_id:
            raise ResourceNotFoundError("Class", class_id)
        return [class_id]
    if db.get(Term, term_id) is None:
        raise ResourceNotFoundError("Term", term_id)
    return list(
        db.execute(
            select(ClassSection.id)
            .where(ClassSection.term_id == term_id)
            .order_by(ClassSection.grade, ClassSection.section, ClassSection.id)
        ).scalars()
    )


@router.post("/slots", response_model=TimetableSlotOut)
def upsert_timetable_slot(
    payload: SlotUpsertRequest,
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_catalog),
) -> TimetableSlotOut:
    ref = SlotRef(class_id=payload.class_id, term_id=payload.term_id, day=payload.day, period=payload.period)
    draft = SlotDraft(
        day=payload.day,
        period=payload.period,
        kind=payload.kind,
        subject_id=payload.subject_id,
        teacher_id=payload.teacher_id,
        is_double_period=payload.is_double_period,
    )
    record = upsert_slot(db, ref, draft, override_date=payload.override_date, catalog=catalog)
    log_activity(
        db,
        actor_id=None,
        action="timetable.slot.upsert",
        entity_type="timetable_slot",
        entity_id=record.id,
        details={**ref.as_dict(), "override_date": payload.override_date.isoformat() if payload.override_date else None},
    )
    db.commit()
    db.refresh(record)
    return record


@router.get("/slots", response_model=list[TimetableSlotOut])
def list_slots(
    term_id: str = Query(...),
    class_id: str | None = Query(default=None),
    day: str | None = Query(default=None),
    on_date: date | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_catalog),
) -> list[TimetableSlotOut]:
    day = day.strip().title() if day else None
    class_ids = _term_classes(db, term_id, class_id)
    if on_date is not None:
        date_day = catalog.day_for_date(on_date)
        if day is not None and day != date_day:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"{on_date.isoformat()} is not a {day}",
            )
        slots = []
        for item in class_ids:
            slots.extend(get_effective_slots(db, item, on_date, catalog=catalog))
        return slots

    slots = []
    for item in class_ids:
        slots.extend(get_base_slots(db, item, term_id, catalog=catalog))
    if day is not None:
        slots = [slot for slot in slots if slot.day == day]
    return slots


@router.get("/slots/base", response_model=list[TimetableSlotOut])
def list_base_slots(
    term_id: str = Query(...),
    class_id: str = Query(...),
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_catalog),
) -> list[TimetableSlotOut]:
    _term_classes(db, term_id, class_id)
    return get_base_slots(db, class_id, term_id, catalog=catalog)


@router.delete("/slots/override", status_code=status.HTTP_204_NO_CONTENT)
def delete_override(
    class_id: str = Query(...),
    term_id: str = Query(...),
    day: str = Query(...),
    period: int = Query(..., ge=1),
    on_date: date = Query(..., alias="date"),
    db: Session = Depends(get_db),
) -> None:
    ref = SlotRef(class_id=class_id, term_id=term_id, day=day.strip().title(), period=period)
    if not remove_override(db, ref, on_date):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Override not found")
    log_activity(
        db,
        actor_id=None,
        action="timetable.override.remove",
        entity_type="timetable_slot",
        details={**ref.as_dict(), "date": on_date.isoformat()},
    )
    db.commit()


@router.get("/timetable/conflicts", response_model=ConflictReport)
def list_conflicts(
    term_id: str = Query(...),
    class_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_catalog),
) -> ConflictReport:
    if db.get(Term, term_id) is None:
        raise ResourceNotFoundError("Term", term_id)
    return ConflictService(db, term_id, catalog=catalog).detect_conflicts(class_id=class_id)


@router.get("/timetable/catalog", response_model=CatalogOut)
def get_catalog_layout(catalog: SlotCatalog = Depends(get_catalog)) -> CatalogOut:
    return CatalogOut(
        working_days=list(catalog.working_days),
        periods_per_day=catalog.periods_per_day,
        academic_slots_per_week=catalog.academic_slot_count,
        adjacent_pairs=catalog.adjacent_pairs(),
        periods=catalog.describe(),
    )


@router.get("/timetable/teachers/{teacher_id}", response_model=TeacherTimetableOut)
def get_teacher_schedule(
    teacher_id: str,
    term_id: str = Query(...),
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_catalog),
) -> TeacherTimetableOut:
    if db.get(Teacher, teacher_id) is None:
        raise ResourceNotFoundError("Teacher", teacher_id)
    slots = get_teacher_timetable(db, teacher_id, term_id, catalog=catalog)
    return TeacherTimetableOut(
        teacher_id=teacher_id,
        term_id=term_id,
        weekly_periods=sum(1 for slot in slots if slot.kind == SlotKind.period),
        slots=slots,
    )


@router.get("/timetable/classes/{class_id}/weekly", response_model=WeeklySummaryOut)
def get_weekly_summary(
    class_id: str,
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_catalog),
) -> WeeklySummaryOut:
    section = db.get(ClassSection, class_id)
    if section is None:
        raise ResourceNotFoundError("Class", class_id)
    return WeeklySummaryOut(**weekly_summary(db, class_id, section.term_id, catalog=catalog))
