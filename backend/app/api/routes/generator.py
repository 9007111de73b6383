from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_catalog, get_db
from app.core.config import get_settings
from app.core.exceptions import ResourceNotFoundError
from app.models.notification import NotificationType
from app.models.term import Term
from app.schemas.generator import (
    BatchGenerationOut,
    ClassGenerationOut,
    GenerateTimetableRequest,
    GenerationSettings,
    RequirementValidationOut,
)
from app.services.calendar import SlotCatalog
from app.services.constraints import validate_requirements
from app.services.notifications import notify_users
from app.services.timetable_generator import generate_for_all_classes, generate_for_class

router = APIRouter()


def _publish_notice(db: Session, *, teacher_ids: set[str], class_ids: list[str]) -> None:
    notify_users(
        db,
        user_ids=sorted(teacher_ids),
        title="Timetable updated",
        message=f"A new weekly timetable was generated for {len(class_ids)} class(es).",
        notification_type=NotificationType.timetable,
        payload={"class_ids": class_ids},
    )
    db.commit()


@router.post("/generate", response_model=ClassGenerationOut | BatchGenerationOut)
def generate_timetable(
    payload: GenerateTimetableRequest,
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_catalog),
) -> ClassGenerationOut | BatchGenerationOut:
    if db.get(Term, payload.term_id) is None:
        raise ResourceNotFoundError("Term", payload.term_id)
    settings = GenerationSettings.from_settings(get_settings(), payload.settings_override)

    if payload.class_id is not None:
        result = generate_for_class(db, payload.class_id, payload.term_id, settings=settings, catalog=catalog)
        teacher_ids = {slot.teacher_id for slot in result.slots if slot.teacher_id}
        _publish_notice(db, teacher_ids=teacher_ids, class_ids=[result.class_id])
        return ClassGenerationOut(
            class_id=result.class_id,
            term_id=result.term_id,
            slots=result.slots,
            conflicts=result.conflicts,
            backtracks=result.backtracks,
            elapsed_ms=result.elapsed_ms,
        )

    summary = generate_for_all_classes(db, payload.term_id, settings=settings, catalog=catalog)
    return BatchGenerationOut(**summary)


@router.get("/generate/validate", response_model=RequirementValidationOut)
def validate_generation_inputs(
    term_id: str = Query(...),
    class_id: str = Query(...),
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_catalog),
) -> RequirementValidationOut:
    return RequirementValidationOut(**validate_requirements(db, class_id, term_id, catalog))
