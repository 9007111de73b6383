from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.core.exceptions import ResourceNotFoundError
from app.models.class_section import ClassSection
from app.models.subject_requirement import SubjectRequirement
from app.models.teacher import Teacher
from app.models.teacher_availability import TeacherAvailability
from app.models.term import Term
from app.schemas.academics import (
    ClassSectionCreate,
    ClassSectionOut,
    SubjectRequirementCreate,
    SubjectRequirementOut,
    TeacherAvailabilityOut,
    TeacherAvailabilityUpdate,
    TeacherCreate,
    TeacherOut,
    TermCreate,
    TermOut,
)
from app.services.audit import log_activity

router = APIRouter()


def _activate_term(db: Session, term: Term) -> None:
    db.execute(update(Term).where(Term.id != term.id).values(is_active=False))
    term.is_active = True


@router.post("/terms", response_model=TermOut, status_code=status.HTTP_201_CREATED)
def create_term(payload: TermCreate, db: Session = Depends(get_db)) -> TermOut:
    if payload.id and db.get(Term, payload.id) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Term already exists")
    term = Term(name=payload.name.strip(), start_date=payload.start_date, end_date=payload.end_date)
    if payload.id:
        term.id = payload.id
    db.add(term)
    db.flush()
    if payload.is_active:
        _activate_term(db, term)
    db.commit()
    db.refresh(term)
    return term


@router.get("/terms", response_model=list[TermOut])
def list_terms(db: Session = Depends(get_db)) -> list[TermOut]:
    return list(db.execute(select(Term).order_by(Term.start_date, Term.id)).scalars())


@router.post("/terms/{term_id}/activate", response_model=TermOut)
def activate_term(term_id: str, db: Session = Depends(get_db)) -> TermOut:
    term = db.get(Term, term_id)
    if term is None:
        raise ResourceNotFoundError("Term", term_id)
    _activate_term(db, term)
    log_activity(db, actor_id=None, action="term.activate", entity_type="term", entity_id=term.id)
    db.commit()
    db.refresh(term)
    return term


@router.post("/classes", response_model=ClassSectionOut, status_code=status.HTTP_201_CREATED)
def create_class(payload: ClassSectionCreate, db: Session = Depends(get_db)) -> ClassSectionOut:
    if db.get(Term, payload.term_id) is None:
        raise ResourceNotFoundError("Term", payload.term_id)
    duplicate = db.execute(
        select(ClassSection).where(
            ClassSection.term_id == payload.term_id,
            ClassSection.grade == payload.grade,
            ClassSection.section == payload.section,
        )
    ).scalar_one_or_none()
    if duplicate is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Class section already exists for this term")

    section = ClassSection(
        term_id=payload.term_id,
        grade=payload.grade,
        section=payload.section,
        name=payload.name or f"{payload.grade}{payload.section}",
    )
    if payload.id:
        section.id = payload.id
    db.add(section)
    db.commit()
    db.refresh(section)
    return section


@router.get("/classes", response_model=list[ClassSectionOut])
def list_classes(term_id: str | None = Query(default=None), db: Session = Depends(get_db)) -> list[ClassSectionOut]:
    query = select(ClassSection)
    if term_id is not None:
        query = query.where(ClassSection.term_id == term_id)
    return list(db.execute(query.order_by(ClassSection.grade, ClassSection.section, ClassSection.id)).scalars())


@router.post("/teachers", response_model=TeacherOut, status_code=status.HTTP_201_CREATED)
def create_teacher(payload: TeacherCreate, db: Session = Depends(get_db)) -> TeacherOut:
    if payload.id and db.get(Teacher, payload.id) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Teacher already exists")
    teacher = Teacher(
        name=payload.name.strip(),
        email=payload.email,
        subject_ids=payload.subject_ids,
        is_substitute_eligible=payload.is_substitute_eligible,
        is_active=payload.is_active,
    )
    if payload.id:
        teacher.id = payload.id
    db.add(teacher)
    db.commit()
    db.refresh(teacher)
    return teacher


@router.get("/teachers", response_model=list[TeacherOut])
def list_teachers(db: Session = Depends(get_db)) -> list[TeacherOut]:
    return list(db.execute(select(Teacher).order_by(Teacher.id)).scalars())


@router.put("/classes/{class_id}/requirements", response_model=list[SubjectRequirementOut])
def replace_requirements(
    class_id: str,
    payload: list[SubjectRequirementCreate],
    db: Session = Depends(get_db),
) -> list[SubjectRequirementOut]:
    if db.get(ClassSection, class_id) is None:
        raise ResourceNotFoundError("Class", class_id)
    subject_ids = [item.subject_id for item in payload]
    if len(set(subject_ids)) != len(subject_ids):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Duplicate subject in requirements")
    for item in payload:
        if db.get(Teacher, item.teacher_id) is None:
            raise ResourceNotFoundError("Teacher", item.teacher_id)

    db.execute(delete(SubjectRequirement).where(SubjectRequirement.class_id == class_id))
    rows = [SubjectRequirement(class_id=class_id, **item.model_dump()) for item in payload]
    db.add_all(rows)
    log_activity(
        db,
        actor_id=None,
        action="requirements.replace",
        entity_type="class_section",
        entity_id=class_id,
        details={"subjects": sorted(subject_ids)},
    )
    db.commit()
    return sorted(rows, key=lambda row: row.subject_id)


@router.get("/classes/{class_id}/requirements", response_model=list[SubjectRequirementOut])
def list_requirements(class_id: str, db: Session = Depends(get_db)) -> list[SubjectRequirementOut]:
    if db.get(ClassSection, class_id) is None:
        raise ResourceNotFoundError("Class", class_id)
    return list(
        db.execute(
            select(SubjectRequirement)
            .where(SubjectRequirement.class_id == class_id)
            .order_by(SubjectRequirement.subject_id)
        ).scalars()
    )


@router.put("/teachers/{teacher_id}/availability", response_model=TeacherAvailabilityOut)
def set_availability(
    teacher_id: str,
    payload: TeacherAvailabilityUpdate,
    db: Session = Depends(get_db),
) -> TeacherAvailabilityOut:
    if db.get(Teacher, teacher_id) is None:
        raise ResourceNotFoundError("Teacher", teacher_id)
    if db.get(Term, payload.term_id) is None:
        raise ResourceNotFoundError("Term", payload.term_id)
    record = db.execute(
        select(TeacherAvailability).where(
            TeacherAvailability.teacher_id == teacher_id,
            TeacherAvailability.term_id == payload.term_id,
        )
    ).scalar_one_or_none()
    if record is None:
        record = TeacherAvailability(teacher_id=teacher_id, term_id=payload.term_id)
        db.add(record)
    unique = {(item.day, item.period) for item in payload.blocked_slots}
    record.blocked_slots = [{"day": day, "period": period} for day, period in sorted(unique)]
    db.commit()
    db.refresh(record)
    return record
