from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import ResourceNotFoundError
from app.models.absence_event import AbsenceEvent, AbsenceStatus
from app.models.class_section import ClassSection
from app.models.subject_requirement import SubjectRequirement
from app.models.teacher import Teacher
from app.models.teacher_availability import TeacherAvailability
from app.models.timetable_slot import SlotKind, TimetableSlot
from app.services.calendar import Cell, SlotCatalog
from app.services.timetable_store import get_teacher_effective_slots, overrides_in_range


@dataclass(frozen=True)
class Requirement:
    subject_id: str
    teacher_id: str | None
    periods_per_week: int
    requires_double_period: bool = False
    subject_name: str | None = None

    @property
    def double_units(self) -> int:
        return 1 if self.requires_double_period else 0

    @property
    def single_periods(self) -> int:
        return self.periods_per_week - 2 * self.double_units


@dataclass
class ClassConstraints:
    class_id: str
    term_id: str
    requirements: list[Requirement]
    # teacher_id -> cells already taken outside this class
    teacher_busy: dict[str, set[Cell]] = field(default_factory=dict)

    @property
    def total_periods(self) -> int:
        return sum(item.periods_per_week for item in self.requirements)


def load_requirements(db: Session, class_id: str) -> list[Requirement]:
    rows = db.execute(
        select(SubjectRequirement)
        .where(SubjectRequirement.class_id == class_id)
        .order_by(SubjectRequirement.subject_id)
    ).scalars()
    return [
        Requirement(
            subject_id=row.subject_id,
            teacher_id=row.teacher_id,
            periods_per_week=row.periods_per_week,
            requires_double_period=row.requires_double_period,
            subject_name=row.subject_name,
        )
        for row in rows
    ]


def check_requirements(requirements: list[Requirement], catalog: SlotCatalog) -> list[str]:
    errors: list[str] = []
    if not requirements:
        errors.append("No subject requirements configured")
        return errors

    available = catalog.academic_slot_count
    total = sum(item.periods_per_week for item in requirements)
    if total > available:
        errors.append(f"Total periods ({total}) exceed available academic slots ({available})")

    has_pairs = bool(catalog.adjacent_pairs())
    for item in requirements:
        if not item.teacher_id:
            errors.append(f"Subject {item.subject_id} has no assigned teacher")
        if item.periods_per_week < 1:
            errors.append(f"Subject {item.subject_id} needs at least one period per week")
        if item.requires_double_period:
            if item.periods_per_week < 2:
                errors.append(f"Subject {item.subject_id} requires a double period but has fewer than 2 periods")
            if not has_pairs:
                errors.append(f"Subject {item.subject_id} requires a double period but no adjacent periods exist")
    return errors


def validate_requirements(db: Session, class_id: str, term_id: str, catalog: SlotCatalog) -> dict:
    section = db.get(ClassSection, class_id)
    if section is None:
        raise ResourceNotFoundError("Class", class_id)
    requirements = load_requirements(db, class_id)
    errors = check_requirements(requirements, catalog)
    if section.term_id != term_id:
        errors.insert(0, f"Class {class_id} does not belong to term {term_id}")
    return {
        "valid": not errors,
        "errors": errors,
        "stats": {
            "total_subjects": len(requirements),
            "total_periods": sum(item.periods_per_week for item in requirements),
            "available_periods": catalog.academic_slot_count,
        },
    }


def blocked_cells(db: Session, term_id: str, teacher_ids: list[str] | None = None) -> dict[str, set[Cell]]:
    query = select(TeacherAvailability).where(TeacherAvailability.term_id == term_id)
    if teacher_ids is not None:
        query = query.where(TeacherAvailability.teacher_id.in_(teacher_ids))
    result: dict[str, set[Cell]] = {}
    for row in db.execute(query).scalars():
        result.setdefault(row.teacher_id, set()).update(row.blocked_cells())
    return result


def teacher_busy_map(db: Session, *, term_id: str, class_id: str, teacher_ids: list[str]) -> dict[str, set[Cell]]:
    """Cells where each teacher cannot be placed when (re)generating `class_id`."""
    busy = {teacher_id: set() for teacher_id in teacher_ids}
    for teacher_id, cells in blocked_cells(db, term_id, teacher_ids).items():
        busy.setdefault(teacher_id, set()).update(cells)

    taken = db.execute(
        select(TimetableSlot.teacher_id, TimetableSlot.day, TimetableSlot.period).where(
            TimetableSlot.term_id == term_id,
            TimetableSlot.class_id != class_id,
            TimetableSlot.override_date.is_(None),
            TimetableSlot.kind == SlotKind.period,
            TimetableSlot.teacher_id.in_(teacher_ids),
        )
    ).all()
    for teacher_id, day, period in taken:
        busy.setdefault(teacher_id, set()).add((day, period))
    return busy


def build_class_constraints(db: Session, class_id: str, term_id: str) -> ClassConstraints:
    requirements = load_requirements(db, class_id)
    teacher_ids = sorted({item.teacher_id for item in requirements if item.teacher_id})
    return ClassConstraints(
        class_id=class_id,
        term_id=term_id,
        requirements=requirements,
        teacher_busy=teacher_busy_map(db, term_id=term_id, class_id=class_id, teacher_ids=teacher_ids),
    )


def subject_teachers(db: Session, term_id: str, subject_id: str) -> set[str]:
    """Teachers assigned to `subject_id` in any class of the term."""
    rows = db.execute(
        select(SubjectRequirement.teacher_id)
        .join(ClassSection, ClassSection.id == SubjectRequirement.class_id)
        .where(ClassSection.term_id == term_id, SubjectRequirement.subject_id == subject_id)
    ).scalars()
    return {teacher_id for teacher_id in rows if teacher_id}


def is_subject_eligible(teacher: Teacher, subject_id: str, assigned_teachers: set[str]) -> bool:
    if teacher.is_substitute_eligible:
        return True
    return subject_id in (teacher.subject_ids or []) or teacher.id in assigned_teachers


def active_absences(db: Session, teacher_id: str, on_date: date) -> list[AbsenceEvent]:
    return list(
        db.execute(
            select(AbsenceEvent).where(
                AbsenceEvent.teacher_id == teacher_id,
                AbsenceEvent.status == AbsenceStatus.active,
                AbsenceEvent.start_date <= on_date,
                AbsenceEvent.end_date >= on_date,
            )
        ).scalars()
    )


def absence_covers(event: AbsenceEvent, on_date: date, period: int, catalog: SlotCatalog) -> bool:
    return event.covers(on_date) and period in catalog.periods_for_portion(event.day_portion)


def busy_reason(
    db: Session,
    *,
    teacher_id: str,
    term_id: str,
    on_date: date,
    period: int,
    catalog: SlotCatalog,
) -> str | None:
    """Why a teacher cannot cover (date, period), or None when free."""
    day = catalog.day_for_date(on_date)
    if day is None:
        return "not_a_working_day"
    for slot in get_teacher_effective_slots(db, teacher_id, term_id, on_date, catalog=catalog):
        if slot.period == period and slot.kind == SlotKind.period:
            return "teaching"
    if (day, period) in blocked_cells(db, term_id, [teacher_id]).get(teacher_id, set()):
        return "blocked"
    for event in active_absences(db, teacher_id, on_date):
        if absence_covers(event, on_date, period, catalog):
            return "absent"
    return None


def weekly_load(db: Session, *, teacher_id: str, term_id: str, on_date: date) -> int:
    base_count = len(
        db.execute(
            select(TimetableSlot.id).where(
                TimetableSlot.term_id == term_id,
                TimetableSlot.teacher_id == teacher_id,
                TimetableSlot.override_date.is_(None),
                TimetableSlot.kind == SlotKind.period,
            )
        ).all()
    )
    week_start = on_date - timedelta(days=on_date.weekday())
    week_end = week_start + timedelta(days=6)
    return base_count + overrides_in_range(
        db,
        teacher_id=teacher_id,
        term_id=term_id,
        start=week_start,
        end=week_end,
    )
