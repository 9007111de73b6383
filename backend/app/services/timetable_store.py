"""Persisted timetable: base weekly pattern plus dated overrides.

The generator owns base rows (override_date IS NULL) and the replacement
resolver owns override rows. Functions here flush but never commit, except
`write_base_slots` and `upsert_slot`, which are whole writes of their own.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
import logging

from sqlalchemy import and_, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    OverrideConflictError,
    ResourceNotFoundError,
    SlotInvariantError,
    StoreWriteError,
)
from app.models.class_section import ClassSection
from app.models.term import Term
from app.models.timetable_slot import SlotKind, SlotSource, TimetableSlot
from app.services.calendar import SlotCatalog, build_catalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotRef:
    class_id: str
    term_id: str
    day: str
    period: int

    def as_dict(self) -> dict:
        return {"class_id": self.class_id, "term_id": self.term_id, "day": self.day, "period": self.period}


@dataclass(frozen=True)
class SlotDraft:
    day: str
    period: int
    kind: SlotKind = SlotKind.period
    subject_id: str | None = None
    teacher_id: str | None = None
    is_double_period: bool = False


def _slot_sort_key(catalog: SlotCatalog):
    def key(item) -> tuple[int, int]:
        day_rank = catalog.day_index(item.day) if item.day in catalog.working_days else len(catalog.working_days)
        return day_rank, item.period

    return key


def validate_slots(slots: list[SlotDraft], catalog: SlotCatalog) -> None:
    """Check one class's base pattern against the slot invariants."""
    seen: set[tuple[str, int]] = set()
    for slot in slots:
        cell = (slot.day, slot.period)
        if not catalog.has_cell(slot.day, slot.period):
            raise SlotInvariantError(
                f"{slot.day} period {slot.period} is not part of the calendar",
                details={"day": slot.day, "period": slot.period},
            )
        if cell in seen:
            raise SlotInvariantError(
                f"Duplicate slot for {slot.day} period {slot.period}",
                details={"day": slot.day, "period": slot.period},
            )
        seen.add(cell)

        fixed = catalog.fixed_kind(slot.day, slot.period)
        expected = fixed or SlotKind.period
        if slot.kind != expected:
            raise SlotInvariantError(
                f"{slot.day} period {slot.period} must be a {expected.value} slot",
                details={"day": slot.day, "period": slot.period, "kind": slot.kind.value},
            )
        if slot.kind == SlotKind.period:
            if (slot.subject_id is None) != (slot.teacher_id is None):
                raise SlotInvariantError(
                    "A period needs both a subject and a teacher, or neither",
                    details={"day": slot.day, "period": slot.period},
                )
            if slot.is_double_period and slot.subject_id is None:
                raise SlotInvariantError(
                    "An empty period cannot be part of a double period",
                    details={"day": slot.day, "period": slot.period},
                )
        elif slot.subject_id or slot.teacher_id or slot.is_double_period:
            raise SlotInvariantError(
                f"{slot.kind.value} slots carry no subject or teacher",
                details={"day": slot.day, "period": slot.period},
            )

    doubles = sorted((slot for slot in slots if slot.is_double_period), key=_slot_sort_key(catalog))
    index = 0
    while index < len(doubles):
        first = doubles[index]
        second = doubles[index + 1] if index + 1 < len(doubles) else None
        if (
            second is None
            or second.day != first.day
            or not catalog.is_adjacent(first.day, first.period, second.period)
            or (second.subject_id, second.teacher_id) != (first.subject_id, first.teacher_id)
        ):
            raise SlotInvariantError(
                "Double periods must be adjacent pairs with the same subject and teacher",
                details={"day": first.day, "period": first.period, "subject_id": first.subject_id, "rule": "double_period"},
            )
        index += 2


def _require_class(db: Session, class_id: str) -> ClassSection:
    section = db.get(ClassSection, class_id)
    if section is None:
        raise ResourceNotFoundError("Class", class_id)
    return section


def _require_term(db: Session, term_id: str) -> Term:
    term = db.get(Term, term_id)
    if term is None:
        raise ResourceNotFoundError("Term", term_id)
    return term


def get_base_slots(
    db: Session,
    class_id: str,
    term_id: str,
    *,
    catalog: SlotCatalog | None = None,
) -> list[TimetableSlot]:
    catalog = catalog or build_catalog()
    rows = db.execute(
        select(TimetableSlot).where(
            TimetableSlot.class_id == class_id,
            TimetableSlot.term_id == term_id,
            TimetableSlot.override_date.is_(None),
        )
    ).scalars()
    return sorted(rows, key=_slot_sort_key(catalog))


def get_base_slot(db: Session, ref: SlotRef) -> TimetableSlot | None:
    return db.execute(
        select(TimetableSlot).where(
            TimetableSlot.class_id == ref.class_id,
            TimetableSlot.term_id == ref.term_id,
            TimetableSlot.day == ref.day,
            TimetableSlot.period == ref.period,
            TimetableSlot.override_date.is_(None),
        )
    ).scalar_one_or_none()


def get_override(db: Session, ref: SlotRef, on_date: date) -> TimetableSlot | None:
    return db.execute(
        select(TimetableSlot).where(
            TimetableSlot.class_id == ref.class_id,
            TimetableSlot.term_id == ref.term_id,
            TimetableSlot.day == ref.day,
            TimetableSlot.period == ref.period,
            TimetableSlot.override_date == on_date,
        )
    ).scalar_one_or_none()


def _ensure_no_teacher_clash(
    db: Session,
    *,
    class_id: str,
    term_id: str,
    slots: list[SlotDraft],
) -> None:
    wanted = {
        (slot.teacher_id, slot.day, slot.period)
        for slot in slots
        if slot.kind == SlotKind.period and slot.teacher_id
    }
    if not wanted:
        return
    teacher_ids = sorted({teacher_id for teacher_id, _, _ in wanted})
    others = db.execute(
        select(TimetableSlot).where(
            TimetableSlot.term_id == term_id,
            TimetableSlot.class_id != class_id,
            TimetableSlot.override_date.is_(None),
            TimetableSlot.teacher_id.in_(teacher_ids),
        )
    ).scalars()
    for other in others:
        if (other.teacher_id, other.day, other.period) in wanted:
            raise SlotInvariantError(
                f"Teacher {other.teacher_id} already teaches class {other.class_id} "
                f"on {other.day} period {other.period}",
                details={
                    "teacher_id": other.teacher_id,
                    "day": other.day,
                    "period": other.period,
                    "class_id": other.class_id,
                },
            )


def write_base_slots(
    db: Session,
    class_id: str,
    term_id: str,
    slots: list[SlotDraft],
    *,
    source: SlotSource = SlotSource.generator,
    catalog: SlotCatalog | None = None,
) -> list[TimetableSlot]:
    """Replace every base slot of a class in one transaction.

    Dated overrides survive only where the new pattern still has a period of
    the same subject in their cell; the rest are dropped with the old base.
    """
    catalog = catalog or build_catalog()
    section = _require_class(db, class_id)
    if section.term_id != term_id:
        raise SlotInvariantError(
            f"Class {class_id} does not belong to term {term_id}",
            details={"class_id": class_id, "term_id": term_id},
        )
    validate_slots(slots, catalog)
    _ensure_no_teacher_clash(db, class_id=class_id, term_id=term_id, slots=slots)

    rows = [
        TimetableSlot(
            class_id=class_id,
            term_id=term_id,
            day=slot.day,
            period=slot.period,
            kind=slot.kind,
            subject_id=slot.subject_id,
            teacher_id=slot.teacher_id,
            is_double_period=slot.is_double_period,
            source=source,
        )
        for slot in slots
    ]
    teaching = {
        (slot.day, slot.period): slot.subject_id for slot in slots if slot.kind == SlotKind.period and slot.subject_id
    }
    try:
        stale = [
            row
            for row in db.execute(
                select(TimetableSlot).where(
                    TimetableSlot.class_id == class_id,
                    TimetableSlot.term_id == term_id,
                    TimetableSlot.override_date.is_not(None),
                )
            ).scalars()
            if teaching.get((row.day, row.period)) != row.subject_id
        ]
        dropped = [(row.day, row.period, row.override_date.isoformat()) for row in stale]
        for row in stale:
            db.delete(row)
        db.execute(
            delete(TimetableSlot).where(
                TimetableSlot.class_id == class_id,
                TimetableSlot.term_id == term_id,
                TimetableSlot.override_date.is_(None),
            )
        )
        db.add_all(rows)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Base slot write failed for class %s term %s", class_id, term_id)
        raise StoreWriteError(
            f"Timetable write for class {class_id} failed and was rolled back",
            details={"class_id": class_id, "term_id": term_id},
        ) from exc

    if dropped:
        logger.warning(
            "Dropped %s stale overrides for class %s term %s: %s",
            len(dropped),
            class_id,
            term_id,
            dropped,
        )
    logger.info("Wrote %s base slots for class %s term %s", len(rows), class_id, term_id)
    return sorted(rows, key=_slot_sort_key(catalog))


def get_effective_slots(
    db: Session,
    class_id: str,
    on_date: date,
    *,
    catalog: SlotCatalog | None = None,
) -> list[TimetableSlot]:
    """Base slots of the date's weekday with that date's overrides laid on top."""
    catalog = catalog or build_catalog()
    section = _require_class(db, class_id)
    day = catalog.day_for_date(on_date)
    if day is None:
        return []

    rows = db.execute(
        select(TimetableSlot).where(
            TimetableSlot.class_id == class_id,
            TimetableSlot.term_id == section.term_id,
            TimetableSlot.day == day,
            (TimetableSlot.override_date.is_(None)) | (TimetableSlot.override_date == on_date),
        )
    ).scalars()
    by_period: dict[int, TimetableSlot] = {}
    for row in rows:
        current = by_period.get(row.period)
        if current is None or row.override_date is not None:
            by_period[row.period] = row
    return [by_period[period] for period in sorted(by_period)]


def get_teacher_effective_slots(
    db: Session,
    teacher_id: str,
    term_id: str,
    on_date: date,
    *,
    catalog: SlotCatalog | None = None,
) -> list[TimetableSlot]:
    """Slots the teacher actually teaches on a date, across all classes."""
    catalog = catalog or build_catalog()
    day = catalog.day_for_date(on_date)
    if day is None:
        return []

    overrides = list(
        db.execute(
            select(TimetableSlot).where(
                TimetableSlot.term_id == term_id,
                TimetableSlot.day == day,
                TimetableSlot.override_date == on_date,
            )
        ).scalars()
    )
    overridden = {(row.class_id, row.period) for row in overrides}
    base = db.execute(
        select(TimetableSlot).where(
            TimetableSlot.term_id == term_id,
            TimetableSlot.day == day,
            TimetableSlot.teacher_id == teacher_id,
            TimetableSlot.override_date.is_(None),
        )
    ).scalars()
    effective = [row for row in base if (row.class_id, row.period) not in overridden]
    effective.extend(row for row in overrides if row.teacher_id == teacher_id)
    return sorted(effective, key=lambda row: (row.period, row.class_id))


def apply_override(
    db: Session,
    ref: SlotRef,
    on_date: date,
    teacher_id: str,
    *,
    source: SlotSource = SlotSource.replacement,
    catalog: SlotCatalog | None = None,
) -> TimetableSlot:
    """Put `teacher_id` on a base period for one date.

    Reapplying the same teacher returns the existing override unchanged; a
    different teacher already holding the slot/date raises
    OverrideConflictError.
    """
    catalog = catalog or build_catalog()
    term = _require_term(db, ref.term_id)
    if not term.covers(on_date):
        raise SlotInvariantError(
            f"{on_date.isoformat()} is outside term {term.id}",
            details={**ref.as_dict(), "date": on_date.isoformat()},
        )
    if catalog.day_for_date(on_date) != ref.day:
        raise SlotInvariantError(
            f"{on_date.isoformat()} is not a {ref.day}",
            details={**ref.as_dict(), "date": on_date.isoformat()},
        )

    base = get_base_slot(db, ref)
    if base is None or base.kind != SlotKind.period or base.subject_id is None:
        raise SlotInvariantError(
            f"No scheduled period at {ref.day} period {ref.period} for class {ref.class_id}",
            details=ref.as_dict(),
        )

    existing = get_override(db, ref, on_date)
    if existing is not None:
        if existing.teacher_id == teacher_id:
            return existing
        raise OverrideConflictError(
            f"{ref.day} period {ref.period} on {on_date.isoformat()} is already covered by {existing.teacher_id}",
            details={
                **ref.as_dict(),
                "date": on_date.isoformat(),
                "existing_teacher_id": existing.teacher_id,
                "requested_teacher_id": teacher_id,
            },
        )

    record = TimetableSlot(
        class_id=ref.class_id,
        term_id=ref.term_id,
        day=ref.day,
        period=ref.period,
        kind=SlotKind.period,
        subject_id=base.subject_id,
        teacher_id=teacher_id,
        is_double_period=base.is_double_period,
        override_date=on_date,
        source=source,
    )
    db.add(record)
    db.flush()
    logger.info(
        "Override %s %s period %s on %s -> %s",
        ref.class_id,
        ref.day,
        ref.period,
        on_date.isoformat(),
        teacher_id,
    )
    return record


def remove_override(db: Session, ref: SlotRef, on_date: date) -> bool:
    existing = get_override(db, ref, on_date)
    if existing is None:
        return False
    db.delete(existing)
    db.flush()
    logger.info("Removed override %s %s period %s on %s", ref.class_id, ref.day, ref.period, on_date.isoformat())
    return True


def upsert_slot(
    db: Session,
    ref: SlotRef,
    draft: SlotDraft,
    *,
    override_date: date | None = None,
    catalog: SlotCatalog | None = None,
) -> TimetableSlot:
    """Manual admin edit of one cell.

    Dated edits go through `apply_override`. Undated edits replace the base
    cell after re-validating the class's whole pattern.
    """
    catalog = catalog or build_catalog()
    if override_date is not None:
        if draft.teacher_id is None:
            raise SlotInvariantError("A dated edit needs a teacher", details=ref.as_dict())
        record = apply_override(db, ref, override_date, draft.teacher_id, source=SlotSource.manual, catalog=catalog)
        db.commit()
        return record

    section = _require_class(db, ref.class_id)
    if section.term_id != ref.term_id:
        raise SlotInvariantError(
            f"Class {ref.class_id} does not belong to term {ref.term_id}",
            details=ref.as_dict(),
        )
    current = get_base_slots(db, ref.class_id, ref.term_id, catalog=catalog)
    pattern = [
        SlotDraft(
            day=row.day,
            period=row.period,
            kind=row.kind,
            subject_id=row.subject_id,
            teacher_id=row.teacher_id,
            is_double_period=row.is_double_period,
        )
        for row in current
        if (row.day, row.period) != (ref.day, ref.period)
    ]
    pattern.append(draft)
    validate_slots(pattern, catalog)
    _ensure_no_teacher_clash(db, class_id=ref.class_id, term_id=ref.term_id, slots=[draft])

    record = get_base_slot(db, ref)
    if record is None:
        record = TimetableSlot(class_id=ref.class_id, term_id=ref.term_id, day=ref.day, period=ref.period)
        db.add(record)
    record.kind = draft.kind
    record.subject_id = draft.subject_id
    record.teacher_id = draft.teacher_id
    record.is_double_period = draft.is_double_period
    record.source = SlotSource.manual
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreWriteError("Manual slot edit failed and was rolled back", details=ref.as_dict()) from exc
    db.refresh(record)
    return record


def get_teacher_timetable(
    db: Session,
    teacher_id: str,
    term_id: str,
    *,
    catalog: SlotCatalog | None = None,
) -> list[TimetableSlot]:
    catalog = catalog or build_catalog()
    rows = db.execute(
        select(TimetableSlot).where(
            TimetableSlot.term_id == term_id,
            TimetableSlot.teacher_id == teacher_id,
            TimetableSlot.override_date.is_(None),
        )
    ).scalars()
    return sorted(rows, key=_slot_sort_key(catalog))


def weekly_summary(
    db: Session,
    class_id: str,
    term_id: str,
    *,
    catalog: SlotCatalog | None = None,
) -> dict:
    catalog = catalog or build_catalog()
    slots = get_base_slots(db, class_id, term_id, catalog=catalog)
    days: dict[str, list[TimetableSlot]] = {day: [] for day in catalog.working_days}
    subject_counts: dict[str, int] = defaultdict(int)
    for slot in slots:
        days.setdefault(slot.day, []).append(slot)
        if slot.kind == SlotKind.period and slot.subject_id:
            subject_counts[slot.subject_id] += 1
    filled = sum(subject_counts.values())
    return {
        "class_id": class_id,
        "term_id": term_id,
        "days": days,
        "subject_counts": dict(sorted(subject_counts.items())),
        "academic_slots": catalog.academic_slot_count,
        "filled_slots": filled,
        "free_slots": catalog.academic_slot_count - filled,
    }


def overrides_in_range(
    db: Session,
    *,
    teacher_id: str,
    term_id: str,
    start: date,
    end: date,
) -> int:
    return len(
        db.execute(
            select(TimetableSlot.id).where(
                and_(
                    TimetableSlot.term_id == term_id,
                    TimetableSlot.teacher_id == teacher_id,
                    TimetableSlot.override_date.is_not(None),
                    TimetableSlot.override_date >= start,
                    TimetableSlot.override_date <= end,
                )
            )
        ).all()
    )
