from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import SlotInvariantError
from app.models.timetable_slot import SlotKind, TimetableSlot
from app.schemas.conflict import ConflictDetail, ConflictReport
from app.services.calendar import SlotCatalog, build_catalog
from app.services.timetable_store import SlotDraft, validate_slots

class ConflictService:
    def __init__(self, db: Session, term_id: str, catalog: Optional[SlotCatalog] = None):
        self.db = db
        self.term_id = term_id
        self.catalog = catalog or build_catalog()
        self.slots: List[TimetableSlot] = list(
            db.execute(
                select(TimetableSlot).where(
                    TimetableSlot.term_id == term_id,
                    TimetableSlot.override_date.is_(None),
                )
            ).scalars()
        )

    def detect_conflicts(self, class_id: Optional[str] = None) -> ConflictReport:
        conflicts: List[ConflictDetail] = []
        conflicts.extend(self._teacher_conflicts(class_id))
        conflicts.extend(self._pattern_conflicts(class_id))
        return ConflictReport(term_id=self.term_id, conflicts=conflicts)

    def _teacher_conflicts(self, class_id: Optional[str]) -> List[ConflictDetail]:
        # Bucket base periods by (teacher, day, period); any bucket above one is a double booking
        buckets: Dict[Tuple[str, str, int], List[TimetableSlot]] = defaultdict(list)
        for slot in self.slots:
            if slot.kind == SlotKind.period and slot.teacher_id:
                buckets[(slot.teacher_id, slot.day, slot.period)].append(slot)

        conflicts: List[ConflictDetail] = []
        for (teacher_id, day, period), group in sorted(buckets.items()):
            if len(group) < 2:
                continue
            class_ids = sorted({slot.class_id for slot in group})
            if class_id is not None and class_id not in class_ids:
                continue
            conflicts.append(ConflictDetail(
                id=f"teacher-{teacher_id}-{day}-{period}",
                conflict_type="teacher_conflict",
                description=f"Teacher {teacher_id} is booked for classes {', '.join(class_ids)} on {day} period {period}",
                severity="hard",
                teacher_id=teacher_id,
                day=day,
                period=period,
                class_ids=class_ids,
                affected_slots=sorted(slot.id for slot in group),
            ))
        return conflicts

    def _pattern_conflicts(self, class_id: Optional[str]) -> List[ConflictDetail]:
        by_class: Dict[str, List[TimetableSlot]] = defaultdict(list)
        for slot in self.slots:
            if class_id is None or slot.class_id == class_id:
                by_class[slot.class_id].append(slot)

        conflicts: List[ConflictDetail] = []
        for owner in sorted(by_class):
            drafts = [
                SlotDraft(
                    day=slot.day,
                    period=slot.period,
                    kind=slot.kind,
                    subject_id=slot.subject_id,
                    teacher_id=slot.teacher_id,
                    is_double_period=slot.is_double_period,
                )
                for slot in by_class[owner]
            ]
            try:
                validate_slots(drafts, self.catalog)
            except SlotInvariantError as exc:
                conflicts.append(ConflictDetail(
                    id=f"pattern-{owner}",
                    conflict_type="double_period" if exc.details.get("rule") == "double_period" else "slot_invariant",
                    description=exc.message,
                    severity="hard",
                    day=exc.details.get("day"),
                    period=exc.details.get("period"),
                    class_ids=[owner],
                    affected_slots=[],
                ))
        return conflicts
