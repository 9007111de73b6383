from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from fractions import Fraction
import logging
from time import perf_counter

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import AppError, InfeasibleScheduleError, ResourceNotFoundError, SlotInvariantError
from app.models.class_section import ClassSection
from app.models.timetable_slot import SlotKind, TimetableSlot
from app.schemas.generator import GenerationSettings
from app.services.calendar import Cell, SlotCatalog, build_catalog
from app.services.conflict_service import ConflictService
from app.services.constraints import ClassConstraints, Requirement, build_class_constraints, check_requirements
from app.services.timetable_store import SlotDraft, write_base_slots

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Placement:
    subject_id: str
    teacher_id: str
    is_double: bool = False


@dataclass
class ClassGenerationResult:
    class_id: str
    term_id: str
    slots: list[TimetableSlot]
    conflicts: list[dict] = field(default_factory=list)
    backtracks: int = 0
    elapsed_ms: int = 0


class _BudgetExhausted(Exception):
    pass


class TimetableGenerator:
    """Backtracking search that fills one class's academic cells.

    Cells are visited day-major, period-minor. At each cell the subjects are
    tried in order of remaining periods over cells their teacher can still
    use (ties by subject id), and leaving the cell free is tried last.
    """

    def __init__(
        self,
        *,
        constraints: ClassConstraints,
        catalog: SlotCatalog,
        settings: GenerationSettings,
    ) -> None:
        self.constraints = constraints
        self.catalog = catalog
        self.settings = settings
        self.class_id = constraints.class_id
        self.cells: list[Cell] = catalog.academic_cells()

        self.requirements: list[Requirement] = sorted(constraints.requirements, key=lambda item: item.subject_id)
        self.teacher_of = {item.subject_id: item.teacher_id for item in self.requirements}
        self.backtracks = 0
        self._reset(cap_slack=0)

    def _reset(self, *, cap_slack: int) -> None:
        self.cap_slack = cap_slack
        self.daily_cap = {item.subject_id: self._resolve_daily_cap(item) for item in self.requirements}

        self.remaining_single = {item.subject_id: item.single_periods for item in self.requirements}
        self.double_left = {item.subject_id: item.double_units for item in self.requirements}
        self.double_day: dict[str, str] = {}
        self.daily = Counter()
        self.run_busy: set[tuple[str, Cell]] = set()
        self.assignment: dict[int, Placement] = {}

        self._attempt_backtracks = 0
        self._deepest_index = -1
        self._deepest_failure: dict | None = None

    def _resolve_daily_cap(self, requirement: Requirement) -> int:
        if self.settings.max_daily_periods_per_subject is not None:
            return self.settings.max_daily_periods_per_subject
        derived = self.catalog.default_daily_cap(requirement.periods_per_week)
        return min(derived + self.cap_slack, max(requirement.periods_per_week, derived))

    def _cap_slack_limit(self) -> int:
        """How far the derived daily caps can be loosened before they stop binding.

        An explicit `max_daily_periods_per_subject` is a hard limit and is
        never loosened.
        """
        if self.settings.max_daily_periods_per_subject is not None:
            return 0
        return max(
            (
                item.periods_per_week - self.catalog.default_daily_cap(item.periods_per_week)
                for item in self.requirements
            ),
            default=0,
        )

    def _day_cap(self, subject_id: str, day: str, *, optimistic: bool = False) -> int:
        cap = self.daily_cap[subject_id]
        double_here = self.double_day.get(subject_id) == day
        if optimistic and self.double_left[subject_id]:
            double_here = True
        return max(cap, 2) if double_here else cap

    def _remaining(self, subject_id: str) -> int:
        return self.remaining_single[subject_id] + 2 * self.double_left[subject_id]

    def _remaining_total(self) -> int:
        return sum(self._remaining(item.subject_id) for item in self.requirements)

    def _teacher_free(self, teacher_id: str, cell: Cell) -> bool:
        if cell in self.constraints.teacher_busy.get(teacher_id, set()):
            return False
        return (teacher_id, cell) not in self.run_busy

    def _open_cells(self, start: int) -> list[int]:
        return [index for index in range(start, len(self.cells)) if index not in self.assignment]

    def _teacher_cells(self, teacher_id: str, start: int) -> list[int]:
        return [index for index in self._open_cells(start) if self._teacher_free(teacher_id, self.cells[index])]

    def _largest_remaining(self, subject_ids: list[str] | None = None) -> str | None:
        candidates = subject_ids or [item.subject_id for item in self.requirements]
        pending = [(self._remaining(subject_id), subject_id) for subject_id in candidates if self._remaining(subject_id)]
        if not pending:
            return None
        return sorted(pending, key=lambda item: (-item[0], item[1]))[0][1]

    def _conflict(self, subject_id: str | None, reason: str) -> dict:
        return {
            "class_id": self.class_id,
            "subject_id": subject_id,
            "teacher_id": self.teacher_of.get(subject_id) if subject_id else None,
            "remaining": self._remaining(subject_id) if subject_id else 0,
            "reason": reason,
        }

    def _dead_end(self, start: int) -> dict | None:
        """Constraint propagation: can the remaining quota still fit from `start`?"""
        open_cells = self._open_cells(start)
        if self._remaining_total() > len(open_cells):
            return self._conflict(self._largest_remaining(), "not_enough_slots")

        by_teacher: dict[str, list[str]] = {}
        for item in self.requirements:
            if self._remaining(item.subject_id):
                by_teacher.setdefault(item.teacher_id, []).append(item.subject_id)

        for teacher_id in sorted(by_teacher):
            subject_ids = by_teacher[teacher_id]
            usable = self._teacher_cells(teacher_id, start)
            need = sum(self._remaining(subject_id) for subject_id in subject_ids)
            if need > len(usable):
                return self._conflict(self._largest_remaining(subject_ids), "teacher_unavailable")

            per_day = Counter(self.cells[index][0] for index in usable)
            for subject_id in subject_ids:
                capacity = sum(
                    min(max(self._day_cap(subject_id, day, optimistic=True) - self.daily[(subject_id, day)], 0), count)
                    for day, count in per_day.items()
                )
                if self._remaining(subject_id) > capacity:
                    return self._conflict(subject_id, "daily_limit")
        return None

    def _ranked_subjects(self, start: int) -> list[str]:
        ranked = []
        for item in self.requirements:
            remaining = self._remaining(item.subject_id)
            if not remaining:
                continue
            feasible = len(self._teacher_cells(item.teacher_id, start))
            if feasible:
                ranked.append((Fraction(remaining, feasible), item.subject_id))
        ranked.sort(key=lambda entry: (-entry[0], entry[1]))
        return [subject_id for _, subject_id in ranked]

    def _options(self, index: int) -> list[Placement | None]:
        day, period = self.cells[index]
        options: list[Placement | None] = []
        for subject_id in self._ranked_subjects(index):
            teacher_id = self.teacher_of[subject_id]
            if not self._teacher_free(teacher_id, (day, period)):
                continue
            used = self.daily[(subject_id, day)]
            if self.double_left[subject_id] and index + 1 < len(self.cells):
                next_cell = self.cells[index + 1]
                if (
                    next_cell[0] == day
                    and self.catalog.is_adjacent(day, period, next_cell[1])
                    and index + 1 not in self.assignment
                    and self._teacher_free(teacher_id, next_cell)
                    and used + 2 <= max(self.daily_cap[subject_id], 2)
                ):
                    options.append(Placement(subject_id, teacher_id, is_double=True))
            if self.remaining_single[subject_id] and used + 1 <= self._day_cap(subject_id, day):
                options.append(Placement(subject_id, teacher_id))
        options.append(None)
        return options

    def _place(self, index: int, placement: Placement) -> None:
        day, _ = self.cells[index]
        indices = [index, index + 1] if placement.is_double else [index]
        for position in indices:
            self.assignment[position] = placement
            self.run_busy.add((placement.teacher_id, self.cells[position]))
        self.daily[(placement.subject_id, day)] += len(indices)
        if placement.is_double:
            self.double_left[placement.subject_id] -= 1
            self.double_day[placement.subject_id] = day
        else:
            self.remaining_single[placement.subject_id] -= 1

    def _undo(self, index: int, placement: Placement) -> None:
        day, _ = self.cells[index]
        indices = [index, index + 1] if placement.is_double else [index]
        for position in indices:
            del self.assignment[position]
            self.run_busy.discard((placement.teacher_id, self.cells[position]))
        self.daily[(placement.subject_id, day)] -= len(indices)
        if placement.is_double:
            self.double_left[placement.subject_id] += 1
            del self.double_day[placement.subject_id]
        else:
            self.remaining_single[placement.subject_id] += 1

    def _record_failure(self, index: int, failure: dict) -> None:
        if index >= self._deepest_index:
            self._deepest_index = index
            self._deepest_failure = failure

    def _search(self, index: int) -> bool:
        while index < len(self.cells) and index in self.assignment:
            index += 1
        if self._remaining_total() == 0:
            return True
        if index >= len(self.cells):
            self._record_failure(index, self._conflict(self._largest_remaining(), "not_enough_slots"))
            return False

        failure = self._dead_end(index)
        if failure is not None:
            self._record_failure(index, failure)
            return False

        for option in self._options(index):
            if option is not None:
                self._place(index, option)
            if self._search(index + 1):
                return True
            if option is not None:
                self._undo(index, option)
            self.backtracks += 1
            self._attempt_backtracks += 1
            if self._attempt_backtracks > self.settings.max_backtracks:
                raise _BudgetExhausted

        self._record_failure(index, self._conflict(self._largest_remaining(), "no_teacher_available"))
        return False

    def _infeasible(self, message: str) -> InfeasibleScheduleError:
        failure = self._deepest_failure or self._conflict(self._largest_remaining(), "no_teacher_available")
        subject = failure.get("subject_id")
        text = f"{message}: could not place {subject} for class {self.class_id}" if subject else message
        return InfeasibleScheduleError(text, class_id=self.class_id, conflicts=[failure])

    def solve(self) -> list[SlotDraft]:
        errors = check_requirements(self.requirements, self.catalog)
        if errors:
            conflicts = [{"class_id": self.class_id, "reason": error} for error in errors]
            raise InfeasibleScheduleError(
                f"Requirements for class {self.class_id} cannot be scheduled: {errors[0]}",
                class_id=self.class_id,
                conflicts=conflicts,
            )

        # Derived daily caps only express a spreading preference: when the
        # capped search fails they are loosened one period at a time.
        slack_limit = self._cap_slack_limit()
        for cap_slack in range(slack_limit + 1):
            if cap_slack:
                self._reset(cap_slack=cap_slack)
                logger.info(
                    "Loosening daily subject caps | class_id=%s cap_slack=%s",
                    self.class_id,
                    cap_slack,
                )
            try:
                solved = self._search(0)
            except _BudgetExhausted:
                failure = self._infeasible(f"Backtracking budget of {self.settings.max_backtracks} exhausted")
                solved = False
            else:
                failure = None if solved else self._infeasible("No arrangement satisfies the requirements")
            if solved:
                break
            if cap_slack == slack_limit:
                raise failure

        drafts = [SlotDraft(day=day, period=period, kind=kind) for day, period, kind in self.catalog.fixed_cells()]
        for index in sorted(self.assignment):
            placement = self.assignment[index]
            day, period = self.cells[index]
            drafts.append(
                SlotDraft(
                    day=day,
                    period=period,
                    kind=SlotKind.period,
                    subject_id=placement.subject_id,
                    teacher_id=placement.teacher_id,
                    is_double_period=placement.is_double,
                )
            )
        return drafts


def _resolve_settings(settings: GenerationSettings | None) -> GenerationSettings:
    return settings or GenerationSettings.from_settings(get_settings())


def generate_for_class(
    db: Session,
    class_id: str,
    term_id: str,
    *,
    settings: GenerationSettings | None = None,
    catalog: SlotCatalog | None = None,
) -> ClassGenerationResult:
    catalog = catalog or build_catalog()
    settings = _resolve_settings(settings)
    section = db.get(ClassSection, class_id)
    if section is None:
        raise ResourceNotFoundError("Class", class_id)
    if section.term_id != term_id:
        raise SlotInvariantError(
            f"Class {class_id} does not belong to term {term_id}",
            details={"class_id": class_id, "term_id": term_id},
        )

    started = perf_counter()
    generator = TimetableGenerator(
        constraints=build_class_constraints(db, class_id, term_id),
        catalog=catalog,
        settings=settings,
    )
    try:
        drafts = generator.solve()
    except InfeasibleScheduleError as exc:
        logger.warning(
            "Timetable generation infeasible | class_id=%s term_id=%s backtracks=%s conflicts=%s",
            class_id,
            term_id,
            generator.backtracks,
            exc.conflicts,
        )
        raise

    rows = write_base_slots(db, class_id, term_id, drafts, catalog=catalog)
    report = ConflictService(db, term_id, catalog=catalog).detect_conflicts(class_id=class_id)
    elapsed_ms = int((perf_counter() - started) * 1000)
    logger.info(
        "Timetable generated | class_id=%s term_id=%s slots=%s backtracks=%s elapsed_ms=%s",
        class_id,
        term_id,
        len(rows),
        generator.backtracks,
        elapsed_ms,
    )
    return ClassGenerationResult(
        class_id=class_id,
        term_id=term_id,
        slots=rows,
        conflicts=[item.model_dump() for item in report.conflicts],
        backtracks=generator.backtracks,
        elapsed_ms=elapsed_ms,
    )


def ordered_classes(db: Session, term_id: str) -> list[ClassSection]:
    return list(
        db.execute(
            select(ClassSection)
            .where(ClassSection.term_id == term_id)
            .order_by(ClassSection.grade, ClassSection.section, ClassSection.id)
        ).scalars()
    )


def generate_for_all_classes(
    db: Session,
    term_id: str,
    *,
    settings: GenerationSettings | None = None,
    catalog: SlotCatalog | None = None,
) -> dict:
    """Generate every class of a term in (grade, section) order.

    Runs sequentially so each class sees the base slots committed for the
    classes before it. One class failing does not stop the batch.
    """
    catalog = catalog or build_catalog()
    settings = _resolve_settings(settings)
    success: list[str] = []
    failed: list[dict] = []
    for section in ordered_classes(db, term_id):
        try:
            generate_for_class(db, section.id, term_id, settings=settings, catalog=catalog)
        except AppError as exc:
            failed.append(
                {
                    "class_id": section.id,
                    "reason": exc.message,
                    "conflicts": exc.details.get("conflicts", []),
                }
            )
            continue
        success.append(section.id)
    logger.info(
        "Batch generation finished | term_id=%s success=%s failed=%s",
        term_id,
        len(success),
        len(failed),
    )
    return {"term_id": term_id, "success": success, "failed": failed}
