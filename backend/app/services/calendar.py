"""Static day x period layout of a term.

Pure data built from settings: which cells are fixed (assembly, break,
anthem), which are academic and which academic cells are adjacent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
import math

from app.core.config import Settings, get_settings
from app.models.absence_event import DayPortion
from app.models.timetable_slot import SlotKind


Cell = tuple[str, int]


def parse_anthem_slots(values: list[str]) -> frozenset[Cell]:
    cells: set[Cell] = set()
    for raw in values:
        day, sep, period = raw.partition(":")
        if not sep or not period.strip().isdigit():
            raise ValueError(f"Invalid anthem slot '{raw}', expected 'Day:period'")
        cells.add((day.strip().title(), int(period)))
    return frozenset(cells)


@dataclass(frozen=True)
class SlotCatalog:
    working_days: tuple[str, ...]
    periods_per_day: int
    assembly_period: int | None = 1
    break_period: int | None = 6
    anthem_slots: frozenset[Cell] = field(default_factory=frozenset)
    period_times: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.working_days:
            raise ValueError("At least one working day is required")
        if self.periods_per_day < 1:
            raise ValueError("periods_per_day must be positive")
        for name, value in (("assembly_period", self.assembly_period), ("break_period", self.break_period)):
            if value is not None and not 1 <= value <= self.periods_per_day:
                raise ValueError(f"{name} {value} is outside 1..{self.periods_per_day}")

    @property
    def periods(self) -> range:
        return range(1, self.periods_per_day + 1)

    def day_index(self, day: str) -> int:
        return self.working_days.index(day)

    def has_cell(self, day: str, period: int) -> bool:
        return day in self.working_days and 1 <= period <= self.periods_per_day

    def fixed_kind(self, day: str, period: int) -> SlotKind | None:
        if period == self.assembly_period:
            return SlotKind.assembly
        if period == self.break_period:
            return SlotKind.break_
        if (day, period) in self.anthem_slots:
            return SlotKind.anthem
        return None

    def is_academic(self, day: str, period: int) -> bool:
        return self.has_cell(day, period) and self.fixed_kind(day, period) is None

    def all_cells(self) -> list[Cell]:
        return [(day, period) for day in self.working_days for period in self.periods]

    def fixed_cells(self) -> list[tuple[str, int, SlotKind]]:
        cells = []
        for day, period in self.all_cells():
            kind = self.fixed_kind(day, period)
            if kind is not None:
                cells.append((day, period, kind))
        return cells

    def academic_cells(self) -> list[Cell]:
        return [cell for cell in self.all_cells() if self.fixed_kind(*cell) is None]

    @property
    def academic_slot_count(self) -> int:
        return len(self.academic_cells())

    def is_adjacent(self, day: str, first: int, second: int) -> bool:
        return second == first + 1 and self.is_academic(day, first) and self.is_academic(day, second)

    def adjacent_pairs(self) -> list[tuple[str, int, int]]:
        return [
            (day, period, period + 1)
            for day in self.working_days
            for period in self.periods
            if self.is_adjacent(day, period, period + 1)
        ]

    def day_for_date(self, value: date) -> str | None:
        name = value.strftime("%A")
        return name if name in self.working_days else None

    def working_dates(self, start: date, end: date) -> list[date]:
        dates = []
        current = start
        while current <= end:
            if self.day_for_date(current) is not None:
                dates.append(current)
            current += timedelta(days=1)
        return dates

    def periods_for_portion(self, portion: DayPortion) -> list[int]:
        if portion == DayPortion.full_day:
            return list(self.periods)
        if self.break_period is not None:
            first = [period for period in self.periods if period < self.break_period]
            second = [period for period in self.periods if period > self.break_period]
        else:
            middle = math.ceil(self.periods_per_day / 2)
            first = [period for period in self.periods if period <= middle]
            second = [period for period in self.periods if period > middle]
        return first if portion == DayPortion.first_half else second

    def default_daily_cap(self, periods_per_week: int) -> int:
        return max(1, math.ceil(periods_per_week / len(self.working_days)))

    def period_time(self, period: int) -> tuple[str, str] | None:
        if not 1 <= period <= len(self.period_times):
            return None
        start, _, end = self.period_times[period - 1].partition("-")
        return start.strip(), end.strip()

    def describe(self) -> list[dict]:
        rows = []
        for period in self.periods:
            times = self.period_time(period)
            rows.append(
                {
                    "period": period,
                    "start_time": times[0] if times else None,
                    "end_time": times[1] if times else None,
                    "kinds": {
                        day: (self.fixed_kind(day, period) or SlotKind.period).value
                        for day in self.working_days
                    },
                }
            )
        return rows


def build_catalog(settings: Settings | None = None) -> SlotCatalog:
    settings = settings or get_settings()
    return SlotCatalog(
        working_days=tuple(day.strip().title() for day in settings.working_days),
        periods_per_day=settings.periods_per_day,
        assembly_period=settings.assembly_period,
        break_period=settings.break_period,
        anthem_slots=parse_anthem_slots(settings.anthem_slots),
        period_times=tuple(settings.period_times),
    )
