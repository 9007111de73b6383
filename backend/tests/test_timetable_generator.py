from collections import Counter

import pytest

from app.core.exceptions import InfeasibleScheduleError
from app.models.timetable_slot import SlotKind
from app.schemas.generator import GenerationSettings
from app.services.conflict_service import ConflictService
from app.services.constraints import ClassConstraints, Requirement
from app.services.timetable_generator import TimetableGenerator, generate_for_all_classes, generate_for_class
from app.services.timetable_store import get_base_slots


def _seed_8a(seed):
    seed.term()
    seed.class_section("8a")
    seed.teacher("t-math", ["math"])
    seed.teacher("t-eng", ["english"])
    seed.teacher("t-sci", ["science"])
    seed.requirement("8a", "math", "t-math", 5)
    seed.requirement("8a", "english", "t-eng", 4)
    seed.requirement("8a", "science", "t-sci", 4)


def _periods(slots):
    return [slot for slot in slots if slot.kind == SlotKind.period]


def test_class_8a_places_all_thirteen_periods(seed, db_session, catalog):
    _seed_8a(seed)

    result = generate_for_class(db_session, "8a", "term-1", catalog=catalog)

    periods = _periods(result.slots)
    assert Counter(slot.subject_id for slot in periods) == {"math": 5, "english": 4, "science": 4}
    assert all(slot.teacher_id for slot in periods)
    assert len([slot for slot in result.slots if slot.kind == SlotKind.assembly]) == 5
    assert len([slot for slot in result.slots if slot.kind == SlotKind.break_]) == 5
    assert result.conflicts == []
    assert ConflictService(db_session, "term-1", catalog=catalog).detect_conflicts().conflicts == []

    stored = get_base_slots(db_session, "8a", "term-1", catalog=catalog)
    assert len(stored) == len(result.slots)


def test_subjects_spread_across_days_by_default(seed, db_session, catalog):
    _seed_8a(seed)

    result = generate_for_class(db_session, "8a", "term-1", catalog=catalog)

    per_day = Counter((slot.subject_id, slot.day) for slot in _periods(result.slots))
    assert max(per_day.values()) == 1


def test_generation_is_deterministic(catalog):
    constraints = ClassConstraints(
        class_id="8a",
        term_id="term-1",
        requirements=[
            Requirement("science", "t-sci", 4, requires_double_period=True),
            Requirement("math", "t-math", 6),
            Requirement("english", "t-eng", 5),
            Requirement("art", "t-math", 2),
        ],
        teacher_busy={"t-eng": {("Monday", 2), ("Tuesday", 3)}},
    )
    settings = GenerationSettings()

    first = TimetableGenerator(constraints=constraints, catalog=catalog, settings=settings).solve()
    second = TimetableGenerator(constraints=constraints, catalog=catalog, settings=settings).solve()

    assert first == second


def test_double_period_occupies_adjacent_pair(seed, db_session, catalog):
    _seed_8a(seed)
    seed.teacher("t-lab", ["chemistry"])
    seed.requirement("8a", "chemistry", "t-lab", 4, double=True)

    result = generate_for_class(db_session, "8a", "term-1", catalog=catalog)

    doubles = [slot for slot in result.slots if slot.is_double_period]
    assert len(doubles) == 2
    first, second = sorted(doubles, key=lambda slot: slot.period)
    assert first.day == second.day
    assert catalog.is_adjacent(first.day, first.period, second.period)
    assert {first.subject_id, second.subject_id} == {"chemistry"}
    assert first.teacher_id == second.teacher_id == "t-lab"
    assert Counter(slot.subject_id for slot in _periods(result.slots))["chemistry"] == 4


def test_blocked_cells_are_respected(seed, db_session, catalog):
    _seed_8a(seed)
    blocked = [("Monday", period) for period in range(2, 6)] + [("Tuesday", period) for period in range(2, 5)]
    seed.blocked("t-math", blocked)

    result = generate_for_class(db_session, "8a", "term-1", catalog=catalog)

    math_cells = {(slot.day, slot.period) for slot in _periods(result.slots) if slot.subject_id == "math"}
    assert len(math_cells) == 5
    assert not math_cells & set(blocked)


def _math_teacher_away_monday_and_tuesday(catalog) -> ClassConstraints:
    away = {cell for cell in catalog.academic_cells() if cell[0] in {"Monday", "Tuesday"}}
    return ClassConstraints(
        class_id="8a",
        term_id="term-1",
        requirements=[Requirement("math", "t1", 5)],
        teacher_busy={"t1": away},
    )


def test_daily_spread_gives_way_when_teacher_is_away_some_days(catalog):
    generator = TimetableGenerator(
        constraints=_math_teacher_away_monday_and_tuesday(catalog),
        catalog=catalog,
        settings=GenerationSettings(),
    )

    drafts = generator.solve()

    math = [draft for draft in drafts if draft.subject_id == "math"]
    per_day = Counter(draft.day for draft in math)
    assert len(math) == 5
    assert set(per_day) <= {"Wednesday", "Thursday", "Friday"}
    assert max(per_day.values()) == 2


def test_explicit_daily_cap_stays_hard(catalog):
    generator = TimetableGenerator(
        constraints=_math_teacher_away_monday_and_tuesday(catalog),
        catalog=catalog,
        settings=GenerationSettings(max_daily_periods_per_subject=1),
    )

    with pytest.raises(InfeasibleScheduleError) as exc_info:
        generator.solve()

    assert exc_info.value.conflicts[0]["reason"] == "daily_limit"


def test_shared_teacher_is_never_double_booked(seed, db_session, catalog):
    _seed_8a(seed)
    seed.class_section("8b", section="B")
    seed.class_section("7a", grade=7)
    for class_id in ("8b", "7a"):
        seed.requirement(class_id, "math", "t-math", 5)
        seed.requirement(class_id, "english", "t-eng", 4)

    summary = generate_for_all_classes(db_session, "term-1", catalog=catalog)

    assert summary["success"] == ["7a", "8a", "8b"]
    assert summary["failed"] == []
    report = ConflictService(db_session, "term-1", catalog=catalog).detect_conflicts()
    assert report.conflicts == []
    math_cells = []
    for class_id in ("7a", "8a", "8b"):
        math_cells.extend(
            (slot.day, slot.period)
            for slot in get_base_slots(db_session, class_id, "term-1", catalog=catalog)
            if slot.teacher_id == "t-math"
        )
    assert len(math_cells) == len(set(math_cells)) == 15


def test_quota_overflow_is_infeasible_and_writes_nothing(seed, db_session, catalog):
    seed.term()
    seed.class_section("8a")
    seed.teacher("t1", ["math"])
    seed.teacher("t2", ["english"])
    seed.requirement("8a", "math", "t1", 16)
    seed.requirement("8a", "english", "t2", 15)

    with pytest.raises(InfeasibleScheduleError) as exc_info:
        generate_for_class(db_session, "8a", "term-1", catalog=catalog)

    assert exc_info.value.class_id == "8a"
    assert exc_info.value.status_code == 422
    assert get_base_slots(db_session, "8a", "term-1", catalog=catalog) == []


def test_unavailable_teacher_names_the_subject(seed, db_session, catalog):
    _seed_8a(seed)
    free = {("Monday", 2), ("Tuesday", 2)}
    seed.blocked("t-sci", [cell for cell in catalog.academic_cells() if cell not in free])

    with pytest.raises(InfeasibleScheduleError) as exc_info:
        generate_for_class(db_session, "8a", "term-1", catalog=catalog)

    conflict = exc_info.value.conflicts[0]
    assert conflict["subject_id"] == "science"
    assert conflict["teacher_id"] == "t-sci"
    assert "science" in exc_info.value.message


def test_teacher_short_of_free_cells_is_infeasible(catalog):
    free = {("Monday", 2), ("Monday", 3), ("Tuesday", 2), ("Wednesday", 2)}
    busy = {cell for cell in catalog.academic_cells() if cell not in free}
    constraints = ClassConstraints(
        class_id="8a",
        term_id="term-1",
        requirements=[Requirement("math", "t1", 3), Requirement("physics", "t1", 2)],
        teacher_busy={"t1": busy},
    )
    generator = TimetableGenerator(
        constraints=constraints,
        catalog=catalog,
        settings=GenerationSettings(),
    )

    with pytest.raises(InfeasibleScheduleError) as exc_info:
        generator.solve()

    assert exc_info.value.conflicts[0]["reason"] == "teacher_unavailable"
    assert exc_info.value.conflicts[0]["teacher_id"] == "t1"


def test_failed_regeneration_keeps_previous_timetable(seed, db_session, catalog):
    _seed_8a(seed)
    generate_for_class(db_session, "8a", "term-1", catalog=catalog)
    before = [(slot.day, slot.period, slot.subject_id) for slot in get_base_slots(db_session, "8a", "term-1", catalog=catalog)]

    seed.requirement("8a", "history", "t-eng", 20)
    with pytest.raises(InfeasibleScheduleError):
        generate_for_class(db_session, "8a", "term-1", catalog=catalog)

    after = [(slot.day, slot.period, slot.subject_id) for slot in get_base_slots(db_session, "8a", "term-1", catalog=catalog)]
    assert after == before


def test_batch_continues_past_infeasible_class(seed, db_session, catalog):
    _seed_8a(seed)
    seed.class_section("7a", grade=7)
    seed.requirement("7a", "math", "t-math", 31)

    summary = generate_for_all_classes(db_session, "term-1", catalog=catalog)

    assert summary["success"] == ["8a"]
    assert [item["class_id"] for item in summary["failed"]] == ["7a"]
    assert summary["failed"][0]["reason"]


def test_daily_cap_override(seed, db_session, catalog):
    _seed_8a(seed)

    result = generate_for_class(
        db_session,
        "8a",
        "term-1",
        settings=GenerationSettings(max_daily_periods_per_subject=3),
        catalog=catalog,
    )

    per_day = Counter((slot.subject_id, slot.day) for slot in _periods(result.slots))
    assert max(per_day.values()) <= 3
    assert sum(per_day.values()) == 13
