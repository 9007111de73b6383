from datetime import date

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import OverrideConflictError, SlotInvariantError, StoreWriteError
from app.models.timetable_slot import SlotKind, SlotSource
from app.services.timetable_store import (
    SlotDraft,
    SlotRef,
    apply_override,
    get_base_slots,
    get_effective_slots,
    get_teacher_effective_slots,
    remove_override,
    upsert_slot,
    weekly_summary,
    write_base_slots,
)

MONDAY = date(2026, 1, 12)
TUESDAY = date(2026, 1, 13)


@pytest.fixture()
def setup(seed):
    seed.term()
    seed.class_section("8a")
    seed.class_section("7a", grade=7)
    seed.teacher("t1", ["math"])
    seed.teacher("t2", ["math", "english"])
    seed.teacher("t3", ["english"])
    return seed


def _fixed(catalog):
    return [SlotDraft(day=day, period=period, kind=kind) for day, period, kind in catalog.fixed_cells()]


def _math(day, period, teacher_id="t1", double=False):
    return SlotDraft(day=day, period=period, subject_id="math", teacher_id=teacher_id, is_double_period=double)


def test_write_base_slots_replaces_pattern(setup, db_session, catalog):
    write_base_slots(db_session, "8a", "term-1", _fixed(catalog) + [_math("Monday", 2)], catalog=catalog)
    rows = write_base_slots(db_session, "8a", "term-1", _fixed(catalog) + [_math("Tuesday", 3)], catalog=catalog)

    stored = get_base_slots(db_session, "8a", "term-1", catalog=catalog)
    assert len(stored) == len(rows) == 11
    periods = [(slot.day, slot.period) for slot in stored if slot.kind == SlotKind.period]
    assert periods == [("Tuesday", 3)]
    assert all(slot.source == SlotSource.generator for slot in stored)


def test_rejects_cell_outside_calendar(setup, db_session, catalog):
    with pytest.raises(SlotInvariantError):
        write_base_slots(db_session, "8a", "term-1", [_math("Saturday", 2)], catalog=catalog)
    with pytest.raises(SlotInvariantError):
        write_base_slots(db_session, "8a", "term-1", [_math("Monday", 9)], catalog=catalog)


def test_rejects_subject_on_fixed_slot(setup, db_session, catalog):
    with pytest.raises(SlotInvariantError) as exc_info:
        write_base_slots(db_session, "8a", "term-1", [_math("Monday", 6)], catalog=catalog)

    assert "break" in exc_info.value.message


def test_rejects_duplicate_and_half_filled_cells(setup, db_session, catalog):
    with pytest.raises(SlotInvariantError):
        write_base_slots(db_session, "8a", "term-1", [_math("Monday", 2), _math("Monday", 2, "t2")], catalog=catalog)
    with pytest.raises(SlotInvariantError):
        write_base_slots(
            db_session,
            "8a",
            "term-1",
            [SlotDraft(day="Monday", period=2, subject_id="math")],
            catalog=catalog,
        )


def test_rejects_double_periods_that_are_not_adjacent(setup, db_session, catalog):
    # Periods 5 and 7 straddle the break
    drafts = [_math("Monday", 5, double=True), _math("Monday", 7, double=True)]

    with pytest.raises(SlotInvariantError) as exc_info:
        write_base_slots(db_session, "8a", "term-1", drafts, catalog=catalog)

    assert exc_info.value.details["rule"] == "double_period"


def test_accepts_adjacent_double_period(setup, db_session, catalog):
    drafts = [_math("Monday", 2, double=True), _math("Monday", 3, double=True)]

    rows = write_base_slots(db_session, "8a", "term-1", drafts, catalog=catalog)

    assert [row.is_double_period for row in rows] == [True, True]


def test_rejects_teacher_clash_with_other_class(setup, db_session, catalog):
    setup.base_slot("7a", "Monday", 2, "math", "t1")

    with pytest.raises(SlotInvariantError) as exc_info:
        write_base_slots(db_session, "8a", "term-1", [_math("Monday", 2)], catalog=catalog)

    assert exc_info.value.details["class_id"] == "7a"
    assert get_base_slots(db_session, "8a", "term-1", catalog=catalog) == []


def test_failed_commit_rolls_back_whole_write(setup, db_session, catalog, monkeypatch):
    write_base_slots(db_session, "8a", "term-1", [_math("Monday", 2)], catalog=catalog)

    def failing_commit():
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(db_session, "commit", failing_commit)
    with pytest.raises(StoreWriteError):
        write_base_slots(db_session, "8a", "term-1", [_math("Tuesday", 4)], catalog=catalog)
    monkeypatch.undo()

    stored = get_base_slots(db_session, "8a", "term-1", catalog=catalog)
    assert [(slot.day, slot.period) for slot in stored] == [("Monday", 2)]


def test_rewrite_drops_overrides_whose_period_changed(setup, db_session, catalog):
    write_base_slots(db_session, "8a", "term-1", [_math("Monday", 2), _math("Monday", 3)], catalog=catalog)
    apply_override(db_session, SlotRef("8a", "term-1", "Monday", 2), MONDAY, "t2", catalog=catalog)
    apply_override(db_session, SlotRef("8a", "term-1", "Monday", 3), MONDAY, "t2", catalog=catalog)
    db_session.commit()

    english = SlotDraft(day="Monday", period=2, subject_id="english", teacher_id="t3")
    write_base_slots(db_session, "8a", "term-1", [english, _math("Monday", 3)], catalog=catalog)

    effective = get_effective_slots(db_session, "8a", MONDAY, catalog=catalog)
    assert [(slot.period, slot.subject_id, slot.teacher_id) for slot in effective] == [
        (2, "english", "t3"),
        (3, "math", "t2"),
    ]
    t3_slots = get_teacher_effective_slots(db_session, "t3", "term-1", MONDAY, catalog=catalog)
    assert [(slot.class_id, slot.period) for slot in t3_slots] == [("8a", 2)]


def test_override_changes_effective_view_only(setup, db_session, catalog):
    setup.base_slot("8a", "Monday", 2, "math", "t1")
    ref = SlotRef("8a", "term-1", "Monday", 2)

    apply_override(db_session, ref, MONDAY, "t2", catalog=catalog)
    db_session.commit()

    effective = get_effective_slots(db_session, "8a", MONDAY, catalog=catalog)
    assert [(slot.period, slot.teacher_id) for slot in effective] == [(2, "t2")]
    assert effective[0].subject_id == "math"
    base = get_base_slots(db_session, "8a", "term-1", catalog=catalog)
    assert [slot.teacher_id for slot in base] == ["t1"]

    next_week = get_effective_slots(db_session, "8a", date(2026, 1, 19), catalog=catalog)
    assert [slot.teacher_id for slot in next_week] == ["t1"]


def test_override_is_idempotent_for_same_teacher(setup, db_session, catalog):
    setup.base_slot("8a", "Monday", 2, "math", "t1")
    ref = SlotRef("8a", "term-1", "Monday", 2)

    first = apply_override(db_session, ref, MONDAY, "t2", catalog=catalog)
    second = apply_override(db_session, ref, MONDAY, "t2", catalog=catalog)

    assert first.id == second.id


def test_override_for_other_teacher_conflicts(setup, db_session, catalog):
    setup.base_slot("8a", "Monday", 2, "math", "t1")
    ref = SlotRef("8a", "term-1", "Monday", 2)
    apply_override(db_session, ref, MONDAY, "t2", catalog=catalog)

    with pytest.raises(OverrideConflictError) as exc_info:
        apply_override(db_session, ref, MONDAY, "t3", catalog=catalog)

    assert exc_info.value.status_code == 409
    assert exc_info.value.details["existing_teacher_id"] == "t2"


def test_override_requires_matching_weekday_and_term(setup, db_session, catalog):
    setup.base_slot("8a", "Monday", 2, "math", "t1")
    ref = SlotRef("8a", "term-1", "Monday", 2)

    with pytest.raises(SlotInvariantError):
        apply_override(db_session, ref, TUESDAY, "t2", catalog=catalog)
    with pytest.raises(SlotInvariantError):
        apply_override(db_session, ref, date(2026, 6, 1), "t2", catalog=catalog)
    with pytest.raises(SlotInvariantError):
        apply_override(db_session, SlotRef("8a", "term-1", "Monday", 3), MONDAY, "t2", catalog=catalog)


def test_remove_override_restores_base(setup, db_session, catalog):
    setup.base_slot("8a", "Monday", 2, "math", "t1")
    ref = SlotRef("8a", "term-1", "Monday", 2)
    apply_override(db_session, ref, MONDAY, "t2", catalog=catalog)

    assert remove_override(db_session, ref, MONDAY) is True
    assert remove_override(db_session, ref, MONDAY) is False
    db_session.commit()

    effective = get_effective_slots(db_session, "8a", MONDAY, catalog=catalog)
    assert [slot.teacher_id for slot in effective] == ["t1"]


def test_teacher_effective_slots_follow_overrides(setup, db_session, catalog):
    setup.base_slot("8a", "Monday", 2, "math", "t1")
    setup.base_slot("7a", "Monday", 3, "math", "t1")
    apply_override(db_session, SlotRef("8a", "term-1", "Monday", 2), MONDAY, "t2", catalog=catalog)
    db_session.commit()

    t1_slots = get_teacher_effective_slots(db_session, "t1", "term-1", MONDAY, catalog=catalog)
    t2_slots = get_teacher_effective_slots(db_session, "t2", "term-1", MONDAY, catalog=catalog)

    assert [(slot.class_id, slot.period) for slot in t1_slots] == [("7a", 3)]
    assert [(slot.class_id, slot.period) for slot in t2_slots] == [("8a", 2)]
    assert get_teacher_effective_slots(db_session, "t1", "term-1", date(2026, 1, 17), catalog=catalog) == []


def test_upsert_slot_edits_base_cell(setup, db_session, catalog):
    setup.base_slot("8a", "Monday", 2, "math", "t1")
    ref = SlotRef("8a", "term-1", "Monday", 2)

    record = upsert_slot(
        db_session,
        ref,
        SlotDraft(day="Monday", period=2, subject_id="english", teacher_id="t3"),
        catalog=catalog,
    )

    assert record.subject_id == "english"
    assert record.source == SlotSource.manual
    stored = get_base_slots(db_session, "8a", "term-1", catalog=catalog)
    assert [(slot.subject_id, slot.teacher_id) for slot in stored] == [("english", "t3")]


def test_upsert_slot_rejects_clash(setup, db_session, catalog):
    setup.base_slot("7a", "Monday", 3, "math", "t1")

    with pytest.raises(SlotInvariantError):
        upsert_slot(
            db_session,
            SlotRef("8a", "term-1", "Monday", 3),
            _math("Monday", 3),
            catalog=catalog,
        )


def test_dated_upsert_shares_override_rules(setup, db_session, catalog):
    setup.base_slot("8a", "Monday", 2, "math", "t1")
    ref = SlotRef("8a", "term-1", "Monday", 2)

    record = upsert_slot(db_session, ref, _math("Monday", 2, "t2"), override_date=MONDAY, catalog=catalog)

    assert record.override_date == MONDAY
    assert record.source == SlotSource.manual
    with pytest.raises(OverrideConflictError):
        upsert_slot(db_session, ref, _math("Monday", 2, "t3"), override_date=MONDAY, catalog=catalog)


def test_weekly_summary_counts_subjects(setup, db_session, catalog):
    write_base_slots(
        db_session,
        "8a",
        "term-1",
        _fixed(catalog) + [_math("Monday", 2), _math("Tuesday", 2), SlotDraft("Monday", 3, subject_id="english", teacher_id="t3")],
        catalog=catalog,
    )

    summary = weekly_summary(db_session, "8a", "term-1", catalog=catalog)

    assert summary["subject_counts"] == {"english": 1, "math": 2}
    assert summary["academic_slots"] == 30
    assert summary["filled_slots"] == 3
    assert summary["free_slots"] == 27
    assert list(summary["days"]) == ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
