from datetime import date

from app.services.conflict_service import ConflictService
from app.services.timetable_store import SlotRef, apply_override


def _setup(seed):
    seed.term()
    seed.class_section("8a")
    seed.class_section("7a", grade=7)
    seed.teacher("t1", ["math"])
    seed.teacher("t2", ["english"])


def test_clean_term_reports_nothing(seed, db_session, catalog):
    _setup(seed)
    seed.base_slot("8a", "Monday", 2, "math", "t1")
    seed.base_slot("7a", "Monday", 3, "math", "t1")

    report = ConflictService(db_session, "term-1", catalog=catalog).detect_conflicts()

    assert report.term_id == "term-1"
    assert report.conflicts == []


def test_detect_teacher_double_booking(seed, db_session, catalog):
    _setup(seed)
    first = seed.base_slot("8a", "Monday", 2, "math", "t1")
    second = seed.base_slot("7a", "Monday", 2, "math", "t1")

    report = ConflictService(db_session, "term-1", catalog=catalog).detect_conflicts()

    assert len(report.conflicts) == 1
    conflict = report.conflicts[0]
    assert conflict.conflict_type == "teacher_conflict"
    assert conflict.teacher_id == "t1"
    assert (conflict.day, conflict.period) == ("Monday", 2)
    assert conflict.class_ids == ["7a", "8a"]
    assert conflict.affected_slots == sorted([first.id, second.id])
    assert "Teacher t1" in conflict.description


def test_class_filter_limits_report(seed, db_session, catalog):
    _setup(seed)
    seed.class_section("6a", grade=6)
    seed.base_slot("8a", "Monday", 2, "math", "t1")
    seed.base_slot("7a", "Monday", 2, "math", "t1")
    seed.base_slot("6a", "Tuesday", 2, "english", "t2")

    service = ConflictService(db_session, "term-1", catalog=catalog)

    assert len(service.detect_conflicts(class_id="8a").conflicts) == 1
    assert service.detect_conflicts(class_id="6a").conflicts == []


def test_detect_broken_double_period(seed, db_session, catalog):
    _setup(seed)
    seed.base_slot("8a", "Monday", 5, "math", "t1", double=True)
    seed.base_slot("8a", "Monday", 7, "math", "t1", double=True)

    report = ConflictService(db_session, "term-1", catalog=catalog).detect_conflicts()

    assert [item.conflict_type for item in report.conflicts] == ["double_period"]
    assert report.conflicts[0].class_ids == ["8a"]


def test_detect_period_on_fixed_slot(seed, db_session, catalog):
    _setup(seed)
    seed.base_slot("8a", "Monday", 1, "math", "t1")

    report = ConflictService(db_session, "term-1", catalog=catalog).detect_conflicts()

    assert [item.conflict_type for item in report.conflicts] == ["slot_invariant"]
    assert report.conflicts[0].period == 1


def test_overrides_are_not_conflicts(seed, db_session, catalog):
    _setup(seed)
    seed.teacher("t3", ["math"])
    seed.base_slot("8a", "Monday", 2, "math", "t1")
    seed.base_slot("7a", "Monday", 2, "math", "t3")
    apply_override(db_session, SlotRef("8a", "term-1", "Monday", 2), date(2026, 1, 12), "t3", catalog=catalog)
    db_session.commit()

    report = ConflictService(db_session, "term-1", catalog=catalog).detect_conflicts()

    assert report.conflicts == []
