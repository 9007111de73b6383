import os

# Must be set before app.db.session builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_db, get_notifier
from app.db.base import Base
from app.main import app
from app.models.class_section import ClassSection
from app.models.subject_requirement import SubjectRequirement
from app.models.teacher import Teacher
from app.models.teacher_availability import TeacherAvailability
from app.models.term import Term
from app.models.timetable_slot import SlotKind, SlotSource, TimetableSlot
from app.services.calendar import SlotCatalog

TERM_START = date(2026, 1, 5)  # a Monday
TERM_END = date(2026, 4, 30)
MONDAY = date(2026, 1, 12)
TUESDAY = date(2026, 1, 13)


class RecordingNotifier:
    def __init__(self):
        self.notifications: list[tuple[str, dict]] = []
        self.alerts: list[dict] = []

    def notify(self, teacher_id, offer_summary):
        self.notifications.append((teacher_id, offer_summary))

    def alert(self, admin_id, slot, on_date, reason):
        self.alerts.append({"admin_id": admin_id, "slot": slot, "date": on_date, "reason": reason})

    def events_for(self, teacher_id):
        return [summary["event"] for recipient, summary in self.notifications if recipient == teacher_id]


class Seed:
    """Small builders for the academic setup the core reads."""

    def __init__(self, db):
        self.db = db

    def term(self, term_id="term-1", start=TERM_START, end=TERM_END, is_active=True):
        term = Term(id=term_id, name=f"Term {term_id}", start_date=start, end_date=end, is_active=is_active)
        self.db.add(term)
        self.db.commit()
        return term

    def class_section(self, class_id, grade=8, section="A", term_id="term-1"):
        row = ClassSection(id=class_id, term_id=term_id, grade=grade, section=section, name=f"{grade}{section}")
        self.db.add(row)
        self.db.commit()
        return row

    def teacher(self, teacher_id, subject_ids=(), substitute=False, active=True):
        row = Teacher(
            id=teacher_id,
            name=teacher_id.upper(),
            subject_ids=list(subject_ids),
            is_substitute_eligible=substitute,
            is_active=active,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def requirement(self, class_id, subject_id, teacher_id, periods, double=False):
        row = SubjectRequirement(
            class_id=class_id,
            subject_id=subject_id,
            teacher_id=teacher_id,
            periods_per_week=periods,
            requires_double_period=double,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def blocked(self, teacher_id, cells, term_id="term-1"):
        row = TeacherAvailability(
            teacher_id=teacher_id,
            term_id=term_id,
            blocked_slots=[{"day": day, "period": period} for day, period in cells],
        )
        self.db.add(row)
        self.db.commit()
        return row

    def base_slot(self, class_id, day, period, subject_id, teacher_id, term_id="term-1", double=False):
        row = TimetableSlot(
            class_id=class_id,
            term_id=term_id,
            day=day,
            period=period,
            kind=SlotKind.period,
            subject_id=subject_id,
            teacher_id=teacher_id,
            is_double_period=double,
            source=SlotSource.manual,
        )
        self.db.add(row)
        self.db.commit()
        return row


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def seed(db_session):
    return Seed(db_session)


@pytest.fixture()
def catalog():
    return SlotCatalog(
        working_days=("Monday", "Tuesday", "Wednesday", "Thursday", "Friday"),
        periods_per_day=8,
        assembly_period=1,
        break_period=6,
    )


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def client(session_factory, notifier):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
