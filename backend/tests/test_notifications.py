from datetime import date

from sqlalchemy import select

from app.models.activity_log import ActivityLog
from app.models.absence_event import LeaveType
from app.models.notification import Notification, NotificationType
from app.services.notifications import DatabaseNotificationGateway, notify_users
from app.services.replacement_resolver import ReplacementResolver

MONDAY = date(2026, 1, 12)


def test_notify_users_dedupes_and_excludes(db_session):
    rows = notify_users(
        db_session,
        user_ids=["t1", "t2", "t1", "", "admin"],
        title="Timetable updated",
        message="New timetable",
        notification_type=NotificationType.timetable,
        exclude_user_id="admin",
    )

    assert [row.user_id for row in rows] == ["t1", "t2"]
    assert all(row.notification_type == NotificationType.timetable for row in rows)


def test_database_gateway_records_offer_and_alert(seed, db_session, catalog):
    seed.term()
    seed.class_section("8a")
    seed.teacher("t1", ["math"])
    seed.teacher("t2", ["math"])
    seed.base_slot("8a", "Monday", 2, "math", "t1")
    resolver = ReplacementResolver(db_session, notifier=DatabaseNotificationGateway(db_session), catalog=catalog)

    event = resolver.record_absence(
        teacher_id="t1",
        term_id="term-1",
        start_date=MONDAY,
        end_date=MONDAY,
        leave_type=LeaveType.personal,
    )
    offer = resolver.offers_for_teacher("t2")[0]
    resolver.decline_offer(offer.id)

    notes = list(db_session.execute(select(Notification).order_by(Notification.user_id)).scalars())
    assert [(note.user_id, note.notification_type) for note in notes] == [
        ("admin", NotificationType.alert),
        ("t2", NotificationType.replacement),
    ]
    assert notes[1].title == "Substitution request"
    assert "math for class 8a on Monday period 2" in notes[1].message
    assert notes[0].payload["reason"] == "no_eligible_candidate"

    actions = set(db_session.execute(select(ActivityLog.action)).scalars())
    assert {"absence.record", "replacement.offer.decline", "replacement.unfilled"} <= actions
    assert event.id
