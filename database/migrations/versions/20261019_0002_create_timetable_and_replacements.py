"""create timetable slots and replacement workflow tables

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None

ENUMS = {
    "timetable_slot_kind": ("period", "assembly", "break", "anthem"),
    "timetable_slot_source": ("generator", "manual", "replacement"),
    "absence_leave_type": ("sick", "casual", "academic", "personal", "ad_hoc"),
    "absence_day_portion": ("full_day", "first_half", "second_half"),
    "absence_status": ("active", "cancelled"),
    "replacement_workflow_status": ("detected", "offering", "accepted", "unfilled", "cancelled"),
    "replacement_offer_status": ("offered", "accepted", "declined", "expired", "cancelled"),
    "notification_type": ("replacement", "alert", "timetable", "system"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _create_indexes(inspector, table_name: str, index_specs: list[tuple[str, list[str]]]) -> None:
    existing_indexes = {item["name"] for item in inspector.get_indexes(table_name)}
    for index_name, columns in index_specs:
        if index_name in existing_indexes:
            continue
        op.create_index(index_name, table_name, columns, unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    for name in ENUMS:
        _enum(name).create(bind, checkfirst=True)

    if not inspector.has_table("timetable_slots"):
        op.create_table(
            "timetable_slots",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("class_id", sa.String(length=36), nullable=False),
            sa.Column("term_id", sa.String(length=36), nullable=False),
            sa.Column("day", sa.String(length=20), nullable=False),
            sa.Column("period", sa.Integer(), nullable=False),
            sa.Column("kind", _enum("timetable_slot_kind"), nullable=False),
            sa.Column("subject_id", sa.String(length=50), nullable=True),
            sa.Column("teacher_id", sa.String(length=36), nullable=True),
            sa.Column("is_double_period", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("override_date", sa.Date(), nullable=True),
            sa.Column("source", _enum("timetable_slot_source"), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "class_id",
                "term_id",
                "day",
                "period",
                "override_date",
                name="uq_timetable_slots_identity",
            ),
        )
    _create_indexes(
        sa.inspect(bind),
        "timetable_slots",
        [
            ("ix_timetable_slots_class_id", ["class_id"]),
            ("ix_timetable_slots_term_id", ["term_id"]),
            ("ix_timetable_slots_teacher_id", ["teacher_id"]),
            ("ix_timetable_slots_override_date", ["override_date"]),
            ("ix_timetable_slots_term_day_period", ["term_id", "day", "period"]),
        ],
    )

    if not inspector.has_table("absence_events"):
        op.create_table(
            "absence_events",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("teacher_id", sa.String(length=36), nullable=False),
            sa.Column("term_id", sa.String(length=36), nullable=False),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            sa.Column("leave_type", _enum("absence_leave_type"), nullable=False),
            sa.Column("day_portion", _enum("absence_day_portion"), nullable=False),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("status", _enum("absence_status"), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(
        sa.inspect(bind),
        "absence_events",
        [
            ("ix_absence_events_teacher_id", ["teacher_id"]),
            ("ix_absence_events_term_id", ["term_id"]),
            ("ix_absence_events_status", ["status"]),
        ],
    )

    if not inspector.has_table("replacement_workflows"):
        op.create_table(
            "replacement_workflows",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("absence_event_id", sa.String(length=36), nullable=False),
            sa.Column("class_id", sa.String(length=36), nullable=False),
            sa.Column("term_id", sa.String(length=36), nullable=False),
            sa.Column("day", sa.String(length=20), nullable=False),
            sa.Column("period", sa.Integer(), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("subject_id", sa.String(length=50), nullable=False),
            sa.Column("absent_teacher_id", sa.String(length=36), nullable=False),
            sa.Column("status", _enum("replacement_workflow_status"), nullable=False),
            sa.Column("assigned_teacher_id", sa.String(length=36), nullable=True),
            sa.Column("unfilled_reason", sa.Text(), nullable=True),
            sa.Column("alerted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "absence_event_id",
                "class_id",
                "day",
                "period",
                "date",
                name="uq_replacement_workflows_identity",
            ),
        )
    _create_indexes(
        sa.inspect(bind),
        "replacement_workflows",
        [
            ("ix_replacement_workflows_absence_event_id", ["absence_event_id"]),
            ("ix_replacement_workflows_class_id", ["class_id"]),
            ("ix_replacement_workflows_date", ["date"]),
            ("ix_replacement_workflows_status", ["status"]),
        ],
    )

    if not inspector.has_table("replacement_offers"):
        op.create_table(
            "replacement_offers",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("workflow_id", sa.String(length=36), nullable=False),
            sa.Column("class_id", sa.String(length=36), nullable=False),
            sa.Column("term_id", sa.String(length=36), nullable=False),
            sa.Column("day", sa.String(length=20), nullable=False),
            sa.Column("period", sa.Integer(), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("candidate_teacher_id", sa.String(length=36), nullable=False),
            sa.Column("rank", sa.Integer(), nullable=False),
            sa.Column("status", _enum("replacement_offer_status"), nullable=False),
            sa.Column("offered_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("decline_reason", sa.Text(), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("workflow_id", "candidate_teacher_id", name="uq_replacement_offer_identity"),
        )
    _create_indexes(
        sa.inspect(bind),
        "replacement_offers",
        [
            ("ix_replacement_offers_workflow_id", ["workflow_id"]),
            ("ix_replacement_offers_date", ["date"]),
            ("ix_replacement_offers_candidate_teacher_id", ["candidate_teacher_id"]),
            ("ix_replacement_offers_status", ["status"]),
        ],
    )

    if not inspector.has_table("notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("notification_type", _enum("notification_type"), nullable=False),
            sa.Column("payload", sa.JSON(), nullable=False),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(sa.inspect(bind), "notifications", [("ix_notifications_user_id", ["user_id"])])

    if not inspector.has_table("activity_logs"):
        op.create_table(
            "activity_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("actor_id", sa.String(length=36), nullable=True),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("entity_type", sa.String(length=100), nullable=True),
            sa.Column("entity_id", sa.String(length=100), nullable=True),
            sa.Column("details", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(sa.inspect(bind), "activity_logs", [("ix_activity_logs_action", ["action"])])


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    for table_name in (
        "activity_logs",
        "notifications",
        "replacement_offers",
        "replacement_workflows",
        "absence_events",
        "timetable_slots",
    ):
        if inspector.has_table(table_name):
            op.drop_table(table_name)
    for name in reversed(list(ENUMS)):
        _enum(name).drop(bind, checkfirst=True)
