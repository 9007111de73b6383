"""create academic setup tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _create_indexes(inspector, table_name: str, index_specs: list[tuple[str, list[str]]]) -> None:
    existing_indexes = {item["name"] for item in inspector.get_indexes(table_name)}
    for index_name, columns in index_specs:
        if index_name in existing_indexes:
            continue
        op.create_index(index_name, table_name, columns, unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("terms"):
        op.create_table(
            "terms",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
    _create_indexes(sa.inspect(bind), "terms", [("ix_terms_is_active", ["is_active"])])

    if not inspector.has_table("class_sections"):
        op.create_table(
            "class_sections",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("term_id", sa.String(length=36), nullable=False),
            sa.Column("grade", sa.Integer(), nullable=False),
            sa.Column("section", sa.String(length=10), nullable=False),
            sa.Column("name", sa.String(length=50), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("term_id", "grade", "section", name="uq_class_sections_term_grade_section"),
        )
    _create_indexes(sa.inspect(bind), "class_sections", [("ix_class_sections_term_id", ["term_id"])])

    if not inspector.has_table("teachers"):
        op.create_table(
            "teachers",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("subject_ids", sa.JSON(), nullable=False),
            sa.Column("is_substitute_eligible", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if not inspector.has_table("subject_requirements"):
        op.create_table(
            "subject_requirements",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("class_id", sa.String(length=36), nullable=False),
            sa.Column("subject_id", sa.String(length=50), nullable=False),
            sa.Column("subject_name", sa.String(length=200), nullable=True),
            sa.Column("teacher_id", sa.String(length=36), nullable=False),
            sa.Column("periods_per_week", sa.Integer(), nullable=False),
            sa.Column("requires_double_period", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("class_id", "subject_id", name="uq_subject_requirements_class_subject"),
        )
    _create_indexes(
        sa.inspect(bind),
        "subject_requirements",
        [
            ("ix_subject_requirements_class_id", ["class_id"]),
            ("ix_subject_requirements_teacher_id", ["teacher_id"]),
        ],
    )

    if not inspector.has_table("teacher_availability"):
        op.create_table(
            "teacher_availability",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("teacher_id", sa.String(length=36), nullable=False),
            sa.Column("term_id", sa.String(length=36), nullable=False),
            sa.Column("blocked_slots", sa.JSON(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("teacher_id", "term_id", name="uq_teacher_availability_teacher_term"),
        )
    _create_indexes(
        sa.inspect(bind),
        "teacher_availability",
        [
            ("ix_teacher_availability_teacher_id", ["teacher_id"]),
            ("ix_teacher_availability_term_id", ["term_id"]),
        ],
    )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    for table_name in ("teacher_availability", "subject_requirements", "teachers", "class_sections", "terms"):
        if inspector.has_table(table_name):
            op.drop_table(table_name)
