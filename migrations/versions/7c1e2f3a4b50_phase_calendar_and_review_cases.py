"""phase_calendar_and_review_cases

Creates the phase calendar and the review case tables:
  - phases             : the ten ordered periods (wall-clock start/end)
  - departments        : revision round requirement per department
  - processes          : one student's position on the calendar
  - process_reviewers  : reviewer membership of a process
  - thesis_infos       : one row per review stage of a process
  - thesis_files       : required upload slots of a stage
  - reviews            : reviewer verdicts and the head reviewer's final verdict

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 7c1e2f3a4b50
Revises:
Create Date: 2026-10-19 10:12:41.518204
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e2f3a4b50'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Phases ────────────────────────────────────────────────────────────
    if "phases" not in existing:
        op.create_table(
            "phases",
            sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
            sa.Column("title", sa.String(length=100), nullable=False),
            sa.Column("start", sa.DateTime(), nullable=False,
                      comment="Wall-clock start in PHASE_TIMEZONE"),
            sa.Column("end", sa.DateTime(), nullable=False,
                      comment="Wall-clock end in PHASE_TIMEZONE"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("title"),
        )

    # ── Departments ───────────────────────────────────────────────────────
    if "departments" not in existing:
        op.create_table(
            "departments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("modification_flag", sa.Boolean(), nullable=False,
                      server_default=sa.false(),
                      comment="Revision round required after main review"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    # ── Processes ─────────────────────────────────────────────────────────
    if "processes" not in existing:
        op.create_table(
            "processes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("student_id", sa.Integer(), nullable=False),
            sa.Column("department_id", sa.Integer(), nullable=True),
            sa.Column("phase_id", sa.Integer(), nullable=False),
            sa.Column("current_stage", sa.String(length=20), nullable=False,
                      server_default="PRELIMINARY"),
            sa.Column("is_lock", sa.Boolean(), nullable=False, server_default=sa.false(),
                      comment="Administrative freeze; suppresses automatic advance"),
            sa.Column("head_reviewer_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
            sa.ForeignKeyConstraint(["phase_id"], ["phases.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_processes_student_id", "processes", ["student_id"], unique=True)
        op.create_index("ix_processes_phase_id", "processes", ["phase_id"])

    # ── Process reviewers ─────────────────────────────────────────────────
    if "process_reviewers" not in existing:
        op.create_table(
            "process_reviewers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("process_id", sa.Integer(), nullable=False),
            sa.Column("reviewer_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["process_id"], ["processes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("process_id", "reviewer_id", name="uq_process_reviewer"),
        )
        op.create_index("ix_process_reviewers_reviewer_id", "process_reviewers", ["reviewer_id"])

    # ── Thesis infos ──────────────────────────────────────────────────────
    if "thesis_infos" not in existing:
        op.create_table(
            "thesis_infos",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("process_id", sa.Integer(), nullable=False),
            sa.Column("stage", sa.String(length=20), nullable=False,
                      comment="PRELIMINARY | MAIN | REVISION"),
            sa.Column("title", sa.String(length=500), nullable=True),
            sa.Column("abstract", sa.Text(), nullable=True),
            sa.Column("summary", sa.String(length=20), nullable=False,
                      server_default="UNEXAMINED",
                      comment="Aggregated verdict of the stage reviews"),
            sa.ForeignKeyConstraint(["process_id"], ["processes.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("process_id", "stage", name="uq_thesis_info_stage"),
        )

    # ── Thesis files ──────────────────────────────────────────────────────
    if "thesis_files" not in existing:
        op.create_table(
            "thesis_files",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("thesis_info_id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=30), nullable=False,
                      comment="THESIS | PRESENTATION | REVISION_REPORT"),
            sa.Column("file_id", sa.String(length=64), nullable=True,
                      comment="Storage id; NULL until uploaded"),
            sa.ForeignKeyConstraint(["thesis_info_id"], ["thesis_infos.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("thesis_info_id", "type", name="uq_thesis_file_type"),
        )

    # ── Reviews ───────────────────────────────────────────────────────────
    if "reviews" not in existing:
        op.create_table(
            "reviews",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("thesis_info_id", sa.Integer(), nullable=False),
            sa.Column("reviewer_id", sa.Integer(), nullable=False),
            sa.Column("content_status", sa.String(length=20), nullable=False,
                      server_default="UNEXAMINED"),
            sa.Column("presentation_status", sa.String(length=20), nullable=True,
                      comment="NULL where no presentation verdict applies"),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("file_id", sa.String(length=64), nullable=True),
            sa.Column("is_final", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["thesis_info_id"], ["thesis_infos.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_reviews_thesis_info_id", "reviews", ["thesis_info_id"])


def downgrade():
    op.drop_index("ix_reviews_thesis_info_id", table_name="reviews")
    op.drop_table("reviews")
    op.drop_table("thesis_files")
    op.drop_table("thesis_infos")
    op.drop_index("ix_process_reviewers_reviewer_id", table_name="process_reviewers")
    op.drop_table("process_reviewers")
    op.drop_index("ix_processes_phase_id", table_name="processes")
    op.drop_index("ix_processes_student_id", table_name="processes")
    op.drop_table("processes")
    op.drop_table("departments")
    op.drop_table("phases")
