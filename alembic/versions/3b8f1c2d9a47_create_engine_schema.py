"""create progress engine schema

Revision ID: 3b8f1c2d9a47
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b8f1c2d9a47"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _fk(name: str, target: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name, postgresql.UUID(as_uuid=True), sa.ForeignKey(f"{target}.id"), nullable=nullable
    )


def _json(name: str, default: str) -> sa.Column:
    return sa.Column(
        name, postgresql.JSONB(), nullable=False, server_default=sa.text(f"'{default}'::jsonb")
    )


def _int(name: str, nullable: bool = False, default: int | None = 0) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.Integer(), nullable=True)
    return sa.Column(name, sa.Integer(), nullable=False, server_default=str(default))


def upgrade() -> None:
    # --- content ---
    op.create_table(
        "cohorts",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        _int("start_date", nullable=True),
    )
    op.create_table(
        "weeks",
        _id(),
        _fk("cohort_id", "cohorts"),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        _json("unlock_rules", "{}"),
        _int("min_completion_percentage", nullable=True),
        _int("deadline_at", nullable=True),
        _int("drip_days", nullable=True),
        sa.UniqueConstraint("cohort_id", "week_number"),
    )
    op.create_table(
        "modules",
        _id(),
        _fk("week_id", "weeks"),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False),
    )
    op.create_table(
        "lessons",
        _id(),
        _fk("module_id", "modules"),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False),
        _int("min_time_required_seconds", nullable=True),
        _json("blocks", "[]"),
    )
    op.create_table(
        "topics",
        _id(),
        _fk("lesson_id", "lessons"),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False),
        _int("min_time_required_seconds", nullable=True),
        _int("coin_reward"),
    )
    op.create_table(
        "quizzes",
        _id(),
        _fk("week_id", "weeks"),
        sa.Column("title", sa.String(500), nullable=False),
        _fk("lesson_id", "lessons", nullable=True),
        sa.Column("block_id", sa.String(128), nullable=True),
        _int("max_attempts", nullable=True),
        _int("time_limit_seconds", nullable=True),
        _int("passing_score", default=70),
        _int("coin_reward"),
        sa.Column("is_randomized", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "show_correct_answers", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
    )
    op.create_table(
        "quiz_questions",
        _id(),
        _fk("quiz_id", "quizzes"),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        _json("options", "[]"),
        _json("correct_answers", "[]"),
        _int("points", default=1),
        sa.Column("explanation", sa.Text(), nullable=True),
        _int("order_index"),
    )
    op.create_table(
        "assignments",
        _id(),
        _fk("week_id", "weeks"),
        sa.Column("title", sa.String(500), nullable=False),
        _fk("lesson_id", "lessons", nullable=True),
        sa.Column("block_id", sa.String(128), nullable=True),
        _int("coin_reward"),
        _int("due_at", nullable=True),
    )
    op.create_table(
        "live_classes",
        _id(),
        _fk("week_id", "weeks"),
        sa.Column("title", sa.String(500), nullable=False),
        _fk("lesson_id", "lessons", nullable=True),
        sa.Column("block_id", sa.String(128), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="scheduled"),
        _int("scheduled_at", nullable=True),
        _int("started_at", nullable=True),
        _int("ended_at", nullable=True),
        _int("min_attendance_seconds"),
        _int("coin_reward"),
    )

    # --- learner state ---
    op.create_table(
        "enrollments",
        _id(),
        sa.Column("user_id", sa.String(128), nullable=False),
        _fk("cohort_id", "cohorts"),
        sa.Column("enrolled_at", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="active"),
        sa.Column("completion_percentage", sa.Float(), nullable=False, server_default="0"),
        _int("completed_at", nullable=True),
        _int("withdrawn_at", nullable=True),
        sa.UniqueConstraint("user_id", "cohort_id"),
    )
    op.create_table(
        "user_progress",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column(
            "week_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("weeks.id"),
            primary_key=True,
        ),
        sa.Column("is_unlocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        _int("unlocked_at", nullable=True),
        sa.Column("completion_percentage", sa.Float(), nullable=False, server_default="0"),
        _int("completed_at", nullable=True),
        _int("updated_at", nullable=True),
    )
    op.create_table(
        "topic_completions",
        _id(),
        sa.Column("user_id", sa.String(128), nullable=False),
        _fk("topic_id", "topics"),
        sa.Column("started_at", sa.Integer(), nullable=False),
        _int("completed_at", nullable=True),
        _int("coins_awarded"),
        _int("time_spent_seconds"),
        _int("last_position_seconds"),
        sa.Column("completion_percentage", sa.Float(), nullable=False, server_default="0"),
        _json("completion_data", "{}"),
        sa.UniqueConstraint("user_id", "topic_id"),
    )
    op.create_table(
        "lesson_progress",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column(
            "lesson_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("lessons.id"),
            primary_key=True,
        ),
        _int("time_spent_seconds"),
        sa.Column("completion_percentage", sa.Float(), nullable=False, server_default="0"),
        _int("completed_at", nullable=True),
        _int("updated_at", nullable=True),
    )
    op.create_table(
        "lesson_block_completions",
        _id(),
        sa.Column("user_id", sa.String(128), nullable=False),
        _fk("lesson_id", "lessons"),
        sa.Column("block_id", sa.String(128), nullable=False),
        sa.Column("block_type", sa.String(32), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("completed_at", sa.Integer(), nullable=False),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("passed", sa.Boolean(), nullable=True),
        sa.Column("score_percentage", sa.Float(), nullable=True),
        _int("coins_awarded"),
        _json("completion_data", "{}"),
        sa.UniqueConstraint("user_id", "lesson_id", "block_id", "attempt_number"),
    )
    op.create_table(
        "quiz_attempts",
        _id(),
        sa.Column("user_id", sa.String(128), nullable=False),
        _fk("quiz_id", "quizzes"),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.Integer(), nullable=False),
        _int("expires_at", nullable=True),
        _int("completed_at", nullable=True),
        _int("score"),
        _int("total_points"),
        sa.Column("percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("passed", sa.Boolean(), nullable=False, server_default=sa.false()),
        _json("answers", "{}"),
        _json("question_results", "[]"),
        _int("coins_awarded"),
        _int("time_taken_seconds", nullable=True),
        sa.Column("auto_submitted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("user_id", "quiz_id", "attempt_number"),
    )
    op.create_index(
        "uq_quiz_attempts_open",
        "quiz_attempts",
        ["user_id", "quiz_id"],
        unique=True,
        postgresql_where=sa.text("completed_at IS NULL"),
    )
    op.create_table(
        "assignment_submissions",
        _id(),
        sa.Column("user_id", sa.String(128), nullable=False),
        _fk("assignment_id", "assignments"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("submitted_at", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="submitted"),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(128), nullable=True),
        _int("reviewed_at", nullable=True),
        _int("coins_awarded"),
        _int("revision_count"),
    )
    op.create_table(
        "live_attendances",
        _id(),
        sa.Column("user_id", sa.String(128), nullable=False),
        _fk("live_class_id", "live_classes"),
        sa.Column("joined_at", sa.Integer(), nullable=False),
        _int("left_at", nullable=True),
        _int("duration_seconds"),
        sa.Column("attended", sa.Boolean(), nullable=False, server_default=sa.false()),
        _int("coins_awarded"),
        sa.UniqueConstraint("user_id", "live_class_id"),
    )

    # --- coin ledger ---
    op.create_table(
        "coin_transactions",
        _id(),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(64), nullable=False),
        sa.Column("source_id", sa.String(255), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        _json("metadata", "{}"),
        sa.Column("created_at", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.String(128), nullable=True),
    )
    op.create_index("ix_coin_transactions_user_id", "coin_transactions", ["user_id"])
    op.create_index(
        "uq_coin_transactions_reward_key",
        "coin_transactions",
        ["user_id", "source", "source_id"],
        unique=True,
        postgresql_where=sa.text("amount > 0"),
    )


def downgrade() -> None:
    op.drop_index("uq_coin_transactions_reward_key", table_name="coin_transactions")
    op.drop_index("ix_coin_transactions_user_id", table_name="coin_transactions")
    op.drop_index("uq_quiz_attempts_open", table_name="quiz_attempts")
    for table in (
        "coin_transactions",
        "live_attendances",
        "assignment_submissions",
        "quiz_attempts",
        "lesson_block_completions",
        "lesson_progress",
        "topic_completions",
        "user_progress",
        "enrollments",
        "live_classes",
        "assignments",
        "quiz_questions",
        "quizzes",
        "topics",
        "lessons",
        "modules",
        "weeks",
        "cohorts",
    ):
        op.drop_table(table)
