"""Initial schema: users, transcriptions, credits, integrations and vocabularies."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20241001_01"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def _user_fk() -> sa.Column:
    return sa.Column(
        "user_id",
        sa.String(length=36),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=True),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.sql.expression.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "transcriptions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _user_fk(),
        sa.Column("transcript_id", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="processing"),
        sa.Column("file_name", sa.String(length=512), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("file_type", sa.String(length=128), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("transcription_text", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("quality_score", sa.Integer(), nullable=True),
        sa.Column("reviewed", sa.Boolean(), nullable=False, server_default=sa.sql.expression.false()),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("reviewer_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_transcriptions_user_id", "transcriptions", ["user_id"])
    op.create_index("ix_transcriptions_transcript_id", "transcriptions", ["transcript_id"])
    op.create_index("ix_transcriptions_created_at", "transcriptions", ["created_at"])

    op.create_table(
        "user_credits",
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("credits_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("trial_status", sa.Boolean(), nullable=False, server_default=sa.sql.expression.false()),
        sa.Column("trial_credits_used", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("credits_balance >= 0", name="ck_user_credits_balance_non_negative"),
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _user_fk(),
        sa.Column("paddle_transaction_id", sa.String(length=128), nullable=True, unique=True),
        sa.Column("amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("currency_code", sa.String(length=8), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="completed"),
        sa.Column("credits_added", sa.Integer(), nullable=False),
        sa.Column("package_name", sa.String(length=120), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_credit_transactions_user_id", "credit_transactions", ["user_id"])

    op.create_table(
        "credit_usage",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _user_fk(),
        sa.Column("transcription_id", sa.String(length=128), nullable=True),
        sa.Column("credits_used", sa.Integer(), nullable=False),
        sa.Column(
            "description",
            sa.String(length=255),
            nullable=False,
            server_default="Transcription processing",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_credit_usage_user_id", "credit_usage", ["user_id"])

    op.create_table(
        "integrations",
        sa.Column("id", sa.String(length=160), primary_key=True),
        _user_fk(),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="disconnected"),
        sa.Column("connected_at", sa.DateTime(), nullable=True),
        sa.Column("last_sync", sa.DateTime(), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_integrations_user_id", "integrations", ["user_id"])

    op.create_table(
        "custom_vocabularies",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _user_fk(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("terms", sa.JSON(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.sql.expression.false()),
        *_timestamps(),
    )
    op.create_index("ix_custom_vocabularies_user_id", "custom_vocabularies", ["user_id"])
    op.create_index(
        "uq_custom_vocabularies_default_per_user",
        "custom_vocabularies",
        ["user_id"],
        unique=True,
        sqlite_where=sa.text("is_default = 1"),
        postgresql_where=sa.text("is_default"),
    )


def downgrade() -> None:
    op.drop_index("uq_custom_vocabularies_default_per_user", table_name="custom_vocabularies")
    op.drop_index("ix_custom_vocabularies_user_id", table_name="custom_vocabularies")
    op.drop_table("custom_vocabularies")
    op.drop_index("ix_integrations_user_id", table_name="integrations")
    op.drop_table("integrations")
    op.drop_index("ix_credit_usage_user_id", table_name="credit_usage")
    op.drop_table("credit_usage")
    op.drop_index("ix_credit_transactions_user_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_table("user_credits")
    op.drop_index("ix_transcriptions_created_at", table_name="transcriptions")
    op.drop_index("ix_transcriptions_transcript_id", table_name="transcriptions")
    op.drop_index("ix_transcriptions_user_id", table_name="transcriptions")
    op.drop_table("transcriptions")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
