"""Users, GET credentials, points, help requests and notifications.

Revision ID: 20261018_01
Revises: 
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


help_request_status_enum = sa.Enum(
    "pending",
    "accepted",
    "declined",
    "completed",
    name="help_request_status_enum",
)
completion_trigger_enum = sa.Enum("first_get_transaction", name="help_request_completion_trigger_enum")
notification_type_enum = sa.Enum(
    "request_accepted",
    "request_declined",
    "request_completed",
    name="notification_type_enum",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column(
            "default_fulfillment_mode",
            sa.String(length=32),
            nullable=False,
            server_default="CODE_ONLY",
        ),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "commerce_credentials",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("encrypted_device_id", sa.Text(), nullable=False),
        sa.Column("encrypted_pin", sa.Text(), nullable=False),
        sa.Column("last_validated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "points_balances",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("balance >= 0", name="ck_points_balances_balance_non_negative"),
    )

    op.create_table(
        "help_requests",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "requester_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "donor_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("points_requested", sa.Integer(), nullable=False),
        sa.Column("location", sa.String(), nullable=False),
        sa.Column("status", help_request_status_enum, nullable=False, server_default="pending"),
        sa.Column("fulfillment_mode", sa.String(length=32), nullable=True),
        sa.Column("code_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("code_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_trigger", completion_trigger_enum, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("points_requested > 0", name="ck_help_requests_points_requested_positive"),
    )
    op.create_index("ix_help_requests_requester_id", "help_requests", ["requester_id"])
    op.create_index("ix_help_requests_donor_id", "help_requests", ["donor_id"])
    op.create_index("ix_help_requests_status", "help_requests", ["status"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", notification_type_enum, nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_help_requests_status", table_name="help_requests")
    op.drop_index("ix_help_requests_donor_id", table_name="help_requests")
    op.drop_index("ix_help_requests_requester_id", table_name="help_requests")
    op.drop_table("help_requests")
    op.drop_table("points_balances")
    op.drop_table("commerce_credentials")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    notification_type_enum.drop(bind, checkfirst=True)
    completion_trigger_enum.drop(bind, checkfirst=True)
    help_request_status_enum.drop(bind, checkfirst=True)
