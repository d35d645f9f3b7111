"""Initial migration

Revision ID: 0001
Revises: 
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "channel_credentials",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column(
            "channel_identity",
            sa.String(length=25),
            nullable=False,
            comment="Channel login the tokens belong to",
        ),
        sa.Column(
            "encrypted_access_token",
            sa.Text(),
            nullable=False,
            comment="Encrypted access token",
        ),
        sa.Column(
            "encrypted_refresh_token",
            sa.Text(),
            nullable=False,
            comment="Encrypted refresh token",
        ),
        sa.Column(
            "expires_at",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="Access token expiry time",
        ),
        sa.Column("scope", sa.JSON(), nullable=False, comment="Granted scopes"),
        sa.Column(
            "token_type", sa.String(length=20), server_default="bearer", nullable=False
        ),
        sa.Column(
            "channel_data", sa.JSON(), nullable=False, comment="Provider profile snapshot"
        ),
        sa.Column(
            "status", sa.String(length=20), server_default="connected", nullable=False
        ),
        sa.Column(
            "connected_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "channel_identity", name="uq_channel_credentials_channel_identity"
        ),
    )
    op.create_index(
        op.f("ix_channel_credentials_channel_identity"),
        "channel_credentials",
        ["channel_identity"],
        unique=False,
    )
    op.create_index(
        op.f("ix_channel_credentials_status"),
        "channel_credentials",
        ["status"],
        unique=False,
    )

    op.create_table(
        "moderation_actions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column(
            "channel_identity",
            sa.String(length=25),
            nullable=False,
            comment="Broadcaster acted upon",
        ),
        sa.Column(
            "moderator_identity",
            sa.String(length=64),
            nullable=False,
            comment="Moderator user id",
        ),
        sa.Column("moderator_display_name", sa.String(length=255), nullable=False),
        sa.Column("action_type", sa.String(length=20), nullable=False),
        sa.Column("target_user", sa.String(length=255), nullable=True),
        sa.Column(
            "duration", sa.Integer(), nullable=True, comment="Timeout length in seconds"
        ),
        sa.Column("reason", sa.String(length=500), nullable=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "action_type != 'timeout' OR (duration > 0 AND duration <= 1209600)",
            name="ck_moderation_actions_timeout_duration",
        ),
    )
    for column in ("channel_identity", "moderator_identity", "action_type", "timestamp"):
        op.create_index(
            op.f(f"ix_moderation_actions_{column}"),
            "moderation_actions",
            [column],
            unique=False,
        )
    op.create_index(
        "ix_moderation_actions_channel_moderator",
        "moderation_actions",
        ["channel_identity", "moderator_identity"],
        unique=False,
    )
    op.create_index(
        "ix_moderation_actions_channel_type_timestamp",
        "moderation_actions",
        ["channel_identity", "action_type", "timestamp"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("ix_moderation_actions_channel_type_timestamp", table_name="moderation_actions")
    op.drop_index("ix_moderation_actions_channel_moderator", table_name="moderation_actions")
    for column in ("timestamp", "action_type", "moderator_identity", "channel_identity"):
        op.drop_index(op.f(f"ix_moderation_actions_{column}"), table_name="moderation_actions")
    op.drop_table("moderation_actions")

    op.drop_index(op.f("ix_channel_credentials_status"), table_name="channel_credentials")
    op.drop_index(
        op.f("ix_channel_credentials_channel_identity"), table_name="channel_credentials"
    )
    op.drop_table("channel_credentials")
