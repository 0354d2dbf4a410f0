"""Initial referral engine schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates tables for:
- countries / referral_block_reasons: lookups
- users: user directory
- referral_programs / referral_program_countries: campaigns and their countries
- referral_links / referral_link_usages: referrer links and referee claims
- referral_blocks: users barred from referrals
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

program_status = sa.Enum(
    "ACTIVE", "INACTIVE", "EXPIRED", "LIMIT_REACHED", "UN_COMPLETABLE", "DELETED",
    name="programstatus",
)
link_status = sa.Enum("ACTIVE", "CANCELLED", "LIMIT_REACHED", "EXPIRED", name="linkstatus")
link_usage_status = sa.Enum("PENDING", "COMPLETED", "EXPIRED", name="linkusagestatus")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("date_created", sa.DateTime(), nullable=False),
        sa.Column("date_modified", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Create referral engine tables."""

    # Lookups
    op.create_table(
        "countries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(125), nullable=False),
        sa.Column("code_alpha2", sa.String(2), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_countries_code_alpha2", "countries", ["code_alpha2"], unique=True)

    op.create_table(
        "referral_block_reasons",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(125), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    # Users
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(320), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("country_id", sa.Integer(), nullable=True),
        sa.Column("date_onboarded", sa.DateTime(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(["country_id"], ["countries.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # Programs
    op.create_table(
        "referral_programs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(150), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(2048), nullable=True),
        sa.Column("completion_window_in_days", sa.Integer(), nullable=True),
        sa.Column("completion_limit_referee", sa.Integer(), nullable=True),
        sa.Column("completion_limit", sa.Integer(), nullable=True),
        sa.Column("completion_total", sa.Integer(), nullable=True),
        sa.Column("zlto_reward_referrer", sa.Float(), nullable=True),
        sa.Column("zlto_reward_referee", sa.Float(), nullable=True),
        sa.Column("zlto_reward_pool", sa.Float(), nullable=True),
        sa.Column("zlto_reward_cumulative", sa.Float(), nullable=True),
        sa.Column("proof_of_personhood_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("pathway_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("multiple_links_allowed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", program_status, nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("date_start", sa.DateTime(), nullable=False),
        sa.Column("date_end", sa.DateTime(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("modified_by_user_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["modified_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_referral_programs_name", "referral_programs", ["name"], unique=True)
    op.create_index("ix_referral_programs_status", "referral_programs", ["status"], unique=False)
    # At most one default program
    op.create_index(
        "ix_referral_programs_default",
        "referral_programs",
        ["is_default"],
        unique=True,
        sqlite_where=sa.text("is_default = 1"),
        postgresql_where=sa.text("is_default"),
    )

    op.create_table(
        "referral_program_countries",
        sa.Column("program_id", sa.Integer(), nullable=False),
        sa.Column("country_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["program_id"], ["referral_programs.id"]),
        sa.ForeignKeyConstraint(["country_id"], ["countries.id"]),
        sa.PrimaryKeyConstraint("program_id", "country_id"),
    )

    # Links
    op.create_table(
        "referral_links",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(150), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("program_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("status", link_status, nullable=False),
        sa.Column("url", sa.String(2048), nullable=True),
        sa.Column("short_url", sa.String(2048), nullable=True),
        sa.Column("completion_total", sa.Integer(), nullable=True),
        sa.Column("zlto_reward_cumulative", sa.Float(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["program_id"], ["referral_programs.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "program_id", "name", name="uq_referral_links_user_program_name"),
    )
    op.create_index("ix_referral_links_program_id", "referral_links", ["program_id"], unique=False)
    op.create_index("ix_referral_links_user_id", "referral_links", ["user_id"], unique=False)
    op.create_index("ix_referral_links_status", "referral_links", ["status"], unique=False)

    op.create_table(
        "referral_link_usages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("program_id", sa.Integer(), nullable=False),
        sa.Column("link_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("status", link_usage_status, nullable=False),
        sa.Column("zlto_reward_referrer", sa.Float(), nullable=True),
        sa.Column("zlto_reward_referee", sa.Float(), nullable=True),
        sa.Column("date_claimed", sa.DateTime(), nullable=False),
        sa.Column("date_completed", sa.DateTime(), nullable=True),
        sa.Column("date_expired", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["program_id"], ["referral_programs.id"]),
        sa.ForeignKeyConstraint(["link_id"], ["referral_links.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "program_id", name="uq_referral_link_usages_user_program"),
    )
    op.create_index("ix_referral_link_usages_program_id", "referral_link_usages", ["program_id"], unique=False)
    op.create_index("ix_referral_link_usages_link_id", "referral_link_usages", ["link_id"], unique=False)
    op.create_index("ix_referral_link_usages_user_id", "referral_link_usages", ["user_id"], unique=False)
    op.create_index("ix_referral_link_usages_status", "referral_link_usages", ["status"], unique=False)

    # Blocks
    op.create_table(
        "referral_blocks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("reason_id", sa.Integer(), nullable=False),
        sa.Column("comment_block", sa.String(500), nullable=True),
        sa.Column("comment_unblock", sa.String(500), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("modified_by_user_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["reason_id"], ["referral_block_reasons.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["modified_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_referral_blocks_user_id", "referral_blocks", ["user_id"], unique=False)
    # At most one active block per user
    op.create_index(
        "ix_referral_blocks_user_active",
        "referral_blocks",
        ["user_id"],
        unique=True,
        sqlite_where=sa.text("active = 1"),
        postgresql_where=sa.text("active"),
    )


def downgrade() -> None:
    """Drop referral engine tables."""
    op.drop_table("referral_blocks")
    op.drop_table("referral_link_usages")
    op.drop_table("referral_links")
    op.drop_table("referral_program_countries")
    op.drop_table("referral_programs")
    op.drop_table("users")
    op.drop_table("referral_block_reasons")
    op.drop_table("countries")

    program_status.drop(op.get_bind(), checkfirst=True)
    link_status.drop(op.get_bind(), checkfirst=True)
    link_usage_status.drop(op.get_bind(), checkfirst=True)
