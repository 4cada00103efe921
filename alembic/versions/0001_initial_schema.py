"""initial lottery schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _enum(*values: str) -> sa.Enum:
    return sa.Enum(*values, native_enum=False, length=20)


WINDOW = ("MORNING", "MIDDAY", "AFTERNOON", "EVENING")
ENTRY_STATUS = ("PENDING", "ASSIGNED", "CANCELLED")
ACTIVE_ONLY = sa.text("status != 'CANCELLED'")


def upgrade() -> None:
    op.create_table(
        "members",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("member_number", sa.String(length=32), nullable=False),
        sa.Column("first_name", sa.String(length=50), nullable=False),
        sa.Column("last_name", sa.String(length=50), nullable=False),
        sa.Column("member_class", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_members")),
        sa.UniqueConstraint(
            "club_id", "member_number", name=op.f("uq_members_club_id_member_number")
        ),
    )
    op.create_index(op.f("ix_members_club_id"), "members", ["club_id"], unique=False)

    op.create_table(
        "teesheet_configs",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("config_type", _enum("REGULAR", "CUSTOM"), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=True),
        sa.Column("end_time", sa.String(length=5), nullable=True),
        sa.Column("interval_minutes", sa.Integer(), nullable=False),
        sa.Column("max_members_per_block", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "max_members_per_block > 0",
            name=op.f("ck_teesheet_configs_max_members_positive"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_teesheet_configs")),
    )
    op.create_index(
        op.f("ix_teesheet_configs_club_id"), "teesheet_configs", ["club_id"], unique=False
    )

    op.create_table(
        "teesheets",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("play_date", sa.Date(), nullable=False),
        sa.Column("config_id", ID_TYPE, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["config_id"],
            ["teesheet_configs.id"],
            name=op.f("fk_teesheets_config_id_teesheet_configs"),
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_teesheets")),
        sa.UniqueConstraint("club_id", "play_date", name=op.f("uq_teesheets_club_id_play_date")),
    )
    op.create_index(op.f("ix_teesheets_club_id"), "teesheets", ["club_id"], unique=False)

    op.create_table(
        "time_blocks",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("teesheet_id", ID_TYPE, nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=True),
        sa.Column("max_members", sa.Integer(), nullable=False),
        sa.CheckConstraint("max_members > 0", name=op.f("ck_time_blocks_max_members_positive")),
        sa.ForeignKeyConstraint(
            ["teesheet_id"],
            ["teesheets.id"],
            name=op.f("fk_time_blocks_teesheet_id_teesheets"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_time_blocks")),
    )
    op.create_index(op.f("ix_time_blocks_club_id"), "time_blocks", ["club_id"], unique=False)
    op.create_index(
        op.f("ix_time_blocks_teesheet_id"), "time_blocks", ["teesheet_id"], unique=False
    )

    op.create_table(
        "time_block_bookings",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("time_block_id", ID_TYPE, nullable=False),
        sa.Column("member_id", ID_TYPE, nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("booking_time", sa.String(length=5), nullable=False),
        sa.Column("source", _enum("LOTTERY", "MANUAL"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["member_id"],
            ["members.id"],
            name=op.f("fk_time_block_bookings_member_id_members"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["time_block_id"],
            ["time_blocks.id"],
            name=op.f("fk_time_block_bookings_time_block_id_time_blocks"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_time_block_bookings")),
        sa.UniqueConstraint(
            "time_block_id",
            "member_id",
            name=op.f("uq_time_block_bookings_time_block_id_member_id"),
        ),
        sa.UniqueConstraint(
            "club_id",
            "booking_date",
            "member_id",
            name=op.f("uq_time_block_bookings_club_id_booking_date_member_id"),
        ),
    )
    for column in ("club_id", "time_block_id", "member_id"):
        op.create_index(
            op.f(f"ix_time_block_bookings_{column}"),
            "time_block_bookings",
            [column],
            unique=False,
        )

    op.create_table(
        "lottery_dates",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("lottery_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("PENDING", "PROCESSING", "COMPLETED"), nullable=False),
        sa.Column("next_submission_seq", sa.Integer(), nullable=False),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lottery_dates")),
        sa.UniqueConstraint(
            "club_id", "lottery_date", name=op.f("uq_lottery_dates_club_id_lottery_date")
        ),
    )

    op.create_table(
        "lottery_entries",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("member_id", ID_TYPE, nullable=False),
        sa.Column("lottery_date", sa.Date(), nullable=False),
        sa.Column("preferred_window", _enum(*WINDOW), nullable=False),
        sa.Column("alternate_window", _enum(*WINDOW), nullable=True),
        sa.Column("specific_time", sa.String(length=5), nullable=True),
        sa.Column("member_class", sa.String(length=50), nullable=False),
        sa.Column("status", _enum(*ENTRY_STATUS), nullable=False),
        sa.Column("submission_seq", sa.Integer(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_time_block_id", ID_TYPE, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["assigned_time_block_id"],
            ["time_blocks.id"],
            name=op.f("fk_lottery_entries_assigned_time_block_id_time_blocks"),
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["member_id"],
            ["members.id"],
            name=op.f("fk_lottery_entries_member_id_members"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lottery_entries")),
    )
    op.create_index(
        "ix_lottery_entries_club_date", "lottery_entries", ["club_id", "lottery_date"]
    )
    op.create_index(
        op.f("ix_lottery_entries_member_id"), "lottery_entries", ["member_id"], unique=False
    )
    op.create_index(
        "uq_lottery_entries_active_member_date",
        "lottery_entries",
        ["club_id", "member_id", "lottery_date"],
        unique=True,
        sqlite_where=ACTIVE_ONLY,
        postgresql_where=ACTIVE_ONLY,
    )

    op.create_table(
        "lottery_groups",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("leader_id", ID_TYPE, nullable=False),
        sa.Column("lottery_date", sa.Date(), nullable=False),
        sa.Column("preferred_window", _enum(*WINDOW), nullable=False),
        sa.Column("alternate_window", _enum(*WINDOW), nullable=True),
        sa.Column("specific_time", sa.String(length=5), nullable=True),
        sa.Column("leader_member_class", sa.String(length=50), nullable=False),
        sa.Column("status", _enum(*ENTRY_STATUS), nullable=False),
        sa.Column("submission_seq", sa.Integer(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_time_block_id", ID_TYPE, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["assigned_time_block_id"],
            ["time_blocks.id"],
            name=op.f("fk_lottery_groups_assigned_time_block_id_time_blocks"),
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["leader_id"],
            ["members.id"],
            name=op.f("fk_lottery_groups_leader_id_members"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lottery_groups")),
    )
    op.create_index("ix_lottery_groups_club_date", "lottery_groups", ["club_id", "lottery_date"])
    op.create_index(
        op.f("ix_lottery_groups_leader_id"), "lottery_groups", ["leader_id"], unique=False
    )

    op.create_table(
        "lottery_group_members",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("group_id", ID_TYPE, nullable=False),
        sa.Column("member_id", ID_TYPE, nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ["group_id"],
            ["lottery_groups.id"],
            name=op.f("fk_lottery_group_members_group_id_lottery_groups"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["member_id"],
            ["members.id"],
            name=op.f("fk_lottery_group_members_member_id_members"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_lottery_group_members")),
        sa.UniqueConstraint(
            "group_id", "member_id", name=op.f("uq_lottery_group_members_group_id_member_id")
        ),
        sa.UniqueConstraint(
            "group_id", "position", name=op.f("uq_lottery_group_members_group_id_position")
        ),
    )
    op.create_index(
        op.f("ix_lottery_group_members_member_id"),
        "lottery_group_members",
        ["member_id"],
        unique=False,
    )

    op.create_table(
        "member_speed_profiles",
        sa.Column("member_id", ID_TYPE, nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("average_minutes", sa.Float(), nullable=True),
        sa.Column("observation_count", sa.Integer(), nullable=False),
        sa.Column("speed_tier", _enum("FAST", "AVERAGE", "SLOW"), nullable=False),
        sa.Column("admin_priority_adjustment", sa.Integer(), nullable=False),
        sa.Column("manual_override", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("last_calculated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "admin_priority_adjustment BETWEEN -10 AND 10",
            name=op.f("ck_member_speed_profiles_adjustment_range"),
        ),
        sa.ForeignKeyConstraint(
            ["member_id"],
            ["members.id"],
            name=op.f("fk_member_speed_profiles_member_id_members"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("member_id", name=op.f("pk_member_speed_profiles")),
    )
    op.create_index(
        op.f("ix_member_speed_profiles_club_id"),
        "member_speed_profiles",
        ["club_id"],
        unique=False,
    )

    op.create_table(
        "member_fairness_scores",
        sa.Column("member_id", ID_TYPE, nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("fairness_score", sa.Integer(), nullable=False),
        sa.Column("total_entries", sa.Integer(), nullable=False),
        sa.Column("preferences_granted", sa.Integer(), nullable=False),
        sa.Column("days_without_good_time", sa.Integer(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "fairness_score >= 0", name=op.f("ck_member_fairness_scores_score_non_negative")
        ),
        sa.ForeignKeyConstraint(
            ["member_id"],
            ["members.id"],
            name=op.f("fk_member_fairness_scores_member_id_members"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("member_id", name=op.f("pk_member_fairness_scores")),
    )
    op.create_index(
        op.f("ix_member_fairness_scores_club_id"),
        "member_fairness_scores",
        ["club_id"],
        unique=False,
    )

    op.create_table(
        "restriction_overrides",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("restriction_id", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=20), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=True),
        sa.Column("time_block_id", sa.Integer(), nullable=True),
        sa.Column("lottery_date", sa.Date(), nullable=False),
        sa.Column("violation_message", sa.Text(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("admin_id", sa.String(length=64), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_restriction_overrides")),
    )
    op.create_index(
        "ix_restriction_overrides_key",
        "restriction_overrides",
        ["restriction_id", "entity_id", "occurred_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_restriction_overrides_key", table_name="restriction_overrides")
    op.drop_table("restriction_overrides")
    op.drop_index(op.f("ix_member_fairness_scores_club_id"), table_name="member_fairness_scores")
    op.drop_table("member_fairness_scores")
    op.drop_index(op.f("ix_member_speed_profiles_club_id"), table_name="member_speed_profiles")
    op.drop_table("member_speed_profiles")
    op.drop_index(
        op.f("ix_lottery_group_members_member_id"), table_name="lottery_group_members"
    )
    op.drop_table("lottery_group_members")
    op.drop_index(op.f("ix_lottery_groups_leader_id"), table_name="lottery_groups")
    op.drop_index("ix_lottery_groups_club_date", table_name="lottery_groups")
    op.drop_table("lottery_groups")
    op.drop_index("uq_lottery_entries_active_member_date", table_name="lottery_entries")
    op.drop_index(op.f("ix_lottery_entries_member_id"), table_name="lottery_entries")
    op.drop_index("ix_lottery_entries_club_date", table_name="lottery_entries")
    op.drop_table("lottery_entries")
    op.drop_table("lottery_dates")
    for column in ("member_id", "time_block_id", "club_id"):
        op.drop_index(
            op.f(f"ix_time_block_bookings_{column}"), table_name="time_block_bookings"
        )
    op.drop_table("time_block_bookings")
    op.drop_index(op.f("ix_time_blocks_teesheet_id"), table_name="time_blocks")
    op.drop_index(op.f("ix_time_blocks_club_id"), table_name="time_blocks")
    op.drop_table("time_blocks")
    op.drop_index(op.f("ix_teesheets_club_id"), table_name="teesheets")
    op.drop_table("teesheets")
    op.drop_index(op.f("ix_teesheet_configs_club_id"), table_name="teesheet_configs")
    op.drop_table("teesheet_configs")
    op.drop_index(op.f("ix_members_club_id"), table_name="members")
    op.drop_table("members")
