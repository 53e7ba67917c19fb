"""Registration staging sessions and permanent merchant/driver accounts.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-18

Run with:
    cd backend && alembic upgrade head
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa

ACCOUNT_ROLE = sa.Enum("MERCHANT", "DRIVER", name="accountrole")
REGISTRATION_STEP = sa.Enum(
    "STARTED",
    "PHONE_VERIFIED",
    "BASIC_INFO_SET",
    "MERCHANT_INFO_SET",
    "DRIVER_INFO_SET",
    "VEHICLE_INFO_SET",
    "RESIDENCE_INFO_SET",
    "COMPLETED",
    name="registrationstep",
)
VEHICLE_TYPE = sa.Enum("MOTORCYCLE", "CAR", "BICYCLE", "VAN", "TRUCK", name="vehicletype")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # ── Staging ──────────────────────────────────────────────

    op.create_table(
        "registration_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("is_phone_verified", sa.Boolean(), server_default="false"),
        sa.Column("role", ACCOUNT_ROLE, nullable=True),
        sa.Column("basic_info", sa.JSON(), nullable=True),
        sa.Column("merchant_info", sa.JSON(), nullable=True),
        sa.Column("driver_info", sa.JSON(), nullable=True),
        sa.Column("vehicle_info", sa.JSON(), nullable=True),
        sa.Column("residence_info", sa.JSON(), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("step", REGISTRATION_STEP, server_default="STARTED"),
        *_timestamps(),
    )
    op.create_index(
        "ix_registration_sessions_phone_number",
        "registration_sessions",
        ["phone_number"],
        unique=True,
    )
    # Purge scans by last touch
    op.create_index(
        "ix_registration_sessions_updated_at", "registration_sessions", ["updated_at"]
    )

    # ── Accounts ─────────────────────────────────────────────

    op.create_table(
        "accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), server_default=""),
        sa.Column("national_id_number", sa.String(14), nullable=False),
        sa.Column("personal_photo_url", sa.String(500), nullable=False),
        sa.Column("national_id_front_photo_url", sa.String(500), nullable=False),
        sa.Column("national_id_back_photo_url", sa.String(500), nullable=False),
        sa.Column("role", ACCOUNT_ROLE, nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("failed_login_attempts", sa.Integer(), server_default="0"),
        sa.Column("locked_until", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_accounts_phone_number", "accounts", ["phone_number"], unique=True)

    op.create_table(
        "merchants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "account_id", sa.String(36),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False, unique=True,
        ),
        sa.Column("store_name", sa.String(255), nullable=False),
        sa.Column("store_type", sa.String(100), nullable=False),
        sa.Column("store_address", sa.String(255), nullable=False),
        sa.Column("store_latitude", sa.Float(), nullable=False),
        sa.Column("store_longitude", sa.Float(), nullable=False),
        sa.Column("business_license_number", sa.String(100), nullable=True),
        sa.Column("rating", sa.Float(), server_default="0"),
        sa.Column("total_orders", sa.Integer(), server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "drivers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "account_id", sa.String(36),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False, unique=True,
        ),
        sa.Column("vehicle_type", VEHICLE_TYPE, nullable=False),
        sa.Column("is_available", sa.Boolean(), server_default="false"),
        sa.Column("current_latitude", sa.Float(), nullable=False),
        sa.Column("current_longitude", sa.Float(), nullable=False),
        sa.Column("rating", sa.Float(), server_default="0"),
        sa.Column("total_deliveries", sa.Integer(), server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "vehicles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "driver_id", sa.String(36),
            sa.ForeignKey("drivers.id", ondelete="CASCADE"),
            nullable=False, unique=True,
        ),
        sa.Column("vehicle_brand", sa.String(100), nullable=False),
        sa.Column("vehicle_plate_number", sa.String(20), nullable=False),
        sa.Column("vehicle_issue_year", sa.Integer(), nullable=False),
        sa.Column("chassis_photo_url", sa.String(500), nullable=False),
        sa.Column("inspection_photo_url", sa.String(500), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "residences",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "driver_id", sa.String(36),
            sa.ForeignKey("drivers.id", ondelete="CASCADE"),
            nullable=False, unique=True,
        ),
        sa.Column("province", sa.String(100), nullable=False),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("district", sa.String(100), nullable=False),
        sa.Column("street", sa.String(255), nullable=False),
        sa.Column("building_number", sa.String(20), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("residences")
    op.drop_table("vehicles")
    op.drop_table("drivers")
    op.drop_table("merchants")
    op.drop_index("ix_accounts_phone_number", table_name="accounts")
    op.drop_table("accounts")
    op.drop_index("ix_registration_sessions_updated_at", table_name="registration_sessions")
    op.drop_index("ix_registration_sessions_phone_number", table_name="registration_sessions")
    op.drop_table("registration_sessions")

    bind = op.get_bind()
    for enum_type in (VEHICLE_TYPE, REGISTRATION_STEP, ACCOUNT_ROLE):
        enum_type.drop(bind, checkfirst=True)
