"""Initial schema: offers, requests, their locations, and pairings.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

OPEN_PAIRINGS = sa.text("status IN ('pending', 'confirmed')")


def _enum(*values: str) -> sa.Enum:
    # stored as VARCHAR + CHECK, matching the ORM's non-native enums
    return sa.Enum(*values, native_enum=False, length=20)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    ]


def _location_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("address", sa.String(500), nullable=False),
        sa.Column("lat", sa.Float, nullable=True),
        sa.Column("lng", sa.Float, nullable=True),
        sa.Column("trip_direction", _enum("going", "return"), nullable=False),
        sa.Column(
            "time_type",
            _enum("flexible", "specific"),
            server_default="flexible",
            nullable=False,
        ),
        sa.Column("specific_time", sa.Time, nullable=True),
        sa.Column("sort_order", sa.Integer, server_default="0", nullable=False),
    ]


def upgrade() -> None:
    # ── offers ────────────────────────────────────────────────────────
    op.create_table(
        "offers",
        sa.Column("id", sa.String(40), primary_key=True),
        sa.Column("event_id", sa.String(64), nullable=False),
        sa.Column("owner_account_id", sa.String(64), nullable=False),
        sa.Column("total_seats", sa.Integer, nullable=False),
        sa.Column("available_seats", sa.Integer, nullable=False),
        sa.Column("trip_type", _enum("going", "return", "both"), nullable=False),
        sa.Column(
            "privacy",
            _enum("public", "private"),
            server_default="public",
            nullable=False,
        ),
        sa.Column(
            "payment_policy",
            _enum("not_required", "optional", "obligatory"),
            server_default="not_required",
            nullable=False,
        ),
        sa.Column("payment_amount", sa.Float, nullable=True),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "status",
            _enum("active", "cancelled"),
            server_default="active",
            nullable=False,
        ),
        *_timestamps(),
        sa.CheckConstraint("total_seats >= 1", name="ck_offers_total_seats"),
        sa.CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_offers_available_seats",
        ),
    )
    op.create_index("idx_offers_event", "offers", ["event_id"])
    op.create_index("idx_offers_owner", "offers", ["owner_account_id"])
    op.create_index("idx_offers_status", "offers", ["status"])

    op.create_table(
        "offer_locations",
        *_location_columns(),
        sa.Column(
            "offer_id",
            sa.String(40),
            sa.ForeignKey("offers.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    op.create_index("idx_offer_locations_offer", "offer_locations", ["offer_id"])

    # ── ride_requests ─────────────────────────────────────────────────
    op.create_table(
        "ride_requests",
        sa.Column("id", sa.String(40), primary_key=True),
        sa.Column("event_id", sa.String(64), nullable=False),
        sa.Column("owner_account_id", sa.String(64), nullable=False),
        sa.Column("passenger_count", sa.Integer, server_default="1", nullable=False),
        sa.Column("trip_type", _enum("going", "return", "both"), nullable=False),
        sa.Column(
            "privacy",
            _enum("public", "private"),
            server_default="public",
            nullable=False,
        ),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "status",
            _enum("active", "cancelled"),
            server_default="active",
            nullable=False,
        ),
        *_timestamps(),
        sa.CheckConstraint("passenger_count >= 1", name="ck_requests_passenger_count"),
    )
    op.create_index("idx_requests_event", "ride_requests", ["event_id"])
    op.create_index("idx_requests_owner", "ride_requests", ["owner_account_id"])
    op.create_index("idx_requests_status", "ride_requests", ["status"])

    op.create_table(
        "request_locations",
        *_location_columns(),
        sa.Column(
            "request_id",
            sa.String(40),
            sa.ForeignKey("ride_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    op.create_index(
        "idx_request_locations_request", "request_locations", ["request_id"]
    )

    # ── pairings ──────────────────────────────────────────────────────
    op.create_table(
        "pairings",
        sa.Column("id", sa.String(40), primary_key=True),
        sa.Column(
            "offer_id",
            sa.String(40),
            sa.ForeignKey("offers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "request_id",
            sa.String(40),
            sa.ForeignKey("ride_requests.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("driver_account_id", sa.String(64), nullable=False),
        sa.Column("passenger_account_id", sa.String(64), nullable=False),
        sa.Column("initiated_by", _enum("driver", "passenger"), nullable=False),
        sa.Column("passenger_count", sa.Integer, server_default="1", nullable=False),
        sa.Column("pickup_address", sa.String(500), nullable=True),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lng", sa.Float, nullable=True),
        sa.Column(
            "status",
            _enum("pending", "confirmed", "rejected", "cancelled"),
            server_default="pending",
            nullable=False,
        ),
        sa.Column("message", sa.String(500), nullable=True),
        sa.Column("close_message", sa.String(500), nullable=True),
        *_timestamps(),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_pairings_offer", "pairings", ["offer_id"])
    op.create_index("idx_pairings_request", "pairings", ["request_id"])
    op.create_index("idx_pairings_driver", "pairings", ["driver_account_id"])
    op.create_index("idx_pairings_passenger", "pairings", ["passenger_account_id"])
    op.create_index("idx_pairings_status", "pairings", ["status"])
    # at most one pending / confirmed pairing per (offer, passenger)
    op.create_index(
        "uq_pairings_open",
        "pairings",
        ["offer_id", "passenger_account_id"],
        unique=True,
        postgresql_where=OPEN_PAIRINGS,
    )


def downgrade() -> None:
    op.drop_table("pairings")
    op.drop_table("request_locations")
    op.drop_table("ride_requests")
    op.drop_table("offer_locations")
    op.drop_table("offers")
