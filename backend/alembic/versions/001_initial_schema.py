"""Initial schema: users, fleet, schedules, bookings, seat assignments, predictions.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # Routes and buses are deactivated, never deleted
    op.create_table(
        "routes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("from_location", sa.String(255), nullable=False),
        sa.Column("to_location", sa.String(255), nullable=False),
        sa.Column("distance", sa.Numeric(8, 2), nullable=False),
        sa.Column("estimated_duration", sa.Integer(), nullable=False),
        sa.Column("stops", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.CheckConstraint("estimated_duration > 0", name="check_route_duration_positive"),
    )

    op.create_table(
        "buses",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("number", sa.String(32), nullable=False),
        sa.Column("operator", sa.String(255), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("amenities", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.CheckConstraint("capacity > 0", name="check_bus_capacity_positive"),
    )
    op.create_index("ix_buses_number", "buses", ["number"], unique=True)

    # Schedules table
    op.create_table(
        "schedules",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("bus_id", sa.String(36), sa.ForeignKey("buses.id"), nullable=False),
        sa.Column("route_id", sa.String(36), sa.ForeignKey("routes.id"), nullable=False),
        sa.Column("departure_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("arrival_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("available_seats", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'scheduled'")),
        sa.Column("is_optimized", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("available_seats >= 0", name="check_available_seats_non_negative"),
        sa.CheckConstraint("price >= 0", name="check_price_non_negative"),
        sa.CheckConstraint("arrival_time > departure_time", name="check_arrival_after_departure"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'in_progress', 'completed', 'cancelled')",
            name="check_schedule_status",
        ),
    )
    op.create_index("ix_schedules_bus_id", "schedules", ["bus_id"])
    # Schedule search filters by route and departure day
    op.create_index("ix_schedules_route_departure", "schedules", ["route_id", "departure_time"])

    # Bookings table
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("schedule_id", sa.String(36), sa.ForeignKey("schedules.id"), nullable=False),
        sa.Column("seat_numbers", sa.JSON(), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'confirmed'")),
        sa.Column("passenger_details", sa.JSON(), nullable=False),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'completed'")),
        sa.Column("transaction_id", sa.String(64), nullable=True),
        sa.Column("booked_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("total_amount >= 0", name="check_booking_amount_non_negative"),
        sa.CheckConstraint("status IN ('confirmed', 'cancelled', 'completed')", name="check_booking_status"),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed')", name="check_payment_status"
        ),
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_schedule_id", "bookings", ["schedule_id"])

    # One row per seat currently held. The primary key is what makes
    # selling the same seat twice impossible.
    op.create_table(
        "seat_assignments",
        sa.Column("schedule_id", sa.String(36), sa.ForeignKey("schedules.id"), primary_key=True),
        sa.Column("seat_label", sa.String(16), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.id"), nullable=False),
    )
    op.create_index("ix_seat_assignments_booking_id", "seat_assignments", ["booking_id"])

    # One current location per bus, updated in place
    op.create_table(
        "bus_locations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("bus_id", sa.String(36), sa.ForeignKey("buses.id"), nullable=False, unique=True),
        sa.Column("schedule_id", sa.String(36), sa.ForeignKey("schedules.id"), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("current_stop", sa.String(255), nullable=True),
        sa.Column("occupancy", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("delay", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("occupancy >= 0", name="check_occupancy_non_negative"),
        sa.CheckConstraint("delay >= 0", name="check_delay_non_negative"),
    )

    op.create_table(
        "demand_predictions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("route_id", sa.String(36), sa.ForeignKey("routes.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("hour", sa.Integer(), nullable=False),
        sa.Column("predicted_demand", sa.Integer(), nullable=False),
        sa.Column("actual_demand", sa.Integer(), nullable=True),
        sa.Column("accuracy", sa.Numeric(5, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_demand_predictions_route_date", "demand_predictions", ["route_id", "date"])


def downgrade() -> None:
    op.drop_table("demand_predictions")
    op.drop_table("bus_locations")
    op.drop_table("seat_assignments")
    op.drop_table("bookings")
    op.drop_table("schedules")
    op.drop_table("buses")
    op.drop_table("routes")
    op.drop_table("users")
