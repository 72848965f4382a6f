"""SQLAlchemy Core table definitions for the database schema.

The booking tables (users, departments, services, officers, timeslots,
appointments) are owned by the booking API; only the columns the reminder
pipeline reads are declared here. The notifications table is the ledger.
"""

from sqlalchemy import (
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    Time,
    func,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP

from .enums import (
    appointment_status_enum,
    notification_channel_enum,
    notification_kind_enum,
    notification_status_enum,
)

# Naming convention for constraints (matches the booking API migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=convention)


# =====================================================
# 1. USERS
# =====================================================
users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("first_name", Text),
    Column("last_name", Text),
    Column("email", Text, nullable=False),
    Column("phone_number", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
)


# =====================================================
# 2. DEPARTMENTS / SERVICES
# =====================================================
departments = Table(
    "departments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
)

services = Table(
    "services",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "department_id",
        Integer,
        ForeignKey("departments.id", ondelete="CASCADE"),
    ),
    Column("name", Text, nullable=False),
    Column("duration_minutes", Integer),
)


# =====================================================
# 3. OFFICERS
# =====================================================
officers = Table(
    "officers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("department_id", Integer, ForeignKey("departments.id")),
    Column("position", Text),
)


# =====================================================
# 4. TIMESLOTS / APPOINTMENTS
# =====================================================
timeslots = Table(
    "timeslots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("service_id", Integer, ForeignKey("services.id", ondelete="CASCADE")),
    Column("slot_date", Date, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    Index("idx_timeslots_slot_date", "slot_date"),
)

appointments = Table(
    "appointments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("service_id", Integer, ForeignKey("services.id")),
    Column("officer_id", Integer, ForeignKey("officers.id", ondelete="SET NULL")),
    Column("timeslot_id", Integer, ForeignKey("timeslots.id")),
    Column("booking_reference", Text, nullable=False, unique=True),
    Column("status", appointment_status_enum, nullable=False),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
)


# =====================================================
# 5. NOTIFICATIONS (ledger)
# =====================================================
notifications = Table(
    "notifications",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "appointment_id",
        Integer,
        ForeignKey("appointments.id", ondelete="SET NULL"),
    ),  # NULL for notifications not tied to an appointment
    Column("type", notification_kind_enum, nullable=False),
    Column("method", notification_channel_enum, nullable=False),
    Column("message", Text, nullable=False),
    Column("status", notification_status_enum, nullable=False),
    Column("sent_at", TIMESTAMP(timezone=True)),
    Column("error_message", Text),  # Why delivery failed (if applicable)
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Index("idx_notifications_user_id", "user_id"),
    Index("idx_notifications_created_at", "created_at"),
    # Reminder idempotency lookups
    Index("idx_notifications_appointment_type", "appointment_id", "type"),
)
