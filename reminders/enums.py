"""SQLAlchemy enum definitions for the database schema."""

import enum

from sqlalchemy import Enum as SQLEnum


# =====================================================
# Python Enum Classes
# =====================================================


class NotificationKind(str, enum.Enum):
    generic = "generic"
    appointment_reminder = "appointment_reminder"
    appointment_confirmation = "appointment_confirmation"
    appointment_cancellation = "appointment_cancellation"
    document_status = "document_status"


class NotificationChannel(str, enum.Enum):
    email = "email"
    sms = "sms"
    in_app = "in_app"


class NotificationStatus(str, enum.Enum):
    queued = "queued"
    sent = "sent"
    failed = "failed"


class AppointmentStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"


# Appointments that still need a reminder the day before
REMINDABLE_APPOINTMENT_STATUSES = (AppointmentStatus.pending, AppointmentStatus.confirmed)


# =====================================================
# SQLAlchemy Enum Types
# These reference existing PostgreSQL types (create_type=False)
# =====================================================

notification_kind_enum = SQLEnum(
    NotificationKind, name="notification_type", create_type=False, native_enum=True
)
notification_channel_enum = SQLEnum(
    NotificationChannel, name="notification_method", create_type=False, native_enum=True
)
notification_status_enum = SQLEnum(
    NotificationStatus, name="notification_status", create_type=False, native_enum=True
)
appointment_status_enum = SQLEnum(
    AppointmentStatus, name="appointment_status", create_type=False, native_enum=True
)
