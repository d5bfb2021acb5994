from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Computed,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from workshop_api.db import Base

STATUS_DRAFT = "draft"
STATUS_UPCOMING = "upcoming"
STATUS_ACTIVE = "active"
STATUS_FULL = "full"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_SPOT = "spot"

WORKSHOP_STATUSES = (
    STATUS_DRAFT,
    STATUS_UPCOMING,
    STATUS_ACTIVE,
    STATUS_FULL,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_SPOT,
)

# Statuses that flip to "full" once the last seat is taken.
AUTO_FULL_STATUSES = (STATUS_ACTIVE, STATUS_SPOT)

REGISTRATION_ONLINE = "online"
REGISTRATION_SPOT = "spot"

ATTENDANCE_APPLIED = "applied"
ATTENDANCE_PRESENT = "present"

DAYS_OF_WEEK = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")

# Unique index over a column that is 1 only while status is active; other rows hold NULL.
WORKSHOP_ACTIVE_SLOT_INDEX = "uq_workshop_single_active"


# Purpose: Return current UTC timestamp for created/updated fields.
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Purpose: Attach UTC to naive timestamps read back from backends without tz support.
def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Workshop(Base):
    __tablename__ = "workshops"
    __table_args__ = (
        CheckConstraint("max_seats >= 1", name="ck_workshop_max_seats_positive"),
        CheckConstraint("current_registrations >= 0", name="ck_workshop_registrations_non_negative"),
        CheckConstraint("current_registrations <= max_seats", name="ck_workshop_registrations_lte_seats"),
        CheckConstraint("current_spot_registrations >= 0", name="ck_workshop_spot_non_negative"),
        CheckConstraint(
            "current_spot_registrations <= current_registrations",
            name="ck_workshop_spot_lte_registrations",
        ),
        CheckConstraint(
            "current_spot_registrations <= spot_registration_limit",
            name="ck_workshop_spot_lte_limit",
        ),
        Index("ix_workshops_status_date", "status", "date"),
        Index(WORKSHOP_ACTIVE_SLOT_INDEX, "active_slot", unique=True),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    day_of_week: Mapped[str] = mapped_column(String(10), nullable=False)
    venue: Mapped[str] = mapped_column(String(200), nullable=False)
    venue_link: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    fee: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=500)
    current_registrations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_form_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_DRAFT)
    active_slot: Mapped[int | None] = mapped_column(
        Integer,
        Computed(f"CASE WHEN status = '{STATUS_ACTIVE}' THEN 1 END", persisted=True),
        nullable=True,
    )
    registration_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    registration_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    spot_registration_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    spot_registration_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_spot_registrations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    spot_registration_qr_token: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    spot_registration_token_expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    qr_code_image: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_by: Mapped[str] = mapped_column(String(80), nullable=False, default="admin")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    # Purpose: Seats left under the main cap.
    def seats_remaining(self) -> int:
        return max(0, self.max_seats - self.current_registrations)

    @property
    # Purpose: Seats left under the spot sub-quota.
    def spots_remaining(self) -> int:
        return max(0, self.spot_registration_limit - self.current_spot_registrations)

    # Purpose: Online-admission gate on the cached ledger counters.
    def can_accept_registrations(self) -> bool:
        return self.status == STATUS_ACTIVE and self.current_registrations < self.max_seats

    # Purpose: Spot-admission gate on the cached ledger counters.
    def can_accept_spot_registrations(self) -> bool:
        return (
            self.spot_registration_enabled
            and self.current_spot_registrations < self.spot_registration_limit
            and self.current_registrations < self.max_seats
        )


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (
        UniqueConstraint("workshop_id", "mnc_uid", name="uq_registration_workshop_uid"),
        UniqueConstraint("workshop_id", "form_number", name="uq_registration_workshop_form"),
        CheckConstraint("form_number >= 1", name="ck_registration_form_positive"),
        CheckConstraint("download_count >= 0", name="ck_registration_downloads_non_negative"),
        Index("ix_registrations_uid_mobile", "mnc_uid", "mobile_number"),
        Index("ix_registrations_workshop_submitted", "workshop_id", "submitted_at"),
        Index("ix_registrations_workshop_regno", "workshop_id", "mnc_registration_number"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    workshop_id: Mapped[str] = mapped_column(ForeignKey("workshops.id"), nullable=False, index=True)
    form_number: Mapped[int] = mapped_column(Integer, nullable=False)
    mnc_uid: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    mnc_registration_number: Mapped[str] = mapped_column(String(80), nullable=False)
    mobile_number: Mapped[str] = mapped_column(String(10), nullable=False)
    payment_utr: Mapped[str] = mapped_column(String(80), nullable=False)
    payment_screenshot: Mapped[str] = mapped_column(String(255), nullable=False)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    registration_type: Mapped[str] = mapped_column(String(10), nullable=False, default=REGISTRATION_ONLINE)
    attendance_status: Mapped[str] = mapped_column(String(10), nullable=False, default=ATTENDANCE_APPLIED)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)


class Attendance(Base):
    __tablename__ = "attendances"
    __table_args__ = (
        UniqueConstraint("workshop_id", "mnc_uid", name="uq_attendance_workshop_uid"),
        Index("ix_attendances_workshop_marked", "workshop_id", "marked_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workshop_id: Mapped[str] = mapped_column(ForeignKey("workshops.id"), nullable=False, index=True)
    registration_id: Mapped[str] = mapped_column(ForeignKey("registrations.id"), nullable=False)
    mnc_uid: Mapped[str] = mapped_column(String(80), nullable=False)
    mnc_registration_number: Mapped[str] = mapped_column(String(80), nullable=False)
    student_name: Mapped[str] = mapped_column(String(120), nullable=False)
    qr_token: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    marked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    device_fingerprint: Mapped[str | None] = mapped_column(String(128), nullable=True)
