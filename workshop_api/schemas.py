from dataclasses import dataclass
from datetime import datetime
import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from workshop_api.config import DEFAULT_MAX_SEATS
from workshop_api.models import DAYS_OF_WEEK

MOBILE_PATTERN = re.compile(r"^[0-9]{10}$")
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9/\-_.]+$")


# Purpose: Normalize a student identifier so lookups ignore case and padding.
def normalize_identifier(value: str) -> str:
    return value.strip().upper()


class SpotStudentFields(BaseModel):
    full_name: str = Field(min_length=2, max_length=120)
    mnc_registration_number: str = Field(min_length=1, max_length=80)
    mobile_number: str
    payment_utr: str = Field(min_length=4, max_length=80)

    @field_validator("full_name", "payment_utr")
    @classmethod
    # Purpose: Trim free-text fields before length checks are reported back.
    def strip_text(cls, value: str) -> str:
        return value.strip()

    @field_validator("mnc_registration_number")
    @classmethod
    # Purpose: Validate and normalize the secondary student identifier.
    def validate_registration_number(cls, value: str) -> str:
        normalized = normalize_identifier(value)
        if not normalized or not IDENTIFIER_PATTERN.fullmatch(normalized):
            raise ValueError("Invalid MNC registration number")
        return normalized

    @field_validator("mobile_number")
    @classmethod
    # Purpose: Require a 10-digit mobile number.
    def validate_mobile(cls, value: str) -> str:
        mobile = value.strip()
        if not MOBILE_PATTERN.fullmatch(mobile):
            raise ValueError("Invalid mobile number. Must be 10 digits.")
        return mobile


class StudentFields(SpotStudentFields):
    mnc_uid: str = Field(min_length=1, max_length=80)

    @field_validator("mnc_uid")
    @classmethod
    # Purpose: Validate and normalize the primary student identifier.
    def validate_uid(cls, value: str) -> str:
        normalized = normalize_identifier(value)
        if not normalized or not IDENTIFIER_PATTERN.fullmatch(normalized):
            raise ValueError("Invalid MNC UID")
        return normalized


class ScanFields(BaseModel):
    token: str | None = None
    mnc_uid: str | None = None
    mobile_number: str | None = None
    mnc_registration_number: str | None = None


@dataclass
class PaymentProof:
    filename: str
    content_type: str
    content: bytes


@dataclass
class DeviceInfo:
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    # Purpose: Coarse device identity from user agent and IP.
    def fingerprint(self) -> str:
        return f"{self.user_agent or ''}_{self.ip_address or ''}"[:128]


class RegistrationOut(BaseModel):
    id: str
    workshop_id: str
    form_number: int
    mnc_uid: str
    full_name: str
    mnc_registration_number: str
    mobile_number: str
    payment_utr: str
    payment_screenshot: str
    download_count: int
    registration_type: str
    attendance_status: str
    submitted_at: datetime
    ip_address: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceOut(BaseModel):
    id: int
    workshop_id: str
    registration_id: str
    mnc_uid: str
    mnc_registration_number: str
    student_name: str
    marked_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None

    model_config = ConfigDict(from_attributes=True)


class WorkshopOut(BaseModel):
    id: str
    title: str
    description: str
    date: datetime
    day_of_week: str
    venue: str
    venue_link: str
    fee: float
    credits: int
    max_seats: int
    current_registrations: int
    seats_remaining: int
    status: str
    qr_code_image: str
    registration_start_date: datetime | None = None
    registration_end_date: datetime | None = None
    spot_registration_enabled: bool
    spot_registration_limit: int
    current_spot_registrations: int
    created_by: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WorkshopPublicOut(BaseModel):
    id: str
    title: str
    description: str
    date: datetime
    day_of_week: str
    venue: str
    venue_link: str
    fee: float
    credits: int
    max_seats: int
    current_registrations: int
    seats_remaining: int
    qr_code_image: str
    status: str

    model_config = ConfigDict(from_attributes=True)


WorkshopStatus = Literal["draft", "upcoming", "active", "full", "completed", "cancelled", "spot"]


# Purpose: Accept day names in any case and store them upper-cased.
def _normalize_day(value: str | None) -> str | None:
    if value is None:
        return None
    day = value.strip().upper()
    if day not in DAYS_OF_WEEK:
        raise ValueError("Invalid day of week")
    return day


class WorkshopCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    date: datetime
    day_of_week: str | None = None
    venue: str = Field(min_length=1, max_length=200)
    venue_link: str = ""
    fee: float = Field(ge=0)
    credits: int = Field(ge=0)
    max_seats: int = Field(default=DEFAULT_MAX_SEATS, ge=1)
    status: WorkshopStatus = "draft"
    registration_start_date: datetime | None = None
    registration_end_date: datetime | None = None
    spot_registration_enabled: bool = False
    spot_registration_limit: int = Field(default=0, ge=0)
    created_by: str = "admin"

    @field_validator("day_of_week")
    @classmethod
    # Purpose: Accept a weekday name in any case.
    def validate_day_of_week(cls, value: str | None) -> str | None:
        return _normalize_day(value)


class WorkshopUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    date: datetime | None = None
    day_of_week: str | None = None
    venue: str | None = Field(default=None, min_length=1, max_length=200)
    venue_link: str | None = None
    fee: float | None = Field(default=None, ge=0)
    credits: int | None = Field(default=None, ge=0)
    max_seats: int | None = Field(default=None, ge=1)
    status: WorkshopStatus | None = None
    registration_start_date: datetime | None = None
    registration_end_date: datetime | None = None
    spot_registration_enabled: bool | None = None
    spot_registration_limit: int | None = Field(default=None, ge=0)

    @field_validator("day_of_week")
    @classmethod
    # Purpose: Accept a weekday name in any case.
    def validate_day_of_week(cls, value: str | None) -> str | None:
        return _normalize_day(value)


class StatusChange(BaseModel):
    status: WorkshopStatus
    spot_registration_enabled: bool | None = None
    spot_registration_limit: int | None = Field(default=None, ge=0)


class SpotSettings(BaseModel):
    spot_registration_enabled: bool | None = None
    spot_registration_limit: int | None = Field(default=None, ge=0)
