import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workshop_api.errors import AlreadyMarked, InvalidOrExpiredToken, RegistrationNotFound, ValidationError
from workshop_api.models import ATTENDANCE_PRESENT, Attendance, Registration, Workshop, utcnow
from workshop_api.schemas import DeviceInfo, ScanFields, normalize_identifier
from workshop_api.services import ledger
from workshop_api.tokens import AttendanceTokenBroker

logger = logging.getLogger(__name__)

LOOKUP_FAILED_MESSAGE = (
    "No registration found with the provided details for this workshop. "
    "Please check your MNC UID and Mobile Number match your registration."
)


# Purpose: Mint an attendance token for an existing workshop.
def issue_attendance_token(db: Session, broker: AttendanceTokenBroker, workshop_id: str) -> dict:
    workshop = ledger.get_workshop(db, workshop_id)
    token, expires_at = broker.issue(workshop.id)
    logger.info("Attendance token issued for workshop %s", workshop.id)
    return {
        "token": token,
        "expires_at": expires_at,
        "workshop_id": workshop.id,
        "workshop_title": workshop.title,
    }


# Purpose: Reject scans with missing fields before touching the database.
def _validate_presence(fields: ScanFields) -> None:
    if not (fields.token or "").strip():
        raise InvalidOrExpiredToken("QR code not scanned. Please scan the QR code first.")
    has_registration_number = bool((fields.mnc_registration_number or "").strip())
    if not has_registration_number and not (fields.mnc_uid or "").strip():
        raise ValidationError("MNC UID is required. Please enter your MNC UID.", field="mnc_uid")
    if not has_registration_number and not (fields.mobile_number or "").strip():
        raise ValidationError(
            "Mobile Number is required. Please enter your mobile number.",
            field="mobile_number",
        )


# Purpose: Find the single registration in the token's workshop matching the scanned fields.
def _resolve_registration(db: Session, workshop_id: str, fields: ScanFields) -> Registration:
    stmt = select(Registration).where(Registration.workshop_id == workshop_id)
    if (fields.mnc_registration_number or "").strip():
        stmt = stmt.where(
            Registration.mnc_registration_number == normalize_identifier(fields.mnc_registration_number)
        )
    else:
        stmt = stmt.where(
            func.upper(Registration.mnc_uid) == normalize_identifier(fields.mnc_uid),
            Registration.mobile_number == fields.mobile_number.strip(),
        )

    matches = db.scalars(stmt.limit(2)).all()
    if len(matches) != 1:
        logger.info("Attendance lookup failed: workshop=%s matches=%s", workshop_id, len(matches))
        raise RegistrationNotFound(LOOKUP_FAILED_MESSAGE)
    return matches[0]


# Purpose: True when the student already has an attendance row for the workshop.
def _already_marked(db: Session, workshop_id: str, mnc_uid: str) -> bool:
    return (
        db.scalar(
            select(Attendance.id).where(Attendance.workshop_id == workshop_id, Attendance.mnc_uid == mnc_uid)
        )
        is not None
    )


# Purpose: Mark a student present; the token is claimed before the insert and handed back if the insert fails.
def scan(
    db: Session,
    broker: AttendanceTokenBroker,
    fields: ScanFields,
    device: DeviceInfo,
) -> tuple[Attendance, Registration, Workshop | None]:
    _validate_presence(fields)
    token = fields.token.strip()
    entry = broker.redeem(token)

    registration = _resolve_registration(db, entry.workshop_id, fields)
    if _already_marked(db, entry.workshop_id, registration.mnc_uid):
        raise AlreadyMarked("Attendance already marked for this student")

    claimed = broker.consume(token)
    attendance = Attendance(
        workshop_id=entry.workshop_id,
        registration_id=registration.id,
        mnc_uid=registration.mnc_uid,
        mnc_registration_number=registration.mnc_registration_number,
        student_name=registration.full_name,
        qr_token=token,
        marked_at=utcnow(),
        ip_address=device.ip_address,
        user_agent=device.user_agent,
        device_fingerprint=device.fingerprint,
    )
    db.add(attendance)
    registration.attendance_status = ATTENDANCE_PRESENT
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        broker.release(token, claimed)
        raise AlreadyMarked("Attendance already marked for this student") from exc
    except Exception:
        db.rollback()
        broker.release(token, claimed)
        raise

    db.refresh(attendance)
    db.refresh(registration)
    logger.info(
        "Attendance marked: workshop=%s uid=%s name=%s",
        entry.workshop_id,
        registration.mnc_uid,
        registration.full_name,
    )
    return attendance, registration, db.get(Workshop, entry.workshop_id)


# Purpose: Present and absent totals for a workshop.
def attendance_stats(db: Session, workshop_id: str) -> dict:
    ledger.get_workshop(db, workshop_id)
    total_registrations = ledger.count_registrations(db, workshop_id)
    total_present = db.scalar(
        select(func.count()).select_from(Attendance).where(Attendance.workshop_id == workshop_id)
    ) or 0
    percentage = round(total_present / total_registrations * 100, 2) if total_registrations else 0.0
    return {
        "total_registrations": total_registrations,
        "total_present": total_present,
        "total_applied": total_registrations - total_present,
        "attendance_percentage": percentage,
    }


# Purpose: Attendance rows for a workshop, newest first.
def list_attendance(db: Session, workshop_id: str, limit: int | None = None) -> list[Attendance]:
    stmt = select(Attendance).where(Attendance.workshop_id == workshop_id).order_by(Attendance.marked_at.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.scalars(stmt).all())


# Purpose: Attendance row for one student, if marked.
def student_attendance(db: Session, workshop_id: str, mnc_uid: str) -> Attendance | None:
    return db.scalar(
        select(Attendance).where(
            Attendance.workshop_id == workshop_id,
            Attendance.mnc_uid == normalize_identifier(mnc_uid),
        )
    )
