from datetime import datetime
import logging
import secrets

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workshop_api.errors import DownloadLimitReached, DuplicateStudent, RegistrationNotFound
from workshop_api.models import (
    ATTENDANCE_APPLIED,
    ATTENDANCE_PRESENT,
    REGISTRATION_ONLINE,
    REGISTRATION_SPOT,
    Attendance,
    Registration,
    Workshop,
    utcnow,
)
from workshop_api.schemas import PaymentProof, SpotStudentFields, StudentFields, normalize_identifier
from workshop_api.services import ledger
from workshop_api.services.spot_tokens import resolve_spot_token
from workshop_api.storage import IMAGE_OR_PDF_TYPES, IMAGE_TYPES, LocalBlobStore

logger = logging.getLogger(__name__)

SPOT_UID_PREFIX = "SPOT-"


# Purpose: Generate a unique registration identifier.
def new_registration_id() -> str:
    return f"reg_{secrets.token_hex(8)}"


# Purpose: Convert DB unique constraint failures into duplicate-student errors.
def _constraint_error(exc: IntegrityError) -> DuplicateStudent:
    message = str(exc.orig)
    if "uq_registration_workshop_uid" in message or "mnc_uid" in message:
        return DuplicateStudent("This student is already registered for this workshop")
    return DuplicateStudent("Registration data conflicts with an existing registration")


# Purpose: Find a student's registration for a workshop by UID.
def find_by_uid(db: Session, workshop_id: str, mnc_uid: str) -> Registration | None:
    return db.scalar(
        select(Registration).where(Registration.workshop_id == workshop_id, Registration.mnc_uid == mnc_uid)
    )


# Purpose: Find a registration for a workshop by council registration number.
def find_by_registration_number(db: Session, workshop_id: str, registration_number: str) -> Registration | None:
    return db.scalar(
        select(Registration).where(
            Registration.workshop_id == workshop_id,
            Registration.mnc_registration_number == registration_number,
        )
    )


# Purpose: Admit an online registration: validate, store the payment proof, take a seat and insert.
def admit_online(
    db: Session,
    blobs: LocalBlobStore,
    workshop_id: str,
    fields: StudentFields,
    proof: PaymentProof | None,
    ip_address: str | None = None,
) -> Registration:
    workshop = ledger.get_workshop(db, workshop_id)
    if not workshop.can_accept_registrations():
        ledger.raise_online_gate_error(workshop)

    if find_by_uid(db, workshop_id, fields.mnc_uid) is not None:
        raise DuplicateStudent("This MNC UID is already registered for this workshop")

    blobs.validate(proof, IMAGE_TYPES, "payment_screenshot")
    reference = blobs.save("payments", "payment", proof)
    try:
        form_number = ledger.reserve_online_seat(db, workshop_id)
        registration = Registration(
            id=new_registration_id(),
            workshop_id=workshop_id,
            form_number=form_number,
            mnc_uid=fields.mnc_uid,
            full_name=fields.full_name,
            mnc_registration_number=fields.mnc_registration_number,
            mobile_number=fields.mobile_number,
            payment_utr=fields.payment_utr,
            payment_screenshot=reference,
            registration_type=REGISTRATION_ONLINE,
            attendance_status=ATTENDANCE_APPLIED,
            submitted_at=utcnow(),
            ip_address=ip_address,
        )
        db.add(registration)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise _constraint_error(exc) from exc
    except Exception:
        blobs.delete(reference)
        raise

    db.refresh(registration)
    logger.info(
        "Registration admitted: workshop=%s form=%s uid=%s",
        workshop_id,
        registration.form_number,
        registration.mnc_uid,
    )
    return registration


# Purpose: Repair the cached spot counters when they disagree with a recount.
def _ensure_spot_counters_fresh(db: Session, workshop: Workshop) -> Workshop:
    total = ledger.count_registrations(db, workshop.id)
    spot = ledger.count_registrations(db, workshop.id, REGISTRATION_SPOT)
    if total == workshop.current_registrations and spot == workshop.current_spot_registrations:
        return workshop
    ledger.sync_counters(db, workshop.id)
    return ledger.reload_workshop(db, workshop.id)


# Purpose: Admit a walk-in through a live spot link; simultaneous duplicates collide on the derived UID.
def admit_spot(
    db: Session,
    blobs: LocalBlobStore,
    token: str | None,
    fields: SpotStudentFields,
    proof: PaymentProof | None,
    ip_address: str | None = None,
    auto_mark_present: bool = False,
) -> Registration:
    workshop = resolve_spot_token(db, token)
    workshop = _ensure_spot_counters_fresh(db, workshop)
    if not workshop.can_accept_spot_registrations():
        ledger.raise_spot_gate_error(workshop)

    if find_by_registration_number(db, workshop.id, fields.mnc_registration_number) is not None:
        raise DuplicateStudent("This MNC Registration Number is already registered for this workshop")

    blobs.validate(proof, IMAGE_OR_PDF_TYPES, "payment_screenshot")
    reference = blobs.save("payments", "spot-payment", proof)
    workshop_id = workshop.id
    try:
        form_number = ledger.reserve_spot_seat(db, workshop_id)
        now = utcnow()
        registration = Registration(
            id=new_registration_id(),
            workshop_id=workshop_id,
            form_number=form_number,
            mnc_uid=f"{SPOT_UID_PREFIX}{fields.mnc_registration_number}",
            full_name=fields.full_name,
            mnc_registration_number=fields.mnc_registration_number,
            mobile_number=fields.mobile_number,
            payment_utr=fields.payment_utr,
            payment_screenshot=reference,
            registration_type=REGISTRATION_SPOT,
            attendance_status=ATTENDANCE_PRESENT if auto_mark_present else ATTENDANCE_APPLIED,
            submitted_at=now,
            ip_address=ip_address,
        )
        db.add(registration)
        try:
            db.flush()
            if auto_mark_present:
                _mark_spot_attendance(db, registration, token, ip_address, now)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise _constraint_error(exc) from exc
    except Exception:
        blobs.delete(reference)
        raise

    db.refresh(registration)
    logger.info(
        "Spot registration admitted: workshop=%s form=%s regno=%s present=%s",
        workshop_id,
        registration.form_number,
        registration.mnc_registration_number,
        auto_mark_present,
    )
    return registration


# Purpose: Record a spot registrant as present at admission time.
def _mark_spot_attendance(
    db: Session,
    registration: Registration,
    token: str,
    ip_address: str | None,
    now: datetime,
) -> None:
    existing = db.scalar(
        select(Attendance.id).where(
            Attendance.workshop_id == registration.workshop_id,
            Attendance.mnc_uid == registration.mnc_uid,
        )
    )
    if existing is not None:
        return
    db.add(
        Attendance(
            workshop_id=registration.workshop_id,
            registration_id=registration.id,
            mnc_uid=registration.mnc_uid,
            mnc_registration_number=registration.mnc_registration_number,
            student_name=registration.full_name,
            qr_token=token,
            marked_at=now,
            ip_address=ip_address,
            device_fingerprint="spot-registration",
        )
    )


# Purpose: Delete a registration and give its seat back in one transaction.
def delete_registration(db: Session, blobs: LocalBlobStore, registration_id: str) -> None:
    registration = db.get(Registration, registration_id)
    if registration is None:
        raise RegistrationNotFound("Registration not found")

    workshop_id = registration.workshop_id
    registration_type = registration.registration_type
    screenshot = registration.payment_screenshot

    db.execute(delete(Attendance).where(Attendance.registration_id == registration_id))
    db.delete(registration)
    db.flush()
    ledger.release_seat(db, workshop_id, registration_type)
    db.commit()

    blobs.delete(screenshot)
    logger.info("Registration deleted: %s (workshop=%s, type=%s)", registration_id, workshop_id, registration_type)


# Purpose: Look up a student's registration by UID and mobile for the form download.
def find_for_student(
    db: Session,
    mnc_uid: str,
    mobile_number: str,
    workshop_id: str | None = None,
) -> Registration:
    stmt = select(Registration).where(
        Registration.mnc_uid == normalize_identifier(mnc_uid),
        Registration.mobile_number == mobile_number.strip(),
    )
    if workshop_id:
        stmt = stmt.where(Registration.workshop_id == workshop_id)
    registration = db.scalar(stmt.order_by(Registration.submitted_at.desc()).limit(1))
    if registration is None:
        raise RegistrationNotFound("No registration found with these details")
    return registration


# Purpose: Count one self-service confirmation download, refusing past the limit.
def record_download(
    db: Session,
    mnc_uid: str,
    mobile_number: str,
    limit: int,
    workshop_id: str | None = None,
) -> Registration:
    registration = find_for_student(db, mnc_uid, mobile_number, workshop_id)
    result = db.execute(
        update(Registration.__table__)
        .where(
            Registration.__table__.c.id == registration.id,
            Registration.__table__.c.download_count < limit,
        )
        .values(download_count=Registration.__table__.c.download_count + 1)
    )
    db.commit()
    if result.rowcount != 1:
        raise DownloadLimitReached(f"Download limit reached. You have already downloaded {limit} times.")
    db.refresh(registration)
    return registration


# Purpose: Page through registrations with an optional free-text search.
def list_registrations(
    db: Session,
    workshop_id: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[Registration], int]:
    conditions = []
    if workshop_id:
        conditions.append(Registration.workshop_id == workshop_id)
    if search:
        pattern = f"%{search.strip().lower()}%"
        conditions.append(
            or_(
                func.lower(Registration.full_name).like(pattern),
                func.lower(Registration.mnc_uid).like(pattern),
                func.lower(Registration.mnc_registration_number).like(pattern),
                Registration.mobile_number.like(pattern),
                func.lower(Registration.payment_utr).like(pattern),
            )
        )

    total = db.scalar(select(func.count()).select_from(Registration).where(*conditions)) or 0
    rows = db.scalars(
        select(Registration)
        .where(*conditions)
        .order_by(Registration.submitted_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return list(rows), total


# Purpose: Seat and registration totals for the admin dashboard.
def dashboard_stats(db: Session, workshop_id: str | None = None) -> dict:
    recent_stmt = select(Registration).order_by(Registration.submitted_at.desc()).limit(10)
    if workshop_id:
        workshop = ledger.get_workshop(db, workshop_id)
        total = ledger.count_registrations(db, workshop_id)
        max_registrations = workshop.max_seats
        recent_stmt = recent_stmt.where(Registration.workshop_id == workshop_id)
        extra = {"workshop": {"id": workshop.id, "title": workshop.title, "status": workshop.status}}
    else:
        total = ledger.count_registrations(db)
        max_registrations = db.scalar(select(func.coalesce(func.sum(Workshop.max_seats), 0))) or 0
        workshop_count = db.scalar(select(func.count()).select_from(Workshop)) or 0
        extra = {"workshop_count": workshop_count}

    percentage = round(total / max_registrations * 100, 2) if total and max_registrations else 0.0
    return {
        "total": total,
        "remaining": max(0, max_registrations - total),
        "max_registrations": max_registrations,
        "percentage_filled": percentage,
        "recent_registrations": list(db.scalars(recent_stmt).all()),
        **extra,
    }
