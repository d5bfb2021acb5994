from datetime import datetime
import logging
import secrets

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workshop_api.errors import (
    ActiveWorkshopConflict,
    CapacityFull,
    NotFound,
    SpotQuotaFull,
    ValidationError,
    WorkshopHasRegistrations,
    WorkshopNotAcceptingRegistrations,
)
from workshop_api.models import (
    AUTO_FULL_STATUSES,
    DAYS_OF_WEEK,
    REGISTRATION_SPOT,
    STATUS_ACTIVE,
    STATUS_FULL,
    STATUS_SPOT,
    STATUS_UPCOMING,
    WORKSHOP_ACTIVE_SLOT_INDEX,
    Registration,
    Workshop,
    as_utc,
    utcnow,
)
from workshop_api.schemas import SpotSettings, StatusChange, WorkshopCreate, WorkshopUpdate
from workshop_api.storage import LocalBlobStore

logger = logging.getLogger(__name__)

workshops_table = Workshop.__table__

ACTIVE_CONFLICT_MESSAGE = "Another workshop is already active. Please deactivate it first."


# Purpose: Generate a unique workshop identifier.
def new_workshop_id() -> str:
    return f"ws_{secrets.token_hex(8)}"


# Purpose: Load a workshop by id or fail with NotFound.
def get_workshop(db: Session, workshop_id: str) -> Workshop:
    workshop = db.get(Workshop, workshop_id)
    if workshop is None:
        raise NotFound("Workshop not found")
    return workshop


# Purpose: Re-read a workshop row, bypassing the session's identity map.
def reload_workshop(db: Session, workshop_id: str) -> Workshop:
    workshop = db.get(Workshop, workshop_id, populate_existing=True)
    if workshop is None:
        raise NotFound("Workshop not found")
    return workshop


# Purpose: Return the workshop currently holding the active slot, if any.
def get_active_workshop(db: Session) -> Workshop | None:
    return db.scalar(
        select(Workshop).where(Workshop.status == STATUS_ACTIVE).order_by(Workshop.date.asc()).limit(1)
    )


# Purpose: List upcoming and active workshops that have not started yet, soonest first.
def get_upcoming_workshops(db: Session, now: datetime | None = None) -> list[Workshop]:
    now = now or utcnow()
    stmt = (
        select(Workshop)
        .where(Workshop.status.in_((STATUS_UPCOMING, STATUS_ACTIVE)), Workshop.date >= now)
        .order_by(Workshop.date.asc())
    )
    return list(db.scalars(stmt).all())


# Purpose: Return the active workshop, else the nearest upcoming one.
def get_latest_workshop(db: Session, now: datetime | None = None) -> Workshop | None:
    active = get_active_workshop(db)
    if active is not None:
        return active
    now = now or utcnow()
    return db.scalar(
        select(Workshop)
        .where(Workshop.status == STATUS_UPCOMING, Workshop.date >= now)
        .order_by(Workshop.date.asc())
        .limit(1)
    )


# Purpose: List workshops for admins with optional status, date range and text filters.
def list_workshops(
    db: Session,
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
) -> list[Workshop]:
    stmt = select(Workshop)
    if status and status != "all":
        stmt = stmt.where(Workshop.status == status)
    if start_date is not None:
        stmt = stmt.where(Workshop.date >= start_date)
    if end_date is not None:
        stmt = stmt.where(Workshop.date <= end_date)
    if search:
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(func.lower(Workshop.title).like(pattern), func.lower(Workshop.description).like(pattern))
        )
    return list(db.scalars(stmt.order_by(Workshop.date.desc())).all())


# Purpose: Fail when another workshop already holds the single active slot.
def _ensure_no_other_active(db: Session, workshop_id: str | None) -> None:
    stmt = select(Workshop.id).where(Workshop.status == STATUS_ACTIVE)
    if workshop_id is not None:
        stmt = stmt.where(Workshop.id != workshop_id)
    if db.scalar(stmt.limit(1)) is not None:
        raise ActiveWorkshopConflict(ACTIVE_CONFLICT_MESSAGE)


# Purpose: Commit a workshop write, mapping a lost race for the active slot to ActiveWorkshopConflict.
def _commit_workshop(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if WORKSHOP_ACTIVE_SLOT_INDEX in str(exc.orig) or "active_slot" in str(exc.orig):
            logger.warning("Active slot already taken: %s", exc.orig)
            raise ActiveWorkshopConflict(ACTIVE_CONFLICT_MESSAGE) from exc
        raise


# Purpose: Insert a workshop, deriving the weekday and guarding the active slot.
def create_workshop(db: Session, payload: WorkshopCreate) -> Workshop:
    if payload.spot_registration_limit > payload.max_seats:
        raise ValidationError("Spot registration limit cannot exceed max seats", field="spot_registration_limit")

    data = payload.model_dump()
    data["day_of_week"] = data["day_of_week"] or DAYS_OF_WEEK[payload.date.weekday()]
    workshop = Workshop(id=new_workshop_id(), **data)

    if workshop.status == STATUS_ACTIVE:
        _ensure_no_other_active(db, None)

    db.add(workshop)
    _commit_workshop(db)
    db.refresh(workshop)
    logger.info("Workshop created: %s (%s, status=%s)", workshop.id, workshop.title, workshop.status)
    return workshop


# Purpose: Apply a partial admin edit without undercutting existing registrations.
def update_workshop(db: Session, workshop_id: str, payload: WorkshopUpdate) -> Workshop:
    workshop = db.get(Workshop, workshop_id, with_for_update=True)
    if workshop is None:
        raise NotFound("Workshop not found")

    changes = payload.model_dump(exclude_unset=True)
    for field in ("title", "venue", "fee", "credits", "max_seats", "status", "spot_registration_enabled",
                  "spot_registration_limit", "date", "day_of_week"):
        # Explicit nulls on non-nullable columns are ignored.
        if field in changes and changes[field] is None:
            del changes[field]

    max_seats = changes.get("max_seats", workshop.max_seats)
    if max_seats < workshop.current_registrations:
        raise ValidationError(
            f"Cannot reduce max seats below current registrations ({workshop.current_registrations})",
            field="max_seats",
        )
    spot_limit = changes.get("spot_registration_limit", workshop.spot_registration_limit)
    if spot_limit < workshop.current_spot_registrations:
        raise ValidationError(
            f"Cannot set limit below current spot registrations ({workshop.current_spot_registrations})",
            field="spot_registration_limit",
        )
    if spot_limit > max_seats:
        raise ValidationError("Spot registration limit cannot exceed max seats", field="spot_registration_limit")

    if changes.get("status") == STATUS_ACTIVE and workshop.status != STATUS_ACTIVE:
        _ensure_no_other_active(db, workshop.id)

    if "date" in changes and "day_of_week" not in changes:
        changes["day_of_week"] = DAYS_OF_WEEK[changes["date"].weekday()]

    for field, value in changes.items():
        setattr(workshop, field, value)
    workshop.updated_at = utcnow()
    _commit_workshop(db)
    db.refresh(workshop)
    logger.info("Workshop updated: %s fields=%s", workshop.id, sorted(changes))
    return workshop


# Purpose: Move a workshop to a new status, applying spot settings when entering spot mode.
def change_status(db: Session, workshop_id: str, payload: StatusChange) -> Workshop:
    workshop = db.get(Workshop, workshop_id, with_for_update=True)
    if workshop is None:
        raise NotFound("Workshop not found")

    if payload.status == STATUS_ACTIVE and workshop.status != STATUS_ACTIVE:
        _ensure_no_other_active(db, workshop.id)

    if payload.status == STATUS_SPOT:
        if payload.spot_registration_enabled is not None:
            workshop.spot_registration_enabled = payload.spot_registration_enabled
        if payload.spot_registration_limit is not None:
            _check_spot_limit(workshop, payload.spot_registration_limit)
            workshop.spot_registration_limit = payload.spot_registration_limit

    previous = workshop.status
    workshop.status = payload.status
    workshop.updated_at = utcnow()
    _commit_workshop(db)
    db.refresh(workshop)
    logger.info("Workshop %s status %s -> %s", workshop.id, previous, workshop.status)
    return workshop


# Purpose: Reject a spot limit below current spot registrations or above max seats.
def _check_spot_limit(workshop: Workshop, limit: int) -> None:
    if limit < workshop.current_spot_registrations:
        raise ValidationError(
            f"Cannot set limit below current spot registrations ({workshop.current_spot_registrations})",
            field="spot_registration_limit",
        )
    if limit > workshop.max_seats:
        raise ValidationError("Spot registration limit cannot exceed max seats", field="spot_registration_limit")


# Purpose: Toggle spot admission or change its sub-quota.
def update_spot_settings(db: Session, workshop_id: str, payload: SpotSettings) -> Workshop:
    workshop = db.get(Workshop, workshop_id, with_for_update=True)
    if workshop is None:
        raise NotFound("Workshop not found")

    if payload.spot_registration_enabled is not None:
        workshop.spot_registration_enabled = payload.spot_registration_enabled
    if payload.spot_registration_limit is not None:
        _check_spot_limit(workshop, payload.spot_registration_limit)
        workshop.spot_registration_limit = payload.spot_registration_limit

    workshop.updated_at = utcnow()
    db.commit()
    db.refresh(workshop)
    return workshop


# Purpose: Point the workshop at new payment QR artwork and drop the old file.
def set_qr_code_image(db: Session, workshop_id: str, reference: str, blobs: LocalBlobStore) -> Workshop:
    workshop = get_workshop(db, workshop_id)
    previous = workshop.qr_code_image
    workshop.qr_code_image = reference
    workshop.updated_at = utcnow()
    db.commit()
    db.refresh(workshop)
    if previous and previous != reference:
        blobs.delete(previous)
    return workshop


# Purpose: Count registration rows, optionally per workshop and per type.
def count_registrations(db: Session, workshop_id: str | None = None, registration_type: str | None = None) -> int:
    stmt = select(func.count()).select_from(Registration)
    if workshop_id is not None:
        stmt = stmt.where(Registration.workshop_id == workshop_id)
    if registration_type is not None:
        stmt = stmt.where(Registration.registration_type == registration_type)
    return db.scalar(stmt) or 0


# Purpose: Snapshot the cached ledger counters.
def _counters(workshop: Workshop) -> dict[str, int]:
    return {
        "current_registrations": workshop.current_registrations,
        "current_spot_registrations": workshop.current_spot_registrations,
    }


# Purpose: Overwrite the cached ledger counters with a recount of registration rows.
def sync_counters(db: Session, workshop_id: str) -> dict[str, dict[str, int]]:
    workshop = get_workshop(db, workshop_id)
    before = _counters(workshop)

    # Recount and write in one statement; the counts are taken when the UPDATE runs.
    rows = select(func.count()).select_from(Registration).where(Registration.workshop_id == workshop_id)
    spot_rows = rows.where(Registration.registration_type == REGISTRATION_SPOT)
    db.execute(
        update(workshops_table)
        .where(workshops_table.c.id == workshop_id)
        .values(
            current_registrations=rows.scalar_subquery(),
            current_spot_registrations=spot_rows.scalar_subquery(),
            updated_at=utcnow(),
        )
    )
    db.commit()

    after = _counters(reload_workshop(db, workshop_id))
    if before != after:
        logger.warning("Ledger drift repaired for %s: %s -> %s", workshop_id, before, after)
    else:
        logger.info("Ledger in sync for %s: %s", workshop_id, after)
    return {"before": before, "after": after}


# Purpose: SQL expression that flips an auto-full status once the seat cap is reached.
def _full_status_expression(registrations_after):
    c = workshops_table.c
    return case(
        (and_(registrations_after >= c.max_seats, c.status.in_(AUTO_FULL_STATUSES)), STATUS_FULL),
        else_=c.status,
    )


# Purpose: Take one online seat and the next form number in one conditional UPDATE inside the caller's transaction.
def reserve_online_seat(db: Session, workshop_id: str) -> int:
    c = workshops_table.c
    stmt = (
        update(workshops_table)
        .where(
            c.id == workshop_id,
            c.status == STATUS_ACTIVE,
            c.current_registrations < c.max_seats,
        )
        # status first: MySQL evaluates later assignments against already-updated columns.
        .ordered_values(
            (c.status, _full_status_expression(c.current_registrations + 1)),
            (c.current_registrations, c.current_registrations + 1),
            (c.last_form_number, c.last_form_number + 1),
            (c.updated_at, utcnow()),
        )
    )
    result = db.execute(stmt)
    if result.rowcount != 1:
        db.rollback()
        workshop = reload_workshop(db, workshop_id)
        logger.warning("Online seat reservation lost for %s (status=%s)", workshop_id, workshop.status)
        raise_online_gate_error(workshop)
    return _read_form_number(db, workshop_id)


# Purpose: Take one seat from both the main cap and the spot sub-quota.
def reserve_spot_seat(db: Session, workshop_id: str) -> int:
    c = workshops_table.c
    stmt = (
        update(workshops_table)
        .where(
            c.id == workshop_id,
            c.spot_registration_enabled.is_(True),
            c.current_spot_registrations < c.spot_registration_limit,
            c.current_registrations < c.max_seats,
        )
        .ordered_values(
            (c.status, _full_status_expression(c.current_registrations + 1)),
            (c.current_registrations, c.current_registrations + 1),
            (c.current_spot_registrations, c.current_spot_registrations + 1),
            (c.last_form_number, c.last_form_number + 1),
            (c.updated_at, utcnow()),
        )
    )
    result = db.execute(stmt)
    if result.rowcount != 1:
        db.rollback()
        workshop = reload_workshop(db, workshop_id)
        logger.warning("Spot seat reservation lost for %s", workshop_id)
        raise_spot_gate_error(workshop)
    return _read_form_number(db, workshop_id)


# Purpose: Read the form number just claimed in this transaction.
def _read_form_number(db: Session, workshop_id: str) -> int:
    return db.scalar(select(workshops_table.c.last_form_number).where(workshops_table.c.id == workshop_id))


# Purpose: Raise the error explaining why an online admission was refused.
def raise_online_gate_error(workshop: Workshop) -> None:
    if workshop.status == STATUS_FULL or (
        workshop.status == STATUS_ACTIVE and workshop.current_registrations >= workshop.max_seats
    ):
        raise CapacityFull(f"Registration closed. All {workshop.max_seats} seats are filled.")
    raise WorkshopNotAcceptingRegistrations(workshop.status)


# Purpose: Raise the error explaining why a spot admission was refused.
def raise_spot_gate_error(workshop: Workshop) -> None:
    if not workshop.spot_registration_enabled:
        raise WorkshopNotAcceptingRegistrations(workshop.status)
    if workshop.current_spot_registrations >= workshop.spot_registration_limit:
        raise SpotQuotaFull("Spot registration is full for this workshop")
    raise CapacityFull(f"Registration closed. All {workshop.max_seats} seats are filled.")


# Purpose: Give back the seat held by a deleted registration.
def release_seat(db: Session, workshop_id: str, registration_type: str) -> None:
    c = workshops_table.c
    values = {
        c.current_registrations: case((c.current_registrations > 0, c.current_registrations - 1), else_=0),
        c.updated_at: utcnow(),
    }
    if registration_type == REGISTRATION_SPOT:
        values[c.current_spot_registrations] = case(
            (c.current_spot_registrations > 0, c.current_spot_registrations - 1),
            else_=0,
        )
    db.execute(update(workshops_table).where(c.id == workshop_id).values(values))


# Purpose: Delete a workshop once it has no registrations left.
def delete_workshop(db: Session, workshop_id: str, blobs: LocalBlobStore) -> None:
    workshop = get_workshop(db, workshop_id)
    registration_count = count_registrations(db, workshop_id)
    if workshop.current_registrations != registration_count:
        sync_counters(db, workshop_id)
    if registration_count > 0:
        raise WorkshopHasRegistrations(
            f"Cannot delete workshop. Found {registration_count} registration(s) in database. "
            "Please delete all registrations first."
        )

    qr_code_image = workshop.qr_code_image
    db.delete(workshop)
    db.commit()
    blobs.delete(qr_code_image)
    logger.info("Workshop deleted: %s", workshop_id)


# Purpose: Seat totals for one workshop, or the active one when none is named.
def registration_summary(db: Session, workshop_id: str | None = None) -> dict:
    if workshop_id is None:
        workshop = get_active_workshop(db)
        if workshop is None:
            raise NotFound("No active workshop available")
    else:
        workshop = get_workshop(db, workshop_id)

    total = count_registrations(db, workshop.id)
    return {
        "workshop_id": workshop.id,
        "total": total,
        "remaining": max(0, workshop.max_seats - total),
        "max_seats": workshop.max_seats,
        "is_full": total >= workshop.max_seats or workshop.status == STATUS_FULL,
        "status": workshop.status,
    }


# Purpose: True when the spot token on the workshop is set and not past expiry.
def has_live_spot_token(workshop: Workshop, now: datetime) -> bool:
    expiry = as_utc(workshop.spot_registration_token_expiry)
    return bool(workshop.spot_registration_qr_token) and expiry is not None and expiry > now
