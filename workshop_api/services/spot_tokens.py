from datetime import datetime, timedelta
import logging

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from workshop_api.errors import InvalidOrExpiredToken, SpotQuotaFull, WorkshopNotAcceptingRegistrations
from workshop_api.models import Workshop, as_utc, utcnow
from workshop_api.services.ledger import get_workshop, reload_workshop, workshops_table
from workshop_api.tokens import new_token

logger = logging.getLogger(__name__)


# Purpose: Return the workshop's live spot-registration token, minting one only when absent or expired.
def issue_spot_token(
    db: Session,
    workshop_id: str,
    ttl_hours: int,
    rotate: bool = False,
    now: datetime | None = None,
) -> Workshop:
    now = now or utcnow()
    workshop = get_workshop(db, workshop_id)
    if not workshop.spot_registration_enabled:
        raise WorkshopNotAcceptingRegistrations(
            workshop.status,
            "Spot registration is not enabled for this workshop",
        )

    c = workshops_table.c
    stmt = update(workshops_table).where(c.id == workshop_id)
    if not rotate:
        # Concurrent callers converge on whichever token lands first.
        stmt = stmt.where(
            or_(
                c.spot_registration_qr_token.is_(None),
                c.spot_registration_token_expiry.is_(None),
                c.spot_registration_token_expiry <= now,
            )
        )
    result = db.execute(
        stmt.values(
            spot_registration_qr_token=new_token(),
            spot_registration_token_expiry=now + timedelta(hours=ttl_hours),
            updated_at=now,
        )
    )
    db.commit()

    if result.rowcount:
        logger.info("Spot registration token %s for workshop %s", "rotated" if rotate else "issued", workshop_id)
    return reload_workshop(db, workshop_id)


# Purpose: Resolve a spot link token to its workshop or fail with the reason.
def resolve_spot_token(db: Session, token: str | None, now: datetime | None = None) -> Workshop:
    if not token:
        raise InvalidOrExpiredToken("Token is required")
    workshop = db.scalar(
        select(Workshop).where(
            Workshop.spot_registration_qr_token == token,
            Workshop.spot_registration_enabled.is_(True),
        )
    )
    if workshop is None:
        raise InvalidOrExpiredToken("Invalid or expired registration link")

    expiry = as_utc(workshop.spot_registration_token_expiry)
    if expiry is None or expiry <= (now or utcnow()):
        raise InvalidOrExpiredToken("Registration link has expired")
    return workshop


# Purpose: Check a spot link token and report the seats it can still admit.
def verify_spot_token(db: Session, token: str | None, now: datetime | None = None) -> dict:
    workshop = resolve_spot_token(db, token, now)
    spots_remaining = min(workshop.spots_remaining, workshop.seats_remaining)
    if spots_remaining <= 0:
        raise SpotQuotaFull("Spot registration is full for this workshop")
    return {
        "workshop": {
            "id": workshop.id,
            "title": workshop.title,
            "date": workshop.date,
            "venue": workshop.venue,
            "fee": workshop.fee,
            "credits": workshop.credits,
        },
        "spots_remaining": spots_remaining,
    }
