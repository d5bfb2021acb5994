from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from workshop_api.db import get_db
from workshop_api.errors import NotFound
from workshop_api.schemas import WorkshopPublicOut
from workshop_api.services import ledger

router = APIRouter(prefix="/workshops", tags=["workshops"])


@router.get("/active", response_model=WorkshopPublicOut)
# Purpose: Return the workshop currently open for online registration.
def active_workshop(db: Session = Depends(get_db)) -> WorkshopPublicOut:
    workshop = ledger.get_active_workshop(db)
    if workshop is None:
        raise NotFound("No active workshop available")
    return WorkshopPublicOut.model_validate(workshop)


@router.get("/latest", response_model=WorkshopPublicOut)
# Purpose: Return the active workshop, else the next upcoming one.
def latest_workshop(db: Session = Depends(get_db)) -> WorkshopPublicOut:
    workshop = ledger.get_latest_workshop(db)
    if workshop is None:
        raise NotFound("No active or upcoming workshop available")
    return WorkshopPublicOut.model_validate(workshop)


@router.get("/upcoming", response_model=list[WorkshopPublicOut])
# Purpose: List workshops open for the public listing.
def upcoming_workshops(db: Session = Depends(get_db)) -> list[WorkshopPublicOut]:
    return [WorkshopPublicOut.model_validate(row) for row in ledger.get_upcoming_workshops(db)]


@router.get("/{workshop_id}", response_model=WorkshopPublicOut)
# Purpose: Public details for one workshop.
def workshop_detail(workshop_id: str, db: Session = Depends(get_db)) -> WorkshopPublicOut:
    return WorkshopPublicOut.model_validate(ledger.get_workshop(db, workshop_id))
