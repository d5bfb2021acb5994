from datetime import datetime

from fastapi import APIRouter, Depends, File, Query, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from workshop_api.db import get_db
from workshop_api.dependencies import get_blob_store, read_payment_proof
from workshop_api.schemas import (
    RegistrationOut,
    SpotSettings,
    StatusChange,
    WorkshopCreate,
    WorkshopOut,
    WorkshopUpdate,
)
from workshop_api.services import admission, ledger
from workshop_api.storage import IMAGE_TYPES, LocalBlobStore

router = APIRouter(prefix="/admin/workshops", tags=["admin-workshops"])


class LedgerCounters(BaseModel):
    current_registrations: int
    current_spot_registrations: int


class SyncOut(BaseModel):
    workshop_id: str
    before: LedgerCounters
    after: LedgerCounters


class RegistrationPageOut(BaseModel):
    registrations: list[RegistrationOut]
    total: int
    page: int
    limit: int
    total_pages: int


class DeletedOut(BaseModel):
    success: bool
    message: str


# Purpose: Wrap one page of registrations with paging metadata.
def registration_page(rows, total: int, page: int, limit: int) -> RegistrationPageOut:
    return RegistrationPageOut(
        registrations=[RegistrationOut.model_validate(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
        total_pages=(total + limit - 1) // limit,
    )


@router.get("", response_model=list[WorkshopOut])
# Purpose: List workshops with optional status, date range and text filters.
def list_workshops(
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
) -> list[WorkshopOut]:
    rows = ledger.list_workshops(db, status, start_date, end_date, search)
    return [WorkshopOut.model_validate(row) for row in rows]


@router.post("", response_model=WorkshopOut, status_code=201)
# Purpose: Create a workshop from the admin form.
def create_workshop(payload: WorkshopCreate, db: Session = Depends(get_db)) -> WorkshopOut:
    return WorkshopOut.model_validate(ledger.create_workshop(db, payload))


@router.get("/{workshop_id}", response_model=WorkshopOut)
# Purpose: Return one workshop with its ledger counters.
def get_workshop(workshop_id: str, db: Session = Depends(get_db)) -> WorkshopOut:
    return WorkshopOut.model_validate(ledger.get_workshop(db, workshop_id))


@router.put("/{workshop_id}", response_model=WorkshopOut)
# Purpose: Apply a partial edit to a workshop.
def update_workshop(workshop_id: str, payload: WorkshopUpdate, db: Session = Depends(get_db)) -> WorkshopOut:
    return WorkshopOut.model_validate(ledger.update_workshop(db, workshop_id, payload))


@router.delete("/{workshop_id}", response_model=DeletedOut)
# Purpose: Delete a workshop that has no registrations left.
def delete_workshop(
    workshop_id: str,
    db: Session = Depends(get_db),
    blobs: LocalBlobStore = Depends(get_blob_store),
) -> DeletedOut:
    ledger.delete_workshop(db, workshop_id, blobs)
    return DeletedOut(success=True, message="Workshop deleted successfully")


@router.put("/{workshop_id}/status", response_model=WorkshopOut)
# Purpose: Change a workshop status, with spot settings when switching to spot mode.
def change_status(workshop_id: str, payload: StatusChange, db: Session = Depends(get_db)) -> WorkshopOut:
    return WorkshopOut.model_validate(ledger.change_status(db, workshop_id, payload))


@router.put("/{workshop_id}/spot-settings", response_model=WorkshopOut)
# Purpose: Toggle spot admission or change its limit.
def spot_settings(workshop_id: str, payload: SpotSettings, db: Session = Depends(get_db)) -> WorkshopOut:
    return WorkshopOut.model_validate(ledger.update_spot_settings(db, workshop_id, payload))


@router.post("/{workshop_id}/upload-qr", response_model=WorkshopOut)
# Purpose: Store the payment QR artwork shown on the registration form.
def upload_qr(
    workshop_id: str,
    qr_code_image: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    blobs: LocalBlobStore = Depends(get_blob_store),
) -> WorkshopOut:
    ledger.get_workshop(db, workshop_id)
    image = blobs.validate(read_payment_proof(qr_code_image), IMAGE_TYPES, "qr_code_image")
    reference = blobs.save("qr-codes", "qr", image)
    try:
        workshop = ledger.set_qr_code_image(db, workshop_id, reference, blobs)
    except Exception:
        blobs.delete(reference)
        raise
    return WorkshopOut.model_validate(workshop)


@router.get("/{workshop_id}/registrations", response_model=RegistrationPageOut)
# Purpose: Page through one workshop's registrations.
def workshop_registrations(
    workshop_id: str,
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> RegistrationPageOut:
    ledger.get_workshop(db, workshop_id)
    rows, total = admission.list_registrations(db, workshop_id, search, page, limit)
    return registration_page(rows, total, page, limit)


@router.post("/{workshop_id}/sync", response_model=SyncOut)
# Purpose: Rebuild the cached ledger counters from a recount of registrations.
def sync_counters(workshop_id: str, db: Session = Depends(get_db)) -> SyncOut:
    result = ledger.sync_counters(db, workshop_id)
    return SyncOut(workshop_id=workshop_id, **result)
