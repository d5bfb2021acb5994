from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from workshop_api.db import get_db
from workshop_api.dependencies import get_blob_store
from workshop_api.routers.admin_workshops import DeletedOut, RegistrationPageOut, registration_page
from workshop_api.schemas import RegistrationOut
from workshop_api.services import admission
from workshop_api.storage import LocalBlobStore

router = APIRouter(prefix="/admin", tags=["admin"])


class DashboardWorkshop(BaseModel):
    id: str
    title: str
    status: str


class DashboardStatsOut(BaseModel):
    total: int
    remaining: int
    max_registrations: int
    percentage_filled: float
    recent_registrations: list[RegistrationOut]
    workshop: DashboardWorkshop | None = None
    workshop_count: int | None = None


@router.get("/registrations", response_model=RegistrationPageOut)
# Purpose: Search registrations across workshops, one page at a time.
def list_registrations(
    workshop_id: str | None = None,
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> RegistrationPageOut:
    rows, total = admission.list_registrations(db, workshop_id, search, page, limit)
    return registration_page(rows, total, page, limit)


@router.delete("/registrations/{registration_id}", response_model=DeletedOut)
# Purpose: Remove a registration and return its seat to the workshop.
def delete_registration(
    registration_id: str,
    db: Session = Depends(get_db),
    blobs: LocalBlobStore = Depends(get_blob_store),
) -> DeletedOut:
    admission.delete_registration(db, blobs, registration_id)
    return DeletedOut(success=True, message="Registration deleted successfully")


@router.get("/stats", response_model=DashboardStatsOut)
# Purpose: Totals for the admin dashboard, optionally scoped to one workshop.
def dashboard_stats(workshop_id: str | None = None, db: Session = Depends(get_db)) -> DashboardStatsOut:
    stats = admission.dashboard_stats(db, workshop_id)
    stats["recent_registrations"] = [RegistrationOut.model_validate(row) for row in stats["recent_registrations"]]
    return DashboardStatsOut(**stats)
