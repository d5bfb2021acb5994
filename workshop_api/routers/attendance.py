from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from workshop_api.db import get_db
from workshop_api.dependencies import get_device_info, get_token_broker
from workshop_api.qr import build_qr_png, token_url
from workshop_api.schemas import AttendanceOut, DeviceInfo, ScanFields, normalize_identifier
from workshop_api.services import attendance, ledger
from workshop_api.tokens import AttendanceTokenBroker

router = APIRouter(prefix="/attendance", tags=["attendance"])

SCAN_FORM_PATH = "/attendance"


class AttendanceTokenOut(BaseModel):
    token: str
    expires_at: datetime
    workshop_id: str
    workshop_title: str
    scan_url: str


class ScanOut(BaseModel):
    success: bool
    message: str
    student_name: str
    workshop_title: str
    attendance: AttendanceOut


class AttendanceStatsOut(BaseModel):
    workshop_id: str
    total_registrations: int
    total_present: int
    total_applied: int
    attendance_percentage: float


class StudentAttendanceOut(BaseModel):
    workshop_id: str
    mnc_uid: str
    present: bool
    attendance: AttendanceOut | None = None


# Purpose: Mint a fresh attendance token for the staff display.
def _issue(db: Session, broker: AttendanceTokenBroker, workshop_id: str) -> AttendanceTokenOut:
    issued = attendance.issue_attendance_token(db, broker, workshop_id)
    return AttendanceTokenOut(**issued, scan_url=token_url(SCAN_FORM_PATH, issued["token"]))


@router.post("/tokens/{workshop_id}", response_model=AttendanceTokenOut)
# Purpose: Issue a short-lived attendance token; staff screens call this on a timer.
def issue_token(
    workshop_id: str,
    db: Session = Depends(get_db),
    broker: AttendanceTokenBroker = Depends(get_token_broker),
) -> AttendanceTokenOut:
    return _issue(db, broker, workshop_id)


@router.get("/tokens/{workshop_id}/qr.png")
# Purpose: Issue a token and render its scan link as a QR image.
def issue_token_qr(
    workshop_id: str,
    db: Session = Depends(get_db),
    broker: AttendanceTokenBroker = Depends(get_token_broker),
) -> Response:
    issued = _issue(db, broker, workshop_id)
    return Response(
        content=build_qr_png(issued.scan_url),
        media_type="image/png",
        headers={"Cache-Control": "no-store"},
    )


@router.post("/scan", response_model=ScanOut)
# Purpose: Mark a student present using a scanned token and their identifiers.
def scan_attendance(
    payload: ScanFields,
    db: Session = Depends(get_db),
    broker: AttendanceTokenBroker = Depends(get_token_broker),
    device: DeviceInfo = Depends(get_device_info),
) -> ScanOut:
    row, registration, workshop = attendance.scan(db, broker, payload, device)
    return ScanOut(
        success=True,
        message="Attendance marked successfully",
        student_name=registration.full_name,
        workshop_title=workshop.title if workshop is not None else "",
        attendance=AttendanceOut.model_validate(row),
    )


@router.get("/stats/{workshop_id}", response_model=AttendanceStatsOut)
# Purpose: Present and absent totals for a workshop.
def attendance_stats(workshop_id: str, db: Session = Depends(get_db)) -> AttendanceStatsOut:
    return AttendanceStatsOut(workshop_id=workshop_id, **attendance.attendance_stats(db, workshop_id))


@router.get("/workshop/{workshop_id}", response_model=list[AttendanceOut])
# Purpose: List attendance marks for a workshop, newest first.
def workshop_attendance(
    workshop_id: str,
    limit: int | None = Query(default=None, ge=1, le=1000),
    db: Session = Depends(get_db),
) -> list[AttendanceOut]:
    ledger.get_workshop(db, workshop_id)
    rows = attendance.list_attendance(db, workshop_id, limit)
    return [AttendanceOut.model_validate(row) for row in rows]


@router.get("/student/{workshop_id}/{mnc_uid}", response_model=StudentAttendanceOut)
# Purpose: Report whether one student has been marked present.
def student_attendance(workshop_id: str, mnc_uid: str, db: Session = Depends(get_db)) -> StudentAttendanceOut:
    ledger.get_workshop(db, workshop_id)
    row = attendance.student_attendance(db, workshop_id, mnc_uid)
    return StudentAttendanceOut(
        workshop_id=workshop_id,
        mnc_uid=normalize_identifier(mnc_uid),
        present=row is not None,
        attendance=AttendanceOut.model_validate(row) if row is not None else None,
    )
