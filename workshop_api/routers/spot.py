from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from workshop_api.config import SPOT_AUTO_MARK_PRESENT, SPOT_TOKEN_TTL_HOURS
from workshop_api.db import get_db
from workshop_api.dependencies import get_blob_store, get_device_info, parse_form_fields, read_payment_proof
from workshop_api.models import REGISTRATION_SPOT, as_utc, utcnow
from workshop_api.qr import build_qr_png, token_url
from workshop_api.schemas import DeviceInfo, RegistrationOut, SpotStudentFields
from workshop_api.services import admission, ledger
from workshop_api.services.spot_tokens import issue_spot_token, verify_spot_token
from workshop_api.storage import LocalBlobStore

router = APIRouter(prefix="/spot", tags=["spot"])

SPOT_FORM_PATH = "/spot-register"


class SpotTokenOut(BaseModel):
    workshop_id: str
    token: str
    expires_at: datetime
    registration_url: str
    spots_remaining: int
    spots_full: bool


class SpotTokenIn(BaseModel):
    token: str | None = None


class SpotWorkshopOut(BaseModel):
    id: str
    title: str
    date: datetime
    venue: str
    fee: float
    credits: int


class SpotVerifyOut(BaseModel):
    valid: bool
    workshop: SpotWorkshopOut
    spots_remaining: int


class SpotSubmitOut(BaseModel):
    success: bool
    message: str
    form_number: int
    registration: RegistrationOut


class SpotStatsOut(BaseModel):
    workshop_id: str
    spot_registration_enabled: bool
    spot_registration_limit: int
    current_spot_registrations: int
    spots_remaining: int
    has_active_token: bool
    token_expiry: datetime | None = None


# Purpose: Fetch or mint the workshop's spot link and package it for staff screens.
def _spot_token_payload(db: Session, workshop_id: str, rotate: bool) -> SpotTokenOut:
    workshop = issue_spot_token(db, workshop_id, SPOT_TOKEN_TTL_HOURS, rotate=rotate)
    token = workshop.spot_registration_qr_token
    spots_remaining = min(workshop.spots_remaining, workshop.seats_remaining)
    return SpotTokenOut(
        workshop_id=workshop.id,
        token=token,
        expires_at=as_utc(workshop.spot_registration_token_expiry),
        registration_url=token_url(SPOT_FORM_PATH, token),
        spots_remaining=spots_remaining,
        spots_full=spots_remaining == 0,
    )


@router.post("/tokens/{workshop_id}", response_model=SpotTokenOut)
# Purpose: Return the live spot-registration link, rotating it on request.
def spot_token(workshop_id: str, rotate: bool = False, db: Session = Depends(get_db)) -> SpotTokenOut:
    return _spot_token_payload(db, workshop_id, rotate)


@router.get("/tokens/{workshop_id}/qr.png")
# Purpose: Render the live spot-registration link as a QR image for display at the venue.
def spot_token_qr(workshop_id: str, db: Session = Depends(get_db)) -> Response:
    payload = _spot_token_payload(db, workshop_id, rotate=False)
    return Response(content=build_qr_png(payload.registration_url), media_type="image/png")


@router.post("/verify-token", response_model=SpotVerifyOut)
# Purpose: Check a spot link before the student fills in the form.
def verify_token(payload: SpotTokenIn, db: Session = Depends(get_db)) -> SpotVerifyOut:
    result = verify_spot_token(db, (payload.token or "").strip())
    return SpotVerifyOut(
        valid=True,
        workshop=SpotWorkshopOut(**result["workshop"]),
        spots_remaining=result["spots_remaining"],
    )


@router.post("/submit", response_model=SpotSubmitOut)
# Purpose: Admit a walk-in registration through a spot link.
def submit_spot_registration(
    token: str = Form(""),
    full_name: str = Form(""),
    mnc_registration_number: str = Form(""),
    mobile_number: str = Form(""),
    payment_utr: str = Form(""),
    payment_screenshot: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    blobs: LocalBlobStore = Depends(get_blob_store),
    device: DeviceInfo = Depends(get_device_info),
) -> SpotSubmitOut:
    fields = parse_form_fields(
        SpotStudentFields,
        full_name=full_name,
        mnc_registration_number=mnc_registration_number,
        mobile_number=mobile_number,
        payment_utr=payment_utr,
    )
    registration = admission.admit_spot(
        db,
        blobs,
        token.strip(),
        fields,
        read_payment_proof(payment_screenshot),
        ip_address=device.ip_address,
        auto_mark_present=SPOT_AUTO_MARK_PRESENT,
    )
    return SpotSubmitOut(
        success=True,
        message="Spot registration successful",
        form_number=registration.form_number,
        registration=RegistrationOut.model_validate(registration),
    )


@router.get("/stats/{workshop_id}", response_model=SpotStatsOut)
# Purpose: Report spot quota usage from an authoritative recount.
def spot_stats(workshop_id: str, db: Session = Depends(get_db)) -> SpotStatsOut:
    workshop = ledger.get_workshop(db, workshop_id)
    spot_count = ledger.count_registrations(db, workshop_id, REGISTRATION_SPOT)
    return SpotStatsOut(
        workshop_id=workshop.id,
        spot_registration_enabled=workshop.spot_registration_enabled,
        spot_registration_limit=workshop.spot_registration_limit,
        current_spot_registrations=spot_count,
        spots_remaining=max(0, workshop.spot_registration_limit - spot_count),
        has_active_token=ledger.has_live_spot_token(workshop, utcnow()),
        token_expiry=as_utc(workshop.spot_registration_token_expiry),
    )
