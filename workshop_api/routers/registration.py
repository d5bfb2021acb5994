from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from workshop_api.config import DOWNLOAD_LIMIT
from workshop_api.db import get_db
from workshop_api.dependencies import get_blob_store, get_device_info, parse_form_fields, read_payment_proof
from workshop_api.schemas import DeviceInfo, RegistrationOut, StudentFields, WorkshopPublicOut
from workshop_api.services import admission, ledger
from workshop_api.storage import LocalBlobStore

router = APIRouter(prefix="/registrations", tags=["registrations"])


class RegistrationCreateOut(BaseModel):
    success: bool
    message: str
    form_number: int
    registration: RegistrationOut


class RegistrationCountOut(BaseModel):
    workshop_id: str
    total: int
    remaining: int
    max_seats: int
    is_full: bool
    status: str


class StudentLookupIn(BaseModel):
    mnc_uid: str = Field(min_length=1)
    mobile_number: str = Field(min_length=1)
    workshop_id: str | None = None


class RegistrationViewOut(BaseModel):
    registration: RegistrationOut
    workshop: WorkshopPublicOut


class DownloadOut(BaseModel):
    registration: RegistrationOut
    download_count: int
    downloads_remaining: int


@router.post("", response_model=RegistrationCreateOut)
# Purpose: Admit one online registration with its payment screenshot.
def submit_registration(
    workshop_id: str = Form(...),
    full_name: str = Form(""),
    mnc_uid: str = Form(""),
    mnc_registration_number: str = Form(""),
    mobile_number: str = Form(""),
    payment_utr: str = Form(""),
    payment_screenshot: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    blobs: LocalBlobStore = Depends(get_blob_store),
    device: DeviceInfo = Depends(get_device_info),
) -> RegistrationCreateOut:
    fields = parse_form_fields(
        StudentFields,
        full_name=full_name,
        mnc_uid=mnc_uid,
        mnc_registration_number=mnc_registration_number,
        mobile_number=mobile_number,
        payment_utr=payment_utr,
    )
    registration = admission.admit_online(
        db,
        blobs,
        workshop_id.strip(),
        fields,
        read_payment_proof(payment_screenshot),
        ip_address=device.ip_address,
    )
    return RegistrationCreateOut(
        success=True,
        message="Registration submitted successfully",
        form_number=registration.form_number,
        registration=RegistrationOut.model_validate(registration),
    )


@router.get("/count", response_model=RegistrationCountOut)
# Purpose: Report seat usage for a workshop, defaulting to the active one.
def registration_count(workshop_id: str | None = None, db: Session = Depends(get_db)) -> RegistrationCountOut:
    return RegistrationCountOut(**ledger.registration_summary(db, workshop_id))


@router.post("/view", response_model=RegistrationViewOut)
# Purpose: Let a student look up their own registration by UID and mobile.
def view_registration(payload: StudentLookupIn, db: Session = Depends(get_db)) -> RegistrationViewOut:
    registration = admission.find_for_student(db, payload.mnc_uid, payload.mobile_number, payload.workshop_id)
    workshop = ledger.get_workshop(db, registration.workshop_id)
    return RegistrationViewOut(
        registration=RegistrationOut.model_validate(registration),
        workshop=WorkshopPublicOut.model_validate(workshop),
    )


@router.post("/download", response_model=DownloadOut)
# Purpose: Count a confirmation download, refusing once the limit is used up.
def download_confirmation(payload: StudentLookupIn, db: Session = Depends(get_db)) -> DownloadOut:
    registration = admission.record_download(
        db,
        payload.mnc_uid,
        payload.mobile_number,
        DOWNLOAD_LIMIT,
        payload.workshop_id,
    )
    return DownloadOut(
        registration=RegistrationOut.model_validate(registration),
        download_count=registration.download_count,
        downloads_remaining=max(0, DOWNLOAD_LIMIT - registration.download_count),
    )
