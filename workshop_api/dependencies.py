from typing import TypeVar

from fastapi import Request, UploadFile
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from workshop_api.errors import ValidationError
from workshop_api.schemas import DeviceInfo, PaymentProof
from workshop_api.storage import LocalBlobStore
from workshop_api.tokens import AttendanceTokenBroker

FieldsModel = TypeVar("FieldsModel", bound=BaseModel)


# Purpose: Return the upload store created at app startup.
def get_blob_store(request: Request) -> LocalBlobStore:
    return request.app.state.blob_store


# Purpose: Return the process-wide attendance token broker.
def get_token_broker(request: Request) -> AttendanceTokenBroker:
    return request.app.state.token_broker


# Purpose: Capture client address and user agent for audit fields.
def get_device_info(request: Request) -> DeviceInfo:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return DeviceInfo(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


# Purpose: Validate multipart form fields, reporting the first bad field by name.
def parse_form_fields(model: type[FieldsModel], **data) -> FieldsModel:
    try:
        return model(**data)
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        field = str(error["loc"][0]) if error.get("loc") else None
        message = error["msg"].removeprefix("Value error, ")
        raise ValidationError(message, field=field) from exc


# Purpose: Read an uploaded payment proof into memory; an empty upload counts as missing.
def read_payment_proof(upload: UploadFile | None) -> PaymentProof | None:
    if upload is None or not upload.filename:
        return None
    content = upload.file.read()
    if not content:
        return None
    return PaymentProof(
        filename=upload.filename,
        content_type=upload.content_type or "application/octet-stream",
        content=content,
    )
