# Purpose: Base class for every rejection; kind is the stable name clients branch on, status_code the HTTP status.
class RegistrationError(Exception):
    kind = "registration_error"
    status_code = 400

    # Purpose: Keep the human-readable message alongside the exception.
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(RegistrationError):
    kind = "not_found"
    status_code = 404


class RegistrationNotFound(NotFound):
    kind = "registration_not_found"


class WorkshopNotAcceptingRegistrations(RegistrationError):
    kind = "workshop_not_accepting_registrations"
    status_code = 400

    # Purpose: Record the workshop status that closed the gate.
    def __init__(self, status: str, message: str | None = None) -> None:
        super().__init__(message or f"Workshop is not accepting registrations (status: {status})")
        self.status = status


class CapacityFull(RegistrationError):
    kind = "capacity_full"
    status_code = 409


class SpotQuotaFull(CapacityFull):
    kind = "spot_quota_full"


class DuplicateStudent(RegistrationError):
    kind = "duplicate_student"
    status_code = 409


class InvalidOrExpiredToken(RegistrationError):
    kind = "invalid_or_expired_token"
    status_code = 400


class AlreadyMarked(RegistrationError):
    kind = "already_marked"
    status_code = 409


class ActiveWorkshopConflict(RegistrationError):
    kind = "active_workshop_conflict"
    status_code = 409


class DownloadLimitReached(RegistrationError):
    kind = "download_limit_reached"
    status_code = 400


class ValidationError(RegistrationError):
    kind = "validation_error"
    status_code = 422

    # Purpose: Name the offending input field when there is one.
    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class StorageUnavailable(RegistrationError):
    kind = "storage_unavailable"
    status_code = 503


class WorkshopHasRegistrations(RegistrationError):
    kind = "workshop_has_registrations"
    status_code = 409
