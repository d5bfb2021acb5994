from pathlib import Path
import logging
import secrets
import time

from workshop_api.errors import ValidationError
from workshop_api.schemas import PaymentProof

logger = logging.getLogger(__name__)

IMAGE_TYPES = {
    ".jpg": {"image/jpeg", "image/jpg"},
    ".jpeg": {"image/jpeg", "image/jpg"},
    ".png": {"image/png"},
}
IMAGE_OR_PDF_TYPES = {**IMAGE_TYPES, ".pdf": {"application/pdf"}}


# Purpose: Store uploaded files under root/<category>/ and hand back a stable reference.
class LocalBlobStore:
    # Purpose: Bind the store to its root directory and upload size cap.
    def __init__(self, root: Path, max_bytes: int) -> None:
        self.root = Path(root)
        self.max_bytes = max_bytes

    # Purpose: Check the upload against the allowed extension/mime pairs and size cap.
    def validate(self, proof: PaymentProof | None, allowed: dict[str, set[str]], field: str) -> PaymentProof:
        if proof is None or not proof.content:
            raise ValidationError(f"{field.replace('_', ' ').capitalize()} is required", field=field)
        extension = Path(proof.filename or "").suffix.lower()
        if extension not in allowed or proof.content_type.lower() not in allowed[extension]:
            kinds = ", ".join(sorted(ext.lstrip(".").upper() for ext in allowed))
            raise ValidationError(f"Only {kinds} files are allowed", field=field)
        if len(proof.content) > self.max_bytes:
            raise ValidationError(
                f"File is too large (max {self.max_bytes // (1024 * 1024)} MB)",
                field=field,
            )
        return proof

    # Purpose: Write an upload under a unique name and return its reference.
    def save(self, category: str, prefix: str, proof: PaymentProof) -> str:
        extension = Path(proof.filename).suffix.lower()
        name = f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}{extension}"
        directory = self.root / category
        directory.mkdir(parents=True, exist_ok=True)
        (directory / name).write_bytes(proof.content)
        return f"{category}/{name}"

    # Purpose: Resolve a stored reference to its file path.
    def path(self, reference: str) -> Path:
        return self.root / reference

    # Purpose: Remove a stored blob; a missing file is not an error.
    def delete(self, reference: str | None) -> None:
        if not reference:
            return
        try:
            self.path(reference).unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not delete blob %s", reference, exc_info=True)
