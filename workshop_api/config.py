import os
from pathlib import Path

from dotenv import load_dotenv


BASE_DIR = Path(__file__).resolve().parents[1]
ENV_FILE = BASE_DIR / ".env"

load_dotenv(ENV_FILE)


# Purpose: Read a boolean flag from the environment.
def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads")))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

ATTENDANCE_TOKEN_TTL_SECONDS = int(os.getenv("ATTENDANCE_TOKEN_TTL_SECONDS", "120"))
TOKEN_PURGE_INTERVAL_SECONDS = int(os.getenv("TOKEN_PURGE_INTERVAL_SECONDS", "60"))
SPOT_TOKEN_TTL_HOURS = int(os.getenv("SPOT_TOKEN_TTL_HOURS", "24"))
SPOT_AUTO_MARK_PRESENT = _env_flag("SPOT_AUTO_MARK_PRESENT")

DOWNLOAD_LIMIT = int(os.getenv("DOWNLOAD_LIMIT", "2"))
DEFAULT_MAX_SEATS = 500

if not DATABASE_URL:
    raise RuntimeError("Missing DATABASE_URL in .env")
