import os
import sys
import tempfile
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix="workshop-api-tests-"))

# Never point the suite at a real database.
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DATA_DIR / 'workshops.db'}"
os.environ["UPLOAD_DIR"] = str(TEST_DATA_DIR / "uploads")
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")
os.environ.setdefault("DOWNLOAD_LIMIT", "2")
os.environ.setdefault("SPOT_AUTO_MARK_PRESENT", "false")

from fastapi.testclient import TestClient  # noqa: E402

from workshop_api.db import Base, SessionLocal, engine  # noqa: E402
from workshop_api.main import app  # noqa: E402
from workshop_api.models import utcnow  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


# Purpose: Give every test an empty schema.
@pytest.fixture(autouse=True)
def clean_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


# Purpose: Provide an API client with lifespan hooks executed.
@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


# Purpose: Provide a raw session for direct ledger checks.
@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


# Purpose: Return a factory that creates workshops through the admin API.
@pytest.fixture
def create_workshop(client: TestClient) -> Callable[..., dict]:
    # Purpose: Create one workshop, overriding the default payload.
    def _create(**overrides) -> dict:
        payload = {
            "title": "Critical Care Nursing Update",
            "description": "Hands-on CNE workshop",
            "date": (utcnow() + timedelta(days=7)).isoformat(),
            "venue": "Main Auditorium",
            "fee": 500,
            "credits": 3,
            "max_seats": 10,
            "status": "active",
        }
        payload.update(overrides)
        response = client.post("/admin/workshops", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


# Purpose: Return a factory that submits the online registration form.
@pytest.fixture
def register(client: TestClient) -> Callable[..., object]:
    # Purpose: Submit one registration with a PNG payment proof.
    def _register(workshop_id: str, mnc_uid: str, **overrides):
        data = {
            "workshop_id": workshop_id,
            "full_name": f"Student {mnc_uid}",
            "mnc_uid": mnc_uid,
            "mnc_registration_number": f"REG-{mnc_uid}",
            "mobile_number": "9876543210",
            "payment_utr": f"UTR{mnc_uid}",
        }
        files = overrides.pop("files", {"payment_screenshot": ("payment.png", PNG_BYTES, "image/png")})
        data.update(overrides)
        return client.post("/registrations", data=data, files=files)

    return _register
