from datetime import timedelta

from fastapi.testclient import TestClient
import pytest
from sqlalchemy.exc import IntegrityError

from workshop_api.errors import InvalidOrExpiredToken
from workshop_api.models import Attendance, Registration, Workshop, utcnow
from workshop_api.schemas import PaymentProof, SpotStudentFields
from workshop_api.services.admission import admit_spot
from workshop_api.services.spot_tokens import issue_spot_token, verify_spot_token
from workshop_api.storage import LocalBlobStore

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


# Purpose: Create a workshop with spot registration switched on.
def _spot_workshop(create_workshop, **overrides) -> dict:
    settings = {"status": "spot", "spot_registration_enabled": True, "spot_registration_limit": 3}
    settings.update(overrides)
    return create_workshop(**settings)


# Purpose: Submit the spot registration form with a PNG payment proof.
def _submit(client: TestClient, token: str, registration_number: str, **overrides):
    data = {
        "token": token,
        "full_name": f"Walk-in {registration_number}",
        "mnc_registration_number": registration_number,
        "mobile_number": "9123456780",
        "payment_utr": f"UTR{registration_number}",
    }
    data.update(overrides)
    return client.post(
        "/spot/submit",
        data=data,
        files={"payment_screenshot": ("proof.png", PNG_BYTES, "image/png")},
    )


# Purpose: Verify the spot link is reused until rotated.
def test_spot_token_is_stable_until_rotated(client: TestClient, create_workshop) -> None:
    workshop = _spot_workshop(create_workshop)

    first = client.post(f"/spot/tokens/{workshop['id']}")
    assert first.status_code == 200, first.text
    assert first.json()["spots_remaining"] == 3
    assert first.json()["spots_full"] is False
    again = client.post(f"/spot/tokens/{workshop['id']}")
    assert again.json()["token"] == first.json()["token"]
    assert "token=" in first.json()["registration_url"]

    rotated = client.post(f"/spot/tokens/{workshop['id']}", params={"rotate": "true"})
    assert rotated.json()["token"] != first.json()["token"]

    stale = client.post("/spot/verify-token", json={"token": first.json()["token"]})
    assert stale.status_code == 400
    assert stale.json()["kind"] == "invalid_or_expired_token"

    fresh = client.post("/spot/verify-token", json={"token": rotated.json()["token"]})
    assert fresh.status_code == 200, fresh.text
    assert fresh.json()["workshop"]["id"] == workshop["id"]
    assert fresh.json()["spots_remaining"] == 3


# Purpose: Verify spot tokens cannot be issued when spot registration is off.
def test_spot_token_requires_spot_enabled(client: TestClient, create_workshop) -> None:
    workshop = create_workshop()

    response = client.post(f"/spot/tokens/{workshop['id']}")
    assert response.status_code == 400
    assert response.json()["kind"] == "workshop_not_accepting_registrations"


# Purpose: Verify walk-ins take both a main seat and a spot seat.
def test_spot_submission_updates_both_counters(client: TestClient, create_workshop) -> None:
    workshop = _spot_workshop(create_workshop)
    token = client.post(f"/spot/tokens/{workshop['id']}").json()["token"]

    response = _submit(client, token, "mnc-777")
    assert response.status_code == 200, response.text
    registration = response.json()["registration"]
    assert registration["registration_type"] == "spot"
    assert registration["mnc_uid"] == "SPOT-MNC-777"
    assert registration["attendance_status"] == "applied"

    current = client.get(f"/admin/workshops/{workshop['id']}").json()
    assert current["current_registrations"] == 1
    assert current["current_spot_registrations"] == 1

    stats = client.get(f"/spot/stats/{workshop['id']}").json()
    assert stats["current_spot_registrations"] == 1
    assert stats["spots_remaining"] == 2
    assert stats["has_active_token"] is True

    duplicate = _submit(client, token, "MNC-777", full_name="Someone Else")
    assert duplicate.status_code == 409
    assert duplicate.json()["kind"] == "duplicate_student"


# Purpose: Verify the spot quota caps walk-ins while online seats stay open.
def test_spot_quota_full_while_workshop_active(client: TestClient, create_workshop, register) -> None:
    workshop = create_workshop(max_seats=10, spot_registration_enabled=True, spot_registration_limit=5)
    token = client.post(f"/spot/tokens/{workshop['id']}").json()["token"]

    for index in range(5):
        admitted = _submit(client, token, f"W{index:03d}")
        assert admitted.status_code == 200, admitted.text
    sixth = _submit(client, token, "W005")
    assert sixth.status_code == 409, sixth.text
    assert sixth.json()["kind"] == "spot_quota_full"

    issued = client.post(f"/spot/tokens/{workshop['id']}").json()
    assert issued["spots_remaining"] == 0
    assert issued["spots_full"] is True

    verify = client.post("/spot/verify-token", json={"token": token})
    assert verify.status_code == 409
    assert verify.json()["kind"] == "spot_quota_full"

    online = register(workshop["id"], "S900")
    assert online.status_code == 200, online.text
    assert online.json()["form_number"] == 6


# Purpose: Verify a spot seat cannot exceed the overall seat cap.
def test_spot_blocked_when_main_capacity_full(client: TestClient, create_workshop, register) -> None:
    workshop = create_workshop(max_seats=1, spot_registration_enabled=True, spot_registration_limit=1)
    token = client.post(f"/spot/tokens/{workshop['id']}").json()["token"]
    assert register(workshop["id"], "S901").status_code == 200

    response = _submit(client, token, "W100")
    assert response.status_code == 409
    assert response.json()["kind"] == "capacity_full"


# Purpose: Verify missing and expired spot links are rejected.
def test_spot_token_expiry(client: TestClient, create_workshop, db_session) -> None:
    workshop = _spot_workshop(create_workshop)

    missing = client.post("/spot/verify-token", json={})
    assert missing.status_code == 400

    issued = issue_spot_token(
        db_session,
        workshop["id"],
        ttl_hours=1,
        rotate=True,
        now=utcnow() - timedelta(hours=2),
    )
    with pytest.raises(InvalidOrExpiredToken):
        verify_spot_token(db_session, issued.spot_registration_qr_token)

    response = _submit(client, issued.spot_registration_qr_token, "W200")
    assert response.status_code == 400
    assert response.json()["detail"] == "Registration link has expired"

    renewed = client.post(f"/spot/tokens/{workshop['id']}").json()["token"]
    assert renewed != issued.spot_registration_qr_token


# Purpose: Verify the optional auto-present policy creates the attendance row.
def test_spot_admission_can_mark_present(create_workshop, db_session, tmp_path) -> None:
    workshop = _spot_workshop(create_workshop)
    token = issue_spot_token(db_session, workshop["id"], ttl_hours=24).spot_registration_qr_token
    fields = SpotStudentFields(
        full_name="Walk In",
        mnc_registration_number="W300",
        mobile_number="9123456789",
        payment_utr="UTR300",
    )

    registration = admit_spot(
        db_session,
        LocalBlobStore(tmp_path, 1024 * 1024),
        token,
        fields,
        PaymentProof(filename="proof.pdf", content_type="application/pdf", content=b"%PDF-1.4"),
        auto_mark_present=True,
    )

    assert registration.attendance_status == "present"
    attendance = db_session.query(Attendance).filter_by(registration_id=registration.id).one()
    assert attendance.mnc_uid == "SPOT-W300"
    assert db_session.get(Registration, registration.id).registration_type == "spot"


# Purpose: Verify the spot link renders as a PNG QR code.
def test_spot_qr_image(client: TestClient, create_workshop) -> None:
    workshop = _spot_workshop(create_workshop)

    response = client.get(f"/spot/tokens/{workshop['id']}/qr.png")
    assert response.status_code == 200
    assert response.content.startswith(b"\x89PNG")


# Purpose: Verify the spot limit cannot drop below admitted walk-ins and deletes give spot seats back.
def test_spot_limit_and_delete_keep_spot_counter_consistent(client: TestClient, create_workshop) -> None:
    workshop = _spot_workshop(create_workshop)
    token = client.post(f"/spot/tokens/{workshop['id']}").json()["token"]
    first = _submit(client, token, "W400")
    assert first.status_code == 200, first.text
    assert _submit(client, token, "W401").status_code == 200

    lowered = client.put(f"/admin/workshops/{workshop['id']}/spot-settings", json={"spot_registration_limit": 1})
    assert lowered.status_code == 422
    assert lowered.json()["field"] == "spot_registration_limit"

    removed = client.delete(f"/admin/registrations/{first.json()['registration']['id']}")
    assert removed.status_code == 200, removed.text
    current = client.get(f"/admin/workshops/{workshop['id']}").json()
    assert current["current_registrations"] == 1
    assert current["current_spot_registrations"] == 1
    assert current["spot_registration_limit"] == 3

    lowered = client.put(f"/admin/workshops/{workshop['id']}/spot-settings", json={"spot_registration_limit": 1})
    assert lowered.status_code == 200, lowered.text
    assert lowered.json()["spot_registration_limit"] == 1


# Purpose: Verify a spot submission recounts drifted counters before applying the quota.
def test_spot_submission_repairs_drifted_counters(client: TestClient, create_workshop, db_session) -> None:
    workshop = _spot_workshop(create_workshop)
    token = client.post(f"/spot/tokens/{workshop['id']}").json()["token"]
    assert _submit(client, token, "W500").status_code == 200

    drifted = db_session.get(Workshop, workshop["id"])
    drifted.current_registrations = 3
    drifted.current_spot_registrations = 3
    db_session.commit()

    response = _submit(client, token, "W501")
    assert response.status_code == 200, response.text

    current = client.get(f"/admin/workshops/{workshop['id']}").json()
    assert current["current_registrations"] == 2
    assert current["current_spot_registrations"] == 2


# Purpose: Verify the schema refuses a spot counter above the spot limit.
def test_spot_counter_cannot_exceed_limit(create_workshop, db_session) -> None:
    workshop = _spot_workshop(create_workshop)

    row = db_session.get(Workshop, workshop["id"])
    row.current_registrations = 4
    row.current_spot_registrations = 4
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()
