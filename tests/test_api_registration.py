from fastapi.testclient import TestClient


# Purpose: Verify seats fill in order and the workshop flips to full on the last one.
def test_registrations_fill_workshop_then_reject(client: TestClient, create_workshop, register) -> None:
    workshop = create_workshop(max_seats=2)

    first = register(workshop["id"], "s001")
    assert first.status_code == 200, first.text
    assert first.json()["form_number"] == 1
    assert first.json()["registration"]["mnc_uid"] == "S001"

    second = register(workshop["id"], "S002")
    assert second.status_code == 200, second.text
    assert second.json()["form_number"] == 2

    current = client.get(f"/admin/workshops/{workshop['id']}").json()
    assert current["current_registrations"] == 2
    assert current["status"] == "full"

    third = register(workshop["id"], "S003")
    assert third.status_code == 409, third.text
    assert third.json()["kind"] == "capacity_full"

    after = client.get(f"/admin/workshops/{workshop['id']}").json()
    assert after["current_registrations"] == 2


# Purpose: Verify one student cannot take two seats in the same workshop.
def test_duplicate_uid_in_same_workshop_is_rejected(client: TestClient, create_workshop, register) -> None:
    workshop = create_workshop()

    assert register(workshop["id"], "S100").status_code == 200
    duplicate = register(workshop["id"], " s100 ", mnc_registration_number="REG-OTHER")
    assert duplicate.status_code == 409, duplicate.text
    assert duplicate.json()["kind"] == "duplicate_student"

    count = client.get("/registrations/count", params={"workshop_id": workshop["id"]}).json()
    assert count["total"] == 1
    assert count["remaining"] == 9


# Purpose: Verify the same student may register for a later workshop.
def test_same_student_can_register_in_another_workshop(client: TestClient, create_workshop, register) -> None:
    first = create_workshop(title="March CNE")
    assert register(first["id"], "S200").status_code == 200

    closed = client.put(f"/admin/workshops/{first['id']}/status", json={"status": "completed"})
    assert closed.status_code == 200, closed.text

    second = create_workshop(title="April CNE")
    response = register(second["id"], "S200")
    assert response.status_code == 200, response.text
    assert response.json()["form_number"] == 1


# Purpose: Verify a workshop that is not active refuses online registrations.
def test_inactive_workshop_rejects_registration(create_workshop, register) -> None:
    workshop = create_workshop(status="upcoming")

    response = register(workshop["id"], "S300")
    assert response.status_code == 400, response.text
    payload = response.json()
    assert payload["kind"] == "workshop_not_accepting_registrations"
    assert "upcoming" in payload["detail"]


# Purpose: Verify an unknown workshop is reported as not found.
def test_unknown_workshop_is_not_found(register) -> None:
    response = register("ws_missing", "S301")
    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


# Purpose: Verify form validation reports the offending field.
def test_invalid_form_fields_are_rejected(client: TestClient, create_workshop, register) -> None:
    workshop = create_workshop()

    bad_mobile = register(workshop["id"], "S400", mobile_number="12345")
    assert bad_mobile.status_code == 422
    assert bad_mobile.json()["kind"] == "validation_error"
    assert bad_mobile.json()["field"] == "mobile_number"

    missing_file = register(workshop["id"], "S401", files={})
    assert missing_file.status_code == 422
    assert missing_file.json()["field"] == "payment_screenshot"

    wrong_type = register(
        workshop["id"],
        "S402",
        files={"payment_screenshot": ("payment.pdf", b"%PDF-1.4", "application/pdf")},
    )
    assert wrong_type.status_code == 422
    assert wrong_type.json()["field"] == "payment_screenshot"

    count = client.get("/registrations/count", params={"workshop_id": workshop["id"]}).json()
    assert count["total"] == 0


# Purpose: Verify the count endpoint falls back to the active workshop.
def test_count_defaults_to_active_workshop(client: TestClient, create_workshop, register) -> None:
    missing = client.get("/registrations/count")
    assert missing.status_code == 404

    workshop = create_workshop(max_seats=3)
    register(workshop["id"], "S500")

    response = client.get("/registrations/count")
    assert response.status_code == 200, response.text
    assert response.json() == {
        "workshop_id": workshop["id"],
        "total": 1,
        "remaining": 2,
        "max_seats": 3,
        "is_full": False,
        "status": "active",
    }


# Purpose: Verify self-service lookup and the confirmation download cap.
def test_view_and_download_limit(client: TestClient, create_workshop, register) -> None:
    workshop = create_workshop()
    register(workshop["id"], "S600", mobile_number="9000000001")

    lookup = {"mnc_uid": "s600", "mobile_number": "9000000001"}
    view = client.post("/registrations/view", json=lookup)
    assert view.status_code == 200, view.text
    assert view.json()["registration"]["form_number"] == 1
    assert view.json()["workshop"]["id"] == workshop["id"]

    wrong = client.post("/registrations/view", json={"mnc_uid": "S600", "mobile_number": "9999999999"})
    assert wrong.status_code == 404
    assert wrong.json()["kind"] == "registration_not_found"

    first = client.post("/registrations/download", json=lookup)
    assert first.status_code == 200, first.text
    assert first.json()["downloads_remaining"] == 1
    second = client.post("/registrations/download", json=lookup)
    assert second.json()["download_count"] == 2

    third = client.post("/registrations/download", json=lookup)
    assert third.status_code == 400
    assert third.json()["kind"] == "download_limit_reached"
