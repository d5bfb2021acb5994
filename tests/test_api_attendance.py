from fastapi.testclient import TestClient


# Purpose: Fetch a fresh attendance token for a workshop.
def _token(client: TestClient, workshop_id: str) -> str:
    response = client.post(f"/attendance/tokens/{workshop_id}")
    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["workshop_id"] == workshop_id
    assert payload["scan_url"].endswith(f"token={payload['token']}")
    return payload["token"]


# Purpose: Verify a student is marked present once and a second scan is refused.
def test_scan_marks_present_then_already_marked(client: TestClient, create_workshop, register) -> None:
    workshop = create_workshop()
    register(workshop["id"], "S001", mobile_number="9000000001")

    scan = client.post(
        "/attendance/scan",
        json={"token": _token(client, workshop["id"]), "mnc_uid": "s001", "mobile_number": "9000000001"},
        headers={"user-agent": "pytest-phone"},
    )
    assert scan.status_code == 200, scan.text
    payload = scan.json()
    assert payload["student_name"] == "Student S001"
    assert payload["workshop_title"] == workshop["title"]
    assert payload["attendance"]["mnc_uid"] == "S001"
    assert payload["attendance"]["user_agent"] == "pytest-phone"

    again = client.post(
        "/attendance/scan",
        json={"token": _token(client, workshop["id"]), "mnc_uid": "S001", "mobile_number": "9000000001"},
    )
    assert again.status_code == 409, again.text
    assert again.json()["kind"] == "already_marked"

    listing = client.get(f"/admin/workshops/{workshop['id']}/registrations").json()
    assert listing["registrations"][0]["attendance_status"] == "present"


# Purpose: Verify a token is single-use once it has marked someone present.
def test_token_cannot_be_replayed(client: TestClient, create_workshop, register) -> None:
    workshop = create_workshop()
    register(workshop["id"], "S010", mobile_number="9000000010")
    register(workshop["id"], "S011", mobile_number="9000000011")
    token = _token(client, workshop["id"])

    first = client.post("/attendance/scan", json={"token": token, "mnc_uid": "S010", "mobile_number": "9000000010"})
    assert first.status_code == 200, first.text

    replay = client.post("/attendance/scan", json={"token": token, "mnc_uid": "S011", "mobile_number": "9000000011"})
    assert replay.status_code == 400
    assert replay.json()["kind"] == "invalid_or_expired_token"


# Purpose: Verify a failed lookup leaves the token usable.
def test_lookup_failure_does_not_consume_token(client: TestClient, create_workshop, register) -> None:
    workshop = create_workshop()
    register(workshop["id"], "S020", mobile_number="9000000020")
    token = _token(client, workshop["id"])

    wrong = client.post("/attendance/scan", json={"token": token, "mnc_uid": "S020", "mobile_number": "9111111111"})
    assert wrong.status_code == 404
    assert wrong.json()["kind"] == "registration_not_found"

    right = client.post("/attendance/scan", json={"token": token, "mnc_uid": "S020", "mobile_number": "9000000020"})
    assert right.status_code == 200, right.text


# Purpose: Verify scans validate their inputs before any lookup.
def test_scan_input_validation(client: TestClient, create_workshop) -> None:
    workshop = create_workshop()

    no_token = client.post("/attendance/scan", json={"mnc_uid": "S030", "mobile_number": "9000000030"})
    assert no_token.status_code == 400
    assert no_token.json()["kind"] == "invalid_or_expired_token"

    token = _token(client, workshop["id"])
    no_uid = client.post("/attendance/scan", json={"token": token, "mobile_number": "9000000030"})
    assert no_uid.status_code == 422
    assert no_uid.json()["field"] == "mnc_uid"

    no_mobile = client.post("/attendance/scan", json={"token": token, "mnc_uid": "S030"})
    assert no_mobile.status_code == 422
    assert no_mobile.json()["field"] == "mobile_number"

    unknown = client.post(
        "/attendance/scan",
        json={"token": "f" * 64, "mnc_uid": "S030", "mobile_number": "9000000030"},
    )
    assert unknown.status_code == 400
    assert unknown.json()["kind"] == "invalid_or_expired_token"


# Purpose: Verify a token only admits students of its own workshop.
def test_token_is_scoped_to_its_workshop(client: TestClient, create_workshop, register) -> None:
    first = create_workshop(title="Morning session")
    register(first["id"], "S040", mobile_number="9000000040")
    client.put(f"/admin/workshops/{first['id']}/status", json={"status": "completed"})
    second = create_workshop(title="Evening session")

    response = client.post(
        "/attendance/scan",
        json={"token": _token(client, second["id"]), "mnc_uid": "S040", "mobile_number": "9000000040"},
    )
    assert response.status_code == 404
    assert response.json()["kind"] == "registration_not_found"


# Purpose: Verify scanning by registration number alone.
def test_scan_by_registration_number(client: TestClient, create_workshop, register) -> None:
    workshop = create_workshop()
    register(workshop["id"], "S050", mnc_registration_number="MNC/2024/050")

    response = client.post(
        "/attendance/scan",
        json={"token": _token(client, workshop["id"]), "mnc_registration_number": "mnc/2024/050"},
    )
    assert response.status_code == 200, response.text
    assert response.json()["attendance"]["mnc_registration_number"] == "MNC/2024/050"


# Purpose: Verify stats, listing and per-student status after some scans.
def test_attendance_reports(client: TestClient, create_workshop, register) -> None:
    workshop = create_workshop()
    for index in range(4):
        register(workshop["id"], f"S06{index}", mobile_number=f"900000006{index}")
    for index in range(3):
        client.post(
            "/attendance/scan",
            json={
                "token": _token(client, workshop["id"]),
                "mnc_uid": f"S06{index}",
                "mobile_number": f"900000006{index}",
            },
        )

    stats = client.get(f"/attendance/stats/{workshop['id']}").json()
    assert stats == {
        "workshop_id": workshop["id"],
        "total_registrations": 4,
        "total_present": 3,
        "total_applied": 1,
        "attendance_percentage": 75.0,
    }

    listing = client.get(f"/attendance/workshop/{workshop['id']}", params={"limit": 2})
    assert listing.status_code == 200
    assert len(listing.json()) == 2

    present = client.get(f"/attendance/student/{workshop['id']}/s060").json()
    assert present["present"] is True
    absent = client.get(f"/attendance/student/{workshop['id']}/S063").json()
    assert absent["present"] is False
    assert absent["attendance"] is None

    qr = client.get(f"/attendance/tokens/{workshop['id']}/qr.png")
    assert qr.status_code == 200
    assert qr.headers["content-type"] == "image/png"
    assert qr.content.startswith(b"\x89PNG")
