from datetime import timedelta

from assethub.services.lifecycle import utcnow

from conftest import auth_headers, make_asset


def _payload(**overrides):
    now = utcnow()
    body = {
        "name": "ThinkPad X1",
        "type": "hardware",
        "category": "Laptop",
        "purchase_date": (now - timedelta(days=10)).isoformat(),
        "expiry_date": (now + timedelta(days=20)).isoformat(),
        "serial_number": "TP-X1-01",
        "cost": 1800,
        "vendor": "Lenovo",
    }
    body.update(overrides)
    return body


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["success"] is True


def test_unknown_route(client):
    res = client.get("/api/nowhere")
    assert res.status_code == 404
    assert res.json() == {"success": False, "message": "Route /api/nowhere not found"}


def test_token_required(client):
    res = client.get("/api/assets")
    assert res.status_code == 401
    assert res.json()["message"] == "Access token required"


def test_invalid_token(client):
    res = client.get("/api/assets", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401
    assert res.json()["message"] == "Invalid token"


def test_create_asset(client, hr):
    res = client.post("/api/assets", json=_payload(), headers=auth_headers(hr))
    assert res.status_code == 201
    body = res.json()
    assert body["success"] is True
    data = body["data"]
    assert data["status"] == "available"
    assert data["classification"] == "Ongoing"
    assert data["expiry_status"] == "expiring-soon"
    assert data["days_until_expiry"] == 20
    assert data["creator"]["id"] == str(hr.id)


def test_employee_cannot_create(client, employee):
    res = client.post("/api/assets", json=_payload(), headers=auth_headers(employee))
    assert res.status_code == 403
    assert res.json()["message"] == "Insufficient permissions"


def test_create_validation_errors(client, admin):
    now = utcnow()
    res = client.post(
        "/api/assets",
        json=_payload(purchase_date=now.isoformat(), expiry_date=(now - timedelta(days=1)).isoformat()),
        headers=auth_headers(admin),
    )
    assert res.status_code == 400
    assert res.json()["message"] == "Expiry date must be after purchase date"

    res = client.post("/api/assets", json=_payload(type="spaceship"), headers=auth_headers(admin))
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "Validation failed"
    assert body["errors"][0]["field"] == "type"


def test_duplicate_serial_conflict(client, admin):
    assert client.post("/api/assets", json=_payload(), headers=auth_headers(admin)).status_code == 201
    res = client.post("/api/assets", json=_payload(name="Another"), headers=auth_headers(admin))
    assert res.status_code == 409


def test_list_paginates(client, db, admin, employee):
    for i in range(1, 13):
        make_asset(db, admin, name=f"Asset {i:02d}")
    res = client.get(
        "/api/assets",
        params={"page": 2, "limit": 5, "sort_by": "name", "sort_order": "asc"},
        headers=auth_headers(employee),
    )
    assert res.status_code == 200
    body = res.json()
    assert [a["name"] for a in body["data"]] == [f"Asset {i:02d}" for i in range(6, 11)]
    assert body["pagination"] == {"page": 2, "limit": 5, "total": 12, "total_pages": 3}


def test_list_rejects_bad_paging(client, employee):
    headers = auth_headers(employee)
    assert client.get("/api/assets", params={"limit": 1001}, headers=headers).status_code == 400
    assert client.get("/api/assets", params={"page": 0}, headers=headers).status_code == 400
    res = client.get("/api/assets", params={"sort_by": "secret"}, headers=headers)
    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "sort_by"


def test_assign_unassign_and_delete(client, db, admin, employee):
    asset = make_asset(db, admin)
    headers = auth_headers(admin)

    res = client.post(f"/api/assets/{asset.id}/assign", json={"user_id": str(employee.id)}, headers=headers)
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "assigned"
    assert res.json()["data"]["assignee"]["email"] == employee.email

    res = client.delete(f"/api/assets/{asset.id}", headers=headers)
    assert res.status_code == 409
    assert res.json()["message"] == "Cannot delete assigned asset. Please return it first."

    res = client.post(f"/api/assets/{asset.id}/unassign", headers=headers)
    assert res.json()["data"]["status"] == "available"
    assert res.json()["data"]["assigned_to"] is None

    assert client.delete(f"/api/assets/{asset.id}", headers=headers).status_code == 200
    assert client.get(f"/api/assets/{asset.id}", headers=headers).status_code == 404


def test_hr_cannot_delete(client, db, admin, hr):
    asset = make_asset(db, admin)
    assert client.delete(f"/api/assets/{asset.id}", headers=auth_headers(hr)).status_code == 403


def test_reports(client, db, admin, employee):
    make_asset(db, admin, name="Soon", expiry_days=10)
    make_asset(db, admin, name="Key", asset_type="license", expiry_days=None)
    headers = auth_headers(employee)

    stats = client.get("/api/assets/stats", headers=headers).json()["data"]
    assert stats["total_assets"] == 2
    assert stats["expiring_assets"] == 1

    expiring = client.get("/api/assets/expiring", params={"days": 30}, headers=headers).json()["data"]
    assert [a["name"] for a in expiring] == ["Soon"]

    by_type = client.get("/api/assets/type/license", headers=headers).json()["data"]
    assert [a["name"] for a in by_type] == ["Key"]

    available = client.get("/api/assets/available", headers=headers).json()["data"]
    assert {a["name"] for a in available} == {"Soon", "Key"}

    assert client.get("/api/assets/expired", headers=headers).json()["data"] == []


def test_update_expired_sweep(client, db, admin, hr):
    asset = make_asset(db, admin, expiry_days=10)
    # Age the record so the stored status is stale
    asset.expiry_date = utcnow() - timedelta(days=1)
    db.commit()

    res = client.post("/api/assets/update-expired", headers=auth_headers(hr))
    assert res.status_code == 200
    assert res.json()["data"] == {"matched_count": 1, "modified_count": 1}
    res = client.post("/api/assets/update-expired", headers=auth_headers(hr))
    assert res.json()["data"]["matched_count"] == 0


def test_status_is_not_writable(client, db, admin):
    asset = make_asset(db, admin)
    res = client.put(f"/api/assets/{asset.id}", json={"status": "expired", "vendor": "Acme"}, headers=auth_headers(admin))
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "available"
    assert res.json()["data"]["vendor"] == "Acme"


def test_update_cannot_change_assignee(client, db, admin, hr, employee):
    asset = make_asset(db, admin, name="Projector")
    res = client.post(
        "/api/allocations",
        json={"asset_id": str(asset.id), "user_id": str(employee.id)},
        headers=auth_headers(hr),
    )
    assert res.status_code == 201
    allocation_id = res.json()["data"]["id"]

    for assignee in (None, str(hr.id)):
        res = client.put(f"/api/assets/{asset.id}", json={"assigned_to": assignee}, headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.json()["data"]["status"] == "assigned"
        assert res.json()["data"]["assigned_to"] == str(employee.id)

    active = client.get(f"/api/allocations/asset/{asset.id}/active", headers=auth_headers(admin))
    assert active.json()["data"]["id"] == allocation_id

    res = client.post(f"/api/allocations/{allocation_id}/return", headers=auth_headers(hr))
    assert res.json()["data"]["asset"]["status"] == "available"
    res = client.post(
        "/api/allocations",
        json={"asset_id": str(asset.id), "user_id": str(hr.id)},
        headers=auth_headers(hr),
    )
    assert res.status_code == 201
