import pytest
from sqlalchemy import select

from app.models.asset import Asset

from conftest import PASSWORD, create_asset, create_lookup


async def test_create_asset_defaults(client, user_headers):
    asset = await create_asset(client, user_headers, item_number=" 100 ", model="Latitude 5440")
    assert asset["item_number"] == "100"
    assert asset["status"] == "In Use"
    assert asset["condition"] == "GOOD"
    assert asset["ips"] == []
    assert asset["has_device_password"] is False


async def test_create_asset_canonicalises_status(client, user_headers):
    asset = await create_asset(client, user_headers, status="awaiting ALLOCATION")
    assert asset["status"] == "Awaiting allocation"


async def test_create_asset_rejects_unknown_status(client, user_headers):
    response = await client.post("/api/assets/", headers=user_headers, json={"item_number": "1", "status": "Lost"})
    assert response.status_code == 422


async def test_duplicate_item_number(client, user_headers):
    await create_asset(client, user_headers)
    response = await client.post("/api/assets/", headers=user_headers, json={"item_number": "100"})
    assert response.status_code == 400


async def test_create_with_lookups_and_ips(client, user_headers):
    category = await create_lookup(client, user_headers, "categories", "Laptops")
    asset = await create_asset(
        client, user_headers,
        category_id=category["id"],
        ips=[{"ip": "10.0.0.20", "label": "eth0"}, {"ip": " 10.0.0.21 "}],
        purchase_price="1299.99",
        acquired_date="2024-01-31",
    )
    assert asset["category"] == {"id": category["id"], "name": "Laptops"}
    assert [ip["ip"] for ip in asset["ips"]] == ["10.0.0.20", "10.0.0.21"]
    assert asset["ips"][0]["label"] == "eth0"
    assert asset["purchase_price"] == 1299.99
    assert asset["acquired_date"] == "2024-01-31"


async def test_ip_conflicts(client, user_headers):
    await create_asset(client, user_headers, item_number="1", ips=[{"ip": "10.0.0.5"}])

    taken = await client.post("/api/assets/", headers=user_headers, json={
        "item_number": "2", "ips": [{"ip": "10.0.0.5"}],
    })
    assert taken.status_code == 400
    assert "already assigned to asset 1" in taken.json()["detail"]

    repeated = await client.post("/api/assets/", headers=user_headers, json={
        "item_number": "3", "ips": [{"ip": "10.0.0.6"}, {"ip": "10.0.0.6"}],
    })
    assert repeated.status_code == 400

    invalid = await client.post("/api/assets/", headers=user_headers, json={
        "item_number": "4", "ips": [{"ip": "10.0.0.256"}],
    })
    assert invalid.status_code == 422


async def test_update_asset_replaces_ips_and_records_history(client, user_headers):
    asset = await create_asset(client, user_headers, ips=[{"ip": "10.0.0.1"}, {"ip": "10.0.0.2"}])

    response = await client.put(f"/api/assets/{asset['id']}", headers=user_headers, json={
        "model": "EliteBook",
        "condition": "FAIR",
        "ips": [{"ip": "10.0.0.2", "label": "wifi"}, {"ip": "10.0.0.3"}],
    })
    assert response.status_code == 200
    updated = response.json()
    assert updated["model"] == "EliteBook"
    assert updated["condition"] == "FAIR"
    assert [(ip["ip"], ip["label"]) for ip in updated["ips"]] == [("10.0.0.2", "wifi"), ("10.0.0.3", None)]

    history = (await client.get(f"/api/assets/{asset['id']}/history", headers=user_headers)).json()
    assert [entry["action"] for entry in history] == ["UPDATE", "CREATE"]
    assert '"model"' in history[0]["details"]
    assert '"ips"' in history[0]["details"]

    detail = (await client.get(f"/api/assets/{asset['id']}", headers=user_headers)).json()
    assert len(detail["audit_logs"]) == 2


async def test_update_rejects_taken_item_number(client, user_headers):
    await create_asset(client, user_headers, item_number="1")
    second = await create_asset(client, user_headers, item_number="2")
    response = await client.put(f"/api/assets/{second['id']}", headers=user_headers, json={"item_number": "1"})
    assert response.status_code == 400


async def test_update_rejects_ip_owned_elsewhere(client, user_headers):
    await create_asset(client, user_headers, item_number="1", ips=[{"ip": "10.0.0.9"}])
    second = await create_asset(client, user_headers, item_number="2")
    response = await client.put(
        f"/api/assets/{second['id']}", headers=user_headers, json={"ips": [{"ip": "10.0.0.9"}]},
    )
    assert response.status_code == 400


async def test_missing_asset_returns_404(client, user_headers):
    assert (await client.get("/api/assets/999", headers=user_headers)).status_code == 404
    assert (await client.put("/api/assets/999", headers=user_headers, json={})).status_code == 404
    assert (await client.delete("/api/assets/999", headers=user_headers)).status_code == 404


async def test_delete_asset(client, user_headers):
    asset = await create_asset(client, user_headers, ips=[{"ip": "10.0.0.7"}])
    response = await client.delete(f"/api/assets/{asset['id']}", headers=user_headers)
    assert response.status_code == 200
    assert (await client.get(f"/api/assets/{asset['id']}", headers=user_headers)).status_code == 404

    # The address is free again
    await create_asset(client, user_headers, item_number="101", ips=[{"ip": "10.0.0.7"}])


async def test_device_password_is_encrypted_and_revealed(client, user_headers, session_factory):
    asset = await create_asset(client, user_headers, device_username="local-admin", device_password="S3cret!")
    assert asset["has_device_password"] is True
    assert "device_password" not in asset

    async with session_factory() as session:
        stored = (await session.execute(select(Asset.device_password).where(Asset.id == asset["id"]))).scalar()
    assert stored and stored != "S3cret!"

    denied = await client.post(
        f"/api/assets/{asset['id']}/credentials", headers=user_headers, json={"password": "wrong"},
    )
    assert denied.status_code == 403

    revealed = await client.post(
        f"/api/assets/{asset['id']}/credentials", headers=user_headers, json={"password": PASSWORD},
    )
    assert revealed.json() == {"device_username": "local-admin", "device_password": "S3cret!"}


async def test_list_assets_natural_sort_and_pagination(client, user_headers):
    for number in ["10", "9", "100", "1"]:
        await create_asset(client, user_headers, item_number=number)

    response = await client.get("/api/assets/?limit=3", headers=user_headers)
    body = response.json()
    assert [a["item_number"] for a in body["data"]] == ["1", "9", "10"]
    assert body["pagination"] == {"page": 1, "limit": 3, "total": 4, "total_pages": 2}

    page2 = (await client.get("/api/assets/?limit=3&page=2", headers=user_headers)).json()
    assert [a["item_number"] for a in page2["data"]] == ["100"]

    desc = (await client.get("/api/assets/?sort_order=desc", headers=user_headers)).json()
    assert desc["data"][0]["item_number"] == "100"


async def test_list_assets_filters(client, user_headers):
    laptops = await create_lookup(client, user_headers, "categories", "Laptops")
    await create_asset(client, user_headers, item_number="1", model="Latitude", category_id=laptops["id"])
    await create_asset(client, user_headers, item_number="2", hostname="print-srv", status="Waiting Repair")
    await create_asset(client, user_headers, item_number="3", assigned_to="Jane Latimer")

    search = (await client.get("/api/assets/?search=LATI", headers=user_headers)).json()
    assert sorted(a["item_number"] for a in search["data"]) == ["1", "3"]

    by_status = (await client.get("/api/assets/?status=waiting repair", headers=user_headers)).json()
    assert [a["item_number"] for a in by_status["data"]] == ["2"]

    by_category = (await client.get(f"/api/assets/?category={laptops['id']}", headers=user_headers)).json()
    assert [a["item_number"] for a in by_category["data"]] == ["1"]

    unknown = await client.get("/api/assets/?status=Lost", headers=user_headers)
    assert unknown.status_code == 400


@pytest.mark.parametrize("sort_by", ["model", "category", "created_at"])
async def test_list_assets_sort_columns(client, user_headers, sort_by):
    await create_asset(client, user_headers, item_number="1", model="B")
    await create_asset(client, user_headers, item_number="2", model="A")
    response = await client.get(f"/api/assets/?sort_by={sort_by}", headers=user_headers)
    assert response.status_code == 200
    assert len(response.json()["data"]) == 2


async def test_list_assets_rejects_unknown_sort(client, user_headers):
    response = await client.get("/api/assets/?sort_by=device_password", headers=user_headers)
    assert response.status_code == 400


async def test_next_item_number(client, user_headers):
    assert (await client.get("/api/assets/next-item-number", headers=user_headers)).json() == {
        "next_item_number": "1"
    }
    await create_asset(client, user_headers, item_number="41")
    await create_asset(client, user_headers, item_number="LAPTOP-900")
    assert (await client.get("/api/assets/next-item-number", headers=user_headers)).json() == {
        "next_item_number": "42"
    }


async def test_bulk_create(client, user_headers):
    await create_asset(client, user_headers, item_number="5")
    await create_asset(client, user_headers, item_number="7")

    response = await client.post("/api/assets/bulk", headers=user_headers, json={
        "shared_fields": {"model": "iPad 10th Gen", "condition": "NEW", "status": "in use - loaned to student"},
        "serial_numbers": ["SN-A", " ", "SN-B", "SN-C"],
        "assigned_to_list": ["Alice", "", "Bob"],
    })
    assert response.status_code == 201
    body = response.json()
    assert body["created"] == 3
    assert body["failed"] == 0
    assert body["item_numbers"] == ["8", "9", "10"]

    listing = (await client.get("/api/assets/?search=iPad", headers=user_headers)).json()["data"]
    by_serial = {a["serial_number"]: a for a in listing}
    assert by_serial["SN-A"]["assigned_to"] == "Alice"
    assert by_serial["SN-B"]["assigned_to"] == "Bob"
    assert by_serial["SN-C"]["assigned_to"] is None
    assert by_serial["SN-C"]["status"] == "In Use - Loaned to student"
    assert by_serial["SN-C"]["condition"] == "NEW"


async def test_bulk_create_requires_serials(client, user_headers):
    response = await client.post("/api/assets/bulk", headers=user_headers, json={"serial_numbers": ["  "]})
    assert response.status_code == 422


# ── lookups ──────────────────────────────────────────────────────────────────

async def test_lookup_crud(client, user_headers, admin_headers):
    created = await create_lookup(client, user_headers, "manufacturers", "Dell")
    assert created["asset_count"] == 0

    duplicate = await client.post("/api/lookups/manufacturers", headers=user_headers, json={"name": "dell"})
    assert duplicate.status_code == 400

    await create_asset(client, user_headers, manufacturer_id=created["id"])
    listed = (await client.get("/api/lookups/manufacturers", headers=user_headers)).json()
    assert listed == [{
        "id": created["id"], "name": "Dell", "website": None, "support_url": None, "asset_count": 1,
    }]

    forbidden = await client.put(f"/api/lookups/manufacturers/{created['id']}", headers=user_headers, json={})
    assert forbidden.status_code == 403

    renamed = await client.put(
        f"/api/lookups/manufacturers/{created['id']}", headers=admin_headers, json={"name": "Dell Technologies"},
    )
    assert renamed.json()["name"] == "Dell Technologies"

    in_use = await client.delete(f"/api/lookups/manufacturers/{created['id']}", headers=admin_headers)
    assert in_use.status_code == 400
    assert "1 asset" in in_use.json()["detail"]


async def test_lookup_delete_unused(client, admin_headers):
    location = await create_lookup(client, admin_headers, "locations", "Library")
    response = await client.delete(f"/api/lookups/locations/{location['id']}", headers=admin_headers)
    assert response.status_code == 200
    assert (await client.get("/api/lookups/locations", headers=admin_headers)).json() == []
    missing = await client.delete(f"/api/lookups/locations/{location['id']}", headers=admin_headers)
    assert missing.status_code == 404


# ── settings ─────────────────────────────────────────────────────────────────

async def test_settings(client, admin_headers, user_headers):
    saved = await client.put(
        "/api/settings/organization_name", headers=admin_headers, json={"value": "Example School"},
    )
    assert saved.json() == {"key": "organization_name", "updated": True}
    await client.put("/api/settings/smtp_password", headers=admin_headers, json={"value": "pw", "is_secret": True})

    one = (await client.get("/api/settings/organization_name", headers=user_headers)).json()
    assert one["value"] == "Example School"

    everything = (await client.get("/api/settings/", headers=admin_headers)).json()
    assert {s["key"]: s["value"] for s in everything} == {
        "organization_name": "Example School", "smtp_password": "***",
    }

    assert (await client.get("/api/settings/", headers=user_headers)).status_code == 403
    assert (await client.put("/api/settings/x", headers=user_headers, json={"value": "y"})).status_code == 403
    assert (await client.get("/api/settings/missing", headers=user_headers)).status_code == 404
