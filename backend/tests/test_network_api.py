import logging

from app.main import RequestIdFilter
from app.models.subnet import Subnet

from conftest import create_asset


async def create_subnet(client, headers, name="Servers", cidr="10.0.0.0/29"):
    response = await client.post("/api/network/subnets", headers=headers, json={"name": name, "cidr": cidr})
    assert response.status_code == 201, response.text
    return response.json()


async def test_create_and_list_subnets(client, admin_headers, user_headers):
    subnet = await create_subnet(client, admin_headers, cidr=" 192.168.10.0/24 ")
    assert subnet["cidr"] == "192.168.10.0/24"
    assert subnet["usable_host_count"] == 254

    listed = (await client.get("/api/network/subnets", headers=user_headers)).json()
    assert [s["name"] for s in listed] == ["Servers"]


async def test_subnet_management_is_admin_only(client, user_headers):
    response = await client.post(
        "/api/network/subnets", headers=user_headers, json={"name": "Lab", "cidr": "10.0.0.0/24"},
    )
    assert response.status_code == 403


async def test_create_subnet_rejects_invalid_cidr(client, admin_headers):
    for cidr in ("10.0.0.0/16", "10.0.0.1/24", "10.0.0/24", "300.0.0.0/24"):
        response = await client.post(
            "/api/network/subnets", headers=admin_headers, json={"name": "Bad", "cidr": cidr},
        )
        assert response.status_code == 400, cidr
        assert "Invalid CIDR" in response.json()["detail"]


async def test_create_subnet_rejects_duplicates(client, admin_headers):
    await create_subnet(client, admin_headers)
    same_name = await client.post(
        "/api/network/subnets", headers=admin_headers, json={"name": "Servers", "cidr": "10.0.1.0/24"},
    )
    assert same_name.status_code == 400
    same_cidr = await client.post(
        "/api/network/subnets", headers=admin_headers, json={"name": "Other", "cidr": "10.0.0.0/29"},
    )
    assert same_cidr.status_code == 400


async def test_update_and_delete_subnet(client, admin_headers):
    subnet = await create_subnet(client, admin_headers)
    other = await create_subnet(client, admin_headers, name="Printers", cidr="10.0.2.0/24")

    renamed = await client.put(
        f"/api/network/subnets/{subnet['id']}", headers=admin_headers, json={"name": "Core"},
    )
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Core"
    assert renamed.json()["cidr"] == "10.0.0.0/29"

    clash = await client.put(
        f"/api/network/subnets/{subnet['id']}", headers=admin_headers, json={"cidr": other["cidr"]},
    )
    assert clash.status_code == 400

    invalid = await client.put(
        f"/api/network/subnets/{subnet['id']}", headers=admin_headers, json={"cidr": "10.0.0.3/29"},
    )
    assert invalid.status_code == 400

    deleted = await client.delete(f"/api/network/subnets/{subnet['id']}", headers=admin_headers)
    assert deleted.status_code == 200
    missing = await client.get(f"/api/network/subnets/{subnet['id']}/ips", headers=admin_headers)
    assert missing.status_code == 404


async def test_subnet_ip_table(client, admin_headers, user_headers):
    subnet = await create_subnet(client, admin_headers)
    asset = await create_asset(
        client, user_headers, item_number="12", hostname="nas01",
        ips=[{"ip": "10.0.0.3", "label": "mgmt"}, {"ip": "10.0.5.5"}],
    )

    response = await client.get(f"/api/network/subnets/{subnet['id']}/ips", headers=user_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["subnet"]["cidr"] == "10.0.0.0/29"
    assert [row["ip"] for row in body["ips"]] == [f"10.0.0.{i}" for i in range(1, 7)]

    used = [row for row in body["ips"] if row["asset"]]
    assert len(used) == 1
    assert used[0]["ip"] == "10.0.0.3"
    assert used[0]["label"] == "mgmt"
    assert used[0]["asset"]["id"] == asset["id"]
    assert used[0]["asset"]["hostname"] == "nas01"


async def test_point_subnet_lists_single_address(client, admin_headers):
    subnet = await create_subnet(client, admin_headers, name="Firewall", cidr="10.9.9.9/32")
    body = (await client.get(f"/api/network/subnets/{subnet['id']}/ips", headers=admin_headers)).json()
    assert body["ips"] == [{"ip": "10.9.9.9", "asset": None, "label": None}]


async def test_link_and_unlink_ip(client, admin_headers, user_headers):
    subnet = await create_subnet(client, admin_headers)
    first = await create_asset(client, user_headers, item_number="1", ips=[{"ip": "10.0.0.2"}])
    second = await create_asset(client, user_headers, item_number="2")

    linked = await client.post(
        f"/api/network/subnets/{subnet['id']}/ips/10.0.0.4/link",
        headers=user_headers, json={"asset_id": second["id"], "label": "ilo"},
    )
    assert linked.status_code == 200
    assert linked.json()["asset"]["item_number"] == "2"
    assert linked.json()["label"] == "ilo"

    # Linking an address held by another asset moves it
    moved = await client.post(
        f"/api/network/subnets/{subnet['id']}/ips/10.0.0.2/link",
        headers=user_headers, json={"asset_id": second["id"]},
    )
    assert moved.status_code == 200
    first_now = (await client.get(f"/api/assets/{first['id']}", headers=user_headers)).json()
    second_now = (await client.get(f"/api/assets/{second['id']}", headers=user_headers)).json()
    assert first_now["ips"] == []
    assert [ip["ip"] for ip in second_now["ips"]] == ["10.0.0.2", "10.0.0.4"]

    unlinked = await client.delete(f"/api/network/subnets/{subnet['id']}/ips/10.0.0.4/link", headers=user_headers)
    assert unlinked.status_code == 200
    again = await client.delete(f"/api/network/subnets/{subnet['id']}/ips/10.0.0.4/link", headers=user_headers)
    assert again.status_code == 404


async def test_link_rejects_addresses_outside_the_subnet(client, admin_headers, user_headers):
    subnet = await create_subnet(client, admin_headers)
    asset = await create_asset(client, user_headers)
    for ip in ("10.0.0.0", "10.0.0.7", "10.0.1.1", "not-an-ip"):
        response = await client.post(
            f"/api/network/subnets/{subnet['id']}/ips/{ip}/link",
            headers=user_headers, json={"asset_id": asset["id"]},
        )
        assert response.status_code == 400, ip


async def test_link_unknown_asset(client, admin_headers, user_headers):
    subnet = await create_subnet(client, admin_headers)
    response = await client.post(
        f"/api/network/subnets/{subnet['id']}/ips/10.0.0.1/link",
        headers=user_headers, json={"asset_id": 999},
    )
    assert response.status_code == 404


async def test_ip_table_for_corrupt_stored_cidr(client, admin_headers, session_factory, caplog):
    async with session_factory() as session:
        subnet = Subnet(name="Legacy", cidr="10.0.0.1/24")
        session.add(subnet)
        await session.commit()
        subnet_id = subnet.id

    listed = (await client.get("/api/network/subnets", headers=admin_headers)).json()
    assert listed[0]["usable_host_count"] is None

    caplog.handler.addFilter(RequestIdFilter())
    with caplog.at_level(logging.ERROR, logger="app.routers.network"):
        response = await client.get(
            f"/api/network/subnets/{subnet_id}/ips", headers={**admin_headers, "X-Request-ID": "trace-1"},
        )
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid CIDR or no host IPs available"
    errors = [r for r in caplog.records if r.name == "app.routers.network"]
    assert errors and errors[0].request_id == "trace-1"
