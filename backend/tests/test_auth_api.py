import logging
from datetime import datetime, timedelta, timezone

from app.config import settings
from app.main import RequestIdFilter, request_id_var
from app.services.auth import create_refresh_token

from conftest import PASSWORD, auth_headers


async def login(client, username, password=PASSWORD):
    return await client.post("/api/auth/login", json={"username": username, "password": password})


async def test_health(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": settings.APP_VERSION}
    assert response.headers["X-Content-Type-Options"] == "nosniff"


async def test_request_id_is_echoed_or_generated(client):
    given = await client.get("/api/health", headers={"X-Request-ID": "abc123"})
    assert given.headers["X-Request-ID"] == "abc123"
    generated = await client.get("/api/health")
    assert len(generated.headers["X-Request-ID"]) == 8
    assert request_id_var.get() == "-"


def test_request_id_filter_stamps_records():
    record = logging.LogRecord("app", logging.INFO, __file__, 1, "hello", None, None)
    token = request_id_var.set("req-42")
    try:
        assert RequestIdFilter().filter(record)
    finally:
        request_id_var.reset(token)
    assert record.request_id == "req-42"

    outside = logging.LogRecord("app", logging.INFO, __file__, 1, "hello", None, None)
    RequestIdFilter().filter(outside)
    assert outside.request_id == "-"


async def test_login_success(client, admin_user):
    response = await login(client, "ADMIN ")
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["role"] == "admin"
    assert body["must_change_password"] is False
    assert "itms_refresh" in response.cookies

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["username"] == "admin"
    assert me.json()["last_login"] is not None


async def test_login_wrong_password(client, admin_user):
    response = await login(client, "admin", "wrong-password")
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


async def test_login_unknown_user(client):
    response = await login(client, "ghost")
    assert response.status_code == 401


async def test_login_disabled_account(client, make_user):
    await make_user("leaver", is_active=False)
    response = await login(client, "leaver")
    assert response.status_code == 401
    assert response.json()["detail"] == "Account is disabled"


async def test_account_locks_after_repeated_failures(client, regular_user):
    for _ in range(settings.MAX_LOGIN_ATTEMPTS):
        await login(client, "staff", "wrong-password")
    response = await login(client, "staff")
    assert response.status_code == 401
    assert "locked" in response.json()["detail"]


async def test_expired_lock_is_cleared(client, make_user):
    await make_user(
        "returning",
        account_locked=True,
        failed_attempts=5,
        locked_until=datetime.now(timezone.utc) - timedelta(minutes=1),
    )
    response = await login(client, "returning")
    assert response.status_code == 200


async def test_protected_route_requires_token(client):
    response = await client.get("/api/auth/me")
    assert response.status_code in (401, 403)


async def test_refresh_token_cannot_be_used_as_access_token(client, regular_user):
    token = create_refresh_token({"sub": str(regular_user.id), "username": regular_user.username})
    response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


async def test_refresh_with_body(client, regular_user):
    token = create_refresh_token({"sub": str(regular_user.id), "username": regular_user.username})
    response = await client.post("/api/auth/refresh", json={"refresh_token": token})
    assert response.status_code == 200
    assert response.json()["role"] == "user"


async def test_refresh_rejects_access_token(client, regular_user, user_headers):
    access = user_headers["Authorization"].split(" ", 1)[1]
    response = await client.post("/api/auth/refresh", json={"refresh_token": access})
    assert response.status_code == 401


async def test_change_password(client, regular_user, user_headers):
    response = await client.post(
        "/api/auth/change-password",
        headers=user_headers,
        json={"current_password": PASSWORD, "new_password": "An0ther-pass", "confirm_password": "An0ther-pass"},
    )
    assert response.status_code == 200
    assert (await login(client, "staff")).status_code == 401
    assert (await login(client, "staff", "An0ther-pass")).status_code == 200


async def test_change_password_requires_current(client, regular_user, user_headers):
    response = await client.post(
        "/api/auth/change-password",
        headers=user_headers,
        json={"current_password": "nope-nope", "new_password": "An0ther-pass", "confirm_password": "An0ther-pass"},
    )
    assert response.status_code == 400


async def test_change_password_validation(client, regular_user, user_headers):
    short = await client.post(
        "/api/auth/change-password",
        headers=user_headers,
        json={"current_password": PASSWORD, "new_password": "short", "confirm_password": "short"},
    )
    assert short.status_code == 422
    mismatch = await client.post(
        "/api/auth/change-password",
        headers=user_headers,
        json={"current_password": PASSWORD, "new_password": "An0ther-pass", "confirm_password": "Different-1"},
    )
    assert mismatch.status_code == 422


async def test_forced_change_skips_current_password(client, make_user):
    user = await make_user("newstarter", must_change_password=True)
    response = await client.post(
        "/api/auth/change-password",
        headers=auth_headers(user),
        json={"new_password": "Fresh-pass1", "confirm_password": "Fresh-pass1"},
    )
    assert response.status_code == 200
    body = (await login(client, "newstarter", "Fresh-pass1")).json()
    assert body["must_change_password"] is False


async def test_verify_password(client, regular_user, user_headers):
    ok = await client.post("/api/auth/verify-password", headers=user_headers, json={"password": PASSWORD})
    bad = await client.post("/api/auth/verify-password", headers=user_headers, json={"password": "nope"})
    assert ok.json() == {"valid": True}
    assert bad.json() == {"valid": False}


async def test_logout(client, regular_user, user_headers):
    response = await client.post("/api/auth/logout", headers=user_headers)
    assert response.status_code == 200


# ── user management ──────────────────────────────────────────────────────────

async def test_user_management_is_admin_only(client, regular_user, user_headers):
    response = await client.get("/api/users/", headers=user_headers)
    assert response.status_code == 403


async def test_create_and_list_users(client, admin_headers):
    response = await client.post("/api/users/", headers=admin_headers, json={
        "username": "Tech.One",
        "password": "Initial-pass1",
        "full_name": "Tech One",
    })
    assert response.status_code == 201
    created = response.json()
    assert created["username"] == "tech.one"
    assert created["role"] == "user"
    assert created["must_change_password"] is True

    duplicate = await client.post("/api/users/", headers=admin_headers, json={
        "username": "tech.one", "password": "Initial-pass1", "full_name": "Again",
    })
    assert duplicate.status_code == 400

    users = (await client.get("/api/users/", headers=admin_headers)).json()
    assert [u["username"] for u in users] == ["admin", "tech.one"]


async def test_admin_cannot_demote_or_delete_self(client, admin_user, admin_headers):
    demote = await client.put(f"/api/users/{admin_user.id}", headers=admin_headers, json={"role": "user"})
    assert demote.status_code == 400
    deactivate = await client.put(f"/api/users/{admin_user.id}", headers=admin_headers, json={"is_active": False})
    assert deactivate.status_code == 400
    delete = await client.delete(f"/api/users/{admin_user.id}", headers=admin_headers)
    assert delete.status_code == 400


async def test_update_reset_unlock_delete_user(client, admin_headers, make_user):
    user = await make_user("locked.out", account_locked=True, failed_attempts=5)

    updated = await client.put(f"/api/users/{user.id}", headers=admin_headers, json={"role": "admin"})
    assert updated.json()["role"] == "admin"

    unlocked = await client.post(f"/api/users/{user.id}/unlock", headers=admin_headers)
    assert unlocked.status_code == 200
    assert (await client.get(f"/api/users/{user.id}", headers=admin_headers)).json()["account_locked"] is False

    reset = await client.post(
        f"/api/users/{user.id}/reset-password", headers=admin_headers, json={"new_password": "Reset-pass1"}
    )
    assert reset.status_code == 200
    body = (await login(client, "locked.out", "Reset-pass1")).json()
    assert body["must_change_password"] is True

    deleted = await client.delete(f"/api/users/{user.id}", headers=admin_headers)
    assert deleted.status_code == 200
    assert (await client.get(f"/api/users/{user.id}", headers=admin_headers)).status_code == 404


async def test_audit_log_listing(client, admin_headers):
    await client.post("/api/users/", headers=admin_headers, json={
        "username": "audited", "password": "Initial-pass1", "full_name": "Audited",
    })
    logs = (await client.get("/api/users/audit/logs?resource_type=user", headers=admin_headers)).json()
    assert logs[0]["action"] == "user_created"
    assert logs[0]["username"] == "admin"
