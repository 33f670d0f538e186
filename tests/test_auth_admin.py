from datetime import timedelta

from jose import jwt
from sqlalchemy import select

from smb_erp.core.security import create_access_token
from smb_erp.models.user import User


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _login(client, identifier: str, password: str = "password123"):
    return client.post("/auth/login", json={"identifier": identifier, "password": password})


def _create_user(client, headers, *, username: str, role: str):
    return client.post(
        "/admin/users",
        json={
            "email": f"{username}@example.com",
            "username": username,
            "full_name": username.title(),
            "password": "password123",
            "role": role,
        },
        headers=headers,
    )


def test_bootstrap_only_once_and_login_by_email_or_username(test_context, admin_headers):
    client, session_local = test_context

    again = client.post(
        "/auth/bootstrap",
        json={
            "email": "second@example.com",
            "username": "second",
            "full_name": "Second Admin",
            "password": "password123",
        },
    )
    assert again.status_code == 409, again.text
    assert again.json()["error"]["code"] == "conflict"

    by_email = _login(client, "ADMIN@example.com")
    assert by_email.status_code == 200, by_email.text
    by_username = _login(client, "admin")
    assert by_username.status_code == 200, by_username.text

    form_login = client.post("/auth/token", data={"username": "admin", "password": "password123"})
    assert form_login.status_code == 200, form_login.text
    assert form_login.json()["token_type"] == "bearer"

    me = client.get("/auth/me", headers=_auth_headers(by_username.json()["access_token"]))
    assert me.status_code == 200, me.text
    assert me.json()["role"] == "administrator"
    assert "admin.manage" in me.json()["permissions"]

    db = session_local()
    try:
        user = db.execute(select(User).where(User.username == "admin")).scalar_one()
    finally:
        db.close()
    assert user.last_login_at is not None


def test_login_rate_limited_after_repeated_failures(test_context, admin_headers):
    client, _ = test_context

    for _ in range(5):
        failed = _login(client, "admin", "wrongpass")
        assert failed.status_code == 401, failed.text

    blocked = _login(client, "admin", "wrongpass")
    assert blocked.status_code == 429, blocked.text
    assert blocked.json()["error"]["code"] == "rate_limited"
    assert "retry-after" in blocked.headers


def test_invalid_token_is_rejected(test_context):
    client, _ = test_context

    res = client.get("/auth/me", headers=_auth_headers("not-a-token"))

    assert res.status_code == 401, res.text


def test_expired_token_is_rejected(test_context, admin_headers):
    client, session_local = test_context
    db = session_local()
    try:
        user_id = db.execute(select(User.id).where(User.username == "admin")).scalar_one()
    finally:
        db.close()

    token = create_access_token(user_id, expires_in=timedelta(seconds=-30))
    res = client.get("/auth/me", headers=_auth_headers(token))

    assert res.status_code == 401, res.text
    assert res.json()["error"]["message"] == "Token expired"


def test_role_permissions_gate_endpoints(test_context, admin_headers):
    client, _ = test_context
    created = _create_user(client, admin_headers, username="warehouse1", role="warehouse")
    assert created.status_code == 201, created.text
    assert created.json()["role"] == "warehouse"

    token = _login(client, "warehouse1").json()["access_token"]
    headers = _auth_headers(token)

    assert client.get("/inventory", headers=headers).status_code == 200
    forbidden = client.get("/accounting/accounts", headers=headers)
    assert forbidden.status_code == 403, forbidden.text
    assert forbidden.json()["error"]["code"] == "forbidden"
    assert client.get("/admin/users", headers=headers).status_code == 403

    roles = client.get("/admin/roles", headers=admin_headers).json()
    warehouse = next(role for role in roles["items"] if role["name"] == "warehouse")
    granted = client.put(
        f"/admin/roles/{warehouse['id']}/permissions",
        json={"permissions": warehouse["permissions"] + ["accounting.view"]},
        headers=admin_headers,
    )
    assert granted.status_code == 200, granted.text
    assert client.get("/accounting/accounts", headers=headers).status_code == 200

    unknown = client.put(
        f"/admin/roles/{warehouse['id']}/permissions",
        json={"permissions": ["inventory.fly"]},
        headers=admin_headers,
    )
    assert unknown.status_code == 422, unknown.text


def test_inactive_user_cannot_login(test_context, admin_headers):
    client, _ = test_context
    user = _create_user(client, admin_headers, username="seller1", role="sales").json()

    res = client.patch(f"/admin/users/{user['id']}", json={"is_active": False}, headers=admin_headers)
    assert res.status_code == 200, res.text

    assert _login(client, "seller1").status_code == 403

    duplicate = _create_user(client, admin_headers, username="seller1", role="sales")
    assert duplicate.status_code == 409, duplicate.text


def test_last_administrator_cannot_be_demoted(test_context, admin_headers):
    client, _ = test_context
    me = client.get("/auth/me", headers=admin_headers).json()

    res = client.patch(f"/admin/users/{me['id']}", json={"role": "sales"}, headers=admin_headers)

    assert res.status_code == 409, res.text
    assert client.get("/auth/me", headers=admin_headers).json()["role"] == "administrator"


def test_company_information_round_trip(test_context, admin_headers):
    client, _ = test_context
    assert client.get("/admin/company", headers=admin_headers).status_code == 404

    saved = client.put(
        "/admin/company",
        json={
            "company_name": "Acme Supplies S.L.",
            "company_email": "billing@acme.example.com",
            "company_address": "Calle Mayor 1, Madrid",
            "currency": "EUR",
        },
        headers=admin_headers,
    )
    assert saved.status_code == 200, saved.text

    fetched = client.get("/admin/company", headers=admin_headers)
    assert fetched.json()["company_name"] == "Acme Supplies S.L."
    assert fetched.json()["timezone"] == "Europe/Madrid"


def test_audit_log_lists_sensitive_operations(test_context, admin_headers):
    client, _ = test_context
    _create_user(client, admin_headers, username="accountant1", role="accountant")

    res = client.get("/audit/logs", params={"action": "user.create"}, headers=admin_headers)

    assert res.status_code == 200, res.text
    assert res.json()["pagination"]["total"] == 1
    assert res.json()["items"][0]["target_type"] == "user"


def test_delete_user_rules(test_context, admin_headers):
    client, _ = test_context
    me = client.get("/auth/me", headers=admin_headers).json()

    own = client.delete(f"/admin/users/{me['id']}", headers=admin_headers)
    assert own.status_code == 409, own.text
    assert own.json()["error"]["code"] == "invalid_state_for_deletion"

    clerk = _create_user(client, admin_headers, username="clerk1", role="sales").json()
    clerk_headers = _auth_headers(_login(client, "clerk1").json()["access_token"])
    contact = client.post(
        "/contacts",
        json={
            "name": "Ferreteria Sol",
            "email": "sol@example.com",
            "phone": "+34 600 111 222",
            "type": "customer",
        },
        headers=admin_headers,
    )
    assert contact.status_code == 201, contact.text
    item = client.post(
        "/inventory",
        json={"name": "Cable HDMI", "sku": "CAB-DEL", "category": "Cables", "unit_price": 2.0, "opening_stock": 5},
        headers=admin_headers,
    )
    assert item.status_code == 201, item.text
    sale = client.post(
        "/sales",
        json={
            "customer_id": contact.json()["id"],
            "date": "2026-10-19",
            "items": [{"inventory_item_id": item.json()["id"], "quantity": 1, "unit_price": 4.5}],
        },
        headers=clerk_headers,
    )
    assert sale.status_code == 201, sale.text

    blocked = client.delete(f"/admin/users/{clerk['id']}", headers=admin_headers)
    assert blocked.status_code == 409, blocked.text
    assert blocked.json()["error"]["code"] == "has_dependents"
    assert {"dependent": "sale_orders", "count": 1} in blocked.json()["error"]["details"]

    unused = _create_user(client, admin_headers, username="temp1", role="accountant").json()
    deleted = client.delete(f"/admin/users/{unused['id']}", headers=admin_headers)
    assert deleted.status_code == 200, deleted.text
    assert _login(client, "temp1").status_code == 401
    assert client.delete(f"/admin/users/{unused['id']}", headers=admin_headers).status_code == 404


def test_security_settings_drive_password_policy_and_session_length(test_context, admin_headers):
    client, _ = test_context
    defaults = client.get("/admin/settings/security", headers=admin_headers)
    assert defaults.status_code == 200, defaults.text
    assert defaults.json()["password_policy"] == "medium"
    assert defaults.json()["session_timeout_minutes"] == 30

    saved = client.put(
        "/admin/settings/security",
        json={"mfa_enabled": True, "password_policy": "strong", "session_timeout_minutes": 15},
        headers=admin_headers,
    )
    assert saved.status_code == 200, saved.text
    assert saved.json()["mfa_enabled"] is True

    weak = _create_user(client, admin_headers, username="weak1", role="sales")
    assert weak.status_code == 422, weak.text
    assert weak.json()["error"]["details"][0]["field"] == "password"

    strong = client.post(
        "/admin/users",
        json={
            "email": "strong1@example.com",
            "username": "strong1",
            "full_name": "Strong One",
            "password": "Correct-Horse-42",
            "role": "sales",
        },
        headers=admin_headers,
    )
    assert strong.status_code == 201, strong.text

    token = _login(client, "strong1", "Correct-Horse-42").json()["access_token"]
    claims = jwt.get_unverified_claims(token)
    assert claims["exp"] - claims["iat"] == 15 * 60

    too_short = client.put(
        "/admin/settings/security",
        json={"password_policy": "simple", "session_timeout_minutes": 1},
        headers=admin_headers,
    )
    assert too_short.status_code == 422, too_short.text


def test_notification_settings_round_trip(test_context, admin_headers):
    client, _ = test_context
    assert client.get("/admin/settings/notifications", headers=admin_headers).json()["low_stock_notify"] is True

    saved = client.put(
        "/admin/settings/notifications",
        json={"email_notifications_enabled": True, "new_sale_notify": False, "low_stock_notify": False},
        headers=admin_headers,
    )
    assert saved.status_code == 200, saved.text

    fetched = client.get("/admin/settings/notifications", headers=admin_headers).json()
    assert fetched["new_sale_notify"] is False
    assert fetched["low_stock_notify"] is False
    assert fetched["email_notifications_enabled"] is True

    unknown = client.put(
        "/admin/settings/notifications",
        json={"sms_notify": True},
        headers=admin_headers,
    )
    assert unknown.status_code == 422, unknown.text
