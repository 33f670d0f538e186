from sqlalchemy import select

from smb_erp.models.audit_log import AuditLog
from smb_erp.models.inventory import InventoryItem


def _create_contact(client, headers, *, name: str, contact_type: str) -> int:
    res = client.post(
        "/contacts",
        json={
            "name": name,
            "email": f"{contact_type}@example.com",
            "phone": "+34 600 000 000",
            "type": contact_type,
        },
        headers=headers,
    )
    assert res.status_code == 201, res.text
    return res.json()["id"]


def _create_item(client, headers, *, sku: str, opening_stock: int) -> int:
    res = client.post(
        "/inventory",
        json={
            "name": f"Item {sku}",
            "sku": sku,
            "category": "Cables",
            "unit_price": 2.0,
            "opening_stock": opening_stock,
        },
        headers=headers,
    )
    assert res.status_code == 201, res.text
    return res.json()["id"]


def _stock(client, headers, item_id: int) -> int:
    res = client.get(f"/inventory/{item_id}", headers=headers)
    assert res.status_code == 200, res.text
    return res.json()["current_stock"]


def test_sale_order_lifecycle(test_context, admin_headers):
    client, session_local = test_context
    customer_id = _create_contact(client, admin_headers, name="Acme Retail", contact_type="customer")
    item_id = _create_item(client, admin_headers, sku="CAB-1", opening_stock=10)

    create_res = client.post(
        "/sales",
        json={
            "customer_id": customer_id,
            "date": "2026-10-19",
            "description": "Counter sale",
            "status": "confirmed",
            "items": [
                {"inventory_item_id": item_id, "quantity": 3, "unit_price": 12.5},
                {"inventory_item_id": item_id, "quantity": 1, "unit_price": 10},
            ],
        },
        headers=admin_headers,
    )
    assert create_res.status_code == 201, create_res.text
    created = create_res.json()
    assert created["success"] is True
    assert created["document_number"] == f"PV-202610-{created['id']}"
    assert created["total_amount"] == 47.5
    assert created["status"] == "confirmed"
    assert _stock(client, admin_headers, item_id) == 6

    detail = client.get(f"/sales/{created['id']}", headers=admin_headers)
    assert detail.status_code == 200, detail.text
    body = detail.json()
    assert body["counterpart_name"] == "Acme Retail"
    assert body["order_date"] == "2026-10-19"
    assert [line["line_total"] for line in body["items"]] == [37.5, 10.0]
    assert body["items"][0]["sku"] == "CAB-1"

    for status in ("shipped", "delivered"):
        res = client.patch(f"/sales/{created['id']}/status", json={"status": status}, headers=admin_headers)
        assert res.status_code == 200, res.text
        assert res.json()["status"] == status

    backwards = client.patch(f"/sales/{created['id']}/status", json={"status": "draft"}, headers=admin_headers)
    assert backwards.status_code == 409, backwards.text
    assert backwards.json()["error"]["code"] == "invalid_transition"

    cancel = client.patch(f"/sales/{created['id']}/status", json={"status": "cancelled"}, headers=admin_headers)
    assert cancel.status_code == 200, cancel.text
    assert _stock(client, admin_headers, item_id) == 10

    db = session_local()
    try:
        actions = db.execute(
            select(AuditLog.action).where(AuditLog.target_id == str(created["id"]), AuditLog.target_type == "sale_order")
        ).scalars().all()
    finally:
        db.close()
    assert "sale_order.create" in actions
    assert actions.count("sale_order.status.update") == 3


def test_sale_order_shortage_reports_failing_lines(test_context, admin_headers):
    client, session_local = test_context
    customer_id = _create_contact(client, admin_headers, name="Acme Retail", contact_type="customer")
    plenty = _create_item(client, admin_headers, sku="PLN", opening_stock=100)
    scarce = _create_item(client, admin_headers, sku="SCR", opening_stock=2)

    res = client.post(
        "/sales",
        json={
            "customer_id": customer_id,
            "date": "2026-10-19",
            "status": "confirmed",
            "items": [
                {"inventory_item_id": plenty, "quantity": 1, "unit_price": 1},
                {"inventory_item_id": scarce, "quantity": 5, "unit_price": 1},
            ],
        },
        headers=admin_headers,
    )
    assert res.status_code == 409, res.text
    error = res.json()["error"]
    assert error["code"] == "insufficient_stock"
    assert error["details"][0]["index"] == 1
    assert error["details"][0]["sku"] == "SCR"
    assert error["details"][0]["available"] == 2

    listing = client.get("/sales", headers=admin_headers)
    assert listing.json()["pagination"]["total"] == 0
    assert _stock(client, admin_headers, plenty) == 100

    db = session_local()
    try:
        assert db.get(InventoryItem, scarce).current_stock == 2
    finally:
        db.close()


def test_purchase_order_edit_list_and_delete(test_context, admin_headers):
    client, _ = test_context
    vendor_id = _create_contact(client, admin_headers, name="Distribuciones Norte", contact_type="vendor")
    item_id = _create_item(client, admin_headers, sku="PUR-1", opening_stock=20)

    create_res = client.post(
        "/purchases",
        json={
            "vendor_id": vendor_id,
            "date": "2026-09-30",
            "items": [{"inventory_item_id": item_id, "quantity": 4, "unit_price": 2}],
        },
        headers=admin_headers,
    )
    assert create_res.status_code == 201, create_res.text
    order_id = create_res.json()["id"]
    assert create_res.json()["document_number"].startswith("OP-202609-")
    assert create_res.json()["status"] == "draft"

    edit = client.patch(
        f"/purchases/{order_id}",
        json={
            "description": "Restock",
            "items": [{"inventory_item_id": item_id, "quantity": 6, "unit_price": 1.5}],
        },
        headers=admin_headers,
    )
    assert edit.status_code == 200, edit.text
    assert edit.json()["total_amount"] == 9.0
    assert edit.json()["description"] == "Restock"
    assert len(edit.json()["items"]) == 1

    confirm = client.patch(f"/purchases/{order_id}", json={"status": "confirmed"}, headers=admin_headers)
    assert confirm.status_code == 200, confirm.text
    assert _stock(client, admin_headers, item_id) == 14

    locked_lines = client.patch(
        f"/purchases/{order_id}",
        json={"items": [{"inventory_item_id": item_id, "quantity": 1, "unit_price": 1}]},
        headers=admin_headers,
    )
    assert locked_lines.status_code == 409, locked_lines.text

    filtered = client.get(
        "/purchases",
        params={"status": "confirmed", "start_date": "2026-09-01", "end_date": "2026-09-30"},
        headers=admin_headers,
    )
    assert filtered.status_code == 200, filtered.text
    assert [row["id"] for row in filtered.json()["items"]] == [order_id]
    assert filtered.json()["items"][0]["counterpart_name"] == "Distribuciones Norte"

    blocked_delete = client.delete(f"/purchases/{order_id}", headers=admin_headers)
    assert blocked_delete.status_code == 409, blocked_delete.text
    assert blocked_delete.json()["error"]["code"] == "invalid_state_for_deletion"

    client.patch(f"/purchases/{order_id}/status", json={"status": "cancelled"}, headers=admin_headers)
    deleted = client.delete(f"/purchases/{order_id}", headers=admin_headers)
    assert deleted.status_code == 200, deleted.text
    assert client.get(f"/purchases/{order_id}", headers=admin_headers).status_code == 404
    assert _stock(client, admin_headers, item_id) == 20


def test_order_validation_errors(test_context, admin_headers):
    client, _ = test_context
    customer_id = _create_contact(client, admin_headers, name="Acme Retail", contact_type="customer")
    item_id = _create_item(client, admin_headers, sku="VAL-1", opening_stock=5)

    no_lines = client.post(
        "/sales",
        json={"customer_id": customer_id, "date": "2026-10-19", "items": []},
        headers=admin_headers,
    )
    assert no_lines.status_code == 422, no_lines.text

    zero_quantity = client.post(
        "/sales",
        json={
            "customer_id": customer_id,
            "date": "2026-10-19",
            "items": [{"inventory_item_id": item_id, "quantity": 0, "unit_price": 1}],
        },
        headers=admin_headers,
    )
    assert zero_quantity.status_code == 422, zero_quantity.text
    assert zero_quantity.json()["error"]["code"] == "validation_error"

    unknown_status = client.post(
        "/sales",
        json={
            "customer_id": customer_id,
            "date": "2026-10-19",
            "status": "received",
            "items": [{"inventory_item_id": item_id, "quantity": 1, "unit_price": 1}],
        },
        headers=admin_headers,
    )
    assert unknown_status.status_code == 422, unknown_status.text

    missing_item = client.post(
        "/sales",
        json={
            "customer_id": customer_id,
            "date": "2026-10-19",
            "items": [{"inventory_item_id": 999, "quantity": 1, "unit_price": 1}],
        },
        headers=admin_headers,
    )
    assert missing_item.status_code == 404, missing_item.text
    assert missing_item.json()["error"]["details"] == [{"index": 0, "inventory_item_id": 999}]


def test_orders_require_authentication(test_context):
    client, _ = test_context

    res = client.get("/sales")

    assert res.status_code == 401, res.text
    assert res.json()["error"]["code"] == "unauthorized"
