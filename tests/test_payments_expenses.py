def _create_expense(client, headers, **overrides):
    payload = {
        "date": "2026-10-01",
        "category": "logistics",
        "description": "Courier for October deliveries",
        "amount": 25.0,
        "vendor": "Rapid Couriers",
    }
    payload.update(overrides)
    res = client.post("/expenses", json=payload, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def _delivered_sale(client, headers) -> dict:
    customer = client.post(
        "/contacts",
        json={"name": "Acme Retail", "email": "acme@example.com", "phone": "1", "type": "customer"},
        headers=headers,
    ).json()
    item = client.post(
        "/inventory",
        json={"name": "Cable", "sku": "CAB-PAY", "category": "Cables", "unit_price": 2, "opening_stock": 10},
        headers=headers,
    ).json()
    order = client.post(
        "/sales",
        json={
            "customer_id": customer["id"],
            "date": "2026-10-05",
            "status": "confirmed",
            "items": [{"inventory_item_id": item["id"], "quantity": 2, "unit_price": 30}],
        },
        headers=headers,
    )
    assert order.status_code == 201, order.text
    order_id = order.json()["id"]
    res = client.patch(f"/sales/{order_id}/status", json={"status": "delivered"}, headers=headers)
    assert res.status_code == 200, res.text
    return res.json()


def test_expense_review_flow(test_context, admin_headers):
    client, _ = test_context
    expense = _create_expense(client, admin_headers)
    assert expense["status"] == "submitted"
    assert expense["expense_date"] == "2026-10-01"

    approved = client.patch(f"/expenses/{expense['id']}/status", json={"status": "approved"}, headers=admin_headers)
    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "approved"

    straight_to_paid = client.patch(f"/expenses/{expense['id']}/status", json={"status": "paid"}, headers=admin_headers)
    assert straight_to_paid.status_code == 409, straight_to_paid.text

    edited = client.patch(f"/expenses/{expense['id']}", json={"amount": 30}, headers=admin_headers)
    assert edited.status_code == 200, edited.text
    assert edited.json()["amount"] == 30.0

    listing = client.get("/expenses", params={"status": "approved"}, headers=admin_headers)
    assert [row["id"] for row in listing.json()["items"]] == [expense["id"]]


def test_pending_items_and_payment_registration(test_context, admin_headers):
    client, _ = test_context
    sale = _delivered_sale(client, admin_headers)
    expense = _create_expense(client, admin_headers)
    client.patch(f"/expenses/{expense['id']}/status", json={"status": "approved"}, headers=admin_headers)
    _create_expense(client, admin_headers, description="Not yet approved")

    pending = client.get("/payments/pending", headers=admin_headers)
    assert pending.status_code == 200, pending.text
    body = pending.json()
    assert [(row["source_type"], row["source_id"]) for row in body["items"]] == [
        ("expense", expense["id"]),
        ("sale_order", sale["id"]),
    ]
    assert body["total_amount"] == 85.0
    assert body["items"][1]["reference"] == sale["document_number"]

    paid_sale = client.post(
        "/payments",
        json={
            "source_type": "sale_order",
            "source_id": sale["id"],
            "payment_date": "2026-10-19",
            "payment_method": "transfer",
            "reference_number": "TRX-1",
        },
        headers=admin_headers,
    )
    assert paid_sale.status_code == 201, paid_sale.text
    assert paid_sale.json()["amount"] == 60.0
    assert client.get(f"/sales/{sale['id']}", headers=admin_headers).json()["status"] == "paid"

    paid_expense = client.post(
        "/payments",
        json={
            "source_type": "expense",
            "source_id": expense["id"],
            "payment_date": "2026-10-19",
            "payment_method": "cash",
        },
        headers=admin_headers,
    )
    assert paid_expense.status_code == 201, paid_expense.text
    assert client.get(f"/expenses/{expense['id']}", headers=admin_headers).json()["status"] == "paid"

    assert client.get("/payments/pending", headers=admin_headers).json()["items"] == []
    assert client.get("/payments", headers=admin_headers).json()["pagination"]["total"] == 2

    paid_again = client.post(
        "/payments",
        json={
            "source_type": "sale_order",
            "source_id": sale["id"],
            "payment_date": "2026-10-20",
            "payment_method": "cash",
        },
        headers=admin_headers,
    )
    assert paid_again.status_code == 409, paid_again.text

    locked = client.delete(f"/expenses/{expense['id']}", headers=admin_headers)
    assert locked.status_code == 409, locked.text
    assert locked.json()["error"]["code"] == "invalid_state_for_deletion"


def test_payment_requires_payable_status(test_context, admin_headers):
    client, _ = test_context
    expense = _create_expense(client, admin_headers)

    res = client.post(
        "/payments",
        json={
            "source_type": "expense",
            "source_id": expense["id"],
            "payment_date": "2026-10-19",
            "payment_method": "cash",
        },
        headers=admin_headers,
    )

    assert res.status_code == 409, res.text
    assert res.json()["error"]["code"] == "invalid_transition"
    assert client.get("/payments", headers=admin_headers).json()["pagination"]["total"] == 0

    missing = client.post(
        "/payments",
        json={
            "source_type": "purchase_order",
            "source_id": 404,
            "payment_date": "2026-10-19",
            "payment_method": "cash",
        },
        headers=admin_headers,
    )
    assert missing.status_code == 404, missing.text
