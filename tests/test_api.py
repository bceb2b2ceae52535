from decimal import Decimal

from backoffice.models import AuditLog


def sale_payload(product, quantity=3, status="Pending"):
    return {"status": status, "items": [{"product_id": product.id, "quantity": quantity}]}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_register_login_and_me(client):
    response = client.post("/api/v1/auth/register", json={
        "username": "cashier",
        "email": "cashier@example.com",
        "password": "hunter22",
        "full_name": "Front Desk",
    })
    assert response.status_code == 201

    response = client.post("/api/v1/auth/login", json={"username": "cashier", "password": "hunter22"})
    assert response.status_code == 200
    token = response.json()["access_token"]

    response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["username"] == "cashier"


def test_duplicate_registration_is_rejected(client, user):
    response = client.post("/api/v1/auth/register", json={
        "username": user.username,
        "email": "another@example.com",
        "password": "hunter22",
    })

    assert response.status_code == 422
    assert response.json()["message"] == "Username already registered"


def test_wrong_password_is_rejected(client, user):
    response = client.post("/api/v1/auth/login", json={"username": user.username, "password": "nope"})
    assert response.status_code == 401

    response = client.post("/api/v1/auth/login", json={"username": user.username, "password": "secret123"})
    assert response.status_code == 200


def test_unauthenticated_requests_get_401(client):
    response = client.get("/api/v1/sales")

    assert response.status_code == 401
    assert response.json() == {"message": "Not authenticated"}


def test_other_owners_sale_is_forbidden(client, auth_headers, user, other_user, product, make_sale):
    sale = make_sale(user, [(product, 1)])

    response = client.get(f"/api/v1/sales/{sale.id}", headers=auth_headers(other_user))
    assert response.status_code == 403
    assert "message" in response.json()

    response = client.post(f"/api/v1/sales/{sale.id}/complete", headers=auth_headers(other_user))
    assert response.status_code == 403


def test_missing_sale_is_404(client, auth_headers, user):
    response = client.get("/api/v1/sales/4242", headers=auth_headers(user))

    assert response.status_code == 404
    assert response.json() == {"message": "Sale 4242 not found"}


def test_sale_lifecycle_over_http(client, auth_headers, user, product):
    headers = auth_headers(user)

    response = client.post("/api/v1/sales", json=sale_payload(product), headers=headers)
    assert response.status_code == 201
    sale = response.json()
    assert Decimal(sale["total"]) == Decimal("354")

    response = client.post(f"/api/v1/sales/{sale['id']}/complete", headers=headers)
    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "Completed"
    assert body["partial"] is False
    assert body["inventory_updates"][0]["new_quantity"] == 7

    response = client.put(f"/api/v1/sales/{sale['id']}", json={"notes": "edit"}, headers=headers)
    assert response.status_code == 409

    response = client.post(f"/api/v1/sales/{sale['id']}/cancel", headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "Cancelled"

    response = client.get(f"/api/v1/products/{product.id}", headers=headers)
    assert response.json()["quantity"] == 10


def test_stock_shortfall_is_409_with_product_details(client, auth_headers, user, product):
    headers = auth_headers(user)
    sale = client.post("/api/v1/sales", json=sale_payload(product, quantity=11), headers=headers).json()

    response = client.put(f"/api/v1/sales/{sale['id']}/status", json={"status": "Completed"}, headers=headers)

    assert response.status_code == 409
    body = response.json()
    assert body["product_id"] == product.id
    assert body["available"] == "10"
    assert body["requested"] == "11"
    assert client.get(f"/api/v1/sales/{sale['id']}", headers=headers).json()["status"] == "Pending"


def test_cancel_reports_partial_restock(client, auth_headers, db, user, other_user, make_product, make_sale):
    kept = make_product(user, name="Kept", quantity=5)
    moved = make_product(user, name="Moved", quantity=5)
    sale = make_sale(user, [(kept, 1), (moved, 1)], status="Completed")
    moved.owner_id = other_user.id
    db.commit()

    response = client.post(f"/api/v1/sales/{sale.id}/cancel", headers=auth_headers(user))

    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "Cancelled"
    assert body["partial"] is True
    assert [f["product_id"] for f in body["restock_failures"]] == [moved.id]


def test_product_quantity_cannot_be_edited_directly(client, auth_headers, user, product):
    headers = auth_headers(user)

    response = client.put(f"/api/v1/products/{product.id}", json={"quantity": 99}, headers=headers)
    assert response.status_code == 422
    assert "message" in response.json()

    response = client.put(f"/api/v1/products/{product.id}/quantity", json={"delta": -4}, headers=headers)
    assert response.status_code == 200
    assert response.json()["quantity"] == 6

    history = client.get(f"/api/v1/products/{product.id}/adjustments", headers=headers).json()
    assert [entry["quantity_change"] for entry in history] == [-4, 10]


def test_invoice_from_sale_is_idempotent_over_http(client, auth_headers, user, product, make_sale):
    sale = make_sale(user, [(product, 1)], status="Completed")
    headers = auth_headers(user)

    first = client.post(f"/api/v1/invoice/from-sale?saleId={sale.id}", headers=headers)
    second = client.post(f"/api/v1/invoice/from-sale?saleId={sale.id}", headers=headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json()["id"] == second.json()["id"]
    assert first.json()["number"].startswith("INV-")


def test_refund_request_and_approval(client, auth_headers, user, product, make_sale):
    sale = make_sale(user, [(product, 5)], status="Completed")
    headers = auth_headers(user)

    response = client.post("/api/v1/refunds", json={
        "sale_id": sale.id,
        "items": [{"sale_item_id": sale.items[0].id, "refund_quantity": 2}],
    }, headers=headers)
    assert response.status_code == 201
    refund = response.json()
    assert Decimal(refund["total"]) == Decimal("236")

    response = client.patch(f"/api/v1/refunds/{refund['id']}/status", json={"status": "Approved"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["inventory_updates"][0]["change"] == 2

    listing = client.get(f"/api/v1/refunds?saleId={sale.id}", headers=headers).json()
    assert listing["pagination"]["total"] == 1
    assert listing["refunds"][0]["status"] == "Approved"


def test_purchase_receipt_over_http(client, auth_headers, user, product):
    headers = auth_headers(user)
    purchase = client.post("/api/v1/purchases", json={
        "supplier_name": "Northwind Supply",
        "status": "Ordered",
        "items": [{"product_id": product.id, "quantity": 4, "unit_price": "80.00"}],
    }, headers=headers).json()
    item_id = purchase["items"][0]["id"]

    response = client.post(
        f"/api/v1/purchases/{purchase['id']}/receive",
        json={"items": [{"item_id": item_id, "quantity": 1}, {"item_id": item_id, "quantity": 1}]},
        headers=headers,
    )
    assert response.json()["status"] == "Partially Received"

    response = client.post(f"/api/v1/purchases/{purchase['id']}/receive", headers=headers)
    assert response.json()["status"] == "Received"
    assert client.get(f"/api/v1/products/{product.id}", headers=headers).json()["quantity"] == 14


def test_transitions_are_audited(client, auth_headers, db, user, product, make_sale):
    sale = make_sale(user, [(product, 1)])

    client.post(f"/api/v1/sales/{sale.id}/complete", headers=auth_headers(user))

    entries = db.query(AuditLog).filter(
        AuditLog.resource_type == "Sale", AuditLog.resource_id == sale.id
    ).all()
    assert [entry.action for entry in entries] == ["SALE_COMPLETED"]
    assert entries[0].username == user.username
