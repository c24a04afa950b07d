from decimal import Decimal

from sqlmodel import select

from database.models import Product, Transaction


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_login_required(client):
    assert client.get("/api/cart").status_code == 401


def test_bad_login(client):
    response = client.post("/login", data={"username": "cashier1", "password": "wrong"})
    assert response.status_code == 401


def test_cart_flow(logged_in, products, customer):
    soap_id = products["soap"].id

    cart = logged_in.post("/api/cart/items", json={"product_id": soap_id}).json()
    cart = logged_in.post("/api/cart/items", json={"barcode": products["rice"].barcode}).json()
    cart = logged_in.put(f"/api/cart/items/{soap_id}", json={"quantity": 2}).json()

    assert len(cart["items"]) == 2
    assert Decimal(str(cart["totals"]["rounded_total"])) == Decimal("289")

    cart = logged_in.post("/api/cart/customer", json={"customer_id": customer.id}).json()
    assert cart["customer"]["name"] == "Ravi Kumar"

    cart = logged_in.post("/api/cart/loyalty", json={"points": 20}).json()
    assert Decimal(str(cart["totals"]["rounded_total"])) == Decimal("269")

    cart = logged_in.post("/api/cart/discount", json={"mode": "amount", "value": "69"}).json()
    assert Decimal(str(cart["totals"]["rounded_total"])) == Decimal("200")

    cart = logged_in.delete("/api/cart/discount").json()
    cart = logged_in.delete(f"/api/cart/items/{soap_id}").json()
    assert [item["name"] for item in cart["items"]] == ["Loose Rice 1kg"]


def test_cart_errors(logged_in, products):
    response = logged_in.post("/api/cart/items", json={"product_id": products["butter"].id})
    assert response.status_code == 400
    assert "out of stock" in response.json()["detail"]

    assert logged_in.post("/api/cart/items", json={"product_id": 999}).status_code == 404
    assert logged_in.post("/api/cart/discount", json={"mode": "percentage", "value": "10"}).status_code == 400


def test_can_pay_needs_enough_cash(logged_in, products):
    logged_in.post("/api/cart/items", json={"product_id": products["soap"].id})

    short = logged_in.get("/api/cart", params={"payment_method": "cash", "cash_received": "100"}).json()
    enough = logged_in.get("/api/cart", params={"payment_method": "cash", "cash_received": "120"}).json()
    assert not short["can_pay"]
    assert enough["can_pay"]
    assert Decimal(str(enough["totals"]["change_due"])) == Decimal("2")


def test_checkout_and_receipt(logged_in, session, products):
    logged_in.post("/api/cart/items", json={"product_id": products["soap"].id})

    response = logged_in.post("/api/checkout", json={"payment_method": "cash", "cash_received": "100"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Insufficient cash received"

    response = logged_in.post("/api/checkout", json={"payment_method": "cash", "cash_received": "200"})
    assert response.status_code == 200
    body = response.json()
    assert body["transaction"]["invoice_number"] == "NM 0001"
    assert body["warnings"] == []
    assert logged_in.get("/api/cart").json()["items"] == []

    receipt = logged_in.get(body["receipt_urls"]["thermal"])
    assert receipt.status_code == 200
    assert "NM 0001" in receipt.text
    assert "Asha" in receipt.text
    assert "₹82.00" in receipt.text

    printable = logged_in.get(body["receipt_urls"]["tabular"] + "&print=1")
    assert "window.print()" in printable.text

    session.expire_all()
    assert session.get(Product, products["soap"].id).stock_quantity == 9


def test_checkout_empty_cart(logged_in):
    response = logged_in.post("/api/checkout", json={"payment_method": "card"})
    assert response.status_code == 400


def test_checkout_failure_reports_step(logged_in, session, products, monkeypatch):
    from services.transaction_service import TransactionService

    def broken_stock(self, session, state):
        raise LookupError("Product Dettol Soap 125g not found")

    monkeypatch.setattr(TransactionService, "_decrement_stock", broken_stock)
    logged_in.post("/api/cart/items", json={"product_id": products["soap"].id})

    response = logged_in.post("/api/checkout", json={"payment_method": "upi"})
    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["step"] == "decrement_stock"
    assert detail["retryable"] is False
    assert len(logged_in.get("/api/cart").json()["items"]) == 1
    assert len(session.exec(select(Transaction)).all()) == 1


def test_duplicate_product_message(logged_in, products):
    response = logged_in.post("/api/products", json={"name": "Dettol Soap 125g", "mrp": "100"})
    assert response.status_code == 400
    assert response.json()["detail"] == {"field": "name", "message": "A product with this name already exists."}


def test_reports_and_settings(logged_in, products):
    logged_in.post("/api/cart/items", json={"product_id": products["soap"].id})
    logged_in.post("/api/checkout", json={"payment_method": "card"})

    report = logged_in.get("/api/reports/sales", params={"days": 1}).json()
    assert report["total_transactions"] == 1
    assert report["top_products"][0]["name"] == "Dettol Soap 125g"

    dashboard = logged_in.get("/api/dashboard").json()
    assert dashboard["recent_sales"][0]["invoice_number"] == "NM 0001"

    settings = logged_in.get("/api/settings").json()
    assert settings["store_name"] == "NATIONAL MINI MART"
    # Cashiers cannot change store settings
    assert logged_in.post("/api/settings", data={"store_name": "Other"}).status_code == 403


def test_customers(logged_in, customer):
    created = logged_in.post("/api/customers", json={"name": "Meena", "phone": "9000000001"}).json()
    assert created["loyalty_points"] == 0

    found = logged_in.get("/api/customers", params={"q": "9000"}).json()
    assert [c["name"] for c in found] == ["Meena"]

    updated = logged_in.put(f"/api/customers/{customer.id}", json={"name": "Ravi K", "phone": "9876543210"}).json()
    assert updated["name"] == "Ravi K"
    assert updated["loyalty_points"] == 50
