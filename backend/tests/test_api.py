from datetime import timedelta
from urllib.parse import parse_qs, urlparse

from app.models import PaymentTransaction, PromotionType

GUEST = {"X-Guest-Id": "guest-api"}


def cart(product, quantity=1, **extra):
    body = {
        "items": [{"product_id": product.id, "quantity": quantity}],
        "payment_method": "cod",
        "customer_name": "Tran Thi B",
        "customer_phone": "0912345678",
        "delivery_address": "5 Nguyen Hue",
    }
    body.update(extra)
    return body


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_price_endpoint(client, make_product, make_promotion):
    product = make_product("1000000")
    make_promotion(10)

    response = client.post("/api/checkout/price", json={"items": [{"product_id": product.id, "quantity": 2}]})

    assert response.status_code == 200
    data = response.json()
    assert float(data["total_amount"]) == 1800000
    assert float(data["promotion_discount_total"]) == 200000


def test_product_display_price(client, make_product, make_promotion):
    product = make_product("1000000")
    make_promotion(50000, type=PromotionType.FIXED)

    data = client.get(f"/api/products/{product.id}/price").json()

    assert float(data["final_price"]) == 950000
    assert client.get("/api/products/9999/price").status_code == 404


def test_guest_cod_checkout(client, make_product):
    product = make_product("500000", stock=3)

    response = client.post("/api/checkout", json=cart(product, 2), headers=GUEST)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "paid"
    assert data["transaction_status"] == "succeeded"
    assert data["redirect_url"] is None

    orders = client.get("/api/me/orders", headers=GUEST).json()
    assert [o["id"] for o in orders] == [data["order_id"]]
    assert orders[0]["guest_id"] == "guest-api"


def test_checkout_requires_identity(client, make_product):
    response = client.post("/api/checkout", json=cart(make_product()))
    assert response.status_code == 401


def test_checkout_out_of_stock(client, make_product):
    product = make_product(stock=1)

    response = client.post("/api/checkout", json=cart(product, 2), headers=GUEST)

    assert response.status_code == 409
    assert response.json()["code"] == "insufficient_stock"


def test_checkout_voucher_error_code(client, make_product, summer10):
    product = make_product("150000")

    response = client.post("/api/checkout", json=cart(product, voucher_code="SUMMER10"), headers=GUEST)

    assert response.status_code == 409
    assert response.json()["code"] == "below_minimum_order"


def test_validate_voucher(client, summer10):
    ok = client.post("/api/vouchers/validate", json={"code": "summer10", "order_amount": 500000}).json()
    assert ok["valid"] is True
    assert float(ok["discount_amount"]) == 30000
    assert float(ok["final_amount"]) == 470000

    bad = client.post("/api/vouchers/validate", json={"code": "SUMMER10", "order_amount": 150000}).json()
    assert bad["valid"] is False
    assert bad["error_code"] == "below_minimum_order"


def test_active_vouchers(client, summer10):
    codes = [v["code"] for v in client.get("/api/vouchers/active").json()]
    assert codes == ["SUMMER10"]


def test_momo_ipn_then_return(client, session, make_product, momo_http, momo_message):
    product = make_product("470000")
    checkout = client.post("/api/checkout", json=cart(product, payment_method="momo"), headers=GUEST).json()
    assert checkout["status"] == "awaiting_payment"
    assert checkout["redirect_url"].startswith("https://test-payment.momo.vn/")

    tx = session.get(PaymentTransaction, checkout["transaction_id"])
    message = momo_message(tx)

    ipn = client.post("/api/payments/momo/ipn", json=message)
    assert ipn.status_code == 204

    back = client.get("/api/payments/momo/return", params=message)
    assert back.status_code == 302
    query = parse_qs(urlparse(back.headers["location"]).query)
    assert query["outcome"] == ["duplicate"]
    assert query["status"] == ["succeeded"]

    order = client.get(f"/api/me/orders/{checkout['order_id']}", headers=GUEST).json()
    assert order["status"] == "paid"


def test_vnpay_ipn_responses(client, session, make_product, gateway_settings, vnpay_message):
    product = make_product("470000")
    checkout = client.post("/api/checkout", json=cart(product, payment_method="vnpay"), headers=GUEST).json()
    tx = session.get(PaymentTransaction, checkout["transaction_id"])

    tampered = vnpay_message(tx)
    tampered["vnp_Amount"] = "100"
    assert client.get("/api/payments/vnpay/ipn", params=tampered).json()["RspCode"] == "97"

    message = vnpay_message(tx)
    assert client.get("/api/payments/vnpay/ipn", params=message).json() == {
        "RspCode": "00", "Message": "Confirm Success",
    }
    assert client.get("/api/payments/vnpay/ipn", params=message).json()["RspCode"] == "02"

    back = client.get("/api/payments/vnpay/return", params=message)
    assert back.status_code == 302
    assert "payment-result" in back.headers["location"]


def test_transaction_view_and_expire(client, make_product, momo_http):
    product = make_product("470000", stock=1)
    checkout = client.post("/api/checkout", json=cart(product, payment_method="momo"), headers=GUEST).json()
    url = f"/api/payments/transactions/{checkout['transaction_id']}"

    assert client.get(url, headers={"X-Guest-Id": "someone-else"}).status_code == 404
    assert client.get(url, headers=GUEST).json()["status"] == "awaiting_callback"

    first = client.post(f"{url}/expire", headers=GUEST).json()
    second = client.post(f"{url}/expire", headers=GUEST).json()
    assert first == {"transaction_id": checkout["transaction_id"], "expired": True, "status": "expired"}
    assert second["expired"] is False

    # товар вернулся на склад
    assert client.get(f"/api/products/{product.id}/stock").json()["quantity"] == 1


def test_retry_payment_endpoint(client, make_product, momo_http):
    product = make_product("470000")
    checkout = client.post("/api/checkout", json=cart(product, payment_method="momo"), headers=GUEST).json()

    response = client.post(f"/api/payments/orders/{checkout['order_id']}/retry", headers=GUEST)

    assert response.status_code == 200
    assert response.json()["transaction_id"] != checkout["transaction_id"]


def test_cancel_my_order(client, make_product, momo_http):
    product = make_product("470000", stock=1)
    checkout = client.post("/api/checkout", json=cart(product, payment_method="momo"), headers=GUEST).json()

    response = client.post(f"/api/me/orders/{checkout['order_id']}/cancel", headers=GUEST)

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    again = client.post(f"/api/me/orders/{checkout['order_id']}/cancel", headers=GUEST)
    assert again.status_code == 409


def test_admin_endpoints_require_admin(client, user, auth_headers):
    assert client.get("/api/admin/vouchers").status_code == 401
    assert client.get("/api/admin/vouchers", headers=auth_headers(user)).status_code == 403


def test_admin_voucher_crud_and_statistics(client, admin, auth_headers, now):
    headers = auth_headers(admin)
    body = {
        "code": "welcome50k",
        "name": "Welcome",
        "type": "fixed",
        "value": 50000,
        "usage_limit": 10,
        "starts_at": (now - timedelta(days=1)).isoformat(),
        "ends_at": (now + timedelta(days=10)).isoformat(),
    }

    created = client.post("/api/admin/vouchers", json=body, headers=headers)
    assert created.status_code == 201
    voucher = created.json()
    assert voucher["code"] == "WELCOME50K"
    assert client.post("/api/admin/vouchers", json=body, headers=headers).status_code == 409

    updated = client.patch(f"/api/admin/vouchers/{voucher['id']}", json={"usage_limit": 20}, headers=headers)
    assert updated.json()["usage_limit"] == 20

    stats = client.get(f"/api/admin/vouchers/{voucher['id']}/statistics", headers=headers).json()
    assert stats["total_used"] == 0
    usages = client.get(f"/api/admin/vouchers/{voucher['id']}/usages", headers=headers).json()
    assert usages["total"] == 0

    assert client.delete(f"/api/admin/vouchers/{voucher['id']}", headers=headers).status_code == 200


def test_admin_rejects_invalid_voucher(client, admin, auth_headers, now):
    body = {
        "code": "BAD",
        "name": "Bad",
        "type": "percent",
        "value": 150,
        "starts_at": now.isoformat(),
        "ends_at": (now + timedelta(days=1)).isoformat(),
    }
    assert client.post("/api/admin/vouchers", json=body, headers=auth_headers(admin)).status_code == 422


def test_admin_orders(client, make_product, admin, auth_headers, momo_http):
    product = make_product("470000", stock=2)
    checkout = client.post("/api/checkout", json=cart(product, payment_method="momo"), headers=GUEST).json()
    headers = auth_headers(admin)

    listing = client.get("/api/admin/orders", params={"status": "awaiting_payment"}, headers=headers).json()
    assert listing["total"] == 1

    cancelled = client.post(f"/api/admin/orders/{checkout['order_id']}/cancel", headers=headers)
    assert cancelled.json()["status"] == "cancelled"


def test_admin_promotion_crud(client, admin, auth_headers):
    headers = auth_headers(admin)
    created = client.post(
        "/api/promotions",
        json={"name": "Flash", "type": "percent", "value": 15, "priority": 2},
        headers=headers,
    )
    assert created.status_code == 201
    promo_id = created.json()["id"]

    assert client.patch(f"/api/promotions/{promo_id}", json={"value": 150}, headers=headers).status_code == 422
    assert [p["id"] for p in client.get("/api/promotions/active").json()] == [promo_id]
    assert client.delete(f"/api/promotions/{promo_id}", headers=headers).status_code == 200
