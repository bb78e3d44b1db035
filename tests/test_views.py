import json
import uuid

import pytest
from django.db import DatabaseError

from stockguard.models import Order, OrderStatus


def _post(client, path, body):
    return client.post(path, data=json.dumps(body), content_type="application/json")


def test_check_stock(client, make_product):
    product = make_product(stock=4, price="12.50", discount=10)

    response = client.get(f"/api/product/{product.pk}/check-stock")

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Stock checked",
        "product": {
            "_id": str(product.pk),
            "name": "Pride and Prejudice",
            "stock": 4,
            "price": "12.50",
            "discount": 10,
            "available": True,
        },
    }


def test_check_stock_unknown_product(client, db):
    response = client.get(f"/api/product/{uuid.uuid4()}/check-stock")

    assert response.status_code == 404
    assert response.json()["success"] is False
    assert response.json()["message"] == "Product not found"


def test_reserve_stock(client, make_product):
    product = make_product(stock=3)

    response = _post(client, f"/api/product/{product.pk}/reserve-stock", {"quantity": 2})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Stock reserved successfully",
        "newStock": 1,
    }


def test_reserve_insufficient_stock(client, make_product):
    product = make_product(stock=1)

    response = _post(client, f"/api/product/{product.pk}/reserve-stock", {"quantity": 2})

    assert response.status_code == 400
    assert response.json()["message"] == "Not enough stock available or product not found"
    product.refresh_from_db()
    assert product.stock == 1


@pytest.mark.parametrize("body", [{}, {"quantity": 0}, {"quantity": -3}, {"quantity": "1"}])
def test_reserve_invalid_quantity(client, make_product, body):
    product = make_product(stock=3)

    response = _post(client, f"/api/product/{product.pk}/reserve-stock", body)

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_quantity"


def test_malformed_json_is_rejected(client, make_product):
    product = make_product(stock=3)

    response = client.post(
        f"/api/product/{product.pk}/reserve-stock", data="{quantity", content_type="application/json"
    )

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_request"


def test_reserve_requires_post(client, make_product):
    product = make_product(stock=3)

    assert client.get(f"/api/product/{product.pk}/reserve-stock").status_code == 405


def test_release_stock(client, make_product):
    product = make_product(stock=3)

    response = _post(client, f"/api/product/{product.pk}/release-stock", {"quantity": 2})

    assert response.status_code == 200
    assert response.json()["newStock"] == 5
    assert response.json()["message"] == "Stock released successfully"


def test_release_unknown_product(client, db):
    response = _post(client, f"/api/product/{uuid.uuid4()}/release-stock", {"quantity": 2})

    assert response.status_code == 404


def test_set_stock(client, make_product):
    product = make_product(stock=3)
    path = f"/api/product/{product.pk}/stock"

    ok = client.put(path, data=json.dumps({"stock": 12}), content_type="application/json")
    negative = client.put(path, data=json.dumps({"stock": -1}), content_type="application/json")
    missing = client.put(
        f"/api/product/{uuid.uuid4()}/stock", data=json.dumps({"stock": 1}), content_type="application/json"
    )

    assert ok.status_code == 200
    assert ok.json()["product"] == {"_id": str(product.pk), "name": "Pride and Prejudice", "stock": 12}
    assert negative.status_code == 400
    assert negative.json()["message"] == "Stock cannot be negative"
    assert missing.status_code == 404


def test_stock_sync_omits_missing_products(client, make_product):
    product = make_product(stock=3)

    response = _post(client, "/api/product/stock-sync", {"productIds": [str(product.pk), str(uuid.uuid4())]})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert [p["_id"] for p in body["products"]] == [str(product.pk)]


def test_stock_sync_rejects_invalid_input(client, db):
    response = _post(client, "/api/product/stock-sync", {"productIds": "all"})

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Invalid product IDs", "code": "invalid_request"}


def test_database_errors_become_500(client, db, monkeypatch):
    def broken(product_id):
        raise DatabaseError("connection refused")

    monkeypatch.setattr("stockguard.ledger.check_stock", broken)

    response = client.get(f"/api/product/{uuid.uuid4()}/check-stock")

    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Internal server error"}


def test_stock_mutations_are_throttled(client, make_product, settings):
    settings.STOCKGUARD = {"THROTTLE_RATE": (2, 60)}
    product = make_product(stock=10)
    path = f"/api/product/{product.pk}/reserve-stock"

    statuses = [_post(client, path, {"quantity": 1}).status_code for _ in range(3)]

    assert statuses == [200, 200, 429]
    product.refresh_from_db()
    assert product.stock == 8


def test_reads_are_not_throttled(client, make_product, settings):
    settings.STOCKGUARD = {"THROTTLE_RATE": (1, 60)}
    product = make_product(stock=10)

    statuses = [client.get(f"/api/product/{product.pk}/check-stock").status_code for _ in range(3)]

    assert statuses == [200, 200, 200]


def test_checkout_view(client, make_product, gateway):
    product = make_product(stock=3)

    response = _post(
        client,
        "/api/checkout",
        {"items": [{"productId": str(product.pk), "quantity": 2}], "email": "reader@example.com"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["url"].startswith("https://checkout.example.test/")
    assert Order.objects.get(pk=body["orderId"]).email == "reader@example.com"
    product.refresh_from_db()
    assert product.stock == 1


def test_checkout_view_rejects_empty_cart(client, db, gateway):
    response = _post(client, "/api/checkout", {"items": []})

    assert response.status_code == 400
    assert response.json()["message"] == "Cart is empty"


@pytest.mark.parametrize("email", ["not-an-email", "reader@", 42])
def test_checkout_view_rejects_invalid_email(client, make_product, gateway, email):
    product = make_product(stock=3)

    response = _post(
        client,
        "/api/checkout",
        {"items": [{"productId": str(product.pk), "quantity": 1}], "email": email},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid email"
    assert not Order.objects.exists()
    assert gateway.sessions == []
    product.refresh_from_db()
    assert product.stock == 3


def test_checkout_view_reports_gateway_failure(client, make_product, gateway):
    product = make_product(stock=3)
    gateway.fail = True

    response = _post(client, "/api/checkout", {"items": [{"productId": str(product.pk), "quantity": 1}]})

    assert response.status_code == 502
    product.refresh_from_db()
    assert product.stock == 3


def test_webhook_rejects_bad_signature(client, db, gateway):
    response = client.post(
        "/api/payments/webhook",
        data=json.dumps({"type": "checkout.session.completed"}),
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE="forged",
    )

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_signature"


def test_webhook_confirms_order(client, make_product, gateway):
    product = make_product(stock=3)
    order_id = _post(
        client, "/api/checkout", {"items": [{"productId": str(product.pk), "quantity": 1}]}
    ).json()["orderId"]

    response = client.post(
        "/api/payments/webhook",
        data=json.dumps({"type": "checkout.session.completed", "orderId": order_id}),
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE="valid",
    )

    assert response.status_code == 200
    assert Order.objects.get(pk=order_id).status == OrderStatus.CONFIRMED
