"""HTTP surface: status codes and error payloads."""

import pytest

from storefront.main import create_app
from storefront.models import db

from tests.helpers import CARD


@pytest.fixture
def new_order(client, customer, products):
    def _create(lines, method="visa"):
        return client.post("/api/orders/", json={
            "customer_id": customer,
            "items": [{"product_id": products[name], "quantity": qty} for name, qty in lines],
            "payment_method": method,
        })
    return _create


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json()["database"] == "ok"


def test_payment_methods_in_arabic(client):
    response = client.get("/api/payment-methods/?lang=ar")
    items = response.get_json()["items"]
    assert len(items) == 5
    assert items[0]["name"] == "visa"
    assert items[0]["display_name"] == "فيزا"


def test_payment_methods_by_currency(client):
    items = client.get("/api/payment-methods/?currency=usd").get_json()["items"]
    assert [m["name"] for m in items] == ["visa", "mastercard"]


def test_fee_quote(client):
    response = client.post("/api/payment-methods/visa/fees", json={"amount": 500})
    assert response.status_code == 200
    body = response.get_json()
    assert body["gateway_fee"] == 17.5
    assert body["total_with_fees"] == 517.5

    response = client.post("/api/payment-methods/visa/fees", json={"amount": 5})
    assert response.status_code == 422
    assert response.get_json()["code"] == "AMOUNT_OUT_OF_RANGE"


def test_checkout_pay_and_refund(client, new_order):
    response = new_order([("rose", 2), ("amber", 1)])
    assert response.status_code == 201
    order = response.get_json()
    assert order["total"] == 450.0
    assert order["status"] == "pending"
    assert len(order["items"]) == 2

    response = client.post("/api/payments/initialize", json={"order_id": order["id"], "payment_method": "visa"})
    assert response.status_code == 201
    body = response.get_json()
    assert body["next_step"]["action"] == "collect_card_details"
    payment_id = body["payment"]["payment_id"]

    response = client.post(f"/api/payments/{payment_id}/process", json=CARD)
    assert response.status_code == 200
    assert response.get_json()["status"] == "completed"

    order = client.get(f"/api/orders/{order['order_number']}").get_json()
    assert order["status"] == "confirmed"
    assert order["payment_status"] == "paid"

    response = client.post(f"/api/payments/{payment_id}/refunds", json={"amount": 600, "reason": "x"})
    assert response.status_code == 422
    assert response.get_json()["code"] == "REFUND_EXCEEDS_BALANCE"

    response = client.post(f"/api/payments/{payment_id}/refunds", json={"amount": 100, "reason": "damaged"})
    assert response.status_code == 201
    body = response.get_json()
    assert body["refund"]["status"] == "completed"
    assert body["payment"]["status"] == "partially_refunded"
    assert body["payment"]["refundable_amount"] == 350.0


def test_order_validation_errors(client, new_order):
    response = new_order([])
    assert response.status_code == 400
    assert response.get_json()["code"] == "VALIDATION_ERROR"

    response = client.post("/api/orders/", json=[1, 2])
    assert response.status_code == 400

    response = new_order([("last", 2)])
    assert response.status_code == 409
    assert response.get_json()["code"] == "ITEM_UNAVAILABLE"


def test_unknown_order(client):
    response = client.get("/api/orders/999999")
    assert response.status_code == 404
    assert response.get_json()["code"] == "NOT_FOUND"


def test_cancel_twice(client, new_order):
    order = new_order([("rose", 1)]).get_json()

    response = client.post(f"/api/orders/{order['id']}/cancel", json={"reason": "changed mind"})
    assert response.status_code == 200
    assert response.get_json()["status"] == "cancelled"

    response = client.post(f"/api/orders/{order['id']}/cancel", json={})
    assert response.status_code == 409
    assert response.get_json()["code"] == "INVALID_TRANSITION"


def test_refund_eligibility(client, new_order):
    order = new_order([("rose", 1)]).get_json()
    body = client.get(f"/api/orders/{order['id']}/refund-eligibility").get_json()
    assert body == {
        "order_number": order["order_number"],
        "can_be_cancelled": True,
        "can_be_refunded": False,
        "refundable_amount": 0.0,
    }


def test_initialize_requires_integer_order_id(client):
    response = client.post("/api/payments/initialize", json={"order_id": "1", "payment_method": "visa"})
    assert response.status_code == 400
    assert response.get_json()["field"] == "order_id"


def test_stats_endpoints(client, new_order):
    new_order([("rose", 1)])
    body = client.get("/api/stats/orders").get_json()
    assert body["total_orders"] == 1
    assert body["by_status"]["pending"] == 1
    assert client.get("/api/stats/payments").get_json()["total_payments"] == 0
    assert client.get("/api/stats/orders?start_date=not-a-date").status_code == 400


def test_seed_command_skips_existing_methods(app):
    result = app.test_cli_runner().invoke(args=["seed-payment-methods"])
    assert result.exit_code == 0
    assert "0 payment methods created" in result.output


def test_debug_routes(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'debug.db'}",
        "PAYMENT_GATEWAY_URL": "",
        "DEBUG_ROUTES": True,
    })
    client = app.test_client()

    rules = [r["rule"] for r in client.get("/api/_routes").get_json()]
    assert "/api/orders/" in rules
    assert "/api/payments/<payment_id>/refunds" in rules

    body = client.get("/api/health/full").get_json()
    assert "payments" in body["blueprints"]
    assert body["config"]["DEFAULT_CURRENCY"] == "EGP"

    with app.app_context():
        db.engine.dispose()


def test_debug_routes_off_by_default(client):
    assert client.get("/api/_routes").status_code == 404
