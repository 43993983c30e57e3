"""Pytest fixtures for storefront tests."""

from decimal import Decimal

import pytest

from storefront.main import create_app
from storefront.models import db, Customer, Product
from storefront.services import OrderService, PaymentService

from tests.helpers import CARD


@pytest.fixture
def app(tmp_path):
    """App on a throwaway SQLite file, with an app context pushed."""
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'storefront.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 15}},
        "SHIPPING_FLAT_RATE": Decimal("50"),
        "FREE_SHIPPING_THRESHOLD": None,
        "TAX_RATE": Decimal("0"),
        "PAYMENT_GATEWAY_URL": "",
        "LOG_LEVEL": "WARNING",
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def products(app):
    """Catalogue used across tests; returns name -> product id."""
    rows = [
        Product(sku="MD-ROSE-50", name_en="Rose Absolue", name_ar="روز أبسولو",
                price=Decimal("100.00"), stock=10),
        Product(sku="MD-AMBER-100", name_en="Amber Nights", name_ar="ليالي العنبر",
                price=Decimal("200.00"), stock=5),
        Product(sku="MD-OUD-75", name_en="Royal Oud", name_ar="العود الملكي",
                price=Decimal("450.00"), stock=5),
        Product(sku="MD-LAST-30", name_en="Limited Musk", name_ar="مسك محدود",
                price=Decimal("300.00"), stock=1),
    ]
    db.session.add_all(rows)
    db.session.commit()
    return {
        "rose": rows[0].id,
        "amber": rows[1].id,
        "oud": rows[2].id,
        "last": rows[3].id,
    }


@pytest.fixture
def customer(app):
    c = Customer(
        email="layla@example.com",
        first_name="Layla",
        last_name="Hassan",
        phone="01012345678",
        preferred_language="ar",
    )
    db.session.add(c)
    db.session.commit()
    return c.id


@pytest.fixture
def place_order(products, customer):
    """Factory: place_order([("rose", 2)], method="visa") -> Order."""

    def _place(lines, method="visa", **kwargs):
        items = [{"product_id": products[name], "quantity": qty} for name, qty in lines]
        return OrderService.create_order(customer, items, method, **kwargs)

    return _place


@pytest.fixture
def paid_order(place_order):
    """Card order of 500.00 (one Royal Oud + 50 shipping), paid through the simulated gateway."""
    order = place_order([("oud", 1)], method="visa")
    payment = PaymentService.initialize(order.id, "visa")
    PaymentService.process(payment.payment_id, CARD)
    return order, payment
