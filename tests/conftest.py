import json
from decimal import Decimal

import pytest
from django.core.cache import cache

from stockguard.exceptions import InvalidSignature, PaymentGatewayError
from stockguard.payments import PaymentEvent, PaymentSession


@pytest.fixture(autouse=True)
def _clear_cache():
    """Locks and throttle counters live in the cache; start every test clean."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def make_product(db):
    from stockguard.models import Product

    def make(name="Pride and Prejudice", stock=3, price="12.50", discount=0, kind="book"):
        return Product.objects.create(
            name=name, kind=kind, stock=stock, price=Decimal(price), discount=discount
        )

    return make


class FakeGateway:
    """
    Payment gateway double: records sessions, and accepts webhook payloads
    of the form {"type": ..., "orderId": ...} signed with "valid".
    """

    def __init__(self):
        self.sessions = []
        self.fail = False

    def create_session(self, order, items, expires_at=None):
        if self.fail:
            raise PaymentGatewayError()
        self.sessions.append((order, list(items)))
        self.expires_at = expires_at
        session_id = f"cs_test_{len(self.sessions)}"
        return PaymentSession(id=session_id, url=f"https://checkout.example.test/{session_id}")

    def parse_event(self, payload, signature):
        if signature != "valid":
            raise InvalidSignature()
        data = json.loads(payload)
        return PaymentEvent(type=data["type"], order_id=data.get("orderId"))


@pytest.fixture
def gateway(monkeypatch):
    gw = FakeGateway()
    monkeypatch.setattr("stockguard.payments.get_gateway", lambda: gw)
    return gw
