from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from stockguard.api import lock
from stockguard.exceptions import InvalidQuantity, StockUnavailable
from stockguard.holds import commit_holds, place_holds, reap_expired_holds, release_holds
from stockguard.models import HoldState, StockHold


def _stock(product):
    product.refresh_from_db()
    return product.stock


def test_place_holds_takes_stock_and_records_holds(make_product):
    book = make_product(stock=5)
    pen = make_product(name="Fountain Pen", stock=2, kind="stationery")

    holds = place_holds([(str(book.pk), 2), (str(pen.pk), 1)], reference="order-1", ttl=60)

    assert len(holds) == 2
    assert _stock(book) == 3
    assert _stock(pen) == 1
    stored = StockHold.objects.filter(reference="order-1")
    assert {h.state for h in stored} == {HoldState.HELD}
    assert all(h.expires_at > timezone.now() for h in stored)


def test_place_holds_is_all_or_nothing(make_product):
    book = make_product(stock=5)
    pen = make_product(name="Fountain Pen", stock=1, kind="stationery")

    with pytest.raises(StockUnavailable):
        place_holds([(str(book.pk), 2), (str(pen.pk), 3)], reference="order-1")

    assert _stock(book) == 5
    assert _stock(pen) == 1
    assert not StockHold.objects.exists()


def test_place_holds_validates_quantities(make_product):
    book = make_product(stock=5)

    with pytest.raises(InvalidQuantity):
        place_holds([(str(book.pk), 0)], reference="order-1")

    assert _stock(book) == 5


def test_release_restores_exactly_what_was_held(make_product):
    book = make_product(stock=5)
    place_holds([(str(book.pk), 3)], reference="order-1")

    assert release_holds("order-1") == 1
    assert _stock(book) == 5

    # A second release finds nothing left to give back.
    assert release_holds("order-1") == 0
    assert _stock(book) == 5


def test_committed_holds_are_not_released(make_product):
    book = make_product(stock=5)
    place_holds([(str(book.pk), 3)], reference="order-1")

    assert commit_holds("order-1") == 1
    assert release_holds("order-1") == 0
    assert _stock(book) == 2
    assert StockHold.objects.get(reference="order-1").state == HoldState.COMMITTED


def test_commit_without_holds_returns_zero(db):
    assert commit_holds("order-unknown") == 0


def test_reap_releases_only_expired_holds(make_product):
    book = make_product(stock=10)
    place_holds([(str(book.pk), 2)], reference="stale", ttl=60)
    place_holds([(str(book.pk), 3)], reference="fresh", ttl=3600)

    released = reap_expired_holds(now=timezone.now() + timedelta(minutes=5))

    assert released == 1
    assert _stock(book) == 7
    assert StockHold.objects.get(reference="stale").state == HoldState.RELEASED
    assert StockHold.objects.get(reference="fresh").state == HoldState.HELD


def test_reap_skips_when_another_sweep_holds_the_lock(make_product, settings):
    settings.STOCKGUARD = {
        "REAP_LOCK_TIMEOUT": 0.05,
        "LOCK_BACKEND": "stockguard.backends.cache.CacheLockBackend",
    }
    book = make_product(stock=10)
    place_holds([(str(book.pk), 2)], reference="stale", ttl=0)

    with lock("stock-holds:reap"):
        assert reap_expired_holds(now=timezone.now() + timedelta(seconds=1)) is None

    assert _stock(book) == 8


def test_reap_command_reports_released_holds(make_product):
    book = make_product(stock=10)
    hold = place_holds([(str(book.pk), 4)], reference="stale")[0]
    StockHold.objects.filter(pk=hold.pk).update(expires_at=timezone.now() - timedelta(seconds=1))

    out = StringIO()
    call_command("reap_stock_holds", stdout=out)

    assert "Released 1 expired hold(s)." in out.getvalue()
    assert _stock(book) == 10
