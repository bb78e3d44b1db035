"""
Settings access for stockguard.

All options live in a single ``STOCKGUARD`` dict in the Django settings;
anything left out falls back to `DEFAULTS`.

    STOCKGUARD = {
        "HOLD_TTL_SECONDS": 35 * 60,
        "THROTTLE_RATE": (30, 60),
        "STRIPE_SECRET_KEY": os.environ["STRIPE_SECRET_KEY"],
    }
"""
from __future__ import annotations

from typing import Any

from django.conf import settings

DEFAULTS: dict[str, Any] = {
    # How long a checkout hold keeps stock out of the sellable pool. The
    # payment session expires with it, and Stripe wants at least 30 minutes.
    "HOLD_TTL_SECONDS": 35 * 60,
    # Dotted path to a lock backend class. None picks PostgreSQL advisory
    # locks on a PostgreSQL connection and the cache backend otherwise.
    "LOCK_BACKEND": None,
    "LOCK_CACHE_ALIAS": "default",
    # (max requests, window seconds) per client for mutating stock views.
    # None disables throttling.
    "THROTTLE_RATE": (60, 60),
    "THROTTLE_CACHE_ALIAS": "default",
    "REAP_LOCK_TIMEOUT": 0.5,
    "PAYMENT_GATEWAY": "stockguard.payments.StripeCheckoutGateway",
    "CURRENCY": "ron",
    "STRIPE_SECRET_KEY": "",
    "STRIPE_WEBHOOK_SECRET": "",
    "SUCCESS_URL": "http://localhost:3000/success?session_id={CHECKOUT_SESSION_ID}&order={order_id}",
    "CANCEL_URL": "http://localhost:3000/cancel",
}


def get(name: str) -> Any:
    """
    Return the configured value for ``name``.

    Raises KeyError for names that are not stockguard options, so typos fail
    loudly instead of silently returning None.
    """
    if name not in DEFAULTS:
        raise KeyError(f"stockguard: unknown setting {name!r}")
    overrides = getattr(settings, "STOCKGUARD", {}) or {}
    return overrides.get(name, DEFAULTS[name])
