from __future__ import annotations

import json
import logging
from functools import wraps
from typing import Any

from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import DatabaseError
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from . import ledger, payments
from .checkout import handle_payment_event, parse_lines, start_checkout
from .decorators import throttle
from .exceptions import InvalidRequest, StockGuardError
from .results import Failure, StockResult

logger = logging.getLogger(__name__)


def _respond(result: StockResult) -> JsonResponse:
    return JsonResponse(result.payload(), status=result.status)


def _read_json(request: HttpRequest) -> dict[str, Any]:
    try:
        body = json.loads(request.body or b"{}")
    except ValueError as exc:
        raise InvalidRequest("Malformed JSON body") from exc
    if not isinstance(body, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return body


def json_endpoint(view):
    """
    Render library errors as ``{"success": false, ...}`` JSON.

    Database failures are logged and answered with a generic 500; the
    caller's next attempt is the retry.
    """
    @wraps(view)
    def wrapper(request: HttpRequest, *args: Any, **kwargs: Any) -> HttpResponse:
        try:
            return view(request, *args, **kwargs)
        except StockGuardError as exc:
            return _respond(Failure(exc))
        except DatabaseError:
            logger.exception("database error in %s", view.__name__)
            return JsonResponse(
                {"success": False, "message": "Internal server error"}, status=500
            )

    return wrapper


@require_GET
@json_endpoint
def check_stock(request: HttpRequest, product_id) -> HttpResponse:
    return _respond(ledger.check_stock(product_id))


@csrf_exempt
@require_POST
@json_endpoint
@throttle("stock")
def reserve_stock(request: HttpRequest, product_id) -> HttpResponse:
    body = _read_json(request)
    return _respond(ledger.reserve_stock(product_id, body.get("quantity")))


@csrf_exempt
@require_POST
@json_endpoint
@throttle("stock")
def release_stock(request: HttpRequest, product_id) -> HttpResponse:
    body = _read_json(request)
    return _respond(ledger.release_stock(product_id, body.get("quantity")))


@csrf_exempt
@require_http_methods(["PUT"])
@json_endpoint
@throttle("stock")
def set_stock(request: HttpRequest, product_id) -> HttpResponse:
    body = _read_json(request)
    return _respond(ledger.set_stock(product_id, body.get("stock")))


@csrf_exempt
@require_POST
@json_endpoint
def stock_sync(request: HttpRequest) -> HttpResponse:
    body = _read_json(request)
    return _respond(ledger.sync_stock(body.get("productIds")))


@csrf_exempt
@require_POST
@json_endpoint
@throttle("checkout")
def checkout(request: HttpRequest) -> HttpResponse:
    body = _read_json(request)
    lines = parse_lines(body.get("items"))
    email = body.get("email") or ""
    if not isinstance(email, str):
        raise InvalidRequest("Invalid email")
    if email:
        try:
            validate_email(email)
        except ValidationError as exc:
            raise InvalidRequest("Invalid email") from exc

    result = start_checkout(lines, email=email)
    return JsonResponse({"success": True, "orderId": str(result.order.pk), "url": result.url})


@csrf_exempt
@require_POST
@json_endpoint
def payment_webhook(request: HttpRequest) -> HttpResponse:
    gateway = payments.get_gateway()
    event = gateway.parse_event(request.body, request.headers.get("Stripe-Signature"))
    handle_payment_event(event)
    return HttpResponse("Webhook received", status=200)
