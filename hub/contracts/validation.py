from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict

from hub.core.errors import WebhookValidationError

from . import queues


PAYMENT_REQUIRED_KEYS = ("eventType", "orderId", "amount")

DEFAULT_CUSTOMER = {"id": "unknown"}


def _is_blank(v: Any) -> bool:
    if v is None:
        return True
    if isinstance(v, str):
        return not v.strip()
    return False


def _coerce_amount(v: Any) -> float:
    if isinstance(v, bool):
        raise WebhookValidationError("Invalid amount", ["amount"])
    try:
        amount = float(v)
    except (TypeError, ValueError, OverflowError) as e:
        raise WebhookValidationError("Invalid amount", ["amount"]) from e
    if not math.isfinite(amount) or amount <= 0:
        raise WebhookValidationError("Invalid amount", ["amount"])
    return amount


def _number(v: float) -> int | float:
    # Keep integral amounts integral on the wire (250, not 250.0).
    return int(v) if v.is_integer() else v


def validate_payment_webhook(body: Any, *, expected_event_type: str = queues.PAYMENT_COMPLETED) -> float:
    """Validate an inbound payment webhook body; return the coerced amount.

    Raises WebhookValidationError naming the failing field(s).
    """

    if not isinstance(body, dict):
        raise WebhookValidationError("Request body must be a JSON object", [])

    missing = [k for k in ("eventType", "orderId") if _is_blank(body.get(k))]
    if body.get("amount") is None:
        missing.append("amount")
    if missing:
        raise WebhookValidationError("Missing required fields", missing, missing=True)

    if body["eventType"] != expected_event_type:
        raise WebhookValidationError("Invalid event type", ["eventType"])

    order_id = body["orderId"]
    if isinstance(order_id, bool) or not isinstance(order_id, (str, int, float)):
        raise WebhookValidationError("Invalid orderId", ["orderId"])

    return _coerce_amount(body["amount"])


def normalize_payment_event(
    body: Dict[str, Any],
    *,
    received_at: str,
    home_currency: str = "PHP",
    amount: float | None = None,
) -> Dict[str, Any]:
    """Apply defaults for every optional field of a payment event."""

    if amount is None:
        raw = body.get("amount")
        try:
            amount = float(raw) if raw is not None and not isinstance(raw, bool) else None
        except (TypeError, ValueError, OverflowError):
            amount = None

    return {
        "eventType": body.get("eventType") or queues.PAYMENT_COMPLETED,
        "orderId": str(body["orderId"]) if body.get("orderId") is not None else "",
        "paymentIntentId": body.get("paymentIntentId") or "N/A",
        "amount": _number(amount) if amount is not None else body.get("amount"),
        "currency": body.get("currency") or home_currency,
        "status": body.get("status") or "paid",
        "customer": body.get("customer") or dict(DEFAULT_CUSTOMER),
        "items": body.get("items") or [],
        "timestamp": body.get("timestamp") or received_at,
        "source": body.get("source") or "unknown",
        "hubReceivedAt": received_at,
        "processed": False,
    }


def validate_wire_message(message: Dict[str, Any]) -> None:
    """A message body must carry every metadata key with a non-empty value."""

    for k in queues.ENVELOPE_METADATA_KEYS:
        v = message.get(k)
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"{k} must be non-empty string")
    try:
        datetime.fromisoformat(message[queues.PUBLISHED_AT_KEY].replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"invalid ISO8601 timestamp: {message[queues.PUBLISHED_AT_KEY]}") from e
