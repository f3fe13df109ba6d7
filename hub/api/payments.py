"""Payment ingress: webhook receiver, manual test trigger, liveness."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from hub.contracts import queues
from hub.contracts.validation import normalize_payment_event, validate_payment_webhook
from hub.core.errors import WebhookValidationError
from hub.core.ids import monotonic_epoch_ms, new_response_event_id
from hub.core.models import utc_now_iso
from hub.core.publisher import Publisher
from hub.core.settings import Settings

from .deps import get_publisher, get_settings, read_json_body


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _error(status_code: int, error: str, details: Any = None) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def sample_test_payment() -> Dict[str, Any]:
    ms = monotonic_epoch_ms()
    return {
        "eventType": queues.PAYMENT_COMPLETED,
        "orderId": f"test_order_{ms}",
        "paymentIntentId": f"test_pi_{ms}",
        "amount": 1000,
        "currency": "PHP",
        "status": "paid",
        "customer": {"id": "test_customer_123", "email": "test@example.com", "name": "Test Customer"},
        "items": [{"productId": "test_product_1", "name": "Test Product", "quantity": 2, "price": 500}],
        "timestamp": utc_now_iso(),
        "source": "test",
    }


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    publisher: Publisher = Depends(get_publisher),
    settings: Settings = Depends(get_settings),
):
    try:
        try:
            body = await read_json_body(request)
        except ValueError:
            return _error(400, "Invalid JSON body")

        logger.info(f"Payment webhook received: {json.dumps(body, default=str)}")

        try:
            amount = validate_payment_webhook(body)
        except WebhookValidationError as e:
            logger.error(f"Validation failed: {e.message} fields={e.fields}")
            details = {"missing": e.missing} if e.missing else {"fields": e.fields}
            return _error(400, e.message, details)

        event = normalize_payment_event(
            body,
            received_at=utc_now_iso(),
            home_currency=settings.home_currency,
            amount=amount,
        )

        try:
            result = await publisher.publish(queues.PAYMENT_COMPLETED, event)
        except Exception as e:
            logger.exception("publish raised instead of returning a result")
            return _error(500, "Failed to publish event to RabbitMQ (exception)", str(e) if settings.is_development else None)

        if not result:
            logger.error(f"publish returned false for order {event['orderId']}: {result.error}")
            return _error(
                500,
                "Failed to publish event to RabbitMQ (returned false)",
                result.error.value if result.error else None,
            )

        logger.info(f"Payment event published to RabbitMQ: {event['orderId']}")
        return {
            "success": True,
            "message": "Payment event received and published",
            "data": {
                "orderId": body["orderId"],
                "amount": body["amount"],
                "eventId": new_response_event_id("payment"),
                "timestamp": utc_now_iso(),
            },
        }
    except Exception as e:
        logger.exception("Payment webhook error")
        return _error(
            500,
            "Failed to process payment event",
            str(e) if settings.is_development else "Internal server error",
        )


@router.get("/health")
async def payments_health():
    return {
        "success": True,
        "service": "payment-webhook",
        "status": "operational",
        "timestamp": utc_now_iso(),
    }


@router.post("/test")
async def payment_test(
    request: Request,
    publisher: Publisher = Depends(get_publisher),
    settings: Settings = Depends(get_settings),
):
    try:
        try:
            body = await read_json_body(request)
        except ValueError:
            body = None
        test_data = body if isinstance(body, dict) and body else sample_test_payment()

        event = normalize_payment_event(
            test_data,
            received_at=utc_now_iso(),
            home_currency=settings.home_currency,
        )
        event["isTest"] = True

        result = await publisher.publish(queues.PAYMENT_COMPLETED, event)
        logger.info(f"Test payment event published: {event['orderId']} ok={bool(result)}")

        return {
            "success": True,
            "message": "Test payment event published",
            "data": test_data,
            "rabbitmq": "event_sent" if result else "event_not_sent",
        }
    except Exception as e:
        logger.exception("Test endpoint error")
        return _error(500, "Test failed", str(e) if settings.is_development else None)
