from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Allow running from repo root without installing as a package.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from hub.contracts.queues import DEBUG_QUEUE
from hub.core.broker import BrokerConnectionManager
from hub.core.models import EventEnvelope, utc_now_iso
from hub.core.publisher import AmqpPublisher
from hub.core.settings import load_settings


def _sample_payload(order_id: str, amount: float) -> dict:
    return {
        "eventType": "payment.completed",
        "orderId": order_id,
        "amount": amount,
        "test": True,
        "timestamp": utc_now_iso(),
    }


async def _run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    url = args.url or settings.rabbitmq.url

    if args.health:
        manager = BrokerConnectionManager(url, connect_timeout_seconds=settings.rabbitmq.connect_timeout_seconds)
        return 0 if await manager.check_health() else 1

    payload = _sample_payload(args.order_id, args.amount)
    if args.dry_run:
        envelope = EventEnvelope.build(args.queue, payload, source=settings.service_name)
        print(f"[dry-run] {args.queue} <- {json.dumps(envelope.to_wire_dict(), ensure_ascii=False)}")
        return 0

    publisher = AmqpPublisher(
        url,
        source=settings.service_name,
        connect_timeout_seconds=settings.rabbitmq.connect_timeout_seconds,
        publish_timeout_seconds=settings.rabbitmq.publish_timeout_seconds,
        close_delay_seconds=settings.rabbitmq.close_delay_seconds,
        publisher_confirms=args.confirm or settings.rabbitmq.publisher_confirms,
    )
    result = await publisher.publish(args.queue, payload)
    await publisher.aclose()
    if result:
        print(f"published {result.event_id} -> {args.queue}")
        return 0
    print(f"publish failed ({result.error.value if result.error else 'unknown'}): {result.detail}")
    return 1


def main() -> None:
    ap = argparse.ArgumentParser(description="Publish one sample event to RabbitMQ.")
    ap.add_argument("--config", default=str(Path("config") / "settings.yaml"))
    ap.add_argument("--url", help="AMQP URL (defaults to rabbitmq.url from settings)")
    ap.add_argument("--queue", default=DEBUG_QUEUE)
    ap.add_argument("--order-id", default="direct_test")
    ap.add_argument("--amount", type=float, default=999)
    ap.add_argument("--confirm", action="store_true", help="Wait for the broker ack.")
    ap.add_argument("--dry-run", action="store_true", help="Print the message body instead of sending it.")
    ap.add_argument("--health", action="store_true", help="Only check that the broker is reachable.")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO)
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
