"""Hub service: receives order/payment webhooks and publishes durable events to RabbitMQ."""

__version__ = "1.0.0"
