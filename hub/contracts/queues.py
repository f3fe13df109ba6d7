from __future__ import annotations

# Destination queues (declared durable by the publisher).

PAYMENT_COMPLETED = "payment.completed"
PRODUCT_CREATED = "product.created"

# Throwaway queue used by the connection smoke test (non-durable, deleted right away).
CONNECTION_TEST = "connection_test"

# Default queue for the operator tool.
DEBUG_QUEUE = "test.debug.queue"

# Metadata keys merged into every message body next to the payload fields.
EVENT_ID_KEY = "_eventId"
PUBLISHED_AT_KEY = "_publishedAt"
SOURCE_KEY = "_source"

ENVELOPE_METADATA_KEYS = (EVENT_ID_KEY, PUBLISHED_AT_KEY, SOURCE_KEY)

CONTENT_TYPE_JSON = "application/json"
