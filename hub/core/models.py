from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

from hub.contracts.queues import EVENT_ID_KEY, PUBLISHED_AT_KEY, SOURCE_KEY

from .ids import new_event_id


def iso_utc(dt: datetime) -> str:
    """ISO-8601 with millisecond precision and a `Z` suffix, e.g. 2026-01-01T00:00:00.000Z."""

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    return iso_utc(datetime.now(timezone.utc))


@dataclass(frozen=True)
class EventEnvelope:
    destination: str
    payload: Dict[str, Any]
    event_id: str
    published_at: datetime
    source: str

    @classmethod
    def build(
        cls,
        destination: str,
        payload: Dict[str, Any],
        *,
        source: str,
        published_at: datetime | None = None,
        event_id: str | None = None,
    ) -> "EventEnvelope":
        return cls(
            destination=destination,
            payload=dict(payload),
            event_id=event_id or new_event_id(destination),
            published_at=published_at or datetime.now(timezone.utc),
            source=source,
        )

    def to_wire_dict(self) -> Dict[str, Any]:
        # Payload fields sit at the top level; metadata keys win on collision.
        d = dict(self.payload)
        d[EVENT_ID_KEY] = self.event_id
        d[PUBLISHED_AT_KEY] = iso_utc(self.published_at)
        d[SOURCE_KEY] = self.source
        return d

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_wire_dict(), ensure_ascii=False, allow_nan=False).encode("utf-8")
