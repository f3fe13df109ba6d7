from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PublishErrorKind(str, Enum):
    CONNECTIVITY = "connectivity"
    TIMEOUT = "timeout"
    REJECTED = "rejected"
    SERIALIZATION = "serialization"
    UNEXPECTED = "unexpected"


# Transient failures worth another attempt; the rest fail the same way every time.
RETRYABLE_KINDS = frozenset({PublishErrorKind.CONNECTIVITY, PublishErrorKind.TIMEOUT})


@dataclass(frozen=True)
class PublishResult:
    """Outcome of one publish call.

    Truthiness equals `ok`, so `if await publisher.publish(...)` reads like the boolean contract.
    """

    ok: bool
    destination: str
    event_id: Optional[str] = None
    error: Optional[PublishErrorKind] = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.ok

    @property
    def retryable(self) -> bool:
        return not self.ok and self.error in RETRYABLE_KINDS

    @classmethod
    def success(cls, destination: str, event_id: str) -> "PublishResult":
        return cls(ok=True, destination=destination, event_id=event_id)

    @classmethod
    def failure(
        cls,
        destination: str,
        error: PublishErrorKind,
        detail: str = "",
        *,
        event_id: Optional[str] = None,
    ) -> "PublishResult":
        return cls(ok=False, destination=destination, event_id=event_id, error=error, detail=detail)


class BrokerUnavailable(RuntimeError):
    """The long-lived broker connection is not open."""


class WebhookValidationError(ValueError):
    """An inbound webhook body failed validation.

    `missing` holds required fields that were absent or blank; `fields` holds
    every field the error is about.
    """

    def __init__(self, message: str, fields: list[str] | None = None, *, missing: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.fields = fields or []
        self.missing = self.fields if missing else []
