from __future__ import annotations

import json
from typing import Any

from fastapi import Request

from hub.core.broker import BrokerConnectionManager
from hub.core.publisher import Publisher
from hub.core.settings import Settings


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_publisher(request: Request) -> Publisher:
    return request.app.state.publisher


def get_broker(request: Request) -> BrokerConnectionManager:
    return request.app.state.broker


async def read_json_body(request: Request) -> Any:
    """Raw JSON body; None when the body is empty. Raises ValueError on malformed JSON."""

    raw = await request.body()
    if not raw.strip():
        return None
    return json.loads(raw)
