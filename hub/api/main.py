from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import Depends, FastAPI

from hub import __version__
from hub.core.broker import BrokerConnectionManager
from hub.core.models import utc_now_iso
from hub.core.publisher import Publisher, build_publisher
from hub.core.settings import Settings, load_settings

from . import payments, products
from .deps import get_broker


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    broker: BrokerConnectionManager = app.state.broker
    if await broker.connect():
        logger.info("RabbitMQ connection initialized")
    else:
        # Publishes open their own connections; keep serving.
        logger.warning("RabbitMQ unavailable at startup, running degraded")
    try:
        yield
    finally:
        await app.state.publisher.aclose()
        await broker.close()


def create_app(
    settings: Settings | None = None,
    *,
    publisher: Publisher | None = None,
    broker: BrokerConnectionManager | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    broker = broker or BrokerConnectionManager(
        settings.rabbitmq.url,
        connect_timeout_seconds=settings.rabbitmq.connect_timeout_seconds,
        publisher_confirms=settings.rabbitmq.publisher_confirms,
    )
    publisher = publisher or build_publisher(settings, broker)

    app = FastAPI(title="Hub Service", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.broker = broker
    app.state.publisher = publisher

    app.include_router(products.router)
    app.include_router(payments.router)

    @app.get("/")
    async def root() -> dict:
        return {
            "service": "Hub Service",
            "status": "running",
            "version": __version__,
            "endpoints": {"products": "/products", "payments": "/payments"},
        }

    @app.get("/health")
    async def health(broker: BrokerConnectionManager = Depends(get_broker)) -> dict:
        connected = broker.is_connected
        return {
            "status": "healthy" if connected else "degraded",
            "timestamp": utc_now_iso(),
            "rabbitmq": "connected" if connected else "disconnected",
        }

    return app


def main() -> None:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())
    logger.info(f"Starting {settings.service_name} on {settings.http_host}:{settings.http_port}")
    uvicorn.run(create_app(settings), host=settings.http_host, port=settings.http_port)


if __name__ == "__main__":
    main()
