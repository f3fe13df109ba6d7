from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from hub.contracts import queues
from hub.core.publisher import Publisher

from .deps import get_publisher, read_json_body


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


def _failed() -> JSONResponse:
    return JSONResponse(status_code=500, content={"success": False, "error": "Failed to publish event"})


@router.post("/create")
async def create_product(request: Request, publisher: Publisher = Depends(get_publisher)):
    try:
        product = await read_json_body(request)
    except ValueError:
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid JSON body"})
    if not isinstance(product, dict):
        return JSONResponse(status_code=400, content={"success": False, "error": "Product must be a JSON object"})

    try:
        result = await publisher.publish(queues.PRODUCT_CREATED, product)
    except Exception:
        logger.exception("Error in create_product")
        return _failed()

    if not result:
        logger.error(f"product.created publish failed: {result.error}")
        return _failed()

    return {"success": True, "message": "Product created & event published", "product": product}
