"""
Yalidine Webhook Handler

POST /webhooks/yalidine  - parcel events (signed, legacy or batched body)
GET  /webhooks/yalidine  - subscription handshake (echoes crc_token)
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from services.webhook_queue import QueueFullError
from utils.exceptions import AuthzError, ValidationError

logger = logging.getLogger(__name__)

# Create FastAPI router
router = APIRouter()


@router.get("/webhooks/yalidine")
async def yalidine_subscription_check(
    subscribe: Optional[str] = Query(None),
    crc_token: Optional[str] = Query(None),
):
    """Webhook registration handshake: echo crc_token verbatim as plain text"""
    if subscribe is not None and crc_token is not None:
        logger.info("🤝 YALIDINE_CRC_CHALLENGE answered")
        return PlainTextResponse(crc_token)
    return {"ok": True}


@router.post("/webhooks/yalidine")
async def yalidine_webhook(request: Request):
    # Signature covers the raw bytes, read before any parsing
    raw_body = await request.body()
    gateway = request.app.state.context.ingestion_gateway

    try:
        return await gateway.accept(request.headers, raw_body)
    except AuthzError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ValidationError as e:
        logger.warning(f"⚠️ YALIDINE_BAD_PAYLOAD: {e.message}")
        raise HTTPException(status_code=400, detail=e.message)
    except QueueFullError as e:
        # Not acknowledged: the carrier retries later
        raise HTTPException(status_code=503, detail=str(e))
