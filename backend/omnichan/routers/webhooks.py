from fastapi import APIRouter, Request, Query
from fastapi.responses import JSONResponse, PlainTextResponse
from typing import Optional
import json
import logging

from omnichan.exceptions import SignatureInvalid
from omnichan.services.normalizer import iter_envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

SIGNATURE_HEADER = "X-Hub-Signature-256"


@router.get("/facebook")
async def verify_facebook_webhook(
    request: Request,
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    """Verify Facebook webhook subscription"""
    settings = request.app.state.settings

    if hub_mode == "subscribe" and hub_verify_token == settings.WEBHOOK_VERIFY_TOKEN:
        logger.info("Facebook webhook verified successfully")
        return PlainTextResponse(hub_challenge or "")

    logger.warning("Facebook webhook verification failed - invalid token")
    return JSONResponse(
        status_code=403,
        content={"success": False, "error": "Invalid verification token"},
    )


@router.post("/facebook")
async def facebook_webhook(request: Request):
    """Handle Facebook webhook events.

    Acknowledges every delivery with 200 except a bad signature (403).
    Events are queued for message sync; processing never affects the response.
    """
    verifier = request.app.state.signature_verifier
    dispatcher = request.app.state.dispatcher

    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    if signature is not None:
        try:
            verifier.require(payload, signature)
        except SignatureInvalid as e:
            logger.error("Webhook signature verification failed")
            return JSONResponse(status_code=403, content={"success": False, "error": str(e)})

    try:
        data = json.loads(payload)
        queued = 0
        for event in iter_envelope(data):
            if dispatcher.submit(event):
                queued += 1
        logger.info(f"Facebook webhook received, {queued} events queued")
    except Exception as e:
        # Acknowledge anyway so Facebook does not retry a payload we can't read
        logger.error(f"Could not parse Facebook webhook payload: {e!r}", exc_info=True)

    return {"success": True}
