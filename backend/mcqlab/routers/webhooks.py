"""
Lemon Squeezy Webhook Router

Keeps local billing state in sync with Lemon Squeezy.

Events handled:
- order_created - Payment recorded, subscription activated
- subscription_created - Subscription stored, usage allowance initialised
- subscription_updated - Status and end date refreshed
- subscription_cancelled - Subscription marked cancelled
- subscription_paused - Subscription marked paused
- subscription_payment_success - Renewal payment recorded

Responses follow the provider contract: 401 on a bad signature, 400 on a
payload without a user id, 500 on database failures and 200
``{"message": "Unhandled event type"}`` for any other event name.
"""

import json
import os
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mcqlab.database import get_db
from mcqlab.services.lemonsqueezy import (
    LemonWebhookError,
    handle_lemon_event,
    verify_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["webhooks"])


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/lemon")
async def lemon_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Handle Lemon Squeezy webhook events.

    The X-Signature header must be the hex HMAC-SHA256 of the raw body,
    keyed with LEMON_SQUEEZY_WEBHOOK_SECRET.
    """
    payload = await request.body()
    signature = request.headers.get("x-signature")

    webhook_secret = os.getenv("LEMON_SQUEEZY_WEBHOOK_SECRET")
    if not webhook_secret:
        logger.error("LEMON_SQUEEZY_WEBHOOK_SECRET is not configured")
        return error_response("Webhook secret not configured", 500)

    if not verify_signature(payload, signature, webhook_secret):
        logger.warning("Lemon Squeezy webhook signature verification failed")
        return error_response("Invalid signature", 401)

    try:
        event = json.loads(payload)
    except ValueError:
        return error_response("Invalid JSON payload", 400)

    if not isinstance(event, dict):
        return error_response("Invalid JSON payload", 400)

    event_name = (event.get("meta") or {}).get("event_name")

    try:
        result = handle_lemon_event(db, event)
    except LemonWebhookError as e:
        logger.warning("Rejected Lemon Squeezy event %s: %s", event_name, e.message)
        return error_response(e.message, e.status_code)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Database error processing Lemon Squeezy event %s: %s", event_name, e, exc_info=True)
        return error_response("Database update failed", 500)

    if result is None:
        return {"message": "Unhandled event type"}

    return result
