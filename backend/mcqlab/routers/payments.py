"""
Payments Router

Handles payment endpoints:
- Stripe webhook events for credits, subscriptions and invoices
- Lemon Squeezy hosted checkout creation

Stripe events handled:
- checkout.session.completed - Credit purchase or new subscription
- customer.subscription.created - Subscription created
- customer.subscription.updated - Subscription changed (renewal, cancellation scheduled)
- customer.subscription.deleted - Subscription removed
- invoice.payment_succeeded - Invoice recorded
- invoice.payment_failed - Invoice recorded
"""

import json
import os
import logging
import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mcqlab.database import get_db
from mcqlab.schemas.requests import CheckoutRequest
from mcqlab.services.lemonsqueezy import LemonSqueezyError, create_checkout
from mcqlab.services.stripe_service import (
    handle_checkout_completed,
    handle_subscription_deleted,
    record_invoice,
    sync_subscription_from_stripe,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

stripe.api_key = os.getenv("STRIPE_SECRET_KEY")


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Handle Stripe webhook events.

    The Stripe-Signature header is verified against STRIPE_WEBHOOK_SECRET
    before anything is processed.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured")
        return error_response("Webhook secret not configured", 500)

    if not sig_header:
        return error_response("Missing Stripe signature", 401)

    try:
        payload_text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(payload_text, sig_header, webhook_secret)
        event = json.loads(payload_text)
    except stripe.SignatureVerificationError:
        logger.warning("Stripe webhook signature verification failed")
        return error_response("Invalid signature", 401)
    except ValueError:
        return error_response("Invalid payload", 400)

    if not isinstance(event, dict):
        return error_response("Invalid payload", 400)

    event_type = event.get("type")
    data = event.get("data")
    data_object = data.get("object") if isinstance(data, dict) else None
    if not isinstance(data_object, dict):
        data_object = {}

    logger.info("Processing Stripe webhook: event_type=%s", event_type)

    try:
        if event_type == "checkout.session.completed":
            handle_checkout_completed(db, data_object)
            logger.info("Checkout completed for session_id=%s", data_object.get("id"))

        elif event_type in ("customer.subscription.created", "customer.subscription.updated"):
            sync_subscription_from_stripe(db, data_object)
            logger.info("Subscription synced: subscription_id=%s", data_object.get("id"))

        elif event_type == "customer.subscription.deleted":
            handle_subscription_deleted(db, data_object)
            logger.info("Subscription deleted: subscription_id=%s", data_object.get("id"))

        elif event_type in ("invoice.payment_succeeded", "invoice.payment_failed"):
            record_invoice(db, data_object)
            if event_type == "invoice.payment_failed":
                logger.warning("Payment failed for invoice_id=%s", data_object.get("id"))

        else:
            logger.debug("Unhandled Stripe event type: %s", event_type)
            return {"message": "Unhandled event type"}

    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Webhook processing error for event_type=%s: %s", event_type, str(e), exc_info=True)
        return error_response("Database update failed", 500)

    return {"success": True}


@router.post("/create-checkout-session")
def create_checkout_session(request: CheckoutRequest):
    """
    Create a Lemon Squeezy checkout for the Pro plan.
    Returns the hosted checkout URL to redirect the user to.
    """
    if not request.user_id or not request.email or not request.price_id:
        logger.error(
            "Missing required checkout parameters: userId=%s email=%s priceId=%s",
            bool(request.user_id), bool(request.email), bool(request.price_id)
        )
        raise HTTPException(status_code=400, detail="Missing required parameters.")

    try:
        checkout_url = create_checkout(
            user_id=request.user_id,
            email=request.email,
            variant_id=request.price_id,
            name=request.name,
        )
    except LemonSqueezyError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={"error": e.message, "details": e.details},
        )

    return {"checkoutUrl": checkout_url}
