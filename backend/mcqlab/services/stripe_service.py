"""
Stripe Service

Keeps local billing state in sync with Stripe webhook events:
- One-time credit purchases (checkout in payment mode)
- Subscription lifecycle (checkout in subscription mode, created/updated/deleted)
- Invoice records

Event objects are handled as plain dicts decoded from the verified payload,
so handlers do not depend on the Stripe API version's object shapes beyond
the fields read here.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from mcqlab.models.models import Invoice, Subscription, User

logger = logging.getLogger(__name__)

PROVIDER = "stripe"

DEFAULT_CREDITS_PER_PURCHASE = int(os.getenv("STRIPE_CREDITS_PER_PURCHASE", "100"))


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _metadata_user_id(obj: Dict[str, Any]) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    return metadata.get("user_id") or metadata.get("userId") or obj.get("client_reference_id")


def _first_item(stripe_subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (stripe_subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _find_subscription(db: Session, user_id: Optional[str], stripe_subscription_id: Optional[str]) -> Optional[Subscription]:
    if user_id:
        subscription = db.query(Subscription).filter(Subscription.user_id == user_id).first()
        if subscription:
            return subscription
    if stripe_subscription_id:
        return db.query(Subscription).filter(
            Subscription.provider_subscription_id == stripe_subscription_id
        ).first()
    return None


# =============================================================================
# CHECKOUT
# =============================================================================

def handle_checkout_completed(db: Session, session: Dict[str, Any]) -> Optional[User]:
    """
    Handle a completed Checkout Session.

    Payment mode credits the purchased amount to the user's balance.
    Subscription mode tags the user's Subscription row with the Stripe ids;
    the row is filled in by the customer.subscription.* events.
    """
    user_id = _metadata_user_id(session)
    if not user_id:
        logger.warning("Checkout session %s has no user id in metadata", session.get("id"))
        return None

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning("Checkout session %s for unknown user %s", session.get("id"), user_id)
        return None

    mode = session.get("mode")
    if mode == "payment":
        credits = int((session.get("metadata") or {}).get("credits") or DEFAULT_CREDITS_PER_PURCHASE)
        user.credits = (user.credits or 0) + credits
        logger.info("Credited %d to user %s", credits, user_id)

    elif mode == "subscription":
        subscription = db.query(Subscription).filter(Subscription.user_id == user_id).first()
        if not subscription:
            subscription = Subscription(user_id=user_id)
            db.add(subscription)
        subscription.provider = PROVIDER
        subscription.provider_subscription_id = session.get("subscription")
        subscription.provider_customer_id = session.get("customer")
        subscription.status = "active"
        subscription.cancelled = False

    db.commit()
    db.refresh(user)
    return user


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

def sync_subscription_from_stripe(db: Session, stripe_subscription: Dict[str, Any]) -> Optional[Subscription]:
    """
    Upsert the user's Subscription from a Stripe subscription object.
    Called for customer.subscription.created and customer.subscription.updated.
    """
    user_id = _metadata_user_id(stripe_subscription)
    subscription = _find_subscription(db, user_id, stripe_subscription.get("id"))

    if not subscription:
        if not user_id or not db.query(User.id).filter(User.id == user_id).first():
            logger.warning("No user found for Stripe subscription %s", stripe_subscription.get("id"))
            return None
        subscription = Subscription(user_id=user_id)
        db.add(subscription)

    item = _first_item(stripe_subscription)
    price = item.get("price") or {}
    recurring = price.get("recurring") or {}

    subscription.provider = PROVIDER
    subscription.provider_subscription_id = stripe_subscription.get("id")
    subscription.provider_customer_id = stripe_subscription.get("customer")
    subscription.status = stripe_subscription.get("status")
    subscription.price_id = price.get("id")
    subscription.currency = (price.get("currency") or stripe_subscription.get("currency") or "").upper() or None
    subscription.interval = recurring.get("interval")

    # Newer API versions moved the billing period onto subscription items
    period_end = stripe_subscription.get("current_period_end") or item.get("current_period_end")
    subscription.renews_at = _from_timestamp(period_end)
    subscription.ends_at = _from_timestamp(stripe_subscription.get("cancel_at"))
    subscription.cancelled = bool(stripe_subscription.get("cancel_at_period_end"))

    db.commit()
    db.refresh(subscription)
    return subscription


def handle_subscription_deleted(db: Session, stripe_subscription: Dict[str, Any]) -> bool:
    """
    Remove the user's Subscription row.
    Returns True when a row was deleted.
    """
    subscription = _find_subscription(
        db, _metadata_user_id(stripe_subscription), stripe_subscription.get("id")
    )
    if not subscription:
        return False

    db.delete(subscription)
    db.commit()
    return True


# =============================================================================
# INVOICES
# =============================================================================

def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    if invoice.get("subscription"):
        return invoice["subscription"]
    details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
    return details.get("subscription")


def record_invoice(db: Session, invoice: Dict[str, Any]) -> Invoice:
    """
    Append an Invoice row for invoice.payment_succeeded / invoice.payment_failed.
    """
    subscription_id = _invoice_subscription_id(invoice)

    user_id = _metadata_user_id(invoice)
    if not user_id and subscription_id:
        subscription = db.query(Subscription).filter(
            Subscription.provider_subscription_id == subscription_id
        ).first()
        user_id = subscription.user_id if subscription else None

    record = Invoice(
        invoice_id=invoice.get("id"),
        subscription_id=subscription_id,
        user_id=user_id,
        amount_paid=invoice.get("amount_paid") or 0,
        amount_due=invoice.get("amount_due"),
        currency=invoice.get("currency") or "usd",
        status=invoice.get("status") or "unknown",
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record
