"""
Lemon Squeezy Service

Handles Lemon Squeezy interactions:
- Webhook signature verification
- Webhook event handlers that keep Subscription, Payment and usage rows in sync
- Checkout creation through the Lemon Squeezy REST API

Subscription rows are keyed by the internal user id, taken from the
checkout's custom data (``userId`` or ``user_id``). Cancellation and pause
events that arrive without custom data are matched on the stored Lemon
Squeezy subscription id instead.
"""

import hashlib
import hmac
import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from mcqlab.models.models import Payment, Subscription, User
from mcqlab.services.entitlements import DEFAULT_PERIOD_DAYS, DEFAULT_SUBSCRIPTION_POINTS, ensure_user_usage

logger = logging.getLogger(__name__)

PROVIDER = "lemonsqueezy"

LEMON_API_URL = "https://api.lemonsqueezy.com/v1"
API_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


class LemonWebhookError(Exception):
    """A webhook payload that cannot be processed (answered with ``status_code``)."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class LemonSqueezyError(Exception):
    """Checkout creation failed."""

    def __init__(self, message: str, status_code: int = 500, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


# =============================================================================
# HELPERS
# =============================================================================

def verify_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """Compare the hex HMAC-SHA256 of the raw body to the X-Signature header."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Lemon Squeezy ISO-8601 timestamp into naive UTC."""
    if not value:
        return None
    try:
        text = value.replace("Z", "+00:00")
        # Pad or cut fractional seconds to exactly six digits
        if "." in text:
            head, _, tail = text.partition(".")
            digits = re.match(r"\d*", tail).group(0)
            offset = tail[len(digits):]
            text = f"{head}.{digits[:6].ljust(6, '0')}{offset}"
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Unparseable timestamp from Lemon Squeezy: {value}")
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def get_user_id_from_custom_data(event: Dict[str, Any]) -> Optional[str]:
    custom_data = (event.get("meta") or {}).get("custom_data") or {}
    return custom_data.get("userId") or custom_data.get("user_id") or None


def _attributes(event: Dict[str, Any]) -> Dict[str, Any]:
    return ((event.get("data") or {}).get("attributes")) or {}


def _user_exists(db: Session, user_id: str) -> bool:
    return db.query(User.id).filter(User.id == user_id).first() is not None


def _get_or_create_subscription(db: Session, user_id: str) -> Subscription:
    subscription = db.query(Subscription).filter(Subscription.user_id == user_id).first()
    if not subscription:
        subscription = Subscription(user_id=user_id, provider=PROVIDER)
        db.add(subscription)
    return subscription


def _find_subscription(db: Session, event: Dict[str, Any]) -> Optional[Subscription]:
    user_id = get_user_id_from_custom_data(event)
    if user_id:
        subscription = db.query(Subscription).filter(Subscription.user_id == user_id).first()
        if subscription:
            return subscription

    provider_id = (event.get("data") or {}).get("id")
    if provider_id:
        return db.query(Subscription).filter(
            Subscription.provider_subscription_id == str(provider_id)
        ).first()
    return None


def transform_payment_data(attributes: Dict[str, Any], user_id: str) -> Payment:
    return Payment(
        user_id=user_id,
        provider=PROVIDER,
        amount=attributes.get("total"),
        currency=attributes.get("currency"),
        status=attributes.get("status"),
        store_id=str(attributes["store_id"]) if attributes.get("store_id") is not None else None,
        customer_id=str(attributes["customer_id"]) if attributes.get("customer_id") is not None else None,
        order_number=str(attributes["order_number"]) if attributes.get("order_number") is not None else None,
        created_at=parse_timestamp(attributes.get("created_at")) or datetime.utcnow(),
        updated_at=parse_timestamp(attributes.get("updated_at")),
    )


# =============================================================================
# EVENT HANDLERS
# =============================================================================

def handle_order_created(db: Session, event: Dict[str, Any]) -> Dict[str, Any]:
    attributes = _attributes(event)
    user_id = get_user_id_from_custom_data(event)
    if not user_id:
        raise LemonWebhookError("Missing userId in webhook data", status_code=400)

    db.add(transform_payment_data(attributes, user_id))

    if _user_exists(db, user_id):
        subscription = _get_or_create_subscription(db, user_id)
        subscription.provider = PROVIDER
        subscription.status = "active"
        subscription.product_name = (
            (attributes.get("first_order_item") or {}).get("product_name") or "Subscription"
        )
        subscription.currency = attributes.get("currency") or subscription.currency
        if attributes.get("customer_id") is not None:
            subscription.provider_customer_id = str(attributes["customer_id"])
    else:
        logger.warning(f"order_created for unknown user {user_id}; payment recorded without subscription")

    db.commit()
    logger.info(f"Lemon Squeezy order {attributes.get('order_number')} recorded for user {user_id}")
    return {"success": True}


def handle_subscription_created(db: Session, event: Dict[str, Any]) -> Dict[str, Any]:
    attributes = _attributes(event)
    user_id = get_user_id_from_custom_data(event)
    if not user_id:
        raise LemonWebhookError("Missing userId in webhook data", status_code=400)

    if not _user_exists(db, user_id):
        logger.warning(f"subscription_created for unknown user {user_id}; ignored")
        return {"success": True}

    subscription = _get_or_create_subscription(db, user_id)
    subscription.provider = PROVIDER
    provider_id = (event.get("data") or {}).get("id")
    if provider_id is not None:
        subscription.provider_subscription_id = str(provider_id)
    if attributes.get("customer_id") is not None:
        subscription.provider_customer_id = str(attributes["customer_id"])
    subscription.status = attributes.get("status")
    subscription.product_name = attributes.get("product_name")
    subscription.price_id = str(attributes["variant_id"]) if attributes.get("variant_id") is not None else None
    subscription.currency = attributes.get("currency") or "USD"
    subscription.interval = attributes.get("interval") or "monthly"
    subscription.renews_at = parse_timestamp(attributes.get("renews_at"))
    subscription.ends_at = parse_timestamp(attributes.get("ends_at"))
    subscription.card_brand = attributes.get("card_brand")
    subscription.card_last_four = attributes.get("card_last_four")

    period_start = parse_timestamp(attributes.get("created_at")) or datetime.utcnow()
    period_end = subscription.renews_at or period_start + timedelta(days=DEFAULT_PERIOD_DAYS)

    usage = ensure_user_usage(db, user_id, period_start=period_start, period_end=period_end)
    usage.plan_type = "pro"
    usage.period_start = period_start
    usage.period_end = period_end
    usage.submission_count = 0
    usage.subscription_points = DEFAULT_SUBSCRIPTION_POINTS

    db.commit()
    logger.info(f"Lemon Squeezy subscription {provider_id} created for user {user_id}")
    return {"success": True}


def handle_subscription_updated(db: Session, event: Dict[str, Any]) -> Dict[str, Any]:
    attributes = _attributes(event)
    user_id = get_user_id_from_custom_data(event)

    if user_id:
        if not _user_exists(db, user_id):
            logger.warning(f"subscription_updated for unknown user {user_id}; ignored")
            return {"success": True}

        subscription = _get_or_create_subscription(db, user_id)
        subscription.status = attributes.get("status")
        subscription.renews_at = parse_timestamp(attributes.get("renews_at"))
        subscription.ends_at = subscription.renews_at
        db.commit()
        logger.info(f"Subscription for user {user_id} updated to status={subscription.status}")

    return {"success": True}


def handle_subscription_cancelled(db: Session, event: Dict[str, Any]) -> Dict[str, Any]:
    attributes = _attributes(event)
    subscription = _find_subscription(db, event)
    if not subscription:
        logger.warning(f"subscription_cancelled for unknown subscription {(event.get('data') or {}).get('id')}")
        return {"success": True}

    subscription.status = "cancelled"
    subscription.cancelled = True
    subscription.ends_at = parse_timestamp(attributes.get("ends_at"))
    db.commit()
    logger.info(f"Subscription for user {subscription.user_id} cancelled")
    return {"success": True}


def handle_subscription_paused(db: Session, event: Dict[str, Any]) -> Dict[str, Any]:
    attributes = _attributes(event)
    subscription = _find_subscription(db, event)
    if not subscription:
        logger.warning(f"subscription_paused for unknown subscription {(event.get('data') or {}).get('id')}")
        return {"success": True}

    subscription.status = "paused"
    subscription.pause = attributes.get("pause")
    db.commit()
    logger.info(f"Subscription for user {subscription.user_id} paused")
    return {"success": True}


def handle_subscription_payment_success(db: Session, event: Dict[str, Any]) -> Dict[str, Any]:
    attributes = _attributes(event)
    user_id = get_user_id_from_custom_data(event)
    if not user_id:
        raise LemonWebhookError("Missing userId in webhook data", status_code=400)

    db.add(transform_payment_data(attributes, user_id))
    db.commit()
    logger.info(f"Subscription payment recorded for user {user_id}")
    return {"success": True}


EVENT_HANDLERS = {
    "order_created": handle_order_created,
    "subscription_created": handle_subscription_created,
    "subscription_updated": handle_subscription_updated,
    "subscription_cancelled": handle_subscription_cancelled,
    "subscription_paused": handle_subscription_paused,
    "subscription_payment_success": handle_subscription_payment_success,
}


def handle_lemon_event(db: Session, event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Dispatch a verified webhook event.

    Returns:
        Response body for handled events, or None for unrecognised event names
    """
    event_name = (event.get("meta") or {}).get("event_name")
    handler = EVENT_HANDLERS.get(event_name)
    if not handler:
        logger.debug(f"Unhandled Lemon Squeezy event type: {event_name}")
        return None

    logger.info(f"Processing Lemon Squeezy webhook: event_name={event_name}")
    return handler(db, event)


# =============================================================================
# CHECKOUT
# =============================================================================

def build_checkout_payload(
    store_id: str,
    variant_id: str,
    user_id: str,
    email: str,
    name: Optional[str] = None,
) -> Dict[str, Any]:
    app_url = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
    return {
        "data": {
            "type": "checkouts",
            "attributes": {
                "product_options": {
                    "name": "MCQ Lab Pro",
                    "description": "Upgrade to Pro plan",
                    "redirect_url": f"{app_url}/dashboard/settings",
                },
                "checkout_options": {
                    "embed": False,
                    "media": True,
                    "logo": True,
                    "dark": True,
                },
                "checkout_data": {
                    "email": email,
                    "name": name,
                    "custom": {
                        "userId": user_id,
                        "email": email,
                    },
                },
                "test_mode": os.getenv("ENVIRONMENT", "development") != "production",
            },
            "relationships": {
                "store": {"data": {"type": "stores", "id": str(store_id)}},
                "variant": {"data": {"type": "variants", "id": str(variant_id)}},
            },
        }
    }


def create_checkout(
    user_id: str,
    email: str,
    variant_id: str,
    name: Optional[str] = None,
    client: Optional[httpx.Client] = None,
) -> str:
    """
    Create a hosted checkout and return its URL.

    Raises:
        LemonSqueezyError: On missing configuration or an API failure
    """
    api_key = os.getenv("LEMON_SQUEEZY_API_KEY")
    store_id = os.getenv("LEMON_SQUEEZY_STORE_ID")
    if not api_key or not store_id:
        logger.error("LEMON_SQUEEZY_API_KEY or LEMON_SQUEEZY_STORE_ID is not configured")
        raise LemonSqueezyError(
            "Failed to create checkout session",
            status_code=500,
            details="Payment provider is not configured",
        )

    payload = build_checkout_payload(store_id, variant_id, user_id, email, name)
    headers = {
        "Accept": "application/vnd.api+json",
        "Content-Type": "application/vnd.api+json",
        "Authorization": f"Bearer {api_key}",
    }

    owns_client = client is None
    client = client or httpx.Client(timeout=API_TIMEOUT)
    try:
        response = client.post(f"{LEMON_API_URL}/checkouts", json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.error(f"Checkout request failed for user {user_id}: {e}")
        raise LemonSqueezyError("Failed to create checkout session", status_code=500, details=str(e))
    finally:
        if owns_client:
            client.close()

    if response.status_code >= 400:
        details = _error_details(response)
        logger.error(f"Checkout creation failed ({response.status_code}): {details}")
        raise LemonSqueezyError(
            "Failed to create checkout session",
            status_code=response.status_code,
            details=details,
        )

    checkout_url = (((response.json().get("data") or {}).get("attributes")) or {}).get("url")
    if not checkout_url:
        logger.error(f"Unexpected checkout response structure: {response.text[:500]}")
        raise LemonSqueezyError(
            "Failed to create checkout session",
            status_code=500,
            details="Checkout URL not found in response",
        )

    logger.info(f"Checkout created for user {user_id}")
    return checkout_url


def _error_details(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    errors = body.get("errors") or []
    if errors and isinstance(errors, list):
        return errors[0].get("detail") or errors[0].get("title") or str(errors[0])
    return body.get("message") or response.text[:500]
