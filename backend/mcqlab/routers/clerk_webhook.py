"""
Clerk Webhook Handler for MCQ Lab

Mirrors Clerk users into the users table:
- user.created: Create user record (primary key = Clerk user id)
- user.updated: Update email and name
- user.deleted: Delete the user and their learning data

Setup:
1. In Clerk Dashboard, go to Webhooks
2. Add endpoint: https://your-domain.com/api/webhook/clerk
3. Subscribe to events: user.created, user.updated, user.deleted
4. Copy signing secret to CLERK_WEBHOOK_SECRET env variable
"""

from fastapi import APIRouter, Depends, Request, HTTPException, Header
from sqlalchemy.orm import Session
from typing import Optional
import base64
import hmac
import hashlib
import json
import os
import logging

from mcqlab.database import get_db
from mcqlab.models.models import Performance, Quiz, Resource, SubmissionRun, Subscription, User, UserUsage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["webhooks"])


def verify_clerk_webhook(payload: bytes, svix_id: str, svix_timestamp: str, svix_signature: str, secret: str) -> bool:
    """
    Verify Clerk/Svix webhook signature using HMAC-SHA256

    Svix signature format: "v1,<signature1> v1,<signature2>"
    Signed payload format: "<svix_id>.<svix_timestamp>.<payload>"
    """
    if not all([svix_id, svix_timestamp, svix_signature, secret]):
        logger.warning("Missing required Svix headers or secret")
        return False

    if secret.startswith("whsec_"):
        secret = secret[6:]

    try:
        secret_bytes = base64.b64decode(secret)
    except Exception:
        logger.error("Failed to decode webhook secret")
        return False

    signed_payload = f"{svix_id}.{svix_timestamp}.{payload.decode('utf-8')}"
    expected_sig = hmac.new(secret_bytes, signed_payload.encode("utf-8"), hashlib.sha256).digest()
    expected_sig_b64 = base64.b64encode(expected_sig).decode("utf-8")

    signatures = [part[3:] for part in svix_signature.split(" ") if part.startswith("v1,")]
    for sig in signatures:
        if hmac.compare_digest(expected_sig_b64, sig):
            return True

    logger.warning("Webhook signature verification failed")
    return False


def _primary_email(data: dict) -> Optional[str]:
    addresses = data.get("email_addresses") or []
    primary_id = data.get("primary_email_address_id")
    for address in addresses:
        if address.get("id") == primary_id:
            return address.get("email_address")
    return addresses[0].get("email_address") if addresses else None


def _full_name(data: dict) -> Optional[str]:
    name = f"{data.get('first_name') or ''} {data.get('last_name') or ''}".strip()
    return name or None


@router.post("/clerk")
async def clerk_webhook(
    request: Request,
    svix_id: Optional[str] = Header(None),
    svix_timestamp: Optional[str] = Header(None),
    svix_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """
    Handle Clerk webhook events

    Events:
    - user.created: Create user in database
    - user.updated: Update user information
    - user.deleted: Delete user and owned rows
    """
    body = await request.body()

    webhook_secret = os.getenv("CLERK_WEBHOOK_SECRET")
    if webhook_secret:
        if not verify_clerk_webhook(body, svix_id or "", svix_timestamp or "", svix_signature or "", webhook_secret):
            raise HTTPException(status_code=401, detail="Invalid webhook signature")
    else:
        if os.getenv("ENVIRONMENT", "").lower() == "production":
            logger.error("CLERK_WEBHOOK_SECRET not configured in production!")
            raise HTTPException(status_code=500, detail="Webhook secret not configured")
        logger.warning("CLERK_WEBHOOK_SECRET not set - skipping signature verification (dev only)")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    event_type = payload.get("type")
    data = payload.get("data") or {}
    clerk_id = data.get("id")

    try:
        if event_type in ("user.created", "user.updated"):
            email = _primary_email(data)
            if not clerk_id or not email:
                raise HTTPException(status_code=400, detail="User id and email required")

            user = db.query(User).filter(User.id == clerk_id).first()
            if user:
                user.email = email
                user.full_name = _full_name(data) or user.full_name
                db.commit()
                return {"status": "updated", "user_id": user.id}

            user = User(id=clerk_id, email=email, full_name=_full_name(data))
            db.add(user)
            db.commit()
            logger.info(f"Created user {clerk_id} from Clerk webhook")
            return {"status": "created", "user_id": user.id}

        elif event_type == "user.deleted":
            user = db.query(User).filter(User.id == clerk_id).first()
            if not user:
                return {"status": "user_not_found"}

            # Resource deletion cascades to quizzes, MCQs and performances
            for resource in db.query(Resource).filter(Resource.user_id == clerk_id).all():
                db.delete(resource)
            db.flush()
            db.query(Performance).filter(Performance.user_id == clerk_id).delete(synchronize_session=False)
            db.query(Quiz).filter(Quiz.user_id == clerk_id).delete(synchronize_session=False)
            db.query(Subscription).filter(Subscription.user_id == clerk_id).delete(synchronize_session=False)
            db.query(UserUsage).filter(UserUsage.user_id == clerk_id).delete(synchronize_session=False)
            db.query(SubmissionRun).filter(SubmissionRun.user_id == clerk_id).delete(synchronize_session=False)
            db.delete(user)
            db.commit()
            logger.info(f"Deleted user {clerk_id} from Clerk webhook")
            return {"status": "deleted", "user_id": clerk_id}

        return {"status": "ignored", "event_type": event_type}

    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Clerk webhook processing failed for {event_type}: {e}")
        raise HTTPException(status_code=500, detail=f"Webhook processing failed: {str(e)}")
