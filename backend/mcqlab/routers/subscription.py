"""
Subscription Router

Subscription state and submission limits for the current user.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from mcqlab.database import get_db
from mcqlab.dependencies.auth import get_current_user
from mcqlab.models.models import Subscription, User, UserUsage
from mcqlab.services.entitlements import check_user_limits, get_limit_policy


router = APIRouter(prefix="/api/subscription", tags=["subscription"])


def _iso(value):
    return value.isoformat() if value else None


@router.get("/limits")
def get_submission_limits(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Whether the user may submit a resource now.
    Returns canSubmit, message and isPro plus the active policy.
    """
    check = check_user_limits(db, current_user.email)
    return {**check.to_dict(), "policy": get_limit_policy()}


@router.get("")
def get_subscription(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Current billing state and usage counters."""
    subscription = db.query(Subscription).filter(Subscription.user_id == current_user.id).first()
    usage = db.query(UserUsage).filter(UserUsage.user_id == current_user.id).first()

    return {
        "subscription": {
            "provider": subscription.provider,
            "status": subscription.status,
            "productName": subscription.product_name,
            "interval": subscription.interval,
            "renewsAt": _iso(subscription.renews_at),
            "endsAt": _iso(subscription.ends_at),
            "cancelled": bool(subscription.cancelled),
            "cardBrand": subscription.card_brand,
            "cardLastFour": subscription.card_last_four,
        } if subscription else None,
        "usage": {
            "periodStart": _iso(usage.period_start),
            "periodEnd": _iso(usage.period_end),
            "submissionCount": usage.submission_count,
            "subscriptionPoints": usage.subscription_points,
        } if usage else None,
        "credits": current_user.credits or 0,
    }
