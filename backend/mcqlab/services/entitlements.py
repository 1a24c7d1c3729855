"""
Entitlement Service

Decides whether a user may submit a new resource.

Pro users (a subscription whose end date is in the future) draw from a
per-billing-period allowance stored in ``user_usage``. Everyone else may
submit one resource per UTC calendar day.

Whether a refusal blocks the submission is governed by
``SUBMISSION_LIMIT_POLICY``:
- "enforce" (default): the submission endpoint answers 403
- "advisory": the refusal is logged and the submission proceeds
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from mcqlab.models.models import Resource, Subscription, User, UserUsage

logger = logging.getLogger(__name__)

DEFAULT_SUBSCRIPTION_POINTS = 100
DEFAULT_PERIOD_DAYS = 30

POLICY_ENFORCE = "enforce"
POLICY_ADVISORY = "advisory"


class EntitlementError(Exception):
    """Raised when an enforced entitlement check refuses a submission."""

    def __init__(self, check: "SubmissionCheck"):
        super().__init__(check.message)
        self.check = check


@dataclass
class SubmissionCheck:
    can_submit: bool
    message: str
    is_pro: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "canSubmit": self.can_submit,
            "message": self.message,
            "isPro": self.is_pro,
        }


def get_limit_policy() -> str:
    policy = os.getenv("SUBMISSION_LIMIT_POLICY", POLICY_ENFORCE).strip().lower()
    if policy not in (POLICY_ENFORCE, POLICY_ADVISORY):
        logger.warning(f"Unknown SUBMISSION_LIMIT_POLICY '{policy}', using '{POLICY_ENFORCE}'")
        return POLICY_ENFORCE
    return policy


# =============================================================================
# USAGE ROWS
# =============================================================================

def ensure_user_usage(
    db: Session,
    user_id: str,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
) -> UserUsage:
    """
    Get the user's usage row, creating it with the default allowance.

    The period runs from ``period_start`` (default now) to ``period_end``
    (default 30 days later). Does not commit.
    """
    usage = db.query(UserUsage).filter(UserUsage.user_id == user_id).first()
    if usage:
        return usage

    start = period_start or datetime.utcnow()
    usage = UserUsage(
        user_id=user_id,
        plan_type="pro",
        period_start=start,
        period_end=period_end or start + timedelta(days=DEFAULT_PERIOD_DAYS),
        submission_count=0,
        subscription_points=DEFAULT_SUBSCRIPTION_POINTS,
    )
    db.add(usage)
    db.flush()
    return usage


def _is_valid_subscription(subscription: Subscription, now: datetime) -> bool:
    if subscription.ends_at:
        return now < subscription.ends_at
    if subscription.renews_at:
        return now < subscription.renews_at
    return False


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


# =============================================================================
# CHECKS
# =============================================================================

def check_user_limits(db: Session, email: str, now: Optional[datetime] = None) -> SubmissionCheck:
    """
    Check whether the user with this email may submit a resource.

    Args:
        db: Database session
        email: User email
        now: Current UTC time (naive), injectable for tests

    Returns:
        SubmissionCheck with canSubmit, message and isPro
    """
    now = now or datetime.utcnow()
    user = db.query(User).filter(User.email == email).first()
    if not user:
        # Unknown users have no resources and no subscription
        return SubmissionCheck(True, "You can submit 1 resource today.", False)

    subscription = (
        db.query(Subscription)
        .filter(Subscription.user_id == user.id)
        .order_by(Subscription.created_at.desc())
        .first()
    )

    if subscription:
        if not subscription.ends_at and subscription.renews_at:
            subscription.ends_at = subscription.renews_at
            db.commit()

        if _is_valid_subscription(subscription, now):
            return _check_pro_usage(db, user, subscription, now)

    todays_resource = (
        db.query(Resource.id)
        .filter(
            Resource.user_id == user.id,
            Resource.created_at >= _start_of_day(now),
        )
        .first()
    )

    if not todays_resource:
        return SubmissionCheck(True, "You can submit 1 resource today.", False)

    return SubmissionCheck(
        False,
        "You've reached your daily limit. Upgrade to Pro for more submissions!",
        False,
    )


def _check_pro_usage(db: Session, user: User, subscription: Subscription, now: datetime) -> SubmissionCheck:
    usage = db.query(UserUsage).filter(UserUsage.user_id == user.id).first()
    if not usage:
        usage = ensure_user_usage(
            db,
            user.id,
            period_start=subscription.created_at or now,
            period_end=subscription.renews_at,
        )
        db.commit()
        logger.info(f"Initialized usage row for user {user.id}")

    if now >= usage.period_end and subscription.renews_at and subscription.renews_at > usage.period_end:
        _roll_usage_period(db, usage, subscription.renews_at)

    if now >= usage.period_end:
        return SubmissionCheck(
            False,
            "Your billing period has ended. Your submissions will reset when your subscription renews.",
            True,
        )

    remaining = usage.subscription_points - usage.submission_count
    if remaining <= 0:
        return SubmissionCheck(
            False,
            "You've used all your submissions for this billing period.",
            True,
        )

    return SubmissionCheck(
        True,
        f"You have {remaining} submissions remaining this billing period.",
        True,
    )


def _roll_usage_period(db: Session, usage: UserUsage, period_end: datetime) -> None:
    """Start the billing period a renewal paid for and reset its count."""
    usage.period_start = usage.period_end
    usage.period_end = period_end
    usage.submission_count = 0
    db.commit()
    logger.info(f"Usage period for user {usage.user_id} renewed until {period_end.isoformat()}")


def record_submission(db: Session, email: str) -> None:
    """Count one submission against the user's current billing period."""
    user = db.query(User).filter(User.email == email).first()
    if not user:
        return

    usage = db.query(UserUsage).filter(UserUsage.user_id == user.id).first()
    if not usage:
        return

    usage.submission_count = (usage.submission_count or 0) + 1
    db.commit()
    logger.info(f"User {user.id} used submission {usage.submission_count}/{usage.subscription_points}")


def enforce_submission_limits(db: Session, user: User) -> SubmissionCheck:
    """
    Run the entitlement check under the configured policy.

    Raises:
        EntitlementError: When the check refuses and the policy is "enforce"
    """
    check = check_user_limits(db, user.email)
    if check.can_submit:
        return check

    if get_limit_policy() == POLICY_ENFORCE:
        logger.info(f"Submission refused for user {user.id}: {check.message}")
        raise EntitlementError(check)

    logger.warning(f"Submission allowed under advisory policy for user {user.id}: {check.message}")
    return check
