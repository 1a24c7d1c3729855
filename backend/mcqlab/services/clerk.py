"""
Clerk Backend API helpers.
"""

import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

CLERK_API_URL = "https://api.clerk.com/v1"
ANONYMOUS_NAME = "Anonymous User"


def get_display_name(user_id: str, client: Optional[httpx.Client] = None) -> str:
    """
    Look up a user's display name in Clerk.

    Joins first and last name; returns "Anonymous User" when the name is
    empty or the lookup fails for any reason.
    """
    secret_key = os.getenv("CLERK_SECRET_KEY")
    if not secret_key:
        logger.warning("CLERK_SECRET_KEY not set - cannot look up display names")
        return ANONYMOUS_NAME

    owns_client = client is None
    client = client or httpx.Client(timeout=10.0)
    try:
        response = client.get(
            f"{CLERK_API_URL}/users/{user_id}",
            headers={"Authorization": f"Bearer {secret_key}"},
        )
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Error fetching Clerk user {user_id}: {e}")
        return ANONYMOUS_NAME
    finally:
        if owns_client:
            client.close()

    name = " ".join(part for part in (data.get("first_name"), data.get("last_name")) if part)
    return name or ANONYMOUS_NAME
