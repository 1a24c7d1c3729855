"""
Authentication Dependencies for MCQ Lab

Provides FastAPI dependencies for:
- Clerk JWT verification
- User authentication

Users are mirrored from Clerk by the Clerk webhook; the JWT ``sub`` claim is
the User primary key.

Usage:
    @router.get("/protected")
    def protected_endpoint(current_user: User = Depends(get_current_user)):
        return {"user_id": current_user.id}
"""

import os
import logging
import base64
import httpx
import time
import threading
from typing import Optional, Tuple

from fastapi import Depends, HTTPException, Header, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from jose import jwt, JWTError
from jose.exceptions import JWKError

from mcqlab.database import get_db
from mcqlab.models.models import User

logger = logging.getLogger(__name__)

# HTTP Bearer scheme for extracting tokens
security = HTTPBearer(auto_error=False)

# Clerk configuration
CLERK_ISSUER = os.getenv("CLERK_ISSUER")
CLERK_JWKS_URL = os.getenv("CLERK_JWKS_URL")
CLERK_AUDIENCE = os.getenv("CLERK_AUDIENCE")

# JWKS cache with TTL (1 hour) and thread-safe locking
_jwks_cache: Tuple[Optional[dict], float] = (None, 0)
_jwks_lock = threading.Lock()
JWKS_CACHE_TTL_SECONDS = 3600


def _jwks_url_from_publishable_key() -> Optional[str]:
    """
    Derive the JWKS URL from the Clerk publishable key.

    Format: pk_test_<base64 frontend API host>$ or pk_live_...
    """
    clerk_pub_key = os.getenv("NEXT_PUBLIC_CLERK_PUBLISHABLE_KEY", "")
    if not (clerk_pub_key.startswith("pk_test_") or clerk_pub_key.startswith("pk_live_")):
        return None

    try:
        key_part = clerk_pub_key.split("_", 2)[2]
        padding = 4 - len(key_part) % 4
        if padding != 4:
            key_part += "=" * padding
        host = base64.b64decode(key_part).decode("utf-8").rstrip("$")
        return f"https://{host}/.well-known/jwks.json"
    except Exception as e:
        logger.error(f"Failed to parse Clerk publishable key: {e}")
        return None


def get_clerk_jwks(force_refresh: bool = False) -> dict:
    """
    Fetch and cache Clerk's JWKS (JSON Web Key Set) for token verification.

    Args:
        force_refresh: If True, bypass cache and fetch fresh keys

    Returns:
        dict: JWKS containing public keys for verification
    """
    global _jwks_cache
    cached_jwks, cache_time = _jwks_cache

    if not force_refresh and cached_jwks is not None:
        if time.time() - cache_time < JWKS_CACHE_TTL_SECONDS:
            return cached_jwks

    with _jwks_lock:
        # Another thread might have refreshed while we waited
        cached_jwks, cache_time = _jwks_cache
        if not force_refresh and cached_jwks is not None:
            if time.time() - cache_time < JWKS_CACHE_TTL_SECONDS:
                return cached_jwks

        jwks_url = CLERK_JWKS_URL or _jwks_url_from_publishable_key()
        if not jwks_url:
            logger.error("No JWKS URL configured for Clerk")
            return {"keys": []}

        try:
            response = httpx.get(jwks_url, timeout=10.0)
            response.raise_for_status()
            jwks = response.json()
            _jwks_cache = (jwks, time.time())
            logger.debug("JWKS cache refreshed successfully")
            return jwks
        except Exception as e:
            logger.error(f"Failed to fetch Clerk JWKS: {e}")
            if cached_jwks is not None:
                logger.warning("Returning stale JWKS cache due to fetch failure")
                return cached_jwks
            return {"keys": []}


def _find_key(jwks: dict, kid: str) -> Optional[dict]:
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


def verify_clerk_jwt(token: str) -> dict:
    """
    Verify a Clerk JWT token and return the claims.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
        kid = unverified_header.get("kid")

        if not kid:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token missing key ID"
            )

        rsa_key = _find_key(get_clerk_jwks(), kid)
        if not rsa_key:
            # Key not found - force refresh (handles key rotation)
            rsa_key = _find_key(get_clerk_jwks(force_refresh=True), kid)

        if not rsa_key:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unable to find appropriate key"
            )

        decode_kwargs = {"algorithms": ["RS256"]}
        options = {}

        if CLERK_AUDIENCE:
            decode_kwargs["audience"] = CLERK_AUDIENCE
        else:
            options["verify_aud"] = False

        if CLERK_ISSUER:
            decode_kwargs["issuer"] = CLERK_ISSUER

        if options:
            decode_kwargs["options"] = options

        return jwt.decode(token, rsa_key, **decode_kwargs)

    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )
    except JWKError as e:
        logger.error(f"JWK error: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token verification failed"
        )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> User:
    """
    FastAPI dependency to get the currently authenticated user.

    Raises:
        HTTPException: 401 if not authenticated, 404 if the Clerk user is not mirrored yet
    """
    token = None
    if credentials:
        token = credentials.credentials
    elif authorization and authorization.startswith("Bearer "):
        token = authorization[7:]

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"}
        )

    claims = verify_clerk_jwt(token)

    clerk_user_id = claims.get("sub")
    if not clerk_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token claims"
        )

    user = db.query(User).filter(User.id == clerk_user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return user
