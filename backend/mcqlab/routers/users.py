"""
Users Router

Profile of the authenticated user.
"""

from fastapi import APIRouter, Depends

from mcqlab.dependencies.auth import get_current_user
from mcqlab.models.models import User
from mcqlab.services.clerk import get_display_name

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me")
def get_me(current_user: User = Depends(get_current_user)):
    """Current user with the display name from Clerk."""
    return {
        "id": current_user.id,
        "email": current_user.email,
        "fullName": current_user.full_name,
        "displayName": get_display_name(current_user.id),
        "credits": current_user.credits or 0,
        "createdAt": current_user.created_at.isoformat() if current_user.created_at else None,
    }
