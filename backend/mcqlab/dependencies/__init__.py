"""
FastAPI Dependencies for MCQ Lab
"""

from mcqlab.dependencies.auth import (
    get_current_user,
    verify_clerk_jwt,
)

__all__ = [
    "get_current_user",
    "verify_clerk_jwt",
]
