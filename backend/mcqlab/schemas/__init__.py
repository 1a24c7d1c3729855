"""
MCQ Lab Schemas Package

Pydantic models for request validation.
"""

from mcqlab.schemas.requests import (
    ExtractRequest,
    ExtractUrlRequest,
    SubmissionRequest,
    AttemptRequest,
    CheckoutRequest,
)

__all__ = [
    "ExtractRequest",
    "ExtractUrlRequest",
    "SubmissionRequest",
    "AttemptRequest",
    "CheckoutRequest",
]
