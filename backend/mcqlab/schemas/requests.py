"""
Request schemas for MCQ Lab

Field aliases match the camelCase JSON sent by the web client.
"""

from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExtractRequest(BaseModel):
    url: Optional[str] = None


class ExtractUrlRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")


class SubmissionRequest(BaseModel):
    """
    A resource submission.

    Either ``content`` (already extracted or pasted text) or ``url`` is
    required. Without content the URL is extracted server-side.
    """
    model_config = ConfigDict(populate_by_name=True)

    url: Optional[str] = None
    content: Optional[str] = None
    title: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    type: Optional[Literal["youtube", "article", "document"]] = None

    @field_validator("url", "content", "title")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class AttemptRequest(BaseModel):
    """Answers keyed by MCQ id; values are the chosen option number (1-4)."""
    answers: Dict[str, int]


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    name: Optional[str] = None
    email: Optional[str] = None
    price_id: Optional[str] = Field(default=None, alias="priceId")
