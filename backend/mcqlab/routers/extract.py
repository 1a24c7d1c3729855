"""
Content Extraction Router

Endpoints that turn a URL or uploaded document into text before submission:
- POST /api/extract      - article or YouTube URL -> content, title, image
- POST /api/extract-url  - web page or PDF URL -> title, content (10k chars)
- POST /api/upload       - PDF, DOCX, PowerPoint, TXT or MD file -> content, title

Handlers are plain functions so FastAPI runs the blocking HTTP, parsing and
LLM calls in its threadpool.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from mcqlab.schemas.requests import ExtractRequest, ExtractUrlRequest
from mcqlab.services.ai_generation import GenerationChain, GenerationError, generate_title, get_generation_chain
from mcqlab.services.content_extraction import (
    ExtractionError,
    extract_from_upload,
    extract_from_url,
    extract_url_for_user,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["extract"])

# Maximum upload size (10MB)
MAX_FILE_SIZE = 10 * 1024 * 1024


@router.post("/extract")
def extract(request: ExtractRequest):
    """Extract text, title and preview image from an article or YouTube URL."""
    if not request.url:
        raise HTTPException(status_code=400, detail="URL is required")

    try:
        extracted = extract_from_url(request.url)
    except ExtractionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {
        "content": extracted.content,
        "title": extracted.title,
        "imageUrl": extracted.image_url,
    }


@router.post("/extract-url")
def extract_url(request: ExtractUrlRequest):
    """Extract a web page or a linked PDF, truncated to 10,000 characters."""
    if not request.url:
        raise HTTPException(status_code=400, detail="URL is required")
    if not request.user_id:
        raise HTTPException(status_code=400, detail="User ID is required")

    try:
        extracted = extract_url_for_user(request.url)
    except ExtractionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {
        "title": extracted.title,
        "content": extracted.content,
        "url": request.url,
    }


@router.post("/upload")
def upload(
    file: Optional[UploadFile] = File(None),
    user_id: Optional[str] = Form(None, alias="userId"),
    chain: GenerationChain = Depends(get_generation_chain),
):
    """
    Extract text from an uploaded document.

    The title is generated from the content; the file name is used when
    every provider fails.
    """
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")

    data = file.file.read(MAX_FILE_SIZE + 1)
    if len(data) > MAX_FILE_SIZE:
        raise HTTPException(status_code=400, detail="File too large. Maximum size is 10MB.")

    try:
        content, title = extract_from_upload(file.filename, data)
    except ExtractionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    if content:
        try:
            title = generate_title(chain, content)
        except GenerationError:
            logger.warning(f"Title generation failed for upload '{file.filename}', using file name")

    return {
        "content": content,
        "title": title,
        "userId": user_id,
    }
