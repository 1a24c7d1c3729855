"""
Content Extraction Service

Turns a submitted URL or uploaded document into plain text for quiz
generation.

Sources:
- YouTube videos: page title, thumbnail and caption transcript
- Articles: Open Graph metadata and the main semantic container
- PDF URLs (extract-url only)
- Uploaded PDF, DOCX, PowerPoint, TXT and Markdown files

Failures are raised as ``ExtractionError`` carrying a user-facing message and
the HTTP status the router should answer with. Nothing is retried.
"""

import io
import logging
import os
import re
import unicodedata
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import httpx
import lxml.etree
import lxml.html
from youtube_transcript_api import YouTubeTranscriptApi

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = httpx.Timeout(20.0, connect=10.0)

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}

# extract-url truncates page and PDF text to this many characters
MAX_CONTENT_LENGTH = 10000

YOUTUBE_ID_RE = re.compile(
    r"(?:youtu\.be/|youtube\.com(?:/embed/|/v/|/watch\?v=|/watch\?.+&v=))([\w-]{11})"
)

SUPPORTED_UPLOAD_TYPES = {
    "pdf": "pdf",
    "docx": "docx",
    "pptx": "pptx",
    "pptm": "pptx",
    "txt": "text",
    "md": "text",
}

UNSUPPORTED_FILE_MESSAGE = (
    "Unsupported file type. Please upload PDF, DOCX, TXT, MD, or PowerPoint files."
)

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_BLANK_LINES_RE = re.compile(r"\n\s*\n\s*\n+")
_WHITESPACE_RE = re.compile(r"\s+")


class ExtractionError(Exception):
    """Extraction failed; ``message`` is safe to show to the user."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class ExtractedContent:
    content: str
    title: str
    image_url: Optional[str] = None
    url: str = ""


def sanitize_text(text: str) -> str:
    """
    Normalize extracted text before it is stored or sent to a model.

    Removes control and non-printable characters (newlines and tabs are
    kept), applies NFKC normalization and collapses runs of blank lines.
    """
    if not text:
        return ""

    text = unicodedata.normalize("NFKC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS_RE.sub("", text)
    text = "".join(
        ch for ch in text
        if ch in "\n\t" or unicodedata.category(ch) not in ("Cc", "Cf", "Cs", "Co", "Cn")
    )
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def is_youtube_url(url: str) -> bool:
    return "youtube.com" in url or "youtu.be" in url


def extract_youtube_video_id(url: str) -> Optional[str]:
    match = YOUTUBE_ID_RE.search(url or "")
    return match.group(1) if match else None


# =============================================================================
# HTTP + HTML HELPERS
# =============================================================================

def _get(client: httpx.Client, url: str) -> httpx.Response:
    try:
        response = client.get(url)
        response.raise_for_status()
        return response
    except httpx.HTTPStatusError as e:
        logger.warning("Fetching %s returned %s", url, e.response.status_code)
        raise ExtractionError(
            f"Failed to fetch URL (status {e.response.status_code})", status_code=500
        )
    except httpx.HTTPError as e:
        logger.warning("Fetching %s failed: %s", url, e)
        raise ExtractionError(f"Failed to fetch URL: {e}", status_code=500)


def _parse_html(response: httpx.Response):
    data = response.content
    if not data or not data.strip():
        raise ExtractionError("The page returned no content", status_code=500)
    # Bytes input lets lxml accept pages that open with an XML declaration
    try:
        parser = lxml.html.HTMLParser(encoding=response.encoding or "utf-8")
        return lxml.html.fromstring(data, parser=parser)
    except (lxml.etree.ParserError, LookupError, ValueError) as e:
        logger.warning("Could not parse HTML from %s: %s", response.url, e)
        raise ExtractionError("Failed to parse the page content", status_code=500)


def _class_xpath(class_name: str) -> str:
    return f"//*[contains(concat(' ', normalize-space(@class), ' '), ' {class_name} ')]"


def _first_attr(doc, xpath: str) -> Optional[str]:
    values = doc.xpath(xpath)
    for value in values:
        value = str(value).strip()
        if value:
            return value
    return None


def _strip_scripts(doc) -> None:
    for node in doc.xpath("//script | //style | //noscript"):
        node.drop_tree()


def _element_text(elements: List) -> str:
    return " ".join(el.text_content() for el in elements)


def _page_title(doc) -> str:
    return collapse_whitespace(_first_attr(doc, "//title/text()") or "")


# =============================================================================
# URL EXTRACTION
# =============================================================================

def extract_from_url(
    url: str,
    client: Optional[httpx.Client] = None,
    transcript_api: Optional[YouTubeTranscriptApi] = None,
) -> ExtractedContent:
    """
    Extract text, title and preview image for a submitted URL (/api/extract).

    Raises:
        ExtractionError: On an invalid YouTube URL (400) or any fetch/parse failure (500)
    """
    if not url:
        raise ExtractionError("URL is required", status_code=400)

    owns_client = client is None
    client = client or httpx.Client(
        timeout=REQUEST_TIMEOUT, headers=HEADERS, follow_redirects=True
    )
    try:
        if is_youtube_url(url):
            return _extract_youtube(url, client, transcript_api)
        return _extract_article(url, client)
    finally:
        if owns_client:
            client.close()


def _youtube_thumbnail(video_id: str, client: httpx.Client) -> str:
    image_url = f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"
    fallback = f"https://img.youtube.com/vi/{video_id}/hqdefault.jpg"
    try:
        response = client.get(image_url)
        if response.status_code != 200:
            return fallback
    except httpx.HTTPError:
        return fallback
    return image_url


def _extract_youtube(
    url: str,
    client: httpx.Client,
    transcript_api: Optional[YouTubeTranscriptApi] = None,
) -> ExtractedContent:
    video_id = extract_youtube_video_id(url)
    if not video_id:
        raise ExtractionError("Invalid YouTube URL", status_code=400)

    response = _get(client, f"https://www.youtube.com/watch?v={video_id}")
    doc = _parse_html(response)
    title = _page_title(doc).replace("- YouTube", "").strip() or "YouTube Video"

    image_url = _youtube_thumbnail(video_id, client)

    api = transcript_api or YouTubeTranscriptApi()
    try:
        transcript = api.fetch(video_id, languages=["en"])
        content = " ".join(snippet.text for snippet in transcript)
    except Exception as e:
        logger.error("Error fetching transcript for %s: %s", video_id, e)
        raise ExtractionError("Failed to fetch YouTube transcript", status_code=500)

    return ExtractedContent(
        content=sanitize_text(content),
        title=title,
        image_url=image_url,
        url=url,
    )


def _extract_article(url: str, client: httpx.Client) -> ExtractedContent:
    response = _get(client, url)
    doc = _parse_html(response)

    title = (
        _first_attr(doc, '//meta[@property="og:title"]/@content')
        or _page_title(doc)
        or "Article"
    )

    image_url = (
        _first_attr(doc, '//meta[@property="og:image"]/@content')
        or _first_attr(doc, '//meta[@name="twitter:image"]/@content')
        or _first_attr(doc, "//article//img/@src")
        or _first_attr(doc, _class_xpath("post-content") + "//img/@src")
        or _first_attr(doc, "//img/@src")
    )

    _strip_scripts(doc)

    containers = doc.xpath(
        " | ".join([
            "//article",
            "//main",
            _class_xpath("content"),
            _class_xpath("article-content"),
            _class_xpath("post-content"),
        ])
    )
    content = collapse_whitespace(containers[0].text_content()) if containers else ""
    if not content:
        body = doc.xpath("//body")
        content = collapse_whitespace(_element_text(body) if body else doc.text_content())

    return ExtractedContent(
        content=sanitize_text(content),
        title=collapse_whitespace(title),
        image_url=image_url,
        url=url,
    )


def extract_url_for_user(url: str, client: Optional[httpx.Client] = None) -> ExtractedContent:
    """
    Extract a page or a linked PDF (/api/extract-url).

    Content is truncated to MAX_CONTENT_LENGTH characters.
    """
    if not url:
        raise ExtractionError("URL is required", status_code=400)

    owns_client = client is None
    client = client or httpx.Client(
        timeout=REQUEST_TIMEOUT, headers=HEADERS, follow_redirects=True
    )
    try:
        response = _get(client, url)

        if url.lower().endswith(".pdf"):
            content = extract_pdf_text(response.content)
            filename = os.path.basename(urlparse(url).path)
            title = filename[:-4] if filename.lower().endswith(".pdf") else filename
            title = title or "PDF Document"
        else:
            doc = _parse_html(response)
            title = _page_title(doc)
            _strip_scripts(doc)

            body = doc.xpath("//body")
            content = _element_text(body) if body else doc.text_content()

            main_content = _element_text(doc.xpath(
                "//main | //article | " + _class_xpath("content")
                + ' | //*[@id="content"] | ' + _class_xpath("main") + ' | //*[@id="main"]'
            )).strip()
            if main_content:
                content = main_content

            content = collapse_whitespace(content)
    finally:
        if owns_client:
            client.close()

    content = sanitize_text(content)
    if len(content) > MAX_CONTENT_LENGTH:
        content = content[:MAX_CONTENT_LENGTH]

    return ExtractedContent(content=content, title=title, url=url)


# =============================================================================
# DOCUMENT EXTRACTION
# =============================================================================

def extract_pdf_text(data: bytes) -> str:
    """Extract text from a PDF using pypdf."""
    import pypdf

    try:
        reader = pypdf.PdfReader(io.BytesIO(data))
        return "\n".join(page.extract_text() or "" for page in reader.pages)
    except Exception as e:
        logger.error(f"PDF extraction error: {e}")
        raise ExtractionError("Failed to extract text from PDF file")


def extract_docx_text(data: bytes) -> str:
    """Extract text from a Word document."""
    from docx import Document

    try:
        document = Document(io.BytesIO(data))
        return "\n".join(para.text for para in document.paragraphs)
    except Exception as e:
        logger.error(f"DOCX extraction error: {e}")
        raise ExtractionError("Failed to extract text from Word document")


def extract_pptx_text(data: bytes) -> str:
    """Extract text from PowerPoint slides."""
    from pptx import Presentation

    try:
        presentation = Presentation(io.BytesIO(data))
        text_parts = []
        for slide in presentation.slides:
            for shape in slide.shapes:
                if hasattr(shape, "text"):
                    text_parts.append(shape.text)
        return "\n".join(text_parts)
    except Exception as e:
        logger.error(f"PPTX extraction error: {e}")
        raise ExtractionError("Failed to extract content from PowerPoint file")


def upload_kind(filename: str) -> Optional[str]:
    """Map a file name to its extractor kind, or None when unsupported."""
    extension = os.path.splitext(filename or "")[1].lower().lstrip(".")
    return SUPPORTED_UPLOAD_TYPES.get(extension)


def extract_from_upload(filename: str, data: bytes) -> Tuple[str, str]:
    """
    Extract text from an uploaded document.

    Returns:
        (content, fallback_title) where the fallback title is the file name

    Raises:
        ExtractionError: Unsupported type (400) or unreadable file (500)
    """
    kind = upload_kind(filename)
    if kind is None:
        raise ExtractionError(UNSUPPORTED_FILE_MESSAGE, status_code=400)

    if kind == "pdf":
        content = extract_pdf_text(data)
    elif kind == "docx":
        content = extract_docx_text(data)
    elif kind == "pptx":
        content = extract_pptx_text(data)
    else:
        content = data.decode("utf-8", errors="ignore")

    return sanitize_text(content), os.path.basename(filename)
