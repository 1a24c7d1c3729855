# Services module

# Quiz, tutorial and title generation
from mcqlab.services.ai_generation import (
    GenerationChain,
    GenerationError,
    GeneratedMCQ,
    generate_mcqs,
    generate_tutorial,
    generate_title,
    get_generation_chain,
)

# Content extraction
from mcqlab.services.content_extraction import (
    ExtractedContent,
    ExtractionError,
    extract_from_url,
    extract_url_for_user,
    extract_from_upload,
)

# Entitlements
from mcqlab.services.entitlements import (
    SubmissionCheck,
    EntitlementError,
    check_user_limits,
    enforce_submission_limits,
    record_submission,
)

# Submission saga
from mcqlab.services.submission import (
    SubmissionSaga,
    SubmissionError,
    SubmissionResult,
)

__all__ = [
    # Generation
    "GenerationChain",
    "GenerationError",
    "GeneratedMCQ",
    "generate_mcqs",
    "generate_tutorial",
    "generate_title",
    "get_generation_chain",
    # Extraction
    "ExtractedContent",
    "ExtractionError",
    "extract_from_url",
    "extract_url_for_user",
    "extract_from_upload",
    # Entitlements
    "SubmissionCheck",
    "EntitlementError",
    "check_user_limits",
    "enforce_submission_limits",
    "record_submission",
    # Submission
    "SubmissionSaga",
    "SubmissionError",
    "SubmissionResult",
]
