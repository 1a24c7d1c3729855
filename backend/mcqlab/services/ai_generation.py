"""
AI Generation Service

Generates quiz questions, study tutorials and titles from extracted text.

Every task runs through a ``GenerationChain``: an ordered list of provider
adapters tried with first-success semantics. A provider fails when its call
raises or when its output cannot be parsed for the task; the chain then moves
to the next provider. There are no retries against the same provider. When
every provider fails, ``GenerationError`` is raised with all collected
failures.

Usage:
    from mcqlab.services.ai_generation import get_generation_chain, generate_mcqs

    chain = get_generation_chain()
    questions = generate_mcqs(chain, content)
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

import sentry_sdk

from mcqlab.services.ai_providers import (
    JSON_SYSTEM_PROMPT,
    GroqProvider,
    OpenAIProvider,
    ProviderAdapter,
    TogetherProvider,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

QUESTIONS_PER_QUIZ = 20

# Output token budgets per task
MCQ_OUTPUT_TOKENS = 4096
TUTORIAL_OUTPUT_TOKENS = 2048
TITLE_OUTPUT_TOKENS = 30

MCQ_PROMPT = """Generate exactly {count} multiple choice questions in JSON format based on this content: {content}

Return ONLY a JSON array with this exact structure:
[
  {{
    "question": "What is...",
    "correct_answer": "The correct answer",
    "options": ["Option 1", "The correct answer", "Option 3", "Option 4"]
  }}
]

Requirements:
1. Return ONLY the JSON array, no other text
2. Each question must have exactly 4 options
3. The correct_answer must be included in the options array
4. Generate exactly {count} questions"""

TUTORIAL_PROMPT = """Write a study tutorial in Markdown for a learner who has just read the content below.

Requirements:
1. Between 200 and 1000 words
2. Start with a level-one heading naming the topic
3. Explain the key concepts in order, with short sections and bullet points
4. End with a "Key Takeaways" section
5. Return only the Markdown, no code fences

Content:
{content}"""

TITLE_PROMPT = """Write a short, descriptive title (at most 10 words) for the following content.
Return only the title, without quotes.

Content:
{content}"""

_CODE_FENCE_RE = re.compile(r"```(?:json|markdown|md)?\s*", re.IGNORECASE)
_LEADING_PROSE_RE = re.compile(r"^[^\[]*?(?=\[)", re.DOTALL)
_TRAILING_PROSE_RE = re.compile(r"\][^\]]*$", re.DOTALL)
_JSON_ARRAY_RE = re.compile(r'\[\s*{\s*".*}\s*\]', re.DOTALL)


class GenerationError(Exception):
    """Raised when every provider in the chain failed."""

    def __init__(self, message: str, failures: Optional[List["ProviderFailure"]] = None):
        super().__init__(message)
        self.failures = failures or []

    def summary(self) -> str:
        return "; ".join(f"{f.provider}: {f.error}" for f in self.failures)


@dataclass
class ProviderFailure:
    provider: str
    error: str


@dataclass
class GeneratedMCQ:
    question: str
    correct_answer: str
    options: List[str] = field(default_factory=list)


class GenerationChain:
    """
    Invoke a capability through providers in priority order, returning the
    first success.
    """

    def __init__(self, providers: Sequence[ProviderAdapter]):
        if not providers:
            raise ValueError("GenerationChain needs at least one provider")
        self.providers = list(providers)

    def run(
        self,
        task: str,
        content: str,
        build_prompt: Callable[[str], str],
        parse: Callable[[str], T],
        budget: int,
        system: Optional[str] = None,
    ) -> T:
        failures: List[ProviderFailure] = []

        for provider in self.providers:
            prompt = build_prompt(provider.truncate(content))
            try:
                raw = provider.generate(prompt, budget, system=system)
                result = parse(raw)
            except Exception as e:
                logger.warning(
                    "Provider %s failed for task=%s: %s", provider.name, task, e
                )
                failures.append(ProviderFailure(provider=provider.name, error=str(e)))
                continue

            if failures:
                logger.info(
                    "Task %s succeeded with fallback provider %s after %d failure(s)",
                    task, provider.name, len(failures)
                )
            return result

        error = GenerationError(
            f"All AI providers failed to complete '{task}'.", failures
        )
        logger.error("%s %s", error, error.summary())
        sentry_sdk.capture_exception(error)
        raise error

    def close(self) -> None:
        for provider in self.providers:
            provider.close()


# =============================================================================
# RESPONSE PARSING
# =============================================================================

def clean_json_response(text: str) -> str:
    """Strip code fences plus leading and trailing prose around a JSON array."""
    cleaned = _CODE_FENCE_RE.sub("", text)
    cleaned = cleaned.replace("```", "")
    cleaned = _LEADING_PROSE_RE.sub("", cleaned, count=1)
    cleaned = _TRAILING_PROSE_RE.sub("]", cleaned, count=1)
    return cleaned.strip()


def parse_mcq_response(text: str) -> List[Dict[str, Any]]:
    """
    Parse a provider response into a list of question dicts.

    Raises:
        ValueError: If no JSON array of questions can be recovered
    """
    cleaned = clean_json_response(text)

    try:
        questions = json.loads(cleaned)
        if not isinstance(questions, list) or not questions:
            raise ValueError("Not a valid questions array")
        return questions
    except ValueError as parse_error:
        logger.debug("JSON parse error, trying array extraction: %s", parse_error)

    match = _JSON_ARRAY_RE.search(cleaned)
    if not match:
        raise ValueError("Could not find valid JSON array in response")

    questions = json.loads(match.group(0))
    if not isinstance(questions, list) or not questions:
        raise ValueError("Not a valid questions array")
    return questions


def _to_generated_mcqs(items: List[Dict[str, Any]]) -> List[GeneratedMCQ]:
    mcqs = []
    for item in items:
        if not isinstance(item, dict) or "question" not in item:
            raise ValueError(f"Malformed question entry: {item!r}")
        mcqs.append(GeneratedMCQ(
            question=str(item["question"]),
            correct_answer=str(item.get("correct_answer", "")),
            options=[str(o) for o in item.get("options") or []],
        ))
    return mcqs


def to_mcq_fields(mcq: GeneratedMCQ) -> Dict[str, Any]:
    """
    Map a generated question onto MCQ columns.

    correct_option is the 1-based position of correct_answer among the
    first four options, the only ones stored.
    An answer missing from the options yields 0 and is stored as-is.
    """
    options = (mcq.options + ["", "", "", ""])[:4]
    try:
        correct_index = mcq.options[:4].index(mcq.correct_answer)
    except ValueError:
        correct_index = -1
        logger.warning("Generated answer not found in options for question: %.80s", mcq.question)

    return {
        "question": mcq.question,
        "option_a": options[0],
        "option_b": options[1],
        "option_c": options[2],
        "option_d": options[3],
        "correct_option": correct_index + 1,
    }


def _clean_markdown(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _CODE_FENCE_RE.sub("", cleaned, count=1)
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    cleaned = cleaned.strip()
    if not cleaned:
        raise ValueError("Empty tutorial")
    return cleaned


def _clean_title(text: str) -> str:
    title = text.strip().splitlines()[0] if text.strip() else ""
    title = title.strip().strip('"\'').strip()
    title = re.sub(r"^#+\s*", "", title)
    if not title:
        raise ValueError("Empty title")
    return title[:200]


# =============================================================================
# TASKS
# =============================================================================

def generate_mcqs(chain: GenerationChain, content: str) -> List[GeneratedMCQ]:
    """Generate the quiz questions for a piece of content."""
    return chain.run(
        task="mcqs",
        content=content,
        build_prompt=lambda text: MCQ_PROMPT.format(count=QUESTIONS_PER_QUIZ, content=text),
        parse=lambda raw: _to_generated_mcqs(parse_mcq_response(raw)),
        budget=MCQ_OUTPUT_TOKENS,
        system=JSON_SYSTEM_PROMPT,
    )


def generate_tutorial(chain: GenerationChain, content: str) -> str:
    """Generate a markdown study tutorial."""
    return chain.run(
        task="tutorial",
        content=content,
        build_prompt=lambda text: TUTORIAL_PROMPT.format(content=text),
        parse=_clean_markdown,
        budget=TUTORIAL_OUTPUT_TOKENS,
    )


def generate_title(chain: GenerationChain, content: str) -> str:
    """Generate a short title for uploaded documents."""
    return chain.run(
        task="title",
        content=content[:4000],
        build_prompt=lambda text: TITLE_PROMPT.format(content=text),
        parse=_clean_title,
        budget=TITLE_OUTPUT_TOKENS,
    )


# =============================================================================
# CHAIN LIFECYCLE
# =============================================================================

_chain: Optional[GenerationChain] = None


def build_default_chain() -> GenerationChain:
    """OpenAI first, then Together AI, then Groq."""
    return GenerationChain([OpenAIProvider(), TogetherProvider(), GroqProvider()])


def get_generation_chain() -> GenerationChain:
    """
    FastAPI dependency returning the process-wide chain.

    Provider clients are only created when a provider is first called, so
    missing API keys surface as provider failures rather than import errors.
    """
    global _chain
    if _chain is None:
        _chain = build_default_chain()
    return _chain


def reset_generation_chain() -> None:
    """Close and drop the chain (tests, or after rotating API keys)."""
    global _chain
    if _chain is not None:
        _chain.close()
    _chain = None
