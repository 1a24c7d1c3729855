"""
Mock infrastructure for MCQ Lab testing.
Provides deterministic mocks for LLM providers and their SDK responses.
"""

from .llm_mocks import (
    MOCK_MCQS,
    MOCK_MCQ_RESPONSE,
    MOCK_FENCED_MCQ_RESPONSE,
    MOCK_TUTORIAL,
    MOCK_TITLE,
    MOCK_ARTICLE_TEXT,
    MockChatCompletion,
    FakeProvider,
    build_fake_chain,
    make_mock_mcqs,
    mock_completion,
    respond_by_task,
)

__all__ = [
    "MOCK_MCQS",
    "MOCK_MCQ_RESPONSE",
    "MOCK_FENCED_MCQ_RESPONSE",
    "MOCK_TUTORIAL",
    "MOCK_TITLE",
    "MOCK_ARTICLE_TEXT",
    "MockChatCompletion",
    "FakeProvider",
    "build_fake_chain",
    "make_mock_mcqs",
    "mock_completion",
    "respond_by_task",
]
