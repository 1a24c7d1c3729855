"""
LLM Provider Adapters

Each adapter wraps one inference provider behind the same capability:

    text = provider.generate(prompt, budget)

where ``budget`` is the maximum number of output tokens. Adapters own their
SDK client: it is created on first use from the adapter's own settings and
released with ``close()``. Nothing is instantiated at import time, so tests
can build adapters around fake clients.

Providers (priority order used by the default chain):
- OpenAI (``openai`` SDK)
- Together AI (``openai`` SDK against Together's OpenAI-compatible endpoint)
- Groq (``groq`` SDK)
"""

import logging
import os
from typing import Any, Dict, List, Optional

import httpx
from groq import Groq
from openai import OpenAI

logger = logging.getLogger(__name__)

# Timeout configuration: 60s total request, 10s connect
DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=10.0)

# Rough conversion used for input truncation
CHARS_PER_TOKEN = 4

TOGETHER_BASE_URL = "https://api.together.xyz/v1"

JSON_SYSTEM_PROMPT = (
    "You are a JSON generator. Always respond with valid JSON arrays only, "
    "no additional text."
)


class ProviderError(Exception):
    """Raised when a provider returns no usable content."""
    pass


def truncate_to_tokens(text: str, token_budget: int) -> str:
    """Cut text so it fits the given input token budget."""
    max_chars = token_budget * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    return text[:max_chars]


class ProviderAdapter:
    """
    Base adapter. Subclasses set ``name`` and implement ``_build_client``
    and ``_messages``.
    """

    name = "provider"
    api_key_env = ""

    def __init__(
        self,
        model: str,
        input_token_budget: int,
        api_key: Optional[str] = None,
        client: Any = None,
        temperature: float = 0.7,
    ):
        self.model = model
        self.input_token_budget = input_token_budget
        self.temperature = temperature
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            api_key = self._api_key or os.getenv(self.api_key_env)
            if not api_key:
                raise ValueError(
                    f"{self.api_key_env} environment variable is not set. "
                    f"Provider '{self.name}' is unavailable."
                )
            self._client = self._build_client(api_key)
        return self._client

    def close(self) -> None:
        """Release the underlying HTTP client."""
        if self._client is not None and hasattr(self._client, "close"):
            self._client.close()
        self._client = None

    def truncate(self, content: str) -> str:
        return truncate_to_tokens(content, self.input_token_budget)

    def generate(self, prompt: str, budget: int, system: Optional[str] = None) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=self._messages(prompt, system),
            max_tokens=budget,
            **self._extra_params(),
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProviderError(f"No response from {self.name}")
        return content

    def _build_client(self, api_key: str) -> Any:
        raise NotImplementedError

    def _messages(self, prompt: str, system: Optional[str] = None) -> List[Dict[str, str]]:
        return [{"role": "user", "content": prompt}]

    def _extra_params(self) -> Dict[str, Any]:
        return {"temperature": self.temperature}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} model={self.model!r}>"


class OpenAIProvider(ProviderAdapter):
    name = "openai"
    api_key_env = "OPENAI_API_KEY"

    def __init__(self, model: Optional[str] = None, input_token_budget: int = 12000, **kwargs):
        super().__init__(
            model=model or os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            input_token_budget=input_token_budget,
            temperature=0.8,
            **kwargs,
        )

    def _build_client(self, api_key: str) -> OpenAI:
        return OpenAI(api_key=api_key, timeout=DEFAULT_TIMEOUT)


class TogetherProvider(ProviderAdapter):
    name = "together"
    api_key_env = "TOGETHER_API_KEY"

    def __init__(self, model: Optional[str] = None, input_token_budget: int = 6000, **kwargs):
        super().__init__(
            model=model or os.getenv("TOGETHER_MODEL", "meta-llama/Llama-3.3-70B-Instruct-Turbo"),
            input_token_budget=input_token_budget,
            temperature=0.7,
            **kwargs,
        )

    def _build_client(self, api_key: str) -> OpenAI:
        return OpenAI(api_key=api_key, base_url=TOGETHER_BASE_URL, timeout=DEFAULT_TIMEOUT)

    def _messages(self, prompt: str, system: Optional[str] = None) -> List[Dict[str, str]]:
        # Together's Llama models drift into prose without a system turn
        return [
            {"role": "system", "content": system or "You are a helpful study assistant."},
            {"role": "user", "content": prompt},
        ]

    def _extra_params(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "top_p": 0.7,
            "stop": ["<|eot_id|>", "<|eom_id|>"],
        }


class GroqProvider(ProviderAdapter):
    name = "groq"
    api_key_env = "GROQ_API_KEY"

    def __init__(self, model: Optional[str] = None, input_token_budget: int = 5000, **kwargs):
        super().__init__(
            model=model or os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile"),
            input_token_budget=input_token_budget,
            temperature=1.0,
            **kwargs,
        )

    def _build_client(self, api_key: str) -> Groq:
        return Groq(api_key=api_key, timeout=DEFAULT_TIMEOUT)

    def _extra_params(self) -> Dict[str, Any]:
        return {"temperature": self.temperature, "top_p": 1, "stream": False}
