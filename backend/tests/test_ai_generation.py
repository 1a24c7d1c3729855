"""
Tests for the AI generation fallback chain, provider adapters and response parsing.
"""

import json
import logging
import pytest
from unittest.mock import MagicMock, patch

from mcqlab.services.ai_generation import (
    GeneratedMCQ,
    GenerationChain,
    GenerationError,
    MCQ_OUTPUT_TOKENS,
    QUESTIONS_PER_QUIZ,
    build_default_chain,
    clean_json_response,
    generate_mcqs,
    generate_title,
    generate_tutorial,
    get_generation_chain,
    parse_mcq_response,
    reset_generation_chain,
    to_mcq_fields,
)
from mcqlab.services.ai_providers import (
    JSON_SYSTEM_PROMPT,
    GroqProvider,
    OpenAIProvider,
    ProviderError,
    TogetherProvider,
    truncate_to_tokens,
)

from tests.mocks import (
    MOCK_FENCED_MCQ_RESPONSE,
    MOCK_MCQ_RESPONSE,
    MOCK_MCQS,
    MOCK_TITLE,
    MOCK_TUTORIAL,
    FakeProvider,
    mock_completion,
)


class TestParseMCQResponse:
    """Tests for provider response cleanup and JSON parsing"""

    @pytest.mark.unit
    def test_plain_json_array(self):
        questions = parse_mcq_response(MOCK_MCQ_RESPONSE)
        assert len(questions) == 20
        assert questions[0]["question"] == MOCK_MCQS[0]["question"]

    @pytest.mark.unit
    def test_code_fences_and_prose_are_stripped(self):
        questions = parse_mcq_response(MOCK_FENCED_MCQ_RESPONSE)
        assert len(questions) == 3
        assert questions[2]["correct_answer"] == "Answer 2"

    @pytest.mark.unit
    def test_clean_json_response_keeps_only_the_array(self):
        cleaned = clean_json_response('Here you go: [{"a": 1}] Hope this helps.')
        assert cleaned == '[{"a": 1}]'

    @pytest.mark.unit
    def test_falls_back_to_array_extraction(self):
        # The trailing bracket text breaks the first parse but the regex finds the array
        text = '[{"question": "Q?", "correct_answer": "A", "options": ["A","B","C","D"]}] [notes]'
        questions = parse_mcq_response(text)
        assert questions[0]["question"] == "Q?"

    @pytest.mark.unit
    def test_no_array_raises(self):
        with pytest.raises(ValueError):
            parse_mcq_response("I cannot help with that.")

    @pytest.mark.unit
    def test_empty_array_raises(self):
        with pytest.raises(ValueError):
            parse_mcq_response("[]")


class TestToMCQFields:
    """Tests for mapping generated questions onto MCQ columns"""

    @pytest.mark.unit
    def test_correct_option_is_one_based(self):
        mcq = GeneratedMCQ(question="Q?", correct_answer="B", options=["A", "B", "C", "D"])
        fields = to_mcq_fields(mcq)
        assert fields["correct_option"] == 2
        assert fields["option_a"] == "A"
        assert fields["option_d"] == "D"

    @pytest.mark.unit
    def test_answer_missing_from_options_yields_zero(self):
        mcq = GeneratedMCQ(question="Q?", correct_answer="E", options=["A", "B", "C", "D"])
        assert to_mcq_fields(mcq)["correct_option"] == 0

    @pytest.mark.unit
    def test_answer_beyond_stored_options_yields_zero(self, caplog):
        mcq = GeneratedMCQ(question="Q?", correct_answer="E", options=["A", "B", "C", "D", "E"])
        with caplog.at_level(logging.WARNING, logger="mcqlab.services.ai_generation"):
            assert to_mcq_fields(mcq)["correct_option"] == 0
        assert "not found in options" in caplog.text

    @pytest.mark.unit
    def test_short_option_list_is_padded(self):
        mcq = GeneratedMCQ(question="Q?", correct_answer="A", options=["A", "B"])
        fields = to_mcq_fields(mcq)
        assert fields["option_c"] == ""
        assert fields["option_d"] == ""
        assert fields["correct_option"] == 1


class TestGenerationChain:
    """Tests for ordered fallback with first-success semantics"""

    @pytest.mark.unit
    def test_first_success_wins(self):
        first = FakeProvider("first", [MOCK_MCQ_RESPONSE])
        second = FakeProvider("second", [MOCK_MCQ_RESPONSE])
        chain = GenerationChain([first, second])

        mcqs = generate_mcqs(chain, "content")

        assert len(mcqs) == QUESTIONS_PER_QUIZ
        assert first.call_count == 1
        assert second.call_count == 0

    @pytest.mark.unit
    def test_falls_back_in_priority_order(self):
        first = FakeProvider("openai", [RuntimeError("rate limited")])
        second = FakeProvider("together", ["not json at all"])
        third = FakeProvider("groq", [MOCK_MCQ_RESPONSE])
        chain = GenerationChain([first, second, third])

        mcqs = generate_mcqs(chain, "content")

        assert len(mcqs) == 20
        assert [p.call_count for p in (first, second, third)] == [1, 1, 1]

    @pytest.mark.unit
    def test_all_failures_are_collected(self):
        providers = [
            FakeProvider("openai", [RuntimeError("timeout")]),
            FakeProvider("together", [ProviderError("No response from together")]),
            FakeProvider("groq", ["[]"]),
        ]
        chain = GenerationChain(providers)

        with patch("mcqlab.services.ai_generation.sentry_sdk") as sentry:
            with pytest.raises(GenerationError) as exc_info:
                generate_mcqs(chain, "content")

        failures = exc_info.value.failures
        assert [f.provider for f in failures] == ["openai", "together", "groq"]
        assert failures[0].error == "timeout"
        sentry.capture_exception.assert_called_once()

    @pytest.mark.unit
    def test_no_retry_against_same_provider(self):
        only = FakeProvider("only", [RuntimeError("boom"), MOCK_MCQ_RESPONSE])
        chain = GenerationChain([only])

        with pytest.raises(GenerationError):
            generate_mcqs(chain, "content")
        assert only.call_count == 1

    @pytest.mark.unit
    def test_content_truncated_to_each_provider_budget(self):
        small = FakeProvider("small", [RuntimeError("fail")], input_token_budget=10)
        large = FakeProvider("large", [MOCK_MCQ_RESPONSE], input_token_budget=1000)
        chain = GenerationChain([small, large])

        generate_mcqs(chain, "x" * 2000)

        assert "x" * 40 in small.prompts[0]
        assert "x" * 41 not in small.prompts[0]
        assert "x" * 2000 in large.prompts[0]

    @pytest.mark.unit
    def test_mcq_task_sends_json_system_prompt_and_budget(self):
        provider = FakeProvider("p", [MOCK_MCQ_RESPONSE])
        generate_mcqs(GenerationChain([provider]), "content")
        assert provider.systems[0] == JSON_SYSTEM_PROMPT
        assert provider.budgets[0] == MCQ_OUTPUT_TOKENS
        assert "exactly 20 multiple choice questions" in provider.prompts[0]

    @pytest.mark.unit
    def test_empty_chain_rejected(self):
        with pytest.raises(ValueError):
            GenerationChain([])


class TestTutorialAndTitle:

    @pytest.mark.unit
    def test_tutorial_fences_stripped(self):
        provider = FakeProvider("p", ["```markdown\n" + MOCK_TUTORIAL + "\n```"])
        tutorial = generate_tutorial(GenerationChain([provider]), "content")
        assert tutorial.startswith("# Photosynthesis")
        assert "```" not in tutorial

    @pytest.mark.unit
    def test_empty_tutorial_falls_back(self):
        first = FakeProvider("first", ["   "])
        second = FakeProvider("second", [MOCK_TUTORIAL])
        tutorial = generate_tutorial(GenerationChain([first, second]), "content")
        assert tutorial == MOCK_TUTORIAL.strip()

    @pytest.mark.unit
    def test_title_quotes_stripped(self):
        provider = FakeProvider("p", [f'"{MOCK_TITLE}"\n'])
        assert generate_title(GenerationChain([provider]), "content") == MOCK_TITLE


class TestProviderAdapters:
    """Tests for adapters against mocked SDK clients"""

    @pytest.mark.unit
    def test_truncate_to_tokens(self):
        assert truncate_to_tokens("abcdefgh", 1) == "abcd"
        assert truncate_to_tokens("abc", 1) == "abc"

    @pytest.mark.unit
    def test_openai_sends_user_message_only(self):
        client = MagicMock()
        client.chat.completions.create.return_value = mock_completion("hello")
        provider = OpenAIProvider(model="gpt-test", client=client)

        assert provider.generate("prompt", 100, system=JSON_SYSTEM_PROMPT) == "hello"

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
        assert kwargs["max_tokens"] == 100

    @pytest.mark.unit
    def test_together_sends_system_message_and_stop_tokens(self):
        client = MagicMock()
        client.chat.completions.create.return_value = mock_completion("[]")
        provider = TogetherProvider(client=client)

        provider.generate("prompt", 50, system=JSON_SYSTEM_PROMPT)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": JSON_SYSTEM_PROMPT}
        assert kwargs["messages"][1]["content"] == "prompt"
        assert kwargs["stop"] == ["<|eot_id|>", "<|eom_id|>"]

    @pytest.mark.unit
    def test_groq_disables_streaming(self):
        client = MagicMock()
        client.chat.completions.create.return_value = mock_completion("ok")
        GroqProvider(client=client).generate("prompt", 10)
        assert client.chat.completions.create.call_args.kwargs["stream"] is False

    @pytest.mark.unit
    def test_empty_content_raises_provider_error(self):
        client = MagicMock()
        client.chat.completions.create.return_value = mock_completion(None)
        with pytest.raises(ProviderError):
            OpenAIProvider(client=client).generate("prompt", 10)

    @pytest.mark.unit
    def test_missing_api_key_fails_on_first_use(self, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        provider = GroqProvider()
        with pytest.raises(ValueError, match="GROQ_API_KEY"):
            provider.generate("prompt", 10)

    @pytest.mark.unit
    def test_close_releases_client(self):
        client = MagicMock()
        provider = OpenAIProvider(client=client)
        provider.close()
        client.close.assert_called_once()
        assert provider._client is None


class TestChainLifecycle:

    @pytest.mark.unit
    def test_default_chain_order(self):
        chain = build_default_chain()
        assert [p.name for p in chain.providers] == ["openai", "together", "groq"]

    @pytest.mark.unit
    def test_get_generation_chain_is_cached_until_reset(self):
        reset_generation_chain()
        first = get_generation_chain()
        assert get_generation_chain() is first
        reset_generation_chain()
        assert get_generation_chain() is not first
        reset_generation_chain()

    @pytest.mark.unit
    def test_parsed_questions_round_trip_through_json(self):
        provider = FakeProvider("p", [json.dumps(MOCK_MCQS[:1])])
        mcqs = generate_mcqs(GenerationChain([provider]), "content")
        assert mcqs[0].options == MOCK_MCQS[0]["options"]
