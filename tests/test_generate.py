"""Tests for policyrag.generate: prompts, language models and the answer generator."""

from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING
from unittest.mock import patch
from urllib.error import HTTPError, URLError

import pytest

from policyrag.chunk import estimate_tokens
from policyrag.config import PolicyRagConfig
from policyrag.exceptions import (
    GenerationError,
    InvalidRequestError,
    LLMTimeoutError,
    RateLimitError,
    ServiceUnavailableError,
    ValidationError,
)
from policyrag.generate import (
    AnswerGenerator,
    BaseLanguageModel,
    FallbackLanguageModel,
    GenerationOptions,
    OpenAICompatLanguageModel,
    build_prompt,
    create_language_model,
)
from policyrag.generate.fallback import DISCLAIMER
from policyrag.generate.prompts import NO_CONTEXT_PLACEHOLDER
from policyrag.types import QueryFilters, RetrievalResult

if TYPE_CHECKING:
    from collections.abc import Sequence

# --- Mock implementations ---


class ScriptedModel(BaseLanguageModel):
    """Raises the scripted errors in order, then answers."""

    def __init__(self, errors: Sequence[BaseException] = (), answer: str = "Antwort") -> None:
        self.errors = list(errors)
        self.answer = answer
        self.prompts: list[str] = []

    @property
    def model_name(self) -> str:
        return "scripted"

    def generate(
        self,
        prompt: str,
        options: GenerationOptions,
        *,
        question: str = "",
        context: Sequence[RetrievalResult] = (),
    ) -> str:
        self.prompts.append(prompt)
        if self.errors:
            raise self.errors.pop(0)
        return self.answer


# --- Helpers ---


def _context() -> list[RetrievalResult]:
    return [
        RetrievalResult(
            chunk_id="ref_bgb_433",
            text="Durch den Kaufvertrag wird der Verkäufer einer Sache verpflichtet.",
            similarity=0.9,
            metadata={
                "law_code": "BGB",
                "paragraph_number": "§ 433",
                "title": "Kaufvertrag",
                "category": "zivilrecht",
            },
        ),
        RetrievalResult(
            chunk_id="avb_1",
            text="Der Versicherer ersetzt den Schaden.",
            similarity=0.6,
            metadata={"title": "AVB Hausrat"},
        ),
    ]


def _make_config(base_url: str = "http://localhost:8000/v1") -> PolicyRagConfig:
    config = PolicyRagConfig()
    config.llm.base_url = base_url
    config.llm.api_key_env = ""
    return config


def _chat_response(content: object) -> bytes:
    return json.dumps({"choices": [{"message": {"role": "assistant", "content": content}}]}).encode(
        "utf-8"
    )


class _FakeResponse:
    """Minimal mock for urllib.request.urlopen return value."""

    def __init__(self, data: bytes) -> None:
        self._data = data

    def read(self) -> bytes:
        return self._data

    def __enter__(self) -> _FakeResponse:
        return self

    def __exit__(self, *args: object) -> None:
        pass


def _http_error(code: int) -> HTTPError:
    return HTTPError("http://localhost", code, "error", {}, None)  # type: ignore[arg-type]


# --- Prompt ---


class TestBuildPrompt:
    def test_pure(self):
        context = _context()
        filters = QueryFilters(category="zivilrecht")
        assert build_prompt("Frage?", context, filters) == build_prompt("Frage?", context, filters)

    def test_numbered_entries_with_sources(self):
        prompt = build_prompt("Was regelt § 433 BGB?", _context())
        assert "--- Text 1 ---\nQuelle: BGB § 433 - Kaufvertrag (zivilrecht)" in prompt
        assert "--- Text 2 ---\nQuelle: AVB Hausrat" in prompt
        assert prompt.index("Text 1") < prompt.index("Text 2")

    def test_question_verbatim(self):
        question = "Muss ich  den Schaden  sofort melden?"
        assert f"Frage: {question}" in build_prompt(question, _context())

    def test_filters_listed(self):
        prompt = build_prompt("Frage?", [], QueryFilters(category="kfz", source="avb"))
        assert "Kategorie: kfz" in prompt
        assert "Quelle: avb" in prompt

    def test_empty_context_placeholder(self):
        assert NO_CONTEXT_PLACEHOLDER in build_prompt("Frage?", [])


# --- OpenAI-compatible model ---


class TestOpenAICompatLanguageModel:
    def test_returns_content(self):
        model = OpenAICompatLanguageModel(_make_config())
        captured = {}

        def mock_urlopen(req, **kwargs):
            captured["url"] = req.full_url
            captured["body"] = json.loads(req.data)
            captured["timeout"] = kwargs.get("timeout")
            return _FakeResponse(_chat_response("Die Antwort."))

        with patch("policyrag.generate.openai_compat.urlopen", side_effect=mock_urlopen):
            answer = model.generate("Prompt", GenerationOptions(temperature=0.2, timeout_s=5.0))

        assert answer == "Die Antwort."
        assert captured["url"] == "http://localhost:8000/v1/chat/completions"
        assert captured["body"]["messages"] == [{"role": "user", "content": "Prompt"}]
        assert captured["body"]["temperature"] == 0.2
        assert captured["timeout"] == 5.0

    @pytest.mark.parametrize(
        ("code", "error"),
        [
            (429, RateLimitError),
            (408, LLMTimeoutError),
            (500, ServiceUnavailableError),
            (503, ServiceUnavailableError),
            (400, InvalidRequestError),
            (401, InvalidRequestError),
        ],
    )
    def test_http_error_mapping(self, code: int, error: type[Exception]):
        model = OpenAICompatLanguageModel(_make_config())
        with (
            patch("policyrag.generate.openai_compat.urlopen", side_effect=_http_error(code)),
            pytest.raises(error),
        ):
            model.generate("Prompt", GenerationOptions())

    def test_socket_timeout(self):
        model = OpenAICompatLanguageModel(_make_config())
        with (
            patch("policyrag.generate.openai_compat.urlopen", side_effect=TimeoutError()),
            pytest.raises(LLMTimeoutError),
        ):
            model.generate("Prompt", GenerationOptions())

    def test_connection_refused(self):
        model = OpenAICompatLanguageModel(_make_config())
        with (
            patch("policyrag.generate.openai_compat.urlopen", side_effect=URLError("refused")),
            pytest.raises(ServiceUnavailableError, match="not reachable"),
        ):
            model.generate("Prompt", GenerationOptions())

    def test_empty_completion(self):
        model = OpenAICompatLanguageModel(_make_config())
        with (
            patch(
                "policyrag.generate.openai_compat.urlopen",
                return_value=_FakeResponse(_chat_response("  ")),
            ),
            pytest.raises(GenerationError, match="Empty completion"),
        ):
            model.generate("Prompt", GenerationOptions())

    def test_malformed_response(self):
        model = OpenAICompatLanguageModel(_make_config())
        with (
            patch(
                "policyrag.generate.openai_compat.urlopen",
                return_value=_FakeResponse(b'{"choices": []}'),
            ),
            pytest.raises(GenerationError, match="Unexpected response format"),
        ):
            model.generate("Prompt", GenerationOptions())


# --- Fallback model ---


class TestFallbackLanguageModel:
    def test_quotes_best_context(self):
        answer = FallbackLanguageModel().generate(
            "Was regelt § 433 BGB?",
            GenerationOptions(),
            question="Was regelt § 433?",
            context=_context(),
        )
        assert "## BGB § 433 - Kaufvertrag (zivilrecht)" in answer
        assert "Durch den Kaufvertrag" in answer
        assert "die Pflichten der beteiligten Parteien." in answer
        assert "#### 2. AVB Hausrat" in answer
        assert DISCLAIMER in answer

    def test_no_context_with_paragraph_reference(self):
        answer = FallbackLanguageModel().generate(
            "prompt", GenerationOptions(), question="Was steht in § 999 BGB?"
        )
        assert answer.startswith("Zu der angefragten Vorschrift")

    def test_no_context_general_question(self):
        answer = FallbackLanguageModel().generate(
            "prompt", GenerationOptions(), question="Wie geht es weiter?"
        )
        assert "§ 433 BGB" in answer
        assert DISCLAIMER in answer

    def test_is_degraded(self):
        model = FallbackLanguageModel()
        assert model.is_degraded is True
        assert model.info()["degraded"] is True


class TestCreateLanguageModel:
    def test_missing_key_uses_fallback(self):
        assert isinstance(create_language_model(PolicyRagConfig()), FallbackLanguageModel)

    def test_key_present_uses_openai(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert isinstance(create_language_model(PolicyRagConfig()), OpenAICompatLanguageModel)

    def test_custom_base_url(self):
        assert isinstance(create_language_model(_make_config()), OpenAICompatLanguageModel)


# --- Answer generator ---


class TestAnswerGenerator:
    def test_generates_with_metadata(self):
        model = ScriptedModel()
        generator = AnswerGenerator(model, sleep=lambda s: None)
        result = generator.generate("Was regelt § 433 BGB?", _context())

        assert result.answer == "Antwort"
        assert result.metadata["model"] == "scripted"
        assert result.metadata["context_chunks"] == 2
        assert result.metadata["attempts"] == 1
        assert result.metadata["prompt_tokens"] > 0
        assert result.metadata["degraded"] is False
        assert "timestamp" in result.metadata
        assert model.prompts == [build_prompt("Was regelt § 433 BGB?", _context())]

    def test_times_out_twice_then_succeeds(self):
        sleeps: list[float] = []
        model = ScriptedModel(errors=[LLMTimeoutError(), LLMTimeoutError()])
        generator = AnswerGenerator(model, sleep=sleeps.append)

        result = generator.generate("Frage?", _context())

        assert result.answer == "Antwort"
        assert result.metadata["attempts"] == 3
        assert sleeps == [1.0, 2.0]

    def test_on_retry_reports_each_failure(self):
        retries: list[tuple[int, str, float]] = []
        model = ScriptedModel(errors=[LLMTimeoutError(), LLMTimeoutError()])
        generator = AnswerGenerator(
            model,
            on_retry=lambda n, e, d: retries.append((n, type(e).__name__, d)),
            sleep=lambda s: None,
        )

        generator.generate("Frage?", _context())

        assert retries == [(1, "LLMTimeoutError", 1.0), (2, "LLMTimeoutError", 2.0)]

    def test_prompt_tokens_estimated_without_encoding(self):
        with patch("policyrag.tokens._get_encoding", side_effect=RuntimeError("offline")):
            result = AnswerGenerator(FallbackLanguageModel()).generate(
                "Was regelt § 433 BGB?", _context()
            )
        prompt = build_prompt("Was regelt § 433 BGB?", _context())
        assert "Kaufvertrag" in result.answer
        assert result.metadata["prompt_tokens"] == estimate_tokens(prompt)

    def test_exhausted_retries_raise(self):
        sleeps: list[float] = []
        model = ScriptedModel(errors=[RateLimitError("limited", status_code=429)] * 4)
        generator = AnswerGenerator(model, sleep=sleeps.append)
        with pytest.raises(RateLimitError):
            generator.generate("Frage?", _context())
        assert len(model.prompts) == 4
        assert sleeps == [1.0, 2.0, 4.0]

    def test_invalid_request_not_retried(self):
        model = ScriptedModel(errors=[InvalidRequestError("bad", status_code=400)])
        generator = AnswerGenerator(model, sleep=lambda s: None)
        with pytest.raises(InvalidRequestError):
            generator.generate("Frage?", _context())
        assert len(model.prompts) == 1

    def test_blank_question_rejected(self):
        generator = AnswerGenerator(ScriptedModel())
        with pytest.raises(ValidationError):
            generator.generate("   ", _context())

    def test_slow_model_times_out(self):
        class SlowModel(ScriptedModel):
            def generate(self, prompt, options, *, question="", context=()):
                time.sleep(0.5)
                return "zu spät"

        generator = AnswerGenerator(SlowModel(), GenerationOptions(timeout_s=0.05), max_retries=0)
        with pytest.raises(LLMTimeoutError):
            generator.generate("Frage?", _context())

    def test_from_config(self):
        config = PolicyRagConfig()
        config.retry.max_retries = 1
        config.llm.timeout_s = 12.0
        sleeps: list[float] = []
        model = ScriptedModel(errors=[TimeoutError(), TimeoutError()])
        generator = AnswerGenerator.from_config(model, config, sleep=sleeps.append)
        with pytest.raises(TimeoutError):
            generator.generate("Frage?", _context())
        assert sleeps == [1.0]
        assert generator.model is model
