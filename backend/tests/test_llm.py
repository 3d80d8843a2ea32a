"""Tests for structured output handling and model routing."""
import pytest

from cognimem.config import settings
from cognimem.llm import LLMProvider, ModelTier, get_model_for_task
from cognimem.llm.base import LLMInvalidResponseError, parse_structured, strip_code_fences
from cognimem.schemas.memory import PredicateSuggestion


class ScriptedLLM(LLMProvider):
    """Answers with the given responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts = []

    async def generate_text(self, prompt, model, max_tokens=2048, temperature=0.7, system_prompt=None):
        self.prompts.append(prompt)
        return self.responses.pop(0)

    async def embed_text(self, texts, model):
        return [[float(len(t))] for t in texts]


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"predicate": "knows"}\n```') == '{"predicate": "knows"}'
    assert strip_code_fences("  {}  ") == "{}"


def test_parse_structured_rejects_wrong_shape():
    assert parse_structured('{"predicate": "knows"}', PredicateSuggestion) == {"predicate": "knows"}
    with pytest.raises(LLMInvalidResponseError, match="Invalid JSON"):
        parse_structured("knows", PredicateSuggestion)
    with pytest.raises(LLMInvalidResponseError, match="Schema validation failed"):
        parse_structured('{"predicate": ""}', PredicateSuggestion)


class TestExtractJson:

    async def test_invalid_answer_is_asked_again(self):
        llm = ScriptedLLM("not json", '```json\n{"predicate": "works_at"}\n```')
        data = await llm.extract_json("Suggest a predicate", PredicateSuggestion, model="m")

        assert data == {"predicate": "works_at"}
        assert len(llm.prompts) == 2
        assert llm.prompts[1].startswith("Suggest a predicate")
        assert "rejected" in llm.prompts[1]

    async def test_gives_up_after_max_retries(self):
        llm = ScriptedLLM("nope", "still nope")
        with pytest.raises(LLMInvalidResponseError):
            await llm.extract_json("Suggest a predicate", PredicateSuggestion, model="m")
        assert len(llm.prompts) == 2

    async def test_embed_one(self):
        assert await ScriptedLLM().embed_one("abc", model="m") == [3.0]


@pytest.mark.parametrize("task, tier", [
    ("memory_extraction", ModelTier.CHEAP),
    ("link_prediction", ModelTier.CHEAP),
    ("conversation_reply", ModelTier.MID),
    ("conversation_extraction", ModelTier.HEAVY),
    ("something_else", ModelTier.MID),
])
def test_model_for_task(task, tier):
    assert get_model_for_task(task) == settings.get_model(tier.value)
