import time

import pytest

from manifest_generation.errors import LLMResponseError
from manifest_generation.llm import (
    GeminiManifestRepairer,
    GeminiTreatmentExtractor,
    consult_oracle,
    extract_json_object,
)
from manifest_generation.models import TreatmentOutline, ValidationIssue


def test_extract_json_object_from_fenced_block():
    text = 'Here you go:\n```json\n{"scenes": [{"id": "s1"}]}\n```\nAnything else?'

    assert extract_json_object(text) == {"scenes": [{"id": "s1"}]}


def test_extract_json_object_from_raw_text():
    assert extract_json_object('  {"title": "Launch"}\r\n') == {"title": "Launch"}


@pytest.mark.parametrize("text", ["not json at all", "[1, 2, 3]", "", None])
def test_extract_json_object_rejects_non_objects(text):
    with pytest.raises(LLMResponseError):
        extract_json_object(text)


def test_consult_oracle_returns_the_answer():
    assert consult_oracle(lambda value: value * 2, 21, timeout=1.0) == 42


def test_consult_oracle_turns_timeouts_into_none():
    def slow():
        time.sleep(0.5)
        return "late"

    assert consult_oracle(slow, timeout=0.05, retries=0) is None


def test_consult_oracle_turns_errors_into_none():
    def broken():
        raise RuntimeError("quota exceeded")

    assert consult_oracle(broken, timeout=1.0, retries=2) is None


def test_consult_oracle_retries_after_a_failure():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise ConnectionError("reset")
        return "ok"

    assert consult_oracle(flaky, timeout=1.0, retries=1) == "ok"
    assert len(calls) == 2


def test_consult_oracle_retries_empty_answers():
    calls = []

    def empty():
        calls.append(1)
        return None

    assert consult_oracle(empty, timeout=1.0, retries=1) is None
    assert len(calls) == 2


def test_extractor_prompt_carries_text_and_hints():
    prompt = GeminiTreatmentExtractor().build_prompt("Scene 1: Hook", {"platform": "tiktok"})

    assert "Scene 1: Hook" in prompt
    assert '"platform": "tiktok"' in prompt
    assert "durationWeight" in prompt


def test_extractor_validates_the_model_answer(monkeypatch):
    extractor = GeminiTreatmentExtractor()
    monkeypatch.setattr(
        extractor,
        "_generate",
        lambda prompt: {"title": "Launch", "scenes": [{"id": "s1", "narration": "Hello there."}]},
    )

    outline = extractor("Scene 1: Hello there.", {})

    assert isinstance(outline, TreatmentOutline)
    assert outline.title == "Launch"
    assert outline.scenes[0].narration == "Hello there."


def test_extractor_returns_none_on_unusable_answers(monkeypatch):
    extractor = GeminiTreatmentExtractor()

    monkeypatch.setattr(extractor, "_generate", lambda prompt: {"scenes": []})
    assert extractor("text", {}) is None

    def unreadable(prompt):
        raise LLMResponseError("garbage")

    monkeypatch.setattr(extractor, "_generate", unreadable)
    assert extractor("text", {}) is None


def test_repairer_prompt_lists_violations_and_schema():
    repairer = GeminiManifestRepairer(schema={"type": "object"})
    issues = [ValidationIssue(code="rule.duration.sum", message="durations do not add up", path="scenes")]

    prompt = repairer.build_prompt({"scenes": []}, issues, {"durationTolerance": 0.01})

    assert "- scenes: durations do not add up" in prompt
    assert '"durationTolerance": 0.01' in prompt
    assert 'Schema:\n{"type": "object"}' in prompt
    assert prompt.rstrip().endswith('Manifest:\n{"scenes": []}')


def test_repairer_discards_answers_without_scenes(monkeypatch):
    repairer = GeminiManifestRepairer()
    monkeypatch.setattr(repairer, "_generate", lambda prompt: {"metadata": {}})

    assert repairer({"scenes": []}, [], {}) is None

    monkeypatch.setattr(repairer, "_generate", lambda prompt: {"scenes": [{"id": "s1"}]})
    assert repairer({"scenes": []}, [], {}) == {"scenes": [{"id": "s1"}]}


def test_configure_client_requires_an_api_key(monkeypatch):
    from manifest_generation import llm

    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setattr(llm, "load_dotenv", lambda *args, **kwargs: False)

    with pytest.raises(RuntimeError, match="GEMINI_API_KEY"):
        llm.configure_client()
