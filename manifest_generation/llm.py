"""Optional Gemini assistants for treatment extraction and manifest repair.

Both assistants are advisory. The pipeline calls them through ``consult_oracle``,
which bounds every attempt with a timeout, allows a fixed number of retries and
turns any failure (timeout, API error, unreadable answer) into ``None``. Any
callable with the same shape can stand in for them, the rule-based
``HeuristicExtractor`` included.
"""
from __future__ import annotations

import json
import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, TypeVar

import google.generativeai as genai
from dotenv import load_dotenv
from pydantic import ValidationError

from .errors import LLMResponseError
from .models import TreatmentOutline, ValidationIssue

LOGGER = logging.getLogger(__name__)

JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)

T = TypeVar("T")


class TreatmentExtractor(Protocol):
    def __call__(self, text: str, hints: Mapping[str, Any]) -> Optional[TreatmentOutline]:
        ...


class ManifestRepairer(Protocol):
    def __call__(
        self,
        manifest: Dict[str, Any],
        violations: Sequence[ValidationIssue],
        context: Mapping[str, Any],
    ) -> Optional[Dict[str, Any]]:
        ...


def configure_client(model_name: str | None = None) -> genai.GenerativeModel:
    """
    Configures and returns a Gemini GenerativeModel client.
    Loads the API key from a .env file or the environment.

    Raises:
        RuntimeError: If GEMINI_API_KEY is not found.
    """
    root_dir = Path(__file__).resolve().parents[1]
    load_dotenv(root_dir / ".env")
    load_dotenv()  # load defaults if present

    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise RuntimeError("Missing GEMINI_API_KEY. Add it to .env or environment variables.")

    genai.configure(api_key=api_key)
    resolved_model = model_name or os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
    return genai.GenerativeModel(resolved_model)


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Extracts a JSON object from an LLM response, looking inside fenced code blocks
    first and then at the raw text.

    Raises:
        LLMResponseError: If no JSON object can be extracted.
    """
    candidates: List[str] = [match.group(1).strip() for match in JSON_BLOCK_RE.finditer(text or "")]
    if not candidates:
        candidates.append((text or "").strip())

    last_error: Exception | None = None
    for candidate in candidates:
        for cleaned in (candidate, candidate.replace("\r", "")):
            try:
                parsed = json.loads(cleaned)
            except json.JSONDecodeError as exc:
                last_error = exc
                continue
            if isinstance(parsed, dict):
                return parsed
            last_error = ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    raise LLMResponseError(f"Could not parse JSON from LLM response: {last_error}")


def call_with_timeout(func: Callable[..., T], timeout: float, *args: Any, **kwargs: Any) -> T:
    """Run ``func`` on a worker thread and give up on it after ``timeout`` seconds.

    The worker is abandoned, not killed: the pipeline never looks at its result again.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm-call")
    future = executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def consult_oracle(
    oracle: Callable[..., Optional[T]],
    *args: Any,
    timeout: float,
    retries: int = 1,
    label: str = "oracle",
) -> Optional[T]:
    """Call an advisory component with a bounded budget; every failure becomes ``None``."""
    for attempt in range(1, retries + 2):
        try:
            result = call_with_timeout(oracle, timeout, *args)
        except FuturesTimeout:
            LOGGER.warning("[WARN] %s timed out after %.1fs (attempt %d)", label, timeout, attempt)
            continue
        except Exception as exc:  # noqa: BLE001 - advisory components never propagate
            LOGGER.warning("[WARN] %s failed (attempt %d): %s", label, attempt, exc)
            continue
        if result is not None:
            return result
        LOGGER.info("%s returned no answer (attempt %d)", label, attempt)
    return None


class _GeminiAssistant:
    def __init__(self, model_name: str | None = None, *, request_timeout: float = 4.0) -> None:
        self.model_name = model_name
        self.request_timeout = request_timeout
        self._model: genai.GenerativeModel | None = None

    def _generate(self, prompt: str) -> Dict[str, Any]:
        if self._model is None:
            self._model = configure_client(self.model_name)
        response = self._model.generate_content(
            prompt,
            generation_config={"temperature": 0.2, "response_mime_type": "application/json"},
            request_options={"timeout": self.request_timeout},
        )
        raw_text = getattr(response, "text", None)
        if not raw_text:
            raise LLMResponseError("Empty response from Gemini")
        return extract_json_object(raw_text)


class GeminiTreatmentExtractor(_GeminiAssistant):
    """Extracts the treatment outline with Gemini. Returns None on any failure."""

    def build_prompt(self, text: str, hints: Mapping[str, Any]) -> str:
        hint_json = json.dumps(dict(hints or {}), ensure_ascii=False, indent=2, default=str)
        return "\n\n".join(
            [
                "You split a video treatment into scenes for a production planner.",
                "Return ONLY a JSON object with this shape:\n"
                '{"title": str|null, "totalDurationSeconds": number|null, "profile": str|null,\n'
                ' "platform": str|null, "aspectRatio": str|null, "language": str|null, "tone": str|null,\n'
                ' "voice": {"gender": "any"|"female"|"male", "voiceIdHint": str|null},\n'
                ' "scenes": [{"id": "s1", "title": str, "purpose": "hook"|"body"|"cta"|str,\n'
                '             "durationWeight": number, "narration": str|null, "visualAnchorHint": str|null,\n'
                '             "effects": [str], "musicCue": str|null, "sfx": [str]}]}',
                "Scene ids are s1, s2, ... in order. durationWeight is relative, not seconds.",
                f"Upstream hints:\n{hint_json}",
                f"Treatment:\n{text}",
            ]
        ) + "\n"

    def __call__(self, text: str, hints: Mapping[str, Any]) -> Optional[TreatmentOutline]:
        try:
            data = self._generate(self.build_prompt(text, hints))
            outline = TreatmentOutline.model_validate(data)
        except (LLMResponseError, ValidationError) as exc:
            LOGGER.warning("[WARN] Gemini extraction unusable: %s", exc)
            return None
        return outline if outline.scenes else None


class GeminiManifestRepairer(_GeminiAssistant):
    """Asks Gemini for a repaired manifest. Returns None on any failure."""

    def __init__(
        self,
        model_name: str | None = None,
        *,
        request_timeout: float = 4.0,
        schema: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(model_name, request_timeout=request_timeout)
        self.schema = schema

    def build_prompt(
        self,
        manifest: Dict[str, Any],
        violations: Sequence[ValidationIssue],
        context: Mapping[str, Any],
    ) -> str:
        issues = "\n".join(f"- {issue.path or '<root>'}: {issue.message}" for issue in violations)
        parts = [
            "You repair production manifests so they satisfy a JSON Schema and business rules.",
            "Rules:\n"
            "1. Return ONLY the repaired manifest as one JSON object.\n"
            "2. Keep scene ids, narration and user asset ids unchanged.\n"
            "3. Scene durations must be positive and sum to metadata.durationSeconds.\n"
            "4. Scenes must not overlap and must start at 0 in order.\n"
            "5. Asset source is 'user' or 'generated'; every scene visual must reference an existing asset.\n"
            "6. Job dependencies must reference existing job ids.\n"
            "7. Do not add top-level keys that the schema does not define.",
            f"Violations:\n{issues or '- (none reported)'}",
            f"Context:\n{json.dumps(dict(context or {}), ensure_ascii=False, default=str)}",
        ]
        if self.schema is not None:
            parts.append(f"Schema:\n{json.dumps(self.schema, ensure_ascii=False)}")
        parts.append(f"Manifest:\n{json.dumps(manifest, ensure_ascii=False, default=str)}")
        return "\n\n".join(parts) + "\n"

    def __call__(
        self,
        manifest: Dict[str, Any],
        violations: Sequence[ValidationIssue],
        context: Mapping[str, Any],
    ) -> Optional[Dict[str, Any]]:
        try:
            candidate = self._generate(self.build_prompt(manifest, violations, context))
        except LLMResponseError as exc:
            LOGGER.warning("[WARN] Gemini repair unusable: %s", exc)
            return None
        if not isinstance(candidate.get("scenes"), list):
            LOGGER.warning("[WARN] Gemini repair discarded: no scenes array")
            return None
        return candidate
