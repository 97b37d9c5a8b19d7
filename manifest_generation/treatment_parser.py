"""Rule-based extraction of a treatment outline from free text.

The parser never raises and never calls out: it splits the treatment into scene
blocks (``Scene N`` headers, markdown ``## Scene`` headings, or blank-line
paragraphs grouped into at most three blocks) and runs bounded regular
expressions over each block for narration, visual hints, effect names, music
cues and sound effects. Metadata lines in the preamble (``Duration: 45s``,
``Platform: TikTok`` ...) and YAML front matter fill the outline-level fields.
"""
from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import frontmatter

from .catalog import default_catalog, normalize_aspect_ratio
from .models import TreatmentOutline, TreatmentScene, VoiceHint

LOGGER = logging.getLogger(__name__)

SCENE_HEADER_RE = re.compile(
    r"^[ \t]*(?:#{1,6}[ \t]*)?scene[ \t]*(\d+)\b[ \t]*[:.)\-–—]?[ \t]*(.*)$",
    re.IGNORECASE | re.MULTILINE,
)
PARAGRAPH_SPLIT_RE = re.compile(r"\n[ \t]*\n+")
LABEL_PREFIX = r"^[ \t>*\-•]*"
NARRATION_RE = re.compile(
    LABEL_PREFIX + r"(?:narration|voice[ \t]*-?[ \t]*over|vo)[ \t]*[:\-][ \t]*(.{1,400})$",
    re.IGNORECASE | re.MULTILINE,
)
VISUAL_RE = re.compile(LABEL_PREFIX + r"(?:visuals?|shot|b-roll)[ \t]*:[ \t]*(.{1,300})$", re.IGNORECASE | re.MULTILINE)
MUSIC_RE = re.compile(LABEL_PREFIX + r"music(?:[ \t]*cue)?[ \t]*:[ \t]*(.{1,200})$", re.IGNORECASE | re.MULTILINE)
SFX_RE = re.compile(
    LABEL_PREFIX + r"(?:sfx|sound[ \t]*effects?)[ \t]*:[ \t]*(.{1,200})$", re.IGNORECASE | re.MULTILINE
)
PURPOSE_RE = re.compile(LABEL_PREFIX + r"purpose[ \t]*:[ \t]*([A-Za-z_ \-]{2,40})$", re.IGNORECASE | re.MULTILINE)
EFFECTS_LINE_RE = re.compile(LABEL_PREFIX + r"effects?[ \t]*:[ \t]*(.{1,300})$", re.IGNORECASE | re.MULTILINE)
DURATION_LINE_RE = re.compile(LABEL_PREFIX + r"duration[ \t]*:[ \t]*(.{1,40})$", re.IGNORECASE | re.MULTILINE)
META_LINE_RE = re.compile(
    LABEL_PREFIX
    + r"(title|duration|platform|aspect(?:[ \t]*ratio)?|language|style|profile|voice|tone)[ \t]*:[ \t]*(.{1,120})$",
    re.IGNORECASE | re.MULTILINE,
)
ANY_LABEL_RE = re.compile(
    LABEL_PREFIX
    + r"(?:narration|voice[ \t]*-?[ \t]*over|vo|visuals?|shot|b-roll|music(?:[ \t]*cue)?|sfx|sound[ \t]*effects?"
    r"|purpose|effects?|duration|title|platform|aspect(?:[ \t]*ratio)?|language|style|profile|voice|tone)[ \t]*[:\-]",
    re.IGNORECASE,
)
SENTENCE_RE = re.compile(r"([A-Z][^.!?\n]{8,198}[.!?])")
HEADING_RE = re.compile(r"^[ \t]*#{1,6}[ \t]+(.{3,120})$", re.MULTILINE)
DURATION_VALUE_RE = re.compile(
    r"^~?\s*(?:(?P<minutes>\d+):(?P<seconds>\d{1,2})|(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>s|sec|secs|seconds|m|min|mins|minutes)?)\b",
    re.IGNORECASE,
)

VISUAL_KEYWORDS = (
    "laptop",
    "smartphone",
    "chart",
    "graph",
    "dashboard",
    "classroom",
    "whiteboard",
    "office",
    "anime",
    "graduation",
    "graduate",
    "b-roll",
    "cinematic",
    "portrait",
    "product",
    "city",
)
HOOK_RE = re.compile(r"\b(?:hook|intro|introduction|opening|opener)\b", re.IGNORECASE)
CTA_RE = re.compile(
    r"\b(?:outro|cta|call[ \t]+to[ \t]+action|conclusion|conclude|wrap(?:[ \t\-]?up)?|closing)\b",
    re.IGNORECASE,
)
QUOTE_CHARS = "\"'“”‘’`"

HOOK_WEIGHT = 0.8
BODY_WEIGHT = 1.2
MAX_PARAGRAPH_BLOCKS = 3


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------


def clean_value(value: str) -> str:
    """Strip whitespace, wrapping quotes and markdown emphasis from a label value."""
    text = value.strip().strip("*_").strip()
    if len(text) >= 2 and text[0] in QUOTE_CHARS and text[-1] in QUOTE_CHARS:
        text = text[1:-1].strip()
    return text.strip(QUOTE_CHARS).strip()


def parse_duration(value: Any) -> Optional[float]:
    """Parse ``45``, ``45s``, ``1:30`` or ``2 min`` into seconds."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    if not isinstance(value, str):
        return None
    match = DURATION_VALUE_RE.match(value.strip())
    if not match:
        return None
    if match.group("minutes") is not None:
        seconds = int(match.group("minutes")) * 60 + int(match.group("seconds"))
    else:
        seconds = float(match.group("value"))
        unit = (match.group("unit") or "s").lower()
        if unit.startswith("m"):
            seconds *= 60
    return float(seconds) if seconds > 0 else None


def _effect_pattern(effect: str) -> re.Pattern[str]:
    words = [re.escape(part) for part in effect.split("_")]
    return re.compile(r"\b" + r"[\s_\-]?".join(words) + r"\b", re.IGNORECASE)


def extract_effects(block: str, vocabulary: Sequence[str]) -> List[str]:
    """Known effect identifiers mentioned in the block, in vocabulary order."""
    return [effect for effect in vocabulary if _effect_pattern(effect).search(block)]


def _body_lines(block: str) -> List[str]:
    lines = []
    for line in block.splitlines():
        stripped = line.strip()
        if not stripped or ANY_LABEL_RE.match(stripped) or SCENE_HEADER_RE.match(stripped):
            continue
        lines.append(stripped.lstrip("#>*-• ").strip())
    return lines


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------


def extract_narration(block: str, header_title: Optional[str] = None) -> Optional[str]:
    match = NARRATION_RE.search(block)
    if match:
        text = clean_value(match.group(1))
        if len(text) >= 2:
            return text
    body = " ".join(_body_lines(block))
    sentence = SENTENCE_RE.search(body)
    if sentence:
        return sentence.group(1).strip()
    if header_title:
        sentence = SENTENCE_RE.search(header_title)
        if sentence and sentence.group(1).strip() == header_title.strip():
            return sentence.group(1).strip()
    return None


def extract_visual_hint(block: str) -> Optional[str]:
    hints: List[str] = []
    for match in VISUAL_RE.finditer(block):
        value = clean_value(match.group(1))
        if value:
            hints.append(value)
    lowered = " ".join(hints).lower()
    for keyword in VISUAL_KEYWORDS:
        if keyword in lowered:
            continue
        if re.search(r"\b" + re.escape(keyword) + r"\b", block, re.IGNORECASE):
            hints.append(keyword)
    return " | ".join(hints) if hints else None


def extract_music_cue(block: str) -> Optional[str]:
    match = MUSIC_RE.search(block)
    if not match:
        return None
    return clean_value(match.group(1)) or None


def extract_sfx(block: str) -> List[str]:
    return [value for value in (clean_value(m.group(1)) for m in SFX_RE.finditer(block)) if value]


def determine_purpose(block: str, header_title: Optional[str], index: int, count: int) -> str:
    match = PURPOSE_RE.search(block)
    if match:
        return clean_value(match.group(1)).lower().replace(" ", "_")
    label = header_title or ""
    if HOOK_RE.search(label):
        return "hook"
    if CTA_RE.search(label):
        return "cta"
    if HOOK_RE.search(block) and not CTA_RE.search(block):
        return "hook"
    if CTA_RE.search(block) and not HOOK_RE.search(block):
        return "cta"
    if count >= 2 and index == 0:
        return "hook"
    if count >= 3 and index == count - 1:
        return "cta"
    return "body"


def duration_weight(purpose: str) -> float:
    return HOOK_WEIGHT if purpose in {"hook", "cta"} else BODY_WEIGHT


def parse_metadata_lines(text: str) -> Dict[str, str]:
    """Collect ``Key: value`` metadata lines; the first occurrence of each key wins."""
    found: Dict[str, str] = {}
    for match in META_LINE_RE.finditer(text):
        key = re.sub(r"[ \t]+", "", match.group(1).lower())
        if key == "aspectratio":
            key = "aspect"
        found.setdefault(key, clean_value(match.group(2)))
    return found


def split_front_matter(text: str) -> Tuple[Dict[str, Any], str]:
    """Separate YAML front matter from the treatment body. Broken front matter is ignored."""
    if not text.lstrip().startswith("---"):
        return {}, text
    try:
        post = frontmatter.loads(text)
    except Exception as exc:  # noqa: BLE001 - malformed YAML must not break extraction
        LOGGER.warning("Ignoring unreadable treatment front matter: %s", exc)
        return {}, text
    metadata = post.metadata if isinstance(post.metadata, dict) else {}
    return dict(metadata), post.content


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------


def _is_metadata_only(paragraph: str) -> bool:
    lines = [line for line in paragraph.splitlines() if line.strip()]
    return bool(lines) and all(META_LINE_RE.match(line) or HEADING_RE.match(line) for line in lines)


def split_into_blocks(text: str) -> Tuple[str, List[Tuple[Optional[str], str]]]:
    """Return ``(preamble, [(header_title, block_text), ...])``."""
    headers = list(SCENE_HEADER_RE.finditer(text))
    if headers:
        preamble = text[: headers[0].start()]
        blocks: List[Tuple[Optional[str], str]] = []
        for position, header in enumerate(headers):
            end = headers[position + 1].start() if position + 1 < len(headers) else len(text)
            title = clean_value(header.group(2)) or None
            blocks.append((title, text[header.end():end].strip("\n")))
        return preamble, blocks

    paragraphs = [part.strip() for part in PARAGRAPH_SPLIT_RE.split(text) if part.strip()]
    preamble_parts: List[str] = []
    while paragraphs and _is_metadata_only(paragraphs[0]):
        preamble_parts.append(paragraphs.pop(0))
    if len(paragraphs) > MAX_PARAGRAPH_BLOCKS:
        size = math.ceil(len(paragraphs) / MAX_PARAGRAPH_BLOCKS)
        paragraphs = ["\n\n".join(paragraphs[i : i + size]) for i in range(0, len(paragraphs), size)]
    return "\n\n".join(preamble_parts), [(None, paragraph) for paragraph in paragraphs]


def extract_title(front: Mapping[str, Any], meta: Mapping[str, str], preamble: str, text: str) -> Optional[str]:
    if isinstance(front.get("title"), str) and front["title"].strip():
        return front["title"].strip()
    if meta.get("title"):
        return meta["title"]
    heading = HEADING_RE.search(preamble)
    if heading and not SCENE_HEADER_RE.match(heading.group(0)):
        return clean_value(heading.group(1))
    for line in text.splitlines():
        stripped = line.strip().lstrip("#").strip()
        if not stripped:
            continue
        if SCENE_HEADER_RE.match(line) or ANY_LABEL_RE.match(stripped):
            return None
        return stripped if 5 <= len(stripped) <= 80 else None
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _outline_fields(front: Mapping[str, Any], meta: Mapping[str, str]) -> Dict[str, Any]:
    def pick(*keys: str) -> Any:
        for key in keys:
            value = front.get(key)
            if value not in (None, ""):
                return value
        for key in keys:
            if meta.get(key):
                return meta[key]
        return None

    voice_value = pick("voice")
    voice = VoiceHint()
    if isinstance(voice_value, str):
        lowered = voice_value.lower()
        if re.search(r"\b(?:female|woman)\b", lowered):
            voice.gender = "female"
        elif re.search(r"\b(?:male|man)\b", lowered):
            voice.gender = "male"
        else:
            voice.voice_id_hint = voice_value.strip()

    profile = pick("profile", "style")
    aspect = pick("aspect", "aspectRatio")
    language = pick("language")
    return {
        "total_duration_seconds": parse_duration(pick("duration")),
        "platform": str(pick("platform")).strip() if pick("platform") else None,
        "aspect_ratio": normalize_aspect_ratio(aspect) if isinstance(aspect, str) else None,
        "language": str(language).strip().lower() if language else None,
        "profile": re.sub(r"[\s\-]+", "_", str(profile).strip().lower()) if profile else None,
        "tone": str(pick("tone")).strip().lower() if pick("tone") else None,
        "voice": voice,
    }


def _build_scenes(blocks: List[Tuple[Optional[str], str]], vocabulary: Sequence[str]) -> List[TreatmentScene]:
    scenes: List[TreatmentScene] = []
    declared: List[Optional[float]] = []
    count = len(blocks)
    for index, (header_title, block) in enumerate(blocks):
        full_text = f"{header_title}\n{block}" if header_title else block
        purpose = determine_purpose(block, header_title, index, count)
        duration_match = DURATION_LINE_RE.search(block)
        declared.append(parse_duration(duration_match.group(1)) if duration_match else None)
        effects = extract_effects(full_text, vocabulary)
        effects_line = EFFECTS_LINE_RE.search(block)
        if effects_line:
            for name in re.split(r"[,;|]+", effects_line.group(1)):
                candidate = re.sub(r"[\s\-]+", "_", clean_value(name).lower())
                if candidate in vocabulary and candidate not in effects:
                    effects.append(candidate)
        scenes.append(
            TreatmentScene(
                id=f"s{index + 1}",
                title=header_title or ["hook", "body", "cta"][min(index, 2)],
                purpose=purpose,
                duration_weight=duration_weight(purpose),
                narration=extract_narration(block, header_title),
                visual_anchor_hint=extract_visual_hint(full_text),
                effects=effects,
                music_cue=extract_music_cue(block),
                sfx=extract_sfx(block),
            )
        )
    if scenes and all(value is not None for value in declared):
        for scene, seconds in zip(scenes, declared):
            scene.duration_weight = float(seconds)
    return scenes


def parse_treatment(text: Any, vocabulary: Optional[Iterable[str]] = None) -> TreatmentOutline:
    """Best-effort outline of ``text``; always returns at least one scene."""
    if not isinstance(text, str):
        text = "" if text is None else str(text)
    effect_vocabulary = tuple(vocabulary) if vocabulary is not None else default_catalog().vocabulary()
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    front, body = split_front_matter(text)
    preamble, blocks = split_into_blocks(body)
    meta = parse_metadata_lines(preamble if blocks else body)

    scenes = _build_scenes(blocks, effect_vocabulary)
    if not scenes:
        # Nothing recognisable: one best-guess scene over the whole text.
        scenes = _build_scenes([(None, body)], effect_vocabulary)
        scenes[0].purpose = "body"
        scenes[0].title = "body"
        scenes[0].duration_weight = 1.0

    outline = TreatmentOutline(
        title=extract_title(front, meta, preamble, body),
        scenes=scenes,
        **_outline_fields(front, meta),
    )
    LOGGER.debug(
        "Parsed treatment: %d scene(s), usable=%s, title=%r",
        len(outline.scenes),
        outline.is_usable(),
        outline.title,
    )
    return outline


class HeuristicExtractor:
    """Rule-based extractor with the same call shape as the LLM extractor."""

    def __init__(self, vocabulary: Optional[Iterable[str]] = None) -> None:
        self.vocabulary = tuple(vocabulary) if vocabulary is not None else None

    def __call__(self, text: str, hints: Optional[Mapping[str, Any]] = None) -> TreatmentOutline:
        return parse_treatment(text, self.vocabulary)
