"""Assemble a Production Manifest working document from a treatment outline.

Metadata fields are resolved per field from, in order: explicit caller overrides,
the upstream analysis stages (``analyzer``, ``refiner``, ``script`` hints), the
values declared inside the treatment, and fixed defaults. Scenes receive
durations allocated from their relative weights; each scene's visual hint is
bound to a matching user asset from the caller's catalog or to a freshly minted
generated placeholder. The assembler is the only stage that mints assets.
"""
from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone
from itertools import accumulate
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .catalog import EffectCatalog, default_catalog, normalize_aspect_ratio
from .models import (
    Asset,
    AssetSource,
    AssetStatus,
    AudioPlan,
    EffectsPlan,
    EnforcementMode,
    ManifestMetadata,
    MediaType,
    MusicCue,
    MusicPlan,
    MusicStructure,
    SceneEffects,
    SceneVisual,
    SoundEffect,
    TreatmentOutline,
    TreatmentScene,
    TtsDefaults,
    VisualPlan,
)
from .settings import CompilerSettings
from .timeline import allocate_durations, ensure_float
from .treatment_parser import parse_duration

LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"
HINT_STAGES = ("analyzer", "refiner", "script")
INTENTS = {"video", "image", "audio"}
PRIORITIES = {"low", "normal", "high", "urgent"}
CINEMATIC_LEVELS = {"basic", "pro"}

DEFAULT_METADATA: Dict[str, Any] = {
    "intent": "video",
    "aspectRatio": "16:9",
    "platform": "social",
    "language": "en",
    "profile": "general",
    "priority": "normal",
}
DEFAULT_CONSISTENCY: Dict[str, Any] = {
    "characterFaces": "locked",
    "voiceStyle": "consistent",
    "tone": "professional",
    "visualContinuity": "maintain",
}
DEFAULT_PLACEHOLDER_HINT = "Clean abstract background matching the brand palette"

HEX_COLOR_RE = re.compile(r"#[0-9A-Fa-f]{6}\b")
TOKEN_RE = re.compile(r"[a-z0-9]+")
VIDEO_HINT_RE = re.compile(r"\b(?:footage|clip|video|b-roll|timelapse|time-lapse)\b", re.IGNORECASE)
MATCH_STOPWORDS = {
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in", "into", "is", "it",
    "of", "on", "or", "shot", "the", "this", "that", "to", "with", "visual", "visuals", "scene",
}

Hints = Mapping[str, Mapping[str, Any]]


# ---------------------------------------------------------------------------
# Metadata resolution
# ---------------------------------------------------------------------------


def _lookup(source: Mapping[str, Any] | None, *keys: str) -> Any:
    if not isinstance(source, Mapping):
        return None
    nested = source.get("metadata")
    for mapping in (source, nested if isinstance(nested, Mapping) else None):
        if mapping is None:
            continue
        for key in keys:
            value = mapping.get(key)
            if value not in (None, "", [], {}):
                return value
    return None


def _hint_sources(hints: Hints | None) -> List[Mapping[str, Any]]:
    if not hints:
        return []
    return [hints[stage] for stage in HINT_STAGES if isinstance(hints.get(stage), Mapping)]


def _coerce_duration(value: Any) -> Optional[float]:
    seconds = parse_duration(value)
    return round(seconds, 2) if seconds else None


def _coerce_slug(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return re.sub(r"[\s\-]+", "_", value.strip().lower())


def _coerce_language(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    text = value.strip().lower().replace("_", "-")
    return text if re.fullmatch(r"[a-z]{2,3}(?:-[a-z0-9]{2,8})*", text) else None


def _coerce_choice(choices: Iterable[str]):
    allowed = set(choices)

    def coerce(value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        text = value.strip().lower()
        return text if text in allowed else None

    return coerce


def resolve_metadata(
    overrides: Mapping[str, Any] | None,
    hints: Hints | None,
    outline: TreatmentOutline,
    *,
    settings: CompilerSettings,
    catalog: EffectCatalog,
) -> Dict[str, Any]:
    """Resolve every metadata field independently: caller > analysis > treatment > default."""
    overrides = overrides or {}
    outline_values = {
        "duration": outline.total_duration_seconds,
        "platform": outline.platform,
        "aspectRatio": outline.aspect_ratio,
        "language": outline.language,
        "profile": outline.profile,
        "tone": outline.tone,
        "title": outline.title,
    }
    sources: List[Mapping[str, Any]] = [overrides, *_hint_sources(hints), outline_values]

    def resolve(keys: Tuple[str, ...], coerce, default: Any) -> Any:
        for source in sources:
            value = coerce(_lookup(source, *keys))
            if value is not None:
                return value
        return default

    platform = resolve(("platform", "targetPlatform"), catalog.normalize_platform, None)
    platform_aspect = catalog.platform_rules(platform).get("defaultAspect") if platform else None
    profile = resolve(("profile", "style", "creativeProfile"), _coerce_slug, DEFAULT_METADATA["profile"])
    profile_config = catalog.profile(profile)

    enforcement_default = profile_config.get("enforcementMode", EnforcementMode.BALANCED.value)
    metadata = ManifestMetadata(
        intent=resolve(("intent",), _coerce_choice(INTENTS), DEFAULT_METADATA["intent"]),
        duration_seconds=resolve(
            ("durationSeconds", "duration", "targetDuration", "totalDurationSeconds"),
            _coerce_duration,
            settings.default_duration,
        ),
        aspect_ratio=resolve(
            ("aspectRatio", "aspect"),
            normalize_aspect_ratio,
            platform_aspect or DEFAULT_METADATA["aspectRatio"],
        ),
        platform=platform or DEFAULT_METADATA["platform"],
        language=resolve(("language", "lang"), _coerce_language, DEFAULT_METADATA["language"]),
        profile=profile,
        priority=resolve(("priority",), _coerce_choice(PRIORITIES), DEFAULT_METADATA["priority"]),
        title=resolve(("title",), lambda v: v.strip() if isinstance(v, str) and v.strip() else None, None),
        tone=resolve(("tone",), _coerce_slug, None),
        cinematic_level=resolve(("cinematicLevel", "cinematic_level"), _coerce_choice(CINEMATIC_LEVELS), None),
        enforcement_mode=resolve(
            ("enforcementMode", "enforcement_mode"),
            _coerce_choice(mode.value for mode in EnforcementMode),
            enforcement_default,
        ),
        feature_flags=dict(profile_config.get("featureFlags", {})),
    )
    return metadata.to_document()


# ---------------------------------------------------------------------------
# Asset binding
# ---------------------------------------------------------------------------


def _tokens(text: str | None) -> set[str]:
    if not text:
        return set()
    return {token for token in TOKEN_RE.findall(text.lower()) if len(token) > 2 and token not in MATCH_STOPWORDS}


def normalize_asset_catalog(catalog: Any) -> List[Dict[str, Any]]:
    """Accept a list of entries or an id-keyed mapping; return entries with id/url/description."""
    if isinstance(catalog, Mapping):
        items = []
        for key, value in catalog.items():
            if isinstance(value, Mapping):
                items.append({"id": key, **value})
    elif isinstance(catalog, (list, tuple)):
        items = [dict(item) for item in catalog if isinstance(item, Mapping)]
    else:
        return []

    entries: List[Dict[str, Any]] = []
    for index, item in enumerate(items, start=1):
        metadata = item.get("metadata") if isinstance(item.get("metadata"), Mapping) else {}
        description = item.get("description") or metadata.get("description") or ""
        tags = item.get("tags") or metadata.get("tags") or []
        if isinstance(tags, (list, tuple)):
            description = " ".join([str(description), *[str(tag) for tag in tags]]).strip()
        media_type = str(item.get("mediaType") or item.get("type") or "image").lower()
        entries.append(
            {
                "id": str(item.get("id") or f"user_asset_{index}"),
                "url": item.get("originUrl") or item.get("url"),
                "description": description,
                "mediaType": media_type if media_type in {m.value for m in MediaType} else "image",
            }
        )
    return entries


def match_user_asset(hint: str | None, entries: Sequence[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """The catalog entry sharing the most hint tokens; ties keep catalog order."""
    hint_tokens = _tokens(hint)
    if not hint_tokens:
        return None
    best: Optional[Mapping[str, Any]] = None
    best_score = 0
    for entry in entries:
        score = len(hint_tokens & _tokens(entry.get("description")))
        if score > best_score:
            best, best_score = entry, score
    return best


def build_visual_prompt(hint: str | None, profile: str | None) -> str:
    subject = (hint or DEFAULT_PLACEHOLDER_HINT).replace(" | ", ", ")
    return (
        f"{subject}. High-resolution, cinematic lighting, shallow depth of field. "
        f"Style: {profile or 'general'}. No textual overlays or watermarks."
    )


# ---------------------------------------------------------------------------
# Audio plan
# ---------------------------------------------------------------------------


def _cue_structure(position: int, count: int) -> MusicStructure:
    if position == 0:
        return MusicStructure.INTRO
    if position == count - 1 and count > 2:
        return MusicStructure.OUTRO
    if position == count - 2 and count > 3:
        return MusicStructure.CLIMAX
    return MusicStructure.BUILD


def build_music_plan(
    scenes: Sequence[TreatmentScene],
    starts: Sequence[float],
    metadata: Mapping[str, Any],
    catalog: EffectCatalog,
) -> Tuple[MusicPlan, Dict[str, str]]:
    """Music cues and the cue id each scene plays under."""
    mood = catalog.music_mood(metadata.get("profile"), metadata.get("tone"))
    cued = [(scene, start) for scene, start in zip(scenes, starts) if scene.music_cue]
    plan = MusicPlan()
    scene_cues: Dict[str, str] = {}
    if not cued:
        plan.cue_map["music_01"] = MusicCue(start_sec=0.0, mood=mood, structure=MusicStructure.INTRO)
        return plan, {scene.id: "music_01" for scene in scenes}

    if cued[0][1] > 0:
        # Cover the opening before the first explicit cue.
        cued.insert(0, (None, 0.0))
    current = None
    cue_starts = {}
    for position, (scene, start) in enumerate(cued):
        cue_id = f"music_{position + 1:02d}"
        plan.cue_map[cue_id] = MusicCue(
            start_sec=round(start, 2),
            mood=mood,
            structure=_cue_structure(position, len(cued)),
            description=scene.music_cue if scene is not None else None,
        )
        cue_starts[round(start, 2)] = cue_id
    for scene, start in zip(scenes, starts):
        current = cue_starts.get(round(start, 2), current)
        scene_cues[scene.id] = current
    return plan, scene_cues


def build_tts_defaults(outline: TreatmentOutline, metadata: Mapping[str, Any], catalog: EffectCatalog) -> TtsDefaults:
    profile = catalog.profile(metadata.get("profile"))
    defaults = TtsDefaults(style=profile.get("voiceStyle", "instructional"))
    if outline.voice.voice_id_hint:
        defaults.voice = outline.voice.voice_id_hint
    return defaults


# ---------------------------------------------------------------------------
# Visual and effects plans
# ---------------------------------------------------------------------------


def _brand_palette(hints: Hints | None, outline_text_colors: Sequence[str]) -> List[str]:
    for source in _hint_sources(hints):
        palette = _lookup(source, "colorPalette", "brandColors", "palette")
        if isinstance(palette, (list, tuple)):
            colors = [str(color).upper() for color in palette if HEX_COLOR_RE.fullmatch(str(color))]
            if colors:
                return colors
    if outline_text_colors:
        return list(dict.fromkeys(color.upper() for color in outline_text_colors))
    return list(VisualPlan().color_palette)


def build_effects_plan(hints: Hints | None, metadata: Mapping[str, Any], catalog: EffectCatalog) -> EffectsPlan:
    vocabulary = catalog.vocabulary()
    allowed: List[str] = list(vocabulary)
    per_scene: Dict[str, SceneEffects] = {}
    for source in _hint_sources(hints):
        effects = _lookup(source, "effects")
        if not isinstance(effects, Mapping):
            continue
        requested = effects.get("allowed")
        if isinstance(requested, (list, tuple)):
            filtered = [name for name in requested if name in vocabulary]
            if filtered:
                allowed = list(dict.fromkeys(filtered))
        overrides = effects.get("perScene")
        if isinstance(overrides, Mapping):
            for scene_id, value in overrides.items():
                if isinstance(value, Mapping):
                    per_scene[str(scene_id)] = SceneEffects.model_validate(value)
        break

    default_transition = catalog.default_transition(metadata.get("platform"))
    if default_transition not in allowed:
        transitions = [name for name in allowed if catalog.is_transition(name)]
        default_transition = transitions[0] if transitions else "fade"
    return EffectsPlan(allowed=allowed, default_transition=default_transition, per_scene=per_scene)


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


def build_manifest(
    outline: TreatmentOutline,
    metadata: Mapping[str, Any],
    *,
    hints: Hints | None = None,
    asset_catalog: Any = None,
    settings: CompilerSettings | None = None,
    catalog: EffectCatalog | None = None,
    manifest_id: str | None = None,
    user_id: str | None = None,
    source_text: str = "",
) -> Dict[str, Any]:
    """Return the working document for ``outline``; timing is allocated but not yet normalized."""
    settings = settings or CompilerSettings()
    catalog = catalog or default_catalog()
    total = ensure_float(metadata.get("durationSeconds"), settings.default_duration)
    profile = metadata.get("profile")

    durations = allocate_durations(
        [scene.duration_weight for scene in outline.scenes], total, floor=settings.min_scene_seconds
    )
    starts = [0.0, *accumulate(durations)][: len(durations)]
    user_entries = normalize_asset_catalog(asset_catalog)
    music_plan, scene_cues = build_music_plan(outline.scenes, starts, metadata, catalog)

    assets: Dict[str, Dict[str, Any]] = {}
    scenes: List[Dict[str, Any]] = []
    sfx: List[SoundEffect] = []
    for scene, duration in zip(outline.scenes, durations):
        hint = scene.visual_anchor_hint
        matched = match_user_asset(hint, user_entries)
        if matched is not None:
            asset_id = matched["id"]
            if asset_id not in assets:
                assets[asset_id] = Asset(
                    id=asset_id,
                    source=AssetSource.USER,
                    status=AssetStatus.READY,
                    media_type=MediaType(matched["mediaType"]),
                    origin_url=matched.get("url"),
                    description=matched.get("description") or None,
                ).to_document()
            visual = SceneVisual(asset_id=asset_id, type="user_asset", role="primary")
        else:
            asset_id = f"gen_{scene.id}_visual"
            media_type = MediaType.VIDEO if hint and VIDEO_HINT_RE.search(hint) else MediaType.IMAGE
            assets[asset_id] = Asset(
                id=asset_id,
                source=AssetSource.GENERATED,
                status=AssetStatus.PENDING,
                media_type=media_type,
                description=hint,
                prompt=build_visual_prompt(hint or scene.narration, profile),
            ).to_document()
            visual = SceneVisual(asset_id=asset_id, type="generated", role="background")

        scene_doc: Dict[str, Any] = {
            "id": scene.id,
            "title": scene.title,
            "durationSeconds": duration,
            "purpose": scene.purpose or "body",
            "narration": scene.narration,
            "visualAnchor": hint,
            "visuals": [visual.to_document()],
            "effectHints": list(scene.effects),
            "musicCue": scene_cues.get(scene.id),
        }
        scenes.append({key: value for key, value in scene_doc.items() if value is not None})
        for index, description in enumerate(scene.sfx, start=1):
            sfx.append(SoundEffect(id=f"sfx_{scene.id}_{index}", scene_id=scene.id, description=description))

    audio = AudioPlan(
        tts_defaults=build_tts_defaults(outline, metadata, catalog),
        music=music_plan,
        sfx=sfx,
    )
    visuals = VisualPlan(
        color_palette=_brand_palette(hints, HEX_COLOR_RE.findall(source_text)),
        style=profile,
    )
    consistency = dict(DEFAULT_CONSISTENCY)
    if metadata.get("tone"):
        consistency["tone"] = metadata["tone"]

    manifest = {
        "id": manifest_id or str(uuid.uuid4()),
        "version": SCHEMA_VERSION,
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "sourceRefs": {
            "treatmentTitle": outline.title,
            "hintStages": [stage for stage in HINT_STAGES if hints and stage in hints],
        },
        "metadata": dict(metadata),
        "scenes": scenes,
        "assets": assets,
        "audio": audio.to_document(),
        "visuals": visuals.to_document(),
        "effects": build_effects_plan(hints, metadata, catalog).to_document(),
        "consistency": consistency,
        "jobs": [],
    }
    if user_id:
        manifest["userId"] = user_id
    LOGGER.info(
        "Assembled manifest %s | scenes=%d assets=%d duration=%.2fs",
        manifest["id"],
        len(scenes),
        len(assets),
        total,
    )
    return manifest
