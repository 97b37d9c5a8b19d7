"""Rule-based manifest repair and the minimal fallback manifest.

``deterministic_repair`` works on a deep copy and never raises: it drops unknown
top-level keys, coerces missing containers, fills metadata defaults, fixes
scene ids and dangling visuals, rescales durations onto the target length,
restores the TTS and music blocks and strips effects that are not allowed.
Whether the result is valid is decided by running the validators again.
"""
from __future__ import annotations

import copy
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .assembler import DEFAULT_CONSISTENCY, DEFAULT_METADATA, SCHEMA_VERSION, build_visual_prompt
from .catalog import EffectCatalog, default_catalog, normalize_aspect_ratio
from .enrich_manifest import effect_ordering_hints
from .models import (
    Asset,
    AssetSource,
    AssetStatus,
    AudioPlan,
    MediaType,
    MusicCue,
    MusicPlan,
    MusicStructure,
    TtsDefaults,
    VisualPlan,
)
from .settings import CompilerSettings
from .timeline import ensure_float, rescale_scene_durations, sync_subtitles

LOGGER = logging.getLogger(__name__)

ALLOWED_TOP_LEVEL_KEYS = (
    "id",
    "version",
    "createdAt",
    "userId",
    "sourceRefs",
    "metadata",
    "scenes",
    "assets",
    "audio",
    "visuals",
    "effects",
    "consistency",
    "jobs",
)
FALLBACK_NARRATION = "Auto-generated content."
FALLBACK_EFFECTS = ("overlay_text", "fade")
FALLBACK_MUSIC_CUE = "music_01"
VALID_STATUSES = {status.value for status in AssetStatus}
VALID_MEDIA = {media.value for media in MediaType}
VALID_STRUCTURES = {structure.value for structure in MusicStructure}
VERTICAL_PLATFORM = "tiktok"


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


# ----- Metadata -----


def _repair_metadata(
    document: Dict[str, Any],
    defaults: Mapping[str, Any],
    settings: CompilerSettings,
    catalog: EffectCatalog,
    notes: List[str],
) -> Dict[str, Any]:
    metadata = _dict(document.get("metadata"))
    if metadata is not document.get("metadata"):
        notes.append("metadata recreated")

    duration = metadata.get("durationSeconds")
    if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration <= 0:
        metadata["durationSeconds"] = ensure_float(defaults.get("durationSeconds"), settings.default_duration)
        notes.append("metadata.durationSeconds defaulted")

    aspect = normalize_aspect_ratio(metadata.get("aspectRatio"))
    if aspect is None:
        aspect = normalize_aspect_ratio(defaults.get("aspectRatio")) or DEFAULT_METADATA["aspectRatio"]
        notes.append("metadata.aspectRatio defaulted")
    metadata["aspectRatio"] = aspect

    platform = catalog.normalize_platform(metadata.get("platform"))
    if platform is None:
        platform = catalog.normalize_platform(defaults.get("platform"))
        if platform is None:
            width, height = (int(part) for part in aspect.split(":"))
            platform = VERTICAL_PLATFORM if height > width else DEFAULT_METADATA["platform"]
        notes.append("metadata.platform defaulted")
    metadata["platform"] = platform

    for key in ("intent", "language", "profile", "priority"):
        value = metadata.get(key)
        if not isinstance(value, str) or not value.strip():
            metadata[key] = defaults.get(key) or DEFAULT_METADATA[key]
            notes.append(f"metadata.{key} defaulted")
    if metadata["intent"] not in {"video", "image", "audio"}:
        metadata["intent"] = DEFAULT_METADATA["intent"]
    if metadata["priority"] not in {"low", "normal", "high", "urgent"}:
        metadata["priority"] = DEFAULT_METADATA["priority"]
    if metadata.get("cinematicLevel") not in (None, "basic", "pro"):
        metadata.pop("cinematicLevel")
    if metadata.get("enforcementMode") not in ("strict", "balanced", "creative"):
        metadata["enforcementMode"] = defaults.get("enforcementMode") or "balanced"
    if not isinstance(metadata.get("featureFlags", {}), dict):
        metadata["featureFlags"] = {}
    return metadata


# ----- Assets and scenes -----


def _repair_assets(document: Dict[str, Any], notes: List[str]) -> Dict[str, Dict[str, Any]]:
    raw = document.get("assets")
    if isinstance(raw, list):
        raw = {str(item.get("id")): item for item in raw if isinstance(item, dict) and item.get("id")}
        notes.append("assets list converted to map")
    assets: Dict[str, Dict[str, Any]] = {}
    for asset_id, asset in _dict(raw).items():
        if not isinstance(asset, dict):
            notes.append(f"asset {asset_id} dropped")
            continue
        asset["id"] = str(asset_id)
        if asset.get("source") not in (AssetSource.USER.value, AssetSource.GENERATED.value):
            asset["source"] = AssetSource.GENERATED.value
            asset["status"] = AssetStatus.PENDING.value
            notes.append(f"asset {asset_id} source coerced to generated")
        if asset.get("status") not in VALID_STATUSES:
            asset["status"] = AssetStatus.PENDING.value
        if asset.get("mediaType") not in VALID_MEDIA:
            asset["mediaType"] = MediaType.IMAGE.value
        assets[str(asset_id)] = asset
    return assets


def _placeholder_asset(asset_id: str, hint: Optional[str], profile: Optional[str]) -> Dict[str, Any]:
    return Asset(
        id=asset_id,
        source=AssetSource.GENERATED,
        status=AssetStatus.PENDING,
        media_type=MediaType.IMAGE,
        description=hint,
        prompt=build_visual_prompt(hint, profile),
    ).to_document()


def _repair_scenes(
    document: Dict[str, Any],
    assets: Dict[str, Dict[str, Any]],
    profile: Optional[str],
    notes: List[str],
) -> List[Dict[str, Any]]:
    raw = document.get("scenes")
    scenes = [scene for scene in raw if isinstance(scene, dict)] if isinstance(raw, list) else []
    if not isinstance(raw, list) or len(scenes) != len(raw):
        notes.append("scenes coerced")

    used_ids = set()
    for index, scene in enumerate(scenes, start=1):
        scene_id = scene.get("id")
        if not isinstance(scene_id, str) or not scene_id.strip() or scene_id in used_ids:
            candidate = f"s{index}"
            suffix = 1
            while candidate in used_ids:
                suffix += 1
                candidate = f"s{index}_{suffix}"
            scene["id"] = candidate
            notes.append(f"scene {index} id set to {candidate}")
        used_ids.add(scene["id"])
        if not isinstance(scene.get("purpose"), str) or not scene["purpose"].strip():
            scene["purpose"] = "body"

        visuals = [v for v in scene.get("visuals") or [] if isinstance(v, dict) and isinstance(v.get("assetId"), str)]
        for visual in visuals:
            asset_id = visual["assetId"]
            if asset_id not in assets:
                assets[asset_id] = _placeholder_asset(asset_id, scene.get("visualAnchor"), profile)
                notes.append(f"placeholder asset {asset_id} created")
            visual["type"] = "user_asset" if assets[asset_id]["source"] == AssetSource.USER.value else "generated"
        if not visuals:
            asset_id = f"gen_{scene['id']}_visual"
            if asset_id not in assets:
                assets[asset_id] = _placeholder_asset(asset_id, scene.get("visualAnchor"), profile)
            visuals = [{"assetId": asset_id, "type": "generated", "role": "background"}]
            notes.append(f"scene {scene['id']} visual added")
        scene["visuals"] = visuals
    return scenes


# ----- Audio, visuals, effects -----


def _repair_audio(document: Dict[str, Any], total: float, notes: List[str]) -> Dict[str, Any]:
    audio = _dict(document.get("audio"))
    tts = audio.get("ttsDefaults")
    if not isinstance(tts, dict) or not str(tts.get("provider") or "").strip():
        audio["ttsDefaults"] = {**TtsDefaults().to_document(), **(tts if isinstance(tts, dict) else {})}
        audio["ttsDefaults"]["provider"] = TtsDefaults().provider
        notes.append("default TTS provider restored")

    music = _dict(audio.get("music"))
    cue_map = _dict(music.get("cueMap"))
    for cue_id, cue in list(cue_map.items()):
        if not isinstance(cue, dict):
            del cue_map[cue_id]
            continue
        start = ensure_float(cue.get("startSec"))
        clamped = min(max(0.0, start), total)
        if clamped != cue.get("startSec"):
            cue["startSec"] = clamped
            notes.append(f"music cue {cue_id} start clamped")
        if not isinstance(cue.get("mood"), str):
            cue["mood"] = "neutral_learning"
        if cue.get("structure") not in VALID_STRUCTURES:
            cue["structure"] = MusicStructure.BUILD.value
    music["cueMap"] = cue_map
    music.setdefault("globalVolumeDuckToVoices", True)
    audio["music"] = music
    if not isinstance(audio.get("sfx", []), list):
        audio["sfx"] = []
    return audio


def _repair_effects(
    document: Dict[str, Any],
    scenes: List[Dict[str, Any]],
    catalog: EffectCatalog,
    notes: List[str],
) -> Dict[str, Any]:
    effects = _dict(document.get("effects"))
    allowed = effects.get("allowed")
    if not isinstance(allowed, list) or not all(isinstance(name, str) for name in allowed):
        allowed = list(catalog.vocabulary())
        notes.append("effects.allowed restored")
    effects["allowed"] = list(dict.fromkeys(allowed))
    if not isinstance(effects.get("defaultTransition"), str):
        effects["defaultTransition"] = catalog.default_transition(None)
    if not isinstance(effects.get("perScene", {}), dict):
        effects.pop("perScene")

    allowed_set = set(effects["allowed"])
    for scene in scenes:
        scene_effects = scene.get("effects")
        if scene_effects is None:
            continue
        if not isinstance(scene_effects, dict):
            scene.pop("effects")
            continue
        for key in ("layeredEffects", "transitions"):
            names = scene_effects.get(key) or []
            kept = [name for name in names if isinstance(name, str) and name in allowed_set]
            if kept != names:
                notes.append(f"scene {scene['id']} {key} restricted to allowed effects")
            scene_effects[key] = kept
        hints = scene_effects.get("orderingHints")
        if isinstance(hints, dict):
            valid = {*scene_effects["layeredEffects"], *scene_effects["transitions"]}
            scene_effects["orderingHints"] = {
                name: hint
                for name, hint in hints.items()
                if name in valid and isinstance(hint, (int, float)) and not isinstance(hint, bool)
            }
    return effects


def _repair_visual_plan(document: Dict[str, Any]) -> Dict[str, Any]:
    visuals = _dict(document.get("visuals"))
    palette = visuals.get("colorPalette")
    if not isinstance(palette, list) or not all(
        isinstance(color, str) and re.fullmatch(r"#[0-9A-Fa-f]{6}", color) for color in palette
    ):
        visuals["colorPalette"] = list(VisualPlan().color_palette)
    if not isinstance(visuals.get("fonts", {}), dict):
        visuals["fonts"] = dict(VisualPlan().fonts)
    return visuals


# ----- Public API -----


def deterministic_repair(
    document: Any,
    *,
    defaults: Mapping[str, Any] | None = None,
    settings: CompilerSettings | None = None,
    catalog: EffectCatalog | None = None,
) -> Tuple[Dict[str, Any], List[str]]:
    """Return ``(repaired_copy, notes)``; ``notes`` lists every fix that was applied."""
    settings = settings or CompilerSettings()
    catalog = catalog or default_catalog()
    defaults = defaults or {}
    notes: List[str] = []

    repaired: Dict[str, Any] = copy.deepcopy(document) if isinstance(document, dict) else {}
    unknown = [key for key in repaired if key not in ALLOWED_TOP_LEVEL_KEYS]
    for key in unknown:
        repaired.pop(key)
    if unknown:
        notes.append(f"dropped unknown keys {sorted(unknown)}")
    if not isinstance(repaired.get("id"), str) or not repaired["id"]:
        repaired["id"] = str(uuid.uuid4())

    metadata = _repair_metadata(repaired, defaults, settings, catalog, notes)
    total = float(metadata["durationSeconds"])
    assets = _repair_assets(repaired, notes)
    scenes = _repair_scenes(repaired, assets, metadata.get("profile"), notes)

    rescale_scene_durations(scenes, total, floor=settings.min_scene_seconds, tolerance=settings.duration_tolerance)
    sync_subtitles(scenes)

    repaired["metadata"] = metadata
    repaired["assets"] = assets
    repaired["scenes"] = scenes
    repaired["audio"] = _repair_audio(repaired, total, notes)
    repaired["visuals"] = _repair_visual_plan(repaired)
    repaired["effects"] = _repair_effects(repaired, scenes, catalog, notes)
    if not isinstance(repaired.get("consistency"), dict):
        repaired["consistency"] = dict(DEFAULT_CONSISTENCY)
    if not isinstance(repaired.get("jobs"), list):
        repaired["jobs"] = []
        notes.append("jobs coerced to empty list")
    if not isinstance(repaired.get("sourceRefs", {}), dict):
        repaired.pop("sourceRefs")

    LOGGER.info("Deterministic repair applied %d fix(es)", len(notes))
    return repaired, notes


def build_minimal_fallback_manifest(
    metadata: Mapping[str, Any],
    *,
    settings: CompilerSettings | None = None,
    catalog: EffectCatalog | None = None,
    manifest_id: str | None = None,
) -> Dict[str, Any]:
    """A single scene over the whole duration, one placeholder visual, default audio and effects."""
    settings = settings or CompilerSettings()
    catalog = catalog or default_catalog()
    fallback_metadata, _ = _fallback_metadata(metadata, settings, catalog)
    total = float(fallback_metadata["durationSeconds"])
    profile = fallback_metadata["profile"]

    asset_id = "gen_s1_visual"
    asset = _placeholder_asset(asset_id, None, profile)
    scene = {
        "id": "s1",
        "title": fallback_metadata.get("title") or "body",
        "startAtSec": 0.0,
        "durationSeconds": total,
        "purpose": "body",
        "orderingHint": 1,
        "narration": FALLBACK_NARRATION,
        "musicCue": FALLBACK_MUSIC_CUE,
        "visuals": [{"assetId": asset_id, "type": "generated", "role": "background"}],
        "effects": {
            "layeredEffects": ["overlay_text"],
            "transitions": ["fade"],
            "gradePreset": catalog.grade_preset(profile),
            "orderingHints": effect_ordering_hints(list(FALLBACK_EFFECTS), catalog),
        },
    }
    sync_subtitles([scene])
    music = MusicPlan(
        cue_map={
            FALLBACK_MUSIC_CUE: MusicCue(
                start_sec=0.0,
                mood=catalog.music_mood(profile, fallback_metadata.get("tone")),
                structure=MusicStructure.INTRO,
            )
        }
    )
    return {
        "id": manifest_id or str(uuid.uuid4()),
        "version": SCHEMA_VERSION,
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "sourceRefs": {"fallback": True},
        "metadata": fallback_metadata,
        "scenes": [scene],
        "assets": {asset_id: asset},
        "audio": AudioPlan(tts_defaults=TtsDefaults(), music=music).to_document(),
        "visuals": VisualPlan().to_document(),
        "effects": {"allowed": list(FALLBACK_EFFECTS), "defaultTransition": "fade"},
        "consistency": dict(DEFAULT_CONSISTENCY),
        "jobs": [],
    }


def _fallback_metadata(
    metadata: Mapping[str, Any],
    settings: CompilerSettings,
    catalog: EffectCatalog,
) -> Tuple[Dict[str, Any], List[str]]:
    notes: List[str] = []
    document = {"metadata": copy.deepcopy(dict(metadata or {}))}
    return _repair_metadata(document, DEFAULT_METADATA, settings, catalog, notes), notes
