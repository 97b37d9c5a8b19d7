"""Assign ordering hints and per-scene effects from the static effect tables.

For every scene, in array order, the enricher:
  * sets ``orderingHint`` to the 1-based scene position
  * leaves an explicit ``effects`` object exactly as it is
  * otherwise copies the manifest's ``effects.perScene`` override for the scene, or
  * builds ``{layeredEffects, transitions, gradePreset, orderingHints}`` from the
    tables keyed by scene purpose, target platform and cinematic level

Selection is deterministic: transitions rotate through a short list indexed by
scene position, and every chosen effect is restricted to ``effects.allowed``.
"""
from __future__ import annotations

import copy
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Sequence

from .catalog import EffectCatalog, default_catalog

LOGGER = logging.getLogger(__name__)

UNKNOWN_EFFECT_HINT_BASE = 50
FALLBACK_PURPOSE = "body"


@dataclass
class EnrichmentReport:
    enriched: List[str] = field(default_factory=list)
    explicit: List[str] = field(default_factory=list)
    overridden: List[str] = field(default_factory=list)


# ----- Table lookups -----


def _purpose_key(purpose: Any) -> str:
    text = str(purpose or FALLBACK_PURPOSE).lower()
    return text if text in {"hook", "body", "cta"} else FALLBACK_PURPOSE


def _table_effects(table: Mapping[str, Sequence[str]] | None, purpose: str) -> List[str]:
    if not table:
        return []
    return list(table.get(purpose) or table.get(FALLBACK_PURPOSE) or [])


def select_layered_effects(
    purpose: str,
    *,
    platform: Optional[str],
    cinematic_level: Optional[str],
    effect_hints: Sequence[str],
    allowed: Sequence[str],
    catalog: EffectCatalog,
) -> List[str]:
    """Treatment-named effects first, then cinematic level, platform and purpose tables."""
    allowed_set = set(allowed)
    named = [name for name in effect_hints if name in allowed_set and not catalog.is_transition(name)]
    if named:
        return list(dict.fromkeys(named))

    key = _purpose_key(purpose)
    candidates: List[List[str]] = []
    level = catalog.cinematic_levels.get(cinematic_level or "")
    if level is not None and cinematic_level == "pro":
        candidates.append(_table_effects(level.get("effects"), key))
    candidates.append(_table_effects(catalog.platform_rules(platform).get("effects"), key))
    if level is not None:
        candidates.append(_table_effects(level.get("effects"), key))
    candidates.append(_table_effects(catalog.purpose_effects, key))

    for effects in candidates:
        chosen = [name for name in effects if name in allowed_set]
        if chosen:
            return chosen
    return []


def transition_rotation(platform: Optional[str], cinematic_level: Optional[str], catalog: EffectCatalog) -> List[str]:
    level = catalog.cinematic_levels.get(cinematic_level or "")
    if cinematic_level == "pro" and level is not None:
        return list(level.get("transitions", ()))
    platform_transitions = catalog.platform_rules(platform).get("transitions")
    if platform_transitions:
        return list(platform_transitions)
    if level is not None:
        return list(level.get("transitions", ()))
    return list(catalog.rotation_transitions)


def select_transition(
    index: int,
    rotation: Sequence[str],
    *,
    allowed: Sequence[str],
    default_transition: Optional[str],
) -> Optional[str]:
    allowed_set = set(allowed)
    candidates = [name for name in rotation if name in allowed_set]
    if candidates:
        return candidates[index % len(candidates)]
    if default_transition and default_transition in allowed_set:
        return default_transition
    return None


def effect_ordering_hints(effects: Sequence[str], catalog: EffectCatalog) -> Dict[str, float]:
    hints: Dict[str, float] = {}
    for index, name in enumerate(effects):
        hint = catalog.ordering_hint(name)
        hints[name] = float(hint) if hint is not None else float(UNKNOWN_EFFECT_HINT_BASE + index)
    return hints


# ----- Scene enrichment -----


def build_scene_effects(
    scene: Mapping[str, Any],
    index: int,
    *,
    metadata: Mapping[str, Any],
    allowed: Sequence[str],
    default_transition: Optional[str],
    catalog: EffectCatalog,
) -> Dict[str, Any]:
    platform = metadata.get("platform")
    level = metadata.get("cinematicLevel")
    layered = select_layered_effects(
        scene.get("purpose"),
        platform=platform,
        cinematic_level=level,
        effect_hints=scene.get("effectHints") or [],
        allowed=allowed,
        catalog=catalog,
    )
    transition = select_transition(
        index,
        transition_rotation(platform, level, catalog),
        allowed=allowed,
        default_transition=default_transition,
    )
    transitions = [transition] if transition else []
    return {
        "layeredEffects": layered,
        "transitions": transitions,
        "gradePreset": catalog.grade_preset(metadata.get("profile")),
        "orderingHints": effect_ordering_hints([*layered, *transitions], catalog),
    }


def enrich_manifest(manifest: MutableMapping[str, Any], catalog: EffectCatalog | None = None) -> EnrichmentReport:
    """Enrich scenes in place. Explicit scene effects are never touched."""
    catalog = catalog or default_catalog()
    report = EnrichmentReport()
    metadata = manifest.get("metadata") or {}
    effects_plan = manifest.get("effects") or {}
    allowed = list(effects_plan.get("allowed") or catalog.vocabulary())
    default_transition = effects_plan.get("defaultTransition")
    per_scene = effects_plan.get("perScene") or {}

    for index, scene in enumerate(manifest.get("scenes") or []):
        if not isinstance(scene, MutableMapping):
            continue
        scene["orderingHint"] = index + 1
        scene_id = scene.get("id")
        if isinstance(scene.get("effects"), Mapping):
            report.explicit.append(scene_id)
            continue
        override = per_scene.get(scene_id)
        if isinstance(override, Mapping) and override:
            scene["effects"] = copy.deepcopy(dict(override))
            report.overridden.append(scene_id)
            continue
        scene["effects"] = build_scene_effects(
            scene,
            index,
            metadata=metadata,
            allowed=allowed,
            default_transition=default_transition,
            catalog=catalog,
        )
        report.enriched.append(scene_id)

    LOGGER.info(
        "Enriched scenes | generated=%d explicit=%d overrides=%d",
        len(report.enriched),
        len(report.explicit),
        len(report.overridden),
    )
    return report


def enrichment_stats(manifest: Mapping[str, Any]) -> Dict[str, Any]:
    """Effect and transition usage across the manifest's scenes."""
    effect_usage: Counter[str] = Counter()
    transition_usage: Counter[str] = Counter()
    scenes = [scene for scene in manifest.get("scenes") or [] if isinstance(scene, Mapping)]
    with_effects = 0
    for scene in scenes:
        effects = scene.get("effects")
        if not isinstance(effects, Mapping):
            continue
        with_effects += 1
        effect_usage.update(effects.get("layeredEffects") or [])
        transition_usage.update(effects.get("transitions") or [])
    return {
        "sceneCount": len(scenes),
        "scenesWithEffects": with_effects,
        "uniqueEffects": sorted(effect_usage),
        "effectUsage": dict(sorted(effect_usage.items())),
        "transitionUsage": dict(sorted(transition_usage.items())),
    }
