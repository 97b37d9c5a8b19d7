"""Reconcile an enriched manifest with its profile's hard constraints.

Hard constraints limit the colour palette, the effects a scene may use, the
narration voice style and the pacing. The enforcement mode decides what happens
on a conflict:

  strict    clamp everything, explicitly set scene effects included
  balanced  clamp generated values, only warn about explicitly set scene effects
  creative  warn only

Pacing (minimum scene length, maximum scene count) is reported and never
clamped: scene timing is owned by the timeline normalizer.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Collection, Dict, List, Mapping, MutableMapping, Optional, Tuple

from .catalog import EffectCatalog, default_catalog
from .models import EnforcementMode

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class HardConstraints:
    palette: Tuple[str, ...] = ()
    forbidden_effects: Tuple[str, ...] = ()
    max_effects_per_scene: Optional[int] = None
    voice_style: Optional[str] = None
    min_scene_seconds: Optional[float] = None
    max_scenes: Optional[int] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "HardConstraints":
        data = data or {}
        max_effects = data.get("maxEffectsPerScene")
        min_scene = data.get("minSceneSeconds")
        max_scenes = data.get("maxScenes")
        return cls(
            palette=tuple(str(color).upper() for color in data.get("palette", ())),
            forbidden_effects=tuple(data.get("forbiddenEffects", ())),
            max_effects_per_scene=int(max_effects) if max_effects is not None else None,
            voice_style=data.get("voiceStyle"),
            min_scene_seconds=float(min_scene) if min_scene is not None else None,
            max_scenes=int(max_scenes) if max_scenes is not None else None,
        )

    def is_empty(self) -> bool:
        return not (
            self.palette
            or self.forbidden_effects
            or self.max_effects_per_scene is not None
            or self.voice_style
            or self.min_scene_seconds is not None
            or self.max_scenes is not None
        )


@dataclass
class ConstraintOutcome:
    warnings: List[str] = field(default_factory=list)
    clamped: Dict[str, Any] = field(default_factory=dict)


class ConstraintResolver:
    def __init__(self, constraints: HardConstraints, mode: EnforcementMode | str = EnforcementMode.BALANCED) -> None:
        self.constraints = constraints
        self.mode = EnforcementMode(mode)

    def _may_clamp(self, explicit: bool) -> bool:
        if self.mode is EnforcementMode.STRICT:
            return True
        return self.mode is EnforcementMode.BALANCED and not explicit

    def resolve(
        self,
        manifest: MutableMapping[str, Any],
        explicit_scene_ids: Collection[str] = (),
    ) -> ConstraintOutcome:
        outcome = ConstraintOutcome()
        if self.constraints.is_empty():
            return outcome
        self._resolve_palette(manifest, outcome)
        self._resolve_effects(manifest, set(explicit_scene_ids), outcome)
        self._resolve_voice(manifest, outcome)
        self._report_pacing(manifest, outcome)
        for warning in outcome.warnings:
            LOGGER.warning("[WARN] %s", warning)
        return outcome

    # ----- Palette -----

    def _resolve_palette(self, manifest: MutableMapping[str, Any], outcome: ConstraintOutcome) -> None:
        allowed = self.constraints.palette
        visuals = manifest.get("visuals")
        if not allowed or not isinstance(visuals, MutableMapping):
            return
        palette = [str(color).upper() for color in visuals.get("colorPalette") or []]
        outside = [color for color in palette if color not in allowed]
        if not outside:
            return
        if not self._may_clamp(explicit=False):
            outcome.warnings.append(f"Palette colours {outside} are outside the profile palette")
            return
        kept = [color for color in palette if color in allowed] or list(allowed)
        visuals["colorPalette"] = kept
        outcome.clamped["colorPalette"] = kept

    # ----- Effects -----

    def _clean_effects(self, effects: MutableMapping[str, Any]) -> List[str]:
        forbidden = set(self.constraints.forbidden_effects)
        removed: List[str] = []
        layered = [name for name in effects.get("layeredEffects") or [] if name not in forbidden]
        transitions = [name for name in effects.get("transitions") or [] if name not in forbidden]
        removed.extend(name for name in effects.get("layeredEffects") or [] if name in forbidden)
        removed.extend(name for name in effects.get("transitions") or [] if name in forbidden)
        limit = self.constraints.max_effects_per_scene
        if limit is not None and len(layered) > limit:
            removed.extend(layered[limit:])
            layered = layered[:limit]
        effects["layeredEffects"] = layered
        effects["transitions"] = transitions
        hints = effects.get("orderingHints")
        if isinstance(hints, MutableMapping):
            effects["orderingHints"] = {name: hint for name, hint in hints.items() if name in {*layered, *transitions}}
        return removed

    def _violations(self, effects: Mapping[str, Any]) -> List[str]:
        forbidden = set(self.constraints.forbidden_effects)
        layered = list(effects.get("layeredEffects") or [])
        names = [*layered, *(effects.get("transitions") or [])]
        problems = [name for name in names if name in forbidden]
        limit = self.constraints.max_effects_per_scene
        if limit is not None and len([name for name in layered if name not in forbidden]) > limit:
            problems.append(f"more than {limit} layered effects")
        return problems

    def _resolve_effects(
        self,
        manifest: MutableMapping[str, Any],
        explicit_scene_ids: set[str],
        outcome: ConstraintOutcome,
    ) -> None:
        clamped_scenes: Dict[str, List[str]] = {}
        for scene in manifest.get("scenes") or []:
            effects = scene.get("effects") if isinstance(scene, MutableMapping) else None
            if not isinstance(effects, MutableMapping):
                continue
            problems = self._violations(effects)
            if not problems:
                continue
            scene_id = scene.get("id")
            if self._may_clamp(explicit=scene_id in explicit_scene_ids):
                clamped_scenes[scene_id] = self._clean_effects(effects)
            else:
                outcome.warnings.append(f"Scene {scene_id} effects conflict with profile constraints: {problems}")
        if clamped_scenes:
            outcome.clamped["sceneEffects"] = clamped_scenes

        effects_plan = manifest.get("effects")
        forbidden = set(self.constraints.forbidden_effects)
        if self.mode is EnforcementMode.STRICT and forbidden and isinstance(effects_plan, MutableMapping):
            allowed = list(effects_plan.get("allowed") or [])
            kept = [name for name in allowed if name not in forbidden]
            if kept != allowed:
                effects_plan["allowed"] = kept
                outcome.clamped["allowedEffects"] = kept
                if effects_plan.get("defaultTransition") in forbidden:
                    effects_plan["defaultTransition"] = "fade"

    # ----- Audio and pacing -----

    def _resolve_voice(self, manifest: MutableMapping[str, Any], outcome: ConstraintOutcome) -> None:
        wanted = self.constraints.voice_style
        tts = (manifest.get("audio") or {}).get("ttsDefaults")
        if not wanted or not isinstance(tts, MutableMapping) or tts.get("style") == wanted:
            return
        if self._may_clamp(explicit=False):
            outcome.clamped["voiceStyle"] = {"from": tts.get("style"), "to": wanted}
            tts["style"] = wanted
        else:
            outcome.warnings.append(f"Voice style '{tts.get('style')}' differs from profile style '{wanted}'")

    def _report_pacing(self, manifest: Mapping[str, Any], outcome: ConstraintOutcome) -> None:
        scene_count = len(manifest.get("scenes") or [])
        if self.constraints.max_scenes is not None and scene_count > self.constraints.max_scenes:
            outcome.warnings.append(
                f"{scene_count} scenes exceed the profile maximum of {self.constraints.max_scenes}"
            )
        minimum = self.constraints.min_scene_seconds
        if minimum is None:
            return
        short = [
            scene.get("id")
            for scene in manifest.get("scenes") or []
            if isinstance(scene, Mapping) and float(scene.get("durationSeconds") or 0) < minimum
        ]
        if short:
            outcome.warnings.append(f"Scenes {short} are shorter than the profile minimum of {minimum:.1f}s")


def apply_profile_constraints(
    manifest: MutableMapping[str, Any],
    explicit_scene_ids: Collection[str] = (),
    *,
    catalog: EffectCatalog | None = None,
    mode: EnforcementMode | str | None = None,
) -> ConstraintOutcome:
    """Resolve the manifest's profile constraints using the mode recorded in its metadata."""
    catalog = catalog or default_catalog()
    metadata = manifest.get("metadata") or {}
    profile = catalog.profile(metadata.get("profile"))
    resolved_mode = mode or metadata.get("enforcementMode") or profile.get("enforcementMode") or "balanced"
    resolver = ConstraintResolver(HardConstraints.from_mapping(profile.get("constraints")), resolved_mode)
    return resolver.resolve(manifest, explicit_scene_ids)
