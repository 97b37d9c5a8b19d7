"""Static lookup tables: effect taxonomy, platform preferences and creative profiles.

The tables are read from the JSON files under ``manifest_generation/data`` once per
process and frozen (mappings become ``MappingProxyType``, lists become tuples), so
the enricher, the assembler and the job decomposer share a read-only view. Callers
that need a different taxonomy build their own ``EffectCatalog`` and pass it in.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .paths import EFFECT_CATALOG_PATH, PLATFORM_RULES_PATH, PROFILES_PATH

DEFAULT_PLATFORM = "social"
DEFAULT_PROFILE = "general"

ASPECT_RE = re.compile(r"^\s*([1-9]\d*)\s*[:x/]\s*([1-9]\d*)\s*$", re.IGNORECASE)
ASPECT_WORDS = {
    "vertical": "9:16",
    "portrait": "9:16",
    "horizontal": "16:9",
    "landscape": "16:9",
    "widescreen": "16:9",
    "square": "1:1",
}


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Lookup table not found at {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def normalize_aspect_ratio(value: Any) -> Optional[str]:
    """Return ``W:H`` for inputs such as ``9x16``, ``16/9`` or ``vertical``; None otherwise."""
    if not isinstance(value, str):
        return None
    text = value.strip().lower()
    if text in ASPECT_WORDS:
        return ASPECT_WORDS[text]
    match = ASPECT_RE.match(text)
    if not match:
        return None
    return f"{int(match.group(1))}:{int(match.group(2))}"


@dataclass(frozen=True)
class EffectCatalog:
    effects: Mapping[str, Mapping[str, Any]]
    purpose_effects: Mapping[str, Tuple[str, ...]]
    rotation_transitions: Tuple[str, ...]
    cinematic_levels: Mapping[str, Mapping[str, Any]]
    grade_presets: Mapping[str, str]
    platforms: Mapping[str, Mapping[str, Any]]
    platform_aliases: Mapping[str, str]
    resolutions: Mapping[str, str]
    profiles: Mapping[str, Mapping[str, Any]]
    tone_moods: Mapping[str, str]

    @classmethod
    def load(
        cls,
        effect_catalog_path: Path = EFFECT_CATALOG_PATH,
        platform_rules_path: Path = PLATFORM_RULES_PATH,
        profiles_path: Path = PROFILES_PATH,
    ) -> "EffectCatalog":
        effects = _load_json(effect_catalog_path)
        platforms = _load_json(platform_rules_path)
        profiles = _load_json(profiles_path)
        return cls(
            effects=_freeze(effects.get("effects", {})),
            purpose_effects=_freeze(effects.get("purposeEffects", {})),
            rotation_transitions=_freeze(effects.get("rotationTransitions", ["fade"])),
            cinematic_levels=_freeze(effects.get("cinematicLevels", {})),
            grade_presets=_freeze(effects.get("gradePresets", {"default": "neutral_pro"})),
            platforms=_freeze(platforms.get("platforms", {})),
            platform_aliases=_freeze(platforms.get("aliases", {})),
            resolutions=_freeze(platforms.get("resolutions", {})),
            profiles=_freeze(profiles.get("profiles", {})),
            tone_moods=_freeze(profiles.get("toneMoods", {})),
        )

    # ----- Effects -----

    def vocabulary(self) -> Tuple[str, ...]:
        """Every known effect identifier, layered effects and transitions alike."""
        return tuple(self.effects)

    def is_transition(self, effect: str) -> bool:
        return self.effects.get(effect, {}).get("kind") == "transition"

    def ordering_hint(self, effect: str) -> Optional[float]:
        template = self.effects.get(effect)
        if template is None:
            return None
        return template.get("orderingHint")

    def grade_preset(self, profile: Optional[str]) -> str:
        default = self.grade_presets.get("default", "neutral_pro")
        if not profile:
            return default
        return self.grade_presets.get(profile, default)

    # ----- Platforms -----

    def normalize_platform(self, value: Any) -> Optional[str]:
        """Map free-form platform text (``"TikTok"``, ``"IG reels"``) onto a known platform id."""
        if not isinstance(value, str) or not value.strip():
            return None
        text = value.strip().lower()
        if text in self.platforms:
            return text
        if text in self.platform_aliases:
            return self.platform_aliases[text]
        for token in re.split(r"[\s/,;|+&]+", text):
            if token in self.platforms:
                return token
            if token in self.platform_aliases:
                return self.platform_aliases[token]
        return None

    def platform_rules(self, platform: Optional[str]) -> Mapping[str, Any]:
        rules = self.platforms.get(platform or DEFAULT_PLATFORM)
        if rules is None:
            rules = self.platforms.get(DEFAULT_PLATFORM, MappingProxyType({}))
        return rules

    def default_transition(self, platform: Optional[str]) -> str:
        return self.platform_rules(platform).get("defaultTransition", "fade")

    def resolution_for(self, aspect_ratio: Optional[str]) -> str:
        if aspect_ratio in self.resolutions:
            return self.resolutions[aspect_ratio]
        normalized = normalize_aspect_ratio(aspect_ratio or "")
        if normalized is None:
            return self.resolutions.get("16:9", "1920x1080")
        width, height = (int(part) for part in normalized.split(":"))
        # Short side at 1080, rounded to an even pixel count.
        if width >= height:
            long_side = int(round(1080 * width / height / 2.0)) * 2
            return f"{long_side}x1080"
        long_side = int(round(1080 * height / width / 2.0)) * 2
        return f"1080x{long_side}"

    # ----- Profiles -----

    def profile(self, name: Optional[str]) -> Mapping[str, Any]:
        profile = self.profiles.get(name or DEFAULT_PROFILE)
        if profile is None:
            profile = self.profiles.get(DEFAULT_PROFILE, MappingProxyType({}))
        return profile

    def music_mood(self, profile: Optional[str], tone: Optional[str] = None) -> str:
        if profile and profile in self.profiles:
            mood = self.profiles[profile].get("musicMood")
            if mood and profile != DEFAULT_PROFILE:
                return mood
        if tone and tone.lower() in self.tone_moods:
            return self.tone_moods[tone.lower()]
        return self.profile(profile).get("musicMood", "neutral_learning")


@lru_cache(maxsize=1)
def default_catalog() -> EffectCatalog:
    """Process-wide catalog built from the packaged JSON tables."""
    return EffectCatalog.load()
