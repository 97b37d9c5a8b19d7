"""Scene timing: weight allocation, rescaling to the target duration and normalization."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, MutableMapping, Sequence

LOGGER = logging.getLogger(__name__)

Scene = MutableMapping[str, Any]


def ensure_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def scene_end(scene: Scene) -> float:
    return ensure_float(scene.get("startAtSec")) + ensure_float(scene.get("durationSeconds"))


def allocate_durations(weights: Sequence[Any], total: float, *, floor: float = 0.05) -> List[float]:
    """Split ``total`` proportionally to ``weights``, two decimals, never below ``floor``."""
    cleaned = [max(0.0, ensure_float(weight)) for weight in weights]
    weight_sum = sum(cleaned)
    if weight_sum <= 0:
        cleaned = [1.0] * len(cleaned)
        weight_sum = float(len(cleaned))
    return [max(floor, round(weight / weight_sum * total, 2)) for weight in cleaned]


def rescale_scene_durations(
    scenes: List[Scene],
    total: float,
    *,
    floor: float = 0.05,
    tolerance: float = 0.01,
) -> List[Scene]:
    """Scale durations so they sum to ``total`` and lay the scenes out back to back.

    Rounding drift lands on the last scene (or on the longest one when the last
    scene would drop under ``floor``), so the final scene ends at ``total``.
    """
    if not scenes or total <= 0:
        return scenes

    current = [max(0.0, ensure_float(scene.get("durationSeconds"))) for scene in scenes]
    current_sum = sum(current)
    if current_sum <= 0:
        even = round(total / len(scenes), 2)
        durations = [even] * len(scenes)
        durations[-1] = round(total - even * (len(scenes) - 1), 2)
    else:
        scale = total / current_sum
        durations = [max(floor, round(value * scale, 2)) for value in current]

    drift = round(total - sum(durations), 2)
    if abs(drift) >= tolerance / 2:
        target = len(durations) - 1
        if durations[target] + drift < floor:
            target = max(range(len(durations)), key=lambda idx: durations[idx])
        durations[target] = round(durations[target] + drift, 2)
        if durations[target] < floor:
            LOGGER.warning("Cannot fit %d scenes into %.2fs above the %.2fs floor", len(scenes), total, floor)
            durations[target] = floor

    cursor = 0.0
    for scene, duration in zip(scenes, durations):
        scene["startAtSec"] = round(cursor, 2)
        scene["durationSeconds"] = duration
        cursor += duration
    return scenes


def normalize_scene_timings(scenes: List[Scene], *, min_duration: float = 1.0) -> List[Scene]:
    """Fill missing or negative offsets from a running cursor and clamp bad durations.

    A valid explicit ``startAtSec`` is kept even when it leaves a gap.
    """
    cursor = 0.0
    for scene in scenes:
        start = scene.get("startAtSec")
        if not _is_number(start) or start < 0:
            start = round(cursor, 2)
            scene["startAtSec"] = start
        duration = scene.get("durationSeconds")
        if not _is_number(duration) or duration <= 0:
            duration = min_duration
            scene["durationSeconds"] = duration
        cursor = start + duration
    return scenes


def sync_subtitles(scenes: List[Scene]) -> None:
    """One subtitle span per narrated scene, covering the whole scene."""
    for scene in scenes:
        narration = scene.get("narration")
        if isinstance(narration, str) and narration.strip():
            start = ensure_float(scene.get("startAtSec"))
            end = round(start + ensure_float(scene.get("durationSeconds")), 2)
            scene["subtitles"] = [{"text": narration.strip(), "startSec": start, "endSec": end}]
        else:
            scene.pop("subtitles", None)


def compute_timing_warnings(
    scenes: Sequence[Scene],
    total: float,
    tolerance: float = 0.01,
) -> List[str]:
    """Human-readable notes about gaps, overlaps and overruns between ordered scenes."""
    warnings: List[str] = []
    ordered = sorted(scenes, key=lambda scene: ensure_float(scene.get("startAtSec")))
    previous: Dict[str, Any] | None = None
    for scene in ordered:
        start = ensure_float(scene.get("startAtSec"))
        if previous is not None:
            gap = start - scene_end(previous)
            if gap > tolerance:
                warnings.append(f"Gap of {gap:.2f}s between scenes {previous.get('id')} and {scene.get('id')}")
            elif gap < -tolerance:
                warnings.append(f"Scenes {previous.get('id')} and {scene.get('id')} overlap by {-gap:.2f}s")
        previous = dict(scene)
    if ordered:
        overrun = scene_end(ordered[-1]) - total
        if overrun > tolerance:
            warnings.append(f"Scene {ordered[-1].get('id')} runs {overrun:.2f}s past the total duration")
    return warnings
