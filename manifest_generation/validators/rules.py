from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping

import networkx as nx

from ..jobs import build_job_graph
from ..models import AssetSource, AssetStatus, JobType, ValidationIssue, ValidationReport
from ..settings import CompilerSettings
from ..timeline import ensure_float

VALID_SOURCES = {source.value for source in AssetSource}


def _issue(code: str, message: str, path: str = "", **context: Any) -> ValidationIssue:
    return ValidationIssue(code=code, message=message, severity="error", path=path, context=context)


def _scenes(manifest: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    scenes = manifest.get("scenes")
    if not isinstance(scenes, list):
        return []
    return [scene for scene in scenes if isinstance(scene, Mapping)]


def _check_timeline(manifest: Mapping[str, Any], tolerance: float) -> Iterable[ValidationIssue]:
    scenes = _scenes(manifest)
    total = ensure_float((manifest.get("metadata") or {}).get("durationSeconds"))
    duration_sum = sum(ensure_float(scene.get("durationSeconds")) for scene in scenes)
    if abs(duration_sum - total) > tolerance:
        yield _issue(
            "rule.duration.sum",
            f"Scene durations sum to {duration_sum:.2f}s but the manifest lasts {total:.2f}s",
            "scenes",
            expected=total,
            actual=round(duration_sum, 4),
        )

    seen: Dict[str, int] = {}
    for index, scene in enumerate(scenes):
        scene_id = str(scene.get("id"))
        if scene_id in seen:
            yield _issue(
                "rule.scene.duplicate_id",
                f"Scene id '{scene_id}' is used by scenes {seen[scene_id]} and {index}",
                f"scenes/{index}/id",
            )
        seen.setdefault(scene_id, index)
        end = ensure_float(scene.get("startAtSec")) + ensure_float(scene.get("durationSeconds"))
        if end > total + tolerance:
            yield _issue(
                "rule.scene.bounds",
                f"Scene '{scene_id}' ends at {end:.2f}s, past the total duration of {total:.2f}s",
                f"scenes/{index}",
                sceneId=scene_id,
            )

    ordered = sorted(enumerate(scenes), key=lambda item: ensure_float(item[1].get("startAtSec")))
    for (_, previous), (index, current) in zip(ordered, ordered[1:]):
        previous_end = ensure_float(previous.get("startAtSec")) + ensure_float(previous.get("durationSeconds"))
        overlap = previous_end - ensure_float(current.get("startAtSec"))
        if overlap > tolerance:
            yield _issue(
                "rule.scene.overlap",
                f"Scenes '{previous.get('id')}' and '{current.get('id')}' overlap by {overlap:.2f}s",
                f"scenes/{index}/startAtSec",
                sceneIds=[previous.get("id"), current.get("id")],
            )


def _check_assets(manifest: Mapping[str, Any]) -> Iterable[ValidationIssue]:
    assets = manifest.get("assets") if isinstance(manifest.get("assets"), Mapping) else {}
    for index, scene in enumerate(_scenes(manifest)):
        for position, visual in enumerate(scene.get("visuals") or []):
            asset_id = visual.get("assetId") if isinstance(visual, Mapping) else None
            if asset_id not in assets:
                yield _issue(
                    "rule.asset.missing",
                    f"Scene '{scene.get('id')}' references unknown asset '{asset_id}'",
                    f"scenes/{index}/visuals/{position}/assetId",
                    sceneId=scene.get("id"),
                    assetId=asset_id,
                )
    for asset_id, asset in assets.items():
        source = asset.get("source") if isinstance(asset, Mapping) else None
        if source not in VALID_SOURCES:
            yield _issue(
                "rule.asset.source",
                f"Asset '{asset_id}' has source '{source}', expected one of {sorted(VALID_SOURCES)}",
                f"assets/{asset_id}/source",
            )


def _check_audio(manifest: Mapping[str, Any], tolerance: float) -> Iterable[ValidationIssue]:
    audio = manifest.get("audio") if isinstance(manifest.get("audio"), Mapping) else {}
    tts = audio.get("ttsDefaults")
    if not isinstance(tts, Mapping) or not str(tts.get("provider") or "").strip():
        yield _issue("rule.audio.tts", "No TTS provider is configured", "audio/ttsDefaults")

    total = ensure_float((manifest.get("metadata") or {}).get("durationSeconds"))
    cue_map = (audio.get("music") or {}).get("cueMap") or {}
    for cue_id, cue in cue_map.items():
        start = ensure_float(cue.get("startSec") if isinstance(cue, Mapping) else None, -1.0)
        if start < 0 or start > total + tolerance:
            yield _issue(
                "rule.music.bounds",
                f"Music cue '{cue_id}' starts at {start:.2f}s, outside [0, {total:.2f}]",
                f"audio/music/cueMap/{cue_id}/startSec",
            )


def _check_effects(manifest: Mapping[str, Any]) -> Iterable[ValidationIssue]:
    allowed = set((manifest.get("effects") or {}).get("allowed") or [])
    for index, scene in enumerate(_scenes(manifest)):
        effects = scene.get("effects")
        if not isinstance(effects, Mapping):
            continue
        used = [*(effects.get("layeredEffects") or []), *(effects.get("transitions") or [])]
        for name in used:
            if name not in allowed:
                yield _issue(
                    "rule.effect.allowed",
                    f"Scene '{scene.get('id')}' uses effect '{name}' which is not in effects.allowed",
                    f"scenes/{index}/effects",
                    sceneId=scene.get("id"),
                    effect=name,
                )


def _check_generated_asset_jobs(manifest: Mapping[str, Any]) -> Iterable[ValidationIssue]:
    produced = set()
    for job in manifest.get("jobs") or []:
        payload = job.get("payload") if isinstance(job, Mapping) else None
        if isinstance(payload, Mapping) and payload.get("resultAssetId"):
            produced.add(payload["resultAssetId"])
    for asset_id, asset in (manifest.get("assets") or {}).items():
        if not isinstance(asset, Mapping) or asset.get("source") != AssetSource.GENERATED.value:
            continue
        if asset.get("status") == AssetStatus.READY.value:
            continue
        if asset_id not in produced:
            yield _issue(
                "rule.asset.job",
                f"Generated asset '{asset_id}' has no job producing it",
                f"assets/{asset_id}",
                assetId=asset_id,
            )


def _check_jobs(manifest: Mapping[str, Any]) -> Iterable[ValidationIssue]:
    jobs = [job for job in manifest.get("jobs") or [] if isinstance(job, Mapping)]
    ids = [job.get("id") for job in jobs]
    duplicates = sorted({job_id for job_id in ids if ids.count(job_id) > 1}, key=str)
    for job_id in duplicates:
        yield _issue("rule.jobs.duplicate_id", f"Job id '{job_id}' is not unique", "jobs", jobId=job_id)

    known = set(ids)
    for index, job in enumerate(jobs):
        for dependency in job.get("dependsOn") or []:
            if dependency not in known:
                yield _issue(
                    "rule.jobs.dependency",
                    f"Job '{job.get('id')}' depends on unknown job '{dependency}'",
                    f"jobs/{index}/dependsOn",
                )

    graph = build_job_graph(jobs)
    if not nx.is_directed_acyclic_graph(graph):
        cycle = [edge[0] for edge in nx.find_cycle(graph)]
        yield _issue("rule.jobs.cycle", f"Job dependencies form a cycle: {' -> '.join(cycle)}", "jobs")

    renders = [job for job in jobs if job.get("type") == JobType.RENDER.value]
    if len(renders) != 1:
        yield _issue("rule.jobs.render", f"Expected exactly one render job, found {len(renders)}", "jobs")
        return
    render = renders[0]
    others = {job.get("id") for job in jobs if job is not render}
    if set(render.get("dependsOn") or []) != others:
        yield _issue(
            "rule.jobs.render",
            "The render job must depend on every other job",
            "jobs",
            missing=sorted(str(job_id) for job_id in others - set(render.get("dependsOn") or [])),
        )


def validate_manifest_rules(
    manifest: Mapping[str, Any],
    *,
    settings: CompilerSettings | None = None,
) -> List[ValidationIssue]:
    settings = settings or CompilerSettings()
    tolerance = settings.duration_tolerance
    issues: List[ValidationIssue] = []
    issues.extend(_check_timeline(manifest, tolerance))
    issues.extend(_check_assets(manifest))
    issues.extend(_check_audio(manifest, tolerance))
    issues.extend(_check_effects(manifest))
    if settings.enforce_generated_asset_jobs:
        issues.extend(_check_generated_asset_jobs(manifest))
    issues.extend(_check_jobs(manifest))
    return issues


def check_manifest_rules(manifest: Mapping[str, Any], *, settings: CompilerSettings | None = None) -> ValidationReport:
    return ValidationReport.from_issues(validate_manifest_rules(manifest, settings=settings))
