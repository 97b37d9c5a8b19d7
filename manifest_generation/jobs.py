"""Decompose a manifest into the job list handed to the external worker pool.

Jobs are emitted in a fixed order (TTS, asset generation, charts, lip-sync,
music, sound effects, render) so the same manifest always yields the same list.
Dependency edges, not priorities, guarantee execution order: the render job
depends on every other job and lip-sync waits for its scene's TTS.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

import networkx as nx

from .catalog import EffectCatalog, default_catalog
from .models import AssetSource, AssetStatus, Job, JobType, MediaType, RetryPolicy
from .settings import CompilerSettings
from .timeline import ensure_float

LOGGER = logging.getLogger(__name__)

JOB_PRIORITIES: Dict[JobType, int] = {
    JobType.RENDER: 12,
    JobType.TTS: 10,
    JobType.IMAGE_GENERATION: 9,
    JobType.VIDEO_GENERATION: 9,
    JobType.CHART_GENERATION: 9,
    JobType.LIP_SYNC: 8,
    JobType.SFX_GENERATION: 6,
    JobType.MUSIC_GENERATION: 5,
}
RETRY_POLICIES: Dict[JobType, RetryPolicy] = {
    JobType.TTS: RetryPolicy(max_retries=3, backoff_seconds=30),
    JobType.IMAGE_GENERATION: RetryPolicy(max_retries=2, backoff_seconds=60),
    JobType.VIDEO_GENERATION: RetryPolicy(max_retries=2, backoff_seconds=90),
    JobType.CHART_GENERATION: RetryPolicy(max_retries=2, backoff_seconds=60),
    JobType.LIP_SYNC: RetryPolicy(max_retries=2, backoff_seconds=90),
    JobType.MUSIC_GENERATION: RetryPolicy(max_retries=2, backoff_seconds=60),
    JobType.SFX_GENERATION: RetryPolicy(max_retries=2, backoff_seconds=45),
    JobType.RENDER: RetryPolicy(max_retries=3, backoff_seconds=120),
}

CHART_RE = re.compile(r"\b(?:chart|graph|kpi|infographic|data[ \-]?viz)\b", re.IGNORECASE)
CHART_SAMPLES: Dict[str, Dict[str, Any]] = {
    "revenue": {
        "chartType": "bar",
        "labels": ["Q1", "Q2", "Q3", "Q4"],
        "series": [{"name": "Revenue", "values": [120, 150, 170, 210]}],
    },
    "growth": {
        "chartType": "line",
        "labels": ["Jan", "Feb", "Mar", "Apr", "May", "Jun"],
        "series": [{"name": "Growth", "values": [5, 8, 12, 18, 25, 33]}],
    },
    "generic": {
        "chartType": "bar",
        "labels": ["A", "B", "C"],
        "series": [{"name": "Value", "values": [40, 65, 90]}],
    },
}
VIDEO_MODEL = "falai-video-v1"


def _job(job_id: str, job_type: JobType, payload: Dict[str, Any], depends_on: Sequence[str] = ()) -> Job:
    return Job(
        id=job_id,
        type=job_type,
        payload={key: value for key, value in payload.items() if value is not None},
        depends_on=list(depends_on),
        priority=JOB_PRIORITIES[job_type],
        retry_policy=RETRY_POLICIES[job_type].model_copy(),
    )


def _chart_sample(text: str) -> Dict[str, Any]:
    lowered = text.lower()
    for key in ("revenue", "growth"):
        if key in lowered:
            return CHART_SAMPLES[key]
    return CHART_SAMPLES["generic"]


def _scenes(manifest: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    return [scene for scene in manifest.get("scenes") or [] if isinstance(scene, Mapping)]


def _narration(scene: Mapping[str, Any]) -> Optional[str]:
    narration = scene.get("narration")
    if isinstance(narration, str) and narration.strip():
        return narration.strip()
    return None


def _scene_asset_ids(scenes: Iterable[Mapping[str, Any]]) -> Dict[str, List[str]]:
    usage: Dict[str, List[str]] = {}
    for scene in scenes:
        for visual in scene.get("visuals") or []:
            if isinstance(visual, Mapping) and visual.get("assetId"):
                usage.setdefault(visual["assetId"], []).append(scene.get("id"))
    return usage


# ----- Job builders -----


def _tts_jobs(scenes: Sequence[Mapping[str, Any]], manifest: Mapping[str, Any]) -> List[Job]:
    tts = (manifest.get("audio") or {}).get("ttsDefaults") or {}
    language = (manifest.get("metadata") or {}).get("language")
    jobs = []
    for scene in scenes:
        text = _narration(scene)
        if text is None:
            continue
        scene_id = scene.get("id")
        jobs.append(
            _job(
                f"job_tts_{scene_id}",
                JobType.TTS,
                {
                    "sceneId": scene_id,
                    "text": text,
                    "provider": tts.get("provider"),
                    "voice": tts.get("voice"),
                    "style": tts.get("style"),
                    "format": tts.get("format"),
                    "sampleRate": tts.get("sampleRate"),
                    "language": language,
                    "targetDurationSec": scene.get("durationSeconds"),
                    "resultAssetId": f"tts_{scene_id}",
                },
            )
        )
    return jobs


def _generation_jobs(
    manifest: Mapping[str, Any],
    scenes: Sequence[Mapping[str, Any]],
    catalog: EffectCatalog,
) -> List[Job]:
    metadata = manifest.get("metadata") or {}
    profile = catalog.profile(metadata.get("profile"))
    resolution = catalog.resolution_for(metadata.get("aspectRatio"))
    usage = _scene_asset_ids(scenes)
    jobs = []
    for asset_id, asset in (manifest.get("assets") or {}).items():
        if not isinstance(asset, Mapping):
            continue
        if asset.get("source") != AssetSource.GENERATED.value or asset.get("status") != AssetStatus.PENDING.value:
            continue
        is_video = asset.get("mediaType") == MediaType.VIDEO.value
        jobs.append(
            _job(
                f"job_gen_{asset_id}",
                JobType.VIDEO_GENERATION if is_video else JobType.IMAGE_GENERATION,
                {
                    "assetId": asset_id,
                    "resultAssetId": asset_id,
                    "sceneIds": usage.get(asset_id, []),
                    "prompt": asset.get("prompt") or asset.get("description") or "",
                    "model": VIDEO_MODEL if is_video else profile.get("imageModel", "falai-image-v1"),
                    "resolution": resolution,
                    "mediaType": asset.get("mediaType", MediaType.IMAGE.value),
                },
            )
        )
    return jobs


def _chart_jobs(scenes: Sequence[Mapping[str, Any]]) -> List[Job]:
    jobs = []
    for scene in scenes:
        anchor = scene.get("visualAnchor")
        if not isinstance(anchor, str) or not CHART_RE.search(anchor):
            continue
        scene_id = scene.get("id")
        jobs.append(
            _job(
                f"job_chart_{scene_id}",
                JobType.CHART_GENERATION,
                {
                    "sceneId": scene_id,
                    "resultAssetId": f"gen_chart_{scene_id}",
                    "title": scene.get("title") or anchor,
                    "data": _chart_sample(f"{anchor} {scene.get('narration') or ''}"),
                },
            )
        )
    return jobs


def _lip_sync_jobs(scenes: Sequence[Mapping[str, Any]], manifest: Mapping[str, Any], tts_ids: Dict[str, str]) -> List[Job]:
    assets = manifest.get("assets") or {}
    jobs = []
    for scene in scenes:
        scene_id = scene.get("id")
        if scene_id not in tts_ids:
            continue
        user_visual = next(
            (
                visual.get("assetId")
                for visual in scene.get("visuals") or []
                if isinstance(visual, Mapping)
                and (assets.get(visual.get("assetId")) or {}).get("source") == AssetSource.USER.value
            ),
            None,
        )
        if user_visual is None:
            continue
        jobs.append(
            _job(
                f"job_lipsync_{scene_id}",
                JobType.LIP_SYNC,
                {
                    "sceneId": scene_id,
                    "videoAssetId": user_visual,
                    "audioJobId": tts_ids[scene_id],
                    "resultAssetId": f"lipsync_{scene_id}",
                },
                depends_on=[tts_ids[scene_id]],
            )
        )
    return jobs


def _music_jobs(manifest: Mapping[str, Any]) -> List[Job]:
    total = ensure_float((manifest.get("metadata") or {}).get("durationSeconds"))
    cue_map = ((manifest.get("audio") or {}).get("music") or {}).get("cueMap") or {}
    cues = sorted(
        ((cue_id, cue) for cue_id, cue in cue_map.items() if isinstance(cue, Mapping)),
        key=lambda item: (ensure_float(item[1].get("startSec")), item[0]),
    )
    jobs = []
    for position, (cue_id, cue) in enumerate(cues):
        start = ensure_float(cue.get("startSec"))
        end = ensure_float(cues[position + 1][1].get("startSec")) if position + 1 < len(cues) else total
        jobs.append(
            _job(
                f"job_music_{cue_id}",
                JobType.MUSIC_GENERATION,
                {
                    "cueId": cue_id,
                    "mood": cue.get("mood"),
                    "structure": cue.get("structure"),
                    "description": cue.get("description"),
                    "startSec": round(start, 2),
                    "durationSec": round(max(0.0, end - start), 2),
                    "resultAssetId": f"music_{cue_id}",
                },
            )
        )
    return jobs


def _sfx_jobs(manifest: Mapping[str, Any]) -> List[Job]:
    jobs = []
    for entry in (manifest.get("audio") or {}).get("sfx") or []:
        if not isinstance(entry, Mapping) or not entry.get("id"):
            continue
        jobs.append(
            _job(
                f"job_sfx_{entry['id']}",
                JobType.SFX_GENERATION,
                {
                    "sfxId": entry["id"],
                    "sceneId": entry.get("sceneId"),
                    "description": entry.get("description"),
                    "offsetSec": entry.get("offsetSec", 0.0),
                    "resultAssetId": entry["id"],
                },
            )
        )
    return jobs


def _render_job(manifest: Mapping[str, Any], others: Sequence[Job], catalog: EffectCatalog, settings: CompilerSettings) -> Job:
    metadata = manifest.get("metadata") or {}
    return _job(
        "job_render_final",
        JobType.RENDER,
        {
            "manifestId": manifest.get("id"),
            "sceneIds": [scene.get("id") for scene in _scenes(manifest)],
            "durationSeconds": metadata.get("durationSeconds"),
            "aspectRatio": metadata.get("aspectRatio"),
            "resolution": catalog.resolution_for(metadata.get("aspectRatio")),
            "callbackUrl": settings.render_callback_url,
        },
        depends_on=[job.id for job in others],
    )


# ----- Public API -----


def decompose_jobs(
    manifest: Mapping[str, Any],
    *,
    catalog: EffectCatalog | None = None,
    settings: CompilerSettings | None = None,
) -> List[Job]:
    """Deterministic, dependency-ordered job list ending in a single render job."""
    catalog = catalog or default_catalog()
    settings = settings or CompilerSettings()
    scenes = _scenes(manifest)

    tts_jobs = _tts_jobs(scenes, manifest)
    tts_ids = {job.payload["sceneId"]: job.id for job in tts_jobs}
    jobs: List[Job] = [
        *tts_jobs,
        *_generation_jobs(manifest, scenes, catalog),
        *_chart_jobs(scenes),
        *_lip_sync_jobs(scenes, manifest, tts_ids),
        *_music_jobs(manifest),
        *_sfx_jobs(manifest),
    ]
    jobs.append(_render_job(manifest, jobs, catalog, settings))
    LOGGER.debug("Decomposed %d job(s) for manifest %s", len(jobs), manifest.get("id"))
    return jobs


def attach_jobs(
    manifest: MutableMapping[str, Any],
    *,
    catalog: EffectCatalog | None = None,
    settings: CompilerSettings | None = None,
) -> List[Job]:
    """Replace the manifest's job list with a fresh decomposition and return the jobs."""
    jobs = decompose_jobs(manifest, catalog=catalog, settings=settings)
    manifest["jobs"] = [job.to_document() for job in jobs]
    return jobs


def build_job_graph(jobs: Iterable[Any]) -> nx.DiGraph:
    """Directed graph with an edge from each dependency to the job that waits for it.

    Accepts ``Job`` models or job documents; dangling dependencies become bare nodes.
    """
    graph = nx.DiGraph()
    for job in jobs:
        if isinstance(job, Job):
            job_id, job_type, depends_on = job.id, job.type.value, job.depends_on
        elif isinstance(job, Mapping):
            job_id, job_type, depends_on = job.get("id"), job.get("type"), job.get("dependsOn") or []
        else:
            continue
        graph.add_node(job_id, type=job_type)
        for dependency in depends_on:
            graph.add_edge(dependency, job_id)
    return graph


def execution_order(jobs: Sequence[Any]) -> List[str]:
    """Topological job order; ties broken by job id so the order is reproducible."""
    graph = build_job_graph(jobs)
    return [str(node) for node in nx.lexicographical_topological_sort(graph, key=str)]


def execution_waves(jobs: Sequence[Any]) -> List[List[str]]:
    """Groups of jobs that may run in parallel once the previous group has finished."""
    graph = build_job_graph(jobs)
    return [sorted(str(node) for node in generation) for generation in nx.topological_generations(graph)]
