import time

import pytest

from manifest_generation import (
    CompilerSettings,
    FallbackManifestError,
    ManifestCompiler,
    TreatmentOutline,
    compile_treatment,
)
from manifest_generation.models import JobType

DETERMINISTIC = "Used deterministic parser for treatment extraction"
BAD_EFFECT_HINTS = {
    "script": {"effects": {"allowed": ["fade", "overlay_text"], "perScene": {"s1": {"layeredEffects": ["lens_flare"]}}}}
}


def _job_types(result):
    return sorted(job.type.value for job in result.jobs)


def test_three_scene_treatment_compiles_cleanly(three_scene_text):
    result = compile_treatment(three_scene_text, overrides={"durationSeconds": 5})

    scenes = result.manifest.scenes
    assert [scene.id for scene in scenes] == ["s1", "s2", "s3"]
    assert scenes[0].start_at_sec == 0.0
    assert scenes[0].start_at_sec < scenes[1].start_at_sec < scenes[2].start_at_sec
    assert sum(scene.duration_seconds for scene in scenes) == pytest.approx(5.0, abs=0.01)
    assert result.success
    assert result.warnings == [DETERMINISTIC]
    assert result.states == ["assembled", "schema_checked", "business_checked", "done"]
    assert result.repair_rounds == 0
    assert not result.used_fallback


def test_three_scene_job_graph(three_scene_text):
    result = compile_treatment(three_scene_text, overrides={"durationSeconds": 5})

    assert len(result.jobs) == 8
    assert [job.id for job in result.jobs if job.type is JobType.TTS] == ["job_tts_s1", "job_tts_s2", "job_tts_s3"]
    render = result.jobs[-1]
    assert render.type is JobType.RENDER
    assert set(render.depends_on) == {job.id for job in result.jobs[:-1]}
    assert result.stats["jobCount"] == 8
    assert result.stats["executionOrder"][-1] == "job_render_final"
    assert result.stats["executionWaves"][-1] == ["job_render_final"]
    assert [job.model_dump() for job in result.jobs] == [job.model_dump() for job in result.manifest.jobs]


@pytest.mark.parametrize("text", ["", "@@@ ### !!! %%%", None])
def test_unusable_treatment_falls_back(text):
    result = compile_treatment(text)

    [scene] = result.manifest.scenes
    assert (scene.start_at_sec, scene.duration_seconds) == (0.0, 60.0)
    assert scene.narration == "Auto-generated content."
    [asset] = result.manifest.assets.values()
    assert asset.status.value == "pending"
    assert _job_types(result) == ["generate_image", "generate_music", "render", "tts"]
    render = result.jobs[-1]
    assert set(render.depends_on) == {job.id for job in result.jobs[:-1]}
    assert result.success
    assert result.used_fallback
    assert result.states == ["fallback_built", "done"]
    assert result.warnings == [
        DETERMINISTIC,
        "Treatment has no usable scene content",
        "Falling back to minimal deterministic manifest",
    ]


def test_fallback_keeps_resolved_metadata():
    result = compile_treatment("", overrides={"durationSeconds": 30, "platform": "tiktok"}, user_id="u-1")

    metadata = result.manifest.metadata
    assert (metadata.duration_seconds, metadata.platform, metadata.aspect_ratio) == (30.0, "tiktok", "9:16")
    assert result.manifest.user_id == "u-1"
    assert result.manifest.source_refs == {"fallback": True}


def test_result_wire_shape(three_scene_text):
    document = compile_treatment(three_scene_text).to_dict()

    assert set(document) == {"manifest", "jobs", "warnings", "success"}
    assert document["manifest"]["metadata"]["durationSeconds"] == 60.0
    assert document["jobs"][-1]["id"] == "job_render_final"
    assert "dependsOn" in document["jobs"][-1]


def test_identifiers_pass_through(three_scene_text):
    result = compile_treatment(three_scene_text, manifest_id="m-42", user_id="u-7")

    assert result.manifest.id == "m-42"
    assert result.manifest.user_id == "u-7"
    assert result.jobs[-1].payload["manifestId"] == "m-42"


def test_launch_treatment_end_to_end(launch_text):
    catalog = [{"id": "cam_laptop", "description": "laptop on a desk", "url": "https://cdn.example/laptop.jpg"}]

    result = compile_treatment(launch_text, asset_catalog=catalog)

    manifest = result.manifest
    assert manifest.metadata.title == "Launch Day"
    assert manifest.metadata.duration_seconds == 45.0
    assert (manifest.metadata.platform, manifest.metadata.aspect_ratio) == ("tiktok", "9:16")
    assert manifest.scenes[0].visuals[0].asset_id == "cam_laptop"
    assert manifest.assets["cam_laptop"].status.value == "ready"
    types = _job_types(result)
    assert "generate_sfx" in types
    assert "lip_sync" in types
    assert "job_gen_cam_laptop" not in {job.id for job in result.jobs}
    assert result.jobs[-1].payload["resolution"] == "1080x1920"


def test_compilation_is_deterministic(launch_text):
    first = compile_treatment(launch_text, manifest_id="same").to_dict()
    second = compile_treatment(launch_text, manifest_id="same").to_dict()

    first["manifest"].pop("createdAt", None)
    second["manifest"].pop("createdAt", None)
    assert first == second


# ----- Advisory extractor -----


def test_slow_extractor_falls_back_to_the_parser(three_scene_text):
    def slow(text, hints):
        time.sleep(0.5)
        return None

    settings = CompilerSettings(extractor_timeout=0.05, llm_max_retries=0)
    result = compile_treatment(three_scene_text, extractor=slow, settings=settings)

    assert result.warnings[:2] == ["LLM extractor failed or timed out", DETERMINISTIC]
    assert len(result.manifest.scenes) == 3


def test_raising_extractor_falls_back_to_the_parser(three_scene_text):
    def broken(text, hints):
        raise RuntimeError("model overloaded")

    result = compile_treatment(three_scene_text, extractor=broken)

    assert "LLM extractor failed or timed out" in result.warnings
    assert DETERMINISTIC in result.warnings
    assert result.success


def test_extractor_outline_is_used(three_scene_text):
    def good(text, hints):
        return TreatmentOutline.model_validate(
            {
                "title": "From the model",
                "scenes": [
                    {"id": "s1", "purpose": "hook", "narration": "Welcome aboard."},
                    {"id": "s2", "purpose": "cta", "narration": "Sign up now."},
                ],
            }
        )

    result = compile_treatment(three_scene_text, extractor=good, overrides={"durationSeconds": 10})

    assert result.warnings[0] == "Treatment extracted by LLM extractor"
    assert DETERMINISTIC not in result.warnings
    assert [scene.narration for scene in result.manifest.scenes] == ["Welcome aboard.", "Sign up now."]
    assert result.manifest.metadata.title == "From the model"


def test_malformed_extractor_output_is_discarded(three_scene_text):
    result = compile_treatment(three_scene_text, extractor=lambda text, hints: {"scenes": "nope"})

    assert "LLM extractor failed or timed out" in result.warnings
    assert len(result.manifest.scenes) == 3


# ----- Validation and repair -----


def test_invalid_effects_are_repaired_deterministically(three_scene_text):
    result = compile_treatment(three_scene_text, hints=BAD_EFFECT_HINTS)

    assert result.repair_rounds == 1
    assert "repaired" in result.states
    assert result.states[-1] == "done"
    assert not result.used_fallback
    assert "lens_flare" not in result.manifest.scenes[0].effects.layered_effects
    assert any("applied deterministic repairs (round 1)" in warning for warning in result.warnings)


def _strip_lens_flare(manifest, violations, context):
    assert violations and "allowedEffects" in context
    for scene in manifest["scenes"]:
        effects = scene.get("effects") or {}
        effects["layeredEffects"] = [name for name in effects.get("layeredEffects", []) if name != "lens_flare"]
        effects.get("orderingHints", {}).pop("lens_flare", None)
    return manifest


def test_llm_repair_result_is_revalidated_and_used(three_scene_text):
    settings = CompilerSettings(max_repair_rounds=0)

    result = compile_treatment(three_scene_text, hints=BAD_EFFECT_HINTS, repairer=_strip_lens_flare, settings=settings)

    assert result.used_llm_repair
    assert not result.used_fallback
    assert "Manifest repaired by LLM repair fallback" in result.warnings
    assert len(result.manifest.scenes) == 3


def test_failing_llm_repair_leads_to_fallback(three_scene_text):
    def broken(manifest, violations, context):
        raise TimeoutError("no answer")

    settings = CompilerSettings(max_repair_rounds=0)
    result = compile_treatment(three_scene_text, hints=BAD_EFFECT_HINTS, repairer=broken, settings=settings)

    assert result.used_fallback
    assert not result.used_llm_repair
    assert result.warnings[-2:] == ["LLM repair failed or timed out", "Falling back to minimal deterministic manifest"]
    assert len(result.manifest.scenes) == 1


def test_invalid_llm_repair_leads_to_fallback(three_scene_text):
    settings = CompilerSettings(max_repair_rounds=0)

    result = compile_treatment(
        three_scene_text,
        hints=BAD_EFFECT_HINTS,
        repairer=lambda manifest, violations, context: manifest,
        settings=settings,
    )

    assert result.used_fallback
    assert any(warning.startswith("LLM repair result failed validation") for warning in result.warnings)
    assert result.states[-2:] == ["fallback_built", "done"]


def test_malformed_llm_repair_document_leads_to_fallback(three_scene_text):
    def junk(manifest, violations, context):
        return {"scenes": [], "assets": ["not", "a", "map"], "metadata": "junk", "audio": []}

    # Three scenes cannot share 0.1s above the per-scene floor, so deterministic repair never succeeds.
    result = compile_treatment(three_scene_text, overrides={"durationSeconds": 0.1}, repairer=junk)

    assert result.used_fallback
    assert not result.used_llm_repair
    assert any(warning.startswith("LLM repair result failed validation") for warning in result.warnings)
    assert result.states[-2:] == ["fallback_built", "done"]
    assert result.jobs[-1].type is JobType.RENDER


@pytest.mark.parametrize("hints", [["analyzer", "script"], "tiktok"])
def test_non_object_hints_are_ignored(three_scene_text, hints):
    result = compile_treatment(three_scene_text, hints=hints, overrides={"durationSeconds": 5})

    assert result.success
    assert not result.used_fallback
    assert result.warnings[0].startswith("Ignoring hints of type")
    assert len(result.manifest.scenes) == 3


def test_no_repair_budget_goes_straight_to_fallback(three_scene_text):
    result = compile_treatment(three_scene_text, hints=BAD_EFFECT_HINTS, settings=CompilerSettings(max_repair_rounds=0))

    assert result.used_fallback
    assert result.repair_rounds == 0
    assert result.success


def test_broken_fallback_raises(monkeypatch):
    monkeypatch.setattr(
        "manifest_generation.pipeline.build_minimal_fallback_manifest",
        lambda metadata, **kwargs: {"id": "broken", "scenes": []},
    )

    with pytest.raises(FallbackManifestError) as excinfo:
        ManifestCompiler().compile("")

    assert excinfo.value.issues
    assert "fallback manifest failed validation" in str(excinfo.value)
