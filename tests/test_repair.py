import pytest

from manifest_generation.jobs import attach_jobs
from manifest_generation.repair import build_minimal_fallback_manifest, deterministic_repair
from manifest_generation.validators import validate_manifest


def _revalidate(document):
    attach_jobs(document)
    return validate_manifest(document)


def test_repair_fixes_a_broken_manifest(valid_manifest):
    metadata = dict(valid_manifest["metadata"])
    valid_manifest["bogus"] = {"debug": True}
    valid_manifest["scenes"][0]["durationSeconds"] = 40
    valid_manifest["scenes"][1]["visuals"][0]["assetId"] = "ghost_asset"
    valid_manifest["scenes"][2]["effects"]["layeredEffects"] = ["laser_beams"]
    valid_manifest["assets"]["gen_s1_visual"]["source"] = "stock"
    valid_manifest["audio"]["music"]["cueMap"]["music_01"]["startSec"] = 999
    del valid_manifest["audio"]["ttsDefaults"]
    assert not validate_manifest(valid_manifest).is_valid

    repaired, notes = deterministic_repair(valid_manifest, defaults=metadata)

    assert _revalidate(repaired).is_valid
    assert "bogus" not in repaired
    assert repaired["assets"]["ghost_asset"]["source"] == "generated"
    assert repaired["assets"]["gen_s1_visual"]["status"] == "pending"
    assert repaired["audio"]["music"]["cueMap"]["music_01"]["startSec"] == 5.0
    assert repaired["audio"]["ttsDefaults"]["provider"] == "elevenlabs"
    assert repaired["scenes"][2]["effects"]["layeredEffects"] == []
    assert sum(scene["durationSeconds"] for scene in repaired["scenes"]) == pytest.approx(5.0, abs=0.01)
    assert notes


def test_repair_works_on_a_copy(valid_manifest):
    valid_manifest["bogus"] = 1

    repaired, _ = deterministic_repair(valid_manifest)

    assert "bogus" in valid_manifest
    assert repaired is not valid_manifest


def test_repair_defaults_metadata_from_aspect_ratio():
    document = {
        "metadata": {"aspectRatio": "9:16", "durationSeconds": 12},
        "scenes": [{"narration": "Hi there."}, "not a scene"],
    }

    repaired, _ = deterministic_repair(document)

    assert repaired["metadata"]["platform"] == "tiktok"
    assert repaired["metadata"]["language"] == "en"
    assert repaired["metadata"]["intent"] == "video"
    assert [scene["id"] for scene in repaired["scenes"]] == ["s1"]
    assert _revalidate(repaired).is_valid


def test_repair_rebuilds_from_nothing():
    repaired, notes = deterministic_repair(None)

    assert repaired["metadata"]["durationSeconds"] == 60.0
    assert repaired["metadata"]["platform"] == "social"
    assert repaired["scenes"] == []
    assert "metadata recreated" in notes


def test_repair_renames_duplicate_scene_ids_and_converts_asset_lists():
    document = {
        "metadata": {"durationSeconds": 4},
        "scenes": [
            {"id": "a", "durationSeconds": 2, "visuals": [{"assetId": "img"}]},
            {"id": "a", "durationSeconds": 2},
        ],
        "assets": [{"id": "img", "source": "user", "status": "ready"}],
    }

    repaired, _ = deterministic_repair(document)

    assert [scene["id"] for scene in repaired["scenes"]] == ["a", "s2"]
    assert repaired["assets"]["img"]["source"] == "user"
    assert repaired["scenes"][0]["visuals"][0]["type"] == "user_asset"
    assert repaired["scenes"][1]["visuals"][0]["assetId"] == "gen_s2_visual"
    assert _revalidate(repaired).is_valid


def test_minimal_fallback_is_valid_by_construction():
    manifest = build_minimal_fallback_manifest({"durationSeconds": 60}, manifest_id="fallback-1")

    jobs = attach_jobs(manifest)

    assert validate_manifest(manifest).is_valid
    assert manifest["id"] == "fallback-1"
    [scene] = manifest["scenes"]
    assert (scene["startAtSec"], scene["durationSeconds"]) == (0.0, 60.0)
    assert scene["narration"] == "Auto-generated content."
    assert manifest["assets"]["gen_s1_visual"]["status"] == "pending"
    assert sorted(job.type.value for job in jobs) == ["generate_image", "generate_music", "render", "tts"]
    assert scene["musicCue"] == "music_01"
    cue = manifest["audio"]["music"]["cueMap"]["music_01"]
    assert (cue["startSec"], cue["structure"]) == (0.0, "intro")
    [music_job] = [job for job in jobs if job.type.value == "generate_music"]
    assert music_job.payload["durationSec"] == 60.0


def test_fallback_repairs_unusable_metadata():
    manifest = build_minimal_fallback_manifest({"durationSeconds": "soon", "platform": "myspace", "aspectRatio": "9:16"})

    assert manifest["metadata"]["durationSeconds"] == 60.0
    assert manifest["metadata"]["platform"] == "social"
    assert manifest["metadata"]["aspectRatio"] == "9:16"
    attach_jobs(manifest)
    assert validate_manifest(manifest).is_valid
