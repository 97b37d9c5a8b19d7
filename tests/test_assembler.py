from manifest_generation.assembler import (
    build_effects_plan,
    build_manifest,
    match_user_asset,
    normalize_asset_catalog,
    resolve_metadata,
)
from manifest_generation.models import TreatmentOutline
from manifest_generation.treatment_parser import parse_treatment


def test_metadata_precedence_per_field(settings, catalog):
    outline = TreatmentOutline(platform="instagram", language=None, total_duration_seconds=30)
    hints = {"analyzer": {"platform": "tiktok", "language": "fr"}}

    metadata = resolve_metadata({"platform": "YouTube"}, hints, outline, settings=settings, catalog=catalog)

    assert metadata["platform"] == "youtube"
    assert metadata["language"] == "fr"
    assert metadata["durationSeconds"] == 30
    assert metadata["aspectRatio"] == "16:9"
    assert metadata["intent"] == "video"


def test_metadata_defaults(settings, catalog):
    metadata = resolve_metadata(None, None, TreatmentOutline(), settings=settings, catalog=catalog)

    assert metadata["durationSeconds"] == settings.default_duration
    assert metadata["platform"] == "social"
    assert metadata["language"] == "en"
    assert metadata["profile"] == "general"
    assert metadata["priority"] == "normal"
    assert metadata["enforcementMode"] == "balanced"


def test_metadata_reads_nested_hint_metadata_and_platform_aspect(settings, catalog):
    outline = TreatmentOutline(platform="TikTok")
    hints = {"refiner": {"metadata": {"aspectRatio": "4x5"}}}

    assert resolve_metadata(None, hints, outline, settings=settings, catalog=catalog)["aspectRatio"] == "4:5"
    assert resolve_metadata(None, None, outline, settings=settings, catalog=catalog)["aspectRatio"] == "9:16"


def test_profile_brings_enforcement_mode_and_feature_flags(settings, catalog):
    metadata = resolve_metadata(
        {"profile": "Educational Explainer"}, None, TreatmentOutline(), settings=settings, catalog=catalog
    )

    assert metadata["profile"] == "educational_explainer"
    assert metadata["enforcementMode"] == "strict"
    assert metadata["featureFlags"]["maxTotalCost"] == 5.0


def test_normalize_asset_catalog_accepts_mapping_and_list():
    from_map = normalize_asset_catalog({"a1": {"url": "https://cdn/a1.png", "tags": ["office", "team"]}})
    from_list = normalize_asset_catalog([{"id": "a2", "description": "Team photo", "type": "VIDEO"}])

    assert from_map == [{"id": "a1", "url": "https://cdn/a1.png", "description": "office team", "mediaType": "image"}]
    assert from_list[0]["mediaType"] == "video"


def test_match_user_asset_prefers_best_overlap():
    entries = [
        {"id": "city", "description": "City skyline at night"},
        {"id": "desk", "description": "Laptop on a wooden desk"},
    ]

    assert match_user_asset("Close-up of a laptop on a desk", entries)["id"] == "desk"
    assert match_user_asset("Mountains at dawn", entries) is None
    assert match_user_asset(None, entries) is None


def test_build_manifest_binds_user_assets_and_mints_placeholders(launch_text, settings, catalog):
    outline = parse_treatment(launch_text)
    metadata = resolve_metadata(None, None, outline, settings=settings, catalog=catalog)
    user_assets = [{"id": "user_laptop", "url": "https://cdn/laptop.jpg", "description": "Laptop on a wooden desk"}]

    manifest = build_manifest(outline, metadata, asset_catalog=user_assets, settings=settings, catalog=catalog)

    scenes = {scene["id"]: scene for scene in manifest["scenes"]}
    assert scenes["s1"]["visuals"] == [{"assetId": "user_laptop", "type": "user_asset", "role": "primary"}]
    assert manifest["assets"]["user_laptop"]["source"] == "user"
    assert manifest["assets"]["user_laptop"]["status"] == "ready"
    assert scenes["s2"]["visuals"][0]["assetId"] == "gen_s2_visual"
    assert manifest["assets"]["gen_s2_visual"]["source"] == "generated"
    assert manifest["assets"]["gen_s2_visual"]["status"] == "pending"
    assert manifest["assets"]["gen_s2_visual"]["prompt"]
    assert manifest["jobs"] == []


def test_build_manifest_audio_plan(launch_text, settings, catalog):
    outline = parse_treatment(launch_text)
    metadata = resolve_metadata(None, None, outline, settings=settings, catalog=catalog)

    manifest = build_manifest(outline, metadata, settings=settings, catalog=catalog)

    cue_map = manifest["audio"]["music"]["cueMap"]
    assert list(cue_map) == ["music_01"]
    assert cue_map["music_01"]["startSec"] == 0.0
    assert cue_map["music_01"]["description"] == "upbeat synth intro"
    assert {scene["musicCue"] for scene in manifest["scenes"]} == {"music_01"}
    assert manifest["audio"]["sfx"] == [
        {"id": "sfx_s2_1", "sceneId": "s2", "description": "whoosh", "offsetSec": 0.0}
    ]
    assert manifest["audio"]["ttsDefaults"]["provider"] == "elevenlabs"


def test_footage_hints_produce_video_assets(settings, catalog):
    outline = parse_treatment("Scene 1\nNarration: Look at this place.\nVisual: drone footage over the coast")
    metadata = resolve_metadata(None, None, outline, settings=settings, catalog=catalog)

    manifest = build_manifest(outline, metadata, settings=settings, catalog=catalog)

    assert manifest["assets"]["gen_s1_visual"]["mediaType"] == "video"


def test_effects_plan_from_hints(catalog):
    hints = {"script": {"effects": {"allowed": ["fade", "overlay_text", "laser_beams"]}}}

    plan = build_effects_plan(hints, {"platform": "tiktok"}, catalog)

    assert plan.allowed == ["fade", "overlay_text"]
    # tiktok prefers bokeh_transition, which is not allowed here
    assert plan.default_transition == "fade"


def test_effects_plan_defaults_to_full_vocabulary(catalog):
    plan = build_effects_plan(None, {"platform": "youtube"}, catalog)

    assert plan.allowed == list(catalog.vocabulary())
    assert plan.default_transition == "crossfade"
