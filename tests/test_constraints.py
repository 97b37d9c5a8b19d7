import copy

from manifest_generation.constraints import ConstraintResolver, HardConstraints, apply_profile_constraints


def _manifest(profile="educational_explainer", mode="strict"):
    return {
        "metadata": {"profile": profile, "enforcementMode": mode},
        "visuals": {"colorPalette": ["#0F172A", "#FF0000"]},
        "audio": {"ttsDefaults": {"provider": "elevenlabs", "style": "energetic"}},
        "effects": {"allowed": ["lens_flare", "cinematic_zoom", "overlay_text", "text_reveal", "fade"], "defaultTransition": "fade"},
        "scenes": [
            {
                "id": "s1",
                "durationSeconds": 5.0,
                "effects": {
                    "layeredEffects": ["lens_flare", "cinematic_zoom", "overlay_text", "text_reveal"],
                    "transitions": ["fade"],
                    "orderingHints": {"lens_flare": 1.0, "cinematic_zoom": 10.0, "overlay_text": 20.0},
                },
            },
            {"id": "s2", "durationSeconds": 1.0},
        ],
    }


def test_strict_mode_clamps_everything_including_explicit_scenes(catalog):
    manifest = _manifest()

    outcome = apply_profile_constraints(manifest, ["s1"], catalog=catalog)

    effects = manifest["scenes"][0]["effects"]
    assert effects["layeredEffects"] == ["cinematic_zoom", "overlay_text"]
    assert effects["orderingHints"] == {"cinematic_zoom": 10.0, "overlay_text": 20.0}
    assert manifest["visuals"]["colorPalette"] == ["#0F172A"]
    assert manifest["audio"]["ttsDefaults"]["style"] == "instructional"
    assert "lens_flare" not in manifest["effects"]["allowed"]
    assert outcome.clamped["sceneEffects"] == {"s1": ["lens_flare", "text_reveal"]}
    # pacing is reported, never clamped
    assert manifest["scenes"][1]["durationSeconds"] == 1.0
    assert any("shorter than the profile minimum" in warning for warning in outcome.warnings)


def test_balanced_mode_warns_about_explicit_scene_effects(catalog):
    manifest = _manifest(mode="balanced")
    before = copy.deepcopy(manifest["scenes"][0]["effects"])

    outcome = apply_profile_constraints(manifest, ["s1"], catalog=catalog)

    assert manifest["scenes"][0]["effects"] == before
    assert any("s1 effects conflict" in warning for warning in outcome.warnings)
    # generated values are still clamped
    assert manifest["visuals"]["colorPalette"] == ["#0F172A"]
    assert "lens_flare" in manifest["effects"]["allowed"]


def test_balanced_mode_clamps_enriched_scene_effects(catalog):
    manifest = _manifest(mode="balanced")

    apply_profile_constraints(manifest, [], catalog=catalog)

    assert manifest["scenes"][0]["effects"]["layeredEffects"] == ["cinematic_zoom", "overlay_text"]


def test_creative_mode_only_warns(catalog):
    manifest = _manifest(mode="creative")
    before = copy.deepcopy(manifest)

    outcome = apply_profile_constraints(manifest, [], catalog=catalog)

    assert manifest == before
    assert outcome.clamped == {}
    assert len(outcome.warnings) >= 3


def test_profiles_without_constraints_are_a_no_op(catalog):
    manifest = _manifest(profile="general", mode="strict")
    before = copy.deepcopy(manifest)

    outcome = apply_profile_constraints(manifest, [], catalog=catalog)

    assert manifest == before
    assert outcome.warnings == []


def test_max_scene_count_is_reported():
    resolver = ConstraintResolver(HardConstraints.from_mapping({"maxScenes": 1}), "strict")
    manifest = {"scenes": [{"id": "s1"}, {"id": "s2"}]}

    outcome = resolver.resolve(manifest)

    assert outcome.warnings == ["2 scenes exceed the profile maximum of 1"]


def test_hard_constraints_from_mapping():
    constraints = HardConstraints.from_mapping({"palette": ["#abcdef"], "maxEffectsPerScene": "2"})

    assert constraints.palette == ("#ABCDEF",)
    assert constraints.max_effects_per_scene == 2
    assert HardConstraints.from_mapping(None).is_empty()
