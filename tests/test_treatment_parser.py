import pytest

from manifest_generation.treatment_parser import (
    HeuristicExtractor,
    parse_duration,
    parse_metadata_lines,
    parse_treatment,
    split_into_blocks,
)


def test_scene_headers_and_fields(launch_text):
    outline = parse_treatment(launch_text)

    assert [scene.id for scene in outline.scenes] == ["s1", "s2", "s3"]
    assert [scene.purpose for scene in outline.scenes] == ["hook", "body", "cta"]
    assert [scene.duration_weight for scene in outline.scenes] == [0.8, 1.2, 0.8]

    hook, demo, cta = outline.scenes
    assert hook.title == "Hook"
    assert hook.narration == "Meet the fastest way to edit videos."
    assert hook.visual_anchor_hint == "Close-up of a laptop on a desk"
    assert hook.music_cue == "upbeat synth intro"
    assert demo.effects == ["parallax_scroll", "overlay_text"]
    assert demo.sfx == ["whoosh"]
    assert cta.narration == "Start your free trial today."
    assert outline.is_usable()


def test_preamble_metadata_fills_outline(launch_text):
    outline = parse_treatment(launch_text)

    assert outline.title == "Launch Day"
    assert outline.total_duration_seconds == 45.0
    assert outline.platform == "TikTok"


def test_paragraph_blocks_without_headers():
    text = (
        "First paragraph about the app shown on a smartphone.\n\n"
        "Second paragraph explains the analytics dashboard.\n\n"
        "Third paragraph wraps up with a call to action."
    )
    outline = parse_treatment(text)

    assert len(outline.scenes) == 3
    assert outline.scenes[0].visual_anchor_hint == "smartphone"
    assert outline.scenes[1].visual_anchor_hint == "dashboard"
    assert outline.scenes[2].purpose == "cta"


def test_many_paragraphs_are_grouped_into_three_blocks():
    paragraphs = [f"Paragraph number {index} tells part of the story." for index in range(1, 6)]
    _, blocks = split_into_blocks("\n\n".join(paragraphs))

    assert len(blocks) == 3


@pytest.mark.parametrize("text", ["", "   \n\n  ", "@@@ ### ???", None])
def test_unusable_input_degrades_to_single_scene(text):
    outline = parse_treatment(text)

    assert len(outline.scenes) == 1
    assert outline.scenes[0].id == "s1"
    assert not outline.is_usable()


def test_front_matter_metadata():
    text = (
        "---\n"
        "title: Fancy Explainer\n"
        "duration: 30\n"
        "profile: Educational Explainer\n"
        "---\n"
        "Scene 1\n"
        "Narration: Hello there, welcome aboard.\n"
    )
    outline = parse_treatment(text)

    assert outline.title == "Fancy Explainer"
    assert outline.total_duration_seconds == 30.0
    assert outline.profile == "educational_explainer"
    assert outline.scenes[0].narration == "Hello there, welcome aboard."


def test_declared_scene_durations_become_weights():
    text = (
        "Scene 1: Opening\nDuration: 10s\nNarration: Welcome to the show.\n\n"
        "Scene 2: Main part\nDuration: 20s\nNarration: Here is the main content.\n"
    )
    outline = parse_treatment(text)

    assert [scene.duration_weight for scene in outline.scenes] == [10.0, 20.0]


def test_explicit_purpose_line_wins():
    text = "Scene 1: Anything\nPurpose: testimonial\nNarration: This changed how I work."
    outline = parse_treatment(text)

    assert outline.scenes[0].purpose == "testimonial"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("45s", 45.0),
        ("45", 45.0),
        ("1:30", 90.0),
        ("2 min", 120.0),
        (12, 12.0),
        ("abc", None),
        (0, None),
        (True, None),
    ],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


def test_parse_metadata_lines_first_occurrence_wins():
    meta = parse_metadata_lines("Aspect ratio: 9:16\nLanguage: vi\nLanguage: en")

    assert meta == {"aspect": "9:16", "language": "vi"}


def test_heuristic_extractor_matches_parse_treatment(launch_text):
    extracted = HeuristicExtractor()(launch_text, {})

    assert extracted == parse_treatment(launch_text)
