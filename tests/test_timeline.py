import pytest

from manifest_generation.timeline import (
    allocate_durations,
    compute_timing_warnings,
    normalize_scene_timings,
    rescale_scene_durations,
    sync_subtitles,
)


def test_allocate_durations_follows_weights():
    assert allocate_durations([0.8, 1.2, 0.8], 5) == [1.43, 2.14, 1.43]


def test_allocate_durations_without_weights_splits_evenly():
    assert allocate_durations([0, 0], 10) == [5.0, 5.0]


def test_allocate_durations_respects_floor():
    assert allocate_durations([1, 1000], 1, floor=0.05)[0] == 0.05


def test_rescale_tiles_the_total_duration():
    scenes = [{"id": f"s{i}", "durationSeconds": 1.0} for i in range(1, 4)]

    rescale_scene_durations(scenes, 10.0)

    assert [scene["startAtSec"] for scene in scenes] == [0.0, 3.33, 6.66]
    assert [scene["durationSeconds"] for scene in scenes] == [3.33, 3.33, 3.34]
    assert scenes[-1]["startAtSec"] + scenes[-1]["durationSeconds"] == pytest.approx(10.0, abs=0.01)


def test_rescale_with_zero_durations_splits_evenly():
    scenes = [{"id": "a", "durationSeconds": 0}, {"id": "b"}, {"id": "c", "durationSeconds": "n/a"}]

    rescale_scene_durations(scenes, 9.0)

    assert [scene["durationSeconds"] for scene in scenes] == [3.0, 3.0, 3.0]
    assert [scene["startAtSec"] for scene in scenes] == [0.0, 3.0, 6.0]


def test_normalize_fills_offsets_and_clamps_durations():
    scenes = [{"durationSeconds": 2}, {"startAtSec": -1, "durationSeconds": "x"}, {"startAtSec": 10, "durationSeconds": 1}]

    normalize_scene_timings(scenes, min_duration=1.0)

    assert scenes[0]["startAtSec"] == 0.0
    assert scenes[1]["startAtSec"] == 2.0
    assert scenes[1]["durationSeconds"] == 1.0
    # A valid explicit offset is kept even though it leaves a gap.
    assert scenes[2]["startAtSec"] == 10


def test_sync_subtitles_covers_narrated_scenes_only():
    scenes = [
        {"id": "s1", "startAtSec": 0.0, "durationSeconds": 2.5, "narration": " Hello there. "},
        {"id": "s2", "startAtSec": 2.5, "durationSeconds": 2.5, "subtitles": [{"text": "stale"}]},
    ]

    sync_subtitles(scenes)

    assert scenes[0]["subtitles"] == [{"text": "Hello there.", "startSec": 0.0, "endSec": 2.5}]
    assert "subtitles" not in scenes[1]


def test_timing_warnings_report_gaps_overlaps_and_overruns():
    scenes = [
        {"id": "s1", "startAtSec": 0.0, "durationSeconds": 2.0},
        {"id": "s2", "startAtSec": 3.0, "durationSeconds": 2.0},
        {"id": "s3", "startAtSec": 4.5, "durationSeconds": 2.0},
    ]

    warnings = compute_timing_warnings(scenes, total=6.0)

    assert any("Gap of 1.00s" in warning for warning in warnings)
    assert any("overlap by 0.50s" in warning for warning in warnings)
    assert any("runs 0.50s past" in warning for warning in warnings)


def test_timing_warnings_empty_for_tiled_scenes():
    scenes = [
        {"id": "s1", "startAtSec": 0.0, "durationSeconds": 2.0},
        {"id": "s2", "startAtSec": 2.0, "durationSeconds": 3.0},
    ]

    assert compute_timing_warnings(scenes, total=5.0) == []
