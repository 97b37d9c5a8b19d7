from __future__ import annotations

import copy

import pytest

from manifest_generation import CompilerSettings, compile_treatment, default_catalog

THREE_SCENE_TREATMENT = """Scene 1:
Narration: Step one: pick footage.

Scene 2:
Narration: Step two: add data.

Scene 3:
Narration: Step three: publish confidently.
"""

LAUNCH_TREATMENT = """Title: Launch Day
Duration: 45s
Platform: TikTok

Scene 1: Hook
Narration: Meet the fastest way to edit videos.
Visual: Close-up of a laptop on a desk
Music: upbeat synth intro

Scene 2: Demo
Narration: Drag your clips in and let the planner do the rest.
Effects: parallax scroll, overlay text
SFX: whoosh

Scene 3: Call to action
Narration: Start your free trial today.
"""


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def settings():
    return CompilerSettings()


@pytest.fixture
def three_scene_text():
    return THREE_SCENE_TREATMENT


@pytest.fixture
def launch_text():
    return LAUNCH_TREATMENT


@pytest.fixture(scope="session")
def _compiled_three_scene():
    return compile_treatment(THREE_SCENE_TREATMENT, overrides={"durationSeconds": 5})


@pytest.fixture
def valid_manifest(_compiled_three_scene):
    """A fresh, mutable copy of a manifest that passes both validators."""
    return copy.deepcopy(_compiled_three_scene.to_dict()["manifest"])
