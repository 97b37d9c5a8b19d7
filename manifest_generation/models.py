"""
This module defines the Pydantic models used by the manifest compiler: the
intermediate treatment outline produced by the extractors, every type of the
Production Manifest, the job list handed to the external scheduler, and the
validation and compile reports.

The manifest travels through the pipeline as a JSON-like working document (a
plain ``dict``) so the validators and the repairer can inspect documents that do
not conform yet. These models describe that document: the assembler builds its
pieces through them, and the compiler parses the final document back into a
typed ``ProductionManifest`` once both validators have accepted it.
"""

from __future__ import annotations  # Enables postponed evaluation of type annotations

from enum import Enum  # For creating enumerated constants
from typing import Any, Dict, List, Optional  # Type hinting utilities

from pydantic import BaseModel, ConfigDict, Field  # Base class for data models and field customization
from pydantic.alias_generators import to_camel  # snake_case attributes, camelCase wire names


class CamelModel(BaseModel):
    """
    Base model for every wire-level type: attributes are snake_case in Python and
    camelCase in JSON.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_document(self) -> Dict[str, Any]:
        """Dumps the model as a JSON-compatible dict using the camelCase wire names."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class AssetSource(str, Enum):
    """
    Where an asset comes from. Third-party stock sourcing is not part of the contract.
    """
    USER = "user"            # Pre-existing, caller-supplied asset
    GENERATED = "generated"  # Must be produced by a generation job before use


class AssetStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class JobType(str, Enum):
    """
    Fixed job vocabulary understood by the external worker pool.
    """
    TTS = "tts"
    IMAGE_GENERATION = "generate_image"
    VIDEO_GENERATION = "generate_video"
    CHART_GENERATION = "generate_chart"
    LIP_SYNC = "lip_sync"
    MUSIC_GENERATION = "generate_music"
    SFX_GENERATION = "generate_sfx"
    RENDER = "render"


class MusicStructure(str, Enum):
    INTRO = "intro"
    BUILD = "build"
    CLIMAX = "climax"
    OUTRO = "outro"


class EnforcementMode(str, Enum):
    """
    Strictness applied when reconciling manifest content with a profile's hard constraints.
    """
    STRICT = "strict"        # Clamp everything, explicit scene values included
    BALANCED = "balanced"    # Clamp generated values, warn about explicit ones
    CREATIVE = "creative"    # Warn only


# ---------------------------------------------------------------------------
# Intermediate treatment outline
# ---------------------------------------------------------------------------


class VoiceHint(CamelModel):
    gender: str = Field(default="any", description="Requested narrator gender, or 'any'.")
    voice_id_hint: Optional[str] = Field(default=None, description="Provider voice id requested by the treatment.")


class TreatmentScene(CamelModel):
    """
    One scene as read from the treatment, before any timing is known.
    """
    id: str = Field(description="Sequential scene id (s1, s2, ...).")
    title: Optional[str] = Field(default=None, description="Scene title taken from the scene header.")
    purpose: str = Field(default="body", description="hook, body, cta or a free-form purpose.")
    duration_weight: float = Field(default=1.0, description="Relative share of the total duration.")
    narration: Optional[str] = Field(default=None, description="Voice-over text for the scene.")
    visual_anchor_hint: Optional[str] = Field(
        default=None,
        description="Free-text visual hint, ' | '-joined when several were found."
    )
    effects: List[str] = Field(default_factory=list, description="Known effect identifiers named in the block.")
    music_cue: Optional[str] = Field(default=None, description="Music cue text found in the block.")
    sfx: List[str] = Field(default_factory=list, description="Sound-effect descriptions found in the block.")

    def has_content(self) -> bool:
        return bool(self.narration or self.visual_anchor_hint or self.effects or self.music_cue)


class TreatmentOutline(CamelModel):
    """
    Unvalidated intermediate structure shared by every extractor implementation.
    """
    title: Optional[str] = Field(default=None, description="Title of the piece, if the treatment names one.")
    total_duration_seconds: Optional[float] = Field(
        default=None,
        description="Target duration declared inside the treatment."
    )
    scenes: List[TreatmentScene] = Field(default_factory=list, description="Scenes in treatment order.")
    voice: VoiceHint = Field(default_factory=VoiceHint, description="Narrator preferences.")
    profile: Optional[str] = Field(default=None, description="Creative profile or style named by the treatment.")
    platform: Optional[str] = Field(default=None, description="Target platform named by the treatment.")
    aspect_ratio: Optional[str] = Field(default=None, description="Aspect ratio named by the treatment.")
    language: Optional[str] = Field(default=None, description="Narration language named by the treatment.")
    tone: Optional[str] = Field(default=None, description="Tone named by the treatment.")

    def is_usable(self) -> bool:
        """True when at least one scene carries narration, a visual hint, an effect or a music cue."""
        return any(scene.has_content() for scene in self.scenes)


# ---------------------------------------------------------------------------
# Production Manifest
# ---------------------------------------------------------------------------


class ManifestMetadata(CamelModel):
    intent: str = Field(default="video", description="video, image or audio.")
    duration_seconds: float = Field(description="Total target duration in seconds.")
    aspect_ratio: str = Field(default="16:9", description="Aspect ratio in W:H form.")
    platform: str = Field(default="social", description="Target platform.")
    language: str = Field(default="en", description="Narration language code.")
    profile: str = Field(default="general", description="Creative profile driving defaults and constraints.")
    priority: str = Field(default="normal", description="Scheduling priority of the whole production.")
    title: Optional[str] = None
    tone: Optional[str] = None
    cinematic_level: Optional[str] = Field(default=None, description="basic or pro effect richness.")
    enforcement_mode: str = Field(default=EnforcementMode.BALANCED.value)
    feature_flags: Dict[str, Any] = Field(default_factory=dict)


class SceneVisual(CamelModel):
    asset_id: str = Field(description="Key into the manifest asset map.")
    type: str = Field(description="user_asset or generated.")
    role: str = Field(default="primary", description="primary or background.")


class SceneEffects(CamelModel):
    layered_effects: List[str] = Field(default_factory=list, description="Layered effects, in layer order.")
    transitions: List[str] = Field(default_factory=list, description="Transitions into the scene.")
    grade_preset: Optional[str] = Field(default=None, description="Colour-grade preset id.")
    ordering_hints: Dict[str, float] = Field(default_factory=dict, description="Render ordering hint per effect.")


class SubtitleSpan(CamelModel):
    text: str
    start_sec: float
    end_sec: float


class Scene(CamelModel):
    """
    A time-boxed unit of the manifest.
    """
    id: str = Field(description="Unique, stable scene id.")
    title: Optional[str] = None
    start_at_sec: float = Field(description="Offset of the scene from the start of the timeline.")
    duration_seconds: float = Field(description="Scene length in seconds, strictly positive.")
    purpose: str = Field(default="body", description="hook, body, cta or a free-form purpose.")
    ordering_hint: Optional[int] = Field(default=None, description="1-based render order.")
    narration: Optional[str] = None
    visual_anchor: Optional[str] = Field(default=None, description="Visual hint the scene's visuals came from.")
    visuals: List[SceneVisual] = Field(default_factory=list)
    effects: Optional[SceneEffects] = None
    effect_hints: List[str] = Field(default_factory=list, description="Effects named by the treatment.")
    music_cue: Optional[str] = Field(default=None, description="Id of the music cue playing under the scene.")
    subtitles: List[SubtitleSpan] = Field(default_factory=list)

    @property
    def end_sec(self) -> float:
        return self.start_at_sec + self.duration_seconds


class Asset(CamelModel):
    id: str
    source: AssetSource
    status: AssetStatus = AssetStatus.PENDING
    media_type: MediaType = MediaType.IMAGE
    origin_url: Optional[str] = None
    description: Optional[str] = None
    prompt: Optional[str] = Field(default=None, description="Generation prompt for generated assets.")


class TtsDefaults(CamelModel):
    provider: str = "elevenlabs"
    voice: str = "eva"
    style: str = "instructional"
    format: str = "mp3"
    sample_rate: int = 22050
    stability: float = 0.7
    similarity_boost: float = 0.5


class MusicCue(CamelModel):
    start_sec: float = Field(description="Cue start, within [0, total duration].")
    mood: str
    structure: MusicStructure = MusicStructure.INTRO
    description: Optional[str] = None


class MusicPlan(CamelModel):
    cue_map: Dict[str, MusicCue] = Field(default_factory=dict)
    global_volume_duck_to_voices: bool = True


class SoundEffect(CamelModel):
    id: str
    scene_id: str
    description: str
    offset_sec: float = 0.0


class AudioPlan(CamelModel):
    tts_defaults: Optional[TtsDefaults] = None
    music: MusicPlan = Field(default_factory=MusicPlan)
    sfx: List[SoundEffect] = Field(default_factory=list)


class VisualPlan(CamelModel):
    color_palette: List[str] = Field(default_factory=lambda: ["#0F172A", "#3B82F6"])
    fonts: Dict[str, str] = Field(default_factory=lambda: {"heading": "Inter", "body": "Roboto"})
    style: Optional[str] = None


class EffectsPlan(CamelModel):
    allowed: List[str] = Field(default_factory=list, description="Effect vocabulary of this manifest.")
    default_transition: str = "fade"
    per_scene: Dict[str, SceneEffects] = Field(default_factory=dict, description="Explicit per-scene overrides.")


class RetryPolicy(CamelModel):
    max_retries: int = Field(description="Retries the executor may attempt after the first failure.")
    backoff_seconds: float = Field(description="Delay before each retry.")


class Job(CamelModel):
    """
    A unit of deferred execution consumed by the external worker scheduler.
    """
    id: str
    type: JobType
    payload: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list)
    priority: int = 0
    retry_policy: RetryPolicy


class ProductionManifest(CamelModel):
    """
    Root artifact of the compiler.
    """
    id: str
    version: Optional[str] = None
    created_at: Optional[str] = None
    user_id: Optional[str] = None
    source_refs: Dict[str, Any] = Field(default_factory=dict)
    metadata: ManifestMetadata
    scenes: List[Scene]
    assets: Dict[str, Asset] = Field(default_factory=dict)
    audio: AudioPlan = Field(default_factory=AudioPlan)
    visuals: VisualPlan = Field(default_factory=VisualPlan)
    effects: EffectsPlan = Field(default_factory=EffectsPlan)
    consistency: Dict[str, Any] = Field(default_factory=dict)
    jobs: List[Job] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ValidationIssue(BaseModel):
    """
    Represents a single issue found while validating a manifest.
    """
    code: str = Field(description="A unique code identifying the type of validation issue.")
    message: str = Field(description="A human-readable description of the issue.")
    severity: str = Field(default="error", description="The severity of the issue (e.g., 'error', 'warning').")
    path: str = Field(default="", description="Slash-separated location of the offending value.")
    context: Dict[str, object] = Field(
        default_factory=dict,
        description="Additional context or data relevant to the issue (e.g., scene id, value)."
    )


class ValidationReport(BaseModel):
    """
    Summarizes the results of a validation pass.
    """
    is_valid: bool = Field(description="True if no error-level issue was found.")
    issues: List[ValidationIssue] = Field(
        default_factory=list,
        description="A list of all validation issues found."
    )

    @classmethod
    def from_issues(cls, issues: List[ValidationIssue]) -> "ValidationReport":
        return cls(is_valid=not any(issue.severity == "error" for issue in issues), issues=issues)


class CompileResult(BaseModel):
    """
    Outcome of one compilation: the validated manifest, its jobs and the audit trail.
    """
    manifest: ProductionManifest
    jobs: List[Job] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list, description="Every recovery path taken, in order.")
    success: bool = True
    states: List[str] = Field(default_factory=list, description="State-machine trail of the compilation.")
    repair_rounds: int = 0
    used_fallback: bool = False
    used_llm_repair: bool = False
    stats: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape handed to callers: ``{manifest, jobs, warnings, success}``."""
        return {
            "manifest": self.manifest.to_document(),
            "jobs": [job.to_document() for job in self.jobs],
            "warnings": list(self.warnings),
            "success": self.success,
        }
