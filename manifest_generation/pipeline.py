"""Treatment to Production Manifest compiler.

Runs extraction, assembly, timeline normalization, enrichment and profile
constraints, then drives a small state machine over validation and repair:

    ASSEMBLED -> SCHEMA_CHECKED -> BUSINESS_CHECKED -> DONE
                     ^                  |
                     +--- REPAIRED <----+   (bounded deterministic rounds,
                                             then one optional LLM attempt)

When no repair is left the minimal fallback manifest is built
(``FALLBACK_BUILT``). It must validate; if it does not, ``FallbackManifestError``
is the only error a caller ever sees. Every recovery path taken is recorded in
the result's ``warnings``.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from .assembler import build_manifest, resolve_metadata
from .catalog import EffectCatalog, default_catalog
from .constraints import apply_profile_constraints
from .enrich_manifest import enrich_manifest, enrichment_stats
from .errors import FallbackManifestError
from .jobs import attach_jobs, execution_order, execution_waves
from .llm import ManifestRepairer, TreatmentExtractor, consult_oracle
from .models import CompileResult, ProductionManifest, TreatmentOutline, ValidationIssue
from .repair import build_minimal_fallback_manifest, deterministic_repair
from .settings import CompilerSettings
from .timeline import compute_timing_warnings, normalize_scene_timings, rescale_scene_durations, sync_subtitles
from .treatment_parser import HeuristicExtractor
from .validators import validate_manifest, validate_manifest_rules, validate_manifest_schema

LOGGER = logging.getLogger(__name__)


class CompileState(str, Enum):
    ASSEMBLED = "assembled"
    SCHEMA_CHECKED = "schema_checked"
    BUSINESS_CHECKED = "business_checked"
    REPAIRED = "repaired"
    FALLBACK_BUILT = "fallback_built"
    DONE = "done"


@dataclass
class _CompileRun:
    """Mutable bookkeeping of one ``compile`` call; never shared between calls."""

    warnings: List[str] = field(default_factory=list)
    states: List[CompileState] = field(default_factory=list)
    repair_rounds: int = 0
    llm_repair_attempted: bool = False
    llm_repair_pending: bool = False
    used_llm_repair: bool = False
    used_fallback: bool = False
    constraint_clamps: Dict[str, Any] = field(default_factory=dict)

    def enter(self, state: CompileState) -> None:
        self.states.append(state)
        LOGGER.debug("Compiler state -> %s", state.value)

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        LOGGER.warning("[WARN] %s", message)


class ManifestCompiler:
    """Compile treatments into validated manifests and job lists.

    ``extractor`` and ``repairer`` are optional advisory callables; every call to
    them is bounded by the timeouts in ``settings`` and any failure is treated as
    "no answer".
    """

    def __init__(
        self,
        settings: CompilerSettings | None = None,
        catalog: EffectCatalog | None = None,
        *,
        extractor: TreatmentExtractor | None = None,
        repairer: ManifestRepairer | None = None,
    ) -> None:
        self.settings = settings or CompilerSettings()
        self.catalog = catalog or default_catalog()
        self.extractor = extractor
        self.repairer = repairer
        self._heuristic = HeuristicExtractor(self.catalog.vocabulary())

    # ----- Extraction -----

    def _coerce_outline(self, candidate: Any) -> Optional[TreatmentOutline]:
        if isinstance(candidate, TreatmentOutline):
            outline = candidate
        elif isinstance(candidate, Mapping):
            try:
                outline = TreatmentOutline.model_validate(candidate)
            except ValidationError as exc:
                LOGGER.warning("[WARN] Discarding malformed extractor output: %s", exc.error_count())
                return None
        else:
            return None
        return outline if outline.scenes else None

    def _extract(self, text: str, hints: Mapping[str, Any], run: _CompileRun) -> TreatmentOutline:
        if self.extractor is not None:
            candidate = consult_oracle(
                self.extractor,
                text,
                hints,
                timeout=self.settings.extractor_timeout,
                retries=self.settings.llm_max_retries,
                label="LLM extractor",
            )
            outline = self._coerce_outline(candidate)
            if outline is not None:
                run.warnings.append("Treatment extracted by LLM extractor")
                return outline
            run.warn("LLM extractor failed or timed out")
        run.warnings.append("Used deterministic parser for treatment extraction")
        return self._heuristic(text, hints)

    # ----- Assembly -----

    def _normalize(self, manifest: Dict[str, Any]) -> None:
        scenes = manifest["scenes"]
        total = float(manifest["metadata"]["durationSeconds"])
        normalize_scene_timings(scenes, min_duration=self.settings.min_normalized_seconds)
        for message in compute_timing_warnings(scenes, total, self.settings.duration_tolerance):
            LOGGER.info("Timing before rescale: %s", message)
        rescale_scene_durations(
            scenes,
            total,
            floor=self.settings.min_scene_seconds,
            tolerance=self.settings.duration_tolerance,
        )
        sync_subtitles(scenes)

    def _enrich(self, manifest: Dict[str, Any], run: _CompileRun) -> None:
        report = enrich_manifest(manifest, self.catalog)
        outcome = apply_profile_constraints(manifest, [*report.explicit, *report.overridden], catalog=self.catalog)
        run.warnings.extend(outcome.warnings)
        run.constraint_clamps = outcome.clamped

    # ----- Validation and repair -----

    def _check(self, manifest: Dict[str, Any], run: _CompileRun) -> List[ValidationIssue]:
        # Jobs are decomposed only from a structurally valid document.
        issues = list(validate_manifest_schema({**manifest, "jobs": []}))
        if not issues:
            attach_jobs(manifest, catalog=self.catalog, settings=self.settings)
            issues = list(validate_manifest_schema(manifest))
        run.enter(CompileState.SCHEMA_CHECKED)
        if issues:
            return issues
        issues = validate_manifest_rules(manifest, settings=self.settings)
        run.enter(CompileState.BUSINESS_CHECKED)
        return issues

    def _repair(
        self,
        manifest: Dict[str, Any],
        issues: List[ValidationIssue],
        metadata: Mapping[str, Any],
        run: _CompileRun,
    ) -> Optional[Dict[str, Any]]:
        """Next candidate document, or None once every repair path is spent."""
        if run.repair_rounds < self.settings.max_repair_rounds:
            run.repair_rounds += 1
            repaired, notes = deterministic_repair(
                manifest, defaults=metadata, settings=self.settings, catalog=self.catalog
            )
            LOGGER.debug("Repair notes: %s", notes)
            run.warn(
                f"Manifest failed validation ({len(issues)} issue(s)); "
                f"applied deterministic repairs (round {run.repair_rounds})"
            )
            return repaired

        if self.repairer is not None and not run.llm_repair_attempted:
            run.llm_repair_attempted = True
            context = {
                "metadata": dict(metadata),
                "allowedEffects": list(self.catalog.vocabulary()),
                "durationTolerance": self.settings.duration_tolerance,
            }
            candidate = consult_oracle(
                self.repairer,
                copy.deepcopy(manifest),
                issues,
                context,
                timeout=self.settings.repair_timeout,
                retries=self.settings.llm_max_retries,
                label="LLM repairer",
            )
            if isinstance(candidate, dict) and isinstance(candidate.get("scenes"), list):
                run.llm_repair_pending = True
                return candidate
            run.warn("LLM repair failed or timed out")
        return None

    def _validate_and_repair(
        self,
        manifest: Dict[str, Any],
        metadata: Mapping[str, Any],
        run: _CompileRun,
    ) -> Optional[Dict[str, Any]]:
        while True:
            issues = self._check(manifest, run)
            if run.llm_repair_pending:
                run.llm_repair_pending = False
                if not issues:
                    run.used_llm_repair = True
                    run.warn("Manifest repaired by LLM repair fallback")
                    return manifest
                run.warn(f"LLM repair result failed validation ({len(issues)} issue(s))")
                return None
            if not issues:
                return manifest
            for issue in issues[:10]:
                LOGGER.info("Violation %s at %s: %s", issue.code, issue.path or "<root>", issue.message)
            candidate = self._repair(manifest, issues, metadata, run)
            if candidate is None:
                return None
            manifest = candidate
            run.enter(CompileState.REPAIRED)

    def _fallback(
        self,
        metadata: Mapping[str, Any],
        run: _CompileRun,
        *,
        manifest_id: str | None,
        user_id: str | None,
    ) -> Dict[str, Any]:
        run.used_fallback = True
        run.warn("Falling back to minimal deterministic manifest")
        manifest = build_minimal_fallback_manifest(
            metadata, settings=self.settings, catalog=self.catalog, manifest_id=manifest_id
        )
        if user_id:
            manifest["userId"] = user_id
        run.enter(CompileState.FALLBACK_BUILT)
        attach_jobs(manifest, catalog=self.catalog, settings=self.settings)
        report = validate_manifest(manifest, settings=self.settings)
        if not report.is_valid:
            LOGGER.error("Fallback manifest failed validation: %s", [issue.code for issue in report.issues])
            raise FallbackManifestError(report.issues)
        return manifest

    # ----- Public API -----

    def compile(
        self,
        text: Any,
        *,
        hints: Mapping[str, Any] | None = None,
        overrides: Mapping[str, Any] | None = None,
        asset_catalog: Any = None,
        manifest_id: str | None = None,
        user_id: str | None = None,
    ) -> CompileResult:
        run = _CompileRun()
        if isinstance(hints, Mapping):
            hints = dict(hints)
        else:
            if hints:
                run.warn(f"Ignoring hints of type {type(hints).__name__}; expected an object")
            hints = {}
        source_text = text if isinstance(text, str) else ("" if text is None else str(text))

        outline = self._extract(source_text, hints, run)
        metadata = resolve_metadata(overrides, hints, outline, settings=self.settings, catalog=self.catalog)
        LOGGER.info(
            "Compiling treatment | scenes=%d duration=%.2fs platform=%s profile=%s",
            len(outline.scenes),
            metadata["durationSeconds"],
            metadata["platform"],
            metadata["profile"],
        )

        manifest: Optional[Dict[str, Any]] = None
        if outline.is_usable():
            manifest = build_manifest(
                outline,
                metadata,
                hints=hints,
                asset_catalog=asset_catalog,
                settings=self.settings,
                catalog=self.catalog,
                manifest_id=manifest_id,
                user_id=user_id,
                source_text=source_text,
            )
            run.enter(CompileState.ASSEMBLED)
            self._normalize(manifest)
            self._enrich(manifest, run)
            manifest = self._validate_and_repair(manifest, metadata, run)
        else:
            run.warn("Treatment has no usable scene content")

        if manifest is None:
            manifest = self._fallback(metadata, run, manifest_id=manifest_id, user_id=user_id)
        run.enter(CompileState.DONE)

        typed = ProductionManifest.model_validate(manifest)
        jobs = list(typed.jobs)
        stats = {
            **enrichment_stats(manifest),
            "jobCount": len(jobs),
            "executionOrder": execution_order(jobs),
            "executionWaves": execution_waves(jobs),
            "constraintClamps": run.constraint_clamps,
        }
        LOGGER.info(
            "Compiled manifest %s | scenes=%d jobs=%d repairs=%d fallback=%s",
            typed.id,
            len(typed.scenes),
            len(jobs),
            run.repair_rounds,
            run.used_fallback,
        )
        return CompileResult(
            manifest=typed,
            jobs=jobs,
            warnings=run.warnings,
            success=True,
            states=[state.value for state in run.states],
            repair_rounds=run.repair_rounds,
            used_fallback=run.used_fallback,
            used_llm_repair=run.used_llm_repair,
            stats=stats,
        )


def compile_treatment(
    text: Any,
    *,
    hints: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
    asset_catalog: Any = None,
    extractor: TreatmentExtractor | None = None,
    repairer: ManifestRepairer | None = None,
    settings: CompilerSettings | None = None,
    manifest_id: str | None = None,
    user_id: str | None = None,
) -> CompileResult:
    """One-shot compilation with a fresh ``ManifestCompiler``."""
    compiler = ManifestCompiler(settings, extractor=extractor, repairer=repairer)
    return compiler.compile(
        text,
        hints=hints,
        overrides=overrides,
        asset_catalog=asset_catalog,
        manifest_id=manifest_id,
        user_id=user_id,
    )
