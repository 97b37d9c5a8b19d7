"""Compile free-text video treatments into validated Production Manifests and job graphs."""
from __future__ import annotations

from .catalog import EffectCatalog, default_catalog
from .errors import FallbackManifestError, LLMResponseError, ManifestCompilerError
from .jobs import build_job_graph, decompose_jobs, execution_order, execution_waves
from .models import CompileResult, Job, ProductionManifest, TreatmentOutline, ValidationIssue, ValidationReport
from .pipeline import CompileState, ManifestCompiler, compile_treatment
from .settings import CompilerSettings
from .treatment_parser import HeuristicExtractor, parse_treatment
from .validators import validate_manifest

__all__ = [
    # Pipeline
    "CompileState",
    "ManifestCompiler",
    "compile_treatment",
    "CompilerSettings",
    # Building blocks
    "EffectCatalog",
    "HeuristicExtractor",
    "default_catalog",
    "parse_treatment",
    "validate_manifest",
    "build_job_graph",
    "decompose_jobs",
    "execution_order",
    "execution_waves",
    # Models
    "CompileResult",
    "Job",
    "ProductionManifest",
    "TreatmentOutline",
    "ValidationIssue",
    "ValidationReport",
    # Errors
    "FallbackManifestError",
    "LLMResponseError",
    "ManifestCompilerError",
]
