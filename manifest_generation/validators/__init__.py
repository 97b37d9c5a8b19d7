"""Structural and semantic validation of Production Manifests."""
from __future__ import annotations

from typing import Any, Dict, List

from ..models import ValidationIssue, ValidationReport
from ..settings import CompilerSettings
from .rules import check_manifest_rules, validate_manifest_rules
from .schema import check_manifest_schema, load_schema, validate_manifest_schema


def validate_manifest(manifest: Dict[str, Any], settings: CompilerSettings | None = None) -> ValidationReport:
    """Schema check, then business rules when the structure holds."""
    issues: List[ValidationIssue] = list(validate_manifest_schema(manifest))
    if not issues:
        issues.extend(validate_manifest_rules(manifest, settings=settings))
    return ValidationReport.from_issues(issues)


__all__ = [
    "check_manifest_rules",
    "check_manifest_schema",
    "load_schema",
    "validate_manifest",
    "validate_manifest_rules",
    "validate_manifest_schema",
]
