"""Exceptions raised by the manifest compiler."""
from __future__ import annotations

from typing import List, Sequence

from .models import ValidationIssue


class ManifestCompilerError(RuntimeError):
    """Base class for compiler failures surfaced to callers."""


class FallbackManifestError(ManifestCompilerError):
    """The minimal fallback manifest did not pass validation.

    The fallback is valid by construction, so this always points at a bug in the
    fallback builder or in the schema. No further degradation is possible.
    """

    def __init__(self, issues: Sequence[ValidationIssue]) -> None:
        self.issues: List[ValidationIssue] = list(issues)
        summary = "; ".join(f"{issue.path or '<root>'}: {issue.message}" for issue in self.issues[:5])
        super().__init__(f"Critical: fallback manifest failed validation ({summary})")


class LLMResponseError(ValueError):
    """An LLM answer could not be turned into a JSON object."""
