from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Dict, Iterable

from jsonschema import Draft202012Validator

from ..models import ValidationIssue, ValidationReport
from ..paths import SCHEMA_PATH


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    schema = load_schema()
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def load_schema() -> Dict[str, Any]:
    if not SCHEMA_PATH.exists():
        raise FileNotFoundError(f"Schema file not found at {SCHEMA_PATH}")
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def _format_path(parts: Iterable[Any]) -> str:
    return "/".join(str(part) for part in parts)


def validate_manifest_schema(manifest: Any) -> Iterable[ValidationIssue]:
    validator = _validator()
    errors = sorted(validator.iter_errors(manifest), key=lambda e: [str(part) for part in e.absolute_path])
    for error in errors:
        yield ValidationIssue(
            code="schema.validation",
            message=error.message,
            severity="error",
            path=_format_path(error.absolute_path),
            context={"path": list(error.absolute_path), "validator": error.validator},
        )


def check_manifest_schema(manifest: Any) -> ValidationReport:
    return ValidationReport.from_issues(list(validate_manifest_schema(manifest)))
