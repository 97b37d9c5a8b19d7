from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict

from .config import LOGS_DIR, MANIFESTS_DIR, TREATMENTS_DIR


@dataclass
class ProjectPaths:
    slug: str
    source_treatment: Path | None
    treatment_copy: Path
    manifest_json: Path
    jobs_json: Path
    report_json: Path
    log_file: Path

    @classmethod
    def from_slug(cls, slug: str, source_treatment: Path | None = None) -> "ProjectPaths":
        return cls(
            slug=slug,
            source_treatment=source_treatment,
            treatment_copy=TREATMENTS_DIR / f"{slug}.txt",
            manifest_json=MANIFESTS_DIR / f"{slug}.json",
            jobs_json=MANIFESTS_DIR / f"{slug}.jobs.json",
            report_json=MANIFESTS_DIR / f"{slug}.report.json",
            log_file=LOGS_DIR / f"{slug}.log",
        )

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {key: str(value) if isinstance(value, Path) else value for key, value in data.items()}
