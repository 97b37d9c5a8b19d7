from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.getenv("MANIFEST_HOME", Path.cwd())).resolve()
DATA_DIR = BASE_DIR / "data"
TREATMENTS_DIR = DATA_DIR / "treatments"
MANIFESTS_DIR = DATA_DIR / "manifests"
LOGS_DIR = DATA_DIR / "logs"


def ensure_runtime_directories() -> None:
    """Create folders used by the command-line compiler."""
    for path in (
        DATA_DIR,
        TREATMENTS_DIR,
        MANIFESTS_DIR,
        LOGS_DIR,
    ):
        path.mkdir(parents=True, exist_ok=True)
