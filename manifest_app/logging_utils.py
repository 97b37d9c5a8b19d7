from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s | %(message)s"
# Client libraries behind the Gemini assistants log every request at INFO.
NOISY_LOGGERS = ("google", "grpc", "urllib3", "httpx")


def setup_logging(log_file: Path | None = None, *, level: str | None = None) -> None:
    """Configure the root logger once per process; later calls only add a missing file handler."""
    log_level = (level or os.getenv("APP_LOG_LEVEL", "INFO")).upper()
    numeric_level = getattr(logging, log_level, logging.INFO)
    root_logger = logging.getLogger()
    if root_logger.handlers:
        if log_file and not _has_file_handler(root_logger, log_file):
            root_logger.addHandler(_file_handler(log_file, numeric_level))
        return

    # stderr keeps stdout free for the manifest JSON
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(console)
    if log_file:
        root_logger.addHandler(_file_handler(log_file, numeric_level))
    root_logger.setLevel(numeric_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def _has_file_handler(logger: logging.Logger, log_file: Path) -> bool:
    target = log_file.resolve()
    return any(
        isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == target
        for handler in logger.handlers
    )


def _file_handler(log_file: Path, level: int) -> logging.FileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler
