from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from manifest_generation import CompileResult, CompilerSettings, ManifestCompiler, ManifestCompilerError
from manifest_generation.llm import GeminiManifestRepairer, GeminiTreatmentExtractor
from manifest_generation.validators import load_schema

from .config import ensure_runtime_directories
from .logging_utils import setup_logging
from .project import ProjectPaths
from .utils import dump_json, load_json, slugify, timestamp_slug

LOGGER = logging.getLogger(__name__)


def read_treatment(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides = {
        "durationSeconds": args.duration,
        "aspectRatio": args.aspect,
        "platform": args.platform,
        "language": args.language,
        "profile": args.profile,
        "cinematicLevel": args.cinematic_level,
        "enforcementMode": args.enforcement_mode,
    }
    return {key: value for key, value in overrides.items() if value is not None}


def build_compiler(settings: CompilerSettings, *, use_llm: bool) -> ManifestCompiler:
    extractor = None
    repairer = None
    if use_llm or settings.extractor_enabled:
        extractor = GeminiTreatmentExtractor(request_timeout=settings.extractor_timeout)
    if use_llm or settings.repair_enabled:
        repairer = GeminiManifestRepairer(request_timeout=settings.repair_timeout, schema=load_schema())
    return ManifestCompiler(settings, extractor=extractor, repairer=repairer)


def run_compile(
    text: str,
    *,
    settings: CompilerSettings,
    overrides: Dict[str, Any] | None = None,
    hints_path: Path | None = None,
    assets_path: Path | None = None,
    use_llm: bool = False,
    user_id: str | None = None,
) -> CompileResult:
    hints = load_json(hints_path) if hints_path else None
    assets = load_json(assets_path) if assets_path else None
    compiler = build_compiler(settings, use_llm=use_llm)
    return compiler.compile(text, hints=hints, overrides=overrides, asset_catalog=assets, user_id=user_id)


def write_outputs(result: CompileResult, project: ProjectPaths, *, indent: int | None) -> None:
    document = result.to_dict()
    dump_json(document["manifest"], project.manifest_json, indent=indent)
    dump_json(document["jobs"], project.jobs_json, indent=indent)
    dump_json(
        {
            "warnings": result.warnings,
            "success": result.success,
            "states": result.states,
            "repairRounds": result.repair_rounds,
            "usedFallback": result.used_fallback,
            "usedLlmRepair": result.used_llm_repair,
            "stats": result.stats,
        },
        project.report_json,
        indent=indent,
    )


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compile a video treatment into a Production Manifest.")
    parser.add_argument("treatment", help="Treatment text file, or '-' to read stdin.")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Write {manifest, jobs, warnings, success} here (default: data/manifests/<slug>.json).",
    )
    parser.add_argument("--slug", help="Optional slug (default: auto based on timestamp).")
    parser.add_argument("--duration", type=float, help="Target duration in seconds.")
    parser.add_argument("--aspect", help="Aspect ratio, e.g. 9:16.")
    parser.add_argument("--platform", help="Target platform (tiktok, youtube, ...).")
    parser.add_argument("--language", help="Narration language code.")
    parser.add_argument("--profile", help="Creative profile, e.g. educational_explainer.")
    parser.add_argument("--cinematic-level", choices=("basic", "pro"))
    parser.add_argument("--enforcement-mode", choices=("strict", "balanced", "creative"))
    parser.add_argument("--hints", type=Path, help="JSON file with analyzer/refiner/script hints.")
    parser.add_argument("--assets", type=Path, help="JSON file with the user asset catalog.")
    parser.add_argument("--user-id", help="Owner recorded on the manifest.")
    parser.add_argument(
        "--llm",
        action="store_true",
        help="Use the Gemini extractor and repairer (requires GEMINI_API_KEY).",
    )
    parser.add_argument("--pretty", action="store_true", help="Indent JSON output.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level.")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    settings = CompilerSettings.from_env()
    indent = 2 if args.pretty else None
    log_level = "DEBUG" if args.verbose else None

    source = None if args.treatment == "-" else Path(args.treatment)
    project: ProjectPaths | None = None
    if args.output is None:
        ensure_runtime_directories()
        slug = slugify(args.slug) if args.slug else timestamp_slug(source.stem if source else "stdin")
        project = ProjectPaths.from_slug(slug, source)
        setup_logging(project.log_file, level=log_level)
    else:
        setup_logging(level=log_level)

    try:
        text = read_treatment(args.treatment)
        result = run_compile(
            text,
            settings=settings,
            overrides=build_overrides(args),
            hints_path=args.hints,
            assets_path=args.assets,
            use_llm=args.llm,
            user_id=args.user_id,
        )
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.error("Cannot read input: %s", exc)
        return 1
    except ManifestCompilerError as exc:
        LOGGER.error("Compilation failed: %s", exc)
        return 1

    if args.output is not None:
        dump_json(result.to_dict(), args.output, indent=indent)
        LOGGER.info("Manifest written to %s", args.output)
    else:
        project.treatment_copy.write_text(text, encoding="utf-8")
        write_outputs(result, project, indent=indent)
        LOGGER.info("Artifacts written | %s", project.as_dict())

    for warning in result.warnings:
        LOGGER.info("warning: %s", warning)
    LOGGER.info(
        "=== Compiled %s | scenes=%d jobs=%d fallback=%s ===",
        result.manifest.id,
        len(result.manifest.scenes),
        len(result.jobs),
        result.used_fallback,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
