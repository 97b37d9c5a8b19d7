"""
This module defines the file paths of the static data shipped with the manifest
compiler: the versioned manifest JSON Schema and the lookup tables (effect
taxonomy, platform preferences, creative profiles) consumed by the enricher,
the assembler and the validators.
"""

from __future__ import annotations  # Enables postponed evaluation of type annotations

from pathlib import Path  # For object-oriented filesystem paths


# Directory of the `manifest_generation` package itself.
PACKAGE_ROOT = Path(__file__).resolve().parent

# Static JSON data lives next to the code so it is installed as package data.
DATA_ROOT = PACKAGE_ROOT / "data"

# The binding structural contract for every produced manifest.
SCHEMA_PATH = DATA_ROOT / "manifest_schema.json"

# Lookup tables, loaded once per process and treated as read-only.
EFFECT_CATALOG_PATH = DATA_ROOT / "effect_catalog.json"   # Effect taxonomy, purpose and cinematic-level tables
PLATFORM_RULES_PATH = DATA_ROOT / "platform_rules.json"   # Per-platform defaults, aliases and render resolutions
PROFILES_PATH = DATA_ROOT / "profiles.json"               # Creative profiles: feature flags and hard constraints
