"""
Registry configuration - environment driven, read once at import.
Services receive a RegistrySettings snapshot instead of reading globals.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Store configuration
DB_PATH = os.getenv("DB_PATH", "./data/registry.db")
STORE_PROVIDER = os.getenv("STORE_PROVIDER", "sqlite")  # sqlite|memory

# Debug flag is also exposed as a function to be dynamic
DEBUG = os.getenv("DEBUG", "true").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Similarity model
FEATURE_DIMENSION = int(os.getenv("FEATURE_DIMENSION", "7"))
PERFECT_MATCH_THRESHOLD = float(os.getenv("PERFECT_MATCH_THRESHOLD", "0.95"))
RESONANT_THRESHOLD = float(os.getenv("RESONANT_THRESHOLD", "0.8"))
PARASITIC_THRESHOLD = float(os.getenv("PARASITIC_THRESHOLD", "0.3"))
REPLACE_ALTERNATIVE_THRESHOLD = float(os.getenv("REPLACE_ALTERNATIVE_THRESHOLD", "0.5"))
MAX_REPLACE_ALTERNATIVES = int(os.getenv("MAX_REPLACE_ALTERNATIVES", "3"))

# Namespaces and the naming convention used as a last resolve fallback
SOURCE_NAMESPACE = "npm"
TARGET_NAMESPACE = "crate"
PAIRING_NAMESPACE = "soul"
TWIN_SUFFIX = os.getenv("TWIN_SUFFIX", "-soul")  # empty string disables the convention

# Resource bounds
RESOLVE_CACHE_SIZE = int(os.getenv("RESOLVE_CACHE_SIZE", "1024"))
MAX_SCAN_RECORDS = int(os.getenv("MAX_SCAN_RECORDS", "100000"))
SEARCH_LIMIT_MAX = int(os.getenv("SEARCH_LIMIT_MAX", "100"))

# Version string
VERSION = "0.1.0"


@dataclass(frozen=True)
class RegistrySettings:
    """Snapshot of the tunables a ResolutionService runs with."""
    feature_dimension: int = FEATURE_DIMENSION
    perfect_match_threshold: float = PERFECT_MATCH_THRESHOLD
    resonant_threshold: float = RESONANT_THRESHOLD
    parasitic_threshold: float = PARASITIC_THRESHOLD
    replace_alternative_threshold: float = REPLACE_ALTERNATIVE_THRESHOLD
    max_replace_alternatives: int = MAX_REPLACE_ALTERNATIVES
    twin_suffix: str = TWIN_SUFFIX
    resolve_cache_size: int = RESOLVE_CACHE_SIZE
    max_scan_records: int = MAX_SCAN_RECORDS
    search_limit_max: int = SEARCH_LIMIT_MAX


def get_registry_settings() -> RegistrySettings:
    """Build settings from the current module configuration."""
    return RegistrySettings()


def get_db_path() -> str:
    """Database path, re-read from the environment so tests can redirect it."""
    return os.getenv("DB_PATH", DB_PATH)


def get_store_provider() -> str:
    return os.getenv("STORE_PROVIDER", STORE_PROVIDER).lower()


def get_store():
    """Get configured record store implementation."""
    provider = get_store_provider()

    if provider == "memory":
        from ..store.index import InMemoryRecordStore
        return InMemoryRecordStore()
    elif provider == "sqlite":
        from ..store.sqlite_store import SqliteRecordStore
        return SqliteRecordStore(get_db_path())
    else:
        raise ValueError(f"Unknown STORE_PROVIDER: {provider}")


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def validate_registry_config(settings: RegistrySettings = None):
    """Validate registry configuration and return any issues."""
    settings = settings or get_registry_settings()
    issues = []

    if get_store_provider() not in ["sqlite", "memory"]:
        issues.append(f"Invalid STORE_PROVIDER: {get_store_provider()}")

    if settings.feature_dimension < 1:
        issues.append("FEATURE_DIMENSION must be >= 1")

    for name in ["perfect_match_threshold", "resonant_threshold",
                 "parasitic_threshold", "replace_alternative_threshold"]:
        value = getattr(settings, name)
        if not 0.0 <= value <= 1.0:
            issues.append(f"{name.upper()} must be within [0, 1], got {value}")

    if not settings.parasitic_threshold < settings.resonant_threshold <= settings.perfect_match_threshold:
        issues.append("Thresholds must satisfy PARASITIC < RESONANT <= PERFECT_MATCH")

    if settings.resolve_cache_size < 0:
        issues.append("RESOLVE_CACHE_SIZE must be >= 0")

    if settings.max_scan_records < 1:
        issues.append("MAX_SCAN_RECORDS must be >= 1")

    return issues
