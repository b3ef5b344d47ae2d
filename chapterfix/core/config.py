"""
Configuration for the correction engine.
Values come from the environment (optionally a .env file).
"""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/chapterfix.db")

DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# Batch correction configuration
SUMMARY_PREVIEW_TITLES = int(os.getenv("SUMMARY_PREVIEW_TITLES", "3"))
SWEEP_MAX_PASSES = int(os.getenv("SWEEP_MAX_PASSES", "5"))

# HTTP surface
API_CORS_ORIGINS = os.getenv(
    "API_CORS_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000"
)

# History action types
ACTION_BATCH_CORRECTION = "batch_correction"
ACTION_BRACKET_REPAIR = "bracket_repair"

# Version string
VERSION = "1.0.0"


def get_db_path():
    """Database path, read on every call so tests can redirect it."""
    return os.getenv("DB_PATH", DB_PATH)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def get_summary_preview_titles():
    """Number of chapter titles listed in a batch summary."""
    return int(os.getenv("SUMMARY_PREVIEW_TITLES", str(SUMMARY_PREVIEW_TITLES)))


def get_sweep_max_passes():
    """Upper bound on normalization passes in the final sweep."""
    return int(os.getenv("SWEEP_MAX_PASSES", str(SWEEP_MAX_PASSES)))


def get_cors_origins():
    """Allowed CORS origins for the API."""
    raw = os.getenv("API_CORS_ORIGINS", API_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if get_summary_preview_titles() < 0:
        issues.append("SUMMARY_PREVIEW_TITLES must be >= 0")

    if get_sweep_max_passes() < 1:
        issues.append("SWEEP_MAX_PASSES must be >= 1")

    return issues
