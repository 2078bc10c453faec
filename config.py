"""
config.py - Loads preferences.yaml and environment variables.
Provides typed access to all configuration.
"""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

# Load .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent

# Load preferences.yaml
PREFERENCES_PATH = Path(os.getenv("OPPORTUNITY_PREFERENCES", PROJECT_ROOT / "preferences.yaml"))
with open(PREFERENCES_PATH, "r") as f:
    _prefs = yaml.safe_load(f)


# --- Sources ---
SOURCES = _prefs.get("sources", [])
SOURCE_ORDER = [s["tag"] for s in SOURCES]

# Crawled sources never go below this, whatever preferences.yaml says
MIN_REQUEST_DELAY = 2.0

# --- Orchestrator ---
ORCHESTRATOR = _prefs.get("orchestrator", {})
MAX_WORKERS = int(ORCHESTRATOR.get("max_workers", 1))
RUN_TIMEOUT_SECONDS = ORCHESTRATOR.get("timeout_seconds")

# --- Match notifier ---
NOTIFIER = _prefs.get("notifier", {})
HIGH_MATCH_THRESHOLD = NOTIFIER.get("high_match_threshold", 85)
MATCH_WINDOW_HOURS = NOTIFIER.get("window_hours", 24)

# --- Reserved run tag ---
AGGREGATE_SOURCE_TAG = "all-sources"

# --- API Keys & Secrets (from .env) ---
SERVICE_TOKEN = os.getenv("SERVICE_TOKEN", "")
INTERNAL_CALL_SECRET = os.getenv("INTERNAL_CALL_SECRET", "")
INTERNAL_CALL_HEADER = "x-internal-call"
EVENTBRITE_API_KEY = os.getenv("EVENTBRITE_API_KEY", "")
FIRECRAWL_API_KEY = os.getenv("FIRECRAWL_API_KEY", "")

# --- Database ---
DB_PATH = Path(os.getenv("OPPORTUNITY_DB_PATH", PROJECT_ROOT / "data" / "opportunities.db"))

# --- Logging ---
LOG_DIR = PROJECT_ROOT / "logs"
LOG_FILE = LOG_DIR / "opportunity_ingest.log"


def get_source_settings(tag: str) -> dict:
    """Return the preferences.yaml block for a source tag (empty if absent)."""
    for source in SOURCES:
        if source.get("tag") == tag:
            return source
    return {}


def validate_config():
    """Check that critical configuration is present."""
    warnings = []

    if not SERVICE_TOKEN:
        warnings.append("SERVICE_TOKEN is not set - scheduled runs cannot authenticate")
    if not INTERNAL_CALL_SECRET:
        warnings.append("INTERNAL_CALL_SECRET is not set - internal-call marker is disabled")
    if not EVENTBRITE_API_KEY:
        warnings.append("EVENTBRITE_API_KEY is not set - eventbrite source will fail")
    if not FIRECRAWL_API_KEY:
        warnings.append("FIRECRAWL_API_KEY is not set - meetup and conferencelist sources will fail")

    if len(set(SOURCE_ORDER)) != len(SOURCE_ORDER):
        warnings.append("Duplicate source tags in preferences.yaml")
    if AGGREGATE_SOURCE_TAG in SOURCE_ORDER:
        warnings.append(f"'{AGGREGATE_SOURCE_TAG}' is reserved and cannot be a source tag")
    if RUN_TIMEOUT_SECONDS is not None and RUN_TIMEOUT_SECONDS <= 0:
        warnings.append("orchestrator.timeout_seconds must be positive - every source would time out before start")

    return warnings
