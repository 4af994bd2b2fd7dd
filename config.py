"""
Environment-driven settings for the claim report filler.

Every value is read once at import time; override with environment variables.
"""

import os
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


# =============================================================================
# S3 / storage
# =============================================================================
S3_ENDPOINT = os.getenv("S3_ENDPOINT", "https://nyc3.digitaloceanspaces.com")
S3_BUCKET = os.getenv("S3_BUCKET", "claim-reports")
S3_REGION = os.getenv("S3_REGION", "nyc3")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")

# =============================================================================
# Templates
# =============================================================================
# "local" reads from TEMPLATE_DIR, "s3" reads from S3_BUCKET
TEMPLATE_SOURCE = os.getenv("TEMPLATE_SOURCE", "local").strip().lower()
TEMPLATE_DIR = Path(os.getenv("TEMPLATE_DIR", str(Path(__file__).resolve().parent / "templates")))
DEFAULT_TEMPLATE_KEY = os.getenv("DEFAULT_TEMPLATE_KEY", "CRU_Property_Report_Template.docx")
TEMPLATE_CACHE_SIZE = _env_int("TEMPLATE_CACHE_SIZE", 8)
STRICT_VALIDATION = _env_bool("STRICT_VALIDATION", False)

# =============================================================================
# Merge
# =============================================================================
# Comma-separated order of the layers applied on top of the defaults
MERGE_LAYER_ORDER = tuple(
    part.strip() for part in os.getenv("MERGE_LAYER_ORDER", "user,ai,financial").split(",") if part.strip()
)

# =============================================================================
# PDF conversion
# =============================================================================
SOFFICE_BINARY = os.getenv("SOFFICE_BINARY", "")
SOFFICE_TIMEOUT = _env_int("SOFFICE_TIMEOUT", 60)
BROWSER_TIMEOUT_MS = _env_int("BROWSER_TIMEOUT_MS", 30000)

# =============================================================================
# Logging
# =============================================================================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
