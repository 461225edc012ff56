"""
Shared settings for the photo curation sweeps.

Environment is read from .env / .env.local at the repository root:
    SUPABASE_URL (or NEXT_PUBLIC_SUPABASE_URL)
    SUPABASE_SERVICE_ROLE_KEY
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

_root = Path(__file__).resolve().parent.parent
load_dotenv(_root / ".env")
load_dotenv(_root / ".env.local")

# ─── Paths ────────────────────────────────────────────────────────────────────

DATA_DIR = Path(__file__).parent / "data"

# ─── Tables ───────────────────────────────────────────────────────────────────

STAGING_TABLE = "photos_staging"
PLACES_TABLE  = "places"

# ─── Quality filter ───────────────────────────────────────────────────────────

MIN_DIMENSION                  = 500
MIN_ASPECT_RATIO               = 0.3
MAX_ASPECT_RATIO               = 3.0
HASH_SIZE                      = 16
HASH_BRIGHTNESS_THRESHOLD      = 128
DUPLICATE_SIMILARITY_THRESHOLD = 0.9
HASH_FAILURE_PENALTY           = 10
LOW_RES_MEGAPIXELS             = 0.5
LOW_RES_PENALTY                = 20
HIGH_RES_MEGAPIXELS            = 2.0
HIGH_RES_BONUS                 = 10

# ─── Place matcher ────────────────────────────────────────────────────────────

MATCH_CONFIDENCE_THRESHOLD = 0.5
DEFAULT_CITY_CODE          = "TYO"

# ─── Network / paging ─────────────────────────────────────────────────────────

IMAGE_TIMEOUT   = 10
IMAGE_MAX_BYTES = 10 * 1024 * 1024
REQUEST_DELAY   = 0.1
DB_PAGE_SIZE    = 1000
USER_AGENT      = "Mozilla/5.0 (compatible; PhotoCurationBot/1.0)"


# ─── Logging ─────────────────────────────────────────────────────────────────


def setup_logging(log_file: Path, name: str = "crawler") -> logging.Logger:
    """File handler at DEBUG, console at INFO. Safe to call twice."""
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    if logger.handlers:
        return logger

    log_file.parent.mkdir(parents=True, exist_ok=True)
    fmt = logging.Formatter(
        "%(asctime)s %(levelname)-8s %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(fmt)
    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.INFO)
    ch.setFormatter(fmt)
    logger.addHandler(fh)
    logger.addHandler(ch)
    return logger


# ─── Supabase ────────────────────────────────────────────────────────────────


def get_supabase_client():
    """Create Supabase client using service role key."""
    from supabase import create_client
    url = os.environ.get("SUPABASE_URL", "") or os.environ.get("NEXT_PUBLIC_SUPABASE_URL", "")
    key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
    if not url or not key:
        logging.getLogger("crawler").error(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
        )
        sys.exit(1)
    return create_client(url, key)
