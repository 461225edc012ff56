#!/usr/bin/env python3
"""
Quality filter for scraped photos in photos_staging.

Each pending photo goes through:
  1. Resolution gate (both sides >= 500px)
  2. Aspect-ratio gate (0.3 to 3.0)
  3. Perceptual hash (16x16 brightness blockhash, 256 bits)
  4. Near-duplicate check against accepted photos of the same place
  5. Quality score 0-100 (hash failure and low megapixels cost points)

Usage:
    python -m crawler.image_filter
    python -m crawler.image_filter --group "Tokyo Tower"
    python -m crawler.image_filter --dry-run --limit 20
    python -m crawler.image_filter --rescan
"""

from __future__ import annotations

import argparse
import io
import logging
import time
from typing import Dict, Iterable, List, Optional

import httpx
import numpy as np
from PIL import Image
from tqdm import tqdm

from crawler.config import (
    DATA_DIR,
    DUPLICATE_SIMILARITY_THRESHOLD,
    HASH_BRIGHTNESS_THRESHOLD,
    HASH_FAILURE_PENALTY,
    HASH_SIZE,
    HIGH_RES_BONUS,
    HIGH_RES_MEGAPIXELS,
    IMAGE_MAX_BYTES,
    IMAGE_TIMEOUT,
    LOW_RES_MEGAPIXELS,
    LOW_RES_PENALTY,
    MAX_ASPECT_RATIO,
    MIN_ASPECT_RATIO,
    MIN_DIMENSION,
    REQUEST_DELAY,
    USER_AGENT,
    get_supabase_client,
    setup_logging,
)
from crawler.models import FilterResult, StagedPhoto, SweepStats
from crawler.store import PhotoStore, SupabaseStore

logger = logging.getLogger(__name__)

LOG_FILE = DATA_DIR / "image_filter.log"

MISSING_DATA_REASON = "Missing image data"
DUPLICATE_REASON    = "Duplicate image detected"
HASH_FAILED_NOTE    = "Could not calculate perceptual hash"
LOW_RES_NOTE        = "Low resolution"


class ImageFetchError(Exception):
    """Image could not be downloaded within the size/time limits."""


# ─── Image download ───────────────────────────────────────────────────────────


def fetch_image(
    client: httpx.Client,
    url: str,
    max_bytes: int = IMAGE_MAX_BYTES,
    timeout: float = IMAGE_TIMEOUT,
) -> bytes:
    deadline = time.monotonic() + timeout
    try:
        with client.stream("GET", url, timeout=timeout, follow_redirects=True) as resp:
            if resp.status_code != 200:
                raise ImageFetchError(f"HTTP {resp.status_code} for {url}")

            declared = resp.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > max_bytes:
                raise ImageFetchError(f"Image too large ({int(declared) // 1024}KB): {url}")

            buf = bytearray()
            for chunk in resp.iter_bytes():
                buf.extend(chunk)
                if len(buf) > max_bytes:
                    raise ImageFetchError(f"Image exceeds {max_bytes // 1024}KB: {url}")
                if time.monotonic() > deadline:
                    raise ImageFetchError(f"Download exceeded {timeout}s: {url}")
            return bytes(buf)
    except httpx.HTTPError as e:
        raise ImageFetchError(f"{type(e).__name__} for {url}: {e}") from e


# ─── Perceptual hash ──────────────────────────────────────────────────────────


def compute_perceptual_hash(
    data: bytes,
    size: int = HASH_SIZE,
    threshold: int = HASH_BRIGHTNESS_THRESHOLD,
) -> str:
    """
    Blockhash-style bit string: the image is squashed to size x size, each
    cell's RGB mean is compared against a fixed threshold.

    The threshold is not adaptive, so very dark or very bright images
    collapse towards all-0 / all-1 hashes.
    """
    with Image.open(io.BytesIO(data)) as img:
        small = img.convert("RGB").resize((size, size), Image.Resampling.LANCZOS)
    brightness = np.asarray(small, dtype=np.float64).mean(axis=2)
    bits = (brightness > threshold).flatten()
    return "".join("1" if b else "0" for b in bits)


def hamming_distance(a: str, b: str) -> int:
    """Differing positions; strings of unequal length count as fully different."""
    if len(a) != len(b):
        return max(len(a), len(b))
    return sum(1 for x, y in zip(a, b) if x != y)


def hash_similarity(a: str, b: str) -> float:
    if not a:
        return 0.0
    return 1 - hamming_distance(a, b) / len(a)


def is_duplicate(
    phash: str,
    existing_hashes: Iterable[str],
    threshold: float = DUPLICATE_SIMILARITY_THRESHOLD,
) -> bool:
    for existing in existing_hashes:
        if not existing:
            continue
        if hash_similarity(phash, existing) > threshold:
            return True
    return False


def hash_image_url(client: httpx.Client, url: str) -> Optional[str]:
    """Download and hash; failures are logged and return None."""
    try:
        data = fetch_image(client, url)
        return compute_perceptual_hash(data)
    except ImageFetchError as e:
        logger.warning(f"  Hash skipped: {e}")
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.warning(f"  Hash skipped, undecodable image {url}: {e}")
    return None


# ─── Filter ───────────────────────────────────────────────────────────────────


def check_gates(photo: StagedPhoto) -> Optional[FilterResult]:
    """Deterministic rejections that need no download. None means the photo may proceed."""
    width, height = photo.original_width, photo.original_height
    if not photo.image_url or not width or not height:
        return FilterResult(passed=False, score=0, reason=MISSING_DATA_REASON)

    if width < MIN_DIMENSION or height < MIN_DIMENSION:
        return FilterResult(
            passed=False,
            score=0,
            reason=f"Resolution too low: {width}x{height} (minimum {MIN_DIMENSION}px)",
        )

    ratio = width / height
    if ratio < MIN_ASPECT_RATIO or ratio > MAX_ASPECT_RATIO:
        return FilterResult(
            passed=False,
            score=0,
            reason=(
                f"Aspect ratio out of range: {ratio:.2f} "
                f"(acceptable: {MIN_ASPECT_RATIO}-{MAX_ASPECT_RATIO})"
            ),
        )
    return None


def score_photo(width: int, height: int, hash_failed: bool) -> tuple[int, List[str]]:
    score = 100
    notes: List[str] = []

    if hash_failed:
        score -= HASH_FAILURE_PENALTY
        notes.append(HASH_FAILED_NOTE)

    megapixels = (width * height) / 1_000_000
    if megapixels < LOW_RES_MEGAPIXELS:
        score -= LOW_RES_PENALTY
        notes.append(LOW_RES_NOTE)
    elif megapixels > HIGH_RES_MEGAPIXELS:
        score += HIGH_RES_BONUS

    return max(0, min(100, score)), notes


def evaluate(
    photo: StagedPhoto,
    existing_hashes: Iterable[str],
    http_client: httpx.Client,
    duplicate_threshold: float = DUPLICATE_SIMILARITY_THRESHOLD,
) -> FilterResult:
    """
    Decide whether a staged photo is admissible.

    `existing_hashes` are the accepted hashes for the photo's group. A
    duplicate is rejected but still carries its hash so it can be audited.
    """
    gate = check_gates(photo)
    if gate is not None:
        return gate

    phash = hash_image_url(http_client, photo.image_url)
    if phash and is_duplicate(phash, existing_hashes, duplicate_threshold):
        return FilterResult(passed=False, score=0, reason=DUPLICATE_REASON, perceptual_hash=phash)

    score, notes = score_photo(photo.original_width, photo.original_height, phash is None)
    return FilterResult(
        passed=True,
        score=score,
        reason=", ".join(notes) if notes else None,
        perceptual_hash=phash,
    )


# ─── Sweep ────────────────────────────────────────────────────────────────────


def filter_staging_photos(
    store: PhotoStore,
    http_client: httpx.Client,
    group_key: Optional[str] = None,
    rescan: bool = False,
    dry_run: bool = False,
    limit: Optional[int] = None,
    sleep: float = REQUEST_DELAY,
    duplicate_threshold: float = DUPLICATE_SIMILARITY_THRESHOLD,
) -> SweepStats:
    """
    Filter pending photos one at a time.

    Photos accepted earlier in the sweep are visible to the duplicate check
    of later photos in the same group; a photo is never compared with its own
    earlier hash. On rescan, photos of the batch are re-decided in sweep
    order. A failed write is logged and counted, the stored decision stands,
    and the sweep moves on to the next photo.
    """
    stats = SweepStats()

    photos = store.list_pending(group_key=group_key, unfiltered_only=not rescan)
    if limit:
        photos = photos[:limit]
    logger.info(f"Filtering {len(photos):,} photos...")

    # Photos in this batch are re-decided in sweep order, so their stored
    # hashes only seed the check through their new decision.
    batch_ids = {p.staging_id for p in photos}
    accepted: Dict[str, Dict[str, str]] = {}
    stored: Dict[str, str] = {}

    with tqdm(total=len(photos), desc="Filtering photos") as pbar:
        for photo in photos:
            pbar.update(1)
            key = photo.group_key
            try:
                if key not in accepted:
                    group_hashes = {}
                    for sid, h in store.list_accepted_hashes(key).items():
                        if sid in batch_ids:
                            stored[sid] = h
                        else:
                            group_hashes[sid] = h
                    accepted[key] = group_hashes
                group_hashes = accepted[key]

                fetches = check_gates(photo) is None
                result = evaluate(photo, list(group_hashes.values()), http_client, duplicate_threshold)

                if not dry_run:
                    store.update_filter_result(photo.staging_id, result)
            except Exception as e:
                logger.error(f"  Photo {photo.staging_id}: filter update failed: {e}")
                stats.errors += 1
                # The stored decision stands
                if key in accepted and photo.staging_id in stored:
                    accepted[key][photo.staging_id] = stored[photo.staging_id]
                continue

            stats.processed += 1
            if result.passed and result.perceptual_hash:
                group_hashes[photo.staging_id] = result.perceptual_hash

            if result.passed:
                stats.passed += 1
                logger.debug(f"  Passed {photo.staging_id} (score {result.score})")
            else:
                stats.filtered += 1
                stats.count_reason(result.reason)
                logger.info(f"  Filtered {photo.staging_id}: {result.reason}")

            if fetches and sleep > 0:
                time.sleep(sleep)

    return stats


def log_summary(stats: SweepStats, dry_run: bool = False) -> None:
    logger.info(
        f"\n{'=' * 60}\n"
        f"Filtering complete{' (DRY RUN)' if dry_run else ''}\n"
        f"{'=' * 60}\n"
        f"  Processed : {stats.processed:,}\n"
        f"  Passed    : {stats.passed:,}\n"
        f"  Filtered  : {stats.filtered:,}\n"
        f"  Errors    : {stats.errors:,}\n"
        f"{'=' * 60}"
    )
    for reason, count in sorted(stats.reasons.items(), key=lambda kv: -kv[1])[:5]:
        logger.info(f"  {count:>5,}  {reason}")


# ─── CLI ─────────────────────────────────────────────────────────────────────


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Filter staged photos by resolution, aspect ratio and duplicates",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--group", default=None,
        help="Only filter photos for this place name"
    )
    parser.add_argument(
        "--rescan", action="store_true",
        help="Re-evaluate pending photos that already have a filter result"
    )
    parser.add_argument(
        "--limit", type=int, default=None,
        help="Stop after this many photos"
    )
    parser.add_argument(
        "--sleep", type=float, default=REQUEST_DELAY,
        help="Seconds to wait after each image download"
    )
    parser.add_argument(
        "--duplicate-threshold", type=float, default=DUPLICATE_SIMILARITY_THRESHOLD,
        help="Hash similarity above which a photo counts as a duplicate"
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Evaluate photos but skip DB updates"
    )
    args = parser.parse_args()

    setup_logging(LOG_FILE)
    if args.dry_run:
        logger.info("*** DRY RUN MODE — no database writes ***")

    logger.info("Connecting to Supabase...")
    store = SupabaseStore(get_supabase_client())

    with httpx.Client(
        timeout=httpx.Timeout(IMAGE_TIMEOUT, connect=10),
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
    ) as http_client:
        stats = filter_staging_photos(
            store,
            http_client,
            group_key=args.group,
            rescan=args.rescan,
            dry_run=args.dry_run,
            limit=args.limit,
            sleep=args.sleep,
            duplicate_threshold=args.duplicate_threshold,
        )

    log_summary(stats, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
