#!/usr/bin/env python3
"""
Match staged photos to canonical places.

Scores every registry entry against the photo's location name, caption and
hashtags; the best entry above the confidence threshold wins. Places from
the curated catalog are inserted into `places` (verification_status =
pending) the first time a photo matches them.

Usage:
    python -m crawler.place_matcher
    python -m crawler.place_matcher --dry-run
    python -m crawler.place_matcher --no-catalog --match-threshold 0.6
"""

from __future__ import annotations

import argparse
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from tqdm import tqdm

from crawler.config import (
    DATA_DIR,
    MATCH_CONFIDENCE_THRESHOLD,
    get_supabase_client,
    setup_logging,
)
from crawler.known_places import KNOWN_TOKYO_PLACES
from crawler.models import CanonicalPlace, MatchResult, StagedPhoto, SweepStats
from crawler.store import PhotoStore, SupabaseStore

logger = logging.getLogger(__name__)

LOG_FILE = DATA_DIR / "place_matcher.log"

# Signal weights (sum is capped at 1.0)
PRIMARY_NAME_WEIGHT   = 0.9
SECONDARY_NAME_WEIGHT = 0.8
REGION_WEIGHT         = 0.3
CATEGORY_WEIGHT       = 0.2

CATEGORY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "cafe":     ("cafe", "카페", "coffee", "커피"),
    "viewspot": ("view", "tower", "타워", "전망"),
}


# ─── Scoring ──────────────────────────────────────────────────────────────────


def build_search_text(photo: StagedPhoto) -> str:
    hashtags = " ".join(photo.hashtags or [])
    return f"{photo.location_name or ''} {photo.caption or ''} {hashtags}".lower()


def calculate_match_score(place: CanonicalPlace, search_text: str) -> float:
    score = 0.0

    if place.name_kr and place.name_kr.lower() in search_text:
        score += PRIMARY_NAME_WEIGHT

    if place.name_en and place.name_en.lower() in search_text:
        score += SECONDARY_NAME_WEIGHT

    if place.region and place.region.lower() in search_text:
        score += REGION_WEIGHT

    keywords = CATEGORY_KEYWORDS.get(place.category, ())
    if any(kw in search_text for kw in keywords):
        score += CATEGORY_WEIGHT

    return min(score, 1.0)


def match(
    photo: StagedPhoto,
    registry: Iterable[CanonicalPlace],
    threshold: float = MATCH_CONFIDENCE_THRESHOLD,
) -> Optional[MatchResult]:
    """Best place strictly above `threshold`; the first one wins a tie."""
    search_text = build_search_text(photo)

    best: Optional[MatchResult] = None
    for place in registry:
        score = calculate_match_score(place, search_text)
        if score > threshold and (best is None or score > best.confidence):
            best = MatchResult(place=place, confidence=score)
    return best


# ─── Registry ─────────────────────────────────────────────────────────────────


def build_registry(
    store: PhotoStore,
    catalog: Iterable[CanonicalPlace] = (),
) -> List[CanonicalPlace]:
    """Persisted places in insertion order, then catalog places not yet persisted."""
    registry = list(store.list_registry())
    known = {p.name_kr for p in registry}
    for place in catalog:
        if place.name_kr not in known:
            registry.append(place)
            known.add(place.name_kr)
    return registry


def resolve_place(
    store: PhotoStore,
    place: CanonicalPlace,
    dry_run: bool = False,
) -> Tuple[CanonicalPlace, bool]:
    """Return the persisted place for `place`, inserting it if needed. Second item: created."""
    existing = store.find_place_by_name(place.name_kr)
    if existing is not None:
        return existing, False

    if dry_run:
        return place, True

    candidate = CanonicalPlace(
        name_kr=place.name_kr,
        name_en=place.name_en,
        lat=place.lat,
        lng=place.lng,
        region=place.region,
        category=place.category,
        city_code=place.city_code,
        verification_status="pending",
        is_active=True,
    )
    created = store.create_place(candidate)
    logger.info(f"  Created new place: {created.name_kr} ({created.place_id})")
    return created, True


# ─── Sweep ────────────────────────────────────────────────────────────────────


def match_photo(
    store: PhotoStore,
    photo: StagedPhoto,
    registry: List[CanonicalPlace],
    threshold: float = MATCH_CONFIDENCE_THRESHOLD,
    dry_run: bool = False,
    stats: Optional[SweepStats] = None,
) -> Optional[MatchResult]:
    """
    Match one photo and record the result.

    Photos that already have a matched place are left alone. Returns the
    resolved match, or None when nothing was written.
    """
    stats = stats if stats is not None else SweepStats()

    if photo.matched_place_id:
        stats.skipped += 1
        return None

    result = match(photo, registry, threshold)
    if result is None:
        stats.unmatched += 1
        label = photo.location_name or (photo.caption or "")[:50]
        logger.info(f"  No match: \"{label}\"")
        return None

    place, created = resolve_place(store, result.place, dry_run=dry_run)

    if not dry_run:
        if not store.update_match_result(photo.staging_id, place.place_id, result.confidence):
            logger.warning(f"  Photo {photo.staging_id} already matched, left unchanged")
            stats.skipped += 1
            return None

    stats.matched += 1
    # A dry run resolves the same new place once per photo
    if created and place.name_kr not in stats.created_places:
        stats.created_places.add(place.name_kr)
        stats.places_created += 1
    logger.info(
        f"  Matched: \"{photo.location_name or 'Unknown'}\" -> {place.name_kr} "
        f"(confidence: {result.confidence:.2f})"
    )
    return MatchResult(place=place, confidence=result.confidence)


def match_staging_photos(
    store: PhotoStore,
    catalog: Iterable[CanonicalPlace] = KNOWN_TOKYO_PLACES,
    threshold: float = MATCH_CONFIDENCE_THRESHOLD,
    dry_run: bool = False,
    limit: Optional[int] = None,
) -> SweepStats:
    stats = SweepStats()

    photos = store.list_pending(unmatched_only=True)
    if limit:
        photos = photos[:limit]

    if not photos:
        logger.info("No staging photos to match")
        return stats

    registry = build_registry(store, catalog)
    logger.info(f"Found {len(photos):,} photos to match against {len(registry):,} places")

    for photo in tqdm(photos, desc="Matching photos"):
        try:
            match_photo(store, photo, registry, threshold, dry_run=dry_run, stats=stats)
        except Exception as e:
            logger.error(f"  Photo {photo.staging_id}: match update failed: {e}")
            stats.errors += 1
            continue
        stats.processed += 1

    return stats


def log_summary(stats: SweepStats, dry_run: bool = False) -> None:
    logger.info(
        f"\n{'=' * 60}\n"
        f"Place matching complete{' (DRY RUN)' if dry_run else ''}\n"
        f"{'=' * 60}\n"
        f"  Matched        : {stats.matched:,}\n"
        f"  Unmatched      : {stats.unmatched:,}\n"
        f"  Skipped        : {stats.skipped:,}\n"
        f"  Places created : {stats.places_created:,}\n"
        f"  Errors         : {stats.errors:,}\n"
        f"  Total          : {stats.processed + stats.errors:,}\n"
        f"{'=' * 60}"
    )


# ─── CLI ─────────────────────────────────────────────────────────────────────


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Match staged photos to canonical places",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--match-threshold", type=float, default=MATCH_CONFIDENCE_THRESHOLD,
        help="Confidence a place must exceed to be matched"
    )
    parser.add_argument(
        "--no-catalog", action="store_true",
        help="Match against places already in the DB only"
    )
    parser.add_argument(
        "--limit", type=int, default=None,
        help="Stop after this many photos"
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Score photos but skip place inserts and DB updates"
    )
    args = parser.parse_args()

    setup_logging(LOG_FILE)
    if args.dry_run:
        logger.info("*** DRY RUN MODE — no database writes ***")

    logger.info("Connecting to Supabase...")
    store = SupabaseStore(get_supabase_client())

    stats = match_staging_photos(
        store,
        catalog=() if args.no_catalog else KNOWN_TOKYO_PLACES,
        threshold=args.match_threshold,
        dry_run=args.dry_run,
        limit=args.limit,
    )
    log_summary(stats, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
