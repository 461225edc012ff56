#!/usr/bin/env python3
"""
Report on filter and match results in photos_staging.

Usage:
    python -m crawler.filter_report
    python -m crawler.filter_report --group "Tokyo Tower"
    python -m crawler.filter_report --check-columns
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

import pandas as pd

from crawler.config import DATA_DIR, DB_PAGE_SIZE, STAGING_TABLE, get_supabase_client, setup_logging

logger = logging.getLogger(__name__)

LOG_FILE = DATA_DIR / "filter_report.log"

REPORT_COLS = [
    "staging_id", "place_name", "review_status",
    "is_filtered", "filter_score", "filter_reason", "perceptual_hash",
    "matched_place_id", "match_confidence",
]
FILTER_COLS = ["filter_score", "filter_reason", "is_filtered", "perceptual_hash"]


def fetch_staging_rows(supabase, group: Optional[str] = None) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    offset = 0
    while True:
        query = supabase.table(STAGING_TABLE).select(",".join(REPORT_COLS))
        if group:
            query = query.eq("place_name", group)
        resp = query.order("staging_id").range(offset, offset + DB_PAGE_SIZE - 1).execute()
        page = resp.data or []
        if not page:
            break
        rows.extend(page)
        if len(page) < DB_PAGE_SIZE:
            break
        offset += DB_PAGE_SIZE
    return rows


def check_filter_columns(supabase) -> bool:
    """False when the staging table is missing the filter columns."""
    try:
        supabase.table(STAGING_TABLE).select(",".join(FILTER_COLS)).limit(1).execute()
    except Exception as e:
        if "column" in str(e) and "does not exist" in str(e):
            logger.error("Filter columns missing from photos_staging; apply the filter-columns migration first")
            return False
        raise
    logger.info("Filter columns present")
    return True


def summarize(rows: List[Dict[str, Any]], top_n: int = 5) -> Dict[str, Any]:
    df = pd.DataFrame(rows, columns=REPORT_COLS)

    filtered_mask = df["is_filtered"].eq(True)
    passed_mask = df["is_filtered"].eq(False)
    pending_mask = df["is_filtered"].isna()

    reasons = (
        df.loc[filtered_mask, "filter_reason"]
        .fillna("Unknown")
        .value_counts()
        .head(top_n)
    )

    passed_scores = pd.to_numeric(df.loc[passed_mask, "filter_score"], errors="coerce").dropna()
    confidences = pd.to_numeric(df["match_confidence"], errors="coerce").dropna()

    return {
        "total":            int(len(df)),
        "passed":           int(passed_mask.sum()),
        "filtered":         int(filtered_mask.sum()),
        "pending":          int(pending_mask.sum()),
        "top_reasons":      [(str(r), int(c)) for r, c in reasons.items()],
        "avg_score":        float(passed_scores.mean()) if len(passed_scores) else None,
        "matched":          int(df["matched_place_id"].notna().sum()),
        "avg_confidence":   float(confidences.mean()) if len(confidences) else None,
    }


def log_report(report: Dict[str, Any]) -> None:
    logger.info("=" * 60)
    logger.info("FILTER RESULTS")
    logger.info("=" * 60)
    logger.info(f"Total photos : {report['total']:,}")
    logger.info(f"Passed       : {report['passed']:,}")
    logger.info(f"Filtered     : {report['filtered']:,}")
    logger.info(f"Not filtered : {report['pending']:,}")
    logger.info(f"Matched      : {report['matched']:,}")

    if report["top_reasons"]:
        logger.info("Top filter reasons:")
        for reason, count in report["top_reasons"]:
            logger.info(f"  {count:>5,}  {reason}")

    if report["avg_score"] is not None:
        logger.info(f"Average quality score: {report['avg_score']:.1f}/100")
    if report["avg_confidence"] is not None:
        logger.info(f"Average match confidence: {report['avg_confidence']:.2f}")
    logger.info("=" * 60)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Summarize filter and match results for staged photos"
    )
    parser.add_argument(
        "--group", default=None,
        help="Only report on photos for this place name"
    )
    parser.add_argument(
        "--check-columns", action="store_true",
        help="Only verify that the filter columns exist"
    )
    args = parser.parse_args()

    setup_logging(LOG_FILE)
    supabase = get_supabase_client()

    if args.check_columns:
        sys.exit(0 if check_filter_columns(supabase) else 1)

    rows = fetch_staging_rows(supabase, group=args.group)
    log_report(summarize(rows))


if __name__ == "__main__":
    main()
