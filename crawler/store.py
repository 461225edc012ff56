"""
Data access for the staging and places tables.

The sweeps only talk to a `PhotoStore`; `SupabaseStore` is the production
implementation. Reads are paged with `range()` because PostgREST caps
responses at 1000 rows.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from crawler.config import DB_PAGE_SIZE, PLACES_TABLE, STAGING_TABLE
from crawler.models import CanonicalPlace, FilterResult, StagedPhoto

logger = logging.getLogger(__name__)


class PhotoStore(Protocol):
    def list_pending(
        self,
        group_key: Optional[str] = None,
        unfiltered_only: bool = False,
        unmatched_only: bool = False,
    ) -> List[StagedPhoto]: ...

    def list_accepted_hashes(self, group_key: str) -> Dict[str, str]: ...

    def update_filter_result(self, staging_id: str, result: FilterResult) -> None: ...

    def list_registry(self) -> List[CanonicalPlace]: ...

    def find_place_by_name(self, name_kr: str) -> Optional[CanonicalPlace]: ...

    def create_place(self, place: CanonicalPlace) -> CanonicalPlace: ...

    def update_match_result(self, staging_id: str, place_id: str, confidence: float) -> bool: ...


class SupabaseStore:
    """`PhotoStore` backed by a supabase-py client."""

    def __init__(self, client: Any, page_size: int = DB_PAGE_SIZE):
        self.client = client
        self.page_size = page_size

    def _fetch_all(self, build_query) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            resp = build_query().range(offset, offset + self.page_size - 1).execute()
            page = resp.data or []
            if not page:
                break
            rows.extend(page)
            if len(page) < self.page_size:
                break
            offset += self.page_size
        return rows

    @staticmethod
    def _eq_group(query, group_key: str):
        # Rows scraped without a place name share the empty group
        if group_key:
            return query.eq("place_name", group_key)
        return query.or_("place_name.is.null,place_name.eq.")

    # ── Staging ──────────────────────────────────────────────────────────────

    def list_pending(
        self,
        group_key: Optional[str] = None,
        unfiltered_only: bool = False,
        unmatched_only: bool = False,
    ) -> List[StagedPhoto]:
        def build():
            query = (
                self.client.table(STAGING_TABLE)
                .select("*")
                .eq("review_status", "pending")
            )
            if group_key is not None:
                query = self._eq_group(query, group_key)
            if unfiltered_only:
                query = query.is_("is_filtered", "null")
            if unmatched_only:
                query = query.is_("matched_place_id", "null")
            return query.order("created_at").order("staging_id")

        return [StagedPhoto.from_row(r) for r in self._fetch_all(build)]

    def list_accepted_hashes(self, group_key: str) -> Dict[str, str]:
        """staging_id -> hash for passed photos of the group."""
        def build():
            query = (
                self.client.table(STAGING_TABLE)
                .select("staging_id,perceptual_hash")
                .eq("is_filtered", False)
                .not_.is_("perceptual_hash", "null")
            )
            return self._eq_group(query, group_key).order("staging_id")

        return {
            str(r["staging_id"]): r["perceptual_hash"]
            for r in self._fetch_all(build)
            if r.get("perceptual_hash")
        }

    def update_filter_result(self, staging_id: str, result: FilterResult) -> None:
        (
            self.client.table(STAGING_TABLE)
            .update(result.to_update_row())
            .eq("staging_id", staging_id)
            .execute()
        )

    def update_match_result(self, staging_id: str, place_id: str, confidence: float) -> bool:
        """Write the match unless the photo was matched in the meantime."""
        resp = (
            self.client.table(STAGING_TABLE)
            .update({"matched_place_id": place_id, "match_confidence": confidence})
            .eq("staging_id", staging_id)
            .is_("matched_place_id", "null")
            .execute()
        )
        return bool(resp.data)

    # ── Places ───────────────────────────────────────────────────────────────

    def list_registry(self) -> List[CanonicalPlace]:
        def build():
            return (
                self.client.table(PLACES_TABLE)
                .select("*")
                .order("created_at")
                .order("place_id")
            )

        return [CanonicalPlace.from_row(r) for r in self._fetch_all(build)]

    def find_place_by_name(self, name_kr: str) -> Optional[CanonicalPlace]:
        resp = (
            self.client.table(PLACES_TABLE)
            .select("*")
            .eq("name_kr", name_kr)
            .limit(1)
            .execute()
        )
        rows = resp.data or []
        return CanonicalPlace.from_row(rows[0]) if rows else None

    def create_place(self, place: CanonicalPlace) -> CanonicalPlace:
        resp = self.client.table(PLACES_TABLE).insert(place.to_insert_row()).execute()
        rows = resp.data or []
        if not rows:
            raise RuntimeError(f"Insert into {PLACES_TABLE} returned no row for {place.name_kr!r}")
        logger.debug(f"Inserted place {rows[0].get('place_id')} ({place.name_kr})")
        return CanonicalPlace.from_row(rows[0])
