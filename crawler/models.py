"""
Row types for the staging and places tables.

Rows come back from Supabase as plain dicts; `from_row` tolerates missing
columns and JSON-encoded list columns so older rows still load.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

CATEGORIES = ("cafe", "viewspot")


def _as_list(val: Any) -> List[str]:
    if val is None:
        return []
    if isinstance(val, list):
        return [str(v) for v in val if v is not None]
    if isinstance(val, str):
        s = val.strip()
        if not s:
            return []
        try:
            parsed = json.loads(s)
        except (json.JSONDecodeError, TypeError):
            return [s]
        if isinstance(parsed, list):
            return [str(v) for v in parsed if v is not None]
        return [s]
    return []


def _as_int(val: Any) -> Optional[int]:
    if val is None or val == "":
        return None
    try:
        return int(float(val))
    except (TypeError, ValueError):
        return None


def _as_float(val: Any) -> Optional[float]:
    if val is None or val == "":
        return None
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


@dataclass
class StagedPhoto:
    staging_id: str
    image_url: Optional[str] = None
    original_width: Optional[int] = None
    original_height: Optional[int] = None
    location_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    caption: str = ""
    hashtags: List[str] = field(default_factory=list)
    engagement_likes: int = 0
    place_name: str = ""
    review_status: str = "pending"
    is_filtered: Optional[bool] = None
    filter_score: Optional[int] = None
    filter_reason: Optional[str] = None
    perceptual_hash: Optional[str] = None
    matched_place_id: Optional[str] = None
    match_confidence: Optional[float] = None

    @property
    def group_key(self) -> str:
        """Scope for duplicate detection."""
        return self.place_name or ""

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "StagedPhoto":
        return cls(
            staging_id=str(row["staging_id"]),
            image_url=row.get("image_url") or None,
            original_width=_as_int(row.get("original_width")),
            original_height=_as_int(row.get("original_height")),
            location_name=row.get("location_name") or None,
            latitude=_as_float(row.get("latitude")),
            longitude=_as_float(row.get("longitude")),
            caption=row.get("caption") or "",
            hashtags=_as_list(row.get("hashtags")),
            engagement_likes=_as_int(row.get("engagement_likes")) or 0,
            place_name=row.get("place_name") or "",
            review_status=row.get("review_status") or "pending",
            is_filtered=row.get("is_filtered"),
            filter_score=_as_int(row.get("filter_score")),
            filter_reason=row.get("filter_reason"),
            perceptual_hash=row.get("perceptual_hash"),
            matched_place_id=(
                str(row["matched_place_id"]) if row.get("matched_place_id") else None
            ),
            match_confidence=_as_float(row.get("match_confidence")),
        )


@dataclass
class CanonicalPlace:
    name_kr: str
    name_en: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    region: Optional[str] = None
    category: str = "cafe"
    city_code: str = "TYO"
    verification_status: str = "pending"
    is_active: bool = True
    place_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CanonicalPlace":
        return cls(
            place_id=str(row["place_id"]) if row.get("place_id") else None,
            name_kr=row.get("name_kr") or row.get("name") or "",
            name_en=row.get("name_en"),
            lat=_as_float(row.get("lat")),
            lng=_as_float(row.get("lng")),
            region=row.get("region"),
            category=row.get("category") or "cafe",
            city_code=row.get("city_code") or "TYO",
            verification_status=row.get("verification_status") or "pending",
            is_active=bool(row.get("is_active", True)),
        )

    def to_insert_row(self) -> Dict[str, Any]:
        """Columns written when the matcher creates a place."""
        return {
            "name":                self.name_en or self.name_kr,
            "name_kr":             self.name_kr,
            "name_en":             self.name_en,
            "lat":                 self.lat,
            "lng":                 self.lng,
            "city_code":           self.city_code,
            "region":              self.region,
            "category":            self.category,
            "is_active":           self.is_active,
            "verification_status": self.verification_status,
        }


@dataclass
class FilterResult:
    passed: bool
    score: int
    reason: Optional[str] = None
    perceptual_hash: Optional[str] = None

    def to_update_row(self) -> Dict[str, Any]:
        return {
            "is_filtered":     not self.passed,
            "filter_reason":   self.reason,
            "filter_score":    self.score,
            "perceptual_hash": self.perceptual_hash,
        }


@dataclass
class MatchResult:
    place: CanonicalPlace
    confidence: float


@dataclass
class SweepStats:
    """Counters reported at the end of a sweep."""
    processed: int = 0
    passed: int = 0
    filtered: int = 0
    matched: int = 0
    unmatched: int = 0
    skipped: int = 0
    places_created: int = 0
    errors: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)
    created_places: Set[str] = field(default_factory=set)

    def count_reason(self, reason: Optional[str]) -> None:
        key = reason or "Unknown"
        self.reasons[key] = self.reasons.get(key, 0) + 1
