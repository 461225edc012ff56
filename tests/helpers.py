"""Test doubles: an in-memory PhotoStore, generated images, a mocked image host."""

import io
from dataclasses import replace
from typing import Dict, List, Optional, Set

import httpx
from PIL import Image

from crawler.models import CanonicalPlace, FilterResult, StagedPhoto


class InMemoryStore:
    """PhotoStore over plain lists; insertion order is registry order."""

    def __init__(self, photos=None, places=None):
        self.photos: List[StagedPhoto] = list(photos or [])
        self.places: List[CanonicalPlace] = list(places or [])
        self.fail_writes_for: Set[str] = set()
        self.filter_writes: List[str] = []
        self._next_place = 1

    def get(self, staging_id: str) -> StagedPhoto:
        return next(p for p in self.photos if p.staging_id == staging_id)

    def list_pending(self, group_key=None, unfiltered_only=False, unmatched_only=False):
        out = []
        for p in self.photos:
            if p.review_status != "pending":
                continue
            if group_key is not None and p.group_key != group_key:
                continue
            if unfiltered_only and p.is_filtered is not None:
                continue
            if unmatched_only and p.matched_place_id is not None:
                continue
            out.append(replace(p, hashtags=list(p.hashtags)))
        return out

    def list_accepted_hashes(self, group_key):
        return {
            p.staging_id: p.perceptual_hash for p in self.photos
            if p.group_key == group_key and p.is_filtered is False and p.perceptual_hash
        }

    def update_filter_result(self, staging_id, result: FilterResult):
        if staging_id in self.fail_writes_for:
            raise RuntimeError("connection reset")
        photo = self.get(staging_id)
        photo.is_filtered = not result.passed
        photo.filter_score = result.score
        photo.filter_reason = result.reason
        photo.perceptual_hash = result.perceptual_hash
        self.filter_writes.append(staging_id)

    def list_registry(self):
        return [replace(p) for p in self.places]

    def find_place_by_name(self, name_kr) -> Optional[CanonicalPlace]:
        for p in self.places:
            if p.name_kr == name_kr:
                return replace(p)
        return None

    def create_place(self, place: CanonicalPlace) -> CanonicalPlace:
        if self.find_place_by_name(place.name_kr) is not None:
            raise RuntimeError(f"duplicate name_kr {place.name_kr}")
        created = replace(place, place_id=f"place-{self._next_place}")
        self._next_place += 1
        self.places.append(created)
        return replace(created)

    def update_match_result(self, staging_id, place_id, confidence):
        if staging_id in self.fail_writes_for:
            raise RuntimeError("connection reset")
        photo = self.get(staging_id)
        if photo.matched_place_id is not None:
            return False
        photo.matched_place_id = place_id
        photo.match_confidence = confidence
        return True


def make_image_bytes(width=64, height=64, color=(255, 255, 255), split_color=None, fmt="PNG"):
    """Solid image, or left half `color` / right half `split_color`."""
    img = Image.new("RGB", (width, height), color)
    if split_color is not None:
        img.paste(Image.new("RGB", (width - width // 2, height), split_color), (width // 2, 0))
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def flip_bits(bits: str, count: int) -> str:
    chars = list(bits)
    for i in range(count):
        chars[i] = "0" if chars[i] == "1" else "1"
    return "".join(chars)


class ImageHost:
    """Serves registered URLs through httpx.MockTransport and records requests."""

    def __init__(self):
        self.images: Dict[str, bytes] = {}
        self.requests: List[str] = []

    def add(self, url: str, data: bytes) -> str:
        self.images[url] = data
        return url

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.images:
            return httpx.Response(200, content=self.images[url], headers={"content-type": "image/png"})
        return httpx.Response(404)


def staged(staging_id, **kwargs) -> StagedPhoto:
    defaults = dict(
        image_url=f"https://img.example.com/{staging_id}.png",
        original_width=1200,
        original_height=800,
        place_name="Tokyo Tower",
    )
    defaults.update(kwargs)
    return StagedPhoto(staging_id=staging_id, **defaults)
