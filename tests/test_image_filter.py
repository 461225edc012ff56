# tests/test_image_filter.py
"""Quality filter: gates, perceptual hash, duplicates and scoring"""

import io
import time

import httpx
import pytest
from hypothesis import assume, given, strategies as st
from PIL import Image

from crawler.image_filter import (
    DUPLICATE_REASON,
    ImageFetchError,
    compute_perceptual_hash,
    evaluate,
    fetch_image,
    hamming_distance,
    hash_similarity,
    is_duplicate,
)
from tests.helpers import flip_bits, make_image_bytes, staged

WHITE = (255, 255, 255)
BLACK = (0, 0, 0)


def _unreachable_client():
    def handler(request):
        raise AssertionError(f"unexpected fetch of {request.url}")
    return httpx.Client(transport=httpx.MockTransport(handler))


def _missing_image_client():
    return httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(404)))


# ─── Hamming distance ─────────────────────────────────────────────────────────


bitstrings = st.text(alphabet="01", min_size=0, max_size=300)


@given(bitstrings, bitstrings)
def test_hamming_distance_symmetric(a, b):
    assert hamming_distance(a, b) == hamming_distance(b, a)


@given(st.text(alphabet="01", min_size=1, max_size=64), st.text(alphabet="01", min_size=1, max_size=64))
def test_hamming_distance_unequal_lengths_is_longer_length(a, b):
    assume(len(a) != len(b))
    assert hamming_distance(a, b) == max(len(a), len(b))


def test_hamming_distance_counts_differing_positions():
    assert hamming_distance("0000", "0000") == 0
    assert hamming_distance("1010", "0101") == 4
    assert hamming_distance("1100", "1000") == 1


def test_hash_similarity():
    a = "1" * 256
    assert hash_similarity(a, a) == 1.0
    assert hash_similarity(a, flip_bits(a, 64)) == 0.75
    assert hash_similarity(a, "1" * 128) <= 0


def test_is_duplicate_uses_strict_threshold():
    a = "1" * 100
    assert is_duplicate(a, [flip_bits(a, 9)])        # 0.91
    assert not is_duplicate(a, [flip_bits(a, 10)])   # exactly 0.90
    assert not is_duplicate(a, [])


# ─── Perceptual hash ──────────────────────────────────────────────────────────


def test_hash_of_white_image_is_all_ones():
    phash = compute_perceptual_hash(make_image_bytes(color=WHITE))
    assert phash == "1" * 256


def test_hash_threshold_is_fixed_not_adaptive():
    # Mid-grey sits exactly on the threshold and is not "brighter than" it
    assert compute_perceptual_hash(make_image_bytes(color=(128, 128, 128))) == "0" * 256
    assert compute_perceptual_hash(make_image_bytes(color=(40, 40, 40))) == "0" * 256


def test_hash_tracks_coarse_structure():
    phash = compute_perceptual_hash(make_image_bytes(160, 160, WHITE, split_color=BLACK))
    assert len(phash) == 256
    for row in range(16):
        cells = phash[row * 16:(row + 1) * 16]
        assert cells[0] == "1"
        assert cells[-1] == "0"


def test_hash_handles_alpha_and_jpeg():
    buf = io.BytesIO()
    Image.new("RGBA", (64, 64), (255, 255, 255, 0)).save(buf, format="PNG")
    jpeg = make_image_bytes(width=640, height=480, color=WHITE, fmt="JPEG")
    assert compute_perceptual_hash(buf.getvalue()) == "1" * 256
    assert compute_perceptual_hash(jpeg) == "1" * 256


def test_hash_is_deterministic():
    data = make_image_bytes(200, 120, WHITE, split_color=BLACK)
    assert compute_perceptual_hash(data) == compute_perceptual_hash(data)


# ─── Image download ───────────────────────────────────────────────────────────


def test_fetch_image_returns_bytes(image_host, http_client):
    url = image_host.add("https://img.example.com/a.png", b"x" * 100)
    assert fetch_image(http_client, url) == b"x" * 100


def test_fetch_image_rejects_oversized(image_host, http_client):
    url = image_host.add("https://img.example.com/big.png", b"x" * 4096)
    with pytest.raises(ImageFetchError):
        fetch_image(http_client, url, max_bytes=1024)


def test_fetch_image_rejects_oversized_stream_without_length():
    def handler(request):
        # Iterator bodies are sent chunked, with no Content-Length
        return httpx.Response(200, content=iter([b"x" * 512] * 4))

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ImageFetchError, match="exceeds"):
            fetch_image(client, "https://img.example.com/chunked.png", max_bytes=1024)


def test_fetch_image_enforces_total_deadline():
    def slow_body():
        for _ in range(5):
            time.sleep(0.02)
            yield b"x" * 16

    def handler(request):
        return httpx.Response(200, content=slow_body())

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ImageFetchError, match="exceeded"):
            fetch_image(client, "https://img.example.com/slow.png", timeout=0.01)


def test_fetch_image_rejects_http_errors(http_client):
    with pytest.raises(ImageFetchError):
        fetch_image(http_client, "https://img.example.com/missing.png")


def test_fetch_image_wraps_timeouts():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ImageFetchError):
            fetch_image(client, "https://img.example.com/slow.png")


# ─── Gates ────────────────────────────────────────────────────────────────────


def test_low_resolution_rejected_without_fetch(image_host, http_client):
    result = evaluate(staged("p1", original_width=300, original_height=300), [], http_client)
    assert result.passed is False
    assert result.score == 0
    assert "300x300" in result.reason
    assert "minimum 500px" in result.reason
    assert result.perceptual_hash is None
    assert image_host.requests == []


@given(st.integers(min_value=1, max_value=499), st.integers(min_value=1, max_value=5000), st.booleans())
def test_any_side_below_500_is_rejected(small, other, small_is_width):
    width, height = (small, other) if small_is_width else (other, small)
    with _unreachable_client() as client:
        result = evaluate(staged("p", original_width=width, original_height=height), [], client)
    assert result.passed is False
    assert result.score == 0


@pytest.mark.parametrize("width,height,ratio", [(2000, 500, "4.00"), (500, 2000, "0.25")])
def test_extreme_aspect_ratio_rejected(width, height, ratio):
    with _unreachable_client() as client:
        result = evaluate(staged("p", original_width=width, original_height=height), [], client)
    assert result.passed is False
    assert result.score == 0
    assert result.reason == f"Aspect ratio out of range: {ratio} (acceptable: 0.3-3.0)"


@pytest.mark.parametrize("fields", [
    {"image_url": None},
    {"original_width": None},
    {"original_height": 0},
])
def test_missing_image_data_rejected(fields):
    with _unreachable_client() as client:
        result = evaluate(staged("p", **fields), [], client)
    assert result.passed is False
    assert result.score == 0
    assert result.reason == "Missing image data"


@given(st.integers(min_value=500, max_value=4000), st.integers(min_value=500, max_value=4000))
def test_admissible_photos_pass_with_bounded_score(width, height):
    assume(0.3 < width / height < 3.0)
    with _missing_image_client() as client:
        result = evaluate(staged("p", original_width=width, original_height=height), [], client)
    assert result.passed is True
    assert 0 <= result.score <= 100


# ─── Duplicates and scoring ───────────────────────────────────────────────────


def test_clean_photo_scores_100(image_host, http_client):
    photo = staged("p1")
    image_host.add(photo.image_url, make_image_bytes(color=WHITE))

    result = evaluate(photo, [], http_client)

    assert result.passed is True
    assert result.score == 100
    assert result.reason is None
    assert result.perceptual_hash == "1" * 256


def test_near_duplicate_rejected_with_hash(image_host, http_client):
    photo = staged("p1")
    image_host.add(photo.image_url, make_image_bytes(color=WHITE))
    existing = flip_bits("1" * 256, 12)  # similarity ~0.953

    result = evaluate(photo, [existing], http_client)

    assert result.passed is False
    assert result.score == 0
    assert result.reason == DUPLICATE_REASON == "Duplicate image detected"
    assert result.perceptual_hash == "1" * 256


def test_dissimilar_hash_is_not_duplicate(image_host, http_client):
    photo = staged("p1")
    image_host.add(photo.image_url, make_image_bytes(color=WHITE))

    result = evaluate(photo, [flip_bits("1" * 256, 40)], http_client)

    assert result.passed is True


def test_hash_failure_is_penalized_not_rejected(http_client):
    result = evaluate(staged("p1"), ["1" * 256], http_client)
    assert result.passed is True
    assert result.score == 90
    assert result.reason == "Could not calculate perceptual hash"
    assert result.perceptual_hash is None


def test_undecodable_image_is_penalized(image_host, http_client):
    photo = staged("p1")
    image_host.add(photo.image_url, b"<html>not an image</html>")

    result = evaluate(photo, [], http_client)

    assert result.passed is True
    assert result.score == 90
    assert result.perceptual_hash is None


def test_low_megapixels_penalty(image_host, http_client):
    photo = staged("p1", original_width=600, original_height=600)
    image_host.add(photo.image_url, make_image_bytes(color=WHITE))

    result = evaluate(photo, [], http_client)

    assert result.passed is True
    assert result.score == 80
    assert result.reason == "Low resolution"


def test_penalties_stack(http_client):
    result = evaluate(staged("p1", original_width=600, original_height=600), [], http_client)
    assert result.score == 70
    assert result.reason == "Could not calculate perceptual hash, Low resolution"


def test_high_resolution_bonus_is_clamped(image_host, http_client):
    photo = staged("p1", original_width=2000, original_height=1500)
    image_host.add(photo.image_url, make_image_bytes(color=WHITE))
    assert evaluate(photo, [], http_client).score == 100

    missing = staged("p2", original_width=2000, original_height=1500)
    assert evaluate(missing, [], http_client).score == 100  # 100 - 10 + 10


def test_evaluate_is_idempotent(image_host, http_client):
    photo = staged("p1")
    image_host.add(photo.image_url, make_image_bytes(160, 160, WHITE, split_color=BLACK))
    existing = ["0" * 256]

    first = evaluate(photo, existing, http_client)
    second = evaluate(photo, existing, http_client)

    assert (first.passed, first.reason, first.score, first.perceptual_hash) == \
           (second.passed, second.reason, second.score, second.perceptual_hash)
