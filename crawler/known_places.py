"""
Hand-curated Tokyo places the matcher may create on first sighting.

Order matters: on equal scores the earlier entry wins.
"""

from __future__ import annotations

from typing import List

from crawler.models import CanonicalPlace

KNOWN_TOKYO_PLACES: List[CanonicalPlace] = [
    # Cafes
    CanonicalPlace(name_kr="어바웃 라이프 커피", name_en="About Life Coffee",
                   lat=35.6681, lng=139.7038, region="Harajuku", category="cafe"),
    CanonicalPlace(name_kr="블루 보틀 커피 시부야", name_en="Blue Bottle Coffee Shibuya",
                   lat=35.6612, lng=139.7027, region="Shibuya", category="cafe"),
    CanonicalPlace(name_kr="라틀리에 드 주엘 로뽕기", name_en="L'Atelier de Joël Robuchon",
                   lat=35.6654, lng=139.7298, region="Roppongi", category="cafe"),
    CanonicalPlace(name_kr="스타벅스 리저브 로스터리 도쿄", name_en="Starbucks Reserve Roastery Tokyo",
                   lat=35.6571, lng=139.7044, region="Nakameguro", category="cafe"),
    CanonicalPlace(name_kr="카페 키츠네", name_en="Café Kitsuné",
                   lat=35.6618, lng=139.7038, region="Shibuya", category="cafe"),

    # View spots
    CanonicalPlace(name_kr="도쿄 타워", name_en="Tokyo Tower",
                   lat=35.6586, lng=139.7454, region="Minato", category="viewspot"),
    CanonicalPlace(name_kr="도쿄 스카이트리", name_en="Tokyo Skytree",
                   lat=35.7101, lng=139.8107, region="Sumida", category="viewspot"),
    CanonicalPlace(name_kr="롯폰기 힐스 전망대", name_en="Roppongi Hills Mori Tower",
                   lat=35.6604, lng=139.7292, region="Roppongi", category="viewspot"),
    CanonicalPlace(name_kr="팀랩 보더리스", name_en="teamLab Borderless",
                   lat=35.6245, lng=139.7758, region="Odaiba", category="viewspot"),
    CanonicalPlace(name_kr="센소지 (아사쿠사 절)", name_en="Senso-ji Temple",
                   lat=35.7148, lng=139.7967, region="Asakusa", category="viewspot"),
]
