"""Great-circle distance and composite suitability score for driver candidates.

Pure functions only: no I/O, no clock reads. ``now`` is always passed in.
"""

import math
from dataclasses import dataclass
from datetime import datetime

from greendrop.config import settings
from greendrop.models.domain import GeoPoint

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class ScoringWeights:
    distance: float = 0.50
    rating: float = 0.20
    experience: float = 0.15
    recency: float = 0.15
    radius_km: float = 10.0
    experience_saturation: int = 100
    recency_full_s: float = 5 * 60
    recency_zero_s: float = 30 * 60
    default_rating: float = 3.0


def weights_from_settings() -> ScoringWeights:
    return ScoringWeights(
        distance=settings.matching_weight_distance,
        rating=settings.matching_weight_rating,
        experience=settings.matching_weight_experience,
        recency=settings.matching_weight_recency,
        radius_km=settings.matching_radius_km,
        experience_saturation=settings.matching_experience_saturation,
        recency_full_s=settings.matching_recency_full_s,
        recency_zero_s=settings.matching_recency_zero_s,
        default_rating=settings.matching_default_rating,
    )


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    lat1, lng1, lat2, lng2 = map(math.radians, [a.lat, a.lng, b.lat, b.lng])
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def recency_score(
    last_seen_at: datetime | None,
    now: datetime,
    weights: ScoringWeights,
) -> float:
    if last_seen_at is None:
        return 0.0
    age_s = (now - last_seen_at).total_seconds()
    if age_s <= weights.recency_full_s:
        return 1.0
    if age_s >= weights.recency_zero_s:
        return 0.0
    span = weights.recency_zero_s - weights.recency_full_s
    return 1.0 - (age_s - weights.recency_full_s) / span


def score_candidate(
    distance: float,
    rating: float | None,
    completed_deliveries: int,
    last_seen_at: datetime | None,
    now: datetime,
    weights: ScoringWeights | None = None,
) -> float:
    w = weights or ScoringWeights()
    effective_rating = w.default_rating if rating is None else rating

    distance_part = max(0.0, 1.0 - distance / w.radius_km)
    rating_part = min(1.0, max(0.0, effective_rating / 5))
    experience_part = min(1.0, max(0, completed_deliveries) / w.experience_saturation)
    recency_part = recency_score(last_seen_at, now, w)

    return (
        w.distance * distance_part
        + w.rating * rating_part
        + w.experience * experience_part
        + w.recency * recency_part
    )
