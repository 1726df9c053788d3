from __future__ import annotations

from datetime import datetime
from typing import Any

from parkfinder.geo import haversine_m
from parkfinder.models import ParkingSpot, PredictionResult


def find_nearby(
    spots: list[ParkingSpot],
    lat: float,
    lon: float,
    k: int = 5,
    radius_m: float | None = None,
) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for s in spots:
        if not s.is_active:
            continue
        d = haversine_m(lat, lon, s.latitude, s.longitude)
        if radius_m is not None and d > radius_m:
            continue
        rows.append({"spot": s, "distance_m": d})

    rows.sort(key=lambda r: r["distance_m"])
    rows = rows[: max(0, int(k))]

    return [
        {
            **r["spot"].model_dump(mode="json"),
            "distance_m": float(r["distance_m"]),
        }
        for r in rows
    ]


def predict_availability(when: datetime | None = None) -> PredictionResult:
    """Simple, explainable heuristic prediction.

    Output: probability of finding street parking (0..1).
    """

    when = when or datetime.now()
    hour = when.hour
    is_weekend = when.weekday() >= 5

    # Time-of-day effects
    if 9 <= hour <= 17:
        p = 0.3
        reason_parts: list[str] = ["business_hours=0.30"]
    elif 18 <= hour <= 22:
        p = 0.5
        reason_parts = ["evening=0.50"]
    else:
        p = 0.8
        reason_parts = ["off_peak=0.80"]
    time_factor = p

    if is_weekend:
        p += 0.2
        reason_parts.append("weekend(+0.20)")

    p = min(1.0, p)

    if p > 0.7:
        tier = "high"
        recommendation = "Good chance of finding street parking"
    elif p > 0.4:
        tier = "medium"
        recommendation = "Moderate difficulty - consider parking lots"
    else:
        tier = "low"
        recommendation = "Difficult - recommend using parking garage"

    return PredictionResult(
        probability=float(p),
        tier=tier,
        reason=";".join(reason_parts),
        recommendation=recommendation,
        factors={
            "time_of_day": time_factor,
            "day_of_week": 0.7 if is_weekend else 0.4,
        },
    )
