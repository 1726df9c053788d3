"""Parking citations as evidence of legal parking.

A ticket for an expired meter or an overstayed time limit means somebody was
parked in a legal spot. One ticket is weak evidence, so citations are clustered
on a coarse grid and only clusters with enough tickets become candidates.
"""
from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, timedelta
from typing import Any, Callable

from parkfinder.data_loader import try_parse_float
from parkfinder.geo import grid_cell
from parkfinder.models import CandidateSpot, Regulations, SpotType
from parkfinder.sources.opendata import OpenDataSource

CITATIONS_SOURCE = "sf_citations"

EXPIRED_METER = "80"
LEGAL_SPOT_VIOLATIONS = (
    EXPIRED_METER,
    "91",  # street cleaning
    "40",  # time limit exceeded
    "77",  # residential permit zone
)


class ParkingCitationsSource(OpenDataSource):
    name = CITATIONS_SOURCE

    def __init__(
        self,
        *args: Any,
        months_back: int | None = None,
        today: Callable[[], date] = date.today,
        city_suffix: str = "San Francisco, CA",
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.dataset = self.settings.citations_dataset
        self.page_size = self.settings.citations_page_size
        self.page_delay_s = self.settings.citations_page_delay_s
        self.max_records = self.settings.citations_max_records
        self.months_back = months_back if months_back is not None else self.settings.citations_months_back
        self._today = today
        self.city_suffix = city_suffix

    def date_range(self) -> tuple[str, str]:
        end = self._today()
        start = end - timedelta(days=30 * self.months_back)
        return start.isoformat(), end.isoformat()

    def where(self) -> str | None:
        start, end = self.date_range()
        codes = ",".join(f"'{c}'" for c in LEGAL_SPOT_VIOLATIONS)
        return (
            f"citation_issued_datetime >= '{start}' AND "
            f"citation_issued_datetime <= '{end}' AND "
            f"violation_code IN ({codes}) AND "
            "latitude IS NOT NULL AND longitude IS NOT NULL"
        )

    def fetch_all(self) -> list[CandidateSpot]:
        citations = self.fetch_records()
        clusters = self.cluster(citations)
        return self._normalize_all(list(clusters.items()), self.cluster_to_candidate)

    def cluster(self, citations: list[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
        cell_deg = self.settings.citation_cluster_deg
        clusters: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for c in citations:
            lat = try_parse_float(c.get("latitude"))
            lon = try_parse_float(c.get("longitude"))
            if lat is None or lon is None:
                self.stats.skipped += 1
                continue
            i, j = grid_cell(lat, lon, cell_deg)
            clusters[f"{i},{j}"].append({**c, "_lat": lat, "_lon": lon})
        return dict(clusters)

    def cluster_to_candidate(self, item: tuple[str, list[dict[str, Any]]]) -> CandidateSpot | None:
        key, citations = item
        if len(citations) < self.settings.citation_min_cluster:
            return None

        lat = sum(c["_lat"] for c in citations) / len(citations)
        lon = sum(c["_lon"] for c in citations) / len(citations)

        streets = Counter((c.get("street_name") or "Unknown") for c in citations)
        street = streets.most_common(1)[0][0]
        block = (citations[0].get("street_block") or "").strip()
        address = f"{block} {street}".strip() + f", {self.city_suffix}"

        issued = sorted(c.get("citation_issued_datetime") or "" for c in citations)

        return CandidateSpot(
            latitude=lat,
            longitude=lon,
            address=address,
            spot_type=SpotType.STREET,
            capacity=1,
            primary_source=self.name,
            source_id=f"cluster_{key}",
            confidence=min(0.80, 0.50 + 0.05 * len(citations)),
            verified_sources=frozenset({self.name}),
            regulations=Regulations(
                is_metered=any(c.get("violation_code") == EXPIRED_METER for c in citations),
            ),
            needs_verification=True,
            metadata={
                "citation_count": len(citations),
                "first_citation": issued[0],
                "last_citation": issued[-1],
                "violation_codes": sorted({str(c.get("violation_code")) for c in citations}),
            },
        )
