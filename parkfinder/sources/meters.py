"""City parking-meter inventory. Each active meter post is one candidate spot."""
from __future__ import annotations

from typing import Any

from parkfinder.data_loader import try_parse_float
from parkfinder.errors import MalformedRecord
from parkfinder.models import CandidateSpot, Regulations, SpotType
from parkfinder.sources.opendata import OpenDataSource

METERS_SOURCE = "sf_meters"

# Multi-space pay stations typically cover about six spaces.
MULTI_SPACE_CAPACITY = 6


class ParkingMetersSource(OpenDataSource):
    name = METERS_SOURCE

    def __init__(self, *args: Any, city_suffix: str = "San Francisco, CA", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.dataset = self.settings.meters_dataset
        self.page_size = self.settings.meters_page_size
        self.page_delay_s = self.settings.meters_page_delay_s
        self.city_suffix = city_suffix

    def where(self) -> str | None:
        return "active_meter_flag='Y'"

    def fetch_all(self) -> list[CandidateSpot]:
        return self._normalize_all(self.fetch_records(), self.to_candidate)

    def to_candidate(self, meter: dict[str, Any]) -> CandidateSpot | None:
        lat = try_parse_float(meter.get("latitude"))
        lon = try_parse_float(meter.get("longitude"))
        if lat is None or lon is None:
            raise MalformedRecord(self.name, f"meter {meter.get('meter_id')} has no coordinates")
        if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
            raise MalformedRecord(self.name, f"meter {meter.get('meter_id')} out of range")

        meter_type = (meter.get("meter_type") or "").strip() or None
        smart = (meter.get("smart_mete") or "").upper() == "Y"
        street = " ".join(
            p for p in [(meter.get("street_num") or "").strip(), (meter.get("street_name") or "").strip()] if p
        )

        return CandidateSpot(
            latitude=lat,
            longitude=lon,
            address=f"{street}, {self.city_suffix}" if street else None,
            spot_type=SpotType.METERED,
            capacity=MULTI_SPACE_CAPACITY if meter_type == "MS" else 1,
            primary_source=self.name,
            source_id=str(meter.get("meter_id") or meter.get("post_id") or "") or None,
            confidence=0.98 if smart else 0.95,
            verified_sources=frozenset({self.name}),
            regulations=Regulations(
                is_metered=True,
                meter_type=meter_type,
                days="Mon-Sat",
                hours="8am-6pm",
                curb_color=(meter.get("cap_color") or None),
            ),
            metadata={
                "post_id": meter.get("post_id"),
                "smart_meter": smart,
                "on_offstreet_type": meter.get("on_offstreet_type"),
                "blockface_id": meter.get("clr_guid"),
            },
        )
