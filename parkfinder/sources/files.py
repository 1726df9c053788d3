from __future__ import annotations

from typing import Any

from parkfinder.data_loader import load_spots_from_file
from parkfinder.errors import ConfigurationMissing, SourceUnavailable
from parkfinder.models import CandidateSpot
from parkfinder.sources.base import SourceAdapter

FILE_SOURCE = "local_file"


class LocalFileSource(SourceAdapter):
    """Candidates from a CSV/GeoJSON/JSON export on disk."""

    name = FILE_SOURCE

    def __init__(self, *args: Any, path: str | None = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.path = path or self.settings.local_file_path

    def fetch_all(self) -> list[CandidateSpot]:
        if not self.path:
            raise ConfigurationMissing(self.name, "local_file_path is not set")
        try:
            result = load_spots_from_file(self.path, source=self.name, confidence=self.settings.local_file_confidence)
        except (OSError, ValueError) as e:
            raise SourceUnavailable(self.name, str(e)) from e

        self.stats.pages = 1
        self.stats.records = len(result.spots) + result.skipped
        self.stats.skipped = result.skipped
        return result.spots
