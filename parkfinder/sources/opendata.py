from __future__ import annotations

import logging
from typing import Any

from parkfinder.errors import SourceUnavailable
from parkfinder.sources.base import HttpSource

logger = logging.getLogger(__name__)


class OpenDataSource(HttpSource):
    """Paged reader for open-data portals speaking the $limit/$offset protocol."""

    dataset: str = ""
    page_size: int = 1000
    page_delay_s: float = 0.5
    max_records: int | None = None

    @property
    def dataset_url(self) -> str:
        return f"{self.settings.opendata_base_url.rstrip('/')}/{self.dataset}.json"

    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.settings.opendata_app_token:
            headers["X-App-Token"] = self.settings.opendata_app_token
        return headers

    def where(self) -> str | None:
        return None

    def fetch_page(self, offset: int, limit: int, where: str | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"$limit": limit, "$offset": offset}
        where = where or self.where()
        if where:
            params["$where"] = where

        data = self.request_json("GET", self.dataset_url, params=params, headers=self.headers())
        if not isinstance(data, list):
            raise SourceUnavailable(self.name, f"expected a JSON array at offset {offset}")
        return data

    def fetch_records(self) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        offset = 0
        while self.max_records is None or len(records) < self.max_records:
            if offset > 0:
                self._sleep(self.page_delay_s)

            self._check_cancelled()
            batch = self.fetch_page(offset, self.page_size)
            self.stats.pages += 1
            if not batch:
                break

            records.extend(batch)
            offset += self.page_size
            logger.info("[%s] fetched %d records...", self.name, len(records))

        if self.max_records is not None:
            records = records[: self.max_records]
        self.stats.records = len(records)
        logger.info("[%s] fetch complete, %d records", self.name, len(records))
        return records
