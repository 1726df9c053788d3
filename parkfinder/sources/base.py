from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

import requests

from parkfinder.config import Settings, settings as default_settings
from parkfinder.errors import FetchCancelled, MalformedRecord, RateLimited, SourceUnavailable
from parkfinder.models import CandidateSpot

logger = logging.getLogger(__name__)


_run_state = threading.local()


@contextmanager
def cancellation(event: threading.Event | None) -> Iterator[None]:
    """Bind a cancel event to every source fetched on this thread."""
    previous = getattr(_run_state, "cancel_event", None)
    _run_state.cancel_event = event
    try:
        yield
    finally:
        _run_state.cancel_event = previous


@dataclass
class SourceStats:
    pages: int = 0
    records: int = 0
    skipped: int = 0
    filtered: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "pages": self.pages,
            "records": self.records,
            "skipped": self.skipped,
            "filtered": self.filtered,
        }


class SourceAdapter(ABC):
    """One external data source, normalised to CandidateSpot."""

    name: str = "source"

    def __init__(
        self,
        settings: Settings | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or default_settings
        self.session = session or requests.Session()
        self._sleep = sleep
        self.stats = SourceStats()

    @abstractmethod
    def fetch_all(self) -> list[CandidateSpot]:
        """Fetch every page and return the normalised candidates."""

    def _check_cancelled(self) -> None:
        """Call before each page; raises once the bound cancel event is set."""
        event = getattr(_run_state, "cancel_event", None)
        if event is not None and event.is_set():
            raise FetchCancelled(self.name, f"cancelled after {self.stats.pages} page(s)")

    def _normalize_all(self, records: list[Any], normalize: Callable[[Any], CandidateSpot | None]) -> list[CandidateSpot]:
        spots: list[CandidateSpot] = []
        for record in records:
            try:
                spot = normalize(record)
            except MalformedRecord as e:
                self.stats.skipped += 1
                logger.debug("[%s] skipped record: %s", self.name, e.message)
                continue
            if spot is None:
                self.stats.filtered += 1
                continue
            spots.append(spot)

        if self.stats.skipped:
            logger.warning("[%s] skipped %d malformed records", self.name, self.stats.skipped)
        logger.info("[%s] normalised %d candidate spots", self.name, len(spots))
        return spots


class JsonHttpMixin:
    """JSON over HTTP with bounded rate-limit retries.

    Expects ``name``, ``settings``, ``session`` and ``_sleep`` on the instance.
    """

    name: str
    settings: Settings
    session: requests.Session
    _sleep: Callable[[float], None]

    rate_limit_statuses: tuple[int, ...] = (429,)

    @property
    def timeout_s(self) -> float:
        return self.settings.request_timeout_s

    def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        attempts = max(1, self.settings.rate_limit_retries + 1)
        for i in range(attempts):
            try:
                return self._request_once(method, url, **kwargs)
            except RateLimited as e:
                if i < attempts - 1:
                    delay = e.retry_after or self.settings.rate_limit_backoff_s * (i + 1)
                    logger.warning(
                        "[%s] rate limited (attempt %d/%d), retrying in %.1fs",
                        self.name, i + 1, attempts, delay,
                    )
                    self._sleep(delay)
                    continue
                raise SourceUnavailable(self.name, f"rate limited after {attempts} attempts") from e
        raise SourceUnavailable(self.name, "no request attempted")

    def _request_once(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            resp = self.session.request(method, url, timeout=self.timeout_s, **kwargs)
        except requests.Timeout as e:
            raise SourceUnavailable(self.name, f"timeout after {self.timeout_s}s") from e
        except requests.RequestException as e:
            raise SourceUnavailable(self.name, f"request failed: {e}") from e

        if resp.status_code in self.rate_limit_statuses:
            raise RateLimited(self.name, f"HTTP {resp.status_code}", _retry_after(resp))
        if not 200 <= resp.status_code < 300:
            raise SourceUnavailable(self.name, f"HTTP {resp.status_code}: {_shorten(resp.text)}")

        try:
            return resp.json()
        except ValueError as e:
            raise SourceUnavailable(self.name, "response body is not JSON") from e


class HttpSource(JsonHttpMixin, SourceAdapter):
    """Adapter that talks JSON over HTTP."""


def _retry_after(resp: requests.Response) -> float | None:
    value = resp.headers.get("Retry-After") if resp.headers else None
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _shorten(s: str | None, max_len: int = 240) -> str:
    if not s:
        return ""
    one_line = " ".join(s.replace("\r", " ").replace("\n", " ").split())
    if len(one_line) <= max_len:
        return one_line
    return one_line[:max_len] + "..."
