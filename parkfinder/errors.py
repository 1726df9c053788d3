"""Exception types raised by the parkfinder core."""
from __future__ import annotations


class ParkfinderError(Exception):
    """Base class for every error raised by the core."""


class InvalidCoordinate(ParkfinderError, ValueError):
    def __init__(self, latitude: float, longitude: float):
        super().__init__(f"Invalid coordinate: lat={latitude}, lon={longitude}")
        self.latitude = latitude
        self.longitude = longitude


class SpotNotFound(ParkfinderError, KeyError):
    def __init__(self, spot_id: str):
        super().__init__(spot_id)
        self.spot_id = spot_id

    def __str__(self) -> str:
        return f"Parking spot not found: {self.spot_id}"


class SourceError(ParkfinderError):
    """A single external source failed. Never fatal for a whole run."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class SourceUnavailable(SourceError):
    pass


class RateLimited(SourceError):
    def __init__(self, source: str, message: str = "rate limited", retry_after: float | None = None):
        super().__init__(source, message)
        self.retry_after = retry_after


class MalformedRecord(SourceError):
    pass


class ConfigurationMissing(SourceError):
    pass


class FetchCancelled(SourceError):
    """The run was cancelled while this source was paging."""


class DuplicateWrite(ParkfinderError):
    """The persistence collaborator rejected an insert because the key already exists."""

    def __init__(self, message: str = "duplicate key", keys: list | None = None):
        super().__init__(message)
        self.keys = keys or []
