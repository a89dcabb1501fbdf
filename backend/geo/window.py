from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Coordinate:
    """WGS84 point in degrees. North and east are positive."""

    lat: float
    lon: float


@dataclass(frozen=True)
class Window:
    """
    Rectangular lat/lon region that was (or will be) synchronized.

    `center` is the focal point the window was computed around. Windows are never mutated;
    committing a new window replaces the previous one.
    """

    min: Coordinate
    max: Coordinate
    center: Coordinate

    def contains(self, lat: float, lon: float) -> bool:
        # Inclusive on both bounds: a site exactly on an edge belongs to the window.
        return (
            self.min.lat <= lat <= self.max.lat
            and self.min.lon <= lon <= self.max.lon
        )

    def as_query(self) -> dict[str, dict[str, float]]:
        """Request body of the remote "sites in window" query."""
        return {
            "latitude": {"Min": self.min.lat, "Max": self.max.lat},
            "longitude": {"Min": self.min.lon, "Max": self.max.lon},
        }

    def rounded_key(self, decimals: int = 4) -> tuple[float, float, float, float]:
        """
        A stable, hashable key for logging and caching window-derived computations.

        decimals=4 is ~11m-ish in latitude.
        """
        return (
            round(self.min.lon, decimals),
            round(self.min.lat, decimals),
            round(self.max.lon, decimals),
            round(self.max.lat, decimals),
        )


class WindowCrossing(str, Enum):
    inside = "inside"
    below = "below"
    above = "above"
    left_of = "left_of"
    right_of = "right_of"
