from __future__ import annotations

import logging
import math
import threading

from geo.window import Coordinate, Window, WindowCrossing

log = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6378.0
RADIANS_TO_DEGREES = 180.0 / math.pi

# cos(lat) floor for the longitude correction; 0.01 is reached at ~89.43 degrees.
DEFAULT_MIN_COS = 0.01


def angular_delta_deg(half_width_km: float) -> float:
    """Half-width on the ground -> degrees of latitude on a sphere of radius 6378 km."""
    return (float(half_width_km) / EARTH_RADIUS_KM) * RADIANS_TO_DEGREES


def compute_window(
    focus: Coordinate,
    half_width_km: float,
    *,
    min_cos: float = DEFAULT_MIN_COS,
) -> Window:
    """
    Window of fixed angular half-width around `focus`.

    Longitude delta is widened by 1/cos(lat) to compensate for meridian convergence. Near the
    poles cos(lat) is clamped to `min_cos` and the longitude delta is capped at 180 degrees;
    latitude bounds are never clamped so the window stays symmetric around the focus.
    """
    delta = angular_delta_deg(half_width_km)
    cos_lat = math.cos(math.radians(focus.lat))
    if cos_lat < min_cos:
        log.debug("Clamping cos(lat) %.6f -> %.6f at lat=%.5f", cos_lat, min_cos, focus.lat)
        cos_lat = min_cos
    lon_delta = min(180.0, delta / cos_lat)

    return Window(
        min=Coordinate(lat=focus.lat - delta, lon=focus.lon - lon_delta),
        max=Coordinate(lat=focus.lat + delta, lon=focus.lon + lon_delta),
        center=focus,
    )


def classify(point: Coordinate, window: Window) -> WindowCrossing:
    """
    Where `point` sits relative to `window`.

    Latitude is tested before longitude: below, above, left of, right of. A point outside on
    both axes is reported by its latitude crossing.
    """
    if point.lat < window.min.lat:
        return WindowCrossing.below
    if point.lat > window.max.lat:
        return WindowCrossing.above
    if point.lon < window.min.lon:
        return WindowCrossing.left_of
    if point.lon > window.max.lon:
        return WindowCrossing.right_of
    return WindowCrossing.inside


class WindowTracker:
    """
    Owns the last committed window of a synchronization session.

    Classification always runs against the committed window, never against the most recent
    focus, so small movements inside a stale window don't keep shifting the reference.
    """

    def __init__(self, *, half_width_km: float = 10.0, min_cos: float = DEFAULT_MIN_COS):
        if half_width_km <= 0:
            raise ValueError("half_width_km must be > 0")
        self.half_width_km = float(half_width_km)
        self.min_cos = float(min_cos)
        self._current: Window | None = None
        self._lock = threading.Lock()

    @property
    def current(self) -> Window | None:
        return self._current

    def window_around(self, focus: Coordinate) -> Window:
        return compute_window(focus, self.half_width_km, min_cos=self.min_cos)

    def commit(self, window: Window) -> Window:
        with self._lock:
            self._current = window
        log.debug("Committed window %s around %s", window.rounded_key(), window.center)
        return window

    def classify(self, point: Coordinate) -> WindowCrossing | None:
        """None when nothing has been committed yet."""
        current = self._current
        if current is None:
            return None
        return classify(point, current)

    def observe(self, focus: Coordinate) -> Window | None:
        """
        Commit and return a new window if `focus` requires a fetch, else None.

        A fetch is required when nothing was committed yet or the focus left the committed
        window through any edge.
        """
        with self._lock:
            current = self._current
            crossing = classify(focus, current) if current is not None else None
            if crossing is WindowCrossing.inside:
                return None
            window = compute_window(focus, self.half_width_km, min_cos=self.min_cos)
            self._current = window
        log.info(
            "Window crossing: %s -> new window %s",
            crossing.value if crossing is not None else "initial",
            window.rounded_key(),
        )
        return window
