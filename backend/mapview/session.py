from __future__ import annotations

import logging
import math
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

from pyproj import Geod

from domain.models import Site
from geo.tracker import WindowTracker
from geo.window import Coordinate, Window
from mapview.annotations import SiteAnnotation, annotations_from_sites, build_map_payload
from storage.dedup import new_by_id
from storage.project_store import ProjectStore
from sync.synchronizer import SitesResult, SiteSynchronizer

log = logging.getLogger(__name__)

_GEOD = Geod(ellps="WGS84")

NEW_SITE_TITLE = "New Site"


def distance_m(a: Coordinate, b: Coordinate) -> float:
    _az12, _az21, dist = _GEOD.inv(a.lon, a.lat, b.lon, b.lat)
    return float(dist)


@dataclass(frozen=True)
class RegionCorrection:
    """The map zoomed out too far; the surface should snap back to this region."""

    center: Coordinate
    span: float


class MapSession:
    """
    Viewport controller for picking or adding a site of one project.

    Turns location fixes, map pans and site selection into window fetches, and merges the
    received sites into the displayed annotations. Public methods are meant to be called
    from the presentation context; fetch results arrive there too, so the annotation list
    only ever changes on that one context.
    """

    def __init__(
        self,
        *,
        synchronizer: SiteSynchronizer,
        projects: ProjectStore,
        project_id: str,
        tracker: WindowTracker,
        location_tolerance_m: float = 5.0,
        max_span_lon: float = 0.05,
        selected_site: Site | None = None,
    ):
        self.synchronizer = synchronizer
        self.projects = projects
        self.project_id = project_id
        self.tracker = tracker
        self.location_tolerance_m = float(location_tolerance_m)
        self.max_span_lon = float(max_span_lon)

        self.annotations: tuple[SiteAnnotation, ...] = ()
        self.new_site_pin: SiteAnnotation | None = None
        self.selected_id: str = selected_site.id if selected_site is not None else ""
        self.selected_location: Coordinate | None = (
            Coordinate(lat=selected_site.latitude, lon=selected_site.longitude)
            if selected_site is not None
            else None
        )
        self.last_location: Coordinate | None = None
        self.view_center: Coordinate | None = None

        self.has_fetched_initially = False
        self.has_user_panned = False
        self.selected_site_initialized = False

    # ── Lifecycle ─────────────────────────────────────────────────────

    def start(self) -> Future | None:
        """Plot the saved sites of every project; fetch around a preselected site right away."""
        for project in self.projects.projects:
            self._add_annotations(annotations_from_sites(project.sites))
        if self.selected_location is None:
            return None
        self.has_fetched_initially = True
        return self._fetch(self.tracker.commit(self.tracker.window_around(self.selected_location)))

    def new_site_id(self) -> str:
        project = self.projects.get(self.project_id)
        if project is None:
            raise KeyError(f"Unknown project: {self.project_id}")
        return project.new_site_id()

    # ── Inputs ────────────────────────────────────────────────────────

    def on_location_update(self, location: Coordinate) -> Future | None:
        """
        Fetch once, as soon as two consecutive fixes agree within the tolerance.

        Early fixes jump around; waiting for a stable one avoids fetching a window around a
        wrong position.
        """
        moved = (
            math.inf if self.last_location is None else distance_m(self.last_location, location)
        )
        self.last_location = location
        if self.has_fetched_initially or moved >= self.location_tolerance_m:
            return None
        self.has_fetched_initially = True
        return self._fetch(self.tracker.commit(self.tracker.window_around(location)))

    def on_region_changed(self, center: Coordinate, span_lon: float) -> RegionCorrection | Future | None:
        """
        Map region settled after a pan or zoom.

        Returns a `RegionCorrection` when zoomed out past the limit, the fetch future when the
        center left the committed window, otherwise None.
        """
        self.has_user_panned = True
        if span_lon > self.max_span_lon:
            corrected = self.selected_location if self.selected_id else self.last_location
            self.has_user_panned = False
            return RegionCorrection(center=corrected or center, span=self.max_span_lon * 0.9)

        window = self.tracker.observe(center)
        if window is None:
            return None
        return self._fetch(window)

    def select(self, annotation: SiteAnnotation | None) -> None:
        if annotation is None:
            self.selected_id = ""
            self.selected_location = None
            return
        if self.new_site_pin is not None and annotation != self.new_site_pin:
            self.clear_pin()
        self.selected_id = annotation.id
        self.selected_location = annotation.coordinate
        self.view_center = annotation.coordinate

    def deselect(self, annotation: SiteAnnotation) -> None:
        if annotation == self.new_site_pin:
            self.clear_pin()
        self.selected_id = ""
        self.selected_location = None

    def drop_pin(self, location: Coordinate) -> SiteAnnotation:
        """Place (or move) the single "new site" pin."""
        if self.new_site_pin is not None:
            self.annotations = tuple(a for a in self.annotations if a is not self.new_site_pin)
        pin = SiteAnnotation(id="", name=NEW_SITE_TITLE, lat=location.lat, lon=location.lon)
        self.new_site_pin = pin
        self.annotations = (*self.annotations, pin)
        return pin

    def clear_pin(self) -> None:
        pin = self.new_site_pin
        if pin is None:
            return
        self.annotations = tuple(a for a in self.annotations if a is not pin)
        self.new_site_pin = None

    def new_site_location(self) -> Coordinate | None:
        """Where a new site goes: the dropped pin, else the last location fix."""
        if self.new_site_pin is not None:
            return self.new_site_pin.coordinate
        return self.last_location

    # ── Output ───────────────────────────────────────────────────────

    def map_payload(self, *, zoom: float = 13.0) -> dict[str, Any]:
        center = self.view_center or self.last_location or Coordinate(lat=0.0, lon=0.0)
        return build_map_payload(
            self.annotations,
            center=center,
            zoom=zoom,
            window=self.tracker.current,
            selected_id=self.selected_id or None,
        )

    # ── Internals ────────────────────────────────────────────────────

    def _fetch(self, window: Window) -> Future:
        return self.synchronizer.fetch_sites_in_window(window, self._receive_sites)

    def _receive_sites(self, result: SitesResult) -> None:
        if result.error:
            log.warning("Site fetch failed: %s", result.error)
        received = annotations_from_sites(result.sites)
        fresh = self._add_annotations(received)
        if fresh:
            log.info("Plotting %d out of %d received sites", len(fresh), len(received))
            self._init_selected_site()

    def _add_annotations(self, received: list[SiteAnnotation]) -> list[SiteAnnotation]:
        # The dropped pin has no id yet and never takes part in dedup.
        known = [a for a in self.annotations if a.id]
        fresh = new_by_id(known, received)
        if fresh:
            self.annotations = (*self.annotations, *fresh)
        return fresh

    def _init_selected_site(self) -> None:
        if self.selected_site_initialized or self.has_user_panned:
            return
        if self.selected_id:
            for a in self.annotations:
                if a.id == self.selected_id:
                    self.view_center = a.coordinate
                    self.selected_site_initialized = True
                    return
        elif self.last_location is not None:
            self.view_center = self.last_location
