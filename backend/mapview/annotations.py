from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from domain.models import Site
from geo.window import Coordinate, Window


@dataclass(frozen=True)
class SiteAnnotation:
    """A site marker as the rendering surface sees it: id as title, name as subtitle."""

    id: str
    name: str
    lat: float
    lon: float

    @property
    def title(self) -> str:
        return self.id

    @property
    def subtitle(self) -> str:
        return self.name

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(lat=self.lat, lon=self.lon)

    @classmethod
    def from_site(cls, site: Site) -> "SiteAnnotation":
        return cls(id=site.id, name=site.name, lat=site.latitude, lon=site.longitude)


def annotations_from_sites(sites: Iterable[Site]) -> list[SiteAnnotation]:
    return [SiteAnnotation.from_site(s) for s in sites]


def trace_sites(
    annotations: Iterable[SiteAnnotation],
    *,
    selected_id: str | None = None,
) -> dict[str, Any]:
    items = list(annotations)
    return {
        "type": "scattermapbox",
        "name": "Sites",
        "mode": "markers",
        "lon": [a.lon for a in items],
        "lat": [a.lat for a in items],
        "text": [f"{a.title}<br>{a.subtitle}" if a.subtitle else a.title for a in items],
        "customdata": [a.id for a in items],
        "hoverinfo": "text",
        "marker": {
            "size": [14 if a.id == selected_id else 10 for a in items],
            "color": ["#fdd835" if a.id == selected_id else "#fb8c00" for a in items],
        },
    }


def trace_window(window: Window) -> dict[str, Any]:
    lons = [window.min.lon, window.max.lon, window.max.lon, window.min.lon, window.min.lon]
    lats = [window.min.lat, window.min.lat, window.max.lat, window.max.lat, window.min.lat]
    return {
        "type": "scattermapbox",
        "name": "Sync window",
        "lon": lons,
        "lat": lats,
        "mode": "lines",
        "line": {"color": "rgba(55, 71, 79, 0.7)", "width": 1},
        "hoverinfo": "skip",
        "showlegend": False,
    }


def build_map_payload(
    annotations: Iterable[SiteAnnotation],
    *,
    center: Coordinate,
    zoom: float = 13.0,
    window: Window | None = None,
    selected_id: str | None = None,
) -> dict[str, Any]:
    """Plotly figure dict (data + layout) for the map surface."""
    data = [trace_sites(annotations, selected_id=selected_id)]
    if window is not None:
        data.append(trace_window(window))
    return {
        "data": data,
        "layout": {
            "mapbox": {
                "center": {"lat": center.lat, "lon": center.lon},
                "zoom": zoom,
                "style": "carto-positron",
            },
            "margin": {"l": 0, "r": 0, "t": 0, "b": 0},
            "showlegend": False,
        },
    }
