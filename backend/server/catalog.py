from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from shapely.geometry import Point
from shapely.geometry import box as shapely_box
from shapely.strtree import STRtree

from domain.errors import MalformedResponseError
from domain.models import Site
from sync.parsing import parse_site_summary

log = logging.getLogger(__name__)


@dataclass
class SiteCatalog:
    """
    Server-side site table with an STRtree over site points (EPSG:4326).

    Window queries are inclusive on every edge (`covers`, not `contains`), matching the
    client-side offline filter.
    """

    sites: list[Site]
    _by_id: dict[str, Site] = field(default_factory=dict, repr=False)
    _tree: STRtree | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self._by_id = {s.id: s for s in self.sites}
        points = [Point(s.longitude, s.latitude) for s in self.sites]
        self._tree = STRtree(points) if points else None

    def get(self, site_id: str) -> Site | None:
        return self._by_id.get(site_id)

    def in_range(
        self,
        *,
        min_lat: float,
        max_lat: float,
        min_lon: float,
        max_lon: float,
    ) -> list[Site]:
        if self._tree is None:
            return []
        area = shapely_box(
            min(min_lon, max_lon),
            min(min_lat, max_lat),
            max(min_lon, max_lon),
            max(min_lat, max_lat),
        )
        idx = self._tree.query(area, predicate="covers")
        return [self.sites[i] for i in sorted(int(i) for i in idx)]

    def all(self) -> list[Site]:
        return list(self.sites)


def catalog_from_sites(sites: Iterable[Site]) -> SiteCatalog:
    return SiteCatalog(sites=list(sites))


def load_catalog_file(path: Path) -> SiteCatalog:
    """
    Load a `{"sites": [{"Site_ID", "Site_Name", "Latitude", "Longitude"}, ...]}` file.

    Bad records are skipped with a log line instead of failing the whole catalog.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    records = data.get("sites") if isinstance(data, dict) else None
    if not isinstance(records, list):
        raise ValueError(f"Couldn't get sites from {path}")
    sites: list[Site] = []
    for rec in records:
        try:
            sites.append(parse_site_summary(rec))
        except MalformedResponseError as e:
            log.warning("Skipping site record in %s: %s", path, e)
    log.info("Loaded %d catalog sites from %s", len(sites), path)
    return catalog_from_sites(sites)
