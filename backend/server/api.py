from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Callable

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict

from server.catalog import SiteCatalog, catalog_from_sites, load_catalog_file
from server.wire import site_detail_record, site_summary_record


class ApiRange(BaseModel):
    Min: float
    Max: float


class ApiSitesQuery(BaseModel):
    # The mobile client may send more filters (elevation, countries, types, ...); only the
    # spatial ones are served here.
    model_config = ConfigDict(extra="allow")

    latitude: ApiRange | None = None
    longitude: ApiRange | None = None


class ApiSiteInfoQuery(BaseModel):
    site_id: str


@lru_cache(maxsize=1)
def default_catalog() -> SiteCatalog:
    raw = (os.getenv("SITESYNC_CATALOG_PATH") or "").strip()
    if not raw:
        return catalog_from_sites([])
    return load_catalog_file(Path(raw))


def build_router(
    get_catalog: Callable[[], SiteCatalog],
    *,
    sites_path: str,
    site_info_path: str,
) -> APIRouter:
    router = APIRouter()

    @router.post(sites_path)
    def sites_for_mobile(body: ApiSitesQuery):
        catalog = get_catalog()
        if body.latitude is None and body.longitude is None:
            sites = catalog.all()
        else:
            lat = body.latitude or ApiRange(Min=-90.0, Max=90.0)
            lon = body.longitude or ApiRange(Min=-180.0, Max=180.0)
            sites = catalog.in_range(
                min_lat=lat.Min, max_lat=lat.Max, min_lon=lon.Min, max_lon=lon.Max
            )
        return {"sites": [site_summary_record(s) for s in sites]}

    @router.post(site_info_path)
    def site_info(body: ApiSiteInfoQuery):
        site = get_catalog().get(body.site_id)
        if site is None:
            return {"status": {"Code": 404, "Message": f"Unknown site {body.site_id}"}}
        return {"status": {"Code": 200}, "site": site_detail_record(site)}

    return router
