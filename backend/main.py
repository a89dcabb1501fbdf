from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from server.api import build_router, default_catalog
from server.catalog import SiteCatalog
from settings.config import get_settings


def create_app(catalog: SiteCatalog | None = None) -> FastAPI:
    """
    Reference sites API used for local development and tests.

    With no explicit catalog the sites come from the JSON file named by SITESYNC_CATALOG_PATH.
    """
    settings = get_settings()
    app = FastAPI(title="Field site sync API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(
        build_router(
            (lambda: catalog) if catalog is not None else default_catalog,
            sites_path=settings.api.sitesPath,
            site_info_path=settings.api.siteInfoPath,
        )
    )
    return app


app = create_app()
