from __future__ import annotations

import logging
from dataclasses import dataclass

from domain.models import Site
from export.tables import ExportTables, export_projects
from geo.tracker import WindowTracker
from mapview.session import MapSession
from settings.config import SyncSettings, get_settings
from settings.logsetup import setup_logging
from storage.blob_store import BlobStore
from storage.cache_store import SiteCacheStore
from storage.project_store import ProjectStore
from sync.connectivity import ConnectivityProbe, probe_from_settings
from sync.synchronizer import SiteSynchronizer
from sync.transport import HttpTransport, Transport

log = logging.getLogger(__name__)


@dataclass
class FieldContext:
    """
    Process-wide services, constructed once by the entry point and passed to whoever needs
    them. Closing it persists the cache and projects and stops the background executors.
    """

    settings: SyncSettings
    blobs: BlobStore
    cache: SiteCacheStore
    projects: ProjectStore
    synchronizer: SiteSynchronizer

    @classmethod
    def open(
        cls,
        settings: SyncSettings | None = None,
        *,
        transport: Transport | None = None,
        probe: ConnectivityProbe | None = None,
        configure_logging: bool = False,
    ) -> "FieldContext":
        s = settings or get_settings()
        if configure_logging:
            setup_logging(s.logLevel)

        blobs = BlobStore.open(s.data_file())
        cache = SiteCacheStore(blobs)
        projects = ProjectStore(blobs)
        projects.load()
        cache.load()

        synchronizer = SiteSynchronizer(
            transport=transport or HttpTransport.from_settings(s.api),
            probe=probe or probe_from_settings(s.reachability),
            cache=cache,
            projects=projects,
            sites_path=s.api.sitesPath,
            site_info_path=s.api.siteInfoPath,
            network_threads=s.networkThreads,
        )
        log.info(
            "Field context ready: %d projects, %d cached sites",
            len(projects.projects),
            len(cache),
        )
        return cls(
            settings=s,
            blobs=blobs,
            cache=cache,
            projects=projects,
            synchronizer=synchronizer,
        )

    def new_tracker(self) -> WindowTracker:
        w = self.settings.window
        return WindowTracker(half_width_km=w.halfWidthKm, min_cos=w.minCos)

    def map_session(self, project_id: str, *, selected_site: Site | None = None) -> MapSession:
        w = self.settings.window
        return MapSession(
            synchronizer=self.synchronizer,
            projects=self.projects,
            project_id=project_id,
            tracker=self.new_tracker(),
            location_tolerance_m=w.locationToleranceM,
            max_span_lon=w.maxSpanLon,
            selected_site=selected_site,
        )

    def export(self, project_ids: list[str] | None = None) -> ExportTables:
        wanted = set(project_ids) if project_ids is not None else None
        selected = [p for p in self.projects.projects if wanted is None or p.id in wanted]
        return export_projects(
            selected,
            date_format=self.settings.export.dateFormat,
            time_format=self.settings.export.timeFormat,
        )

    def save(self) -> None:
        self.projects.save()
        self.cache.save()

    def close(self) -> None:
        self.synchronizer.close(wait=True)
        self.save()
        close_transport = getattr(self.synchronizer.transport, "close", None)
        if close_transport is not None:
            close_transport()
        self.blobs.close()
