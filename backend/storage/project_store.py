from __future__ import annotations

import logging
import threading
from typing import Iterable

from pydantic import TypeAdapter, ValidationError

from domain.errors import DuplicateProjectError, PersistenceError
from domain.models import Project, Site
from storage.blob_store import BlobStore

log = logging.getLogger(__name__)

PROJECTS_BLOB = "projects"

_PROJECTS = TypeAdapter(list[Project])


class ProjectStore:
    """
    The active project collection and its persistence to the `projects` blob.

    Same failure policy as the site cache: load/save never raise, and a failed load keeps the
    last good collection.
    """

    def __init__(self, blobs: BlobStore, *, blob_name: str = PROJECTS_BLOB):
        self._blobs = blobs
        self.blob_name = blob_name
        self._projects: tuple[Project, ...] = ()
        self._write_lock = threading.RLock()
        self._saving = threading.Lock()
        self._loading = threading.Lock()

    @property
    def projects(self) -> tuple[Project, ...]:
        return self._projects

    def get(self, project_id: str) -> Project | None:
        for p in self._projects:
            if p.id == project_id:
                return p
        return None

    def add(self, project: Project) -> Project:
        with self._write_lock:
            if self.get(project.id) is not None:
                raise DuplicateProjectError(f"Project id already in use: {project.id}")
            self._projects = (*self._projects, project)
        return project

    def remove(self, project_id: str) -> Project | None:
        """Drop a project together with the sites and samples it owns."""
        with self._write_lock:
            gone = self.get(project_id)
            if gone is not None:
                self._projects = tuple(p for p in self._projects if p.id != project_id)
        return gone

    def replace(self, projects: Iterable[Project]) -> None:
        items = tuple(projects)
        ids = [p.id for p in items]
        if len(set(ids)) != len(ids):
            raise DuplicateProjectError("Project ids must be unique")
        with self._write_lock:
            self._projects = items

    def merge_site(self, project_id: str, site: Site) -> bool:
        with self._write_lock:
            project = self.get(project_id)
            if project is None:
                log.warning("Dropping site %s: unknown project %s", site.id, project_id)
                return False
            project.merge_site(site)
        return True

    def save(self) -> bool:
        if not self._saving.acquire(blocking=False):
            log.warning("An ongoing save of projects hasn't finished; skipping")
            return False
        try:
            self._blobs.put(self.blob_name, _PROJECTS.dump_json(list(self._projects)))
            log.info("Projects saved successfully (%d)", len(self._projects))
            return True
        except PersistenceError as e:
            log.error("Projects failed to save: %s", e)
            return False
        finally:
            self._saving.release()

    def load(self) -> bool:
        if not self._loading.acquire(blocking=False):
            log.warning("An ongoing load of projects hasn't finished; skipping")
            return False
        try:
            raw = self._blobs.get(self.blob_name)
            if raw is None:
                log.warning("Projects failed to load: no blob %r", self.blob_name)
                return False
            self.replace(_PROJECTS.validate_json(raw))
        except (PersistenceError, ValidationError, DuplicateProjectError) as e:
            log.error("Projects failed to load: %s", e)
            return False
        finally:
            self._loading.release()
        log.info("Projects loaded successfully (%d)", len(self._projects))
        return True
