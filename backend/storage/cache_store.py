from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable

from pydantic import TypeAdapter, ValidationError

from domain.errors import PersistenceError
from domain.models import Site
from geo.window import Window
from storage.blob_store import BlobStore
from storage.dedup import new_by_id

log = logging.getLogger(__name__)

CACHED_SITES_BLOB = "cachedSites"

_SITES = TypeAdapter(list[Site])


@dataclass(frozen=True)
class _Snapshot:
    sites: tuple[Site, ...]
    ids: frozenset[str]


_EMPTY = _Snapshot(sites=(), ids=frozenset())


class SiteCacheStore:
    """
    Every site ever received, keyed by id, plus wholesale persistence to one blob.

    Readers always see a complete snapshot: each mutation builds a new snapshot and swaps it in
    with a single assignment. `save()` and `load()` are guarded by non-blocking try-acquire
    locks: a second concurrent call is dropped with a diagnostic, never queued.
    """

    def __init__(self, blobs: BlobStore, *, blob_name: str = CACHED_SITES_BLOB):
        self._blobs = blobs
        self.blob_name = blob_name
        self._snap: _Snapshot = _EMPTY
        self._write_lock = threading.Lock()
        self._saving = threading.Lock()
        self._loading = threading.Lock()

    @property
    def sites(self) -> tuple[Site, ...]:
        return self._snap.sites

    def __len__(self) -> int:
        return len(self._snap.sites)

    def __contains__(self, site_id: object) -> bool:
        return site_id in self._snap.ids

    def within(self, window: Window) -> list[Site]:
        return [s for s in self._snap.sites if window.contains(s.latitude, s.longitude)]

    def merge(self, sites: Iterable[Site]) -> list[Site]:
        """Append sites with unknown ids; returns the ones that were new."""
        with self._write_lock:
            snap = self._snap
            fresh = new_by_id(snap.sites, sites)
            if fresh:
                self._snap = _Snapshot(
                    sites=snap.sites + tuple(fresh),
                    ids=snap.ids | {s.id for s in fresh},
                )
        if fresh:
            log.debug("Cached %d new sites (%d total)", len(fresh), len(self._snap.sites))
        return fresh

    def replace(self, sites: Iterable[Site]) -> None:
        # Dedup on the way in: an old archive may carry repeated ids.
        unique = new_by_id((), sites)
        with self._write_lock:
            self._snap = _Snapshot(sites=tuple(unique), ids=frozenset(s.id for s in unique))

    def save(self) -> bool:
        if not self._saving.acquire(blocking=False):
            log.warning("An ongoing save of cached sites hasn't finished; skipping")
            return False
        try:
            sites = self._snap.sites
            if not sites:
                log.warning("Refusing to save an empty cached sites list")
                return False
            log.info("Saving %d cached sites", len(sites))
            self._blobs.put(self.blob_name, _SITES.dump_json(list(sites)))
            log.info("Cached sites saved")
            return True
        except PersistenceError as e:
            log.error("Cached sites failed to save: %s", e)
            return False
        finally:
            self._saving.release()

    def load(self) -> bool:
        if not self._loading.acquire(blocking=False):
            log.warning("An ongoing load of cached sites hasn't finished; skipping")
            return False
        try:
            log.info("Loading cached sites")
            raw = self._blobs.get(self.blob_name)
            if raw is None:
                log.warning("Cached sites failed to load: no blob %r", self.blob_name)
                return False
            sites = _SITES.validate_json(raw)
            self.replace(sites)
        except (PersistenceError, ValidationError) as e:
            log.error("Cached sites failed to load: %s", e)
            return False
        finally:
            self._loading.release()

        log.info("Loaded %d cached sites", len(self._snap.sites))
        return True
