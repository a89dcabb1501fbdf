from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

from domain.errors import MalformedResponseError, TransportError
from domain.models import Site
from geo.window import Window
from storage.cache_store import SiteCacheStore
from storage.project_store import ProjectStore
from sync.connectivity import ConnectivityProbe
from sync.parsing import parse_site_detail, parse_sites_payload
from sync.transport import Transport

log = logging.getLogger(__name__)

SITES_PATH = "/api/sites_for_mobile.php"
SITE_INFO_PATH = "/api/siteinfo.php"

# Body of the unfiltered "all sites" query: every filter explicitly null.
ALL_SITES_QUERY: dict[str, Any] = {
    "latitude": None,
    "longitude": None,
    "elevation": None,
    "countries": None,
    "states": None,
    "collection_date": None,
    "types": None,
    "h2": None,
    "o18": None,
    "project_ids": None,
}


@dataclass(frozen=True)
class SitesResult:
    sites: list[Site]
    # Human-readable transport failure; empty on success.
    error: str = ""
    source: str = "remote"  # "remote" | "cache"

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass(frozen=True)
class SiteResult:
    site: Site
    error: str = ""
    source: str = "remote"  # "remote" | "local"


SitesCallback = Callable[[SitesResult], None]
SiteCallback = Callable[[SiteResult], None]


def _settle(fut: Future, result: Any = None, exc: BaseException | None = None) -> bool:
    """Resolve `fut` unless it was cancelled or already resolved."""
    try:
        if not fut.set_running_or_notify_cancel():
            return False
    except RuntimeError:
        return False
    if exc is not None:
        fut.set_exception(exc)
    else:
        fut.set_result(result)
    return True


class _RequestSlot:
    """
    At most one outstanding request of a kind. Starting a new one cancels the previous one
    (last writer wins, nothing is queued).
    """

    def __init__(self, kind: str):
        self.kind = kind
        self._lock = threading.Lock()
        self._current: Future | None = None

    def begin(self) -> Future:
        fut: Future = Future()
        with self._lock:
            prev, self._current = self._current, fut
        if prev is not None and prev.cancel():
            log.debug("Cancelled superseded %s request", self.kind)
        return fut

    def finish(self, fut: Future) -> None:
        with self._lock:
            if self._current is fut:
                self._current = None

    def cancel(self) -> None:
        with self._lock:
            prev, self._current = self._current, None
        if prev is not None:
            prev.cancel()


@dataclass
class _DetailJob:
    partial: Site
    project_id: str
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _merged: bool = field(default=False, repr=False)

    def claim(self) -> bool:
        """True exactly once: whoever claims first gets to merge a site into the project."""
        with self._lock:
            if self._merged:
                return False
            self._merged = True
            return True


class SiteSynchronizer:
    """
    Fetch/cache orchestrator for sites.

    Contexts:
    - network executor: blocking transport calls
    - worker executor (single thread): parsing, window filtering, cache and project appends
    - presentation executor (single thread): every subscriber callback

    Nothing here raises to the caller for transport, parse or persistence problems. Transport
    failures arrive as `SitesResult.error`; malformed payloads are logged and deliver nothing;
    superseded requests deliver nothing and their future is cancelled.

    Each fetch returns a `Future` that resolves to the delivered result, to None when nothing
    was delivered, or is cancelled when a newer request of the same kind preempted it.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        probe: ConnectivityProbe,
        cache: SiteCacheStore,
        projects: ProjectStore,
        sites_path: str = SITES_PATH,
        site_info_path: str = SITE_INFO_PATH,
        network: Executor | None = None,
        worker: Executor | None = None,
        presentation: Executor | None = None,
        network_threads: int = 2,
    ):
        self.transport = transport
        self.probe = probe
        self.cache = cache
        self.projects = projects
        self.sites_path = sites_path
        self.site_info_path = site_info_path

        self._owned: list[Executor] = []
        self._network = network or self._own(
            ThreadPoolExecutor(max_workers=network_threads, thread_name_prefix="sync-net")
        )
        self._worker = worker or self._own(
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync-worker")
        )
        self._presentation = presentation or self._own(
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="presentation")
        )

        self._sites_slot = _RequestSlot("sites")
        self._detail_slot = _RequestSlot("site detail")
        self._closed = False

    def _own(self, ex: Executor) -> Executor:
        self._owned.append(ex)
        return ex

    # ── Public API ────────────────────────────────────────────────────

    def fetch_sites_in_window(
        self, window: Window, on_result: SitesCallback | None = None
    ) -> Future:
        fut = self._sites_slot.begin()
        if self._closed:
            fut.cancel()
            return fut
        if self.probe.is_online():
            log.info("Fetching sites from database for window %s", window.rounded_key())
            self._submit(self._network, fut, self._remote_sites, window.as_query(), on_result)
        else:
            log.info("Offline: fetching cached sites for window %s", window.rounded_key())
            self._submit(self._worker, fut, self._cached_sites, window, on_result)
        return fut

    def fetch_all_sites(self, on_result: SitesCallback | None = None) -> Future:
        fut = self._sites_slot.begin()
        if self._closed:
            fut.cancel()
            return fut
        if self.probe.is_online():
            log.info("Fetching all sites from database")
            self._submit(self._network, fut, self._remote_sites, dict(ALL_SITES_QUERY), on_result)
        else:
            log.info("Offline: returning every cached site")
            self._submit(self._worker, fut, self._cached_sites, None, on_result)
        return fut

    def fetch_site_detail(
        self,
        site: Site,
        project_id: str,
        on_result: SiteCallback | None = None,
    ) -> Future:
        """
        Fetch full attributes of `site` and merge them into the project's site list.

        Whenever the remote record can't be used (offline, transport error, bad payload,
        preempted) the caller's partial `site` is merged instead, so locally entered data
        is never lost.
        """
        job = _DetailJob(partial=site, project_id=project_id)
        fut = self._detail_slot.begin()
        fut.add_done_callback(lambda f: self._on_detail_done(f, job))
        if self._closed:
            fut.cancel()
            return fut
        if self.probe.is_online():
            log.info("Fetching site %s from database", site.id)
            self._submit(self._network, fut, self._remote_detail, job, on_result)
        else:
            self._submit(self._worker, fut, self._local_detail, job, on_result, "")
        return fut

    def close(self, *, wait: bool = True) -> None:
        self._closed = True
        self._sites_slot.cancel()
        self._detail_slot.cancel()
        for ex in self._owned:
            ex.shutdown(wait=wait, cancel_futures=True)

    # ── Task plumbing ─────────────────────────────────────────────────

    def _submit(self, executor: Executor, fut: Future, fn: Callable[..., None], *args: Any) -> None:
        def run() -> None:
            if fut.cancelled():
                return
            try:
                fn(fut, *args)
            except Exception as e:
                log.exception("Unexpected failure in %s", getattr(fn, "__name__", fn))
                _settle(fut, exc=e)

        try:
            executor.submit(run)
        except RuntimeError as e:
            # Executor already shut down.
            log.warning("Dropping %s: %s", getattr(fn, "__name__", fn), e)
            fut.cancel()

    def _deliver(self, slot: _RequestSlot, fut: Future, on_result: Callable | None, result: Any) -> None:
        def run() -> None:
            try:
                # A request preempted while its result was in flight delivers nothing.
                try:
                    if not fut.set_running_or_notify_cancel():
                        return
                except RuntimeError:
                    return
                if on_result is not None:
                    try:
                        on_result(result)
                    except Exception as e:
                        log.exception("Result callback raised")
                        fut.set_exception(e)
                        return
                fut.set_result(result)
            finally:
                slot.finish(fut)

        try:
            self._presentation.submit(run)
        except RuntimeError as e:
            log.warning("Dropping %s result: %s", slot.kind, e)
            fut.cancel()

    def _finish_empty(self, slot: _RequestSlot, fut: Future) -> None:
        _settle(fut, None)
        slot.finish(fut)

    # ── Windowed / all sites ─────────────────────────────────────────

    def _remote_sites(self, fut: Future, body: dict[str, Any], on_result: SitesCallback | None) -> None:
        try:
            raw = self.transport.post_json(self.sites_path, body)
        except TransportError as e:
            if fut.cancelled():
                return
            log.warning("Sites request failed: %s", e)
            self._deliver(self._sites_slot, fut, on_result, SitesResult(sites=[], error=str(e)))
            return
        if fut.cancelled():
            log.debug("Discarding response of a superseded sites request")
            return
        self._submit(self._worker, fut, self._receive_remote_sites, raw, on_result)

    def _receive_remote_sites(self, fut: Future, raw: bytes, on_result: SitesCallback | None) -> None:
        try:
            sites = parse_sites_payload(raw)
        except MalformedResponseError as e:
            log.error("Discarding sites response: %s", e)
            self._finish_empty(self._sites_slot, fut)
            return
        log.info("Received %d sites", len(sites))
        self.cache.merge(sites)
        self._deliver(self._sites_slot, fut, on_result, SitesResult(sites=sites))

    def _cached_sites(self, fut: Future, window: Window | None, on_result: SitesCallback | None) -> None:
        sites = list(self.cache.sites) if window is None else self.cache.within(window)
        log.info("Found %d cached sites", len(sites))
        self._deliver(self._sites_slot, fut, on_result, SitesResult(sites=sites, source="cache"))

    # ── Site detail ──────────────────────────────────────────────────

    def _remote_detail(self, fut: Future, job: _DetailJob, on_result: SiteCallback | None) -> None:
        try:
            raw = self.transport.post_json(self.site_info_path, {"site_id": job.partial.id})
        except TransportError as e:
            if fut.cancelled():
                return
            log.warning("Site detail request for %s failed: %s", job.partial.id, e)
            self._submit(self._worker, fut, self._local_detail, job, on_result, str(e))
            return
        if fut.cancelled():
            return
        self._submit(self._worker, fut, self._receive_remote_detail, job, raw, on_result)

    def _receive_remote_detail(
        self, fut: Future, job: _DetailJob, raw: bytes, on_result: SiteCallback | None
    ) -> None:
        try:
            site = parse_site_detail(raw)
        except MalformedResponseError as e:
            log.error("Discarding site detail response for %s: %s", job.partial.id, e)
            self._merge_partial(job)
            self._finish_empty(self._detail_slot, fut)
            return
        if not job.claim():
            return
        self.projects.merge_site(job.project_id, site)
        self._deliver(self._detail_slot, fut, on_result, SiteResult(site=site))

    def _local_detail(
        self, fut: Future, job: _DetailJob, on_result: SiteCallback | None, error: str
    ) -> None:
        if not self._merge_partial(job):
            return
        self._deliver(
            self._detail_slot,
            fut,
            on_result,
            SiteResult(site=job.partial, error=error, source="local"),
        )

    def _merge_partial(self, job: _DetailJob) -> bool:
        if not job.claim():
            return False
        log.info("Appending cached site %s", job.partial.id)
        self.projects.merge_site(job.project_id, job.partial)
        return True

    def _on_detail_done(self, fut: Future, job: _DetailJob) -> None:
        if not fut.cancelled():
            return
        try:
            self._worker.submit(self._merge_partial, job)
        except RuntimeError:
            # Shutting down: nothing else runs on the worker anymore, merge inline.
            self._merge_partial(job)
