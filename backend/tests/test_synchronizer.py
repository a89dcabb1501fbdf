from __future__ import annotations

import json
import threading
from concurrent.futures import CancelledError

import pytest

from domain.errors import TransportError
from domain.models import Project, Site
from geo.tracker import compute_window
from geo.window import Coordinate
from storage.blob_store import BlobStore
from storage.cache_store import SiteCacheStore
from storage.project_store import ProjectStore
from sync.connectivity import StaticProbe
from sync.synchronizer import ALL_SITES_QUERY, SITE_INFO_PATH, SITES_PATH, SiteSynchronizer


class FakeTransport:
    def __init__(self, handler):
        self.handler = handler
        self.calls: list[tuple[str, dict]] = []
        self._lock = threading.Lock()

    def post_json(self, path, body):
        with self._lock:
            self.calls.append((path, body))
        out = self.handler(path, body)
        if isinstance(out, Exception):
            raise out
        return out


def _sites_payload(*sites: tuple[str, float, float]) -> bytes:
    return json.dumps(
        {
            "sites": [
                {"Site_ID": sid, "Site_Name": f"name {sid}", "Latitude": lat, "Longitude": lon}
                for sid, lat, lon in sites
            ]
        }
    ).encode()


def _make(handler=None, *, online=True):
    transport = FakeTransport(handler or (lambda path, body: _sites_payload()))
    blobs = BlobStore.open(":memory:")
    cache = SiteCacheStore(blobs)
    projects = ProjectStore(blobs)
    projects.add(Project(id="P1", name="Lakes"))
    sync = SiteSynchronizer(
        transport=transport,
        probe=StaticProbe(online),
        cache=cache,
        projects=projects,
    )
    return sync, transport, cache, projects


WINDOW = compute_window(Coordinate(lat=40.76, lon=-111.89), 10.0)


def test_online_fetch_posts_window_and_delivers_sites():
    sync, transport, cache, _ = _make(lambda p, b: _sites_payload(("A", 40.76, -111.89)))
    got = []
    try:
        res = sync.fetch_sites_in_window(WINDOW, got.append).result(timeout=5)
    finally:
        sync.close()
    assert transport.calls == [
        (
            SITES_PATH,
            {
                "latitude": {"Min": WINDOW.min.lat, "Max": WINDOW.max.lat},
                "longitude": {"Min": WINDOW.min.lon, "Max": WINDOW.max.lon},
            },
        )
    ]
    assert got == [res]
    assert res.ok and res.source == "remote"
    assert [s.id for s in res.sites] == ["A"]
    # Remote batches land in the cache.
    assert "A" in cache


def test_callbacks_run_on_presentation_thread():
    sync, *_ = _make(lambda p, b: _sites_payload(("A", 40.76, -111.89)))
    names = []
    try:
        sync.fetch_sites_in_window(
            WINDOW, lambda r: names.append(threading.current_thread().name)
        ).result(timeout=5)
    finally:
        sync.close()
    assert len(names) == 1
    assert names[0].startswith("presentation")


def test_offline_fetch_uses_cache_with_inclusive_bounds_and_no_transport():
    sync, transport, cache, _ = _make(online=False)
    cache.merge(
        [
            Site(id="edge", latitude=WINDOW.max.lat, longitude=WINDOW.min.lon),
            Site(id="inside", latitude=40.76, longitude=-111.89),
            Site(id="far", latitude=10.0, longitude=10.0),
        ]
    )
    try:
        res = sync.fetch_sites_in_window(WINDOW).result(timeout=5)
    finally:
        sync.close()
    assert transport.calls == []
    assert res.source == "cache"
    assert [s.id for s in res.sites] == ["edge", "inside"]


def test_connectivity_is_probed_once_per_fetch():
    sync, _, _, _ = _make()
    try:
        sync.fetch_sites_in_window(WINDOW).result(timeout=5)
        sync.fetch_all_sites().result(timeout=5)
    finally:
        sync.close()
    assert sync.probe.calls == 2


def test_newer_request_preempts_older_one():
    window_b = compute_window(Coordinate(lat=41.5, lon=-112.0), 10.0)
    release_a = threading.Event()

    def handler(path, body):
        if body["latitude"]["Min"] == WINDOW.min.lat:
            release_a.wait(timeout=5)
            return _sites_payload(("from-a", 40.76, -111.89))
        return _sites_payload(("from-b", 41.5, -112.0))

    sync, _, cache, _ = _make(handler)
    got = []
    try:
        fut_a = sync.fetch_sites_in_window(WINDOW, got.append)
        fut_b = sync.fetch_sites_in_window(window_b, got.append)
        res_b = fut_b.result(timeout=5)
        release_a.set()
    finally:
        sync.close(wait=True)

    assert fut_a.cancelled()
    with pytest.raises(CancelledError):
        fut_a.result(timeout=0)
    assert got == [res_b]
    assert [s.id for s in res_b.sites] == ["from-b"]
    assert "from-a" not in cache


def test_transport_error_is_reported_not_raised():
    sync, *_ = _make(lambda p, b: TransportError("ConnectError: boom"))
    got = []
    try:
        res = sync.fetch_sites_in_window(WINDOW, got.append).result(timeout=5)
    finally:
        sync.close()
    assert got == [res]
    assert res.sites == []
    assert "boom" in res.error


def test_malformed_response_delivers_nothing():
    sync, _, cache, _ = _make(lambda p, b: b'{"sites": [{"Site_ID": "A"}]}')
    got = []
    try:
        res = sync.fetch_sites_in_window(WINDOW, got.append).result(timeout=5)
    finally:
        sync.close()
    assert res is None
    assert got == []
    assert len(cache) == 0


def test_fetch_all_sites_sends_null_filters():
    sync, transport, *_ = _make(lambda p, b: _sites_payload(("A", 1.0, 2.0), ("B", 3.0, 4.0)))
    try:
        res = sync.fetch_all_sites().result(timeout=5)
    finally:
        sync.close()
    assert transport.calls == [(SITES_PATH, ALL_SITES_QUERY)]
    assert all(v is None for v in transport.calls[0][1].values())
    assert [s.id for s in res.sites] == ["A", "B"]


def _detail_payload(site_id: str, **extra) -> bytes:
    rec = {"Site_ID": site_id, "Site_Name": "Remote name", "Latitude": 40.0, "Longitude": -111.0}
    rec.update(extra)
    return json.dumps({"status": {"Code": 200}, "site": rec}).encode()


def test_site_detail_online_merges_full_site():
    sync, transport, _, projects = _make(
        lambda p, b: _detail_payload(b["site_id"], City="Provo", Elevation_mabsl=1400)
    )
    partial = Site(id="S1", name="typed in field", latitude=40.0, longitude=-111.0)
    got = []
    try:
        res = sync.fetch_site_detail(partial, "P1", got.append).result(timeout=5)
    finally:
        sync.close()
    assert transport.calls == [(SITE_INFO_PATH, {"site_id": "S1"})]
    assert got == [res]
    assert res.source == "remote"
    [site] = projects.get("P1").sites
    assert site.city == "Provo"
    assert site.elevation == 1400.0


def test_site_detail_offline_appends_partial_site():
    sync, transport, _, projects = _make(online=False)
    partial = Site(id="S1", name="typed in field", latitude=40.0, longitude=-111.0)
    try:
        res = sync.fetch_site_detail(partial, "P1").result(timeout=5)
    finally:
        sync.close()
    assert transport.calls == []
    assert res.source == "local"
    assert projects.get("P1").sites == [partial]


def test_site_detail_failures_fall_back_to_partial_site():
    partial = Site(id="S1", name="typed in field", latitude=40.0, longitude=-111.0)

    sync, _, _, projects = _make(lambda p, b: TransportError("timeout"))
    try:
        res = sync.fetch_site_detail(partial, "P1").result(timeout=5)
    finally:
        sync.close()
    assert res.error == "timeout"
    assert projects.get("P1").sites == [partial]

    got = []
    sync, _, _, projects = _make(lambda p, b: b'{"status": {"Code": 404}}')
    try:
        res = sync.fetch_site_detail(partial, "P1", got.append).result(timeout=5)
    finally:
        sync.close()
    assert res is None
    assert got == []
    assert projects.get("P1").sites == [partial]


def test_preempted_site_detail_keeps_partial_site_without_callback():
    release_a = threading.Event()

    def handler(path, body):
        if body["site_id"] == "A":
            release_a.wait(timeout=5)
        return _detail_payload(body["site_id"], City="Remote")

    sync, _, _, projects = _make(handler)
    a = Site(id="A", name="local A", latitude=40.0, longitude=-111.0)
    b = Site(id="B", name="local B", latitude=40.0, longitude=-111.0)
    got = []
    try:
        fut_a = sync.fetch_site_detail(a, "P1", got.append)
        fut_b = sync.fetch_site_detail(b, "P1", got.append)
        res_b = fut_b.result(timeout=5)
        release_a.set()
    finally:
        sync.close(wait=True)

    assert fut_a.cancelled()
    assert got == [res_b]
    by_id = {s.id: s for s in projects.get("P1").sites}
    assert by_id["A"] == a
    assert by_id["B"].city == "Remote"


def test_fetch_after_close_is_cancelled():
    sync, transport, *_ = _make()
    sync.close()
    fut = sync.fetch_sites_in_window(WINDOW)
    assert fut.cancelled()
    assert transport.calls == []
