from __future__ import annotations

import json

from domain.models import Project, Site
from geo.tracker import WindowTracker
from geo.window import Coordinate
from mapview.annotations import SiteAnnotation
from mapview.session import MapSession, RegionCorrection, distance_m
from storage.blob_store import BlobStore
from storage.cache_store import SiteCacheStore
from storage.project_store import ProjectStore
from sync.connectivity import StaticProbe
from sync.synchronizer import SiteSynchronizer


class RecordingTransport:
    def __init__(self, sites):
        self.sites = sites
        self.bodies = []

    def post_json(self, path, body):
        self.bodies.append(body)
        return json.dumps(
            {
                "sites": [
                    {"Site_ID": s.id, "Site_Name": s.name, "Latitude": s.latitude, "Longitude": s.longitude}
                    for s in self.sites
                ]
            }
        ).encode()


HERE = Coordinate(lat=40.76, lon=-111.89)
REMOTE = [
    Site(id="A", name="Alpha", latitude=40.761, longitude=-111.891),
    Site(id="B", name="Beta", latitude=40.70, longitude=-111.80),
]


def _session(*, selected_site=None, project_sites=()):
    transport = RecordingTransport(REMOTE)
    blobs = BlobStore.open(":memory:")
    projects = ProjectStore(blobs)
    projects.add(Project(id="P1", name="Lakes", sites=list(project_sites)))
    sync = SiteSynchronizer(
        transport=transport,
        probe=StaticProbe(True),
        cache=SiteCacheStore(blobs),
        projects=projects,
    )
    session = MapSession(
        synchronizer=sync,
        projects=projects,
        project_id="P1",
        tracker=WindowTracker(half_width_km=10.0),
        selected_site=selected_site,
    )
    return session, sync, transport


def test_distance_between_fixes_is_geodesic():
    assert distance_m(HERE, HERE) == 0.0
    one_milli_degree = distance_m(HERE, Coordinate(lat=40.761, lon=-111.89))
    assert 100 < one_milli_degree < 120


def test_fetches_once_location_fix_is_stable():
    session, sync, transport = _session()
    try:
        assert session.on_location_update(HERE) is None
        fut = session.on_location_update(Coordinate(lat=40.76001, lon=-111.89))
        assert fut is not None
        fut.result(timeout=5)
        assert session.on_location_update(Coordinate(lat=40.9, lon=-111.5)) is None
    finally:
        sync.close()

    assert len(transport.bodies) == 1
    assert session.tracker.current is not None
    assert [a.id for a in session.annotations] == ["A", "B"]
    assert session.view_center == Coordinate(lat=40.76001, lon=-111.89)


def test_jumpy_fixes_do_not_fetch():
    session, sync, transport = _session()
    try:
        assert session.on_location_update(HERE) is None
        assert session.on_location_update(Coordinate(lat=40.77, lon=-111.89)) is None
    finally:
        sync.close()
    assert transport.bodies == []


def test_region_change_fetches_only_when_leaving_the_window():
    session, sync, transport = _session()
    try:
        session.on_region_changed(HERE, 0.01).result(timeout=5)
        assert session.on_region_changed(Coordinate(lat=40.77, lon=-111.88), 0.01) is None
        far = Coordinate(lat=41.5, lon=-111.89)
        session.on_region_changed(far, 0.01).result(timeout=5)
    finally:
        sync.close()

    assert len(transport.bodies) == 2
    assert session.tracker.current.center == far
    # Same sites came back twice; they are plotted once.
    assert [a.id for a in session.annotations] == ["A", "B"]


def test_zooming_out_too_far_snaps_back():
    site = Site(id="A", name="Alpha", latitude=40.761, longitude=-111.891)
    session, sync, transport = _session(selected_site=site)
    try:
        out = session.on_region_changed(HERE, 0.5)
    finally:
        sync.close()
    assert isinstance(out, RegionCorrection)
    assert out.center == Coordinate(lat=40.761, lon=-111.891)
    assert out.span < session.max_span_lon
    assert transport.bodies == []


def test_start_plots_saved_sites_and_fetches_around_selection():
    saved = Site(id="P1-SITE-001", name="Mine", latitude=40.75, longitude=-111.9)
    session, sync, transport = _session(selected_site=REMOTE[0], project_sites=[saved])
    try:
        session.start().result(timeout=5)
    finally:
        sync.close()
    assert [a.id for a in session.annotations] == ["P1-SITE-001", "A", "B"]
    assert session.view_center == Coordinate(lat=40.761, lon=-111.891)
    assert session.new_site_id() == "P1-SITE-002"


def test_new_site_pin_is_single_and_never_deduplicated():
    session, sync, _ = _session()
    try:
        first = session.drop_pin(HERE)
        second = session.drop_pin(Coordinate(lat=40.0, lon=-111.0))
        assert [a for a in session.annotations if a.id == ""] == [second]
        assert first not in session.annotations
        assert session.new_site_location() == Coordinate(lat=40.0, lon=-111.0)

        session.select(SiteAnnotation(id="A", name="Alpha", lat=40.761, lon=-111.891))
        assert session.new_site_pin is None
        assert session.selected_id == "A"
        assert session.new_site_location() is None
    finally:
        sync.close()


def test_map_payload_marks_selection_and_window():
    session, sync, _ = _session()
    try:
        session.on_region_changed(HERE, 0.01).result(timeout=5)
        session.select(session.annotations[1])
        payload = session.map_payload(zoom=12.0)
    finally:
        sync.close()
    sites_trace, window_trace = payload["data"]
    assert sites_trace["customdata"] == ["A", "B"]
    assert sites_trace["marker"]["size"] == [10, 14]
    assert window_trace["mode"] == "lines"
    assert payload["layout"]["mapbox"]["center"] == {"lat": 40.70, "lon": -111.80}
    assert payload["layout"]["mapbox"]["zoom"] == 12.0


def test_deselecting_the_pin_removes_it():
    session, sync, _ = _session()
    try:
        pin = session.drop_pin(HERE)
        session.select(pin)
        assert session.selected_id == ""
        assert session.new_site_pin is pin

        session.deselect(pin)
        assert session.new_site_pin is None
        assert pin not in session.annotations
        assert session.selected_location is None
    finally:
        sync.close()
