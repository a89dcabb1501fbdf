from __future__ import annotations

import csv
import io
from datetime import datetime, timedelta, timezone

import pytest

from domain.models import Project, Sample, SamplePhase, SampleType, Site
from export.importer import ImportFormatError, import_tables
from export.tables import (
    PROJECTS_HEADER,
    SAMPLES_HEADER,
    SITES_HEADER,
    ExportTables,
    date_time_fields,
    export_projects,
    quoted,
)

MDT = timezone(timedelta(hours=-6))


def _project() -> Project:
    return Project(
        id="P1",
        name="Great Salt Lake",
        contact_name="Jane Doe",
        contact_email="jane@example.org",
        sites=[
            Site(id="S1", name="North arm", latitude=41.5, longitude=-112.5, elevation=-9999),
            Site(id="S2", name="Spring", latitude=40.25, longitude=-111.75, elevation=1402.5),
        ],
        samples=[
            Sample(
                id="P1-0001",
                site_id="S1",
                type=SampleType.lake,
                collected_at=datetime(2024, 6, 1, 14, 30, tzinfo=MDT),
                started_at=datetime(4001, 1, 1, tzinfo=timezone.utc),
                volume_ml=-9999,
                depth_m=None,
                phase=SamplePhase.liquid,
                comments='said "hi", then left',
            )
        ],
    )


def _rows(text: str) -> list[list[str]]:
    return list(csv.reader(io.StringIO(text)))


def test_tables_start_with_exact_headers_and_end_with_newline():
    tables = export_projects([])
    assert tables.projects == PROJECTS_HEADER + "\n"
    assert tables.sites == SITES_HEADER + "\n"
    assert tables.samples == SAMPLES_HEADER + "\n"
    assert SAMPLES_HEADER.split(",")[-1] == "Project_ID"


def test_unset_values_export_as_empty_fields():
    tables = export_projects([_project()])
    assert tables.samples.endswith("\n")

    header, row = _rows(tables.samples)
    rec = dict(zip(header, row))
    assert rec["Sample_ID"] == "P1-0001"
    assert rec["Type"] == "Lake"
    assert rec["Start_Date"] == ""
    assert rec["Start_Time_Zone"] == ""
    assert rec["Collection_Date"] == "06/01/24 02:30 PM"
    assert rec["Collection_Time_Zone"] == "-6"
    assert rec["Sample_Volume_ml"] == ""
    assert rec["Depth_meters"] == ""
    assert rec["Phase"] == "Liquid"
    assert rec["Project_ID"] == "P1"
    assert "-9999" not in tables.samples

    header, s1, s2 = _rows(tables.sites)
    assert dict(zip(header, s1))["Elevation_mabsl"] == ""
    assert dict(zip(header, s2))["Elevation_mabsl"] == "1402.5"
    assert dict(zip(header, s2))["Latitude"] == "40.25"


def test_text_fields_double_embedded_quotes():
    assert quoted('a "b", c') == '"a ""b"", c"'
    assert quoted(None) == '""'

    tables = export_projects([_project()])
    assert '"said ""hi"", then left"' in tables.samples
    header, row = _rows(tables.samples)
    assert dict(zip(header, row))["Sample_Comments"] == 'said "hi", then left'


def test_project_row_fields():
    header, row = _rows(export_projects([_project()]).projects)
    rec = dict(zip(header, row))
    assert rec["Project_ID"] == "P1"
    assert rec["Project_Name"] == "Great Salt Lake"
    assert rec["Contact_Email"] == "jane@example.org"
    assert rec["Proprietary"] == ""


def test_half_hour_offsets_render_as_decimal_hours():
    dt = datetime(2024, 1, 2, 9, 5, tzinfo=timezone(timedelta(hours=5, minutes=30)))
    assert date_time_fields(dt) == ("01/02/24 09:05 AM", "5.5")
    assert date_time_fields(None) == ("", "")


def test_import_restores_exported_projects():
    original = _project()
    [restored] = import_tables(export_projects([original]))

    assert restored.id == "P1"
    assert restored.contact_name == "Jane Doe"
    assert [s.id for s in restored.sites] == ["S1", "S2"]
    assert restored.find_site("S1").elevation is None
    assert restored.find_site("S2").elevation == 1402.5

    [sample] = restored.samples
    assert sample.collected_at == original.samples[0].collected_at
    assert sample.started_at is None
    assert sample.volume_ml is None
    assert sample.comments == 'said "hi", then left'


def test_import_rejects_foreign_tables():
    bad = ExportTables(projects="id,name\n", sites=SITES_HEADER + "\n", samples=SAMPLES_HEADER + "\n")
    with pytest.raises(ImportFormatError):
        import_tables(bad)
