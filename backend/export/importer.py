from __future__ import annotations

import csv
import io
import logging
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from domain.models import Project, Sample, SamplePhase, SampleType, Site
from export.tables import (
    DEFAULT_DATE_FORMAT,
    DEFAULT_TIME_FORMAT,
    PROJECTS_HEADER,
    SAMPLES_HEADER,
    SITES_HEADER,
    ExportTables,
)

log = logging.getLogger(__name__)


class ImportFormatError(ValueError):
    pass


def _rows(text: str, header: str, table: str) -> list[dict[str, str]]:
    reader = csv.DictReader(io.StringIO(text))
    expected = header.split(",")
    if reader.fieldnames != expected:
        raise ImportFormatError(f"Unexpected {table} header: {reader.fieldnames}")
    return list(reader)


def _optional_float(raw: str) -> float | None:
    raw = (raw or "").strip()
    return float(raw) if raw else None


def _date_time(raw: str, tz_raw: str, *, date_format: str, time_format: str) -> datetime | None:
    raw = (raw or "").strip()
    if not raw:
        return None
    dt = datetime.strptime(raw, f"{date_format} {time_format}")
    hours = float((tz_raw or "0").strip() or 0)
    return dt.replace(tzinfo=timezone(timedelta(hours=hours)))


def parse_sites_table(text: str) -> list[Site]:
    out: list[Site] = []
    for row in _rows(text, SITES_HEADER, "sites"):
        out.append(
            Site(
                id=row["Site_ID"],
                name=row["Site_Name"],
                latitude=float(row["Latitude"]),
                longitude=float(row["Longitude"]),
                elevation=_optional_float(row["Elevation_mabsl"]),
                address=row["Address"],
                city=row["City"],
                state_or_province=row["State_or_Province"],
                country=row["Country"],
                comments=row["Site_Comments"],
            )
        )
    return out


def _enum(enum_cls, raw: str, default):
    try:
        return enum_cls(raw)
    except ValueError:
        log.warning("Unknown %s %r; using %s", enum_cls.__name__, raw, default.value)
        return default


def parse_samples_table(
    text: str,
    *,
    date_format: str = DEFAULT_DATE_FORMAT,
    time_format: str = DEFAULT_TIME_FORMAT,
) -> list[tuple[str, Sample]]:
    """(project id, sample) pairs in table order."""
    out: list[tuple[str, Sample]] = []
    for row in _rows(text, SAMPLES_HEADER, "samples"):
        collected = _date_time(
            row["Collection_Date"],
            row["Collection_Time_Zone"],
            date_format=date_format,
            time_format=time_format,
        )
        if collected is None:
            raise ImportFormatError(f"Sample {row['Sample_ID']!r} has no collection date")
        sample = Sample(
            id=row["Sample_ID"],
            site_id=row["Site_ID"],
            type=_enum(SampleType, row["Type"], SampleType.unknown),
            collected_at=collected,
            started_at=_date_time(
                row["Start_Date"],
                row["Start_Time_Zone"],
                date_format=date_format,
                time_format=time_format,
            ),
            volume_ml=_optional_float(row["Sample_Volume_ml"]),
            depth_m=_optional_float(row["Depth_meters"]),
            phase=_enum(SamplePhase, row["Phase"], SamplePhase.liquid),
            comments=row["Sample_Comments"],
        )
        out.append((row["Project_ID"], sample))
    return out


def import_tables(
    tables: ExportTables,
    *,
    date_format: str = DEFAULT_DATE_FORMAT,
    time_format: str = DEFAULT_TIME_FORMAT,
) -> list[Project]:
    """
    Rebuild projects from the three exported tables.

    The sites table carries no project column: a site goes to every project whose samples
    reference it, or to the only project when there is exactly one. Other sites are dropped
    with a warning.
    """
    try:
        projects: dict[str, Project] = {}
        for row in _rows(tables.projects, PROJECTS_HEADER, "projects"):
            projects[row["Project_ID"]] = Project(
                id=row["Project_ID"],
                name=row["Project_Name"],
                contact_name=row["Contact_Name"],
                contact_email=row["Contact_Email"],
                citation=row["Citation"],
                url=row["URL"],
            )
        sites = parse_sites_table(tables.sites)
        samples = parse_samples_table(
            tables.samples, date_format=date_format, time_format=time_format
        )
    except (KeyError, ValueError, ValidationError) as e:
        raise ImportFormatError(f"Import failed: {e}") from e

    site_projects: dict[str, set[str]] = {}
    for project_id, sample in samples:
        project = projects.get(project_id)
        if project is None:
            raise ImportFormatError(f"Sample {sample.id!r} references unknown project {project_id!r}")
        project.add_sample(sample)
        site_projects.setdefault(sample.site_id, set()).add(project_id)

    only = next(iter(projects.values())) if len(projects) == 1 else None
    for site in sites:
        owners = site_projects.get(site.id)
        if owners:
            for pid in sorted(owners):
                projects[pid].merge_site(site)
        elif only is not None:
            only.merge_site(site)
        else:
            log.warning("Dropping site %s: no sample ties it to a project", site.id)
    return list(projects.values())
