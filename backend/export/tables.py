from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from domain.models import Project, Sample, Site

PROJECTS_HEADER = "Project_ID,Contact_Name,Contact_Email,Citation,URL,Project_Name,Proprietary"
SITES_HEADER = (
    "Site_ID,Site_Name,Latitude,Longitude,Elevation_mabsl,Address,City,"
    "State_or_Province,Country,Site_Comments"
)
SAMPLES_HEADER = (
    "Sample_ID,Sample_ID_2,Site_ID,Type,Start_Date,Start_Time_Zone,Collection_Date,"
    "Collection_Time_Zone,Sample_Volume_ml,Collector_type,Phase,Depth_meters,Sample_Source,"
    "Sample_Ignore,Sample_Comments,Project_ID"
)

DEFAULT_DATE_FORMAT = "%m/%d/%y"
DEFAULT_TIME_FORMAT = "%I:%M %p"

_NEEDS_QUOTES = (",", '"', "\n", "\r")


@dataclass(frozen=True)
class ExportTables:
    projects: str
    sites: str
    samples: str


def quoted(text: str | None) -> str:
    """Text field: always wrapped in quotes, embedded quotes doubled (RFC 4180)."""
    return '"' + (text or "").replace('"', '""') + '"'


def plain(text: str) -> str:
    """Non-text field: only quoted when it would otherwise break the row."""
    if any(c in text for c in _NEEDS_QUOTES):
        return quoted(text)
    return text


def number(v: float | None) -> str:
    # Unset numerics are empty, never the legacy -9999.
    return "" if v is None else repr(float(v))


def utc_offset_hours(dt: datetime) -> str:
    off = dt.utcoffset()
    if off is None:
        return ""
    hours = off.total_seconds() / 3600.0
    return str(int(hours)) if hours.is_integer() else f"{hours:g}"


def date_time_fields(
    dt: datetime | None,
    *,
    date_format: str = DEFAULT_DATE_FORMAT,
    time_format: str = DEFAULT_TIME_FORMAT,
) -> tuple[str, str]:
    """(`"<short date> <short time>"`, UTC offset in hours); two empty fields when unset."""
    if dt is None:
        return "", ""
    text = f"{dt.strftime(date_format)} {dt.strftime(time_format)}"
    return plain(text), utc_offset_hours(dt)


def project_row(project: Project) -> str:
    return ",".join(
        [
            quoted(project.id),
            quoted(project.contact_name),
            quoted(project.contact_email),
            quoted(project.citation),
            quoted(project.url),
            quoted(project.name),
            "",
        ]
    )


def site_row(site: Site) -> str:
    return ",".join(
        [
            quoted(site.id),
            quoted(site.name),
            number(site.latitude),
            number(site.longitude),
            number(site.elevation),
            quoted(site.address),
            quoted(site.city),
            quoted(site.state_or_province),
            quoted(site.country),
            quoted(site.comments),
        ]
    )


def sample_row(
    sample: Sample,
    project: Project,
    *,
    date_format: str = DEFAULT_DATE_FORMAT,
    time_format: str = DEFAULT_TIME_FORMAT,
) -> str:
    start, start_tz = date_time_fields(
        sample.started_at, date_format=date_format, time_format=time_format
    )
    collected, collected_tz = date_time_fields(
        sample.collected_at, date_format=date_format, time_format=time_format
    )
    return ",".join(
        [
            quoted(sample.id),
            "",  # Sample_ID_2
            quoted(sample.site_id),
            plain(sample.type.value),
            start,
            start_tz,
            collected,
            collected_tz,
            number(sample.volume_ml),
            "",  # Collector_type
            plain(sample.phase.value),
            number(sample.depth_m),
            "",  # Sample_Source
            "",  # Sample_Ignore
            quoted(sample.comments),
            quoted(project.id),
        ]
    )


def export_projects(
    projects: Iterable[Project],
    *,
    date_format: str = DEFAULT_DATE_FORMAT,
    time_format: str = DEFAULT_TIME_FORMAT,
) -> ExportTables:
    """
    Render projects into the projects/sites/samples tables.

    Each table is its header line followed by one line per record, every line
    newline-terminated. Sites and samples follow the order of their projects.
    """
    p_lines = [PROJECTS_HEADER]
    s_lines = [SITES_HEADER]
    m_lines = [SAMPLES_HEADER]
    for project in projects:
        p_lines.append(project_row(project))
        s_lines.extend(site_row(site) for site in project.sites)
        m_lines.extend(
            sample_row(sample, project, date_format=date_format, time_format=time_format)
            for sample in project.samples
        )
    return ExportTables(
        projects="".join(f"{line}\n" for line in p_lines),
        sites="".join(f"{line}\n" for line in s_lines),
        samples="".join(f"{line}\n" for line in m_lines),
    )
