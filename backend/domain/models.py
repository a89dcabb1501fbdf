from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AwareDatetime, BaseModel, Field, field_validator

from domain.ids import next_free_id

# Legacy "unset" marker for numeric fields. It only exists on the wire and in old archives;
# in memory an unset value is always `None`.
UNSET = -9999.0

# Anything at or beyond this instant is the legacy "not applicable" start time.
FAR_FUTURE = datetime(4000, 1, 1, tzinfo=timezone.utc)


def unset_to_none(v: Any) -> Any:
    if v is None:
        return None
    try:
        if float(v) == UNSET:
            return None
    except (TypeError, ValueError):
        return v
    return v


def none_to_unset(v: float | None) -> float:
    return UNSET if v is None else float(v)


class SampleType(str, Enum):
    cave_drip = "Cave_drip"
    cloud_or_fog = "Cloud_or_fog"
    firn_core = "Firn_core"
    ground = "Ground"
    ice_core = "Ice_core"
    lake = "Lake"
    mine = "Mine"
    ocean = "Ocean"
    precipitation = "Precipitation"
    river_or_stream = "River_or_stream"
    snow_pit = "Snow_pit"
    soil = "Soil"
    spring = "Spring"
    sprinkler = "Sprinkler"
    stem = "Stem"
    tap = "Tap"
    vapor = "Vapor"
    well = "Well"
    unknown = "Unknown"


class SamplePhase(str, Enum):
    liquid = "Liquid"
    solid = "Solid"
    vapor = "Vapor"
    mixed = "Mixed"


class Site(BaseModel):
    """
    A sampling site.

    `id` is either assigned by the remote database or generated locally for a site the user
    created in the field. Identity is the id alone: two sites at the same coordinate are still
    different sites.
    """

    id: str
    name: str = ""
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)
    elevation: float | None = None
    address: str = ""
    city: str = ""
    state_or_province: str = ""
    country: str = ""
    comments: str = ""

    @field_validator("elevation", mode="before")
    @classmethod
    def _elevation_unset(cls, v: Any) -> Any:
        return unset_to_none(v)


class Sample(BaseModel):
    id: str
    site_id: str
    type: SampleType = SampleType.unknown
    collected_at: AwareDatetime
    # None means "not applicable" (no separate start of collection).
    started_at: AwareDatetime | None = None
    volume_ml: float | None = None
    depth_m: float | None = None
    phase: SamplePhase = SamplePhase.liquid
    comments: str = ""

    @field_validator("volume_ml", "depth_m", mode="before")
    @classmethod
    def _numeric_unset(cls, v: Any) -> Any:
        return unset_to_none(v)

    @field_validator("started_at", mode="after")
    @classmethod
    def _start_not_applicable(cls, v: datetime | None) -> datetime | None:
        if v is not None and v >= FAR_FUTURE:
            return None
        return v


class Project(BaseModel):
    id: str
    name: str
    contact_name: str = ""
    contact_email: str = ""
    citation: str = ""
    url: str = ""
    sample_id_prefix: str = ""
    sites: list[Site] = Field(default_factory=list)
    samples: list[Sample] = Field(default_factory=list)

    def _prefix(self) -> str:
        return (self.sample_id_prefix or self.id).strip()

    def new_sample_id(self) -> str:
        return next_free_id(f"{self._prefix()}-", (s.id for s in self.samples), width=4)

    def new_site_id(self) -> str:
        return next_free_id(f"{self._prefix()}-SITE-", (s.id for s in self.sites), width=3)

    def find_site(self, site_id: str) -> Site | None:
        for s in self.sites:
            if s.id == site_id:
                return s
        return None

    def merge_site(self, site: Site) -> None:
        """
        Put `site` into the project, replacing an existing site with the same id.

        The list is rebuilt and assigned in one step so readers never see a half-applied update.
        """
        replaced = False
        out: list[Site] = []
        for s in self.sites:
            if s.id == site.id:
                out.append(site)
                replaced = True
            else:
                out.append(s)
        if not replaced:
            out.append(site)
        self.sites = out

    def add_sample(self, sample: Sample) -> None:
        if any(s.id == sample.id for s in self.samples):
            raise ValueError(f"Duplicate sample id in project {self.id!r}: {sample.id}")
        self.samples = [*self.samples, sample]
