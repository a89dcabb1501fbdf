from __future__ import annotations

from typing import Any

from domain.models import Site, none_to_unset


def site_summary_record(site: Site) -> dict[str, Any]:
    return {
        "Site_ID": site.id,
        "Site_Name": site.name,
        "Latitude": site.latitude,
        "Longitude": site.longitude,
    }


def site_detail_record(site: Site) -> dict[str, Any]:
    # The legacy wire format has no null elevation; unset travels as -9999.
    return {
        **site_summary_record(site),
        "Elevation_mabsl": none_to_unset(site.elevation),
        "Address": site.address,
        "City": site.city,
        "State_or_Province": site.state_or_province,
        "Country": site.country,
        "Site_Comments": site.comments,
    }
