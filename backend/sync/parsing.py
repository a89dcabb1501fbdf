from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from domain.errors import MalformedResponseError
from domain.models import Site

log = logging.getLogger(__name__)

# Remote column name -> Site attribute, for the optional text fields of the site detail record.
_TEXT_FIELDS = {
    "Address": "address",
    "City": "city",
    "State_or_Province": "state_or_province",
    "Country": "country",
    "Site_Comments": "comments",
}


def _load_object(raw: bytes | str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedResponseError(f"Couldn't get JSON from response: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"Couldn't parse response: expected an object, got {type(data).__name__}"
        )
    return data


def _number(rec: dict[str, Any], key: str) -> float:
    v = rec.get(key)
    # bool is an int subclass; a boolean coordinate is never valid.
    if isinstance(v, bool) or v is None:
        raise MalformedResponseError(f"Missing or invalid {key}: {v!r}")
    try:
        return float(v)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f"Missing or invalid {key}: {v!r}") from e


def _optional_number(rec: dict[str, Any], key: str) -> float | None:
    v = rec.get(key)
    if v is None or v == "" or isinstance(v, bool):
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        log.debug("Ignoring non-numeric %s: %r", key, v)
        return None


def _text(rec: dict[str, Any], key: str) -> str:
    v = rec.get(key)
    if v is None:
        return ""
    return v if isinstance(v, str) else str(v)


def _site_id(rec: dict[str, Any]) -> str:
    v = rec.get("Site_ID")
    if not isinstance(v, str) or not v:
        raise MalformedResponseError(f"Missing or invalid Site_ID: {v!r}")
    return v


def _build_site(**kwargs: Any) -> Site:
    try:
        return Site(**kwargs)
    except ValidationError as e:
        raise MalformedResponseError(f"Invalid site {kwargs.get('id')!r}: {e}") from e


def parse_site_summary(rec: Any) -> Site:
    """One record of the "sites" list: id, name and coordinate only."""
    if not isinstance(rec, dict):
        raise MalformedResponseError(f"Couldn't get site from response: {rec!r}")
    return _build_site(
        id=_site_id(rec),
        name=_text(rec, "Site_Name"),
        latitude=_number(rec, "Latitude"),
        longitude=_number(rec, "Longitude"),
    )


def parse_sites_payload(raw: bytes | str) -> list[Site]:
    """
    Parse `{"sites": [{"Site_ID", "Site_Name", "Latitude", "Longitude"}, ...]}`.

    All or nothing: one bad record rejects the whole batch.
    """
    data = _load_object(raw)
    records = data.get("sites")
    if not isinstance(records, list):
        raise MalformedResponseError("Couldn't get sites from response")
    return [parse_site_summary(rec) for rec in records]


def parse_site_detail(raw: bytes | str) -> Site:
    """
    Parse `{"status": {"Code": ...}, "site": {...}}` into a fully populated Site.

    Missing optional text fields become "", a missing elevation is unset.
    """
    data = _load_object(raw)
    status = data.get("status")
    if isinstance(status, dict):
        log.debug("Site detail status code: %s", status.get("Code", "No Code"))
    rec = data.get("site")
    if not isinstance(rec, dict):
        raise MalformedResponseError("Couldn't get site from response")

    fields: dict[str, Any] = {
        "id": _site_id(rec),
        "name": _text(rec, "Site_Name"),
        "latitude": _number(rec, "Latitude"),
        "longitude": _number(rec, "Longitude"),
        "elevation": _optional_number(rec, "Elevation_mabsl"),
    }
    for remote, attr in _TEXT_FIELDS.items():
        fields[attr] = _text(rec, remote)
    return _build_site(**fields)
