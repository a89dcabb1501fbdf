from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


def _repo_root() -> Path:
    # .../backend/settings/config.py -> repo root is 2 levels up
    return Path(__file__).resolve().parents[2]


class ApiSettings(BaseModel):
    baseUrl: str = "https://wateriso.utah.edu"
    sitesPath: str = "/api/sites_for_mobile.php"
    siteInfoPath: str = "/api/siteinfo.php"
    timeoutS: float = Field(default=20.0, gt=0.0)


class ReachabilitySettings(BaseModel):
    host: str = "wateriso.utah.edu"
    port: int = Field(default=443, ge=1, le=65535)
    timeoutS: float = Field(default=1.5, gt=0.0)
    # "auto" probes the host; "online"/"offline" pin the answer (field work without signal, tests).
    mode: str = "auto"


class WindowSettings(BaseModel):
    halfWidthKm: float = Field(default=10.0, gt=0.0)
    minCos: float = Field(default=0.01, gt=0.0, le=1.0)
    # Consecutive location fixes closer than this count as a stable fix.
    locationToleranceM: float = Field(default=5.0, ge=0.0)
    # Widest map span (longitude degrees) before the session zooms back in.
    maxSpanLon: float = Field(default=0.05, gt=0.0)


class ExportSettings(BaseModel):
    # Short date/time style used for the Start_Date / Collection_Date columns.
    dateFormat: str = "%m/%d/%y"
    timeFormat: str = "%I:%M %p"


class SyncSettings(BaseModel):
    dataPath: str = "data/fieldsync/fieldsync.duckdb"
    networkThreads: int = Field(default=2, ge=1, le=16)
    logLevel: str = "INFO"
    api: ApiSettings = Field(default_factory=ApiSettings)
    reachability: ReachabilitySettings = Field(default_factory=ReachabilitySettings)
    window: WindowSettings = Field(default_factory=WindowSettings)
    export: ExportSettings = Field(default_factory=ExportSettings)

    def data_file(self) -> Path:
        p = Path(self.dataPath)
        return p if p.is_absolute() else _repo_root() / p


def _load_yaml(path: Path) -> dict[str, Any]:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid settings yaml root: {path}")
    return data


def _env_overrides() -> dict[str, Any]:
    out: dict[str, Any] = {}
    if v := (os.getenv("SITESYNC_DATA_PATH") or "").strip():
        out["dataPath"] = v
    if v := (os.getenv("SITESYNC_LOG_LEVEL") or "").strip():
        out["logLevel"] = v
    if v := (os.getenv("SITESYNC_API_BASE_URL") or "").strip():
        out.setdefault("api", {})["baseUrl"] = v
    if v := (os.getenv("SITESYNC_CONNECTIVITY") or "").strip().lower():
        out.setdefault("reachability", {})["mode"] = v
    if v := (os.getenv("SITESYNC_WINDOW_KM") or "").strip():
        out.setdefault("window", {})["halfWidthKm"] = v
    return out


def _deep_merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def settings_path() -> Path | None:
    raw = (os.getenv("SITESYNC_CONFIG") or "").strip()
    if raw:
        return Path(raw)
    default = _repo_root() / "fieldsync.yaml"
    return default if default.exists() else None


def load_settings(path: Path | None = None) -> SyncSettings:
    """
    Settings from (lowest to highest priority): defaults, YAML file, SITESYNC_* env vars.
    """
    data: dict[str, Any] = {}
    p = path or settings_path()
    if p is not None:
        data = _load_yaml(p)
    data = _deep_merge(data, _env_overrides())
    return SyncSettings.model_validate(data)


@lru_cache(maxsize=1)
def get_settings() -> SyncSettings:
    return load_settings()


def clear_settings_cache() -> None:
    """
    Clear the cached settings.

    Useful in tests and during development: env/YAML changes are otherwise not picked up until
    the process restarts.
    """
    get_settings.cache_clear()
