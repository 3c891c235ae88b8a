"""Configuration for the ingestion pipeline.

Defaults live in ``default_config()``; a YAML file can override any subset of
keys and a handful of ``MI_*`` environment variables override both.
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def default_scratch_dir() -> Path:
    """Get default scratch directory for downloaded artifacts."""
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA")
        if base:
            return Path(base) / "MediaIngest" / "scratch"
        return Path.home() / "AppData" / "Local" / "MediaIngest" / "scratch"
    return Path.home() / ".mediaingest" / "scratch"


def default_config() -> Dict[str, Any]:
    return {
        "scratch_dir": None,  # None -> default_scratch_dir()
        "lock": {
            "ttl_seconds": 30 * 60,
        },
        "disk": {
            "volume": None,  # None -> the scratch directory's volume
            "warning_percent": 80.0,
            "critical_percent": 90.0,
            "emergency_percent": 95.0,
            "warning_free_mb": 500.0,
            "critical_free_mb": 200.0,
            "emergency_free_mb": 100.0,
            "safety_margin_mb": 500.0,
            "headroom_factor": 2.0,
            "monitor_interval_minutes": 10.0,
            "cleanup_min_age_minutes": 60.0,
        },
        "probe": {
            "timeout_seconds": 15.0,
            "large_mb": 50.0,
            "heavyweight_mb": 100.0,
            "unknown_size_mb": 100.0,  # admission size assumed when the probe is inconclusive
        },
        "stream": {
            "user_agent": DEFAULT_USER_AGENT,
            "connect_timeout_seconds": 60.0,
            "max_redirects": 10,
            "min_file_bytes": 1024 * 1024,
            "chunk_size": 32 * 1024,
            "progress_step_percent": 10,
            "size_tolerance_percent": 0.1,
            "max_interstitial_bytes": 2 * 1024 * 1024,
        },
        "heavyweight": {
            "ffmpeg_timeout_seconds": 180.0,
            "ytdlp_format": "bestvideo[ext=mp4]+bestaudio[ext=m4a]/bestvideo+bestaudio/best",
        },
    }


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def _pick(cls: type, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


@dataclass
class LockSettings:
    ttl_seconds: float = 30 * 60

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockSettings":
        return cls(**_pick(cls, data))


@dataclass
class DiskSettings:
    volume: Optional[str] = None
    warning_percent: float = 80.0
    critical_percent: float = 90.0
    emergency_percent: float = 95.0
    warning_free_mb: float = 500.0
    critical_free_mb: float = 200.0
    emergency_free_mb: float = 100.0
    safety_margin_mb: float = 500.0
    headroom_factor: float = 2.0
    monitor_interval_minutes: float = 10.0
    cleanup_min_age_minutes: float = 60.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiskSettings":
        return cls(**_pick(cls, data))


@dataclass
class ProbeSettings:
    timeout_seconds: float = 15.0
    large_mb: float = 50.0
    heavyweight_mb: float = 100.0
    unknown_size_mb: float = 100.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProbeSettings":
        return cls(**_pick(cls, data))


@dataclass
class StreamSettings:
    user_agent: str = DEFAULT_USER_AGENT
    connect_timeout_seconds: float = 60.0
    max_redirects: int = 10
    min_file_bytes: int = 1024 * 1024
    chunk_size: int = 32 * 1024
    progress_step_percent: int = 10
    size_tolerance_percent: float = 0.1
    max_interstitial_bytes: int = 2 * 1024 * 1024

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StreamSettings":
        return cls(**_pick(cls, data))


@dataclass
class HeavyweightSettings:
    ffmpeg_timeout_seconds: float = 180.0
    ytdlp_format: str = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/bestvideo+bestaudio/best"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeavyweightSettings":
        return cls(**_pick(cls, data))


@dataclass
class IngestConfig:
    """Resolved configuration for one process."""

    scratch_dir: Path = field(default_factory=default_scratch_dir)
    lock: LockSettings = field(default_factory=LockSettings)
    disk: DiskSettings = field(default_factory=DiskSettings)
    probe: ProbeSettings = field(default_factory=ProbeSettings)
    stream: StreamSettings = field(default_factory=StreamSettings)
    heavyweight: HeavyweightSettings = field(default_factory=HeavyweightSettings)

    @property
    def disk_volume(self) -> Path:
        return Path(self.disk.volume) if self.disk.volume else self.scratch_dir

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IngestConfig":
        scratch = data.get("scratch_dir")
        return cls(
            scratch_dir=Path(scratch).expanduser() if scratch else default_scratch_dir(),
            lock=LockSettings.from_dict(data.get("lock", {})),
            disk=DiskSettings.from_dict(data.get("disk", {})),
            probe=ProbeSettings.from_dict(data.get("probe", {})),
            stream=StreamSettings.from_dict(data.get("stream", {})),
            heavyweight=HeavyweightSettings.from_dict(data.get("heavyweight", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scratch_dir": str(self.scratch_dir),
            "lock": vars(self.lock).copy(),
            "disk": vars(self.disk).copy(),
            "probe": vars(self.probe).copy(),
            "stream": vars(self.stream).copy(),
            "heavyweight": vars(self.heavyweight).copy(),
        }


def _apply_env(data: Dict[str, Any]) -> Dict[str, Any]:
    scratch = os.getenv("MI_SCRATCH_DIR", "").strip()
    if scratch:
        data["scratch_dir"] = scratch
    volume = os.getenv("MI_DISK_VOLUME", "").strip()
    if volume:
        data["disk"]["volume"] = volume
    ttl = os.getenv("MI_LOCK_TTL_SECONDS", "").strip()
    if ttl:
        try:
            data["lock"]["ttl_seconds"] = float(ttl)
        except ValueError:
            raise ValueError(f"MI_LOCK_TTL_SECONDS must be a number, got {ttl!r}")
    interval = os.getenv("MI_MONITOR_INTERVAL_MINUTES", "").strip()
    if interval:
        try:
            data["disk"]["monitor_interval_minutes"] = float(interval)
        except ValueError:
            raise ValueError(f"MI_MONITOR_INTERVAL_MINUTES must be a number, got {interval!r}")
    return data


def load_config(config_path: Optional[Path] = None) -> IngestConfig:
    """Load configuration from an optional YAML file plus MI_* env overrides."""
    data = default_config()

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config not found: {config_path}")

        loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError("Config YAML must be a mapping")
        data = _deep_merge(data, loaded)

    return IngestConfig.from_dict(_apply_env(data))
