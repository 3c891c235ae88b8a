"""Data models for URL ingestion."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..utils import utc_iso as _utc_iso


class SiteType(str, Enum):
    """Detected host type from URL."""
    GOOGLE_DRIVE = "google_drive"
    DROPBOX = "dropbox"
    YOUTUBE = "youtube"
    TWITCH = "twitch"
    GENERIC = "generic"


# Hosts where a direct byte stream is rarely available and yt-dlp does the work
STREAMING_SITES = frozenset({SiteType.YOUTUBE, SiteType.TWITCH})


class Method(str, Enum):
    """Download method used for an ingestion attempt."""
    STREAM = "stream"            # Direct byte-streamed HTTP download
    HEAVYWEIGHT = "heavyweight"  # ffmpeg remux / yt-dlp subprocess
    FAILED = "failed"

    @property
    def other(self) -> "Method":
        if self is Method.STREAM:
            return Method.HEAVYWEIGHT
        if self is Method.HEAVYWEIGHT:
            return Method.STREAM
        raise ValueError("FAILED has no alternate method")


class IngestStatus(str, Enum):
    """Terminal status of an ingestion attempt."""
    SUCCEEDED = "succeeded"
    IN_PROGRESS = "in_progress"  # Lock held by another attempt, not attempted
    DENIED = "denied"            # Not enough disk headroom, not attempted
    EXHAUSTED = "exhausted"      # Attempted with both methods, both failed


class AlertLevel(str, Enum):
    """Disk usage alert level, ordered by severity."""
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    AlertLevel.NONE: 0,
    AlertLevel.WARNING: 1,
    AlertLevel.CRITICAL: 2,
    AlertLevel.EMERGENCY: 3,
}


@dataclass(frozen=True)
class ResourceRef:
    """A remote file identified by a pattern matcher."""

    site: SiteType
    identifier: str
    matcher: str  # name of the pattern that matched


@dataclass
class LockEntry:
    key: str
    held_since: float       # clock() value at acquisition
    auto_release_at: float  # clock() value at which the entry expires
    acquired_at: str = field(default_factory=_utc_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "held_since": self.held_since,
            "auto_release_at": self.auto_release_at,
            "acquired_at": self.acquired_at,
        }


@dataclass
class SizeEstimate:
    """Result of probing a URL for size and content type.

    ``size_mb == 0`` means unknown, never an empty file.
    """

    size_mb: float
    probed_url: str
    content_type: Optional[str] = None
    is_large: bool = True
    needs_heavyweight: bool = True
    conclusive: bool = False

    @property
    def is_unknown(self) -> bool:
        return self.size_mb <= 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "size_mb": round(self.size_mb, 3),
            "probed_url": self.probed_url,
            "content_type": self.content_type,
            "is_large": self.is_large,
            "needs_heavyweight": self.needs_heavyweight,
            "conclusive": self.conclusive,
        }


@dataclass(frozen=True)
class DiskSnapshot:
    total_mb: float
    used_mb: float
    free_mb: float
    usage_percent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_mb": self.total_mb,
            "used_mb": self.used_mb,
            "free_mb": self.free_mb,
            "usage_percent": self.usage_percent,
        }


@dataclass
class DiskAlert:
    level: AlertLevel
    message: str
    free_mb: float = 0.0
    usage_percent: float = 0.0
    recommendation: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "message": self.message,
            "free_mb": self.free_mb,
            "usage_percent": self.usage_percent,
            "recommendation": self.recommendation,
        }


@dataclass
class DiskStatus:
    """Health snapshot for an external monitoring endpoint."""

    status: str  # healthy|warning|critical|emergency
    details: Optional[DiskSnapshot]
    alert: Optional[DiskAlert] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "details": self.details.to_dict() if self.details else None,
            "alert": self.alert.to_dict() if self.alert else None,
        }


@dataclass
class SafetyDecision:
    safe: bool
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"safe": self.safe, "reason": self.reason}


@dataclass
class CleanupReport:
    files_removed: int = 0
    space_freed_mb: float = 0.0
    cleaned: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "cleaned": self.cleaned,
            "files_removed": self.files_removed,
            "space_freed_mb": round(self.space_freed_mb, 3),
        }


@dataclass
class TransferOutcome:
    """Result of one download method."""

    success: bool
    method: Method
    size_bytes: Optional[int] = None
    error: Optional[str] = None


@dataclass
class MethodRecommendation:
    method: Method
    reason: str
    estimated_size: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method.value,
            "reason": self.reason,
            "estimated_size": self.estimated_size,
        }


@dataclass
class IngestionResult:
    """Terminal value of one ingestion attempt."""

    success: bool
    status: IngestStatus
    method_used: Method = Method.FAILED
    file_path: Optional[Path] = None
    file_size_bytes: Optional[int] = None
    error: Optional[str] = None
    errors: list[str] = field(default_factory=list)
    size_mb: float = 0.0
    resource_key: str = ""
    created_at: str = field(default_factory=_utc_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "method_used": self.method_used.value,
            "file_path": str(self.file_path) if self.file_path else None,
            "file_size_bytes": self.file_size_bytes,
            "error": self.error,
            "errors": list(self.errors),
            "size_mb": round(self.size_mb, 3),
            "resource_key": self.resource_key,
            "created_at": self.created_at,
        }
