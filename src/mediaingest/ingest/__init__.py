"""Ingest module for pulling remote media into local scratch storage.

This module provides guarded URL ingestion with:
- Per-resource locking (one attempt per file at a time)
- Size probing over host-specific candidate URLs
- Disk admission control and a background usage monitor
- Direct streaming or heavyweight (ffmpeg / yt-dlp) download with one fallback
"""

from .disk import DfFilesystemStats, DiskGuard, classify_usage, parse_df_output
from .errors import (
    AdmissionDenied,
    AllMethodsExhausted,
    DiskIntrospectionUnavailable,
    IngestError,
    LockContention,
    ProbeInconclusive,
    TransferFailed,
)
from .heavyweight import FfmpegRemuxDownloader, HeavyweightDownloader, YtDlpDownloader
from .lock import ResourceLock
from .models import (
    AlertLevel,
    CleanupReport,
    DiskAlert,
    DiskSnapshot,
    DiskStatus,
    IngestionResult,
    IngestStatus,
    Method,
    MethodRecommendation,
    SafetyDecision,
    SiteType,
    SizeEstimate,
    TransferOutcome,
)
from .orchestrator import IngestionOrchestrator
from .policy import classify_url_heuristic, match_resource, resource_key
from .probe import SizeProbe
from .stream import StreamDownloader

__all__ = [
    # Main entry points
    "IngestionOrchestrator",
    "ResourceLock",
    "DiskGuard",
    "SizeProbe",
    "StreamDownloader",
    "HeavyweightDownloader",
    "FfmpegRemuxDownloader",
    "YtDlpDownloader",
    "DfFilesystemStats",
    # Exceptions
    "IngestError",
    "LockContention",
    "AdmissionDenied",
    "AllMethodsExhausted",
    "ProbeInconclusive",
    "TransferFailed",
    "DiskIntrospectionUnavailable",
    # Models
    "AlertLevel",
    "CleanupReport",
    "DiskAlert",
    "DiskSnapshot",
    "DiskStatus",
    "IngestionResult",
    "IngestStatus",
    "Method",
    "MethodRecommendation",
    "SafetyDecision",
    "SiteType",
    "SizeEstimate",
    "TransferOutcome",
    # Policy
    "classify_url_heuristic",
    "classify_usage",
    "match_resource",
    "parse_df_output",
    "resource_key",
]
