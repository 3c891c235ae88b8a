"""Disk usage monitoring and admission control.

``DiskGuard`` samples the volume hosting the scratch directory, classifies
usage into alert levels and decides whether a download of a given size may
start. Sampling and cleanup are delegated to two narrow collaborators so the
decision logic can be tested without touching the real filesystem:

- ``FilesystemStats``: returns a ``DiskSnapshot`` or raises
  ``DiskIntrospectionUnavailable`` (default: ``df -m -P <volume>``).
- ``ScratchCleaner``: removes pipeline-owned scratch files
  (default: ``artifacts.ScratchDirCleaner``).
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from pathlib import Path
from typing import Optional, Protocol

from ..config import DiskSettings
from ..utils import subprocess_flags as _subprocess_flags
from .errors import DiskIntrospectionUnavailable
from .models import (
    AlertLevel,
    CleanupReport,
    DiskAlert,
    DiskSnapshot,
    DiskStatus,
    SafetyDecision,
)

logger = logging.getLogger(__name__)

_DF_TIMEOUT_SECONDS = 10.0

# "<total> <used> <avail> <capacity>%" in POSIX df output
_DF_ROW = re.compile(r"\s(\d+)\s+(\d+)\s+(\d+)\s+(\d+)%\s")

_LOG_LEVELS = {
    AlertLevel.WARNING: logging.WARNING,
    AlertLevel.CRITICAL: logging.ERROR,
    AlertLevel.EMERGENCY: logging.CRITICAL,
}

_RECOMMENDATIONS = {
    AlertLevel.WARNING: "Clean up temporary files and consider optimizing storage usage.",
    AlertLevel.CRITICAL: "Stop video ingestion, clean up temp files, and review storage usage immediately.",
    AlertLevel.EMERGENCY: "Immediately stop all video operations and clean up temp files.",
}


class FilesystemStats(Protocol):
    async def sample(self) -> DiskSnapshot: ...


class ScratchCleaner(Protocol):
    async def cleanup(self) -> CleanupReport: ...


def parse_df_output(output: str) -> DiskSnapshot:
    """Parse ``df -m -P`` output (header plus one data row)."""
    lines = [line for line in output.strip().splitlines() if line.strip()]
    if len(lines) < 2:
        raise DiskIntrospectionUnavailable("Invalid df output")

    # Filesystem and mount point may contain spaces; anchor on the numbers.
    match = _DF_ROW.search(" " + " ".join(lines[1:]) + " ")
    if not match:
        raise DiskIntrospectionUnavailable(f"Cannot parse df output: {lines[1]!r}")

    total_mb = float(match.group(1))
    used_mb = float(match.group(2))
    free_mb = float(match.group(3))
    if total_mb <= 0:
        raise DiskIntrospectionUnavailable("df reported a zero-sized volume")
    usage_percent = float(round(used_mb / total_mb * 100))
    return DiskSnapshot(total_mb=total_mb, used_mb=used_mb, free_mb=free_mb, usage_percent=usage_percent)


def _existing_ancestor(path: Path) -> Path:
    path = Path(path).expanduser()
    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate
    return Path(path.anchor or ".")


class DfFilesystemStats:
    """Samples a volume by shelling out to ``df``."""

    def __init__(self, volume: Path) -> None:
        self.volume = Path(volume)

    async def sample(self) -> DiskSnapshot:
        df = shutil.which("df")
        if not df:
            raise DiskIntrospectionUnavailable("df not found in PATH")

        target = _existing_ancestor(self.volume)
        try:
            proc = await asyncio.create_subprocess_exec(
                df, "-m", "-P", str(target),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **_subprocess_flags(),
            )
        except OSError as exc:
            raise DiskIntrospectionUnavailable(f"Could not run df: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_DF_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise DiskIntrospectionUnavailable("df timed out") from exc

        if proc.returncode != 0:
            raise DiskIntrospectionUnavailable(
                f"df command failed with code {proc.returncode}: {stderr.decode(errors='replace').strip()}"
            )
        return parse_df_output(stdout.decode(errors="replace"))


def classify_usage(snapshot: DiskSnapshot, settings: DiskSettings) -> DiskAlert:
    """Map a snapshot to an alert level; the most severe matching level wins."""
    free_mb = snapshot.free_mb
    usage = snapshot.usage_percent

    if usage >= settings.emergency_percent or free_mb < settings.emergency_free_mb:
        level = AlertLevel.EMERGENCY
        message = f"CRITICAL: Disk space critically low - {usage:.0f}% used, {free_mb:.0f}MB free"
    elif usage >= settings.critical_percent or free_mb < settings.critical_free_mb:
        level = AlertLevel.CRITICAL
        message = f"URGENT: Disk space very low - {usage:.0f}% used, {free_mb:.0f}MB free"
    elif usage >= settings.warning_percent or free_mb < settings.warning_free_mb:
        level = AlertLevel.WARNING
        message = f"WARNING: Disk space getting low - {usage:.0f}% used, {free_mb:.0f}MB free"
    else:
        return DiskAlert(
            level=AlertLevel.NONE,
            message=f"Disk space healthy - {usage:.0f}% used, {free_mb:.0f}MB free",
            free_mb=free_mb,
            usage_percent=usage,
        )

    return DiskAlert(
        level=level,
        message=message,
        free_mb=free_mb,
        usage_percent=usage,
        recommendation=_RECOMMENDATIONS[level],
    )


class DiskGuard:
    """Process-wide disk usage gate and monitor."""

    def __init__(
        self,
        stats: FilesystemStats,
        cleaner: ScratchCleaner,
        settings: Optional[DiskSettings] = None,
    ) -> None:
        self.stats = stats
        self.cleaner = cleaner
        self.settings = settings or DiskSettings()
        self._monitor_task: Optional[asyncio.Task] = None

    async def snapshot(self) -> Optional[DiskSnapshot]:
        """Current usage, or None when it cannot be determined."""
        try:
            return await self.stats.sample()
        except DiskIntrospectionUnavailable as exc:
            logger.error("Failed to get disk space info: %s", exc)
            return None

    def _alert_for(self, snapshot: Optional[DiskSnapshot]) -> DiskAlert:
        if snapshot is None:
            return DiskAlert(
                level=AlertLevel.WARNING,
                message="Unable to determine disk space usage",
                recommendation="Check system health and disk monitoring tools",
            )
        return classify_usage(snapshot, self.settings)

    async def check_level(self) -> DiskAlert:
        return self._alert_for(await self.snapshot())

    async def is_safe_for_operation(self, expected_size_mb: float) -> SafetyDecision:
        """Fail-closed admission check for a download of ``expected_size_mb``."""
        expected = max(0.0, float(expected_size_mb))
        snapshot = await self.snapshot()
        if snapshot is None:
            return SafetyDecision(safe=False, reason="Cannot determine disk space")

        if snapshot.usage_percent >= self.settings.critical_percent:
            return SafetyDecision(safe=False, reason=f"Disk usage too high: {snapshot.usage_percent:.0f}%")

        required = expected * self.settings.headroom_factor + self.settings.safety_margin_mb
        if snapshot.free_mb < required:
            return SafetyDecision(
                safe=False,
                reason=f"Insufficient free space: {snapshot.free_mb:.0f}MB available, need {required:.0f}MB",
            )
        return SafetyDecision(safe=True)

    async def cleanup_temp_files(self) -> CleanupReport:
        logger.info("Starting cleanup of temporary files...")
        try:
            return await self.cleaner.cleanup()
        except OSError as exc:
            logger.error("Failed to clean up temp files: %s", exc)
            return CleanupReport(cleaned=False)

    async def get_status(self) -> DiskStatus:
        snapshot = await self.snapshot()
        alert = self._alert_for(snapshot)
        if alert.level == AlertLevel.NONE:
            return DiskStatus(status="healthy", details=snapshot, alert=None)
        return DiskStatus(status=alert.level.value, details=snapshot, alert=alert)

    async def run_monitor_once(self) -> DiskAlert:
        """One monitoring pass: sample, log any alert, clean up when critical."""
        alert = await self.check_level()
        if alert.level == AlertLevel.NONE:
            logger.debug(alert.message)
            return alert

        logger.log(_LOG_LEVELS[alert.level], "DISK SPACE ALERT [%s]: %s", alert.level.value.upper(), alert.message)
        if alert.recommendation:
            logger.info("Recommendation: %s", alert.recommendation)

        if alert.level.severity >= AlertLevel.CRITICAL.severity:
            logger.warning("Triggering automatic scratch cleanup...")
            await self.cleanup_temp_files()
        return alert

    def start_monitoring(self, interval_minutes: Optional[float] = None) -> asyncio.Task:
        """Start the periodic monitor on the running loop (idempotent)."""
        if self._monitor_task is not None and not self._monitor_task.done():
            return self._monitor_task
        minutes = self.settings.monitor_interval_minutes if interval_minutes is None else interval_minutes
        logger.info("Starting disk space monitoring (every %s minutes)", minutes)
        self._monitor_task = asyncio.create_task(self._monitor_loop(float(minutes) * 60.0))
        return self._monitor_task

    async def stop_monitoring(self) -> None:
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def _monitor_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.run_monitor_once()
            except Exception:
                # The loop must outlive any single bad pass.
                logger.exception("Disk monitoring pass failed")
