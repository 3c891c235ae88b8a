"""Scratch-file naming, download verification and the scratch sweeper.

Artifacts are named ``ingest_<key>_<epoch_ms>.<ext>`` so distinct resources
never collide and a sweep can tell its own files (and their age) apart from
anything else in the directory.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Set

from .errors import TransferFailed
from .models import CleanupReport

logger = logging.getLogger(__name__)

SCRATCH_PREFIX = "ingest_"


def scratch_path(scratch_dir: Path, key: str, *, now_ms: Optional[int] = None, ext: str = ".mp4") -> Path:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return Path(scratch_dir) / f"{SCRATCH_PREFIX}{key}_{now_ms}{ext}"


def parse_scratch_name(name: str) -> Optional[str]:
    """Return the resource key embedded in a scratch file name, or None."""
    if not name.startswith(SCRATCH_PREFIX):
        return None
    base = name[len(SCRATCH_PREFIX):].split(".", 1)[0]
    key, sep, stamp = base.rpartition("_")
    if not sep or not key or not stamp.isdigit():
        return None
    return key


def discard_partial(path: Path) -> None:
    """Delete a partial or rejected download; missing files are fine."""
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove partial file %s: %s", path, exc)


def verify_download(
    path: Path,
    *,
    min_bytes: int,
    expected_bytes: Optional[int] = None,
    tolerance_percent: Optional[float] = None,
) -> int:
    """Check a finished download and return its size in bytes.

    Raises:
        TransferFailed: file missing, below ``min_bytes`` (HTML error pages
            saved as the body land here), or off from ``expected_bytes`` by
            more than ``tolerance_percent``.
    """
    path = Path(path)
    if not path.exists():
        raise TransferFailed(f"Download completed but file not found: {path}")

    size = path.stat().st_size
    if size < min_bytes:
        raise TransferFailed(
            f"Downloaded file too small ({size} bytes, need at least {min_bytes}); "
            "likely an error page rather than media"
        )

    if expected_bytes and tolerance_percent is not None:
        diff_percent = abs(size - expected_bytes) / expected_bytes * 100.0
        if diff_percent > tolerance_percent:
            raise TransferFailed(
                f"Size mismatch: expected {expected_bytes} bytes, got {size} ({diff_percent:.3f}% off)"
            )
        if diff_percent > 0:
            logger.warning("Minor size mismatch for %s: %.4f%%", path.name, diff_percent)

    return size


class ScratchDirCleaner:
    """Removes aged pipeline artifacts from the scratch directory.

    Only ``ingest_*`` files directly under ``scratch_dir`` are candidates.
    Files younger than ``min_age_seconds`` or belonging to a key returned by
    ``protected_keys`` are left alone.
    """

    def __init__(
        self,
        scratch_dir: Path,
        *,
        min_age_seconds: float,
        protected_keys: Callable[[], Iterable[str]] = lambda: (),
    ) -> None:
        self.scratch_dir = Path(scratch_dir)
        self.min_age_seconds = float(min_age_seconds)
        self._protected_keys = protected_keys

    async def cleanup(self) -> CleanupReport:
        # The lock table belongs to the event loop; read it here, not in the worker.
        protected = set(self._protected_keys())
        return await asyncio.to_thread(self.sweep, protected=protected)

    def sweep(
        self,
        now: Optional[float] = None,
        *,
        protected: Optional[Set[str]] = None,
    ) -> CleanupReport:
        now = time.time() if now is None else now
        report = CleanupReport()
        if not self.scratch_dir.is_dir():
            return report

        if protected is None:
            protected = set(self._protected_keys())
        for path in sorted(self.scratch_dir.iterdir()):
            key = parse_scratch_name(path.name)
            if key is None or not path.is_file():
                continue
            if key in protected:
                logger.debug("Skipping %s: resource %s is being ingested", path.name, key)
                continue
            try:
                stats = path.stat()
                age = now - stats.st_mtime
                if age <= self.min_age_seconds:
                    continue
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                # In use or permission problems: skip, next sweep retries.
                logger.info("Skipped %s (%s)", path.name, exc)
                continue
            report.files_removed += 1
            report.space_freed_mb += stats.st_size / (1024 * 1024)
            logger.info("Deleted old scratch file %s (%.1f min old)", path.name, age / 60.0)

        logger.info(
            "Scratch cleanup removed %d files, freed %.1fMB",
            report.files_removed,
            report.space_freed_mb,
        )
        return report
