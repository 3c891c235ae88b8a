"""Tests for scratch naming, download verification and the scratch sweeper."""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from mediaingest.ingest.artifacts import (
    ScratchDirCleaner,
    discard_partial,
    parse_scratch_name,
    scratch_path,
    verify_download,
)
from mediaingest.ingest.errors import TransferFailed
from mediaingest.ingest.lock import ResourceLock


def _age(path: Path, seconds: float, now: float) -> None:
    os.utime(path, (now - seconds, now - seconds))


class TestScratchNaming:
    """Tests for ingest_<key>_<epoch_ms> names."""

    def test_scratch_path_format(self, tmp_path: Path):
        """Names embed the key and a millisecond timestamp."""
        path = scratch_path(tmp_path, "abc123", now_ms=1700000000123)
        assert path == tmp_path / "ingest_abc123_1700000000123.mp4"

    def test_parse_round_trip_with_underscores(self):
        """Keys containing underscores are recovered intact."""
        assert parse_scratch_name("ingest_https___x_com_a_1700000000123.mp4") == "https___x_com_a"

    def test_parse_rejects_foreign_files(self):
        """Files not following the pattern are ignored."""
        assert parse_scratch_name("video.mp4") is None
        assert parse_scratch_name("ingest_noepoch.mp4") is None
        assert parse_scratch_name("ingest__123.mp4") is None


class TestVerifyDownload:
    """Tests for post-transfer verification."""

    def test_missing_file(self, tmp_path: Path):
        """A missing output fails."""
        with pytest.raises(TransferFailed, match="not found"):
            verify_download(tmp_path / "nope.mp4", min_bytes=1)

    def test_below_floor(self, tmp_path: Path):
        """Anything under the floor is rejected."""
        path = tmp_path / "small.mp4"
        path.write_bytes(b"x" * 999)
        with pytest.raises(TransferFailed, match="too small"):
            verify_download(path, min_bytes=1000)

    def test_at_floor_passes(self, tmp_path: Path):
        """Exactly the floor is accepted."""
        path = tmp_path / "ok.mp4"
        path.write_bytes(b"x" * 1000)
        assert verify_download(path, min_bytes=1000) == 1000

    def test_size_mismatch(self, tmp_path: Path):
        """More than the tolerance off the declared length fails."""
        path = tmp_path / "short.mp4"
        path.write_bytes(b"x" * 9980)
        with pytest.raises(TransferFailed, match="Size mismatch"):
            verify_download(path, min_bytes=1, expected_bytes=10000, tolerance_percent=0.1)

    def test_size_within_tolerance(self, tmp_path: Path):
        """Deviations inside the tolerance are accepted."""
        path = tmp_path / "close.mp4"
        path.write_bytes(b"x" * 9995)
        assert verify_download(path, min_bytes=1, expected_bytes=10000, tolerance_percent=0.1) == 9995

    def test_discard_partial_missing_ok(self, tmp_path: Path):
        """Discarding a file that is already gone is fine."""
        discard_partial(tmp_path / "gone.mp4")
        path = tmp_path / "partial.mp4"
        path.write_bytes(b"x")
        discard_partial(path)
        assert not path.exists()


class TestScratchDirCleaner:
    """Tests for the aged scratch sweep."""

    def test_removes_only_old_pipeline_files(self, tmp_path: Path):
        """Old ingest_* files go; young ones and foreign files stay."""
        now = time.time()
        old = tmp_path / "ingest_abc_1.mp4"
        young = tmp_path / "ingest_def_2.mp4"
        foreign = tmp_path / "notes.txt"
        for path in (old, young, foreign):
            path.write_bytes(b"x" * 2048)
        _age(old, 2 * 3600, now)
        _age(young, 10 * 60, now)
        _age(foreign, 5 * 3600, now)

        report = ScratchDirCleaner(tmp_path, min_age_seconds=3600).sweep(now=now)

        assert report.files_removed == 1
        assert report.space_freed_mb == pytest.approx(2048 / (1024 * 1024))
        assert not old.exists()
        assert young.exists()
        assert foreign.exists()

    def test_skips_locked_keys(self, tmp_path: Path):
        """Files of resources being ingested are never removed."""
        now = time.time()
        locked = tmp_path / "ingest_busy_1.mp4"
        locked.write_bytes(b"x")
        _age(locked, 5 * 3600, now)

        cleaner = ScratchDirCleaner(tmp_path, min_age_seconds=3600, protected_keys=lambda: ["busy"])
        report = cleaner.sweep(now=now)

        assert report.files_removed == 0
        assert locked.exists()

    def test_missing_directory(self, tmp_path: Path):
        """A missing scratch dir yields an empty report."""
        report = ScratchDirCleaner(tmp_path / "nope", min_age_seconds=0).sweep()
        assert report.files_removed == 0
        assert report.cleaned is True

    @pytest.mark.asyncio
    async def test_async_cleanup(self, tmp_path: Path):
        """cleanup() runs the sweep off the event loop."""
        path = tmp_path / "ingest_abc_1.mp4"
        path.write_bytes(b"x")
        _age(path, 7200, time.time())
        report = await ScratchDirCleaner(tmp_path, min_age_seconds=3600).cleanup()
        assert report.files_removed == 1

    @pytest.mark.asyncio
    async def test_async_cleanup_reads_locks_on_loop_thread(self, tmp_path: Path):
        """Held keys are collected on the event loop thread, not in the worker."""
        seen_threads = []

        def protected_keys():
            seen_threads.append(threading.get_ident())
            return ["busy"]

        locked = tmp_path / "ingest_busy_1.mp4"
        locked.write_bytes(b"x")
        _age(locked, 7200, time.time())

        report = await ScratchDirCleaner(tmp_path, min_age_seconds=3600, protected_keys=protected_keys).cleanup()

        assert seen_threads == [threading.get_ident()]
        assert report.files_removed == 0
        assert locked.exists()

    @pytest.mark.asyncio
    async def test_async_cleanup_with_resource_lock(self, tmp_path: Path):
        """A live ResourceLock entry protects its files through cleanup()."""
        lock = ResourceLock(ttl_seconds=60)
        assert lock.acquire("busy")

        locked = tmp_path / "ingest_busy_1.mp4"
        stale = tmp_path / "ingest_idle_1.mp4"
        for path in (locked, stale):
            path.write_bytes(b"x")
            _age(path, 7200, time.time())

        cleaner = ScratchDirCleaner(tmp_path, min_age_seconds=3600, protected_keys=lock.active_keys)
        report = await cleaner.cleanup()

        assert report.files_removed == 1
        assert locked.exists()
        assert not stale.exists()
        lock.clear()
