"""Heavyweight downloaders: ffmpeg remux and yt-dlp.

Used for large files, for sizes the probe could not determine, and for
streaming hosts where no direct byte stream exists. Both share the stream
downloader's contract: a ``TransferOutcome`` is returned, nothing is raised
for transfer problems, and a rejected output never stays on disk.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Any, Optional

from ..config import DEFAULT_USER_AGENT, HeavyweightSettings
from ..utils import require_cmd
from ..utils import subprocess_flags as _subprocess_flags
from .artifacts import discard_partial, verify_download
from .errors import TransferFailed
from .models import STREAMING_SITES, Method, TransferOutcome
from .policy import classify_url_heuristic, heavyweight_urls, match_resource

logger = logging.getLogger(__name__)

DEFAULT_MIN_FILE_BYTES = 1024 * 1024


class _NoopYtDlpLogger:
    def debug(self, msg: str) -> None:
        pass

    def warning(self, msg: str) -> None:
        pass

    def error(self, msg: str) -> None:
        pass


def _last_line(data: bytes) -> str:
    lines = [line.strip() for line in data.decode(errors="replace").splitlines() if line.strip()]
    return lines[-1] if lines else ""


class FfmpegRemuxDownloader:
    """Pulls a remote media URL through ``ffmpeg -c copy`` into an mp4."""

    method = Method.HEAVYWEIGHT

    def __init__(
        self,
        settings: Optional[HeavyweightSettings] = None,
        *,
        min_file_bytes: int = DEFAULT_MIN_FILE_BYTES,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.settings = settings or HeavyweightSettings()
        self.min_file_bytes = min_file_bytes
        self.user_agent = user_agent

    def build_command(self, ffmpeg: str, source_url: str, destination: Path) -> list[str]:
        return [
            ffmpeg,
            "-hide_banner",
            "-loglevel",
            "error",
            "-user_agent",
            self.user_agent,
            "-y",
            "-i",
            source_url,
            "-c",
            "copy",
            "-movflags",
            "+faststart",
            "-f",
            "mp4",
            str(destination),
        ]

    async def download(self, url: str, destination: Path) -> TransferOutcome:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            ffmpeg = require_cmd("ffmpeg")
        except RuntimeError as exc:
            return TransferOutcome(success=False, method=self.method, error=str(exc))

        candidates = heavyweight_urls(url, match_resource(url))
        errors: list[str] = []
        for index, candidate in enumerate(candidates, start=1):
            logger.info("ffmpeg attempt %d/%d: %s", index, len(candidates), candidate)
            try:
                size = await self._remux(ffmpeg, candidate, destination)
            except TransferFailed as exc:
                discard_partial(destination)
                logger.warning("ffmpeg attempt %d failed: %s", index, exc)
                errors.append(str(exc))
                continue
            except asyncio.CancelledError:
                discard_partial(destination)
                raise
            logger.info("ffmpeg download complete: %.2fMB", size / (1024 * 1024))
            return TransferOutcome(success=True, method=self.method, size_bytes=size)

        detail = "; ".join(errors) if errors else "no candidate URLs"
        return TransferOutcome(
            success=False,
            method=self.method,
            error=f"All ffmpeg download URLs failed: {detail}",
        )

    async def _remux(self, ffmpeg: str, source_url: str, destination: Path) -> int:
        timeout = self.settings.ffmpeg_timeout_seconds
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.build_command(ffmpeg, source_url, destination),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                **_subprocess_flags(),
            )
        except OSError as exc:
            raise TransferFailed(f"Could not start ffmpeg: {exc}") from exc

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise TransferFailed(f"ffmpeg timed out after {timeout:.0f}s") from exc
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            reason = _last_line(stderr or b"") or "no error output"
            raise TransferFailed(f"ffmpeg exited with code {proc.returncode}: {reason}")

        return verify_download(destination, min_bytes=self.min_file_bytes)


class YtDlpDownloader:
    """Downloads from streaming hosts with yt-dlp in a worker thread."""

    method = Method.HEAVYWEIGHT

    def __init__(
        self,
        settings: Optional[HeavyweightSettings] = None,
        *,
        min_file_bytes: int = DEFAULT_MIN_FILE_BYTES,
    ) -> None:
        self.settings = settings or HeavyweightSettings()
        self.min_file_bytes = min_file_bytes

    async def download(self, url: str, destination: Path) -> TransferOutcome:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            size = await asyncio.to_thread(self._download_sync, url, destination)
        except TransferFailed as exc:
            logger.warning("yt-dlp download failed for %s: %s", url, exc)
            return TransferOutcome(success=False, method=self.method, error=str(exc))
        logger.info("yt-dlp download complete: %.2fMB", size / (1024 * 1024))
        return TransferOutcome(success=True, method=self.method, size_bytes=size)

    def _download_sync(self, url: str, destination: Path) -> int:
        # yt-dlp picks the extension and leaves side files, so it works in a
        # private directory and only the finished file is moved out.
        with tempfile.TemporaryDirectory(prefix=".mi_ytdlp_", dir=destination.parent) as td:
            produced = self._run_ytdlp(url, Path(td), destination.name)
            produced.replace(destination)
        try:
            return verify_download(destination, min_bytes=self.min_file_bytes)
        except TransferFailed:
            discard_partial(destination)
            raise

    def _run_ytdlp(self, url: str, work_dir: Path, label: str) -> Path:
        try:
            from yt_dlp import YoutubeDL
            from yt_dlp.utils import DownloadError
        except ImportError as exc:
            raise TransferFailed("yt-dlp is required for streaming-site downloads") from exc

        progress = {"last_step": 0}

        def progress_hook(d: dict[str, Any]) -> None:
            if d.get("status") != "downloading":
                return
            total = d.get("total_bytes") or d.get("total_bytes_estimate")
            downloaded = d.get("downloaded_bytes", 0)
            if not total:
                return
            step = int(downloaded * 100 / total) // 10 * 10
            if step > progress["last_step"]:
                progress["last_step"] = step
                logger.info("%s: download progress %d%%", label, step)

        ydl_opts: dict[str, Any] = {
            "outtmpl": str(work_dir / "media.%(ext)s"),
            "noplaylist": True,
            "progress_hooks": [progress_hook],
            "format": self.settings.ytdlp_format,
            "merge_output_format": "mp4",
            # Keep yt-dlp off stdout/stderr; progress goes through our logger.
            "logger": _NoopYtDlpLogger(),
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
        }

        try:
            with YoutubeDL(ydl_opts) as ydl:
                ydl.extract_info(url, download=True)
        except DownloadError as exc:
            raise TransferFailed(f"yt-dlp failed: {exc}") from exc

        produced = self._find_output(work_dir)
        if produced is None:
            raise TransferFailed("yt-dlp finished but produced no output file")
        return produced

    @staticmethod
    def _find_output(work_dir: Path) -> Optional[Path]:
        outputs = [
            p for p in work_dir.glob("media.*")
            if p.is_file() and not p.name.endswith((".part", ".ytdl"))
        ]
        if not outputs:
            return None
        outputs.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return outputs[0]


class HeavyweightDownloader:
    """Routes heavyweight transfers: yt-dlp for streaming hosts, ffmpeg otherwise."""

    method = Method.HEAVYWEIGHT

    def __init__(
        self,
        ffmpeg: Optional[FfmpegRemuxDownloader] = None,
        ytdlp: Optional[YtDlpDownloader] = None,
    ) -> None:
        self.ffmpeg = ffmpeg or FfmpegRemuxDownloader()
        self.ytdlp = ytdlp or YtDlpDownloader()

    async def download(self, url: str, destination: Path) -> TransferOutcome:
        if classify_url_heuristic(url) in STREAMING_SITES:
            return await self.ytdlp.download(url, destination)
        return await self.ffmpeg.download(url, destination)
