"""Direct byte-streamed HTTP download.

Handles:
- Bounded redirects and a connect/first-byte timeout (the transfer itself is
  unbounded; the per-read timeout catches stalls)
- HTML interstitials (Google Drive virus-scan / confirmation pages) with one
  bypass hop
- Progress logging in 10% steps of the expected length
- Post-transfer verification and partial-file cleanup
"""

from __future__ import annotations

import asyncio
import html as _html
import logging
import re
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlencode, urljoin

import httpx

from ..config import StreamSettings
from .artifacts import discard_partial, verify_download
from .errors import TransferFailed
from .models import Method, SiteType, TransferOutcome
from .policy import match_resource

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]

_DRIVE_DOWNLOAD = "https://drive.usercontent.google.com/download"
_WRITE_BATCH_BYTES = 1024 * 1024

_FORM_RE = re.compile(r'<form[^>]*id="download-form"[^>]*>(.*?)</form>', re.S | re.I)
_FORM_ACTION_RE = re.compile(r'<form[^>]*id="download-form"[^>]*action="([^"]+)"', re.I)
_INPUT_RE = re.compile(r"<input\b[^>]*>", re.I)
_NAME_RE = re.compile(r'name="([^"]*)"', re.I)
_VALUE_RE = re.compile(r'value="([^"]*)"', re.I)
_ANYWAY_LINK_RE = re.compile(r'href="([^"]*download[^"]*confirm=[^"]*)"', re.I)
_CONFIRM_TOKEN_RE = re.compile(r"confirm=([0-9A-Za-z_-]+)")

_VIRUS_SCAN_MARKERS = ("virus scan", "can't scan", "can&#39;t scan", "download anyway")


def interstitial_bypass_url(page: str, url: str) -> Optional[str]:
    """Find the real download URL behind a Drive confirmation page."""
    form = _FORM_RE.search(page)
    if form:
        params: dict[str, str] = {}
        for tag in _INPUT_RE.findall(form.group(1)):
            name = _NAME_RE.search(tag)
            value = _VALUE_RE.search(tag)
            if name and value:
                params[name.group(1)] = _html.unescape(value.group(1))
        if params.get("confirm"):
            action = _FORM_ACTION_RE.search(page)
            base = _html.unescape(action.group(1)) if action else _DRIVE_DOWNLOAD
            return f"{base}?{urlencode(params)}"

    lowered = page.lower()
    if not any(marker in lowered for marker in _VIRUS_SCAN_MARKERS):
        return None

    link = _ANYWAY_LINK_RE.search(page)
    if link:
        return urljoin(url, _html.unescape(link.group(1)))

    ref = match_resource(url)
    if ref is None or ref.site != SiteType.GOOGLE_DRIVE:
        return None
    token = _CONFIRM_TOKEN_RE.search(page)
    confirm = token.group(1) if token else "t"
    return f"{_DRIVE_DOWNLOAD}?id={ref.identifier}&export=download&confirm={confirm}"


def describe_html_page(page: str) -> str:
    """Human-readable reason for an HTML body where media was expected."""
    lowered = page.lower()
    if "sign in" in lowered:
        return "File requires account sign-in"
    if "permission" in lowered or "access denied" in lowered:
        return "File access denied - insufficient permissions"
    if "quota" in lowered:
        return "Download quota exceeded"
    return "Received HTML content instead of file data"


def _content_length(response: httpx.Response) -> Optional[int]:
    raw = response.headers.get("content-length")
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


class ProgressTracker:
    """Counts streamed bytes and reports every ``step_percent`` of the total."""

    _UNKNOWN_LOG_BYTES = 50 * 1024 * 1024

    def __init__(
        self,
        expected_bytes: Optional[int],
        *,
        step_percent: int = 10,
        label: str = "",
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.expected_bytes = expected_bytes
        self.step_percent = max(1, int(step_percent))
        self.label = label
        self.on_progress = on_progress
        self.bytes_done = 0
        self._last_step = 0
        self._last_unknown_mark = 0

    @property
    def percent(self) -> Optional[int]:
        if not self.expected_bytes:
            return None
        return min(100, self.bytes_done * 100 // self.expected_bytes)

    def update(self, nbytes: int) -> None:
        self.bytes_done += nbytes
        percent = self.percent
        if percent is None:
            mark = self.bytes_done // self._UNKNOWN_LOG_BYTES
            if mark > self._last_unknown_mark:
                self._last_unknown_mark = mark
                logger.debug("%s: %.1fMB downloaded", self.label, self.bytes_done / (1024 * 1024))
            return

        if percent >= self._last_step + self.step_percent:
            self._last_step = percent - percent % self.step_percent
            logger.info("%s: download progress %d%%", self.label, self._last_step)
            if self.on_progress:
                self.on_progress(self._last_step / 100.0, f"Downloading... {self._last_step}%")


class StreamDownloader:
    """Streams a resolved URL straight to the destination path."""

    method = Method.STREAM

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Optional[StreamSettings] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._client = client
        self.settings = settings or StreamSettings()
        self.on_progress = on_progress
        self._timeout = httpx.Timeout(self.settings.connect_timeout_seconds)
        self._headers = {
            "User-Agent": self.settings.user_agent,
            "Accept": "video/*, application/octet-stream, */*",
            "Accept-Encoding": "identity",
        }

    async def download(self, url: str, destination: Path) -> TransferOutcome:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Stream download %s -> %s", url, destination)

        try:
            size = await self._fetch(url, destination, hops_left=1)
        except TransferFailed as exc:
            error = str(exc)
        except httpx.HTTPError as exc:
            error = f"Network error: {type(exc).__name__}: {exc}"
        except OSError as exc:
            error = f"Write error: {exc}"
        except asyncio.CancelledError:
            discard_partial(destination)
            raise
        else:
            logger.info("Stream download complete: %.3fMB", size / (1024 * 1024))
            return TransferOutcome(success=True, method=self.method, size_bytes=size)

        discard_partial(destination)
        logger.warning("Stream download failed for %s: %s", url, error)
        return TransferOutcome(success=False, method=self.method, error=error)

    async def _fetch(self, url: str, destination: Path, *, hops_left: int) -> int:
        bypass: Optional[str] = None
        async with self._client.stream(
            "GET",
            url,
            headers=self._headers,
            follow_redirects=True,
            timeout=self._timeout,
        ) as response:
            if not response.is_success:
                raise TransferFailed(
                    f"Request failed: HTTP {response.status_code}",
                    status_code=response.status_code,
                )

            content_type = response.headers.get("content-type", "")
            if "html" in content_type.lower():
                page = await self._read_capped(response)
                bypass = interstitial_bypass_url(page, str(response.url))
                if bypass is None or hops_left <= 0:
                    raise TransferFailed(describe_html_page(page))
            else:
                expected = _content_length(response)
                logger.info("Content-Type: %s, Content-Length: %s", content_type or "unknown", expected or "unknown")
                if expected is not None and expected < self.settings.min_file_bytes:
                    raise TransferFailed(f"File too small ({expected} bytes) - likely not a video file")

                await self._write_body(response, destination, expected)
                return verify_download(
                    destination,
                    min_bytes=self.settings.min_file_bytes,
                    expected_bytes=expected,
                    tolerance_percent=self.settings.size_tolerance_percent,
                )

        logger.info("Interstitial page detected, following bypass URL")
        return await self._fetch(bypass, destination, hops_left=hops_left - 1)

    async def _read_capped(self, response: httpx.Response) -> str:
        chunks: list[bytes] = []
        total = 0
        async for chunk in response.aiter_bytes():
            chunks.append(chunk)
            total += len(chunk)
            if total >= self.settings.max_interstitial_bytes:
                break
        return b"".join(chunks).decode("utf-8", errors="replace")

    async def _write_body(self, response: httpx.Response, destination: Path, expected: Optional[int]) -> None:
        tracker = ProgressTracker(
            expected,
            step_percent=self.settings.progress_step_percent,
            label=destination.name,
            on_progress=self.on_progress,
        )
        # Writes run in a worker thread, batched.
        buffer = bytearray()
        with destination.open("wb") as fh:
            async for chunk in response.aiter_bytes(self.settings.chunk_size):
                buffer.extend(chunk)
                tracker.update(len(chunk))
                if len(buffer) >= _WRITE_BATCH_BYTES:
                    await asyncio.to_thread(fh.write, bytes(buffer))
                    buffer.clear()
            if buffer:
                await asyncio.to_thread(fh.write, bytes(buffer))
