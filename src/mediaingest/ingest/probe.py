"""Size probing for remote media.

The probe never fails: when no candidate URL reports a usable size the
estimate is the conservative default (unknown size, heavyweight method).
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..config import DEFAULT_USER_AGENT, ProbeSettings
from .errors import ProbeInconclusive
from .models import SizeEstimate
from .policy import match_resource, probe_urls

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


def classify_size(
    size_mb: float,
    content_type: Optional[str],
    *,
    large_mb: float,
    heavyweight_mb: float,
) -> tuple[bool, bool]:
    """Return ``(is_large, needs_heavyweight)`` for a known size.

    A file just over ``large_mb`` only escalates when it also reports a video
    content type; HTML error pages with a sizeable body stay on the stream
    path.
    """
    is_large = size_mb > large_mb
    is_video = "video" in (content_type or "").lower()
    needs_heavyweight = size_mb > heavyweight_mb or (is_large and is_video)
    return is_large, needs_heavyweight


def conservative_estimate(url: str) -> SizeEstimate:
    return SizeEstimate(
        size_mb=0.0,
        probed_url=url,
        content_type=None,
        is_large=True,
        needs_heavyweight=True,
        conclusive=False,
    )


class SizeProbe:
    """Estimates remote file size with HEAD requests over candidate URLs."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Optional[ProbeSettings] = None,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._client = client
        self.settings = settings or ProbeSettings()
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "video/*, application/octet-stream, */*",
        }

    async def estimate(self, url: str) -> SizeEstimate:
        logger.info("Analyzing video size: %s", url)
        try:
            ref = match_resource(url)
            if ref is None:
                logger.warning("No file identifier in %s, assuming a large file", url)
                return conservative_estimate(url)

            candidates = probe_urls(url, ref)
            try:
                size_bytes, content_type, probed_url = await self._first_sized(candidates)
            except ProbeInconclusive as exc:
                logger.warning("Could not detect size for %s (%s), defaulting to heavyweight", ref.identifier, exc)
                return conservative_estimate(url)
        except Exception:
            logger.exception("Size detection error for %s", url)
            return conservative_estimate(url)

        size_mb = size_bytes / _MB
        is_large, needs_heavyweight = classify_size(
            size_mb,
            content_type,
            large_mb=self.settings.large_mb,
            heavyweight_mb=self.settings.heavyweight_mb,
        )
        logger.info(
            "Video size detected: %.2fMB (%d bytes, %s) -> %s",
            size_mb,
            size_bytes,
            content_type or "unknown type",
            "heavyweight" if needs_heavyweight else "stream",
        )
        return SizeEstimate(
            size_mb=size_mb,
            probed_url=probed_url,
            content_type=content_type,
            is_large=is_large,
            needs_heavyweight=needs_heavyweight,
            conclusive=True,
        )

    async def _first_sized(self, candidates: list[str]) -> tuple[int, Optional[str], str]:
        """Probe candidates in order; the first positive size wins."""
        if not candidates:
            raise ProbeInconclusive("no probe candidates for this host")

        for candidate in candidates:
            try:
                status, size_bytes, content_type = await self._head(candidate)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                logger.debug("Probe failed for %s: %s", candidate, exc)
                continue

            if 200 <= status < 300 and size_bytes > 0:
                return size_bytes, content_type, candidate
            logger.debug("Probe of %s gave status %d, size %d", candidate, status, size_bytes)

        raise ProbeInconclusive(f"all {len(candidates)} candidates failed")

    async def _head(self, url: str) -> tuple[int, int, Optional[str]]:
        response = await self._client.head(
            url,
            headers=self._headers,
            follow_redirects=True,
            timeout=self.settings.timeout_seconds,
        )
        raw_length = response.headers.get("content-length", "")
        try:
            size_bytes = int(raw_length) if raw_length else 0
        except ValueError:
            size_bytes = 0
        return response.status_code, max(0, size_bytes), response.headers.get("content-type")
